"""WebhookStore SQLite 实现"""

import json
from datetime import datetime

import aiosqlite

from ..models.webhook import WebhookSubscription
from ..timeutil import from_db, to_db


class SqliteWebhookStore:
    """Webhook 订阅存储

    失败计数的递增与禁用在同一条 UPDATE 中完成。
    """

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def create_webhook(self, webhook: WebhookSubscription) -> None:
        await self._conn.execute(
            """
            INSERT INTO webhooks (webhook_id, owner_id, url, events, secret, active,
                                  consecutive_failures, last_triggered_at,
                                  created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                webhook.webhook_id,
                webhook.owner_id,
                webhook.url,
                json.dumps(webhook.events),
                webhook.secret,
                1 if webhook.active else 0,
                webhook.consecutive_failures,
                to_db(webhook.last_triggered_at),
                to_db(webhook.created_at),
                to_db(webhook.updated_at),
            ),
        )

    async def get_webhook(self, webhook_id: str) -> WebhookSubscription | None:
        cursor = await self._conn.execute(
            "SELECT * FROM webhooks WHERE webhook_id = ?",
            (webhook_id,),
        )
        row = await cursor.fetchone()
        return self._row_to_webhook(row) if row else None

    async def list_webhooks(self, owner_id: str) -> list[WebhookSubscription]:
        cursor = await self._conn.execute(
            "SELECT * FROM webhooks WHERE owner_id = ? ORDER BY created_at ASC",
            (owner_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_webhook(row) for row in rows]

    async def list_active_for_event(
        self, owner_id: str, event: str
    ) -> list[WebhookSubscription]:
        """查询订阅了指定事件的活跃 webhook"""
        cursor = await self._conn.execute(
            """
            SELECT * FROM webhooks
            WHERE owner_id = ? AND active = 1
              AND EXISTS (SELECT 1 FROM json_each(webhooks.events) WHERE value = ?)
            ORDER BY created_at ASC
            """,
            (owner_id, event),
        )
        rows = await cursor.fetchall()
        return [self._row_to_webhook(row) for row in rows]

    async def delete_webhook(self, webhook_id: str, owner_id: str) -> bool:
        cursor = await self._conn.execute(
            "DELETE FROM webhooks WHERE webhook_id = ? AND owner_id = ?",
            (webhook_id, owner_id),
        )
        return cursor.rowcount == 1

    async def reactivate(self, webhook_id: str, owner_id: str, now: datetime) -> bool:
        """重新激活并清零失败计数"""
        cursor = await self._conn.execute(
            """
            UPDATE webhooks
            SET active = 1, consecutive_failures = 0, updated_at = ?
            WHERE webhook_id = ? AND owner_id = ?
            """,
            (to_db(now), webhook_id, owner_id),
        )
        return cursor.rowcount == 1

    async def record_success(self, webhook_id: str, now: datetime) -> None:
        """投递成功：清零失败计数并记录 last_triggered_at"""
        await self._conn.execute(
            """
            UPDATE webhooks
            SET consecutive_failures = 0, last_triggered_at = ?, updated_at = ?
            WHERE webhook_id = ?
            """,
            (to_db(now), to_db(now), webhook_id),
        )

    async def record_failure(
        self, webhook_id: str, max_failures: int, now: datetime
    ) -> bool:
        """投递失败：失败计数 +1，达到阈值时置为 inactive

        Returns:
            True 表示本次失败导致订阅被禁用
        """
        await self._conn.execute(
            """
            UPDATE webhooks
            SET consecutive_failures = consecutive_failures + 1,
                active = CASE WHEN consecutive_failures + 1 >= ? THEN 0 ELSE active END,
                updated_at = ?
            WHERE webhook_id = ?
            """,
            (max_failures, to_db(now), webhook_id),
        )
        cursor = await self._conn.execute(
            "SELECT active, consecutive_failures FROM webhooks WHERE webhook_id = ?",
            (webhook_id,),
        )
        row = await cursor.fetchone()
        return row is not None and row["active"] == 0 and row["consecutive_failures"] == max_failures

    @staticmethod
    def _row_to_webhook(row: aiosqlite.Row) -> WebhookSubscription:
        return WebhookSubscription(
            webhook_id=row["webhook_id"],
            owner_id=row["owner_id"],
            url=row["url"],
            events=json.loads(row["events"]),
            secret=row["secret"],
            active=bool(row["active"]),
            consecutive_failures=row["consecutive_failures"],
            last_triggered_at=from_db(row["last_triggered_at"]),
            created_at=from_db(row["created_at"]),
            updated_at=from_db(row["updated_at"]),
        )
