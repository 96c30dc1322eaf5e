"""授权与自动回复规则存储

授权 CRUD 属于外部系统，core 只做创建任务前的额度检查。
"""

import json
from datetime import datetime, timedelta

import aiosqlite

from ..models.device import AutoResponderRule
from ..timeutil import to_db, utc_now


class SqliteLicenseGate:
    """LicenseGate 的 SQLite 实现

    额度口径：过去 24 小时内创建的任务所覆盖的消息条数，
    bulk 任务按号码个数计算，群组加入/退出不计数。
    """

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def upsert_license(
        self,
        license_id: str,
        owner_id: str,
        expires_at: datetime,
        message_limit: int | None = None,
        status: str = "ACTIVE",
        created_at: datetime | None = None,
    ) -> None:
        await self._conn.execute(
            """
            INSERT INTO licenses (license_id, owner_id, status, message_limit,
                                  expires_at, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(license_id) DO UPDATE SET
                status = excluded.status,
                message_limit = excluded.message_limit,
                expires_at = excluded.expires_at
            """,
            (
                license_id,
                owner_id,
                status,
                message_limit,
                to_db(expires_at),
                to_db(created_at or utc_now()),
            ),
        )

    async def can_create_tasks(self, owner_id: str, destinations: int, now: datetime) -> bool:
        """owner 是否还能创建覆盖 destinations 条消息的任务"""
        cursor = await self._conn.execute(
            """
            SELECT message_limit FROM licenses
            WHERE owner_id = ? AND status = 'ACTIVE' AND expires_at > ?
            ORDER BY message_limit IS NULL DESC, message_limit DESC
            LIMIT 1
            """,
            (owner_id, to_db(now)),
        )
        row = await cursor.fetchone()
        if row is None:
            return False
        limit = row["message_limit"]
        if limit is None:
            return True
        used = await self.messages_since(owner_id, now - timedelta(hours=24))
        return used + destinations <= limit

    async def messages_since(self, owner_id: str, since: datetime) -> int:
        cursor = await self._conn.execute(
            """
            SELECT COALESCE(SUM(
                CASE category
                    WHEN 'bulk-message' THEN json_array_length(payload, '$.phone_numbers')
                    WHEN 'group-join' THEN 0
                    WHEN 'group-leave' THEN 0
                    ELSE 1
                END
            ), 0) AS used
            FROM tasks WHERE owner_id = ? AND created_at >= ?
            """,
            (owner_id, to_db(since)),
        )
        row = await cursor.fetchone()
        return row["used"] if row else 0


class SqliteAutoResponderStore:
    """按 owner 存储的自动回复规则"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def set_rules(
        self,
        owner_id: str,
        rules: list[AutoResponderRule],
        now: datetime,
        enabled: bool = True,
    ) -> None:
        await self._conn.execute(
            """
            INSERT INTO auto_responders (owner_id, enabled, rules, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(owner_id) DO UPDATE SET
                enabled = excluded.enabled,
                rules = excluded.rules,
                updated_at = excluded.updated_at
            """,
            (
                owner_id,
                1 if enabled else 0,
                json.dumps([r.model_dump() for r in rules]),
                to_db(now),
            ),
        )

    async def get_rules(self, owner_id: str) -> list[AutoResponderRule]:
        """已启用的规则；未配置或已停用时返回空列表"""
        cursor = await self._conn.execute(
            "SELECT enabled, rules FROM auto_responders WHERE owner_id = ?",
            (owner_id,),
        )
        row = await cursor.fetchone()
        if row is None or not row["enabled"]:
            return []
        return [AutoResponderRule(**r) for r in json.loads(row["rules"])]
