"""MessageStore SQLite 实现

出站消息以 (task_id, direction) 唯一；状态推进只在新状态排位更高时生效。
"""

import json
from datetime import datetime

import aiosqlite

from ..models.enums import (
    MESSAGE_FAILABLE,
    MESSAGE_STATUS_RANK,
    MessageDirection,
    MessageStatus,
)
from ..models.message import Message
from ..timeutil import from_db, to_db

# SQL CASE 表达式：把 status 列映射为排位
_RANK_SQL = (
    "CASE status "
    + " ".join(f"WHEN '{s.value}' THEN {r}" for s, r in MESSAGE_STATUS_RANK.items())
    + " ELSE 99 END"
)


class SqliteMessageStore:
    """MessageStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def insert_message(self, message: Message) -> None:
        await self._conn.execute(
            """
            INSERT INTO messages (message_id, owner_id, device_id, task_id, direction,
                                  phone_number, content_type, content, media_url, status,
                                  remote_id, delivered_at, read_at, error, metadata,
                                  created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            self._params(message),
        )

    async def create_outgoing_if_absent(self, message: Message) -> Message:
        """为任务创建出站消息；已存在时返回已有记录

        依赖 (task_id, direction) 唯一索引，重复调用不会产生第二条记录。
        """
        await self._conn.execute(
            """
            INSERT OR IGNORE INTO messages (message_id, owner_id, device_id, task_id,
                                  direction, phone_number, content_type, content,
                                  media_url, status, remote_id, delivered_at, read_at,
                                  error, metadata, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            self._params(message),
        )
        existing = await self.get_outgoing_for_task(message.task_id or "")
        return existing if existing is not None else message

    async def get_message(self, message_id: str) -> Message | None:
        cursor = await self._conn.execute(
            "SELECT * FROM messages WHERE message_id = ?",
            (message_id,),
        )
        row = await cursor.fetchone()
        return self._row_to_message(row) if row else None

    async def get_outgoing_for_task(self, task_id: str) -> Message | None:
        """查询任务派生的出站消息"""
        cursor = await self._conn.execute(
            "SELECT * FROM messages WHERE task_id = ? AND direction = ?",
            (task_id, MessageDirection.OUTGOING.value),
        )
        row = await cursor.fetchone()
        return self._row_to_message(row) if row else None

    async def list_for_task(self, task_id: str) -> list[Message]:
        cursor = await self._conn.execute(
            "SELECT * FROM messages WHERE task_id = ? ORDER BY created_at ASC",
            (task_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_message(row) for row in rows]

    async def advance_status(
        self,
        message_id: str,
        target: MessageStatus,
        now: datetime,
        *,
        remote_id: str | None = None,
        delivered_at: datetime | None = None,
        read_at: datetime | None = None,
    ) -> bool:
        """条件推进消息状态：仅当 target 排位高于当前状态且当前不是 failed

        Returns:
            True 表示状态已推进
        """
        cursor = await self._conn.execute(
            f"""
            UPDATE messages
            SET status = ?,
                remote_id = COALESCE(?, remote_id),
                delivered_at = COALESCE(delivered_at, ?),
                read_at = COALESCE(read_at, ?),
                updated_at = ?
            WHERE message_id = ? AND ({_RANK_SQL}) < ?
            """,
            (
                target.value,
                remote_id,
                to_db(delivered_at),
                to_db(read_at),
                to_db(now),
                message_id,
                MESSAGE_STATUS_RANK[target],
            ),
        )
        return cursor.rowcount == 1

    async def mark_failed(self, message_id: str, error: str, now: datetime) -> bool:
        """条件置为 failed：只允许从 pending 或 sent 转入"""
        allowed = ", ".join(f"'{s.value}'" for s in MESSAGE_FAILABLE)
        cursor = await self._conn.execute(
            f"""
            UPDATE messages
            SET status = 'failed', error = ?, updated_at = ?
            WHERE message_id = ? AND status IN ({allowed})
            """,
            (error, to_db(now), message_id),
        )
        return cursor.rowcount == 1

    @staticmethod
    def _params(message: Message) -> tuple:
        return (
            message.message_id,
            message.owner_id,
            message.device_id,
            message.task_id,
            message.direction.value,
            message.phone_number,
            message.content_type.value,
            message.content,
            message.media_url,
            message.status.value,
            message.remote_id,
            to_db(message.delivered_at),
            to_db(message.read_at),
            message.error,
            json.dumps(message.metadata),
            to_db(message.created_at),
            to_db(message.updated_at),
        )

    @staticmethod
    def _row_to_message(row: aiosqlite.Row) -> Message:
        return Message(
            message_id=row["message_id"],
            owner_id=row["owner_id"],
            device_id=row["device_id"],
            task_id=row["task_id"],
            direction=row["direction"],
            phone_number=row["phone_number"],
            content_type=row["content_type"],
            content=row["content"],
            media_url=row["media_url"],
            status=row["status"],
            remote_id=row["remote_id"],
            delivered_at=from_db(row["delivered_at"]),
            read_at=from_db(row["read_at"]),
            error=row["error"],
            metadata=json.loads(row["metadata"]) if row["metadata"] else {},
            created_at=from_db(row["created_at"]),
            updated_at=from_db(row["updated_at"]),
        )
