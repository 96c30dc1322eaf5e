"""MobZap Core Store -- SQLite 持久化实现

提供工厂函数创建共享数据库连接的 Store 实例组。
"""

import asyncio
from contextlib import AbstractAsyncContextManager
from pathlib import Path

import aiosqlite

from .device_store import SqliteDeviceRegistry
from .license_store import SqliteAutoResponderStore, SqliteLicenseGate
from .message_store import SqliteMessageStore
from .protocols import DeviceRegistry, LicenseGate, MessageStore, TaskStore
from .sqlite_init import init_db
from .task_store import SqliteTaskStore
from .transaction import atomic, claim_and_open_message
from .webhook_store import SqliteWebhookStore


class StoreGroup:
    """Store 实例组 -- 共享同一个数据库连接与写锁"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self.conn = conn
        self.write_lock = asyncio.Lock()
        self.task_store = SqliteTaskStore(conn)
        self.message_store = SqliteMessageStore(conn)
        self.webhook_store = SqliteWebhookStore(conn)
        self.device_registry = SqliteDeviceRegistry(conn)
        self.license_gate = SqliteLicenseGate(conn)
        self.auto_responder_store = SqliteAutoResponderStore(conn)

    def transaction(self) -> AbstractAsyncContextManager[None]:
        """写事务：async with store_group.transaction(): ..."""
        return atomic(self.conn, self.write_lock)

    async def close(self) -> None:
        await self.conn.close()


async def create_store_group(db_path: str) -> StoreGroup:
    """创建 Store 实例组

    Args:
        db_path: SQLite 数据库文件路径

    Returns:
        StoreGroup 实例
    """
    # 确保数据库目录存在
    db_dir = Path(db_path).parent
    db_dir.mkdir(parents=True, exist_ok=True)

    conn = await aiosqlite.connect(db_path)
    conn.row_factory = aiosqlite.Row
    await init_db(conn)

    return StoreGroup(conn=conn)


__all__ = [
    "StoreGroup",
    "create_store_group",
    "SqliteTaskStore",
    "SqliteMessageStore",
    "SqliteWebhookStore",
    "SqliteDeviceRegistry",
    "SqliteLicenseGate",
    "SqliteAutoResponderStore",
    "TaskStore",
    "MessageStore",
    "DeviceRegistry",
    "LicenseGate",
    "init_db",
    "atomic",
    "claim_and_open_message",
]
