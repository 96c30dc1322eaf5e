"""进程重启持久性测试

1. 创建任务 -> 关闭连接 -> 重新打开 -> 数据完整
2. 重启前已领取的任务不会被再次领取
3. WAL 模式验证
"""

from datetime import UTC, datetime
from pathlib import Path

import aiosqlite
from mobzap.core.models import TaskCategory, TaskStatus
from mobzap.core.store.sqlite_init import init_db, verify_wal_mode
from mobzap.core.store.task_store import SqliteTaskStore


async def _reopen(db_path: Path) -> aiosqlite.Connection:
    conn = await aiosqlite.connect(str(db_path))
    conn.row_factory = aiosqlite.Row
    await init_db(conn)
    return conn


class TestDurability:
    """进程重启后任务不丢失"""

    async def test_data_survives_restart(self, db_conn, tmp_db_path: Path, make_task):
        task = make_task(TaskCategory.BULK_MESSAGE, priority=7)
        await SqliteTaskStore(db_conn).create_task(task)
        await db_conn.commit()
        await db_conn.close()

        conn = await _reopen(tmp_db_path)
        try:
            restored = await SqliteTaskStore(conn).get_task(task.task_id)
        finally:
            await conn.close()

        assert restored is not None
        assert restored.status == TaskStatus.PENDING
        assert restored.priority == 7
        assert restored.payload.phone_numbers == task.payload.phone_numbers

    async def test_claim_survives_restart(self, db_conn, tmp_db_path: Path, make_task):
        store = SqliteTaskStore(db_conn)
        for _ in range(3):
            await store.create_task(make_task())
        claimed = await store.claim_next([TaskCategory.MESSAGE], datetime.now(UTC))
        await db_conn.commit()
        await db_conn.close()

        conn = await _reopen(tmp_db_path)
        try:
            store = SqliteTaskStore(conn)
            again = await store.claim_next([TaskCategory.MESSAGE], datetime.now(UTC))
            tasks = await store.list_tasks("owner-1")
        finally:
            await conn.close()

        assert again is not None
        assert again.task_id != claimed.task_id
        assert len(tasks) == 3

    async def test_wal_mode_enabled(self, db_conn):
        assert await verify_wal_mode(db_conn) is True
