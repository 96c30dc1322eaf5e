"""原子事务封装

共享 aiosqlite 连接上的写操作通过写锁串行化，
在同一 SQLite 事务内提交，失败时回滚并重新抛出。
"""

import asyncio
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from datetime import datetime

import aiosqlite

from ..models.enums import TaskCategory
from ..models.task import Task
from ..translator import MESSAGE_CATEGORIES, outgoing_message
from .protocols import MessageStore, TaskStore


@asynccontextmanager
async def atomic(conn: aiosqlite.Connection, lock: asyncio.Lock) -> AsyncIterator[None]:
    """在写锁保护下执行一组写操作并原子提交

    Raises:
        Exception: 事务内任何异常都会先回滚再原样抛出
    """
    async with lock:
        try:
            yield
            await conn.commit()
        except BaseException:
            await conn.rollback()
            raise


async def claim_and_open_message(
    conn: aiosqlite.Connection,
    lock: asyncio.Lock,
    task_store: TaskStore,
    message_store: MessageStore,
    categories: Iterable[TaskCategory],
    now: datetime,
    device_id: str | None = None,
    owner_id: str | None = None,
) -> Task | None:
    """领取下一个任务，并在同一事务内为 message/media 任务创建 pending 出站消息

    Args:
        conn: 数据库连接
        lock: 写锁
        task_store: TaskStore 实例
        message_store: MessageStore 实例
        categories: 允许领取的分类
        now: 当前时间，用于 scheduled_at 判定与 executed_at
        device_id: 拉取模式下的设备，只领取该设备或该 owner 未分配设备的任务
        owner_id: 拉取模式下的设备所属 owner

    Returns:
        已领取（processing）的任务，无可领取任务时返回 None
    """
    async with atomic(conn, lock):
        task = await task_store.claim_next(categories, now, device_id, owner_id)
        if task is not None and task.category in MESSAGE_CATEGORIES:
            message = outgoing_message(task, now)
            if message is not None:
                await message_store.create_outgoing_if_absent(message)
    return task
