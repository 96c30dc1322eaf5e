"""TaskStore SQLite 实现

所有状态变更都是单行条件更新（WHERE status = 预期状态），
通过 rowcount 判断是否生效，避免并发下的丢失更新。
此处不提交事务，由调用方通过 transaction.atomic() 管理。
"""

import json
from collections.abc import Iterable
from datetime import datetime
from typing import Any

import aiosqlite

from ..models.enums import TaskCategory, TaskStatus, validate_transition
from ..models.payloads import parse_payload
from ..models.task import BulkProgress, Task
from ..timeutil import from_db, to_db

# total 未知（0）时进度不设上限
_NO_TOTAL_CAP = 2**63 - 1


class SqliteTaskStore:
    """TaskStore 的 SQLite 实现"""

    # 领取时每轮检查的候选数，候选被其他 worker 抢走时继续尝试下一个
    _CLAIM_CANDIDATES = 5

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def create_task(self, task: Task) -> None:
        """创建任务记录"""
        await self._conn.execute(
            """
            INSERT INTO tasks (task_id, owner_id, device_id, category, priority, status,
                               payload, result, error, retry_count, max_retries, progress,
                               scheduled_at, executed_at, completed_at, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                task.task_id,
                task.owner_id,
                task.device_id,
                task.category.value,
                task.priority,
                task.status.value,
                task.payload.model_dump_json(),
                json.dumps(task.result) if task.result is not None else None,
                task.error,
                task.retry_count,
                task.max_retries,
                task.progress.model_dump_json() if task.progress else None,
                to_db(task.scheduled_at),
                to_db(task.executed_at),
                to_db(task.completed_at),
                to_db(task.created_at),
                to_db(task.updated_at),
            ),
        )

    async def get_task(self, task_id: str) -> Task | None:
        """根据 task_id 查询任务"""
        cursor = await self._conn.execute(
            "SELECT * FROM tasks WHERE task_id = ?",
            (task_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    async def list_tasks(
        self,
        owner_id: str,
        status: str | None = None,
        limit: int = 100,
    ) -> list[Task]:
        """查询用户任务列表，支持按状态筛选，按 created_at 倒序"""
        if status:
            cursor = await self._conn.execute(
                """
                SELECT * FROM tasks WHERE owner_id = ? AND status = ?
                ORDER BY created_at DESC LIMIT ?
                """,
                (owner_id, status, limit),
            )
        else:
            cursor = await self._conn.execute(
                "SELECT * FROM tasks WHERE owner_id = ? ORDER BY created_at DESC LIMIT ?",
                (owner_id, limit),
            )
        rows = await cursor.fetchall()
        return [self._row_to_task(row) for row in rows]

    async def next_candidates(
        self,
        categories: Iterable[TaskCategory],
        now: datetime,
        device_id: str | None = None,
        owner_id: str | None = None,
        limit: int = _CLAIM_CANDIDATES,
    ) -> list[str]:
        """按领取顺序返回可领取任务的 ID

        顺序：priority 倒序，created_at 正序，同一时刻按插入顺序。
        scheduled_at 在未来的任务不会出现在结果中。
        指定 device_id 时同时包含该 owner 尚未分配设备的任务。
        """
        category_values = [c.value for c in categories]
        if not category_values:
            return []
        placeholders = ", ".join("?" for _ in category_values)
        sql = f"""
            SELECT task_id FROM tasks
            WHERE status = 'pending'
              AND category IN ({placeholders})
              AND (scheduled_at IS NULL OR scheduled_at <= ?)
        """
        params: list[Any] = [*category_values, to_db(now)]
        if device_id is not None:
            sql += " AND (device_id = ? OR (device_id IS NULL AND owner_id = ?))"
            params.extend([device_id, owner_id])
        sql += " ORDER BY priority DESC, created_at ASC, rowid ASC LIMIT ?"
        params.append(limit)
        cursor = await self._conn.execute(sql, params)
        rows = await cursor.fetchall()
        return [row["task_id"] for row in rows]

    async def claim_task(
        self, task_id: str, now: datetime, device_id: str | None = None
    ) -> bool:
        """条件领取：仅当任务仍为 pending 且已到期时置为 processing 并记录 executed_at

        任务尚未分配设备时，顺带分配给 device_id。

        Returns:
            True 表示本次调用领取成功，False 表示已被他人领取或不可领取
        """
        cursor = await self._conn.execute(
            """
            UPDATE tasks
            SET status = 'processing', executed_at = ?, updated_at = ?,
                device_id = COALESCE(device_id, ?)
            WHERE task_id = ? AND status = 'pending'
              AND (scheduled_at IS NULL OR scheduled_at <= ?)
            """,
            (to_db(now), to_db(now), device_id, task_id, to_db(now)),
        )
        return cursor.rowcount == 1

    async def claim_next(
        self,
        categories: Iterable[TaskCategory],
        now: datetime,
        device_id: str | None = None,
        owner_id: str | None = None,
    ) -> Task | None:
        """领取下一个可执行任务（最高优先级、最早创建）"""
        categories = list(categories)
        while True:
            candidates = await self.next_candidates(categories, now, device_id, owner_id)
            if not candidates:
                return None
            for task_id in candidates:
                if await self.claim_task(task_id, now, device_id):
                    return await self.get_task(task_id)
            # 本轮候选全部被抢走，重新查询

    async def transition(
        self,
        task_id: str,
        expected: TaskStatus,
        new_status: TaskStatus,
        now: datetime,
        *,
        result: dict[str, Any] | None = None,
        error: str | None = None,
        retry_increment: int = 0,
    ) -> bool:
        """条件状态流转：仅当当前状态等于 expected 时生效

        终态 COMPLETED 会记录 completed_at；result/error 为 None 时保留原值。

        Raises:
            ValueError: expected -> new_status 不在合法流转表中
        """
        if not validate_transition(expected, new_status):
            raise ValueError(f"illegal task transition: {expected} -> {new_status}")
        completed_at = to_db(now) if new_status == TaskStatus.COMPLETED else None
        cursor = await self._conn.execute(
            """
            UPDATE tasks
            SET status = ?,
                updated_at = ?,
                completed_at = COALESCE(?, completed_at),
                result = COALESCE(?, result),
                error = COALESCE(?, error),
                retry_count = MIN(retry_count + ?, max_retries)
            WHERE task_id = ? AND status = ?
            """,
            (
                new_status.value,
                to_db(now),
                completed_at,
                json.dumps(result) if result is not None else None,
                error,
                retry_increment,
                task_id,
                expected.value,
            ),
        )
        return cursor.rowcount == 1

    async def update_progress(
        self,
        task_id: str,
        sent: int,
        failed: int,
        now: datetime,
    ) -> bool:
        """更新批量进度：取已记录值与新值中的较大者，保证进度不回退

        total 已知时 sent/failed 不超过 total；同时刷新 updated_at 作为最近一次回执时间。
        """
        cursor = await self._conn.execute(
            """
            UPDATE tasks
            SET progress = json_object(
                    'sent', MIN(
                        MAX(COALESCE(json_extract(progress, '$.sent'), 0), ?),
                        COALESCE(NULLIF(json_extract(progress, '$.total'), 0), ?)
                    ),
                    'failed', MIN(
                        MAX(COALESCE(json_extract(progress, '$.failed'), 0), ?),
                        COALESCE(NULLIF(json_extract(progress, '$.total'), 0), ?)
                    ),
                    'total', COALESCE(json_extract(progress, '$.total'), 0)
                ),
                updated_at = ?
            WHERE task_id = ? AND status = 'processing'
            """,
            (sent, _NO_TOTAL_CAP, failed, _NO_TOTAL_CAP, to_db(now), task_id),
        )
        return cursor.rowcount == 1

    async def touch_processing(self, task_id: str, now: datetime) -> bool:
        """记录一次不带进度的设备回执"""
        cursor = await self._conn.execute(
            "UPDATE tasks SET updated_at = ? WHERE task_id = ? AND status = 'processing'",
            (to_db(now), task_id),
        )
        return cursor.rowcount == 1

    async def list_stale_processing(self, acknowledged_before: datetime) -> list[Task]:
        """查询最近一次回执早于给定时间的 processing 任务

        领取和每次进度回执都会刷新 updated_at，仍在上报进度的批量任务不会被选中。
        """
        cursor = await self._conn.execute(
            """
            SELECT * FROM tasks
            WHERE status = 'processing' AND updated_at < ?
            ORDER BY updated_at ASC
            """,
            (to_db(acknowledged_before),),
        )
        rows = await cursor.fetchall()
        return [self._row_to_task(row) for row in rows]

    async def count_by_status(self) -> dict[str, int]:
        """按状态统计任务数"""
        cursor = await self._conn.execute(
            "SELECT status, COUNT(*) AS n FROM tasks GROUP BY status"
        )
        rows = await cursor.fetchall()
        return {row["status"]: row["n"] for row in rows}

    async def count_pending_for_device(self, device_id: str) -> int:
        cursor = await self._conn.execute(
            "SELECT COUNT(*) FROM tasks WHERE device_id = ? AND status = 'pending'",
            (device_id,),
        )
        row = await cursor.fetchone()
        return row[0] if row else 0

    @staticmethod
    def _row_to_task(row: aiosqlite.Row) -> Task:
        """将数据库行转换为 Task 模型"""
        category = row["category"]
        progress = row["progress"]
        # 按 payload 自带的 category 解析；与任务分类不一致时由翻译器拒绝
        payload = json.loads(row["payload"])
        return Task(
            task_id=row["task_id"],
            owner_id=row["owner_id"],
            device_id=row["device_id"],
            category=category,
            priority=row["priority"],
            status=row["status"],
            payload=parse_payload(payload.get("category", category), payload),
            result=json.loads(row["result"]) if row["result"] else None,
            error=row["error"],
            retry_count=row["retry_count"],
            max_retries=row["max_retries"],
            progress=BulkProgress(**json.loads(progress)) if progress else None,
            scheduled_at=from_db(row["scheduled_at"]),
            executed_at=from_db(row["executed_at"]),
            completed_at=from_db(row["completed_at"]),
            created_at=from_db(row["created_at"]),
            updated_at=from_db(row["updated_at"]),
        )
