"""TaskService -- 任务创建、查询与取消

API 层与自动回复共用的任务入口。
"""

from datetime import datetime
from typing import Any

import structlog
from mobzap.core.config import DEFAULT_MAX_RETRIES, DEFAULT_TASK_PRIORITY, MAX_RETRIES_LIMIT
from mobzap.core.exceptions import MalformedPayload, NotCancellable, NotFound, QuotaExceeded
from mobzap.core.models import (
    BulkProgress,
    Message,
    Task,
    TaskCategory,
    TaskStatus,
    WebhookEvent,
    parse_payload,
    payload_destination_count,
    validate_transition,
)
from mobzap.core.store import StoreGroup
from mobzap.core.timeutil import utc_now
from ulid import ULID

from .reconciler import task_event_data
from .webhook_notifier import WebhookNotifier

log = structlog.get_logger()


class TaskService:
    """任务生命周期中由调用方触发的部分"""

    def __init__(
        self,
        store_group: StoreGroup,
        notifier: WebhookNotifier,
        dispatcher=None,
    ) -> None:
        self._stores = store_group
        self._notifier = notifier
        # 推送模式下用于唤醒分类队列；拉取模式为 None
        self._dispatcher = dispatcher

    def attach_dispatcher(self, dispatcher) -> None:
        self._dispatcher = dispatcher

    async def create_task(
        self,
        owner_id: str,
        category: str,
        payload: dict[str, Any],
        *,
        device_id: str | None = None,
        priority: int = DEFAULT_TASK_PRIORITY,
        scheduled_at: datetime | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        check_quota: bool = True,
    ) -> Task:
        """校验并持久化一个 pending 任务

        Raises:
            UnknownCategory: 分类无法识别
            MalformedPayload: payload 或 max_retries 不合法
            NotFound: 指定的设备不存在
            QuotaExceeded: 授权失效或超出每日额度
        """
        parsed = parse_payload(category, payload)
        resolved = TaskCategory(category)
        if not 1 <= max_retries <= MAX_RETRIES_LIMIT:
            message = f"max_retries must be between 1 and {MAX_RETRIES_LIMIT}"
            raise MalformedPayload(message, [{"field": "max_retries", "message": message}])
        now = utc_now()

        if device_id is not None:
            device = await self._stores.device_registry.get_device(device_id)
            if device is None or device.owner_id != owner_id:
                raise NotFound("Device", device_id)

        destinations = payload_destination_count(parsed)
        if check_quota and not await self._stores.license_gate.can_create_tasks(
            owner_id, destinations, now
        ):
            log.warning(
                "task_quota_exceeded",
                owner_id=owner_id,
                category=resolved,
                destinations=destinations,
            )
            raise QuotaExceeded(
                f"Owner {owner_id} has no active license or exceeded the daily message limit"
            )

        task = Task(
            task_id=str(ULID()),
            owner_id=owner_id,
            device_id=device_id,
            category=resolved,
            priority=priority,
            payload=parsed,
            max_retries=max_retries,
            progress=(
                BulkProgress(total=destinations)
                if resolved == TaskCategory.BULK_MESSAGE
                else None
            ),
            scheduled_at=scheduled_at,
            created_at=now,
            updated_at=now,
        )
        async with self._stores.transaction():
            await self._stores.task_store.create_task(task)

        log.info(
            "task_created",
            task_id=task.task_id,
            owner_id=owner_id,
            category=resolved,
            priority=priority,
            device_id=device_id,
        )
        self._notifier.notify(
            owner_id,
            WebhookEvent.TASK_CREATED,
            task_event_data(task, status=TaskStatus.PENDING.value, priority=priority),
        )
        if self._dispatcher is not None:
            self._dispatcher.wake(resolved)
        return task

    async def get_task(self, owner_id: str, task_id: str) -> Task:
        """按 owner 查询任务，其他 owner 的任务视为不存在"""
        task = await self._stores.task_store.get_task(task_id)
        if task is None or task.owner_id != owner_id:
            raise NotFound("Task", task_id)
        return task

    async def get_task_detail(self, owner_id: str, task_id: str) -> tuple[Task, list[Message]]:
        task = await self.get_task(owner_id, task_id)
        messages = await self._stores.message_store.list_for_task(task_id)
        return task, messages

    async def list_tasks(
        self,
        owner_id: str,
        status: TaskStatus | None = None,
        limit: int = 100,
    ) -> list[Task]:
        return await self._stores.task_store.list_tasks(
            owner_id, status.value if status else None, limit
        )

    async def get_progress(self, owner_id: str, task_id: str) -> BulkProgress:
        task = await self.get_task(owner_id, task_id)
        if task.progress is not None:
            return task.progress
        # 非批量任务：按单目标折算
        done = task.status == TaskStatus.COMPLETED
        failed = task.status == TaskStatus.FAILED
        return BulkProgress(total=1, sent=int(done), failed=int(failed))

    async def cancel_task(self, owner_id: str, task_id: str) -> Task:
        """pending -> cancelled；其他状态一律拒绝

        Raises:
            NotFound: 任务不存在
            NotCancellable: 任务已被领取或已在终态
        """
        task = await self.get_task(owner_id, task_id)
        if not validate_transition(task.status, TaskStatus.CANCELLED):
            log.info("task_cancel_rejected", task_id=task_id, status=task.status)
            raise NotCancellable(task_id, task.status)

        async with self._stores.transaction():
            applied = await self._stores.task_store.transition(
                task_id, TaskStatus.PENDING, TaskStatus.CANCELLED, utc_now()
            )
        if not applied:
            # 读取之后被领取
            current = await self._stores.task_store.get_task(task_id)
            status = current.status if current else task.status
            log.info("task_cancel_rejected", task_id=task_id, status=status)
            raise NotCancellable(task_id, status)

        log.info("task_cancelled", task_id=task_id, owner_id=owner_id)
        self._notifier.notify(
            owner_id,
            WebhookEvent.TASK_CANCELLED,
            task_event_data(task, status=TaskStatus.CANCELLED.value),
        )
        cancelled = await self._stores.task_store.get_task(task_id)
        return cancelled or task
