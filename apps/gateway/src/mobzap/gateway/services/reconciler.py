"""Reconciler -- 设备回执对账

把设备异步上报的结果（进度 / 完成 / 失败）应用到 Task 与派生 Message 上：
1. 所有状态变更都是条件更新，同一终态回执重复到达时为空操作
2. Message 状态只前进不回退
3. 事务提交后再把事件交给 WebhookNotifier，通知失败不影响对账
"""

import re
from typing import Any

import structlog
from mobzap.core.config import AUTO_RESPONDER_PRIORITY
from mobzap.core.exceptions import AlreadyTerminal, MobZapError, NotFound, TaskStatusConflict
from mobzap.core.models import (
    TERMINAL_STATES,
    AutoResponderRule,
    ContentType,
    InboundMessage,
    Message,
    MessageDirection,
    MessageStatus,
    OutcomeStatus,
    ReconcileResult,
    Task,
    TaskCategory,
    TaskOutcome,
    TaskStatus,
    WebhookEvent,
    can_advance_message,
    message_event_for,
)
from mobzap.core.store import StoreGroup
from mobzap.core.timeutil import utc_now
from mobzap.core.translator import MESSAGE_CATEGORIES, normalize_destination, outgoing_message
from ulid import ULID

from ..middleware.logging_config import task_log_context
from .webhook_notifier import WebhookNotifier

log = structlog.get_logger()


def task_event_data(task: Task, **extra: Any) -> dict[str, Any]:
    """task.* 事件的 data 字段"""
    data: dict[str, Any] = {
        "task_id": task.task_id,
        "category": task.category.value,
        "device_id": task.device_id,
    }
    data.update(extra)
    return data


def message_event_data(message: Message) -> dict[str, Any]:
    """message.* 事件的 data 字段"""
    return message.model_dump(
        mode="json",
        include={
            "message_id",
            "task_id",
            "device_id",
            "direction",
            "phone_number",
            "content_type",
            "content",
            "media_url",
            "status",
            "remote_id",
            "delivered_at",
            "read_at",
            "error",
        },
    )


def match_auto_response(rules: list[AutoResponderRule], text: str) -> str | None:
    """按顺序匹配自动回复规则，返回第一条命中规则的回复"""
    normalized = text.strip().lower()
    for rule in rules:
        keywords = [k.lower() for k in rule.keywords]
        match rule.type:
            case "all":
                return rule.response
            case "contains":
                if any(k in normalized for k in keywords):
                    return rule.response
            case "exact":
                if normalized in keywords:
                    return rule.response
            case "regex":
                if not rule.pattern:
                    continue
                try:
                    if re.search(rule.pattern, text, re.IGNORECASE):
                        return rule.response
                except re.error:
                    log.warning("auto_responder_invalid_regex", pattern=rule.pattern)
    return None


def _target_message_status(outcome: TaskOutcome) -> MessageStatus:
    delivery = outcome.delivery
    if delivery is not None and (delivery.read or delivery.read_at):
        return MessageStatus.READ
    if delivery is not None and (delivery.delivered or delivery.delivered_at):
        return MessageStatus.DELIVERED
    return MessageStatus.SENT


class Reconciler:
    """设备回执对账器"""

    def __init__(
        self,
        store_group: StoreGroup,
        notifier: WebhookNotifier,
        task_service=None,
    ) -> None:
        self._stores = store_group
        self._notifier = notifier
        # 自动回复创建任务用
        self._task_service = task_service

    async def reconcile(self, task_id: str, outcome: TaskOutcome) -> ReconcileResult:
        """应用一条设备回执

        Returns:
            ReconcileResult；任务不存在时 applied=False, reason="NOT_FOUND"

        Raises:
            TaskStatusConflict: 任务尚未被领取（仍为 pending）
        """
        task = await self._stores.task_store.get_task(task_id)
        if task is None:
            log.warning("reconcile_task_not_found", task_id=task_id, outcome=outcome.status)
            return ReconcileResult(task_id=task_id, applied=False, reason="NOT_FOUND")

        with task_log_context(task):
            return await self._reconcile_task(task, outcome)

    async def _reconcile_task(self, task: Task, outcome: TaskOutcome) -> ReconcileResult:
        if task.status in TERMINAL_STATES:
            return await self._reconcile_terminal(task, outcome)

        if task.status == TaskStatus.PENDING:
            log.warning("reconcile_before_claim", outcome=outcome.status)
            raise TaskStatusConflict(task.task_id, TaskStatus.PROCESSING, task.status)

        try:
            match outcome.status:
                case OutcomeStatus.PROCESSING:
                    return await self._apply_progress(task, outcome)
                case OutcomeStatus.COMPLETED:
                    return await self._apply_completed(task, outcome)
                case OutcomeStatus.FAILED:
                    return await self._apply_failed(task, outcome)
        except AlreadyTerminal:
            # 其他路径抢先完成了终态
            current = await self._stores.task_store.get_task(task.task_id)
            return await self._reconcile_terminal(current, outcome)

    async def _reconcile_terminal(self, task: Task, outcome: TaskOutcome) -> ReconcileResult:
        """终态任务：只允许后到的送达/已读回执推进 Message"""
        events: list[str] = []
        message_status = None
        if (
            task.status == TaskStatus.COMPLETED
            and outcome.status == OutcomeStatus.COMPLETED
            and task.category in MESSAGE_CATEGORIES
        ):
            message = await self._advance_message(task, outcome)
            if message is not None:
                message_status = message.status.value
                events.append(self._emit_message(task, message))

        log.info(
            "reconcile_already_terminal",
            task_id=task.task_id,
            status=task.status,
            outcome=outcome.status,
            message_advanced=bool(events),
        )
        return ReconcileResult(
            task_id=task.task_id,
            applied=bool(events),
            status=task.status.value,
            reason="" if events else AlreadyTerminal.code,
            message_status=message_status,
            events=events,
        )

    async def _apply_progress(self, task: Task, outcome: TaskOutcome) -> ReconcileResult:
        now = utc_now()
        events: list[str] = []
        message_status = None

        async with self._stores.transaction():
            if outcome.progress is not None:
                await self._stores.task_store.update_progress(
                    task.task_id, outcome.progress.sent, outcome.progress.failed, now
                )
            else:
                await self._stores.task_store.touch_processing(task.task_id, now)

        if task.category in MESSAGE_CATEGORIES and outcome.remote_message_id:
            message = await self._advance_message(task, outcome, MessageStatus.SENT)
            if message is not None:
                message_status = message.status.value

        refreshed = await self._stores.task_store.get_task(task.task_id)
        progress = refreshed.progress.model_dump() if refreshed and refreshed.progress else None
        self._notifier.notify(
            task.owner_id,
            WebhookEvent.TASK_PROCESSING,
            task_event_data(task, status=TaskStatus.PROCESSING.value, progress=progress),
        )
        events.append(WebhookEvent.TASK_PROCESSING.value)
        if message_status is not None:
            events.append(self._emit_message(task, message))

        return ReconcileResult(
            task_id=task.task_id,
            applied=True,
            status=TaskStatus.PROCESSING.value,
            message_status=message_status,
            events=events,
        )

    def _bulk_summary(self, task: Task, outcome: TaskOutcome) -> dict[str, int]:
        """批量任务完成时的汇总：sent 取已见最大值，未确认发送的都算失败"""
        total = task.progress.total if task.progress else 0
        if not total and hasattr(task.payload, "phone_numbers"):
            total = len(task.payload.phone_numbers)
        sent = task.progress.sent if task.progress else 0
        failed = task.progress.failed if task.progress else 0
        if outcome.progress is not None:
            sent = max(sent, outcome.progress.sent)
            failed = max(failed, outcome.progress.failed)
        sent = min(sent, total)
        return {"total": total, "sent": sent, "failed": min(max(failed, total - sent), total)}

    async def _apply_completed(self, task: Task, outcome: TaskOutcome) -> ReconcileResult:
        now = utc_now()
        result = dict(outcome.result or {})
        if outcome.remote_message_id:
            result.setdefault("remote_message_id", outcome.remote_message_id)
        if task.category == TaskCategory.BULK_MESSAGE:
            summary = self._bulk_summary(task, outcome)
            result.update(summary)

        async with self._stores.transaction():
            if task.category == TaskCategory.BULK_MESSAGE:
                await self._stores.task_store.update_progress(
                    task.task_id, result["sent"], result["failed"], now
                )
            applied = await self._stores.task_store.transition(
                task.task_id,
                TaskStatus.PROCESSING,
                TaskStatus.COMPLETED,
                now,
                result=result,
            )

        if not applied:
            raise AlreadyTerminal(task.task_id)

        events = [WebhookEvent.TASK_COMPLETED.value]
        self._notifier.notify(
            task.owner_id,
            WebhookEvent.TASK_COMPLETED,
            task_event_data(task, status=TaskStatus.COMPLETED.value, result=result),
        )

        message_status = None
        if task.category in MESSAGE_CATEGORIES:
            message = await self._advance_message(task, outcome)
            if message is not None:
                message_status = message.status.value
                events.append(self._emit_message(task, message))

        log.info(
            "task_completed",
            task_id=task.task_id,
            category=task.category,
            message_status=message_status,
        )
        return ReconcileResult(
            task_id=task.task_id,
            applied=True,
            status=TaskStatus.COMPLETED.value,
            message_status=message_status,
            events=events,
        )

    async def _apply_failed(self, task: Task, outcome: TaskOutcome) -> ReconcileResult:
        error = outcome.error or "device reported failure"
        if not await self.fail_processing(task, error):
            raise AlreadyTerminal(task.task_id)

        message = await self._stores.message_store.get_outgoing_for_task(task.task_id)
        events = [WebhookEvent.TASK_FAILED.value]
        if message is not None and message.status == MessageStatus.FAILED:
            events.append(WebhookEvent.MESSAGE_FAILED.value)
        return ReconcileResult(
            task_id=task.task_id,
            applied=True,
            status=TaskStatus.FAILED.value,
            message_status=message.status.value if message else None,
            events=events,
        )

    async def fail_processing(
        self,
        task: Task,
        error: str,
        retry_increment: int = 0,
    ) -> bool:
        """processing -> failed，同时把派生 Message 置为 failed

        分类队列、设备拉取和超时清理共用此路径。

        Returns:
            True 表示本次调用完成了状态流转
        """
        now = utc_now()
        message: Message | None = None
        message_failed = False

        async with self._stores.transaction():
            applied = await self._stores.task_store.transition(
                task.task_id,
                TaskStatus.PROCESSING,
                TaskStatus.FAILED,
                now,
                error=error,
                retry_increment=retry_increment,
            )
            if applied:
                message = await self._stores.message_store.get_outgoing_for_task(task.task_id)
                if message is not None:
                    message_failed = await self._stores.message_store.mark_failed(
                        message.message_id, error, now
                    )

        if not applied:
            return False

        log.warning(
            "task_failed",
            task_id=task.task_id,
            category=task.category,
            error=error,
            retry_increment=retry_increment,
        )
        self._notifier.notify(
            task.owner_id,
            WebhookEvent.TASK_FAILED,
            task_event_data(task, status=TaskStatus.FAILED.value, error=error),
        )
        if message is not None and message_failed:
            failed = message.model_copy(update={"status": MessageStatus.FAILED, "error": error})
            self._notifier.notify(
                task.owner_id, WebhookEvent.MESSAGE_FAILED, message_event_data(failed)
            )
        return True

    async def complete_sync(self, task: Task, result: dict[str, Any]) -> bool:
        """同步分类：传输交付成功即完成"""
        async with self._stores.transaction():
            applied = await self._stores.task_store.transition(
                task.task_id,
                TaskStatus.PROCESSING,
                TaskStatus.COMPLETED,
                utc_now(),
                result=result,
            )
        if applied:
            log.info("task_completed_sync", task_id=task.task_id, category=task.category)
            self._notifier.notify(
                task.owner_id,
                WebhookEvent.TASK_COMPLETED,
                task_event_data(task, status=TaskStatus.COMPLETED.value, result=result),
            )
        return applied

    async def _advance_message(
        self,
        task: Task,
        outcome: TaskOutcome,
        target: MessageStatus | None = None,
    ) -> Message | None:
        """创建（若不存在）并推进出站消息

        Returns:
            状态确实推进时返回更新后的 Message，否则 None
        """
        now = utc_now()
        target = target or _target_message_status(outcome)
        delivery = outcome.delivery
        delivered_at = None
        read_at = None
        if delivery is not None:
            delivered_at = delivery.delivered_at or (now if delivery.delivered else None)
            read_at = delivery.read_at or (now if delivery.read else None)
        if target == MessageStatus.READ and delivered_at is None:
            delivered_at = read_at

        async with self._stores.transaction():
            candidate = outgoing_message(task, now)
            if candidate is None:
                return None
            message = await self._stores.message_store.create_outgoing_if_absent(candidate)
            if not can_advance_message(message.status, target):
                return None
            advanced = await self._stores.message_store.advance_status(
                message.message_id,
                target,
                now,
                remote_id=outcome.remote_message_id,
                delivered_at=delivered_at,
                read_at=read_at,
            )
        if not advanced:
            return None
        return await self._stores.message_store.get_message(message.message_id)

    def _emit_message(self, task: Task, message: Message) -> str:
        event = message_event_for(message.status)
        self._notifier.notify(task.owner_id, event, message_event_data(message))
        return event.value

    async def receive_inbound(self, device_id: str, inbound: InboundMessage) -> Message:
        """设备推送的入站消息：总是新建一条 incoming Message

        Raises:
            NotFound: 设备不存在
        """
        device = await self._stores.device_registry.get_device(device_id)
        if device is None:
            raise NotFound("Device", device_id)

        now = utc_now()
        if inbound.media_url:
            content_type = inbound.media_type or ContentType.DOCUMENT
        else:
            content_type = ContentType.TEXT
        message = Message(
            message_id=str(ULID()),
            owner_id=device.owner_id,
            device_id=device_id,
            direction=MessageDirection.INCOMING,
            phone_number=normalize_destination(inbound.from_number),
            content_type=content_type,
            content=inbound.text,
            media_url=inbound.media_url,
            status=MessageStatus.DELIVERED,
            delivered_at=inbound.timestamp,
            metadata={
                "group_id": inbound.group_id,
                "is_forwarded": inbound.is_forwarded,
                "quoted_message": inbound.quoted_message,
            },
            created_at=now,
            updated_at=now,
        )
        async with self._stores.transaction():
            await self._stores.message_store.insert_message(message)

        log.info(
            "inbound_message_received",
            device_id=device_id,
            message_id=message.message_id,
            content_type=content_type,
        )
        self._notifier.notify(
            device.owner_id, WebhookEvent.MESSAGE_RECEIVED, message_event_data(message)
        )

        if inbound.group_id is None and inbound.text:
            await self._auto_respond(message)
        return message

    async def _auto_respond(self, message: Message) -> None:
        """按规则排队一条回复；失败只记日志，入站消息本身已落库"""
        if self._task_service is None:
            return
        rules = await self._stores.auto_responder_store.get_rules(message.owner_id)
        response = match_auto_response(rules, message.content)
        if response is None:
            return
        try:
            task = await self._task_service.create_task(
                message.owner_id,
                TaskCategory.MESSAGE,
                {"phone_number": message.phone_number, "text": response},
                device_id=message.device_id,
                priority=AUTO_RESPONDER_PRIORITY,
                check_quota=False,
            )
        except MobZapError as e:
            log.warning(
                "auto_response_failed",
                owner_id=message.owner_id,
                message_id=message.message_id,
                code=e.code,
                error=e.message,
            )
            return
        log.info("auto_response_queued", owner_id=message.owner_id, task_id=task.task_id)
