"""Dispatch Queue -- 推送模式下的分类队列

每个分类队列（message / media / group）由固定数量的 worker 协程组成：
1. 以条件更新独占领取下一个 pending 任务（priority DESC, created_at ASC）
2. 翻译为设备指令并通过 DeliveryChannel 下发
3. 传输失败按指数退避重试，预算耗尽后一次性置为 failed
4. 同步分类在下发成功后直接完成，其余分类等待设备回执

队列空闲时 worker 等待唤醒事件或轮询间隔，新任务入库后由 TaskService 唤醒。
"""

import asyncio
from collections.abc import Awaitable, Callable

import structlog
from mobzap.core.config import (
    DISPATCH_BACKOFF_BASE_MS,
    DISPATCH_POLL_INTERVAL_S,
    GROUP_QUEUE_CONCURRENCY,
    MEDIA_QUEUE_CONCURRENCY,
    MESSAGE_QUEUE_CONCURRENCY,
)
from mobzap.core.exceptions import MalformedPayload, UnknownCategory
from mobzap.core.models import (
    CompletionMode,
    DevicePackage,
    QueueName,
    Task,
    TaskCategory,
    TaskStatus,
    WebhookEvent,
)
from mobzap.core.store import StoreGroup, claim_and_open_message
from mobzap.core.timeutil import utc_now
from mobzap.core.translator import (
    CATEGORY_COMPLETION,
    CATEGORY_QUEUES,
    categories_for_queue,
    translate,
)
from mobzap.delivery import DeliveryChannel, DeliveryError

from ..middleware.logging_config import task_log_context
from .reconciler import Reconciler, task_event_data
from .webhook_notifier import WebhookNotifier

log = structlog.get_logger()

DEFAULT_CONCURRENCY: dict[QueueName, int] = {
    QueueName.MESSAGE: MESSAGE_QUEUE_CONCURRENCY,
    QueueName.MEDIA: MEDIA_QUEUE_CONCURRENCY,
    QueueName.GROUP: GROUP_QUEUE_CONCURRENCY,
}

SleepFunc = Callable[[float], Awaitable[None]]


def backoff_delay_ms(attempt: int, base_ms: int = DISPATCH_BACKOFF_BASE_MS) -> int:
    """第 attempt 次失败后的等待时间：base * 2**(attempt-1)"""
    return base_ms * 2 ** (attempt - 1)


class CategoryQueue:
    """单个分类队列及其 worker 池"""

    def __init__(
        self,
        name: QueueName,
        store_group: StoreGroup,
        reconciler: Reconciler,
        notifier: WebhookNotifier,
        channel: DeliveryChannel,
        concurrency: int,
        *,
        delivery_timeout_s: float = 10,
        backoff_base_ms: int = DISPATCH_BACKOFF_BASE_MS,
        poll_interval_s: float = DISPATCH_POLL_INTERVAL_S,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        self.name = name
        self.categories = categories_for_queue(name)
        self.concurrency = concurrency
        self._stores = store_group
        self._reconciler = reconciler
        self._notifier = notifier
        self._channel = channel
        self._delivery_timeout_s = delivery_timeout_s
        self._backoff_base_ms = backoff_base_ms
        self._poll_interval_s = poll_interval_s
        self._sleep = sleep

        self._running = False
        self._wake = asyncio.Event()
        self._workers: list[asyncio.Task[None]] = []
        self._logger = log.bind(queue=name.value)

    @property
    def is_running(self) -> bool:
        return self._running

    def wake(self) -> None:
        self._wake.set()

    async def start(self) -> None:
        if self._running:
            raise RuntimeError(f"Queue {self.name} is already running")
        self._running = True
        self._workers = [
            asyncio.create_task(self._worker_loop(i), name=f"queue-{self.name}-{i}")
            for i in range(self.concurrency)
        ]
        self._logger.info("queue_started", concurrency=self.concurrency)

    async def stop(self) -> None:
        """停止所有 worker

        正在下发的任务会被中断并保持 processing，由超时清理兜底。
        """
        if not self._running:
            return
        self._running = False
        self._wake.set()
        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        self._logger.info("queue_stopped")

    async def _worker_loop(self, index: int) -> None:
        while self._running:
            self._wake.clear()
            try:
                handled = await self.run_once()
            except Exception:
                self._logger.exception("queue_worker_error", worker=index)
                handled = False
            if handled:
                continue
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self._poll_interval_s)
            except TimeoutError:
                pass

    async def run_once(self) -> bool:
        """领取并处理一个任务

        Returns:
            True 表示领取到了任务
        """
        task = await claim_and_open_message(
            self._stores.conn,
            self._stores.write_lock,
            self._stores.task_store,
            self._stores.message_store,
            self.categories,
            utc_now(),
        )
        if task is None:
            return False
        await self.dispatch(task)
        return True

    async def dispatch(self, task: Task) -> None:
        """下发一个已领取（processing）的任务"""
        with task_log_context(task):
            await self._dispatch(task)

    async def _dispatch(self, task: Task) -> None:
        self._logger.info("task_dispatching", retry_count=task.retry_count)
        self._notifier.notify(
            task.owner_id,
            WebhookEvent.TASK_PROCESSING,
            task_event_data(task, status=TaskStatus.PROCESSING.value),
        )

        package = DevicePackage.NORMAL
        if task.device_id:
            device = await self._stores.device_registry.get_device(task.device_id)
            if device is not None:
                package = device.package

        try:
            instruction = translate(task, package)
        except (MalformedPayload, UnknownCategory) as e:
            await self._reconciler.fail_processing(task, e.message)
            return

        budget = task.max_retries - task.retry_count
        if budget <= 0:
            await self._reconciler.fail_processing(task, "retry budget exhausted")
            return

        last_error = ""
        for attempt in range(1, budget + 1):
            try:
                async with asyncio.timeout(self._delivery_timeout_s):
                    receipt = await self._channel.deliver(instruction, task.device_id)
            except TimeoutError:
                last_error = f"delivery timed out after {self._delivery_timeout_s}s"
            except DeliveryError as e:
                if not e.recoverable:
                    await self._reconciler.fail_processing(task, str(e))
                    return
                last_error = str(e)
            else:
                await self._on_delivered(task, receipt.channel, receipt.remote_message_id)
                return

            self._logger.warning(
                "dispatch_attempt_failed",
                attempt=attempt,
                budget=budget,
                error=last_error,
            )
            if attempt < budget:
                await self._sleep(backoff_delay_ms(attempt, self._backoff_base_ms) / 1000)

        await self._reconciler.fail_processing(task, last_error, retry_increment=budget)

    async def _on_delivered(
        self, task: Task, channel: str, remote_message_id: str | None
    ) -> None:
        if CATEGORY_COMPLETION[task.category] == CompletionMode.SYNC:
            result = {"channel": channel}
            if remote_message_id:
                result["remote_message_id"] = remote_message_id
            await self._reconciler.complete_sync(task, result)
            return
        self._logger.info("task_delivered_awaiting_callback", channel=channel)


class Dispatcher:
    """三个分类队列的组合"""

    def __init__(
        self,
        store_group: StoreGroup,
        reconciler: Reconciler,
        notifier: WebhookNotifier,
        channel: DeliveryChannel,
        *,
        concurrency: dict[QueueName, int] | None = None,
        delivery_timeout_s: float = 10,
        backoff_base_ms: int = DISPATCH_BACKOFF_BASE_MS,
        poll_interval_s: float = DISPATCH_POLL_INTERVAL_S,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        sizes = {**DEFAULT_CONCURRENCY, **(concurrency or {})}
        self.queues: dict[QueueName, CategoryQueue] = {
            name: CategoryQueue(
                name,
                store_group,
                reconciler,
                notifier,
                channel,
                sizes[name],
                delivery_timeout_s=delivery_timeout_s,
                backoff_base_ms=backoff_base_ms,
                poll_interval_s=poll_interval_s,
                sleep=sleep,
            )
            for name in QueueName
        }

    def queue_for(self, category: TaskCategory) -> CategoryQueue:
        return self.queues[CATEGORY_QUEUES[category]]

    def wake(self, category: TaskCategory) -> None:
        self.queue_for(category).wake()

    async def start(self) -> None:
        for queue in self.queues.values():
            await queue.start()

    async def stop(self) -> None:
        for queue in self.queues.values():
            await queue.stop()
