"""分类队列测试 -- 独占领取、优先级与 FIFO、重试退避、同步完成、超时"""

import asyncio
from datetime import timedelta

import pytest
from mobzap.core.models import QueueName, Task, TaskCategory, TaskStatus, parse_payload
from mobzap.core.timeutil import utc_now
from mobzap.delivery import DeliveryReceipt, DeliveryRejected, LoopbackChannel
from mobzap.gateway.services.dispatch_queue import CategoryQueue, Dispatcher, backoff_delay_ms

CHAT_PAYLOAD = {"phone_number": "11999887766", "text": "hi"}


class SleepRecorder:
    """替代 asyncio.sleep，只记录退避时长"""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class RejectingChannel(LoopbackChannel):
    async def deliver(self, instruction, device_id):
        self.attempts += 1
        raise DeliveryRejected(422, "unsupported instruction")


class SlowChannel(LoopbackChannel):
    async def deliver(self, instruction, device_id) -> DeliveryReceipt:
        self.attempts += 1
        await asyncio.sleep(1)
        return await super().deliver(instruction, device_id)


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def make_queue(services, notifier, sleeper):
    def _make(name: QueueName, channel, **options) -> CategoryQueue:
        return CategoryQueue(
            name,
            services.store_group,
            services.reconciler,
            notifier,
            channel,
            concurrency=1,
            sleep=sleeper,
            **options,
        )

    return _make


async def _create(services, category: str = "message", payload: dict | None = None, **kwargs):
    return await services.task_service.create_task(
        "owner-1", category, payload or CHAT_PAYLOAD, device_id="device-1", **kwargs
    )


def test_backoff_schedule():
    assert [backoff_delay_ms(n) for n in (1, 2, 3)] == [2000, 4000, 8000]
    assert backoff_delay_ms(2, base_ms=100) == 200


class TestDelivery:
    async def test_callback_category_stays_processing(
        self, services, device, make_queue, notifier, webhook_sink
    ):
        channel = LoopbackChannel()
        queue = make_queue(QueueName.MESSAGE, channel)
        task = await _create(services)

        assert await queue.run_once() is True
        await notifier.drain()

        stored = await services.store_group.task_store.get_task(task.task_id)
        assert stored.status == TaskStatus.PROCESSING
        assert stored.executed_at is not None
        device_id, instruction = channel.delivered[0]
        assert device_id == "device-1"
        assert instruction.kind == "chat"
        assert instruction.number == "5511999887766"
        assert webhook_sink.events() == ["task.created", "task.processing"]

        message = await services.store_group.message_store.get_outgoing_for_task(task.task_id)
        assert message.status == "pending"

    async def test_sync_category_completes_on_handoff(self, services, device, make_queue):
        channel = LoopbackChannel()
        queue = make_queue(QueueName.GROUP, channel)
        task = await _create(
            services, "group-join", {"invite_link": "https://chat.whatsapp.com/AbCdEf"}
        )

        await queue.run_once()

        stored = await services.store_group.task_store.get_task(task.task_id)
        assert stored.status == TaskStatus.COMPLETED
        assert stored.result == {"channel": "loopback"}

    async def test_queue_only_claims_its_categories(self, services, device, make_queue):
        queue = make_queue(QueueName.MEDIA, LoopbackChannel())
        await _create(services)
        assert await queue.run_once() is False

    async def test_future_task_not_claimed(self, services, device, make_queue):
        queue = make_queue(QueueName.MESSAGE, LoopbackChannel())
        await _create(services, scheduled_at=utc_now() + timedelta(hours=1))
        assert await queue.run_once() is False


class TestOrdering:
    async def test_priority_then_fifo(self, services, device, make_queue):
        channel = LoopbackChannel()
        queue = make_queue(QueueName.MESSAGE, channel)
        first = await _create(services)
        second = await _create(services)
        urgent = await _create(services, priority=9)

        while await queue.run_once():
            pass

        order = [instruction.id for _, instruction in channel.delivered]
        assert order == [urgent.task_id, first.task_id, second.task_id]


class TestRetry:
    async def test_recovers_within_budget(self, services, device, make_queue, sleeper):
        channel = LoopbackChannel(fail_first=2)
        queue = make_queue(QueueName.MESSAGE, channel)
        task = await _create(services)

        await queue.run_once()

        assert channel.attempts == 3
        assert sleeper.delays == [2.0, 4.0]
        stored = await services.store_group.task_store.get_task(task.task_id)
        assert stored.status == TaskStatus.PROCESSING
        assert stored.retry_count == 0

    async def test_exhausted_budget_fails_once(
        self, services, device, make_queue, sleeper, notifier, webhook_sink
    ):
        channel = LoopbackChannel(fail_first=10, error="socket closed")
        queue = make_queue(QueueName.MESSAGE, channel)
        task = await _create(services, max_retries=3)

        await queue.run_once()
        await notifier.drain()

        assert channel.attempts == 3
        assert sleeper.delays == [2.0, 4.0]
        stored = await services.store_group.task_store.get_task(task.task_id)
        assert stored.status == TaskStatus.FAILED
        assert stored.retry_count == stored.max_retries == 3
        assert stored.error == "Delivery endpoint unreachable: loopback -- socket closed"
        assert webhook_sink.events().count("task.failed") == 1
        message = await services.store_group.message_store.get_outgoing_for_task(task.task_id)
        assert message.status == "failed"

    async def test_rejection_is_not_retried(self, services, device, make_queue, sleeper):
        channel = RejectingChannel()
        queue = make_queue(QueueName.MESSAGE, channel)
        task = await _create(services)

        await queue.run_once()

        assert channel.attempts == 1
        assert sleeper.delays == []
        stored = await services.store_group.task_store.get_task(task.task_id)
        assert stored.status == TaskStatus.FAILED
        assert stored.retry_count == 0
        assert "HTTP 422" in stored.error

    async def test_timeout_is_a_transport_failure(self, services, device, make_queue):
        channel = SlowChannel()
        queue = make_queue(QueueName.MESSAGE, channel, delivery_timeout_s=0.01)
        task = await _create(services, max_retries=2)

        await queue.run_once()

        assert channel.attempts == 2
        assert channel.delivered == []
        stored = await services.store_group.task_store.get_task(task.task_id)
        assert stored.status == TaskStatus.FAILED
        assert stored.retry_count == 2
        assert stored.error == "delivery timed out after 0.01s"

    async def test_translation_error_fails_without_retry(self, services, device, make_queue):
        channel = LoopbackChannel()
        queue = make_queue(QueueName.MESSAGE, channel)
        now = utc_now()
        # category 与 payload 不一致的历史脏数据
        broken = Task(
            task_id="01JBROKEN00000000000000000",
            owner_id="owner-1",
            device_id="device-1",
            category=TaskCategory.MESSAGE,
            payload=parse_payload("group-leave", {"group_id": "120363@g.us"}),
            created_at=now,
            updated_at=now,
        )
        async with services.store_group.transaction():
            await services.store_group.task_store.create_task(broken)

        await queue.run_once()

        assert channel.attempts == 0
        stored = await services.store_group.task_store.get_task(broken.task_id)
        assert stored.status == TaskStatus.FAILED
        assert stored.retry_count == 0


class TestDispatcher:
    async def test_workers_deliver_each_task_once(self, services, device, notifier):
        channel = LoopbackChannel()
        dispatcher = Dispatcher(
            services.store_group,
            services.reconciler,
            notifier,
            channel,
            concurrency={QueueName.MESSAGE: 4},
            poll_interval_s=0.05,
        )
        services.task_service.attach_dispatcher(dispatcher)
        await dispatcher.start()
        try:
            created = [await _create(services) for _ in range(8)]
            async with asyncio.timeout(5):
                while len(channel.delivered) < len(created):
                    await asyncio.sleep(0.01)
        finally:
            await dispatcher.stop()

        delivered_ids = [instruction.id for _, instruction in channel.delivered]
        assert sorted(delivered_ids) == sorted(t.task_id for t in created)
        assert len(set(delivered_ids)) == len(created)

    async def test_wake_routes_by_category(self, services, notifier):
        dispatcher = Dispatcher(services.store_group, services.reconciler, notifier, LoopbackChannel())
        assert dispatcher.queue_for(TaskCategory.BULK_MESSAGE).name == QueueName.MESSAGE
        assert dispatcher.queue_for(TaskCategory.GROUP_LEAVE).name == QueueName.GROUP
        assert dispatcher.queues[QueueName.MEDIA].concurrency == 5
