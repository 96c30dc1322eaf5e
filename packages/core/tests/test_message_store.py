"""MessageStore 测试 -- 出站消息唯一性与状态不回退"""

from datetime import UTC, datetime

from mobzap.core.models import MessageStatus
from mobzap.core.translator import outgoing_message


async def _open_message(store_group, make_task):
    task = make_task()
    now = datetime.now(UTC)
    async with store_group.transaction():
        await store_group.task_store.create_task(task)
        message = await store_group.message_store.create_outgoing_if_absent(
            outgoing_message(task, now)
        )
    return task, message


class TestOutgoingUniqueness:
    async def test_create_if_absent_returns_existing(self, store_group, make_task):
        task, first = await _open_message(store_group, make_task)
        now = datetime.now(UTC)

        async with store_group.transaction():
            second = await store_group.message_store.create_outgoing_if_absent(
                outgoing_message(task, now)
            )

        assert second.message_id == first.message_id
        assert len(await store_group.message_store.list_for_task(task.task_id)) == 1


class TestNoRegression:
    """消息状态一旦 read 不能回到 sent/delivered"""

    async def test_read_is_final(self, store_group, make_task):
        _, message = await _open_message(store_group, make_task)
        store = store_group.message_store
        now = datetime.now(UTC)

        async with store_group.transaction():
            assert await store.advance_status(message.message_id, MessageStatus.SENT, now)
            assert await store.advance_status(
                message.message_id, MessageStatus.READ, now, read_at=now
            )
            assert not await store.advance_status(
                message.message_id, MessageStatus.DELIVERED, now, delivered_at=now
            )
            assert not await store.advance_status(message.message_id, MessageStatus.SENT, now)
            assert not await store.mark_failed(message.message_id, "late failure", now)

        stored = await store.get_message(message.message_id)
        assert stored.status == MessageStatus.READ
        assert stored.read_at is not None
        assert stored.error is None

    async def test_failed_from_pending(self, store_group, make_task):
        _, message = await _open_message(store_group, make_task)
        store = store_group.message_store
        now = datetime.now(UTC)

        async with store_group.transaction():
            assert await store.mark_failed(message.message_id, "number not on whatsapp", now)
            assert not await store.advance_status(message.message_id, MessageStatus.SENT, now)

        stored = await store.get_message(message.message_id)
        assert stored.status == MessageStatus.FAILED
        assert stored.error == "number not on whatsapp"

    async def test_remote_id_recorded(self, store_group, make_task):
        _, message = await _open_message(store_group, make_task)
        now = datetime.now(UTC)

        async with store_group.transaction():
            await store_group.message_store.advance_status(
                message.message_id, MessageStatus.DELIVERED, now, remote_id="wamid.1", delivered_at=now
            )

        stored = await store_group.message_store.get_message(message.message_id)
        assert stored.remote_id == "wamid.1"
        assert stored.delivered_at is not None
