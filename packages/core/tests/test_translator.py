"""Translator 单元测试 -- 纯函数，不需要数据库"""

import pytest
from mobzap.core.exceptions import MalformedPayload
from mobzap.core.models import (
    BulkInstruction,
    ChatInstruction,
    DevicePackage,
    GroupInstruction,
    GroupMessageInstruction,
    MediaInstruction,
    MessageStatus,
    QueueName,
    TaskCategory,
    parse_payload,
)
from mobzap.core.translator import (
    CATEGORY_QUEUES,
    categories_for_queue,
    normalize_destination,
    outgoing_message,
    translate,
)


class TestNormalizeDestination:
    """号码规范化"""

    def test_adds_country_code(self):
        assert normalize_destination("11999887766") == "5511999887766"

    def test_strips_formatting(self):
        assert normalize_destination("+55 (11) 99988-7766") == "5511999887766"

    @pytest.mark.parametrize(
        "raw", ["11999887766", "+55 11 99988-7766", "5511999887766", "(21) 3333-4444"]
    )
    def test_idempotent(self, raw: str):
        once = normalize_destination(raw)
        assert normalize_destination(once) == once

    def test_strips_jid_suffix(self):
        assert normalize_destination("5511977776666@c.us") == "5511977776666"
        assert normalize_destination("5511977776666:12@s.whatsapp.net") == "5511977776666"

    def test_custom_country_code(self):
        assert normalize_destination("2025550123", country_code="1") == "12025550123"


class TestTranslate:
    """按分类生成指令"""

    def test_message_to_chat(self, make_task):
        task = make_task(TaskCategory.MESSAGE)
        instruction = translate(task)
        assert isinstance(instruction, ChatInstruction)
        assert instruction.kind == "chat"
        assert instruction.id == task.task_id
        assert instruction.number == "5511999887766"
        assert instruction.text == "hi"
        assert instruction.action == "send"

    def test_message_destination_is_idempotent(self, make_task):
        instruction = translate(make_task(TaskCategory.MESSAGE))
        assert normalize_destination(instruction.number) == instruction.number

    def test_media(self, make_task):
        instruction = translate(make_task(TaskCategory.MEDIA))
        assert isinstance(instruction, MediaInstruction)
        assert instruction.url == "https://cdn.example.com/a.jpg"
        assert instruction.media_type == "image"
        assert instruction.text == "foto"

    def test_group_join_and_leave(self, make_task):
        join = translate(make_task(TaskCategory.GROUP_JOIN))
        leave = translate(make_task(TaskCategory.GROUP_LEAVE))
        assert isinstance(join, GroupInstruction)
        assert join.action == "join"
        assert join.link == "https://chat.whatsapp.com/AbCdEf"
        assert isinstance(leave, GroupInstruction)
        assert leave.action == "leave"
        assert leave.group_id == "120363000000@g.us"

    def test_group_message(self, make_task):
        instruction = translate(make_task(TaskCategory.GROUP_MESSAGE))
        assert isinstance(instruction, GroupMessageInstruction)
        assert instruction.kind == "group_message"

    def test_bulk(self, make_task):
        instruction = translate(make_task(TaskCategory.BULK_MESSAGE))
        assert isinstance(instruction, BulkInstruction)
        assert instruction.numbers == ["5511999880001", "5511999880002", "5511999880003"]
        assert instruction.delay == 1000

    def test_business_package(self, make_task):
        instruction = translate(make_task(), package=DevicePackage.BUSINESS)
        assert instruction.package == "business"

    def test_instruction_is_flat(self, make_task):
        """指令只包含原始类型字段"""
        dumped = translate(make_task(TaskCategory.BULK_MESSAGE)).model_dump(mode="json")
        for value in dumped.values():
            assert isinstance(value, str | int | list)

    def test_payload_category_mismatch(self, make_task):
        task = make_task(TaskCategory.MESSAGE)
        bad = task.model_copy(
            update={"payload": parse_payload("group-leave", {"group_id": "g"})}
        )
        with pytest.raises(MalformedPayload):
            translate(bad)


class TestQueuesAndMessages:
    def test_every_category_has_a_queue(self):
        assert set(CATEGORY_QUEUES) == set(TaskCategory)

    def test_group_queue_categories(self):
        assert set(categories_for_queue(QueueName.GROUP)) == {
            TaskCategory.GROUP_JOIN,
            TaskCategory.GROUP_LEAVE,
            TaskCategory.GROUP_MESSAGE,
        }

    def test_outgoing_message_for_message_task(self, make_task):
        task = make_task(TaskCategory.MESSAGE)
        message = outgoing_message(task, task.created_at)
        assert message is not None
        assert message.status == MessageStatus.PENDING
        assert message.phone_number == "5511999887766"
        assert message.task_id == task.task_id

    def test_no_outgoing_message_for_group_task(self, make_task):
        task = make_task(TaskCategory.GROUP_MESSAGE)
        assert outgoing_message(task, task.created_at) is None
