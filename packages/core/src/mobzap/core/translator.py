"""Task -> Instruction 翻译器

纯函数：把已持久化任务的分类 payload 转换为设备端代理可执行的扁平指令。
无副作用，不访问数据库，可直接单元测试。
"""

import re
from datetime import datetime

import structlog
from ulid import ULID

from .config import DEFAULT_COUNTRY_CODE
from .exceptions import MalformedPayload, UnknownCategory
from .models.enums import (
    CompletionMode,
    ContentType,
    DevicePackage,
    GroupAction,
    MessageDirection,
    MessageStatus,
    QueueName,
    TaskCategory,
)
from .models.instruction import (
    BulkInstruction,
    ChatInstruction,
    GroupInstruction,
    GroupMessageInstruction,
    Instruction,
    MediaInstruction,
)
from .models.message import Message
from .models.payloads import (
    BulkMessagePayload,
    GroupJoinPayload,
    GroupLeavePayload,
    GroupMessagePayload,
    MediaPayload,
    MessagePayload,
)
from .models.task import Task

log = structlog.get_logger()

_NON_DIGITS = re.compile(r"\D")

# 分类 -> 所属队列
CATEGORY_QUEUES: dict[TaskCategory, QueueName] = {
    TaskCategory.MESSAGE: QueueName.MESSAGE,
    TaskCategory.BULK_MESSAGE: QueueName.MESSAGE,
    TaskCategory.MEDIA: QueueName.MEDIA,
    TaskCategory.GROUP_JOIN: QueueName.GROUP,
    TaskCategory.GROUP_LEAVE: QueueName.GROUP,
    TaskCategory.GROUP_MESSAGE: QueueName.GROUP,
}

# 分类 -> 完成判定方式（推送模式下生效；拉取模式一律等待设备回执）
CATEGORY_COMPLETION: dict[TaskCategory, CompletionMode] = {
    TaskCategory.MESSAGE: CompletionMode.CALLBACK,
    TaskCategory.BULK_MESSAGE: CompletionMode.CALLBACK,
    TaskCategory.MEDIA: CompletionMode.CALLBACK,
    TaskCategory.GROUP_MESSAGE: CompletionMode.CALLBACK,
    TaskCategory.GROUP_JOIN: CompletionMode.SYNC,
    TaskCategory.GROUP_LEAVE: CompletionMode.SYNC,
}

# 会派生 outgoing Message 记录的分类
MESSAGE_CATEGORIES: set[TaskCategory] = {TaskCategory.MESSAGE, TaskCategory.MEDIA}


def categories_for_queue(queue: QueueName) -> list[TaskCategory]:
    """某个队列负责的任务分类"""
    return [c for c, q in CATEGORY_QUEUES.items() if q == queue]


def normalize_destination(phone: str, country_code: str = DEFAULT_COUNTRY_CODE) -> str:
    """号码规范化：去掉 JID 后缀（@c.us 等），只保留数字，缺少国家码时补齐

    幂等：对已规范化的号码再次调用结果不变。
    """
    cleaned = _NON_DIGITS.sub("", phone.split("@", 1)[0].split(":", 1)[0])
    if not cleaned.startswith(country_code):
        cleaned = country_code + cleaned
    return cleaned


def translate(
    task: Task,
    package: DevicePackage = DevicePackage.NORMAL,
) -> Instruction:
    """把任务翻译为设备指令

    Args:
        task: 已持久化的任务
        package: 目标设备的包类型

    Returns:
        对应 kind 的 Instruction

    Raises:
        MalformedPayload: payload 与分类不匹配
        UnknownCategory: 分类无法识别
    """
    payload = task.payload
    if payload.category != task.category.value:
        log.warning(
            "translate_payload_category_mismatch",
            task_id=task.task_id,
            category=task.category,
            payload_category=payload.category,
        )
        raise MalformedPayload(
            f"payload category {payload.category} does not match task category {task.category}"
        )

    match payload:
        case MessagePayload():
            return ChatInstruction(
                id=task.task_id,
                package=package,
                number=normalize_destination(payload.phone_number),
                text=payload.text,
                action=GroupAction.SEND,
            )
        case MediaPayload():
            return MediaInstruction(
                id=task.task_id,
                package=package,
                number=normalize_destination(payload.phone_number),
                url=payload.media_url,
                media_type=payload.media_type.value,
                text=payload.caption,
            )
        case GroupJoinPayload():
            return GroupInstruction(
                id=task.task_id,
                package=package,
                action=GroupAction.JOIN,
                link=payload.invite_link,
                text=payload.welcome_message,
            )
        case GroupLeavePayload():
            return GroupInstruction(
                id=task.task_id,
                package=package,
                action=GroupAction.LEAVE,
                group_id=payload.group_id,
            )
        case GroupMessagePayload():
            return GroupMessageInstruction(
                id=task.task_id,
                package=package,
                group_id=payload.group_id,
                text=payload.text,
            )
        case BulkMessagePayload():
            return BulkInstruction(
                id=task.task_id,
                package=package,
                numbers=[normalize_destination(n) for n in payload.phone_numbers],
                text=payload.text,
                delay=payload.delay_ms,
            )
        case _:
            log.warning("translate_unknown_category", task_id=task.task_id, category=task.category)
            raise UnknownCategory(str(task.category))


def outgoing_message(task: Task, now: datetime) -> Message | None:
    """message/media 任务派生的出站消息（pending 状态）；其他分类返回 None"""
    payload = task.payload
    match payload:
        case MessagePayload():
            content_type, content, media_url = ContentType.TEXT, payload.text, None
        case MediaPayload():
            content_type, content, media_url = (
                payload.media_type,
                payload.caption,
                payload.media_url,
            )
        case _:
            return None
    return Message(
        message_id=str(ULID()),
        owner_id=task.owner_id,
        device_id=task.device_id or "",
        task_id=task.task_id,
        direction=MessageDirection.OUTGOING,
        phone_number=normalize_destination(payload.phone_number),
        content_type=content_type,
        content=content,
        media_url=media_url,
        status=MessageStatus.PENDING,
        created_at=now,
        updated_at=now,
    )
