"""枚举定义 -- 任务状态机、任务分类、消息状态、指令类型与 webhook 事件名

包含 TaskStatus 状态机、VALID_TRANSITIONS 合法流转映射、TERMINAL_STATES 终态集合，
以及消息状态的单调推进规则。
"""

from enum import StrEnum


class TaskStatus(StrEnum):
    """Task 状态机"""

    PENDING = "pending"
    PROCESSING = "processing"

    # 终态
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


# 合法状态流转：只能前进，不支持抢占正在执行的任务
VALID_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.PENDING: {TaskStatus.PROCESSING, TaskStatus.CANCELLED},
    TaskStatus.PROCESSING: {TaskStatus.COMPLETED, TaskStatus.FAILED},
    TaskStatus.COMPLETED: set(),
    TaskStatus.FAILED: set(),
    TaskStatus.CANCELLED: set(),
}

TERMINAL_STATES: set[TaskStatus] = {
    TaskStatus.COMPLETED,
    TaskStatus.FAILED,
    TaskStatus.CANCELLED,
}


class TaskCategory(StrEnum):
    """任务分类"""

    MESSAGE = "message"
    MEDIA = "media"
    GROUP_JOIN = "group-join"
    GROUP_LEAVE = "group-leave"
    GROUP_MESSAGE = "group-message"
    BULK_MESSAGE = "bulk-message"


class QueueName(StrEnum):
    """分类队列名"""

    MESSAGE = "message"
    MEDIA = "media"
    GROUP = "group"


class CompletionMode(StrEnum):
    """完成判定方式

    CALLBACK: 传输交付只代表已下发，需等待设备回执才能完成
    SYNC: 传输调用本身即权威结果，交付成功即完成
    """

    CALLBACK = "callback"
    SYNC = "sync"


class InstructionKind(StrEnum):
    """设备端指令类型"""

    CHAT = "chat"
    MEDIA = "media"
    GROUP = "group"
    GROUP_MESSAGE = "group_message"
    BULK = "bulk"


class GroupAction(StrEnum):
    SEND = "send"
    JOIN = "join"
    LEAVE = "leave"


class DevicePackage(StrEnum):
    """设备上的 WhatsApp 包类型"""

    NORMAL = "normal"
    BUSINESS = "business"


class DeviceStatus(StrEnum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    DISCONNECTED = "DISCONNECTED"


class MessageStatus(StrEnum):
    """Message 状态 -- pending < sent < delivered < read，failed 为旁路终态"""

    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


class MessageDirection(StrEnum):
    OUTGOING = "outgoing"
    INCOMING = "incoming"


class ContentType(StrEnum):
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"


class OutcomeStatus(StrEnum):
    """设备回执中的结果状态"""

    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class WebhookEvent(StrEnum):
    """Webhook 事件名"""

    TASK_CREATED = "task.created"
    TASK_PROCESSING = "task.processing"
    TASK_COMPLETED = "task.completed"
    TASK_FAILED = "task.failed"
    TASK_CANCELLED = "task.cancelled"
    MESSAGE_SENT = "message.sent"
    MESSAGE_DELIVERED = "message.delivered"
    MESSAGE_READ = "message.read"
    MESSAGE_FAILED = "message.failed"
    MESSAGE_RECEIVED = "message.received"
    DEVICE_CONNECTED = "device.connected"
    DEVICE_DISCONNECTED = "device.disconnected"


# 消息状态推进顺序；FAILED 不参与排序
MESSAGE_STATUS_RANK: dict[MessageStatus, int] = {
    MessageStatus.PENDING: 0,
    MessageStatus.SENT: 1,
    MessageStatus.DELIVERED: 2,
    MessageStatus.READ: 3,
}

# 允许转为 FAILED 的消息状态
MESSAGE_FAILABLE: set[MessageStatus] = {MessageStatus.PENDING, MessageStatus.SENT}


def validate_transition(from_status: TaskStatus, to_status: TaskStatus) -> bool:
    """验证任务状态流转是否合法

    Args:
        from_status: 当前状态
        to_status: 目标状态

    Returns:
        True 如果流转合法，否则 False
    """
    allowed = VALID_TRANSITIONS.get(from_status, set())
    return to_status in allowed


def can_advance_message(current: MessageStatus, target: MessageStatus) -> bool:
    """判断消息状态能否从 current 推进到 target（不允许回退）"""
    if current == MessageStatus.FAILED:
        return False
    if target == MessageStatus.FAILED:
        return current in MESSAGE_FAILABLE
    return MESSAGE_STATUS_RANK[target] > MESSAGE_STATUS_RANK[current]


def message_event_for(status: MessageStatus) -> WebhookEvent | None:
    """消息状态对应的 webhook 事件名"""
    return {
        MessageStatus.SENT: WebhookEvent.MESSAGE_SENT,
        MessageStatus.DELIVERED: WebhookEvent.MESSAGE_DELIVERED,
        MessageStatus.READ: WebhookEvent.MESSAGE_READ,
        MessageStatus.FAILED: WebhookEvent.MESSAGE_FAILED,
    }.get(status)
