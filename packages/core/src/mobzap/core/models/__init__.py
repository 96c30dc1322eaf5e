"""MobZap Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .device import AutoResponderRule, Device, DeviceReport, DeviceSession
from .enums import (
    MESSAGE_STATUS_RANK,
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    CompletionMode,
    ContentType,
    DevicePackage,
    DeviceStatus,
    GroupAction,
    InstructionKind,
    MessageDirection,
    MessageStatus,
    OutcomeStatus,
    QueueName,
    TaskCategory,
    TaskStatus,
    WebhookEvent,
    can_advance_message,
    message_event_for,
    validate_transition,
)
from .instruction import (
    BulkInstruction,
    ChatInstruction,
    GroupInstruction,
    GroupMessageInstruction,
    Instruction,
    MediaInstruction,
)
from .message import InboundMessage, Message
from .outcome import DeliveryInfo, ProgressReport, ReconcileResult, TaskOutcome
from .payloads import (
    BulkMessagePayload,
    GroupJoinPayload,
    GroupLeavePayload,
    GroupMessagePayload,
    MediaPayload,
    MessagePayload,
    TaskPayload,
    parse_payload,
    payload_destination_count,
)
from .task import BulkProgress, Task
from .webhook import WebhookSubscription

__all__ = [
    # 枚举
    "TaskStatus",
    "TaskCategory",
    "QueueName",
    "CompletionMode",
    "InstructionKind",
    "GroupAction",
    "DevicePackage",
    "DeviceStatus",
    "MessageStatus",
    "MessageDirection",
    "ContentType",
    "OutcomeStatus",
    "WebhookEvent",
    # 状态机
    "VALID_TRANSITIONS",
    "TERMINAL_STATES",
    "MESSAGE_STATUS_RANK",
    "validate_transition",
    "can_advance_message",
    "message_event_for",
    # Task
    "Task",
    "BulkProgress",
    # Payloads
    "TaskPayload",
    "MessagePayload",
    "MediaPayload",
    "GroupJoinPayload",
    "GroupLeavePayload",
    "GroupMessagePayload",
    "BulkMessagePayload",
    "parse_payload",
    "payload_destination_count",
    # Instructions
    "Instruction",
    "ChatInstruction",
    "MediaInstruction",
    "GroupInstruction",
    "GroupMessageInstruction",
    "BulkInstruction",
    # Message
    "Message",
    "InboundMessage",
    # Outcome
    "TaskOutcome",
    "DeliveryInfo",
    "ProgressReport",
    "ReconcileResult",
    # Webhook
    "WebhookSubscription",
    # Device
    "Device",
    "DeviceReport",
    "DeviceSession",
    "AutoResponderRule",
]
