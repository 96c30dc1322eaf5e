"""Task Payload 标签联合 -- 按 category 区分的结构化 payload

每个分类只携带自身需要的字段，在任务创建时完成校验，
翻译器只面对已校验的强类型 payload。
"""

import re
from typing import Annotated, Any, Literal

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
)

from ..config import DEFAULT_BULK_DELAY_MS
from ..exceptions import MalformedPayload, UnknownCategory
from .enums import ContentType, TaskCategory

_PHONE_CHARS = re.compile(r"^\+?[\d\s().-]+$")


def _check_phone(value: str) -> str:
    digits = re.sub(r"\D", "", value)
    if not _PHONE_CHARS.match(value) or not 2 <= len(digits) <= 15 or digits[0] == "0":
        raise ValueError(f"invalid phone number: {value!r}")
    return value


PhoneNumber = Annotated[str, AfterValidator(_check_phone)]


class _PayloadBase(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


class MessagePayload(_PayloadBase):
    """单条文本消息"""

    category: Literal["message"] = "message"
    phone_number: PhoneNumber = Field(description="目标号码")
    text: str = Field(min_length=1, max_length=4096, description="消息文本")


class MediaPayload(_PayloadBase):
    """媒体消息"""

    category: Literal["media"] = "media"
    phone_number: PhoneNumber = Field(description="目标号码")
    media_url: str = Field(pattern=r"^https?://", description="媒体 URL")
    media_type: ContentType = Field(default=ContentType.IMAGE, description="媒体类型")
    caption: str = Field(default="", max_length=1024, description="说明文字")

    @field_validator("media_type")
    @classmethod
    def _not_text(cls, value: ContentType) -> ContentType:
        if value == ContentType.TEXT:
            raise ValueError("media_type cannot be text")
        return value


class GroupJoinPayload(_PayloadBase):
    """通过邀请链接加入群组"""

    category: Literal["group-join"] = "group-join"
    invite_link: str = Field(pattern=r"^https?://", description="群邀请链接")
    welcome_message: str = Field(default="", description="入群后发送的欢迎语")


class GroupLeavePayload(_PayloadBase):
    """退出群组"""

    category: Literal["group-leave"] = "group-leave"
    group_id: str = Field(min_length=1, description="群组 ID")


class GroupMessagePayload(_PayloadBase):
    """群消息"""

    category: Literal["group-message"] = "group-message"
    group_id: str = Field(min_length=1, description="群组 ID")
    text: str = Field(min_length=1, max_length=4096, description="消息文本")


class BulkMessagePayload(_PayloadBase):
    """批量群发：同一文本发往多个号码，号码之间间隔 delay_ms"""

    category: Literal["bulk-message"] = "bulk-message"
    phone_numbers: list[PhoneNumber] = Field(min_length=1, max_length=1000, description="目标号码列表")
    text: str = Field(min_length=1, max_length=4096, description="消息文本")
    delay_ms: int = Field(
        default=DEFAULT_BULK_DELAY_MS,
        ge=1000,
        le=60000,
        description="两次发送之间的间隔（毫秒）",
    )


TaskPayload = Annotated[
    MessagePayload
    | MediaPayload
    | GroupJoinPayload
    | GroupLeavePayload
    | GroupMessagePayload
    | BulkMessagePayload,
    Field(discriminator="category"),
]

_payload_adapter: TypeAdapter[TaskPayload] = TypeAdapter(TaskPayload)


def parse_payload(category: str, data: dict[str, Any]) -> TaskPayload:
    """校验并构造分类 payload

    Args:
        category: 任务分类字符串
        data: 原始 payload 字段

    Returns:
        对应分类的 payload 实例

    Raises:
        UnknownCategory: 分类无法识别
        MalformedPayload: 字段缺失或类型不符
    """
    try:
        resolved = TaskCategory(category)
    except ValueError:
        raise UnknownCategory(category) from None

    if not isinstance(data, dict):
        raise MalformedPayload("payload must be an object")

    try:
        return _payload_adapter.validate_python({**data, "category": resolved.value})
    except ValidationError as e:
        errors = [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in e.errors(include_url=False)
        ]
        raise MalformedPayload(
            f"Malformed {category} payload", errors=errors
        ) from e


def payload_destination_count(payload: TaskPayload) -> int:
    """payload 会产生的消息条数（配额计算用）"""
    if isinstance(payload, BulkMessagePayload):
        return len(payload.phone_numbers)
    if isinstance(payload, GroupJoinPayload | GroupLeavePayload):
        return 0
    return 1
