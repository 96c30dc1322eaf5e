"""Message Domain Model

面向用户的通信记录：出站消息由 message/media 任务派生，
入站消息由设备推送产生。状态只前进不回退。
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from .enums import ContentType, MessageDirection, MessageStatus


class Message(BaseModel):
    """Message 数据模型

    同一任务最多对应一条 outgoing 消息。
    """

    message_id: str = Field(description="唯一标识，ULID 格式")
    owner_id: str = Field(description="所属用户")
    device_id: str = Field(description="收发设备")
    task_id: str | None = Field(default=None, description="来源任务，入站消息为空")
    direction: MessageDirection = Field(description="方向")
    phone_number: str = Field(description="对端号码（已规范化）")
    content_type: ContentType = Field(default=ContentType.TEXT, description="内容类型")
    content: str = Field(default="", description="文本内容或说明文字")
    media_url: str | None = Field(default=None, description="媒体 URL")
    status: MessageStatus = Field(default=MessageStatus.PENDING, description="当前状态")
    remote_id: str | None = Field(default=None, description="设备端消息 ID")
    delivered_at: datetime | None = Field(default=None, description="送达时间")
    read_at: datetime | None = Field(default=None, description="已读时间")
    error: str | None = Field(default=None, description="失败原因")
    metadata: dict[str, Any] = Field(default_factory=dict, description="附加信息")
    created_at: datetime = Field(description="创建时间")
    updated_at: datetime = Field(description="更新时间")


class InboundMessage(BaseModel):
    """设备推送的入站消息"""

    from_number: str = Field(alias="from", description="发送方号码")
    text: str = Field(default="", alias="message", description="文本内容")
    media_url: str | None = Field(default=None, description="媒体 URL")
    media_type: ContentType | None = Field(default=None, description="媒体类型")
    group_id: str | None = Field(default=None, description="群组 ID")
    timestamp: datetime = Field(description="设备端接收时间")
    is_forwarded: bool = Field(default=False, description="是否转发")
    quoted_message: dict[str, Any] | None = Field(default=None, description="引用消息")

    model_config = {"populate_by_name": True}
