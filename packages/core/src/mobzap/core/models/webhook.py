"""Webhook 订阅模型"""

from datetime import datetime

from pydantic import BaseModel, Field


class WebhookSubscription(BaseModel):
    """用户注册的 webhook 投递目标

    consecutive_failures 达到阈值后 active 置为 False，直到手动重新激活。
    """

    webhook_id: str = Field(description="唯一标识，ULID 格式")
    owner_id: str = Field(description="所属用户")
    url: str = Field(description="投递 URL")
    events: list[str] = Field(description="订阅的事件名")
    secret: str = Field(description="签名密钥")
    active: bool = Field(default=True)
    consecutive_failures: int = Field(default=0, ge=0)
    last_triggered_at: datetime | None = Field(default=None)
    created_at: datetime
    updated_at: datetime
