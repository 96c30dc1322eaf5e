"""设备回执模型 -- 对账器的输入与输出"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from .enums import OutcomeStatus


class DeliveryInfo(BaseModel):
    """送达元数据"""

    delivered: bool = Field(default=False)
    read: bool = Field(default=False)
    delivered_at: datetime | None = Field(default=None)
    read_at: datetime | None = Field(default=None)


class ProgressReport(BaseModel):
    """批量任务累计进度"""

    sent: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)


class TaskOutcome(BaseModel):
    """设备对某个任务的异步回执"""

    status: OutcomeStatus
    result: dict[str, Any] | None = Field(default=None, description="结果 payload")
    error: str | None = Field(default=None, description="失败原因")
    remote_message_id: str | None = Field(default=None, description="设备端消息 ID")
    delivery: DeliveryInfo | None = Field(default=None, description="送达元数据")
    progress: ProgressReport | None = Field(default=None, description="批量进度")
    timestamp: datetime | None = Field(default=None, description="设备端时间戳")


class ReconcileResult(BaseModel):
    """对账结果

    applied=False 表示空操作（重复回执、任务不存在等），调用方不应视为失败。
    """

    task_id: str
    applied: bool
    status: str | None = Field(default=None, description="对账后任务状态")
    reason: str = Field(default="", description="未应用的原因")
    message_status: str | None = Field(default=None, description="派生消息状态")
    events: list[str] = Field(default_factory=list, description="已触发的 webhook 事件")
