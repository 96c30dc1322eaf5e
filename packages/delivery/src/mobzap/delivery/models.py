"""数据模型 -- DeliveryReceipt 与下发通道接口"""

from typing import Protocol

from mobzap.core.models import Instruction
from pydantic import BaseModel, Field


class DeliveryReceipt(BaseModel):
    """一次下发的传输层结果

    accepted 只表示通道已接收指令，不代表设备已执行。
    """

    task_id: str = Field(description="来源任务 ID")
    device_id: str | None = Field(default=None, description="目标设备")
    channel: str = Field(description="下发通道（http / loopback）")
    accepted: bool = Field(default=True)
    remote_message_id: str | None = Field(default=None, description="通道返回的消息 ID")
    duration_ms: int = Field(default=0, ge=0, description="下发耗时（毫秒）")


class DeliveryChannel(Protocol):
    """向设备端代理下发指令的通道

    实现方在传输层失败时抛出 TransportFailure，
    通道明确拒绝时抛出 DeliveryRejected。
    """

    async def deliver(
        self, instruction: Instruction, device_id: str | None
    ) -> DeliveryReceipt: ...

    async def health_check(self) -> bool: ...

    async def aclose(self) -> None: ...
