"""LoopbackChannel -- 本地回环下发通道

不经过网络，直接记录下发的指令。开发模式和测试中替代设备网关；
可配置前 N 次下发失败，用于演练重试与退避。
"""

import asyncio

from mobzap.core.models import Instruction

from .exceptions import TransportFailure
from .models import DeliveryReceipt


class LoopbackChannel:
    """记录式下发通道"""

    def __init__(self, fail_first: int = 0, error: str = "loopback transport failure") -> None:
        """
        Args:
            fail_first: 前 N 次下发抛出 TransportFailure
            error: 注入失败时的错误描述
        """
        self._fail_remaining = fail_first
        self._error = error
        self.delivered: list[tuple[str | None, Instruction]] = []
        self.attempts = 0

    async def deliver(
        self, instruction: Instruction, device_id: str | None
    ) -> DeliveryReceipt:
        self.attempts += 1
        # 让出事件循环
        await asyncio.sleep(0)
        if self._fail_remaining > 0:
            self._fail_remaining -= 1
            raise TransportFailure("loopback", self._error)
        self.delivered.append((device_id, instruction))
        return DeliveryReceipt(
            task_id=instruction.id,
            device_id=device_id,
            channel="loopback",
        )

    async def health_check(self) -> bool:
        return True

    async def aclose(self) -> None:
        return None
