"""LoopbackChannel 单元测试"""

import pytest
from mobzap.delivery import LoopbackChannel, TransportFailure


class TestLoopbackChannel:
    async def test_records_delivery(self, chat_instruction):
        channel = LoopbackChannel()
        receipt = await channel.deliver(chat_instruction, "device-1")

        assert receipt.channel == "loopback"
        assert receipt.task_id == chat_instruction.id
        assert channel.delivered == [("device-1", chat_instruction)]

    async def test_fail_first(self, chat_instruction):
        """前 N 次失败之后恢复正常"""
        channel = LoopbackChannel(fail_first=2, error="socket closed")

        for _ in range(2):
            with pytest.raises(TransportFailure, match="socket closed"):
                await channel.deliver(chat_instruction, "device-1")
        await channel.deliver(chat_instruction, "device-1")

        assert channel.attempts == 3
        assert len(channel.delivered) == 1
        assert await channel.health_check() is True
