"""Delivery 包测试 fixtures"""

import pytest
from mobzap.core.models import ChatInstruction


@pytest.fixture
def chat_instruction() -> ChatInstruction:
    """标准 chat 指令测试数据"""
    return ChatInstruction(id="01JTASK0001", number="5511999887766", text="hi")
