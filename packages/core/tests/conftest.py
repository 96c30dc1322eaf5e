"""packages/core 测试配置 -- 核心层 fixture"""

from collections.abc import AsyncGenerator, Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from mobzap.core.models import Task, TaskCategory, parse_payload
from mobzap.core.store import StoreGroup, create_store_group


@pytest_asyncio.fixture
async def store_group(tmp_db_path: Path) -> AsyncGenerator[StoreGroup, None]:
    """共享连接的 Store 实例组"""
    sg = await create_store_group(str(tmp_db_path))
    yield sg
    await sg.close()


_DEFAULT_PAYLOADS: dict[TaskCategory, dict[str, Any]] = {
    TaskCategory.MESSAGE: {"phone_number": "11999887766", "text": "hi"},
    TaskCategory.MEDIA: {
        "phone_number": "11999887766",
        "media_url": "https://cdn.example.com/a.jpg",
        "caption": "foto",
    },
    TaskCategory.GROUP_JOIN: {"invite_link": "https://chat.whatsapp.com/AbCdEf"},
    TaskCategory.GROUP_LEAVE: {"group_id": "120363000000@g.us"},
    TaskCategory.GROUP_MESSAGE: {"group_id": "120363000000@g.us", "text": "olá"},
    TaskCategory.BULK_MESSAGE: {
        "phone_numbers": ["11999880001", "11999880002", "11999880003"],
        "text": "promo",
        "delay_ms": 1000,
    },
}


@pytest.fixture
def make_task() -> Callable[..., Task]:
    """构造 Task 的工厂函数"""
    counter = iter(range(1, 10_000))

    def _make(
        category: TaskCategory = TaskCategory.MESSAGE,
        payload: dict[str, Any] | None = None,
        **overrides: Any,
    ) -> Task:
        now = overrides.pop("created_at", datetime.now(UTC))
        fields: dict[str, Any] = {
            "task_id": f"01JTASK{next(counter):019d}",
            "owner_id": "owner-1",
            "device_id": "device-1",
            "category": category,
            "payload": parse_payload(category, payload or _DEFAULT_PAYLOADS[category]),
            "created_at": now,
            "updated_at": now,
        }
        fields.update(overrides)
        return Task(**fields)

    return _make
