"""apps/gateway 测试配置 -- FastAPI app + 服务组装 + webhook 接收端"""

import json
import os
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from mobzap.core.models import (
    Device,
    DevicePackage,
    DeviceStatus,
    WebhookEvent,
    WebhookSubscription,
)
from mobzap.core.store import StoreGroup, create_store_group
from mobzap.gateway.services.webhook_notifier import WebhookNotifier

OWNER_ID = "owner-1"
WEBHOOK_URL = "https://hooks.example.com/mobzap"
WEBHOOK_SECRET = "s3cret-key"
DEVICE_PHONE = "5511988887777"


class WebhookSink:
    """MockTransport 的接收端，记录所有 webhook 请求"""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.status_code = 200

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code)

    def events(self) -> list[str]:
        return [r.headers["X-Webhook-Event"] for r in self.requests]

    def bodies(self) -> list[dict]:
        return [json.loads(r.content) for r in self.requests]

    def clear(self) -> None:
        self.requests.clear()


@pytest_asyncio.fixture
async def store_group(tmp_path: Path) -> AsyncGenerator[StoreGroup, None]:
    sg = await create_store_group(str(tmp_path / "sqlite" / "test.db"))
    yield sg
    await sg.close()


@pytest.fixture
def webhook_sink() -> WebhookSink:
    return WebhookSink()


@pytest_asyncio.fixture
async def notifier(store_group: StoreGroup, webhook_sink: WebhookSink):
    """不启动 worker；测试通过 drain() 同步投递"""
    n = WebhookNotifier(store_group, transport=httpx.MockTransport(webhook_sink.handler))
    yield n
    await n.stop()


@pytest_asyncio.fixture
async def owner(store_group: StoreGroup) -> str:
    """持有无限额授权、订阅全部事件的 owner"""
    now = datetime.now(UTC)
    async with store_group.transaction():
        await store_group.license_gate.upsert_license(
            "lic-1", OWNER_ID, now + timedelta(days=30)
        )
        await store_group.webhook_store.create_webhook(
            WebhookSubscription(
                webhook_id="wh-1",
                owner_id=OWNER_ID,
                url=WEBHOOK_URL,
                events=[e.value for e in WebhookEvent],
                secret=WEBHOOK_SECRET,
                created_at=now,
                updated_at=now,
            )
        )
    return OWNER_ID


@pytest_asyncio.fixture
async def device(store_group: StoreGroup, owner: str) -> Device:
    now = datetime.now(UTC)
    registered = Device(
        device_id="device-1",
        owner_id=owner,
        phone_number=DEVICE_PHONE,
        package=DevicePackage.NORMAL,
        status=DeviceStatus.ACTIVE,
        is_connected=True,
        last_seen=now,
        created_at=now,
    )
    async with store_group.transaction():
        await store_group.device_registry.register_device(registered)
    return registered


@pytest_asyncio.fixture
async def test_app(tmp_path: Path, store_group: StoreGroup, notifier: WebhookNotifier):
    os.environ["MOBZAP_DB_PATH"] = str(tmp_path / "sqlite" / "test.db")
    os.environ["LOGFIRE_SEND_TO_LOGFIRE"] = "false"

    from mobzap.gateway.main import create_app, wire_services

    app = create_app()

    # 手动初始化（绕过 lifespan）
    wire_services(app, store_group, notifier=notifier)
    app.state.delivery_mode = "pull"

    yield app

    os.environ.pop("MOBZAP_DB_PATH", None)
    os.environ.pop("LOGFIRE_SEND_TO_LOGFIRE", None)


@pytest.fixture
def services(test_app):
    """已组装的服务集合（app.state）"""
    return test_app.state


@pytest_asyncio.fixture
async def client(test_app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=test_app),
        base_url="http://test",
        headers={"X-Owner-ID": OWNER_ID},
    ) as ac:
        yield ac
