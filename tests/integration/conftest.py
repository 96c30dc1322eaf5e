"""集成测试共享 fixture"""

import json
import os
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from mobzap.core.models import WebhookEvent, WebhookSubscription
from mobzap.core.store import create_store_group
from mobzap.delivery import LoopbackChannel
from mobzap.gateway.services.webhook_notifier import WebhookNotifier

OWNER_ID = "owner-1"
DEVICE_PHONE = "5511988887777"


class WebhookRecorder:
    """记录发往 owner 回调地址的所有 webhook"""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.status_code = 200

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code)

    def events(self) -> list[str]:
        return [r.headers["X-Webhook-Event"] for r in self.requests]

    def bodies(self, event: str) -> list[dict]:
        return [
            json.loads(r.content)
            for r in self.requests
            if r.headers["X-Webhook-Event"] == event
        ]


@pytest.fixture
def webhooks() -> WebhookRecorder:
    return WebhookRecorder()


async def _build_app(
    tmp_path: Path, recorder: WebhookRecorder, channel: LoopbackChannel | None = None
):
    os.environ["MOBZAP_DB_PATH"] = str(tmp_path / "test.db")
    os.environ["LOGFIRE_SEND_TO_LOGFIRE"] = "false"

    from mobzap.gateway.main import create_app, wire_services

    app = create_app()

    store_group = await create_store_group(str(tmp_path / "test.db"))
    notifier = WebhookNotifier(store_group, transport=httpx.MockTransport(recorder.handler))
    wire_services(
        app,
        store_group,
        delivery_channel=channel,
        notifier=notifier,
        backoff_base_ms=1,
    )
    app.state.delivery_mode = "loopback" if channel is not None else "pull"

    now = datetime.now(UTC)
    async with store_group.transaction():
        await store_group.license_gate.upsert_license(
            "lic-1", OWNER_ID, now + timedelta(days=30)
        )
        await store_group.webhook_store.create_webhook(
            WebhookSubscription(
                webhook_id="wh-1",
                owner_id=OWNER_ID,
                url="https://hooks.example.com/mobzap",
                events=[e.value for e in WebhookEvent],
                secret="integration-secret",
                created_at=now,
                updated_at=now,
            )
        )
    return app


async def _teardown(app) -> None:
    await app.state.notifier.stop()
    await app.state.store_group.close()
    os.environ.pop("MOBZAP_DB_PATH", None)
    os.environ.pop("LOGFIRE_SEND_TO_LOGFIRE", None)


@pytest_asyncio.fixture
async def integration_app(tmp_path: Path, webhooks: WebhookRecorder):
    """拉取模式：设备通过 /api/devices/fetch 取指令"""
    app = await _build_app(tmp_path, webhooks)
    yield app
    await _teardown(app)


@pytest.fixture
def loopback() -> LoopbackChannel:
    """推送模式下的下发通道，测试模块可覆盖以注入失败"""
    return LoopbackChannel()


@pytest_asyncio.fixture
async def push_app(tmp_path: Path, webhooks: WebhookRecorder, loopback: LoopbackChannel):
    """推送模式：回环通道 + 分类队列（worker 不启动，测试手动 run_once）"""
    app = await _build_app(tmp_path, webhooks, channel=loopback)
    yield app
    await _teardown(app)


@pytest_asyncio.fixture
async def client(integration_app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=integration_app),
        base_url="http://test",
        headers={"X-Owner-ID": OWNER_ID},
    ) as ac:
        yield ac


@pytest_asyncio.fixture
async def push_client(push_app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=push_app),
        base_url="http://test",
        headers={"X-Owner-ID": OWNER_ID},
    ) as ac:
        yield ac
