"""Webhook 订阅管理路由

POST /api/webhooks: 注册（未提供 secret 时自动生成）
GET /api/webhooks: 列表
DELETE /api/webhooks/{webhook_id}: 删除
POST /api/webhooks/{webhook_id}/reactivate: 重新启用并清零失败计数
"""

import secrets

import structlog
from fastapi import APIRouter, Depends
from mobzap.core.exceptions import NotFound
from mobzap.core.models import WebhookEvent, WebhookSubscription
from mobzap.core.store import StoreGroup
from mobzap.core.timeutil import utc_now
from pydantic import BaseModel, Field, HttpUrl
from starlette.responses import JSONResponse, Response
from ulid import ULID

from ..deps import get_owner_id, get_store_group

log = structlog.get_logger()

router = APIRouter()


class CreateWebhookRequest(BaseModel):
    url: HttpUrl
    events: list[WebhookEvent] = Field(min_length=1)
    secret: str | None = Field(default=None, min_length=8)


@router.post("/api/webhooks")
async def create_webhook(
    body: CreateWebhookRequest,
    owner_id: str = Depends(get_owner_id),
    store_group: StoreGroup = Depends(get_store_group),
):
    now = utc_now()
    webhook = WebhookSubscription(
        webhook_id=str(ULID()),
        owner_id=owner_id,
        url=str(body.url),
        events=[e.value for e in body.events],
        secret=body.secret or secrets.token_hex(32),
        created_at=now,
        updated_at=now,
    )
    async with store_group.transaction():
        await store_group.webhook_store.create_webhook(webhook)
    log.info("webhook_registered", webhook_id=webhook.webhook_id, events=webhook.events)
    return JSONResponse(status_code=201, content=webhook.model_dump(mode="json"))


@router.get("/api/webhooks")
async def list_webhooks(
    owner_id: str = Depends(get_owner_id),
    store_group: StoreGroup = Depends(get_store_group),
):
    """列表不返回 secret"""
    webhooks = await store_group.webhook_store.list_webhooks(owner_id)
    return {"webhooks": [w.model_dump(mode="json", exclude={"secret"}) for w in webhooks]}


@router.delete("/api/webhooks/{webhook_id}")
async def delete_webhook(
    webhook_id: str,
    owner_id: str = Depends(get_owner_id),
    store_group: StoreGroup = Depends(get_store_group),
):
    async with store_group.transaction():
        deleted = await store_group.webhook_store.delete_webhook(webhook_id, owner_id)
    if not deleted:
        raise NotFound("Webhook", webhook_id)
    log.info("webhook_deleted", webhook_id=webhook_id)
    return Response(status_code=204)


@router.post("/api/webhooks/{webhook_id}/reactivate")
async def reactivate_webhook(
    webhook_id: str,
    owner_id: str = Depends(get_owner_id),
    store_group: StoreGroup = Depends(get_store_group),
):
    async with store_group.transaction():
        updated = await store_group.webhook_store.reactivate(webhook_id, owner_id, utc_now())
    if not updated:
        raise NotFound("Webhook", webhook_id)
    webhook = await store_group.webhook_store.get_webhook(webhook_id)
    log.info("webhook_reactivated", webhook_id=webhook_id)
    return webhook.model_dump(mode="json", exclude={"secret"})
