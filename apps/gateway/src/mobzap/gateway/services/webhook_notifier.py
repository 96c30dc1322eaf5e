"""WebhookNotifier -- 事件通知投递

对账路径只把事件放入内部 asyncio.Queue，由后台 worker 取出后投递，
慢速或失败的 webhook 端点不会阻塞任务对账。
每个事件对每个订阅最多尝试一次，没有持久化重试队列。
"""

import asyncio
import hashlib
import hmac
import json
from dataclasses import dataclass
from typing import Any

import httpx
import structlog
from mobzap.core.config import WEBHOOK_MAX_FAILURES, WEBHOOK_QUEUE_MAXSIZE, WEBHOOK_TIMEOUT_S
from mobzap.core.models import WebhookSubscription
from mobzap.core.store import StoreGroup
from mobzap.core.timeutil import utc_now

log = structlog.get_logger()

SIGNATURE_HEADER = "X-Webhook-Signature"
EVENT_HEADER = "X-Webhook-Event"


def sign_payload(secret: str, body: bytes) -> str:
    """HMAC-SHA256(secret, body) 的十六进制摘要"""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(secret: str, body: bytes, signature: str) -> bool:
    return hmac.compare_digest(sign_payload(secret, body), signature)


@dataclass(frozen=True)
class WebhookEventEnvelope:
    """队列中的一条待投递事件"""

    owner_id: str
    event: str
    data: dict[str, Any]
    timestamp: str

    def body(self) -> bytes:
        """签名与发送使用同一份字节"""
        return json.dumps(
            {"event": self.event, "data": self.data, "timestamp": self.timestamp},
            separators=(",", ":"),
            ensure_ascii=False,
            default=str,
        ).encode("utf-8")


class WebhookNotifier:
    """Webhook 扇出投递器"""

    def __init__(
        self,
        store_group: StoreGroup,
        timeout_s: float = WEBHOOK_TIMEOUT_S,
        max_failures: int = WEBHOOK_MAX_FAILURES,
        queue_maxsize: int = WEBHOOK_QUEUE_MAXSIZE,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._stores = store_group
        self._max_failures = max_failures
        self._queue: asyncio.Queue[WebhookEventEnvelope] = asyncio.Queue(maxsize=queue_maxsize)
        self._client = httpx.AsyncClient(timeout=timeout_s, transport=transport)
        self._worker: asyncio.Task[None] | None = None

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def notify(self, owner_id: str, event: str, data: dict[str, Any]) -> None:
        """登记一个事件，立即返回，不抛出异常"""
        envelope = WebhookEventEnvelope(
            owner_id=owner_id,
            event=str(event),
            data=data,
            timestamp=utc_now().isoformat(),
        )
        try:
            self._queue.put_nowait(envelope)
        except asyncio.QueueFull:
            log.warning("webhook_queue_full", owner_id=owner_id, event_name=envelope.event)

    async def start(self) -> None:
        if self._worker is None:
            self._worker = asyncio.create_task(self._run(), name="webhook-notifier")
            log.info("webhook_notifier_started")

    async def stop(self) -> None:
        """停止 worker 并关闭 HTTP 客户端；未投递的事件被丢弃"""
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
        dropped = self._queue.qsize()
        if dropped:
            log.info("webhook_notifier_dropped_pending", count=dropped)
        await self._client.aclose()
        log.info("webhook_notifier_stopped")

    async def drain(self) -> None:
        """等待当前队列中的事件全部投递完成

        worker 未启动时在调用方协程内直接投递。
        """
        if self._worker is not None:
            await self._queue.join()
            return
        while not self._queue.empty():
            envelope = self._queue.get_nowait()
            try:
                await self.deliver(envelope)
            finally:
                self._queue.task_done()

    async def _run(self) -> None:
        while True:
            envelope = await self._queue.get()
            try:
                await self.deliver(envelope)
            except Exception:
                log.exception("webhook_delivery_crashed", event_name=envelope.event)
            finally:
                self._queue.task_done()

    async def deliver(self, envelope: WebhookEventEnvelope) -> int:
        """向所有匹配的活跃订阅投递一个事件

        Returns:
            投递成功的订阅数
        """
        subscriptions = await self._stores.webhook_store.list_active_for_event(
            envelope.owner_id, envelope.event
        )
        if not subscriptions:
            return 0

        body = envelope.body()
        results = await asyncio.gather(
            *(self._post(sub, envelope.event, body) for sub in subscriptions)
        )
        return sum(1 for ok in results if ok)

    async def _post(self, subscription: WebhookSubscription, event: str, body: bytes) -> bool:
        headers = {
            "Content-Type": "application/json",
            SIGNATURE_HEADER: sign_payload(subscription.secret, body),
            EVENT_HEADER: event,
        }
        error: str | None = None
        try:
            resp = await self._client.post(subscription.url, content=body, headers=headers)
            if not 200 <= resp.status_code < 300:
                error = f"HTTP {resp.status_code}"
        except httpx.HTTPError as e:
            error = f"{type(e).__name__}: {e}"

        now = utc_now()
        if error is None:
            async with self._stores.transaction():
                await self._stores.webhook_store.record_success(subscription.webhook_id, now)
            log.debug(
                "webhook_delivered",
                webhook_id=subscription.webhook_id,
                event_name=event,
            )
            return True

        async with self._stores.transaction():
            disabled = await self._stores.webhook_store.record_failure(
                subscription.webhook_id, self._max_failures, now
            )
        log.warning(
            "webhook_delivery_failed",
            webhook_id=subscription.webhook_id,
            event_name=event,
            error=error,
        )
        if disabled:
            log.warning(
                "webhook_disabled",
                webhook_id=subscription.webhook_id,
                max_failures=self._max_failures,
            )
        return False
