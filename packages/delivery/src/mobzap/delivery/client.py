"""HttpDeliveryClient -- 推送模式下向设备网关下发指令

POST {endpoint}/devices/{device_id}/instructions，请求体为扁平指令 JSON。
连接失败、超时和 5xx 视为传输层失败；4xx 视为通道拒绝。
"""

import time

import httpx
import structlog
from mobzap.core.models import Instruction

from .exceptions import DeliveryRejected, TransportFailure
from .models import DeliveryReceipt

log = structlog.get_logger()

# 健康检查超时（硬编码，应快速响应）
HEALTH_CHECK_TIMEOUT_S = 5

# 连接类异常类型集合（触发 TransportFailure，进而触发队列重试）
_CONNECTION_ERROR_TYPES = (
    ConnectionError,
    OSError,
    TimeoutError,
    httpx.TransportError,
)


class HttpDeliveryClient:
    """设备网关 HTTP 客户端"""

    def __init__(
        self,
        endpoint_url: str = "http://localhost:8081",
        api_key: str = "",
        timeout_s: float = 10,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """初始化设备网关客户端

        Args:
            endpoint_url: 设备网关基础 URL
            api_key: 设备网关访问密钥
            timeout_s: 单次请求超时（秒）
            transport: 自定义 httpx transport（测试注入 MockTransport）
        """
        self._endpoint_url = endpoint_url.rstrip("/")
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = httpx.AsyncClient(
            base_url=self._endpoint_url,
            headers=headers,
            timeout=timeout_s,
            transport=transport,
        )

    async def deliver(
        self, instruction: Instruction, device_id: str | None
    ) -> DeliveryReceipt:
        """下发一条指令

        Args:
            instruction: 已翻译的设备指令
            device_id: 目标设备

        Returns:
            DeliveryReceipt

        Raises:
            TransportFailure: 网关不可达、超时或返回 5xx
            DeliveryRejected: 网关返回 4xx
        """
        start_time = time.monotonic()
        path = f"/devices/{device_id or 'any'}/instructions"

        try:
            resp = await self._client.post(
                path,
                json=instruction.model_dump(mode="json"),
            )
        except _CONNECTION_ERROR_TYPES as e:
            log.warning(
                "delivery_transport_error",
                task_id=instruction.id,
                device_id=device_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise TransportFailure(self._endpoint_url, e) from e

        duration_ms = int((time.monotonic() - start_time) * 1000)

        if resp.status_code >= 500:
            log.warning(
                "delivery_server_error",
                task_id=instruction.id,
                status_code=resp.status_code,
            )
            raise TransportFailure(self._endpoint_url, f"HTTP {resp.status_code}")
        if resp.status_code >= 400:
            raise DeliveryRejected(resp.status_code, resp.text[:200])

        remote_id = None
        if resp.content:
            try:
                body = resp.json()
            except ValueError:
                body = {}
            if isinstance(body, dict):
                remote_id = body.get("message_id")

        log.info(
            "delivery_accepted",
            task_id=instruction.id,
            device_id=device_id,
            kind=instruction.kind,
            duration_ms=duration_ms,
        )
        return DeliveryReceipt(
            task_id=instruction.id,
            device_id=device_id,
            channel="http",
            remote_message_id=remote_id,
            duration_ms=duration_ms,
        )

    async def health_check(self) -> bool:
        """检查设备网关可达性

        此方法不抛出异常，所有异常内部捕获并返回 False。
        """
        try:
            resp = await self._client.get("/health", timeout=HEALTH_CHECK_TIMEOUT_S)
            return resp.status_code == 200
        except Exception as e:
            log.debug("delivery_health_check_failed", url=self._endpoint_url, error=str(e))
            return False

    async def aclose(self) -> None:
        await self._client.aclose()
