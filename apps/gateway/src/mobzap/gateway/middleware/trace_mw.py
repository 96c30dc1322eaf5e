"""TraceMiddleware

为任务操作绑定 trace_id（trace-<task_id>），为设备操作绑定 device_id，
贯穿派发、对账与通知日志。
"""

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# ULID 长度；用于排除 /api/tasks 之后的非 ID 段
_ID_LENGTH = 26

# /api/devices/ 下不是 device_id 的固定子路由
_DEVICE_ROUTES = {"fetch", "callback", "connected"}


def _segment_after(parts: list[str], name: str) -> str | None:
    for i, part in enumerate(parts):
        if part == name and i + 1 < len(parts) and parts[i + 1]:
            return parts[i + 1]
    return None


class TraceMiddleware(BaseHTTPMiddleware):
    """任务级追踪中间件"""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        parts = request.url.path.split("/")

        task_id = _segment_after(parts, "tasks")
        if task_id and len(task_id) == _ID_LENGTH:
            structlog.contextvars.bind_contextvars(trace_id=f"trace-{task_id}")

        device_id = _segment_after(parts, "devices")
        if device_id and device_id not in _DEVICE_ROUTES:
            structlog.contextvars.bind_contextvars(device_id=device_id)

        return await call_next(request)
