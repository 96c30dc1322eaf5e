"""健康检查路由

GET /health: Liveness 检查，永远返回 200。
GET /ready: Readiness 检查，包含 SQLite 连通性、推送通道与磁盘空间。
"""

import shutil

import structlog
from fastapi import APIRouter, Request
from starlette.responses import JSONResponse

log = structlog.get_logger()

router = APIRouter()


@router.get("/health")
async def health():
    """Liveness 检查 -- 永远返回 200"""
    return {"status": "ok"}


@router.get("/ready")
async def ready(request: Request):
    """Readiness 检查

    检查项：
    1. sqlite: 数据库连通性
    2. delivery: 推送模式下探测设备网关；拉取模式为 skipped
    3. disk_space_mb: 磁盘剩余空间
    4. sessions / webhook_queue: 运行时计数，仅供观察
    """
    checks = {}
    all_ok = True

    try:
        store_group = request.app.state.store_group
        cursor = await store_group.conn.execute("SELECT 1")
        await cursor.fetchone()
        checks["sqlite"] = "ok"
    except Exception as e:
        checks["sqlite"] = f"error: {str(e)}"
        all_ok = False

    channel = getattr(request.app.state, "delivery_channel", None)
    if channel is not None:
        try:
            if await channel.health_check():
                checks["delivery"] = "ok"
            else:
                checks["delivery"] = "unreachable"
                all_ok = False
        except Exception as e:
            log.warning("health_check_error", error=str(e))
            checks["delivery"] = "unreachable"
            all_ok = False
    else:
        checks["delivery"] = "skipped"

    try:
        disk_usage = shutil.disk_usage("/")
        checks["disk_space_mb"] = disk_usage.free // (1024 * 1024)
    except Exception:
        checks["disk_space_mb"] = 0
        all_ok = False

    sessions = getattr(request.app.state, "sessions", None)
    if sessions is not None:
        checks["sessions"] = await sessions.count()
    notifier = getattr(request.app.state, "notifier", None)
    if notifier is not None:
        checks["webhook_queue"] = notifier.pending

    status_code = 200 if all_ok else 503
    return JSONResponse(
        status_code=status_code,
        content={
            "status": "ready" if all_ok else "not_ready",
            "mode": getattr(request.app.state, "delivery_mode", "pull"),
            "checks": checks,
        },
    )
