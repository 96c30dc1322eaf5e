"""FastAPI 应用主文件

app 创建 + lifespan 管理：DB 初始化/关闭、下发通道选择、后台组件（webhook worker、
会话清理、分类队列）的启动与停止、路由注册。
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from mobzap.core.config import get_db_path
from mobzap.core.store import StoreGroup, create_store_group
from mobzap.delivery import (
    DeliveryChannel,
    DeliveryConfig,
    HttpDeliveryClient,
    LoopbackChannel,
    load_delivery_config,
)

from .errors import register_error_handlers
from .middleware.logging_config import setup_logfire, setup_logging
from .middleware.logging_mw import LoggingMiddleware
from .middleware.trace_mw import TraceMiddleware
from .routes import cancel, devices, health, tasks, webhooks
from .services.device_service import DeviceService
from .services.dispatch_queue import Dispatcher
from .services.reaper import StaleSessionReaper
from .services.reconciler import Reconciler
from .services.session_registry import SessionRegistry
from .services.task_service import TaskService
from .services.webhook_notifier import WebhookNotifier

log = structlog.get_logger()


def build_channel(config: DeliveryConfig) -> DeliveryChannel | None:
    """按模式创建推送通道；拉取模式返回 None"""
    if config.mode == "http":
        return HttpDeliveryClient(
            endpoint_url=config.endpoint_url,
            api_key=config.api_key.get_secret_value(),
            timeout_s=config.timeout_s,
        )
    if config.mode == "loopback":
        return LoopbackChannel()
    return None


def wire_services(
    app: FastAPI,
    store_group: StoreGroup,
    *,
    delivery_channel: DeliveryChannel | None = None,
    notifier: WebhookNotifier | None = None,
    **dispatcher_options,
) -> None:
    """组装服务并挂到 app.state

    delivery_channel 为 None 时是拉取模式，不创建分类队列。
    """
    notifier = notifier or WebhookNotifier(store_group)
    sessions = SessionRegistry()
    task_service = TaskService(store_group, notifier)
    reconciler = Reconciler(store_group, notifier, task_service)
    device_service = DeviceService(store_group, sessions, reconciler, notifier)
    reaper = StaleSessionReaper(store_group, sessions, reconciler, notifier)

    dispatcher = None
    if delivery_channel is not None:
        dispatcher = Dispatcher(
            store_group, reconciler, notifier, delivery_channel, **dispatcher_options
        )
        task_service.attach_dispatcher(dispatcher)

    app.state.store_group = store_group
    app.state.notifier = notifier
    app.state.sessions = sessions
    app.state.task_service = task_service
    app.state.reconciler = reconciler
    app.state.device_service = device_service
    app.state.reaper = reaper
    app.state.dispatcher = dispatcher
    app.state.delivery_channel = delivery_channel


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期管理"""
    store_group = await create_store_group(get_db_path())

    delivery_config = load_delivery_config()
    channel = build_channel(delivery_config)
    wire_services(
        app,
        store_group,
        delivery_channel=channel,
        delivery_timeout_s=delivery_config.timeout_s,
    )
    app.state.delivery_mode = delivery_config.mode

    await app.state.notifier.start()
    await app.state.reaper.start()
    if app.state.dispatcher is not None:
        await app.state.dispatcher.start()
    log.info("gateway_started", mode=delivery_config.mode)

    yield

    if app.state.dispatcher is not None:
        await app.state.dispatcher.stop()
    await app.state.reaper.stop()
    await app.state.notifier.stop()
    if channel is not None:
        await channel.aclose()
    await store_group.close()
    log.info("gateway_stopped")


def create_app() -> FastAPI:
    """创建 FastAPI 应用实例"""
    app = FastAPI(
        title="MobZap Gateway",
        version="0.1.0",
        description="MobZap 任务派发与送达跟踪 API",
        lifespan=lifespan,
    )

    # 注册中间件（顺序：先 Trace 后 Logging）
    app.add_middleware(TraceMiddleware)
    app.add_middleware(LoggingMiddleware)

    setup_logging()
    setup_logfire(app)

    register_error_handlers(app)

    app.include_router(tasks.router, tags=["tasks"])
    app.include_router(cancel.router, tags=["cancel"])
    app.include_router(devices.router, tags=["devices"])
    app.include_router(webhooks.router, tags=["webhooks"])
    app.include_router(health.router, tags=["health"])

    return app


# 默认 app 实例（uvicorn 入口）
app = create_app()
