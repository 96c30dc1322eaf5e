"""依赖注入模块 -- 通过 FastAPI Depends 注入 Store 与服务实例

所有实例通过 app.state 管理，在 lifespan（或测试中的 wire_services）里初始化。
"""

from fastapi import Header, Request
from mobzap.core.store import StoreGroup

from .services.device_service import DeviceService
from .services.reconciler import Reconciler
from .services.task_service import TaskService
from .services.webhook_notifier import WebhookNotifier


def get_store_group(request: Request) -> StoreGroup:
    """从 app.state 获取 StoreGroup 实例"""
    return request.app.state.store_group


def get_owner_id(x_owner_id: str = Header(min_length=1)) -> str:
    """调用方身份：X-Owner-ID 请求头"""
    return x_owner_id


def get_task_service(request: Request) -> TaskService:
    return request.app.state.task_service


def get_reconciler(request: Request) -> Reconciler:
    return request.app.state.reconciler


def get_device_service(request: Request) -> DeviceService:
    return request.app.state.device_service


def get_notifier(request: Request) -> WebhookNotifier:
    return request.app.state.notifier
