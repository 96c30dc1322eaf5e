"""设备路由

POST /api/devices/fetch: 设备拉取指令（同时上报存活信息）
POST /api/devices/callback: 设备回执，交给 Reconciler 对账
POST /api/devices/{device_id}/messages: 设备推送入站消息
GET /api/devices/connected: owner 名下已连接设备
"""

from fastapi import APIRouter, Depends
from mobzap.core.models import DeviceReport, InboundMessage, TaskOutcome
from starlette.responses import JSONResponse

from ..deps import get_device_service, get_owner_id, get_reconciler
from ..services.device_service import DeviceService
from ..services.reconciler import Reconciler

router = APIRouter()


class CallbackRequest(TaskOutcome):
    """设备回执请求体：TaskOutcome + task_id"""

    task_id: str


@router.post("/api/devices/fetch")
async def fetch_instructions(
    report: DeviceReport,
    owner_id: str = Depends(get_owner_id),
    service: DeviceService = Depends(get_device_service),
):
    result = await service.fetch_instructions(owner_id, report)
    return {
        "device_id": result.device.device_id,
        "package": result.device.package.value,
        "instructions": [i.model_dump(mode="json") for i in result.instructions],
    }


@router.post("/api/devices/callback")
async def device_callback(
    body: CallbackRequest,
    reconciler: Reconciler = Depends(get_reconciler),
):
    """任务不存在时同样返回 200（applied=false），避免设备端无限重试"""
    outcome = TaskOutcome.model_validate(body.model_dump(exclude={"task_id"}))
    result = await reconciler.reconcile(body.task_id, outcome)
    return result.model_dump()


@router.post("/api/devices/{device_id}/messages")
async def receive_inbound(
    device_id: str,
    inbound: InboundMessage,
    reconciler: Reconciler = Depends(get_reconciler),
):
    message = await reconciler.receive_inbound(device_id, inbound)
    return JSONResponse(status_code=201, content=message.model_dump(mode="json"))


@router.get("/api/devices/connected")
async def connected_devices(
    owner_id: str = Depends(get_owner_id),
    service: DeviceService = Depends(get_device_service),
):
    devices = await service.connected_devices(owner_id)
    return {
        "devices": [
            {
                **item.device.model_dump(mode="json"),
                "pending_tasks": item.pending_tasks,
                "session": item.session.model_dump(mode="json") if item.session else None,
            }
            for item in devices
        ]
    }
