"""任务取消路由

POST /api/tasks/{task_id}/cancel: 取消 pending 任务。
- 200: 取消成功
- 404: 任务不存在
- 409: 任务已被领取或已在终态
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..deps import get_owner_id, get_task_service
from ..services.task_service import TaskService

router = APIRouter()


class CancelResponse(BaseModel):
    """取消成功响应"""

    task_id: str
    status: str


@router.post("/api/tasks/{task_id}/cancel", response_model=CancelResponse)
async def cancel_task(
    task_id: str,
    owner_id: str = Depends(get_owner_id),
    service: TaskService = Depends(get_task_service),
):
    task = await service.cancel_task(owner_id, task_id)
    return CancelResponse(task_id=task.task_id, status=task.status.value)
