"""任务路由

POST /api/tasks: 创建任务（201）
GET /api/tasks: 任务列表，支持 status 筛选
GET /api/tasks/{task_id}: 任务详情，含派生消息
GET /api/tasks/{task_id}/progress: 发送进度
"""

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query
from mobzap.core.config import DEFAULT_MAX_RETRIES, DEFAULT_TASK_PRIORITY, MAX_RETRIES_LIMIT
from mobzap.core.models import TaskStatus
from pydantic import BaseModel, Field
from starlette.responses import JSONResponse

from ..deps import get_owner_id, get_task_service
from ..services.task_service import TaskService

router = APIRouter()


class CreateTaskRequest(BaseModel):
    """任务创建请求体"""

    category: str = Field(description="任务分类")
    payload: dict[str, Any] = Field(description="分类 payload")
    device_id: str | None = Field(default=None, description="目标设备，空则由 owner 任一设备领取")
    priority: int = Field(default=DEFAULT_TASK_PRIORITY, ge=0, le=10)
    scheduled_at: datetime | None = Field(default=None, description="计划执行时间")
    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=1, le=MAX_RETRIES_LIMIT)


@router.post("/api/tasks")
async def create_task(
    body: CreateTaskRequest,
    owner_id: str = Depends(get_owner_id),
    service: TaskService = Depends(get_task_service),
):
    task = await service.create_task(
        owner_id,
        body.category,
        body.payload,
        device_id=body.device_id,
        priority=body.priority,
        scheduled_at=body.scheduled_at,
        max_retries=body.max_retries,
    )
    return JSONResponse(status_code=201, content=task.model_dump(mode="json"))


@router.get("/api/tasks")
async def list_tasks(
    status: TaskStatus | None = Query(default=None, description="按状态筛选"),
    limit: int = Query(default=100, ge=1, le=500),
    owner_id: str = Depends(get_owner_id),
    service: TaskService = Depends(get_task_service),
):
    """按 created_at 倒序"""
    tasks = await service.list_tasks(owner_id, status, limit)
    return {"tasks": [t.model_dump(mode="json") for t in tasks]}


@router.get("/api/tasks/{task_id}")
async def get_task_detail(
    task_id: str,
    owner_id: str = Depends(get_owner_id),
    service: TaskService = Depends(get_task_service),
):
    task, messages = await service.get_task_detail(owner_id, task_id)
    return {
        "task": task.model_dump(mode="json"),
        "messages": [m.model_dump(mode="json") for m in messages],
    }


@router.get("/api/tasks/{task_id}/progress")
async def get_progress(
    task_id: str,
    owner_id: str = Depends(get_owner_id),
    service: TaskService = Depends(get_task_service),
):
    progress = await service.get_progress(owner_id, task_id)
    return {"task_id": task_id, **progress.model_dump()}
