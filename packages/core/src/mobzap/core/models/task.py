"""Task Domain Model

一个持久化的工作单元：由 API 创建，被某个 worker 独占领取，
最终由回执对账推进到终态或在 pending 时被取消。
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from .enums import TaskCategory, TaskStatus
from .payloads import TaskPayload


class BulkProgress(BaseModel):
    """批量任务的发送进度（累计值，只增不减）"""

    sent: int = Field(default=0, ge=0, description="已发送数")
    failed: int = Field(default=0, ge=0, description="发送失败数")
    total: int = Field(default=0, ge=0, description="目标总数")


class Task(BaseModel):
    """Task 数据模型"""

    task_id: str = Field(description="唯一标识，ULID 格式")
    owner_id: str = Field(description="所属用户")
    device_id: str | None = Field(default=None, description="目标设备，未分配时为空")
    category: TaskCategory = Field(description="任务分类")
    priority: int = Field(default=5, description="优先级，数值越大越先执行")
    status: TaskStatus = Field(default=TaskStatus.PENDING, description="当前状态")
    payload: TaskPayload = Field(description="按分类区分的 payload")
    result: dict[str, Any] | None = Field(default=None, description="完成结果")
    error: str | None = Field(default=None, description="失败原因")
    retry_count: int = Field(default=0, ge=0, description="已消耗的投递重试次数")
    max_retries: int = Field(default=3, ge=1, description="最大投递重试次数")
    progress: BulkProgress | None = Field(default=None, description="批量任务进度")
    scheduled_at: datetime | None = Field(default=None, description="计划执行时间")
    executed_at: datetime | None = Field(default=None, description="被领取时间")
    completed_at: datetime | None = Field(default=None, description="完成时间")
    created_at: datetime = Field(description="创建时间")
    updated_at: datetime = Field(description="更新时间")
