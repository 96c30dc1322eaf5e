"""Store Protocol 接口定义

调度链路依赖的存储与外部协作方接口，
使用 Python Protocol 实现结构化子类型（duck typing）。
"""

from collections.abc import Iterable
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from ..models.enums import DeviceStatus, MessageStatus, TaskCategory, TaskStatus
from ..models.message import Message
from ..models.task import Task


@runtime_checkable
class TaskStore(Protocol):
    """Task 存储接口：所有变更均为单行条件更新"""

    async def create_task(self, task: Task) -> None:
        """创建任务记录"""
        ...

    async def get_task(self, task_id: str) -> Task | None:
        """根据 task_id 查询任务"""
        ...

    async def list_tasks(
        self, owner_id: str, status: str | None = None, limit: int = 100
    ) -> list[Task]:
        """查询任务列表，支持按状态筛选"""
        ...

    async def claim_next(
        self,
        categories: Iterable[TaskCategory],
        now: datetime,
        device_id: str | None = None,
        owner_id: str | None = None,
    ) -> Task | None:
        """领取下一个可执行任务"""
        ...

    async def transition(
        self,
        task_id: str,
        expected: TaskStatus,
        new_status: TaskStatus,
        now: datetime,
        *,
        result: dict[str, Any] | None = None,
        error: str | None = None,
        retry_increment: int = 0,
    ) -> bool:
        """条件状态流转"""
        ...

    async def update_progress(
        self, task_id: str, sent: int, failed: int, now: datetime
    ) -> bool:
        """更新批量进度（只增不减）"""
        ...

    async def touch_processing(self, task_id: str, now: datetime) -> bool:
        """记录设备回执时间"""
        ...

    async def list_stale_processing(self, acknowledged_before: datetime) -> list[Task]: ...


@runtime_checkable
class MessageStore(Protocol):
    """Message 存储接口"""

    async def create_outgoing_if_absent(self, message: Message) -> Message: ...

    async def insert_message(self, message: Message) -> None: ...

    async def get_outgoing_for_task(self, task_id: str) -> Message | None: ...

    async def advance_status(
        self,
        message_id: str,
        target: MessageStatus,
        now: datetime,
        *,
        remote_id: str | None = None,
        delivered_at: datetime | None = None,
        read_at: datetime | None = None,
    ) -> bool: ...

    async def mark_failed(self, message_id: str, error: str, now: datetime) -> bool: ...


@runtime_checkable
class DeviceRegistry(Protocol):
    """设备注册表（外部协作方）"""

    async def device_exists(self, device_id: str) -> bool: ...

    async def device_status(self, device_id: str) -> DeviceStatus | None: ...

    async def set_device_status(self, device_id: str, status: DeviceStatus) -> bool: ...


@runtime_checkable
class LicenseGate(Protocol):
    """授权额度检查（外部协作方）"""

    async def can_create_tasks(
        self, owner_id: str, destinations: int, now: datetime
    ) -> bool: ...
