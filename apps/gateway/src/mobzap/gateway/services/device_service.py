"""DeviceService -- 拉取模式下的设备网关

设备定期调用 fetch 上报自身状态并领取指令；领取与出站消息创建在同一事务内完成，
两个设备并发拉取时同一任务只会下发一次。
"""

from dataclasses import dataclass, field
from datetime import datetime

import structlog
from mobzap.core.config import FETCH_BATCH_SIZE
from mobzap.core.exceptions import MalformedPayload, NotFound, UnknownCategory
from mobzap.core.models import (
    Device,
    DeviceReport,
    DeviceSession,
    DeviceStatus,
    Instruction,
    TaskCategory,
    TaskStatus,
    WebhookEvent,
)
from mobzap.core.store import StoreGroup, claim_and_open_message
from mobzap.core.timeutil import utc_now
from mobzap.core.translator import normalize_destination, translate
from ulid import ULID

from .reconciler import Reconciler, task_event_data
from .session_registry import SessionRegistry
from .webhook_notifier import WebhookNotifier

log = structlog.get_logger()


@dataclass
class FetchResult:
    device: Device
    instructions: list[Instruction] = field(default_factory=list)


@dataclass
class ConnectedDevice:
    device: Device
    pending_tasks: int
    session: DeviceSession | None


class DeviceService:
    """设备拉取、连接视图"""

    def __init__(
        self,
        store_group: StoreGroup,
        sessions: SessionRegistry,
        reconciler: Reconciler,
        notifier: WebhookNotifier,
        batch_size: int = FETCH_BATCH_SIZE,
    ) -> None:
        self._stores = store_group
        self._sessions = sessions
        self._reconciler = reconciler
        self._notifier = notifier
        self._batch_size = batch_size

    async def resolve_device(self, owner_id: str, report: DeviceReport, now: datetime) -> Device:
        """按上报号码找到设备，未知号码自动注册给 owner

        Raises:
            MalformedPayload: 上报中没有任何号码
            NotFound: 号码已注册在其他 owner 名下
        """
        if not report.phone_number:
            raise MalformedPayload("device report must include phone_normal or phone_business")
        phone = normalize_destination(report.phone_number)

        device = await self._stores.device_registry.get_by_phone(phone)
        if device is not None:
            if device.owner_id != owner_id:
                raise NotFound("Device", phone)
            return device

        device = Device(
            device_id=str(ULID()),
            owner_id=owner_id,
            phone_number=phone,
            device_name=report.device_model or "",
            package=report.package,
            status=DeviceStatus.ACTIVE,
            is_connected=True,
            last_seen=now,
            battery_level=report.battery_level,
            is_charging=report.is_charging,
            created_at=now,
        )
        async with self._stores.transaction():
            await self._stores.device_registry.register_device(device)
        log.info(
            "device_registered",
            device_id=device.device_id,
            owner_id=owner_id,
            package=device.package,
        )
        return device

    async def fetch_instructions(self, owner_id: str, report: DeviceReport) -> FetchResult:
        """设备拉取：刷新存活状态并领取一批指令"""
        now = utc_now()
        device = await self.resolve_device(owner_id, report, now)
        bound = log.bind(device_id=device.device_id, owner_id=owner_id)

        async with self._stores.transaction():
            await self._stores.device_registry.touch(device.device_id, report, now)
        is_new = await self._sessions.touch(device.device_id, owner_id, now, report)
        if is_new:
            bound.info("device_connected")
            self._notifier.notify(
                owner_id,
                WebhookEvent.DEVICE_CONNECTED,
                {
                    "device_id": device.device_id,
                    "phone_number": device.phone_number,
                    "package": device.package.value,
                },
            )

        result = FetchResult(device=device)
        while len(result.instructions) < self._batch_size:
            task = await claim_and_open_message(
                self._stores.conn,
                self._stores.write_lock,
                self._stores.task_store,
                self._stores.message_store,
                list(TaskCategory),
                now,
                device_id=device.device_id,
                owner_id=owner_id,
            )
            if task is None:
                break
            try:
                instruction = translate(task, device.package)
            except (MalformedPayload, UnknownCategory) as e:
                await self._reconciler.fail_processing(task, e.message)
                continue
            self._notifier.notify(
                owner_id,
                WebhookEvent.TASK_PROCESSING,
                task_event_data(task, status=TaskStatus.PROCESSING.value),
            )
            result.instructions.append(instruction)

        if result.instructions:
            bound.info("instructions_fetched", count=len(result.instructions))
        return result

    async def connected_devices(self, owner_id: str) -> list[ConnectedDevice]:
        devices = await self._stores.device_registry.list_connected(owner_id)
        connected = []
        for device in devices:
            connected.append(
                ConnectedDevice(
                    device=device,
                    pending_tasks=await self._stores.task_store.count_pending_for_device(
                        device.device_id
                    ),
                    session=await self._sessions.get(device.device_id),
                )
            )
        return connected
