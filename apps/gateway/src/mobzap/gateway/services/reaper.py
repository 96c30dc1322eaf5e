"""StaleSessionReaper -- 周期清理

1. 超过阈值未心跳的设备会话：移出内存、标记 DISCONNECTED、通知 device.disconnected
2. 最近一次回执（领取或进度上报）距今超过阈值的 processing 任务：置为 failed
"""

import asyncio
from datetime import datetime, timedelta

import structlog
from mobzap.core.config import (
    REAPER_INTERVAL_S,
    SESSION_STALE_THRESHOLD_S,
    STALE_PROCESSING_THRESHOLD_S,
)
from mobzap.core.models import DeviceStatus, WebhookEvent
from mobzap.core.store import StoreGroup
from mobzap.core.timeutil import utc_now

from ..middleware.logging_config import task_log_context
from .reconciler import Reconciler
from .session_registry import SessionRegistry
from .webhook_notifier import WebhookNotifier

log = structlog.get_logger()

STALE_PROCESSING_ERROR = "no device acknowledgement before timeout"


class StaleSessionReaper:
    """会话过期与卡死任务清理"""

    def __init__(
        self,
        store_group: StoreGroup,
        sessions: SessionRegistry,
        reconciler: Reconciler,
        notifier: WebhookNotifier,
        *,
        interval_s: float = REAPER_INTERVAL_S,
        session_threshold_s: float = SESSION_STALE_THRESHOLD_S,
        processing_threshold_s: float = STALE_PROCESSING_THRESHOLD_S,
    ) -> None:
        self._stores = store_group
        self._sessions = sessions
        self._reconciler = reconciler
        self._notifier = notifier
        self._interval_s = interval_s
        self._session_threshold = timedelta(seconds=session_threshold_s)
        self._processing_threshold = timedelta(seconds=processing_threshold_s)
        self._task: asyncio.Task[None] | None = None

    async def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._loop(), name="stale-session-reaper")
            log.info("reaper_started", interval_s=self._interval_s)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        log.info("reaper_stopped")

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval_s)
            try:
                await self.run_once()
            except Exception:
                log.exception("reaper_cycle_failed")

    async def run_once(self, now: datetime | None = None) -> tuple[int, int]:
        """执行一轮清理

        Returns:
            (断开的会话数, 置为失败的任务数)
        """
        now = now or utc_now()
        return await self.reap_sessions(now), await self.sweep_processing(now)

    async def reap_sessions(self, now: datetime) -> int:
        stale = await self._sessions.pop_stale(now, self._session_threshold)
        for session in stale:
            async with self._stores.transaction():
                await self._stores.device_registry.set_device_status(
                    session.device_id, DeviceStatus.DISCONNECTED
                )
            log.info(
                "device_disconnected",
                device_id=session.device_id,
                owner_id=session.owner_id,
                last_seen=session.last_seen.isoformat(),
            )
            self._notifier.notify(
                session.owner_id,
                WebhookEvent.DEVICE_DISCONNECTED,
                {
                    "device_id": session.device_id,
                    "last_seen": session.last_seen.isoformat(),
                },
            )
        return len(stale)

    async def sweep_processing(self, now: datetime) -> int:
        stuck = await self._stores.task_store.list_stale_processing(
            now - self._processing_threshold
        )
        failed = 0
        for task in stuck:
            with task_log_context(task):
                if await self._reconciler.fail_processing(task, STALE_PROCESSING_ERROR):
                    failed += 1
        if failed:
            log.warning("stale_processing_failed", count=failed)
        return failed
