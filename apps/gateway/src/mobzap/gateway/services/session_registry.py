"""SessionRegistry -- 内存中的活跃设备会话

所有读写都在同一把 asyncio.Lock 下完成，对外只返回快照副本。
"""

import asyncio
from datetime import datetime, timedelta

from mobzap.core.models import DeviceReport, DeviceSession


class SessionRegistry:
    """device_id -> DeviceSession"""

    def __init__(self) -> None:
        self._sessions: dict[str, DeviceSession] = {}
        self._lock = asyncio.Lock()

    async def touch(
        self,
        device_id: str,
        owner_id: str,
        now: datetime,
        report: DeviceReport | None = None,
    ) -> bool:
        """记录一次心跳

        Returns:
            True 表示这是一个新会话
        """
        async with self._lock:
            is_new = device_id not in self._sessions
            self._sessions[device_id] = DeviceSession(
                device_id=device_id,
                owner_id=owner_id,
                last_seen=now,
                report=report or DeviceReport(),
            )
            return is_new

    async def get(self, device_id: str) -> DeviceSession | None:
        async with self._lock:
            session = self._sessions.get(device_id)
            return session.model_copy() if session else None

    async def pop_stale(self, now: datetime, threshold: timedelta) -> list[DeviceSession]:
        """移除并返回 last_seen 早于 now - threshold 的会话"""
        cutoff = now - threshold
        async with self._lock:
            stale = [s for s in self._sessions.values() if s.last_seen < cutoff]
            for session in stale:
                del self._sessions[session.device_id]
            return stale

    async def snapshot(self) -> list[DeviceSession]:
        async with self._lock:
            return [s.model_copy() for s in self._sessions.values()]

    async def count(self) -> int:
        async with self._lock:
            return len(self._sessions)
