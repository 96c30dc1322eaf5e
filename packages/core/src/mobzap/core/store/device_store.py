"""设备注册表 SQLite 实现

设备 CRUD 属于外部系统；这里只提供调度链路需要的查询、
拉取时的自动注册以及存活状态写回。
"""

from datetime import datetime

import aiosqlite

from ..models.device import Device, DeviceReport
from ..models.enums import DeviceStatus
from ..timeutil import from_db, to_db


class SqliteDeviceRegistry:
    """DeviceRegistry 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def device_exists(self, device_id: str) -> bool:
        cursor = await self._conn.execute(
            "SELECT 1 FROM devices WHERE device_id = ?",
            (device_id,),
        )
        return await cursor.fetchone() is not None

    async def device_status(self, device_id: str) -> DeviceStatus | None:
        cursor = await self._conn.execute(
            "SELECT status FROM devices WHERE device_id = ?",
            (device_id,),
        )
        row = await cursor.fetchone()
        return DeviceStatus(row["status"]) if row else None

    async def set_device_status(self, device_id: str, status: DeviceStatus) -> bool:
        """写回设备状态；DISCONNECTED 同时清除 is_connected"""
        connected = 1 if status == DeviceStatus.ACTIVE else 0
        cursor = await self._conn.execute(
            "UPDATE devices SET status = ?, is_connected = ? WHERE device_id = ?",
            (status.value, connected, device_id),
        )
        return cursor.rowcount == 1

    async def get_device(self, device_id: str) -> Device | None:
        cursor = await self._conn.execute(
            "SELECT * FROM devices WHERE device_id = ?",
            (device_id,),
        )
        row = await cursor.fetchone()
        return self._row_to_device(row) if row else None

    async def get_by_phone(self, phone_number: str) -> Device | None:
        cursor = await self._conn.execute(
            "SELECT * FROM devices WHERE phone_number = ?",
            (phone_number,),
        )
        row = await cursor.fetchone()
        return self._row_to_device(row) if row else None

    async def register_device(self, device: Device) -> None:
        await self._conn.execute(
            """
            INSERT INTO devices (device_id, owner_id, phone_number, device_name, package,
                                 status, is_connected, last_seen, battery_level,
                                 is_charging, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                device.device_id,
                device.owner_id,
                device.phone_number,
                device.device_name,
                device.package.value,
                device.status.value,
                1 if device.is_connected else 0,
                to_db(device.last_seen),
                device.battery_level,
                None if device.is_charging is None else int(device.is_charging),
                to_db(device.created_at),
            ),
        )

    async def touch(self, device_id: str, report: DeviceReport, now: datetime) -> None:
        """设备拉取时刷新存活信息"""
        await self._conn.execute(
            """
            UPDATE devices
            SET status = 'ACTIVE',
                is_connected = 1,
                last_seen = ?,
                battery_level = COALESCE(?, battery_level),
                is_charging = COALESCE(?, is_charging)
            WHERE device_id = ?
            """,
            (
                to_db(now),
                report.battery_level,
                None if report.is_charging is None else int(report.is_charging),
                device_id,
            ),
        )

    async def list_connected(self, owner_id: str) -> list[Device]:
        cursor = await self._conn.execute(
            """
            SELECT * FROM devices WHERE owner_id = ? AND is_connected = 1
            ORDER BY last_seen DESC
            """,
            (owner_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_device(row) for row in rows]

    @staticmethod
    def _row_to_device(row: aiosqlite.Row) -> Device:
        charging = row["is_charging"]
        return Device(
            device_id=row["device_id"],
            owner_id=row["owner_id"],
            phone_number=row["phone_number"],
            device_name=row["device_name"],
            package=row["package"],
            status=row["status"],
            is_connected=bool(row["is_connected"]),
            last_seen=from_db(row["last_seen"]),
            battery_level=row["battery_level"],
            is_charging=None if charging is None else bool(charging),
            created_at=from_db(row["created_at"]),
        )
