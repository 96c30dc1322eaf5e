"""设备相关模型 -- 设备记录、设备上报信息、内存会话、自动回复规则"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from .enums import DevicePackage, DeviceStatus


class Device(BaseModel):
    """设备注册表中的设备记录"""

    device_id: str
    owner_id: str
    phone_number: str
    device_name: str = ""
    package: DevicePackage = DevicePackage.NORMAL
    status: DeviceStatus = DeviceStatus.INACTIVE
    is_connected: bool = False
    last_seen: datetime | None = None
    battery_level: int | None = None
    is_charging: bool | None = None
    created_at: datetime


class DeviceReport(BaseModel):
    """设备拉取任务时上报的自身信息"""

    phone_normal: str | None = None
    phone_business: str | None = None
    permissions: list[str] = Field(default_factory=list)
    battery_level: int | None = Field(default=None, ge=0, le=100)
    is_charging: bool | None = None
    whatsapp_version: str | None = None
    android_version: str | None = None
    device_model: str | None = None

    @property
    def phone_number(self) -> str | None:
        return self.phone_normal or self.phone_business

    @property
    def package(self) -> DevicePackage:
        if self.phone_business and not self.phone_normal:
            return DevicePackage.BUSINESS
        return DevicePackage.NORMAL


class DeviceSession(BaseModel):
    """内存中的活跃设备会话快照"""

    device_id: str
    owner_id: str
    last_seen: datetime
    report: DeviceReport = Field(default_factory=DeviceReport)


class AutoResponderRule(BaseModel):
    """入站消息自动回复规则"""

    type: Literal["contains", "exact", "regex", "all"]
    keywords: list[str] = Field(default_factory=list)
    pattern: str | None = None
    response: str = Field(min_length=1)
