"""时间工具 -- 统一使用 UTC 与固定精度 ISO 格式，保证数据库中字符串可直接比较"""

from datetime import UTC, datetime


def utc_now() -> datetime:
    return datetime.now(UTC)


def to_db(value: datetime | None) -> str | None:
    """datetime -> 固定微秒精度的 UTC ISO 字符串"""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def from_db(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(value)
