"""配置常量模块 -- 可通过环境变量覆盖

包含数据库路径、队列并发、重试退避、会话过期阈值、webhook 投递策略等可配置常量。
"""

import os
from pathlib import Path


def _get_base_dir() -> Path:
    """获取项目 data 基础目录"""
    return Path(os.environ.get("MOBZAP_DATA_DIR", "data"))


def get_db_path() -> str:
    """获取 SQLite 数据库路径"""
    return os.environ.get(
        "MOBZAP_DB_PATH",
        str(_get_base_dir() / "sqlite" / "mobzap.db"),
    )


def _int_env(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


# 各分类队列的 worker 并发数
MESSAGE_QUEUE_CONCURRENCY: int = _int_env("MOBZAP_MESSAGE_QUEUE_CONCURRENCY", 10)
MEDIA_QUEUE_CONCURRENCY: int = _int_env("MOBZAP_MEDIA_QUEUE_CONCURRENCY", 5)
GROUP_QUEUE_CONCURRENCY: int = _int_env("MOBZAP_GROUP_QUEUE_CONCURRENCY", 3)

# 投递失败后的指数退避基准（毫秒）
DISPATCH_BACKOFF_BASE_MS: int = _int_env("MOBZAP_DISPATCH_BACKOFF_BASE_MS", 2000)

# 队列空闲时的轮询间隔（秒），新任务入队会提前唤醒
DISPATCH_POLL_INTERVAL_S: int = _int_env("MOBZAP_DISPATCH_POLL_INTERVAL_S", 5)

# 设备拉取模式每批最多下发的指令数
FETCH_BATCH_SIZE: int = _int_env("MOBZAP_FETCH_BATCH_SIZE", 10)

# 任务默认值
DEFAULT_TASK_PRIORITY: int = 5
DEFAULT_MAX_RETRIES: int = _int_env("MOBZAP_DEFAULT_MAX_RETRIES", 3)
MAX_RETRIES_LIMIT: int = 10

# 号码规范化时补齐的国家码
DEFAULT_COUNTRY_CODE: str = os.environ.get("MOBZAP_DEFAULT_COUNTRY_CODE", "55")

# 批量发送默认间隔（毫秒）
DEFAULT_BULK_DELAY_MS: int = 5000

# 设备会话过期阈值与清理间隔（秒）
SESSION_STALE_THRESHOLD_S: int = _int_env("MOBZAP_SESSION_STALE_THRESHOLD_S", 600)
REAPER_INTERVAL_S: int = _int_env("MOBZAP_REAPER_INTERVAL_S", 60)

# 设备长时间未回执的 processing 任务判定超时（秒）
STALE_PROCESSING_THRESHOLD_S: int = _int_env(
    "MOBZAP_STALE_PROCESSING_THRESHOLD_S", 1800
)

# Webhook 投递超时（秒）与连续失败禁用阈值
WEBHOOK_TIMEOUT_S: float = _int_env("MOBZAP_WEBHOOK_TIMEOUT_MS", 10000) / 1000
WEBHOOK_MAX_FAILURES: int = _int_env("MOBZAP_WEBHOOK_MAX_FAILURES", 3)

# Webhook 内部投递队列容量
WEBHOOK_QUEUE_MAXSIZE: int = 1000

# 自动回复任务优先级
AUTO_RESPONDER_PRIORITY: int = 8
