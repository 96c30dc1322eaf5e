"""日志配置 -- structlog 渲染链、任务上下文绑定与可选 Logfire

派发 worker、回执对账和超时清理处理某个任务时进入 task_log_context()，
期间所有日志自动带上 task_id / category / owner_id / device_id，
并由 add_trace_id 补出与 TraceMiddleware 相同的 trace-<task_id>。
"""

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager

import structlog
from fastapi import FastAPI
from mobzap.core.models import Task
from structlog.typing import EventDict, Processor, WrappedLogger

# 这些字段里的号码只保留末 4 位
PHONE_FIELDS = frozenset({"phone_number", "phone_normal", "number", "from_number"})

# webhook 投递与 SQLite 驱动每次调用都会打 INFO
NOISY_LOGGERS = ("httpx", "httpcore", "aiosqlite", "uvicorn.access")


def mask_phone_numbers(
    _logger: WrappedLogger, _method: str, event_dict: EventDict
) -> EventDict:
    for key in PHONE_FIELDS & event_dict.keys():
        value = event_dict[key]
        if isinstance(value, str) and len(value) > 4:
            event_dict[key] = "*" * (len(value) - 4) + value[-4:]
    return event_dict


def add_trace_id(
    _logger: WrappedLogger, _method: str, event_dict: EventDict
) -> EventDict:
    """有 task_id 但尚无 trace_id 时补上 trace-<task_id>"""
    task_id = event_dict.get("task_id")
    if task_id and "trace_id" not in event_dict:
        event_dict["trace_id"] = f"trace-{task_id}"
    return event_dict


@contextmanager
def task_log_context(task: Task) -> Iterator[None]:
    """在 with 块内把任务标识绑定到 structlog contextvars，退出时还原"""
    fields = {
        "task_id": task.task_id,
        "category": task.category.value,
        "owner_id": task.owner_id,
    }
    if task.device_id:
        fields["device_id"] = task.device_id
    with structlog.contextvars.bound_contextvars(**fields):
        yield


def build_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        add_trace_id,
        mask_phone_numbers,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def setup_logging() -> None:
    """MOBZAP_LOG_FORMAT=json 输出 JSON 行，其余取值为控制台格式；MOBZAP_LOG_LEVEL 默认 INFO"""
    log_format = os.environ.get("MOBZAP_LOG_FORMAT", "dev")
    level = getattr(logging, os.environ.get("MOBZAP_LOG_LEVEL", "INFO").upper(), logging.INFO)

    shared = build_processors()
    renderer: Processor
    if log_format == "json":
        renderer = structlog.processors.JSONRenderer(ensure_ascii=False)
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # uvicorn 与 httpx 的标准库日志走同一条渲染链
    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(processor=renderer, foreign_pre_chain=shared)
    )
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def setup_logfire(app: FastAPI) -> None:
    """LOGFIRE_SEND_TO_LOGFIRE=true 时上报 Logfire（需要 LOGFIRE_TOKEN）"""
    if os.environ.get("LOGFIRE_SEND_TO_LOGFIRE", "false").lower() != "true":
        return
    try:
        import logfire

        logfire.configure(service_name="mobzap-gateway")
        logfire.instrument_fastapi(app)
        # webhook 投递走 httpx
        logfire.instrument_httpx()
    except Exception:
        structlog.get_logger().warning("logfire_init_failed", fallback="local_logging_only")
