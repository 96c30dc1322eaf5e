"""DeliveryConfig -- 下发通道配置加载

从环境变量加载配置。
"""

import os
from typing import Literal

import structlog
from pydantic import BaseModel, Field, SecretStr

log = structlog.get_logger()

DEFAULT_TIMEOUT_S = 10


class DeliveryConfig(BaseModel):
    """Delivery 包配置 -- 从环境变量加载

    环境变量:
        MOBZAP_DELIVERY_MODE: 下发模式（pull/http/loopback）
        MOBZAP_DELIVERY_URL: 推送模式下设备网关地址
        MOBZAP_DELIVERY_KEY: 设备网关访问密钥
        MOBZAP_DELIVERY_TIMEOUT_S: 单次下发超时（秒，默认 10）
    """

    mode: Literal["pull", "http", "loopback"] = Field(
        default="pull",
        description="pull: 设备主动拉取；http: 服务端推送；loopback: 本地回环（开发/测试）",
    )
    endpoint_url: str = Field(
        default="http://localhost:8081",
        description="设备网关基础 URL",
    )
    api_key: SecretStr = Field(
        default=SecretStr(""),
        description="设备网关访问密钥",
    )
    timeout_s: int = Field(
        default=DEFAULT_TIMEOUT_S,
        ge=1,
        description="单次下发超时（秒）",
    )


def load_delivery_config() -> DeliveryConfig:
    """从环境变量加载 Delivery 配置

    Returns:
        DeliveryConfig 实例
    """
    kwargs: dict = {}

    if val := os.environ.get("MOBZAP_DELIVERY_MODE"):
        kwargs["mode"] = val

    if val := os.environ.get("MOBZAP_DELIVERY_URL"):
        kwargs["endpoint_url"] = val

    if val := os.environ.get("MOBZAP_DELIVERY_KEY"):
        kwargs["api_key"] = SecretStr(val)

    if val := os.environ.get("MOBZAP_DELIVERY_TIMEOUT_S"):
        try:
            kwargs["timeout_s"] = int(val)
        except ValueError:
            log.warning(
                "invalid_timeout_config",
                env_var="MOBZAP_DELIVERY_TIMEOUT_S",
                value=val,
                fallback=DEFAULT_TIMEOUT_S,
            )
            # 使用默认值，不阻塞启动

    return DeliveryConfig(**kwargs)
