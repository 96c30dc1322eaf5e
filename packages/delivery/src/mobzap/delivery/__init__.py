"""MobZap Delivery -- 设备指令下发抽象层

packages/delivery 的公开接口导出。
"""

# 核心组件
from .client import HttpDeliveryClient

# 配置
from .config import DeliveryConfig, load_delivery_config

# 异常
from .exceptions import DeliveryError, DeliveryRejected, TransportFailure
from .loopback import LoopbackChannel

# 数据模型
from .models import DeliveryChannel, DeliveryReceipt

__all__ = [
    "DeliveryReceipt",
    "DeliveryChannel",
    "HttpDeliveryClient",
    "LoopbackChannel",
    "DeliveryConfig",
    "load_delivery_config",
    "DeliveryError",
    "TransportFailure",
    "DeliveryRejected",
]
