"""Delivery 异常体系"""


class DeliveryError(Exception):
    """Delivery 包基础异常"""

    def __init__(self, message: str, recoverable: bool = True) -> None:
        """
        Args:
            message: 错误描述
            recoverable: 是否可通过重试恢复
        """
        super().__init__(message)
        self.recoverable = recoverable


class TransportFailure(DeliveryError):
    """下发通道不可达（连接失败、超时、5xx 等）

    此异常触发分类队列的重试退避逻辑。
    """

    def __init__(self, endpoint: str, original_error: Exception | str) -> None:
        """
        Args:
            endpoint: 尝试连接的下发地址
            original_error: 原始异常或错误描述
        """
        super().__init__(
            f"Delivery endpoint unreachable: {endpoint} -- {original_error}",
            recoverable=True,
        )
        self.endpoint = endpoint
        self.original_error = original_error


class DeliveryRejected(DeliveryError):
    """下发通道明确拒绝指令（4xx），重试无意义"""

    def __init__(self, status_code: int, detail: str) -> None:
        super().__init__(
            f"Delivery rejected with HTTP {status_code}: {detail}",
            recoverable=False,
        )
        self.status_code = status_code
        self.detail = detail
