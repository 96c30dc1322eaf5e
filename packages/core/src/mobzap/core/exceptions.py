"""Core 异常体系

每个异常携带稳定的 code，供 API 层映射为错误响应。
"""


class MobZapError(Exception):
    """Core 包基础异常"""

    code: str = "MOBZAP_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class MalformedPayload(MobZapError):
    """payload 缺少必填字段或字段类型不符（调用方错误，不重试）"""

    code = "MALFORMED_PAYLOAD"

    def __init__(self, message: str, errors: list[dict] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class UnknownCategory(MobZapError):
    """无法识别的任务分类"""

    code = "UNKNOWN_CATEGORY"

    def __init__(self, category: str) -> None:
        super().__init__(f"Unknown task category: {category}")
        self.category = category


class NotFound(MobZapError):
    """资源不存在（任务、设备、webhook）"""

    code = "NOT_FOUND"

    def __init__(self, resource: str, resource_id: str) -> None:
        super().__init__(f"{resource} with id {resource_id} does not exist")
        self.resource = resource
        self.resource_id = resource_id


class NotCancellable(MobZapError):
    """只有 pending 任务可以取消"""

    code = "NOT_CANCELLABLE"

    def __init__(self, task_id: str, status: str) -> None:
        super().__init__(f"Task {task_id} cannot be cancelled in status {status}")
        self.task_id = task_id
        self.status = status


class QuotaExceeded(MobZapError):
    """授权额度不足，拒绝创建任务"""

    code = "QUOTA_EXCEEDED"


class TaskStatusConflict(MobZapError):
    """条件更新失败：任务当前状态与预期不符"""

    code = "TASK_STATUS_CONFLICT"

    def __init__(self, task_id: str, expected: str, actual: str | None) -> None:
        super().__init__(
            f"Task {task_id} expected status {expected}, found {actual}"
        )
        self.task_id = task_id
        self.expected = expected
        self.actual = actual


class AlreadyTerminal(MobZapError):
    """任务已在终态 -- 幂等空操作，仅内部使用，不向调用方暴露为错误

    条件流转落空（已被其他路径抢先置为终态）时抛出，由 Reconciler 捕获。
    """

    code = "ALREADY_TERMINAL"

    def __init__(self, task_id: str, status: str | None = None) -> None:
        super().__init__(f"Task {task_id} is already {status or 'terminal'}")
        self.task_id = task_id
        self.status = status
