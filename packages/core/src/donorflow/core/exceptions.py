"""工作流异常体系

Unauthorized / Forbidden / NotFound / InvalidState 直接返回给调用方；
UpstreamUnavailable 表示外部服务失败，任务状态未被修改，可重试；
DataIntegrity 表示依赖图损坏，仅中止当前流转。
"""


class WorkflowError(Exception):
    """工作流基础异常"""

    code: str = "WORKFLOW_ERROR"
    status_code: int = 500
    # 面向终端用户的通用提示，不暴露内部状态
    user_message: str = "Something went wrong, please try again"

    def __init__(self, message: str, recoverable: bool = False) -> None:
        """
        Args:
            message: 错误描述（仅用于日志）
            recoverable: 是否可通过重试恢复
        """
        super().__init__(message)
        self.message = message
        self.recoverable = recoverable


class Unauthorized(WorkflowError):
    """缺少或无效的身份凭证"""

    code = "UNAUTHORIZED"
    status_code = 401
    user_message = "You are not allowed to do this"


class Forbidden(WorkflowError):
    """身份有效，但角色或归属不满足"""

    code = "FORBIDDEN"
    status_code = 403
    user_message = "You are not allowed to do this"


class NotFound(WorkflowError):
    """任务、作用域或依赖记录不存在"""

    code = "NOT_FOUND"
    status_code = 404
    user_message = "The requested item was not found"


class InvalidState(WorkflowError):
    """任务当前状态不允许该操作"""

    code = "INVALID_STATE"
    status_code = 409
    user_message = "You are not allowed to do this right now"


class UpstreamUnavailable(WorkflowError):
    """签署或估值服务调用失败/超时，任务状态保持不变"""

    code = "UPSTREAM_UNAVAILABLE"
    status_code = 503
    user_message = "Something went wrong, please try again"

    def __init__(self, message: str, service: str = "") -> None:
        super().__init__(message, recoverable=True)
        self.service = service


class DataIntegrity(WorkflowError):
    """依赖图引用了缺失或跨作用域的任务，或存在环"""

    code = "DATA_INTEGRITY"
    status_code = 500
    user_message = "Something went wrong, please try again"

    def __init__(self, message: str, task_ids: list[str] | None = None) -> None:
        super().__init__(message, recoverable=False)
        self.task_ids = task_ids or []
