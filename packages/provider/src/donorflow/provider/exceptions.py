"""Provider 异常体系

服务层在写任务之前把这些异常转换为 UpstreamUnavailable / Unauthorized。
"""


class ProviderError(Exception):
    """Provider 包基础异常"""

    def __init__(self, message: str, recoverable: bool = True) -> None:
        """
        Args:
            message: 错误描述
            recoverable: 是否可通过重试恢复
        """
        super().__init__(message)
        self.recoverable = recoverable


class ProviderUnreachableError(ProviderError):
    """外部服务不可达（连接失败、超时、DNS 解析失败等）"""

    def __init__(self, url: str, original_error: Exception) -> None:
        """
        Args:
            url: 尝试连接的地址
            original_error: 原始异常
        """
        super().__init__(
            f"外部服务不可达: {url} -- {original_error}",
            recoverable=True,
        )
        self.url = url
        self.original_error = original_error


class ProviderResponseError(ProviderError):
    """外部服务返回非 2xx 响应"""

    def __init__(self, message: str, status_code: int, code: str | None = None) -> None:
        """
        Args:
            message: 错误描述
            status_code: HTTP 状态码
            code: 归类后的错误码，缺省按状态码映射
        """
        self.status_code = status_code
        self.code = code or error_code_for_status(status_code)
        super().__init__(
            message,
            recoverable=self.code in ("RATE_LIMITED", "SERVER_ERROR"),
        )


def error_code_for_status(status_code: int) -> str:
    """HTTP 状态码 -> 错误码"""
    if status_code in (401, 403):
        return "AUTH_FAILED"
    if status_code in (400, 422):
        return "VALIDATION_ERROR"
    if status_code == 404:
        return "NOT_FOUND"
    if status_code == 429:
        return "RATE_LIMITED"
    return "SERVER_ERROR"
