"""HttpClient -- 外部服务 HTTP 调用封装

统一超时、连接类错误与非 2xx 响应的异常映射：
连接失败/超时 -> ProviderUnreachableError，非 2xx -> ProviderResponseError。
"""

import time
from typing import Any

import httpx
import structlog

from .exceptions import ProviderError, ProviderResponseError, ProviderUnreachableError

log = structlog.get_logger()

# 健康检查超时（硬编码，应快速响应）
HEALTH_CHECK_TIMEOUT_S = 5

# 连接类异常类型集合
_CONNECTION_ERROR_TYPES = (
    ConnectionError,
    OSError,
    TimeoutError,
    httpx.ConnectError,
    httpx.ConnectTimeout,
    httpx.TimeoutException,
    httpx.NetworkError,
)


def _is_connection_error(e: Exception) -> bool:
    """判断异常是否为连接类错误（服务不可达）"""
    return isinstance(e, _CONNECTION_ERROR_TYPES)


class HttpClient:
    """外部服务 HTTP 客户端基类

    transport 参数供测试注入 httpx.MockTransport。
    """

    service_name = "http"

    def __init__(
        self,
        base_url: str,
        timeout_s: int = 30,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout_s = timeout_s
        self._transport = transport

    async def _request(
        self,
        method: str,
        path: str,
        headers: dict[str, str] | None = None,
        json: Any = None,
    ) -> httpx.Response:
        """发送请求并映射错误

        Raises:
            ProviderUnreachableError: 连接失败或超时
            ProviderResponseError: 非 2xx 响应
        """
        url = f"{self._base_url}{path}"
        start_time = time.monotonic()
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout_s,
                transport=self._transport,
            ) as http_client:
                resp = await http_client.request(method, url, headers=headers, json=json)
        except Exception as e:
            duration_ms = int((time.monotonic() - start_time) * 1000)
            log.error(
                "provider_call_failed",
                service=self.service_name,
                method=method,
                path=path,
                error_type=type(e).__name__,
                duration_ms=duration_ms,
            )
            if _is_connection_error(e):
                raise ProviderUnreachableError(url=url, original_error=e) from e
            raise ProviderError(f"{self.service_name} 调用失败: {e}") from e

        duration_ms = int((time.monotonic() - start_time) * 1000)
        if resp.is_error:
            log.warning(
                "provider_call_rejected",
                service=self.service_name,
                method=method,
                path=path,
                status_code=resp.status_code,
                duration_ms=duration_ms,
            )
            raise ProviderResponseError(
                f"{self.service_name} {method} {path} 返回 {resp.status_code}: "
                f"{_error_message(resp)}",
                status_code=resp.status_code,
            )

        log.debug(
            "provider_call_completed",
            service=self.service_name,
            method=method,
            path=path,
            status_code=resp.status_code,
            duration_ms=duration_ms,
        )
        return resp

    async def health_check(self, path: str = "/") -> bool:
        """检查服务可达性

        注意: 此方法不抛出异常，所有异常内部捕获并返回 False。
        """
        url = f"{self._base_url}{path}"
        try:
            async with httpx.AsyncClient(transport=self._transport) as http_client:
                resp = await http_client.get(url, timeout=HEALTH_CHECK_TIMEOUT_S)
                return resp.status_code < 500
        except Exception as e:
            log.debug("health_check_failed", url=url, error=str(e))
            return False


def _error_message(resp: httpx.Response) -> str:
    """从错误响应中提取 message（兼容 {error: {message}} 与纯文本）"""
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200]
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if body.get("message"):
            return str(body["message"])
    return resp.text[:200]
