"""LoggingMiddleware -- 请求级日志

为每个 HTTP 请求生成 ULID request_id，绑定到 structlog contextvars，
并在响应头 X-Request-ID 中返回。webhook 请求额外标记 webhook=True，
便于按来源筛选异常日志。
"""

import time

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from ulid import ULID

_WEBHOOK_PATHS = ("/api/signing/webhook", "/api/valuation/webhook")


class LoggingMiddleware(BaseHTTPMiddleware):
    """请求级日志中间件 -- 为每个请求生成 request_id"""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = str(ULID())
        path = request.url.path

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=path,
        )
        if path in _WEBHOOK_PATHS:
            structlog.contextvars.bind_contextvars(webhook=True)

        log = structlog.get_logger()
        start_time = time.monotonic()
        await log.ainfo("request_started")

        response = await call_next(request)

        duration_ms = int((time.monotonic() - start_time) * 1000)
        if response.status_code >= 500:
            await log.aerror(
                "request_completed",
                status_code=response.status_code,
                duration_ms=duration_ms,
            )
        else:
            await log.ainfo(
                "request_completed",
                status_code=response.status_code,
                duration_ms=duration_ms,
            )

        response.headers["X-Request-ID"] = request_id
        return response
