"""TraceMiddleware -- 为任务操作绑定 task_id / trace_id

从 /api/tasks/{task_id}[/...] 与 /api/valuation/{task_id}/refresh 路径中提取 task_id，
绑定到 structlog contextvars，贯穿该请求的全部日志。
"""

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response


def extract_task_id(path: str) -> str | None:
    """从请求路径提取 task_id，无则返回 None"""
    parts = [p for p in path.split("/") if p]
    if len(parts) >= 3 and parts[0] == "api" and parts[1] == "tasks":
        return parts[2]
    if len(parts) == 4 and parts[:2] == ["api", "valuation"] and parts[3] == "refresh":
        return parts[2]
    return None


class TraceMiddleware(BaseHTTPMiddleware):
    """任务级追踪中间件 -- 为任务操作绑定 trace_id"""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        task_id = extract_task_id(request.url.path)
        if task_id:
            # 与事件表中的 trace_id 一致
            structlog.contextvars.bind_contextvars(
                task_id=task_id,
                trace_id=f"trace-{task_id}",
            )

        return await call_next(request)
