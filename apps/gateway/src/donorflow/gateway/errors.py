"""异常 -> HTTP 响应映射

响应体统一为 {"error": {"code", "message"}}；message 只给出面向用户的
通用提示（不允许 / 不存在 / 请重试），内部细节只写日志。
"""

import structlog
from donorflow.core.exceptions import DataIntegrity, WorkflowError
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.responses import JSONResponse

log = structlog.get_logger()


def error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": code, "message": message}},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """注册工作流异常与请求校验异常的处理器"""

    @app.exception_handler(WorkflowError)
    async def workflow_error_handler(request: Request, exc: WorkflowError) -> JSONResponse:
        if isinstance(exc, DataIntegrity):
            log.error(
                "data_integrity_violation",
                path=request.url.path,
                task_ids=exc.task_ids,
                error=exc.message,
            )
        elif exc.status_code >= 500:
            log.error(
                "workflow_error",
                path=request.url.path,
                code=exc.code,
                error=exc.message,
            )
        else:
            log.warning(
                "workflow_error",
                path=request.url.path,
                code=exc.code,
                error=exc.message,
            )
        return error_response(exc.status_code, exc.code, exc.user_message)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        log.warning(
            "request_validation_failed",
            path=request.url.path,
            error_count=len(exc.errors()),
        )
        return error_response(422, "VALIDATION_ERROR", "The request is invalid")
