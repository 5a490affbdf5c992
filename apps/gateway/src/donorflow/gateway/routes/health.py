"""健康检查路由

GET /health: Liveness 检查，永远返回 200。
GET /ready: Readiness 检查，包含 SQLite 连通性、blob 目录、磁盘空间；
           profile=providers 时额外探测签署与估值服务。
"""

import shutil
from pathlib import Path

import structlog
from donorflow.provider import HttpClient
from fastapi import APIRouter, Query, Request
from starlette.responses import JSONResponse

log = structlog.get_logger()

router = APIRouter()


@router.get("/health")
async def health():
    """Liveness 检查 -- 永远返回 200"""
    return {"status": "ok"}


@router.get("/ready")
async def ready(
    request: Request,
    profile: str | None = Query(
        default=None,
        description="检查配置：core（默认）仅核心检查；providers 包含外部服务探测",
    ),
):
    """Readiness 检查 -- 验证核心依赖可用性

    检查项：
    1. sqlite: 数据库连通性
    2. blob_dir: blob 目录可访问性
    3. disk_space_mb: 磁盘剩余空间
    4. signing / valuation: 仅 profile=providers 且为 live 客户端时探测
    """
    effective_profile = profile or "core"
    state = request.app.state

    checks: dict[str, str | int] = {}
    all_ok = True

    try:
        cursor = await state.store_group.conn.execute("SELECT 1")
        await cursor.fetchone()
        checks["sqlite"] = "ok"
    except Exception as e:
        checks["sqlite"] = f"error: {e}"
        all_ok = False

    blob_dir = Path(state.store_group.blob_store.root_dir)
    if blob_dir.exists() and blob_dir.is_dir():
        checks["blob_dir"] = "ok"
    else:
        checks["blob_dir"] = "error: directory does not exist"
        all_ok = False

    try:
        disk_usage = shutil.disk_usage(blob_dir if blob_dir.exists() else "/")
        checks["disk_space_mb"] = disk_usage.free // (1024 * 1024)
    except OSError:
        checks["disk_space_mb"] = 0
        all_ok = False

    for name in ("signing", "valuation"):
        provider = getattr(state, f"{name}_provider", None)
        if effective_profile != "providers" or not isinstance(provider, HttpClient):
            # sandbox 客户端无需探测
            checks[name] = "skipped"
            continue
        if await provider.health_check():
            checks[name] = "ok"
        else:
            log.warning("provider_health_check_failed", provider=name)
            checks[name] = "unreachable"
            all_ok = False

    return JSONResponse(
        status_code=200 if all_ok else 503,
        content={
            "status": "ready" if all_ok else "not_ready",
            "profile": effective_profile,
            "checks": checks,
        },
    )
