"""FastAPI 应用主文件

app 创建 + lifespan 管理：DB 初始化/关闭 + 外部服务客户端初始化 + 路由注册。
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from donorflow.core.config import get_blob_base_url, get_blob_dir, get_db_path
from donorflow.core.engine import CompletionEngine
from donorflow.core.factory import TaskFactory
from donorflow.core.store import create_store_group
from donorflow.provider import (
    DocuSignClient,
    HttpIdentityProvider,
    IdentityProvider,
    ProviderConfig,
    SandboxSigningProvider,
    SandboxValuationProvider,
    SigningProvider,
    StaticTokenIdentityProvider,
    ValuationClient,
    ValuationProvider,
    load_provider_config,
)
from fastapi import FastAPI

from .errors import register_exception_handlers
from .middleware.logging_config import setup_logfire, setup_logging
from .middleware.logging_mw import LoggingMiddleware
from .middleware.trace_mw import TraceMiddleware
from .routes import admin, donations, health, signing, tasks, valuation, workflows

log = structlog.get_logger()


def build_providers(
    config: ProviderConfig,
) -> tuple[SigningProvider, ValuationProvider, IdentityProvider]:
    """按运行模式构造签署 / 估值 / 身份三个外部服务客户端"""
    if config.mode == "sandbox":
        log.info("providers_initialized", mode="sandbox", token_count=len(config.static_tokens))
        return (
            SandboxSigningProvider(),
            SandboxValuationProvider(),
            StaticTokenIdentityProvider(config.static_tokens),
        )

    signing_provider = DocuSignClient(
        base_url=config.signing_base_url,
        account_id=config.signing_account_id,
        access_token=config.signing_access_token.get_secret_value(),
        timeout_s=config.timeout_s,
    )
    valuation_provider = ValuationClient(
        api_url=config.valuation_api_url,
        client_id=config.valuation_client_id,
        client_secret=config.valuation_client_secret.get_secret_value(),
        timeout_s=config.timeout_s,
    )
    identity_provider: IdentityProvider
    if config.identity_url:
        identity_provider = HttpIdentityProvider(config.identity_url, timeout_s=config.timeout_s)
    else:
        # 未配置身份服务时退回静态 token 表
        log.warning("identity_url_not_configured", fallback="static_tokens")
        identity_provider = StaticTokenIdentityProvider(config.static_tokens)

    log.info(
        "providers_initialized",
        mode="live",
        signing_url=config.signing_base_url,
        valuation_url=config.valuation_api_url,
        timeout_s=config.timeout_s,
    )
    return signing_provider, valuation_provider, identity_provider


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期管理：启动时初始化 DB 和外部服务客户端，关闭时清理连接"""
    store_group = await create_store_group(get_db_path(), get_blob_dir(), get_blob_base_url())
    app.state.store_group = store_group
    # 作用域锁挂在引擎实例上，整个进程共享一个
    app.state.engine = CompletionEngine(store_group)
    app.state.factory = TaskFactory(store_group)

    provider_config = load_provider_config()
    app.state.provider_config = provider_config
    (
        app.state.signing_provider,
        app.state.valuation_provider,
        app.state.identity_provider,
    ) = build_providers(provider_config)

    yield

    if getattr(app.state, "store_group", None) is not None:
        await app.state.store_group.close()


def create_app() -> FastAPI:
    """创建 FastAPI 应用实例"""
    app = FastAPI(
        title="DonorFlow Gateway",
        version="0.1.0",
        description="DonorFlow 捐赠工作流任务编排 API",
        lifespan=lifespan,
    )

    # 注册中间件（顺序：先 Trace 后 Logging）
    app.add_middleware(TraceMiddleware)
    app.add_middleware(LoggingMiddleware)

    # 初始化日志
    setup_logging()
    setup_logfire()

    register_exception_handlers(app)

    app.include_router(health.router, tags=["health"])
    app.include_router(tasks.router, tags=["tasks"])
    app.include_router(workflows.router, tags=["workflows"])
    app.include_router(donations.router, tags=["donations"])
    app.include_router(signing.router, tags=["signing"])
    app.include_router(valuation.router, tags=["valuation"])
    app.include_router(admin.router, tags=["admin"])

    return app


# 默认 app 实例（uvicorn 入口）
app = create_app()
