"""apps/gateway 测试配置 -- FastAPI app + httpx AsyncClient + 静态 token 身份

StoreGroup / 作用域记录 fixture 定义在根 conftest，这里复用同一个 StoreGroup，
手动初始化 app.state（绕过 lifespan）。
"""

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from donorflow.core.engine import CompletionEngine
from donorflow.core.factory import TaskFactory
from donorflow.core.store import StoreGroup
from donorflow.gateway.main import create_app
from donorflow.provider import (
    SandboxSigningProvider,
    SandboxValuationProvider,
    StaticTokenIdentityProvider,
)
from httpx import ASGITransport, AsyncClient

TOKENS: dict[str, dict[str, str | None]] = {
    "donor-token": {"actor_id": "donor-1", "role": "donor"},
    "npo-token": {"actor_id": "npo-1", "role": "nonprofit_admin", "organization_id": "org-1"},
    "appraiser-token": {"actor_id": "appraiser-1", "role": "appraiser"},
    "appraiser-2-token": {"actor_id": "appraiser-2", "role": "appraiser"},
    "admin-token": {"actor_id": "admin-1", "role": "admin"},
    "system-token": {"actor_id": "docusign-webhook", "role": "system"},
    "wizard-token": {"actor_id": "merlin", "role": "wizard"},
}


@pytest.fixture
def auth() -> dict[str, dict[str, str]]:
    """角色名 -> Authorization 请求头"""
    return {
        name: {"Authorization": f"Bearer {name}-token"}
        for name in ("donor", "npo", "appraiser", "appraiser-2", "admin", "system", "wizard")
    }


@pytest.fixture
def signing_provider() -> SandboxSigningProvider:
    return SandboxSigningProvider()


@pytest.fixture
def valuation_provider() -> SandboxValuationProvider:
    return SandboxValuationProvider()


@pytest.fixture
def app(
    monkeypatch,
    store_group: StoreGroup,
    engine: CompletionEngine,
    factory: TaskFactory,
    signing_provider: SandboxSigningProvider,
    valuation_provider: SandboxValuationProvider,
):
    """创建测试用 FastAPI app 实例"""
    monkeypatch.setenv("LOGFIRE_SEND_TO_LOGFIRE", "false")

    application = create_app()
    # 手动初始化（绕过 lifespan）
    application.state.store_group = store_group
    application.state.engine = engine
    application.state.factory = factory
    application.state.signing_provider = signing_provider
    application.state.valuation_provider = valuation_provider
    application.state.identity_provider = StaticTokenIdentityProvider(TOKENS)
    return application


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """提供 httpx AsyncClient 用于测试"""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
