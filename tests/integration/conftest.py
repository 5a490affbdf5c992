"""集成测试共享 fixture

通过环境变量配置（sandbox 模式 + 静态 token 表），走真实 lifespan 启动应用。
"""

import json
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from donorflow.gateway.main import create_app
from httpx import ASGITransport, AsyncClient

STATIC_TOKENS = {
    "t-admin": {"actor_id": "admin-1", "role": "admin"},
    "t-npo": {"actor_id": "npo-1", "role": "nonprofit_admin", "organization_id": "org-1"},
    "t-donor": {"actor_id": "donor-1", "role": "donor"},
    "t-appraiser": {"actor_id": "appraiser-1", "role": "appraiser"},
}


@pytest.fixture
def headers() -> dict[str, dict[str, str]]:
    return {
        "admin": {"Authorization": "Bearer t-admin"},
        "npo": {"Authorization": "Bearer t-npo"},
        "donor": {"Authorization": "Bearer t-donor"},
        "appraiser": {"Authorization": "Bearer t-appraiser"},
    }


@pytest.fixture
def integration_env(monkeypatch, tmp_path: Path) -> Path:
    """指向临时目录的 sandbox 配置"""
    monkeypatch.setenv("DONORFLOW_DB_PATH", str(tmp_path / "sqlite" / "donorflow.db"))
    monkeypatch.setenv("DONORFLOW_BLOB_DIR", str(tmp_path / "blobs"))
    monkeypatch.setenv("DONORFLOW_PROVIDER_MODE", "sandbox")
    monkeypatch.setenv("DONORFLOW_STATIC_TOKENS", json.dumps(STATIC_TOKENS))
    monkeypatch.setenv("LOGFIRE_SEND_TO_LOGFIRE", "false")
    return tmp_path


@pytest_asyncio.fixture
async def integration_app(integration_env: Path):
    """集成测试用 FastAPI app（lifespan 已启动）"""
    app = create_app()
    async with app.router.lifespan_context(app):
        yield app


@pytest_asyncio.fixture
async def client(integration_app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=integration_app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest_asyncio.fixture
async def seeded_campaign(client: AsyncClient, headers) -> None:
    """管理员登记活动 c1 与参与者 p1（捐赠者 donor-1）"""
    resp = await client.put(
        "/api/admin/campaigns/c1",
        json={
            "title": "Spring Equity Drive",
            "organization_name": "Helping Hands",
            "created_by": "npo-1",
        },
        headers=headers["admin"],
    )
    assert resp.status_code == 200
    resp = await client.put(
        "/api/admin/participants/p1",
        json={"campaign_id": "c1", "user_id": "donor-1"},
        headers=headers["admin"],
    )
    assert resp.status_code == 200
