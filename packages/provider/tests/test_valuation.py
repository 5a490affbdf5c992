"""ValuationClient 单元测试 -- token 缓存、响应解包、401 重试"""

import json
from datetime import UTC, datetime, timedelta

import httpx
import pytest
from donorflow.provider.exceptions import ProviderResponseError
from donorflow.provider.valuation import ValuationClient


def _token_body(expires_in: timedelta = timedelta(hours=1)) -> dict:
    return {
        "success": True,
        "data": {
            "token": "svc-token",
            "expires_at": (datetime.now(UTC) + expires_in).isoformat(),
        },
    }


@pytest.fixture
def make_client(mock_transport):
    def _make(handler) -> ValuationClient:
        return ValuationClient(
            api_url="https://valuation.local",
            client_id="cid",
            client_secret="secret",
            transport=mock_transport(handler),
        )

    return _make


class TestValuationClient:
    async def test_token_is_cached(self, make_client, recorded_requests):
        """同一 token 未过期时只认证一次"""

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/api/authentication/tokens":
                return httpx.Response(200, json=_token_body())
            return httpx.Response(
                200,
                json={"success": True, "data": {"id": "val-1", "status": "in_progress"}},
            )

        client = make_client(handler)
        await client.get_valuation("val-1")
        await client.get_valuation("val-1")

        auth_calls = [r for r in recorded_requests if r.url.path == "/api/authentication/tokens"]
        assert len(auth_calls) == 1
        assert json.loads(auth_calls[0].content) == {"client_id": "cid", "client_secret": "secret"}
        assert recorded_requests[-1].headers["Authorization"] == "Bearer svc-token"

    async def test_expired_token_is_refreshed(self, make_client, recorded_requests):
        """过期 token 在下次调用前重新获取"""

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/api/authentication/tokens":
                return httpx.Response(200, json=_token_body(timedelta(seconds=-1)))
            return httpx.Response(200, json={"success": True, "data": {"id": "val-1"}})

        client = make_client(handler)
        await client.get_valuation("val-1")
        await client.get_valuation("val-1")

        auth_calls = [r for r in recorded_requests if r.url.path == "/api/authentication/tokens"]
        assert len(auth_calls) == 2

    async def test_rejected_token_retried_once(self, make_client, recorded_requests):
        """401 时丢弃缓存 token 重新认证并重试一次"""
        calls = {"get": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/api/authentication/tokens":
                return httpx.Response(200, json=_token_body())
            calls["get"] += 1
            if calls["get"] == 1:
                return httpx.Response(401, json={"error": {"message": "expired"}})
            return httpx.Response(200, json={"success": True, "data": {"id": "val-1"}})

        valuation = await make_client(handler).get_valuation("val-1")

        assert valuation.id == "val-1"
        assert calls["get"] == 2

    async def test_create_user_and_valuation(self, make_client, recorded_requests):
        """创建用户与估值的请求形状"""

        def handler(request: httpx.Request) -> httpx.Response:
            path = request.url.path
            if path == "/api/authentication/tokens":
                return httpx.Response(200, json=_token_body())
            if path == "/api/users/create":
                return httpx.Response(
                    200,
                    json={"success": True, "data": {"user_uuid": "u-1", "email": "d@x.org"}},
                )
            if path == "/api/valuations/create":
                return httpx.Response(
                    200,
                    json={"success": True, "data": {"valuation_uuid": "v-1", "userId": "u-1"}},
                )
            return httpx.Response(404)

        client = make_client(handler)
        user = await client.create_user("d@x.org", "Dana", "Donor")
        valuation = await client.create_valuation(user.id, {"company_name": "Acme"})

        assert user.id == "u-1"
        assert valuation.id == "v-1"
        assert valuation.user_id == "u-1"
        assert valuation.status == "pending"
        body = json.loads(recorded_requests[-1].content)
        assert body == {"user_id": "u-1", "company_info": {"company_name": "Acme"}}

    async def test_unsuccessful_envelope_raises(self, make_client):
        """success=false 视为服务端错误"""

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/api/authentication/tokens":
                return httpx.Response(200, json=_token_body())
            return httpx.Response(
                200,
                json={"success": False, "data": None, "error": {"code": "X", "message": "boom"}},
            )

        with pytest.raises(ProviderResponseError) as exc_info:
            await make_client(handler).get_valuation("val-1")
        assert "boom" in str(exc_info.value)
        assert exc_info.value.recoverable is True

    async def test_create_session(self, make_client):
        """会话字段别名映射"""

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/api/authentication/tokens":
                return httpx.Response(200, json=_token_body())
            return httpx.Response(
                200,
                json={
                    "success": True,
                    "data": {"access_token": "sess", "loginUrl": "https://v.local/login"},
                },
            )

        session = await make_client(handler).create_session("val-1")
        assert session.token == "sess"
        assert session.login_url == "https://v.local/login"
