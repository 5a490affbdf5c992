"""ValuationClient -- AI 估值服务调用

服务间认证：POST /api/authentication/tokens 换取 bearer token，
缓存到过期前，过期后下次调用重新获取。
响应体为 {success, data, error} 时取 data。
"""

import asyncio
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
import structlog

from .client import HttpClient
from .exceptions import ProviderResponseError
from .models import AuthToken, Valuation, ValuationSession, ValuationUser

log = structlog.get_logger()

# 提前刷新 token 的余量
_TOKEN_REFRESH_MARGIN = timedelta(seconds=30)


class ValuationClient(HttpClient):
    """估值服务客户端"""

    service_name = "valuation"

    def __init__(
        self,
        api_url: str,
        client_id: str,
        client_secret: str,
        timeout_s: int = 30,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(api_url, timeout_s=timeout_s, transport=transport)
        self._client_id = client_id
        self._client_secret = client_secret
        self._token: AuthToken | None = None
        self._token_lock = asyncio.Lock()

    async def authenticate(self) -> AuthToken:
        """获取新的服务间 token"""
        resp = await self._request(
            "POST",
            "/api/authentication/tokens",
            json={"client_id": self._client_id, "client_secret": self._client_secret},
        )
        self._token = AuthToken.model_validate(_unwrap(resp.json()))
        log.info("valuation_authenticated", expires_at=self._token.expires_at.isoformat())
        return self._token

    async def _ensure_token(self) -> str:
        async with self._token_lock:
            now = datetime.now(UTC)
            token = self._token
            if token is None or _as_utc(token.expires_at) - _TOKEN_REFRESH_MARGIN <= now:
                await self.authenticate()
            assert self._token is not None
            return self._token.token

    async def _call(self, method: str, path: str, json: Any = None) -> Any:
        """带 token 的请求；401 时丢弃缓存 token 重试一次"""
        for attempt in (1, 2):
            token = await self._ensure_token()
            try:
                resp = await self._request(
                    method,
                    path,
                    headers={"Authorization": f"Bearer {token}"},
                    json=json,
                )
            except ProviderResponseError as e:
                if e.status_code == 401 and attempt == 1:
                    log.info("valuation_token_rejected_retry", path=path)
                    self._token = None
                    continue
                raise
            return _unwrap(resp.json())
        raise AssertionError("unreachable")

    async def create_user(
        self,
        email: str,
        first_name: str,
        last_name: str,
        phone: str | None = None,
    ) -> ValuationUser:
        """在估值服务中创建影子用户"""
        data = await self._call(
            "POST",
            "/api/users/create",
            json={
                "email": email,
                "first_name": first_name,
                "last_name": last_name,
                "phone": phone,
            },
        )
        user = ValuationUser.model_validate(data)
        log.info("valuation_user_created", valuation_user_id=user.id)
        return user

    async def create_valuation(
        self,
        user_id: str,
        company_info: dict[str, Any] | None = None,
    ) -> Valuation:
        """创建估值记录"""
        data = await self._call(
            "POST",
            "/api/valuations/create",
            json={"user_id": user_id, "company_info": company_info or {}},
        )
        valuation = Valuation.model_validate(data)
        log.info("valuation_created", valuation_id=valuation.id, valuation_user_id=user_id)
        return valuation

    async def update_valuation(self, valuation_id: str, updates: dict[str, Any]) -> Valuation:
        """更新估值记录"""
        data = await self._call("PUT", f"/api/valuations/{valuation_id}", json=updates)
        return Valuation.model_validate(data)

    async def get_valuation(self, valuation_id: str) -> Valuation:
        """查询估值记录"""
        data = await self._call("GET", f"/api/valuations/{valuation_id}")
        return Valuation.model_validate(data)

    async def create_session(self, valuation_id: str) -> ValuationSession:
        """为用户生成直接访问估值服务的会话"""
        data = await self._call(
            "POST",
            "/api/authentication/sessions",
            json={"valuation_id": valuation_id},
        )
        return ValuationSession.model_validate(data)


def _unwrap(body: Any) -> Any:
    """{success, data, error} 包裹的响应取 data，其余原样返回"""
    if isinstance(body, dict) and "data" in body and ("success" in body or "error" in body):
        if body.get("success") is False:
            raise ProviderResponseError(
                str((body.get("error") or {}).get("message", "valuation request failed")),
                status_code=502,
            )
        return body["data"]
    return body


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=UTC)
