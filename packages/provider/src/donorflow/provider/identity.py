"""IdentityProvider -- bearer token 校验

两种实现：
- HttpIdentityProvider: 调用身份服务 introspection 端点（live 模式）
- StaticTokenIdentityProvider: 配置中的静态 token 表（sandbox 模式）
"""

import httpx
import structlog

from .client import HttpClient
from .exceptions import ProviderResponseError
from .models import IdentityClaims

log = structlog.get_logger()


class HttpIdentityProvider(HttpClient):
    """身份服务 introspection 客户端"""

    service_name = "identity"

    def __init__(
        self,
        identity_url: str,
        timeout_s: int = 30,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(identity_url, timeout_s=timeout_s, transport=transport)

    async def verify(self, token: str) -> IdentityClaims | None:
        """校验 token，无效返回 None

        Raises:
            ProviderUnreachableError: 身份服务不可达
            ProviderResponseError: 身份服务返回 401/403 以外的错误
        """
        try:
            resp = await self._request(
                "POST",
                "/verify",
                headers={"Authorization": f"Bearer {token}"},
            )
        except ProviderResponseError as e:
            if e.code == "AUTH_FAILED":
                return None
            raise
        return IdentityClaims.model_validate(resp.json())


class StaticTokenIdentityProvider:
    """静态 token 表（sandbox 与测试使用）"""

    def __init__(self, tokens: dict[str, dict[str, str | None]]) -> None:
        self._tokens = tokens

    async def verify(self, token: str) -> IdentityClaims | None:
        entry = self._tokens.get(token)
        if entry is None:
            log.info("static_token_unknown")
            return None
        return IdentityClaims.model_validate(entry)
