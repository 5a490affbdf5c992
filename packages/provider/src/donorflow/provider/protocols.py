"""外部服务接口协议

服务层只依赖这些 Protocol，live 客户端与 sandbox 实现均满足。
"""

from typing import Any, Protocol

from .models import EnvelopeStatus, IdentityClaims, Valuation, ValuationSession, ValuationUser


class IdentityProvider(Protocol):
    """bearer token -> 操作者身份"""

    async def verify(self, token: str) -> IdentityClaims | None: ...


class SigningProvider(Protocol):
    """电子签署服务"""

    async def get_envelope_status(self, envelope_id: str) -> EnvelopeStatus: ...

    async def download_signed_artifact(self, envelope_id: str) -> bytes: ...


class ValuationProvider(Protocol):
    """AI 估值服务"""

    async def create_user(
        self,
        email: str,
        first_name: str,
        last_name: str,
        phone: str | None = None,
    ) -> ValuationUser: ...

    async def create_valuation(
        self,
        user_id: str,
        company_info: dict[str, Any] | None = None,
    ) -> Valuation: ...

    async def update_valuation(self, valuation_id: str, updates: dict[str, Any]) -> Valuation: ...

    async def get_valuation(self, valuation_id: str) -> Valuation: ...

    async def create_session(self, valuation_id: str) -> ValuationSession: ...
