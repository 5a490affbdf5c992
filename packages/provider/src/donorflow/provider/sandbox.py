"""Sandbox 实现 -- 不访问外部网络

DONORFLOW_PROVIDER_MODE=sandbox 时使用，行为可由测试直接设置：
信封状态与估值记录保存在内存字典中。
"""

import asyncio
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog
from ulid import ULID

from .exceptions import ProviderResponseError
from .models import EnvelopeStatus, Valuation, ValuationSession, ValuationUser

log = structlog.get_logger()

# 最小合法 PDF 内容
_SANDBOX_PDF = b"%PDF-1.4\n% sandbox signed document\n%%EOF\n"


class SandboxSigningProvider:
    """内存版电子签署服务

    未登记的信封视为 sent 状态。
    """

    def __init__(self) -> None:
        self.envelopes: dict[str, str] = {}
        self.documents: dict[str, bytes] = {}

    def set_status(self, envelope_id: str, status: str, document: bytes | None = None) -> None:
        self.envelopes[envelope_id] = status
        if document is not None:
            self.documents[envelope_id] = document

    async def get_envelope_status(self, envelope_id: str) -> EnvelopeStatus:
        await asyncio.sleep(0)
        status = self.envelopes.get(envelope_id, "sent")
        return EnvelopeStatus(
            envelope_id=envelope_id,
            status=status,
            completed_at=datetime.now(UTC) if status == "completed" else None,
        )

    async def download_signed_artifact(self, envelope_id: str) -> bytes:
        await asyncio.sleep(0)
        if self.envelopes.get(envelope_id) != "completed":
            raise ProviderResponseError(
                f"envelope {envelope_id} is not completed",
                status_code=404,
            )
        return self.documents.get(envelope_id, _SANDBOX_PDF)


class SandboxValuationProvider:
    """内存版估值服务"""

    def __init__(self) -> None:
        self.users: dict[str, ValuationUser] = {}
        self.valuations: dict[str, Valuation] = {}

    async def create_user(
        self,
        email: str,
        first_name: str,
        last_name: str,
        phone: str | None = None,
    ) -> ValuationUser:
        user = ValuationUser(
            id=str(ULID()),
            email=email,
            first_name=first_name,
            last_name=last_name,
        )
        self.users[user.id] = user
        log.debug("sandbox_valuation_user_created", valuation_user_id=user.id)
        return user

    async def create_valuation(
        self,
        user_id: str,
        company_info: dict[str, Any] | None = None,
    ) -> Valuation:
        valuation = Valuation(id=str(ULID()), user_id=user_id, status="pending")
        self.valuations[valuation.id] = valuation
        return valuation

    async def update_valuation(self, valuation_id: str, updates: dict[str, Any]) -> Valuation:
        current = await self.get_valuation(valuation_id)
        updated = current.model_copy(update=updates)
        self.valuations[valuation_id] = updated
        return updated

    async def get_valuation(self, valuation_id: str) -> Valuation:
        valuation = self.valuations.get(valuation_id)
        if valuation is None:
            raise ProviderResponseError(
                f"valuation {valuation_id} not found",
                status_code=404,
            )
        return valuation

    async def create_session(self, valuation_id: str) -> ValuationSession:
        await self.get_valuation(valuation_id)
        token = str(ULID())
        return ValuationSession(
            token=token,
            login_url=f"https://valuation.sandbox.invalid/login?token={token}",
            expires_at=datetime.now(UTC) + timedelta(hours=1),
        )
