"""DocuSignClient -- 电子签署服务调用

只实现工作流需要的两个读操作：查询信封状态、下载已签署的合并文档。
"""

import httpx
import structlog

from .client import HttpClient
from .models import EnvelopeStatus

log = structlog.get_logger()


class DocuSignClient(HttpClient):
    """DocuSign eSignature REST v2.1 客户端"""

    service_name = "signing"

    def __init__(
        self,
        base_url: str,
        account_id: str,
        access_token: str,
        timeout_s: int = 30,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Args:
            base_url: REST 基础 URL（含 /restapi）
            account_id: 账户 ID
            access_token: OAuth 访问令牌
            timeout_s: 请求超时（秒）
            transport: 测试注入的 transport
        """
        super().__init__(base_url, timeout_s=timeout_s, transport=transport)
        self._account_id = account_id
        self._access_token = access_token

    def _envelope_path(self, envelope_id: str) -> str:
        return f"/v2.1/accounts/{self._account_id}/envelopes/{envelope_id}"

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._access_token}"}

    async def get_envelope_status(self, envelope_id: str) -> EnvelopeStatus:
        """查询信封状态"""
        resp = await self._request(
            "GET",
            self._envelope_path(envelope_id),
            headers=self._headers(),
        )
        data = resp.json()
        data.setdefault("envelopeId", envelope_id)
        status = EnvelopeStatus.model_validate(data)
        log.info("envelope_status_fetched", envelope_id=envelope_id, status=status.status)
        return status

    async def download_signed_artifact(self, envelope_id: str) -> bytes:
        """下载信封全部文档合并后的 PDF"""
        resp = await self._request(
            "GET",
            f"{self._envelope_path(envelope_id)}/documents/combined",
            headers=self._headers(),
        )
        return resp.content
