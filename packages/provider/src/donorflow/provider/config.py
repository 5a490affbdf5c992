"""ProviderConfig -- 外部服务配置加载

从环境变量加载配置，不硬编码服务地址与凭证。
"""

import json
import os
from typing import Literal

import structlog
from pydantic import BaseModel, Field, SecretStr

log = structlog.get_logger()


class ProviderConfig(BaseModel):
    """Provider 包配置 -- 从环境变量加载

    环境变量:
        DONORFLOW_PROVIDER_MODE: 运行模式（live/sandbox）
        DONORFLOW_SIGNING_BASE_URL / _ACCOUNT_ID / _ACCESS_TOKEN: 电子签署服务
        DONORFLOW_VALUATION_API_URL / _CLIENT_ID / _CLIENT_SECRET: 估值服务
        DONORFLOW_IDENTITY_URL: 身份校验服务
        DONORFLOW_STATIC_TOKENS: sandbox 模式的 token 表（JSON）
        DONORFLOW_PROVIDER_TIMEOUT_S: 调用超时（秒，默认 30）
    """

    mode: Literal["live", "sandbox"] = Field(
        default="live",
        description="运行模式：live 调用真实服务 / sandbox 使用内存实现",
    )
    signing_base_url: str = Field(
        default="https://demo.docusign.net/restapi",
        description="电子签署 REST 基础 URL",
    )
    signing_account_id: str = Field(default="", description="电子签署账户 ID")
    signing_access_token: SecretStr = Field(
        default=SecretStr(""),
        description="电子签署访问令牌",
    )
    valuation_api_url: str = Field(default="", description="估值服务基础 URL")
    valuation_client_id: str = Field(default="", description="估值服务 client_id")
    valuation_client_secret: SecretStr = Field(
        default=SecretStr(""),
        description="估值服务 client_secret",
    )
    identity_url: str = Field(default="", description="身份校验服务 URL")
    static_tokens: dict[str, dict[str, str | None]] = Field(
        default_factory=dict,
        description="token -> {actor_id, role, organization_id}",
    )
    timeout_s: int = Field(
        default=30,
        ge=1,
        description="外部调用超时（秒）",
    )


def load_provider_config() -> ProviderConfig:
    """从环境变量加载 Provider 配置

    Returns:
        ProviderConfig 实例
    """
    kwargs: dict = {}

    if val := os.environ.get("DONORFLOW_PROVIDER_MODE"):
        kwargs["mode"] = val

    if val := os.environ.get("DONORFLOW_SIGNING_BASE_URL"):
        kwargs["signing_base_url"] = val

    if val := os.environ.get("DONORFLOW_SIGNING_ACCOUNT_ID"):
        kwargs["signing_account_id"] = val

    if val := os.environ.get("DONORFLOW_SIGNING_ACCESS_TOKEN"):
        kwargs["signing_access_token"] = SecretStr(val)

    if val := os.environ.get("DONORFLOW_VALUATION_API_URL"):
        kwargs["valuation_api_url"] = val

    if val := os.environ.get("DONORFLOW_VALUATION_CLIENT_ID"):
        kwargs["valuation_client_id"] = val

    if val := os.environ.get("DONORFLOW_VALUATION_CLIENT_SECRET"):
        kwargs["valuation_client_secret"] = SecretStr(val)

    if val := os.environ.get("DONORFLOW_IDENTITY_URL"):
        kwargs["identity_url"] = val

    if val := os.environ.get("DONORFLOW_STATIC_TOKENS"):
        try:
            kwargs["static_tokens"] = json.loads(val)
        except json.JSONDecodeError:
            log.warning(
                "invalid_static_tokens_config",
                env_var="DONORFLOW_STATIC_TOKENS",
            )

    if val := os.environ.get("DONORFLOW_PROVIDER_TIMEOUT_S"):
        try:
            kwargs["timeout_s"] = int(val)
        except ValueError:
            log.warning(
                "invalid_timeout_config",
                env_var="DONORFLOW_PROVIDER_TIMEOUT_S",
                value=val,
                fallback=30,
            )
            # 使用默认值，不阻塞启动

    return ProviderConfig(**kwargs)
