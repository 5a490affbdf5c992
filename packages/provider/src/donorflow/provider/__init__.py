"""DonorFlow Provider -- 外部服务调用抽象层

packages/provider 的公开接口导出。
"""

# 核心组件
from .client import HttpClient

# 配置
from .config import ProviderConfig, load_provider_config

# 异常
from .exceptions import ProviderError, ProviderResponseError, ProviderUnreachableError
from .identity import HttpIdentityProvider, StaticTokenIdentityProvider

# 数据模型
from .models import (
    AuthToken,
    EnvelopeStatus,
    IdentityClaims,
    Valuation,
    ValuationSession,
    ValuationUser,
)
from .protocols import IdentityProvider, SigningProvider, ValuationProvider
from .sandbox import SandboxSigningProvider, SandboxValuationProvider
from .signing import DocuSignClient
from .valuation import ValuationClient

__all__ = [
    "AuthToken",
    "EnvelopeStatus",
    "IdentityClaims",
    "Valuation",
    "ValuationSession",
    "ValuationUser",
    "HttpClient",
    "DocuSignClient",
    "ValuationClient",
    "HttpIdentityProvider",
    "StaticTokenIdentityProvider",
    "SandboxSigningProvider",
    "SandboxValuationProvider",
    "IdentityProvider",
    "SigningProvider",
    "ValuationProvider",
    "ProviderConfig",
    "load_provider_config",
    "ProviderError",
    "ProviderUnreachableError",
    "ProviderResponseError",
]
