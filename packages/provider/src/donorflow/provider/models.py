"""数据模型 -- 外部服务返回值

字段名按本项目约定（snake_case），通过别名兼容外部 API 的字段命名。
"""

from datetime import datetime
from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class EnvelopeStatus(BaseModel):
    """签署信封状态"""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    envelope_id: str = Field(validation_alias=AliasChoices("envelope_id", "envelopeId"))
    status: str = Field(description="created / sent / delivered / completed / declined / voided")
    completed_at: datetime | None = Field(
        default=None,
        validation_alias=AliasChoices("completed_at", "completedDateTime"),
    )
    status_changed_at: datetime | None = Field(
        default=None,
        validation_alias=AliasChoices("status_changed_at", "statusChangedDateTime"),
    )

    @property
    def is_completed(self) -> bool:
        return self.status == "completed"


class ValuationUser(BaseModel):
    """估值服务中的影子用户"""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(validation_alias=AliasChoices("id", "user_uuid"))
    email: str = ""
    first_name: str = Field(default="", validation_alias=AliasChoices("first_name", "firstName"))
    last_name: str = Field(default="", validation_alias=AliasChoices("last_name", "lastName"))


ValuationState = Literal["pending", "in_progress", "completed", "failed"]


class Valuation(BaseModel):
    """估值记录"""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(validation_alias=AliasChoices("id", "valuation_uuid"))
    user_id: str = Field(default="", validation_alias=AliasChoices("user_id", "userId"))
    status: ValuationState = "pending"
    valuation_amount: float | None = Field(
        default=None,
        validation_alias=AliasChoices("valuation_amount", "valuationAmount"),
    )
    report_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("report_url", "reportUrl"),
    )
    completed_at: str | None = Field(
        default=None,
        validation_alias=AliasChoices("completed_at", "valuationDate", "valuation_date"),
    )


class ValuationSession(BaseModel):
    """用户直接访问估值服务的会话"""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    token: str = Field(validation_alias=AliasChoices("token", "access_token"))
    login_url: str = Field(validation_alias=AliasChoices("login_url", "loginUrl"))
    expires_at: datetime | None = None


class AuthToken(BaseModel):
    """服务间认证令牌"""

    token: str
    expires_at: datetime


class IdentityClaims(BaseModel):
    """身份服务确认的操作者"""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    actor_id: str = Field(validation_alias=AliasChoices("actor_id", "uid", "sub"))
    role: str
    organization_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("organization_id", "organizationId"),
    )
