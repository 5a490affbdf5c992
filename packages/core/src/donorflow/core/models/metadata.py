"""Task metadata 标签联合 -- 按任务类型区分 metadata 形状

每种任务类型对应唯一的 metadata 变体（METADATA_KIND_BY_TYPE），
变体通过 kind 字段区分。merge 只新增或覆盖字段，从不删除。
"""

from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from .enums import TaskType


class _MetadataBase(BaseModel):
    model_config = ConfigDict(extra="forbid")

    def merged(self, updates: dict[str, Any]):
        """返回合并 updates 后的新实例（仅新增/覆盖，不删除）

        Raises:
            ValueError: updates 含该变体不存在的字段
        """
        if "kind" in updates and updates["kind"] != self.kind:
            raise ValueError(f"cannot change metadata kind from {self.kind}")
        data = self.model_dump()
        data.update(updates)
        return type(self).model_validate(data)


class SigningMetadata(_MetadataBase):
    """电子签署任务"""

    kind: Literal["signing"] = "signing"
    document_path: str | None = None
    document_name: str | None = None
    docusign_envelope_id: str | None = Field(default=None, description="签署信封 ID")
    envelope_status: str | None = None
    signing_url: str | None = None
    signed_at: datetime | None = None
    signed_document_url: str | None = Field(default=None, description="已签署文件的存储 URL")
    last_status_check: datetime | None = None
    automated_reminders: bool = True


class CommitmentOption(BaseModel):
    """承诺决策选项"""

    id: str
    label: str
    description: str = ""


class CommitmentMetadata(_MetadataBase):
    """承诺决策 / 捐赠承诺任务"""

    kind: Literal["commitment"] = "commitment"
    options: list[CommitmentOption] = Field(default_factory=list)
    campaign_title: str | None = None
    organization_name: str | None = None
    decision: str | None = None
    decided_at: datetime | None = None
    commitment_data: dict[str, Any] | None = None
    requires_amount: bool = False


class InvitationMetadata(_MetadataBase):
    """邀请任务（邀请估值师）"""

    kind: Literal["invitation"] = "invitation"
    invitation_type: str = "appraiser"
    role: str = "appraiser"
    invitation_token: str | None = None
    invited_email: str | None = None
    invited_at: datetime | None = None


class DocumentMetadata(_MetadataBase):
    """文件上传 / 审阅任务"""

    kind: Literal["document"] = "document"
    document_types: list[str] = Field(default_factory=list)
    document_path: str | None = None
    upload_folders: list[str] = Field(default_factory=list)
    document_ids: list[str] = Field(default_factory=list)
    requires_approval: bool = False
    automated_reminders: bool = False


class ValuationMetadata(_MetadataBase):
    """估值类任务（AI 估值请求/提交/审阅，人工估值）"""

    kind: Literal["valuation"] = "valuation"
    appraisal_method: str | None = None
    original_task_type: str | None = None
    valuation_user_id: str | None = None
    valuation_id: str | None = Field(default=None, description="外部估值 ID")
    valuation_status: str | None = None
    valuation_amount: float | None = None
    report_url: str | None = None
    valuation_completed_at: str | None = None


class GenericMetadata(_MetadataBase):
    """其他任务类型，字段开放"""

    model_config = ConfigDict(extra="allow")

    kind: Literal["generic"] = "generic"


TaskMetadata = Annotated[
    SigningMetadata
    | CommitmentMetadata
    | InvitationMetadata
    | DocumentMetadata
    | ValuationMetadata
    | GenericMetadata,
    Field(discriminator="kind"),
]

METADATA_CLASS_BY_KIND: dict[str, type[_MetadataBase]] = {
    "signing": SigningMetadata,
    "commitment": CommitmentMetadata,
    "invitation": InvitationMetadata,
    "document": DocumentMetadata,
    "valuation": ValuationMetadata,
    "generic": GenericMetadata,
}

METADATA_KIND_BY_TYPE: dict[TaskType, str] = {
    TaskType.DOCUSIGN_SIGNATURE: "signing",
    TaskType.DOCUMENT_SIGNING: "signing",
    TaskType.COMMITMENT_DECISION: "commitment",
    TaskType.DONATION_COMMITMENT: "commitment",
    TaskType.INVITATION: "invitation",
    TaskType.DOCUMENT_UPLOAD: "document",
    TaskType.DOCUMENT_REVIEW: "document",
    TaskType.AI_APPRAISAL_REQUEST: "valuation",
    TaskType.AI_APPRAISAL_SUBMISSION: "valuation",
    TaskType.AI_APPRAISAL_REVIEW: "valuation",
    TaskType.APPRAISAL_REVIEW: "valuation",
    TaskType.APPRAISAL_SUBMISSION: "valuation",
}


def metadata_kind_for(task_type: TaskType) -> str:
    """任务类型对应的 metadata 变体 kind"""
    return METADATA_KIND_BY_TYPE.get(task_type, "generic")


def default_metadata_for(task_type: TaskType) -> _MetadataBase:
    """构造任务类型对应的空 metadata"""
    return METADATA_CLASS_BY_KIND[metadata_kind_for(task_type)]()
