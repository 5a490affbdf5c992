"""Task Domain Model

tasks 表是工作流状态的唯一来源。
status 只允许由 CompletionEngine 写入，metadata 只允许通过 merge 调用修改。
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, model_validator

from .enums import AssignedRole, ScopeKind, TaskPriority, TaskStatus, TaskType
from .metadata import GenericMetadata, TaskMetadata, default_metadata_for, metadata_kind_for


class WorkflowScope(BaseModel):
    """工作流作用域 -- participant 或 donation 二选一"""

    model_config = {"frozen": True}

    kind: ScopeKind
    scope_id: str

    @property
    def key(self) -> str:
        """作用域唯一键，如 participant:p1"""
        return f"{self.kind.value}:{self.scope_id}"

    @classmethod
    def participant(cls, participant_id: str) -> "WorkflowScope":
        return cls(kind=ScopeKind.PARTICIPANT, scope_id=participant_id)

    @classmethod
    def donation(cls, donation_id: str) -> "WorkflowScope":
        return cls(kind=ScopeKind.DONATION, scope_id=donation_id)


class TaskComment(BaseModel):
    """任务评论（append-only）"""

    comment_id: str
    user_id: str
    user_role: str = ""
    content: str
    created_at: datetime


class Task(BaseModel):
    """Task 数据模型

    participant_id 与 donation_id 必须且只能设置一个，决定任务所属作用域。
    """

    task_id: str = Field(description="任务 ID，系统生成任务为 {scope_id}_{slug}")
    participant_id: str | None = Field(default=None, description="参与者作用域")
    donation_id: str | None = Field(default=None, description="捐赠作用域")
    campaign_id: str = Field(default="", description="活动 ID")
    donor_id: str = Field(default="", description="捐赠者 ID")
    title: str = Field(description="任务标题")
    description: str = Field(default="", description="任务说明")
    type: TaskType = Field(description="任务类型")
    assigned_to: str | None = Field(
        default=None,
        description="执行者 ID；None 或角色占位值表示任意持有 assigned_role 的操作者",
    )
    assigned_role: AssignedRole = Field(description="执行所需角色")
    status: TaskStatus = Field(default=TaskStatus.BLOCKED, description="当前状态")
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM, description="优先级")
    dependencies: list[str] = Field(default_factory=list, description="前置任务 ID")
    order: int = Field(default=0, description="展示顺序")
    metadata: TaskMetadata = Field(default_factory=GenericMetadata)
    comments: list[TaskComment] = Field(default_factory=list)
    completion_data: dict[str, Any] | None = Field(default=None, description="完成时提交的数据")
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None
    completed_by: str | None = None
    created_by: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _fill_metadata(cls, data: Any) -> Any:
        """未提供 metadata（或 metadata 缺 kind）时按任务类型补齐"""
        if not isinstance(data, dict) or "type" not in data:
            return data
        task_type = TaskType(data["type"])
        metadata = data.get("metadata")
        if metadata is None:
            data = {**data, "metadata": default_metadata_for(task_type)}
        elif isinstance(metadata, dict) and "kind" not in metadata:
            data = {**data, "metadata": {**metadata, "kind": metadata_kind_for(task_type)}}
        return data

    @model_validator(mode="after")
    def _check_scope_and_metadata(self) -> "Task":
        if (self.participant_id is None) == (self.donation_id is None):
            raise ValueError("task must belong to exactly one of participant_id / donation_id")
        expected_kind = metadata_kind_for(self.type)
        if self.metadata.kind != expected_kind:
            raise ValueError(
                f"metadata kind {self.metadata.kind} does not match task type {self.type}"
            )
        return self

    @property
    def scope(self) -> WorkflowScope:
        """任务所属作用域"""
        if self.participant_id is not None:
            return WorkflowScope.participant(self.participant_id)
        return WorkflowScope.donation(self.donation_id or "")
