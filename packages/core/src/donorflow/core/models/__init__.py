"""DonorFlow Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .actor import Actor
from .enums import (
    ACTIONABLE_STATES,
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    ActorRole,
    AssignedRole,
    EventType,
    ScopeKind,
    TaskPriority,
    TaskStatus,
    TaskType,
    validate_transition,
)
from .event import Event
from .metadata import (
    CommitmentMetadata,
    CommitmentOption,
    DocumentMetadata,
    GenericMetadata,
    InvitationMetadata,
    SigningMetadata,
    TaskMetadata,
    ValuationMetadata,
    default_metadata_for,
    metadata_kind_for,
)
from .payloads import (
    CommentAddedPayload,
    MetadataUpdatedPayload,
    StateTransitionPayload,
    TaskAssignedPayload,
    TaskConvertedPayload,
    TaskCreatedPayload,
    WorkflowResetPayload,
)
from .task import Task, TaskComment, WorkflowScope
from .workflow import Campaign, CampaignStats, Donation, Participant

__all__ = [
    # 枚举
    "TaskStatus",
    "TaskType",
    "AssignedRole",
    "ActorRole",
    "TaskPriority",
    "ScopeKind",
    "EventType",
    # 状态机
    "VALID_TRANSITIONS",
    "TERMINAL_STATES",
    "ACTIONABLE_STATES",
    "validate_transition",
    # Task
    "Task",
    "TaskComment",
    "WorkflowScope",
    # Metadata
    "TaskMetadata",
    "SigningMetadata",
    "CommitmentMetadata",
    "CommitmentOption",
    "InvitationMetadata",
    "DocumentMetadata",
    "ValuationMetadata",
    "GenericMetadata",
    "metadata_kind_for",
    "default_metadata_for",
    # Actor
    "Actor",
    # 作用域记录
    "Campaign",
    "Participant",
    "Donation",
    "CampaignStats",
    # Event
    "Event",
    # Payloads
    "TaskCreatedPayload",
    "StateTransitionPayload",
    "MetadataUpdatedPayload",
    "CommentAddedPayload",
    "TaskAssignedPayload",
    "TaskConvertedPayload",
    "WorkflowResetPayload",
]
