"""枚举定义

包含 TaskStatus 状态机、TaskType、角色、优先级、作用域类型、EventType 枚举，
以及 VALID_TRANSITIONS 合法流转映射、TERMINAL_STATES 终态集合和
ACTIONABLE_STATES 可操作状态集合。
"""

from enum import StrEnum


class TaskStatus(StrEnum):
    """Task 状态机"""

    # 依赖未全部完成
    BLOCKED = "blocked"
    # 可开始
    PENDING = "pending"
    IN_PROGRESS = "in_progress"

    # 终态
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# 合法状态流转
VALID_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.BLOCKED: {TaskStatus.PENDING, TaskStatus.CANCELLED},
    TaskStatus.PENDING: {
        TaskStatus.IN_PROGRESS,
        TaskStatus.COMPLETED,
        TaskStatus.CANCELLED,
    },
    TaskStatus.IN_PROGRESS: {TaskStatus.COMPLETED, TaskStatus.CANCELLED},
    # 终态不可再流转
    TaskStatus.COMPLETED: set(),
    TaskStatus.CANCELLED: set(),
}

TERMINAL_STATES: set[TaskStatus] = {
    TaskStatus.COMPLETED,
    TaskStatus.CANCELLED,
}

# 参与者可以对其执行操作的状态
ACTIONABLE_STATES: set[TaskStatus] = {
    TaskStatus.PENDING,
    TaskStatus.IN_PROGRESS,
}


class TaskType(StrEnum):
    """任务类型（封闭枚举）"""

    QUIZ = "quiz"
    DOCUMENT_UPLOAD = "document_upload"
    DOCUMENT_REVIEW = "document_review"
    INVITATION = "invitation"
    DOCUSIGN_SIGNATURE = "docusign_signature"
    DOCUMENT_SIGNING = "document_signing"
    AI_APPRAISAL_REQUEST = "ai_appraisal_request"
    AI_APPRAISAL_SUBMISSION = "ai_appraisal_submission"
    AI_APPRAISAL_REVIEW = "ai_appraisal_review"
    APPRAISAL_REVIEW = "appraisal_review"
    APPRAISAL_SUBMISSION = "appraisal_submission"
    COMMITMENT_DECISION = "commitment_decision"
    DONATION_COMMITMENT = "donation_commitment"
    EQUITY_TRANSFER = "equity_transfer"
    TAX_DOCUMENTATION = "tax_documentation"
    LEGAL_REVIEW = "legal_review"
    PAYMENT_PROCESSING = "payment_processing"
    OTHER = "other"


class AssignedRole(StrEnum):
    """任务所需角色"""

    DONOR = "donor"
    NONPROFIT_ADMIN = "nonprofit_admin"
    APPRAISER = "appraiser"


class ActorRole(StrEnum):
    """操作者角色 -- 由身份服务给出"""

    DONOR = "donor"
    NONPROFIT_ADMIN = "nonprofit_admin"
    APPRAISER = "appraiser"
    ADMIN = "admin"
    SYSTEM = "system"


class TaskPriority(StrEnum):
    """优先级（仅展示用，不影响调度）"""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class ScopeKind(StrEnum):
    """工作流作用域类型"""

    PARTICIPANT = "participant"
    DONATION = "donation"


class EventType(StrEnum):
    """事件类型"""

    TASK_CREATED = "TASK_CREATED"
    STATE_TRANSITION = "STATE_TRANSITION"
    METADATA_UPDATED = "METADATA_UPDATED"
    COMMENT_ADDED = "COMMENT_ADDED"
    TASK_ASSIGNED = "TASK_ASSIGNED"
    TASK_CONVERTED = "TASK_CONVERTED"
    WORKFLOW_RESET = "WORKFLOW_RESET"


def validate_transition(from_status: TaskStatus, to_status: TaskStatus) -> bool:
    """验证状态流转是否合法

    Args:
        from_status: 当前状态
        to_status: 目标状态

    Returns:
        True 如果流转合法，否则 False
    """
    allowed = VALID_TRANSITIONS.get(from_status, set())
    return to_status in allowed
