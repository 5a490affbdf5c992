"""Event Payload 子类型

所有事件的结构化 payload 定义。
"""

from pydantic import BaseModel, Field

from .enums import TaskStatus, TaskType


class TaskCreatedPayload(BaseModel):
    """TASK_CREATED 事件 payload"""

    title: str
    type: TaskType
    status: TaskStatus
    order: int
    dependencies: list[str] = Field(default_factory=list)


class StateTransitionPayload(BaseModel):
    """STATE_TRANSITION 事件 payload"""

    from_status: TaskStatus
    to_status: TaskStatus
    reason: str = Field(default="")
    # 由哪个任务的完成触发（级联解锁时填写）
    triggered_by: str | None = Field(default=None)


class MetadataUpdatedPayload(BaseModel):
    """METADATA_UPDATED 事件 payload"""

    fields: list[str] = Field(description="被新增或覆盖的字段名")
    source: str = Field(default="", description="更新来源：webhook / poll / user")


class CommentAddedPayload(BaseModel):
    """COMMENT_ADDED 事件 payload"""

    comment_id: str
    content_length: int


class TaskAssignedPayload(BaseModel):
    """TASK_ASSIGNED 事件 payload"""

    from_assignee: str | None
    to_assignee: str


class TaskConvertedPayload(BaseModel):
    """TASK_CONVERTED 事件 payload"""

    from_type: TaskType
    to_type: TaskType


class WorkflowResetPayload(BaseModel):
    """WORKFLOW_RESET 事件 payload"""

    deleted_task_count: int
    created_task_count: int
