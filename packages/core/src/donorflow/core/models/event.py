"""Event Domain Model

事件表 append-only，不允许更新或删除。
event_id 使用 ULID 格式，时间有序；与任务写入在同一事务内提交。
"""

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field
from ulid import ULID

from .enums import EventType


class Event(BaseModel):
    """Event 数据模型 -- 任务变更审计记录"""

    event_id: str = Field(description="唯一标识，ULID 格式，时间有序")
    task_id: str = Field(description="关联的 Task ID")
    scope_key: str = Field(description="所属作用域，如 participant:p1")
    ts: datetime = Field(description="事件时间戳")
    type: EventType = Field(description="事件类型")
    actor_id: str = Field(description="操作者 ID")
    payload: dict[str, Any] = Field(default_factory=dict, description="结构化 payload")
    trace_id: str = Field(default="", description="追踪标识")

    @classmethod
    def new(
        cls,
        task_id: str,
        scope_key: str,
        event_type: EventType,
        actor_id: str,
        payload: BaseModel | None = None,
        ts: datetime | None = None,
    ) -> "Event":
        """生成新事件（ULID + 当前时间）"""
        return cls(
            event_id=str(ULID()),
            task_id=task_id,
            scope_key=scope_key,
            ts=ts or datetime.now(UTC),
            type=event_type,
            actor_id=actor_id,
            payload=payload.model_dump(mode="json") if payload is not None else {},
            trace_id=f"trace-{task_id}",
        )
