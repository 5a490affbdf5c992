"""任务路由

GET /api/tasks: 按 participant_id 或 donation_id 查询作用域任务（按 order 排序）。
GET /api/tasks/{task_id}: 任务详情，含事件列表。
POST /api/tasks/{task_id}/...: start / complete / comments / commitment-decision /
    convert-to-ai-appraisal / cancel / metadata。
"""

from typing import Any

from donorflow.core.engine import CompletionResult
from donorflow.core.exceptions import InvalidState
from donorflow.core.models import Actor, Event, Task, TaskComment, WorkflowScope
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from ..deps import get_current_actor, get_task_service
from ..services.task_service import TaskService

router = APIRouter(prefix="/api/tasks")


class TaskListResponse(BaseModel):
    """作用域任务列表"""

    scope: str
    tasks: list[Task]


class TaskDetailResponse(BaseModel):
    """任务详情"""

    task: Task
    events: list[Event]


class CompleteRequest(BaseModel):
    completion_data: dict[str, Any] | None = None


class CommentRequest(BaseModel):
    content: str = Field(min_length=1, max_length=10000)


class CommitmentDecisionRequest(BaseModel):
    decision: str = Field(description="commit_now / commit_after_appraisal")
    commitment_data: dict[str, Any] | None = None


class CancelRequest(BaseModel):
    reason: str = ""


class MetadataRequest(BaseModel):
    updates: dict[str, Any] = Field(min_length=1)


@router.get("", response_model=TaskListResponse)
async def list_tasks(
    participant_id: str | None = Query(default=None),
    donation_id: str | None = Query(default=None),
    actor: Actor = Depends(get_current_actor),
    service: TaskService = Depends(get_task_service),
):
    """查询一个作用域的全部任务"""
    if (participant_id is None) == (donation_id is None):
        raise InvalidState("exactly one of participant_id / donation_id is required")
    scope = (
        WorkflowScope.participant(participant_id)
        if participant_id is not None
        else WorkflowScope.donation(donation_id or "")
    )
    tasks = await service.list_tasks(scope, actor)
    return TaskListResponse(scope=scope.key, tasks=tasks)


@router.get("/{task_id}", response_model=TaskDetailResponse)
async def get_task_detail(
    task_id: str,
    actor: Actor = Depends(get_current_actor),
    service: TaskService = Depends(get_task_service),
):
    task = await service.get_task(task_id, actor)
    events = await service.get_events(task_id, actor)
    return TaskDetailResponse(task=task, events=events)


@router.post("/{task_id}/start", response_model=Task)
async def start_task(
    task_id: str,
    actor: Actor = Depends(get_current_actor),
    service: TaskService = Depends(get_task_service),
):
    return await service.start_task(task_id, actor)


@router.post("/{task_id}/complete", response_model=CompletionResult)
async def complete_task(
    task_id: str,
    body: CompleteRequest | None = None,
    actor: Actor = Depends(get_current_actor),
    service: TaskService = Depends(get_task_service),
):
    """直接完成任务；重复完成返回 already_completed=True"""
    completion_data = body.completion_data if body else None
    return await service.complete_task(task_id, actor, completion_data)


@router.post("/{task_id}/comments", response_model=TaskComment, status_code=201)
async def add_comment(
    task_id: str,
    body: CommentRequest,
    actor: Actor = Depends(get_current_actor),
    service: TaskService = Depends(get_task_service),
):
    return await service.add_comment(task_id, actor, body.content)


@router.post("/{task_id}/commitment-decision", response_model=CompletionResult)
async def submit_commitment_decision(
    task_id: str,
    body: CommitmentDecisionRequest,
    actor: Actor = Depends(get_current_actor),
    service: TaskService = Depends(get_task_service),
):
    return await service.submit_commitment_decision(
        task_id, actor, body.decision, body.commitment_data
    )


@router.post("/{task_id}/convert-to-ai-appraisal", response_model=Task)
async def convert_to_ai_appraisal(
    task_id: str,
    actor: Actor = Depends(get_current_actor),
    service: TaskService = Depends(get_task_service),
):
    return await service.convert_to_ai_appraisal(task_id, actor)


@router.post("/{task_id}/cancel", response_model=Task)
async def cancel_task(
    task_id: str,
    body: CancelRequest | None = None,
    actor: Actor = Depends(get_current_actor),
    service: TaskService = Depends(get_task_service),
):
    return await service.cancel_task(task_id, actor, body.reason if body else "")


@router.post("/{task_id}/metadata", response_model=Task)
async def merge_metadata(
    task_id: str,
    body: MetadataRequest,
    actor: Actor = Depends(get_current_actor),
    service: TaskService = Depends(get_task_service),
):
    """合并用户侧 metadata（如签署信封 ID）"""
    return await service.merge_metadata(task_id, actor, body.updates)
