"""工作流作用域路由

POST /api/workflows/{participants|donations}/{scope_id}/tasks: 种子（幂等）
POST /api/workflows/{participants|donations}/{scope_id}/reset: 管理员重置
POST /api/workflows/{participants|donations}/{scope_id}/appraiser: 绑定估值师
"""

from enum import StrEnum

from donorflow.core.models import Actor, Task, WorkflowScope
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..deps import get_current_actor, get_workflow_service
from ..services.workflow_service import WorkflowService

router = APIRouter(prefix="/api/workflows")


class ScopePath(StrEnum):
    PARTICIPANTS = "participants"
    DONATIONS = "donations"


def _scope(kind: ScopePath, scope_id: str) -> WorkflowScope:
    if kind == ScopePath.PARTICIPANTS:
        return WorkflowScope.participant(scope_id)
    return WorkflowScope.donation(scope_id)


class SeedResponse(BaseModel):
    scope: str
    created: bool
    tasks: list[Task]


class ResetResponse(BaseModel):
    scope: str
    tasks: list[Task]


class BindAppraiserRequest(BaseModel):
    appraiser_id: str = Field(min_length=1)


class BindAppraiserResponse(BaseModel):
    scope: str
    appraiser_id: str
    assigned_task_ids: list[str]


@router.post("/{kind}/{scope_id}/tasks", response_model=SeedResponse)
async def seed_workflow(
    kind: ScopePath,
    scope_id: str,
    actor: Actor = Depends(get_current_actor),
    service: WorkflowService = Depends(get_workflow_service),
):
    """生成初始任务；已存在时原样返回 created=False"""
    scope = _scope(kind, scope_id)
    tasks, created = await service.seed(scope, actor)
    return SeedResponse(scope=scope.key, created=created, tasks=tasks)


@router.post("/{kind}/{scope_id}/reset", response_model=ResetResponse)
async def reset_workflow(
    kind: ScopePath,
    scope_id: str,
    actor: Actor = Depends(get_current_actor),
    service: WorkflowService = Depends(get_workflow_service),
):
    scope = _scope(kind, scope_id)
    tasks = await service.reset(scope, actor)
    return ResetResponse(scope=scope.key, tasks=tasks)


@router.post("/{kind}/{scope_id}/appraiser", response_model=BindAppraiserResponse)
async def bind_appraiser(
    kind: ScopePath,
    scope_id: str,
    body: BindAppraiserRequest,
    actor: Actor = Depends(get_current_actor),
    service: WorkflowService = Depends(get_workflow_service),
):
    scope = _scope(kind, scope_id)
    assigned = await service.bind_appraiser(scope, body.appraiser_id, actor)
    return BindAppraiserResponse(
        scope=scope.key,
        appraiser_id=body.appraiser_id,
        assigned_task_ids=assigned,
    )
