"""TaskService -- 用户直接操作任务的业务逻辑

所有操作先经 AuthorizationGuard，再交给 CompletionEngine；
服务层不直接写 status。
"""

from datetime import UTC, datetime
from typing import Any

import structlog
from donorflow.core.engine import CompletionEngine, CompletionResult
from donorflow.core.exceptions import Forbidden, InvalidState, NotFound
from donorflow.core.factory import TaskFactory, build_donation_commitment_task
from donorflow.core.guard import authorize, can_act, require_admin
from donorflow.core.models import (
    TERMINAL_STATES,
    Actor,
    Event,
    Task,
    TaskComment,
    TaskStatus,
    TaskType,
    WorkflowScope,
)
from donorflow.core.store import StoreGroup

log = structlog.get_logger()

COMMIT_NOW = "commit_now"
COMMIT_AFTER_APPRAISAL = "commit_after_appraisal"
COMMITMENT_DECISIONS = (COMMIT_NOW, COMMIT_AFTER_APPRAISAL)

# commit_after_appraisal 后参与者进入的状态
PARTICIPANT_AWAITING_APPRAISAL = "awaiting_appraisal"

# 由签署 / 估值适配器或承诺决策写入的字段，用户侧 metadata 合并不可覆盖
ADAPTER_OWNED_FIELDS = frozenset(
    {
        "envelope_status",
        "signed_at",
        "signed_document_url",
        "last_status_check",
        "valuation_status",
        "valuation_amount",
        "report_url",
        "valuation_completed_at",
        "decision",
        "decided_at",
    }
)


class TaskService:
    """任务业务服务"""

    def __init__(
        self,
        store_group: StoreGroup,
        engine: CompletionEngine,
        factory: TaskFactory,
    ) -> None:
        self._stores = store_group
        self._engine = engine
        self._factory = factory

    # ---- 查询 ----

    async def get_task(self, task_id: str, actor: Actor) -> Task:
        """查询单个任务

        Raises:
            NotFound: 任务不存在
            Forbidden: actor 与任务无关
        """
        task = await self._require(task_id)
        if not self._can_view(actor, task):
            raise Forbidden(f"actor {actor.actor_id} may not view task {task_id}")
        return task

    async def list_tasks(self, scope: WorkflowScope, actor: Actor) -> list[Task]:
        """查询作用域内全部任务（按 order 排序）"""
        tasks = await self._stores.task_store.list_tasks_for_scope(scope)
        if tasks and not any(self._can_view(actor, t) for t in tasks):
            raise Forbidden(f"actor {actor.actor_id} may not view scope {scope.key}")
        return tasks

    async def get_events(self, task_id: str, actor: Actor) -> list[Event]:
        await self.get_task(task_id, actor)
        return await self._stores.event_store.get_events_for_task(task_id)

    # ---- 用户操作 ----

    async def start_task(self, task_id: str, actor: Actor) -> Task:
        task = await self._require(task_id)
        authorize(actor, task)
        return await self._engine.start(task_id, actor.actor_id)

    async def complete_task(
        self,
        task_id: str,
        actor: Actor,
        completion_data: dict[str, Any] | None = None,
    ) -> CompletionResult:
        """直接完成（Direct completion 适配器）"""
        task = await self._require(task_id)
        authorize(actor, task)
        if task.type == TaskType.COMMITMENT_DECISION and task.status != TaskStatus.COMPLETED:
            # 承诺决策必须带 decision，走专用入口
            raise InvalidState(f"task {task_id} requires a commitment decision")
        return await self._engine.complete(task_id, actor.actor_id, completion_data=completion_data)

    async def submit_commitment_decision(
        self,
        task_id: str,
        actor: Actor,
        decision: str,
        commitment_data: dict[str, Any] | None = None,
    ) -> CompletionResult:
        """提交承诺决策

        commit_now: 与决策完成同批创建 donation_commitment 任务（随即被解锁）；
        commit_after_appraisal: 参与者状态与决策完成同批改为 awaiting_appraisal。
        """
        if decision not in COMMITMENT_DECISIONS:
            raise InvalidState(f"unknown commitment decision {decision}")
        task = await self._require(task_id)
        authorize(actor, task)
        if task.type != TaskType.COMMITMENT_DECISION:
            raise InvalidState(f"task {task_id} is not a commitment decision task")

        now = datetime.now(UTC)
        metadata_updates: dict[str, Any] = {"decision": decision, "decided_at": now}
        if commitment_data:
            metadata_updates["commitment_data"] = commitment_data
        new_tasks = [build_donation_commitment_task(task, now)] if decision == COMMIT_NOW else []

        result = await self._engine.complete(
            task_id,
            actor.actor_id,
            completion_data={"decision": decision},
            metadata_updates=metadata_updates,
            new_tasks=new_tasks,
            participant_status=(
                PARTICIPANT_AWAITING_APPRAISAL if decision == COMMIT_AFTER_APPRAISAL else None
            ),
        )
        log.info(
            "commitment_decision_recorded",
            task_id=task_id,
            decision=decision,
            created_task_ids=result.created_task_ids,
        )
        return result

    async def convert_to_ai_appraisal(self, task_id: str, actor: Actor) -> Task:
        """邀请估值师任务改为 AI 估值"""
        task = await self._require(task_id)
        authorize(actor, task)
        if task.status == TaskStatus.COMPLETED:
            raise InvalidState(f"task {task_id} is already completed")
        return await self._factory.convert_to_ai_appraisal(task_id, actor.actor_id)

    async def add_comment(self, task_id: str, actor: Actor, content: str) -> TaskComment:
        """评论不受任务状态限制，但要求与任务相关"""
        task = await self._require(task_id)
        if not self._can_view(actor, task):
            raise Forbidden(f"actor {actor.actor_id} may not comment on task {task_id}")
        return await self._engine.add_comment(task_id, actor, content)

    async def merge_metadata(self, task_id: str, actor: Actor, updates: dict[str, Any]) -> Task:
        """用户侧 metadata 合并（如记录签署信封 ID）"""
        task = await self._require(task_id)
        if not actor.is_admin:
            authorize(actor, task)
            if task.status in TERMINAL_STATES:
                raise InvalidState(f"task {task_id} is {task.status}")
            owned = ADAPTER_OWNED_FIELDS.intersection(updates)
            if owned:
                raise Forbidden(f"fields {sorted(owned)} of task {task_id} are not user-writable")
        return await self._engine.merge_metadata(task_id, updates, actor.actor_id)

    async def cancel_task(self, task_id: str, actor: Actor, reason: str = "") -> Task:
        require_admin(actor)
        return await self._engine.cancel(task_id, actor.actor_id, reason)

    # ---- 内部 ----

    async def _require(self, task_id: str) -> Task:
        task = await self._stores.task_store.get_task(task_id)
        if task is None:
            raise NotFound(f"task {task_id} not found")
        return task

    @staticmethod
    def _can_view(actor: Actor, task: Task) -> bool:
        return actor.is_admin or actor.actor_id == task.donor_id or can_act(actor, task)
