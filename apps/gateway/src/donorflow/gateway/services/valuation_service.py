"""ValuationService -- AI 估值事件适配

webhook 时间戳必须在服务器时间 ±DONORFLOW_WEBHOOK_MAX_AGE_S 内，否则以 401
拒绝且不修改任何任务。按 metadata.valuation_id 找到全部任务：
ai_appraisal_submission 任务在 completed 时经 CompletionEngine 完成，
其余情况只合并 valuation_status / valuation_amount / report_url。
"""

import time
from typing import Any, Literal

import structlog
from donorflow.core.config import VALUATION_WEBHOOK_ACTOR_ID, get_webhook_max_age_s
from donorflow.core.engine import CompletionEngine
from donorflow.core.exceptions import (
    Forbidden,
    InvalidState,
    NotFound,
    Unauthorized,
    UpstreamUnavailable,
    WorkflowError,
)
from donorflow.core.guard import can_act
from donorflow.core.models import (
    Actor,
    AssignedRole,
    Task,
    TaskStatus,
    TaskType,
)
from donorflow.core.store import StoreGroup
from donorflow.provider import ProviderError, ValuationProvider
from pydantic import BaseModel, Field, ValidationError

log = structlog.get_logger()


class ValuationWebhook(BaseModel):
    """估值服务 webhook payload"""

    valuation_id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    status: Literal["pending", "in_progress", "completed", "failed"]
    valuation_amount: float | None = None
    valuation_date: str | None = None
    report_url: str | None = None
    completed_at: str | None = None
    signature: str | None = None
    timestamp: float


class ValuationOutcome(BaseModel):
    """单个任务的处理结果"""

    task_id: str
    valuation_status: str
    task_completed: bool = False
    already_completed: bool = False
    metadata_updated: bool = False
    unblocked_task_ids: list[str] = Field(default_factory=list)


def is_fresh(timestamp: Any, now: float | None = None, max_age_s: int | None = None) -> bool:
    """webhook 时间戳（Unix 秒）是否在允许窗口内"""
    if isinstance(timestamp, bool) or not isinstance(timestamp, int | float):
        return False
    now = time.time() if now is None else now
    max_age_s = get_webhook_max_age_s() if max_age_s is None else max_age_s
    return abs(now - timestamp) <= max_age_s


class ValuationService:
    """估值事件 -> CompletionEngine"""

    def __init__(
        self,
        store_group: StoreGroup,
        engine: CompletionEngine,
        provider: ValuationProvider,
    ) -> None:
        self._stores = store_group
        self._engine = engine
        self._provider = provider

    async def handle_webhook(self, body: Any, now: float | None = None) -> dict[str, Any]:
        """处理估值 webhook

        Raises:
            Unauthorized: 时间戳缺失或超出允许窗口（不修改任何任务）
        """
        timestamp = body.get("timestamp") if isinstance(body, dict) else None
        if not is_fresh(timestamp, now):
            log.warning(
                "valuation_webhook_rejected",
                reason="stale_or_missing_timestamp",
                timestamp=timestamp,
            )
            raise Unauthorized("valuation webhook timestamp outside the allowed window")

        try:
            payload = ValuationWebhook.model_validate(body)
        except ValidationError as e:
            log.warning("valuation_webhook_invalid_payload", error_count=e.error_count())
            return {"success": True, "processed": 0, "message": "Invalid payload ignored"}

        tasks = await self._stores.task_store.find_by_metadata("valuation_id", payload.valuation_id)
        if not tasks:
            log.warning(
                "valuation_webhook_unknown_valuation",
                valuation_id=payload.valuation_id,
                status=payload.status,
            )
            return {"success": True, "processed": 0, "message": "Valuation not found in system"}

        outcomes: list[ValuationOutcome] = []
        for task in tasks:
            try:
                outcome = await self._apply(task, payload, VALUATION_WEBHOOK_ACTOR_ID, "webhook")
                outcomes.append(outcome)
            except WorkflowError as e:
                log.error(
                    "valuation_webhook_task_failed",
                    task_id=task.task_id,
                    valuation_id=payload.valuation_id,
                    code=e.code,
                    error=e.message,
                )

        log.info(
            "valuation_webhook_processed",
            valuation_id=payload.valuation_id,
            status=payload.status,
            processed=len(outcomes),
        )
        return {
            "success": True,
            "processed": len(outcomes),
            "results": [o.model_dump() for o in outcomes],
        }

    async def request_valuation(
        self,
        task_id: str,
        actor: Actor,
        company_info: dict[str, Any] | None = None,
        email: str = "",
        first_name: str = "User",
        last_name: str = "Name",
        phone: str | None = None,
    ) -> dict[str, Any]:
        """发起 AI 估值

        外部调用全部在任务写入之前完成：任一失败抛 UpstreamUnavailable，任务不变。
        已有 valuation_id 的任务复用原估值，只生成新会话。
        """
        task = await self._require(task_id)
        if task.type != TaskType.AI_APPRAISAL_REQUEST:
            raise InvalidState(f"task {task_id} is not an AI appraisal request")
        if task.assigned_to != actor.actor_id or task.assigned_role != AssignedRole.DONOR:
            raise Forbidden(f"actor {actor.actor_id} is not the donor of task {task_id}")
        if task.status not in (TaskStatus.PENDING, TaskStatus.IN_PROGRESS):
            raise InvalidState(f"task {task_id} is {task.status}")

        existing_id = getattr(task.metadata, "valuation_id", None)
        existing_user_id = getattr(task.metadata, "valuation_user_id", None)
        try:
            if existing_id and existing_user_id:
                valuation_id, valuation_user_id = existing_id, existing_user_id
            else:
                user = await self._provider.create_user(email, first_name, last_name, phone)
                valuation = await self._provider.create_valuation(user.id, company_info)
                valuation_id, valuation_user_id = valuation.id, user.id
            session = await self._provider.create_session(valuation_id)
        except ProviderError as e:
            raise UpstreamUnavailable(
                f"valuation provider failed for task {task_id}: {e}",
                service="valuation",
            ) from e

        ids = None
        if existing_id != valuation_id:
            ids = {
                "valuation_user_id": valuation_user_id,
                "valuation_id": valuation_id,
                "valuation_status": "pending",
            }
        # 认领与估值 ID 同一事务写入
        if task.status == TaskStatus.PENDING:
            await self._engine.start(task_id, actor.actor_id, metadata_updates=ids)
        elif ids:
            await self._engine.merge_metadata(task_id, ids, actor.actor_id)

        log.info(
            "valuation_requested",
            task_id=task_id,
            valuation_id=valuation_id,
            actor_id=actor.actor_id,
        )
        return {
            "success": True,
            "valuation_id": valuation_id,
            "valuation_user_id": valuation_user_id,
            "session_url": session.login_url,
        }

    async def refresh_valuation(self, task_id: str, actor: Actor) -> ValuationOutcome:
        """轮询估值状态，结果走与 webhook 相同的处理路径"""
        task = await self._require(task_id)
        if not (actor.is_admin or can_act(actor, task)):
            raise Forbidden(f"actor {actor.actor_id} may not refresh task {task_id}")
        valuation_id = getattr(task.metadata, "valuation_id", None)
        if not valuation_id:
            raise InvalidState(f"task {task_id} has no valuation")

        try:
            valuation = await self._provider.get_valuation(valuation_id)
        except ProviderError as e:
            raise UpstreamUnavailable(
                f"valuation provider failed for {valuation_id}: {e}",
                service="valuation",
            ) from e

        payload = ValuationWebhook(
            valuation_id=valuation_id,
            user_id=valuation.user_id or getattr(task.metadata, "valuation_user_id", "") or "-",
            status=valuation.status,
            valuation_amount=valuation.valuation_amount,
            report_url=valuation.report_url,
            completed_at=valuation.completed_at,
            timestamp=time.time(),
        )
        return await self._apply(task, payload, actor.actor_id, "poll")

    async def _apply(
        self,
        task: Task,
        payload: ValuationWebhook,
        actor_id: str,
        source: str,
    ) -> ValuationOutcome:
        """把一次估值状态应用到一个任务"""
        updates: dict[str, Any] = {"valuation_status": payload.status}
        if payload.valuation_amount is not None:
            updates["valuation_amount"] = payload.valuation_amount
        if payload.report_url:
            updates["report_url"] = payload.report_url
        if payload.status == "completed" and payload.completed_at:
            updates["valuation_completed_at"] = payload.completed_at
        if payload.status == "failed":
            log.error(
                "valuation_failed",
                task_id=task.task_id,
                valuation_id=payload.valuation_id,
            )

        if task.status == TaskStatus.COMPLETED:
            return ValuationOutcome(
                task_id=task.task_id,
                valuation_status=payload.status,
                already_completed=True,
            )

        if task.type == TaskType.AI_APPRAISAL_SUBMISSION and payload.status == "completed":
            result = await self._engine.complete(
                task.task_id,
                actor_id,
                metadata_updates=updates,
                source=source,
            )
            return ValuationOutcome(
                task_id=task.task_id,
                valuation_status=payload.status,
                task_completed=not result.already_completed,
                already_completed=result.already_completed,
                metadata_updated=True,
                unblocked_task_ids=result.unblocked_task_ids,
            )

        changed = {k: v for k, v in updates.items() if getattr(task.metadata, k, None) != v}
        if changed:
            await self._engine.merge_metadata(task.task_id, changed, actor_id, source=source)
        return ValuationOutcome(
            task_id=task.task_id,
            valuation_status=payload.status,
            metadata_updated=bool(changed),
        )

    async def _require(self, task_id: str) -> Task:
        task = await self._stores.task_store.get_task(task_id)
        if task is None:
            raise NotFound(f"task {task_id} not found")
        return task
