"""SigningService -- 电子签署事件适配

两条入口：
- handle_webhook: 签署服务推送 envelope-completed 等事件
- check_envelope_status: 用户主动轮询信封状态

两者都按 metadata.docusign_envelope_id 找任务；信封 completed 时下载已签署文件、
写入 blob 存储，并把文件 URL 与完成在同一批次提交。其他状态只合并 envelope_status。
已完成的任务在调用外部服务前跳过，重复投递不会产生第二次写入。
"""

from datetime import UTC, datetime
from typing import Any

import structlog
from donorflow.core.config import SIGNING_STATUS_CHECK_ACTOR_ID, SIGNING_WEBHOOK_ACTOR_ID
from donorflow.core.engine import CompletionEngine
from donorflow.core.exceptions import Forbidden, NotFound, UpstreamUnavailable, WorkflowError
from donorflow.core.guard import can_act
from donorflow.core.models import ACTIONABLE_STATES, Actor, Task, TaskStatus
from donorflow.core.store import StoreGroup
from donorflow.provider import EnvelopeStatus, ProviderError, SigningProvider
from pydantic import BaseModel, Field

log = structlog.get_logger()

# 需要处理的签署事件
HANDLED_EVENTS = frozenset({"envelope-completed", "envelope-sent", "recipient-completed"})

ENVELOPE_COMPLETED = "completed"


class SigningOutcome(BaseModel):
    """单个任务的处理结果"""

    task_id: str
    envelope_status: str
    task_completed: bool = False
    already_completed: bool = False
    signed_document_url: str | None = None
    unblocked_task_ids: list[str] = Field(default_factory=list)


class SigningService:
    """签署事件 -> CompletionEngine"""

    def __init__(
        self,
        store_group: StoreGroup,
        engine: CompletionEngine,
        provider: SigningProvider,
    ) -> None:
        self._stores = store_group
        self._engine = engine
        self._provider = provider

    async def handle_webhook(self, body: Any) -> dict[str, Any]:
        """处理签署 webhook

        永远返回成功确认；异常只记录日志，避免签署服务重试风暴。
        """
        if not isinstance(body, dict) or not body.get("event") or not body.get("data"):
            log.warning("signing_webhook_invalid_payload")
            return {"success": True, "processed": 0, "message": "Invalid payload ignored"}

        event = body["event"]
        if event not in HANDLED_EVENTS:
            log.info("signing_webhook_event_ignored", event=event)
            return {"success": True, "processed": 0, "message": f"Event {event} ignored"}

        data = body["data"]
        summary = data.get("envelopeSummary") or {}
        envelope_id = data.get("envelopeId") or summary.get("envelopeId")
        envelope_status = data.get("envelopeStatus") or summary.get("status")
        if not envelope_id or not envelope_status:
            log.warning("signing_webhook_missing_envelope", event=event)
            return {"success": True, "processed": 0, "message": "No envelope ID"}

        tasks = await self._stores.task_store.find_by_metadata("docusign_envelope_id", envelope_id)
        if not tasks:
            log.warning("signing_webhook_unknown_envelope", envelope_id=envelope_id)
            return {"success": True, "processed": 0, "message": "No associated task found"}

        outcomes: list[SigningOutcome] = []
        for task in tasks:
            try:
                outcome = await self._apply(
                    task, envelope_id, envelope_status, SIGNING_WEBHOOK_ACTOR_ID, "webhook"
                )
                outcomes.append(outcome)
            except WorkflowError as e:
                log.error(
                    "signing_webhook_task_failed",
                    task_id=task.task_id,
                    envelope_id=envelope_id,
                    code=e.code,
                    error=e.message,
                )

        log.info(
            "signing_webhook_processed",
            envelope_id=envelope_id,
            envelope_status=envelope_status,
            processed=len(outcomes),
        )
        return {
            "success": True,
            "processed": len(outcomes),
            "results": [o.model_dump() for o in outcomes],
        }

    async def check_envelope_status(self, envelope_id: str, actor: Actor) -> SigningOutcome:
        """轮询信封状态并按结果推进任务

        Raises:
            NotFound: 没有任务关联该信封
            Forbidden: actor 无权操作关联任务
            UpstreamUnavailable: 签署服务不可用（任务状态不变）
        """
        tasks = await self._stores.task_store.find_by_metadata("docusign_envelope_id", envelope_id)
        if not tasks:
            raise NotFound(f"no task bound to envelope {envelope_id}")
        task = tasks[0]
        if not (actor.is_admin or can_act(actor, task)):
            raise Forbidden(f"actor {actor.actor_id} may not check envelope {envelope_id}")

        if task.status == TaskStatus.COMPLETED:
            return SigningOutcome(
                task_id=task.task_id,
                envelope_status=ENVELOPE_COMPLETED,
                already_completed=True,
                signed_document_url=getattr(task.metadata, "signed_document_url", None),
            )

        status = await self._fetch_status(envelope_id)
        return await self._apply(
            task, envelope_id, status.status, SIGNING_STATUS_CHECK_ACTOR_ID, "poll"
        )

    async def _apply(
        self,
        task: Task,
        envelope_id: str,
        envelope_status: str,
        actor_id: str,
        source: str,
    ) -> SigningOutcome:
        """把一个信封状态应用到一个任务"""
        now = datetime.now(UTC)
        if envelope_status != ENVELOPE_COMPLETED:
            if task.status in (TaskStatus.COMPLETED, TaskStatus.CANCELLED):
                return SigningOutcome(task_id=task.task_id, envelope_status=envelope_status)
            await self._engine.merge_metadata(
                task.task_id,
                {"envelope_status": envelope_status, "last_status_check": now},
                actor_id,
                source=source,
            )
            return SigningOutcome(task_id=task.task_id, envelope_status=envelope_status)

        if task.status == TaskStatus.COMPLETED:
            log.info(
                "signing_task_already_completed", task_id=task.task_id, envelope_id=envelope_id
            )
            return SigningOutcome(
                task_id=task.task_id,
                envelope_status=envelope_status,
                already_completed=True,
                signed_document_url=getattr(task.metadata, "signed_document_url", None),
            )

        if task.status not in ACTIONABLE_STATES:
            log.warning(
                "signing_task_not_actionable",
                task_id=task.task_id,
                envelope_id=envelope_id,
                status=task.status,
            )
            return SigningOutcome(task_id=task.task_id, envelope_status=envelope_status)

        signed_url = await self._store_signed_document(task, envelope_id)
        result = await self._engine.complete(
            task.task_id,
            actor_id,
            metadata_updates={
                "envelope_status": envelope_status,
                "signed_at": now,
                "last_status_check": now,
                "signed_document_url": signed_url,
            },
            source=source,
        )
        return SigningOutcome(
            task_id=task.task_id,
            envelope_status=envelope_status,
            task_completed=not result.already_completed,
            already_completed=result.already_completed,
            signed_document_url=signed_url,
            unblocked_task_ids=result.unblocked_task_ids,
        )

    async def _store_signed_document(self, task: Task, envelope_id: str) -> str | None:
        """下载并保存已签署文件；失败只记日志，不阻止任务完成"""
        scope = task.scope
        path = (
            f"{scope.kind.value}s/{scope.scope_id}/signed-documents/signed-nda-{envelope_id}.pdf"
        )
        try:
            content = await self._provider.download_signed_artifact(envelope_id)
            return await self._stores.blob_store.store(path, content, "application/pdf")
        except (ProviderError, OSError, ValueError) as e:
            log.error(
                "signed_document_store_failed",
                task_id=task.task_id,
                envelope_id=envelope_id,
                error_type=type(e).__name__,
                error=str(e),
            )
            return None

    async def _fetch_status(self, envelope_id: str) -> EnvelopeStatus:
        try:
            return await self._provider.get_envelope_status(envelope_id)
        except ProviderError as e:
            raise UpstreamUnavailable(
                f"signing provider failed for envelope {envelope_id}: {e}",
                service="signing",
            ) from e
