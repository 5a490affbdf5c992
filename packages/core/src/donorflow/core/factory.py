"""TaskFactory -- 生成工作流初始任务集

标准种子为线性链：第 1 个任务 pending 且无依赖，其后每个任务 blocked
并依赖前一个任务；order 与链中位置一致，task_id 为 {scope_id}_{slug}。
种子写入、事件写入与参与者状态重置在同一事务内提交。
"""

import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import aiosqlite
import structlog

from .config import PARTICIPANT_RESET_STATUS
from .exceptions import DataIntegrity, InvalidState, NotFound
from .guard import require_admin
from .models import (
    Actor,
    AssignedRole,
    Campaign,
    CommitmentMetadata,
    Donation,
    Event,
    EventType,
    Participant,
    ScopeKind,
    Task,
    TaskConvertedPayload,
    TaskCreatedPayload,
    TaskPriority,
    TaskStatus,
    TaskType,
    ValuationMetadata,
    WorkflowResetPayload,
    WorkflowScope,
)
from .store import StoreGroup, append_events

log = structlog.get_logger()

# 执行者来源：捐赠者 / 活动创建者 / 未指派（接受邀请的估值师认领）
_DONOR = "donor"
_CREATOR = "creator"
_UNASSIGNED = None


@dataclass(frozen=True)
class TaskTemplate:
    """种子任务模板"""

    slug: str
    title: str
    description: str
    type: TaskType
    role: AssignedRole
    assignee: str | None
    priority: TaskPriority = TaskPriority.HIGH
    metadata: dict[str, Any] = field(default_factory=dict)


_COMMITMENT_OPTIONS = [
    {
        "id": "commit_now",
        "label": "Make Commitment Now",
        "description": (
            "I'm ready to commit to a donation amount now and proceed with the workflow."
        ),
    },
    {
        "id": "commit_after_appraisal",
        "label": "Make Commitment After Appraisal",
        "description": "I want to see the appraisal results before making my commitment decision.",
    },
]

PARTICIPANT_CHAIN: tuple[TaskTemplate, ...] = (
    TaskTemplate(
        slug="invite_appraiser",
        title="Donor: Invite Appraiser or AI Appraisal",
        description=(
            "Choose your preferred appraisal method: invite a professional appraiser "
            "or use our AI-powered appraisal service."
        ),
        type=TaskType.INVITATION,
        role=AssignedRole.DONOR,
        assignee=_DONOR,
        metadata={"invitation_type": "appraiser", "role": "appraiser"},
    ),
    TaskTemplate(
        slug="sign_nda",
        title="Donor: Sign NDA",
        description=(
            "Review and digitally sign the Non-Disclosure Agreement before proceeding "
            "with the donation process."
        ),
        type=TaskType.DOCUSIGN_SIGNATURE,
        role=AssignedRole.DONOR,
        assignee=_DONOR,
        metadata={"document_path": "/public/nda-general.pdf", "document_name": "General NDA"},
    ),
    TaskTemplate(
        slug="commitment_decision",
        title="Donor: Commitment",
        description=(
            "Choose when you want to make your donation commitment: now or after appraisal."
        ),
        type=TaskType.COMMITMENT_DECISION,
        role=AssignedRole.DONOR,
        assignee=_DONOR,
        metadata={"options": _COMMITMENT_OPTIONS},
    ),
    TaskTemplate(
        slug="company_info",
        title="Donor: Upload Company Information (File Upload)",
        description=(
            "Upload your company information and financial documents "
            "for the appraisal process."
        ),
        type=TaskType.DOCUMENT_UPLOAD,
        role=AssignedRole.DONOR,
        assignee=_DONOR,
        metadata={
            "document_types": ["company_info", "financial_statements"],
            "document_path": "participants/{scope_id}/financial/",
            "upload_folders": ["legal", "financial"],
        },
    ),
    TaskTemplate(
        slug="appraiser_sign_nda",
        title="Appraiser: Sign NDA",
        description=(
            "Review and digitally sign the Non-Disclosure Agreement "
            "to access donor information."
        ),
        type=TaskType.DOCUSIGN_SIGNATURE,
        role=AssignedRole.APPRAISER,
        assignee=_UNASSIGNED,
        metadata={"document_path": "/public/nda-appraiser.pdf", "document_name": "Appraiser NDA"},
    ),
    TaskTemplate(
        slug="appraiser_upload",
        title="Appraiser: Upload Documents (File Upload)",
        description="Upload appraisal documents and valuation reports.",
        type=TaskType.DOCUMENT_UPLOAD,
        role=AssignedRole.APPRAISER,
        assignee=_UNASSIGNED,
        metadata={
            "document_types": ["appraisal_report", "valuation_documents"],
            "document_path": "participants/{scope_id}/appraisals/",
            "upload_folders": ["appraisals"],
        },
    ),
    TaskTemplate(
        slug="donor_approve",
        title="Donor: Approve Documents",
        description="Review and approve the appraisal documents and valuation reports.",
        type=TaskType.DOCUMENT_REVIEW,
        role=AssignedRole.DONOR,
        assignee=_DONOR,
        priority=TaskPriority.MEDIUM,
        metadata={"requires_approval": True, "automated_reminders": True},
    ),
    TaskTemplate(
        slug="nonprofit_approve",
        title="Nonprofit: Approve Documents",
        description="Review and approve all donation documentation and appraisal reports.",
        type=TaskType.DOCUMENT_REVIEW,
        role=AssignedRole.NONPROFIT_ADMIN,
        assignee=_CREATOR,
        metadata={"requires_approval": True, "automated_reminders": True},
    ),
    TaskTemplate(
        slug="nonprofit_upload",
        title="Nonprofit: Upload Documents (File Upload)",
        description="Upload final donation receipt and acknowledgement documents.",
        type=TaskType.DOCUMENT_UPLOAD,
        role=AssignedRole.NONPROFIT_ADMIN,
        assignee=_CREATOR,
        priority=TaskPriority.MEDIUM,
        metadata={
            "document_types": ["donation_receipt", "acknowledgement"],
            "document_path": "participants/{scope_id}/signed-documents/",
            "upload_folders": ["signed-documents"],
        },
    ),
)

DONATION_CHAIN: tuple[TaskTemplate, ...] = (
    TaskTemplate(
        slug="sign_nda",
        title="Sign General NDA",
        description=(
            "Review and digitally sign the general Non-Disclosure Agreement before "
            "proceeding with the donation process"
        ),
        type=TaskType.DOCUSIGN_SIGNATURE,
        role=AssignedRole.DONOR,
        assignee=_DONOR,
        metadata={"document_path": "/public/nda-general.pdf", "document_name": "General NDA"},
    ),
    TaskTemplate(
        slug="invite_appraiser",
        title="Invite Appraiser to Platform",
        description=(
            "Send an invitation to a qualified appraiser to join the platform and "
            "assess your equity donation"
        ),
        type=TaskType.INVITATION,
        role=AssignedRole.DONOR,
        assignee=_DONOR,
    ),
    TaskTemplate(
        slug="company_info",
        title="Provide Company Information",
        description="Submit basic company information and documentation for equity valuation",
        type=TaskType.DOCUMENT_UPLOAD,
        role=AssignedRole.DONOR,
        assignee=_DONOR,
        metadata={"automated_reminders": True},
    ),
    TaskTemplate(
        slug="supporting_documents",
        title="Upload Supporting Documents",
        description=(
            "Upload additional financial documents, legal agreements, and supporting "
            "materials for the equity donation"
        ),
        type=TaskType.DOCUMENT_UPLOAD,
        role=AssignedRole.DONOR,
        assignee=_DONOR,
        metadata={"automated_reminders": True, "upload_folders": ["legal", "financial", "general"]},
    ),
    TaskTemplate(
        slug="initial_assessment",
        title="Initial Equity Assessment",
        description=(
            "Review company information and uploaded documents to assess equity "
            "valuation requirements"
        ),
        type=TaskType.APPRAISAL_REVIEW,
        role=AssignedRole.APPRAISER,
        assignee=_UNASSIGNED,
    ),
    TaskTemplate(
        slug="review_assessment",
        title="Review Initial Assessment",
        description="Review and approve the initial equity assessment before full appraisal",
        type=TaskType.DOCUMENT_REVIEW,
        role=AssignedRole.DONOR,
        assignee=_DONOR,
        priority=TaskPriority.MEDIUM,
        metadata={"requires_approval": True, "automated_reminders": True},
    ),
    TaskTemplate(
        slug="equity_appraisal",
        title="Conduct Equity Appraisal",
        description="Perform professional appraisal of donated equity based on approved assessment",
        type=TaskType.APPRAISAL_SUBMISSION,
        role=AssignedRole.APPRAISER,
        assignee=_UNASSIGNED,
    ),
    TaskTemplate(
        slug="process_donation",
        title="Process Donation Request",
        description="Review donation request and coordinate documentation workflow",
        type=TaskType.DOCUMENT_REVIEW,
        role=AssignedRole.NONPROFIT_ADMIN,
        assignee=_CREATOR,
    ),
    TaskTemplate(
        slug="review_final_documentation",
        title="Review Final Documentation",
        description="Review and approve all finalized donation documentation",
        type=TaskType.DOCUMENT_REVIEW,
        role=AssignedRole.DONOR,
        assignee=_DONOR,
        priority=TaskPriority.MEDIUM,
        metadata={"requires_approval": True},
    ),
    TaskTemplate(
        slug="finalize_receipt",
        title="Finalize Donation Receipt",
        description="Generate and send final donation receipt and acknowledgement",
        type=TaskType.OTHER,
        role=AssignedRole.NONPROFIT_ADMIN,
        assignee=_CREATOR,
        priority=TaskPriority.MEDIUM,
    ),
)


def _format_metadata(metadata: dict[str, Any], scope_id: str) -> dict[str, Any]:
    return {
        key: value.format(scope_id=scope_id) if isinstance(value, str) else value
        for key, value in metadata.items()
    }


def build_chain(
    templates: tuple[TaskTemplate, ...],
    scope: WorkflowScope,
    campaign: Campaign,
    donor_id: str,
    created_by: str | None = None,
    now: datetime | None = None,
) -> list[Task]:
    """按模板生成线性任务链"""
    now = now or datetime.now(UTC)
    scope_field = "participant_id" if scope.kind == ScopeKind.PARTICIPANT else "donation_id"
    tasks: list[Task] = []
    previous_id: str | None = None
    for position, template in enumerate(templates, start=1):
        if template.assignee == _DONOR:
            assigned_to: str | None = donor_id
        elif template.assignee == _CREATOR:
            assigned_to = campaign.created_by
        else:
            assigned_to = None
        task_id = f"{scope.scope_id}_{template.slug}"
        tasks.append(
            Task(
                task_id=task_id,
                campaign_id=campaign.campaign_id,
                donor_id=donor_id,
                title=template.title,
                description=template.description,
                type=template.type,
                assigned_to=assigned_to,
                assigned_role=template.role,
                status=TaskStatus.PENDING if previous_id is None else TaskStatus.BLOCKED,
                priority=template.priority,
                dependencies=[] if previous_id is None else [previous_id],
                order=position,
                metadata=_format_metadata(template.metadata, scope.scope_id),
                created_at=now,
                updated_at=now,
                created_by=created_by or donor_id,
                **{scope_field: scope.scope_id},
            )
        )
        previous_id = task_id
    return tasks


def build_participant_workflow(
    participant: Participant,
    campaign: Campaign,
    now: datetime | None = None,
) -> list[Task]:
    """参与者工作流（9 个任务）"""
    tasks = build_chain(
        PARTICIPANT_CHAIN,
        WorkflowScope.participant(participant.participant_id),
        campaign,
        donor_id=participant.user_id,
        now=now,
    )
    for task in tasks:
        if isinstance(task.metadata, CommitmentMetadata):
            task.metadata = task.metadata.merged(
                {
                    "campaign_title": campaign.title,
                    "organization_name": campaign.organization_name,
                }
            )
    return tasks


def build_donation_workflow(
    donation: Donation,
    campaign: Campaign,
    now: datetime | None = None,
) -> list[Task]:
    """捐赠工作流（10 个任务）"""
    return build_chain(
        DONATION_CHAIN,
        WorkflowScope.donation(donation.donation_id),
        campaign,
        donor_id=donation.donor_id,
        now=now,
    )


def validate_task_graph(tasks: list[Task]) -> None:
    """校验任务集：ID 唯一、同一作用域、依赖存在、无自依赖、无环

    Raises:
        DataIntegrity: 任一校验失败
    """
    by_id: dict[str, Task] = {}
    for task in tasks:
        if task.task_id in by_id:
            raise DataIntegrity(f"duplicate task id {task.task_id}", [task.task_id])
        by_id[task.task_id] = task

    scope_keys = {task.scope.key for task in tasks}
    if len(scope_keys) > 1:
        raise DataIntegrity(f"task set spans multiple scopes: {sorted(scope_keys)}")

    for task in tasks:
        if task.task_id in task.dependencies:
            raise DataIntegrity(f"task {task.task_id} depends on itself", [task.task_id])
        missing = [dep for dep in task.dependencies if dep not in by_id]
        if missing:
            raise DataIntegrity(
                f"task {task.task_id} depends on unknown tasks {missing}",
                [task.task_id, *missing],
            )

    # Kahn 拓扑排序：剩余节点即在环上
    indegree = {task_id: len(task.dependencies) for task_id, task in by_id.items()}
    dependents: dict[str, list[str]] = {task_id: [] for task_id in by_id}
    for task in tasks:
        for dep in task.dependencies:
            dependents[dep].append(task.task_id)
    ready = [task_id for task_id, degree in indegree.items() if degree == 0]
    visited = 0
    while ready:
        current = ready.pop()
        visited += 1
        for child in dependents[current]:
            indegree[child] -= 1
            if indegree[child] == 0:
                ready.append(child)
    if visited != len(by_id):
        cyclic = sorted(task_id for task_id, degree in indegree.items() if degree > 0)
        raise DataIntegrity(f"dependency cycle among tasks {cyclic}", cyclic)


def convert_to_ai_appraisal(task: Task, now: datetime | None = None) -> Task:
    """邀请估值师任务改为 AI 估值请求任务

    ID、依赖、状态、指派均不变；metadata 换成 valuation 变体。

    Raises:
        InvalidState: 任务不是 invitation 类型或已进入终态
    """
    if task.type != TaskType.INVITATION or "appraiser" not in task.title.lower():
        raise InvalidState(f"task {task.task_id} is not an appraiser invitation")
    if task.status in (TaskStatus.COMPLETED, TaskStatus.CANCELLED):
        raise InvalidState(f"task {task.task_id} is already {task.status}")
    return task.model_copy(
        update={
            "type": TaskType.AI_APPRAISAL_REQUEST,
            "title": re.sub("invite", "AI Appraisal for", task.title, count=1, flags=re.IGNORECASE),
            "description": "Complete the AI-powered appraisal process for your equity valuation.",
            "metadata": ValuationMetadata(
                appraisal_method="ai_appraisal",
                original_task_type=TaskType.INVITATION.value,
            ),
            "updated_at": now or datetime.now(UTC),
        }
    )


def build_donation_commitment_task(decision_task: Task, now: datetime | None = None) -> Task:
    """commit_now 决策后追加的捐赠承诺任务

    新任务依赖决策任务、初始为 blocked；决策任务在同一批次完成时由级联解锁。
    """
    now = now or datetime.now(UTC)
    scope = decision_task.scope
    metadata = decision_task.metadata
    return Task(
        task_id=f"{scope.scope_id}_donation_commitment",
        participant_id=decision_task.participant_id,
        donation_id=decision_task.donation_id,
        campaign_id=decision_task.campaign_id,
        donor_id=decision_task.donor_id,
        title="Donor: Donation Commitment",
        description="Specify your donation commitment amount and terms.",
        type=TaskType.DONATION_COMMITMENT,
        assigned_to=decision_task.assigned_to,
        assigned_role=decision_task.assigned_role,
        status=TaskStatus.BLOCKED,
        priority=TaskPriority.HIGH,
        dependencies=[decision_task.task_id],
        order=decision_task.order,
        metadata=CommitmentMetadata(
            campaign_title=getattr(metadata, "campaign_title", None),
            organization_name=getattr(metadata, "organization_name", None),
            requires_amount=True,
        ),
        created_at=now,
        updated_at=now,
        created_by=decision_task.assigned_to,
    )


def task_created_event(task: Task, actor_id: str) -> Event:
    return Event.new(
        task_id=task.task_id,
        scope_key=task.scope.key,
        event_type=EventType.TASK_CREATED,
        actor_id=actor_id,
        payload=TaskCreatedPayload(
            title=task.title,
            type=task.type,
            status=task.status,
            order=task.order,
            dependencies=task.dependencies,
        ),
        ts=task.created_at,
    )


class TaskFactory:
    """工作流种子 / 重置 / 增量任务写入"""

    def __init__(self, store_group: StoreGroup) -> None:
        self._stores = store_group

    async def build(self, scope: WorkflowScope) -> list[Task]:
        """按作用域记录生成任务集（不写入）

        Raises:
            NotFound: 作用域记录或其活动不存在
        """
        scope_store = self._stores.scope_store
        if scope.kind == ScopeKind.PARTICIPANT:
            participant = await scope_store.get_participant(scope.scope_id)
            if participant is None:
                raise NotFound(f"participant {scope.scope_id} not found")
            campaign = await scope_store.get_campaign(participant.campaign_id)
            if campaign is None:
                raise NotFound(f"campaign {participant.campaign_id} not found")
            return build_participant_workflow(participant, campaign)

        donation = await scope_store.get_donation(scope.scope_id)
        if donation is None:
            raise NotFound(f"donation {scope.scope_id} not found")
        campaign = await scope_store.get_campaign(donation.campaign_id)
        if campaign is None:
            raise NotFound(f"campaign {donation.campaign_id} not found")
        return build_donation_workflow(donation, campaign)

    async def seed(self, scope: WorkflowScope, actor_id: str) -> tuple[list[Task], bool]:
        """为作用域写入初始任务集（幂等）

        Returns:
            (tasks, created) -- created=False 表示任务已存在，未写入
        """
        try:
            async with self._stores.transaction():
                existing = await self._stores.task_store.list_tasks_for_scope(scope)
                if existing:
                    return existing, False
                tasks = await self.build(scope)
                await self._write_tasks(scope, tasks, actor_id)
        except aiosqlite.IntegrityError:
            # 其他进程并发写入了同一批 task_id
            existing = await self._stores.task_store.list_tasks_for_scope(scope)
            if existing:
                log.warning("workflow_seed_conflict", scope=scope.key)
                return existing, False
            raise

        log.info("workflow_seeded", scope=scope.key, task_count=len(tasks))
        return tasks, True

    async def reset_workflow(self, scope: WorkflowScope, actor: Actor) -> list[Task]:
        """删除作用域内全部任务并重新种子（管理员操作，单事务）"""
        require_admin(actor)
        async with self._stores.transaction():
            tasks = await self.build(scope)
            deleted = await self._stores.task_store.delete_tasks_for_scope(scope)
            await self._write_tasks(scope, tasks, actor.actor_id)
            await self._stores.event_store.append_event(
                Event.new(
                    task_id=tasks[0].task_id,
                    scope_key=scope.key,
                    event_type=EventType.WORKFLOW_RESET,
                    actor_id=actor.actor_id,
                    payload=WorkflowResetPayload(
                        deleted_task_count=deleted,
                        created_task_count=len(tasks),
                    ),
                )
            )

        log.info(
            "workflow_reset",
            scope=scope.key,
            deleted_task_count=deleted,
            created_task_count=len(tasks),
            actor_id=actor.actor_id,
        )
        return tasks

    async def convert_to_ai_appraisal(self, task_id: str, actor_id: str) -> Task:
        """持久化 invitation → ai_appraisal_request 转换"""
        async with self._stores.transaction():
            task = await self._stores.task_store.get_task(task_id)
            if task is None:
                raise NotFound(f"task {task_id} not found")
            converted = convert_to_ai_appraisal(task)
            if not await self._stores.task_store.update_definition(converted, task.type.value):
                raise InvalidState(f"task {task_id} changed type concurrently")
            await self._stores.event_store.append_event(
                Event.new(
                    task_id=task_id,
                    scope_key=task.scope.key,
                    event_type=EventType.TASK_CONVERTED,
                    actor_id=actor_id,
                    payload=TaskConvertedPayload(from_type=task.type, to_type=converted.type),
                )
            )

        log.info("task_converted_to_ai_appraisal", task_id=task_id)
        return converted

    async def _write_tasks(self, scope: WorkflowScope, tasks: list[Task], actor_id: str) -> None:
        """在当前事务内写入任务集 + TASK_CREATED 事件 + 参与者状态重置"""
        validate_task_graph(tasks)
        for task in tasks:
            await self._stores.task_store.create_task(task)
        await append_events(
            self._stores.event_store,
            (task_created_event(task, actor_id) for task in tasks),
        )
        if scope.kind == ScopeKind.PARTICIPANT:
            await self._stores.scope_store.update_participant_status(
                scope.scope_id,
                PARTICIPANT_RESET_STATUS,
                datetime.now(UTC),
            )
