"""WorkflowService -- 作用域级操作

种子 / 重置工作流、绑定估值师、捐赠者创建捐赠、管理员维护作用域记录与统计。
"""

from datetime import UTC, datetime

import structlog
from donorflow.core.engine import CompletionEngine
from donorflow.core.exceptions import Forbidden, InvalidState, NotFound
from donorflow.core.factory import TaskFactory
from donorflow.core.guard import require_admin
from donorflow.core.models import (
    Actor,
    ActorRole,
    AssignedRole,
    Campaign,
    CampaignStats,
    Donation,
    Participant,
    ScopeKind,
    Task,
    WorkflowScope,
)
from donorflow.core.stats import sync_all_campaign_stats, sync_campaign_stats
from donorflow.core.store import StoreGroup
from ulid import ULID

log = structlog.get_logger()

# 只有该状态的活动接受新捐赠
CAMPAIGN_ACTIVE = "active"


class WorkflowService:
    """工作流作用域业务服务"""

    def __init__(
        self,
        store_group: StoreGroup,
        engine: CompletionEngine,
        factory: TaskFactory,
    ) -> None:
        self._stores = store_group
        self._engine = engine
        self._factory = factory

    async def seed(self, scope: WorkflowScope, actor: Actor) -> tuple[list[Task], bool]:
        """为作用域生成初始任务（幂等）

        作用域所属捐赠者、活动创建者或管理员可调用。
        """
        await self._require_scope_member(scope, actor)
        return await self._factory.seed(scope, actor.actor_id)

    async def reset(self, scope: WorkflowScope, actor: Actor) -> list[Task]:
        return await self._factory.reset_workflow(scope, actor)

    async def bind_appraiser(
        self,
        scope: WorkflowScope,
        appraiser_id: str,
        actor: Actor,
    ) -> list[str]:
        """把作用域内未指派的估值师任务绑定到 appraiser_id

        估值师本人（接受邀请）、作用域所属捐赠者或管理员可调用。
        """
        if actor.role == ActorRole.APPRAISER:
            if actor.actor_id != appraiser_id:
                raise Forbidden(f"appraiser {actor.actor_id} may only bind themselves")
            await self._require_scope_exists(scope)
        else:
            await self._require_scope_member(scope, actor)

        assigned = await self._engine.assign_role_tasks(
            scope, AssignedRole.APPRAISER, appraiser_id, actor.actor_id
        )
        if assigned and scope.kind == ScopeKind.PARTICIPANT:
            async with self._stores.transaction():
                await self._stores.scope_store.set_participant_appraiser(
                    scope.scope_id, appraiser_id, datetime.now(UTC)
                )
        return assigned

    async def create_donation(
        self,
        campaign_id: str,
        amount: float,
        actor: Actor,
    ) -> tuple[Donation, list[Task]]:
        """捐赠者创建捐赠并生成捐赠工作流

        Raises:
            Forbidden: 非捐赠者
            NotFound: 活动不存在
            InvalidState: 活动不接受捐赠或金额非正
        """
        if actor.role != ActorRole.DONOR:
            raise Forbidden(f"actor {actor.actor_id} with role {actor.role} cannot donate")
        if amount <= 0:
            raise InvalidState(f"invalid donation amount {amount}")

        now = datetime.now(UTC)
        donation = Donation(
            donation_id=str(ULID()),
            campaign_id=campaign_id,
            donor_id=actor.actor_id,
            amount=amount,
            created_at=now,
        )
        async with self._stores.transaction():
            campaign = await self._stores.scope_store.get_campaign(campaign_id)
            if campaign is None:
                raise NotFound(f"campaign {campaign_id} not found")
            if campaign.status != CAMPAIGN_ACTIVE:
                raise InvalidState(f"campaign {campaign_id} is {campaign.status}")
            await self._stores.scope_store.save_donation(donation)
            await self._stores.scope_store.increment_campaign_stats(campaign_id, amount, now)

        tasks, _ = await self._factory.seed(
            WorkflowScope.donation(donation.donation_id), actor.actor_id
        )
        log.info(
            "donation_created",
            donation_id=donation.donation_id,
            campaign_id=campaign_id,
            amount=amount,
            task_count=len(tasks),
        )
        return donation, tasks

    # ---- 管理员 ----

    async def save_campaign(self, campaign: Campaign, actor: Actor) -> Campaign:
        require_admin(actor)
        async with self._stores.transaction():
            await self._stores.scope_store.save_campaign(campaign)
        log.info("campaign_saved", campaign_id=campaign.campaign_id, actor_id=actor.actor_id)
        return campaign

    async def save_participant(self, participant: Participant, actor: Actor) -> Participant:
        require_admin(actor)
        async with self._stores.transaction():
            if await self._stores.scope_store.get_campaign(participant.campaign_id) is None:
                raise NotFound(f"campaign {participant.campaign_id} not found")
            await self._stores.scope_store.save_participant(participant)
        log.info(
            "participant_saved",
            participant_id=participant.participant_id,
            actor_id=actor.actor_id,
        )
        return participant

    async def sync_stats(self, campaign_id: str, actor: Actor) -> CampaignStats:
        """单个活动统计同步：管理员或该活动的创建者"""
        require_admin(actor, allow_nonprofit_admin=True)
        if not actor.is_admin:
            campaign = await self._stores.scope_store.get_campaign(campaign_id)
            if campaign is None:
                raise NotFound(f"campaign {campaign_id} not found")
            if campaign.created_by != actor.actor_id:
                raise Forbidden(f"actor {actor.actor_id} does not manage campaign {campaign_id}")
        return await sync_campaign_stats(self._stores, campaign_id)

    async def sync_all_stats(self, actor: Actor) -> list[CampaignStats]:
        require_admin(actor)
        return await sync_all_campaign_stats(self._stores)

    # ---- 内部 ----

    async def _load_scope(self, scope: WorkflowScope) -> tuple[str, Campaign | None]:
        """返回 (作用域所属捐赠者, 活动)"""
        scope_store = self._stores.scope_store
        if scope.kind == ScopeKind.PARTICIPANT:
            participant = await scope_store.get_participant(scope.scope_id)
            if participant is None:
                raise NotFound(f"participant {scope.scope_id} not found")
            return participant.user_id, await scope_store.get_campaign(participant.campaign_id)
        donation = await scope_store.get_donation(scope.scope_id)
        if donation is None:
            raise NotFound(f"donation {scope.scope_id} not found")
        return donation.donor_id, await scope_store.get_campaign(donation.campaign_id)

    async def _require_scope_exists(self, scope: WorkflowScope) -> None:
        await self._load_scope(scope)

    async def _require_scope_member(self, scope: WorkflowScope, actor: Actor) -> None:
        if actor.is_admin:
            return
        donor_id, campaign = await self._load_scope(scope)
        if actor.actor_id == donor_id:
            return
        if campaign is not None and campaign.created_by == actor.actor_id:
            return
        raise Forbidden(f"actor {actor.actor_id} is not a member of {scope.key}")
