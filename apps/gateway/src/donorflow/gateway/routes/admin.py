"""管理员路由

PUT /api/admin/campaigns/{campaign_id}: 创建或更新活动记录
PUT /api/admin/participants/{participant_id}: 创建或更新参与者记录
POST /api/admin/campaigns/{campaign_id}/sync-stats: 单个活动统计同步
POST /api/admin/campaigns/sync-stats: 全部活动统计同步
"""

from datetime import UTC, datetime

from donorflow.core.models import Actor, Campaign, CampaignStats, Participant
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..deps import get_current_actor, get_workflow_service
from ..services.workflow_service import WorkflowService

router = APIRouter(prefix="/api/admin")


class CampaignBody(BaseModel):
    title: str = ""
    organization_name: str = ""
    created_by: str = Field(min_length=1)
    status: str = "active"


class ParticipantBody(BaseModel):
    campaign_id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    status: str = "interested"
    appraiser_id: str | None = None


class SyncAllResponse(BaseModel):
    campaigns: list[CampaignStats]


# 静态路径先于 /campaigns/{campaign_id}/... 注册
@router.post("/campaigns/sync-stats", response_model=SyncAllResponse)
async def sync_all_stats(
    actor: Actor = Depends(get_current_actor),
    service: WorkflowService = Depends(get_workflow_service),
):
    return SyncAllResponse(campaigns=await service.sync_all_stats(actor))


@router.put("/campaigns/{campaign_id}", response_model=Campaign)
async def save_campaign(
    campaign_id: str,
    body: CampaignBody,
    actor: Actor = Depends(get_current_actor),
    service: WorkflowService = Depends(get_workflow_service),
):
    campaign = Campaign(campaign_id=campaign_id, updated_at=datetime.now(UTC), **body.model_dump())
    return await service.save_campaign(campaign, actor)


@router.put("/participants/{participant_id}", response_model=Participant)
async def save_participant(
    participant_id: str,
    body: ParticipantBody,
    actor: Actor = Depends(get_current_actor),
    service: WorkflowService = Depends(get_workflow_service),
):
    participant = Participant(
        participant_id=participant_id,
        updated_at=datetime.now(UTC),
        **body.model_dump(),
    )
    return await service.save_participant(participant, actor)


@router.post("/campaigns/{campaign_id}/sync-stats", response_model=CampaignStats)
async def sync_stats(
    campaign_id: str,
    actor: Actor = Depends(get_current_actor),
    service: WorkflowService = Depends(get_workflow_service),
):
    return await service.sync_stats(campaign_id, actor)
