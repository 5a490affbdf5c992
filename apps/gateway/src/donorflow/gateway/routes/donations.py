"""捐赠路由

POST /api/donations: 捐赠者创建捐赠，同时生成捐赠工作流。
"""

from donorflow.core.models import Actor, Donation, Task
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..deps import get_current_actor, get_workflow_service
from ..services.workflow_service import WorkflowService

router = APIRouter()


class CreateDonationRequest(BaseModel):
    campaign_id: str = Field(min_length=1)
    amount: float = Field(gt=0)


class CreateDonationResponse(BaseModel):
    donation: Donation
    tasks: list[Task]


@router.post("/api/donations", response_model=CreateDonationResponse, status_code=201)
async def create_donation(
    body: CreateDonationRequest,
    actor: Actor = Depends(get_current_actor),
    service: WorkflowService = Depends(get_workflow_service),
):
    donation, tasks = await service.create_donation(body.campaign_id, body.amount, actor)
    return CreateDonationResponse(donation=donation, tasks=tasks)
