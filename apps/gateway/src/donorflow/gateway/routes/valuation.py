"""AI 估值路由

POST /api/valuation/webhook: 估值状态推送（时间戳过期返回 401）。
POST /api/valuation/request: 捐赠者发起估值，返回估值会话 URL。
POST /api/valuation/{task_id}/refresh: 主动刷新估值状态。
"""

import json
from typing import Any

import structlog
from donorflow.core.models import Actor
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from ..deps import get_current_actor, get_valuation_service
from ..services.valuation_service import ValuationOutcome, ValuationService

log = structlog.get_logger()

router = APIRouter(prefix="/api/valuation")


class RequestValuationBody(BaseModel):
    task_id: str = Field(min_length=1)
    email: str = ""
    first_name: str = "User"
    last_name: str = "Name"
    phone: str | None = None
    company_info: dict[str, Any] | None = None


class RequestValuationResponse(BaseModel):
    success: bool
    valuation_id: str
    valuation_user_id: str
    session_url: str


@router.post("/webhook")
async def valuation_webhook(
    request: Request,
    service: ValuationService = Depends(get_valuation_service),
):
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        log.warning("valuation_webhook_unparseable_body")
        body = None
    return await service.handle_webhook(body)


@router.post("/request", response_model=RequestValuationResponse)
async def request_valuation(
    body: RequestValuationBody,
    actor: Actor = Depends(get_current_actor),
    service: ValuationService = Depends(get_valuation_service),
):
    return await service.request_valuation(
        body.task_id,
        actor,
        company_info=body.company_info,
        email=body.email,
        first_name=body.first_name,
        last_name=body.last_name,
        phone=body.phone,
    )


@router.post("/{task_id}/refresh", response_model=ValuationOutcome)
async def refresh_valuation(
    task_id: str,
    actor: Actor = Depends(get_current_actor),
    service: ValuationService = Depends(get_valuation_service),
):
    return await service.refresh_valuation(task_id, actor)
