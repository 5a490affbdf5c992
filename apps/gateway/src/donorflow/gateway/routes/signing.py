"""电子签署路由

GET /api/signing/webhook: 签署服务订阅校验，回显 challenge。
POST /api/signing/webhook: 签署事件推送，永远返回 200。
POST /api/signing/check-status: 用户主动轮询信封状态。
"""

import json

import structlog
from donorflow.core.models import Actor
from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field
from starlette.responses import PlainTextResponse

from ..deps import get_current_actor, get_signing_service
from ..services.signing_service import SigningOutcome, SigningService

log = structlog.get_logger()

router = APIRouter(prefix="/api/signing")


class CheckStatusRequest(BaseModel):
    envelope_id: str = Field(min_length=1)


@router.get("/webhook")
async def verify_webhook(challenge: str | None = Query(default=None)):
    """订阅校验：原样返回 challenge"""
    if challenge:
        return PlainTextResponse(challenge)
    return {"status": "ok"}


@router.post("/webhook")
async def signing_webhook(
    request: Request,
    service: SigningService = Depends(get_signing_service),
):
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        log.warning("signing_webhook_unparseable_body")
        body = None
    return await service.handle_webhook(body)


@router.post("/check-status", response_model=SigningOutcome)
async def check_status(
    body: CheckStatusRequest,
    actor: Actor = Depends(get_current_actor),
    service: SigningService = Depends(get_signing_service),
):
    return await service.check_envelope_status(body.envelope_id, actor)
