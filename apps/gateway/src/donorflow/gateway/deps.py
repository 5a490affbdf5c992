"""依赖注入模块 -- 通过 FastAPI Depends 注入 Store / 服务实例

实例通过 app.state 管理，在 lifespan 中初始化/清理。
"""

from donorflow.core.engine import CompletionEngine
from donorflow.core.exceptions import Unauthorized, UpstreamUnavailable
from donorflow.core.factory import TaskFactory
from donorflow.core.models import Actor, ActorRole
from donorflow.core.store import StoreGroup
from donorflow.provider import ProviderError
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .services.signing_service import SigningService
from .services.task_service import TaskService
from .services.valuation_service import ValuationService
from .services.workflow_service import WorkflowService

bearer_scheme = HTTPBearer(auto_error=False)


def get_store_group(request: Request) -> StoreGroup:
    """从 app.state 获取 StoreGroup 实例"""
    return request.app.state.store_group


def get_engine(request: Request) -> CompletionEngine:
    return request.app.state.engine


def get_factory(request: Request) -> TaskFactory:
    return request.app.state.factory


def get_task_service(request: Request) -> TaskService:
    state = request.app.state
    return TaskService(state.store_group, state.engine, state.factory)


def get_workflow_service(request: Request) -> WorkflowService:
    state = request.app.state
    return WorkflowService(state.store_group, state.engine, state.factory)


def get_signing_service(request: Request) -> SigningService:
    state = request.app.state
    return SigningService(state.store_group, state.engine, state.signing_provider)


def get_valuation_service(request: Request) -> ValuationService:
    state = request.app.state
    return ValuationService(state.store_group, state.engine, state.valuation_provider)


async def get_current_actor(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> Actor:
    """bearer token -> Actor

    Raises:
        Unauthorized: 缺少 token、token 无效或角色未知
        UpstreamUnavailable: 身份服务不可用
    """
    if credentials is None:
        raise Unauthorized("missing bearer token")
    try:
        claims = await request.app.state.identity_provider.verify(credentials.credentials)
    except ProviderError as e:
        raise UpstreamUnavailable(f"identity provider failed: {e}", service="identity") from e
    if claims is None:
        raise Unauthorized("invalid bearer token")
    try:
        role = ActorRole(claims.role)
    except ValueError as e:
        raise Unauthorized(f"unknown role {claims.role}") from e
    if role == ActorRole.SYSTEM:
        # 系统身份只在进程内构造
        raise Unauthorized("system role cannot be asserted by a token")
    return Actor(actor_id=claims.actor_id, role=role, organization_id=claims.organization_id)
