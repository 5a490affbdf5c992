"""AuthorizationGuard -- 判断操作者能否对任务执行操作

只依赖已经由身份服务确认的 Actor（actor_id + role），不再做二次推导。
webhook 等系统触发的流转直接调用 CompletionEngine，不经过此处。
"""

from .config import ROLE_SENTINEL_PREFIX
from .exceptions import Forbidden, InvalidState
from .models import ACTIONABLE_STATES, Actor, ActorRole, Task, TaskStatus


def can_act(actor: Actor, task: Task) -> bool:
    """actor 是否有权执行 task

    满足任一条件即可：
    - 直接指派：assigned_to == actor_id
    - 角色占位：assigned_to 为 role:<role>，且 actor 持有该角色与 assigned_role
    - 未指派：assigned_to 为空，且 actor 持有 assigned_role
    """
    assignee = task.assigned_to
    if assignee is not None and assignee == actor.actor_id:
        return True
    role_matches = actor.role.value == task.assigned_role.value
    if assignee is None:
        return role_matches
    if assignee.startswith(ROLE_SENTINEL_PREFIX):
        return role_matches and assignee[len(ROLE_SENTINEL_PREFIX):] == actor.role.value
    return False


def authorize(actor: Actor, task: Task) -> None:
    """校验 actor 可以对 task 执行用户操作

    已完成的任务放行，交给 CompletionEngine 的幂等分支处理。

    Raises:
        Forbidden: actor 无权操作该任务
        InvalidState: 任务处于 blocked / cancelled
    """
    if not can_act(actor, task):
        raise Forbidden(f"actor {actor.actor_id} may not act on task {task.task_id}")
    if task.status == TaskStatus.COMPLETED:
        return
    if task.status not in ACTIONABLE_STATES:
        raise InvalidState(f"task {task.task_id} is {task.status}")


def require_admin(actor: Actor, allow_nonprofit_admin: bool = False) -> None:
    """管理操作校验

    Args:
        actor: 操作者
        allow_nonprofit_admin: 是否允许 nonprofit_admin（单个活动的统计同步）

    Raises:
        Forbidden: 角色不满足
    """
    if actor.is_admin:
        return
    if allow_nonprofit_admin and actor.role == ActorRole.NONPROFIT_ADMIN:
        return
    raise Forbidden(f"actor {actor.actor_id} with role {actor.role} is not an admin")
