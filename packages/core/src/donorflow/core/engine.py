"""CompletionEngine -- 唯一的任务状态写入方

complete 流程：
1. 读取任务（不存在 -> NotFound；已完成 -> 幂等返回）
2. 写入 completed / completed_at / completed_by / completion_data
3. 重新读取同作用域全部任务
4. 找出依赖该任务的下游任务
5. 下游任务若为 blocked 且依赖全部存在且已完成，流转为 pending
6. 以上写入与事件在同一事务内提交

状态写入带前置状态条件；条件未命中抛 TaskStatusConflictError，
事务回滚后基于新读取重新推导，最多重试 COMPLETION_MAX_RETRIES 次。
"""

import asyncio
import weakref
from datetime import UTC, datetime
from typing import Any

import structlog
from pydantic import BaseModel, Field, ValidationError
from ulid import ULID

from .config import COMPLETION_MAX_RETRIES, ROLE_SENTINEL_PREFIX
from .exceptions import DataIntegrity, InvalidState, NotFound
from .models import (
    ACTIONABLE_STATES,
    TERMINAL_STATES,
    Actor,
    AssignedRole,
    CommentAddedPayload,
    Event,
    EventType,
    MetadataUpdatedPayload,
    StateTransitionPayload,
    Task,
    TaskAssignedPayload,
    TaskComment,
    TaskCreatedPayload,
    TaskStatus,
    WorkflowScope,
    validate_transition,
)
from .store import StoreGroup, TaskStatusConflictError, append_events

log = structlog.get_logger()


class CompletionResult(BaseModel):
    """complete 的结果"""

    task: Task
    unblocked_task_ids: list[str] = Field(default_factory=list)
    already_completed: bool = False
    created_task_ids: list[str] = Field(default_factory=list)


class CompletionEngine:
    """任务状态机执行者

    同一 StoreGroup 只应创建一个实例，作用域锁挂在实例上。
    """

    def __init__(
        self,
        store_group: StoreGroup,
        max_retries: int = COMPLETION_MAX_RETRIES,
    ) -> None:
        self._stores = store_group
        self._max_retries = max(1, max_retries)
        # 锁只在有协程持有引用时存活，空闲作用域的条目自动回收
        self._scope_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._scope_locks_guard = asyncio.Lock()

    async def complete(
        self,
        task_id: str,
        actor_id: str,
        completion_data: dict[str, Any] | None = None,
        metadata_updates: dict[str, Any] | None = None,
        new_tasks: list[Task] | None = None,
        participant_status: str | None = None,
        source: str = "user",
    ) -> CompletionResult:
        """完成任务并级联解锁下游任务

        Args:
            task_id: 要完成的任务
            actor_id: 记录到 completed_by 的操作者
            completion_data: 合并进 completion_data 的数据
            metadata_updates: 与完成同批写入的 metadata 字段
            new_tasks: 与完成同批创建的任务（依赖本任务的新任务会被级联解锁）
            participant_status: 与完成同批写入的参与者状态（仅参与者作用域）
            source: 触发来源（user / webhook / poll），写入事件

        Raises:
            NotFound: 任务不存在
            InvalidState: 任务为 blocked / cancelled，或并发重试耗尽
            DataIntegrity: 任务自身依赖缺失或未完成
        """
        scope = await self._scope_of(task_id)
        lock = await self._get_scope_lock(scope.key)
        async with lock:
            for attempt in range(1, self._max_retries + 1):
                try:
                    async with self._stores.transaction():
                        result = await self._complete_once(
                            task_id,
                            actor_id,
                            completion_data,
                            metadata_updates,
                            new_tasks or [],
                            participant_status,
                            source,
                        )
                    break
                except TaskStatusConflictError as e:
                    if attempt < self._max_retries:
                        log.warning(
                            "completion_conflict_retry",
                            task_id=task_id,
                            conflict_task_id=e.task_id,
                            attempt=attempt,
                        )
                        continue
                    raise InvalidState(f"task {task_id} kept changing concurrently") from e

        if result.already_completed:
            log.info("task_already_completed", task_id=task_id, actor_id=actor_id)
        else:
            log.info(
                "task_completed",
                task_id=task_id,
                scope=scope.key,
                actor_id=actor_id,
                source=source,
                unblocked_task_ids=result.unblocked_task_ids,
            )
        return result

    async def _complete_once(
        self,
        task_id: str,
        actor_id: str,
        completion_data: dict[str, Any] | None,
        metadata_updates: dict[str, Any] | None,
        new_tasks: list[Task],
        participant_status: str | None,
        source: str,
    ) -> CompletionResult:
        task_store = self._stores.task_store
        task = await task_store.get_task(task_id)
        if task is None:
            raise NotFound(f"task {task_id} not found")
        if task.status == TaskStatus.COMPLETED:
            return CompletionResult(task=task, already_completed=True)
        if task.status not in ACTIONABLE_STATES:
            raise InvalidState(f"task {task_id} is {task.status}")

        scope_tasks = {t.task_id: t for t in await task_store.list_tasks_for_scope(task.scope)}
        self._check_own_dependencies(task, scope_tasks)

        now = datetime.now(UTC)
        events: list[Event] = []

        created_ids: list[str] = []
        for new_task in new_tasks:
            if new_task.scope != task.scope:
                raise DataIntegrity(
                    f"task {new_task.task_id} is outside scope {task.scope.key}",
                    [new_task.task_id],
                )
            if new_task.task_id in scope_tasks:
                log.info("incremental_task_exists", task_id=new_task.task_id)
                continue
            missing = [d for d in new_task.dependencies if d not in scope_tasks]
            if missing:
                raise DataIntegrity(
                    f"task {new_task.task_id} depends on unknown tasks {missing}",
                    [new_task.task_id, *missing],
                )
            await task_store.create_task(new_task)
            scope_tasks[new_task.task_id] = new_task
            created_ids.append(new_task.task_id)
            events.append(
                Event.new(
                    task_id=new_task.task_id,
                    scope_key=new_task.scope.key,
                    event_type=EventType.TASK_CREATED,
                    actor_id=actor_id,
                    payload=TaskCreatedPayload(
                        title=new_task.title,
                        type=new_task.type,
                        status=new_task.status,
                        order=new_task.order,
                        dependencies=new_task.dependencies,
                    ),
                    ts=now,
                )
            )

        metadata = task.metadata
        if metadata_updates:
            metadata = self._merge(task, metadata_updates)
        merged_data = task.completion_data
        if completion_data:
            merged_data = {**(task.completion_data or {}), **completion_data}
        completed = task.model_copy(
            update={
                "status": TaskStatus.COMPLETED,
                "completed_at": now,
                "completed_by": actor_id,
                "completion_data": merged_data,
                "metadata": metadata,
                "updated_at": now,
            }
        )
        if not await task_store.mark_completed(completed, expected={task.status}):
            raise TaskStatusConflictError(task_id, {task.status})
        scope_tasks[task_id] = completed
        if participant_status and task.participant_id is not None:
            await self._stores.scope_store.update_participant_status(
                task.participant_id, participant_status, now
            )
        events.append(
            Event.new(
                task_id=task_id,
                scope_key=task.scope.key,
                event_type=EventType.STATE_TRANSITION,
                actor_id=actor_id,
                payload=StateTransitionPayload(
                    from_status=task.status,
                    to_status=TaskStatus.COMPLETED,
                    reason=source,
                ),
                ts=now,
            )
        )
        if metadata_updates:
            events.append(
                Event.new(
                    task_id=task_id,
                    scope_key=task.scope.key,
                    event_type=EventType.METADATA_UPDATED,
                    actor_id=actor_id,
                    payload=MetadataUpdatedPayload(fields=sorted(metadata_updates), source=source),
                    ts=now,
                )
            )

        unblocked = await self._unblock_dependents(task_id, scope_tasks, actor_id, now, events)
        await append_events(self._stores.event_store, events)
        return CompletionResult(
            task=completed,
            unblocked_task_ids=unblocked,
            created_task_ids=created_ids,
        )

    @staticmethod
    def _check_own_dependencies(task: Task, scope_tasks: dict[str, Task]) -> None:
        """任务自身的依赖必须全部存在于同一作用域且已完成"""
        missing = [d for d in task.dependencies if d not in scope_tasks]
        incomplete = [
            d
            for d in task.dependencies
            if d in scope_tasks and scope_tasks[d].status != TaskStatus.COMPLETED
        ]
        if missing or incomplete:
            log.error(
                "task_dependencies_unsatisfied",
                task_id=task.task_id,
                missing=missing,
                incomplete=incomplete,
            )
            raise DataIntegrity(
                f"task {task.task_id} has unsatisfied dependencies",
                [task.task_id, *missing, *incomplete],
            )

    async def _unblock_dependents(
        self,
        completed_id: str,
        scope_tasks: dict[str, Task],
        actor_id: str,
        now: datetime,
        events: list[Event],
    ) -> list[str]:
        """blocked 下游任务的依赖全部完成时流转为 pending；其他状态不回退"""
        dependents = sorted(
            (t for t in scope_tasks.values() if completed_id in t.dependencies),
            key=lambda t: (t.order, t.task_id),
        )
        unblocked: list[str] = []
        for dependent in dependents:
            if dependent.status != TaskStatus.BLOCKED:
                continue
            missing = [d for d in dependent.dependencies if d not in scope_tasks]
            if missing:
                log.error(
                    "dependent_references_missing_task",
                    task_id=dependent.task_id,
                    missing=missing,
                )
                continue
            if not all(
                scope_tasks[d].status == TaskStatus.COMPLETED for d in dependent.dependencies
            ):
                continue
            ok = await self._stores.task_store.update_status(
                dependent.task_id,
                TaskStatus.PENDING,
                expected={TaskStatus.BLOCKED},
                updated_at=now,
            )
            if not ok:
                raise TaskStatusConflictError(dependent.task_id, {TaskStatus.BLOCKED})
            scope_tasks[dependent.task_id] = dependent.model_copy(
                update={"status": TaskStatus.PENDING, "updated_at": now}
            )
            unblocked.append(dependent.task_id)
            events.append(
                Event.new(
                    task_id=dependent.task_id,
                    scope_key=dependent.scope.key,
                    event_type=EventType.STATE_TRANSITION,
                    actor_id=actor_id,
                    payload=StateTransitionPayload(
                        from_status=TaskStatus.BLOCKED,
                        to_status=TaskStatus.PENDING,
                        reason="dependencies_completed",
                        triggered_by=completed_id,
                    ),
                    ts=now,
                )
            )
        return unblocked

    async def start(
        self,
        task_id: str,
        actor_id: str,
        metadata_updates: dict[str, Any] | None = None,
        source: str = "user",
    ) -> Task:
        """pending -> in_progress；未指派或角色占位的任务由 actor 认领

        两个操作者并发认领时，条件写入只让先到者成功，后到者得到 InvalidState。
        metadata_updates 与认领在同一事务内写入。
        """
        scope = await self._scope_of(task_id)
        lock = await self._get_scope_lock(scope.key)
        async with lock, self._stores.transaction():
            task = await self._require(task_id)
            if task.status != TaskStatus.PENDING:
                raise InvalidState(f"task {task_id} is {task.status}, cannot start")
            now = datetime.now(UTC)
            metadata = self._merge(task, metadata_updates) if metadata_updates else task.metadata
            if not await self._stores.task_store.claim_task(
                task_id, actor_id, expected_assignee=task.assigned_to, updated_at=now
            ):
                raise InvalidState(f"task {task_id} was claimed concurrently")
            events = [
                Event.new(
                    task_id=task_id,
                    scope_key=scope.key,
                    event_type=EventType.STATE_TRANSITION,
                    actor_id=actor_id,
                    payload=StateTransitionPayload(
                        from_status=TaskStatus.PENDING,
                        to_status=TaskStatus.IN_PROGRESS,
                    ),
                    ts=now,
                )
            ]
            if task.assigned_to != actor_id:
                events.append(
                    Event.new(
                        task_id=task_id,
                        scope_key=scope.key,
                        event_type=EventType.TASK_ASSIGNED,
                        actor_id=actor_id,
                        payload=TaskAssignedPayload(
                            from_assignee=task.assigned_to,
                            to_assignee=actor_id,
                        ),
                        ts=now,
                    )
                )
            if metadata_updates:
                await self._stores.task_store.update_metadata(
                    task.model_copy(update={"metadata": metadata, "updated_at": now})
                )
                events.append(
                    Event.new(
                        task_id=task_id,
                        scope_key=scope.key,
                        event_type=EventType.METADATA_UPDATED,
                        actor_id=actor_id,
                        payload=MetadataUpdatedPayload(
                            fields=sorted(metadata_updates), source=source
                        ),
                        ts=now,
                    )
                )
            await append_events(self._stores.event_store, events)

        log.info("task_started", task_id=task_id, actor_id=actor_id)
        return task.model_copy(
            update={
                "status": TaskStatus.IN_PROGRESS,
                "assigned_to": actor_id,
                "metadata": metadata,
                "updated_at": now,
            }
        )

    async def cancel(self, task_id: str, actor_id: str, reason: str = "") -> Task:
        """非终态任务 -> cancelled；下游任务保持 blocked"""
        scope = await self._scope_of(task_id)
        lock = await self._get_scope_lock(scope.key)
        async with lock, self._stores.transaction():
            task = await self._require(task_id)
            if task.status in TERMINAL_STATES:
                raise InvalidState(f"task {task_id} is already {task.status}")
            if not validate_transition(task.status, TaskStatus.CANCELLED):
                raise InvalidState(f"cannot cancel task {task_id} from {task.status}")
            now = datetime.now(UTC)
            if not await self._stores.task_store.update_status(
                task_id, TaskStatus.CANCELLED, expected={task.status}, updated_at=now
            ):
                raise InvalidState(f"task {task_id} changed concurrently")
            await self._stores.event_store.append_event(
                Event.new(
                    task_id=task_id,
                    scope_key=scope.key,
                    event_type=EventType.STATE_TRANSITION,
                    actor_id=actor_id,
                    payload=StateTransitionPayload(
                        from_status=task.status,
                        to_status=TaskStatus.CANCELLED,
                        reason=reason,
                    ),
                    ts=now,
                )
            )

        log.info("task_cancelled", task_id=task_id, actor_id=actor_id, reason=reason)
        return task.model_copy(update={"status": TaskStatus.CANCELLED, "updated_at": now})

    async def merge_metadata(
        self,
        task_id: str,
        updates: dict[str, Any],
        actor_id: str,
        source: str = "user",
    ) -> Task:
        """合并 metadata 字段（只新增或覆盖，不删除）

        Raises:
            InvalidState: updates 含该任务 metadata 变体不支持的字段
        """
        scope = await self._scope_of(task_id)
        lock = await self._get_scope_lock(scope.key)
        async with lock, self._stores.transaction():
            task = await self._require(task_id)
            updated = task.model_copy(
                update={"metadata": self._merge(task, updates), "updated_at": datetime.now(UTC)}
            )
            await self._stores.task_store.update_metadata(updated)
            await self._stores.event_store.append_event(
                Event.new(
                    task_id=task_id,
                    scope_key=scope.key,
                    event_type=EventType.METADATA_UPDATED,
                    actor_id=actor_id,
                    payload=MetadataUpdatedPayload(fields=sorted(updates), source=source),
                    ts=updated.updated_at,
                )
            )

        log.info("task_metadata_merged", task_id=task_id, fields=sorted(updates), source=source)
        return updated

    async def add_comment(self, task_id: str, actor: Actor, content: str) -> TaskComment:
        """追加评论（append-only）"""
        scope = await self._scope_of(task_id)
        lock = await self._get_scope_lock(scope.key)
        async with lock, self._stores.transaction():
            task = await self._require(task_id)
            comment = TaskComment(
                comment_id=str(ULID()),
                user_id=actor.actor_id,
                user_role=actor.role.value,
                content=content,
                created_at=datetime.now(UTC),
            )
            updated = task.model_copy(
                update={"comments": [*task.comments, comment], "updated_at": comment.created_at}
            )
            await self._stores.task_store.update_comments(updated)
            await self._stores.event_store.append_event(
                Event.new(
                    task_id=task_id,
                    scope_key=scope.key,
                    event_type=EventType.COMMENT_ADDED,
                    actor_id=actor.actor_id,
                    payload=CommentAddedPayload(
                        comment_id=comment.comment_id,
                        content_length=len(content),
                    ),
                    ts=comment.created_at,
                )
            )
        return comment

    async def assign_role_tasks(
        self,
        scope: WorkflowScope,
        role: AssignedRole,
        assignee_id: str,
        actor_id: str,
    ) -> list[str]:
        """把作用域内未指派（或角色占位）的 role 任务绑定到 assignee

        Returns:
            被绑定的 task_id 列表
        """
        lock = await self._get_scope_lock(scope.key)
        assigned: list[str] = []
        async with lock, self._stores.transaction():
            now = datetime.now(UTC)
            events: list[Event] = []
            for task in await self._stores.task_store.list_tasks_for_scope(scope):
                if task.assigned_role != role or task.status in TERMINAL_STATES:
                    continue
                if task.assigned_to is not None and not task.assigned_to.startswith(
                    ROLE_SENTINEL_PREFIX
                ):
                    continue
                if not await self._stores.task_store.update_assignee(
                    task.task_id, assignee_id, expected_assignee=task.assigned_to, updated_at=now
                ):
                    continue
                assigned.append(task.task_id)
                events.append(
                    Event.new(
                        task_id=task.task_id,
                        scope_key=scope.key,
                        event_type=EventType.TASK_ASSIGNED,
                        actor_id=actor_id,
                        payload=TaskAssignedPayload(
                            from_assignee=task.assigned_to,
                            to_assignee=assignee_id,
                        ),
                        ts=now,
                    )
                )
            await append_events(self._stores.event_store, events)

        log.info(
            "role_tasks_assigned",
            scope=scope.key,
            role=role.value,
            assignee_id=assignee_id,
            task_ids=assigned,
        )
        return assigned

    @staticmethod
    def _merge(task: Task, updates: dict[str, Any]):
        try:
            return task.metadata.merged(updates)
        except (ValidationError, ValueError) as e:
            raise InvalidState(f"metadata update rejected for task {task.task_id}: {e}") from e

    async def _require(self, task_id: str) -> Task:
        task = await self._stores.task_store.get_task(task_id)
        if task is None:
            raise NotFound(f"task {task_id} not found")
        return task

    async def _scope_of(self, task_id: str) -> WorkflowScope:
        return (await self._require(task_id)).scope

    async def _get_scope_lock(self, scope_key: str) -> asyncio.Lock:
        """获取作用域级别锁，序列化同一作用域的写入"""
        async with self._scope_locks_guard:
            lock = self._scope_locks.get(scope_key)
            if lock is None:
                lock = asyncio.Lock()
                self._scope_locks[scope_key] = lock
            return lock
