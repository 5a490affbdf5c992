"""Store / 外部协作者 Protocol 接口定义

使用 Python Protocol 实现结构化子类型（duck typing），
测试中可用内存实现替换。
"""

from typing import Protocol

from ..models.event import Event
from ..models.task import Task, WorkflowScope


class TaskStore(Protocol):
    """Task 存储接口"""

    async def create_task(self, task: Task) -> None:
        """创建任务记录"""
        ...

    async def get_task(self, task_id: str) -> Task | None:
        """根据 task_id 查询任务"""
        ...

    async def list_tasks_for_scope(self, scope: WorkflowScope) -> list[Task]:
        """查询作用域内所有任务"""
        ...

    async def find_by_metadata(self, field: str, value: str) -> list[Task]:
        """按 metadata 字段值反查任务"""
        ...

    async def delete_tasks_for_scope(self, scope: WorkflowScope) -> int:
        """删除作用域内所有任务"""
        ...


class EventStore(Protocol):
    """Event 存储接口

    事件表 append-only：只允许插入，不允许更新或删除。
    """

    async def append_event(self, event: Event) -> None:
        """追加事件（append-only）"""
        ...

    async def get_events_for_task(self, task_id: str) -> list[Event]:
        """查询指定任务的所有事件"""
        ...

    async def get_events_for_scope(self, scope_key: str) -> list[Event]:
        """查询指定作用域的所有事件"""
        ...


class BlobStore(Protocol):
    """二进制内容存储接口"""

    async def store(self, path: str, content: bytes, content_type: str) -> str:
        """写入内容，返回可访问 URL"""
        ...
