"""原子批量提交封装

任务写入与事件写入在同一 SQLite 事务内提交，失败整体回滚。
所有写事务经同一把写锁串行化：进程内共享一个连接，
并发协程的写入不能混进彼此的事务。
"""

import asyncio
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager

import aiosqlite

from ..models.enums import TaskStatus
from ..models.event import Event
from .event_store import SqliteEventStore


class TaskStatusConflictError(RuntimeError):
    """条件写入未命中：任务状态已被并发修改"""

    def __init__(
        self,
        task_id: str,
        expected: Iterable[TaskStatus],
        actual: TaskStatus | None = None,
    ) -> None:
        self.task_id = task_id
        self.expected = sorted(s.value for s in expected)
        self.actual = actual
        super().__init__(
            f"task {task_id} status changed concurrently "
            f"(expected one of {self.expected}, actual {actual})"
        )


@asynccontextmanager
async def atomic(
    conn: aiosqlite.Connection,
    write_lock: asyncio.Lock,
) -> AsyncIterator[aiosqlite.Connection]:
    """在写锁内执行一个事务：正常退出提交，异常回滚后继续抛出

    Args:
        conn: 数据库连接（需在同一连接上操作以保证事务性）
        write_lock: 进程内写锁
    """
    async with write_lock:
        try:
            yield conn
            await conn.commit()
        except Exception:
            await conn.rollback()
            raise


async def append_events(event_store: SqliteEventStore, events: Iterable[Event]) -> None:
    """按顺序追加一批事件（不提交，调用方在 atomic 内使用）"""
    for event in events:
        await event_store.append_event(event)
