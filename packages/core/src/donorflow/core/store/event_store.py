"""EventStore SQLite 实现

事件表 append-only：只允许插入，不允许更新或删除。
event_id 为 ULID；同一毫秒内 ULID 不保证有序，查询按写入顺序（rowid）返回。
"""

import json
from datetime import datetime

import aiosqlite

from ..models.enums import EventType
from ..models.event import Event


class SqliteEventStore:
    """EventStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def append_event(self, event: Event) -> None:
        """追加事件（append-only）

        注意：此方法不自动提交事务，需由调用方管理事务。
        """
        await self._conn.execute(
            """
            INSERT INTO events (event_id, task_id, scope_key, ts, type,
                                actor_id, payload, trace_id)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                event.event_id,
                event.task_id,
                event.scope_key,
                event.ts.isoformat(),
                event.type.value,
                event.actor_id,
                json.dumps(event.payload, ensure_ascii=False, default=str),
                event.trace_id,
            ),
        )

    async def get_events_for_task(self, task_id: str) -> list[Event]:
        """查询指定任务的所有事件，按写入顺序"""
        cursor = await self._conn.execute(
            "SELECT * FROM events WHERE task_id = ? ORDER BY rowid ASC",
            (task_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_event(row) for row in rows]

    async def get_events_for_scope(self, scope_key: str) -> list[Event]:
        """查询作用域内所有事件（含已被重置删除的任务）"""
        cursor = await self._conn.execute(
            "SELECT * FROM events WHERE scope_key = ? ORDER BY rowid ASC",
            (scope_key,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_event(row) for row in rows]

    @staticmethod
    def _row_to_event(row: aiosqlite.Row) -> Event:
        """将数据库行转换为 Event 模型"""
        payload = json.loads(row[6]) if row[6] else {}
        return Event(
            event_id=row[0],
            task_id=row[1],
            scope_key=row[2],
            ts=datetime.fromisoformat(row[3]),
            type=EventType(row[4]),
            actor_id=row[5],
            payload=payload,
            trace_id=row[7],
        )
