"""TaskStore SQLite 实现

tasks 表是工作流状态的唯一来源。
状态写入全部带前置状态条件（WHERE status IN ...），返回是否命中，
由调用方决定冲突时如何重试。此处不提交事务。
"""

import json
from datetime import datetime
from typing import Any

import aiosqlite

from ..models.enums import TaskStatus
from ..models.task import Task, TaskComment, WorkflowScope

# 允许按 metadata 字段反查的字段名（拼接进 json path，必须白名单）
_LOOKUP_FIELDS = frozenset({"docusign_envelope_id", "valuation_id", "invitation_token"})


class SqliteTaskStore:
    """TaskStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def create_task(self, task: Task) -> None:
        """创建任务记录"""
        await self._conn.execute(
            """
            INSERT INTO tasks (task_id, scope_key, participant_id, donation_id,
                               campaign_id, donor_id, title, description, type,
                               assigned_to, assigned_role, status, priority,
                               dependencies, task_order, metadata, comments,
                               completion_data, created_at, updated_at,
                               completed_at, completed_by, created_by)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                task.task_id,
                task.scope.key,
                task.participant_id,
                task.donation_id,
                task.campaign_id,
                task.donor_id,
                task.title,
                task.description,
                task.type.value,
                task.assigned_to,
                task.assigned_role.value,
                task.status.value,
                task.priority.value,
                json.dumps(task.dependencies),
                task.order,
                task.metadata.model_dump_json(),
                json.dumps([c.model_dump(mode="json") for c in task.comments]),
                _dump_optional(task.completion_data),
                task.created_at.isoformat(),
                task.updated_at.isoformat(),
                _iso(task.completed_at),
                task.completed_by,
                task.created_by,
            ),
        )

    async def get_task(self, task_id: str) -> Task | None:
        """根据 task_id 查询任务"""
        cursor = await self._conn.execute(
            "SELECT * FROM tasks WHERE task_id = ?",
            (task_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    async def list_tasks_for_scope(self, scope: WorkflowScope) -> list[Task]:
        """查询作用域内所有任务，按 order 排序（order 相同时按 task_id）"""
        cursor = await self._conn.execute(
            "SELECT * FROM tasks WHERE scope_key = ? ORDER BY task_order ASC, task_id ASC",
            (scope.key,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_task(row) for row in rows]

    async def count_tasks_for_scope(self, scope: WorkflowScope) -> int:
        cursor = await self._conn.execute(
            "SELECT COUNT(*) FROM tasks WHERE scope_key = ?",
            (scope.key,),
        )
        row = await cursor.fetchone()
        return row[0] if row else 0

    async def find_by_metadata(self, field: str, value: str) -> list[Task]:
        """按 metadata 字段值反查任务（webhook 用外部 ID 定位任务）

        Raises:
            ValueError: field 不在允许反查的字段内
        """
        if field not in _LOOKUP_FIELDS:
            raise ValueError(f"metadata field not indexed for lookup: {field}")
        cursor = await self._conn.execute(
            f"SELECT * FROM tasks WHERE json_extract(metadata, '$.{field}') = ? "
            "ORDER BY task_order ASC, task_id ASC",
            (value,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_task(row) for row in rows]

    async def update_status(
        self,
        task_id: str,
        new_status: TaskStatus,
        expected: set[TaskStatus],
        updated_at: datetime,
    ) -> bool:
        """条件更新状态：仅当当前状态属于 expected 时生效

        Returns:
            True 如果命中（状态已更新）
        """
        placeholders = ", ".join("?" for _ in expected)
        cursor = await self._conn.execute(
            f"""
            UPDATE tasks SET status = ?, updated_at = ?
            WHERE task_id = ? AND status IN ({placeholders})
            """,
            (new_status.value, updated_at.isoformat(), task_id, *sorted(s.value for s in expected)),
        )
        return cursor.rowcount == 1

    async def mark_completed(
        self,
        task: Task,
        expected: set[TaskStatus],
    ) -> bool:
        """条件写入完成态（status / completed_* / completion_data / metadata 一并写入）"""
        placeholders = ", ".join("?" for _ in expected)
        cursor = await self._conn.execute(
            f"""
            UPDATE tasks
            SET status = ?, updated_at = ?, completed_at = ?, completed_by = ?,
                completion_data = ?, metadata = ?
            WHERE task_id = ? AND status IN ({placeholders})
            """,
            (
                TaskStatus.COMPLETED.value,
                task.updated_at.isoformat(),
                _iso(task.completed_at),
                task.completed_by,
                _dump_optional(task.completion_data),
                task.metadata.model_dump_json(),
                task.task_id,
                *sorted(s.value for s in expected),
            ),
        )
        return cursor.rowcount == 1

    async def claim_task(
        self,
        task_id: str,
        actor_id: str,
        expected_assignee: str | None,
        updated_at: datetime,
    ) -> bool:
        """pending → in_progress，并把任务绑定到 actor（assignee 未变时才生效）"""
        cursor = await self._conn.execute(
            """
            UPDATE tasks SET status = ?, assigned_to = ?, updated_at = ?
            WHERE task_id = ? AND status = ? AND assigned_to IS ?
            """,
            (
                TaskStatus.IN_PROGRESS.value,
                actor_id,
                updated_at.isoformat(),
                task_id,
                TaskStatus.PENDING.value,
                expected_assignee,
            ),
        )
        return cursor.rowcount == 1

    async def update_assignee(
        self,
        task_id: str,
        assigned_to: str,
        expected_assignee: str | None,
        updated_at: datetime,
    ) -> bool:
        cursor = await self._conn.execute(
            """
            UPDATE tasks SET assigned_to = ?, updated_at = ?
            WHERE task_id = ? AND assigned_to IS ?
            """,
            (assigned_to, updated_at.isoformat(), task_id, expected_assignee),
        )
        return cursor.rowcount == 1

    async def update_metadata(self, task: Task) -> None:
        """写回 metadata（合并由调用方完成）"""
        await self._conn.execute(
            "UPDATE tasks SET metadata = ?, updated_at = ? WHERE task_id = ?",
            (task.metadata.model_dump_json(), task.updated_at.isoformat(), task.task_id),
        )

    async def update_comments(self, task: Task) -> None:
        await self._conn.execute(
            "UPDATE tasks SET comments = ?, updated_at = ? WHERE task_id = ?",
            (
                json.dumps([c.model_dump(mode="json") for c in task.comments]),
                task.updated_at.isoformat(),
                task.task_id,
            ),
        )

    async def update_definition(self, task: Task, expected_type: str) -> bool:
        """改写任务定义（type / title / description / metadata），状态与依赖不变"""
        cursor = await self._conn.execute(
            """
            UPDATE tasks
            SET type = ?, title = ?, description = ?, metadata = ?, updated_at = ?
            WHERE task_id = ? AND type = ?
            """,
            (
                task.type.value,
                task.title,
                task.description,
                task.metadata.model_dump_json(),
                task.updated_at.isoformat(),
                task.task_id,
                expected_type,
            ),
        )
        return cursor.rowcount == 1

    async def delete_tasks_for_scope(self, scope: WorkflowScope) -> int:
        """删除作用域内所有任务（仅 reset workflow 使用）

        Returns:
            删除的任务数
        """
        cursor = await self._conn.execute(
            "DELETE FROM tasks WHERE scope_key = ?",
            (scope.key,),
        )
        return cursor.rowcount

    @staticmethod
    def _row_to_task(row: aiosqlite.Row) -> Task:
        """将数据库行转换为 Task 模型"""
        comments_data: list[dict[str, Any]] = json.loads(row[16]) if row[16] else []
        return Task(
            task_id=row[0],
            participant_id=row[2],
            donation_id=row[3],
            campaign_id=row[4],
            donor_id=row[5],
            title=row[6],
            description=row[7],
            type=row[8],
            assigned_to=row[9],
            assigned_role=row[10],
            status=row[11],
            priority=row[12],
            dependencies=json.loads(row[13]),
            order=row[14],
            metadata=json.loads(row[15]),
            comments=[TaskComment(**c) for c in comments_data],
            completion_data=json.loads(row[17]) if row[17] else None,
            created_at=datetime.fromisoformat(row[18]),
            updated_at=datetime.fromisoformat(row[19]),
            completed_at=datetime.fromisoformat(row[20]) if row[20] else None,
            completed_by=row[21],
            created_by=row[22],
        )


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _dump_optional(data: dict[str, Any] | None) -> str | None:
    if data is None:
        return None
    return json.dumps(data, ensure_ascii=False, default=str)
