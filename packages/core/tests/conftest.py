"""packages/core 测试配置 -- 任务构造 fixture

作用域记录与 StoreGroup fixture 定义在根 conftest。
"""

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import pytest
from donorflow.core.models import AssignedRole, Task, TaskStatus, TaskType
from donorflow.core.store import StoreGroup

MakeTask = Callable[..., Task]


@pytest.fixture
def make_task() -> MakeTask:
    """构造 participant 作用域任务（默认 p1 / donor-1）"""

    def _make(task_id: str, **overrides: Any) -> Task:
        now = datetime.now(UTC)
        fields: dict[str, Any] = {
            "task_id": task_id,
            "participant_id": "p1",
            "campaign_id": "c1",
            "donor_id": "donor-1",
            "title": task_id,
            "type": TaskType.OTHER,
            "assigned_to": "donor-1",
            "assigned_role": AssignedRole.DONOR,
            "status": TaskStatus.PENDING,
            "created_at": now,
            "updated_at": now,
        }
        fields.update(overrides)
        if "donation_id" in overrides and "participant_id" not in overrides:
            fields["participant_id"] = None
        return Task(**fields)

    return _make


@pytest.fixture
def insert_tasks(store_group: StoreGroup):
    """直接写入任务（绕过 TaskFactory 的图校验，用于构造异常数据）"""

    async def _insert(*tasks: Task) -> None:
        async with store_group.transaction():
            for task in tasks:
                await store_group.task_store.create_task(task)

    return _insert
