"""CompletionEngine 单元测试

测试内容：
1. 线性链级联解锁（完成 T1 解锁 T2，T3 不变；完成 T2 解锁 T3）
2. 多依赖任务在全部依赖完成前保持 blocked
3. 重复完成幂等，不产生第二次写入
4. 依赖缺失 / 未完成 -> DataIntegrity；blocked / cancelled -> InvalidState
5. start / cancel / merge_metadata / add_comment / assign_role_tasks
6. 空闲作用域的锁被回收
"""

import gc

import pytest
from donorflow.core.exceptions import DataIntegrity, InvalidState, NotFound
from donorflow.core.factory import build_donation_commitment_task
from donorflow.core.models import (
    AssignedRole,
    EventType,
    TaskStatus,
    TaskType,
    WorkflowScope,
)


@pytest.fixture
async def chain(make_task, insert_tasks):
    """T1 -> T2 -> T3"""
    tasks = [
        make_task("t1"),
        make_task("t2", status=TaskStatus.BLOCKED, dependencies=["t1"], order=2),
        make_task("t3", status=TaskStatus.BLOCKED, dependencies=["t2"], order=3),
    ]
    await insert_tasks(*tasks)
    return tasks


async def _status(store_group, task_id: str) -> TaskStatus:
    return (await store_group.task_store.get_task(task_id)).status


class TestCascade:
    async def test_complete_first_unblocks_only_next(self, store_group, engine, chain):
        result = await engine.complete("t1", "donor-1")
        assert result.task.status == TaskStatus.COMPLETED
        assert result.unblocked_task_ids == ["t2"]
        assert await _status(store_group, "t1") == TaskStatus.COMPLETED
        assert await _status(store_group, "t2") == TaskStatus.PENDING
        assert await _status(store_group, "t3") == TaskStatus.BLOCKED

    async def test_complete_second_unblocks_third(self, store_group, engine, chain):
        await engine.complete("t1", "donor-1")
        result = await engine.complete("t2", "donor-1")
        assert result.unblocked_task_ids == ["t3"]
        assert await _status(store_group, "t3") == TaskStatus.PENDING

    async def test_completion_fields(self, store_group, engine, chain):
        await engine.complete("t1", "donor-1", completion_data={"answer": 42})
        task = await store_group.task_store.get_task("t1")
        assert task.completed_by == "donor-1"
        assert task.completed_at is not None
        assert task.completion_data == {"answer": 42}

    async def test_multi_dependency_waits_for_all(
        self, store_group, engine, make_task, insert_tasks
    ):
        await insert_tasks(
            make_task("t1"),
            make_task("t2"),
            make_task("t4", status=TaskStatus.BLOCKED, dependencies=["t1", "t2"]),
        )
        first = await engine.complete("t1", "donor-1")
        assert first.unblocked_task_ids == []
        assert await _status(store_group, "t4") == TaskStatus.BLOCKED

        second = await engine.complete("t2", "donor-1")
        assert second.unblocked_task_ids == ["t4"]
        assert await _status(store_group, "t4") == TaskStatus.PENDING

    async def test_dependents_in_other_states_are_not_regressed(
        self, store_group, engine, make_task, insert_tasks
    ):
        await insert_tasks(
            make_task("t1"),
            make_task("t2", status=TaskStatus.IN_PROGRESS, dependencies=["t1"]),
        )
        result = await engine.complete("t1", "donor-1")
        assert result.unblocked_task_ids == []
        assert await _status(store_group, "t2") == TaskStatus.IN_PROGRESS

    async def test_dependent_with_missing_reference_stays_blocked(
        self, store_group, engine, make_task, insert_tasks
    ):
        await insert_tasks(
            make_task("t1"),
            make_task("t2", status=TaskStatus.BLOCKED, dependencies=["t1", "ghost"]),
        )
        result = await engine.complete("t1", "donor-1")
        assert result.unblocked_task_ids == []
        assert await _status(store_group, "t2") == TaskStatus.BLOCKED

    async def test_events_written_with_completion(self, store_group, engine, chain):
        await engine.complete("t1", "donor-1")
        t1_events = await store_group.event_store.get_events_for_task("t1")
        assert [e.type for e in t1_events] == [EventType.STATE_TRANSITION]
        t2_events = await store_group.event_store.get_events_for_task("t2")
        assert t2_events[-1].payload["triggered_by"] == "t1"
        assert t2_events[-1].payload["to_status"] == "pending"


class TestIdempotence:
    async def test_second_completion_is_noop(self, store_group, engine, chain):
        first = await engine.complete("t1", "donor-1")
        events_after_first = await store_group.event_store.get_events_for_scope("participant:p1")

        second = await engine.complete("t1", "someone-else")
        assert second.already_completed is True
        assert second.unblocked_task_ids == []
        assert second.task.completed_at == first.task.completed_at
        assert second.task.completed_by == "donor-1"
        events_after_second = await store_group.event_store.get_events_for_scope("participant:p1")
        assert len(events_after_second) == len(events_after_first)


class TestErrors:
    async def test_missing_task(self, engine):
        with pytest.raises(NotFound):
            await engine.complete("ghost", "donor-1")

    async def test_blocked_task_cannot_complete(self, store_group, engine, chain):
        with pytest.raises(InvalidState):
            await engine.complete("t2", "donor-1")
        assert await _status(store_group, "t2") == TaskStatus.BLOCKED

    async def test_pending_task_with_incomplete_dependency(
        self, store_group, engine, make_task, insert_tasks
    ):
        await insert_tasks(
            make_task("t1"),
            make_task("t2", dependencies=["t1"]),
        )
        with pytest.raises(DataIntegrity) as exc_info:
            await engine.complete("t2", "donor-1")
        assert "t1" in exc_info.value.task_ids
        assert await _status(store_group, "t2") == TaskStatus.PENDING

    async def test_pending_task_with_missing_dependency(self, engine, make_task, insert_tasks):
        await insert_tasks(make_task("t1", dependencies=["ghost"]))
        with pytest.raises(DataIntegrity):
            await engine.complete("t1", "donor-1")

    async def test_cancelled_task_cannot_complete(self, engine, chain):
        await engine.cancel("t1", "admin-1", reason="duplicate")
        with pytest.raises(InvalidState):
            await engine.complete("t1", "donor-1")


class TestIncrementalTasks:
    async def test_new_task_unblocked_in_same_batch(
        self, store_group, engine, participant_tasks
    ):
        # 推进到承诺决策
        await engine.complete("p1_invite_appraiser", "donor-1")
        await engine.complete("p1_sign_nda", "donor-1")
        decision = await store_group.task_store.get_task("p1_commitment_decision")
        new_task = build_donation_commitment_task(decision)

        result = await engine.complete(
            decision.task_id,
            "donor-1",
            metadata_updates={"decision": "commit_now"},
            new_tasks=[new_task],
        )
        assert result.created_task_ids == ["p1_donation_commitment"]
        assert "p1_donation_commitment" in result.unblocked_task_ids
        assert "p1_company_info" in result.unblocked_task_ids
        stored = await store_group.task_store.get_task("p1_donation_commitment")
        assert stored.status == TaskStatus.PENDING
        assert stored.type == TaskType.DONATION_COMMITMENT
        decided = await store_group.task_store.get_task(decision.task_id)
        assert decided.metadata.decision == "commit_now"

    async def test_participant_status_written_with_completion(
        self, store_group, engine, participant_tasks
    ):
        await engine.complete("p1_invite_appraiser", "donor-1")
        await engine.complete("p1_sign_nda", "donor-1")
        await engine.complete(
            "p1_commitment_decision", "donor-1", participant_status="awaiting_appraisal"
        )
        participant = await store_group.scope_store.get_participant("p1")
        assert participant.status == "awaiting_appraisal"

    async def test_new_task_outside_scope_rolls_back(
        self, store_group, engine, make_task, chain
    ):
        stray = make_task("stray", donation_id="d1")
        with pytest.raises(DataIntegrity):
            await engine.complete("t1", "donor-1", new_tasks=[stray])
        assert await _status(store_group, "t1") == TaskStatus.PENDING
        assert await store_group.task_store.get_task("stray") is None

    async def test_invalid_metadata_update_rolls_back(self, store_group, engine, chain):
        with pytest.raises(InvalidState):
            await engine.complete("t1", "donor-1", metadata_updates={"kind": "signing"})
        assert await _status(store_group, "t1") == TaskStatus.PENDING


class TestStartAndClaim:
    async def test_start_pending_task(self, store_group, engine, chain):
        task = await engine.start("t1", "donor-1")
        assert task.status == TaskStatus.IN_PROGRESS
        assert await _status(store_group, "t1") == TaskStatus.IN_PROGRESS

    async def test_start_blocked_task_fails(self, engine, chain):
        with pytest.raises(InvalidState):
            await engine.start("t2", "donor-1")

    async def test_unassigned_task_is_claimed(self, store_group, engine, make_task, insert_tasks):
        await insert_tasks(
            make_task("t1", assigned_to=None, assigned_role=AssignedRole.APPRAISER)
        )
        await engine.start("t1", "appraiser-1")
        task = await store_group.task_store.get_task("t1")
        assert task.assigned_to == "appraiser-1"
        events = await store_group.event_store.get_events_for_task("t1")
        assert [e.type for e in events] == [EventType.STATE_TRANSITION, EventType.TASK_ASSIGNED]

    async def test_start_with_metadata(self, store_group, engine, participant_tasks):
        task = await engine.start(
            "p1_invite_appraiser", "donor-1", metadata_updates={"invited_email": "a@x.org"}
        )
        assert task.metadata.invited_email == "a@x.org"
        stored = await store_group.task_store.get_task("p1_invite_appraiser")
        assert stored.status == TaskStatus.IN_PROGRESS
        assert stored.metadata.invited_email == "a@x.org"

    async def test_start_with_invalid_metadata_rolls_back(self, store_group, engine, chain):
        with pytest.raises(InvalidState):
            await engine.start("t1", "donor-1", metadata_updates={"kind": "signing"})
        assert await _status(store_group, "t1") == TaskStatus.PENDING
        assert await store_group.event_store.get_events_for_task("t1") == []

    async def test_in_progress_then_complete(self, store_group, engine, chain):
        await engine.start("t1", "donor-1")
        result = await engine.complete("t1", "donor-1")
        assert result.unblocked_task_ids == ["t2"]


class TestCancel:
    async def test_cancel_leaves_dependents_blocked(self, store_group, engine, chain):
        task = await engine.cancel("t1", "admin-1", reason="withdrawn")
        assert task.status == TaskStatus.CANCELLED
        assert await _status(store_group, "t2") == TaskStatus.BLOCKED

    async def test_cancel_terminal_fails(self, engine, chain):
        await engine.complete("t1", "donor-1")
        with pytest.raises(InvalidState):
            await engine.cancel("t1", "admin-1")


class TestMetadataAndComments:
    async def test_merge_metadata(self, store_group, engine, participant_tasks):
        task = await engine.merge_metadata(
            "p1_sign_nda", {"docusign_envelope_id": "env-1"}, "donor-1"
        )
        assert task.metadata.docusign_envelope_id == "env-1"
        assert task.metadata.document_name == "General NDA"
        found = await store_group.task_store.find_by_metadata("docusign_envelope_id", "env-1")
        assert [t.task_id for t in found] == ["p1_sign_nda"]
        events = await store_group.event_store.get_events_for_task("p1_sign_nda")
        assert events[-1].type == EventType.METADATA_UPDATED
        assert events[-1].payload == {"fields": ["docusign_envelope_id"], "source": "user"}

    async def test_merge_metadata_rejects_unknown_field(self, engine, participant_tasks):
        with pytest.raises(InvalidState):
            await engine.merge_metadata("p1_sign_nda", {"valuation_id": "v-1"}, "donor-1")

    async def test_merge_metadata_does_not_touch_status(
        self, store_group, engine, participant_tasks
    ):
        await engine.merge_metadata("p1_company_info", {"document_ids": ["doc-1"]}, "donor-1")
        assert await _status(store_group, "p1_company_info") == TaskStatus.BLOCKED

    async def test_comments_append(self, store_group, engine, donor, participant_tasks):
        await engine.add_comment("p1_sign_nda", donor, "first")
        await engine.add_comment("p1_sign_nda", donor, "second")
        task = await store_group.task_store.get_task("p1_sign_nda")
        assert [c.content for c in task.comments] == ["first", "second"]
        assert task.comments[0].user_role == "donor"


class TestAssignRoleTasks:
    async def test_binds_unassigned_appraiser_tasks(
        self, store_group, engine, participant_tasks
    ):
        assigned = await engine.assign_role_tasks(
            WorkflowScope.participant("p1"), AssignedRole.APPRAISER, "appraiser-1", "donor-1"
        )
        assert assigned == ["p1_appraiser_sign_nda", "p1_appraiser_upload"]
        task = await store_group.task_store.get_task("p1_appraiser_upload")
        assert task.assigned_to == "appraiser-1"

    async def test_does_not_rebind_assigned_tasks(self, engine, participant_tasks):
        scope = WorkflowScope.participant("p1")
        await engine.assign_role_tasks(scope, AssignedRole.APPRAISER, "appraiser-1", "donor-1")
        again = await engine.assign_role_tasks(
            scope, AssignedRole.APPRAISER, "appraiser-2", "donor-1"
        )
        assert again == []


class TestScopeLocks:
    async def test_idle_scope_locks_are_released(self, engine, make_task, insert_tasks):
        await insert_tasks(*(make_task(f"t{i}", participant_id=f"p{i}") for i in range(20)))
        for i in range(20):
            await engine.complete(f"t{i}", "donor-1")
        gc.collect()
        assert len(engine._scope_locks) == 0
