"""任务路由测试 -- /api/tasks

测试内容：
1. 作用域任务列表与详情（含事件）
2. start / complete 的授权与状态校验
3. 承诺决策的两个分支；参与者状态与决策同批提交
4. 评论、AI 估值转换、取消、metadata 合并
"""

from unittest.mock import AsyncMock, patch

import pytest
from donorflow.core.models import AssignedRole, TaskStatus
from donorflow.gateway.services.task_service import TaskService
from httpx import AsyncClient


@pytest.fixture
async def nda_ready(engine, participant_tasks):
    """邀请估值师已完成，签署 NDA 处于 pending"""
    await engine.complete("p1_invite_appraiser", "donor-1")


@pytest.fixture
async def decision_ready(engine, nda_ready):
    await engine.complete("p1_sign_nda", "donor-1")


class TestListAndDetail:
    async def test_list_participant_tasks(self, client: AsyncClient, auth, participant_tasks):
        resp = await client.get(
            "/api/tasks", params={"participant_id": "p1"}, headers=auth["donor"]
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["scope"] == "participant:p1"
        assert [t["order"] for t in data["tasks"]] == list(range(1, 10))
        assert data["tasks"][0]["status"] == "pending"
        assert {t["status"] for t in data["tasks"][1:]} == {"blocked"}

    async def test_list_donation_tasks(self, client: AsyncClient, auth, donation_tasks):
        resp = await client.get("/api/tasks", params={"donation_id": "d1"}, headers=auth["npo"])
        assert resp.status_code == 200
        assert len(resp.json()["tasks"]) == 10

    @pytest.mark.parametrize(
        "params", [{}, {"participant_id": "p1", "donation_id": "d1"}]
    )
    async def test_exactly_one_scope(self, client: AsyncClient, auth, params):
        resp = await client.get("/api/tasks", params=params, headers=auth["donor"])
        assert resp.status_code == 409

    async def test_bound_appraiser_excludes_others(
        self, client: AsyncClient, auth, engine, donation_tasks
    ):
        params = {"donation_id": "d1"}
        # 未指派的估值师任务对任意估值师可见
        resp = await client.get("/api/tasks", params=params, headers=auth["appraiser-2"])
        assert resp.status_code == 200

        await engine.assign_role_tasks(
            donation_tasks[0].scope, AssignedRole.APPRAISER, "appraiser-1", "donor-1"
        )
        resp = await client.get("/api/tasks", params=params, headers=auth["appraiser-2"])
        assert resp.status_code == 403
        resp = await client.get("/api/tasks", params=params, headers=auth["appraiser"])
        assert resp.status_code == 200

    async def test_detail_with_events(self, client: AsyncClient, auth, participant_tasks):
        resp = await client.get("/api/tasks/p1_invite_appraiser", headers=auth["donor"])
        assert resp.status_code == 200
        data = resp.json()
        assert data["task"]["type"] == "invitation"
        assert [e["type"] for e in data["events"]] == ["TASK_CREATED"]

    async def test_detail_forbidden_for_other_role(
        self, client: AsyncClient, auth, participant_tasks
    ):
        resp = await client.get("/api/tasks/p1_invite_appraiser", headers=auth["appraiser"])
        assert resp.status_code == 403


class TestComplete:
    async def test_complete_and_cascade(self, client: AsyncClient, auth, participant_tasks):
        resp = await client.post(
            "/api/tasks/p1_invite_appraiser/complete",
            json={"completion_data": {"method": "professional"}},
            headers=auth["donor"],
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["already_completed"] is False
        assert data["unblocked_task_ids"] == ["p1_sign_nda"]
        assert data["task"]["completion_data"] == {"method": "professional"}

        again = await client.post(
            "/api/tasks/p1_invite_appraiser/complete", headers=auth["donor"]
        )
        assert again.status_code == 200
        assert again.json()["already_completed"] is True
        assert again.json()["unblocked_task_ids"] == []

    async def test_blocked_task(self, client: AsyncClient, auth, participant_tasks):
        resp = await client.post("/api/tasks/p1_sign_nda/complete", headers=auth["donor"])
        assert resp.status_code == 409

    async def test_appraiser_cannot_complete_donor_task(
        self, client: AsyncClient, auth, store_group, participant_tasks
    ):
        resp = await client.post(
            "/api/tasks/p1_invite_appraiser/complete", headers=auth["appraiser"]
        )
        assert resp.status_code == 403
        task = await store_group.task_store.get_task("p1_invite_appraiser")
        assert task.status == TaskStatus.PENDING
        assert len(await store_group.event_store.get_events_for_task(task.task_id)) == 1

    async def test_admin_cannot_complete_on_behalf(
        self, client: AsyncClient, auth, participant_tasks
    ):
        resp = await client.post(
            "/api/tasks/p1_invite_appraiser/complete", headers=auth["admin"]
        )
        assert resp.status_code == 403

    async def test_start_then_complete(self, client: AsyncClient, auth, participant_tasks):
        resp = await client.post("/api/tasks/p1_invite_appraiser/start", headers=auth["donor"])
        assert resp.status_code == 200
        assert resp.json()["status"] == "in_progress"

        resp = await client.post("/api/tasks/p1_invite_appraiser/start", headers=auth["donor"])
        assert resp.status_code == 409

        resp = await client.post(
            "/api/tasks/p1_invite_appraiser/complete", headers=auth["donor"]
        )
        assert resp.json()["task"]["status"] == "completed"


class TestCommitmentDecision:
    async def test_commit_now_creates_commitment_task(
        self, client: AsyncClient, auth, store_group, decision_ready
    ):
        resp = await client.post(
            "/api/tasks/p1_commitment_decision/commitment-decision",
            json={"decision": "commit_now", "commitment_data": {"amount": 5000}},
            headers=auth["donor"],
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["created_task_ids"] == ["p1_donation_commitment"]
        assert set(data["unblocked_task_ids"]) == {"p1_company_info", "p1_donation_commitment"}
        assert data["task"]["metadata"]["decision"] == "commit_now"

        created = await store_group.task_store.get_task("p1_donation_commitment")
        assert created.status == TaskStatus.PENDING
        assert created.dependencies == ["p1_commitment_decision"]

    async def test_commit_after_appraisal_updates_participant(
        self, client: AsyncClient, auth, store_group, decision_ready
    ):
        resp = await client.post(
            "/api/tasks/p1_commitment_decision/commitment-decision",
            json={"decision": "commit_after_appraisal"},
            headers=auth["donor"],
        )
        assert resp.status_code == 200
        assert resp.json()["created_task_ids"] == []
        participant = await store_group.scope_store.get_participant("p1")
        assert participant.status == "awaiting_appraisal"

    async def test_participant_write_failure_leaves_decision_pending(
        self, store_group, engine, factory, donor, decision_ready
    ):
        service = TaskService(store_group, engine, factory)
        failing = AsyncMock(side_effect=OSError("disk full"))
        with patch.object(store_group.scope_store, "update_participant_status", failing):
            with pytest.raises(OSError):
                await service.submit_commitment_decision(
                    "p1_commitment_decision", donor, "commit_after_appraisal"
                )

        task = await store_group.task_store.get_task("p1_commitment_decision")
        assert task.status == TaskStatus.PENDING
        blocked = await store_group.task_store.get_task("p1_company_info")
        assert blocked.status == TaskStatus.BLOCKED

        result = await service.submit_commitment_decision(
            "p1_commitment_decision", donor, "commit_after_appraisal"
        )
        assert result.already_completed is False
        participant = await store_group.scope_store.get_participant("p1")
        assert participant.status == "awaiting_appraisal"

    async def test_direct_completion_rejected(
        self, client: AsyncClient, auth, decision_ready
    ):
        resp = await client.post(
            "/api/tasks/p1_commitment_decision/complete", headers=auth["donor"]
        )
        assert resp.status_code == 409

    async def test_unknown_decision(self, client: AsyncClient, auth, decision_ready):
        resp = await client.post(
            "/api/tasks/p1_commitment_decision/commitment-decision",
            json={"decision": "maybe_later"},
            headers=auth["donor"],
        )
        assert resp.status_code == 409


class TestOtherOperations:
    async def test_comment(self, client: AsyncClient, auth, participant_tasks):
        # 评论不受任务状态限制
        resp = await client.post(
            "/api/tasks/p1_nonprofit_upload/comments",
            json={"content": "Receipt template attached"},
            headers=auth["npo"],
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data["user_id"] == "npo-1"
        assert data["user_role"] == "nonprofit_admin"

    async def test_convert_to_ai_appraisal(self, client: AsyncClient, auth, participant_tasks):
        resp = await client.post(
            "/api/tasks/p1_invite_appraiser/convert-to-ai-appraisal", headers=auth["donor"]
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["type"] == "ai_appraisal_request"
        assert data["metadata"]["appraisal_method"] == "ai_appraisal"
        assert data["status"] == "pending"

    async def test_cancel_requires_admin(self, client: AsyncClient, auth, participant_tasks):
        resp = await client.post(
            "/api/tasks/p1_sign_nda/cancel", json={"reason": "x"}, headers=auth["donor"]
        )
        assert resp.status_code == 403

        resp = await client.post(
            "/api/tasks/p1_sign_nda/cancel",
            json={"reason": "duplicate workflow"},
            headers=auth["admin"],
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "cancelled"

    async def test_metadata_merge(self, client: AsyncClient, auth, nda_ready):
        resp = await client.post(
            "/api/tasks/p1_sign_nda/metadata",
            json={"updates": {"docusign_envelope_id": "env-42"}},
            headers=auth["donor"],
        )
        assert resp.status_code == 200
        metadata = resp.json()["metadata"]
        assert metadata["docusign_envelope_id"] == "env-42"
        assert metadata["document_name"] == "General NDA"

    async def test_metadata_status_fields_not_writable(
        self, client: AsyncClient, auth, nda_ready
    ):
        resp = await client.post(
            "/api/tasks/p1_sign_nda/metadata",
            json={"updates": {"envelope_status": "completed"}},
            headers=auth["donor"],
        )
        assert resp.status_code == 403

    async def test_metadata_unknown_field(self, client: AsyncClient, auth, nda_ready):
        resp = await client.post(
            "/api/tasks/p1_sign_nda/metadata",
            json={"updates": {"valuation_id": "v-1"}},
            headers=auth["donor"],
        )
        assert resp.status_code == 409
