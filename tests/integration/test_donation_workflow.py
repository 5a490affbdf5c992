"""捐赠工作流与持久化集成测试

测试内容：
1. 捐赠创建累加活动统计，统计同步以捐赠记录为准
2. 重启应用后任务与事件完整保留
3. webhook 与主动轮询并发完成同一任务，只产生一次流转
"""

import asyncio

from donorflow.gateway.main import create_app
from httpx import ASGITransport, AsyncClient


class TestDonations:
    async def test_donations_and_stats(self, client: AsyncClient, headers, seeded_campaign):
        amounts = [500.0, 250.25]
        donation_ids = []
        for amount in amounts:
            resp = await client.post(
                "/api/donations",
                json={"campaign_id": "c1", "amount": amount},
                headers=headers["donor"],
            )
            assert resp.status_code == 201
            donation_ids.append(resp.json()["donation"]["donation_id"])

        resp = await client.post("/api/admin/campaigns/c1/sync-stats", headers=headers["npo"])
        assert resp.json() == {"campaign_id": "c1", "donor_count": 2, "total_amount": 750.25}

        resp = await client.get(
            "/api/tasks", params={"donation_id": donation_ids[0]}, headers=headers["npo"]
        )
        tasks = resp.json()["tasks"]
        assert len(tasks) == 10
        assert tasks[-1]["task_id"] == f"{donation_ids[0]}_finalize_receipt"
        assert tasks[-1]["assigned_to"] == "npo-1"


class TestRestart:
    async def test_state_survives_restart(self, integration_env, headers):
        first = create_app()
        async with first.router.lifespan_context(first):
            async with AsyncClient(
                transport=ASGITransport(app=first), base_url="http://test"
            ) as client:
                await client.put(
                    "/api/admin/campaigns/c1",
                    json={"created_by": "npo-1"},
                    headers=headers["admin"],
                )
                await client.put(
                    "/api/admin/participants/p1",
                    json={"campaign_id": "c1", "user_id": "donor-1"},
                    headers=headers["admin"],
                )
                await client.post("/api/workflows/participants/p1/tasks", headers=headers["donor"])
                await client.post(
                    "/api/tasks/p1_invite_appraiser/complete", headers=headers["donor"]
                )

        second = create_app()
        async with second.router.lifespan_context(second):
            async with AsyncClient(
                transport=ASGITransport(app=second), base_url="http://test"
            ) as client:
                resp = await client.get("/api/tasks/p1_sign_nda", headers=headers["donor"])
                data = resp.json()
                assert data["task"]["status"] == "pending"
                assert [e["payload"]["to_status"] for e in data["events"][1:]] == ["pending"]

                resp = await client.post(
                    "/api/workflows/participants/p1/tasks", headers=headers["donor"]
                )
                assert resp.json()["created"] is False


class TestConcurrentAdapters:
    async def test_webhook_and_poll_race(
        self, client: AsyncClient, integration_app, headers, seeded_campaign
    ):
        donor = headers["donor"]
        await client.post("/api/workflows/participants/p1/tasks", headers=donor)
        await client.post("/api/tasks/p1_invite_appraiser/complete", headers=donor)
        await client.post(
            "/api/tasks/p1_sign_nda/metadata",
            json={"updates": {"docusign_envelope_id": "env-race"}},
            headers=donor,
        )
        integration_app.state.signing_provider.set_status("env-race", "completed")

        webhook_body = {
            "event": "envelope-completed",
            "data": {"envelopeId": "env-race", "envelopeStatus": "completed"},
        }
        responses = await asyncio.gather(
            client.post("/api/signing/webhook", json=webhook_body),
            client.post(
                "/api/signing/check-status", json={"envelope_id": "env-race"}, headers=donor
            ),
            client.post("/api/signing/webhook", json=webhook_body),
        )
        assert [r.status_code for r in responses] == [200, 200, 200]

        resp = await client.get("/api/tasks/p1_commitment_decision", headers=donor)
        transitions = [
            e["payload"]["to_status"]
            for e in resp.json()["events"]
            if e["type"] == "STATE_TRANSITION"
        ]
        assert transitions == ["pending"]

        resp = await client.get("/api/tasks/p1_sign_nda", headers=donor)
        completions = [
            e for e in resp.json()["events"]
            if e["type"] == "STATE_TRANSITION" and e["payload"]["to_status"] == "completed"
        ]
        assert len(completions) == 1
