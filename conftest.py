"""全局 pytest 配置 -- 临时 SQLite StoreGroup + 作用域记录 fixture"""

from collections.abc import AsyncGenerator
from datetime import UTC, datetime
from pathlib import Path

import pytest
import pytest_asyncio
from donorflow.core.engine import CompletionEngine
from donorflow.core.factory import TaskFactory
from donorflow.core.models import (
    Actor,
    ActorRole,
    Campaign,
    Donation,
    Participant,
    Task,
    WorkflowScope,
)
from donorflow.core.store import StoreGroup, create_store_group

CAMPAIGN_ID = "c1"
NONPROFIT_ID = "npo-1"
DONOR_ID = "donor-1"
PARTICIPANT_ID = "p1"
DONATION_ID = "d1"


@pytest.fixture
def blob_dir(tmp_path: Path) -> Path:
    return tmp_path / "blobs"


@pytest_asyncio.fixture
async def store_group(tmp_path: Path, blob_dir: Path) -> AsyncGenerator[StoreGroup, None]:
    """提供已初始化的临时 StoreGroup"""
    group = await create_store_group(str(tmp_path / "test.db"), blob_dir)
    yield group
    await group.close()


@pytest.fixture
def engine(store_group: StoreGroup) -> CompletionEngine:
    return CompletionEngine(store_group)


@pytest.fixture
def factory(store_group: StoreGroup) -> TaskFactory:
    return TaskFactory(store_group)


@pytest.fixture
def donor() -> Actor:
    return Actor(actor_id=DONOR_ID, role=ActorRole.DONOR)


@pytest.fixture
def nonprofit_admin() -> Actor:
    return Actor(actor_id=NONPROFIT_ID, role=ActorRole.NONPROFIT_ADMIN, organization_id="org-1")


@pytest.fixture
def appraiser() -> Actor:
    return Actor(actor_id="appraiser-1", role=ActorRole.APPRAISER)


@pytest.fixture
def admin() -> Actor:
    return Actor(actor_id="admin-1", role=ActorRole.ADMIN)


@pytest_asyncio.fixture
async def campaign(store_group: StoreGroup) -> Campaign:
    campaign = Campaign(
        campaign_id=CAMPAIGN_ID,
        title="Spring Equity Drive",
        organization_name="Helping Hands",
        created_by=NONPROFIT_ID,
        updated_at=datetime.now(UTC),
    )
    async with store_group.transaction():
        await store_group.scope_store.save_campaign(campaign)
    return campaign


@pytest_asyncio.fixture
async def participant(store_group: StoreGroup, campaign: Campaign) -> Participant:
    participant = Participant(
        participant_id=PARTICIPANT_ID,
        campaign_id=campaign.campaign_id,
        user_id=DONOR_ID,
        status="committed",
    )
    async with store_group.transaction():
        await store_group.scope_store.save_participant(participant)
    return participant


@pytest_asyncio.fixture
async def donation(store_group: StoreGroup, campaign: Campaign) -> Donation:
    donation = Donation(
        donation_id=DONATION_ID,
        campaign_id=campaign.campaign_id,
        donor_id=DONOR_ID,
        amount=250.0,
        created_at=datetime.now(UTC),
    )
    async with store_group.transaction():
        await store_group.scope_store.save_donation(donation)
    return donation


@pytest_asyncio.fixture
async def participant_tasks(factory: TaskFactory, participant: Participant) -> list[Task]:
    """已种子的参与者工作流（9 个任务）"""
    tasks, _ = await factory.seed(WorkflowScope.participant(participant.participant_id), DONOR_ID)
    return tasks


@pytest_asyncio.fixture
async def donation_tasks(factory: TaskFactory, donation: Donation) -> list[Task]:
    """已种子的捐赠工作流（10 个任务）"""
    tasks, _ = await factory.seed(WorkflowScope.donation(donation.donation_id), DONOR_ID)
    return tasks
