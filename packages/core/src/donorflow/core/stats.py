"""活动统计同步 -- 以 donations 表为准重算 current_amount / donor_count"""

from datetime import UTC, datetime

import structlog

from .exceptions import NotFound
from .models import CampaignStats
from .store import StoreGroup

log = structlog.get_logger()


async def sync_campaign_stats(store_group: StoreGroup, campaign_id: str) -> CampaignStats:
    """重算单个活动的统计

    Raises:
        NotFound: 活动不存在
    """
    async with store_group.transaction():
        campaign = await store_group.scope_store.get_campaign(campaign_id)
        if campaign is None:
            raise NotFound(f"campaign {campaign_id} not found")
        stats = await store_group.scope_store.aggregate_donations(campaign_id)
        await store_group.scope_store.update_campaign_stats(stats, datetime.now(UTC))

    log.info(
        "campaign_stats_synced",
        campaign_id=campaign_id,
        donor_count=stats.donor_count,
        total_amount=stats.total_amount,
    )
    return stats


async def sync_all_campaign_stats(store_group: StoreGroup) -> list[CampaignStats]:
    """重算所有活动的统计"""
    results = []
    for campaign_id in await store_group.scope_store.list_campaign_ids():
        results.append(await sync_campaign_stats(store_group, campaign_id))
    return results
