"""ScopeStore SQLite 实现 -- campaigns / participants / donations"""

from datetime import datetime

import aiosqlite

from ..models.workflow import Campaign, CampaignStats, Donation, Participant


class SqliteScopeStore:
    """作用域记录存储，写操作不自动提交"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    # ---- campaigns ----

    async def save_campaign(self, campaign: Campaign) -> None:
        """插入或覆盖活动记录"""
        await self._conn.execute(
            """
            INSERT INTO campaigns (campaign_id, title, organization_name, created_by,
                                   status, current_amount, donor_count, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(campaign_id) DO UPDATE SET
                title = excluded.title,
                organization_name = excluded.organization_name,
                created_by = excluded.created_by,
                status = excluded.status,
                updated_at = excluded.updated_at
            """,
            (
                campaign.campaign_id,
                campaign.title,
                campaign.organization_name,
                campaign.created_by,
                campaign.status,
                campaign.current_amount,
                campaign.donor_count,
                _iso(campaign.updated_at),
            ),
        )

    async def get_campaign(self, campaign_id: str) -> Campaign | None:
        cursor = await self._conn.execute(
            "SELECT * FROM campaigns WHERE campaign_id = ?",
            (campaign_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return Campaign(
            campaign_id=row[0],
            title=row[1],
            organization_name=row[2],
            created_by=row[3],
            status=row[4],
            current_amount=row[5],
            donor_count=row[6],
            updated_at=_parse(row[7]),
        )

    async def list_campaign_ids(self) -> list[str]:
        cursor = await self._conn.execute(
            "SELECT campaign_id FROM campaigns ORDER BY campaign_id ASC"
        )
        rows = await cursor.fetchall()
        return [row[0] for row in rows]

    async def aggregate_donations(self, campaign_id: str) -> CampaignStats:
        """统计活动下的捐赠笔数与总额"""
        cursor = await self._conn.execute(
            "SELECT COUNT(*), COALESCE(SUM(amount), 0) FROM donations WHERE campaign_id = ?",
            (campaign_id,),
        )
        row = await cursor.fetchone()
        return CampaignStats(
            campaign_id=campaign_id,
            donor_count=row[0] if row else 0,
            total_amount=float(row[1]) if row else 0.0,
        )

    async def update_campaign_stats(self, stats: CampaignStats, updated_at: datetime) -> None:
        await self._conn.execute(
            """
            UPDATE campaigns SET current_amount = ?, donor_count = ?, updated_at = ?
            WHERE campaign_id = ?
            """,
            (stats.total_amount, stats.donor_count, updated_at.isoformat(), stats.campaign_id),
        )

    async def increment_campaign_stats(
        self,
        campaign_id: str,
        amount: float,
        updated_at: datetime,
    ) -> None:
        """新捐赠计入活动统计（+amount，+1 笔）"""
        await self._conn.execute(
            """
            UPDATE campaigns SET current_amount = current_amount + ?,
                                 donor_count = donor_count + 1,
                                 updated_at = ?
            WHERE campaign_id = ?
            """,
            (amount, updated_at.isoformat(), campaign_id),
        )

    # ---- participants ----

    async def save_participant(self, participant: Participant) -> None:
        await self._conn.execute(
            """
            INSERT INTO participants (participant_id, campaign_id, user_id, status,
                                      appraiser_id, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(participant_id) DO UPDATE SET
                campaign_id = excluded.campaign_id,
                user_id = excluded.user_id,
                status = excluded.status,
                appraiser_id = excluded.appraiser_id,
                updated_at = excluded.updated_at
            """,
            (
                participant.participant_id,
                participant.campaign_id,
                participant.user_id,
                participant.status,
                participant.appraiser_id,
                _iso(participant.updated_at),
            ),
        )

    async def get_participant(self, participant_id: str) -> Participant | None:
        cursor = await self._conn.execute(
            "SELECT * FROM participants WHERE participant_id = ?",
            (participant_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return Participant(
            participant_id=row[0],
            campaign_id=row[1],
            user_id=row[2],
            status=row[3],
            appraiser_id=row[4],
            updated_at=_parse(row[5]),
        )

    async def update_participant_status(
        self,
        participant_id: str,
        status: str,
        updated_at: datetime,
    ) -> None:
        await self._conn.execute(
            "UPDATE participants SET status = ?, updated_at = ? WHERE participant_id = ?",
            (status, updated_at.isoformat(), participant_id),
        )

    async def set_participant_appraiser(
        self,
        participant_id: str,
        appraiser_id: str,
        updated_at: datetime,
    ) -> None:
        await self._conn.execute(
            "UPDATE participants SET appraiser_id = ?, updated_at = ? WHERE participant_id = ?",
            (appraiser_id, updated_at.isoformat(), participant_id),
        )

    # ---- donations ----

    async def save_donation(self, donation: Donation) -> None:
        await self._conn.execute(
            """
            INSERT INTO donations (donation_id, campaign_id, donor_id, amount, status, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(donation_id) DO UPDATE SET
                amount = excluded.amount,
                status = excluded.status
            """,
            (
                donation.donation_id,
                donation.campaign_id,
                donation.donor_id,
                donation.amount,
                donation.status,
                _iso(donation.created_at),
            ),
        )

    async def get_donation(self, donation_id: str) -> Donation | None:
        cursor = await self._conn.execute(
            "SELECT * FROM donations WHERE donation_id = ?",
            (donation_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return Donation(
            donation_id=row[0],
            campaign_id=row[1],
            donor_id=row[2],
            amount=row[3],
            status=row[4],
            created_at=_parse(row[5]),
        )


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None
