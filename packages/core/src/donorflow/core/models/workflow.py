"""作用域记录 -- Campaign / Participant / Donation

这些记录由外部组织管理维护，本地仅用于 TaskFactory 校验存在性
以及统计同步时的聚合。
"""

from datetime import datetime

from pydantic import BaseModel, Field


class Campaign(BaseModel):
    """募捐活动"""

    campaign_id: str
    title: str = ""
    organization_name: str = ""
    created_by: str = Field(description="创建活动的 nonprofit 管理员")
    status: str = "active"
    current_amount: float = 0.0
    donor_count: int = 0
    updated_at: datetime | None = None


class Participant(BaseModel):
    """活动参与者（participant 作用域的所有者）"""

    participant_id: str
    campaign_id: str
    user_id: str = Field(description="捐赠者用户 ID")
    status: str = "interested"
    appraiser_id: str | None = None
    updated_at: datetime | None = None


class Donation(BaseModel):
    """捐赠记录（donation 作用域的所有者）"""

    donation_id: str
    campaign_id: str
    donor_id: str
    amount: float = 0.0
    status: str = "pending"
    created_at: datetime | None = None


class CampaignStats(BaseModel):
    """统计同步结果"""

    campaign_id: str
    donor_count: int
    total_amount: float
