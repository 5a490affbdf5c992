"""Actor -- 经身份服务确认的操作者"""

from pydantic import BaseModel, Field

from .enums import ActorRole


class Actor(BaseModel):
    """操作者身份（actor_id + role + organization_id），核心层不做二次推导"""

    actor_id: str = Field(description="操作者 ID")
    role: ActorRole = Field(description="操作者角色")
    organization_id: str | None = Field(default=None, description="所属组织")

    @classmethod
    def system(cls, actor_id: str) -> "Actor":
        """webhook / CLI 等系统触发的操作者"""
        return cls(actor_id=actor_id, role=ActorRole.SYSTEM)

    @property
    def is_admin(self) -> bool:
        return self.role in (ActorRole.ADMIN, ActorRole.SYSTEM)
