"""Agent models for the capacity-limited directory."""

from datetime import datetime

from pydantic import BaseModel, Field

from support_chat.models.common import CamelModel, new_id, utcnow


class Agent(BaseModel):
    """A support agent serving up to ``max_users`` concurrent users."""

    id: str = Field(default_factory=new_id)
    name: str = Field(min_length=1)
    max_users: int = Field(default=2, ge=1, le=10)
    active_users: list[str] = Field(default_factory=list)
    is_online: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def current_load(self) -> int:
        return len(self.active_users)

    @property
    def has_capacity(self) -> bool:
        return self.current_load < self.max_users

    @property
    def utilization(self) -> int:
        return round(self.current_load / self.max_users * 100)


class AgentStats(CamelModel):
    id: str
    name: str
    current_load: int
    max_users: int
    is_online: bool
    utilization: str
