"""Session models for conversation routing."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from support_chat.models.common import CamelModel, new_id, utcnow


class ParticipantRole(str, Enum):
    """Role of a session owner, message sender or connected participant."""

    USER = "user"
    AGENT = "agent"
    SYSTEM = "system"


class SessionStatus(str, Enum):
    """Lifecycle: waiting -> active -> ended, or waiting -> ended."""

    WAITING = "waiting"
    ACTIVE = "active"
    ENDED = "ended"


OPEN_STATUSES = (SessionStatus.WAITING.value, SessionStatus.ACTIVE.value)


class Session(BaseModel):
    """Conversation between one end user and at most one agent."""

    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    id: str = Field(default_factory=new_id)
    user_id: str
    user_type: ParticipantRole = ParticipantRole.USER
    agent_id: Optional[str] = None
    status: SessionStatus = SessionStatus.WAITING
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    ended_at: Optional[datetime] = None
    end_reason: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    def duration_ms(self, now: Optional[datetime] = None) -> int:
        """Elapsed time in milliseconds; keeps growing until the session ends."""
        if self.status == SessionStatus.ENDED and self.ended_at is not None:
            end = self.ended_at
        else:
            end = now or utcnow()
        return int((end - self.created_at).total_seconds() * 1000)


# ---------------------------------------------------------------------------
# API schemas
# ---------------------------------------------------------------------------


class StartSessionRequest(CamelModel):
    user_id: str = Field(min_length=1)
    user_type: ParticipantRole = ParticipantRole.USER

    @field_validator("user_id")
    @classmethod
    def _strip(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("userId must be a non-empty string")
        return value


class EndSessionRequest(CamelModel):
    reason: str = "User ended session"


class AgentSummary(CamelModel):
    id: str
    name: str
    is_online: bool


class StartSessionResponse(CamelModel):
    session_id: str
    status: SessionStatus
    agent_id: Optional[str] = None
    agent: Optional[AgentSummary] = None
    created_at: datetime
    waiting_message: str
    instructions: dict[str, str]


class SessionStatistics(CamelModel):
    duration: int
    total_messages: int


class EndSessionResponse(CamelModel):
    session_id: str
    ended_at: Optional[datetime] = None
    reason: Optional[str] = None
    statistics: SessionStatistics


class SessionDetail(CamelModel):
    id: str
    user_id: str
    user_type: ParticipantRole
    status: SessionStatus
    created_at: datetime
    updated_at: datetime
    ended_at: Optional[datetime] = None
    end_reason: Optional[str] = None
    message_count: int = 0
    agent: Optional[AgentSummary] = None
    duration: int
