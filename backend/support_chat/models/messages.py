"""Message models for the relay and both delivery channels."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from support_chat.models.common import CamelModel, new_id, utcnow
from support_chat.models.sessions import ParticipantRole

MAX_MESSAGE_LENGTH = 1000


class Message(BaseModel):
    """Immutable chat message; ordered by ``created_at`` then ``seq``."""

    model_config = ConfigDict(use_enum_values=True, validate_default=True, frozen=True)

    id: str = Field(default_factory=new_id)
    session_id: str
    sender_id: str
    sender_type: ParticipantRole = ParticipantRole.USER
    body: str = Field(min_length=1, max_length=MAX_MESSAGE_LENGTH)
    created_at: datetime = Field(default_factory=utcnow)
    seq: int = 0


class MessageOut(CamelModel):
    """Wire shape shared by the REST echo, history and ``new_message`` events."""

    id: str
    session_id: str
    sender_id: str
    sender_type: ParticipantRole
    message: str
    timestamp: datetime
    formatted_time: str

    @classmethod
    def from_message(cls, message: Message) -> "MessageOut":
        return cls(
            id=message.id,
            session_id=message.session_id,
            sender_id=message.sender_id,
            sender_type=message.sender_type,
            message=message.body,
            timestamp=message.created_at,
            formatted_time=message.created_at.strftime("%Y-%m-%d %H:%M:%S"),
        )


class SendMessageRequest(CamelModel):
    message: str = Field(min_length=1, max_length=MAX_MESSAGE_LENGTH)
    sender_id: Optional[str] = None
    sender_type: ParticipantRole = ParticipantRole.USER

    @field_validator("message")
    @classmethod
    def _strip(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("message must be a non-empty string")
        return value


class SendMessageResponse(CamelModel):
    message_id: str
    session_id: str
    message: MessageOut
    session_status: str


class Pagination(CamelModel):
    total: int
    limit: int
    offset: int
    has_more: bool


class MessagePage(CamelModel):
    session_id: str
    messages: list[MessageOut]
    pagination: Pagination
