"""Token issuance models."""

from pydantic import Field, field_validator

from support_chat.models.common import CamelModel
from support_chat.models.sessions import ParticipantRole


class TokenRequest(CamelModel):
    user_id: str = Field(min_length=1)
    user_type: ParticipantRole = ParticipantRole.USER

    @field_validator("user_id")
    @classmethod
    def _strip(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("userId must be a non-empty string")
        return value


class TokenResponse(CamelModel):
    token: str
    token_type: str = "Bearer"
    expires_in_seconds: int
    expires_in_days: int
