"""Token issuance endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from support_chat.auth import issue_token, token_ttl_seconds
from support_chat.config import Settings, get_settings
from support_chat.models.auth import TokenRequest, TokenResponse

router = APIRouter()


@router.post("/token", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
async def create_token(
    payload: TokenRequest,
    settings: Settings = Depends(get_settings),
) -> TokenResponse:
    """Issue a bearer token for ``userId`` valid for the configured number of days."""
    token = issue_token(payload.user_id, payload.user_type.value, settings)
    return TokenResponse(
        token=token,
        expires_in_seconds=token_ttl_seconds(settings),
        expires_in_days=settings.token_ttl_days,
    )
