"""
Bearer token issuance/verification and the authentication dependencies
shared by the REST routes and the WebSocket endpoint.
"""

from __future__ import annotations

import datetime
import logging
import secrets
from dataclasses import dataclass
from typing import Any, Optional

from fastapi import Depends, Header
from jose import JWTError, jwt

from support_chat.config import Settings, get_settings
from support_chat.errors import Forbidden, Unauthenticated

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    """An authenticated caller."""

    id: Optional[str]
    type: str
    method: str  # "jwt" | "api_key"


def token_ttl_seconds(settings: Settings) -> int:
    return settings.token_ttl_days * 24 * 60 * 60


def issue_token(user_id: str, user_type: str, settings: Settings) -> str:
    """Sign a bearer token carrying the caller identity and its expiry."""
    now = datetime.datetime.now(datetime.timezone.utc)
    payload = {
        "sub": user_id,
        "type": user_type,
        "iat": int(now.timestamp()),
        "exp": int((now + datetime.timedelta(seconds=token_ttl_seconds(settings))).timestamp()),
    }
    token = jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)
    logger.info("Token issued for %s (%s), valid %d days", user_id, user_type, settings.token_ttl_days)
    return token


def verify_token(token: str, settings: Settings) -> dict[str, Any]:
    """Decode a bearer token; raises ``JWTError`` when invalid or expired."""
    return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])


def _api_key_matches(candidate: Optional[str], settings: Settings) -> bool:
    return bool(settings.api_key and candidate) and secrets.compare_digest(
        candidate.encode(), settings.api_key.encode()
    )


def authenticate(
    token: Optional[str],
    api_key: Optional[str],
    settings: Settings,
) -> Optional[Principal]:
    """Resolve credentials to a principal; None when none were supplied.

    Raises ``JWTError`` for a token that does not verify.
    """
    if _api_key_matches(api_key, settings):
        return Principal(id=None, type="api", method="api_key")
    if token:
        payload = verify_token(token, settings)
        return Principal(id=payload.get("sub"), type=payload.get("type", "user"), method="jwt")
    return None


async def require_auth(
    authorization: Optional[str] = Header(None),
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
    settings: Settings = Depends(get_settings),
) -> Principal:
    """
    Accept either ``Authorization: Bearer <token>`` or a pre-shared
    ``X-API-Key``. Missing credentials -> 401, bad ones -> 403.
    """
    token: Optional[str] = None
    if authorization:
        scheme, _, value = authorization.partition(" ")
        if scheme.lower() == "bearer" and value:
            token = value.strip()

    if x_api_key and not token and not _api_key_matches(x_api_key, settings):
        logger.warning("API key authentication failed")
        raise Forbidden("Invalid API key")

    try:
        principal = authenticate(token, x_api_key, settings)
    except JWTError as exc:
        logger.warning("JWT authentication failed: %s", exc)
        raise Forbidden("Invalid or expired token") from exc

    if principal is None:
        logger.warning("No authentication provided")
        raise Unauthenticated("Access token or API key required")
    return principal
