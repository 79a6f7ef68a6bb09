"""Domain error taxonomy and the HTTP error payload they translate to."""

from __future__ import annotations

from typing import Any, Optional

from fastapi import status
from pydantic import BaseModel, Field


class ChatError(Exception):
    """Base class for errors raised by the chat core."""

    code = "chat_error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, *, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class NotFound(ChatError):
    """A session, agent or message id does not resolve."""

    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class Unauthorized(ChatError):
    """Identity or role does not match the session being acted on."""

    code = "unauthorized"
    status_code = status.HTTP_403_FORBIDDEN


class ValidationFailed(ChatError):
    """Malformed input rejected at the request boundary."""

    code = "validation_failed"
    status_code = status.HTTP_400_BAD_REQUEST


class StoreUnavailable(ChatError):
    """The durable backend cannot be reached."""

    code = "store_unavailable"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class Unauthenticated(ChatError):
    """No bearer token or API key was presented."""

    code = "unauthenticated"
    status_code = status.HTTP_401_UNAUTHORIZED


class Forbidden(ChatError):
    """Credentials were presented but did not verify."""

    code = "forbidden"
    status_code = status.HTTP_403_FORBIDDEN


class ErrorResponse(BaseModel):
    """
    Standard error payload returned by every endpoint:

        {"error": "not_found", "message": "Session not found", "code": 404, "details": null}
    """

    error: str = Field(..., description="Machine-readable error type")
    message: str = Field(..., description="Human-readable error message")
    code: int = Field(..., description="HTTP status code for this error")
    details: Optional[dict[str, Any]] = Field(
        default=None, description="Optional structured error details"
    )


def error_payload(
    status_code: int,
    *,
    error: str,
    message: str,
    details: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    """Render the flat ``ErrorResponse`` body as a plain dict."""
    return ErrorResponse(
        error=error,
        message=message,
        code=status_code,
        details=details,
    ).model_dump()


__all__ = [
    "ChatError",
    "NotFound",
    "Unauthorized",
    "ValidationFailed",
    "StoreUnavailable",
    "Unauthenticated",
    "Forbidden",
    "ErrorResponse",
    "error_payload",
]
