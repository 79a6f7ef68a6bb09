"""Shared helpers for entity and schema models."""

from datetime import datetime, timezone
from uuid import uuid4

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    """Current UTC time truncated to milliseconds.

    MongoDB stores datetimes with millisecond precision, so both storage
    backends keep the same resolution and compare equal.
    """
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def new_id() -> str:
    return uuid4().hex


class CamelModel(BaseModel):
    """API schema base: snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )
