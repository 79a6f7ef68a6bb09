"""Record store contract shared by the durable and ephemeral backends.

Every backend exposes three collections (``sessions``, ``messages`` and
``agents``) with the same operations and the same observable results for
the same sequence of calls:

- ``create(fields)`` persists a new entity and returns it
- ``get_by_id(id)`` returns the entity or raises ``NotFound``
- ``find(filter, sort, offset, limit)`` returns a page of entities
- ``count(filter)`` and ``count_by(field, filter)`` aggregate
- ``update(id, changes)`` applies field changes and returns the new entity

Filters use a small MongoDB-compatible subset so the durable backend can
pass them through unchanged while the ephemeral backend evaluates them in
Python::

    {"user_id": "u1", "status": {"$in": ["waiting", "active"]}}

Results are always ordered by the requested sort keys and then by the
per-collection insertion sequence, which is what makes ordering identical
across backends.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Generic, Mapping, Optional, Sequence, TypeVar

from pydantic import BaseModel

from support_chat.models.common import utcnow
from support_chat.models.sessions import OPEN_STATUSES, Session

EntityT = TypeVar("EntityT", bound=BaseModel)

Filter = Mapping[str, Any]
SortSpec = Sequence[tuple[str, int]]

ASCENDING = 1
DESCENDING = -1

SEQ_FIELD = "seq"

_OPERATORS = {
    "$eq": lambda value, arg: value == arg,
    "$ne": lambda value, arg: value != arg,
    "$in": lambda value, arg: value in arg,
    "$nin": lambda value, arg: value not in arg,
    "$lt": lambda value, arg: value is not None and value < arg,
    "$lte": lambda value, arg: value is not None and value <= arg,
    "$gt": lambda value, arg: value is not None and value > arg,
    "$gte": lambda value, arg: value is not None and value >= arg,
}


def matches(doc: Mapping[str, Any], query: Optional[Filter]) -> bool:
    """Evaluate a filter against a stored document."""
    for field, condition in (query or {}).items():
        value = doc.get(field)
        if isinstance(condition, Mapping):
            for op, arg in condition.items():
                try:
                    check = _OPERATORS[op]
                except KeyError:
                    raise ValueError(f"Unsupported filter operator: {op}") from None
                if not check(value, arg):
                    return False
        elif value != condition:
            return False
    return True


def with_tiebreak(sort: Optional[SortSpec]) -> list[tuple[str, int]]:
    """Append the insertion sequence as the final sort key."""
    keys = [(field, direction) for field, direction in (sort or []) if field != SEQ_FIELD]
    keys.append((SEQ_FIELD, ASCENDING))
    return keys


class Collection(ABC, Generic[EntityT]):
    """Storage for one entity kind."""

    kind: str
    model: type[EntityT]

    @abstractmethod
    async def create(self, fields: Mapping[str, Any]) -> EntityT:
        ...

    @abstractmethod
    async def get_by_id(self, entity_id: str) -> EntityT:
        ...

    @abstractmethod
    async def find(
        self,
        query: Optional[Filter] = None,
        sort: Optional[SortSpec] = None,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> list[EntityT]:
        ...

    @abstractmethod
    async def count(self, query: Optional[Filter] = None) -> int:
        ...

    @abstractmethod
    async def count_by(self, field: str, query: Optional[Filter] = None) -> dict[Any, int]:
        """Group matching documents by ``field`` and count each group."""

    @abstractmethod
    async def update(self, entity_id: str, changes: Mapping[str, Any]) -> EntityT:
        ...

    def _build(self, fields: Mapping[str, Any]) -> EntityT:
        return self.model.model_validate(dict(fields))

    def _stamp(self, changes: Mapping[str, Any]) -> dict[str, Any]:
        stamped = {
            field: value.value if isinstance(value, Enum) else value
            for field, value in changes.items()
        }
        if "updated_at" in self.model.model_fields and "updated_at" not in stamped:
            stamped["updated_at"] = utcnow()
        return stamped


class SessionQueries:
    """Session-specific lookups built on the generic collection contract."""

    async def find_active_by_user(self, user_id: str) -> Optional[Session]:
        found = await self.find(  # type: ignore[attr-defined]
            {"user_id": user_id, "status": {"$in": list(OPEN_STATUSES)}},
            sort=[("created_at", DESCENDING)],
            limit=1,
        )
        return found[0] if found else None


class RecordStore(ABC):
    """A complete backend: one collection per entity kind."""

    name: str = "abstract"

    sessions: Any
    messages: Any
    agents: Any

    async def initialize(self) -> None:
        """Prepare the backend (connect, create indexes)."""

    @abstractmethod
    async def ping(self) -> bool:
        """Return True when the backend is reachable."""

    async def close(self) -> None:
        """Release connections."""
