"""Ephemeral in-process record store.

Keeps every document in a dict owned by the store instance, so separate
instances never share state. Nothing survives a restart. It can never raise
``StoreUnavailable``.
"""

from __future__ import annotations

import copy
import itertools
import logging
from collections import Counter
from typing import Any, Mapping, Optional

from support_chat.errors import NotFound
from support_chat.models.agents import Agent
from support_chat.models.messages import Message
from support_chat.models.sessions import Session
from support_chat.store.base import (
    SEQ_FIELD,
    Collection,
    EntityT,
    Filter,
    RecordStore,
    SessionQueries,
    SortSpec,
    matches,
    with_tiebreak,
)

logger = logging.getLogger(__name__)


def _sort_key(field: str):
    def key(doc: Mapping[str, Any]) -> tuple[bool, Any]:
        value = doc.get(field)
        # Missing values order first, as in MongoDB.
        return (value is not None, value)

    return key


class InMemoryCollection(Collection[EntityT]):
    """Dict-backed collection preserving insertion order."""

    def __init__(self, kind: str, model: type[EntityT]) -> None:
        self.kind = kind
        self.model = model
        self._docs: dict[str, dict[str, Any]] = {}
        self._seq = itertools.count(1)

    async def create(self, fields: Mapping[str, Any]) -> EntityT:
        entity = self._build(fields)
        doc = entity.model_dump()
        if doc["id"] in self._docs:
            raise ValueError(f"Duplicate {self.kind} id: {doc['id']}")
        doc[SEQ_FIELD] = next(self._seq)
        self._docs[doc["id"]] = doc
        return self._build(copy.deepcopy(doc))

    async def get_by_id(self, entity_id: str) -> EntityT:
        doc = self._docs.get(entity_id)
        if doc is None:
            raise NotFound(f"{self.kind.capitalize()} not found", details={"id": entity_id})
        return self._build(copy.deepcopy(doc))

    async def find(
        self,
        query: Optional[Filter] = None,
        sort: Optional[SortSpec] = None,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> list[EntityT]:
        docs = [doc for doc in self._docs.values() if matches(doc, query)]
        # Stable sorts applied from the least significant key upwards.
        for field, direction in reversed(with_tiebreak(sort)):
            docs.sort(key=_sort_key(field), reverse=direction < 0)
        end = None if limit is None else offset + limit
        return [self._build(copy.deepcopy(doc)) for doc in docs[offset:end]]

    async def count(self, query: Optional[Filter] = None) -> int:
        return sum(1 for doc in self._docs.values() if matches(doc, query))

    async def count_by(self, field: str, query: Optional[Filter] = None) -> dict[Any, int]:
        counts = Counter(
            doc.get(field) for doc in self._docs.values() if matches(doc, query)
        )
        return dict(counts)

    async def update(self, entity_id: str, changes: Mapping[str, Any]) -> EntityT:
        doc = self._docs.get(entity_id)
        if doc is None:
            raise NotFound(f"{self.kind.capitalize()} not found", details={"id": entity_id})
        updated = {**doc, **copy.deepcopy(self._stamp(changes))}
        # Validate before committing so a bad change leaves the record intact.
        self._build(updated)
        self._docs[entity_id] = updated
        return self._build(copy.deepcopy(updated))


class InMemorySessionCollection(SessionQueries, InMemoryCollection[Session]):
    pass


class InMemoryRecordStore(RecordStore):
    """Record store held entirely in process memory."""

    name = "memory"

    def __init__(self) -> None:
        self.sessions = InMemorySessionCollection("session", Session)
        self.messages: InMemoryCollection[Message] = InMemoryCollection("message", Message)
        self.agents: InMemoryCollection[Agent] = InMemoryCollection("agent", Agent)

    async def initialize(self) -> None:
        logger.warning("Using in-memory storage. Data will be lost on restart.")

    async def ping(self) -> bool:
        return True
