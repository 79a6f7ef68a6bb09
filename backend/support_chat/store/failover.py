"""Wholesale switch from the durable backend to the ephemeral one.

Used only when memory fallback is explicitly enabled. The first
``StoreUnavailable`` raised by the primary store swaps every collection over
to a fresh in-memory store for the rest of the process lifetime. The call
that hit the outage still fails with ``StoreUnavailable`` so a multi-step
operation never finishes half on each backend; the next request runs on the
new one. There is no switching back.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Mapping, Optional

from support_chat.errors import StoreUnavailable
from support_chat.store.base import Filter, RecordStore, SessionQueries, SortSpec
from support_chat.store.memory import InMemoryRecordStore

logger = logging.getLogger(__name__)

SwitchHook = Callable[[RecordStore], Awaitable[None]]


class _FailoverCollection:
    """Forwards every call to the same collection on the active backend."""

    def __init__(self, owner: "FailoverRecordStore", attr: str) -> None:
        self._owner = owner
        self._attr = attr

    async def create(self, fields: Mapping[str, Any]):
        return await self._owner.call(self._attr, "create", fields)

    async def get_by_id(self, entity_id: str):
        return await self._owner.call(self._attr, "get_by_id", entity_id)

    async def find(
        self,
        query: Optional[Filter] = None,
        sort: Optional[SortSpec] = None,
        offset: int = 0,
        limit: Optional[int] = None,
    ):
        return await self._owner.call(self._attr, "find", query, sort, offset, limit)

    async def count(self, query: Optional[Filter] = None) -> int:
        return await self._owner.call(self._attr, "count", query)

    async def count_by(self, field: str, query: Optional[Filter] = None):
        return await self._owner.call(self._attr, "count_by", field, query)

    async def update(self, entity_id: str, changes: Mapping[str, Any]):
        return await self._owner.call(self._attr, "update", entity_id, changes)


class _FailoverSessionCollection(SessionQueries, _FailoverCollection):
    pass


class FailoverRecordStore(RecordStore):
    """Delegates to ``primary`` until it becomes unavailable."""

    def __init__(
        self,
        primary: RecordStore,
        on_switch: Optional[SwitchHook] = None,
    ) -> None:
        self._primary = primary
        self._active: RecordStore = primary
        self._on_switch = on_switch
        self._switch_lock = asyncio.Lock()
        self.sessions = _FailoverSessionCollection(self, "sessions")
        self.messages = _FailoverCollection(self, "messages")
        self.agents = _FailoverCollection(self, "agents")

    @property
    def name(self) -> str:  # type: ignore[override]
        return self._active.name

    @property
    def switched(self) -> bool:
        return self._active is not self._primary

    async def call(self, attr: str, method: str, *args: Any) -> Any:
        backend = self._active
        try:
            return await getattr(getattr(backend, attr), method)(*args)
        except StoreUnavailable:
            if backend is self._primary:
                # The operation in flight may already have written to the
                # primary; its caller retries against the fresh backend.
                await self._switch()
            raise

    async def _switch(self) -> None:
        async with self._switch_lock:
            if self.switched:
                return
            logger.warning(
                "Primary store %s unavailable; switching to in-memory storage "
                "for the remainder of the process lifetime",
                self._primary.name,
            )
            fallback = InMemoryRecordStore()
            await fallback.initialize()
            if self._on_switch is not None:
                await self._on_switch(fallback)
            self._active = fallback

    async def initialize(self) -> None:
        await self._primary.initialize()

    async def ping(self) -> bool:
        return await self._active.ping()

    async def close(self) -> None:
        await self._primary.close()
