"""Backend selection, done once at startup."""

from __future__ import annotations

import logging
from typing import Optional

from support_chat.config import Settings
from support_chat.errors import StoreUnavailable
from support_chat.store.base import RecordStore
from support_chat.store.failover import FailoverRecordStore, SwitchHook
from support_chat.store.memory import InMemoryRecordStore
from support_chat.store.mongo import MongoRecordStore

logger = logging.getLogger(__name__)


async def open_store(settings: Settings, on_switch: Optional[SwitchHook] = None) -> RecordStore:
    """Return an initialized store for the configured backend.

    ``storage_backend="memory"`` selects the ephemeral store outright. With
    MongoDB, an unreachable server is fatal unless memory fallback is
    enabled, in which case the ephemeral store is used instead and later
    outages switch over wholesale through ``FailoverRecordStore``.
    """
    if settings.storage_backend == "memory":
        store: RecordStore = InMemoryRecordStore()
        await store.initialize()
        return store

    if settings.storage_backend != "mongodb":
        raise ValueError(f"Unknown storage backend: {settings.storage_backend}")

    mongo = MongoRecordStore(
        settings.mongodb_uri,
        settings.mongodb_database,
        timeout_ms=settings.mongodb_timeout_ms,
    )
    try:
        await mongo.initialize()
    except StoreUnavailable:
        if not settings.memory_fallback_enabled:
            await mongo.close()
            raise
        logger.warning("Falling back to in-memory storage mode. Data will be lost on restart.")
        await mongo.close()
        store = InMemoryRecordStore()
        await store.initialize()
        return store

    if settings.memory_fallback_enabled:
        return FailoverRecordStore(mongo, on_switch=on_switch)
    return mongo
