"""Tests for backend selection and the wholesale switch to memory."""

from typing import Any, Optional

import pytest

from support_chat.config import SeedAgent, Settings
from support_chat.dependencies import build_services
from support_chat.errors import StoreUnavailable
from support_chat.services.agents import AgentDirectory
from support_chat.store.base import RecordStore
from support_chat.store.factory import open_store
from support_chat.store.failover import FailoverRecordStore
from support_chat.store.memory import InMemoryRecordStore

SEEDS = [SeedAgent(id="agent_001", name="Aatish Support", max_users=2)]


class _DeadCollection:
    def __getattr__(self, name: str) -> Any:
        async def fail(*args: Any, **kwargs: Any) -> Any:
            raise StoreUnavailable("Database unavailable")

        return fail


class _TrippingCollection:
    """Healthy collection that takes the store down once ``method`` has run."""

    def __init__(self, owner: "FlakyStore", inner: Any, method: str) -> None:
        self._owner = owner
        self._inner = inner
        self._method = method

    def __getattr__(self, name: str) -> Any:
        target = getattr(self._inner, name)
        if name != self._method:
            return target

        async def call(*args: Any, **kwargs: Any) -> Any:
            result = await target(*args, **kwargs)
            self._owner.down = True
            return result

        return call


class FlakyStore(RecordStore):
    """Primary that works until ``down`` is set, or until ``trip_after`` runs."""

    name = "flaky"

    def __init__(self, trip_after: Optional[str] = None) -> None:
        self._healthy = InMemoryRecordStore()
        self.trip_after = trip_after
        self.down = False
        self.closed = False

    def __getattr__(self, attr: str) -> Any:
        if attr not in ("sessions", "messages", "agents"):
            raise AttributeError(attr)
        if self.down:
            return _DeadCollection()
        collection = getattr(self._healthy, attr)
        if self.trip_after and self.trip_after.startswith(f"{attr}."):
            return _TrippingCollection(self, collection, self.trip_after.split(".", 1)[1])
        return collection

    async def ping(self) -> bool:
        return not self.down

    async def close(self) -> None:
        self.closed = True


async def _seed(store: RecordStore) -> None:
    await AgentDirectory(store).seed(SEEDS)


@pytest.mark.asyncio
async def test_failover_passes_through_while_primary_is_healthy():
    primary = FlakyStore()
    store = FailoverRecordStore(primary, on_switch=_seed)
    directory = AgentDirectory(store)
    await directory.seed(SEEDS)

    assert [a.id for a in await directory.list_all()] == ["agent_001"]
    assert store.switched is False
    assert store.name == "flaky"
    assert await store.ping() is True


@pytest.mark.asyncio
async def test_failover_switches_to_memory_and_reseeds_agents():
    primary = FlakyStore()
    store = FailoverRecordStore(primary, on_switch=_seed)
    services = build_services(store, Settings(storage_backend="memory", environment="test"))

    primary.down = True
    with pytest.raises(StoreUnavailable):
        await services.sessions.create_session("u1")

    assert store.switched is True
    assert store.name == "memory"
    assert await store.ping() is True

    session = await services.sessions.create_session("u1")
    assert session.agent_id == "agent_001"
    assert (await services.sessions.get_session(session.id)).user_id == "u1"


@pytest.mark.asyncio
async def test_outage_mid_create_fails_cleanly_and_leaves_no_reservation():
    primary = FlakyStore(trip_after="sessions.create")
    store = FailoverRecordStore(primary, on_switch=_seed)
    services = build_services(store, Settings(storage_backend="memory", environment="test"))
    await services.agents.seed(SEEDS)

    with pytest.raises(StoreUnavailable):
        await services.sessions.create_session("u1")

    assert store.switched is True
    assert (await services.agents.get("agent_001")).active_users == []

    session = await services.sessions.create_session("u1")
    assert session.status == "active"
    assert (await services.agents.get("agent_001")).active_users == ["u1"]


@pytest.mark.asyncio
async def test_failover_does_not_switch_back():
    primary = FlakyStore()
    store = FailoverRecordStore(primary, on_switch=_seed)
    primary.down = True
    with pytest.raises(StoreUnavailable):
        await store.agents.count()

    primary.down = False
    await store.agents.create({"id": "agent_x", "name": "Extra", "max_users": 1})

    assert store.switched is True
    assert await primary.agents.count() == 0
    assert await store.agents.count() == 2


@pytest.mark.asyncio
async def test_failover_close_closes_primary():
    primary = FlakyStore()
    store = FailoverRecordStore(primary)
    await store.close()
    assert primary.closed is True


@pytest.mark.asyncio
async def test_open_store_memory_backend():
    store = await open_store(Settings(storage_backend="memory", environment="test"))
    assert isinstance(store, InMemoryRecordStore)
    assert store.name == "memory"


@pytest.mark.asyncio
async def test_open_store_rejects_unknown_backend():
    with pytest.raises(ValueError):
        await open_store(Settings(storage_backend="redis", environment="test"))


@pytest.mark.asyncio
async def test_unreachable_mongodb_is_fatal_without_fallback():
    settings = Settings(
        storage_backend="mongodb",
        environment="production",
        mongodb_uri="mongodb://127.0.0.1:1",
        mongodb_timeout_ms=200,
        allow_memory_fallback=True,
    )
    assert settings.memory_fallback_enabled is False
    with pytest.raises(StoreUnavailable):
        await open_store(settings)


@pytest.mark.asyncio
async def test_unreachable_mongodb_falls_back_in_development():
    settings = Settings(
        storage_backend="mongodb",
        environment="development",
        mongodb_uri="mongodb://127.0.0.1:1",
        mongodb_timeout_ms=200,
        allow_memory_fallback=True,
    )
    store = await open_store(settings)
    assert store.name == "memory"
