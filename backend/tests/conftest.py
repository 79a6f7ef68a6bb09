"""Shared test fixtures for the chat support backend."""

import asyncio
import os
import uuid
from collections.abc import AsyncGenerator
from typing import Any, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from support_chat.config import SeedAgent, Settings
from support_chat.dependencies import ChatServices, build_services
from support_chat.gateway.connection import Connection
from support_chat.main import create_app
from support_chat.store.base import SessionQueries
from support_chat.store.memory import InMemoryRecordStore
from support_chat.store.mongo import MongoRecordStore

API_KEY = "test-api-key"


class RecordingConnection(Connection):
    """Connection that keeps every delivered event in memory."""

    def __init__(self, name: str = "") -> None:
        super().__init__(name or None)
        self.events: list[tuple[str, dict[str, Any]]] = []

    def deliver(self, event: str, data: dict[str, Any]) -> None:
        self.events.append((event, data))

    def of_type(self, event: str) -> list[dict[str, Any]]:
        return [data for name, data in self.events if name == event]

    @property
    def names(self) -> list[str]:
        return [name for name, _ in self.events]


class YieldingCollection(SessionQueries):
    """Collection wrapper that suspends around every call, like a network driver.

    ``reply_hops`` extra event-loop turns pass after a call commits and
    before its caller resumes.
    """

    def __init__(self, inner: Any, name: str, store: "YieldingRecordStore") -> None:
        self._inner = inner
        self._name = name
        self._store = store

    def __getattr__(self, method: str) -> Any:
        target = getattr(self._inner, method)
        key = f"{self._name}.{method}"

        async def call(*args: Any, **kwargs: Any) -> Any:
            await asyncio.sleep(0)
            result = await target(*args, **kwargs)
            self._store.calls.append(key)
            for _ in range(self._store.reply_hops.get(key, 1)):
                await asyncio.sleep(0)
            return result

        return call


class YieldingRecordStore(InMemoryRecordStore):
    """In-memory store whose calls interleave under ``asyncio.gather``."""

    def __init__(self, reply_hops: Optional[dict[str, int]] = None) -> None:
        super().__init__()
        self.reply_hops = reply_hops or {}
        self.calls: list[str] = []
        self.sessions = YieldingCollection(self.sessions, "sessions", self)
        self.messages = YieldingCollection(self.messages, "messages", self)
        self.agents = YieldingCollection(self.agents, "agents", self)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        storage_backend="memory",
        environment="test",
        api_key=API_KEY,
        jwt_secret="test-secret",
        seed_agents=[
            SeedAgent(id="agent_001", name="Aatish Support"),
            SeedAgent(id="agent_002", name="Sanjay Support"),
        ],
    )


@pytest.fixture
def store() -> InMemoryRecordStore:
    """A fresh, isolated in-memory store per test."""
    return InMemoryRecordStore()


@pytest_asyncio.fixture
async def services(store: InMemoryRecordStore, settings: Settings) -> ChatServices:
    services = build_services(store, settings)
    await services.agents.seed(settings.seed_agents)
    return services


@pytest_asyncio.fixture
async def client(services: ChatServices) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client authenticated with the pre-shared key."""
    app = create_app(services)
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"X-API-Key": API_KEY},
    ) as ac:
        yield ac


@pytest_asyncio.fixture
async def anonymous_client(services: ChatServices) -> AsyncGenerator[AsyncClient, None]:
    app = create_app(services)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture(params=["memory", pytest.param("mongodb", marks=pytest.mark.mongodb)])
async def any_store(request) -> AsyncGenerator[Any, None]:
    """Each record store backend; MongoDB only when MONGODB_TEST_URI is set."""
    if request.param == "memory":
        yield InMemoryRecordStore()
        return

    uri = os.environ.get("MONGODB_TEST_URI")
    if not uri:
        pytest.skip("MONGODB_TEST_URI not set")
    database = f"chat_support_test_{uuid.uuid4().hex[:8]}"
    mongo = MongoRecordStore(uri, database, timeout_ms=2_000)
    await mongo.initialize()
    try:
        yield mongo
    finally:
        await mongo._client.drop_database(database)
        await mongo.close()
