"""Durable record store backed by MongoDB through Motor.

Document schema mirrors the entity models, with the entity id stored as
``_id`` and a per-collection insertion sequence in ``seq``::

    sessions:  { _id, user_id, user_type, agent_id, status, created_at,
                 updated_at, ended_at, end_reason, seq }
    messages:  { _id, session_id, sender_id, sender_type, body, created_at, seq }
    agents:    { _id, name, max_users, active_users, is_online,
                 created_at, updated_at, seq }
    counters:  { _id: <kind>, seq }

Connectivity failures surface as ``StoreUnavailable``.
"""

from __future__ import annotations

import functools
import logging
from typing import Any, Awaitable, Callable, Mapping, Optional, TypeVar

from motor.motor_asyncio import (
    AsyncIOMotorClient,
    AsyncIOMotorCollection,
    AsyncIOMotorDatabase,
)
from pymongo import ASCENDING, ReturnDocument
from pymongo.errors import ConnectionFailure, DuplicateKeyError

from support_chat.errors import NotFound, StoreUnavailable
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
    with_tiebreak,
)

logger = logging.getLogger(__name__)

COUNTERS_COLLECTION = "counters"

T = TypeVar("T")


def _translate_errors(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
    """Re-raise driver connectivity errors as ``StoreUnavailable``."""

    @functools.wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> T:
        try:
            return await func(*args, **kwargs)
        except ConnectionFailure as exc:
            logger.error("MongoDB unavailable during %s: %s", func.__qualname__, exc)
            raise StoreUnavailable("Database unavailable") from exc

    return wrapper


def _to_mongo_field(field: str) -> str:
    return "_id" if field == "id" else field


def _to_mongo_query(query: Optional[Filter]) -> dict[str, Any]:
    return {_to_mongo_field(field): cond for field, cond in (query or {}).items()}


def _from_document(doc: Mapping[str, Any]) -> dict[str, Any]:
    fields = dict(doc)
    fields["id"] = fields.pop("_id")
    return fields


class MongoCollection(Collection[EntityT]):
    """One MongoDB collection holding a single entity kind."""

    def __init__(
        self,
        kind: str,
        model: type[EntityT],
        collection: AsyncIOMotorCollection,
        counters: AsyncIOMotorCollection,
    ) -> None:
        self.kind = kind
        self.model = model
        self._collection = collection
        self._counters = counters

    async def _next_seq(self) -> int:
        counter = await self._counters.find_one_and_update(
            {"_id": self.kind},
            {"$inc": {SEQ_FIELD: 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return counter[SEQ_FIELD]

    def _not_found(self, entity_id: str) -> NotFound:
        return NotFound(f"{self.kind.capitalize()} not found", details={"id": entity_id})

    @_translate_errors
    async def create(self, fields: Mapping[str, Any]) -> EntityT:
        entity = self._build(fields)
        doc = entity.model_dump()
        doc["_id"] = doc.pop("id")
        doc[SEQ_FIELD] = await self._next_seq()
        try:
            await self._collection.insert_one(doc)
        except DuplicateKeyError:
            raise ValueError(f"Duplicate {self.kind} id: {doc['_id']}") from None
        return self._build(_from_document(doc))

    @_translate_errors
    async def get_by_id(self, entity_id: str) -> EntityT:
        doc = await self._collection.find_one({"_id": entity_id})
        if doc is None:
            raise self._not_found(entity_id)
        return self._build(_from_document(doc))

    @_translate_errors
    async def find(
        self,
        query: Optional[Filter] = None,
        sort: Optional[SortSpec] = None,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> list[EntityT]:
        if limit == 0:
            return []
        cursor = self._collection.find(_to_mongo_query(query))
        cursor = cursor.sort(
            [(_to_mongo_field(field), direction) for field, direction in with_tiebreak(sort)]
        )
        if offset:
            cursor = cursor.skip(offset)
        if limit is not None:
            cursor = cursor.limit(limit)
        return [self._build(_from_document(doc)) async for doc in cursor]

    @_translate_errors
    async def count(self, query: Optional[Filter] = None) -> int:
        return await self._collection.count_documents(_to_mongo_query(query))

    @_translate_errors
    async def count_by(self, field: str, query: Optional[Filter] = None) -> dict[Any, int]:
        pipeline = [
            {"$match": _to_mongo_query(query)},
            {"$group": {"_id": f"${_to_mongo_field(field)}", "count": {"$sum": 1}}},
        ]
        return {row["_id"]: row["count"] async for row in self._collection.aggregate(pipeline)}

    @_translate_errors
    async def update(self, entity_id: str, changes: Mapping[str, Any]) -> EntityT:
        stamped = self._stamp(changes)
        current = await self._collection.find_one({"_id": entity_id})
        if current is None:
            raise self._not_found(entity_id)
        # Validate before committing so a bad change leaves the record intact.
        self._build({**_from_document(current), **stamped})
        doc = await self._collection.find_one_and_update(
            {"_id": entity_id},
            {"$set": stamped},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            raise self._not_found(entity_id)
        return self._build(_from_document(doc))


class MongoSessionCollection(SessionQueries, MongoCollection[Session]):
    pass


class MongoRecordStore(RecordStore):
    """Record store persisted in MongoDB.

    Lifecycle:
        store = MongoRecordStore(uri, database)
        await store.initialize()   # connect, ping, create indexes
        ...
        await store.close()
    """

    name = "mongodb"

    def __init__(self, uri: str, database: str, timeout_ms: int = 5_000) -> None:
        self._uri = uri
        self._client = AsyncIOMotorClient(
            uri,
            serverSelectionTimeoutMS=timeout_ms,
            tz_aware=True,
        )
        self._db: AsyncIOMotorDatabase = self._client[database]
        counters = self._db[COUNTERS_COLLECTION]
        self.sessions = MongoSessionCollection("session", Session, self._db["sessions"], counters)
        self.messages: MongoCollection[Message] = MongoCollection(
            "message", Message, self._db["messages"], counters
        )
        self.agents: MongoCollection[Agent] = MongoCollection(
            "agent", Agent, self._db["agents"], counters
        )

    @_translate_errors
    async def initialize(self) -> None:
        logger.info("Connecting to MongoDB at %s", self._db.name)
        await self._client.admin.command("ping")
        await self._db["sessions"].create_index([("user_id", ASCENDING), ("status", ASCENDING)])
        await self._db["sessions"].create_index([("status", ASCENDING)])
        await self._db["messages"].create_index(
            [("session_id", ASCENDING), ("created_at", ASCENDING), (SEQ_FIELD, ASCENDING)]
        )
        await self._db["agents"].create_index([("is_online", ASCENDING)])
        logger.info("MongoDB connection established")

    async def ping(self) -> bool:
        try:
            await self._client.admin.command("ping")
        except ConnectionFailure as exc:
            logger.warning("MongoDB health check failed: %s", exc)
            return False
        return True

    async def close(self) -> None:
        self._client.close()
        logger.info("MongoDB connection closed")
