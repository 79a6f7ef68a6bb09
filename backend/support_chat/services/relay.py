"""Message relay: the authoritative, ordered message log of each session.

The relay persists and orders messages. Delivery to live connections is the
gateway's job, so the log stays complete no matter who is listening.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from support_chat.models.messages import Message
from support_chat.models.sessions import ParticipantRole, Session
from support_chat.services.sessions import SessionManager
from support_chat.store.base import ASCENDING, RecordStore

logger = logging.getLogger(__name__)

ORDER = [("created_at", ASCENDING)]


@dataclass(frozen=True)
class AppendResult:
    message: Message
    session: Session


@dataclass(frozen=True)
class Page:
    messages: list[Message]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + self.limit < self.total


class MessageRelay:
    def __init__(self, store: RecordStore, sessions: SessionManager) -> None:
        self._store = store
        self._sessions = sessions

    async def append(
        self,
        session_id: str,
        sender_id: str,
        sender_role: ParticipantRole | str,
        body: str,
    ) -> AppendResult:
        """Persist a message on an existing session (``NotFound`` otherwise)."""
        session = await self._sessions.get_session(session_id)
        message = await self._store.messages.create(
            {
                "session_id": session_id,
                "sender_id": sender_id,
                "sender_type": sender_role,
                "body": body,
            }
        )
        logger.info(
            "Message added to session %s: id=%s sender=%s (%s)",
            session_id,
            message.id,
            message.sender_id,
            message.sender_type,
        )
        return AppendResult(message=message, session=session)

    async def list(
        self,
        session_id: str,
        limit: Optional[int] = 50,
        offset: int = 0,
    ) -> list[Message]:
        """Messages in timestamp order; ``limit=None`` returns the rest of the log."""
        await self._sessions.get_session(session_id)
        return await self._store.messages.find(
            {"session_id": session_id}, sort=ORDER, offset=offset, limit=limit
        )

    async def count_for_session(self, session_id: str) -> int:
        return await self._store.messages.count({"session_id": session_id})

    async def count_all(self) -> int:
        return await self._store.messages.count()

    async def page(self, session_id: str, limit: int = 50, offset: int = 0) -> Page:
        messages = await self.list(session_id, limit=limit, offset=offset)
        total = await self.count_for_session(session_id)
        return Page(messages=messages, total=total, limit=limit, offset=offset)

    async def latest(self, session_id: str, limit: int = 50) -> list[Message]:
        """The most recent ``limit`` messages, oldest first."""
        total = await self.count_for_session(session_id)
        return await self.list(session_id, limit=limit, offset=max(0, total - limit))
