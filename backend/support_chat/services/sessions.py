"""Session lifecycle: creation with agent assignment, lookup and termination."""

from __future__ import annotations

import logging
from typing import Optional

from support_chat.errors import ChatError, NotFound, StoreUnavailable
from support_chat.models.common import utcnow
from support_chat.models.sessions import (
    OPEN_STATUSES,
    ParticipantRole,
    Session,
    SessionStatus,
)
from support_chat.services.agents import AgentDirectory
from support_chat.services.locks import KeyedLock
from support_chat.store.base import DESCENDING, RecordStore

logger = logging.getLogger(__name__)

DEFAULT_END_REASON = "Session ended"


class SessionManager:
    """The only writer of a session's status, agent and end fields.

    Creation is serialized per user id so a user can never hold two open
    sessions. Sessions that start without an agent stay ``waiting``; they
    are not promoted when capacity frees up later.
    """

    def __init__(self, store: RecordStore, agents: AgentDirectory) -> None:
        self._store = store
        self._agents = agents
        self._user_locks = KeyedLock()
        self._session_locks = KeyedLock()

    async def create_session(
        self,
        user_id: str,
        user_type: ParticipantRole | str = ParticipantRole.USER,
    ) -> Session:
        """Return the user's open session, or open a new one and assign an agent."""
        async with self._user_locks.hold(user_id):
            existing = await self._store.sessions.find_active_by_user(user_id)
            if existing is not None:
                logger.info(
                    "User %s already has active session %s", user_id, existing.id
                )
                return existing

            session = await self._store.sessions.create(
                {"user_id": user_id, "user_type": user_type}
            )
            agent = await self._agents.assign(user_id)
            if agent is not None:
                session = await self._bind_agent(session, agent.id)

        logger.info(
            "Session created: id=%s user=%s type=%s agent=%s status=%s",
            session.id,
            session.user_id,
            session.user_type,
            session.agent_id,
            session.status,
        )
        return session

    async def _bind_agent(self, session: Session, agent_id: str) -> Session:
        """Activate ``session`` on a reserved agent, or give the slot back."""
        try:
            return await self._store.sessions.update(
                session.id,
                {"agent_id": agent_id, "status": SessionStatus.ACTIVE},
            )
        except ChatError as exc:
            await self._agents.release(agent_id, session.user_id)
            if isinstance(exc, NotFound):
                # Only a backend switch can lose a session created moments ago.
                raise StoreUnavailable(
                    "Storage changed while the session was being created"
                ) from exc
            raise

    async def get_session(self, session_id: str) -> Session:
        """Raises ``NotFound`` for unknown ids."""
        return await self._store.sessions.get_by_id(session_id)

    async def find_active_by_user(self, user_id: str) -> Optional[Session]:
        return await self._store.sessions.find_active_by_user(user_id)

    async def end_session(self, session_id: str, reason: str = DEFAULT_END_REASON) -> Session:
        """Mark the session ended and free its agent slot.

        Ending an already-ended session returns it unchanged.
        """
        session, _ = await self.terminate(session_id, reason)
        return session

    async def terminate(
        self, session_id: str, reason: str = DEFAULT_END_REASON
    ) -> tuple[Session, bool]:
        """Like ``end_session``, also reporting whether this call ended it.

        Runs under the owner's user lock, so a ``create_session`` for the
        same user sees either the open session or a fully released agent.
        """
        owner = (await self._store.sessions.get_by_id(session_id)).user_id
        async with self._user_locks.hold(owner), self._session_locks.hold(session_id):
            session = await self._store.sessions.get_by_id(session_id)
            if session.status == SessionStatus.ENDED:
                return session, False

            session = await self._store.sessions.update(
                session_id,
                {
                    "status": SessionStatus.ENDED,
                    "ended_at": utcnow(),
                    "end_reason": reason,
                },
            )
            if session.agent_id:
                await self._agents.release(session.agent_id, session.user_id)

        logger.info(
            "Session ended: id=%s reason=%s duration=%dms",
            session.id,
            reason,
            session.duration_ms(),
        )
        return session, True

    @staticmethod
    def duration(session: Session) -> int:
        """Milliseconds from creation to end, or to now while still open."""
        return session.duration_ms()

    async def list_all(self) -> list[Session]:
        """All sessions, newest first."""
        return await self._store.sessions.find(sort=[("created_at", DESCENDING)])

    async def count(self) -> int:
        return await self._store.sessions.count()

    async def active_count(self) -> int:
        return await self._store.sessions.count({"status": {"$in": list(OPEN_STATUSES)}})

    async def stats_by_status(self) -> dict[str, int]:
        counts = await self._store.sessions.count_by("status")
        return {status.value: counts.get(status.value, 0) for status in SessionStatus}
