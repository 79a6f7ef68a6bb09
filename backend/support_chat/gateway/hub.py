"""Channel gateway: connection bindings, authorization and fan-out.

Every message, whichever surface it arrives on, is appended through the
relay and then broadcast to every connection bound to its session. That
single path is what keeps the REST view and the event stream consistent.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from support_chat.errors import Unauthorized
from support_chat.gateway.connection import Connection
from support_chat.models.common import utcnow
from support_chat.models.messages import Message, MessageOut
from support_chat.models.sessions import ParticipantRole, Session
from support_chat.services.relay import AppendResult, MessageRelay
from support_chat.services.sessions import SessionManager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Binding:
    """Who a connection is acting as, and in which session."""

    session_id: str
    user_id: str
    user_role: str


def message_event(message: Message) -> dict[str, Any]:
    return MessageOut.from_message(message).model_dump(by_alias=True, mode="json")


class ChannelGateway:
    def __init__(
        self,
        sessions: SessionManager,
        relay: MessageRelay,
        history_limit: int = 50,
    ) -> None:
        self._sessions = sessions
        self._relay = relay
        self._history_limit = history_limit
        self._connections: dict[str, Connection] = {}
        self._bindings: dict[str, Binding] = {}
        self._groups: dict[str, set[str]] = {}

    # ------------------------------------------------------------------
    # Connection registry
    # ------------------------------------------------------------------

    def connect(self, connection: Connection) -> None:
        self._connections[connection.connection_id] = connection
        logger.info("Connection opened: %s", connection.connection_id)

    def disconnect(self, connection: Connection, reason: str = "disconnected") -> None:
        self.leave(connection, reason)
        self._connections.pop(connection.connection_id, None)
        logger.info("Connection closed: %s (%s)", connection.connection_id, reason)

    def binding_for(self, connection: Connection) -> Optional[Binding]:
        return self._bindings.get(connection.connection_id)

    def members(self, session_id: str) -> list[str]:
        return sorted(self._groups.get(session_id, ()))

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    # ------------------------------------------------------------------
    # Participant actions
    # ------------------------------------------------------------------

    async def join(
        self,
        connection: Connection,
        session_id: str,
        user_id: str,
        user_role: ParticipantRole | str = ParticipantRole.USER,
    ) -> tuple[Session, list[Message]]:
        """Bind ``connection`` to a session after checking identity.

        Raises ``NotFound`` for unknown sessions and ``Unauthorized`` when a
        user is not the owner or an agent is not the assigned agent. A refused
        join leaves no binding and sends nothing to the group.
        """
        role = ParticipantRole(user_role)
        session = await self._sessions.get_session(session_id)

        if role == ParticipantRole.USER and session.user_id != user_id:
            logger.warning("User %s refused from session %s", user_id, session_id)
            raise Unauthorized("Unauthorized to join this session")
        if role == ParticipantRole.AGENT and session.agent_id != user_id:
            logger.warning("Agent %s refused from session %s", user_id, session_id)
            raise Unauthorized("Agent not assigned to this session")

        history = await self._relay.latest(session_id, self._history_limit)

        previous = self.binding_for(connection)
        if previous is not None and previous.session_id != session_id:
            self.leave(connection, "switched session")

        binding = Binding(session_id=session_id, user_id=user_id, user_role=role.value)
        self._connections.setdefault(connection.connection_id, connection)
        self._bindings[connection.connection_id] = binding
        self._groups.setdefault(session_id, set()).add(connection.connection_id)

        logger.info(
            "User joined session %s: user=%s role=%s connection=%s",
            session_id,
            user_id,
            role.value,
            connection.connection_id,
        )

        self.broadcast(
            session_id,
            "user_joined",
            {"userId": user_id, "userType": role.value, "timestamp": utcnow().isoformat()},
            exclude=connection,
        )
        connection.deliver(
            "session_joined",
            {
                "sessionId": session.id,
                "status": session.status,
                "agentId": session.agent_id,
                "messages": [message_event(m) for m in history],
            },
        )
        return session, history

    async def send(
        self,
        connection: Connection,
        body: str,
        session_id: Optional[str] = None,
    ) -> Message:
        """Append a message as the bound identity and fan it out."""
        binding = self.binding_for(connection)
        if binding is None:
            raise Unauthorized("Join a session before sending messages")
        if session_id is not None and session_id != binding.session_id:
            raise Unauthorized("Not authorized for this session")

        result = await self._relay.append(
            binding.session_id, binding.user_id, binding.user_role, body
        )
        self.publish_message(result.message)
        return result.message

    async def post(
        self,
        session_id: str,
        sender_id: str,
        sender_role: ParticipantRole | str,
        body: str,
    ) -> AppendResult:
        """Request/response entry point: append, then the same fan-out as ``send``."""
        result = await self._relay.append(session_id, sender_id, sender_role, body)
        self.publish_message(result.message)
        return result

    def typing(self, connection: Connection, is_typing: bool, session_id: Optional[str] = None) -> bool:
        """Relay a typing indicator to the other members; never persisted."""
        binding = self.binding_for(connection)
        if binding is None or (session_id is not None and session_id != binding.session_id):
            return False
        self.broadcast(
            binding.session_id,
            "user_typing",
            {"userId": binding.user_id, "userType": binding.user_role, "isTyping": is_typing},
            exclude=connection,
        )
        return True

    def leave(self, connection: Connection, reason: str = "left") -> Optional[Binding]:
        """Drop the connection's binding and tell the rest of the group."""
        binding = self._bindings.pop(connection.connection_id, None)
        if binding is None:
            return None
        group = self._groups.get(binding.session_id)
        if group is not None:
            group.discard(connection.connection_id)
            if not group:
                del self._groups[binding.session_id]
        self.broadcast(
            binding.session_id,
            "user_left",
            {
                "userId": binding.user_id,
                "userType": binding.user_role,
                "reason": reason,
                "timestamp": utcnow().isoformat(),
            },
        )
        logger.info(
            "User left session %s: user=%s reason=%s",
            binding.session_id,
            binding.user_id,
            reason,
        )
        return binding

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------

    def publish_message(self, message: Message) -> int:
        return self.broadcast(message.session_id, "new_message", message_event(message))

    def publish_session_ended(self, session: Session) -> int:
        return self.broadcast(
            session.id,
            "session_ended",
            {
                "sessionId": session.id,
                "reason": session.end_reason,
                "endedAt": session.ended_at.isoformat() if session.ended_at else None,
            },
        )

    def broadcast(
        self,
        session_id: str,
        event: str,
        data: dict[str, Any],
        exclude: Optional[Connection] = None,
    ) -> int:
        """Deliver to every bound connection of the session; returns the count."""
        delivered = 0
        for connection_id in list(self._groups.get(session_id, ())):
            if exclude is not None and connection_id == exclude.connection_id:
                continue
            connection = self._connections.get(connection_id)
            if connection is None:
                continue
            try:
                connection.deliver(event, data)
            except Exception:
                logger.exception("Delivery of %s to %s failed", event, connection_id)
                continue
            delivered += 1
        return delivered
