"""WebSocket endpoint for the event-stream surface."""

import json
import logging
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect, status
from jose import JWTError
from pydantic import ValidationError

from support_chat.auth import authenticate
from support_chat.dependencies import ChatServices, get_services
from support_chat.errors import ChatError
from support_chat.gateway.connection import WebSocketConnection
from support_chat.gateway.hub import ChannelGateway
from support_chat.models.messages import MAX_MESSAGE_LENGTH
from support_chat.models.sessions import ParticipantRole

logger = logging.getLogger(__name__)


async def websocket_chat(websocket: WebSocket) -> None:
    """Handle WebSocket connections for live session chat.

    Protocol:
        Connect with ``?token=<bearer>`` or ``?api_key=<key>``.
        Client sends JSON: {"type": "join_session", "sessionId", "userId", "userType"}
                           {"type": "send_message", "sessionId", "message"}
                           {"type": "typing_start" | "typing_stop", "sessionId"}
                           {"type": "leave_session"}
        Server sends JSON: {"type": "session_joined" | "new_message" | "user_joined"
                            | "user_left" | "user_typing" | "session_ended" | "error",
                            "data": {...}, "timestamp": "..."}
    """
    services: ChatServices = get_services(websocket)

    try:
        principal = authenticate(
            websocket.query_params.get("token"),
            websocket.query_params.get("api_key"),
            services.settings,
        )
    except JWTError as exc:
        logger.warning("Socket authentication failed: %s", exc)
        principal = None
    if principal is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    connection = WebSocketConnection(websocket, services.settings.outbound_queue_size)
    connection.start()
    gateway = services.gateway
    gateway.connect(connection)
    reason = "client disconnect"

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                connection.deliver("error", {"message": "Invalid JSON"})
                continue
            if not isinstance(data, dict):
                connection.deliver("error", {"message": "Expected a JSON object"})
                continue
            await _dispatch(gateway, connection, data)

    except WebSocketDisconnect as exc:
        reason = f"client disconnect ({exc.code})"
        logger.info("WebSocket disconnected: connection=%s", connection.connection_id)
    except Exception:
        reason = "server error"
        logger.exception("WebSocket error for connection %s", connection.connection_id)
    finally:
        gateway.disconnect(connection, reason)
        await connection.close()


async def _dispatch(
    gateway: ChannelGateway,
    connection: WebSocketConnection,
    data: dict[str, Any],
) -> None:
    """Route one client action; domain errors become ``error`` events."""
    action = data.get("type")
    session_id = data.get("sessionId")
    if session_id is not None and not isinstance(session_id, str):
        connection.deliver("error", {"message": "sessionId must be a string"})
        return

    try:
        if action == "join_session":
            user_id = data.get("userId")
            if not session_id or not user_id or not isinstance(user_id, str):
                connection.deliver("error", {"message": "sessionId and userId are required"})
                return
            try:
                role = ParticipantRole(data.get("userType", ParticipantRole.USER.value))
            except ValueError:
                connection.deliver("error", {"message": "Invalid userType"})
                return
            await gateway.join(connection, session_id, user_id, role)

        elif action == "send_message":
            body = data.get("message")
            if not isinstance(body, str) or not body.strip():
                connection.deliver("error", {"message": "Invalid message data"})
                return
            if len(body) > MAX_MESSAGE_LENGTH:
                connection.deliver(
                    "error",
                    {"message": f"message cannot exceed {MAX_MESSAGE_LENGTH} characters"},
                )
                return
            await gateway.send(connection, body.strip(), session_id=session_id)

        elif action in ("typing_start", "typing_stop"):
            gateway.typing(connection, action == "typing_start", session_id=session_id)

        elif action == "leave_session":
            gateway.leave(connection, "left")

        else:
            connection.deliver("error", {"message": f"Unsupported action: {action}"})

    except ChatError as exc:
        logger.warning(
            "Action %s refused for connection %s: %s",
            action,
            connection.connection_id,
            exc.message,
        )
        connection.deliver("error", {"message": exc.message, "code": exc.code})
    except ValidationError as exc:
        details = exc.errors(include_url=False, include_context=False, include_input=False)
        connection.deliver("error", {"message": "Invalid message data", "details": details})
