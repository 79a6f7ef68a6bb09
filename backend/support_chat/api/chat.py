"""Chat session endpoints (request/response surface)."""

from __future__ import annotations

import logging
import resource
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, status

from support_chat.auth import Principal, require_auth
from support_chat.dependencies import ChatServices, get_services
from support_chat.models.agents import Agent
from support_chat.models.messages import (
    MessageOut,
    MessagePage,
    Pagination,
    SendMessageRequest,
    SendMessageResponse,
)
from support_chat.models.sessions import (
    AgentSummary,
    EndSessionRequest,
    EndSessionResponse,
    SessionDetail,
    SessionStatistics,
    StartSessionRequest,
    StartSessionResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter(dependencies=[Depends(require_auth)])


def _agent_summary(agent: Optional[Agent]) -> Optional[AgentSummary]:
    if agent is None:
        return None
    return AgentSummary(id=agent.id, name=agent.name, is_online=agent.is_online)


@router.post(
    "/start-session",
    response_model=StartSessionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def start_session(
    payload: StartSessionRequest,
    services: ChatServices = Depends(get_services),
) -> StartSessionResponse:
    """Open a session for the user (or return the one already open)."""
    session = await services.sessions.create_session(payload.user_id, payload.user_type)
    agent = await services.agents.get(session.agent_id) if session.agent_id else None

    return StartSessionResponse(
        session_id=session.id,
        status=session.status,
        agent_id=session.agent_id,
        agent=_agent_summary(agent),
        created_at=session.created_at,
        waiting_message=(
            f"Connected to support agent {agent.name}"
            if agent is not None
            else "Waiting for available agent..."
        ),
        instructions={
            "websocket": f"Connect to /ws/chat and send join_session for {session.id}",
            "http": f"Use POST /api/chat/send-message/{session.id} to send messages",
        },
    )


@router.get("/messages/{session_id}", response_model=MessagePage)
async def get_messages(
    session_id: str,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    services: ChatServices = Depends(get_services),
) -> MessagePage:
    """Return a page of the session's messages in chronological order."""
    page = await services.relay.page(session_id, limit=limit, offset=offset)
    logger.info(
        "Messages retrieved for session %s: %d of %d (limit=%d offset=%d)",
        session_id,
        len(page.messages),
        page.total,
        limit,
        offset,
    )
    return MessagePage(
        session_id=session_id,
        messages=[MessageOut.from_message(m) for m in page.messages],
        pagination=Pagination(
            total=page.total,
            limit=page.limit,
            offset=page.offset,
            has_more=page.has_more,
        ),
    )


@router.post(
    "/send-message/{session_id}",
    response_model=SendMessageResponse,
    status_code=status.HTTP_201_CREATED,
)
async def send_message(
    session_id: str,
    payload: SendMessageRequest,
    principal: Principal = Depends(require_auth),
    services: ChatServices = Depends(get_services),
) -> SendMessageResponse:
    """Append a message and push it to every connection on the session."""
    sender_id = payload.sender_id or principal.id or "anonymous"
    result = await services.gateway.post(
        session_id, sender_id, payload.sender_type, payload.message
    )
    logger.info(
        "Message sent via HTTP API: session=%s id=%s sender=%s length=%d",
        session_id,
        result.message.id,
        sender_id,
        len(payload.message),
    )
    return SendMessageResponse(
        message_id=result.message.id,
        session_id=result.session.id,
        message=MessageOut.from_message(result.message),
        session_status=result.session.status,
    )


@router.post("/end-session/{session_id}", response_model=EndSessionResponse)
async def end_session(
    session_id: str,
    payload: Optional[EndSessionRequest] = None,
    services: ChatServices = Depends(get_services),
) -> EndSessionResponse:
    """End the session, free its agent and notify connected participants."""
    reason = (payload or EndSessionRequest()).reason
    session, ended_now = await services.sessions.terminate(session_id, reason)
    if ended_now:
        services.gateway.publish_session_ended(session)
    total = await services.relay.count_for_session(session_id)

    return EndSessionResponse(
        session_id=session.id,
        ended_at=session.ended_at,
        reason=session.end_reason,
        statistics=SessionStatistics(
            duration=services.sessions.duration(session),
            total_messages=total,
        ),
    )


@router.get("/session/{session_id}", response_model=SessionDetail)
async def get_session_details(
    session_id: str,
    services: ChatServices = Depends(get_services),
) -> SessionDetail:
    session = await services.sessions.get_session(session_id)
    agent = await services.agents.get(session.agent_id) if session.agent_id else None

    return SessionDetail(
        id=session.id,
        user_id=session.user_id,
        user_type=session.user_type,
        status=session.status,
        created_at=session.created_at,
        updated_at=session.updated_at,
        ended_at=session.ended_at,
        end_reason=session.end_reason,
        message_count=await services.relay.count_for_session(session_id),
        agent=_agent_summary(agent),
        duration=services.sessions.duration(session),
    )


@router.get("/stats")
async def get_stats(
    principal: Principal = Depends(require_auth),
    services: ChatServices = Depends(get_services),
) -> dict[str, Any]:
    """Aggregate counts for sessions, messages, agents and the process."""
    by_status = await services.sessions.stats_by_status()
    all_sessions = await services.sessions.list_all()
    agent_stats = await services.agents.stats()
    total_messages = await services.relay.count_all()

    total_sessions = len(all_sessions)
    open_sessions = by_status["waiting"] + by_status["active"]
    capacity = sum(agent.max_users for agent in agent_stats)
    average_duration_ms = (
        sum(services.sessions.duration(s) for s in all_sessions) / total_sessions
        if total_sessions
        else 0
    )

    logger.info(
        "System stats requested by %s: open=%d agents=%d",
        principal.id or principal.type,
        open_sessions,
        len(agent_stats),
    )

    return {
        "sessions": {
            "active": by_status["active"],
            "waiting": by_status["waiting"],
            "ended": by_status["ended"],
            "total": total_sessions,
        },
        "messages": {
            "total": total_messages,
            "averagePerSession": round(total_messages / total_sessions) if total_sessions else 0,
        },
        "agents": [a.model_dump(by_alias=True) for a in agent_stats],
        "performance": {
            "averageSessionDuration": round(average_duration_ms / 1000),
            "systemLoad": f"{round(open_sessions / capacity * 100) if capacity else 0}%",
        },
        "systemHealth": {
            "status": "operational",
            "storage": services.store.name,
            "uptime": round(services.uptime),
            "memory": {
                # ru_maxrss is reported in kilobytes on Linux
                "peakRssMb": round(resource.getrusage(resource.RUSAGE_SELF).ru_maxrss / 1024),
            },
            "connections": services.gateway.connection_count,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    }
