"""Tests for the chat REST endpoints."""

import pytest
from httpx import AsyncClient

from tests.conftest import RecordingConnection


async def _start(client: AsyncClient, user_id: str = "u1") -> dict:
    response = await client.post("/api/chat/start-session", json={"userId": user_id})
    assert response.status_code == 201
    return response.json()


@pytest.mark.asyncio
async def test_start_session_assigns_agent(client: AsyncClient) -> None:
    data = await _start(client)

    assert data["status"] == "active"
    assert data["agentId"] == "agent_001"
    assert data["agent"]["name"] == "Aatish Support"
    assert data["waitingMessage"].startswith("Connected to support agent")
    assert "createdAt" in data


@pytest.mark.asyncio
async def test_start_session_is_idempotent(client: AsyncClient) -> None:
    first = await _start(client)
    second = await _start(client)

    assert first["sessionId"] == second["sessionId"]


@pytest.mark.asyncio
async def test_start_session_waits_when_agents_full(client: AsyncClient) -> None:
    for i in range(4):
        assert (await _start(client, f"u{i}"))["status"] == "active"

    data = await _start(client, "u-late")

    assert data["status"] == "waiting"
    assert data["agentId"] is None
    assert data["agent"] is None
    assert data["waitingMessage"] == "Waiting for available agent..."


@pytest.mark.asyncio
async def test_start_session_rejects_invalid_user_type(client: AsyncClient) -> None:
    response = await client.post(
        "/api/chat/start-session", json={"userId": "u1", "userType": "robot"}
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_send_and_list_messages(client: AsyncClient) -> None:
    session_id = (await _start(client))["sessionId"]

    sent = await client.post(
        f"/api/chat/send-message/{session_id}",
        json={"message": "  Hello agent  ", "senderId": "u1"},
    )
    assert sent.status_code == 201
    echo = sent.json()
    assert echo["message"]["message"] == "Hello agent"
    assert echo["message"]["senderType"] == "user"
    assert echo["sessionStatus"] == "active"

    listed = await client.get(f"/api/chat/messages/{session_id}")
    assert listed.status_code == 200
    body = listed.json()
    assert [m["id"] for m in body["messages"]] == [echo["messageId"]]
    assert body["pagination"] == {"total": 1, "limit": 50, "offset": 0, "hasMore": False}


@pytest.mark.asyncio
async def test_send_message_without_sender_uses_principal(client: AsyncClient) -> None:
    session_id = (await _start(client))["sessionId"]

    sent = await client.post(f"/api/chat/send-message/{session_id}", json={"message": "hi"})

    # API-key callers carry no identity.
    assert sent.json()["message"]["senderId"] == "anonymous"


@pytest.mark.asyncio
async def test_send_message_validation(client: AsyncClient) -> None:
    session_id = (await _start(client))["sessionId"]

    too_long = await client.post(
        f"/api/chat/send-message/{session_id}", json={"message": "x" * 1001}
    )
    blank = await client.post(f"/api/chat/send-message/{session_id}", json={"message": "   "})

    assert too_long.status_code == 400
    assert blank.status_code == 400


@pytest.mark.asyncio
async def test_unknown_session_returns_404(client: AsyncClient) -> None:
    assert (await client.get("/api/chat/messages/missing")).status_code == 404
    assert (await client.get("/api/chat/session/missing")).status_code == 404
    assert (await client.post("/api/chat/end-session/missing")).status_code == 404
    response = await client.post("/api/chat/send-message/missing", json={"message": "hi"})
    assert response.status_code == 404
    assert response.json()["error"] == "not_found"


@pytest.mark.asyncio
async def test_pagination_parameters(client: AsyncClient, services) -> None:
    session_id = (await _start(client))["sessionId"]
    for i in range(120):
        await services.relay.append(session_id, "u1", "user", f"m{i}")

    tail = (await client.get(f"/api/chat/messages/{session_id}?limit=50&offset=100")).json()
    head = (await client.get(f"/api/chat/messages/{session_id}?limit=50&offset=0")).json()

    assert len(tail["messages"]) == 20
    assert tail["pagination"]["hasMore"] is False
    assert len(head["messages"]) == 50
    assert head["pagination"]["hasMore"] is True
    assert (await client.get(f"/api/chat/messages/{session_id}?limit=0")).status_code == 400
    assert (await client.get(f"/api/chat/messages/{session_id}?offset=-1")).status_code == 400


@pytest.mark.asyncio
async def test_http_send_reaches_stream_subscribers(client: AsyncClient, services) -> None:
    session_id = (await _start(client))["sessionId"]
    listener = RecordingConnection("listener")
    services.gateway.connect(listener)
    await services.gateway.join(listener, session_id, "u1", "user")

    sent = await client.post(
        f"/api/chat/send-message/{session_id}",
        json={"message": "from http", "senderId": "agent_001", "senderType": "agent"},
    )

    (event,) = listener.of_type("new_message")
    assert event["id"] == sent.json()["messageId"]
    assert event["senderType"] == "agent"


@pytest.mark.asyncio
async def test_end_session_reports_statistics(client: AsyncClient, services) -> None:
    session_id = (await _start(client))["sessionId"]
    await client.post(f"/api/chat/send-message/{session_id}", json={"message": "one"})
    listener = RecordingConnection("listener")
    await services.gateway.join(listener, session_id, "u1", "user")

    response = await client.post(
        f"/api/chat/end-session/{session_id}", json={"reason": "resolved"}
    )

    assert response.status_code == 200
    data = response.json()
    assert data["reason"] == "resolved"
    assert data["endedAt"] is not None
    assert data["statistics"]["totalMessages"] == 1
    assert data["statistics"]["duration"] >= 0
    assert listener.of_type("session_ended")[0]["reason"] == "resolved"
    assert (await services.agents.get("agent_001")).active_users == []


@pytest.mark.asyncio
async def test_end_session_default_reason(client: AsyncClient) -> None:
    session_id = (await _start(client))["sessionId"]

    data = (await client.post(f"/api/chat/end-session/{session_id}")).json()

    assert data["reason"] == "User ended session"


@pytest.mark.asyncio
async def test_ending_twice_notifies_once(client: AsyncClient, services) -> None:
    session_id = (await _start(client))["sessionId"]
    listener = RecordingConnection("listener")
    await services.gateway.join(listener, session_id, "u1", "user")

    first = await client.post(f"/api/chat/end-session/{session_id}", json={"reason": "done"})
    second = await client.post(f"/api/chat/end-session/{session_id}", json={"reason": "again"})

    assert first.status_code == second.status_code == 200
    assert second.json()["reason"] == "done"
    assert second.json()["endedAt"] == first.json()["endedAt"]
    assert len(listener.of_type("session_ended")) == 1


@pytest.mark.asyncio
async def test_session_details(client: AsyncClient) -> None:
    session_id = (await _start(client))["sessionId"]
    await client.post(f"/api/chat/send-message/{session_id}", json={"message": "one"})

    data = (await client.get(f"/api/chat/session/{session_id}")).json()

    assert data["id"] == session_id
    assert data["userId"] == "u1"
    assert data["status"] == "active"
    assert data["messageCount"] == 1
    assert data["agent"]["id"] == "agent_001"


@pytest.mark.asyncio
async def test_stats(client: AsyncClient) -> None:
    first = (await _start(client, "u1"))["sessionId"]
    await _start(client, "u2")
    await client.post(f"/api/chat/send-message/{first}", json={"message": "hi"})
    await client.post(f"/api/chat/end-session/{first}")

    data = (await client.get("/api/chat/stats")).json()

    assert data["sessions"] == {"active": 1, "waiting": 0, "ended": 1, "total": 2}
    assert data["messages"] == {"total": 1, "averagePerSession": 0}
    assert {a["id"] for a in data["agents"]} == {"agent_001", "agent_002"}
    assert data["performance"]["systemLoad"] == "25%"
    assert data["systemHealth"]["storage"] == "memory"
