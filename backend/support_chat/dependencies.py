"""Service container and dependency injection providers for FastAPI."""

from __future__ import annotations

import time
from dataclasses import dataclass, field

from fastapi import Depends
from starlette.requests import HTTPConnection

from support_chat.config import Settings
from support_chat.gateway.hub import ChannelGateway
from support_chat.services.agents import AgentDirectory
from support_chat.services.relay import MessageRelay
from support_chat.services.sessions import SessionManager
from support_chat.store.base import RecordStore


@dataclass
class ChatServices:
    """Everything built on top of one record store instance."""

    settings: Settings
    store: RecordStore
    agents: AgentDirectory
    sessions: SessionManager
    relay: MessageRelay
    gateway: ChannelGateway
    started_at: float = field(default_factory=time.monotonic)

    @property
    def uptime(self) -> float:
        return time.monotonic() - self.started_at


def build_services(store: RecordStore, settings: Settings) -> ChatServices:
    """Wire the core components around an explicitly owned store."""
    agents = AgentDirectory(store)
    sessions = SessionManager(store, agents)
    relay = MessageRelay(store, sessions)
    gateway = ChannelGateway(sessions, relay, history_limit=settings.history_page_size)
    return ChatServices(
        settings=settings,
        store=store,
        agents=agents,
        sessions=sessions,
        relay=relay,
        gateway=gateway,
    )


def get_services(connection: HTTPConnection) -> ChatServices:
    """Return the container attached to the application at startup."""
    services = getattr(connection.app.state, "services", None)
    if services is None:
        raise RuntimeError("Chat services not initialized - application startup incomplete")
    return services


def get_sessions(services: ChatServices = Depends(get_services)) -> SessionManager:
    return services.sessions


def get_agents(services: ChatServices = Depends(get_services)) -> AgentDirectory:
    return services.agents


def get_relay(services: ChatServices = Depends(get_services)) -> MessageRelay:
    return services.relay


def get_gateway(services: ChatServices = Depends(get_services)) -> ChannelGateway:
    return services.gateway
