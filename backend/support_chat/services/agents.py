"""Agent directory: capacity tracking and least-loaded selection."""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable, Optional

from support_chat.config import SeedAgent
from support_chat.models.agents import Agent, AgentStats
from support_chat.services.locks import KeyedLock
from support_chat.store.base import RecordStore

logger = logging.getLogger(__name__)


class AgentDirectory:
    """Owns every mutation of an agent's active-user set.

    ``reserve`` and ``release`` are serialized per agent id. Selection and
    reservation are combined in ``assign``, which runs under a single
    directory-wide lock so two concurrent assignments can never both see
    the same free slot.
    """

    def __init__(self, store: RecordStore) -> None:
        self._store = store
        self._agent_locks = KeyedLock()
        self._assign_lock = asyncio.Lock()

    async def seed(self, agents: Iterable[SeedAgent]) -> int:
        """Create the seed agents when the directory is empty."""
        if await self._store.agents.count() > 0:
            return 0
        created = 0
        for seed in agents:
            await self._store.agents.create(
                {"id": seed.id, "name": seed.name, "max_users": seed.max_users}
            )
            created += 1
        logger.info("Default agents initialized (%d) in %s store", created, self._store.name)
        return created

    async def register(self, name: str, max_users: int = 2, agent_id: Optional[str] = None) -> Agent:
        """Add an agent to the directory; ``agent_id`` defaults to a generated id."""
        fields: dict = {"name": name, "max_users": max_users}
        if agent_id is not None:
            fields["id"] = agent_id
        agent = await self._store.agents.create(fields)
        logger.info("Agent registered: %s (%s, capacity=%d)", agent.name, agent.id, agent.max_users)
        return agent

    async def get(self, agent_id: str) -> Agent:
        """Raises ``NotFound`` for unknown ids."""
        return await self._store.agents.get_by_id(agent_id)

    async def list_all(self) -> list[Agent]:
        """Every agent in creation order, online or not."""
        return await self._store.agents.find()

    async def list_available(self) -> list[Agent]:
        online = await self._store.agents.find({"is_online": True})
        return [agent for agent in online if agent.has_capacity]

    async def least_loaded(self) -> Optional[Agent]:
        """Pick the available agent with the fewest users; first one wins ties."""
        best: Optional[Agent] = None
        for agent in await self.list_available():
            if best is None or agent.current_load < best.current_load:
                best = agent
        return best

    async def reserve(self, agent_id: str, user_id: str) -> bool:
        """Add ``user_id`` to the agent if there is room and it is not already there.

        Returns True when the active set changed. A full agent or a repeat
        reservation is a silent no-op.
        """
        async with self._agent_locks.hold(agent_id):
            agent = await self._store.agents.get_by_id(agent_id)
            if user_id in agent.active_users or not agent.has_capacity:
                return False
            await self._store.agents.update(
                agent_id, {"active_users": [*agent.active_users, user_id]}
            )
        logger.info(
            "Agent %s reserved for user %s (load %d/%d)",
            agent_id,
            user_id,
            agent.current_load + 1,
            agent.max_users,
        )
        return True

    async def release(self, agent_id: str, user_id: str) -> bool:
        """Remove ``user_id`` from the agent; no-op if absent."""
        async with self._agent_locks.hold(agent_id):
            agent = await self._store.agents.get_by_id(agent_id)
            if user_id not in agent.active_users:
                return False
            remaining = [uid for uid in agent.active_users if uid != user_id]
            await self._store.agents.update(agent_id, {"active_users": remaining})
        logger.info("Agent %s released user %s", agent_id, user_id)
        return True

    async def assign(self, user_id: str) -> Optional[Agent]:
        """Select the least-loaded agent and reserve it for ``user_id`` atomically.

        Callers assign only users with no open session, so any slot the user
        still holds is stale and is given back before selecting.
        """
        async with self._assign_lock:
            for agent in await self.list_all():
                if user_id in agent.active_users:
                    logger.warning("Dropping stale reservation of %s on %s", user_id, agent.id)
                    await self.release(agent.id, user_id)
            while True:
                agent = await self.least_loaded()
                if agent is None:
                    logger.warning("No available agents for user %s", user_id)
                    return None
                if await self.reserve(agent.id, user_id):
                    return await self.get(agent.id)
                # The slot went away between read and write; pick again.

    async def set_online(self, agent_id: str, is_online: bool) -> Agent:
        async with self._agent_locks.hold(agent_id):
            agent = await self._store.agents.update(agent_id, {"is_online": is_online})
        logger.info("Agent %s is now %s", agent_id, "online" if is_online else "offline")
        return agent

    async def stats(self) -> list[AgentStats]:
        return [
            AgentStats(
                id=agent.id,
                name=agent.name,
                current_load=agent.current_load,
                max_users=agent.max_users,
                is_online=agent.is_online,
                utilization=f"{agent.utilization}%",
            )
            for agent in await self.list_all()
        ]
