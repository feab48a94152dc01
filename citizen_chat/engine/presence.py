import asyncio
from collections.abc import Callable, Iterable
from dataclasses import replace
from datetime import datetime

from citizen_chat.domain.enums import ActorRole, PresenceStatus
from citizen_chat.domain.models import AgentPresence, QueueKey
from citizen_chat.engine.locks import KeyedLocks
from citizen_chat.infra.org.directory import OrgDirectory
from citizen_chat.services.errors import AgentNotFoundError


class PresenceTracker:
    """Agent status and capacity.

    ``current_active_count`` is not stored here; it is read from the
    conversation store's active index on every query.
    """

    def __init__(
        self,
        active_counter: Callable[[str], int],
        org: OrgDirectory,
    ) -> None:
        self._agents: dict[str, AgentPresence] = {}
        self._active_counter = active_counter
        self._org = org
        self._locks = KeyedLocks()

    def lock(self, agent_id: str) -> asyncio.Lock:
        return self._locks(agent_id)

    def register(self, presence: AgentPresence) -> AgentPresence:
        if presence.max_concurrent_chats < 1:
            raise ValueError("max_concurrent_chats must be at least 1.")
        existing = self._agents.get(presence.agent_id)
        if existing is not None:
            presence = replace(presence, status=existing.status)
        self._agents[presence.agent_id] = presence
        return presence

    def get(self, agent_id: str) -> AgentPresence | None:
        return self._agents.get(agent_id)

    def require(self, agent_id: str) -> AgentPresence:
        presence = self._agents.get(agent_id)
        if presence is None:
            raise AgentNotFoundError(agent_id)
        return presence

    def set_status(
        self, agent_id: str, status: PresenceStatus, now: datetime
    ) -> tuple[PresenceStatus, AgentPresence]:
        current = self.require(agent_id)
        updated = replace(current, status=status, updated_at=now)
        self._agents[agent_id] = updated
        return current.status, updated

    def set_capacity(
        self, agent_id: str, max_concurrent_chats: int, now: datetime
    ) -> tuple[int, AgentPresence]:
        if max_concurrent_chats < 1:
            raise ValueError("max_concurrent_chats must be at least 1.")
        current = self.require(agent_id)
        updated = replace(
            current, max_concurrent_chats=max_concurrent_chats, updated_at=now
        )
        self._agents[agent_id] = updated
        return current.max_concurrent_chats, updated

    def current_active_count(self, agent_id: str) -> int:
        return self._active_counter(agent_id)

    def is_eligible(self, agent_id: str) -> bool:
        presence = self._agents.get(agent_id)
        if presence is None or presence.status != PresenceStatus.ONLINE:
            return False
        return self.current_active_count(agent_id) < presence.max_concurrent_chats

    def serves(self, presence: AgentPresence, key: QueueKey) -> bool:
        if key.department_id is None:
            return True
        if presence.role in {ActorRole.ADMIN, ActorRole.MANAGER, ActorRole.SYSTEM}:
            return True
        if presence.department_id == key.department_id:
            return True
        if presence.role == ActorRole.SECRETARY_ADMIN and presence.secretary_id:
            return self._org.secretary_of(key.department_id) == presence.secretary_id
        return False

    def candidates(self, key: QueueKey) -> list[AgentPresence]:
        """Eligible agents for ``key``, least loaded first, then by agent id."""
        eligible = [
            presence
            for presence in self._agents.values()
            if self.serves(presence, key) and self.is_eligible(presence.agent_id)
        ]
        return sorted(
            eligible,
            key=lambda presence: (
                self.current_active_count(presence.agent_id),
                presence.agent_id,
            ),
        )

    def served_keys(self, agent_id: str, keys: Iterable[QueueKey]) -> list[QueueKey]:
        presence = self.require(agent_id)
        return [key for key in keys if self.serves(presence, key)]

    def list(self, status: PresenceStatus | None = None) -> list[AgentPresence]:
        agents = [
            presence
            for presence in self._agents.values()
            if status is None or presence.status == status
        ]
        return sorted(agents, key=lambda presence: presence.agent_id)

    def restore(self, agents: Iterable[AgentPresence]) -> None:
        self._agents.clear()
        for presence in agents:
            # Nobody is connected right after a restart.
            self._agents[presence.agent_id] = replace(
                presence, status=PresenceStatus.OFFLINE
            )
