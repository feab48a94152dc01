import asyncio
import logging
from collections import defaultdict
from collections.abc import Iterable
from uuid import UUID

from citizen_chat.domain.enums import ConversationState, TransitionAction
from citizen_chat.domain.exceptions import InvalidTransition
from citizen_chat.domain.models import Conversation
from citizen_chat.engine.locks import KeyedLocks
from citizen_chat.services.errors import ConversationNotFoundError

logger = logging.getLogger(__name__)


class ConversationStore:
    """Canonical in-memory record of every conversation.

    Records are immutable snapshots; ``commit`` swaps a record for its next
    version after checking nobody committed in between. The active-by-agent
    index backs the derived ``current_active_count`` view.
    """

    def __init__(self) -> None:
        self._conversations: dict[UUID, Conversation] = {}
        self._active_by_agent: dict[str, set[UUID]] = defaultdict(set)
        self._locks = KeyedLocks()

    def lock(self, conversation_id: UUID) -> asyncio.Lock:
        return self._locks(conversation_id)

    def add(self, conversation: Conversation) -> Conversation:
        if conversation.id in self._conversations:
            raise ValueError(f"Conversation '{conversation.id}' already exists")
        self._conversations[conversation.id] = conversation
        self._reindex(None, conversation)
        return conversation

    def get(self, conversation_id: UUID) -> Conversation | None:
        return self._conversations.get(conversation_id)

    def require(self, conversation_id: UUID) -> Conversation:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)
        return conversation

    def commit(
        self, updated: Conversation, action: TransitionAction | None = None
    ) -> Conversation:
        """Swap in the next version of a record.

        ``updated`` must be exactly one version ahead of the stored record;
        anything else means it was derived from stale state.
        """
        current = self.require(updated.id)
        if current.version != updated.version - 1:
            logger.error(
                "Rejected stale conversation commit",
                extra={
                    "conversation_id": str(updated.id),
                    "action": action.value if action else "update",
                    "stored_version": current.version,
                    "proposed_version": updated.version,
                },
            )
            raise InvalidTransition(
                updated.id, current.state, action, reason="conversation changed concurrently"
            )
        self._conversations[updated.id] = updated
        self._reindex(current, updated)
        return updated

    def active_count_for(self, agent_id: str) -> int:
        return len(self._active_by_agent.get(agent_id, ()))

    def active_ids_for(self, agent_id: str) -> frozenset[UUID]:
        return frozenset(self._active_by_agent.get(agent_id, ()))

    def list(
        self,
        *,
        state: ConversationState | None = None,
        agent_id: str | None = None,
        department_id: str | None = None,
        limit: int | None = None,
    ) -> list[Conversation]:
        candidates = [
            conversation
            for conversation in self._conversations.values()
            if (state is None or conversation.state == state)
            and (agent_id is None or conversation.agent_id == agent_id)
            and (department_id is None or conversation.department_id == department_id)
        ]
        ordered = sorted(
            candidates,
            key=lambda conversation: conversation.last_message_at,
            reverse=True,
        )
        if limit is not None:
            return ordered[:limit]
        return ordered

    def restore(self, conversations: Iterable[Conversation]) -> None:
        self._conversations.clear()
        self._active_by_agent.clear()
        for conversation in conversations:
            self.add(conversation)

    def __len__(self) -> int:
        return len(self._conversations)

    def __iter__(self):
        return iter(list(self._conversations.values()))

    def _reindex(self, previous: Conversation | None, current: Conversation) -> None:
        if previous is not None and previous.agent_id is not None:
            if previous.state == ConversationState.ACTIVE:
                assigned = self._active_by_agent.get(previous.agent_id)
                if assigned is not None:
                    assigned.discard(previous.id)
                    if not assigned:
                        self._active_by_agent.pop(previous.agent_id, None)
        if current.state == ConversationState.ACTIVE and current.agent_id is not None:
            self._active_by_agent[current.agent_id].add(current.id)
