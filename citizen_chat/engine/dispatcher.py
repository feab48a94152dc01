import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime

from citizen_chat.domain.enums import DispatchStatus, TransitionAction
from citizen_chat.domain.models import AgentPresence, Conversation, QueueKey
from citizen_chat.domain.state_machine import ConversationLifecycle
from citizen_chat.engine.presence import PresenceTracker
from citizen_chat.engine.queue import QueueManager
from citizen_chat.engine.store import ConversationStore
from citizen_chat.services.errors import NoAgentAvailableError

logger = logging.getLogger(__name__)

PersistHook = Callable[[Conversation], Awaitable[None]]
AssignedHook = Callable[[Conversation, AgentPresence], Awaitable[None]]

STALE_QUEUE_ENTRY = "stale_queue_entry"


@dataclass(frozen=True, slots=True)
class DispatchResult:
    status: DispatchStatus
    key: QueueKey
    conversation: Conversation | None = None
    agent_id: str | None = None
    reason: str | None = None

    @property
    def assigned(self) -> bool:
        return self.status == DispatchStatus.ASSIGNED


async def _noop_persist(_: Conversation) -> None:
    return None


async def _noop_assigned(_: Conversation, __: AgentPresence) -> None:
    return None


class Dispatcher:
    """The only component that moves a conversation from waiting to active."""

    def __init__(
        self,
        store: ConversationStore,
        queue: QueueManager,
        presence: PresenceTracker,
        clock: Callable[[], datetime],
        persist: PersistHook | None = None,
        on_assigned: AssignedHook | None = None,
    ) -> None:
        self.store = store
        self.queue = queue
        self.presence = presence
        self._clock = clock
        self._persist = persist or _noop_persist
        self._on_assigned = on_assigned or _noop_assigned

    async def try_dispatch(self, key: QueueKey) -> DispatchResult:
        async with self.queue.lock(key):
            head = self.queue.head(key)
            if head is None:
                return self._miss(key, "queue_empty")

            async with self.store.lock(head.conversation_id):
                conversation = self.store.get(head.conversation_id)
                if not self._still_queued(conversation, key):
                    logger.error(
                        "Queue head is not a waiting conversation; dropping entry",
                        extra={"conversation_id": str(head.conversation_id), "key": str(key)},
                    )
                    self.queue.dequeue(head.conversation_id)
                    return self._miss(key, STALE_QUEUE_ENTRY)

                try:
                    agent = await self._assign_first_eligible(conversation, key)
                except NoAgentAvailableError:
                    return self._miss(key, "no_eligible_agent")

                assigned = self.store.require(conversation.id)
                return DispatchResult(
                    status=DispatchStatus.ASSIGNED,
                    key=key,
                    conversation=assigned,
                    agent_id=agent.agent_id,
                )

    async def dispatch_all(self, key: QueueKey) -> list[DispatchResult]:
        results: list[DispatchResult] = []
        while True:
            result = await self.try_dispatch(key)
            if result.reason == STALE_QUEUE_ENTRY:
                continue
            if not result.assigned:
                return results
            results.append(result)

    async def dispatch_for_agent(self, agent_id: str) -> list[DispatchResult]:
        results: list[DispatchResult] = []
        for key in self.presence.served_keys(agent_id, self.queue.keys()):
            results.extend(await self.dispatch_all(key))
        return results

    async def sweep(self) -> list[DispatchResult]:
        results: list[DispatchResult] = []
        for key in self.queue.keys():
            results.extend(await self.dispatch_all(key))
        return results

    async def _assign_first_eligible(
        self, conversation: Conversation, key: QueueKey
    ) -> AgentPresence:
        for candidate in self.presence.candidates(key):
            async with self.presence.lock(candidate.agent_id):
                # Candidates were ranked before the lock; eligibility is re-read here.
                if not self.presence.is_eligible(candidate.agent_id):
                    continue
                agent = self.presence.require(candidate.agent_id)
                if self.store.get(conversation.id) is not conversation:
                    raise NoAgentAvailableError(key)

                updated = ConversationLifecycle.assign(
                    conversation, agent.agent_id, self._clock()
                )
                await self._persist(updated)
                self.queue.dequeue(conversation.id)
                self.store.commit(updated, TransitionAction.ASSIGN)
                logger.info(
                    "Conversation assigned",
                    extra={
                        "conversation_id": str(conversation.id),
                        "agent_id": agent.agent_id,
                        "key": str(key),
                    },
                )
                await self._on_assigned(updated, agent)
                return agent
        raise NoAgentAvailableError(key)

    def _still_queued(self, conversation: Conversation | None, key: QueueKey) -> bool:
        return (
            conversation is not None
            and conversation.expects_queue_slot
            and self.queue.key_of(conversation.id) == key
        )

    @staticmethod
    def _miss(key: QueueKey, reason: str) -> DispatchResult:
        logger.debug("No dispatch", extra={"key": str(key), "reason": reason})
        return DispatchResult(
            status=DispatchStatus.NO_AGENT_AVAILABLE,
            key=key,
            reason=reason,
        )
