import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from citizen_chat.domain.enums import (
    ActorRole,
    ConversationState,
    MessageStatus,
    MessageType,
    PresenceStatus,
    SenderRole,
    TransitionAction,
)
from citizen_chat.domain.models import (
    Actor,
    AgentPresence,
    CitizenRef,
    Conversation,
    Message,
    MessageDraft,
    QueueEntry,
    QueueKey,
)
from citizen_chat.domain.state_machine import ConversationLifecycle, advance_status
from citizen_chat.engine.dispatcher import DispatchResult, Dispatcher
from citizen_chat.engine.message_log import MessageLog
from citizen_chat.engine.presence import PresenceTracker
from citizen_chat.engine.queue import DEFAULT_HANDLING_SECONDS, QueueManager
from citizen_chat.engine.store import ConversationStore
from citizen_chat.infra.db.journal import ConversationJournal, JournalSnapshot, NullJournal
from citizen_chat.infra.metrics.handling_time import RollingHandlingTimeStats
from citizen_chat.infra.org.directory import OrgDirectory, PermissiveOrgDirectory
from citizen_chat.infra.realtime.events import NotifierEvent, NotifierEventKind
from citizen_chat.infra.realtime.notifier import InMemoryNotifier, Subscription
from citizen_chat.services.bot_service import ScriptedBot
from citizen_chat.services.errors import (
    AgentUnavailableError,
    ConversationAccessDeniedError,
    ConversationClosedError,
    UnknownDepartmentError,
    UnknownServiceError,
)

logger = logging.getLogger(__name__)

SYSTEM_SENDER_ID = "system"
SYSTEM_SENDER_NAME = "System"
DEFAULT_MAX_CONCURRENT_CHATS = 5


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(slots=True)
class ConversationTicket:
    conversation: Conversation
    queue_entry: QueueEntry | None
    messages: list[Message] = field(default_factory=list)


@dataclass(slots=True)
class AppendResult:
    conversation: Conversation
    message: Message
    created: bool
    bot_reply: Message | None = None


class ChatService:
    """Entry point for every conversation, message and presence operation.

    All state lives in the engine components; this class sequences them under
    the engine lock order (queue key, then conversation, then agent) and turns
    each committed change into notifier events and audit messages.
    """

    def __init__(
        self,
        org: OrgDirectory | None = None,
        notifier: InMemoryNotifier | None = None,
        journal: ConversationJournal | None = None,
        handling_times: RollingHandlingTimeStats | None = None,
        default_handling_seconds: float = DEFAULT_HANDLING_SECONDS,
        default_max_concurrent_chats: int = DEFAULT_MAX_CONCURRENT_CHATS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.org = org or PermissiveOrgDirectory()
        self.notifier = notifier or InMemoryNotifier()
        self.journal = journal or NullJournal()
        self.handling_times = handling_times or RollingHandlingTimeStats()
        self.default_max_concurrent_chats = default_max_concurrent_chats
        self._clock = clock or _utcnow

        self.store = ConversationStore()
        self.messages = MessageLog()
        self.queue = QueueManager(self.handling_times, default_handling_seconds)
        self.presence = PresenceTracker(self.store.active_count_for, self.org)
        self.bot = ScriptedBot(self.org)
        self.dispatcher = Dispatcher(
            self.store,
            self.queue,
            self.presence,
            clock=self._clock,
            persist=self.journal.save_conversation,
            on_assigned=self._on_assigned,
        )

    # Agents

    async def register_agent(
        self,
        agent_id: str,
        display_name: str,
        *,
        role: ActorRole = ActorRole.AGENT,
        department_id: str | None = None,
        secretary_id: str | None = None,
        max_concurrent_chats: int | None = None,
    ) -> AgentPresence:
        capacity = (
            self.default_max_concurrent_chats
            if max_concurrent_chats is None
            else max_concurrent_chats
        )
        if capacity < 1:
            raise ValueError("max_concurrent_chats must be at least 1.")

        async with self.presence.lock(agent_id):
            existing = self.presence.get(agent_id)
            candidate = AgentPresence(
                agent_id=agent_id,
                display_name=display_name.strip() or agent_id,
                max_concurrent_chats=capacity,
                status=existing.status if existing else PresenceStatus.OFFLINE,
                role=role,
                department_id=department_id,
                secretary_id=secretary_id,
                updated_at=self._clock(),
            )
            await self.journal.save_agent(candidate)
            registered = self.presence.register(candidate)
            self._publish_presence(registered)

        if registered.status == PresenceStatus.ONLINE:
            await self.dispatcher.dispatch_for_agent(agent_id)
        return self.presence.require(agent_id)

    async def set_agent_status(
        self, agent_id: str, status: PresenceStatus
    ) -> AgentPresence:
        async with self.presence.lock(agent_id):
            current = self.presence.require(agent_id)
            if current.status != status:
                now = self._clock()
                await self.journal.save_agent(
                    replace(current, status=status, updated_at=now)
                )
                _, updated = self.presence.set_status(agent_id, status, now)
                logger.info(
                    "Agent presence changed",
                    extra={
                        "agent_id": agent_id,
                        "from": current.status.value,
                        "to": status.value,
                    },
                )
                self._publish_presence(updated)

        if status == PresenceStatus.ONLINE:
            await self.dispatcher.dispatch_for_agent(agent_id)
        return self.presence.require(agent_id)

    async def set_agent_capacity(
        self, agent_id: str, max_concurrent_chats: int
    ) -> AgentPresence:
        if max_concurrent_chats < 1:
            raise ValueError("max_concurrent_chats must be at least 1.")

        async with self.presence.lock(agent_id):
            current = self.presence.require(agent_id)
            now = self._clock()
            await self.journal.save_agent(
                replace(current, max_concurrent_chats=max_concurrent_chats, updated_at=now)
            )
            previous, updated = self.presence.set_capacity(
                agent_id, max_concurrent_chats, now
            )
            self._publish_presence(updated)

        if max_concurrent_chats > previous and updated.status == PresenceStatus.ONLINE:
            await self.dispatcher.dispatch_for_agent(agent_id)
        return self.presence.require(agent_id)

    def get_agent(self, agent_id: str) -> AgentPresence:
        return self.presence.require(agent_id)

    def list_agents(self, status: PresenceStatus | None = None) -> list[AgentPresence]:
        return self.presence.list(status)

    # Conversations

    async def create_conversation(
        self,
        citizen: CitizenRef,
        *,
        department_id: str | None = None,
        service_id: str | None = None,
        direct_agent_id: str | None = None,
        bot: bool = False,
        require_direct: bool = False,
    ) -> ConversationTicket:
        """Open a conversation.

        With ``direct_agent_id`` the conversation starts active when that
        agent is eligible right now and falls back to the queue otherwise
        (``require_direct`` turns the fallback into ``AgentUnavailableError``).
        Bot sessions start waiting without a queue slot.
        """
        self._validate_destination(department_id, service_id)
        if bot and direct_agent_id is not None:
            raise ValueError("Bot sessions cannot target an agent directly.")
        if direct_agent_id is not None:
            self.presence.require(direct_agent_id)

        key = QueueKey(department_id, service_id)
        conversation_id = uuid4()
        queued = False

        async with self.queue.lock(key):
            async with self.store.lock(conversation_id):
                now = self._clock()
                conversation = Conversation(
                    id=conversation_id,
                    citizen=citizen,
                    state=ConversationState.WAITING,
                    started_at=now,
                    last_message_at=now,
                    department_id=department_id,
                    service_id=service_id,
                    is_bot=bot,
                    waiting_since=None if bot else now,
                )

                assigned_agent: AgentPresence | None = None
                if direct_agent_id is not None:
                    async with self.presence.lock(direct_agent_id):
                        if self.presence.is_eligible(direct_agent_id):
                            conversation = replace(
                                conversation,
                                state=ConversationState.ACTIVE,
                                agent_id=direct_agent_id,
                                assigned_at=now,
                                waiting_since=None,
                            )
                            await self.journal.save_conversation(conversation)
                            self.store.add(conversation)
                            assigned_agent = self.presence.require(direct_agent_id)
                        elif require_direct:
                            raise AgentUnavailableError(direct_agent_id)
                        else:
                            logger.info(
                                "Requested agent unavailable; conversation queued",
                                extra={
                                    "conversation_id": str(conversation_id),
                                    "agent_id": direct_agent_id,
                                },
                            )

                if assigned_agent is None:
                    await self.journal.save_conversation(conversation)
                    self.store.add(conversation)
                    if conversation.expects_queue_slot:
                        self.queue.enqueue(conversation.id, key, now)
                        queued = True

                logger.info(
                    "Conversation created",
                    extra={
                        "conversation_id": str(conversation.id),
                        "key": str(key),
                        "state": conversation.state.value,
                        "is_bot": conversation.is_bot,
                    },
                )
                self._publish_conversation(
                    NotifierEventKind.CONVERSATION_CREATED, conversation
                )
                if assigned_agent is not None:
                    await self._append_note(
                        conversation.id, self._joined_draft(assigned_agent)
                    )
                if bot:
                    await self._append_note(
                        conversation.id, self.bot.greeting(conversation)
                    )

        if queued:
            await self.dispatcher.dispatch_all(key)
        return self._ticket(conversation_id)

    async def start_agent_session(
        self, actor: Actor, citizen: CitizenRef
    ) -> ConversationTicket:
        return await self.create_conversation(
            citizen, direct_agent_id=actor.actor_id, require_direct=True
        )

    async def request_handoff(
        self,
        conversation_id: UUID,
        *,
        citizen_session: str | None = None,
    ) -> ConversationTicket:
        async with self._locked_with_queue(conversation_id) as conversation:
            self._ensure_citizen_access(conversation, citizen_session)
            now = self._clock()
            updated = ConversationLifecycle.request_handoff(conversation, now)
            await self.journal.save_conversation(updated)
            self.store.commit(updated, TransitionAction.REQUEST_HANDOFF)
            self.queue.enqueue(updated.id, updated.queue_key, now)
            logger.info(
                "Human handoff requested",
                extra={"conversation_id": str(updated.id), "key": str(updated.queue_key)},
            )
            self._publish_conversation(NotifierEventKind.CONVERSATION_UPDATED, updated)
            await self._append_note(
                updated.id,
                self._system_draft(
                    "All agents are currently busy. "
                    "You are in queue and will be connected soon."
                ),
            )
            key = updated.queue_key

        await self.dispatcher.dispatch_all(key)
        return self._ticket(conversation_id)

    async def close_conversation(
        self,
        conversation_id: UUID,
        actor: Actor,
        *,
        citizen_session: str | None = None,
    ) -> Conversation:
        freed_agent_id: str | None = None
        async with self._locked_with_queue(conversation_id) as conversation:
            self._ensure_citizen_access(conversation, citizen_session)
            if conversation.state == ConversationState.ACTIVE:
                self._ensure_handler(conversation, actor)

            now = self._clock()
            updated = ConversationLifecycle.close(conversation, now)
            await self.journal.save_conversation(updated)
            self.queue.dequeue(conversation.id)
            self.store.commit(updated, TransitionAction.CLOSE)
            logger.info(
                "Conversation closed",
                extra={
                    "conversation_id": str(conversation.id),
                    "from_state": conversation.state.value,
                    "actor_id": actor.actor_id,
                },
            )

            if conversation.state == ConversationState.ACTIVE:
                freed_agent_id = conversation.agent_id
                if conversation.assigned_at is not None:
                    self.handling_times.record(
                        conversation.queue_key,
                        (now - conversation.assigned_at).total_seconds(),
                    )

            self._publish_conversation(NotifierEventKind.CONVERSATION_UPDATED, updated)
            await self._append_note(
                updated.id,
                self._system_draft(
                    f"Conversation closed by {self._actor_name(conversation, actor)}."
                ),
            )

        if freed_agent_id is not None:
            await self.dispatcher.dispatch_for_agent(freed_agent_id)
        return self.store.require(conversation_id)

    async def transfer_to_agent(
        self,
        conversation_id: UUID,
        target_agent_id: str,
        actor: Actor,
    ) -> Conversation:
        async with self.store.lock(conversation_id):
            conversation = self.store.require(conversation_id)
            now = self._clock()
            updated = ConversationLifecycle.transfer_to_agent(
                conversation, target_agent_id, now
            )
            self._ensure_handler(conversation, actor)
            target = self.presence.require(target_agent_id)

            async with self.presence.lock(target_agent_id):
                if not self.presence.is_eligible(target_agent_id):
                    raise AgentUnavailableError(target_agent_id)
                await self.journal.save_conversation(updated)
                self.store.commit(updated, TransitionAction.TRANSFER_TO_AGENT)

            logger.info(
                "Conversation transferred to agent",
                extra={
                    "conversation_id": str(conversation.id),
                    "from_agent_id": conversation.agent_id,
                    "agent_id": target_agent_id,
                },
            )
            self._publish_conversation(NotifierEventKind.CONVERSATION_UPDATED, updated)
            await self._append_note(
                updated.id,
                self._system_draft(
                    f"Conversation transferred from {self._agent_name(conversation.agent_id)} "
                    f"to {target.display_name}."
                ),
            )
            previous_agent_id = conversation.agent_id

        if previous_agent_id is not None:
            await self.dispatcher.dispatch_for_agent(previous_agent_id)
        return self.store.require(conversation_id)

    async def transfer_to_department(
        self,
        conversation_id: UUID,
        department_id: str,
        actor: Actor,
        service_id: str | None = None,
    ) -> ConversationTicket:
        self._validate_destination(department_id, service_id)
        key = QueueKey(department_id, service_id)

        async with self.queue.lock(key):
            async with self.store.lock(conversation_id):
                conversation = self.store.require(conversation_id)
                now = self._clock()
                updated = ConversationLifecycle.transfer_to_department(
                    conversation, department_id, service_id, now
                )
                self._ensure_handler(conversation, actor)
                await self.journal.save_conversation(updated)
                self.store.commit(updated, TransitionAction.TRANSFER_TO_DEPARTMENT)
                self.queue.enqueue(updated.id, key, now)
                logger.info(
                    "Conversation transferred to department",
                    extra={
                        "conversation_id": str(conversation.id),
                        "from_agent_id": conversation.agent_id,
                        "key": str(key),
                    },
                )
                self._publish_conversation(
                    NotifierEventKind.CONVERSATION_UPDATED, updated
                )
                await self._append_note(
                    updated.id,
                    self._system_draft(
                        f"Conversation transferred to {self._destination_name(key)}. "
                        "An agent will join shortly."
                    ),
                )
                previous_agent_id = conversation.agent_id

        await self.dispatcher.dispatch_all(key)
        if previous_agent_id is not None:
            await self.dispatcher.dispatch_for_agent(previous_agent_id)
        return self._ticket(conversation_id)

    async def record_inactivity_warning(
        self, conversation_id: UUID, actor: Actor
    ) -> Conversation:
        async with self.store.lock(conversation_id):
            conversation = self.store.require(conversation_id)
            updated = ConversationLifecycle.warn(conversation)
            if conversation.state == ConversationState.ACTIVE:
                self._ensure_handler(conversation, actor)
            await self.journal.save_conversation(updated)
            self.store.commit(updated)
            self._publish_conversation(NotifierEventKind.CONVERSATION_UPDATED, updated)
            await self._append_note(
                updated.id,
                self._system_draft(
                    "Are you still there? "
                    "This conversation will be closed if there is no reply."
                ),
            )
        return self.store.require(conversation_id)

    def get_conversation(
        self,
        conversation_id: UUID,
        *,
        citizen_session: str | None = None,
    ) -> Conversation:
        conversation = self.store.require(conversation_id)
        self._ensure_citizen_access(conversation, citizen_session)
        return conversation

    def list_conversations(
        self,
        *,
        state: ConversationState | None = None,
        agent_id: str | None = None,
        department_id: str | None = None,
        limit: int | None = None,
    ) -> list[Conversation]:
        return self.store.list(
            state=state, agent_id=agent_id, department_id=department_id, limit=limit
        )

    # Messages

    async def append_message(
        self,
        conversation_id: UUID,
        draft: MessageDraft,
        *,
        citizen_session: str | None = None,
    ) -> AppendResult:
        async with self.store.lock(conversation_id):
            conversation = self.store.require(conversation_id)
            self._ensure_citizen_access(conversation, citizen_session)
            self._ensure_sender(conversation, draft)

            message, created = await self._append_locked(conversation_id, draft)
            bot_reply: Message | None = None
            if (
                created
                and conversation.is_bot
                and not conversation.is_read_only
                and draft.sender_role == SenderRole.USER
            ):
                bot_reply = await self._append_note(
                    conversation_id, self.bot.reply(conversation, message.content)
                )

        return AppendResult(
            conversation=self.store.require(conversation_id),
            message=message,
            created=created,
            bot_reply=bot_reply,
        )

    async def update_message_status(
        self,
        message_id: UUID,
        status: MessageStatus,
        *,
        citizen_session: str | None = None,
    ) -> Message:
        conversation_id = self.messages.require(message_id).conversation_id
        async with self.store.lock(conversation_id):
            conversation = self.store.require(conversation_id)
            self._ensure_citizen_access(conversation, citizen_session)
            current = self.messages.require(message_id)
            updated = advance_status(current, status)
            if updated is None:
                return current
            await self.journal.save_message(updated)
            self.messages.record(updated)
            self._publish_message(NotifierEventKind.MESSAGE_STATUS_CHANGED, updated)
            return updated

    def list_messages(
        self,
        conversation_id: UUID,
        *,
        after_sequence: int = 0,
        limit: int | None = None,
        citizen_session: str | None = None,
    ) -> list[Message]:
        self.get_conversation(conversation_id, citizen_session=citizen_session)
        return self.messages.list(
            conversation_id, after_sequence=after_sequence, limit=limit
        )

    # Queue

    def queue_position_of(
        self,
        conversation_id: UUID,
        *,
        citizen_session: str | None = None,
    ) -> QueueEntry | None:
        self.get_conversation(conversation_id, citizen_session=citizen_session)
        return self.queue.entry(conversation_id)

    def queue_snapshot(self, key: QueueKey) -> list[QueueEntry]:
        return self.queue.entries(key)

    def queued_for_agent(self, agent_id: str) -> list[QueueEntry]:
        return [
            entry
            for key in self.presence.served_keys(agent_id, self.queue.keys())
            for entry in self.queue.entries(key)
        ]

    async def sweep(self) -> list[DispatchResult]:
        return await self.dispatcher.sweep()

    # Realtime

    def subscribe(self, topic: str) -> Subscription:
        return self.notifier.subscribe(topic)

    # Startup

    async def restore(self, snapshot: JournalSnapshot) -> None:
        """Rebuild engine state from persisted records.

        Agents come back offline; waiting conversations re-enter their queues
        in ``waiting_since`` order.
        """
        offline = [
            replace(presence, status=PresenceStatus.OFFLINE)
            for presence in snapshot.agents
        ]
        for presence in offline:
            await self.journal.save_agent(presence)

        self.presence.restore(offline)
        self.store.restore(snapshot.conversations)
        self.messages.restore(snapshot.messages)
        self.queue.restore(
            (
                conversation.id,
                conversation.queue_key,
                conversation.waiting_since or conversation.started_at,
            )
            for conversation in snapshot.conversations
            if conversation.expects_queue_slot
        )

        history = sorted(
            (
                conversation
                for conversation in snapshot.conversations
                if conversation.assigned_at is not None
                and conversation.closed_at is not None
            ),
            key=lambda conversation: conversation.closed_at,
        )
        for conversation in history:
            self.handling_times.record(
                conversation.queue_key,
                (conversation.closed_at - conversation.assigned_at).total_seconds(),
            )

        logger.info(
            "Engine state restored",
            extra={
                "agents": len(offline),
                "conversations": len(self.store),
                "queued": len(self.queue),
            },
        )

    # Internals

    @asynccontextmanager
    async def _locked_with_queue(
        self, conversation_id: UUID
    ) -> AsyncIterator[Conversation]:
        # The queue key lock comes first, so the key is read before locking the
        # conversation and confirmed once both are held.
        while True:
            key = self.store.require(conversation_id).queue_key
            async with self.queue.lock(key):
                async with self.store.lock(conversation_id):
                    conversation = self.store.require(conversation_id)
                    if conversation.queue_key != key:
                        continue
                    yield conversation
                    return

    async def _append_locked(
        self, conversation_id: UUID, draft: MessageDraft
    ) -> tuple[Message, bool]:
        conversation = self.store.require(conversation_id)
        message, created = self.messages.prepare(conversation, draft, self._clock())
        if not created:
            return message, False

        await self.journal.save_message(message)
        self.messages.record(message)
        self._publish_message(NotifierEventKind.MESSAGE_APPENDED, message)

        if not conversation.is_read_only:
            touched = ConversationLifecycle.touch(
                conversation,
                message.timestamp,
                reset_warnings=draft.sender_role != SenderRole.SYSTEM,
            )
            if touched is not conversation:
                await self.journal.save_conversation(touched)
                self.store.commit(touched)
                self._publish_conversation(
                    NotifierEventKind.CONVERSATION_UPDATED, touched
                )
        return message, True

    async def _append_note(
        self, conversation_id: UUID, draft: MessageDraft
    ) -> Message | None:
        """Append a message after a transition has already been committed.

        The transition stands even when the note cannot be stored, so a
        failure is logged instead of raised.
        """
        try:
            message, _ = await self._append_locked(conversation_id, draft)
        except Exception:
            logger.error(
                "Failed to append message after commit",
                exc_info=True,
                extra={
                    "conversation_id": str(conversation_id),
                    "sender_role": draft.sender_role.value,
                },
            )
            return None
        return message

    async def _on_assigned(
        self, conversation: Conversation, agent: AgentPresence
    ) -> None:
        self._publish_conversation(NotifierEventKind.CONVERSATION_UPDATED, conversation)
        await self._append_note(conversation.id, self._joined_draft(agent))

    def _ticket(self, conversation_id: UUID) -> ConversationTicket:
        return ConversationTicket(
            conversation=self.store.require(conversation_id),
            queue_entry=self.queue.entry(conversation_id),
            messages=self.messages.list(conversation_id),
        )

    def _validate_destination(
        self, department_id: str | None, service_id: str | None
    ) -> None:
        if department_id is not None and not self.org.department_exists(department_id):
            raise UnknownDepartmentError(department_id)
        if service_id is not None and not self.org.service_exists(
            service_id, department_id
        ):
            raise UnknownServiceError(service_id, department_id)

    @staticmethod
    def _ensure_citizen_access(
        conversation: Conversation, citizen_session: str | None
    ) -> None:
        if citizen_session is None:
            return
        if conversation.citizen.session_token != citizen_session:
            raise ConversationAccessDeniedError(conversation.id, "citizen")

    @staticmethod
    def _ensure_handler(conversation: Conversation, actor: Actor) -> None:
        if actor.role.is_administrative:
            return
        if conversation.agent_id is None or conversation.agent_id != actor.actor_id:
            raise ConversationAccessDeniedError(conversation.id, actor.actor_id)

    @staticmethod
    def _ensure_sender(conversation: Conversation, draft: MessageDraft) -> None:
        if conversation.is_read_only and draft.sender_role != SenderRole.SYSTEM:
            raise ConversationClosedError(conversation.id)
        if draft.sender_role == SenderRole.AGENT and draft.sender_id != conversation.agent_id:
            raise ConversationAccessDeniedError(conversation.id, draft.sender_id)

    def _agent_name(self, agent_id: str | None) -> str:
        if agent_id is None:
            return "an agent"
        presence = self.presence.get(agent_id)
        if presence is None:
            return agent_id
        return presence.display_name

    def _actor_name(self, conversation: Conversation, actor: Actor) -> str:
        if actor.role == ActorRole.USER:
            return conversation.citizen.display_name
        if actor.role == ActorRole.SYSTEM:
            return "the system"
        return self._agent_name(actor.actor_id)

    @staticmethod
    def _destination_name(key: QueueKey) -> str:
        if key.service_id is not None:
            return f"service {key.service_id}"
        return f"department {key.department_id}"

    @staticmethod
    def _joined_draft(agent: AgentPresence) -> MessageDraft:
        return ChatService._system_draft(
            f"{agent.display_name} is connected. You can continue typing your message."
        )

    @staticmethod
    def _system_draft(content: str) -> MessageDraft:
        return MessageDraft(
            sender_id=SYSTEM_SENDER_ID,
            sender_name=SYSTEM_SENDER_NAME,
            sender_role=SenderRole.SYSTEM,
            content=content,
            type=MessageType.SYSTEM,
        )

    def _publish_conversation(
        self, kind: NotifierEventKind, conversation: Conversation
    ) -> None:
        self._safe_publish(
            NotifierEvent(
                kind=kind,
                payload={"conversation": self.conversation_payload(conversation)},
                conversation_id=conversation.id,
            )
        )

    def _publish_message(self, kind: NotifierEventKind, message: Message) -> None:
        self._safe_publish(
            NotifierEvent(
                kind=kind,
                payload={
                    "conversation_id": str(message.conversation_id),
                    "message": self.message_payload(message),
                },
                conversation_id=message.conversation_id,
            )
        )

    def _publish_presence(self, presence: AgentPresence) -> None:
        self._safe_publish(
            NotifierEvent(
                kind=NotifierEventKind.AGENT_PRESENCE_CHANGED,
                payload={"agent": self.presence_payload(presence)},
            )
        )

    def _safe_publish(self, event: NotifierEvent) -> None:
        try:
            self.notifier.publish(event)
        except Exception:
            logger.warning(
                "Notifier publish failed", exc_info=True, extra={"event": event.kind.value}
            )

    @staticmethod
    def conversation_payload(conversation: Conversation) -> dict[str, Any]:
        return {
            "id": str(conversation.id),
            "citizen_name": conversation.citizen.display_name,
            "state": conversation.state.value,
            "department_id": conversation.department_id,
            "service_id": conversation.service_id,
            "agent_id": conversation.agent_id,
            "is_bot": conversation.is_bot,
            "inactivity_warnings": conversation.inactivity_warnings,
            "started_at": conversation.started_at.isoformat(),
            "last_message_at": conversation.last_message_at.isoformat(),
            "waiting_since": (
                conversation.waiting_since.isoformat()
                if conversation.waiting_since is not None
                else None
            ),
            "closed_at": (
                conversation.closed_at.isoformat()
                if conversation.closed_at is not None
                else None
            ),
            "version": conversation.version,
        }

    @staticmethod
    def message_payload(message: Message) -> dict[str, Any]:
        return {
            "id": str(message.id),
            "conversation_id": str(message.conversation_id),
            "sequence": message.sequence,
            "sender_id": message.sender_id,
            "sender_name": message.sender_name,
            "sender_role": message.sender_role.value,
            "type": message.type.value,
            "content": message.content,
            "status": message.status.value,
            "file_url": message.file_url,
            "file_name": message.file_name,
            "timestamp": message.timestamp.isoformat(),
        }

    def presence_payload(self, presence: AgentPresence) -> dict[str, Any]:
        return {
            "agent_id": presence.agent_id,
            "display_name": presence.display_name,
            "role": presence.role.value,
            "department_id": presence.department_id,
            "status": presence.status.value,
            "max_concurrent_chats": presence.max_concurrent_chats,
            "current_active_count": self.presence.current_active_count(presence.agent_id),
        }
