import asyncio
from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest

from citizen_chat.domain.enums import (
    ActorRole,
    ConversationState,
    MessageStatus,
    MessageType,
    PresenceStatus,
    SenderRole,
)
from citizen_chat.domain.exceptions import InvalidTransition
from citizen_chat.domain.models import Actor, CitizenRef, MessageDraft, QueueKey
from citizen_chat.infra.org.directory import (
    DepartmentEntry,
    OrgDirectoryDocument,
    ServiceEntry,
    StaticOrgDirectory,
)
from citizen_chat.infra.realtime.events import NotifierEventKind
from citizen_chat.infra.realtime.topics import CONVERSATIONS_TOPIC, conversation_topic
from citizen_chat.services.chat_service import ChatService
from citizen_chat.services.errors import (
    AgentUnavailableError,
    ConversationAccessDeniedError,
    ConversationClosedError,
    UnknownDepartmentError,
    UnknownServiceError,
)

START = datetime(2026, 3, 1, 9, 0, tzinfo=UTC)
HEALTH = QueueKey("health", None)
TAXES = QueueKey("taxes", None)


class FakeClock:
    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class YieldingJournal:
    def __init__(self) -> None:
        self.conversations = []
        self.messages = []
        self.agents = []

    async def save_conversation(self, conversation) -> None:
        await asyncio.sleep(0)
        self.conversations.append(conversation)

    async def save_message(self, message) -> None:
        await asyncio.sleep(0)
        self.messages.append(message)

    async def save_agent(self, presence) -> None:
        await asyncio.sleep(0)
        self.agents.append(presence)


def _org() -> StaticOrgDirectory:
    return StaticOrgDirectory(
        OrgDirectoryDocument(
            departments=[
                DepartmentEntry(
                    id="health",
                    secretary_id="sec-social",
                    services=[ServiceEntry(id="vaccines")],
                ),
                DepartmentEntry(id="taxes", secretary_id="sec-finance"),
            ]
        )
    )


def _service(**overrides) -> tuple[ChatService, FakeClock]:
    clock = FakeClock()
    values = {"org": _org(), "clock": clock}
    values.update(overrides)
    return ChatService(**values), clock


def _citizen(name: str = "Maria") -> CitizenRef:
    return CitizenRef(display_name=name)


def _citizen_draft(content: str = "hello", **overrides) -> MessageDraft:
    values = {
        "sender_id": "citizen",
        "sender_name": "Maria",
        "sender_role": SenderRole.USER,
        "content": content,
    }
    values.update(overrides)
    return MessageDraft(**values)


def _agent_draft(agent_id: str, content: str = "How can I help?") -> MessageDraft:
    return MessageDraft(
        sender_id=agent_id,
        sender_name=agent_id.title(),
        sender_role=SenderRole.AGENT,
        content=content,
    )


async def _online_agent(
    service: ChatService, agent_id: str, department_id: str | None = "health", capacity: int = 2
) -> None:
    await service.register_agent(
        agent_id,
        agent_id.title(),
        department_id=department_id,
        max_concurrent_chats=capacity,
    )
    await service.set_agent_status(agent_id, PresenceStatus.ONLINE)


@pytest.mark.asyncio
async def test_waiting_conversation_is_assigned_when_agent_comes_online() -> None:
    service, _ = _service()
    ticket = await service.create_conversation(_citizen(), department_id="health")
    assert ticket.conversation.state == ConversationState.WAITING
    assert ticket.queue_entry.position == 1

    await service.register_agent("ana", "Ana", department_id="health")
    assert service.get_conversation(ticket.conversation.id).state == ConversationState.WAITING

    await service.set_agent_status("ana", PresenceStatus.ONLINE)

    conversation = service.get_conversation(ticket.conversation.id)
    assert conversation.state == ConversationState.ACTIVE
    assert conversation.agent_id == "ana"
    assert service.queue_position_of(conversation.id) is None
    assert service.presence.current_active_count("ana") == 1
    joined = service.list_messages(conversation.id)[-1]
    assert joined.type == MessageType.SYSTEM
    assert joined.content == "Ana is connected. You can continue typing your message."


@pytest.mark.asyncio
async def test_transfer_to_unstaffed_department_waits_at_the_tail() -> None:
    service, clock = _service()
    await _online_agent(service, "ana")
    already_waiting = await service.create_conversation(_citizen("Joao"), department_id="taxes")

    clock.advance(60)
    ticket = await service.create_conversation(_citizen(), department_id="health")
    assert ticket.conversation.agent_id == "ana"

    clock.advance(60)
    transferred = await service.transfer_to_department(
        ticket.conversation.id, "taxes", Actor("ana", ActorRole.AGENT)
    )

    conversation = transferred.conversation
    assert conversation.state == ConversationState.WAITING
    assert conversation.agent_id is None
    assert conversation.department_id == "taxes"
    assert conversation.waiting_since == clock.now
    assert transferred.queue_entry.key == TAXES
    assert transferred.queue_entry.position == 2
    assert service.queue_position_of(already_waiting.conversation.id).position == 1
    assert service.presence.current_active_count("ana") == 0
    assert service.list_messages(conversation.id)[-1].content == (
        "Conversation transferred to department taxes. An agent will join shortly."
    )


@pytest.mark.asyncio
async def test_closing_waiting_conversation_removes_queue_entry() -> None:
    service, _ = _service()
    ticket = await service.create_conversation(_citizen(), department_id="health")
    citizen = Actor("citizen", ActorRole.USER)

    closed = await service.close_conversation(
        ticket.conversation.id,
        citizen,
        citizen_session=ticket.conversation.citizen.session_token,
    )

    assert closed.state == ConversationState.CLOSED
    assert closed.closed_at is not None
    assert service.queue_position_of(closed.id) is None
    assert service.queue_snapshot(HEALTH) == []
    assert service.list_messages(closed.id)[-1].content == "Conversation closed by Maria."


@pytest.mark.asyncio
async def test_only_assigned_agent_or_admin_can_close_active() -> None:
    service, _ = _service()
    await _online_agent(service, "ana")
    await _online_agent(service, "bruno")
    ticket = await service.create_conversation(_citizen(), department_id="health")
    owner = ticket.conversation.agent_id
    other = "bruno" if owner == "ana" else "ana"

    with pytest.raises(ConversationAccessDeniedError):
        await service.close_conversation(ticket.conversation.id, Actor(other, ActorRole.AGENT))
    with pytest.raises(ConversationAccessDeniedError):
        await service.close_conversation(
            ticket.conversation.id,
            Actor("citizen", ActorRole.USER),
            citizen_session=ticket.conversation.citizen.session_token,
        )

    closed = await service.close_conversation(
        ticket.conversation.id, Actor("boss", ActorRole.MANAGER)
    )
    assert closed.state == ConversationState.CLOSED

    with pytest.raises(InvalidTransition):
        await service.close_conversation(ticket.conversation.id, Actor(owner, ActorRole.AGENT))


@pytest.mark.asyncio
async def test_close_frees_slot_for_next_in_queue_and_records_handling_time() -> None:
    service, clock = _service()
    await _online_agent(service, "ana", capacity=1)
    first = await service.create_conversation(_citizen(), department_id="health")
    second = await service.create_conversation(_citizen("Joao"), department_id="health")
    assert second.conversation.state == ConversationState.WAITING

    clock.advance(120)
    await service.close_conversation(first.conversation.id, Actor("ana", ActorRole.AGENT))

    promoted = service.get_conversation(second.conversation.id)
    assert promoted.state == ConversationState.ACTIVE
    assert promoted.agent_id == "ana"
    assert service.handling_times.average_handling_seconds(HEALTH) == 120
    assert service.queue.estimate_wait_seconds(1, HEALTH) == 120


@pytest.mark.asyncio
async def test_capacity_increase_dispatches_waiting_conversations() -> None:
    service, _ = _service()
    await _online_agent(service, "ana", capacity=1)
    await service.create_conversation(_citizen(), department_id="health")
    waiting = await service.create_conversation(_citizen("Joao"), department_id="health")

    updated = await service.set_agent_capacity("ana", 2)

    assert updated.max_concurrent_chats == 2
    assert service.get_conversation(waiting.conversation.id).agent_id == "ana"


@pytest.mark.asyncio
async def test_going_on_break_keeps_active_conversations() -> None:
    service, _ = _service()
    await _online_agent(service, "ana")
    active = await service.create_conversation(_citizen(), department_id="health")

    await service.set_agent_status("ana", PresenceStatus.BREAK)
    queued = await service.create_conversation(_citizen("Joao"), department_id="health")

    assert service.get_conversation(active.conversation.id).agent_id == "ana"
    assert queued.conversation.state == ConversationState.WAITING


@pytest.mark.asyncio
async def test_transfer_to_agent_requires_eligible_target() -> None:
    service, _ = _service()
    await _online_agent(service, "ana")
    await service.register_agent("bruno", "Bruno", department_id="health")
    ticket = await service.create_conversation(_citizen(), department_id="health")
    ana = Actor("ana", ActorRole.AGENT)

    with pytest.raises(AgentUnavailableError):
        await service.transfer_to_agent(ticket.conversation.id, "bruno", ana)
    assert service.get_conversation(ticket.conversation.id).agent_id == "ana"

    await service.set_agent_status("bruno", PresenceStatus.ONLINE)
    transferred = await service.transfer_to_agent(ticket.conversation.id, "bruno", ana)

    assert transferred.agent_id == "bruno"
    assert transferred.state == ConversationState.ACTIVE
    assert service.presence.current_active_count("ana") == 0
    assert service.presence.current_active_count("bruno") == 1
    assert service.list_messages(transferred.id)[-1].content == (
        "Conversation transferred from Ana to Bruno."
    )


@pytest.mark.asyncio
async def test_transfer_to_agent_rejects_non_owner() -> None:
    service, _ = _service()
    await _online_agent(service, "ana", capacity=1)
    await _online_agent(service, "bruno", capacity=1)
    ticket = await service.create_conversation(_citizen(), department_id="health")
    owner = ticket.conversation.agent_id
    other = "bruno" if owner == "ana" else "ana"

    with pytest.raises(ConversationAccessDeniedError):
        await service.transfer_to_agent(ticket.conversation.id, other, Actor(other, ActorRole.AGENT))


@pytest.mark.asyncio
async def test_transfer_to_department_validates_destination() -> None:
    service, _ = _service()
    await _online_agent(service, "ana")
    ticket = await service.create_conversation(_citizen(), department_id="health")
    ana = Actor("ana", ActorRole.AGENT)

    with pytest.raises(UnknownDepartmentError):
        await service.transfer_to_department(ticket.conversation.id, "parks", ana)
    with pytest.raises(UnknownServiceError):
        await service.transfer_to_department(
            ticket.conversation.id, "taxes", ana, service_id="vaccines"
        )
    assert service.get_conversation(ticket.conversation.id).agent_id == "ana"


@pytest.mark.asyncio
async def test_direct_agent_request_falls_back_to_queue() -> None:
    service, _ = _service()
    await service.register_agent("ana", "Ana", department_id="health")

    ticket = await service.create_conversation(_citizen(), direct_agent_id="ana")

    assert ticket.conversation.state == ConversationState.WAITING
    assert ticket.queue_entry is not None


@pytest.mark.asyncio
async def test_agent_session_starts_active_or_fails() -> None:
    service, _ = _service()
    await service.register_agent("ana", "Ana", department_id="health")
    ana = Actor("ana", ActorRole.AGENT)

    with pytest.raises(AgentUnavailableError):
        await service.start_agent_session(ana, _citizen())
    assert service.list_conversations() == []

    await service.set_agent_status("ana", PresenceStatus.ONLINE)
    ticket = await service.start_agent_session(ana, _citizen())

    assert ticket.conversation.state == ConversationState.ACTIVE
    assert ticket.conversation.agent_id == "ana"
    assert ticket.queue_entry is None
    assert ticket.messages[0].content.startswith("Ana is connected")


@pytest.mark.asyncio
async def test_unknown_department_is_rejected_on_create() -> None:
    service, _ = _service()

    with pytest.raises(UnknownDepartmentError):
        await service.create_conversation(_citizen(), department_id="parks")
    with pytest.raises(UnknownServiceError):
        await service.create_conversation(
            _citizen(), department_id="taxes", service_id="vaccines"
        )
    assert len(service.queue) == 0


@pytest.mark.asyncio
async def test_inactivity_warnings_reset_on_citizen_reply() -> None:
    service, clock = _service()
    await _online_agent(service, "ana")
    ticket = await service.create_conversation(_citizen(), department_id="health")
    ana = Actor("ana", ActorRole.AGENT)
    session = ticket.conversation.citizen.session_token

    await service.record_inactivity_warning(ticket.conversation.id, ana)
    warned = await service.record_inactivity_warning(ticket.conversation.id, ana)
    assert warned.inactivity_warnings == 2

    clock.advance(5)
    result = await service.append_message(
        ticket.conversation.id, _citizen_draft("still here"), citizen_session=session
    )

    assert result.conversation.inactivity_warnings == 0
    assert result.conversation.last_message_at == clock.now


@pytest.mark.asyncio
async def test_messages_on_closed_conversation_are_rejected() -> None:
    service, _ = _service()
    ticket = await service.create_conversation(_citizen(), department_id="health")
    await service.close_conversation(ticket.conversation.id, Actor.system())

    with pytest.raises(ConversationClosedError):
        await service.append_message(ticket.conversation.id, _citizen_draft())
    with pytest.raises(InvalidTransition):
        await service.record_inactivity_warning(ticket.conversation.id, Actor.system())


@pytest.mark.asyncio
async def test_citizen_session_guards_access() -> None:
    service, _ = _service()
    ticket = await service.create_conversation(_citizen(), department_id="health")

    with pytest.raises(ConversationAccessDeniedError):
        service.get_conversation(ticket.conversation.id, citizen_session="someone-else")
    with pytest.raises(ConversationAccessDeniedError):
        await service.append_message(
            ticket.conversation.id, _citizen_draft(), citizen_session="someone-else"
        )


@pytest.mark.asyncio
async def test_only_assigned_agent_can_post_as_agent() -> None:
    service, _ = _service()
    await _online_agent(service, "ana", capacity=1)
    await _online_agent(service, "bruno", capacity=1)
    ticket = await service.create_conversation(_citizen(), department_id="health")
    owner = ticket.conversation.agent_id
    other = "bruno" if owner == "ana" else "ana"

    with pytest.raises(ConversationAccessDeniedError):
        await service.append_message(ticket.conversation.id, _agent_draft(other))

    result = await service.append_message(ticket.conversation.id, _agent_draft(owner))
    assert result.message.sender_role == SenderRole.AGENT


@pytest.mark.asyncio
async def test_concurrent_appends_get_contiguous_sequences() -> None:
    journal = YieldingJournal()
    service, _ = _service(journal=journal)
    ticket = await service.create_conversation(_citizen(), department_id="health")
    before = len(service.list_messages(ticket.conversation.id))

    results = await asyncio.gather(
        *(
            service.append_message(ticket.conversation.id, _citizen_draft(f"m{index}"))
            for index in range(20)
        )
    )

    sequences = sorted(result.message.sequence for result in results)
    assert sequences == list(range(before + 1, before + 21))
    logged = service.list_messages(ticket.conversation.id)
    assert [message.sequence for message in logged] == list(range(1, len(logged) + 1))
    assert len(journal.messages) == len(logged)


@pytest.mark.asyncio
async def test_redelivered_message_is_not_duplicated() -> None:
    service, _ = _service()
    ticket = await service.create_conversation(_citizen(), department_id="health")
    draft = _citizen_draft(message_id=uuid4())

    first = await service.append_message(ticket.conversation.id, draft)
    again = await service.append_message(ticket.conversation.id, draft)

    assert first.created
    assert not again.created
    assert again.message.id == first.message.id
    assert len(service.list_messages(ticket.conversation.id)) == 1


@pytest.mark.asyncio
async def test_message_status_moves_forward_only() -> None:
    service, _ = _service()
    ticket = await service.create_conversation(_citizen(), department_id="health")
    sent = await service.append_message(ticket.conversation.id, _citizen_draft())

    read = await service.update_message_status(sent.message.id, MessageStatus.READ)
    unchanged = await service.update_message_status(sent.message.id, MessageStatus.READ)

    assert read.status == MessageStatus.READ
    assert unchanged == read
    with pytest.raises(ValueError):
        await service.update_message_status(sent.message.id, MessageStatus.DELIVERED)


@pytest.mark.asyncio
async def test_failed_journal_write_leaves_state_unchanged() -> None:
    class FailingJournal(YieldingJournal):
        fail = False

        async def save_conversation(self, conversation) -> None:
            if self.fail:
                raise RuntimeError("database unavailable")
            await super().save_conversation(conversation)

    journal = FailingJournal()
    service, _ = _service(journal=journal)
    await _online_agent(service, "ana")
    ticket = await service.create_conversation(_citizen(), department_id="health")
    before = service.get_conversation(ticket.conversation.id)

    journal.fail = True
    with pytest.raises(RuntimeError):
        await service.close_conversation(ticket.conversation.id, Actor("ana", ActorRole.AGENT))

    assert service.get_conversation(ticket.conversation.id) == before
    assert service.presence.current_active_count("ana") == 1


@pytest.mark.asyncio
async def test_lifecycle_events_are_published_in_commit_order() -> None:
    service, _ = _service()
    feed = service.subscribe(CONVERSATIONS_TOPIC)
    ticket = await service.create_conversation(_citizen(), department_id="health")
    stream = service.subscribe(conversation_topic(ticket.conversation.id))

    await _online_agent(service, "ana")

    created = await feed.get()
    assert created.kind == NotifierEventKind.CONVERSATION_CREATED
    assert created.payload["conversation"]["state"] == "waiting"

    kinds = []
    while stream.pending():
        kinds.append((await stream.get()).kind)
    assert kinds[0] == NotifierEventKind.CONVERSATION_UPDATED
    assert NotifierEventKind.MESSAGE_APPENDED in kinds

    states = []
    while feed.pending():
        event = await feed.get()
        states.append(event.payload["conversation"]["state"])
    assert states[0] == "active"


@pytest.mark.asyncio
async def test_queued_for_agent_lists_only_served_queues() -> None:
    service, _ = _service()
    await service.register_agent("ana", "Ana", department_id="health")
    health = await service.create_conversation(_citizen(), department_id="health")
    await service.create_conversation(_citizen("Joao"), department_id="taxes")

    entries = service.queued_for_agent("ana")

    assert [entry.conversation_id for entry in entries] == [health.conversation.id]


@pytest.mark.asyncio
async def test_sweep_assigns_leftover_queue_entries() -> None:
    service, _ = _service()
    await service.register_agent("ana", "Ana", department_id="health")
    ticket = await service.create_conversation(_citizen(), department_id="health")
    # Flip presence without going through the service so no dispatch runs.
    service.presence.set_status("ana", PresenceStatus.ONLINE, START)

    results = await service.sweep()

    assert [result.conversation.id for result in results] == [ticket.conversation.id]


@pytest.mark.asyncio
async def test_transfer_after_clock_step_back_still_joins_the_tail() -> None:
    service, clock = _service()
    await _online_agent(service, "ana")
    ticket = await service.create_conversation(_citizen(), department_id="health")
    already_waiting = await service.create_conversation(_citizen("Joao"), department_id="taxes")

    clock.advance(-5)
    transferred = await service.transfer_to_department(
        ticket.conversation.id, "taxes", Actor("ana", ActorRole.AGENT)
    )

    assert transferred.queue_entry.position == 2
    assert service.queue_position_of(ticket.conversation.id).position == 2
    assert service.queue_position_of(already_waiting.conversation.id).position == 1


@pytest.mark.asyncio
async def test_interleaved_senders_keep_their_own_order() -> None:
    journal = YieldingJournal()
    service, _ = _service(journal=journal)
    await _online_agent(service, "ana")
    ticket = await service.create_conversation(_citizen(), department_id="health")
    conversation_id = ticket.conversation.id

    tasks = []
    for index in range(10):
        tasks.append(
            asyncio.create_task(
                service.append_message(conversation_id, _citizen_draft(f"c{index}"))
            )
        )
        tasks.append(
            asyncio.create_task(
                service.append_message(conversation_id, _agent_draft("ana", f"a{index}"))
            )
        )
    await asyncio.gather(*tasks)

    logged = service.list_messages(conversation_id)
    citizen = [m.content for m in logged if m.sender_role == SenderRole.USER]
    agent = [m.content for m in logged if m.sender_role == SenderRole.AGENT]
    assert citizen == [f"c{index}" for index in range(10)]
    assert agent == [f"a{index}" for index in range(10)]
    assert [m.sequence for m in logged] == list(range(1, len(logged) + 1))


@pytest.mark.asyncio
async def test_assignment_stands_when_joined_note_cannot_be_stored() -> None:
    class FailingMessageJournal(YieldingJournal):
        async def save_message(self, message) -> None:
            raise RuntimeError("database unavailable")

    service, _ = _service(journal=FailingMessageJournal())
    first = await service.create_conversation(_citizen(), department_id="health")
    second = await service.create_conversation(_citizen("Joao"), department_id="health")
    await service.register_agent(
        "ana", "Ana", department_id="health", max_concurrent_chats=2
    )

    presence = await service.set_agent_status("ana", PresenceStatus.ONLINE)

    assert presence.status == PresenceStatus.ONLINE
    for ticket in (first, second):
        conversation = service.get_conversation(ticket.conversation.id)
        assert conversation.state == ConversationState.ACTIVE
        assert conversation.agent_id == "ana"
        assert service.list_messages(ticket.conversation.id) == []
    assert service.presence.current_active_count("ana") == 2
    assert len(service.queue) == 0


@pytest.mark.asyncio
async def test_register_agent_rejects_zero_capacity() -> None:
    service, _ = _service()

    with pytest.raises(ValueError):
        await service.register_agent("ana", "Ana", max_concurrent_chats=0)

    assert service.list_agents() == []
