from datetime import UTC, datetime
from uuid import uuid4

import pytest

from citizen_chat.domain.enums import ConversationState, PresenceStatus, SenderRole
from citizen_chat.domain.exceptions import InvalidTransition
from citizen_chat.domain.models import CitizenRef, Conversation, MessageDraft
from citizen_chat.infra.org.directory import (
    DepartmentEntry,
    OrgDirectoryDocument,
    QuestionAnswer,
    ServiceEntry,
    StaticOrgDirectory,
)
from citizen_chat.services.bot_service import BOT_SENDER_ID, ScriptedBot
from citizen_chat.services.chat_service import ChatService
from citizen_chat.services.errors import ConversationAccessDeniedError

NOW = datetime(2026, 3, 1, 9, 0, tzinfo=UTC)

QUESTIONS = [
    QuestionAnswer(
        question="How do I book a vaccine?",
        answer="Book online at the health portal or call 156.",
    ),
    QuestionAnswer(
        question="Which documents do I need?",
        answer="Bring an ID document and your vaccination card.",
    ),
]


def _org() -> StaticOrgDirectory:
    return StaticOrgDirectory(
        OrgDirectoryDocument(
            departments=[
                DepartmentEntry(
                    id="health",
                    services=[ServiceEntry(id="vaccines", questions=QUESTIONS)],
                ),
                DepartmentEntry(id="taxes"),
            ]
        )
    )


def _conversation(department_id: str | None, service_id: str | None) -> Conversation:
    return Conversation(
        id=uuid4(),
        citizen=CitizenRef(display_name="Maria"),
        state=ConversationState.WAITING,
        started_at=NOW,
        last_message_at=NOW,
        department_id=department_id,
        service_id=service_id,
        is_bot=True,
    )


def _citizen_draft(content: str) -> MessageDraft:
    return MessageDraft(
        sender_id="citizen",
        sender_name="Maria",
        sender_role=SenderRole.USER,
        content=content,
    )


def test_bot_answers_exact_question_ignoring_case() -> None:
    bot = ScriptedBot(_org())
    reply = bot.reply(_conversation("health", "vaccines"), "  how do I BOOK a vaccine? ")

    assert reply.content == "Book online at the health portal or call 156."
    assert reply.sender_id == BOT_SENDER_ID
    assert reply.sender_role == SenderRole.SYSTEM


def test_bot_suggests_known_questions_when_unmatched() -> None:
    bot = ScriptedBot(_org(), prompt_limit=1)
    reply = bot.reply(_conversation("health", None), "opening hours?")

    assert reply.content == (
        "I can help with common questions. Try one of these: How do I book a vaccine?."
    )


def test_bot_without_questions_points_to_an_agent() -> None:
    bot = ScriptedBot(_org())
    reply = bot.reply(_conversation("taxes", None), "hello")

    assert "Ask to talk to an agent" in reply.content


@pytest.mark.asyncio
async def test_bot_session_has_no_queue_slot_until_handoff() -> None:
    service = ChatService(org=_org())
    await service.register_agent("nurse", "Nurse Joy", department_id="health")
    await service.set_agent_status("nurse", PresenceStatus.ONLINE)

    ticket = await service.create_conversation(
        CitizenRef(display_name="Maria"),
        department_id="health",
        service_id="vaccines",
        bot=True,
    )

    assert ticket.conversation.state == ConversationState.WAITING
    assert ticket.conversation.is_bot
    assert ticket.queue_entry is None
    assert ticket.messages[0].content.startswith("Hi Maria! I am the virtual assistant.")
    assert service.presence.current_active_count("nurse") == 0


@pytest.mark.asyncio
async def test_citizen_message_in_bot_session_gets_scripted_reply() -> None:
    service = ChatService(org=_org())
    ticket = await service.create_conversation(
        CitizenRef(display_name="Maria"),
        department_id="health",
        service_id="vaccines",
        bot=True,
    )

    result = await service.append_message(
        ticket.conversation.id,
        _citizen_draft("Which documents do I need?"),
        citizen_session=ticket.conversation.citizen.session_token,
    )

    assert result.bot_reply is not None
    assert result.bot_reply.content == "Bring an ID document and your vaccination card."
    assert result.bot_reply.sequence == result.message.sequence + 1


@pytest.mark.asyncio
async def test_handoff_queues_and_dispatches_to_online_agent() -> None:
    service = ChatService(org=_org())
    await service.register_agent("nurse", "Nurse Joy", department_id="health")
    await service.set_agent_status("nurse", PresenceStatus.ONLINE)
    ticket = await service.create_conversation(
        CitizenRef(display_name="Maria"),
        department_id="health",
        service_id="vaccines",
        bot=True,
    )

    handed_off = await service.request_handoff(
        ticket.conversation.id,
        citizen_session=ticket.conversation.citizen.session_token,
    )

    conversation = handed_off.conversation
    assert conversation.state == ConversationState.ACTIVE
    assert conversation.agent_id == "nurse"
    assert not conversation.is_bot
    contents = [message.content for message in handed_off.messages]
    assert "All agents are currently busy. You are in queue and will be connected soon." in contents
    assert contents[-1] == "Nurse Joy is connected. You can continue typing your message."


@pytest.mark.asyncio
async def test_handoff_without_agents_waits_in_queue() -> None:
    service = ChatService(org=_org())
    ticket = await service.create_conversation(
        CitizenRef(display_name="Maria"), department_id="health", bot=True
    )

    handed_off = await service.request_handoff(ticket.conversation.id)

    assert handed_off.conversation.state == ConversationState.WAITING
    assert handed_off.queue_entry.position == 1

    after = await service.append_message(ticket.conversation.id, _citizen_draft("hello?"))
    assert after.bot_reply is None


@pytest.mark.asyncio
async def test_handoff_is_rejected_twice_and_for_other_sessions() -> None:
    service = ChatService(org=_org())
    ticket = await service.create_conversation(
        CitizenRef(display_name="Maria"), department_id="health", bot=True
    )

    with pytest.raises(ConversationAccessDeniedError):
        await service.request_handoff(ticket.conversation.id, citizen_session="intruder")

    await service.request_handoff(ticket.conversation.id)
    with pytest.raises(InvalidTransition):
        await service.request_handoff(ticket.conversation.id)
    assert len(service.queue) == 1
