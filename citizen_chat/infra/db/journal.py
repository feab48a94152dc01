"""Write-ahead persistence of engine records.

The engine keeps its working state in memory. When persistence is enabled
every record is written here first, inside the same lock that guards the
in-memory commit, so a failed write leaves memory untouched.
"""

from dataclasses import dataclass, field
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from citizen_chat.domain.models import AgentPresence, CitizenRef, Conversation, Message
from citizen_chat.infra.db.models import AgentRecord, ConversationRecord, MessageRecord


class ConversationJournal(Protocol):
    async def save_conversation(self, conversation: Conversation) -> None: ...

    async def save_message(self, message: Message) -> None: ...

    async def save_agent(self, presence: AgentPresence) -> None: ...


@dataclass(slots=True)
class JournalSnapshot:
    agents: list[AgentPresence] = field(default_factory=list)
    conversations: list[Conversation] = field(default_factory=list)
    messages: list[Message] = field(default_factory=list)


class NullJournal:
    async def save_conversation(self, conversation: Conversation) -> None:
        return None

    async def save_message(self, message: Message) -> None:
        return None

    async def save_agent(self, presence: AgentPresence) -> None:
        return None


class SqlJournal:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def save_conversation(self, conversation: Conversation) -> None:
        async with self.session_factory() as session:
            await session.merge(conversation_to_record(conversation))
            await session.commit()

    async def save_message(self, message: Message) -> None:
        async with self.session_factory() as session:
            await session.merge(message_to_record(message))
            await session.commit()

    async def save_agent(self, presence: AgentPresence) -> None:
        async with self.session_factory() as session:
            await session.merge(agent_to_record(presence))
            await session.commit()

    async def load(self) -> JournalSnapshot:
        async with self.session_factory() as session:
            agents = (await session.scalars(select(AgentRecord))).all()
            conversations = (await session.scalars(select(ConversationRecord))).all()
            messages = (
                await session.scalars(
                    select(MessageRecord).order_by(
                        MessageRecord.conversation_id, MessageRecord.sequence
                    )
                )
            ).all()
        return JournalSnapshot(
            agents=[agent_from_record(record) for record in agents],
            conversations=[conversation_from_record(record) for record in conversations],
            messages=[message_from_record(record) for record in messages],
        )


def agent_to_record(presence: AgentPresence) -> AgentRecord:
    return AgentRecord(
        agent_id=presence.agent_id,
        display_name=presence.display_name,
        role=presence.role,
        department_id=presence.department_id,
        secretary_id=presence.secretary_id,
        presence=presence.status,
        max_concurrent_chats=presence.max_concurrent_chats,
        presence_changed_at=presence.updated_at,
    )


def agent_from_record(record: AgentRecord) -> AgentPresence:
    return AgentPresence(
        agent_id=record.agent_id,
        display_name=record.display_name,
        max_concurrent_chats=record.max_concurrent_chats,
        status=record.presence,
        role=record.role,
        department_id=record.department_id,
        secretary_id=record.secretary_id,
        updated_at=record.presence_changed_at,
    )


def conversation_to_record(conversation: Conversation) -> ConversationRecord:
    return ConversationRecord(
        id=conversation.id,
        citizen_display_name=conversation.citizen.display_name,
        citizen_tax_id=conversation.citizen.tax_id,
        citizen_session_token=conversation.citizen.session_token,
        state=conversation.state,
        department_id=conversation.department_id,
        service_id=conversation.service_id,
        agent_id=conversation.agent_id,
        is_bot=conversation.is_bot,
        inactivity_warnings=conversation.inactivity_warnings,
        started_at=conversation.started_at,
        last_message_at=conversation.last_message_at,
        waiting_since=conversation.waiting_since,
        assigned_at=conversation.assigned_at,
        closed_at=conversation.closed_at,
        version=conversation.version,
    )


def conversation_from_record(record: ConversationRecord) -> Conversation:
    return Conversation(
        id=record.id,
        citizen=CitizenRef(
            display_name=record.citizen_display_name,
            tax_id=record.citizen_tax_id,
            session_token=record.citizen_session_token,
        ),
        state=record.state,
        started_at=record.started_at,
        last_message_at=record.last_message_at,
        department_id=record.department_id,
        service_id=record.service_id,
        agent_id=record.agent_id,
        is_bot=record.is_bot,
        inactivity_warnings=record.inactivity_warnings,
        waiting_since=record.waiting_since,
        assigned_at=record.assigned_at,
        closed_at=record.closed_at,
        version=record.version,
    )


def message_to_record(message: Message) -> MessageRecord:
    return MessageRecord(
        id=message.id,
        conversation_id=message.conversation_id,
        sequence=message.sequence,
        sender_id=message.sender_id,
        sender_name=message.sender_name,
        sender_role=message.sender_role,
        type=message.type,
        content=message.content,
        status=message.status,
        file_url=message.file_url,
        file_name=message.file_name,
        timestamp=message.timestamp,
    )


def message_from_record(record: MessageRecord) -> Message:
    return Message(
        id=record.id,
        conversation_id=record.conversation_id,
        sequence=record.sequence,
        sender_id=record.sender_id,
        sender_name=record.sender_name,
        sender_role=record.sender_role,
        type=record.type,
        content=record.content,
        timestamp=record.timestamp,
        status=record.status,
        file_url=record.file_url,
        file_name=record.file_name,
    )
