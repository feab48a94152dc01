from datetime import datetime
from uuid import UUID

from pydantic import BaseModel

from citizen_chat.domain.enums import ConversationState
from citizen_chat.domain.models import Conversation, QueueEntry
from citizen_chat.schemas.message import MessageResponse
from citizen_chat.services.chat_service import AppendResult, ConversationTicket


class ConversationResponse(BaseModel):
    id: UUID
    citizen_name: str
    citizen_tax_id: str | None
    state: ConversationState
    department_id: str | None
    service_id: str | None
    agent_id: str | None
    is_bot: bool
    inactivity_warnings: int
    started_at: datetime
    last_message_at: datetime
    waiting_since: datetime | None
    assigned_at: datetime | None
    closed_at: datetime | None

    @classmethod
    def from_domain(cls, conversation: Conversation) -> "ConversationResponse":
        return cls(
            id=conversation.id,
            citizen_name=conversation.citizen.display_name,
            citizen_tax_id=conversation.citizen.tax_id,
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
        )


class QueueEntryResponse(BaseModel):
    conversation_id: UUID
    department_id: str | None
    service_id: str | None
    waiting_since: datetime
    position: int
    estimated_wait_seconds: int

    @classmethod
    def from_domain(cls, entry: QueueEntry) -> "QueueEntryResponse":
        return cls(
            conversation_id=entry.conversation_id,
            department_id=entry.key.department_id,
            service_id=entry.key.service_id,
            waiting_since=entry.waiting_since,
            position=entry.position,
            estimated_wait_seconds=entry.estimated_wait_seconds,
        )


class QueuePositionResponse(BaseModel):
    conversation_id: UUID
    queued: bool
    entry: QueueEntryResponse | None


class QueueSnapshotResponse(BaseModel):
    items: list[QueueEntryResponse]


class ConversationListResponse(BaseModel):
    items: list[ConversationResponse]


class ConversationTicketResponse(BaseModel):
    conversation: ConversationResponse
    queue_entry: QueueEntryResponse | None
    messages: list[MessageResponse]

    @classmethod
    def from_ticket(cls, ticket: ConversationTicket) -> "ConversationTicketResponse":
        return cls(
            conversation=ConversationResponse.from_domain(ticket.conversation),
            queue_entry=(
                QueueEntryResponse.from_domain(ticket.queue_entry)
                if ticket.queue_entry is not None
                else None
            ),
            messages=[MessageResponse.model_validate(message) for message in ticket.messages],
        )


class ConversationMessagesResponse(BaseModel):
    conversation: ConversationResponse
    messages: list[MessageResponse]


class MessageExchangeResponse(BaseModel):
    conversation: ConversationResponse
    message: MessageResponse
    created: bool
    bot_reply: MessageResponse | None

    @classmethod
    def from_result(cls, result: AppendResult) -> "MessageExchangeResponse":
        return cls(
            conversation=ConversationResponse.from_domain(result.conversation),
            message=MessageResponse.model_validate(result.message),
            created=result.created,
            bot_reply=(
                MessageResponse.model_validate(result.bot_reply)
                if result.bot_reply is not None
                else None
            ),
        )
