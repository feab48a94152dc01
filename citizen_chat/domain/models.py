from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID, uuid4

from citizen_chat.domain.enums import (
    ActorRole,
    ConversationState,
    MessageStatus,
    MessageType,
    PresenceStatus,
    SenderRole,
)


@dataclass(frozen=True, slots=True)
class QueueKey:
    department_id: str | None = None
    service_id: str | None = None

    @property
    def is_default(self) -> bool:
        return self.department_id is None and self.service_id is None

    def __str__(self) -> str:
        if self.is_default:
            return "default"
        return f"{self.department_id or '*'}/{self.service_id or '*'}"


DEFAULT_QUEUE_KEY = QueueKey()


@dataclass(frozen=True, slots=True)
class CitizenRef:
    display_name: str
    tax_id: str | None = None
    session_token: str = field(default_factory=lambda: uuid4().hex)


@dataclass(frozen=True, slots=True)
class Actor:
    """Caller identity as resolved by the upstream identity gateway."""

    actor_id: str
    role: ActorRole

    @classmethod
    def system(cls) -> "Actor":
        return cls(actor_id="system", role=ActorRole.SYSTEM)


@dataclass(frozen=True, slots=True)
class Conversation:
    id: UUID
    citizen: CitizenRef
    state: ConversationState
    started_at: datetime
    last_message_at: datetime
    department_id: str | None = None
    service_id: str | None = None
    agent_id: str | None = None
    is_bot: bool = False
    inactivity_warnings: int = 0
    waiting_since: datetime | None = None
    assigned_at: datetime | None = None
    closed_at: datetime | None = None
    version: int = 0

    @property
    def queue_key(self) -> QueueKey:
        return QueueKey(self.department_id, self.service_id)

    @property
    def is_read_only(self) -> bool:
        return self.state == ConversationState.CLOSED

    @property
    def expects_queue_slot(self) -> bool:
        return self.state == ConversationState.WAITING and not self.is_bot


@dataclass(frozen=True, slots=True)
class MessageDraft:
    sender_id: str
    sender_name: str
    sender_role: SenderRole
    content: str
    type: MessageType = MessageType.TEXT
    file_url: str | None = None
    file_name: str | None = None
    message_id: UUID | None = None


@dataclass(frozen=True, slots=True)
class Message:
    id: UUID
    conversation_id: UUID
    sequence: int
    sender_id: str
    sender_name: str
    sender_role: SenderRole
    type: MessageType
    content: str
    timestamp: datetime
    status: MessageStatus = MessageStatus.SENT
    file_url: str | None = None
    file_name: str | None = None


@dataclass(frozen=True, slots=True)
class AgentPresence:
    agent_id: str
    display_name: str
    max_concurrent_chats: int
    status: PresenceStatus = PresenceStatus.OFFLINE
    role: ActorRole = ActorRole.AGENT
    department_id: str | None = None
    secretary_id: str | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class QueueEntry:
    conversation_id: UUID
    key: QueueKey
    waiting_since: datetime
    position: int
    estimated_wait_seconds: int
