from enum import Enum


class ConversationState(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    CLOSED = "closed"


class SenderRole(str, Enum):
    USER = "user"
    AGENT = "agent"
    SYSTEM = "system"


class MessageType(str, Enum):
    TEXT = "text"
    FILE = "file"
    SYSTEM = "system"


class MessageStatus(str, Enum):
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"

    @property
    def rank(self) -> int:
        return _MESSAGE_STATUS_RANK[self]


_MESSAGE_STATUS_RANK = {
    MessageStatus.SENT: 0,
    MessageStatus.DELIVERED: 1,
    MessageStatus.READ: 2,
}


class PresenceStatus(str, Enum):
    ONLINE = "online"
    BREAK = "break"
    OFFLINE = "offline"


class ActorRole(str, Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    SECRETARY_ADMIN = "secretary_admin"
    AGENT = "agent"
    USER = "user"
    SYSTEM = "system"

    @property
    def is_administrative(self) -> bool:
        return self in {
            ActorRole.ADMIN,
            ActorRole.MANAGER,
            ActorRole.SECRETARY_ADMIN,
            ActorRole.SYSTEM,
        }


class TransitionAction(str, Enum):
    ASSIGN = "assign"
    CLOSE = "close"
    TRANSFER_TO_AGENT = "transfer_to_agent"
    TRANSFER_TO_DEPARTMENT = "transfer_to_department"
    REQUEST_HANDOFF = "request_handoff"


class DispatchStatus(str, Enum):
    ASSIGNED = "assigned"
    NO_AGENT_AVAILABLE = "no_agent_available"
