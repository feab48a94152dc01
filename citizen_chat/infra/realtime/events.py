from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID


class NotifierEventKind(str, Enum):
    CONVERSATION_CREATED = "conversation.created"
    CONVERSATION_UPDATED = "conversation.updated"
    MESSAGE_APPENDED = "message.appended"
    MESSAGE_STATUS_CHANGED = "message.status_changed"
    AGENT_PRESENCE_CHANGED = "agent.presence.changed"

    @property
    def is_state_event(self) -> bool:
        return self in {
            NotifierEventKind.CONVERSATION_CREATED,
            NotifierEventKind.CONVERSATION_UPDATED,
        }


@dataclass(frozen=True, slots=True)
class NotifierEvent:
    kind: NotifierEventKind
    payload: Mapping[str, Any]
    conversation_id: UUID | None = None
    event_id: int = 0
    published_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def envelope(self, topic: str) -> dict[str, Any]:
        return {
            "event": self.kind.value,
            "event_id": self.event_id,
            "channel": topic,
            "payload": dict(self.payload),
            "sent_at": self.published_at.isoformat(),
        }
