from uuid import UUID

from citizen_chat.infra.realtime.events import NotifierEvent, NotifierEventKind

CONVERSATIONS_TOPIC = "conversations:*"
AGENT_PRESENCE_TOPIC = "agents:presence"

_CONVERSATION_PREFIX = "conversation:"


def conversation_topic(conversation_id: UUID) -> str:
    return f"{_CONVERSATION_PREFIX}{conversation_id}"


def parse_topic(raw: str | None) -> str | None:
    """Normalize a client-supplied topic; None when it is not a known topic."""
    if raw is None:
        return None
    topic = raw.strip()
    if topic in {CONVERSATIONS_TOPIC, AGENT_PRESENCE_TOPIC}:
        return topic
    if topic.startswith(_CONVERSATION_PREFIX):
        try:
            return conversation_topic(UUID(topic[len(_CONVERSATION_PREFIX) :]))
        except ValueError:
            return None
    return None


def topic_conversation_id(topic: str) -> UUID | None:
    if not topic.startswith(_CONVERSATION_PREFIX):
        return None
    try:
        return UUID(topic[len(_CONVERSATION_PREFIX) :])
    except ValueError:
        return None


def topics_for(event: NotifierEvent) -> list[str]:
    if event.kind == NotifierEventKind.AGENT_PRESENCE_CHANGED:
        return [AGENT_PRESENCE_TOPIC]
    topics: list[str] = []
    if event.conversation_id is not None:
        topics.append(conversation_topic(event.conversation_id))
    if event.kind.is_state_event:
        topics.append(CONVERSATIONS_TOPIC)
    return topics
