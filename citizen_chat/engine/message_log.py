from collections import defaultdict
from collections.abc import Iterable
from datetime import datetime
from uuid import UUID, uuid4

from citizen_chat.domain.enums import MessageStatus, MessageType, SenderRole
from citizen_chat.domain.models import Conversation, Message, MessageDraft
from citizen_chat.domain.state_machine import advance_status
from citizen_chat.services.errors import ConversationClosedError, MessageNotFoundError


class MessageLog:
    """Append-only message sequence per conversation.

    Order is the append order (``sequence``), never wall-clock time. Callers
    hold the owning conversation's lock between ``prepare`` and ``record``.
    """

    def __init__(self) -> None:
        self._by_conversation: dict[UUID, list[Message]] = defaultdict(list)
        self._by_id: dict[UUID, Message] = {}

    def prepare(
        self,
        conversation: Conversation,
        draft: MessageDraft,
        now: datetime,
    ) -> tuple[Message, bool]:
        """Build the next message without storing it; returns ``(message, created)``.

        A draft carrying an id that is already logged is a redelivery and
        yields the stored message with ``created=False``.
        """
        if draft.message_id is not None:
            existing = self._by_id.get(draft.message_id)
            if existing is not None:
                if existing.conversation_id != conversation.id:
                    raise ValueError(
                        f"Message id '{draft.message_id}' belongs to another conversation."
                    )
                return existing, False

        if conversation.is_read_only and draft.sender_role != SenderRole.SYSTEM:
            raise ConversationClosedError(conversation.id)

        content = self._validate(draft)
        entries = self._by_conversation.get(conversation.id, [])
        timestamp = now
        if entries and entries[-1].timestamp > timestamp:
            timestamp = entries[-1].timestamp

        message = Message(
            id=draft.message_id or uuid4(),
            conversation_id=conversation.id,
            sequence=len(entries) + 1,
            sender_id=draft.sender_id,
            sender_name=draft.sender_name,
            sender_role=draft.sender_role,
            type=draft.type,
            content=content,
            timestamp=timestamp,
            file_url=draft.file_url,
            file_name=draft.file_name,
        )
        return message, True

    def record(self, message: Message) -> Message:
        """Store a prepared message, or replace a logged one with its new status."""
        entries = self._by_conversation[message.conversation_id]
        if message.id in self._by_id:
            entries[message.sequence - 1] = message
        elif message.sequence != len(entries) + 1:
            raise ValueError(
                f"Message '{message.id}' has sequence {message.sequence}, "
                f"expected {len(entries) + 1}."
            )
        else:
            entries.append(message)
        self._by_id[message.id] = message
        return message

    def append(
        self,
        conversation: Conversation,
        draft: MessageDraft,
        now: datetime,
    ) -> tuple[Message, bool]:
        message, created = self.prepare(conversation, draft, now)
        if created:
            self.record(message)
        return message, created

    def get(self, message_id: UUID) -> Message | None:
        return self._by_id.get(message_id)

    def require(self, message_id: UUID) -> Message:
        message = self._by_id.get(message_id)
        if message is None:
            raise MessageNotFoundError(message_id)
        return message

    def update_status(
        self, message_id: UUID, status: MessageStatus
    ) -> tuple[Message, bool]:
        current = self.require(message_id)
        updated = advance_status(current, status)
        if updated is None:
            return current, False
        return self.record(updated), True

    def list(
        self,
        conversation_id: UUID,
        *,
        after_sequence: int = 0,
        limit: int | None = None,
    ) -> list[Message]:
        entries = self._by_conversation.get(conversation_id, [])
        selected = entries[after_sequence:]
        if limit is not None:
            selected = selected[:limit]
        return list(selected)

    def last(self, conversation_id: UUID) -> Message | None:
        entries = self._by_conversation.get(conversation_id)
        if not entries:
            return None
        return entries[-1]

    def count(self, conversation_id: UUID) -> int:
        return len(self._by_conversation.get(conversation_id, ()))

    def restore(self, messages: Iterable[Message]) -> None:
        self._by_conversation.clear()
        self._by_id.clear()
        for message in sorted(
            messages, key=lambda item: (str(item.conversation_id), item.sequence)
        ):
            entries = self._by_conversation[message.conversation_id]
            if message.sequence != len(entries) + 1:
                raise ValueError(
                    f"Message log for conversation '{message.conversation_id}' "
                    f"has a gap before sequence {message.sequence}."
                )
            entries.append(message)
            self._by_id[message.id] = message

    @staticmethod
    def _validate(draft: MessageDraft) -> str:
        content = draft.content.strip()
        if draft.type == MessageType.FILE:
            if not draft.file_url:
                raise ValueError("File messages require a file_url.")
            return content or (draft.file_name or "")
        if draft.type == MessageType.SYSTEM and draft.sender_role != SenderRole.SYSTEM:
            raise ValueError("Only system senders can post system messages.")
        if not content:
            raise ValueError("Message content cannot be empty.")
        return content
