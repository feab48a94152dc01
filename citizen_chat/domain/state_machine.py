from dataclasses import replace
from datetime import datetime

from citizen_chat.domain.enums import (
    ConversationState,
    MessageStatus,
    TransitionAction,
)
from citizen_chat.domain.exceptions import InvalidStatusTransition, InvalidTransition
from citizen_chat.domain.models import Conversation, Message


class ConversationLifecycle:
    """State machine for conversation lifecycle: waiting -> active -> closed."""

    _allowed_transitions: dict[tuple[ConversationState, TransitionAction], ConversationState] = {
        (ConversationState.WAITING, TransitionAction.ASSIGN): ConversationState.ACTIVE,
        (ConversationState.WAITING, TransitionAction.CLOSE): ConversationState.CLOSED,
        (ConversationState.WAITING, TransitionAction.REQUEST_HANDOFF): ConversationState.WAITING,
        (ConversationState.ACTIVE, TransitionAction.CLOSE): ConversationState.CLOSED,
        (ConversationState.ACTIVE, TransitionAction.TRANSFER_TO_AGENT): ConversationState.ACTIVE,
        (
            ConversationState.ACTIVE,
            TransitionAction.TRANSFER_TO_DEPARTMENT,
        ): ConversationState.WAITING,
    }

    @classmethod
    def next_state(
        cls, conversation: Conversation, action: TransitionAction
    ) -> ConversationState:
        next_state = cls._allowed_transitions.get((conversation.state, action))
        if next_state is None:
            raise InvalidTransition(conversation.id, conversation.state, action)
        return next_state

    @classmethod
    def assign(
        cls, conversation: Conversation, agent_id: str, now: datetime
    ) -> Conversation:
        state = cls.next_state(conversation, TransitionAction.ASSIGN)
        if conversation.is_bot:
            raise InvalidTransition(
                conversation.id,
                conversation.state,
                TransitionAction.ASSIGN,
                reason="bot session has not requested a human",
            )
        return replace(
            conversation,
            state=state,
            agent_id=agent_id,
            assigned_at=now,
            waiting_since=None,
            version=conversation.version + 1,
        )

    @classmethod
    def close(cls, conversation: Conversation, now: datetime) -> Conversation:
        state = cls.next_state(conversation, TransitionAction.CLOSE)
        return replace(
            conversation,
            state=state,
            agent_id=None,
            waiting_since=None,
            closed_at=now,
            version=conversation.version + 1,
        )

    @classmethod
    def transfer_to_agent(
        cls, conversation: Conversation, target_agent_id: str, now: datetime
    ) -> Conversation:
        state = cls.next_state(conversation, TransitionAction.TRANSFER_TO_AGENT)
        if conversation.agent_id == target_agent_id:
            raise InvalidTransition(
                conversation.id,
                conversation.state,
                TransitionAction.TRANSFER_TO_AGENT,
                reason="target agent already owns the conversation",
            )
        return replace(
            conversation,
            state=state,
            agent_id=target_agent_id,
            assigned_at=now,
            version=conversation.version + 1,
        )

    @classmethod
    def transfer_to_department(
        cls,
        conversation: Conversation,
        department_id: str,
        service_id: str | None,
        now: datetime,
    ) -> Conversation:
        state = cls.next_state(conversation, TransitionAction.TRANSFER_TO_DEPARTMENT)
        # Seniority is not carried over: the conversation waits from now.
        return replace(
            conversation,
            state=state,
            agent_id=None,
            assigned_at=None,
            department_id=department_id,
            service_id=service_id,
            waiting_since=now,
            version=conversation.version + 1,
        )

    @classmethod
    def request_handoff(cls, conversation: Conversation, now: datetime) -> Conversation:
        state = cls.next_state(conversation, TransitionAction.REQUEST_HANDOFF)
        if not conversation.is_bot:
            raise InvalidTransition(
                conversation.id,
                conversation.state,
                TransitionAction.REQUEST_HANDOFF,
                reason="conversation is already waiting for a human",
            )
        return replace(
            conversation,
            state=state,
            is_bot=False,
            waiting_since=now,
            version=conversation.version + 1,
        )

    @staticmethod
    def touch(
        conversation: Conversation, at: datetime, *, reset_warnings: bool
    ) -> Conversation:
        """Record message activity; returns the same record when nothing moves."""
        last_message_at = max(conversation.last_message_at, at)
        warnings = 0 if reset_warnings else conversation.inactivity_warnings
        if (
            last_message_at == conversation.last_message_at
            and warnings == conversation.inactivity_warnings
        ):
            return conversation
        return replace(
            conversation,
            last_message_at=last_message_at,
            inactivity_warnings=warnings,
            version=conversation.version + 1,
        )

    @staticmethod
    def warn(conversation: Conversation) -> Conversation:
        if conversation.is_read_only:
            raise InvalidTransition(
                conversation.id,
                conversation.state,
                None,
                reason="closed conversations cannot be warned",
            )
        return replace(
            conversation,
            inactivity_warnings=conversation.inactivity_warnings + 1,
            version=conversation.version + 1,
        )

    @staticmethod
    def is_read_only(state: ConversationState) -> bool:
        return state == ConversationState.CLOSED


def advance_status(message: Message, status: MessageStatus) -> Message | None:
    """Return the message with its new status, or None when nothing changes."""
    if status.rank < message.status.rank:
        raise InvalidStatusTransition(message.id, message.status, status)
    if status == message.status:
        return None
    return replace(message, status=status)
