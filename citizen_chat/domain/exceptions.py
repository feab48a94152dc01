from uuid import UUID

from citizen_chat.domain.enums import ConversationState, MessageStatus, TransitionAction


class InvalidTransition(ValueError):
    def __init__(
        self,
        conversation_id: UUID,
        current: ConversationState,
        action: TransitionAction | None,
        reason: str | None = None,
    ) -> None:
        if action is None:
            detail = f"Cannot update conversation in state '{current.value}'"
        else:
            detail = f"Cannot apply action '{action.value}' from state '{current.value}'"
        if reason:
            detail = f"{detail}: {reason}"
        super().__init__(f"{detail} (conversation '{conversation_id}').")
        self.conversation_id = conversation_id
        self.current = current
        self.action = action
        self.reason = reason


class InvalidStatusTransition(ValueError):
    def __init__(
        self,
        message_id: UUID,
        current: MessageStatus,
        requested: MessageStatus,
    ) -> None:
        super().__init__(
            f"Message '{message_id}' cannot move from '{current.value}' "
            f"back to '{requested.value}'."
        )
        self.message_id = message_id
        self.current = current
        self.requested = requested


class AlreadyQueued(ValueError):
    def __init__(self, conversation_id: UUID) -> None:
        super().__init__(f"Conversation '{conversation_id}' is already queued")
        self.conversation_id = conversation_id
