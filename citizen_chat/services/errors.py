from uuid import UUID

from citizen_chat.domain.models import QueueKey


class ConversationNotFoundError(LookupError):
    def __init__(self, conversation_id: UUID) -> None:
        super().__init__(f"Conversation '{conversation_id}' not found")
        self.conversation_id = conversation_id


class MessageNotFoundError(LookupError):
    def __init__(self, message_id: UUID) -> None:
        super().__init__(f"Message '{message_id}' not found")
        self.message_id = message_id


class AgentNotFoundError(LookupError):
    def __init__(self, agent_id: str) -> None:
        super().__init__(f"Agent '{agent_id}' not found")
        self.agent_id = agent_id


class ConversationAccessDeniedError(PermissionError):
    def __init__(self, conversation_id: UUID, actor_id: str) -> None:
        super().__init__(
            f"Conversation '{conversation_id}' is not accessible by '{actor_id}'"
        )
        self.conversation_id = conversation_id
        self.actor_id = actor_id


class ConversationClosedError(ValueError):
    def __init__(self, conversation_id: UUID) -> None:
        super().__init__(f"Conversation '{conversation_id}' is closed and read-only")
        self.conversation_id = conversation_id


class AgentUnavailableError(ValueError):
    def __init__(self, agent_id: str) -> None:
        super().__init__(
            f"Agent '{agent_id}' is not online or has no free chat slot. "
            "Transfer to a department instead."
        )
        self.agent_id = agent_id


class NoAgentAvailableError(LookupError):
    def __init__(self, key: QueueKey) -> None:
        super().__init__(f"No eligible agent for queue '{key}'")
        self.key = key


class UnknownDepartmentError(LookupError):
    def __init__(self, department_id: str) -> None:
        super().__init__(f"Department '{department_id}' does not exist")
        self.department_id = department_id


class UnknownServiceError(LookupError):
    def __init__(self, service_id: str, department_id: str | None) -> None:
        super().__init__(
            f"Service '{service_id}' does not exist in department '{department_id}'"
        )
        self.service_id = service_id
        self.department_id = department_id
