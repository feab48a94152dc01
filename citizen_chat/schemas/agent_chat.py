from datetime import datetime

from pydantic import BaseModel, Field

from citizen_chat.domain.enums import ActorRole, PresenceStatus
from citizen_chat.domain.models import AgentPresence


class AgentResponse(BaseModel):
    agent_id: str
    display_name: str
    role: ActorRole
    department_id: str | None
    secretary_id: str | None
    status: PresenceStatus
    max_concurrent_chats: int
    current_active_count: int
    updated_at: datetime | None

    @classmethod
    def from_domain(
        cls, presence: AgentPresence, current_active_count: int
    ) -> "AgentResponse":
        return cls(
            agent_id=presence.agent_id,
            display_name=presence.display_name,
            role=presence.role,
            department_id=presence.department_id,
            secretary_id=presence.secretary_id,
            status=presence.status,
            max_concurrent_chats=presence.max_concurrent_chats,
            current_active_count=current_active_count,
            updated_at=presence.updated_at,
        )


class AgentListResponse(BaseModel):
    items: list[AgentResponse]


class RegisterAgentRequest(BaseModel):
    display_name: str = Field(min_length=2, max_length=120)
    department_id: str | None = Field(default=None, max_length=120)
    secretary_id: str | None = Field(default=None, max_length=120)
    max_concurrent_chats: int | None = Field(default=None, ge=1, le=50)
    start_online: bool = False


class SetAgentPresenceRequest(BaseModel):
    status: PresenceStatus


class SetAgentCapacityRequest(BaseModel):
    max_concurrent_chats: int = Field(ge=1, le=50)


class StartAgentSessionRequest(BaseModel):
    display_name: str = Field(min_length=1, max_length=200)
    tax_id: str | None = Field(default=None, max_length=32)


class TransferToAgentRequest(BaseModel):
    target_agent_id: str = Field(min_length=1, max_length=120)


class TransferToDepartmentRequest(BaseModel):
    department_id: str = Field(min_length=1, max_length=120)
    service_id: str | None = Field(default=None, max_length=120)
