from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from citizen_chat.domain.enums import MessageStatus, MessageType, SenderRole


class SendMessageRequest(BaseModel):
    content: str = Field(default="", max_length=4000)
    type: MessageType = MessageType.TEXT
    file_url: str | None = Field(default=None, max_length=500)
    file_name: str | None = Field(default=None, max_length=255)
    message_id: UUID | None = None


class UpdateMessageStatusRequest(BaseModel):
    status: MessageStatus


class MessageResponse(BaseModel):
    id: UUID
    conversation_id: UUID
    sequence: int
    sender_id: str
    sender_name: str
    sender_role: SenderRole
    type: MessageType
    content: str
    status: MessageStatus
    file_url: str | None
    file_name: str | None
    timestamp: datetime

    model_config = ConfigDict(from_attributes=True)
