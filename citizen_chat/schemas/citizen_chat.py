from pydantic import BaseModel, Field

from citizen_chat.schemas.conversation import ConversationTicketResponse


class StartConversationRequest(BaseModel):
    display_name: str = Field(min_length=1, max_length=200)
    tax_id: str | None = Field(default=None, max_length=32)
    department_id: str | None = Field(default=None, max_length=120)
    service_id: str | None = Field(default=None, max_length=120)
    bot: bool = True


class CitizenSessionResponse(ConversationTicketResponse):
    session_token: str


class QuickQuestionResponse(BaseModel):
    question: str
    answer: str


class QuickQuestionListResponse(BaseModel):
    items: list[QuickQuestionResponse]
