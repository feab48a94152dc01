from uuid import UUID

from fastapi import APIRouter, Depends, Query

from citizen_chat.api.deps import (
    SERVICE_ERRORS,
    get_chat_service,
    get_citizen_session,
    raise_for_service_error,
)
from citizen_chat.domain.enums import ActorRole, SenderRole
from citizen_chat.domain.models import Actor, CitizenRef, MessageDraft
from citizen_chat.schemas.citizen_chat import (
    CitizenSessionResponse,
    QuickQuestionListResponse,
    QuickQuestionResponse,
    StartConversationRequest,
)
from citizen_chat.schemas.conversation import (
    ConversationMessagesResponse,
    ConversationResponse,
    ConversationTicketResponse,
    MessageExchangeResponse,
    QueueEntryResponse,
    QueuePositionResponse,
)
from citizen_chat.schemas.message import (
    MessageResponse,
    SendMessageRequest,
    UpdateMessageStatusRequest,
)
from citizen_chat.services.chat_service import ChatService

router = APIRouter()


@router.get("/questions", response_model=QuickQuestionListResponse)
async def list_quick_questions(
    department_id: str | None = Query(default=None),
    service_id: str | None = Query(default=None),
    service: ChatService = Depends(get_chat_service),
) -> QuickQuestionListResponse:
    questions = service.org.questions_for(department_id, service_id)
    return QuickQuestionListResponse(
        items=[
            QuickQuestionResponse(question=entry.question, answer=entry.answer)
            for entry in questions
        ]
    )


@router.post("/conversations", response_model=CitizenSessionResponse)
async def start_conversation(
    payload: StartConversationRequest,
    service: ChatService = Depends(get_chat_service),
) -> CitizenSessionResponse:
    citizen = CitizenRef(display_name=payload.display_name.strip(), tax_id=payload.tax_id)
    try:
        ticket = await service.create_conversation(
            citizen,
            department_id=payload.department_id,
            service_id=payload.service_id,
            bot=payload.bot,
        )
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)

    response = ConversationTicketResponse.from_ticket(ticket)
    return CitizenSessionResponse(
        **response.model_dump(),
        session_token=ticket.conversation.citizen.session_token,
    )


@router.get("/conversations/{conversation_id}", response_model=ConversationTicketResponse)
async def get_conversation(
    conversation_id: UUID,
    service: ChatService = Depends(get_chat_service),
    citizen_session: str = Depends(get_citizen_session),
) -> ConversationTicketResponse:
    try:
        conversation = service.get_conversation(
            conversation_id, citizen_session=citizen_session
        )
        entry = service.queue_position_of(conversation_id, citizen_session=citizen_session)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)

    return ConversationTicketResponse(
        conversation=ConversationResponse.from_domain(conversation),
        queue_entry=QueueEntryResponse.from_domain(entry) if entry is not None else None,
        messages=[],
    )


@router.get(
    "/conversations/{conversation_id}/messages",
    response_model=ConversationMessagesResponse,
)
async def list_messages(
    conversation_id: UUID,
    after_sequence: int = Query(default=0, ge=0),
    limit: int | None = Query(default=None, ge=1, le=500),
    service: ChatService = Depends(get_chat_service),
    citizen_session: str = Depends(get_citizen_session),
) -> ConversationMessagesResponse:
    try:
        conversation = service.get_conversation(
            conversation_id, citizen_session=citizen_session
        )
        messages = service.list_messages(
            conversation_id,
            after_sequence=after_sequence,
            limit=limit,
            citizen_session=citizen_session,
        )
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)

    return ConversationMessagesResponse(
        conversation=ConversationResponse.from_domain(conversation),
        messages=[MessageResponse.model_validate(message) for message in messages],
    )


@router.post(
    "/conversations/{conversation_id}/messages",
    response_model=MessageExchangeResponse,
)
async def send_message(
    conversation_id: UUID,
    payload: SendMessageRequest,
    service: ChatService = Depends(get_chat_service),
    citizen_session: str = Depends(get_citizen_session),
) -> MessageExchangeResponse:
    try:
        conversation = service.get_conversation(
            conversation_id, citizen_session=citizen_session
        )
        result = await service.append_message(
            conversation_id,
            MessageDraft(
                sender_id=f"citizen:{conversation.id}",
                sender_name=conversation.citizen.display_name,
                sender_role=SenderRole.USER,
                content=payload.content,
                type=payload.type,
                file_url=payload.file_url,
                file_name=payload.file_name,
                message_id=payload.message_id,
            ),
            citizen_session=citizen_session,
        )
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return MessageExchangeResponse.from_result(result)


@router.post(
    "/conversations/{conversation_id}/handoff",
    response_model=ConversationTicketResponse,
)
async def request_handoff(
    conversation_id: UUID,
    service: ChatService = Depends(get_chat_service),
    citizen_session: str = Depends(get_citizen_session),
) -> ConversationTicketResponse:
    try:
        ticket = await service.request_handoff(
            conversation_id, citizen_session=citizen_session
        )
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return ConversationTicketResponse.from_ticket(ticket)


@router.post("/conversations/{conversation_id}/close", response_model=ConversationResponse)
async def leave_conversation(
    conversation_id: UUID,
    service: ChatService = Depends(get_chat_service),
    citizen_session: str = Depends(get_citizen_session),
) -> ConversationResponse:
    try:
        conversation = await service.close_conversation(
            conversation_id,
            Actor(actor_id=f"citizen:{conversation_id}", role=ActorRole.USER),
            citizen_session=citizen_session,
        )
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return ConversationResponse.from_domain(conversation)


@router.get(
    "/conversations/{conversation_id}/queue-position",
    response_model=QueuePositionResponse,
)
async def get_queue_position(
    conversation_id: UUID,
    service: ChatService = Depends(get_chat_service),
    citizen_session: str = Depends(get_citizen_session),
) -> QueuePositionResponse:
    try:
        entry = service.queue_position_of(conversation_id, citizen_session=citizen_session)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return QueuePositionResponse(
        conversation_id=conversation_id,
        queued=entry is not None,
        entry=QueueEntryResponse.from_domain(entry) if entry is not None else None,
    )


@router.post("/messages/{message_id}/status", response_model=MessageResponse)
async def update_message_status(
    message_id: UUID,
    payload: UpdateMessageStatusRequest,
    service: ChatService = Depends(get_chat_service),
    citizen_session: str = Depends(get_citizen_session),
) -> MessageResponse:
    try:
        message = await service.update_message_status(
            message_id, payload.status, citizen_session=citizen_session
        )
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return MessageResponse.model_validate(message)
