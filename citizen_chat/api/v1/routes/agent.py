from uuid import UUID

from fastapi import APIRouter, Depends, Query

from citizen_chat.api.deps import (
    SERVICE_ERRORS,
    get_chat_service,
    get_staff_actor,
    raise_for_service_error,
)
from citizen_chat.domain.enums import ConversationState, PresenceStatus, SenderRole
from citizen_chat.domain.models import Actor, AgentPresence, CitizenRef, MessageDraft, QueueKey
from citizen_chat.schemas.agent_chat import (
    AgentListResponse,
    AgentResponse,
    RegisterAgentRequest,
    SetAgentCapacityRequest,
    SetAgentPresenceRequest,
    StartAgentSessionRequest,
    TransferToAgentRequest,
    TransferToDepartmentRequest,
)
from citizen_chat.schemas.conversation import (
    ConversationListResponse,
    ConversationMessagesResponse,
    ConversationResponse,
    ConversationTicketResponse,
    MessageExchangeResponse,
    QueueEntryResponse,
    QueueSnapshotResponse,
)
from citizen_chat.schemas.message import (
    MessageResponse,
    SendMessageRequest,
    UpdateMessageStatusRequest,
)
from citizen_chat.services.chat_service import ChatService

router = APIRouter()


def _to_agent_response(service: ChatService, presence: AgentPresence) -> AgentResponse:
    return AgentResponse.from_domain(
        presence, service.presence.current_active_count(presence.agent_id)
    )


@router.post("/register", response_model=AgentResponse)
async def register_agent(
    payload: RegisterAgentRequest,
    service: ChatService = Depends(get_chat_service),
    actor: Actor = Depends(get_staff_actor),
) -> AgentResponse:
    try:
        presence = await service.register_agent(
            actor.actor_id,
            payload.display_name,
            role=actor.role,
            department_id=payload.department_id,
            secretary_id=payload.secretary_id,
            max_concurrent_chats=payload.max_concurrent_chats,
        )
        if payload.start_online:
            presence = await service.set_agent_status(actor.actor_id, PresenceStatus.ONLINE)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return _to_agent_response(service, presence)


@router.get("/me", response_model=AgentResponse)
async def get_agent_profile(
    service: ChatService = Depends(get_chat_service),
    actor: Actor = Depends(get_staff_actor),
) -> AgentResponse:
    try:
        presence = service.get_agent(actor.actor_id)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return _to_agent_response(service, presence)


@router.post("/presence", response_model=AgentResponse)
async def set_agent_presence(
    payload: SetAgentPresenceRequest,
    service: ChatService = Depends(get_chat_service),
    actor: Actor = Depends(get_staff_actor),
) -> AgentResponse:
    try:
        presence = await service.set_agent_status(actor.actor_id, payload.status)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return _to_agent_response(service, presence)


@router.post("/capacity", response_model=AgentResponse)
async def set_agent_capacity(
    payload: SetAgentCapacityRequest,
    service: ChatService = Depends(get_chat_service),
    actor: Actor = Depends(get_staff_actor),
) -> AgentResponse:
    try:
        presence = await service.set_agent_capacity(
            actor.actor_id, payload.max_concurrent_chats
        )
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return _to_agent_response(service, presence)


@router.get("/agents", response_model=AgentListResponse)
async def list_agents(
    status_filter: PresenceStatus | None = Query(default=None, alias="status"),
    service: ChatService = Depends(get_chat_service),
    actor: Actor = Depends(get_staff_actor),
) -> AgentListResponse:
    return AgentListResponse(
        items=[
            _to_agent_response(service, presence)
            for presence in service.list_agents(status_filter)
        ]
    )


@router.get("/conversations", response_model=ConversationListResponse)
async def list_agent_conversations(
    state: ConversationState | None = Query(default=None),
    department_id: str | None = Query(default=None),
    limit: int | None = Query(default=None, ge=1, le=500),
    service: ChatService = Depends(get_chat_service),
    actor: Actor = Depends(get_staff_actor),
) -> ConversationListResponse:
    # Administrative roles see every conversation; agents see their own.
    agent_id = None if actor.role.is_administrative else actor.actor_id
    conversations = service.list_conversations(
        state=state, agent_id=agent_id, department_id=department_id, limit=limit
    )
    return ConversationListResponse(
        items=[ConversationResponse.from_domain(conversation) for conversation in conversations]
    )


@router.post("/conversations", response_model=ConversationTicketResponse)
async def start_agent_session(
    payload: StartAgentSessionRequest,
    service: ChatService = Depends(get_chat_service),
    actor: Actor = Depends(get_staff_actor),
) -> ConversationTicketResponse:
    try:
        ticket = await service.start_agent_session(
            actor,
            CitizenRef(display_name=payload.display_name.strip(), tax_id=payload.tax_id),
        )
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return ConversationTicketResponse.from_ticket(ticket)


@router.get("/queue", response_model=QueueSnapshotResponse)
async def list_queued_for_agent(
    service: ChatService = Depends(get_chat_service),
    actor: Actor = Depends(get_staff_actor),
) -> QueueSnapshotResponse:
    try:
        entries = service.queued_for_agent(actor.actor_id)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return QueueSnapshotResponse(
        items=[QueueEntryResponse.from_domain(entry) for entry in entries]
    )


@router.get("/queue/snapshot", response_model=QueueSnapshotResponse)
async def queue_snapshot(
    department_id: str | None = Query(default=None),
    service_id: str | None = Query(default=None),
    service: ChatService = Depends(get_chat_service),
    actor: Actor = Depends(get_staff_actor),
) -> QueueSnapshotResponse:
    entries = service.queue_snapshot(QueueKey(department_id, service_id))
    return QueueSnapshotResponse(
        items=[QueueEntryResponse.from_domain(entry) for entry in entries]
    )


@router.get(
    "/conversations/{conversation_id}/messages",
    response_model=ConversationMessagesResponse,
)
async def get_conversation_messages(
    conversation_id: UUID,
    after_sequence: int = Query(default=0, ge=0),
    limit: int | None = Query(default=None, ge=1, le=500),
    service: ChatService = Depends(get_chat_service),
    actor: Actor = Depends(get_staff_actor),
) -> ConversationMessagesResponse:
    try:
        conversation = service.get_conversation(conversation_id)
        messages = service.list_messages(
            conversation_id, after_sequence=after_sequence, limit=limit
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
async def send_agent_message(
    conversation_id: UUID,
    payload: SendMessageRequest,
    service: ChatService = Depends(get_chat_service),
    actor: Actor = Depends(get_staff_actor),
) -> MessageExchangeResponse:
    try:
        presence = service.get_agent(actor.actor_id)
        result = await service.append_message(
            conversation_id,
            MessageDraft(
                sender_id=actor.actor_id,
                sender_name=presence.display_name,
                sender_role=SenderRole.AGENT,
                content=payload.content,
                type=payload.type,
                file_url=payload.file_url,
                file_name=payload.file_name,
                message_id=payload.message_id,
            ),
        )
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return MessageExchangeResponse.from_result(result)


@router.post("/conversations/{conversation_id}/close", response_model=ConversationResponse)
async def close_conversation(
    conversation_id: UUID,
    service: ChatService = Depends(get_chat_service),
    actor: Actor = Depends(get_staff_actor),
) -> ConversationResponse:
    try:
        conversation = await service.close_conversation(conversation_id, actor)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return ConversationResponse.from_domain(conversation)


@router.post(
    "/conversations/{conversation_id}/transfer/agent",
    response_model=ConversationResponse,
)
async def transfer_to_agent(
    conversation_id: UUID,
    payload: TransferToAgentRequest,
    service: ChatService = Depends(get_chat_service),
    actor: Actor = Depends(get_staff_actor),
) -> ConversationResponse:
    try:
        conversation = await service.transfer_to_agent(
            conversation_id, payload.target_agent_id, actor
        )
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return ConversationResponse.from_domain(conversation)


@router.post(
    "/conversations/{conversation_id}/transfer/department",
    response_model=ConversationTicketResponse,
)
async def transfer_to_department(
    conversation_id: UUID,
    payload: TransferToDepartmentRequest,
    service: ChatService = Depends(get_chat_service),
    actor: Actor = Depends(get_staff_actor),
) -> ConversationTicketResponse:
    try:
        ticket = await service.transfer_to_department(
            conversation_id,
            payload.department_id,
            actor,
            service_id=payload.service_id,
        )
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return ConversationTicketResponse.from_ticket(ticket)


@router.post(
    "/conversations/{conversation_id}/inactivity-warning",
    response_model=ConversationResponse,
)
async def record_inactivity_warning(
    conversation_id: UUID,
    service: ChatService = Depends(get_chat_service),
    actor: Actor = Depends(get_staff_actor),
) -> ConversationResponse:
    try:
        conversation = await service.record_inactivity_warning(conversation_id, actor)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return ConversationResponse.from_domain(conversation)


@router.post("/messages/{message_id}/status", response_model=MessageResponse)
async def update_message_status(
    message_id: UUID,
    payload: UpdateMessageStatusRequest,
    service: ChatService = Depends(get_chat_service),
    actor: Actor = Depends(get_staff_actor),
) -> MessageResponse:
    try:
        message = await service.update_message_status(message_id, payload.status)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return MessageResponse.model_validate(message)
