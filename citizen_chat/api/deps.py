from typing import NoReturn

from fastapi import Header, HTTPException, Request, status

from citizen_chat.domain.enums import ActorRole
from citizen_chat.domain.exceptions import (
    AlreadyQueued,
    InvalidStatusTransition,
    InvalidTransition,
)
from citizen_chat.domain.models import Actor
from citizen_chat.services.chat_service import ChatService
from citizen_chat.services.errors import (
    AgentUnavailableError,
    ConversationAccessDeniedError,
    ConversationClosedError,
    UnknownDepartmentError,
    UnknownServiceError,
)

SERVICE_ERRORS = (LookupError, PermissionError, ValueError)


async def get_chat_service(request: Request) -> ChatService:
    service = getattr(request.app.state, "chat_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Chat engine is not initialized",
        )
    return service


async def get_staff_actor(
    x_actor_id: str | None = Header(default=None),
    x_actor_role: str = Header(default=ActorRole.AGENT.value),
) -> Actor:
    if x_actor_id is None or not x_actor_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-Actor-Id header",
        )
    try:
        role = ActorRole(x_actor_role.strip().lower())
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown actor role '{x_actor_role}'",
        ) from exc
    if role in {ActorRole.USER, ActorRole.SYSTEM}:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Agent endpoints require a staff role",
        )
    return Actor(actor_id=x_actor_id.strip(), role=role)


async def get_citizen_session(
    x_citizen_session: str | None = Header(default=None),
) -> str:
    if x_citizen_session is None or not x_citizen_session.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-Citizen-Session header",
        )
    return x_citizen_session.strip()


def raise_for_service_error(exc: Exception) -> NoReturn:
    if isinstance(exc, ConversationAccessDeniedError):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    if isinstance(exc, (UnknownDepartmentError, UnknownServiceError)):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)
        ) from exc
    if isinstance(exc, LookupError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(
        exc,
        (
            InvalidTransition,
            InvalidStatusTransition,
            ConversationClosedError,
            AgentUnavailableError,
            AlreadyQueued,
        ),
    ):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, PermissionError):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    if isinstance(exc, ValueError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    raise exc
