import asyncio
import contextlib
import json
from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, WebSocket
from starlette.websockets import WebSocketDisconnect

from citizen_chat.infra.realtime.notifier import Subscription
from citizen_chat.infra.realtime.topics import parse_topic, topic_conversation_id
from citizen_chat.services.errors import ConversationAccessDeniedError, ConversationNotFoundError

router = APIRouter()


def _system_envelope(event: str, payload: dict[str, Any]) -> dict[str, Any]:
    return {
        "event": event,
        "payload": payload,
        "sent_at": datetime.now(UTC).isoformat(),
    }


async def _forward(websocket: WebSocket, subscription: Subscription) -> None:
    async for event in subscription:
        await websocket.send_json(event.envelope(subscription.topic))


async def _receive(websocket: WebSocket) -> None:
    while True:
        raw_message = await websocket.receive_text()
        if raw_message.strip().lower() == "ping":
            await websocket.send_json(_system_envelope("system.pong", {}))
            continue

        try:
            message = json.loads(raw_message)
        except json.JSONDecodeError:
            await websocket.send_json(
                _system_envelope("system.error", {"detail": "Expected JSON payload"})
            )
            continue

        if isinstance(message, dict) and message.get("action") == "ping":
            await websocket.send_json(_system_envelope("system.pong", {}))
            continue

        await websocket.send_json(
            _system_envelope("system.error", {"detail": "Unsupported action"})
        )


@router.websocket("/ws")
async def realtime_ws(websocket: WebSocket) -> None:
    service = getattr(websocket.app.state, "chat_service", None)
    if service is None:
        await websocket.close(code=1011, reason="Chat engine not initialized")
        return

    topic = parse_topic(websocket.query_params.get("topic"))
    if topic is None:
        await websocket.close(code=1008, reason="Unknown or missing topic")
        return

    citizen_session = websocket.query_params.get("citizen_session", "").strip()
    actor_id = websocket.query_params.get("actor_id", "").strip()

    if citizen_session:
        conversation_id = topic_conversation_id(topic)
        if conversation_id is None:
            await websocket.close(
                code=1008, reason="Citizens can only follow their own conversation"
            )
            return
        try:
            service.get_conversation(conversation_id, citizen_session=citizen_session)
        except (ConversationNotFoundError, ConversationAccessDeniedError):
            await websocket.close(
                code=1008, reason="Conversation access denied for this citizen session"
            )
            return
    elif not actor_id:
        await websocket.close(
            code=1008, reason="Websocket requires citizen_session or actor_id"
        )
        return

    await websocket.accept()
    subscription = service.subscribe(topic)
    await websocket.send_json(_system_envelope("system.connected", {"channel": topic}))

    forward_task = asyncio.create_task(_forward(websocket, subscription))
    receive_task = asyncio.create_task(_receive(websocket))
    try:
        done, pending = await asyncio.wait(
            {forward_task, receive_task}, return_when=asyncio.FIRST_COMPLETED
        )
        for task in pending:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError, WebSocketDisconnect):
                await task
        for task in done:
            with contextlib.suppress(WebSocketDisconnect):
                task.result()
    finally:
        subscription.close()

    if subscription.overflowed:
        # The client fell behind; it has to re-read state before resubscribing.
        with contextlib.suppress(WebSocketDisconnect, RuntimeError):
            await websocket.send_json(
                _system_envelope("system.overflow", {"channel": topic})
            )
            await websocket.close(code=1013, reason="Subscriber fell behind")
