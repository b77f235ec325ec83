"""WebSocket endpoint for inbox agents."""

from __future__ import annotations

import json

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status
from pydantic import ValidationError

from app.logging import get_logger
from app.websocket.events import EventType, InboundMessage, InboundMessageType, WebSocketEvent
from app.websocket.manager import ConnectionManager

logger = get_logger(__name__)

router = APIRouter(tags=["websocket"])


def get_connection_manager() -> ConnectionManager:
    from app.container import container

    return container.connection_manager()


def get_ws_user_id(websocket: WebSocket) -> str | None:
    """User id placed on the connection scope by the auth layer."""
    value = getattr(websocket.state, "user_id", None)
    return str(value) if value is not None else None


@router.websocket("/ws/inbox")
async def inbox_websocket(
    websocket: WebSocket,
    user_id: str | None = Depends(get_ws_user_id),
    manager: ConnectionManager = Depends(get_connection_manager),
):
    """
    Real-time inbox updates for agents.

    Client messages:
    - {type: "subscribe", conversation_id: 1} - Follow a conversation
    - {type: "unsubscribe", conversation_id: 1} - Stop following it
    - {type: "ping"} - Keep-alive ping

    Server events:
    - message_new, message_updated, message_deleted
    - conversation_created, conversation_updated, conversation_assigned
    - conversation_list_updated, unread_updated
    - connection_ack, heartbeat
    """
    if user_id is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    await manager.register_connection(user_id, websocket)
    try:
        while True:
            data = await websocket.receive_text()
            await _handle_client_message(user_id, websocket, data, manager)
    except WebSocketDisconnect:
        logger.debug("inbox_websocket_disconnected user_id=%s", user_id)
    except Exception as exc:
        logger.warning("inbox_websocket_error user_id=%s error=%s", user_id, exc)
    finally:
        await manager.unregister_connection(user_id, websocket)


async def _handle_client_message(
    user_id: str,
    websocket: WebSocket,
    raw_data: str,
    manager: ConnectionManager,
) -> None:
    try:
        message = InboundMessage.model_validate(json.loads(raw_data))
    except (json.JSONDecodeError, ValidationError):
        logger.warning("inbox_websocket_invalid_message user_id=%s", user_id)
        return

    if message.type == InboundMessageType.PING:
        await manager.send_heartbeat(user_id, websocket)
        return

    if message.conversation_id is None:
        logger.debug("inbox_websocket_missing_conversation user_id=%s type=%s", user_id, message.type)
        return

    conversation_id = str(message.conversation_id)
    if message.type == InboundMessageType.SUBSCRIBE:
        await manager.subscribe_conversation(user_id, conversation_id)
        ack = WebSocketEvent(event=EventType.CONNECTION_ACK, data={"subscribed_to": message.conversation_id})
        await websocket.send_json(ack.model_dump(mode="json"))
    elif message.type == InboundMessageType.UNSUBSCRIBE:
        await manager.unsubscribe_conversation(user_id, conversation_id)
