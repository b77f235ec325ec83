from __future__ import annotations

import asyncio
import concurrent.futures
from typing import TYPE_CHECKING, Any

from app.logging import get_logger
from app.services.common import as_utc
from app.websocket.events import WebSocketEvent
from app.websocket.manager import ConnectionManager

if TYPE_CHECKING:
    from app.models.crm.conversation import Conversation, Message

logger = get_logger(__name__)


def _handle_task_exception(task: asyncio.Task):
    """Callback to log exceptions from background tasks."""
    try:
        exc = task.exception()
        if exc:
            logger.error("websocket_task_error error=%s", exc, exc_info=exc)
    except asyncio.CancelledError:
        pass


def _handle_future_exception(future: concurrent.futures.Future):
    try:
        exc = future.exception()
        if exc:
            logger.error("websocket_task_error error=%s", exc, exc_info=exc)
    except concurrent.futures.CancelledError:
        pass


def run_async(coro, loop: asyncio.AbstractEventLoop | None = None) -> None:
    """Run an async coroutine from sync code without waiting on it.

    Inside a running loop the coroutine becomes a task. From a worker thread it
    is handed to ``loop`` when that loop is running, otherwise it runs to
    completion on a private loop.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        if loop is not None and loop.is_running():
            future = asyncio.run_coroutine_threadsafe(coro, loop)
            future.add_done_callback(_handle_future_exception)
            return
        try:
            asyncio.run(coro)
        except Exception as exc:
            logger.error("async_run_error error=%s", exc)
        return
    task = asyncio.create_task(coro)
    task.add_done_callback(_handle_task_exception)


def _iso(value) -> str | None:
    value = as_utc(value)
    return value.isoformat() if value else None


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


def conversation_payload(conversation: Conversation) -> dict[str, Any]:
    return {
        "conversation_id": conversation.id,
        "contact_id": conversation.contact_id,
        "channel": _enum_value(conversation.channel),
        "status": _enum_value(conversation.status),
        "priority": _enum_value(conversation.priority),
        "unread_count": conversation.unread_count,
        "last_message_at": _iso(conversation.last_message_at),
        "assigned_team_id": conversation.assigned_team_id,
        "assigned_user_id": conversation.assigned_user_id,
        "assignment_method": _enum_value(conversation.assignment_method),
        "assigned_at": _iso(conversation.assigned_at),
    }


def message_payload(message: Message, preview: str | None = None) -> dict[str, Any]:
    return {
        "message_id": message.id,
        "conversation_id": message.conversation_id,
        "message_type": _enum_value(message.message_type),
        "is_from_contact": message.is_from_contact,
        "is_internal_note": message.is_internal_note,
        "sent_at": _iso(message.sent_at),
        "preview": preview,
        "is_deleted": message.is_deleted,
    }


class WebSocketGateway:
    """Broadcast gateway backed by the WebSocket connection manager."""

    def __init__(self, manager: ConnectionManager) -> None:
        self.manager = manager

    @property
    def loop(self) -> asyncio.AbstractEventLoop | None:
        return self.manager.loop

    async def broadcast(self, conversation_id: int, event: WebSocketEvent) -> None:
        await self.manager.broadcast_to_conversation(str(conversation_id), event)

    async def broadcast_to_all(self, event: WebSocketEvent) -> None:
        await self.manager.broadcast_to_all(event)
