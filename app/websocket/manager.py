from __future__ import annotations

import asyncio
import contextlib
import json
from typing import Any

import redis.asyncio as aioredis
from fastapi import WebSocket
from starlette.websockets import WebSocketState

from app.config import settings
from app.logging import get_logger
from app.websocket.events import EventType, WebSocketEvent

logger = get_logger(__name__)

CHANNEL_PREFIX = "inbox_ws:"
ALL_CHANNEL = f"{CHANNEL_PREFIX}all"
HEARTBEAT_INTERVAL_SECONDS = 25


class ConnectionManager:
    """
    Manages WebSocket connections with Redis pub/sub for horizontal scaling.

    Local connection pool: user_id -> [WebSocket]
    Conversation subscriptions: conversation_id -> set[user_id]
    """

    def __init__(self, redis_url: str | None = None) -> None:
        self.redis_url = redis_url or settings.redis_url
        self._connections: dict[str, list[WebSocket]] = {}
        self._subscriptions: dict[str, set[str]] = {}
        self._redis_client: Any | None = None
        self._pubsub: Any | None = None
        self._listener_task: asyncio.Task | None = None
        self._heartbeat_tasks: dict[tuple[str, int], asyncio.Task] = {}
        self._running = False
        self.loop: asyncio.AbstractEventLoop | None = None

    @property
    def connection_count(self) -> int:
        return sum(len(sockets) for sockets in self._connections.values())

    async def connect(self) -> None:
        """Initialize Redis connection and start listener."""
        self.loop = asyncio.get_running_loop()
        try:
            self._redis_client = aioredis.from_url(self.redis_url, decode_responses=True)
            self._pubsub = self._redis_client.pubsub()
            await self._pubsub.psubscribe(f"{CHANNEL_PREFIX}*")
            self._running = True
            self._listener_task = asyncio.create_task(self._redis_listener())
            logger.info("websocket_manager_connected redis=%s", self.redis_url)
        except Exception as exc:
            self._redis_client = None
            self._pubsub = None
            logger.warning("websocket_manager_redis_failed error=%s", exc)

    async def disconnect(self) -> None:
        """Cleanup Redis connection and stop listener."""
        self._running = False
        if self._listener_task:
            self._listener_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._listener_task
        if self._pubsub:
            await self._pubsub.punsubscribe()
            await self._pubsub.aclose()
        if self._redis_client:
            await self._redis_client.aclose()
        self._redis_client = None
        self._pubsub = None
        logger.info("websocket_manager_disconnected")

    async def _redis_listener(self) -> None:
        """Listen for messages from Redis pub/sub and dispatch to local connections."""
        try:
            if not self._pubsub:
                return
            pubsub = self._pubsub
            while self._running:
                message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if message and message["type"] == "pmessage":
                    await self._handle_redis_message(message["channel"], message["data"])
        except asyncio.CancelledError:
            pass
        except Exception as exc:
            logger.error("websocket_redis_listener_error error=%s", exc)

    async def _handle_redis_message(self, channel: str, data: str) -> None:
        """Process incoming Redis message and dispatch to local connections."""
        try:
            logger.debug("websocket_redis_message_received channel=%s", channel)
            payload = json.loads(data)
            event_data = payload.get("event")
            if not event_data:
                return
            if payload.get("broadcast"):
                await self._dispatch_to_all(event_data)
                return
            user_id = payload.get("user_id")
            if user_id:
                await self._dispatch_to_user(str(user_id), event_data)
                return
            conversation_id = payload.get("conversation_id")
            if conversation_id is not None:
                await self._dispatch_to_subscribers(str(conversation_id), event_data)
        except Exception as exc:
            logger.warning("websocket_redis_message_error error=%s", exc)

    async def _send(self, user_id: str, ws: WebSocket, event_data: dict) -> None:
        try:
            if ws.client_state == WebSocketState.CONNECTED:
                await ws.send_json(event_data)
        except Exception:
            await self._remove_connection(user_id, ws)

    async def _dispatch_to_subscribers(self, conversation_id: str, event_data: dict) -> None:
        """Send event to all users subscribed to a conversation."""
        user_ids = self._subscriptions.get(conversation_id, set())
        for user_id in list(user_ids):
            for ws in list(self._connections.get(user_id, [])):
                await self._send(user_id, ws, event_data)

    async def _dispatch_to_user(self, user_id: str, event_data: dict) -> None:
        """Send event to all local connections for a user."""
        for ws in list(self._connections.get(user_id, [])):
            await self._send(user_id, ws, event_data)

    async def _dispatch_to_all(self, event_data: dict) -> None:
        """Send event to every local connection."""
        for user_id, websockets in list(self._connections.items()):
            for ws in list(websockets):
                await self._send(user_id, ws, event_data)

    async def register_connection(self, user_id: str, websocket: WebSocket) -> None:
        """Register a new WebSocket connection for a user."""
        self._connections.setdefault(user_id, []).append(websocket)
        logger.debug("websocket_registered user_id=%s", user_id)

        ack_event = WebSocketEvent(
            event=EventType.CONNECTION_ACK,
            data={"user_id": user_id, "status": "connected"},
        )
        await websocket.send_json(ack_event.model_dump(mode="json"))
        self._start_heartbeat(user_id, websocket)

    async def unregister_connection(self, user_id: str, websocket: WebSocket) -> None:
        """Remove a WebSocket connection."""
        await self._remove_connection(user_id, websocket)

    async def _remove_connection(self, user_id: str, websocket: WebSocket) -> None:
        self._stop_heartbeat(user_id, websocket)
        if user_id in self._connections:
            if websocket in self._connections[user_id]:
                self._connections[user_id].remove(websocket)
            if not self._connections[user_id]:
                del self._connections[user_id]

        # Subscriptions outlive a socket only while the user has another one open
        if user_id not in self._connections:
            for conv_id in list(self._subscriptions.keys()):
                self._subscriptions[conv_id].discard(user_id)
                if not self._subscriptions[conv_id]:
                    del self._subscriptions[conv_id]

        logger.debug("websocket_unregistered user_id=%s", user_id)

    def _start_heartbeat(self, user_id: str, websocket: WebSocket) -> None:
        key = (user_id, id(websocket))
        if key in self._heartbeat_tasks:
            return
        self._heartbeat_tasks[key] = asyncio.create_task(self._heartbeat_loop(user_id, websocket))

    def _stop_heartbeat(self, user_id: str, websocket: WebSocket) -> None:
        task = self._heartbeat_tasks.pop((user_id, id(websocket)), None)
        if task:
            task.cancel()

    async def _heartbeat_loop(self, user_id: str, websocket: WebSocket) -> None:
        try:
            while websocket.client_state == WebSocketState.CONNECTED:
                await asyncio.sleep(HEARTBEAT_INTERVAL_SECONDS)
                await self.send_heartbeat(user_id, websocket)
        except asyncio.CancelledError:
            pass

    async def subscribe_conversation(self, user_id: str, conversation_id: str) -> None:
        """Subscribe a user to conversation updates."""
        self._subscriptions.setdefault(conversation_id, set()).add(user_id)
        logger.debug("websocket_subscribed user_id=%s conversation_id=%s", user_id, conversation_id)

    async def unsubscribe_conversation(self, user_id: str, conversation_id: str) -> None:
        """Unsubscribe a user from conversation updates."""
        if conversation_id in self._subscriptions:
            self._subscriptions[conversation_id].discard(user_id)
            if not self._subscriptions[conversation_id]:
                del self._subscriptions[conversation_id]
        logger.debug("websocket_unsubscribed user_id=%s conversation_id=%s", user_id, conversation_id)

    async def _publish(self, channel: str, payload: dict) -> bool:
        if not self._redis_client:
            return False
        try:
            await self._redis_client.publish(channel, json.dumps(payload))
            return True
        except Exception as exc:
            logger.warning("websocket_broadcast_redis_error error=%s", exc)
            return False

    # When Redis is up its listener performs local delivery, so each
    # broadcast dispatches locally only on the fallback path.
    async def broadcast_to_conversation(self, conversation_id: str, event: WebSocketEvent) -> None:
        """Broadcast an event to all subscribers of a conversation."""
        event_data = event.model_dump(mode="json")
        payload = {"conversation_id": conversation_id, "event": event_data}
        if await self._publish(f"{CHANNEL_PREFIX}{conversation_id}", payload):
            return
        await self._dispatch_to_subscribers(conversation_id, event_data)

    async def broadcast_to_user(self, user_id: str, event: WebSocketEvent) -> None:
        """Send event directly to a specific user's connections."""
        event_data = event.model_dump(mode="json")
        if await self._publish(f"{CHANNEL_PREFIX}user:{user_id}", {"user_id": user_id, "event": event_data}):
            return
        await self._dispatch_to_user(user_id, event_data)

    async def broadcast_to_all(self, event: WebSocketEvent) -> None:
        """Send event to every connected client."""
        event_data = event.model_dump(mode="json")
        if await self._publish(ALL_CHANNEL, {"broadcast": True, "event": event_data}):
            return
        await self._dispatch_to_all(event_data)

    async def send_heartbeat(self, user_id: str, websocket: WebSocket) -> None:
        """Send heartbeat response to a specific connection."""
        heartbeat = WebSocketEvent(event=EventType.HEARTBEAT, data={"status": "ok"})
        try:
            await websocket.send_json(heartbeat.model_dump(mode="json"))
        except Exception:
            await self._remove_connection(user_id, websocket)
