"""Tests for WebSocket connection manager local delivery."""

import pytest
from starlette.websockets import WebSocketState

from app.websocket.broadcaster import WebSocketGateway
from app.websocket.events import EventType, WebSocketEvent
from app.websocket.manager import ConnectionManager


class FakeWebSocket:
    def __init__(self, fail: bool = False):
        self.client_state = WebSocketState.CONNECTED
        self.sent: list[dict] = []
        self.fail = fail

    async def send_json(self, data):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(data)

    def events(self) -> list[str]:
        return [item["event"] for item in self.sent]


@pytest.fixture()
def manager():
    # No connect(): Redis is absent so every broadcast uses local dispatch.
    return ConnectionManager(redis_url="redis://invalid:1/0")


@pytest.mark.asyncio
async def test_register_sends_ack(manager):
    ws = FakeWebSocket()
    await manager.register_connection("1", ws)
    try:
        assert ws.events() == ["connection_ack"]
        assert manager.connection_count == 1
    finally:
        await manager.unregister_connection("1", ws)
    assert manager.connection_count == 0


@pytest.mark.asyncio
async def test_conversation_broadcast_reaches_subscribers_only(manager):
    subscribed, other = FakeWebSocket(), FakeWebSocket()
    await manager.register_connection("1", subscribed)
    await manager.register_connection("2", other)
    try:
        await manager.subscribe_conversation("1", "42")
        await WebSocketGateway(manager).broadcast(42, WebSocketEvent(event=EventType.MESSAGE_NEW, data={"message_id": 9}))

        assert subscribed.events() == ["connection_ack", "message_new"]
        assert other.events() == ["connection_ack"]
    finally:
        await manager.unregister_connection("1", subscribed)
        await manager.unregister_connection("2", other)


@pytest.mark.asyncio
async def test_broadcast_to_all(manager):
    first, second = FakeWebSocket(), FakeWebSocket()
    await manager.register_connection("1", first)
    await manager.register_connection("2", second)
    try:
        await manager.broadcast_to_all(WebSocketEvent(event=EventType.CONVERSATION_LIST_UPDATED, data={}))
        assert first.events()[-1] == "conversation_list_updated"
        assert second.events()[-1] == "conversation_list_updated"
    finally:
        await manager.unregister_connection("1", first)
        await manager.unregister_connection("2", second)


@pytest.mark.asyncio
async def test_unsubscribe_stops_delivery(manager):
    ws = FakeWebSocket()
    await manager.register_connection("1", ws)
    try:
        await manager.subscribe_conversation("1", "7")
        await manager.unsubscribe_conversation("1", "7")
        await manager.broadcast_to_conversation("7", WebSocketEvent(event=EventType.MESSAGE_NEW, data={}))
        assert ws.events() == ["connection_ack"]
    finally:
        await manager.unregister_connection("1", ws)


@pytest.mark.asyncio
async def test_last_socket_closing_drops_subscriptions(manager):
    ws = FakeWebSocket()
    await manager.register_connection("1", ws)
    await manager.subscribe_conversation("1", "7")
    await manager.unregister_connection("1", ws)

    assert manager._subscriptions == {}


@pytest.mark.asyncio
async def test_failing_socket_is_removed_on_send(manager):
    ws = FakeWebSocket()
    await manager.register_connection("1", ws)
    ws.fail = True
    await manager.broadcast_to_user("1", WebSocketEvent(event=EventType.UNREAD_UPDATED, data={"unread_count": 3}))

    assert manager.connection_count == 0
