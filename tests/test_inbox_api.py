"""HTTP-level tests for the inbox routes."""

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from app.api import deps
from app.db import get_db
from app.main import app
from app.services.crm.inbox.cache import TTLCache
from app.services.crm.inbox.listing import ConversationQueryService
from app.services.crm.inbox.notifications import InboxNotifier
from app.services.crm.inbox.providers import ProviderSendResult


@pytest.fixture()
def actor():
    return {"id": None}


@pytest.fixture()
def provider():
    return {"adapter": None}


@pytest.fixture()
def client(db_session, gateway, actor, provider):
    cache = TTLCache(ttl_seconds=3.0, max_entries=64)
    service = ConversationQueryService(cache=cache)

    def _db():
        yield db_session

    app.dependency_overrides[get_db] = _db
    app.dependency_overrides[deps.get_actor_id] = lambda: actor["id"]
    app.dependency_overrides[deps.get_query_service] = lambda: service
    app.dependency_overrides[deps.get_list_cache] = lambda: cache
    app.dependency_overrides[deps.get_notifier] = lambda: InboxNotifier(gateway=gateway)
    app.dependency_overrides[deps.get_provider_resolver] = lambda: (lambda channel: provider["adapter"])
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def test_list_conversations(client, conversation, make_message):
    make_message(conversation, content="Minha internet caiu")

    response = client.get("/crm/inbox/conversations", params={"limit": 10})

    assert response.status_code == 200
    body = response.json()
    assert body["has_more"] is False
    assert body["limit"] == 10
    [item] = body["conversations"]
    assert item["contact"]["name"] == "Maria Silva"
    assert item["preview"]["content"] == "Minha internet caiu"
    assert "metadata" in item


def test_list_is_also_served_under_api_prefix(client, conversation):
    response = client.get("/api/v1/crm/inbox/conversations")
    assert response.status_code == 200
    assert len(response.json()["conversations"]) == 1


def test_list_rejects_bad_paging(client):
    assert client.get("/crm/inbox/conversations", params={"offset": -1}).status_code == 422
    assert client.get("/crm/inbox/conversations", params={"limit": 0}).status_code == 422


def test_list_ignores_malformed_filters(client, conversation):
    response = client.get("/crm/inbox/conversations", params={"agent": "abc", "period": "someday"})
    assert response.status_code == 200
    assert len(response.json()["conversations"]) == 1


def test_search_by_phone_fragment(client, conversation):
    response = client.get("/crm/inbox/conversations/search", params={"q": "9999"})
    assert response.status_code == 200
    assert [item["id"] for item in response.json()["conversations"]] == [conversation.id]


def test_search_requires_term(client):
    assert client.get("/crm/inbox/conversations/search").status_code == 422


def test_get_conversation_summary(client, conversation):
    assert client.get(f"/crm/inbox/conversations/{conversation.id}").json()["id"] == conversation.id
    missing = client.get("/crm/inbox/conversations/99999")
    assert missing.status_code == 404
    assert missing.json()["detail"]["code"] == "conversation_not_found"


def test_assignment_requires_authentication(client, conversation):
    response = client.post(f"/crm/inbox/conversations/{conversation.id}/assignment", json={"user_id": None})
    assert response.status_code == 401
    assert response.json()["detail"]["code"] == "unauthenticated"


def test_assignment_by_admin(client, actor, admin_user, agent_user, make_team, conversation, gateway):
    team = make_team()
    actor["id"] = admin_user.id

    response = client.post(
        f"/crm/inbox/conversations/{conversation.id}/assignment",
        json={"team_id": team.id, "user_id": agent_user.id},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["assigned_user_id"] == agent_user.id
    assert body["assigned_team_id"] == team.id
    assert body["assignment_method"] == "manual"
    assert "conversation_assigned" in gateway.event_types()


def test_assignment_to_unknown_user(client, actor, admin_user, conversation):
    actor["id"] = admin_user.id
    response = client.post(
        f"/crm/inbox/conversations/{conversation.id}/assignment", json={"user_id": 424242}
    )
    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "target_not_found"


def test_read_and_unread(client, actor, agent_user, conversation, make_message):
    make_message(conversation)
    make_message(conversation)
    actor["id"] = agent_user.id

    read = client.post(f"/crm/inbox/conversations/{conversation.id}/read")
    assert read.json() == {"conversation_id": conversation.id, "unread_count": 0}

    unread = client.post(f"/crm/inbox/conversations/{conversation.id}/unread")
    assert unread.json()["unread_count"] == 1

    assert client.get("/crm/inbox/unread-count").json()["unread_count"] == 1


def test_read_requires_authentication(client, conversation):
    assert client.post(f"/crm/inbox/conversations/{conversation.id}/read").status_code == 401


def test_recalculate_is_admin_only(client, actor, agent_user, admin_user):
    actor["id"] = agent_user.id
    assert client.post("/crm/inbox/unread/recalculate").status_code == 403

    actor["id"] = admin_user.id
    response = client.post("/crm/inbox/unread/recalculate")
    assert response.status_code == 200
    assert "updated" in response.json()


def test_inbound_then_duplicate_delivery(client):
    event = {
        "platform": "whatsapp",
        "sender_id": "5511977776666",
        "sender_name": "Pedro",
        "phone": "5511977776666",
        "body": "Oi",
        "provider_message_id": "wamid-1",
    }

    first = client.post("/crm/inbox/inbound", json=event).json()
    again = client.post("/crm/inbox/inbound", json=event).json()

    assert first["contact_created"] is True
    assert first["conversation_created"] is True
    assert again["duplicate_event"] is True
    assert again["message_id"] == first["message_id"]


def test_send_message_without_provider(client, actor, agent_user, conversation):
    actor["id"] = agent_user.id

    response = client.post(f"/crm/inbox/conversations/{conversation.id}/messages", json={"content": "Olá!"})

    assert response.status_code == 200
    body = response.json()
    assert body["provider_delivered"] is False
    assert body["message"]["content"] == "Olá!"
    assert body["message"]["is_from_contact"] is False


def test_send_message_to_missing_conversation(client, actor, agent_user):
    actor["id"] = agent_user.id
    response = client.post("/crm/inbox/conversations/99999/messages", json={"content": "Olá!"})
    assert response.status_code == 404


def test_delete_contact_in_use(client, contact, conversation):
    response = client.delete(f"/crm/contacts/{contact.id}")
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "contact_in_use"


def test_duplicate_check_endpoint(client, make_contact):
    existing = make_contact(name="Maria", phone="5511999990000", origin_channel="whatsapp")

    response = client.get("/crm/contacts/duplicates/check", params={"phone": "(11) 99999-0000"})

    body = response.json()
    assert body["is_duplicate"] is True
    assert body["phone"] == "11999990000"
    assert [item["contact_id"] for item in body["duplicates"]] == [existing.id]


def test_health_and_metrics(client):
    health = client.get("/health")
    assert health.status_code == 200
    assert health.json()["status"] == "ok"
    assert "websocket_connections" in health.json()

    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    assert "inbox_" in metrics.text


def test_send_message_through_provider(client, actor, provider, agent_user, conversation):
    adapter = MagicMock()
    adapter.send_text.return_value = ProviderSendResult(provider_message_id="Z-55", raw={"zaapId": "Z-55"})
    provider["adapter"] = adapter
    actor["id"] = agent_user.id

    response = client.post(f"/crm/inbox/conversations/{conversation.id}/messages", json={"content": "Olá!"})

    body = response.json()
    assert body["provider_delivered"] is True
    assert body["provider_message_id"] == "Z-55"
    adapter.send_text.assert_called_once_with("5511999990000", "Olá!")


def test_websocket_subscribe_and_ping():
    from app.websocket import router as ws_router
    from app.websocket.manager import ConnectionManager

    manager = ConnectionManager(redis_url="redis://invalid:1/0")
    app.dependency_overrides[ws_router.get_ws_user_id] = lambda: "7"
    app.dependency_overrides[ws_router.get_connection_manager] = lambda: manager
    try:
        with TestClient(app).websocket_connect("/ws/inbox") as websocket:
            assert websocket.receive_json()["event"] == "connection_ack"
            websocket.send_json({"type": "subscribe", "conversation_id": 12})
            assert websocket.receive_json()["data"] == {"subscribed_to": 12}
            websocket.send_json({"type": "ping"})
            assert websocket.receive_json()["event"] == "heartbeat"
            assert manager._subscriptions == {"12": {"7"}}
    finally:
        app.dependency_overrides.clear()


def test_websocket_without_user_is_rejected():
    from starlette.websockets import WebSocketDisconnect

    with pytest.raises(WebSocketDisconnect):
        with TestClient(app).websocket_connect("/ws/inbox"):
            pass
