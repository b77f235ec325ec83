import json

import httpx
import pytest

from app.config import Settings
from app.services.crm.inbox.errors import InboxExternalError
from app.services.crm.inbox.providers import ZApiClient, clean_phone

SETTINGS = Settings(
    zapi_base_url="https://zapi.test",
    zapi_instance_id="inst-1",
    zapi_token="tok-1",
    zapi_client_token="client-1",
)


def _client(handler, settings=SETTINGS) -> ZApiClient:
    return ZApiClient(settings=settings, http_client=httpx.Client(transport=httpx.MockTransport(handler)))


def test_clean_phone():
    assert clean_phone("+55 (11) 99999-0000") == "5511999990000"
    assert clean_phone(None) == ""


def test_send_text_returns_provider_id():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"zaapId": "Z-1", "messageId": "M-1"})

    result = _client(handler).send_text("+55 11 99999-0000", "Olá")

    assert result.provider_message_id == "Z-1"
    assert seen["url"] == "https://zapi.test/instances/inst-1/token/tok-1/send-text"
    assert seen["headers"]["Client-Token"] == "client-1"
    assert seen["body"] == {"phone": "5511999990000", "message": "Olá"}


def test_delete_message_sends_owner_flag():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["params"] = dict(request.url.params)
        return httpx.Response(204)

    _client(handler).delete_message("5511999990000", "Z-1")

    assert seen["method"] == "DELETE"
    assert seen["params"] == {"phone": "5511999990000", "messageId": "Z-1", "owner": "true"}


def test_unconfigured_client_refuses():
    client = _client(lambda request: httpx.Response(200), settings=Settings(zapi_instance_id="", zapi_token=""))
    assert not client.configured
    with pytest.raises(InboxExternalError) as exc:
        client.send_text("5511999990000", "oi")
    assert exc.value.code == "provider_not_configured"


def test_http_error_becomes_provider_rejected():
    client = _client(lambda request: httpx.Response(502, json={"error": "bad gateway"}))
    with pytest.raises(InboxExternalError) as exc:
        client.send_text("5511999990000", "oi")
    assert exc.value.code == "provider_rejected"
    assert exc.value.retryable is True


def test_client_error_is_not_retryable():
    client = _client(lambda request: httpx.Response(400, json={"error": "invalid phone"}))
    with pytest.raises(InboxExternalError) as exc:
        client.send_text("123", "oi")
    assert exc.value.retryable is False


def test_transport_error_becomes_provider_unavailable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(InboxExternalError) as exc:
        _client(handler).send_text("5511999990000", "oi")
    assert exc.value.code == "provider_unavailable"
