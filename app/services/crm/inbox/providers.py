"""Outbound provider adapters.

Adapters raise ``InboxExternalError`` on any failure; callers turn that into
a partial-success result instead of failing the local write.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Protocol

import httpx

from app.config import Settings, settings as default_settings
from app.logging import get_logger
from app.services.crm.inbox.errors import InboxExternalError

logger = get_logger(__name__)


@dataclass(frozen=True)
class ProviderSendResult:
    provider_message_id: str | None
    raw: dict


class ProviderAdapter(Protocol):
    def send_text(self, phone: str, content: str) -> ProviderSendResult: ...

    def delete_message(self, phone: str, provider_message_id: str) -> None: ...


def clean_phone(phone: str) -> str:
    return re.sub(r"\D", "", phone or "")


class ZApiClient:
    """Z-API (WhatsApp) client for send and delete-for-everyone."""

    def __init__(
        self,
        settings: Settings | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        self.settings = settings or default_settings
        self._client = http_client

    @property
    def configured(self) -> bool:
        return bool(self.settings.zapi_instance_id and self.settings.zapi_token)

    def _base_url(self) -> str:
        base = self.settings.zapi_base_url.rstrip("/")
        return f"{base}/instances/{self.settings.zapi_instance_id}/token/{self.settings.zapi_token}"

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.settings.zapi_client_token:
            headers["Client-Token"] = self.settings.zapi_client_token
        return headers

    def _request(self, method: str, path: str, **kwargs) -> dict:
        if not self.configured:
            raise InboxExternalError("provider_not_configured", "Z-API credentials are not configured", retryable=False)
        url = f"{self._base_url()}{path}"
        client = self._client or httpx.Client(timeout=self.settings.zapi_timeout_seconds)
        try:
            response = client.request(method, url, headers=self._headers(), **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.warning("zapi_request_failed path=%s status=%s", path, exc.response.status_code)
            raise InboxExternalError(
                "provider_rejected",
                f"Z-API returned {exc.response.status_code}",
                retryable=exc.response.status_code >= 500,
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("zapi_request_error path=%s error=%s", path, exc)
            raise InboxExternalError("provider_unavailable", str(exc) or "Z-API request failed") from exc
        finally:
            if self._client is None:
                client.close()
        if not response.content:
            return {}
        try:
            payload = response.json()
        except ValueError:
            return {"raw_response": response.text}
        return payload if isinstance(payload, dict) else {"data": payload}

    def send_text(self, phone: str, content: str) -> ProviderSendResult:
        payload = self._request("POST", "/send-text", json={"phone": clean_phone(phone), "message": content})
        provider_id = payload.get("zaapId") or payload.get("messageId") or payload.get("id")
        return ProviderSendResult(provider_message_id=str(provider_id) if provider_id else None, raw=payload)

    def delete_message(self, phone: str, provider_message_id: str) -> None:
        self._request(
            "DELETE",
            "/messages",
            params={"phone": clean_phone(phone), "messageId": provider_message_id, "owner": "true"},
        )
