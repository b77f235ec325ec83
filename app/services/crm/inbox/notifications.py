"""Post-commit real-time notifications for inbox mutations.

Services enqueue events after their commit succeeds and then flush. Flushing
hands each event to the broadcast gateway without waiting for delivery; a
gateway failure is logged and counted, never raised into the mutation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from app.logging import get_logger
from app.services.crm.inbox.observability import BROADCAST_FAILURES
from app.websocket.broadcaster import run_async
from app.websocket.events import EventType, WebSocketEvent

logger = get_logger(__name__)


class BroadcastGateway(Protocol):
    async def broadcast(self, conversation_id: int, event: WebSocketEvent) -> None: ...

    async def broadcast_to_all(self, event: WebSocketEvent) -> None: ...


@dataclass(frozen=True)
class PendingNotification:
    event: WebSocketEvent
    conversation_id: int | None = None

    @property
    def is_global(self) -> bool:
        return self.conversation_id is None


@dataclass
class InboxNotifier:
    gateway: BroadcastGateway | None = None
    pending: list[PendingNotification] = field(default_factory=list)

    def enqueue(self, conversation_id: int, event: EventType, data: dict[str, Any]) -> None:
        self.pending.append(
            PendingNotification(event=WebSocketEvent(event=event, data=data), conversation_id=conversation_id)
        )

    def enqueue_global(self, event: EventType, data: dict[str, Any]) -> None:
        self.pending.append(PendingNotification(event=WebSocketEvent(event=event, data=data)))

    def discard(self) -> None:
        self.pending.clear()

    async def _deliver(self, notification: PendingNotification) -> None:
        try:
            if notification.is_global:
                await self.gateway.broadcast_to_all(notification.event)
            else:
                await self.gateway.broadcast(notification.conversation_id, notification.event)
        except Exception as exc:
            BROADCAST_FAILURES.labels(event=notification.event.event.value).inc()
            logger.warning(
                "inbox_broadcast_failed event=%s conversation_id=%s error=%s",
                notification.event.event.value,
                notification.conversation_id,
                exc,
            )

    def flush(self) -> int:
        """Hand pending notifications to the gateway. Returns how many were handed off."""
        pending, self.pending = self.pending, []
        if self.gateway is None:
            return 0
        handed = 0
        for notification in pending:
            try:
                run_async(self._deliver(notification), loop=getattr(self.gateway, "loop", None))
                handed += 1
            except Exception as exc:
                BROADCAST_FAILURES.labels(event=notification.event.event.value).inc()
                logger.warning("inbox_broadcast_schedule_failed event=%s error=%s", notification.event.event.value, exc)
        return handed
