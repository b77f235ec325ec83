"""Dependency injection container.

Builds the long-lived inbox collaborators once at startup: the list cache,
the preview resolver, the conversation query service, the WebSocket
connection manager and its broadcast gateway, and the provider adapter.

Usage:
    from app.container import container

    # In route handlers (see app.api.deps)
    service = container.query_service()

    # In tests
    with container.broadcast_gateway.override(FakeGateway()):
        response = client.post("/crm/inbox/conversations/1/assignment", ...)
"""

from __future__ import annotations

from dependency_injector import containers, providers  # type: ignore[import-not-found]

from app.config import settings
from app.middleware.health_monitor import HealthStats
from app.services.crm.inbox.cache import TTLCache
from app.services.crm.inbox.listing import ConversationQueryService
from app.services.crm.inbox.notifications import InboxNotifier
from app.services.crm.inbox.previews import PreviewResolver
from app.services.crm.inbox.providers import ZApiClient
from app.websocket.broadcaster import WebSocketGateway
from app.websocket.manager import ConnectionManager


class Container(containers.DeclarativeContainer):
    """Application dependency injection container.

    Stateful collaborators are singletons; the notifier is a factory so
    every request gets its own pending queue.
    """

    config = providers.Object(settings)

    list_cache = providers.Singleton(
        TTLCache,
        ttl_seconds=settings.inbox_cache_ttl_seconds,
        max_entries=settings.inbox_cache_max_entries,
    )
    preview_resolver = providers.Singleton(
        PreviewResolver,
        max_chars=settings.inbox_preview_max_chars,
    )
    query_service = providers.Singleton(
        ConversationQueryService,
        cache=list_cache,
        previews=preview_resolver,
        settings=config,
    )

    connection_manager = providers.Singleton(ConnectionManager, redis_url=settings.redis_url)
    broadcast_gateway = providers.Singleton(WebSocketGateway, manager=connection_manager)
    notifier = providers.Factory(InboxNotifier, gateway=broadcast_gateway)

    whatsapp_provider = providers.Singleton(ZApiClient, settings=config)

    health_stats = providers.Singleton(HealthStats)


# Global container instance
container = Container()
