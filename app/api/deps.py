from fastapi import Depends, Request
from sqlalchemy.orm import Session

from app.db import get_db
from app.models.crm.enums import ChannelType
from app.services.crm.inbox.permissions import RolePermissionEvaluator


def get_actor_id(request: Request) -> int | None:
    """Authenticated user id placed on ``request.state`` by the auth middleware.

    Returns None for anonymous requests; the services decide whether that is
    acceptable.
    """
    value = getattr(request.state, "user_id", None)
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def get_permission_evaluator(db: Session = Depends(get_db)):
    return RolePermissionEvaluator(db)


# -------------------------------------------------------------------------
# Container-based Dependencies
# -------------------------------------------------------------------------
# These provide services from the DI container for use in route handlers.
# They can be easily mocked in tests by overriding the container providers.


def get_query_service():
    """Get the conversation query service from container."""
    from app.container import container

    return container.query_service()


def get_list_cache():
    """Get the conversation list cache from container."""
    from app.container import container

    return container.list_cache()


def get_notifier():
    """Get a per-request notifier bound to the broadcast gateway."""
    from app.container import container

    return container.notifier()


def get_provider_resolver():
    """Return a callable mapping a channel to its outbound provider adapter."""
    from app.container import container

    def resolve(channel: ChannelType | None):
        if channel == ChannelType.whatsapp:
            return container.whatsapp_provider()
        return None

    return resolve
