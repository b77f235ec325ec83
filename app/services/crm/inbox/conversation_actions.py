"""Conversation action helpers for CRM inbox."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from app.logging import get_logger
from app.models.crm.conversation import Conversation
from app.models.crm.enums import AssignmentMethod, ConversationPriority, ConversationStatus
from app.models.crm.team import SystemUser, Team
from app.services.common import as_utc, utcnow
from app.services.crm.inbox import cache as inbox_cache
from app.services.crm.inbox.cache import TTLCache
from app.services.crm.inbox.errors import (
    InboxAuthError,
    InboxForbiddenError,
    InboxNotFoundError,
    InboxTargetNotFoundError,
    InboxValidationError,
)
from app.services.crm.inbox.notifications import InboxNotifier
from app.services.crm.inbox.observability import ASSIGNMENTS
from app.services.crm.inbox.permissions import (
    PermissionEvaluator,
    can_assign_conversation,
    can_update_conversation,
)
from app.websocket.broadcaster import conversation_payload
from app.websocket.events import EventType

logger = get_logger(__name__)


@dataclass(frozen=True)
class AssignConversationResult:
    conversation: Conversation
    assigned_user: SystemUser | None
    assigned_team: Team | None


def _require_actor(actor_id: int | None) -> int:
    if actor_id is None:
        raise InboxAuthError()
    return actor_id


def _assignment_method(value: AssignmentMethod | str | None) -> AssignmentMethod:
    if isinstance(value, AssignmentMethod):
        return value
    try:
        return AssignmentMethod((value or AssignmentMethod.manual.value).strip().lower())
    except ValueError as exc:
        raise InboxValidationError("invalid_assignment_method", "method must be manual or automatic") from exc


def assign_conversation(
    db: Session,
    *,
    conversation_id: int,
    team_id: int | None,
    user_id: int | None,
    actor_id: int | None,
    evaluator: PermissionEvaluator,
    method: AssignmentMethod | str | None = AssignmentMethod.manual,
    cache: TTLCache | None = None,
    notifier: InboxNotifier | None = None,
    now: datetime | None = None,
) -> AssignConversationResult:
    """Set the owning team and user of a conversation.

    Authentication and permission are checked before the conversation is
    looked up, so callers without rights cannot probe which ids exist.
    ``None`` clears the team or user. Repeating the same assignment is
    allowed and re-stamps ``assigned_at``.
    """
    actor = _require_actor(actor_id)
    if not can_assign_conversation(evaluator, actor):
        raise InboxForbiddenError("assignment_forbidden", "Not authorized to assign conversations")
    assignment_method = _assignment_method(method)

    conversation = db.get(Conversation, conversation_id)
    if not conversation:
        raise InboxNotFoundError("conversation_not_found", "Conversation not found")

    team = None
    if team_id is not None:
        team = db.get(Team, team_id)
        if not team:
            raise InboxTargetNotFoundError(f"Team {team_id} not found")
    user = None
    if user_id is not None:
        user = db.get(SystemUser, user_id)
        if not user:
            raise InboxTargetNotFoundError(f"User {user_id} not found")

    stamp = now or utcnow()
    previous = as_utc(conversation.assigned_at)
    if previous is not None and stamp <= previous:
        stamp = previous + timedelta(microseconds=1)

    conversation.assigned_team_id = team.id if team else None
    conversation.assigned_user_id = user.id if user else None
    conversation.assignment_method = assignment_method
    conversation.assigned_at = stamp
    db.commit()
    db.refresh(conversation)
    ASSIGNMENTS.labels(method=assignment_method.value).inc()
    logger.info(
        "inbox_conversation_assigned conversation_id=%s team_id=%s user_id=%s actor_id=%s",
        conversation.id,
        conversation.assigned_team_id,
        conversation.assigned_user_id,
        actor,
    )

    inbox_cache.invalidate_inbox_list(cache)
    if notifier is not None:
        # Display fields are re-read after the commit.
        fresh_user = db.get(SystemUser, user.id, populate_existing=True) if user else None
        data = conversation_payload(conversation)
        data["assigned_user"] = (
            {"id": fresh_user.id, "display_name": fresh_user.display_name, "avatar": fresh_user.avatar}
            if fresh_user
            else None
        )
        data["team_type"] = team.team_type.value if team and team.team_type else None
        data["assigned_by"] = actor
        notifier.enqueue(conversation.id, EventType.CONVERSATION_ASSIGNED, data)
        notifier.enqueue_global(EventType.CONVERSATION_ASSIGNED, data)
        notifier.flush()
    return AssignConversationResult(conversation=conversation, assigned_user=user, assigned_team=team)


def update_conversation_status(
    db: Session,
    *,
    conversation_id: int,
    actor_id: int | None,
    evaluator: PermissionEvaluator,
    status: str | None = None,
    priority: str | None = None,
    cache: TTLCache | None = None,
    notifier: InboxNotifier | None = None,
) -> Conversation:
    actor = _require_actor(actor_id)
    if not can_update_conversation(evaluator, actor):
        raise InboxForbiddenError("update_forbidden", "Not authorized to update conversations")
    if status is None and priority is None:
        raise InboxValidationError("empty_update", "Provide a status or a priority")
    try:
        status_enum = ConversationStatus(status.strip().lower()) if status is not None else None
    except ValueError as exc:
        raise InboxValidationError("invalid_status", f"Unknown status {status!r}") from exc
    try:
        priority_enum = ConversationPriority(priority.strip().lower()) if priority is not None else None
    except ValueError as exc:
        raise InboxValidationError("invalid_priority", f"Unknown priority {priority!r}") from exc

    conversation = db.get(Conversation, conversation_id)
    if not conversation:
        raise InboxNotFoundError("conversation_not_found", "Conversation not found")
    if status_enum is not None:
        conversation.status = status_enum
    if priority_enum is not None:
        conversation.priority = priority_enum
    db.commit()
    db.refresh(conversation)

    inbox_cache.invalidate_inbox_list(cache)
    if notifier is not None:
        data = conversation_payload(conversation)
        notifier.enqueue(conversation.id, EventType.CONVERSATION_UPDATED, data)
        notifier.enqueue_global(EventType.CONVERSATION_LIST_UPDATED, data)
        notifier.flush()
    return conversation
