"""Tests for conversation assignment and status updates."""

from datetime import UTC, datetime, timedelta

import pytest

from app.models.crm.enums import AssignmentMethod, ConversationPriority, ConversationStatus
from app.services.common import as_utc
from app.services.crm.inbox import conversation_actions
from app.services.crm.inbox.errors import (
    InboxAuthError,
    InboxForbiddenError,
    InboxNotFoundError,
    InboxTargetNotFoundError,
    InboxValidationError,
)
from app.services.crm.inbox.listing import ConversationQueryService
from app.services.crm.inbox.notifications import InboxNotifier
from app.services.crm.inbox.permissions import RolePermissionEvaluator

NOW = datetime(2026, 3, 10, 15, 0, tzinfo=UTC)


def _assign(db_session, **kwargs):
    kwargs.setdefault("evaluator", RolePermissionEvaluator(db_session))
    kwargs.setdefault("team_id", None)
    kwargs.setdefault("user_id", None)
    return conversation_actions.assign_conversation(db_session, **kwargs)


def test_assign_sets_team_user_and_stamp(db_session, conversation, admin_user, agent_user, make_team):
    team = make_team()

    result = _assign(
        db_session,
        conversation_id=conversation.id,
        team_id=team.id,
        user_id=agent_user.id,
        actor_id=admin_user.id,
        now=NOW,
    )

    assert result.conversation.assigned_team_id == team.id
    assert result.conversation.assigned_user_id == agent_user.id
    assert result.conversation.assignment_method == AssignmentMethod.manual
    assert as_utc(result.conversation.assigned_at) == NOW


def test_missing_actor_is_unauthenticated(db_session, conversation):
    with pytest.raises(InboxAuthError):
        _assign(db_session, conversation_id=conversation.id, actor_id=None)


def test_permission_checked_before_lookup(db_session, make_user):
    viewer = make_user(username="viewer", role="viewer")

    with pytest.raises(InboxForbiddenError):
        _assign(db_session, conversation_id=999_999, actor_id=viewer.id)


def test_agent_with_transfer_permission_can_assign(db_session, conversation, agent_user):
    result = _assign(db_session, conversation_id=conversation.id, user_id=agent_user.id, actor_id=agent_user.id)
    assert result.conversation.assigned_user_id == agent_user.id


def test_unknown_conversation(db_session, admin_user):
    with pytest.raises(InboxNotFoundError):
        _assign(db_session, conversation_id=999_999, actor_id=admin_user.id)


def test_unknown_target_leaves_conversation_untouched(db_session, conversation, admin_user, agent_user):
    _assign(db_session, conversation_id=conversation.id, user_id=agent_user.id, actor_id=admin_user.id, now=NOW)

    with pytest.raises(InboxTargetNotFoundError) as exc:
        _assign(db_session, conversation_id=conversation.id, team_id=4242, actor_id=admin_user.id)

    assert exc.value.code == "target_not_found"
    assert exc.value.status_code == 404
    db_session.refresh(conversation)
    assert conversation.assigned_user_id == agent_user.id
    assert conversation.assigned_team_id is None


def test_invalid_method(db_session, conversation, admin_user):
    with pytest.raises(InboxValidationError):
        _assign(db_session, conversation_id=conversation.id, actor_id=admin_user.id, method="round-robin")


def test_repeat_assignment_gets_newer_stamp(db_session, conversation, admin_user, agent_user):
    first = _assign(db_session, conversation_id=conversation.id, user_id=agent_user.id, actor_id=admin_user.id, now=NOW)
    first_stamp = as_utc(first.conversation.assigned_at)

    second = _assign(db_session, conversation_id=conversation.id, user_id=agent_user.id, actor_id=admin_user.id, now=NOW)

    assert second.conversation.assigned_user_id == agent_user.id
    assert as_utc(second.conversation.assigned_at) > first_stamp


def test_none_clears_assignment(db_session, conversation, admin_user, agent_user, make_team):
    team = make_team()
    _assign(
        db_session,
        conversation_id=conversation.id,
        team_id=team.id,
        user_id=agent_user.id,
        actor_id=admin_user.id,
        now=NOW,
    )

    result = _assign(db_session, conversation_id=conversation.id, actor_id=admin_user.id, now=NOW + timedelta(seconds=1))

    assert result.conversation.assigned_team_id is None
    assert result.conversation.assigned_user_id is None


def test_assignment_broadcasts_fresh_user_fields(
    db_session, conversation, admin_user, agent_user, make_team, notifier, gateway
):
    team = make_team()
    _assign(
        db_session,
        conversation_id=conversation.id,
        team_id=team.id,
        user_id=agent_user.id,
        actor_id=admin_user.id,
        notifier=notifier,
    )

    assert [event.event.value for _, event in gateway.conversation_events] == ["conversation_assigned"]
    _, event = gateway.conversation_events[0]
    assert event.data["assigned_user"]["display_name"] == "Ana"
    assert event.data["team_type"] == "suporte"
    assert event.data["assigned_by"] == admin_user.id
    assert [event.event.value for event in gateway.global_events] == ["conversation_assigned"]


class _BrokenGateway:
    async def broadcast(self, conversation_id, event):
        raise ConnectionError("redis down")

    async def broadcast_to_all(self, event):
        raise ConnectionError("redis down")


def test_broadcast_failure_does_not_fail_assignment(db_session, conversation, admin_user, agent_user):
    result = _assign(
        db_session,
        conversation_id=conversation.id,
        user_id=agent_user.id,
        actor_id=admin_user.id,
        notifier=InboxNotifier(gateway=_BrokenGateway()),
    )

    assert result.conversation.assigned_user_id == agent_user.id


def test_assignment_visible_in_next_list(db_session, conversation, admin_user, agent_user, list_cache):
    service = ConversationQueryService(cache=list_cache)
    before = service.list_conversations(db_session)
    assert before.conversations[0].assigned_user is None

    _assign(
        db_session,
        conversation_id=conversation.id,
        user_id=agent_user.id,
        actor_id=admin_user.id,
        cache=list_cache,
    )

    after = service.list_conversations(db_session)
    assert after.conversations[0].assigned_user.display_name == "Ana"


def test_update_status_and_priority(db_session, conversation, agent_user, notifier, gateway):
    updated = conversation_actions.update_conversation_status(
        db_session,
        conversation_id=conversation.id,
        actor_id=agent_user.id,
        evaluator=RolePermissionEvaluator(db_session),
        status="Resolved",
        priority="high",
        notifier=notifier,
    )

    assert updated.status == ConversationStatus.resolved
    assert updated.priority == ConversationPriority.high
    assert "conversation_updated" in gateway.event_types()


def test_update_status_rejects_unknown_value(db_session, conversation, agent_user):
    with pytest.raises(InboxValidationError):
        conversation_actions.update_conversation_status(
            db_session,
            conversation_id=conversation.id,
            actor_id=agent_user.id,
            evaluator=RolePermissionEvaluator(db_session),
            status="archived",
        )


def test_viewer_cannot_update_status(db_session, conversation, make_user):
    viewer = make_user(username="viewer", role="viewer")
    with pytest.raises(InboxForbiddenError):
        conversation_actions.update_conversation_status(
            db_session,
            conversation_id=conversation.id,
            actor_id=viewer.id,
            evaluator=RolePermissionEvaluator(db_session),
            status="closed",
        )
