from app.services.crm.inbox.permissions import (
    ASSIGN_CONVERSATIONS,
    UPDATE_CONVERSATIONS,
    RolePermissionEvaluator,
    can_assign_conversation,
    can_update_conversation,
)


def test_admin_has_every_permission(db_session, admin_user):
    evaluator = RolePermissionEvaluator(db_session)
    assert evaluator.is_admin(admin_user.id)
    assert evaluator.has_permission(admin_user.id, "anything:else")
    assert can_assign_conversation(evaluator, admin_user.id)


def test_agent_can_transfer_but_not_manage(db_session, agent_user):
    evaluator = RolePermissionEvaluator(db_session)
    assert not evaluator.is_admin(agent_user.id)
    assert can_assign_conversation(evaluator, agent_user.id)
    assert can_update_conversation(evaluator, agent_user.id)
    assert not evaluator.has_permission(agent_user.id, ASSIGN_CONVERSATIONS)


def test_viewer_has_nothing(db_session, make_user):
    viewer = make_user(username="viewer", role="viewer")
    evaluator = RolePermissionEvaluator(db_session)
    assert not can_assign_conversation(evaluator, viewer.id)
    assert not can_update_conversation(evaluator, viewer.id)


def test_per_user_grants_extend_role(db_session, make_user):
    viewer = make_user(username="viewer", role="viewer", permissions=[UPDATE_CONVERSATIONS])
    evaluator = RolePermissionEvaluator(db_session)
    assert can_update_conversation(evaluator, viewer.id)
    assert not can_assign_conversation(evaluator, viewer.id)


def test_inactive_and_unknown_users_hold_nothing(db_session, make_user):
    inactive = make_user(username="former", role="admin", is_active=False)
    evaluator = RolePermissionEvaluator(db_session)
    assert not evaluator.is_admin(inactive.id)
    assert not can_assign_conversation(evaluator, 424242)


def test_custom_role_table(db_session, make_user):
    lead = make_user(username="lead", role="Team-Lead")
    evaluator = RolePermissionEvaluator(db_session, role_permissions={"team-lead": frozenset({ASSIGN_CONVERSATIONS})})
    assert can_assign_conversation(evaluator, lead.id)
