"""Permission helpers for CRM inbox workflows."""

from __future__ import annotations

from typing import Any, Iterable, Protocol

from sqlalchemy.orm import Session

from app.models.crm.team import SystemUser

TRANSFER_CONVERSATIONS = "conversations:transfer"
ASSIGN_CONVERSATIONS = "conversations:assign"
MANAGE_TEAMS = "teams:manage"
UPDATE_CONVERSATIONS = "conversations:update"

ASSIGNMENT_PERMISSIONS = (TRANSFER_CONVERSATIONS, ASSIGN_CONVERSATIONS, MANAGE_TEAMS)

ROLE_PERMISSIONS: dict[str, frozenset[str]] = {
    "admin": frozenset({"*"}),
    "supervisor": frozenset(
        {TRANSFER_CONVERSATIONS, ASSIGN_CONVERSATIONS, MANAGE_TEAMS, UPDATE_CONVERSATIONS}
    ),
    "agent": frozenset({TRANSFER_CONVERSATIONS, UPDATE_CONVERSATIONS}),
    "viewer": frozenset(),
}


class PermissionEvaluator(Protocol):
    def has_permission(self, user_id: int, permission: str, context: Any | None = None) -> bool: ...

    def has_any_permission(self, user_id: int, permissions: Iterable[str]) -> bool: ...

    def is_admin(self, user_id: int) -> bool: ...


def _normalize(values: Iterable[str] | None) -> set[str]:
    if not values:
        return set()
    return {str(value).strip() for value in values if value}


class RolePermissionEvaluator:
    """Resolves permissions from ``SystemUser.role`` plus per-user grants.

    Inactive or unknown users hold no permissions.
    """

    def __init__(self, db: Session, role_permissions: dict[str, frozenset[str]] | None = None):
        self.db = db
        self._role_permissions = role_permissions or ROLE_PERMISSIONS
        self._grants: dict[int, set[str]] = {}

    def _granted(self, user_id: int) -> set[str]:
        if user_id in self._grants:
            return self._grants[user_id]
        user = self.db.get(SystemUser, user_id)
        if not user or not user.is_active:
            granted: set[str] = set()
        else:
            granted = set(self._role_permissions.get((user.role or "").strip().lower(), frozenset()))
            granted |= _normalize(user.permissions)
        self._grants[user_id] = granted
        return granted

    def has_permission(self, user_id: int, permission: str, context: Any | None = None) -> bool:
        granted = self._granted(user_id)
        return "*" in granted or permission in granted

    def has_any_permission(self, user_id: int, permissions: Iterable[str]) -> bool:
        granted = self._granted(user_id)
        if "*" in granted:
            return True
        return bool(granted & _normalize(permissions))

    def is_admin(self, user_id: int) -> bool:
        return "*" in self._granted(user_id)


def can_assign_conversation(evaluator: PermissionEvaluator, user_id: int) -> bool:
    if evaluator.is_admin(user_id):
        return True
    return evaluator.has_any_permission(user_id, ASSIGNMENT_PERMISSIONS)


def can_update_conversation(evaluator: PermissionEvaluator, user_id: int) -> bool:
    if evaluator.is_admin(user_id):
        return True
    return evaluator.has_permission(user_id, UPDATE_CONVERSATIONS)
