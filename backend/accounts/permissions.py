# accounts/permissions.py
from __future__ import annotations

import logging
from typing import Optional

from rest_framework.permissions import BasePermission

from accounts.authz import SUPERADMIN, is_granted, resolve_actor
from accounts.identity import ROLE_TAGS

logger = logging.getLogger(__name__)


class HasSchoolPermission(BasePermission):
    """
    DRF permission class backed by PermissionResolver.

    Views declare what they need with either:
        required_permission = "viewResults"
    or, per method:
        required_permissions = {"GET": "viewResults", "POST": "updateResults"}

    The resolved ActorContext is left on request.actor for the view.
    """

    message = "You do not have permission to perform this action."

    def _required(self, request, view) -> Optional[str]:
        per_method = getattr(view, "required_permissions", None) or {}
        if request.method in per_method:
            return per_method[request.method]
        return getattr(view, "required_permission", None)

    def has_permission(self, request, view) -> bool:
        actor = resolve_actor(request)
        request.actor = actor

        key = self._required(request, view)
        if key is None:
            return True
        if actor.has(key):
            return True

        self.message = f"Permission denied: {key}"
        return False


def normalize_matrix(matrix: dict) -> dict:
    """
    Validate and normalize a role -> {permission_key: value} matrix.

    Values are stored as booleans. superadmin entries are rejected; that
    role is never looked up in a matrix.
    """
    if not isinstance(matrix, dict):
        raise ValueError("Permission matrix must be an object of role -> permissions.")

    normalized = {}
    for role, entry in matrix.items():
        if role == SUPERADMIN:
            raise ValueError("superadmin permissions cannot be overridden.")
        if role not in ROLE_TAGS:
            raise ValueError(f"Unknown role {role!r}. Must be one of: {sorted(ROLE_TAGS)}")
        if not isinstance(entry, dict):
            raise ValueError(f"Permissions for {role} must be an object.")
        normalized[role] = {str(key): is_granted(value) for key, value in entry.items()}
    return normalized


def save_permission_matrix(school_code: str, matrix: dict, updated_by: str = "", connections=None) -> dict:
    """
    Replace a school's own permission matrix.

    Returns the stored row.
    """
    if connections is None:
        from tenant.connections import get_connection_manager

        connections = get_connection_manager()

    normalized = normalize_matrix(matrix)
    handle = connections.get_handle(school_code)
    row = handle.permission_overrides.upsert({}, matrix=normalized, updated_by=updated_by)
    logger.info(
        "Saved permission matrix",
        extra={"school_code": handle.school_code, "user_id": updated_by, "roles": sorted(normalized)},
    )
    return row
