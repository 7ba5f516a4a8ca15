"""
auth/permissions.py -- Role checks and the role -> permission table.

The table is data, not code: auth/permissions.json maps each role to the set
of capabilities it holds. load_permission_table() reads it once at startup
(api/main.py lifespan) and the resulting PermissionTable lives on app.state,
so tests can swap in their own table and new roles need no code change.

Ownership and enrollment checks are plain functions over domain objects. They
raise AuthorizationError; the caller is expected to have authenticated first.

Layer rule: no imports from api/, courses/, or mail/.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from pathlib import Path

from auth.models import ROLES, STAFF_ROLES, User
from core.errors import AuthorizationError

logger = logging.getLogger("falcons.auth.permissions")

PERMISSIONS: tuple[str, ...] = (
    "read",
    "write",
    "delete",
    "manage_users",
    "manage_courses",
    "manage_content",
    "manage_own_courses",
)

# Attribute names that identify a resource's owner, in lookup order.
_OWNER_FIELDS = ("owner_id", "user_id", "instructor_id")


class PermissionTable:
    """Immutable role -> frozenset(permission) mapping.

    Unknown roles hold no permissions.
    """

    def __init__(self, mapping: Mapping[str, Iterable[str]]) -> None:
        unknown_roles = set(mapping) - set(ROLES)
        if unknown_roles:
            raise ValueError(f"Unknown roles in permission table: {sorted(unknown_roles)!r}")
        table: dict[str, frozenset[str]] = {}
        for role, perms in mapping.items():
            perms = frozenset(perms)
            unknown = perms - set(PERMISSIONS)
            if unknown:
                raise ValueError(f"Unknown permissions for role {role!r}: {sorted(unknown)!r}")
            table[role] = perms
        self._table = table

    def permissions_for(self, role: str) -> frozenset[str]:
        return self._table.get(role, frozenset())

    def has_permission(self, role: str, permission: str) -> bool:
        return permission in self.permissions_for(role)

    def as_dict(self) -> dict[str, list[str]]:
        return {role: sorted(perms) for role, perms in self._table.items()}


def load_permission_table(path: Path) -> PermissionTable:
    """Read the role -> permission JSON file and validate it."""
    with open(path, encoding="utf-8") as fh:
        raw = json.load(fh)
    if not isinstance(raw, dict):
        raise ValueError(f"{path} must contain a JSON object of role -> [permissions]")
    table = PermissionTable(raw)
    logger.info("Permission table loaded from %s (%d roles)", path, len(raw))
    return table


def has_role(user_role: str, allowed: Iterable[str] | str) -> bool:
    if isinstance(allowed, str):
        return user_role == allowed
    return user_role in set(allowed)


def check_ownership(user: User, resource: object) -> None:
    """Admin/manager always pass. Everyone else must own the resource.

    The owner is the first of owner_id / user_id / instructor_id present on
    the resource. A resource with none of them is not owner-restricted.
    """
    if user.role in STAFF_ROLES:
        return
    for field in _OWNER_FIELDS:
        owner = getattr(resource, field, None)
        if owner is not None:
            if owner != user.id:
                raise AuthorizationError("You can only access your own resources")
            return


def check_enrollment(user: User, course: object, enrolled_ids: Iterable[int]) -> None:
    """Admin/manager and the course's instructor pass. Others must be on the roster."""
    if user.role in STAFF_ROLES or getattr(course, "instructor_id", None) == user.id:
        return
    if user.id not in set(enrolled_ids):
        raise AuthorizationError("You must be enrolled in this course to access this resource")
