"""
nova_session.roles

Role hierarchy and permission sets for the console (RoleEvaluator).

Responsibilities:
- Map a role string to its hierarchy level and permission set.
- Answer the role/permission questions every page asks about the current user.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass


class Role(enum.StrEnum):
    superadmin = "superadmin"
    admin = "admin"
    supervisor = "supervisor"
    employee = "employee"
    # Legacy default assigned by older sign-up flows; ranks with employee.
    user = "user"


ADMIN_ROLES: frozenset[str] = frozenset({Role.superadmin, Role.admin})

_EMPLOYEE_PERMISSIONS = frozenset(
    {"view_own_data", "clock_in_out", "view_own_payroll", "create_incidents"}
)

ROLE_HIERARCHY: dict[str, int] = {
    Role.superadmin: 4,
    Role.admin: 3,
    Role.supervisor: 2,
    Role.employee: 1,
    Role.user: 1,
}

ROLE_PERMISSIONS: dict[str, frozenset[str]] = {
    Role.superadmin: frozenset(
        {
            "manage_users",
            "manage_employees",
            "manage_sites",
            "manage_attendance",
            "manage_payroll",
            "manage_incidents",
            "manage_reports",
            "manage_system",
            "manage_branding",
            "view_analytics",
        }
    ),
    Role.admin: frozenset(
        {
            "manage_employees",
            "manage_sites",
            "manage_attendance",
            "manage_payroll",
            "manage_incidents",
            "manage_reports",
            "view_analytics",
        }
    ),
    Role.supervisor: frozenset(
        {"view_employees", "manage_attendance", "create_incidents", "view_reports"}
    ),
    Role.employee: _EMPLOYEE_PERMISSIONS,
    Role.user: _EMPLOYEE_PERMISSIONS,
}


@dataclass(frozen=True, slots=True)
class RoleGrant:
    role: str | None
    level: int
    permissions: frozenset[str]


def evaluate_role(role: str | None) -> RoleGrant:
    # Unknown or missing roles get level 0 and no permissions.
    key = (role or "").strip().lower()
    return RoleGrant(
        role=key or None,
        level=ROLE_HIERARCHY.get(key, 0),
        permissions=ROLE_PERMISSIONS.get(key, frozenset()),
    )


def has_role(user_role: str | None, required_role: str | None) -> bool:
    if not user_role or not required_role:
        return False
    return evaluate_role(user_role).level >= evaluate_role(required_role).level


def has_permission(user_role: str | None, permission: str | None) -> bool:
    if not permission:
        return False
    return permission in evaluate_role(user_role).permissions


def is_admin_role(role: str | None) -> bool:
    return (role or "").strip().lower() in ADMIN_ROLES


def is_supervisor_role(role: str | None) -> bool:
    return has_role(role, Role.supervisor)


# --- Module Notes -----------------------------------------------------------
# Pure functions only: the session store applies them to the current profile.
