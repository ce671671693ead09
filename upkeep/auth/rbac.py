"""Role capabilities for maintenance operations.

Roles form a closed enum; every call site asks ``require_capability`` instead
of comparing role strings.
"""

from __future__ import annotations

from upkeep.core.enums import UserRole
from upkeep.core.exceptions import AccessDeniedError

ALL = "*"

ROLE_CAPABILITIES: dict[UserRole, frozenset[str]] = {
    UserRole.SUPER_ADMIN: frozenset({ALL}),
    UserRole.TENANT_ADMIN: frozenset({ALL}),
    UserRole.MANAGER: frozenset(
        {
            "contracts.read",
            "contracts.write",
            "contracts.delete",
            "visits.read",
            "visits.write",
            "visits.execute",
            "analytics.read",
        }
    ),
    UserRole.SALESMAN: frozenset({"contracts.read", "contracts.write", "visits.read"}),
    UserRole.TECHNICIAN: frozenset({"contracts.read", "visits.read", "visits.write", "visits.execute"}),
    UserRole.VIEWER: frozenset({"contracts.read", "visits.read"}),
}


def get_capabilities(role: UserRole | str) -> frozenset[str]:
    try:
        return ROLE_CAPABILITIES[UserRole(role)]
    except ValueError:
        return frozenset()


def has_capability(role: UserRole | str, capability: str) -> bool:
    granted = get_capabilities(role)
    return ALL in granted or capability in granted


def require_capability(role: UserRole | str, capability: str) -> None:
    """Raise when a role lacks the capability."""
    if not has_capability(role, capability):
        raise AccessDeniedError(f"Role '{UserRole(role).value}' lacks capability: {capability}")
