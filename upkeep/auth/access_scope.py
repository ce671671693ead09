"""Branch visibility for a user inside a tenant.

Scopes are resolved from the stored role and branch assignments on every call
and are never cached beyond the request that built them, so a role change or a
branch (re)assignment is visible on the next request.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.orm import Session

from upkeep.core.enums import UserRole
from upkeep.core.exceptions import AccessDeniedError, AuthenticationError
from upkeep.models import User
from upkeep.services.branch_directory import BranchDirectory

logger = logging.getLogger(__name__)

UNRESTRICTED_ROLES = frozenset({UserRole.SUPER_ADMIN, UserRole.TENANT_ADMIN})


@dataclass(frozen=True)
class AccessScope:
    tenant_id: int
    user_id: int | None
    role: UserRole
    unrestricted: bool
    branch_ids: frozenset[int] = field(default_factory=frozenset)

    @classmethod
    def system(cls, tenant_id: int) -> "AccessScope":
        """Tenant-wide scope for timer-driven jobs that act on no user's behalf."""
        return cls(tenant_id=tenant_id, user_id=None, role=UserRole.TENANT_ADMIN, unrestricted=True)

    def allows_branch(self, branch_id: int) -> bool:
        """Membership check only; tenant ownership of the branch is checked by the resolver."""
        return self.unrestricted or branch_id in self.branch_ids

    def signature(self) -> str:
        if self.unrestricted:
            return f"t{self.tenant_id}:all"
        branches = ",".join(str(branch_id) for branch_id in sorted(self.branch_ids)) or "none"
        return f"t{self.tenant_id}:b{branches}"


class AccessScopeResolver:
    """Single place that turns a user into an AccessScope."""

    def __init__(self, db: Session, directory: BranchDirectory | None = None) -> None:
        self.db = db
        self.directory = directory or BranchDirectory(db)

    def resolve(self, user: User, acting_tenant_id: int | None = None) -> AccessScope:
        if not user.is_active:
            raise AuthenticationError("User account is inactive.")
        role = UserRole(user.role)

        tenant_id = user.tenant_id
        if acting_tenant_id is not None and int(acting_tenant_id) != user.tenant_id:
            if role is not UserRole.SUPER_ADMIN:
                raise AccessDeniedError("Tenant override is super-admin only.")
            tenant_id = int(acting_tenant_id)

        if role in UNRESTRICTED_ROLES:
            return AccessScope(tenant_id=tenant_id, user_id=user.id, role=role, unrestricted=True)
        return AccessScope(
            tenant_id=tenant_id,
            user_id=user.id,
            role=role,
            unrestricted=False,
            branch_ids=self.directory.list_branch_ids_for_user(user.id, tenant_id),
        )

    def resolve_user_id(self, user_id: int, tenant_id: int, acting_tenant_id: int | None = None) -> AccessScope:
        """Load the user named by token claims and resolve its scope."""
        user = self.db.scalar(
            select(User).where(User.id == user_id, User.tenant_id == tenant_id, User.deleted_at.is_(None))
        )
        if user is None:
            raise AuthenticationError("User from token no longer exists.")
        return self.resolve(user, acting_tenant_id=acting_tenant_id)

    def can_access_branch(self, scope: AccessScope, branch_id: int) -> bool:
        if scope.unrestricted:
            return self.directory.branch_belongs_to_tenant(branch_id, scope.tenant_id)
        return branch_id in scope.branch_ids

    def assert_branch_access(self, scope: AccessScope, branch_id: int) -> None:
        if not self.can_access_branch(scope, branch_id):
            logger.warning(
                "scope.branch_denied",
                extra={
                    "event": "scope.branch_denied",
                    "tenant_id": scope.tenant_id,
                    "user_id": scope.user_id,
                    "branch_id": branch_id,
                },
            )
            raise AccessDeniedError(f"No access to branch {branch_id}.")

    def assert_technician_for_branch(self, technician_id: int, tenant_id: int, branch_id: int) -> User:
        """A technician may work a visit only in a branch they are assigned to."""
        technician = self.db.scalar(
            select(User).where(User.id == technician_id, User.tenant_id == tenant_id, User.deleted_at.is_(None))
        )
        if technician is None or not technician.is_active:
            raise AccessDeniedError(f"User {technician_id} is not an active member of this tenant.")
        if UserRole(technician.role) is not UserRole.TECHNICIAN:
            raise AccessDeniedError(f"User {technician_id} is not a technician.")
        if branch_id not in self.directory.list_branch_ids_for_user(technician_id, tenant_id):
            logger.warning(
                "scope.technician_branch_denied",
                extra={
                    "event": "scope.technician_branch_denied",
                    "tenant_id": tenant_id,
                    "user_id": technician_id,
                    "branch_id": branch_id,
                },
            )
            raise AccessDeniedError(f"Technician {technician_id} is not assigned to branch {branch_id}.")
        return technician
