"""Branch membership lookups and user-branch assignment."""

from __future__ import annotations

import logging

from sqlalchemy import select

from upkeep.core.exceptions import NotFoundError, ValidationError
from upkeep.models import Branch, User, UserBranch
from upkeep.services.base_service import BaseService

logger = logging.getLogger(__name__)


class BranchDirectory(BaseService):
    """Reads and writes the user <-> branch assignment table.

    Assignment writes only flush; the caller owns the transaction.
    """

    def list_branch_ids_for_user(self, user_id: int, tenant_id: int) -> frozenset[int]:
        rows = self.db.scalars(
            select(UserBranch.branch_id)
            .join(Branch, Branch.id == UserBranch.branch_id)
            .where(
                UserBranch.user_id == user_id,
                Branch.tenant_id == tenant_id,
                Branch.is_active.is_(True),
                Branch.deleted_at.is_(None),
            )
        )
        return frozenset(rows)

    def branch_belongs_to_tenant(self, branch_id: int, tenant_id: int) -> bool:
        found = self.db.scalar(
            select(Branch.id).where(
                Branch.id == branch_id,
                Branch.tenant_id == tenant_id,
                Branch.deleted_at.is_(None),
            )
        )
        return found is not None

    def is_branch_manager(self, user_id: int, branch_id: int) -> bool:
        flag = self.db.scalar(
            select(UserBranch.is_manager).where(UserBranch.user_id == user_id, UserBranch.branch_id == branch_id)
        )
        return bool(flag)

    def assign_user_to_branch(self, user_id: int, branch_id: int, is_manager: bool = False) -> UserBranch:
        user = self.db.get(User, user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found.")
        if not self.branch_belongs_to_tenant(branch_id, user.tenant_id):
            raise ValidationError(f"Branch {branch_id} does not belong to the user's tenant.")

        assignment = self.db.scalar(
            select(UserBranch).where(UserBranch.user_id == user_id, UserBranch.branch_id == branch_id)
        )
        if assignment is None:
            assignment = UserBranch(user_id=user_id, branch_id=branch_id, is_manager=is_manager)
            self.db.add(assignment)
        else:
            assignment.is_manager = is_manager
        self.db.flush()
        logger.info(
            "branch.user_assigned",
            extra={"event": "branch.user_assigned", "user_id": user_id, "branch_id": branch_id, "is_manager": is_manager},
        )
        return assignment

    def remove_user_from_branch(self, user_id: int, branch_id: int) -> bool:
        assignment = self.db.scalar(
            select(UserBranch).where(UserBranch.user_id == user_id, UserBranch.branch_id == branch_id)
        )
        if assignment is None:
            return False
        self.db.delete(assignment)
        self.db.flush()
        logger.info(
            "branch.user_removed",
            extra={"event": "branch.user_removed", "user_id": user_id, "branch_id": branch_id},
        )
        return True
