"""Scoped query helpers shared by the maintenance services."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import date, datetime
from typing import Any

from sqlalchemy import Select, select
from sqlalchemy.orm import Session

from upkeep.auth.access_scope import AccessScope, AccessScopeResolver
from upkeep.core.config import Config
from upkeep.core.enums import VisitStatus
from upkeep.core.exceptions import NotFoundError
from upkeep.models import MaintenanceContract, MaintenanceVisit, VisitStatusHistory
from upkeep.models.base import utcnow_naive
from upkeep.services.base_service import BaseService
from upkeep.workflow.state_machine import StateMachine, visit_state_machine

logger = logging.getLogger(__name__)

# Timestamp column stamped when a visit enters the status.
STATUS_TIMESTAMPS: dict[VisitStatus, str] = {
    VisitStatus.IN_PROGRESS: "actual_start_time",
    VisitStatus.COMPLETED: "actual_end_time",
    VisitStatus.FAILED: "actual_end_time",
    VisitStatus.NO_ACCESS: "actual_end_time",
    VisitStatus.CANCELLED: "cancelled_at",
    VisitStatus.MISSED: "missed_at",
    VisitStatus.RESCHEDULED: "rescheduled_at",
}


def apply_scope(stmt: Select, model: Any, scope: AccessScope) -> Select:
    """Restrict a statement to the scope's tenant and, unless unrestricted, its branches."""
    stmt = stmt.where(model.tenant_id == scope.tenant_id)
    if not scope.unrestricted:
        stmt = stmt.where(model.branch_id.in_(sorted(scope.branch_ids)))
    return stmt


class MaintenanceService(BaseService):
    """Base for services whose every read and write passes through an AccessScope."""

    def __init__(
        self,
        db: Session | None = None,
        config: Config | None = None,
        resolver: AccessScopeResolver | None = None,
        state_machine: StateMachine | None = None,
        clock: Callable[[], datetime] = utcnow_naive,
    ) -> None:
        super().__init__(db=db, config=config)
        self.resolver = resolver or AccessScopeResolver(self.db)
        self.state_machine = state_machine or visit_state_machine
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    def today(self) -> date:
        return self._clock().date()

    def scoped_visits(self, scope: AccessScope) -> Select:
        return apply_scope(select(MaintenanceVisit), MaintenanceVisit, scope)

    def scoped_contracts(self, scope: AccessScope) -> Select:
        return apply_scope(select(MaintenanceContract), MaintenanceContract, scope).where(
            MaintenanceContract.deleted_at.is_(None)
        )

    def find_visit(self, scope: AccessScope, visit_id: int, for_update: bool = False) -> MaintenanceVisit:
        stmt = self.scoped_visits(scope).where(MaintenanceVisit.id == visit_id, MaintenanceVisit.deleted_at.is_(None))
        if for_update:
            stmt = stmt.with_for_update()
        visit = self.db.scalar(stmt)
        if visit is None:
            raise NotFoundError(f"Visit {visit_id} not found.")
        return visit

    def find_contract(self, scope: AccessScope, contract_id: int, for_update: bool = False) -> MaintenanceContract:
        stmt = self.scoped_contracts(scope).where(MaintenanceContract.id == contract_id)
        if for_update:
            stmt = stmt.with_for_update()
        contract = self.db.scalar(stmt)
        if contract is None:
            raise NotFoundError(f"Contract {contract_id} not found.")
        return contract

    def transition(
        self,
        visit: MaintenanceVisit,
        target: VisitStatus,
        actor_id: int | None = None,
        note: str | None = None,
    ) -> MaintenanceVisit:
        """Validate and apply one status change, stamping its timestamp and history row."""
        current = VisitStatus(visit.status)
        self.state_machine.assert_transition(current, target)
        visit.status = target
        stamp = STATUS_TIMESTAMPS.get(target)
        if stamp is not None:
            setattr(visit, stamp, self.now())
        self.record_history(visit, current, target, actor_id=actor_id, note=note)
        return visit

    def record_history(
        self,
        visit: MaintenanceVisit,
        from_status: VisitStatus | None,
        to_status: VisitStatus,
        actor_id: int | None = None,
        note: str | None = None,
    ) -> VisitStatusHistory:
        entry = VisitStatusHistory(
            tenant_id=visit.tenant_id,
            visit_id=visit.id,
            from_status=from_status,
            to_status=to_status,
            actor_id=actor_id,
            note=note,
            changed_at=self.now(),
        )
        self.db.add(entry)
        return entry

    def occupied_dates(self, contract_id: int) -> set[date]:
        """Dates already holding a live visit for the contract, including original dates of moved visits."""
        rows = self.db.execute(
            select(MaintenanceVisit.scheduled_date, MaintenanceVisit.rescheduled_from).where(
                MaintenanceVisit.maintenance_contract_id == contract_id,
                MaintenanceVisit.status != VisitStatus.CANCELLED,
                MaintenanceVisit.deleted_at.is_(None),
            )
        ).all()
        dates: set[date] = set()
        for scheduled_date, rescheduled_from in rows:
            dates.add(scheduled_date)
            if rescheduled_from is not None:
                dates.add(rescheduled_from)
        return dates
