"""Visit calendar generation, rescheduling and scoped visit queries."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, time, timedelta
from typing import Any

from sqlalchemy import func, select, update

from upkeep.auth.access_scope import AccessScope
from upkeep.core.enums import ContractStatus, VisitPriority, VisitStatus
from upkeep.core.exceptions import ContractExpiredError, ContractInactiveError, ValidationError
from upkeep.models import MaintenanceContract, MaintenanceVisit, User, VisitStatusHistory
from upkeep.services.maintenance.base import MaintenanceService, apply_scope
from upkeep.utils.recurrence import iter_occurrences

logger = logging.getLogger(__name__)

UPCOMING_STATUSES = (VisitStatus.SCHEDULED, VisitStatus.RESCHEDULED)
EDITABLE_VISIT_FIELDS = frozenset({"scheduled_time", "priority", "assigned_technician_id", "work_description"})


@dataclass
class GenerationResult:
    contract_id: int
    visits: list[MaintenanceVisit] = field(default_factory=list)
    skipped: int = 0
    capped: bool = False

    @property
    def created(self) -> int:
        return len(self.visits)


def infer_visit_priority(contract: MaintenanceContract) -> VisitPriority:
    """Premium or high-priority contracts escalate to high; urgent stays urgent."""
    priority = VisitPriority(contract.priority or VisitPriority.MEDIUM)
    if priority is VisitPriority.URGENT:
        return priority
    if priority is VisitPriority.HIGH or contract.is_premium:
        return VisitPriority.HIGH
    return priority


class VisitSchedulingService(MaintenanceService):
    """Expands contracts into visits and answers scoped calendar queries."""

    def generate_scheduled_visits(
        self,
        scope: AccessScope,
        contract_id: int,
        horizon: date | None = None,
        actor_id: int | None = None,
    ) -> GenerationResult:
        """Create every missing scheduled visit for a contract.

        Safe to call repeatedly: dates that already hold a visit are skipped.
        """
        with self.transaction():
            contract = self.find_contract(scope, contract_id, for_update=True)
            result = self.generate_for_contract(contract, horizon=horizon, actor_id=actor_id)
        return result

    def generate_for_contract(
        self,
        contract: MaintenanceContract,
        horizon: date | None = None,
        actor_id: int | None = None,
    ) -> GenerationResult:
        """Generation body; flushes but does not commit."""
        if contract.status != ContractStatus.ACTIVE:
            raise ContractInactiveError(f"Contract {contract.id} is {ContractStatus(contract.status).value}.")
        step = contract.schedule_step()
        until = self._generation_limit(contract, horizon)
        occupied = self.occupied_dates(contract.id)
        priority = infer_visit_priority(contract)
        max_visits = self.config.SCHEDULING_MAX_VISITS

        result = GenerationResult(contract_id=contract.id)
        for occurrence in iter_occurrences(contract.start_date, step, until):
            if occurrence in occupied:
                result.skipped += 1
                continue
            if result.created >= max_visits:
                result.capped = True
                break
            visit = MaintenanceVisit.for_contract(
                contract,
                scheduled_date=occurrence,
                priority=priority,
                status=VisitStatus.SCHEDULED,
                assigned_technician_id=contract.assigned_technician_id,
                work_description=contract.special_instructions,
            )
            self.db.add(visit)
            occupied.add(occurrence)
            result.visits.append(visit)

        self.db.flush()
        for visit in result.visits:
            self.record_history(visit, None, VisitStatus.SCHEDULED, actor_id=actor_id, note="generated")
        self.db.flush()

        logger.info(
            "visits.generated",
            extra={
                "event": "visits.generated",
                "tenant_id": contract.tenant_id,
                "contract_id": contract.id,
                "created": result.created,
                "skipped": result.skipped,
                "capped": result.capped,
                "until": until,
            },
        )
        return result

    def _generation_limit(self, contract: MaintenanceContract, horizon: date | None) -> date:
        ceiling = max(contract.start_date, self.today()) + timedelta(days=self.config.SCHEDULING_HORIZON_DAYS)
        if contract.end_date is not None:
            return min(contract.end_date, horizon) if horizon else contract.end_date
        return min(horizon, ceiling) if horizon else ceiling

    def reschedule_visit(
        self,
        scope: AccessScope,
        visit_id: int,
        new_date: date,
        actor_id: int | None = None,
        reason: str | None = None,
    ) -> MaintenanceVisit:
        with self.transaction():
            visit = self.find_visit(scope, visit_id, for_update=True)
            self.state_machine.assert_transition(visit.status, VisitStatus.RESCHEDULED)
            if new_date < self.today():
                raise ValidationError("Cannot reschedule a visit into the past.")
            if new_date != visit.scheduled_date and new_date in self._dates_taken_by_others(visit):
                raise ValidationError(f"Contract already has a visit on {new_date.isoformat()}.")

            previous = visit.scheduled_date
            self.transition(visit, VisitStatus.RESCHEDULED, actor_id=actor_id, note=reason)
            # Repeated moves keep the first calendar slot.
            if visit.rescheduled_from is None:
                visit.rescheduled_from = previous
            visit.scheduled_date = new_date
            self.db.flush()

        logger.info(
            "visit.rescheduled",
            extra={
                "event": "visit.rescheduled",
                "tenant_id": visit.tenant_id,
                "visit_id": visit.id,
                "old_date": previous,
                "new_date": new_date,
            },
        )
        return visit

    def _dates_taken_by_others(self, visit: MaintenanceVisit) -> set[date]:
        rows = self.db.scalars(
            select(MaintenanceVisit.scheduled_date).where(
                MaintenanceVisit.maintenance_contract_id == visit.maintenance_contract_id,
                MaintenanceVisit.id != visit.id,
                MaintenanceVisit.status != VisitStatus.CANCELLED,
                MaintenanceVisit.deleted_at.is_(None),
            )
        )
        return set(rows)

    def cancel_future_visits(self, scope: AccessScope, contract_id: int, actor_id: int | None = None) -> int:
        with self.transaction():
            contract = self.find_contract(scope, contract_id, for_update=True)
            cancelled = self.cancel_future_for_contract(contract, actor_id=actor_id)
        return cancelled

    def cancel_future_for_contract(
        self,
        contract: MaintenanceContract,
        actor_id: int | None = None,
        note: str = "contract terminated",
    ) -> int:
        """Cancel scheduled visits dated after today; flushes but does not commit."""
        stamp = self.now()
        rows = self.db.execute(
            update(MaintenanceVisit)
            .where(
                MaintenanceVisit.maintenance_contract_id == contract.id,
                MaintenanceVisit.status == VisitStatus.SCHEDULED,
                MaintenanceVisit.scheduled_date > self.today(),
            )
            .values(status=VisitStatus.CANCELLED, cancelled_at=stamp)
            .returning(MaintenanceVisit.id)
            .execution_options(synchronize_session="fetch")
        ).all()
        self._record_bulk_history(
            contract.tenant_id, [row.id for row in rows], VisitStatus.SCHEDULED, VisitStatus.CANCELLED, actor_id, note
        )
        logger.info(
            "visits.future_cancelled",
            extra={
                "event": "visits.future_cancelled",
                "tenant_id": contract.tenant_id,
                "contract_id": contract.id,
                "cancelled": len(rows),
            },
        )
        return len(rows)

    def mark_overdue_visits_as_missed(self, tenant_id: int | None = None, actor_id: int | None = None) -> int:
        """Flag scheduled visits older than the grace period as missed.

        The UPDATE re-checks ``status = 'scheduled'``, so overlapping runs
        each flag a visit at most once.
        """
        cutoff = self.today() - timedelta(days=self.config.MISSED_GRACE_DAYS)
        with self.transaction():
            stmt = (
                update(MaintenanceVisit)
                .where(
                    MaintenanceVisit.status == VisitStatus.SCHEDULED,
                    MaintenanceVisit.scheduled_date < cutoff,
                    MaintenanceVisit.deleted_at.is_(None),
                )
                .values(status=VisitStatus.MISSED, missed_at=self.now())
                .returning(MaintenanceVisit.id, MaintenanceVisit.tenant_id)
                .execution_options(synchronize_session="fetch")
            )
            if tenant_id is not None:
                stmt = stmt.where(MaintenanceVisit.tenant_id == tenant_id)
            rows = self.db.execute(stmt).all()

            by_tenant: dict[int, list[int]] = {}
            for row in rows:
                by_tenant.setdefault(row.tenant_id, []).append(row.id)
            for owner, visit_ids in by_tenant.items():
                self._record_bulk_history(
                    owner, visit_ids, VisitStatus.SCHEDULED, VisitStatus.MISSED, actor_id, "overdue"
                )

        logger.info(
            "visits.marked_missed",
            extra={"event": "visits.marked_missed", "tenant_id": tenant_id, "cutoff": cutoff, "count": len(rows)},
        )
        return len(rows)

    def _record_bulk_history(
        self,
        tenant_id: int,
        visit_ids: list[int],
        from_status: VisitStatus,
        to_status: VisitStatus,
        actor_id: int | None,
        note: str | None,
    ) -> None:
        stamp = self.now()
        self.db.add_all(
            [
                VisitStatusHistory(
                    tenant_id=tenant_id,
                    visit_id=visit_id,
                    from_status=from_status,
                    to_status=to_status,
                    actor_id=actor_id,
                    note=note,
                    changed_at=stamp,
                )
                for visit_id in visit_ids
            ]
        )
        self.db.flush()

    def get_upcoming_visits(self, scope: AccessScope, days: int = 7) -> list[MaintenanceVisit]:
        if days < 0:
            raise ValidationError("days must be >= 0.")
        today = self.today()
        stmt = (
            self.scoped_visits(scope)
            .where(
                MaintenanceVisit.status.in_(UPCOMING_STATUSES),
                MaintenanceVisit.scheduled_date >= today,
                MaintenanceVisit.scheduled_date <= today + timedelta(days=days),
                MaintenanceVisit.deleted_at.is_(None),
            )
            .order_by(MaintenanceVisit.scheduled_date, MaintenanceVisit.scheduled_time, MaintenanceVisit.id)
        )
        return list(self.db.scalars(stmt))

    def get_overdue_visits(self, scope: AccessScope) -> list[MaintenanceVisit]:
        stmt = (
            self.scoped_visits(scope)
            .where(
                MaintenanceVisit.status == VisitStatus.SCHEDULED,
                MaintenanceVisit.scheduled_date < self.today(),
                MaintenanceVisit.deleted_at.is_(None),
            )
            .order_by(MaintenanceVisit.scheduled_date, MaintenanceVisit.id)
        )
        return list(self.db.scalars(stmt))

    def create_visit(
        self,
        scope: AccessScope,
        contract_id: int,
        scheduled_date: date,
        scheduled_time: time | None = None,
        priority: VisitPriority | None = None,
        assigned_technician_id: int | None = None,
        work_description: str | None = None,
        actor_id: int | None = None,
    ) -> MaintenanceVisit:
        """Add a single visit by hand; tenant and branch always come from the contract."""
        with self.transaction():
            contract = self.find_contract(scope, contract_id, for_update=True)
            if contract.status != ContractStatus.ACTIVE:
                raise ContractInactiveError(f"Contract {contract.id} is {ContractStatus(contract.status).value}.")
            if contract.end_date is not None and scheduled_date > contract.end_date:
                raise ContractExpiredError(f"Contract {contract.id} ends on {contract.end_date.isoformat()}.")
            if scheduled_date < contract.start_date:
                raise ValidationError("Visit date is before the contract start date.")
            if scheduled_date in self.occupied_dates(contract.id):
                raise ValidationError(f"Contract already has a visit on {scheduled_date.isoformat()}.")
            if assigned_technician_id is not None:
                self._require_tenant_user(contract.tenant_id, assigned_technician_id)

            visit = MaintenanceVisit.for_contract(
                contract,
                scheduled_date=scheduled_date,
                scheduled_time=scheduled_time,
                priority=priority or infer_visit_priority(contract),
                status=VisitStatus.SCHEDULED,
                assigned_technician_id=assigned_technician_id or contract.assigned_technician_id,
                work_description=work_description,
            )
            self.db.add(visit)
            self.db.flush()
            self.record_history(visit, None, VisitStatus.SCHEDULED, actor_id=actor_id, note="created")
            self.db.flush()

        logger.info(
            "visit.created",
            extra={"event": "visit.created", "tenant_id": visit.tenant_id, "visit_id": visit.id, "contract_id": contract_id},
        )
        return visit

    def update_visit(self, scope: AccessScope, visit_id: int, changes: dict[str, Any]) -> MaintenanceVisit:
        unknown = set(changes) - EDITABLE_VISIT_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")
        with self.transaction():
            visit = self.find_visit(scope, visit_id, for_update=True)
            if self.state_machine.is_terminal(visit.status):
                raise ValidationError(f"Visit {visit_id} is {VisitStatus(visit.status).value} and read-only.")
            technician_id = changes.get("assigned_technician_id")
            if technician_id is not None:
                self._require_tenant_user(visit.tenant_id, technician_id)
            for key, value in changes.items():
                setattr(visit, key, value)
            self.db.flush()
        return visit

    def _require_tenant_user(self, tenant_id: int, user_id: int) -> None:
        found = self.db.scalar(select(User.id).where(User.id == user_id, User.tenant_id == tenant_id))
        if found is None:
            raise ValidationError(f"User {user_id} does not belong to this tenant.")

    def get_visit(self, scope: AccessScope, visit_id: int) -> MaintenanceVisit:
        return self.find_visit(scope, visit_id)

    def list_visits(
        self,
        scope: AccessScope,
        status: VisitStatus | None = None,
        contract_id: int | None = None,
        technician_id: int | None = None,
        branch_id: int | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[MaintenanceVisit]:
        stmt = self.scoped_visits(scope).where(MaintenanceVisit.deleted_at.is_(None))
        if status is not None:
            stmt = stmt.where(MaintenanceVisit.status == status)
        if contract_id is not None:
            stmt = stmt.where(MaintenanceVisit.maintenance_contract_id == contract_id)
        if technician_id is not None:
            stmt = stmt.where(MaintenanceVisit.assigned_technician_id == technician_id)
        if branch_id is not None:
            stmt = stmt.where(MaintenanceVisit.branch_id == branch_id)
        if date_from is not None:
            stmt = stmt.where(MaintenanceVisit.scheduled_date >= date_from)
        if date_to is not None:
            stmt = stmt.where(MaintenanceVisit.scheduled_date <= date_to)
        stmt = stmt.order_by(MaintenanceVisit.scheduled_date, MaintenanceVisit.id).limit(limit).offset(offset)
        return list(self.db.scalars(stmt))

    def get_technician_visits(
        self,
        scope: AccessScope,
        technician_id: int,
        status: VisitStatus | None = None,
    ) -> list[MaintenanceVisit]:
        return self.list_visits(scope, status=status, technician_id=technician_id, limit=500)

    def get_today_visits_for_technician(self, scope: AccessScope, technician_id: int) -> list[MaintenanceVisit]:
        today = self.today()
        stmt = (
            self.scoped_visits(scope)
            .where(
                MaintenanceVisit.assigned_technician_id == technician_id,
                MaintenanceVisit.scheduled_date == today,
                MaintenanceVisit.status.in_(
                    (VisitStatus.SCHEDULED, VisitStatus.RESCHEDULED, VisitStatus.IN_PROGRESS)
                ),
                MaintenanceVisit.deleted_at.is_(None),
            )
            .order_by(MaintenanceVisit.scheduled_time, MaintenanceVisit.id)
        )
        return list(self.db.scalars(stmt))

    def get_scheduling_statistics(self, scope: AccessScope) -> dict[str, Any]:
        counts_stmt = (
            apply_scope(select(MaintenanceVisit.status, func.count(MaintenanceVisit.id)), MaintenanceVisit, scope)
            .where(MaintenanceVisit.deleted_at.is_(None))
            .group_by(MaintenanceVisit.status)
        )
        by_status = {VisitStatus(status).value: int(count) for status, count in self.db.execute(counts_stmt)}
        total = sum(by_status.values())
        completed = by_status.get(VisitStatus.COMPLETED.value, 0)
        missed = by_status.get(VisitStatus.MISSED.value, 0)
        return {
            "total_visits": total,
            "by_status": {status.value: by_status.get(status.value, 0) for status in VisitStatus},
            "upcoming_7_days": len(self.get_upcoming_visits(scope, days=7)),
            "overdue": len(self.get_overdue_visits(scope)),
            "completion_rate": round(completed / total * 100, 2) if total else 0.0,
            "miss_rate": round(missed / total * 100, 2) if total else 0.0,
        }
