from __future__ import annotations

from dataclasses import replace
from datetime import date

import pytest
from sqlalchemy import select

from upkeep.core.enums import ContractFrequency, ContractStatus, VisitPriority, VisitStatus
from upkeep.core.exceptions import (
    ContractExpiredError,
    ContractInactiveError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)
from upkeep.models import MaintenanceVisit, VisitStatusHistory
from upkeep.services.maintenance.execution import VisitExecutionService
from upkeep.services.maintenance.scheduling import VisitSchedulingService, infer_visit_priority


def _service(session, config, clock):
    return VisitSchedulingService(db=session, config=config, clock=clock)


def _visit_on(session, contract, day):
    return session.scalar(
        select(MaintenanceVisit).where(
            MaintenanceVisit.maintenance_contract_id == contract.id, MaintenanceVisit.scheduled_date == day
        )
    )


def test_monthly_contract_generates_one_visit_per_month(session, world, config, clock, scope_for, make_contract):
    contract = make_contract()
    result = _service(session, config, clock).generate_scheduled_visits(scope_for(world.admin), contract.id)

    assert result.created == 4
    assert [visit.scheduled_date for visit in result.visits] == [
        date(2024, 1, 1),
        date(2024, 2, 1),
        date(2024, 3, 1),
        date(2024, 4, 1),
    ]
    for visit in result.visits:
        assert visit.status == VisitStatus.SCHEDULED
        assert visit.tenant_id == contract.tenant_id
        assert visit.branch_id == contract.branch_id
        assert visit.assigned_technician_id == world.tech.id

    history = session.scalars(select(VisitStatusHistory).where(VisitStatusHistory.note == "generated")).all()
    assert len(history) == 4


def test_generation_is_idempotent(session, world, config, clock, scope_for, make_contract):
    contract = make_contract()
    service = _service(session, config, clock)
    scope = scope_for(world.admin)
    service.generate_scheduled_visits(scope, contract.id)

    again = service.generate_scheduled_visits(scope, contract.id)
    assert again.created == 0
    assert again.skipped == 4
    assert len(service.list_visits(scope, contract_id=contract.id)) == 4


def test_open_ended_contract_stops_at_horizon(session, world, config, clock, scope_for, make_contract):
    contract = make_contract(frequency=ContractFrequency.WEEKLY, start_date=date(2024, 3, 15), end_date=None)
    service = _service(session, replace(config, SCHEDULING_HORIZON_DAYS=28), clock)
    scope = scope_for(world.admin)

    limited = service.generate_scheduled_visits(scope, contract.id, horizon=date(2024, 3, 31))
    assert [visit.scheduled_date for visit in limited.visits] == [date(2024, 3, 15), date(2024, 3, 22), date(2024, 3, 29)]

    rest = service.generate_scheduled_visits(scope, contract.id)
    assert [visit.scheduled_date for visit in rest.visits] == [date(2024, 4, 5), date(2024, 4, 12)]


def test_generation_is_capped(session, world, config, clock, scope_for, make_contract):
    contract = make_contract(frequency=ContractFrequency.DAILY)
    result = _service(session, replace(config, SCHEDULING_MAX_VISITS=2), clock).generate_scheduled_visits(
        scope_for(world.admin), contract.id
    )
    assert result.created == 2
    assert result.capped is True


def test_paused_contract_generates_nothing(session, world, config, clock, scope_for, make_contract):
    contract = make_contract(status=ContractStatus.PAUSED)
    with pytest.raises(ContractInactiveError):
        _service(session, config, clock).generate_scheduled_visits(scope_for(world.admin), contract.id)
    assert _visit_on(session, contract, date(2024, 1, 1)) is None


def test_out_of_scope_contract_is_not_found(session, world, config, clock, scope_for, make_contract):
    contract = make_contract()
    service = _service(session, config, clock)
    with pytest.raises(NotFoundError):
        service.generate_scheduled_visits(scope_for(world.south_manager), contract.id)
    with pytest.raises(NotFoundError):
        service.generate_scheduled_visits(scope_for(world.globex_admin), contract.id)

    service.generate_scheduled_visits(scope_for(world.manager), contract.id)
    assert service.list_visits(scope_for(world.south_manager)) == []
    assert len(service.list_visits(scope_for(world.manager))) == 4


def test_priority_inference():
    class _Contract:
        def __init__(self, priority, is_premium):
            self.priority = priority
            self.is_premium = is_premium

    assert infer_visit_priority(_Contract(VisitPriority.LOW, True)) is VisitPriority.HIGH
    assert infer_visit_priority(_Contract(VisitPriority.URGENT, False)) is VisitPriority.URGENT
    assert infer_visit_priority(_Contract(VisitPriority.HIGH, False)) is VisitPriority.HIGH
    assert infer_visit_priority(_Contract(VisitPriority.LOW, False)) is VisitPriority.LOW


def test_reschedule_moves_visit_and_keeps_original_slot(session, world, config, clock, scope_for, make_contract):
    contract = make_contract(end_date=date(2024, 6, 30))
    service = _service(session, config, clock)
    scope = scope_for(world.manager)
    service.generate_scheduled_visits(scope, contract.id)
    april = _visit_on(session, contract, date(2024, 4, 1))

    moved = service.reschedule_visit(scope, april.id, date(2024, 4, 3), actor_id=world.manager.id, reason="customer away")
    assert moved.status == VisitStatus.RESCHEDULED
    assert moved.rescheduled_from == date(2024, 4, 1)
    assert moved.scheduled_date == date(2024, 4, 3)
    assert moved.rescheduled_at is not None

    regenerated = service.generate_scheduled_visits(scope, contract.id)
    assert regenerated.created == 0

    with pytest.raises(InvalidStateTransitionError):
        service.reschedule_visit(scope, april.id, date(2024, 4, 5))


def test_repeated_reschedules_keep_the_original_slot(session, world, config, clock, scope_for, make_contract):
    contract = make_contract(end_date=date(2024, 6, 30))
    service = _service(session, config, clock)
    scope = scope_for(world.admin)
    service.generate_scheduled_visits(scope, contract.id)
    april = _visit_on(session, contract, date(2024, 4, 1))

    service.reschedule_visit(scope, april.id, date(2024, 4, 3))
    VisitExecutionService(db=session, config=config, clock=clock).update_visit_status(
        scope, april.id, VisitStatus.MISSED
    )
    moved = service.reschedule_visit(scope, april.id, date(2024, 4, 10))

    assert moved.rescheduled_from == date(2024, 4, 1)
    assert moved.scheduled_date == date(2024, 4, 10)
    assert service.generate_scheduled_visits(scope, contract.id).created == 0
    assert _visit_on(session, contract, date(2024, 4, 1)) is None


def test_reschedule_rejects_past_and_taken_dates(session, world, config, clock, scope_for, make_contract):
    contract = make_contract(end_date=date(2024, 6, 30))
    service = _service(session, config, clock)
    scope = scope_for(world.admin)
    service.generate_scheduled_visits(scope, contract.id)
    april = _visit_on(session, contract, date(2024, 4, 1))

    with pytest.raises(ValidationError, match="past"):
        service.reschedule_visit(scope, april.id, date(2024, 3, 10))
    with pytest.raises(ValidationError, match="already has a visit"):
        service.reschedule_visit(scope, april.id, date(2024, 5, 1))
    assert _visit_on(session, contract, date(2024, 4, 1)).status == VisitStatus.SCHEDULED


def test_mark_overdue_visits_as_missed_runs_once(session, world, config, clock, scope_for, make_contract):
    contract = make_contract()
    service = _service(session, config, clock)
    service.generate_scheduled_visits(scope_for(world.admin), contract.id)

    assert service.mark_overdue_visits_as_missed() == 3
    assert service.mark_overdue_visits_as_missed() == 0

    missed = service.list_visits(scope_for(world.admin), status=VisitStatus.MISSED)
    assert [visit.scheduled_date for visit in missed] == [date(2024, 1, 1), date(2024, 2, 1), date(2024, 3, 1)]
    assert all(visit.missed_at is not None for visit in missed)
    notes = session.scalars(select(VisitStatusHistory.note).where(VisitStatusHistory.to_status == VisitStatus.MISSED)).all()
    assert notes == ["overdue"] * 3


def test_mark_missed_respects_tenant_filter(session, world, config, clock, scope_for, make_contract):
    contract = make_contract()
    service = _service(session, config, clock)
    service.generate_scheduled_visits(scope_for(world.admin), contract.id)
    assert service.mark_overdue_visits_as_missed(tenant_id=world.globex.id) == 0
    assert service.mark_overdue_visits_as_missed(tenant_id=world.acme.id) == 3


def test_cancel_future_visits_only_touches_later_scheduled(session, world, config, clock, scope_for, make_contract):
    contract = make_contract(end_date=date(2024, 6, 30))
    service = _service(session, config, clock)
    scope = scope_for(world.admin)
    service.generate_scheduled_visits(scope, contract.id)

    assert service.cancel_future_visits(scope, contract.id) == 3
    statuses = {visit.scheduled_date: visit.status for visit in service.list_visits(scope, contract_id=contract.id)}
    assert statuses[date(2024, 3, 1)] == VisitStatus.SCHEDULED
    assert statuses[date(2024, 4, 1)] == VisitStatus.CANCELLED
    assert statuses[date(2024, 6, 1)] == VisitStatus.CANCELLED


def test_create_visit_checks_contract_window(session, world, config, clock, scope_for, make_contract):
    contract = make_contract()
    service = _service(session, config, clock)
    scope = scope_for(world.admin)

    visit = service.create_visit(scope, contract.id, date(2024, 3, 20), priority=VisitPriority.URGENT)
    assert visit.priority == VisitPriority.URGENT
    assert visit.branch_id == world.north.id

    with pytest.raises(ContractExpiredError):
        service.create_visit(scope, contract.id, date(2024, 5, 2))
    with pytest.raises(ValidationError, match="before the contract start"):
        service.create_visit(scope, contract.id, date(2023, 12, 1))
    with pytest.raises(ValidationError, match="already has a visit"):
        service.create_visit(scope, contract.id, date(2024, 3, 20))


def test_update_visit_limits_fields_and_terminal_visits(session, world, config, clock, scope_for, make_contract):
    contract = make_contract()
    service = _service(session, config, clock)
    scope = scope_for(world.admin)
    visit = service.create_visit(scope, contract.id, date(2024, 3, 20))

    updated = service.update_visit(scope, visit.id, {"work_description": "Check pressure", "priority": VisitPriority.HIGH})
    assert updated.work_description == "Check pressure"

    with pytest.raises(ValidationError):
        service.update_visit(scope, visit.id, {"status": VisitStatus.COMPLETED})
    with pytest.raises(ValidationError):
        service.update_visit(scope, visit.id, {"assigned_technician_id": world.globex_admin.id})

    service.cancel_future_visits(scope, contract.id)
    with pytest.raises(ValidationError, match="read-only"):
        service.update_visit(scope, visit.id, {"work_description": "late edit"})


def test_calendar_queries(session, world, config, clock, scope_for, make_contract):
    contract = make_contract(end_date=date(2024, 6, 30))
    service = _service(session, config, clock)
    scope = scope_for(world.admin)
    service.generate_scheduled_visits(scope, contract.id)
    service.create_visit(scope, contract.id, date(2024, 3, 15))

    assert [visit.scheduled_date for visit in service.get_upcoming_visits(scope, days=20)] == [
        date(2024, 3, 15),
        date(2024, 4, 1),
    ]
    assert [visit.scheduled_date for visit in service.get_overdue_visits(scope)] == [
        date(2024, 1, 1),
        date(2024, 2, 1),
        date(2024, 3, 1),
    ]
    assert len(service.get_today_visits_for_technician(scope, world.tech.id)) == 1
    assert len(service.get_technician_visits(scope, world.tech.id)) == 7

    stats = service.get_scheduling_statistics(scope)
    assert stats["total_visits"] == 7
    assert stats["by_status"]["scheduled"] == 7
    assert stats["overdue"] == 3
    assert stats["completion_rate"] == 0.0
