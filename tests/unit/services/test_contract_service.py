from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from upkeep.core.enums import ContractFrequency, ContractStatus, FrequencyUnit, VisitPriority, VisitStatus
from upkeep.core.exceptions import AccessDeniedError, InvalidStateTransitionError, NotFoundError, ValidationError
from upkeep.models import MaintenanceVisit
from upkeep.services.contract_service import ContractService
from upkeep.services.maintenance.scheduling import VisitSchedulingService


def _service(session, config, clock):
    return ContractService(db=session, config=config, clock=clock)


def _statuses(session, contract_id):
    rows = session.execute(
        select(MaintenanceVisit.scheduled_date, MaintenanceVisit.status)
        .where(MaintenanceVisit.maintenance_contract_id == contract_id)
        .order_by(MaintenanceVisit.scheduled_date)
    ).all()
    return {scheduled_date: VisitStatus(status) for scheduled_date, status in rows}


def _contract_data(world, **overrides):
    data = {
        "branch_id": world.north.id,
        "customer_name": "Harbor Dental",
        "customer_phone": "+1 555 0100",
        "frequency": ContractFrequency.MONTHLY,
        "start_date": date(2024, 3, 1),
        "end_date": date(2024, 6, 30),
        "contract_value": Decimal("1200.00"),
        "assigned_technician_id": world.tech.id,
    }
    data.update(overrides)
    return data


def test_create_contract_with_items_and_visits(session, world, config, clock, scope_for):
    service = _service(session, config, clock)
    contract = service.create_contract(
        scope_for(world.manager),
        _contract_data(world, items=[{"product_id": world.filter.id, "quantity": 2, "unit_cost": "25.00"}]),
        actor_id=world.manager.id,
        generate_visits=True,
    )

    assert contract.status == ContractStatus.ACTIVE
    assert contract.tenant_id == world.acme.id
    assert len(contract.items) == 1
    assert contract.items[0].total_cost == Decimal("50.00")
    assert list(_statuses(session, contract.id)) == [
        date(2024, 3, 1),
        date(2024, 4, 1),
        date(2024, 5, 1),
        date(2024, 6, 1),
    ]


def test_create_contract_custom_frequency(session, world, config, clock, scope_for):
    service = _service(session, config, clock)
    scope = scope_for(world.admin)
    with pytest.raises(ValidationError):
        service.create_contract(scope, _contract_data(world, frequency=ContractFrequency.CUSTOM))

    contract = service.create_contract(
        scope,
        _contract_data(
            world,
            frequency=ContractFrequency.CUSTOM,
            frequency_value=10,
            frequency_unit=FrequencyUnit.DAYS,
            end_date=date(2024, 3, 31),
        ),
        generate_visits=True,
    )
    assert list(_statuses(session, contract.id)) == [
        date(2024, 3, 1),
        date(2024, 3, 11),
        date(2024, 3, 21),
        date(2024, 3, 31),
    ]


@pytest.mark.parametrize(
    "overrides",
    [
        {"customer_name": ""},
        {"branch_id": None},
        {"colour": "red"},
        {"end_date": date(2024, 2, 1)},
        {"contract_value": Decimal("-1")},
    ],
)
def test_create_contract_rejects_bad_input(session, world, config, clock, scope_for, overrides):
    with pytest.raises(ValidationError):
        _service(session, config, clock).create_contract(scope_for(world.admin), _contract_data(world, **overrides))


def test_create_contract_checks_technician_role_and_branch(session, world, config, clock, scope_for):
    service = _service(session, config, clock)
    with pytest.raises(ValidationError):
        service.create_contract(scope_for(world.admin), _contract_data(world, assigned_technician_id=world.manager.id))
    with pytest.raises(AccessDeniedError):
        service.create_contract(scope_for(world.manager), _contract_data(world, branch_id=world.south.id))
    with pytest.raises(AccessDeniedError):
        service.create_contract(scope_for(world.admin), _contract_data(world, branch_id=world.foreign.id))


def test_change_status_pause_resume_cancel(session, world, config, clock, scope_for):
    service = _service(session, config, clock)
    scope = scope_for(world.admin)
    contract = service.create_contract(scope, _contract_data(world), generate_visits=True)

    paused, cancelled = service.change_status(scope, contract.id, ContractStatus.PAUSED)
    assert paused.status == ContractStatus.PAUSED
    assert cancelled == 0

    service.change_status(scope, contract.id, "active")
    _, cancelled = service.change_status(scope, contract.id, ContractStatus.CANCELLED, actor_id=world.admin.id)
    assert cancelled == 3
    assert _statuses(session, contract.id) == {
        date(2024, 3, 1): VisitStatus.SCHEDULED,
        date(2024, 4, 1): VisitStatus.CANCELLED,
        date(2024, 5, 1): VisitStatus.CANCELLED,
        date(2024, 6, 1): VisitStatus.CANCELLED,
    }

    with pytest.raises(InvalidStateTransitionError):
        service.change_status(scope, contract.id, ContractStatus.ACTIVE)


def test_completed_contract_is_terminal(session, world, config, clock, scope_for, make_contract):
    service = _service(session, config, clock)
    scope = scope_for(world.admin)
    contract = make_contract()
    service.change_status(scope, contract.id, ContractStatus.COMPLETED)
    with pytest.raises(InvalidStateTransitionError):
        service.change_status(scope, contract.id, ContractStatus.ACTIVE)
    with pytest.raises(ValidationError, match="read-only"):
        service.update_contract(scope, contract.id, {"customer_name": "Renamed"})


def test_update_contract_rules(session, world, config, clock, scope_for, make_contract):
    service = _service(session, config, clock)
    scope = scope_for(world.manager)
    contract = make_contract()

    with pytest.raises(ValidationError):
        service.update_contract(scope, contract.id, {"branch_id": world.south.id})
    with pytest.raises(ValidationError):
        service.update_contract(scope, contract.id, {"tenant_id": world.globex.id})
    with pytest.raises(ValidationError):
        service.update_contract(scope, contract.id, {"status": ContractStatus.PAUSED})
    with pytest.raises(ValidationError):
        service.update_contract(scope, contract.id, {"end_date": date(2023, 12, 1)})

    updated = service.update_contract(
        scope,
        contract.id,
        {"customer_name": "Cafe Borealis", "priority": VisitPriority.HIGH, "items": [{"product_id": world.belt.id}]},
    )
    assert updated.customer_name == "Cafe Borealis"
    assert updated.priority == VisitPriority.HIGH
    assert [item.product_id for item in updated.items] == [world.belt.id]
    assert updated.branch_id == world.north.id


def test_renew_contract_closes_source(session, world, config, clock, scope_for):
    service = _service(session, config, clock)
    scope = scope_for(world.admin)
    source = service.create_contract(
        scope,
        _contract_data(world, items=[{"product_id": world.filter.id, "quantity": 1, "unit_cost": "20.00"}]),
        generate_visits=True,
    )

    renewal = service.renew_contract(
        scope,
        source.id,
        {"start_date": date(2024, 7, 1), "end_date": date(2024, 12, 31), "contract_value": Decimal("1500.00")},
        generate_visits=True,
    )

    assert renewal.renewed_from_id == source.id
    assert renewal.status == ContractStatus.ACTIVE
    assert renewal.customer_name == source.customer_name
    assert renewal.frequency == ContractFrequency.MONTHLY
    assert Decimal(renewal.contract_value) == Decimal("1500.00")
    assert [item.product_id for item in renewal.items] == [world.filter.id]
    assert len(_statuses(session, renewal.id)) == 6

    assert session.get(type(source), source.id).status == ContractStatus.COMPLETED
    source_visits = _statuses(session, source.id)
    assert source_visits[date(2024, 3, 1)] == VisitStatus.SCHEDULED
    assert source_visits[date(2024, 4, 1)] == VisitStatus.CANCELLED


def test_renew_contract_validation(session, world, config, clock, scope_for, make_contract):
    service = _service(session, config, clock)
    scope = scope_for(world.admin)
    contract = make_contract()
    with pytest.raises(ValidationError):
        service.renew_contract(scope, contract.id, {})

    service.change_status(scope, contract.id, ContractStatus.CANCELLED)
    with pytest.raises(InvalidStateTransitionError):
        service.renew_contract(scope, contract.id, {"start_date": date(2024, 5, 1)})


def test_process_expired_contracts(session, world, config, clock, make_contract):
    lapsed = make_contract(start_date=date(2024, 1, 1), end_date=date(2024, 3, 10))
    session.add(MaintenanceVisit.for_contract(lapsed, scheduled_date=date(2024, 3, 20), status=VisitStatus.SCHEDULED))
    session.commit()
    current = make_contract(end_date=date(2024, 4, 30))
    foreign = make_contract(
        tenant_id=world.globex.id,
        branch_id=world.foreign.id,
        assigned_technician_id=None,
        end_date=date(2024, 3, 1),
    )

    service = _service(session, config, clock)
    results = service.process_expired_contracts(tenant_id=world.acme.id)
    assert results == {"processed_contracts": 1, "total_cancelled_visits": 1, "failed_contracts": 0}
    assert session.get(type(lapsed), lapsed.id).status == ContractStatus.COMPLETED
    assert session.get(type(current), current.id).status == ContractStatus.ACTIVE
    assert session.get(type(foreign), foreign.id).status == ContractStatus.ACTIVE

    results = service.process_expired_contracts()
    assert results["processed_contracts"] == 1
    assert service.process_expired_contracts() == {
        "processed_contracts": 0,
        "total_cancelled_visits": 0,
        "failed_contracts": 0,
    }


def test_handle_contract_expiration(session, world, config, clock, scope_for, make_contract):
    service = _service(session, config, clock)
    scope = scope_for(world.admin)
    with pytest.raises(ValidationError):
        service.handle_contract_expiration(scope, make_contract().id)

    lapsed = make_contract(end_date=date(2024, 3, 10))
    assert service.handle_contract_expiration(scope, lapsed.id) == {
        "contract_id": lapsed.id,
        "status_updated": True,
        "cancelled_visits": 0,
    }


def test_expiring_contracts_window(session, world, config, clock, scope_for, make_contract):
    service = _service(session, config, clock)
    scope = scope_for(world.admin)
    soon = make_contract(end_date=date(2024, 4, 10))
    later = make_contract(end_date=date(2024, 4, 30))
    make_contract(end_date=None)

    assert [contract.id for contract in service.get_expiring_contracts(scope)] == [soon.id]
    assert [contract.id for contract in service.get_expiring_contracts(scope, days=60)] == [soon.id, later.id]
    with pytest.raises(ValidationError):
        service.get_expiring_contracts(scope, days=-1)


def test_soft_delete_hides_contract_and_cancels_future(session, world, config, clock, scope_for, make_contract):
    service = _service(session, config, clock)
    scope = scope_for(world.admin)
    contract = make_contract()
    VisitSchedulingService(db=session, config=config, clock=clock).generate_scheduled_visits(scope, contract.id)

    service.delete_contract(scope, contract.id, actor_id=world.admin.id)

    with pytest.raises(NotFoundError):
        service.get_contract(scope, contract.id)
    assert contract.id not in [row.id for row in service.list_contracts(scope)]
    assert _statuses(session, contract.id)[date(2024, 4, 1)] == VisitStatus.CANCELLED


def test_list_contracts_is_scoped(session, world, config, clock, scope_for, make_contract):
    service = _service(session, config, clock)
    north = make_contract()
    south = make_contract(branch_id=world.south.id, assigned_technician_id=world.south_tech.id)
    make_contract(tenant_id=world.globex.id, branch_id=world.foreign.id, assigned_technician_id=None)

    assert [row.id for row in service.list_contracts(scope_for(world.manager))] == [north.id]
    assert [row.id for row in service.list_contracts(scope_for(world.admin))] == [north.id, south.id]
    assert [row.id for row in service.list_contracts(scope_for(world.admin), branch_id=world.south.id)] == [south.id]
    with pytest.raises(NotFoundError):
        service.get_contract(scope_for(world.south_manager), north.id)


def test_contract_health(session, world, config, clock, scope_for, make_contract):
    service = _service(session, config, clock)
    scope = scope_for(world.admin)
    contract = make_contract()
    scheduling = VisitSchedulingService(db=session, config=config, clock=clock)
    scheduling.generate_scheduled_visits(scope, contract.id)
    assert scheduling.mark_overdue_visits_as_missed() == 3

    health = service.get_contract_health(scope, contract.id)
    assert health["total_visits"] == 4
    assert health["planned_visits"] == 4
    assert health["completed_visits"] == 0
    assert health["missed_visits"] == 3
    assert health["remaining_visits"] == 4
    assert health["completion_rate"] == 0.0
    assert health["days_until_expiry"] == 46
    assert health["is_expiring_soon"] is False
    assert health["is_expired"] is False
    assert health["health_status"] == "poor"


def test_contract_health_open_ended(session, world, config, clock, scope_for, make_contract):
    contract = make_contract(end_date=None)
    health = _service(session, config, clock).get_contract_health(scope_for(world.admin), contract.id)
    assert health["planned_visits"] is None
    assert health["remaining_visits"] is None
    assert health["days_until_expiry"] is None
    assert health["health_status"] == "poor"
