from __future__ import annotations

from datetime import date

import pytest
import redis

from upkeep.core.enums import ContractStatus
from upkeep.core.exceptions import ValidationError
from upkeep.services.cache import AnalyticsCache
from upkeep.services.maintenance.analytics import MaintenanceAnalyticsService, health_bucket, period_label
from upkeep.services.maintenance.execution import PartUsage, VisitCompletion, VisitExecutionService
from upkeep.services.maintenance.scheduling import VisitSchedulingService


class FakeRedis:
    def __init__(self):
        self.store = {}
        self.writes = 0

    def get(self, key):
        return self.store.get(key)

    def setex(self, key, ttl, value):
        self.writes += 1
        self.store[key] = value

    def incr(self, key):
        value = int(self.store.get(key, "0")) + 1
        self.store[key] = str(value)
        return value


class DownRedis:
    def get(self, key):
        raise redis.ConnectionError("connection refused")

    def setex(self, key, ttl, value):
        raise redis.ConnectionError("connection refused")

    def incr(self, key):
        raise redis.ConnectionError("connection refused")


@pytest.fixture
def busy_contract(session, world, config, clock, scope_for, make_contract):
    """Monthly contract with one on-time and one late completion plus one overdue visit."""
    scope = scope_for(world.admin)
    contract = make_contract(start_date=date(2024, 3, 1), end_date=date(2024, 6, 30))
    scheduling = VisitSchedulingService(db=session, config=config, clock=clock)
    execution = VisitExecutionService(db=session, config=config, clock=clock)

    scheduling.generate_scheduled_visits(scope, contract.id)
    late = scheduling.list_visits(scope, date_from=date(2024, 3, 1), date_to=date(2024, 3, 1))[0]
    on_time = scheduling.create_visit(scope, contract.id, date(2024, 3, 15))
    scheduling.create_visit(scope, contract.id, date(2024, 3, 10))

    execution.start_visit(scope, on_time.id, world.tech.id)
    execution.complete_visit(
        scope,
        on_time.id,
        VisitCompletion(customer_rating=5, parts=[PartUsage(product_id=world.filter.id, quantity=2)]),
    )
    execution.start_visit(scope, late.id, world.tech.id)
    execution.complete_visit(scope, late.id, VisitCompletion(customer_rating=4))
    return contract


def _service(session, config, clock, cache=None):
    return MaintenanceAnalyticsService(db=session, config=config, clock=clock, cache=cache)


@pytest.mark.parametrize(
    ("rate", "days_left", "expected"),
    [
        (95.0, -1, "expired"),
        (95.0, 7, "critical"),
        (95.0, 8, "healthy"),
        (80.0, None, "healthy"),
        (60.0, 90, "warning"),
        (59.99, 90, "poor"),
    ],
)
def test_health_bucket(rate, days_left, expected):
    assert health_bucket(rate, days_left, critical_days=7) == expected


def test_period_label():
    day = date(2024, 3, 15)
    assert period_label(day, "day") == "2024-03-15"
    assert period_label(day, "week") == "2024-W11"
    assert period_label(day, "month") == "2024-03"


def test_contract_health_metrics(session, world, config, clock, scope_for, make_contract, busy_contract):
    make_contract(end_date=date(2024, 3, 20))
    make_contract(end_date=date(2024, 3, 1))
    make_contract(end_date=None, status=ContractStatus.PAUSED)

    metrics = _service(session, config, clock).get_contract_health_metrics(scope_for(world.admin))
    assert metrics["total_contracts"] == 4
    assert metrics["active_contracts"] == 3
    assert metrics["expired_contracts"] == 1
    assert metrics["expiring_soon"] == 1
    # busy_contract: 2 of 6 visits completed (4 generated, 2 manual); follow-ups land on taken slots.
    assert metrics["average_completion_rate"] == 33.33
    assert metrics["health_distribution"] == {
        "healthy": 0,
        "warning": 0,
        "poor": 2,
        "critical": 1,
        "expired": 1,
    }


def test_sla_metrics(session, world, config, clock, scope_for, busy_contract):
    sla = _service(session, config, clock).get_sla_metrics(
        scope_for(world.manager), date(2024, 3, 1), date(2024, 3, 15)
    )
    assert sla["period"] == {"start": "2024-03-01", "end": "2024-03-15"}
    assert sla["visits"] == {"total": 3, "completed": 2, "overdue": 1, "on_time": 1}
    assert sla["metrics"]["on_time_rate"] == 33.33
    assert sla["metrics"]["completion_rate"] == 66.67
    assert sla["metrics"]["average_response_time_hours"] == 177.0
    assert sla["metrics"]["average_visit_duration_minutes"] == 0.0


def test_sla_is_empty_outside_scope(session, world, config, clock, scope_for, busy_contract):
    sla = _service(session, config, clock).get_sla_metrics(
        scope_for(world.south_manager), date(2024, 3, 1), date(2024, 3, 15)
    )
    assert sla["visits"] == {"total": 0, "completed": 0, "overdue": 0, "on_time": 0}
    assert sla["metrics"]["on_time_rate"] == 0.0


def test_technician_performance(session, world, config, clock, scope_for, busy_contract):
    report = _service(session, config, clock).get_technician_performance(
        scope_for(world.admin), date(2024, 3, 1), date(2024, 3, 15)
    )
    assert report["technicians"] == [
        {
            "technician_id": world.tech.id,
            "technician_name": "Tech",
            "total_visits": 3,
            "completed_visits": 2,
            "completion_rate": 66.67,
            "average_rating": 4.5,
            "total_revenue": 50.0,
        }
    ]
    assert report["summary"]["total_technicians"] == 1
    assert report["summary"]["total_revenue"] == 50.0


def test_revenue_analytics(session, world, config, clock, scope_for, busy_contract):
    revenue = _service(session, config, clock).get_revenue_analytics(
        scope_for(world.admin), date(2024, 3, 1), date(2024, 3, 15)
    )
    assert revenue["summary"] == {"total_revenue": 50.0, "total_visits": 2, "average_visit_value": 25.0}
    assert revenue["by_contract"] == [
        {"contract_id": busy_contract.id, "customer_name": "Cafe Aurora", "revenue": 50.0, "visits_count": 2}
    ]


def test_completion_rates(session, world, config, clock, scope_for, busy_contract):
    service = _service(session, config, clock)
    rates = service.get_visit_completion_rates(scope_for(world.admin), group_by="month")
    assert rates["periods"] == [
        {"period": "2024-03", "total_visits": 3, "completed_visits": 2, "completion_rate": 66.67}
    ]
    with pytest.raises(ValidationError):
        service.get_visit_completion_rates(scope_for(world.admin), group_by="year")


def test_period_validation(session, world, config, clock, scope_for):
    with pytest.raises(ValidationError):
        _service(session, config, clock).get_sla_metrics(scope_for(world.admin), date(2024, 3, 15), date(2024, 3, 1))


def test_branch_metrics_combines_rollups(session, world, config, clock, scope_for, busy_contract):
    metrics = _service(session, config, clock).get_branch_metrics(
        scope_for(world.manager), date(2024, 3, 1), date(2024, 3, 15)
    )
    assert set(metrics) == {"period", "contracts", "sla", "technicians"}
    assert metrics["contracts"]["total_contracts"] == 1
    assert metrics["sla"]["visits"]["completed"] == 2


def test_cache_serves_until_invalidated(session, world, config, clock, scope_for, make_contract):
    client = FakeRedis()
    cache = AnalyticsCache(client=client, config=config)
    service = _service(session, config, clock, cache=cache)
    scope = scope_for(world.admin)

    make_contract()
    assert service.get_contract_health_metrics(scope)["total_contracts"] == 1
    make_contract()
    assert service.get_contract_health_metrics(scope)["total_contracts"] == 1
    assert client.writes == 1

    cache.invalidate_tenant(world.acme.id)
    assert service.get_contract_health_metrics(scope)["total_contracts"] == 2
    assert client.writes == 2


def test_cache_keys_differ_by_scope(config):
    cache = AnalyticsCache(client=FakeRedis(), config=config)
    admin_key = cache.build_key(1, "t1:all", "sla", {"start": "2024-03-01"})
    manager_key = cache.build_key(1, "t1:b3", "sla", {"start": "2024-03-01"})
    other_tenant = cache.build_key(2, "t2:all", "sla", {"start": "2024-03-01"})
    assert len({admin_key, manager_key, other_tenant}) == 3
    assert admin_key.startswith("upkeep:analytics:t1:g0:sla:")


def test_cache_outage_falls_back_to_compute(config):
    cache = AnalyticsCache(client=DownRedis(), config=config)
    calls = []

    def compute():
        calls.append(1)
        return {"value": len(calls)}

    assert cache.remember(1, "t1:all", "sla", {}, compute) == {"value": 1}
    assert cache.remember(1, "t1:all", "sla", {}, compute) == {"value": 2}
    cache.invalidate_tenant(1)


def test_completion_listener_invalidates_cache(session, world, config, clock, scope_for, make_contract):
    client = FakeRedis()
    cache = AnalyticsCache(client=client, config=config)
    scope = scope_for(world.admin)
    contract = make_contract(start_date=date(2024, 3, 15), end_date=date(2024, 3, 31))
    visit = VisitSchedulingService(db=session, config=config, clock=clock).create_visit(scope, contract.id, date(2024, 3, 15))

    execution = VisitExecutionService(db=session, config=config, clock=clock)
    execution.add_completion_listener(lambda done: cache.invalidate_tenant(done.tenant_id))
    execution.start_visit(scope, visit.id, world.tech.id)
    execution.complete_visit(scope, visit.id, VisitCompletion())

    assert client.get(f"upkeep:analytics:t{world.acme.id}:generation") == "1"
