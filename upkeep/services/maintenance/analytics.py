"""Read-only maintenance rollups: contract health, SLA, technicians, revenue."""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any

from dateutil.relativedelta import relativedelta
from sqlalchemy import func, select

from upkeep.auth.access_scope import AccessScope
from upkeep.core.enums import ContractStatus, VisitStatus
from upkeep.core.exceptions import ValidationError
from upkeep.models import MaintenanceContract, MaintenanceVisit, User
from upkeep.services.cache import AnalyticsCache
from upkeep.services.maintenance.base import MaintenanceService, apply_scope

logger = logging.getLogger(__name__)

HEALTH_BUCKETS = ("healthy", "warning", "poor", "critical", "expired")
COMPLETION_GROUPINGS = ("day", "week", "month")


def _rate(part: int, whole: int) -> float:
    return round(part / whole * 100, 2) if whole else 0.0


def _mean(values: list[float]) -> float:
    return round(sum(values) / len(values), 2) if values else 0.0


def _money(value: Decimal | float | int | None) -> float:
    return round(float(value or 0), 2)


def health_bucket(completion_rate: float, days_until_expiry: int | None, critical_days: int = 7) -> str:
    """Expiry checks win over completion-rate checks."""
    if days_until_expiry is not None and days_until_expiry < 0:
        return "expired"
    if days_until_expiry is not None and days_until_expiry <= critical_days:
        return "critical"
    if completion_rate >= 80:
        return "healthy"
    if completion_rate >= 60:
        return "warning"
    return "poor"


def period_label(day: date, group_by: str) -> str:
    if group_by == "day":
        return day.isoformat()
    if group_by == "month":
        return day.strftime("%Y-%m")
    iso_year, iso_week, _ = day.isocalendar()
    return f"{iso_year}-W{iso_week:02d}"


class MaintenanceAnalyticsService(MaintenanceService):
    """Aggregations over scoped contract and visit state. Never writes."""

    def __init__(self, *args, cache: AnalyticsCache | None = None, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.cache = cache

    def _cached(
        self,
        scope: AccessScope,
        name: str,
        params: dict[str, Any],
        compute: Callable[[], dict[str, Any]],
    ) -> dict[str, Any]:
        if self.cache is None:
            return compute()
        # Relative windows must not outlive the day they were computed for.
        keyed = {**params, "today": self.today().isoformat()}
        return self.cache.remember(scope.tenant_id, scope.signature(), name, keyed, compute)

    def _period(self, start_date: date | None, end_date: date | None) -> tuple[date, date]:
        end = end_date or self.today()
        start = start_date or end - relativedelta(months=1)
        if start > end:
            raise ValidationError("start_date must be on or before end_date.")
        return start, end

    def _visits_between(self, scope: AccessScope, start: date, end: date) -> list[MaintenanceVisit]:
        stmt = self.scoped_visits(scope).where(
            MaintenanceVisit.scheduled_date >= start,
            MaintenanceVisit.scheduled_date <= end,
            MaintenanceVisit.deleted_at.is_(None),
        )
        return list(self.db.scalars(stmt))

    def get_contract_health_metrics(self, scope: AccessScope) -> dict[str, Any]:
        return self._cached(scope, "contract_health", {}, lambda: self._contract_health(scope))

    def _contract_health(self, scope: AccessScope) -> dict[str, Any]:
        today = self.today()
        contracts = list(
            self.db.execute(
                apply_scope(
                    select(MaintenanceContract.id, MaintenanceContract.status, MaintenanceContract.end_date),
                    MaintenanceContract,
                    scope,
                ).where(MaintenanceContract.deleted_at.is_(None))
            )
        )
        visit_counts: dict[int, dict[str, int]] = defaultdict(lambda: {"total": 0, "completed": 0})
        count_stmt = (
            apply_scope(select(MaintenanceVisit.maintenance_contract_id), MaintenanceVisit, scope)
            .add_columns(MaintenanceVisit.status, func.count(MaintenanceVisit.id))
            .where(MaintenanceVisit.deleted_at.is_(None))
            .group_by(MaintenanceVisit.maintenance_contract_id, MaintenanceVisit.status)
        )
        for contract_id, status, count in self.db.execute(count_stmt):
            visit_counts[contract_id]["total"] += count
            if VisitStatus(status) is VisitStatus.COMPLETED:
                visit_counts[contract_id]["completed"] += count

        expiring_limit = today + timedelta(days=self.config.EXPIRING_SOON_DAYS)
        distribution = dict.fromkeys(HEALTH_BUCKETS, 0)
        completion_rates: list[float] = []
        active = expired = expiring = 0
        for contract_id, status, end_date in contracts:
            if ContractStatus(status) is ContractStatus.ACTIVE:
                active += 1
            if end_date is not None and end_date < today:
                expired += 1
            elif end_date is not None and end_date <= expiring_limit:
                expiring += 1

            counts = visit_counts.get(contract_id)
            rate = _rate(counts["completed"], counts["total"]) if counts else 0.0
            if counts and counts["total"]:
                completion_rates.append(rate)
            days_left = (end_date - today).days if end_date is not None else None
            distribution[health_bucket(rate, days_left, self.config.CRITICAL_EXPIRY_DAYS)] += 1

        return {
            "total_contracts": len(contracts),
            "active_contracts": active,
            "expired_contracts": expired,
            "expiring_soon": expiring,
            "average_completion_rate": _mean(completion_rates),
            "health_distribution": distribution,
        }

    def get_sla_metrics(
        self,
        scope: AccessScope,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> dict[str, Any]:
        start, end = self._period(start_date, end_date)
        return self._cached(
            scope,
            "sla",
            {"start": start.isoformat(), "end": end.isoformat()},
            lambda: self._sla(scope, start, end),
        )

    def _sla(self, scope: AccessScope, start: date, end: date) -> dict[str, Any]:
        today = self.today()
        visits = self._visits_between(scope, start, end)
        completed = [visit for visit in visits if visit.status == VisitStatus.COMPLETED]
        overdue = [
            visit for visit in visits if visit.status == VisitStatus.SCHEDULED and visit.scheduled_date < today
        ]
        on_time = [
            visit
            for visit in completed
            if visit.actual_end_time is not None
            and visit.actual_end_time <= datetime.combine(visit.scheduled_date, time.max)
        ]
        response_hours = [
            abs(
                (
                    visit.actual_start_time
                    - datetime.combine(visit.scheduled_date, visit.scheduled_time or time.min)
                ).total_seconds()
            )
            / 3600
            for visit in completed
            if visit.actual_start_time is not None
        ]
        durations = [
            visit.actual_duration_minutes for visit in completed if visit.actual_duration_minutes is not None
        ]
        return {
            "period": {"start": start.isoformat(), "end": end.isoformat()},
            "visits": {
                "total": len(visits),
                "completed": len(completed),
                "overdue": len(overdue),
                "on_time": len(on_time),
            },
            "metrics": {
                "on_time_rate": _rate(len(on_time), len(visits)),
                "completion_rate": _rate(len(completed), len(visits)),
                "average_response_time_hours": _mean(response_hours),
                "average_visit_duration_minutes": _mean(durations),
            },
        }

    def get_technician_performance(
        self,
        scope: AccessScope,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> dict[str, Any]:
        start, end = self._period(start_date, end_date)
        return self._cached(
            scope,
            "technicians",
            {"start": start.isoformat(), "end": end.isoformat()},
            lambda: self._technicians(scope, start, end),
        )

    def _technicians(self, scope: AccessScope, start: date, end: date) -> dict[str, Any]:
        grouped: dict[int, list[MaintenanceVisit]] = defaultdict(list)
        for visit in self._visits_between(scope, start, end):
            if visit.assigned_technician_id is not None:
                grouped[visit.assigned_technician_id].append(visit)

        names = {}
        if grouped:
            names = dict(
                self.db.execute(select(User.id, User.full_name).where(User.id.in_(sorted(grouped)))).all()
            )

        technicians = []
        for technician_id in sorted(grouped):
            visits = grouped[technician_id]
            completed = [visit for visit in visits if visit.status == VisitStatus.COMPLETED]
            ratings = [visit.customer_rating for visit in completed if visit.customer_rating is not None]
            technicians.append(
                {
                    "technician_id": technician_id,
                    "technician_name": names.get(technician_id, "Unknown"),
                    "total_visits": len(visits),
                    "completed_visits": len(completed),
                    "completion_rate": _rate(len(completed), len(visits)),
                    "average_rating": _mean([float(rating) for rating in ratings]),
                    "total_revenue": _money(sum((Decimal(visit.total_cost) for visit in completed), Decimal("0"))),
                }
            )

        return {
            "period": {"start": start.isoformat(), "end": end.isoformat()},
            "technicians": technicians,
            "summary": {
                "total_technicians": len(technicians),
                "average_completion_rate": _mean([row["completion_rate"] for row in technicians]),
                "average_rating": _mean([row["average_rating"] for row in technicians]),
                "total_revenue": round(sum(row["total_revenue"] for row in technicians), 2),
            },
        }

    def get_visit_completion_rates(self, scope: AccessScope, group_by: str = "week") -> dict[str, Any]:
        if group_by not in COMPLETION_GROUPINGS:
            raise ValidationError(f"group_by must be one of: {', '.join(COMPLETION_GROUPINGS)}")
        return self._cached(
            scope, "completion_rates", {"group_by": group_by}, lambda: self._completion_rates(scope, group_by)
        )

    def _completion_rates(self, scope: AccessScope, group_by: str) -> dict[str, Any]:
        end = self.today()
        start = end - relativedelta(months=3)
        buckets: dict[str, dict[str, int]] = defaultdict(lambda: {"total": 0, "completed": 0})
        for visit in self._visits_between(scope, start, end):
            bucket = buckets[period_label(visit.scheduled_date, group_by)]
            bucket["total"] += 1
            if visit.status == VisitStatus.COMPLETED:
                bucket["completed"] += 1
        return {
            "group_by": group_by,
            "periods": [
                {
                    "period": label,
                    "total_visits": counts["total"],
                    "completed_visits": counts["completed"],
                    "completion_rate": _rate(counts["completed"], counts["total"]),
                }
                for label, counts in sorted(buckets.items())
            ],
        }

    def get_revenue_analytics(
        self,
        scope: AccessScope,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> dict[str, Any]:
        start, end = self._period(start_date, end_date)
        return self._cached(
            scope,
            "revenue",
            {"start": start.isoformat(), "end": end.isoformat()},
            lambda: self._revenue(scope, start, end),
        )

    def _revenue(self, scope: AccessScope, start: date, end: date) -> dict[str, Any]:
        stmt = (
            apply_scope(
                select(
                    MaintenanceVisit.maintenance_contract_id,
                    MaintenanceContract.customer_name,
                    MaintenanceVisit.total_cost,
                ).join(MaintenanceContract, MaintenanceContract.id == MaintenanceVisit.maintenance_contract_id),
                MaintenanceVisit,
                scope,
            )
            .where(
                MaintenanceVisit.status == VisitStatus.COMPLETED,
                MaintenanceVisit.actual_end_time >= datetime.combine(start, time.min),
                MaintenanceVisit.actual_end_time <= datetime.combine(end, time.max),
                MaintenanceVisit.deleted_at.is_(None),
            )
        )
        by_contract: dict[int, dict[str, Any]] = {}
        total = Decimal("0")
        count = 0
        for contract_id, customer_name, cost in self.db.execute(stmt):
            amount = Decimal(cost or 0)
            total += amount
            count += 1
            row = by_contract.setdefault(
                contract_id,
                {"contract_id": contract_id, "customer_name": customer_name, "revenue": Decimal("0"), "visits_count": 0},
            )
            row["revenue"] += amount
            row["visits_count"] += 1

        ranked = sorted(by_contract.values(), key=lambda row: (-row["revenue"], row["contract_id"]))[:10]
        return {
            "period": {"start": start.isoformat(), "end": end.isoformat()},
            "summary": {
                "total_revenue": _money(total),
                "total_visits": count,
                "average_visit_value": _money(total / count) if count else 0.0,
            },
            "by_contract": [{**row, "revenue": _money(row["revenue"])} for row in ranked],
        }

    def get_branch_metrics(
        self,
        scope: AccessScope,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> dict[str, Any]:
        start, end = self._period(start_date, end_date)
        return {
            "period": {"start": start.isoformat(), "end": end.isoformat()},
            "contracts": self.get_contract_health_metrics(scope),
            "sla": self.get_sla_metrics(scope, start, end),
            "technicians": self.get_technician_performance(scope, start, end),
        }
