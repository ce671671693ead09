"""Maintenance analytics endpoints for API v1."""

from __future__ import annotations

from datetime import date
from functools import lru_cache

from fastapi import APIRouter, Depends, Header, Query
from sqlalchemy.orm import Session

from upkeep.api.v1._authz import authorize, to_http_error
from upkeep.core.config import get_config
from upkeep.core.exceptions import UpkeepException
from upkeep.database.db import get_db
from upkeep.schemas.analytics import ContractHealthResponse, SLAResponse, TechnicianPerformanceResponse
from upkeep.services.cache import AnalyticsCache
from upkeep.services.maintenance.analytics import MaintenanceAnalyticsService

router = APIRouter(prefix="/analytics", tags=["analytics"])


@lru_cache(maxsize=1)
def get_analytics_cache() -> AnalyticsCache | None:
    if not get_config().ANALYTICS_CACHE_ENABLED:
        return None
    return AnalyticsCache()


def _service(db: Session) -> MaintenanceAnalyticsService:
    return MaintenanceAnalyticsService(db, cache=get_analytics_cache())


@router.get("/contract-health", response_model=ContractHealthResponse)
def contract_health(
    authorization: str | None = Header(default=None, alias="Authorization"),
    tenant_override: int | None = Header(default=None, alias="X-Tenant-ID"),
    db: Session = Depends(get_db),
) -> ContractHealthResponse:
    try:
        ctx = authorize(db, authorization, "analytics.read", tenant_override)
        return ContractHealthResponse(**_service(db).get_contract_health_metrics(ctx.scope))
    except UpkeepException as exc:
        raise to_http_error(exc) from exc


@router.get("/sla", response_model=SLAResponse)
def sla_metrics(
    start_date: date | None = None,
    end_date: date | None = None,
    authorization: str | None = Header(default=None, alias="Authorization"),
    tenant_override: int | None = Header(default=None, alias="X-Tenant-ID"),
    db: Session = Depends(get_db),
) -> SLAResponse:
    try:
        ctx = authorize(db, authorization, "analytics.read", tenant_override)
        return SLAResponse(**_service(db).get_sla_metrics(ctx.scope, start_date, end_date))
    except UpkeepException as exc:
        raise to_http_error(exc) from exc


@router.get("/technicians", response_model=TechnicianPerformanceResponse)
def technician_performance(
    start_date: date | None = None,
    end_date: date | None = None,
    authorization: str | None = Header(default=None, alias="Authorization"),
    tenant_override: int | None = Header(default=None, alias="X-Tenant-ID"),
    db: Session = Depends(get_db),
) -> TechnicianPerformanceResponse:
    try:
        ctx = authorize(db, authorization, "analytics.read", tenant_override)
        return TechnicianPerformanceResponse(**_service(db).get_technician_performance(ctx.scope, start_date, end_date))
    except UpkeepException as exc:
        raise to_http_error(exc) from exc


@router.get("/completion-rates")
def completion_rates(
    group_by: str = Query(default="week"),
    authorization: str | None = Header(default=None, alias="Authorization"),
    tenant_override: int | None = Header(default=None, alias="X-Tenant-ID"),
    db: Session = Depends(get_db),
) -> dict:
    try:
        ctx = authorize(db, authorization, "analytics.read", tenant_override)
        return _service(db).get_visit_completion_rates(ctx.scope, group_by=group_by)
    except UpkeepException as exc:
        raise to_http_error(exc) from exc


@router.get("/revenue")
def revenue(
    start_date: date | None = None,
    end_date: date | None = None,
    authorization: str | None = Header(default=None, alias="Authorization"),
    tenant_override: int | None = Header(default=None, alias="X-Tenant-ID"),
    db: Session = Depends(get_db),
) -> dict:
    try:
        ctx = authorize(db, authorization, "analytics.read", tenant_override)
        return _service(db).get_revenue_analytics(ctx.scope, start_date, end_date)
    except UpkeepException as exc:
        raise to_http_error(exc) from exc


@router.get("/branch-metrics")
def branch_metrics(
    start_date: date | None = None,
    end_date: date | None = None,
    authorization: str | None = Header(default=None, alias="Authorization"),
    tenant_override: int | None = Header(default=None, alias="X-Tenant-ID"),
    db: Session = Depends(get_db),
) -> dict:
    try:
        ctx = authorize(db, authorization, "analytics.read", tenant_override)
        return _service(db).get_branch_metrics(ctx.scope, start_date, end_date)
    except UpkeepException as exc:
        raise to_http_error(exc) from exc
