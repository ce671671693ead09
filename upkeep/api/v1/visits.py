"""Maintenance visit scheduling and execution endpoints for API v1."""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Header, Query, status
from sqlalchemy.orm import Session

from upkeep.api.v1._authz import authorize, to_http_error
from upkeep.api.v1.analytics import get_analytics_cache
from upkeep.core.enums import VisitStatus
from upkeep.core.exceptions import UpkeepException
from upkeep.database.db import get_db
from upkeep.schemas.common import CountResponse
from upkeep.schemas.visits import (
    CompleteVisitRequest,
    CompletionResponse,
    RecordPartsRequest,
    RescheduleRequest,
    StartVisitRequest,
    VisitCreateRequest,
    VisitDetailResponse,
    VisitItemResponse,
    VisitResponse,
    VisitStatusUpdateRequest,
    VisitUpdateRequest,
)
from upkeep.services.maintenance.execution import PartUsage, VisitCompletion, VisitExecutionService
from upkeep.services.maintenance.scheduling import VisitSchedulingService

router = APIRouter(tags=["visits"])


def _execution_service(db: Session) -> VisitExecutionService:
    service = VisitExecutionService(db)
    cache = get_analytics_cache()
    if cache is not None:
        service.add_completion_listener(lambda visit: cache.invalidate_tenant(visit.tenant_id))
    return service


def _parts(payload_parts) -> list[PartUsage]:
    return [
        PartUsage(product_id=part.product_id, quantity=part.quantity, unit_price=part.unit_price, notes=part.notes)
        for part in payload_parts
    ]


@router.post("/visits", status_code=status.HTTP_201_CREATED, response_model=VisitResponse)
def create_visit(
    payload: VisitCreateRequest,
    authorization: str | None = Header(default=None, alias="Authorization"),
    tenant_override: int | None = Header(default=None, alias="X-Tenant-ID"),
    db: Session = Depends(get_db),
) -> VisitResponse:
    try:
        ctx = authorize(db, authorization, "visits.write", tenant_override)
        visit = VisitSchedulingService(db).create_visit(
            ctx.scope,
            payload.contract_id,
            payload.scheduled_date,
            scheduled_time=payload.scheduled_time,
            priority=payload.priority,
            assigned_technician_id=payload.assigned_technician_id,
            work_description=payload.work_description,
            actor_id=ctx.actor_id,
        )
        return VisitResponse.model_validate(visit)
    except UpkeepException as exc:
        raise to_http_error(exc) from exc


@router.get("/visits", response_model=list[VisitResponse])
def list_visits(
    status_filter: VisitStatus | None = Query(default=None, alias="status"),
    contract_id: int | None = Query(default=None, ge=1),
    technician_id: int | None = Query(default=None, ge=1),
    branch_id: int | None = Query(default=None, ge=1),
    date_from: date | None = None,
    date_to: date | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    authorization: str | None = Header(default=None, alias="Authorization"),
    tenant_override: int | None = Header(default=None, alias="X-Tenant-ID"),
    db: Session = Depends(get_db),
) -> list[VisitResponse]:
    try:
        ctx = authorize(db, authorization, "visits.read", tenant_override)
        visits = VisitSchedulingService(db).list_visits(
            ctx.scope,
            status=status_filter,
            contract_id=contract_id,
            technician_id=technician_id,
            branch_id=branch_id,
            date_from=date_from,
            date_to=date_to,
            limit=limit,
            offset=offset,
        )
        return [VisitResponse.model_validate(visit) for visit in visits]
    except UpkeepException as exc:
        raise to_http_error(exc) from exc


@router.get("/visits/upcoming", response_model=list[VisitResponse])
def upcoming_visits(
    days: int = Query(default=7, ge=0, le=365),
    authorization: str | None = Header(default=None, alias="Authorization"),
    tenant_override: int | None = Header(default=None, alias="X-Tenant-ID"),
    db: Session = Depends(get_db),
) -> list[VisitResponse]:
    try:
        ctx = authorize(db, authorization, "visits.read", tenant_override)
        visits = VisitSchedulingService(db).get_upcoming_visits(ctx.scope, days=days)
        return [VisitResponse.model_validate(visit) for visit in visits]
    except UpkeepException as exc:
        raise to_http_error(exc) from exc


@router.get("/visits/overdue", response_model=list[VisitResponse])
def overdue_visits(
    authorization: str | None = Header(default=None, alias="Authorization"),
    tenant_override: int | None = Header(default=None, alias="X-Tenant-ID"),
    db: Session = Depends(get_db),
) -> list[VisitResponse]:
    try:
        ctx = authorize(db, authorization, "visits.read", tenant_override)
        return [VisitResponse.model_validate(visit) for visit in VisitSchedulingService(db).get_overdue_visits(ctx.scope)]
    except UpkeepException as exc:
        raise to_http_error(exc) from exc


@router.get("/visits/statistics")
def scheduling_statistics(
    authorization: str | None = Header(default=None, alias="Authorization"),
    tenant_override: int | None = Header(default=None, alias="X-Tenant-ID"),
    db: Session = Depends(get_db),
) -> dict:
    try:
        ctx = authorize(db, authorization, "visits.read", tenant_override)
        return VisitSchedulingService(db).get_scheduling_statistics(ctx.scope)
    except UpkeepException as exc:
        raise to_http_error(exc) from exc


@router.post("/visits/mark-missed", response_model=CountResponse)
def mark_missed(
    authorization: str | None = Header(default=None, alias="Authorization"),
    tenant_override: int | None = Header(default=None, alias="X-Tenant-ID"),
    db: Session = Depends(get_db),
) -> CountResponse:
    try:
        ctx = authorize(db, authorization, "visits.maintain", tenant_override)
        count = VisitSchedulingService(db).mark_overdue_visits_as_missed(
            tenant_id=ctx.scope.tenant_id, actor_id=ctx.actor_id
        )
        return CountResponse(count=count)
    except UpkeepException as exc:
        raise to_http_error(exc) from exc


@router.get("/visits/technicians/{technician_id}", response_model=list[VisitResponse])
def technician_visits(
    technician_id: int,
    status_filter: VisitStatus | None = Query(default=None, alias="status"),
    authorization: str | None = Header(default=None, alias="Authorization"),
    tenant_override: int | None = Header(default=None, alias="X-Tenant-ID"),
    db: Session = Depends(get_db),
) -> list[VisitResponse]:
    try:
        ctx = authorize(db, authorization, "visits.read", tenant_override)
        visits = VisitSchedulingService(db).get_technician_visits(ctx.scope, technician_id, status=status_filter)
        return [VisitResponse.model_validate(visit) for visit in visits]
    except UpkeepException as exc:
        raise to_http_error(exc) from exc


@router.get("/visits/technicians/{technician_id}/today", response_model=list[VisitResponse])
def technician_today(
    technician_id: int,
    authorization: str | None = Header(default=None, alias="Authorization"),
    tenant_override: int | None = Header(default=None, alias="X-Tenant-ID"),
    db: Session = Depends(get_db),
) -> list[VisitResponse]:
    try:
        ctx = authorize(db, authorization, "visits.read", tenant_override)
        visits = VisitSchedulingService(db).get_today_visits_for_technician(ctx.scope, technician_id)
        return [VisitResponse.model_validate(visit) for visit in visits]
    except UpkeepException as exc:
        raise to_http_error(exc) from exc


@router.get("/visits/{visit_id}", response_model=VisitDetailResponse)
def get_visit(
    visit_id: int,
    authorization: str | None = Header(default=None, alias="Authorization"),
    tenant_override: int | None = Header(default=None, alias="X-Tenant-ID"),
    db: Session = Depends(get_db),
) -> VisitDetailResponse:
    try:
        ctx = authorize(db, authorization, "visits.read", tenant_override)
        return VisitDetailResponse.model_validate(VisitSchedulingService(db).get_visit(ctx.scope, visit_id))
    except UpkeepException as exc:
        raise to_http_error(exc) from exc


@router.patch("/visits/{visit_id}", response_model=VisitResponse)
def update_visit(
    visit_id: int,
    payload: VisitUpdateRequest,
    authorization: str | None = Header(default=None, alias="Authorization"),
    tenant_override: int | None = Header(default=None, alias="X-Tenant-ID"),
    db: Session = Depends(get_db),
) -> VisitResponse:
    try:
        ctx = authorize(db, authorization, "visits.write", tenant_override)
        visit = VisitSchedulingService(db).update_visit(ctx.scope, visit_id, payload.model_dump(exclude_unset=True))
        return VisitResponse.model_validate(visit)
    except UpkeepException as exc:
        raise to_http_error(exc) from exc


@router.post("/visits/{visit_id}/reschedule", response_model=VisitResponse)
def reschedule_visit(
    visit_id: int,
    payload: RescheduleRequest,
    authorization: str | None = Header(default=None, alias="Authorization"),
    tenant_override: int | None = Header(default=None, alias="X-Tenant-ID"),
    db: Session = Depends(get_db),
) -> VisitResponse:
    try:
        ctx = authorize(db, authorization, "visits.write", tenant_override)
        visit = VisitSchedulingService(db).reschedule_visit(
            ctx.scope, visit_id, payload.new_date, actor_id=ctx.actor_id, reason=payload.reason
        )
        return VisitResponse.model_validate(visit)
    except UpkeepException as exc:
        raise to_http_error(exc) from exc


@router.post("/visits/{visit_id}/start", response_model=VisitResponse)
def start_visit(
    visit_id: int,
    payload: StartVisitRequest | None = None,
    authorization: str | None = Header(default=None, alias="Authorization"),
    tenant_override: int | None = Header(default=None, alias="X-Tenant-ID"),
    db: Session = Depends(get_db),
) -> VisitResponse:
    try:
        ctx = authorize(db, authorization, "visits.execute", tenant_override)
        technician_id = payload.technician_id if payload and payload.technician_id else ctx.actor_id
        visit = _execution_service(db).start_visit(ctx.scope, visit_id, technician_id, actor_id=ctx.actor_id)
        return VisitResponse.model_validate(visit)
    except UpkeepException as exc:
        raise to_http_error(exc) from exc


@router.post("/visits/{visit_id}/complete", response_model=CompletionResponse)
def complete_visit(
    visit_id: int,
    payload: CompleteVisitRequest,
    authorization: str | None = Header(default=None, alias="Authorization"),
    tenant_override: int | None = Header(default=None, alias="X-Tenant-ID"),
    db: Session = Depends(get_db),
) -> CompletionResponse:
    try:
        ctx = authorize(db, authorization, "visits.execute", tenant_override)
        completion = VisitCompletion(
            result=payload.result,
            completion_notes=payload.completion_notes,
            customer_feedback=payload.customer_feedback,
            customer_rating=payload.customer_rating,
            photos=payload.photos,
            parts=_parts(payload.parts_used),
        )
        outcome = _execution_service(db).complete_visit(ctx.scope, visit_id, completion, actor_id=ctx.actor_id)
        return CompletionResponse(
            visit=VisitDetailResponse.model_validate(outcome.visit),
            next_visit=VisitResponse.model_validate(outcome.next_visit) if outcome.next_visit else None,
        )
    except UpkeepException as exc:
        raise to_http_error(exc) from exc


@router.post("/visits/{visit_id}/parts", status_code=status.HTTP_201_CREATED, response_model=list[VisitItemResponse])
def record_parts(
    visit_id: int,
    payload: RecordPartsRequest,
    authorization: str | None = Header(default=None, alias="Authorization"),
    tenant_override: int | None = Header(default=None, alias="X-Tenant-ID"),
    db: Session = Depends(get_db),
) -> list[VisitItemResponse]:
    try:
        ctx = authorize(db, authorization, "visits.execute", tenant_override)
        items = _execution_service(db).record_parts_used(
            ctx.scope, visit_id, _parts(payload.parts), actor_id=ctx.actor_id
        )
        return [VisitItemResponse.model_validate(item) for item in items]
    except UpkeepException as exc:
        raise to_http_error(exc) from exc


@router.delete("/visits/{visit_id}/items/{item_id}", response_model=VisitDetailResponse)
def remove_visit_item(
    visit_id: int,
    item_id: int,
    authorization: str | None = Header(default=None, alias="Authorization"),
    tenant_override: int | None = Header(default=None, alias="X-Tenant-ID"),
    db: Session = Depends(get_db),
) -> VisitDetailResponse:
    try:
        ctx = authorize(db, authorization, "visits.execute", tenant_override)
        visit = _execution_service(db).remove_visit_item(ctx.scope, visit_id, item_id, actor_id=ctx.actor_id)
        return VisitDetailResponse.model_validate(visit)
    except UpkeepException as exc:
        raise to_http_error(exc) from exc


@router.post("/visits/{visit_id}/status", response_model=VisitResponse)
def update_visit_status(
    visit_id: int,
    payload: VisitStatusUpdateRequest,
    authorization: str | None = Header(default=None, alias="Authorization"),
    tenant_override: int | None = Header(default=None, alias="X-Tenant-ID"),
    db: Session = Depends(get_db),
) -> VisitResponse:
    try:
        ctx = authorize(db, authorization, "visits.write", tenant_override)
        visit = _execution_service(db).update_visit_status(
            ctx.scope, visit_id, payload.status, actor_id=ctx.actor_id, note=payload.note
        )
        return VisitResponse.model_validate(visit)
    except UpkeepException as exc:
        raise to_http_error(exc) from exc
