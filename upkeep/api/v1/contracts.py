"""Maintenance contract endpoints for API v1."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Header, Query, Response, status
from sqlalchemy.orm import Session

from upkeep.api.v1._authz import authorize, to_http_error
from upkeep.core.enums import ContractStatus
from upkeep.core.exceptions import UpkeepException
from upkeep.database.db import get_db
from upkeep.schemas.contracts import (
    ContractCreateRequest,
    ContractExpirationResponse,
    ContractRenewalRequest,
    ContractResponse,
    ContractStatusChangeResponse,
    ContractStatusUpdateRequest,
    ContractUpdateRequest,
)
from upkeep.schemas.visits import GenerateVisitsRequest, GenerationResponse, VisitResponse
from upkeep.services.contract_service import ContractService
from upkeep.services.maintenance.scheduling import VisitSchedulingService

router = APIRouter(tags=["contracts"])


@router.post("/contracts", status_code=status.HTTP_201_CREATED, response_model=ContractResponse)
def create_contract(
    payload: ContractCreateRequest,
    authorization: str | None = Header(default=None, alias="Authorization"),
    tenant_override: int | None = Header(default=None, alias="X-Tenant-ID"),
    db: Session = Depends(get_db),
) -> ContractResponse:
    try:
        ctx = authorize(db, authorization, "contracts.write", tenant_override)
        data = payload.model_dump(exclude={"items", "generate_visits"}, exclude_none=True)
        data["items"] = [item.model_dump() for item in payload.items]
        contract = ContractService(db).create_contract(
            ctx.scope, data, actor_id=ctx.actor_id, generate_visits=payload.generate_visits
        )
        return ContractResponse.model_validate(contract)
    except UpkeepException as exc:
        raise to_http_error(exc) from exc


@router.get("/contracts", response_model=list[ContractResponse])
def list_contracts(
    status_filter: ContractStatus | None = Query(default=None, alias="status"),
    branch_id: int | None = Query(default=None, ge=1),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    authorization: str | None = Header(default=None, alias="Authorization"),
    tenant_override: int | None = Header(default=None, alias="X-Tenant-ID"),
    db: Session = Depends(get_db),
) -> list[ContractResponse]:
    try:
        ctx = authorize(db, authorization, "contracts.read", tenant_override)
        contracts = ContractService(db).list_contracts(
            ctx.scope, status=status_filter, branch_id=branch_id, limit=limit, offset=offset
        )
        return [ContractResponse.model_validate(contract) for contract in contracts]
    except UpkeepException as exc:
        raise to_http_error(exc) from exc


@router.get("/contracts/expiring", response_model=list[ContractResponse])
def expiring_contracts(
    days: int = Query(default=30, ge=0, le=365),
    authorization: str | None = Header(default=None, alias="Authorization"),
    tenant_override: int | None = Header(default=None, alias="X-Tenant-ID"),
    db: Session = Depends(get_db),
) -> list[ContractResponse]:
    try:
        ctx = authorize(db, authorization, "contracts.read", tenant_override)
        contracts = ContractService(db).get_expiring_contracts(ctx.scope, days=days)
        return [ContractResponse.model_validate(contract) for contract in contracts]
    except UpkeepException as exc:
        raise to_http_error(exc) from exc


@router.get("/contracts/{contract_id}", response_model=ContractResponse)
def get_contract(
    contract_id: int,
    authorization: str | None = Header(default=None, alias="Authorization"),
    tenant_override: int | None = Header(default=None, alias="X-Tenant-ID"),
    db: Session = Depends(get_db),
) -> ContractResponse:
    try:
        ctx = authorize(db, authorization, "contracts.read", tenant_override)
        return ContractResponse.model_validate(ContractService(db).get_contract(ctx.scope, contract_id))
    except UpkeepException as exc:
        raise to_http_error(exc) from exc


@router.get("/contracts/{contract_id}/health")
def contract_health(
    contract_id: int,
    authorization: str | None = Header(default=None, alias="Authorization"),
    tenant_override: int | None = Header(default=None, alias="X-Tenant-ID"),
    db: Session = Depends(get_db),
) -> dict:
    try:
        ctx = authorize(db, authorization, "contracts.read", tenant_override)
        return ContractService(db).get_contract_health(ctx.scope, contract_id)
    except UpkeepException as exc:
        raise to_http_error(exc) from exc


@router.patch("/contracts/{contract_id}", response_model=ContractResponse)
def update_contract(
    contract_id: int,
    payload: ContractUpdateRequest,
    authorization: str | None = Header(default=None, alias="Authorization"),
    tenant_override: int | None = Header(default=None, alias="X-Tenant-ID"),
    db: Session = Depends(get_db),
) -> ContractResponse:
    try:
        ctx = authorize(db, authorization, "contracts.write", tenant_override)
        changes = payload.model_dump(exclude_unset=True)
        contract = ContractService(db).update_contract(ctx.scope, contract_id, changes)
        return ContractResponse.model_validate(contract)
    except UpkeepException as exc:
        raise to_http_error(exc) from exc


@router.post("/contracts/{contract_id}/status", response_model=ContractStatusChangeResponse)
def change_contract_status(
    contract_id: int,
    payload: ContractStatusUpdateRequest,
    authorization: str | None = Header(default=None, alias="Authorization"),
    tenant_override: int | None = Header(default=None, alias="X-Tenant-ID"),
    db: Session = Depends(get_db),
) -> ContractStatusChangeResponse:
    try:
        ctx = authorize(db, authorization, "contracts.write", tenant_override)
        contract, cancelled = ContractService(db).change_status(
            ctx.scope, contract_id, payload.status, actor_id=ctx.actor_id
        )
        return ContractStatusChangeResponse(
            contract=ContractResponse.model_validate(contract), cancelled_visits=cancelled
        )
    except UpkeepException as exc:
        raise to_http_error(exc) from exc


@router.post("/contracts/{contract_id}/renew", status_code=status.HTTP_201_CREATED, response_model=ContractResponse)
def renew_contract(
    contract_id: int,
    payload: ContractRenewalRequest,
    authorization: str | None = Header(default=None, alias="Authorization"),
    tenant_override: int | None = Header(default=None, alias="X-Tenant-ID"),
    db: Session = Depends(get_db),
) -> ContractResponse:
    try:
        ctx = authorize(db, authorization, "contracts.write", tenant_override)
        renewal = ContractService(db).renew_contract(
            ctx.scope,
            contract_id,
            payload.model_dump(exclude={"generate_visits"}),
            actor_id=ctx.actor_id,
            generate_visits=payload.generate_visits,
        )
        return ContractResponse.model_validate(renewal)
    except UpkeepException as exc:
        raise to_http_error(exc) from exc


@router.post("/contracts/{contract_id}/expire", response_model=ContractExpirationResponse)
def expire_contract(
    contract_id: int,
    authorization: str | None = Header(default=None, alias="Authorization"),
    tenant_override: int | None = Header(default=None, alias="X-Tenant-ID"),
    db: Session = Depends(get_db),
) -> ContractExpirationResponse:
    try:
        ctx = authorize(db, authorization, "contracts.write", tenant_override)
        return ContractExpirationResponse(**ContractService(db).handle_contract_expiration(ctx.scope, contract_id))
    except UpkeepException as exc:
        raise to_http_error(exc) from exc


@router.delete("/contracts/{contract_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_contract(
    contract_id: int,
    authorization: str | None = Header(default=None, alias="Authorization"),
    tenant_override: int | None = Header(default=None, alias="X-Tenant-ID"),
    db: Session = Depends(get_db),
) -> Response:
    try:
        ctx = authorize(db, authorization, "contracts.delete", tenant_override)
        ContractService(db).delete_contract(ctx.scope, contract_id, actor_id=ctx.actor_id)
    except UpkeepException as exc:
        raise to_http_error(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/contracts/{contract_id}/visits/generate", response_model=GenerationResponse)
def generate_visits(
    contract_id: int,
    payload: GenerateVisitsRequest | None = None,
    authorization: str | None = Header(default=None, alias="Authorization"),
    tenant_override: int | None = Header(default=None, alias="X-Tenant-ID"),
    db: Session = Depends(get_db),
) -> GenerationResponse:
    try:
        ctx = authorize(db, authorization, "visits.write", tenant_override)
        result = VisitSchedulingService(db).generate_scheduled_visits(
            ctx.scope,
            contract_id,
            horizon=payload.horizon if payload else None,
            actor_id=ctx.actor_id,
        )
        return GenerationResponse(
            contract_id=result.contract_id,
            created=result.created,
            skipped=result.skipped,
            capped=result.capped,
            visits=[VisitResponse.model_validate(visit) for visit in result.visits],
        )
    except UpkeepException as exc:
        raise to_http_error(exc) from exc


@router.post("/contracts/{contract_id}/visits/cancel-future")
def cancel_future_visits(
    contract_id: int,
    authorization: str | None = Header(default=None, alias="Authorization"),
    tenant_override: int | None = Header(default=None, alias="X-Tenant-ID"),
    db: Session = Depends(get_db),
) -> dict:
    try:
        ctx = authorize(db, authorization, "visits.write", tenant_override)
        cancelled = VisitSchedulingService(db).cancel_future_visits(ctx.scope, contract_id, actor_id=ctx.actor_id)
        return {"contract_id": contract_id, "cancelled_visits": cancelled}
    except UpkeepException as exc:
        raise to_http_error(exc) from exc
