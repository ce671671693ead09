"""Maintenance visit request/response schemas."""

from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from upkeep.core.enums import VisitPriority, VisitStatus


class VisitCreateRequest(BaseModel):
    contract_id: int = Field(ge=1)
    scheduled_date: date
    scheduled_time: time | None = None
    priority: VisitPriority | None = None
    assigned_technician_id: int | None = None
    work_description: str | None = None


class VisitUpdateRequest(BaseModel):
    scheduled_time: time | None = None
    priority: VisitPriority | None = None
    assigned_technician_id: int | None = None
    work_description: str | None = None


class GenerateVisitsRequest(BaseModel):
    horizon: date | None = None


class RescheduleRequest(BaseModel):
    new_date: date
    reason: str | None = Field(default=None, max_length=2000)


class StartVisitRequest(BaseModel):
    technician_id: int | None = Field(default=None, ge=1)


class PartUsagePayload(BaseModel):
    product_id: int = Field(ge=1)
    quantity: int = Field(ge=1)
    unit_price: Decimal | None = Field(default=None, ge=0)
    notes: str | None = None


class CompleteVisitRequest(BaseModel):
    result: VisitStatus = VisitStatus.COMPLETED
    completion_notes: str | None = None
    customer_feedback: str | None = None
    customer_rating: int | None = Field(default=None, ge=1, le=5)
    photos: list[str] | None = None
    parts_used: list[PartUsagePayload] = Field(default_factory=list)


class RecordPartsRequest(BaseModel):
    parts: list[PartUsagePayload] = Field(min_length=1)


class VisitStatusUpdateRequest(BaseModel):
    status: VisitStatus
    note: str | None = Field(default=None, max_length=2000)


class VisitItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: int
    quantity: int
    unit_cost: Decimal
    total_cost: Decimal
    notes: str | None = None


class VisitResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    tenant_id: int
    branch_id: int
    maintenance_contract_id: int
    assigned_technician_id: int | None = None
    scheduled_date: date
    scheduled_time: time | None = None
    priority: VisitPriority
    status: VisitStatus
    work_description: str | None = None
    actual_start_time: datetime | None = None
    actual_end_time: datetime | None = None
    completion_notes: str | None = None
    customer_feedback: str | None = None
    customer_rating: int | None = None
    total_cost: Decimal
    photos: list[str] | None = None
    rescheduled_from: date | None = None
    rescheduled_at: datetime | None = None
    cancelled_at: datetime | None = None
    missed_at: datetime | None = None


class VisitDetailResponse(VisitResponse):
    items: list[VisitItemResponse] = Field(default_factory=list)


class GenerationResponse(BaseModel):
    contract_id: int
    created: int
    skipped: int
    capped: bool
    visits: list[VisitResponse]


class CompletionResponse(BaseModel):
    visit: VisitDetailResponse
    next_visit: VisitResponse | None = None
