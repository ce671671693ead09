"""Maintenance contract request/response schemas."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from upkeep.core.enums import ContractFrequency, ContractStatus, FrequencyUnit, VisitPriority


class ContractItemPayload(BaseModel):
    product_id: int = Field(ge=1)
    quantity: Decimal = Field(default=Decimal("1"), gt=0)
    unit_cost: Decimal = Field(default=Decimal("0"), ge=0)
    is_included: bool = True


class _ScheduleFields(BaseModel):
    frequency_value: int | None = Field(default=None, ge=1)
    frequency_unit: FrequencyUnit | None = None
    end_date: date | None = None


class ContractCreateRequest(_ScheduleFields):
    branch_id: int = Field(ge=1)
    sale_id: int | None = None
    product_id: int | None = None
    customer_id: int | None = None
    customer_name: str = Field(min_length=1, max_length=255)
    customer_phone: str | None = Field(default=None, max_length=64)
    customer_email: str | None = Field(default=None, max_length=320)
    customer_address: str | None = None
    assigned_technician_id: int | None = None
    frequency: ContractFrequency
    start_date: date
    contract_value: Decimal | None = Field(default=None, ge=0)
    priority: VisitPriority = VisitPriority.MEDIUM
    is_premium: bool = False
    special_instructions: str | None = None
    items: list[ContractItemPayload] = Field(default_factory=list)
    generate_visits: bool = False

    @model_validator(mode="after")
    def _check_schedule(self) -> "ContractCreateRequest":
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date")
        if self.frequency is ContractFrequency.CUSTOM and (self.frequency_value is None or self.frequency_unit is None):
            raise ValueError("custom frequency requires frequency_value and frequency_unit")
        return self


class ContractUpdateRequest(_ScheduleFields):
    product_id: int | None = None
    customer_id: int | None = None
    customer_name: str | None = Field(default=None, min_length=1, max_length=255)
    customer_phone: str | None = Field(default=None, max_length=64)
    customer_email: str | None = Field(default=None, max_length=320)
    customer_address: str | None = None
    assigned_technician_id: int | None = None
    frequency: ContractFrequency | None = None
    start_date: date | None = None
    contract_value: Decimal | None = Field(default=None, ge=0)
    priority: VisitPriority | None = None
    is_premium: bool | None = None
    special_instructions: str | None = None
    items: list[ContractItemPayload] | None = None


class ContractStatusUpdateRequest(BaseModel):
    status: ContractStatus


class ContractRenewalRequest(_ScheduleFields):
    start_date: date
    frequency: ContractFrequency | None = None
    contract_value: Decimal | None = Field(default=None, ge=0)
    special_instructions: str | None = None
    generate_visits: bool = False


class ContractItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: int
    position: int
    quantity: Decimal
    unit_cost: Decimal
    total_cost: Decimal
    is_included: bool


class ContractResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    tenant_id: int
    branch_id: int
    sale_id: int | None = None
    product_id: int | None = None
    customer_id: int | None = None
    customer_name: str
    customer_phone: str | None = None
    customer_email: str | None = None
    customer_address: str | None = None
    assigned_technician_id: int | None = None
    frequency: ContractFrequency
    frequency_value: int | None = None
    frequency_unit: FrequencyUnit | None = None
    start_date: date
    end_date: date | None = None
    contract_value: Decimal | None = None
    priority: VisitPriority
    is_premium: bool
    special_instructions: str | None = None
    status: ContractStatus
    renewed_from_id: int | None = None
    items: list[ContractItemResponse] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ContractStatusChangeResponse(BaseModel):
    contract: ContractResponse
    cancelled_visits: int


class ContractExpirationResponse(BaseModel):
    contract_id: int
    status_updated: bool
    cancelled_visits: int
