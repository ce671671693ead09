"""Analytics response schemas."""

from __future__ import annotations

from pydantic import BaseModel


class Period(BaseModel):
    start: str
    end: str


class HealthDistribution(BaseModel):
    healthy: int = 0
    warning: int = 0
    poor: int = 0
    critical: int = 0
    expired: int = 0


class ContractHealthResponse(BaseModel):
    total_contracts: int
    active_contracts: int
    expired_contracts: int
    expiring_soon: int
    average_completion_rate: float
    health_distribution: HealthDistribution


class SLAVisitCounts(BaseModel):
    total: int
    completed: int
    overdue: int
    on_time: int


class SLARates(BaseModel):
    on_time_rate: float
    completion_rate: float
    average_response_time_hours: float
    average_visit_duration_minutes: float


class SLAResponse(BaseModel):
    period: Period
    visits: SLAVisitCounts
    metrics: SLARates


class TechnicianStats(BaseModel):
    technician_id: int
    technician_name: str
    total_visits: int
    completed_visits: int
    completion_rate: float
    average_rating: float
    total_revenue: float


class TechnicianSummary(BaseModel):
    total_technicians: int
    average_completion_rate: float
    average_rating: float
    total_revenue: float


class TechnicianPerformanceResponse(BaseModel):
    period: Period
    technicians: list[TechnicianStats]
    summary: TechnicianSummary
