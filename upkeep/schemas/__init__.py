"""Pydantic schema package for API contracts."""

from upkeep.schemas.analytics import ContractHealthResponse, SLAResponse, TechnicianPerformanceResponse
from upkeep.schemas.common import CountResponse, ErrorEnvelope, ErrorResponse
from upkeep.schemas.contracts import (
    ContractCreateRequest,
    ContractExpirationResponse,
    ContractRenewalRequest,
    ContractResponse,
    ContractStatusChangeResponse,
    ContractStatusUpdateRequest,
    ContractUpdateRequest,
)
from upkeep.schemas.visits import (
    CompleteVisitRequest,
    CompletionResponse,
    GenerateVisitsRequest,
    GenerationResponse,
    PartUsagePayload,
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

__all__ = [
    "CompleteVisitRequest",
    "CompletionResponse",
    "ContractCreateRequest",
    "ContractExpirationResponse",
    "ContractHealthResponse",
    "ContractRenewalRequest",
    "ContractResponse",
    "ContractStatusChangeResponse",
    "ContractStatusUpdateRequest",
    "ContractUpdateRequest",
    "CountResponse",
    "ErrorEnvelope",
    "ErrorResponse",
    "GenerateVisitsRequest",
    "GenerationResponse",
    "PartUsagePayload",
    "RecordPartsRequest",
    "RescheduleRequest",
    "SLAResponse",
    "StartVisitRequest",
    "TechnicianPerformanceResponse",
    "VisitCreateRequest",
    "VisitDetailResponse",
    "VisitItemResponse",
    "VisitResponse",
    "VisitStatusUpdateRequest",
    "VisitUpdateRequest",
]
