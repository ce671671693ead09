"""Root API router for v1 endpoints."""

from __future__ import annotations

from fastapi import APIRouter

from upkeep.api.v1 import analytics, contracts, health, visits
from upkeep.schemas.common import ErrorResponse

ERROR_RESPONSES = {code: {"model": ErrorResponse} for code in (401, 403, 404, 409, 422)}

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(health.router)
api_router.include_router(contracts.router, responses=ERROR_RESPONSES)
api_router.include_router(visits.router, responses=ERROR_RESPONSES)
api_router.include_router(analytics.router, responses=ERROR_RESPONSES)


def get_api_router() -> APIRouter:
    return api_router
