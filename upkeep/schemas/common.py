"""Common schema module."""

from __future__ import annotations

from pydantic import BaseModel


class ErrorEnvelope(BaseModel):
    kind: str
    detail: str


class ErrorResponse(BaseModel):
    detail: ErrorEnvelope


class CountResponse(BaseModel):
    count: int
