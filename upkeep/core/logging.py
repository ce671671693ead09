"""Structured payloads for background job logs."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any


@dataclass(frozen=True)
class LogContext:
    """Identifiers shared by every record of one job run."""

    task_name: str
    trace_id: str
    tenant_id: int | None = None

    @classmethod
    def for_task(cls, task_name: str, tenant_id: int | None = None) -> "LogContext":
        return cls(task_name=task_name, trace_id=uuid.uuid4().hex, tenant_id=tenant_id)

    @property
    def sweep(self) -> str:
        return "all_tenants" if self.tenant_id is None else "single_tenant"


def build_log_event(event: str, context: LogContext, **fields: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event": event,
        "task_name": context.task_name,
        "trace_id": context.trace_id,
        "tenant_id": context.tenant_id,
        "sweep": context.sweep,
    }
    payload.update(fields)
    return payload
