"""Lifecycle hooks for queue task execution."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from upkeep.core.logging import LogContext, build_log_event


def before_task(context: LogContext) -> dict[str, Any]:
    """Build pre-task log payload."""
    return build_log_event(event="task.start", context=context)


def after_task(context: LogContext, status: str, **fields: Any) -> dict[str, Any]:
    """Build post-task log payload."""
    return build_log_event(
        event="task.finish",
        context=context,
        status=status,
        finished_at=datetime.now(timezone.utc).isoformat(),
        **fields,
    )
