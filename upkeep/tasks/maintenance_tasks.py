"""Periodic maintenance jobs: missed-visit sweep and contract expiry."""

from __future__ import annotations

import logging
from typing import Any

from upkeep.core.logging import LogContext
from upkeep.database.db import get_db_session
from upkeep.services.contract_service import ContractService
from upkeep.services.maintenance.scheduling import VisitSchedulingService
from upkeep.tasks.celery_app import celery_app
from upkeep.tasks.hooks import after_task, before_task

logger = logging.getLogger(__name__)

MARK_MISSED_TASK = "maintenance.mark_overdue_visits_as_missed"
PROCESS_EXPIRED_TASK = "maintenance.process_expired_contracts"


def run_mark_missed(tenant_id: int | None = None) -> dict[str, Any]:
    context = LogContext.for_task(MARK_MISSED_TASK, tenant_id)
    logger.info("task.start", extra=before_task(context))
    try:
        with get_db_session() as session:
            count = VisitSchedulingService(db=session).mark_overdue_visits_as_missed(tenant_id=tenant_id)
    except Exception:
        logger.exception("task.failed", extra=after_task(context, status="failed"))
        raise
    logger.info("task.finish", extra=after_task(context, status="succeeded", count=count))
    return {"status": "succeeded", "marked_missed": count}


def run_process_expired(tenant_id: int | None = None) -> dict[str, Any]:
    context = LogContext.for_task(PROCESS_EXPIRED_TASK, tenant_id)
    logger.info("task.start", extra=before_task(context))
    try:
        with get_db_session() as session:
            results = ContractService(db=session).process_expired_contracts(tenant_id=tenant_id)
    except Exception:
        logger.exception("task.failed", extra=after_task(context, status="failed"))
        raise
    logger.info("task.finish", extra=after_task(context, status="succeeded", **results))
    return {"status": "succeeded", **results}


@celery_app.task(name=MARK_MISSED_TASK)
def mark_overdue_visits_as_missed(tenant_id: int | None = None) -> dict[str, Any]:
    return run_mark_missed(tenant_id=tenant_id)


@celery_app.task(name=PROCESS_EXPIRED_TASK)
def process_expired_contracts(tenant_id: int | None = None) -> dict[str, Any]:
    return run_process_expired(tenant_id=tenant_id)
