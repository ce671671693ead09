"""Celery application bootstrap and periodic maintenance schedule."""

from __future__ import annotations

import os

from celery import Celery
from celery.schedules import crontab

from upkeep.core.config import get_config

_cfg = get_config()

celery_app = Celery(
    "upkeep",
    broker=_cfg.CELERY_BROKER_URL,
    backend=_cfg.CELERY_RESULT_BACKEND,
    include=["upkeep.tasks.maintenance_tasks"],
)
celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    beat_schedule={
        "mark-overdue-visits-as-missed": {
            "task": "maintenance.mark_overdue_visits_as_missed",
            "schedule": crontab(minute=5),
        },
        "process-expired-contracts": {
            "task": "maintenance.process_expired_contracts",
            "schedule": crontab(hour=0, minute=30),
        },
    },
)

# Local/dev convenience: run tasks synchronously when requested.
if os.getenv("CELERY_TASK_ALWAYS_EAGER", "false").lower() in {"1", "true", "yes", "on"}:
    celery_app.conf.task_always_eager = True
