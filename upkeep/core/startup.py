"""Startup validation and bootstrap helpers."""

from __future__ import annotations

import logging

from upkeep.core.config import Config, get_config
from upkeep.core.logging_config import configure_logging
from upkeep.database.db import get_active_database_url, verify_database_connection
from upkeep.services.cache import AnalyticsCache

logger = logging.getLogger(__name__)


def check_scheduling_limits(config: Config) -> bool:
    """Warn when a daily open-ended contract would hit the per-call visit cap before the horizon."""
    if config.SCHEDULING_MAX_VISITS >= config.SCHEDULING_HORIZON_DAYS:
        return True
    logger.warning(
        "startup.scheduling.cap_below_horizon",
        extra={
            "event": "startup.scheduling.cap_below_horizon",
            "scheduling_max_visits": config.SCHEDULING_MAX_VISITS,
            "scheduling_horizon_days": config.SCHEDULING_HORIZON_DAYS,
        },
    )
    return False


def check_analytics_cache(config: Config) -> bool:
    if not config.ANALYTICS_CACHE_ENABLED:
        return False
    reachable = AnalyticsCache(config=config).ping()
    if not reachable:
        logger.warning(
            "startup.analytics_cache.unreachable",
            extra={"event": "startup.analytics_cache.unreachable"},
        )
    return reachable


def validate_startup_config() -> None:
    """Fail-fast database check; scheduling and cache problems only warn."""
    config = get_config()
    database_ok = verify_database_connection()
    active_database_url = get_active_database_url()
    if not database_ok and config.DB_CONNECTIVITY_REQUIRED:
        raise RuntimeError("Database connectivity check failed.")
    if not database_ok:
        logger.warning(
            "startup.database.connectivity_optional_failed",
            extra={"event": "startup.database.connectivity_optional_failed"},
        )

    if config.is_production and active_database_url.startswith("sqlite"):
        logger.warning(
            "startup.production.sqlite_detected",
            extra={"event": "startup.production.sqlite_detected"},
        )

    check_scheduling_limits(config)
    cache_ok = check_analytics_cache(config)

    logger.info(
        "startup.config.validated",
        extra={
            "event": "startup.config.validated",
            "env": config.ENV,
            "database_url_scheme": active_database_url.split("://", 1)[0],
            "scheduling_horizon_days": config.SCHEDULING_HORIZON_DAYS,
            "analytics_cache_active": cache_ok,
        },
    )


def bootstrap() -> None:
    """Initialize logging and validate runtime configuration."""
    configure_logging()
    validate_startup_config()
