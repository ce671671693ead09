"""Apply schema migrations to the configured database."""

from __future__ import annotations

import logging
from pathlib import Path

from alembic import command
from alembic.config import Config as AlembicConfig

import upkeep.database.db as db_module
from upkeep.core.startup import bootstrap

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parents[2]


def _build_alembic_config(database_url: str) -> AlembicConfig:
    cfg = AlembicConfig(str(PROJECT_ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(PROJECT_ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", database_url.replace("%", "%%"))
    return cfg


def init_db() -> None:
    bootstrap()
    active_url = db_module.get_active_database_url()
    command.upgrade(_build_alembic_config(active_url), "head")
    logger.info(
        "database.migrated",
        extra={"event": "database.migrated", "database_url_scheme": active_url.split("://", 1)[0]},
    )


if __name__ == "__main__":
    init_db()
