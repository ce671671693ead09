"""Shared service base with session lifecycle and transaction helpers."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy.orm import Session

from upkeep.core.config import Config, get_config
from upkeep.database.db import SessionLocal


class BaseService:
    """Base class for services that operate on a SQLAlchemy session."""

    def __init__(self, db: Session | None = None, config: Config | None = None) -> None:
        self.db = db or SessionLocal()
        self.config = config or get_config()

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Run a block as one unit of work: commit on success, rollback on any error."""
        try:
            yield self.db
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

    def commit(self) -> None:
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

    def rollback(self) -> None:
        self.db.rollback()

    def close(self) -> None:
        self.db.close()

    def __enter__(self) -> "BaseService":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type:
            self.rollback()
        self.close()
