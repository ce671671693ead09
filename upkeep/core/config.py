"""Configuration module for the Upkeep application."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from urllib.parse import urlparse

from dotenv import load_dotenv

from upkeep.core.exceptions import ConfigurationError

load_dotenv()


def _as_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Config:
    """Runtime configuration with validation."""

    APP_NAME: str
    APP_VERSION: str
    ENV: str
    DEBUG: bool
    DATABASE_URL: str
    DB_CONNECTIVITY_REQUIRED: bool
    JWT_SECRET: str
    JWT_ACCESS_TTL_MINUTES: int
    JWT_REFRESH_TTL_DAYS: int
    REDIS_URL: str
    CELERY_BROKER_URL: str
    CELERY_RESULT_BACKEND: str
    API_PREFIX: str
    LOG_LEVEL: str
    LOG_FILE: str
    SCHEDULING_HORIZON_DAYS: int
    SCHEDULING_MAX_VISITS: int
    MISSED_GRACE_DAYS: int
    EXPIRING_SOON_DAYS: int
    CRITICAL_EXPIRY_DAYS: int
    ANALYTICS_CACHE_ENABLED: bool
    ANALYTICS_CACHE_TTL_SECONDS: int

    @property
    def is_production(self) -> bool:
        return self.ENV == "production"


def _build_config(env: str | None = None) -> Config:
    resolved_env = (env or os.getenv("ENV", "development")).strip().lower()
    debug = _as_bool(os.getenv("DEBUG"), default=(resolved_env != "production"))

    config = Config(
        APP_NAME="Upkeep",
        APP_VERSION=os.getenv("APP_VERSION", "1.0.0"),
        ENV=resolved_env,
        DEBUG=debug if resolved_env != "production" else False,
        DATABASE_URL=os.getenv("DATABASE_URL", "sqlite:///./upkeep.db"),
        DB_CONNECTIVITY_REQUIRED=_as_bool(
            os.getenv("DB_CONNECTIVITY_REQUIRED"), default=(resolved_env == "production")
        ),
        JWT_SECRET=os.getenv("JWT_SECRET", "change_me_jwt_secret"),
        JWT_ACCESS_TTL_MINUTES=int(os.getenv("JWT_ACCESS_TTL_MINUTES", "15")),
        JWT_REFRESH_TTL_DAYS=int(os.getenv("JWT_REFRESH_TTL_DAYS", "14")),
        REDIS_URL=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
        CELERY_BROKER_URL=os.getenv("CELERY_BROKER_URL", os.getenv("REDIS_URL", "redis://localhost:6379/0")),
        CELERY_RESULT_BACKEND=os.getenv("CELERY_RESULT_BACKEND", os.getenv("REDIS_URL", "redis://localhost:6379/0")),
        API_PREFIX=os.getenv("API_PREFIX", "/api/v1"),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO").upper(),
        LOG_FILE=os.getenv("LOG_FILE", ""),
        SCHEDULING_HORIZON_DAYS=int(os.getenv("SCHEDULING_HORIZON_DAYS", "730")),
        SCHEDULING_MAX_VISITS=int(os.getenv("SCHEDULING_MAX_VISITS", "1000")),
        MISSED_GRACE_DAYS=int(os.getenv("MISSED_GRACE_DAYS", "1")),
        EXPIRING_SOON_DAYS=int(os.getenv("EXPIRING_SOON_DAYS", "30")),
        CRITICAL_EXPIRY_DAYS=int(os.getenv("CRITICAL_EXPIRY_DAYS", "7")),
        ANALYTICS_CACHE_ENABLED=_as_bool(os.getenv("ANALYTICS_CACHE_ENABLED"), default=False),
        ANALYTICS_CACHE_TTL_SECONDS=int(os.getenv("ANALYTICS_CACHE_TTL_SECONDS", "600")),
    )
    _validate_config(config)
    return config


def _validate_database_url(database_url: str) -> None:
    parsed = urlparse(database_url)
    if parsed.scheme not in {"sqlite", "postgresql", "postgresql+psycopg2"}:
        raise ConfigurationError(
            "DATABASE_URL must use sqlite:// or postgresql:// style URL."
        )
    if parsed.scheme.startswith("postgresql") and not parsed.hostname:
        raise ConfigurationError("PostgreSQL DATABASE_URL is missing hostname.")


def _validate_config(config: Config) -> None:
    _validate_database_url(config.DATABASE_URL)

    if config.JWT_ACCESS_TTL_MINUTES < 1:
        raise ConfigurationError("JWT_ACCESS_TTL_MINUTES must be >= 1.")
    if config.JWT_REFRESH_TTL_DAYS < 1:
        raise ConfigurationError("JWT_REFRESH_TTL_DAYS must be >= 1.")
    if config.SCHEDULING_HORIZON_DAYS < 1:
        raise ConfigurationError("SCHEDULING_HORIZON_DAYS must be >= 1.")
    if config.SCHEDULING_MAX_VISITS < 1:
        raise ConfigurationError("SCHEDULING_MAX_VISITS must be >= 1.")
    if config.MISSED_GRACE_DAYS < 0:
        raise ConfigurationError("MISSED_GRACE_DAYS must be >= 0.")
    if config.CRITICAL_EXPIRY_DAYS > config.EXPIRING_SOON_DAYS:
        raise ConfigurationError("CRITICAL_EXPIRY_DAYS must not exceed EXPIRING_SOON_DAYS.")
    if config.ANALYTICS_CACHE_TTL_SECONDS < 0:
        raise ConfigurationError("ANALYTICS_CACHE_TTL_SECONDS must be >= 0.")
    if config.LOG_LEVEL not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
        raise ConfigurationError("LOG_LEVEL must be one of DEBUG/INFO/WARNING/ERROR/CRITICAL.")
    if config.is_production and "change_me" in config.JWT_SECRET:
        raise ConfigurationError("Production JWT_SECRET uses the placeholder value.")


@lru_cache(maxsize=8)
def get_config(env: str | None = None) -> Config:
    """Get validated configuration for the requested environment."""
    return _build_config(env)
