"""Dependency providers for API handlers and background workers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from upkeep.auth.jwt import decode_jwt
from upkeep.core.config import Config, get_config
from upkeep.core.exceptions import AuthenticationError


@dataclass(frozen=True)
class CurrentUser:
    """Identity carried by the token. Role and branches are re-read from the store."""

    user_id: int
    tenant_id: int
    role: str
    claims: dict[str, Any]


def get_settings() -> Config:
    """Return validated application configuration."""
    return get_config()


def get_current_user(token: str, settings: Config | None = None) -> CurrentUser:
    """Resolve the token subject from a bearer access token."""
    cfg = settings or get_settings()
    claims = decode_jwt(token=token, secret=cfg.JWT_SECRET)
    try:
        return CurrentUser(
            user_id=int(claims["sub"]),
            tenant_id=int(claims["tenant_id"]),
            role=str(claims["role"]).lower(),
            claims=claims,
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise AuthenticationError("Invalid auth claims.") from exc
