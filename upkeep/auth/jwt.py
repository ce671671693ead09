"""JWT token utilities using HS256 signing."""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from upkeep.core.exceptions import AuthenticationError


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _b64url_decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(f"{data}{padding}".encode("ascii"))


def _sign(message: str, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).digest()
    return _b64url_encode(digest)


def _require_secret(secret: str) -> None:
    if not secret:
        raise AuthenticationError("JWT secret must be configured.")


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


def encode_jwt(payload: dict[str, Any], secret: str, ttl: timedelta) -> str:
    """Encode a signed JWT using HS256."""
    _require_secret(secret)
    now = datetime.now(timezone.utc)
    body = {
        "iat": int(now.timestamp()),
        "exp": int((now + ttl).timestamp()),
        "jti": str(uuid.uuid4()),
        **payload,
    }
    segments = [
        _b64url_encode(json.dumps(part, separators=(",", ":"), sort_keys=True).encode("utf-8"))
        for part in ({"alg": "HS256", "typ": "JWT"}, body)
    ]
    signing_input = ".".join(segments)
    return f"{signing_input}.{_sign(signing_input, secret=secret)}"


def decode_jwt(
    token: str,
    secret: str,
    verify_exp: bool = True,
    expected_use: str | None = "access",
) -> dict[str, Any]:
    """Decode and validate a signed JWT token."""
    _require_secret(secret)
    try:
        header_segment, payload_segment, signature_segment = token.split(".")
    except ValueError as exc:
        raise AuthenticationError("Invalid token format.") from exc

    expected_signature = _sign(f"{header_segment}.{payload_segment}", secret=secret)
    if not hmac.compare_digest(expected_signature, signature_segment):
        raise AuthenticationError("Invalid token signature.")

    try:
        claims = json.loads(_b64url_decode(payload_segment).decode("utf-8"))
    except (json.JSONDecodeError, ValueError) as exc:
        raise AuthenticationError("Invalid token payload.") from exc

    if verify_exp:
        exp = claims.get("exp")
        if exp is None:
            raise AuthenticationError("Token is missing exp claim.")
        if int(exp) < int(datetime.now(timezone.utc).timestamp()):
            raise AuthenticationError("Token has expired.")
    if expected_use is not None and claims.get("token_use") != expected_use:
        raise AuthenticationError(f"Token is not an {expected_use} token.")
    return claims


def _identity_claims(user_id: int, tenant_id: int, role: str, token_use: str) -> dict[str, Any]:
    return {"sub": str(user_id), "tenant_id": tenant_id, "role": role, "token_use": token_use}


def create_token_pair(
    user_id: int,
    tenant_id: int,
    role: str,
    secret: str,
    access_ttl_minutes: int = 15,
    refresh_ttl_days: int = 14,
) -> TokenPair:
    """Create access + refresh token pair carrying tenant and role claims."""
    return TokenPair(
        access_token=encode_jwt(
            _identity_claims(user_id, tenant_id, role, "access"),
            secret=secret,
            ttl=timedelta(minutes=access_ttl_minutes),
        ),
        refresh_token=encode_jwt(
            _identity_claims(user_id, tenant_id, role, "refresh"),
            secret=secret,
            ttl=timedelta(days=refresh_ttl_days),
        ),
    )
