"""Shared authorization and error-mapping helpers for API v1 route modules."""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from upkeep.auth.access_scope import AccessScope, AccessScopeResolver
from upkeep.auth.rbac import require_capability
from upkeep.core.config import get_config
from upkeep.core.dependencies import CurrentUser, get_current_user
from upkeep.core.exceptions import AuthenticationError, UpkeepException

ERROR_STATUS: dict[str, int] = {
    "validation_error": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "not_found": status.HTTP_404_NOT_FOUND,
    "invalid_state_transition": status.HTTP_409_CONFLICT,
    "insufficient_stock": status.HTTP_409_CONFLICT,
    "contract_inactive": status.HTTP_409_CONFLICT,
    "contract_expired": status.HTTP_409_CONFLICT,
    "access_denied": status.HTTP_403_FORBIDDEN,
    "authentication_error": status.HTTP_401_UNAUTHORIZED,
}


@dataclass(frozen=True)
class RequestContext:
    user: CurrentUser
    scope: AccessScope

    @property
    def actor_id(self) -> int:
        return self.user.user_id


def _extract_bearer_token(authorization: str | None) -> str:
    if authorization is None or not authorization.strip():
        raise AuthenticationError("Authorization header is required.")
    parts = authorization.strip().split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise AuthenticationError("Authorization header must use Bearer token.")
    return parts[1].strip()


def authorize(
    db: Session,
    authorization: str | None,
    capability: str,
    acting_tenant_id: int | None = None,
) -> RequestContext:
    """Authenticate the token, then check capability against the stored role."""
    token = _extract_bearer_token(authorization)
    user = get_current_user(token=token, settings=get_config())
    scope = AccessScopeResolver(db).resolve_user_id(user.user_id, user.tenant_id, acting_tenant_id=acting_tenant_id)
    require_capability(scope.role, capability)
    return RequestContext(user=user, scope=scope)


def to_http_error(exc: UpkeepException) -> HTTPException:
    code = ERROR_STATUS.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR)
    return HTTPException(status_code=code, detail=exc.to_dict())
