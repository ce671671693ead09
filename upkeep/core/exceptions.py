"""Custom exceptions for the Upkeep maintenance backend."""

from __future__ import annotations


class UpkeepException(Exception):
    """Base exception for Upkeep application.

    Every subclass carries a machine-readable ``kind`` so callers on any
    binding (HTTP, task queue, CLI) can branch on the error without parsing
    the human message.
    """

    kind = "error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "detail": self.message}


class ValidationError(UpkeepException):
    """Raised when input is malformed or missing required fields."""

    kind = "validation_error"


class NotFoundError(UpkeepException):
    """Raised when a resource does not exist or lies outside the caller's scope."""

    kind = "not_found"


class InvalidStateTransitionError(UpkeepException):
    """Raised when a status change is not permitted from the current state."""

    kind = "invalid_state_transition"

    def __init__(self, current: str, requested: str, message: str | None = None) -> None:
        self.current = current
        self.requested = requested
        super().__init__(message or f"Invalid status transition from {current} to {requested}")


class AccessDeniedError(UpkeepException):
    """Raised by explicit role or branch checks that are not entity lookups."""

    kind = "access_denied"


class InsufficientStockError(UpkeepException):
    """Raised when part consumption exceeds available inventory."""

    kind = "insufficient_stock"

    def __init__(self, product_id: int, available: int, required: int, product_name: str | None = None) -> None:
        self.product_id = product_id
        self.available = available
        self.required = required
        label = product_name or f"#{product_id}"
        super().__init__(
            f"Insufficient stock for product {label}. Available: {available}, Required: {required}"
        )


class ContractInactiveError(UpkeepException):
    """Raised when a user-initiated operation targets a non-active contract."""

    kind = "contract_inactive"


class ContractExpiredError(UpkeepException):
    """Raised when a user-initiated operation targets an expired contract."""

    kind = "contract_expired"


class DatabaseError(UpkeepException):
    """Raised when a database operation fails."""

    kind = "database_error"


class ConfigurationError(UpkeepException):
    """Raised when configuration is invalid."""

    kind = "configuration_error"


class AuthenticationError(UpkeepException):
    """Raised when authentication fails."""

    kind = "authentication_error"
