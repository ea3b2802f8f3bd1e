"""Domain-level exception primitives with stable machine-readable codes."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar


@dataclass(eq=False)
class DomainError(Exception):
    """Use-case level error with stable code and HTTP mapping."""

    code: str
    http_status: int
    message: str
    details: dict[str, Any] | None = None

    def __str__(self) -> str:
        return self.message


class _TypedDomainError(DomainError):
    """Domain error whose code and HTTP status are fixed per subclass."""

    CODE: ClassVar[str] = "DOMAIN_ERROR"
    HTTP_STATUS: ClassVar[int] = 400

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(
            code=self.CODE,
            http_status=self.HTTP_STATUS,
            message=message,
            details=details,
        )


class NotFound(_TypedDomainError):
    CODE = "NOT_FOUND"
    HTTP_STATUS = 404


class InvalidTransition(_TypedDomainError):
    CODE = "INVALID_TRANSITION"
    HTTP_STATUS = 409


class ReservationConflict(_TypedDomainError):
    """Reservation and BOM insert could not be committed together."""

    CODE = "RESERVATION_CONFLICT"
    HTTP_STATUS = 409


class InsufficientStock(ReservationConflict):
    """Free stock (available - reserved) is below the requested quantity."""

    CODE = "INSUFFICIENT_STOCK"
    HTTP_STATUS = 409


class OverConsumption(_TypedDomainError):
    CODE = "OVER_CONSUMPTION"
    HTTP_STATUS = 409


class ReleaseExceedsAvailable(_TypedDomainError):
    CODE = "RELEASE_EXCEEDS_AVAILABLE"
    HTTP_STATUS = 409


class IncompatiblePart(_TypedDomainError):
    CODE = "INCOMPATIBLE_PART"
    HTTP_STATUS = 409


class ReworkLimitExceeded(_TypedDomainError):
    CODE = "REWORK_LIMIT_EXCEEDED"
    HTTP_STATUS = 409


class PhaseBlocked(_TypedDomainError):
    CODE = "PHASE_BLOCKED"
    HTTP_STATUS = 409


class BatchTooLarge(_TypedDomainError):
    CODE = "BATCH_TOO_LARGE"
    HTTP_STATUS = 413


class ValidationError(_TypedDomainError):
    CODE = "VALIDATION_ERROR"
    HTTP_STATUS = 400


class FeatureDisabled(_TypedDomainError):
    CODE = "FEATURE_DISABLED"
    HTTP_STATUS = 403
