"""
Domain exceptions raised below the route layer.

Each carries the HTTP status and error code it maps to; `salonops.main`
registers a single handler that renders them with `error_response`.
"""

from typing import Any, Optional

from .responses import ErrorCodes


class SalonOpsError(Exception):
    """Base class for errors rendered in the standard error envelope."""

    status_code: int = 400
    code: str = ErrorCodes.VALIDATION_ERROR

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details
        super().__init__(message)


class BookingConflictError(SalonOpsError):
    """A requested service segment overlaps an existing appointment."""

    status_code = 409
    code = ErrorCodes.BOOKING_CONFLICT


class InvalidTransitionError(SalonOpsError):
    status_code = 400
    code = ErrorCodes.INVALID_TRANSITION

    def __init__(self, current: str, requested: str):
        super().__init__(
            f"Invalid transition {current} -> {requested}",
            details={"current": current, "requested": requested},
        )


class PlanLimitError(SalonOpsError):
    status_code = 403
    code = ErrorCodes.PLAN_LIMIT_REACHED


class IdentityProviderError(SalonOpsError):
    """Firebase Auth rejected a provisioning call."""

    status_code = 400
    code = ErrorCodes.IDENTITY_PROVIDER_ERROR

    def __init__(self, message: str, provider_code: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message, details={"provider_code": provider_code} if provider_code else None)
        if status_code is not None:
            self.status_code = status_code
