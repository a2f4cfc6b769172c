"""
Error envelope for domain errors.

Domain errors raised below the route layer are rendered in one shape so the
admin dashboard can branch on `error.code` instead of parsing messages:

    {
        "error": {
            "code": "BOOKING_CONFLICT",
            "message": "Staff member is already booked at 10:00",
            "details": {...}  # optional
        },
        "status": "error"
    }

Plain HTTPException responses keep FastAPI's {"detail": ...} shape.
"""

from typing import Any, Optional

from pydantic import BaseModel


class ErrorDetail(BaseModel):
    code: str
    message: str
    details: Optional[dict[str, Any]] = None


class ErrorCodes:
    # 400
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    IDENTITY_PROVIDER_ERROR = "IDENTITY_PROVIDER_ERROR"
    # 403
    PLAN_LIMIT_REACHED = "PLAN_LIMIT_REACHED"
    # 409
    BOOKING_CONFLICT = "BOOKING_CONFLICT"
    # 500
    INTERNAL_ERROR = "INTERNAL_ERROR"


def error_response(code: str, message: str, details: Optional[dict] = None) -> dict:
    """Envelope dict for a JSONResponse body; `details` is omitted when empty."""
    error = ErrorDetail(code=code, message=message, details=details or None)
    return {"error": error.model_dump(exclude_none=True), "status": "error"}
