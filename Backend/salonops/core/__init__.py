"""
Core module - configuration, database, request context, errors and response formatting.
"""
from .config import get_settings
from .db import get_session, Base, engine, AsyncSessionLocal
from .errors import (
    SalonOpsError,
    BookingConflictError,
    InvalidTransitionError,
    PlanLimitError,
    IdentityProviderError,
)
from .request_context import (
    RequestContext,
    resolve_request_context,
    require_roles,
    require_tenant,
    get_request_context,
)
from .responses import (
    ErrorDetail,
    ErrorCodes,
    error_response,
)

__all__ = [
    # Config
    "get_settings",
    # Database
    "get_session",
    "Base",
    "engine",
    "AsyncSessionLocal",
    # Errors
    "SalonOpsError",
    "BookingConflictError",
    "InvalidTransitionError",
    "PlanLimitError",
    "IdentityProviderError",
    # Request Context
    "RequestContext",
    "resolve_request_context",
    "require_roles",
    "require_tenant",
    "get_request_context",
    # Responses
    "ErrorDetail",
    "ErrorCodes",
    "error_response",
]
