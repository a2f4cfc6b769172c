"""
Request Context Resolution Module

Single source of truth for who is calling and which tenant they act for.

ARCHITECTURE:
    1. resolve_request_context() extracts the Firebase uid from the request
    2. The uid is looked up in the users table (role, tenant, suspension)
    3. A RequestContext is returned; all authorization checks use it

AUTH METHODS:
    - "jwt": Bearer Firebase ID token (always accepted)
    - "header": X-User-Id, only when DISABLE_AUTH_CHECKS is set (local dev and tests)
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from .config import get_settings
from .db import get_session

logger = logging.getLogger(__name__)


@dataclass
class RequestContext:
    """Resolved identity of an authenticated caller."""

    uid: str
    role: str
    auth_method: str  # 'jwt' or 'header'
    # Tenant the caller acts for; None for super admins without a salon
    owner_uid: Optional[str] = None
    branch_id: Optional[int] = None
    name: Optional[str] = None
    email: Optional[str] = None

    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @property
    def is_super_admin(self) -> bool:
        return self.role == "super_admin"

    def has_role(self, roles: Iterable) -> bool:
        values = {getattr(r, "value", r) for r in roles}
        return self.role in values


async def resolve_request_context(request: Request, session: AsyncSession) -> RequestContext:
    """
    Resolve the caller's identity and tenant.

    Raises:
        HTTPException 401: no valid identity on the request
        HTTPException 403: identity has no users row or the account is suspended
    """
    from ..models import User

    settings = get_settings()
    uid: Optional[str] = None
    auth_method = "none"

    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        from ..firebase_auth import verify_firebase_token

        claims = verify_firebase_token(auth_header[7:])
        uid = claims["sub"]
        auth_method = "jwt"
        logger.debug(f"Auth via Firebase ID token: {uid}")
    elif settings.disable_auth_checks:
        uid = request.headers.get("X-User-Id")
        if uid:
            auth_method = "header"
            logger.debug(f"Auth via X-User-Id header (auth checks disabled): {uid}")

    if not uid:
        logger.warning("Authentication failed: No valid ID token found")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required. Please sign in.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = await session.get(User, uid)
    if user is None:
        logger.warning(f"Authorization failed: no user record for {uid}")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User profile not found")
    if user.suspended:
        logger.warning(f"Authorization failed: user {uid} is suspended")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account suspended")

    return RequestContext(
        uid=user.uid,
        role=user.role,
        auth_method=auth_method,
        owner_uid=user.tenant_uid,
        branch_id=user.branch_id,
        name=user.name,
        email=user.email,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("User-Agent"),
    )


def require_roles(ctx: RequestContext, allowed_roles: Iterable) -> str:
    """
    Check the caller holds one of `allowed_roles`.

    Returns:
        The caller's role

    Raises:
        HTTPException 403: role not allowed
    """
    allowed_values = [getattr(r, "value", r) for r in allowed_roles]
    if ctx.role not in allowed_values:
        logger.warning(
            f"Authorization failed: User {ctx.uid} has role {ctx.role}, needs one of {allowed_values}"
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Access denied. Required role: {', '.join(allowed_values)}. Your role: {ctx.role}.",
        )
    return ctx.role


def require_tenant(ctx: RequestContext, owner_uid: Optional[str] = None) -> str:
    """
    Tenant uid the caller acts for; 403 when the caller has none.

    Super admins may act for any tenant by passing `owner_uid`; for everyone
    else it is ignored.
    """
    if ctx.is_super_admin and owner_uid:
        return owner_uid
    if not ctx.owner_uid:
        logger.warning(f"Authorization failed: User {ctx.uid} is not attached to a salon")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied. You are not a member of a salon.",
        )
    return ctx.owner_uid


async def get_request_context(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> RequestContext:
    """
    FastAPI dependency for getting request context.

        @router.get("/something")
        async def handler(ctx: RequestContext = Depends(get_request_context)):
            ...
    """
    return await resolve_request_context(request, session)
