"""Platform-level user administration (super admin only)."""

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from .audit import AUDIT_USER_SUSPENDED, AUDIT_USER_UNSUSPENDED, log_audit
from .core.db import get_session
from .core.request_context import RequestContext, get_request_context, require_roles
from .models import AccountStatus, User, UserRole
from .rate_limiter import rate_limit

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])


class SuspendUserRequest(BaseModel):
    suspended: Optional[bool] = None


@router.post("/{user_id}/suspend", dependencies=[Depends(rate_limit("staff_auth"))])
async def suspend_user(
    user_id: str,
    payload: Optional[SuspendUserRequest] = Body(None),
    suspended: Optional[bool] = Query(None),
    ctx: RequestContext = Depends(get_request_context),
    session: AsyncSession = Depends(get_session),
):
    """
    Suspend or reactivate any account.

    The new value comes from the body, then the `suspended` query
    parameter; with neither, the current value is toggled.
    """
    require_roles(ctx, [UserRole.SUPER_ADMIN])
    if user_id in ("", "undefined", "null"):
        raise HTTPException(status_code=400, detail="Invalid userId")

    target = await session.get(User, user_id)
    if target is None:
        raise HTTPException(status_code=404, detail="User not found")

    value = payload.suspended if payload is not None else None
    if value is None:
        value = suspended
    if value is None:
        value = not target.suspended

    target.suspended = value
    target.status = AccountStatus.SUSPENDED.value if value else AccountStatus.ACTIVE.value
    await log_audit(
        session,
        ctx=ctx,
        action=AUDIT_USER_SUSPENDED if value else AUDIT_USER_UNSUSPENDED,
        owner_uid=target.tenant_uid,
        target_type="user",
        target_id=target.uid,
    )
    await session.commit()

    logger.info(f"User {target.uid} {'suspended' if value else 'reactivated'} by {ctx.uid}")
    return {"ok": True, "suspended": value, "status": target.status}
