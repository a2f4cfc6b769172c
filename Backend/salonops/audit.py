"""
Admin audit trail and tenant-boundary assertions.

USAGE:
    await log_audit(
        session,
        ctx=ctx,
        action=AUDIT_STAFF_SUSPENDED,
        target_type="user",
        target_id=staff.uid,
        metadata={"disabled": True},
    )

Owners read their salon's trail at GET /api/audit-logs; super admins read
every salon's, or one salon's with `owner_uid`.
"""

import logging
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .core.db import get_session
from .core.request_context import RequestContext, get_request_context, require_roles, require_tenant
from .models import AuditLog, UserRole

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/audit-logs", tags=["audit"])

AUDIT_READER_ROLES = (UserRole.SALON_OWNER, UserRole.SALON_ADMIN, UserRole.SUPER_ADMIN)


def assert_tenant_row(row_owner_uid: Optional[str], ctx: RequestContext) -> None:
    """
    Assert a row belongs to the caller's salon. Super admins pass.

    Raises:
        HTTPException 403: row belongs to another tenant
    """
    if ctx.is_super_admin:
        return
    if not row_owner_uid or row_owner_uid != ctx.owner_uid:
        logger.error(
            f"Tenant boundary violation! Row owner_uid={row_owner_uid}, "
            f"request owner_uid={ctx.owner_uid} (user {ctx.uid})"
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied. Resource belongs to a different salon.",
        )


async def log_audit(
    session: AsyncSession,
    *,
    ctx: RequestContext,
    action: str,
    owner_uid: Optional[str] = None,
    target_type: Optional[str] = None,
    target_id: Optional[str] = None,
    metadata: Optional[dict] = None,
) -> AuditLog:
    """
    Add an audit entry to the current transaction.

    Do not put PII (phone numbers, emails) in `metadata`. `owner_uid`
    defaults to the caller's tenant.
    """
    audit_log = AuditLog(
        owner_uid=owner_uid or ctx.owner_uid,
        actor_uid=ctx.uid,
        actor_role=ctx.role,
        action=action,
        target_type=target_type,
        target_id=target_id,
        extra_data=metadata,
    )
    session.add(audit_log)
    # Caller owns the transaction
    await session.flush()

    logger.info(
        f"Audit: {action} by {ctx.uid} "
        f"(owner={audit_log.owner_uid}, target={target_type}:{target_id})"
    )
    return audit_log


# ============================================================================
# COMMON AUDIT ACTIONS
# ============================================================================

AUDIT_TENANT_CREATED = "tenant.created"
AUDIT_TENANT_PLAN_CHANGED = "tenant.plan_changed"
AUDIT_USER_SUSPENDED = "user.suspended"
AUDIT_USER_UNSUSPENDED = "user.unsuspended"

AUDIT_STAFF_AUTH_CREATED = "staff.auth_created"
AUDIT_STAFF_SUSPENDED = "staff.suspended"
AUDIT_STAFF_UNSUSPENDED = "staff.unsuspended"
AUDIT_STAFF_AUTH_DELETED = "staff.auth_deleted"
AUDIT_STAFF_UPDATED = "staff.updated"

AUDIT_PACKAGE_CREATED = "package.created"
AUDIT_PACKAGE_UPDATED = "package.updated"
AUDIT_PACKAGE_DELETED = "package.deleted"

AUDIT_BRANCH_CREATED = "branch.created"
AUDIT_BRANCH_UPDATED = "branch.updated"
AUDIT_BRANCH_DELETED = "branch.deleted"

AUDIT_SERVICE_CREATED = "service.created"
AUDIT_SERVICE_UPDATED = "service.updated"
AUDIT_SERVICE_DELETED = "service.deleted"


# ============================================================================
# READ API
# ============================================================================

class AuditLogOut(BaseModel):
    id: int
    owner_uid: Optional[str]
    actor_uid: str
    actor_role: Optional[str]
    action: str
    target_type: Optional[str]
    target_id: Optional[str]
    metadata: Optional[dict[str, Any]]
    created_at: datetime

    @classmethod
    def from_row(cls, row: AuditLog) -> "AuditLogOut":
        return cls(
            id=row.id,
            owner_uid=row.owner_uid,
            actor_uid=row.actor_uid,
            actor_role=row.actor_role,
            action=row.action,
            target_type=row.target_type,
            target_id=row.target_id,
            metadata=row.extra_data,
            created_at=row.created_at,
        )


@router.get("")
async def list_audit_logs(
    action: Optional[str] = None,
    owner_uid: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    ctx: RequestContext = Depends(get_request_context),
    session: AsyncSession = Depends(get_session),
):
    """Newest first."""
    require_roles(ctx, AUDIT_READER_ROLES)

    query = select(AuditLog)
    if not (ctx.is_super_admin and not owner_uid):
        query = query.where(AuditLog.owner_uid == require_tenant(ctx, owner_uid))
    if action:
        query = query.where(AuditLog.action == action)

    result = await session.execute(query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit))
    return [AuditLogOut.from_row(row) for row in result.scalars().all()]
