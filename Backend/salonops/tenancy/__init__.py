"""
Multi-tenancy package for SalonOps.

Tenants are salon owners; every tenant table carries the owner's uid in
`owner_uid`, and the caller's tenant comes from `RequestContext.owner_uid`.

Modules:
    queries: Tenant-scoped query helpers
"""

from .queries import (
    # Composable helpers
    scoped_select,
    tenant_filter,
    require_owned,
    # Staff queries
    get_tenant_staff,
    list_tenant_staff,
    count_tenant_staff,
    count_branches,
    # Scheduling queries
    list_day_appointments,
)

__all__ = [
    "scoped_select",
    "tenant_filter",
    "require_owned",
    "get_tenant_staff",
    "list_tenant_staff",
    "count_tenant_staff",
    "count_branches",
    "list_day_appointments",
]
