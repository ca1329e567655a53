"""
Admin Role Management Routes
All routes require the admin role tag.
"""
from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel

from middleware import require_admin, get_entitlement_resolver
from models import AppRole
from services.entitlement_resolver import EntitlementResolver
from utils.audit import get_audit_logs_for_resource

router = APIRouter(prefix="/api/admin/roles", tags=["admin-roles"])


class RoleGrantRequest(BaseModel):
    role: AppRole


@router.get("/{user_id}")
async def list_roles(
    user_id: str,
    admin_id: str = Depends(require_admin),
    entitlements: EntitlementResolver = Depends(get_entitlement_resolver),
):
    roles = await entitlements.get_roles(user_id)
    return {"user_id": user_id, "roles": sorted(roles)}


@router.post("/{user_id}")
async def grant_role(
    user_id: str,
    data: RoleGrantRequest,
    admin_id: str = Depends(require_admin),
    entitlements: EntitlementResolver = Depends(get_entitlement_resolver),
):
    """Grant a role (idempotent)."""
    roles = await entitlements.grant_role(admin_id, user_id, data.role.value)
    return {"user_id": user_id, "roles": sorted(roles)}


@router.delete("/{user_id}/{role}")
async def revoke_role(
    user_id: str,
    role: str,
    admin_id: str = Depends(require_admin),
    entitlements: EntitlementResolver = Depends(get_entitlement_resolver),
):
    """Revoke a role (idempotent)."""
    roles = await entitlements.revoke_role(admin_id, user_id, role)
    return {"user_id": user_id, "roles": sorted(roles)}


@router.get("/{user_id}/history")
async def role_history(
    user_id: str,
    request: Request,
    limit: int = Query(50, ge=1, le=200),
    admin_id: str = Depends(require_admin),
):
    """Audit trail of role grants and revocations for an account."""
    entries = await get_audit_logs_for_resource(
        request.app.state.db, "user_role", user_id, limit=limit
    )
    return {"user_id": user_id, "entries": entries, "total": len(entries)}
