"""
RBAC Routes

Current-user access summary, app role assignment, custom roles, per-user
permission overrides and the default permission matrix.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from app.auth_permissions import AuthContext, get_auth_context, log_audit, require_permission
from app.router_utils import raise_http_error, require_db, wrap_response
from app import rbac_engine
from app.user_lookup import search_users

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/rbac", tags=["rbac"])


class RoleAssignRequest(BaseModel):
    user_id: str
    role: str


class CustomRoleRequest(BaseModel):
    name: str
    permissions: List[str] = []
    description: Optional[str] = None


class CustomRoleUpdateRequest(BaseModel):
    name: Optional[str] = None
    permissions: Optional[List[str]] = None
    description: Optional[str] = None


class CustomRoleAssignRequest(BaseModel):
    user_id: str
    role_id: str


class UserPermissionRequest(BaseModel):
    user_id: str
    permission_key: str
    effect: str


@router.get("/me")
async def get_my_access(auth: AuthContext = Depends(get_auth_context)):
    return wrap_response({
        "user_id": auth.user_id,
        "email": auth.email,
        "tenant_id": auth.tenant_id,
        "full_name": auth.full_name,
        "roles": auth.roles,
        "permissions": auth.permissions.matrix(),
    })


@router.get("/roles")
async def get_roles(auth: AuthContext = Depends(get_auth_context)):
    return wrap_response(rbac_engine.summarize_roles())


@router.get("/matrix")
@require_permission("rbac", "read")
async def get_matrix(auth: AuthContext = Depends(get_auth_context)):
    return wrap_response(rbac_engine.get_permission_matrix())


@router.get("/users/search")
async def find_users(
    q: str = Query(..., min_length=1),
    limit: int = Query(20, ge=1, le=100),
    auth: AuthContext = Depends(get_auth_context),
):
    supabase = require_db()
    try:
        return wrap_response(search_users(supabase, auth.tenant_id, q, limit))
    except Exception as e:
        raise_http_error(e, "user search")


@router.get("/users/{user_id}/roles")
@require_permission("rbac", "read")
async def get_roles_for_user(user_id: str, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        rbac_engine.ensure_tenant_user(supabase, auth.tenant_id, user_id)
    except Exception as e:
        raise_http_error(e, "role lookup")
    return wrap_response(rbac_engine.get_user_roles(supabase, user_id))


@router.post("/roles/assign")
@require_permission("rbac", "manage")
async def assign_app_role(body: RoleAssignRequest, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        row = rbac_engine.assign_role(supabase, auth.tenant_id, body.user_id, body.role, granted_by=auth.user_id)
    except Exception as e:
        raise_http_error(e, "role assignment")
    log_audit(auth, "assign_role", "user", body.user_id, {"role": body.role})
    return wrap_response(row)


@router.post("/roles/revoke")
@require_permission("rbac", "manage")
async def revoke_app_role(body: RoleAssignRequest, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        rbac_engine.revoke_role(supabase, auth.tenant_id, body.user_id, body.role)
    except Exception as e:
        raise_http_error(e, "role revocation")
    log_audit(auth, "revoke_role", "user", body.user_id, {"role": body.role})
    return wrap_response({"success": True})

# =============================================================================
# CUSTOM ROLES
# =============================================================================

@router.get("/custom-roles")
@require_permission("rbac", "read")
async def get_custom_roles(
    include_inactive: bool = Query(False),
    auth: AuthContext = Depends(get_auth_context),
):
    supabase = require_db()
    return wrap_response(rbac_engine.list_custom_roles(supabase, auth.tenant_id, include_inactive))


@router.post("/custom-roles")
@require_permission("rbac", "manage")
async def add_custom_role(body: CustomRoleRequest, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        role = rbac_engine.create_custom_role(
            supabase, auth.tenant_id, body.name, body.permissions, body.description, auth.user_id
        )
    except Exception as e:
        raise_http_error(e, "custom role creation")
    log_audit(auth, "create_custom_role", "custom_role", role.get("id"), {"name": body.name})
    return wrap_response(role)


@router.patch("/custom-roles/{role_id}")
@require_permission("rbac", "manage")
async def edit_custom_role(role_id: str, body: CustomRoleUpdateRequest, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        role = rbac_engine.update_custom_role(supabase, auth.tenant_id, role_id, body.dict(exclude_unset=True))
    except Exception as e:
        raise_http_error(e, "custom role update")
    log_audit(auth, "update_custom_role", "custom_role", role_id)
    return wrap_response(role)


@router.delete("/custom-roles/{role_id}")
@require_permission("rbac", "manage")
async def remove_custom_role(role_id: str, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        rbac_engine.delete_custom_role(supabase, auth.tenant_id, role_id)
    except Exception as e:
        raise_http_error(e, "custom role deletion")
    log_audit(auth, "delete_custom_role", "custom_role", role_id)
    return wrap_response({"success": True})


@router.post("/custom-roles/assign")
@require_permission("rbac", "manage")
async def assign_role_to_user(body: CustomRoleAssignRequest, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        row = rbac_engine.assign_custom_role(supabase, auth.tenant_id, body.user_id, body.role_id)
    except Exception as e:
        raise_http_error(e, "custom role assignment")
    log_audit(auth, "assign_custom_role", "user", body.user_id, {"role_id": body.role_id})
    return wrap_response(row)


@router.put("/permissions")
@require_permission("rbac", "manage")
async def override_user_permission(body: UserPermissionRequest, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        row = rbac_engine.set_user_permission(supabase, auth.tenant_id, body.user_id, body.permission_key, body.effect)
    except Exception as e:
        raise_http_error(e, "permission override")
    log_audit(auth, "set_user_permission", "user", body.user_id,
              {"permission": body.permission_key, "effect": body.effect})
    return wrap_response(row)
