"""
Invite Routes

Employee onboarding (auth user + employee record + role) and client portal
access.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.auth_permissions import AuthContext, get_auth_context, rate_limit, require_permission
from app.router_utils import raise_http_error, require_db, wrap_response
from app import employee_invites
from app.employee_invites import EmployeeInviteRequest, PortalInviteRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["invites"])


@router.post("/employees/invite")
@require_permission("employees", "create")
@rate_limit("invite")
async def invite_employee(body: EmployeeInviteRequest, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        return wrap_response(employee_invites.invite_employee(supabase, auth, body))
    except Exception as e:
        raise_http_error(e, "employee invite")


@router.post("/portal-users/invite")
@require_permission("clients", "update")
@rate_limit("invite")
async def invite_portal_user(body: PortalInviteRequest, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        return wrap_response(employee_invites.invite_client_portal_user(supabase, auth, body))
    except Exception as e:
        raise_http_error(e, "portal invite")


@router.get("/portal-users")
@require_permission("clients", "read")
async def get_portal_users(client_id: Optional[str] = Query(None), auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    return wrap_response(employee_invites.list_portal_users(supabase, auth.tenant_id, client_id))


@router.post("/portal-users/{portal_user_id}/deactivate")
@require_permission("clients", "update")
async def deactivate_portal_user(portal_user_id: str, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        return wrap_response(employee_invites.deactivate_portal_user(
            supabase, auth.tenant_id, portal_user_id, auth.user_id
        ))
    except Exception as e:
        raise_http_error(e, "portal user deactivation")
