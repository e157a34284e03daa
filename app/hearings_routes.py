"""
Hearing Routes
"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.auth_permissions import AuthContext, get_auth_context, require_permission
from app.router_utils import raise_http_error, require_db, wrap_response
from app import hearings_service
from app.hearings_service import HearingCreateRequest, HearingOutcomeRequest, HearingUpdateRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/hearings", tags=["hearings"])


@router.get("")
@require_permission("hearings", "read")
async def get_hearings(
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    case_id: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    auth: AuthContext = Depends(get_auth_context),
):
    supabase = require_db()
    try:
        return wrap_response(hearings_service.list_hearings(supabase, auth.tenant_id, date_from, date_to, case_id, status))
    except Exception as e:
        raise_http_error(e, "hearing listing")


@router.get("/upcoming")
@require_permission("hearings", "read")
async def get_upcoming(days: int = Query(7, ge=1, le=365), auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        return wrap_response(hearings_service.get_upcoming_hearings(supabase, auth.tenant_id, days))
    except Exception as e:
        raise_http_error(e, "upcoming hearings")


@router.get("/{hearing_id}")
@require_permission("hearings", "read")
async def get_hearing_detail(hearing_id: str, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        return wrap_response(hearings_service.get_hearing(supabase, auth.tenant_id, hearing_id))
    except Exception as e:
        raise_http_error(e, "hearing lookup")


@router.post("")
@require_permission("hearings", "create")
async def schedule_hearing(body: HearingCreateRequest, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        return wrap_response(hearings_service.create_hearing(supabase, auth.tenant_id, auth.user_id, body))
    except Exception as e:
        raise_http_error(e, "hearing creation")


@router.patch("/{hearing_id}")
@require_permission("hearings", "update")
async def edit_hearing(hearing_id: str, body: HearingUpdateRequest, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        return wrap_response(hearings_service.update_hearing(supabase, auth.tenant_id, hearing_id, auth.user_id, body))
    except Exception as e:
        raise_http_error(e, "hearing update")


@router.post("/{hearing_id}/outcome")
@require_permission("hearings", "update")
async def record_hearing_outcome(hearing_id: str, body: HearingOutcomeRequest, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        return wrap_response(hearings_service.record_outcome(supabase, auth.tenant_id, hearing_id, auth.user_id, body))
    except Exception as e:
        raise_http_error(e, "hearing outcome")


@router.delete("/{hearing_id}")
@require_permission("hearings", "delete")
async def remove_hearing(hearing_id: str, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        hearings_service.delete_hearing(supabase, auth.tenant_id, hearing_id)
        return wrap_response({"success": True})
    except Exception as e:
        raise_http_error(e, "hearing deletion")
