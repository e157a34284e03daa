"""
Court & Judge Routes
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query

from app.auth_permissions import AuthContext, get_auth_context, require_permission
from app.router_utils import raise_http_error, require_db, wrap_response
from app import courts_service
from app.courts_service import CourtRequest, JudgeRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["courts"])


@router.get("/courts")
@require_permission("courts", "read")
async def get_courts(
    type: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    auth: AuthContext = Depends(get_auth_context),
):
    supabase = require_db()
    return wrap_response(courts_service.list_courts(supabase, auth.tenant_id, type, status))


@router.get("/courts/{court_id}")
@require_permission("courts", "read")
async def get_court_detail(court_id: str, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        return wrap_response(courts_service.get_court(supabase, auth.tenant_id, court_id))
    except Exception as e:
        raise_http_error(e, "court lookup")


@router.post("/courts")
@require_permission("courts", "create")
async def add_court(body: CourtRequest, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        return wrap_response(courts_service.create_court(supabase, auth.tenant_id, auth.user_id, body))
    except Exception as e:
        raise_http_error(e, "court creation")


@router.patch("/courts/{court_id}")
@require_permission("courts", "update")
async def edit_court(court_id: str, updates: Dict[str, Any] = Body(...), auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        return wrap_response(courts_service.update_court(supabase, auth.tenant_id, court_id, updates))
    except Exception as e:
        raise_http_error(e, "court update")


@router.delete("/courts/{court_id}")
@require_permission("courts", "delete")
async def remove_court(court_id: str, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        courts_service.delete_court(supabase, auth.tenant_id, court_id)
        return wrap_response({"success": True})
    except Exception as e:
        raise_http_error(e, "court deletion")

# --- judges ---

@router.get("/judges")
@require_permission("judges", "read")
async def get_judges(court_id: Optional[str] = Query(None), auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    return wrap_response(courts_service.list_judges(supabase, auth.tenant_id, court_id))


@router.post("/judges")
@require_permission("judges", "create")
async def add_judge(body: JudgeRequest, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        return wrap_response(courts_service.create_judge(supabase, auth.tenant_id, auth.user_id, body))
    except Exception as e:
        raise_http_error(e, "judge creation")


@router.patch("/judges/{judge_id}")
@require_permission("judges", "update")
async def edit_judge(judge_id: str, updates: Dict[str, Any] = Body(...), auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        return wrap_response(courts_service.update_judge(supabase, auth.tenant_id, judge_id, updates))
    except Exception as e:
        raise_http_error(e, "judge update")
