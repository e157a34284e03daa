"""
Case Routes

Case CRUD with optimistic version checks, stage advancement and the case
timeline.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import Response

from app.auth_permissions import AuthContext, get_auth_context, log_api_call, require_permission
from app.router_utils import handle_conflict, raise_http_error, require_db, wrap_response
from app.schemas import pagination_meta
from app import cases_service
from app.cases_service import CaseCreateRequest, CaseUpdateRequest, StageAdvanceRequest, VersionConflictError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cases", tags=["cases"])


@router.get("")
@require_permission("cases", "read")
async def get_cases(
    status: Optional[str] = Query(None),
    stage: Optional[str] = Query(None),
    client_id: Optional[str] = Query(None),
    assigned_to: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    auth: AuthContext = Depends(get_auth_context),
):
    supabase = require_db()
    try:
        data, total = cases_service.list_cases(
            supabase, auth.tenant_id, status, stage, client_id, assigned_to, search, limit, offset
        )
        return wrap_response(data, meta=pagination_meta(total, limit, offset))
    except Exception as e:
        raise_http_error(e, "case listing")


@router.get("/{case_id}")
@require_permission("cases", "read")
async def get_case_detail(case_id: str, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        return wrap_response(cases_service.get_case(supabase, auth.tenant_id, case_id))
    except Exception as e:
        raise_http_error(e, "case lookup")


@router.post("")
@require_permission("cases", "create")
async def add_case(body: CaseCreateRequest, request: Request, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        case = cases_service.create_case(supabase, auth.tenant_id, auth.user_id, body)
    except Exception as e:
        raise_http_error(e, "case creation")
    log_api_call(auth, request.url.path, "POST", 200, 0, {"case_id": case.get("id")})
    return wrap_response(case)


@router.patch("/{case_id}")
@require_permission("cases", "update")
async def edit_case(case_id: str, body: CaseUpdateRequest, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        return wrap_response(cases_service.update_case(supabase, auth.tenant_id, case_id, auth.user_id, body))
    except VersionConflictError as e:
        handle_conflict(e.db_version, e.incoming_version)
    except Exception as e:
        raise_http_error(e, "case update")


@router.delete("/{case_id}")
@require_permission("cases", "delete")
async def remove_case(case_id: str, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        cases_service.delete_case(supabase, auth.tenant_id, case_id, auth.user_id)
        return wrap_response({"success": True})
    except Exception as e:
        raise_http_error(e, "case deletion")


@router.post("/{case_id}/advance")
@require_permission("cases", "update")
async def advance_case_stage(case_id: str, body: StageAdvanceRequest, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        result = cases_service.advance_stage(supabase, auth.tenant_id, case_id, auth.user_id, body.next_stage, body.notes)
        return wrap_response(result)
    except Exception as e:
        raise_http_error(e, "stage advance")


@router.get("/{case_id}/timeline")
@require_permission("cases", "read")
async def get_case_timeline(case_id: str, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        return wrap_response(cases_service.get_timeline(supabase, auth.tenant_id, case_id))
    except Exception as e:
        raise_http_error(e, "timeline lookup")


@router.get("/{case_id}/timeline/export")
@require_permission("cases", "read")
async def export_case_timeline(case_id: str, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        case = cases_service.get_case(supabase, auth.tenant_id, case_id)
        csv_text = cases_service.export_timeline_csv(supabase, auth.tenant_id, case_id)
    except Exception as e:
        raise_http_error(e, "timeline export")
    filename = f"{case.get('case_number') or case_id}-timeline.csv"
    return Response(
        content=csv_text,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
