"""
Statutory Deadline Routes

Holiday calendar, statutory event types, per-case deadlines with extensions
and deadline calculators.
"""

import logging
from datetime import date
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query
from pydantic import BaseModel, Field

from app.auth_permissions import AuthContext, get_auth_context, require_permission
from app.router_utils import raise_http_error, require_db, wrap_response
from app import statutory_deadlines as sd
from app.statutory_deadlines import DeadlineCreateRequest, EventTypeRequest, HolidayRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/statutory", tags=["statutory"])


class ExtensionRequest(BaseModel):
    extension_days: int = Field(gt=0)
    remarks: Optional[str] = None


class StatusRequest(BaseModel):
    status: str
    completed_date: Optional[str] = None


class CalculateRequest(BaseModel):
    base_date: date
    event_type_id: str
    state: Optional[str] = None


class ReplyDeadlineRequest(BaseModel):
    notice_date: date
    notice_type: Optional[str] = None

# =============================================================================
# HOLIDAYS
# =============================================================================

@router.get("/holidays")
@require_permission("settings", "read")
async def get_holidays(year: Optional[int] = Query(None), auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    return wrap_response(sd.list_holidays(supabase, auth.tenant_id, year))


@router.post("/holidays")
@require_permission("settings", "update")
async def add_holiday(body: HolidayRequest, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        return wrap_response(sd.create_holiday(supabase, auth.tenant_id, auth.user_id, body))
    except Exception as e:
        raise_http_error(e, "holiday creation")


@router.patch("/holidays/{holiday_id}")
@require_permission("settings", "update")
async def edit_holiday(holiday_id: str, updates: Dict[str, Any] = Body(...), auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        return wrap_response(sd.update_holiday(supabase, auth.tenant_id, holiday_id, updates))
    except Exception as e:
        raise_http_error(e, "holiday update")


@router.delete("/holidays/{holiday_id}")
@require_permission("settings", "update")
async def remove_holiday(holiday_id: str, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        sd.delete_holiday(supabase, auth.tenant_id, holiday_id)
        return wrap_response({"success": True})
    except Exception as e:
        raise_http_error(e, "holiday deletion")

# =============================================================================
# EVENT TYPES
# =============================================================================

@router.get("/event-types")
@require_permission("cases", "read")
async def get_event_types(active_only: bool = Query(True), auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    return wrap_response(sd.list_event_types(supabase, auth.tenant_id, active_only))


@router.post("/event-types")
@require_permission("settings", "update")
async def add_event_type(body: EventTypeRequest, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        return wrap_response(sd.create_event_type(supabase, auth.tenant_id, auth.user_id, body))
    except Exception as e:
        raise_http_error(e, "event type creation")


@router.patch("/event-types/{event_type_id}")
@require_permission("settings", "update")
async def edit_event_type(event_type_id: str, updates: Dict[str, Any] = Body(...), auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        return wrap_response(sd.update_event_type(supabase, auth.tenant_id, event_type_id, updates))
    except Exception as e:
        raise_http_error(e, "event type update")


@router.delete("/event-types/{event_type_id}")
@require_permission("settings", "update")
async def remove_event_type(event_type_id: str, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        sd.delete_event_type(supabase, auth.tenant_id, event_type_id)
        return wrap_response({"success": True})
    except Exception as e:
        raise_http_error(e, "event type deletion")

# =============================================================================
# DEADLINES
# =============================================================================

@router.post("/calculate")
@require_permission("cases", "read")
async def calculate(body: CalculateRequest, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        event_type = sd.get_event_type(supabase, auth.tenant_id, body.event_type_id)
        holidays = sd.load_holidays_for_range(supabase, auth.tenant_id, body.base_date, sd.add_months(body.base_date, 24))
        result = sd.calculate_deadline(body.base_date, event_type, holidays, body.state)
        return wrap_response(result.to_dict())
    except Exception as e:
        raise_http_error(e, "deadline calculation")


@router.post("/reply-deadline")
@require_permission("cases", "read")
async def reply_deadline(body: ReplyDeadlineRequest, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        result = sd.calculate_reply_deadline(supabase, auth.tenant_id, body.notice_date, body.notice_type)
        return wrap_response(result.to_dict())
    except Exception as e:
        raise_http_error(e, "reply deadline calculation")


@router.get("/deadlines/upcoming")
@require_permission("cases", "read")
async def upcoming(days: int = Query(30, ge=1, le=365), auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    return wrap_response(sd.get_upcoming(supabase, auth.tenant_id, days))


@router.get("/deadlines/overdue")
@require_permission("cases", "read")
async def overdue(auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    return wrap_response(sd.get_overdue(supabase, auth.tenant_id))


@router.get("/cases/{case_id}/deadlines")
@require_permission("cases", "read")
async def case_deadlines(case_id: str, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    return wrap_response(sd.list_case_deadlines(supabase, auth.tenant_id, case_id))


@router.post("/deadlines")
@require_permission("cases", "update")
async def add_deadline(body: DeadlineCreateRequest, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        return wrap_response(sd.create_deadline(supabase, auth.tenant_id, auth.user_id, body))
    except Exception as e:
        raise_http_error(e, "deadline creation")


@router.post("/deadlines/{deadline_id}/extend")
@require_permission("cases", "update")
async def extend(deadline_id: str, body: ExtensionRequest, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        return wrap_response(sd.apply_extension(supabase, auth.tenant_id, deadline_id, body.extension_days, body.remarks))
    except Exception as e:
        raise_http_error(e, "deadline extension")


@router.patch("/deadlines/{deadline_id}/status")
@require_permission("cases", "update")
async def set_status(deadline_id: str, body: StatusRequest, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        return wrap_response(sd.update_status(supabase, auth.tenant_id, deadline_id, body.status, body.completed_date))
    except Exception as e:
        raise_http_error(e, "deadline status")
