"""
Automation Routes

Rule management, execution logs and statistics for the automation rule
engine. Rules are tenant configuration and sit under the settings
permission.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query
from pydantic import BaseModel

from app.auth_permissions import AuthContext, get_auth_context, log_audit, require_permission
from app.router_utils import raise_http_error, require_db, wrap_response
from app import automation_rule_engine as engine
from app.automation_rule_engine import AutomationEvent, AutomationRuleRequest
from app.cases_service import get_case
from app.task_engine import get_task

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/automation", tags=["automation"])


class ToggleRequest(BaseModel):
    is_active: bool


class EventRequest(BaseModel):
    event_type: str
    case_id: Optional[str] = None
    task_id: Optional[str] = None
    stage_from: Optional[str] = None
    stage_to: Optional[str] = None
    days_overdue: Optional[int] = None
    document_type: Optional[str] = None


@router.get("/rules")
@require_permission("settings", "read")
async def get_rules(active_only: bool = Query(False), auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    return wrap_response(engine.list_rules(supabase, auth.tenant_id, active_only))


@router.get("/rules/{rule_id}")
@require_permission("settings", "read")
async def get_rule_detail(rule_id: str, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        return wrap_response(engine.get_rule(supabase, auth.tenant_id, rule_id))
    except Exception as e:
        raise_http_error(e, "automation rule lookup")


@router.post("/rules")
@require_permission("settings", "update")
async def add_rule(body: AutomationRuleRequest, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        rule = engine.create_rule(supabase, auth.tenant_id, auth.user_id, body)
    except Exception as e:
        raise_http_error(e, "automation rule creation")
    log_audit(auth, "create_automation_rule", "automation_rule", rule.get("id"), {"name": body.name})
    return wrap_response(rule)


@router.patch("/rules/{rule_id}")
@require_permission("settings", "update")
async def edit_rule(rule_id: str, updates: Dict[str, Any] = Body(...), auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        return wrap_response(engine.update_rule(supabase, auth.tenant_id, rule_id, updates))
    except Exception as e:
        raise_http_error(e, "automation rule update")


@router.post("/rules/{rule_id}/toggle")
@require_permission("settings", "update")
async def toggle(rule_id: str, body: ToggleRequest, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        return wrap_response(engine.toggle_rule(supabase, auth.tenant_id, rule_id, body.is_active))
    except Exception as e:
        raise_http_error(e, "automation rule toggle")


@router.delete("/rules/{rule_id}")
@require_permission("settings", "update")
async def remove_rule(rule_id: str, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        engine.delete_rule(supabase, auth.tenant_id, rule_id)
    except Exception as e:
        raise_http_error(e, "automation rule deletion")
    log_audit(auth, "delete_automation_rule", "automation_rule", rule_id)
    return wrap_response({"success": True})


@router.get("/logs")
@require_permission("settings", "read")
async def get_logs(
    rule_id: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    auth: AuthContext = Depends(get_auth_context),
):
    supabase = require_db()
    return wrap_response(engine.get_execution_logs(supabase, auth.tenant_id, rule_id, limit))


@router.get("/stats")
@require_permission("settings", "read")
async def get_stats(auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        return wrap_response(engine.get_execution_stats(supabase, auth.tenant_id))
    except Exception as e:
        raise_http_error(e, "automation statistics")


@router.post("/events")
@require_permission("settings", "update")
async def fire_event(body: EventRequest, auth: AuthContext = Depends(get_auth_context)):
    """Run the rules for a synthetic event, e.g. to try out a new rule."""
    supabase = require_db()
    try:
        engine.AutomationEventType(body.event_type)
        event = AutomationEvent(tenant_id=auth.tenant_id, triggered_by=auth.user_id, **body.dict())
        if body.case_id:
            event.case_data = get_case(supabase, auth.tenant_id, body.case_id)
        if body.task_id:
            event.task_data = get_task(supabase, auth.tenant_id, body.task_id)
        return wrap_response(engine.process_event(supabase, event))
    except Exception as e:
        raise_http_error(e, "automation event")
