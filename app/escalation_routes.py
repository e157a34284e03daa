"""
Escalation Routes - Overdue Task Escalation
Implements:
- Escalation rule management (defaults seeded per tenant)
- Escalation event queue with contact / resolve handling
- Manual escalation of a task
- On-demand overdue sweep
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query
from pydantic import BaseModel

from app.auth_permissions import AuthContext, get_auth_context, log_audit, require_permission
from app.router_utils import raise_http_error, require_db, wrap_response
from app import escalation_engine
from app.escalation_engine import EscalationRuleRequest
from app.task_engine import get_task

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/escalations", tags=["escalations"])

# ============================================================================
# Request models
# ============================================================================

class EventNotesRequest(BaseModel):
    notes: Optional[str] = None


class ManualEscalationRequest(BaseModel):
    to_role: Optional[str] = None

# ============================================================================
# Rules
# ============================================================================

@router.get("/rules")
@require_permission("settings", "read")
async def get_rules(auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        return wrap_response(escalation_engine.list_rules(supabase, auth.tenant_id))
    except Exception as e:
        raise_http_error(e, "escalation rules")


@router.post("/rules")
@require_permission("settings", "update")
async def add_rule(body: EscalationRuleRequest, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        rule = escalation_engine.create_rule(supabase, auth.tenant_id, auth.user_id, body)
    except Exception as e:
        raise_http_error(e, "escalation rule creation")
    log_audit(auth, "create_escalation_rule", "escalation_rule", rule.get("id"), {"name": body.name})
    return wrap_response(rule)


@router.patch("/rules/{rule_id}")
@require_permission("settings", "update")
async def edit_rule(rule_id: str, updates: Dict[str, Any] = Body(...), auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        return wrap_response(escalation_engine.update_rule(supabase, auth.tenant_id, rule_id, updates))
    except Exception as e:
        raise_http_error(e, "escalation rule update")

# ============================================================================
# Events
# ============================================================================

@router.get("/events")
@require_permission("tasks", "read")
async def get_events(
    status: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    auth: AuthContext = Depends(get_auth_context),
):
    supabase = require_db()
    try:
        return wrap_response(escalation_engine.list_events(supabase, auth.tenant_id, status, limit))
    except Exception as e:
        raise_http_error(e, "escalation events")


@router.get("/statistics")
@require_permission("tasks", "read")
async def get_statistics(auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        return wrap_response(escalation_engine.get_statistics(supabase, auth.tenant_id))
    except Exception as e:
        raise_http_error(e, "escalation statistics")


@router.post("/events/{event_id}/contacted")
@require_permission("tasks", "update")
async def contacted(event_id: str, body: EventNotesRequest, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        return wrap_response(escalation_engine.mark_contacted(supabase, auth.tenant_id, event_id, body.notes))
    except Exception as e:
        raise_http_error(e, "escalation contact")


@router.post("/events/{event_id}/resolve")
@require_permission("tasks", "update")
async def resolve(event_id: str, body: EventNotesRequest, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        event = escalation_engine.resolve_event(supabase, auth.tenant_id, event_id, auth.user_id, body.notes)
    except Exception as e:
        raise_http_error(e, "escalation resolve")
    log_audit(auth, "resolve_escalation", "escalation_event", event_id)
    return wrap_response(event)


@router.post("/tasks/{task_id}")
@require_permission("tasks", "update")
async def escalate(task_id: str, body: ManualEscalationRequest, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        get_task(supabase, auth.tenant_id, task_id)
        result = escalation_engine.escalate_task(supabase, auth.tenant_id, task_id, body.to_role)
    except Exception as e:
        raise_http_error(e, "task escalation")
    log_audit(auth, "escalate_task", "task", task_id, {"to_role": body.to_role})
    return wrap_response(result)


@router.post("/sweep")
@require_permission("settings", "update")
async def run_sweep(auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        return wrap_response(escalation_engine.check_and_escalate_overdue_tasks(supabase, auth.tenant_id))
    except Exception as e:
        raise_http_error(e, "escalation sweep")
