"""
Lifecycle Routes

Stage transitions for a case (Forward / Send Back / Remand) and the
four-step workflow inside a stage instance.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from app.auth_permissions import AuthContext, get_auth_context, log_audit, require_permission
from app.router_utils import raise_http_error, require_db, wrap_response
from app import lifecycle, stage_workflow
from app.cases_service import get_case
from app.lifecycle import TransitionRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cases", tags=["lifecycle"])


class StepUpdateRequest(BaseModel):
    status: str
    notes: Optional[str] = None


class SkipRequest(BaseModel):
    reason: str


def _check_instance(supabase, tenant_id: str, case_id: str, stage_instance_id: str):
    get_case(supabase, tenant_id, case_id)
    res = supabase.table("stage_instances").select("id")\
        .eq("id", stage_instance_id).eq("case_id", case_id).execute()
    if not res.data:
        raise LookupError("Stage instance not found")

# =============================================================================
# LIFECYCLE
# =============================================================================

@router.get("/{case_id}/lifecycle")
@require_permission("cases", "read")
async def get_case_lifecycle(case_id: str, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        return wrap_response(lifecycle.get_lifecycle(supabase, auth.tenant_id, case_id))
    except Exception as e:
        raise_http_error(e, "lifecycle lookup")


@router.get("/{case_id}/lifecycle/available-stages")
@require_permission("cases", "read")
async def available_stages(case_id: str, transition_type: str = Query(...), auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        case = get_case(supabase, auth.tenant_id, case_id)
        return wrap_response(lifecycle.get_available_stages(case.get("stage_code"), transition_type))
    except Exception as e:
        raise_http_error(e, "available stages")


@router.post("/{case_id}/lifecycle/transitions")
@require_permission("cases", "update")
async def transition(case_id: str, body: TransitionRequest, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        result = lifecycle.create_transition(supabase, auth.tenant_id, case_id, auth.user_id, body)
    except Exception as e:
        raise_http_error(e, "stage transition")
    log_audit(auth, "stage_transition", "case", case_id, {
        "transition_type": body.transition_type.value,
        "to_stage": body.to_stage,
    })
    return wrap_response(result)

# =============================================================================
# STAGE WORKFLOW
# =============================================================================

@router.get("/{case_id}/workflow/{stage_instance_id}")
@require_permission("cases", "read")
async def workflow_state(case_id: str, stage_instance_id: str, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        _check_instance(supabase, auth.tenant_id, case_id, stage_instance_id)
        return wrap_response(stage_workflow.get_workflow_state(supabase, stage_instance_id, case_id))
    except Exception as e:
        raise_http_error(e, "workflow state")


@router.post("/{case_id}/workflow/{stage_instance_id}/initialize")
@require_permission("cases", "update")
async def initialize(case_id: str, stage_instance_id: str, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        _check_instance(supabase, auth.tenant_id, case_id, stage_instance_id)
        return wrap_response(stage_workflow.initialize_steps(supabase, stage_instance_id, auth.tenant_id))
    except Exception as e:
        raise_http_error(e, "workflow initialization")


@router.patch("/{case_id}/workflow/{stage_instance_id}/steps/{step_key}")
@require_permission("cases", "update")
async def update_step(
    case_id: str,
    stage_instance_id: str,
    step_key: str,
    body: StepUpdateRequest,
    auth: AuthContext = Depends(get_auth_context),
):
    supabase = require_db()
    try:
        _check_instance(supabase, auth.tenant_id, case_id, stage_instance_id)
        return wrap_response(stage_workflow.update_step(
            supabase, stage_instance_id, step_key, body.status, body.notes, auth.user_id
        ))
    except Exception as e:
        raise_http_error(e, "workflow step update")


@router.post("/{case_id}/workflow/{stage_instance_id}/steps/{step_key}/complete")
@require_permission("cases", "update")
async def complete(case_id: str, stage_instance_id: str, step_key: str, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        _check_instance(supabase, auth.tenant_id, case_id, stage_instance_id)
        return wrap_response(stage_workflow.complete_step(supabase, stage_instance_id, step_key, auth.user_id))
    except Exception as e:
        raise_http_error(e, "workflow step completion")


@router.post("/{case_id}/workflow/{stage_instance_id}/steps/{step_key}/skip")
@require_permission("cases", "update")
async def skip(
    case_id: str,
    stage_instance_id: str,
    step_key: str,
    body: SkipRequest,
    auth: AuthContext = Depends(get_auth_context),
):
    supabase = require_db()
    try:
        _check_instance(supabase, auth.tenant_id, case_id, stage_instance_id)
        return wrap_response(stage_workflow.skip_step(supabase, stage_instance_id, step_key, body.reason, auth.user_id))
    except Exception as e:
        raise_http_error(e, "workflow step skip")


@router.get("/{case_id}/workflow/{stage_instance_id}/can-close")
@require_permission("cases", "read")
async def can_close(case_id: str, stage_instance_id: str, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        _check_instance(supabase, auth.tenant_id, case_id, stage_instance_id)
        return wrap_response(stage_workflow.check_can_close(supabase, stage_instance_id))
    except Exception as e:
        raise_http_error(e, "closure check")
