"""
Task Routes

Tasks, follow-ups (which lock a task against direct edits) and manual task
bundle runs.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from app.auth_permissions import AuthContext, get_auth_context, require_permission
from app.router_utils import raise_http_error, require_db, wrap_response
from app import task_bundles, task_engine
from app.cases_service import get_case
from app.task_engine import FollowUpRequest, TaskCreateRequest, TaskUpdateRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tasks", tags=["tasks"])


class BundleRunRequest(BaseModel):
    case_id: str
    cycle_no: int = Field(default=1, ge=1)


@router.get("/my")
@require_permission("tasks", "read")
async def get_my_tasks(status: Optional[str] = Query(None), auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        return wrap_response(task_engine.get_my_tasks(supabase, auth.tenant_id, auth.user_id, status))
    except Exception as e:
        raise_http_error(e, "task listing")


@router.get("/overdue")
@require_permission("tasks", "read")
async def get_overdue(auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        tasks = task_engine.get_overdue_tasks(supabase, auth.tenant_id)
        return wrap_response([{**t, "days_overdue": task_engine.days_overdue(t)} for t in tasks])
    except Exception as e:
        raise_http_error(e, "overdue tasks")


@router.get("/case/{case_id}")
@require_permission("tasks", "read")
async def get_tasks_for_case(case_id: str, status: Optional[str] = Query(None), auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        return wrap_response(task_engine.get_case_tasks(supabase, auth.tenant_id, case_id, status))
    except Exception as e:
        raise_http_error(e, "case tasks")


@router.get("/bundles")
@require_permission("tasks", "read")
async def get_bundles(trigger: str = Query(...), stage: str = Query(...), auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        return wrap_response(task_bundles.get_bundles_for_trigger(supabase, auth.tenant_id, trigger, stage))
    except Exception as e:
        raise_http_error(e, "bundle listing")


@router.post("/bundles/{bundle_id}/run")
@require_permission("tasks", "create")
async def run_bundle(bundle_id: str, body: BundleRunRequest, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        bundle = task_bundles.get_bundle(supabase, auth.tenant_id, bundle_id)
        case = get_case(supabase, auth.tenant_id, body.case_id)
        created = task_bundles.create_bundle_tasks(
            supabase, auth.tenant_id, bundle, case, case.get("stage_code"), body.cycle_no, auth.user_id
        )
        return wrap_response({"bundle_id": bundle_id, "created": created})
    except Exception as e:
        raise_http_error(e, "bundle run")


@router.get("/{task_id}")
@require_permission("tasks", "read")
async def get_task_detail(task_id: str, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        return wrap_response(task_engine.get_task(supabase, auth.tenant_id, task_id))
    except Exception as e:
        raise_http_error(e, "task lookup")


@router.post("")
@require_permission("tasks", "create")
async def add_task(body: TaskCreateRequest, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        return wrap_response(task_engine.create_task(supabase, auth.tenant_id, auth.user_id, body))
    except Exception as e:
        raise_http_error(e, "task creation")


@router.patch("/{task_id}")
@require_permission("tasks", "update")
async def edit_task(task_id: str, body: TaskUpdateRequest, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        return wrap_response(task_engine.update_task(supabase, auth.tenant_id, task_id, auth.user_id, body))
    except Exception as e:
        raise_http_error(e, "task update")


@router.delete("/{task_id}")
@require_permission("tasks", "delete")
async def remove_task(task_id: str, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        task_engine.delete_task(supabase, auth.tenant_id, task_id, auth.user_id)
        return wrap_response({"success": True})
    except Exception as e:
        raise_http_error(e, "task deletion")


@router.get("/{task_id}/follow-ups")
@require_permission("tasks", "read")
async def get_follow_ups(task_id: str, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        return wrap_response(task_engine.list_follow_ups(supabase, auth.tenant_id, task_id))
    except Exception as e:
        raise_http_error(e, "follow-up listing")


@router.post("/{task_id}/follow-ups")
@require_permission("tasks", "update")
async def post_follow_up(task_id: str, body: FollowUpRequest, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        return wrap_response(task_engine.add_follow_up(supabase, auth.tenant_id, task_id, auth.user_id, body))
    except Exception as e:
        raise_http_error(e, "follow-up")
