"""
Lifecycle - cyclic stage management.

A case lives in one open stage instance at a time. Transitions close it and
open the next one: Forward to a later stage, Send Back to an earlier one,
Remand to a fresh cycle of the same stage.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from app import stage_workflow
from app.cases_service import add_timeline_entry, get_case
from app.schemas import STAGE_ORDER
from app.task_bundles import BundleTrigger, trigger_task_bundles

logger = logging.getLogger(__name__)


class TransitionType(str, Enum):
    FORWARD = "Forward"
    SEND_BACK = "Send Back"
    REMAND = "Remand"


CHECKLIST_DONE = ("Auto✓", "Attested", "Override")

TRIGGER_FOR_TRANSITION = {
    TransitionType.FORWARD: BundleTrigger.ON_STAGE_ENTER,
    TransitionType.REMAND: BundleTrigger.ON_REMAND,
    TransitionType.SEND_BACK: BundleTrigger.ON_SEND_BACK,
}


class ChecklistItem(BaseModel):
    item_key: str
    label: str
    required: bool = True
    status: str = "Pending"
    note: Optional[str] = None


class OrderDetails(BaseModel):
    reason_enum: Optional[str] = None
    reason_text: Optional[str] = None
    order_no: Optional[str] = None
    order_date: Optional[str] = None


class TransitionRequest(BaseModel):
    transition_type: TransitionType
    to_stage: str
    comments: Optional[str] = None
    checklist: List[ChecklistItem] = []
    order_details: Optional[OrderDetails] = None


def _now() -> str:
    return datetime.utcnow().isoformat()


def get_available_stages(current_stage: Optional[str], transition_type: str) -> List[str]:
    if current_stage not in STAGE_ORDER:
        return []
    index = STAGE_ORDER.index(current_stage)
    kind = TransitionType(transition_type)
    if kind == TransitionType.FORWARD:
        return STAGE_ORDER[index + 1:]
    if kind == TransitionType.SEND_BACK:
        return STAGE_ORDER[:index]
    return [current_stage]


def validate_transition(transition_type: str, checklist: List[ChecklistItem]) -> Dict[str, Any]:
    """Only forward moves are gated on the checklist."""
    if TransitionType(transition_type) != TransitionType.FORWARD:
        return {"is_valid": True, "missing_items": []}
    missing = [item.label for item in checklist if item.required and item.status not in CHECKLIST_DONE]
    return {"is_valid": not missing, "missing_items": missing}


def _current_instance(supabase, case_id: str) -> Optional[Dict[str, Any]]:
    res = supabase.table("stage_instances").select("*")\
        .eq("case_id", case_id).eq("status", "Active")\
        .order("started_at", desc=True).limit(1).execute()
    return res.data[0] if res.data else None


def _next_cycle(supabase, case_id: str, stage: str) -> int:
    res = supabase.table("stage_instances").select("id").eq("case_id", case_id).eq("stage_key", stage).execute()
    return len(res.data or []) + 1


def sla_status_for(stage: str) -> str:
    return "Amber" if stage == "Adjudication" else "Green"


def create_transition(supabase, tenant_id: str, case_id: str, user_id: Optional[str], req: TransitionRequest) -> Dict[str, Any]:
    case = get_case(supabase, tenant_id, case_id)
    from_stage = case.get("stage_code")

    allowed = get_available_stages(from_stage, req.transition_type.value)
    if req.to_stage not in allowed:
        raise ValueError(f"{req.transition_type.value} to {req.to_stage} is not allowed from {from_stage}")

    check = validate_transition(req.transition_type.value, req.checklist)
    if not check["is_valid"]:
        raise ValueError(f"Checklist incomplete: {', '.join(check['missing_items'])}")

    now = _now()
    current = _current_instance(supabase, case_id)
    if current:
        supabase.table("stage_instances").update({"status": "Completed", "ended_at": now}).eq("id", current["id"]).execute()

    cycle_no = _next_cycle(supabase, case_id, req.to_stage)
    instance = supabase.table("stage_instances").insert({
        "tenant_id": tenant_id,
        "case_id": case_id,
        "stage_key": req.to_stage,
        "cycle_no": cycle_no,
        "status": "Active",
        "started_at": now,
        "created_by": user_id,
    }).execute().data[0]

    order = req.order_details.dict() if req.order_details else {}
    transition = supabase.table("stage_transitions").insert({
        "tenant_id": tenant_id,
        "case_id": case_id,
        "from_stage": from_stage,
        "to_stage": req.to_stage,
        "from_stage_instance_id": current["id"] if current else None,
        "to_stage_instance_id": instance["id"],
        "transition_type": req.transition_type.value,
        "comments": req.comments,
        **order,
        "created_by": user_id,
        "created_at": now,
    }).execute().data[0]

    case_updates = {"stage_code": req.to_stage, "sla_status": sla_status_for(req.to_stage), "updated_at": now}
    supabase.table("cases").update(case_updates).eq("id", case_id).execute()
    case = {**case, **case_updates}

    stage_workflow.initialize_steps(supabase, instance["id"], tenant_id)

    trigger = TRIGGER_FOR_TRANSITION[req.transition_type]
    tasks = trigger_task_bundles(supabase, tenant_id, trigger.value, req.to_stage, case, cycle_no, user_id)

    add_timeline_entry(
        supabase, tenant_id, case_id, "stage_change",
        f"{req.transition_type.value}: {from_stage} -> {req.to_stage}",
        req.comments, user_id,
        {"transition_type": req.transition_type.value, "cycle_no": cycle_no},
    )

    from app.automation_rule_engine import AutomationEvent, process_event
    try:
        process_event(supabase, AutomationEvent(
            event_type="stage_changed", tenant_id=tenant_id, case_id=case_id, case_data=case,
            stage_from=from_stage, stage_to=req.to_stage, triggered_by=user_id,
        ))
    except Exception as e:
        logger.error(f"stage_changed automation failed for case {case_id}: {e}")

    logger.info(f"Case {case_id}: {req.transition_type.value} {from_stage} -> {req.to_stage} (cycle {cycle_no})")
    return {"transition": transition, "stage_instance": instance, "tasks_created": len(tasks)}


def get_lifecycle(supabase, tenant_id: str, case_id: str) -> Dict[str, Any]:
    case = get_case(supabase, tenant_id, case_id)
    instances = supabase.table("stage_instances").select("*").eq("case_id", case_id).order("started_at").execute().data or []
    transitions = supabase.table("stage_transitions").select("*").eq("case_id", case_id).order("created_at").execute().data or []
    current = next((i for i in reversed(instances) if i.get("status") == "Active"), None)
    return {
        "case_id": case_id,
        "current_stage": case.get("stage_code"),
        "current_instance": current,
        "stage_instances": instances,
        "transitions": transitions,
    }
