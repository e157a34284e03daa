"""
Stage Workflow

Four-step micro workflow inside each stage instance:
notices -> reply -> hearings -> closure. Closing the last step moves the case
forward to the next lifecycle stage.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from app.schemas import STAGE_ORDER

logger = logging.getLogger(__name__)

# =============================================================================
# CONSTANTS
# =============================================================================

class WorkflowStepStatus(str, Enum):
    PENDING = "Pending"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    SKIPPED = "Skipped"

WORKFLOW_STEPS: List[str] = ["notices", "reply", "hearings", "closure"]

STEP_LABELS = {
    "notices": "Notices",
    "reply": "Reply",
    "hearings": "Hearings",
    "closure": "Stage Closure",
}

DONE_STATUSES = (WorkflowStepStatus.COMPLETED.value, WorkflowStepStatus.SKIPPED.value)
REPLY_PENDING_NOTICE_STATUSES = ("Received", "Reply Pending")

def _now() -> str:
    return datetime.utcnow().isoformat()

def _check_step_key(step_key: str):
    if step_key not in WORKFLOW_STEPS:
        raise ValueError(f"Unknown workflow step '{step_key}'")

# =============================================================================
# STEPS
# =============================================================================

def get_steps(supabase, stage_instance_id: str) -> List[Dict[str, Any]]:
    res = supabase.table("stage_workflow_steps").select("*").eq("stage_instance_id", stage_instance_id).execute()
    steps = res.data or []
    steps.sort(key=lambda s: WORKFLOW_STEPS.index(s["step_key"]) if s.get("step_key") in WORKFLOW_STEPS else 99)
    return steps

def initialize_steps(supabase, stage_instance_id: str, tenant_id: Optional[str] = None) -> List[Dict[str, Any]]:
    """Create the four steps for a stage instance. Existing steps are returned untouched."""
    existing = get_steps(supabase, stage_instance_id)
    if existing:
        return existing

    rows = [
        {
            "tenant_id": tenant_id,
            "stage_instance_id": stage_instance_id,
            "step_key": key,
            "status": WorkflowStepStatus.IN_PROGRESS.value if key == "notices" else WorkflowStepStatus.PENDING.value,
            "created_at": _now(),
        }
        for key in WORKFLOW_STEPS
    ]
    res = supabase.table("stage_workflow_steps").insert(rows).execute()
    return res.data or rows

def _set_step(supabase, stage_instance_id: str, step_key: str, updates: Dict[str, Any]):
    updates = {**updates, "updated_at": _now()}
    supabase.table("stage_workflow_steps")\
        .update(updates)\
        .eq("stage_instance_id", stage_instance_id)\
        .eq("step_key", step_key)\
        .execute()

def update_step(
    supabase,
    stage_instance_id: str,
    step_key: str,
    status: str,
    notes: Optional[str] = None,
    user_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Set a step's status.

    Completed records who/when; Pending or In Progress clears that. Completing
    or skipping activates the next pending step, and finishing closure moves
    the case to the next stage.
    """
    _check_step_key(step_key)
    status = WorkflowStepStatus(status).value

    steps = {s["step_key"]: s for s in initialize_steps(supabase, stage_instance_id)}

    updates: Dict[str, Any] = {"status": status}
    if notes is not None:
        updates["notes"] = notes
    if status == WorkflowStepStatus.COMPLETED.value:
        updates["completed_at"] = _now()
        updates["completed_by"] = user_id
    elif status in (WorkflowStepStatus.PENDING.value, WorkflowStepStatus.IN_PROGRESS.value):
        updates["completed_at"] = None
        updates["completed_by"] = None

    _set_step(supabase, stage_instance_id, step_key, updates)

    transition = None
    if status in DONE_STATUSES:
        index = WORKFLOW_STEPS.index(step_key)
        if index < len(WORKFLOW_STEPS) - 1:
            next_key = WORKFLOW_STEPS[index + 1]
            if (steps.get(next_key) or {}).get("status", WorkflowStepStatus.PENDING.value) == WorkflowStepStatus.PENDING.value:
                _set_step(supabase, stage_instance_id, next_key, {"status": WorkflowStepStatus.IN_PROGRESS.value})
        if step_key == "closure":
            transition = handle_closure_transition(supabase, stage_instance_id, user_id)

    return {"step_key": step_key, **updates, "transition": transition}

def complete_step(supabase, stage_instance_id: str, step_key: str, user_id: Optional[str] = None) -> Dict[str, Any]:
    return update_step(supabase, stage_instance_id, step_key, WorkflowStepStatus.COMPLETED.value, user_id=user_id)

def skip_step(supabase, stage_instance_id: str, step_key: str, reason: str, user_id: Optional[str] = None) -> Dict[str, Any]:
    if not reason or not reason.strip():
        raise ValueError("A reason is required to skip a step")
    return update_step(
        supabase, stage_instance_id, step_key, WorkflowStepStatus.SKIPPED.value,
        notes=f"Skipped: {reason.strip()}", user_id=user_id,
    )

def handle_closure_transition(supabase, stage_instance_id: str, user_id: Optional[str]) -> Optional[Dict[str, Any]]:
    """Record a Forward transition to the next stage. No-op at the final stage."""
    res = supabase.table("stage_instances")\
        .select("id, case_id, stage_key, tenant_id")\
        .eq("id", stage_instance_id)\
        .limit(1)\
        .execute()
    if not res.data:
        logger.warning(f"Closure requested for unknown stage instance {stage_instance_id}")
        return None
    instance = res.data[0]

    stage = instance.get("stage_key")
    if stage not in STAGE_ORDER or STAGE_ORDER.index(stage) == len(STAGE_ORDER) - 1:
        return None
    next_stage = STAGE_ORDER[STAGE_ORDER.index(stage) + 1]

    transition = {
        "tenant_id": instance.get("tenant_id"),
        "case_id": instance["case_id"],
        "from_stage": stage,
        "to_stage": next_stage,
        "transition_type": "Forward",
        "comments": f"Stage {stage} workflow completed",
        "created_by": user_id,
        "created_at": _now(),
    }
    created = supabase.table("stage_transitions").insert(transition).execute()
    supabase.table("cases").update({"stage_code": next_stage, "updated_at": _now()}).eq("id", instance["case_id"]).execute()

    logger.info(f"Lifecycle transitioned: {stage} -> {next_stage} for case {instance['case_id']}")
    return created.data[0] if created.data else transition

# =============================================================================
# STATE
# =============================================================================

def _notices(supabase, stage_instance_id: str) -> List[Dict[str, Any]]:
    res = supabase.table("stage_notices").select("id, status").eq("stage_instance_id", stage_instance_id).execute()
    return res.data or []

def _replies_count(supabase, case_id: str) -> int:
    res = supabase.table("stage_replies").select("id").eq("case_id", case_id).execute()
    return len(res.data or [])

def get_hearings_count(supabase, stage_instance_id: str, case_id: str) -> int:
    res = supabase.table("hearings").select("id").eq("stage_instance_id", stage_instance_id).execute()
    count = len(res.data or [])
    if count == 0:
        res = supabase.table("hearings").select("id").eq("case_id", case_id).is_("stage_instance_id", "null").execute()
        count = len(res.data or [])
    return count

def evaluate_closure(steps: List[Dict[str, Any]], notices: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Blocking reasons for closing a stage, given its steps and notices."""
    blocking: List[str] = []

    if not notices:
        blocking.append("At least one notice must be recorded")

    pending = [n for n in notices if n.get("status") in REPLY_PENDING_NOTICE_STATUSES]
    if pending:
        blocking.append(f"{len(pending)} notice(s) require a reply")

    by_key = {s["step_key"]: s for s in steps}
    closure_pending = (by_key.get("closure") or {}).get("status") == WorkflowStepStatus.PENDING.value
    prior_open = [
        s for s in steps
        if s["step_key"] != "closure" and s.get("status") not in DONE_STATUSES
    ]
    notices_done = (by_key.get("notices") or {}).get("status") in DONE_STATUSES
    if prior_open and closure_pending and not notices_done:
        blocking.append("Complete or skip preceding workflow steps first")

    return {"can_close": not blocking, "blocking": blocking}


def check_can_close(supabase, stage_instance_id: str) -> Dict[str, Any]:
    return evaluate_closure(get_steps(supabase, stage_instance_id), _notices(supabase, stage_instance_id))

def determine_current_step(steps: List[Dict[str, Any]]) -> str:
    for wanted in (WorkflowStepStatus.IN_PROGRESS.value, WorkflowStepStatus.PENDING.value):
        step = next((s for s in steps if s.get("status") == wanted), None)
        if step:
            return step["step_key"]
    return "closure"

def get_workflow_state(supabase, stage_instance_id: str, case_id: str) -> Dict[str, Any]:
    steps = get_steps(supabase, stage_instance_id)
    notices = _notices(supabase, stage_instance_id)
    replies = _replies_count(supabase, case_id) if notices else 0
    hearings = get_hearings_count(supabase, stage_instance_id, case_id)

    done = sum(1 for s in steps if s.get("status") in DONE_STATUSES)
    closure = evaluate_closure(steps, notices)

    return {
        "stage_instance_id": stage_instance_id,
        "case_id": case_id,
        "current_step": determine_current_step(steps),
        "progress": round(done / len(WORKFLOW_STEPS) * 100),
        "steps": [
            {**s, "label": STEP_LABELS.get(s["step_key"], s["step_key"])}
            for s in steps
        ],
        "counts": {"notices": len(notices), "replies": replies, "hearings": hearings},
        "can_close": closure["can_close"],
        "blocking": closure["blocking"],
    }
