"""
Beacon Practice - Task & Follow-up Engine
=========================================
Handles task lifecycle, status transitions and follow-up locking.

A task becomes locked on its first follow-up. From then on the only
permitted write is another follow-up; direct edits and deletes are refused.
"""

import logging
from datetime import datetime, date
from typing import Optional, List, Dict, Any
from enum import Enum
from pydantic import BaseModel, Field, validator

logger = logging.getLogger(__name__)

# =============================================================================
# ENUMS & CONSTANTS
# =============================================================================

class TaskStatus(str, Enum):
    NOT_STARTED = "Not Started"
    IN_PROGRESS = "In Progress"
    REVIEW = "Review"
    COMPLETED = "Completed"
    OVERDUE = "Overdue"
    CANCELLED = "Cancelled"

class TaskPriority(str, Enum):
    CRITICAL = "Critical"
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"

class FollowUpOutcome(str, Enum):
    PROGRESSING = "Progressing"
    BLOCKED = "Blocked"
    COMPLETED = "Completed"
    NEED_SUPPORT = "Need Support"
    PENDING_INPUT = "Pending Input"

CLOSED_STATUSES = [TaskStatus.COMPLETED.value, TaskStatus.CANCELLED.value]

# Valid status transitions
STATUS_TRANSITIONS: Dict[TaskStatus, List[TaskStatus]] = {
    TaskStatus.NOT_STARTED: [TaskStatus.IN_PROGRESS, TaskStatus.CANCELLED],
    TaskStatus.IN_PROGRESS: [TaskStatus.REVIEW, TaskStatus.COMPLETED, TaskStatus.CANCELLED, TaskStatus.OVERDUE],
    TaskStatus.REVIEW: [TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED],
    TaskStatus.OVERDUE: [TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED, TaskStatus.CANCELLED],
    TaskStatus.COMPLETED: [TaskStatus.IN_PROGRESS], # Reopen
    TaskStatus.CANCELLED: [TaskStatus.NOT_STARTED],
}

EDITABLE_FIELDS = [
    "title", "description", "status", "priority", "due_date",
    "assigned_to", "estimated_hours", "hearing_id",
]

# =============================================================================
# SCHEMAS
# =============================================================================

class TaskCreateRequest(BaseModel):
    title: str
    description: Optional[str] = None
    case_id: Optional[str] = None
    client_id: Optional[str] = None
    hearing_id: Optional[str] = None
    priority: TaskPriority = TaskPriority.MEDIUM
    status: TaskStatus = TaskStatus.NOT_STARTED
    due_date: Optional[str] = None
    assigned_to: Optional[str] = None
    estimated_hours: Optional[float] = Field(default=None, ge=0)
    stage: Optional[str] = None
    bundle_id: Optional[str] = None
    dedup_key: Optional[str] = None

    @validator("title")
    def title_required(cls, v):
        if not v or not v.strip():
            raise ValueError("Task title is required")
        return v.strip()

class TaskUpdateRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    due_date: Optional[str] = None
    assigned_to: Optional[str] = None
    estimated_hours: Optional[float] = Field(default=None, ge=0)
    hearing_id: Optional[str] = None

class FollowUpRequest(BaseModel):
    remarks: str
    outcome: FollowUpOutcome = FollowUpOutcome.PROGRESSING
    status: Optional[TaskStatus] = None
    hours_logged: float = Field(default=0, ge=0)
    work_date: Optional[str] = None
    next_follow_up_date: Optional[str] = None
    next_actions: Optional[str] = None
    blockers: Optional[str] = None
    support_needed: bool = False
    escalation_requested: bool = False

    @validator("remarks")
    def remarks_required(cls, v):
        if not v or not v.strip():
            raise ValueError("Remarks are required for a follow-up")
        return v.strip()

# =============================================================================
# HELPERS
# =============================================================================

def _now() -> str:
    return datetime.utcnow().isoformat()

def get_task(supabase, tenant_id: str, task_id: str) -> Dict[str, Any]:
    res = supabase.table("tasks").select("*").eq("id", task_id).eq("tenant_id", tenant_id).limit(1).execute()
    if not res.data:
        raise LookupError("Task not found")
    return res.data[0]

def validate_transition(current: str, new: str):
    """Raise ValueError if moving from current to new status is not allowed."""
    if current == new:
        return
    try:
        current_status = TaskStatus(current)
    except ValueError:
        raise ValueError(f"Unknown task status '{current}'")
    try:
        new_status = TaskStatus(new)
    except ValueError:
        raise ValueError(f"Unknown task status '{new}'")
    if new_status not in STATUS_TRANSITIONS.get(current_status, []):
        raise ValueError(f"Invalid transition from {current_status.value} to {new_status.value}")

def log_task_event(supabase, task_id: str, actor_id: Optional[str], event_type: str, payload: Dict[str, Any]):
    """Log a task event for audit trail."""
    try:
        supabase.table("task_events").insert({
            "task_id": task_id,
            "actor_id": actor_id,
            "event_type": event_type,
            "payload": payload,
            "created_at": _now(),
        }).execute()
    except Exception as e:
        logger.warning(f"Failed to log task event {event_type} for {task_id}: {e}")

# =============================================================================
# TASK LIFECYCLE MANAGEMENT
# =============================================================================

LINKED_RECORDS = (("case_id", "cases", "Case"), ("client_id", "clients", "Client"), ("hearing_id", "hearings", "Hearing"))


def ensure_linked_records(supabase, tenant_id: str, links: Dict[str, Optional[str]]):
    """Raise LookupError if a linked case, client or hearing is not in tenant_id."""
    for field_name, table, label in LINKED_RECORDS:
        record_id = links.get(field_name)
        if not record_id:
            continue
        res = supabase.table(table).select("id").eq("id", record_id).eq("tenant_id", tenant_id).limit(1).execute()
        if not res.data:
            raise LookupError(f"{label} not found")


def create_task(supabase, tenant_id: str, user_id: Optional[str], req: TaskCreateRequest) -> Dict[str, Any]:
    """Create a task. An open task with the same dedup_key is returned instead of a duplicate."""
    ensure_linked_records(supabase, tenant_id, {
        "case_id": req.case_id, "client_id": req.client_id, "hearing_id": req.hearing_id,
    })

    if req.dedup_key:
        existing = supabase.table("tasks")\
            .select("*")\
            .eq("tenant_id", tenant_id)\
            .eq("dedup_key", req.dedup_key)\
            .execute()
        open_matches = [t for t in existing.data or [] if t.get("status") not in CLOSED_STATUSES]
        if open_matches:
            logger.info(f"Duplicate task suppressed: {req.dedup_key}")
            return {**open_matches[0], "existing": True}

    task_data = {
        "tenant_id": tenant_id,
        "case_id": req.case_id,
        "client_id": req.client_id,
        "hearing_id": req.hearing_id,
        "title": req.title,
        "description": req.description,
        "status": req.status.value,
        "priority": req.priority.value,
        "due_date": req.due_date,
        "assigned_to": req.assigned_to,
        "assigned_by": user_id,
        "estimated_hours": req.estimated_hours,
        "actual_hours": 0,
        "stage": req.stage,
        "bundle_id": req.bundle_id,
        "dedup_key": req.dedup_key,
        "is_auto_generated": bool(req.bundle_id),
        "is_locked": False,
        "created_at": _now(),
    }

    res = supabase.table("tasks").insert(task_data).execute()
    task = res.data[0]

    log_task_event(supabase, task["id"], user_id, "created", {
        "bundle_id": req.bundle_id,
        "assigned_to": req.assigned_to,
    })

    return task

def update_task(supabase, tenant_id: str, task_id: str, user_id: Optional[str], req: TaskUpdateRequest) -> Dict[str, Any]:
    """Direct edit of a task. Locked tasks only accept follow-ups."""
    task = get_task(supabase, tenant_id, task_id)

    if task.get("is_locked"):
        raise PermissionError("Task is locked after follow-up; add a follow-up instead of editing")

    updates = {k: v for k, v in req.dict(exclude_unset=True).items() if k in EDITABLE_FIELDS}
    for key in ("status", "priority"):
        if isinstance(updates.get(key), Enum):
            updates[key] = updates[key].value

    if not updates:
        return task
    ensure_linked_records(supabase, tenant_id, updates)

    if "status" in updates:
        validate_transition(task["status"], updates["status"])
        if updates["status"] == TaskStatus.COMPLETED.value:
            updates["completed_date"] = date.today().isoformat()
        elif task.get("completed_date"):
            updates["completed_date"] = None

    updates["updated_at"] = _now()
    supabase.table("tasks").update(updates).eq("id", task_id).execute()

    if "status" in updates and updates["status"] != task["status"]:
        log_task_event(supabase, task_id, user_id, "status_changed", {
            "from_status": task["status"],
            "to_status": updates["status"],
        })
    else:
        log_task_event(supabase, task_id, user_id, "updated", {"fields": sorted(updates)})

    return {**task, **updates}

def delete_task(supabase, tenant_id: str, task_id: str, user_id: Optional[str]) -> bool:
    task = get_task(supabase, tenant_id, task_id)
    if task.get("is_locked"):
        raise PermissionError("Locked tasks cannot be deleted")
    supabase.table("tasks").delete().eq("id", task_id).execute()
    logger.info(f"Task {task_id} deleted by {user_id}")
    return True

def add_follow_up(supabase, tenant_id: str, task_id: str, user_id: str, req: FollowUpRequest) -> Dict[str, Any]:
    """
    Append a follow-up and lock the task.

    Keeps the original lock metadata on subsequent follow-ups, rolls logged
    hours into actual_hours and applies any status carried by the follow-up.
    """
    task = get_task(supabase, tenant_id, task_id)
    now = _now()

    new_status = req.status.value if req.status else None
    if new_status:
        validate_transition(task["status"], new_status)

    follow_up = {
        "tenant_id": tenant_id,
        "task_id": task_id,
        "remarks": req.remarks,
        "outcome": req.outcome.value,
        "status": new_status or task["status"],
        "hours_logged": req.hours_logged,
        "work_date": req.work_date or date.today().isoformat(),
        "next_follow_up_date": req.next_follow_up_date,
        "next_actions": req.next_actions,
        "blockers": req.blockers,
        "support_needed": req.support_needed,
        "escalation_requested": req.escalation_requested,
        "created_by": user_id,
        "created_at": now,
    }
    res = supabase.table("task_followups").insert(follow_up).execute()
    created = res.data[0] if res.data else follow_up

    task_updates: Dict[str, Any] = {
        "is_locked": True,
        "locked_at": task.get("locked_at") or now,
        "locked_by": task.get("locked_by") or user_id,
        "current_follow_up_date": req.next_follow_up_date,
        "actual_hours": float(task.get("actual_hours") or 0) + req.hours_logged,
        "updated_at": now,
    }
    if new_status:
        task_updates["status"] = new_status
        if new_status == TaskStatus.COMPLETED.value:
            task_updates["completed_date"] = date.today().isoformat()

    supabase.table("tasks").update(task_updates).eq("id", task_id).execute()

    log_task_event(supabase, task_id, user_id, "follow_up_added", {
        "outcome": req.outcome.value,
        "hours_logged": req.hours_logged,
        "status": new_status,
    })

    if req.escalation_requested:
        from app.automation_rule_engine import AutomationEvent, process_event
        try:
            process_event(supabase, AutomationEvent(
                event_type="escalation_requested",
                tenant_id=tenant_id,
                case_id=task.get("case_id"),
                task_id=task_id,
                task_data={**task, **task_updates},
                triggered_by=user_id,
            ))
        except Exception as e:
            logger.error(f"Escalation automation failed for task {task_id}: {e}")

    return {"follow_up": created, "task": {**task, **task_updates}}

def list_follow_ups(supabase, tenant_id: str, task_id: str) -> List[Dict[str, Any]]:
    get_task(supabase, tenant_id, task_id)
    res = supabase.table("task_followups").select("*").eq("task_id", task_id).order("created_at", desc=True).execute()
    return res.data or []

# =============================================================================
# TASK QUERIES
# =============================================================================

def get_my_tasks(supabase, tenant_id: str, user_id: str, status_filter: Optional[str] = None) -> List[Dict[str, Any]]:
    """Get tasks assigned to the current user."""
    query = supabase.table("tasks").select("*").eq("tenant_id", tenant_id).eq("assigned_to", user_id)
    if status_filter:
        query = query.eq("status", status_filter)
    res = query.order("due_date").execute()
    return res.data or []

def get_case_tasks(supabase, tenant_id: str, case_id: str, status_filter: Optional[str] = None) -> List[Dict[str, Any]]:
    """Get all tasks for a case."""
    query = supabase.table("tasks").select("*").eq("tenant_id", tenant_id).eq("case_id", case_id)
    if status_filter:
        query = query.eq("status", status_filter)
    res = query.order("due_date").execute()
    return res.data or []

def get_overdue_tasks(supabase, tenant_id: str, today: Optional[date] = None) -> List[Dict[str, Any]]:
    """Open tasks whose due date has passed."""
    today = today or date.today()
    res = supabase.table("tasks")\
        .select("*")\
        .eq("tenant_id", tenant_id)\
        .not_.in_("status", CLOSED_STATUSES)\
        .lt("due_date", today.isoformat())\
        .execute()
    return res.data or []

def days_overdue(task: Dict[str, Any], today: Optional[date] = None) -> int:
    due = task.get("due_date")
    if not due:
        return 0
    today = today or date.today()
    return max(0, (today - date.fromisoformat(str(due)[:10])).days)
