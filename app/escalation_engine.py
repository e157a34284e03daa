"""
Escalation Engine - overdue task escalation to managers and partners.

Rules describe when a task escalates (hours overdue, priority) and to which
role. Events record each escalation and move pending -> contacted -> resolved.
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, validator

from app.notifications import create_notifications
from app.task_engine import CLOSED_STATUSES
from app.tenant_settings_loader import is_feature_enabled

logger = logging.getLogger(__name__)

# =============================================================================
# ENUMS & DEFAULTS
# =============================================================================

class EscalationTrigger(str, Enum):
    TASK_OVERDUE = "task_overdue"
    CRITICAL_SLA = "critical_sla"
    CLIENT_DEADLINE = "client_deadline"
    MANUAL = "manual"

class EscalationEventStatus(str, Enum):
    PENDING = "pending"
    CONTACTED = "contacted"
    RESOLVED = "resolved"
    ESCALATED = "escalated"

DEFAULT_RULES: List[Dict[str, Any]] = [
    {
        "name": "Task Overdue - 24 Hours",
        "description": "Escalate when task is overdue by 24 hours",
        "trigger_type": "task_overdue",
        "conditions": {"hoursOverdue": 24, "priority": ["High", "Critical"]},
        "actions": {"notify": ["manager", "assignee"], "escalateToRole": "Manager", "createReminder": True},
        "is_active": True,
    },
    {
        "name": "Critical SLA Breach",
        "description": "Immediate escalation for critical SLA breaches",
        "trigger_type": "critical_sla",
        "conditions": {"priority": ["Critical"]},
        "actions": {
            "notify": ["partner", "manager", "assignee"],
            "escalateToRole": "Partner",
            "createReminder": True,
            "emailTemplate": "critical_sla_breach",
        },
        "is_active": True,
    },
    {
        "name": "Client Deadline Warning",
        "description": "Notify when approaching client deadlines",
        "trigger_type": "client_deadline",
        "conditions": {"hoursOverdue": 48},
        "actions": {"notify": ["manager", "assignee"], "createReminder": True},
        "is_active": True,
    },
]

class EscalationRuleRequest(BaseModel):
    name: str
    description: Optional[str] = None
    trigger_type: EscalationTrigger = EscalationTrigger.TASK_OVERDUE
    conditions: Dict[str, Any] = {}
    actions: Dict[str, Any] = {}
    is_active: bool = True

    @validator("name")
    def name_required(cls, v):
        if not v or not v.strip():
            raise ValueError("Rule name is required")
        return v.strip()

def _now() -> datetime:
    return datetime.now(timezone.utc)

# =============================================================================
# RULES
# =============================================================================

def ensure_default_rules(supabase, tenant_id: str, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
    """Seed the default rules for a tenant that has none. Returns the tenant's rules."""
    res = supabase.table("escalation_rules").select("*").eq("tenant_id", tenant_id).order("created_at").execute()
    if res.data:
        return res.data

    now = _now().isoformat()
    rows = [{**rule, "tenant_id": tenant_id, "created_by": user_id, "created_at": now} for rule in DEFAULT_RULES]
    created = supabase.table("escalation_rules").insert(rows).execute()
    logger.info(f"Created {len(rows)} default escalation rules for tenant {tenant_id}")
    return created.data or rows

def list_rules(supabase, tenant_id: str) -> List[Dict[str, Any]]:
    return ensure_default_rules(supabase, tenant_id)

def get_rule(supabase, tenant_id: str, rule_id: str) -> Dict[str, Any]:
    res = supabase.table("escalation_rules").select("*").eq("id", rule_id).eq("tenant_id", tenant_id).limit(1).execute()
    if not res.data:
        raise LookupError("Escalation rule not found")
    return res.data[0]

def create_rule(supabase, tenant_id: str, user_id: Optional[str], req: EscalationRuleRequest) -> Dict[str, Any]:
    row = req.dict()
    row["trigger_type"] = req.trigger_type.value
    row.update({"tenant_id": tenant_id, "created_by": user_id, "created_at": _now().isoformat()})
    res = supabase.table("escalation_rules").insert(row).execute()
    return res.data[0]

def update_rule(supabase, tenant_id: str, rule_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
    rule = get_rule(supabase, tenant_id, rule_id)
    allowed = {k: v for k, v in updates.items() if k in ("name", "description", "trigger_type", "conditions", "actions", "is_active")}
    if "name" in allowed and not (allowed["name"] or "").strip():
        raise ValueError("Rule name is required")
    if "trigger_type" in allowed:
        allowed["trigger_type"] = EscalationTrigger(allowed["trigger_type"]).value
    allowed["updated_at"] = _now().isoformat()
    supabase.table("escalation_rules").update(allowed).eq("id", rule_id).execute()
    return {**rule, **allowed}

# =============================================================================
# EVENTS
# =============================================================================

def _single(res) -> Optional[Dict[str, Any]]:
    return res.data[0] if res.data else None

def resolve_escalation_target(supabase, tenant_id: str, assignee_id: Optional[str], role: str) -> Optional[str]:
    """
    The assignee's reporting manager when their role matches, otherwise any
    active employee in the tenant holding that role.
    """
    target_role = role.lower()

    if assignee_id:
        assignee = _single(supabase.table("employees").select("reporting_to").eq("id", assignee_id).limit(1).execute())
        if assignee and assignee.get("reporting_to"):
            manager = _single(
                supabase.table("employees").select("id, role").eq("id", assignee["reporting_to"]).limit(1).execute()
            )
            if manager and target_role in (manager.get("role") or "").lower():
                return manager["id"]

    fallback = _single(
        supabase.table("employees")
        .select("id")
        .eq("tenant_id", tenant_id)
        .eq("status", "Active")
        .ilike("role", f"%{target_role}%")
        .limit(1)
        .execute()
    )
    return fallback["id"] if fallback else None

def create_event(supabase, tenant_id: str, rule_id: str, task_id: str) -> Dict[str, Any]:
    """Open a pending escalation for a task and notify the target and the assignee."""
    rule = get_rule(supabase, tenant_id, rule_id)
    task = _single(
        supabase.table("tasks").select("id, title, assigned_to, priority, due_date")
        .eq("id", task_id).eq("tenant_id", tenant_id).limit(1).execute()
    )
    if not task:
        raise LookupError("Task not found")

    escalate_to_role = (rule.get("actions") or {}).get("escalateToRole")
    escalated_to = None
    if escalate_to_role:
        escalated_to = resolve_escalation_target(supabase, tenant_id, task.get("assigned_to"), escalate_to_role)

    res = supabase.table("escalation_events").insert({
        "tenant_id": tenant_id,
        "rule_id": rule_id,
        "task_id": task_id,
        "status": EscalationEventStatus.PENDING.value,
        "current_level": 1,
        "assigned_to": task.get("assigned_to"),
        "escalated_to": escalated_to,
        "triggered_at": _now().isoformat(),
    }).execute()
    event = res.data[0]

    try:
        create_notifications(
            supabase, tenant_id, [escalated_to, task.get("assigned_to")],
            "escalation",
            f"Escalation: {task.get('title') or 'Task'}",
            f"Rule '{rule['name']}' escalated task '{task.get('title') or task_id}'",
            "task", task_id,
        )
    except Exception as e:
        logger.warning(f"Escalation notification failed for task {task_id}: {e}")

    logger.info(f"Escalation {event.get('id')} created for task {task_id} via rule '{rule['name']}'")
    return event

def escalate_task(supabase, tenant_id: str, task_id: str, to_role: Optional[str] = None) -> Dict[str, Any]:
    """Escalate a task through the active rule matching to_role, falling back to the critical SLA rule."""
    rules = [r for r in ensure_default_rules(supabase, tenant_id) if r.get("is_active")]
    chosen = None
    if to_role:
        chosen = next(
            (r for r in rules if ((r.get("actions") or {}).get("escalateToRole") or "").lower() == to_role.lower()),
            None,
        )
    if not chosen:
        chosen = next((r for r in rules if r.get("trigger_type") == EscalationTrigger.CRITICAL_SLA.value), None)
    if not chosen:
        supabase.table("tasks").update({"is_escalated": True}).eq("id", task_id).execute()
        return {"task_id": task_id, "escalated": True, "event": None}
    return {"task_id": task_id, "escalated": True, "event": create_event(supabase, tenant_id, chosen["id"], task_id)}

def _get_event(supabase, tenant_id: str, event_id: str) -> Dict[str, Any]:
    res = supabase.table("escalation_events").select("*").eq("id", event_id).eq("tenant_id", tenant_id).limit(1).execute()
    if not res.data:
        raise LookupError("Escalation event not found")
    return res.data[0]

def resolve_event(supabase, tenant_id: str, event_id: str, user_id: Optional[str], notes: Optional[str] = None) -> Dict[str, Any]:
    event = _get_event(supabase, tenant_id, event_id)
    updates = {
        "status": EscalationEventStatus.RESOLVED.value,
        "notes": notes,
        "resolved_at": _now().isoformat(),
        "resolved_by": user_id,
    }
    supabase.table("escalation_events").update(updates).eq("id", event_id).execute()
    return {**event, **updates}

def mark_contacted(supabase, tenant_id: str, event_id: str, notes: Optional[str] = None) -> Dict[str, Any]:
    event = _get_event(supabase, tenant_id, event_id)
    if event.get("status") == EscalationEventStatus.RESOLVED.value:
        raise ValueError("Escalation is already resolved")
    updates = {"status": EscalationEventStatus.CONTACTED.value, "notes": notes}
    supabase.table("escalation_events").update(updates).eq("id", event_id).execute()
    return {**event, **updates}

def list_events(supabase, tenant_id: str, status: Optional[str] = None, limit: int = 50) -> List[Dict[str, Any]]:
    query = supabase.table("escalation_events").select("*").eq("tenant_id", tenant_id)
    if status:
        query = query.eq("status", EscalationEventStatus(status).value)
    res = query.order("triggered_at", desc=True).limit(limit).execute()
    return res.data or []

def get_statistics(supabase, tenant_id: str) -> Dict[str, Any]:
    res = supabase.table("escalation_events").select("id, status").eq("tenant_id", tenant_id).execute()
    events = res.data or []
    by_status = {s.value: 0 for s in EscalationEventStatus}
    for event in events:
        by_status[event.get("status")] = by_status.get(event.get("status"), 0) + 1
    return {
        "total": len(events),
        "pending": by_status["pending"],
        "contacted": by_status["contacted"],
        "resolved": by_status["resolved"],
        "escalated": by_status["escalated"],
    }

# =============================================================================
# SWEEP
# =============================================================================

def _hours_overdue(due_date: str, now: datetime) -> float:
    due = datetime.fromisoformat(str(due_date).replace("Z", "+00:00"))
    if due.tzinfo is None:
        due = due.replace(tzinfo=timezone.utc)
    return (now - due).total_seconds() / 3600

def rule_matches_task(rule: Dict[str, Any], task: Dict[str, Any], hours_overdue: float) -> bool:
    conditions = rule.get("conditions") or {}
    threshold = conditions.get("hoursOverdue")
    if threshold and hours_overdue < threshold:
        return False
    priorities = conditions.get("priority") or []
    if priorities and task.get("priority") not in priorities:
        return False
    return True

def check_and_escalate_overdue_tasks(supabase, tenant_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Escalate open overdue tasks without a pending event through the first matching rule."""
    result: Dict[str, Any] = {"checked": 0, "escalated": 0, "errors": []}
    if not is_feature_enabled(supabase, tenant_id, "escalations"):
        return result

    now = now or _now()
    rules = [
        r for r in ensure_default_rules(supabase, tenant_id)
        if r.get("is_active") and r.get("trigger_type") == EscalationTrigger.TASK_OVERDUE.value
    ]
    if not rules:
        return result

    tasks = supabase.table("tasks")\
        .select("id, title, due_date, priority, status, assigned_to")\
        .eq("tenant_id", tenant_id)\
        .not_.in_("status", CLOSED_STATUSES)\
        .lt("due_date", now.date().isoformat())\
        .execute()

    for task in tasks.data or []:
        result["checked"] += 1
        try:
            pending = supabase.table("escalation_events")\
                .select("id")\
                .eq("task_id", task["id"])\
                .eq("status", EscalationEventStatus.PENDING.value)\
                .limit(1)\
                .execute()
            if pending.data:
                continue

            hours = _hours_overdue(task["due_date"], now)
            rule = next((r for r in rules if rule_matches_task(r, task, hours)), None)
            if rule:
                create_event(supabase, tenant_id, rule["id"], task["id"])
                result["escalated"] += 1
        except Exception as e:
            logger.error(f"Escalation failed for task {task.get('id')}: {e}")
            result["errors"].append(f"{task.get('id')}: {e}")

    logger.info(f"Escalation sweep for {tenant_id}: checked={result['checked']} escalated={result['escalated']}")
    return result
