"""
Automation Rule Engine

Small conditional dispatcher: an event (stage change, overdue task, upload,
hearing, escalation request, new case) is matched against the tenant's active
rules and each matching rule runs its actions.

Rule shape:
    trigger: {"event": "stage_changed", "conditions": {"stageTo": "Tribunal"}}
    actions: {
        "createTaskBundle": {"bundleId": "...", "tasks": [...]},
        "sendNotification": {"recipients": ["assignee", "manager"], "template": "..."},
        "escalate": {"toRole": "Partner"},
    }
"""

import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, validator

from app import escalation_engine
from app.notifications import create_notifications
from app.task_bundles import create_bundle_tasks, get_bundle
from app.task_engine import TaskCreateRequest, TaskPriority, create_task
from app.tenant_settings_loader import is_feature_enabled

logger = logging.getLogger(__name__)


class AutomationEventType(str, Enum):
    STAGE_CHANGED = "stage_changed"
    TASK_OVERDUE = "task_overdue"
    DOCUMENT_UPLOADED = "document_uploaded"
    HEARING_SCHEDULED = "hearing_scheduled"
    ESCALATION_REQUESTED = "escalation_requested"
    CASE_CREATED = "case_created"


ACTION_TYPES = ("createTaskBundle", "sendNotification", "escalate")
RECIPIENT_TYPES = ("assignee", "creator", "manager", "team", "client")


@dataclass
class AutomationEvent:
    event_type: str
    tenant_id: str
    case_id: Optional[str] = None
    task_id: Optional[str] = None
    hearing_id: Optional[str] = None
    case_data: Optional[Dict[str, Any]] = None
    task_data: Optional[Dict[str, Any]] = None
    document_data: Optional[Dict[str, Any]] = None
    stage_from: Optional[str] = None
    stage_to: Optional[str] = None
    days_overdue: Optional[int] = None
    document_type: Optional[str] = None
    triggered_by: Optional[str] = None


@dataclass
class AutomationResult:
    success: bool = True
    rules_matched: int = 0
    rules_executed: int = 0
    actions_executed: int = 0
    errors: List[str] = field(default_factory=list)
    logs: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "rulesMatched": self.rules_matched,
            "rulesExecuted": self.rules_executed,
            "actionsExecuted": self.actions_executed,
            "errors": self.errors,
            "logs": self.logs,
        }


class AutomationRuleRequest(BaseModel):
    name: str
    description: Optional[str] = None
    trigger: Dict[str, Any]
    actions: Dict[str, Any]
    is_active: bool = True

    @validator("name")
    def name_required(cls, v):
        if not v or not v.strip():
            raise ValueError("Rule name is required")
        return v.strip()

    @validator("trigger")
    def known_event(cls, v):
        validate_trigger(v)
        return v

    @validator("actions")
    def known_actions(cls, v):
        validate_actions(v)
        return v


def validate_trigger(trigger: Dict[str, Any]):
    event = (trigger or {}).get("event")
    try:
        AutomationEventType(event)
    except ValueError:
        raise ValueError(f"Unknown trigger event '{event}'")


def validate_actions(actions: Dict[str, Any]):
    if not actions:
        raise ValueError("At least one action is required")
    unknown = [a for a in actions if a not in ACTION_TYPES]
    if unknown:
        raise ValueError(f"Unknown action type(s): {', '.join(unknown)}")


def _now() -> str:
    return datetime.utcnow().isoformat()

# =============================================================================
# RULE CRUD
# =============================================================================

def list_rules(supabase, tenant_id: str, active_only: bool = False) -> List[Dict[str, Any]]:
    query = supabase.table("automation_rules").select("*").eq("tenant_id", tenant_id)
    if active_only:
        query = query.eq("is_active", True)
    return query.order("created_at").execute().data or []


def get_rule(supabase, tenant_id: str, rule_id: str) -> Dict[str, Any]:
    res = supabase.table("automation_rules").select("*").eq("id", rule_id).eq("tenant_id", tenant_id).limit(1).execute()
    if not res.data:
        raise LookupError("Automation rule not found")
    return res.data[0]


def create_rule(supabase, tenant_id: str, user_id: Optional[str], req: AutomationRuleRequest) -> Dict[str, Any]:
    row = {
        **req.dict(),
        "tenant_id": tenant_id,
        "execution_count": 0,
        "success_count": 0,
        "failure_count": 0,
        "created_by": user_id,
        "created_at": _now(),
        "updated_at": _now(),
    }
    res = supabase.table("automation_rules").insert(row).execute()
    logger.info(f"Created automation rule '{req.name}' for tenant {tenant_id}")
    return res.data[0]


def update_rule(supabase, tenant_id: str, rule_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
    rule = get_rule(supabase, tenant_id, rule_id)
    changes = {k: v for k, v in updates.items() if k in ("name", "description", "trigger", "actions", "is_active")}
    if "name" in changes and not (changes["name"] or "").strip():
        raise ValueError("Rule name is required")
    if "trigger" in changes:
        validate_trigger(changes["trigger"])
    if "actions" in changes:
        validate_actions(changes["actions"])
    changes["updated_at"] = _now()
    supabase.table("automation_rules").update(changes).eq("id", rule_id).execute()
    return {**rule, **changes}


def toggle_rule(supabase, tenant_id: str, rule_id: str, is_active: bool) -> Dict[str, Any]:
    return update_rule(supabase, tenant_id, rule_id, {"is_active": is_active})


def delete_rule(supabase, tenant_id: str, rule_id: str) -> bool:
    get_rule(supabase, tenant_id, rule_id)
    supabase.table("automation_rules").delete().eq("id", rule_id).execute()
    return True

# =============================================================================
# EVALUATION
# =============================================================================

def evaluate_conditions(rule: Dict[str, Any], event: AutomationEvent) -> bool:
    """All conditions present on the rule must hold for the event."""
    conditions = (rule.get("trigger") or {}).get("conditions") or {}

    if conditions.get("stageTo") and event.stage_to != conditions["stageTo"]:
        return False
    if conditions.get("stageFrom") and event.stage_from != conditions["stageFrom"]:
        return False

    priorities = conditions.get("priority") or []
    if priorities:
        priority = (event.task_data or {}).get("priority") or (event.case_data or {}).get("priority")
        if priority and priority not in priorities:
            return False

    if conditions.get("daysOverdue") is not None:
        if (event.days_overdue or 0) < conditions["daysOverdue"]:
            return False

    if conditions.get("documentType") and event.document_type != conditions["documentType"]:
        return False

    return True


def resolve_recipients(supabase, tenant_id: str, recipient_types: List[str], event: AutomationEvent) -> List[str]:
    task = event.task_data or {}
    case = event.case_data or {}
    assignee = task.get("assigned_to") or case.get("assigned_to")
    recipients: List[str] = []

    for kind in recipient_types or []:
        if kind == "assignee" and assignee:
            recipients.append(assignee)
        elif kind == "creator" and task.get("assigned_by"):
            recipients.append(task["assigned_by"])
        elif kind == "manager" and assignee:
            res = supabase.table("employees").select("reporting_to").eq("id", assignee).limit(1).execute()
            if res.data and res.data[0].get("reporting_to"):
                recipients.append(res.data[0]["reporting_to"])
        elif kind == "team":
            res = supabase.table("employees").select("id").eq("tenant_id", tenant_id).eq("status", "Active").execute()
            recipients.extend(row["id"] for row in res.data or [])
        elif kind == "client" and case.get("client_id"):
            res = supabase.table("client_portal_users")\
                .select("user_id")\
                .eq("client_id", case["client_id"])\
                .eq("is_active", True)\
                .execute()
            recipients.extend(row["user_id"] for row in res.data or [] if row.get("user_id"))

    return list(dict.fromkeys(recipients))

# =============================================================================
# ACTIONS
# =============================================================================

def _create_task_bundle(supabase, rule: Dict[str, Any], config: Dict[str, Any], event: AutomationEvent):
    case = event.case_data
    created: List[Dict[str, Any]] = []
    if config.get("bundleId"):
        bundle = get_bundle(supabase, event.tenant_id, config["bundleId"])
        created.extend(create_bundle_tasks(supabase, event.tenant_id, bundle, case, user_id=event.triggered_by))
    for template in config.get("tasks") or []:
        task = create_task(supabase, event.tenant_id, event.triggered_by, TaskCreateRequest(
            title=template["title"],
            description=template.get("description"),
            case_id=case["id"],
            client_id=case.get("client_id"),
            priority=TaskPriority(template.get("priority") or "Medium"),
            due_date=template.get("due_date"),
            assigned_to=template.get("assigned_to") or case.get("assigned_to"),
            estimated_hours=template.get("estimated_hours"),
            dedup_key=f"rule:{rule['id']}:{case['id']}:{template['title']}",
        ))
        if not task.get("existing"):
            created.append(task)
    return {"taskIds": [t["id"] for t in created], "count": len(created)}


def _send_notification(supabase, rule: Dict[str, Any], config: Dict[str, Any], event: AutomationEvent):
    recipients = resolve_recipients(supabase, event.tenant_id, config.get("recipients") or [], event)
    case_number = (event.case_data or {}).get("case_number")
    task_title = (event.task_data or {}).get("title")
    subject = task_title or case_number or event.case_id
    rows = create_notifications(
        supabase, event.tenant_id, recipients,
        "automation",
        config.get("title") or rule["name"],
        config.get("message") or f"{rule['name']}: {subject}",
        "task" if event.task_id else "case",
        event.task_id or event.case_id,
    )
    return {"recipients": recipients, "count": len(rows)}


def _escalate(supabase, rule: Dict[str, Any], config: Dict[str, Any], event: AutomationEvent):
    return escalation_engine.escalate_task(supabase, event.tenant_id, event.task_id, config.get("toRole"))


ACTION_HANDLERS = {
    "createTaskBundle": (_create_task_bundle, lambda e: bool(e.case_data and e.case_data.get("id"))),
    "sendNotification": (_send_notification, lambda e: bool(e.case_id)),
    "escalate": (_escalate, lambda e: bool(e.task_id)),
}


def execute_actions(supabase, rule: Dict[str, Any], event: AutomationEvent) -> List[Dict[str, Any]]:
    results = []
    for action_type, config in (rule.get("actions") or {}).items():
        start = time.monotonic()
        entry: Dict[str, Any] = {"type": action_type, "status": "success", "result": None, "error": None}
        handler = ACTION_HANDLERS.get(action_type)
        try:
            if handler is None:
                raise ValueError(f"Unknown action type '{action_type}'")
            run, applicable = handler
            if not applicable(event):
                entry["status"] = "skipped"
            else:
                entry["result"] = run(supabase, rule, config or {}, event)
        except Exception as e:
            logger.error(f"Automation action {action_type} failed for rule {rule.get('id')}: {e}")
            entry["status"] = "failed"
            entry["error"] = str(e)
        entry["duration_ms"] = int((time.monotonic() - start) * 1000)
        results.append(entry)
    return results


def _record_execution(supabase, rule: Dict[str, Any], event: AutomationEvent, actions: List[Dict[str, Any]], error: Optional[str] = None):
    if error:
        status = "failed"
    elif any(a["status"] == "failed" for a in actions):
        status = "partial"
    else:
        status = "success"

    log = {
        "tenant_id": event.tenant_id,
        "rule_id": rule["id"],
        "rule_name": rule.get("name"),
        "trigger_event": event.event_type,
        "trigger_payload": {k: v for k, v in asdict(event).items() if v is not None},
        "actions": actions,
        "case_id": event.case_id,
        "task_id": event.task_id,
        "status": status,
        "error": error,
        "execution_time_ms": sum(a.get("duration_ms", 0) for a in actions),
        "executed_at": _now(),
    }
    try:
        res = supabase.table("automation_logs").insert(log).execute()
        if res.data:
            log = res.data[0]
    except Exception as e:
        logger.warning(f"Failed to persist automation log for rule {rule['id']}: {e}")

    succeeded = status != "failed"
    try:
        supabase.table("automation_rules").update({
            "execution_count": (rule.get("execution_count") or 0) + 1,
            "success_count": (rule.get("success_count") or 0) + (1 if succeeded else 0),
            "failure_count": (rule.get("failure_count") or 0) + (0 if succeeded else 1),
            "last_executed_at": _now(),
        }).eq("id", rule["id"]).execute()
    except Exception as e:
        logger.warning(f"Failed to update counters for rule {rule['id']}: {e}")

    return log


def process_event(supabase, event: AutomationEvent) -> Dict[str, Any]:
    """Run every active rule of the tenant whose trigger matches the event."""
    result = AutomationResult()

    if not is_feature_enabled(supabase, event.tenant_id, "automation_rules"):
        return result.to_dict()

    try:
        rules = [
            r for r in list_rules(supabase, event.tenant_id, active_only=True)
            if (r.get("trigger") or {}).get("event") == event.event_type
        ]
    except Exception as e:
        logger.error(f"Failed to load automation rules for {event.tenant_id}: {e}")
        result.success = False
        result.errors.append(str(e))
        return result.to_dict()

    for rule in rules:
        if not evaluate_conditions(rule, event):
            continue
        result.rules_matched += 1
        try:
            actions = execute_actions(supabase, rule, event)
            result.rules_executed += 1
            result.actions_executed += len(actions)
            result.logs.append(_record_execution(supabase, rule, event, actions))
        except Exception as e:
            logger.error(f"Rule execution failed for {rule.get('name')}: {e}")
            result.success = False
            result.errors.append(f"Rule {rule.get('name')}: {e}")
            result.logs.append(_record_execution(supabase, rule, event, [], error=str(e)))

    logger.info(
        f"Automation event {event.event_type} for tenant {event.tenant_id}: "
        f"{result.rules_matched} matched, {result.actions_executed} action(s)"
    )
    return result.to_dict()

# =============================================================================
# LOGS & STATS
# =============================================================================

def get_execution_logs(supabase, tenant_id: str, rule_id: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
    query = supabase.table("automation_logs").select("*").eq("tenant_id", tenant_id)
    if rule_id:
        query = query.eq("rule_id", rule_id)
    return query.order("executed_at", desc=True).limit(limit).execute().data or []


def get_execution_stats(supabase, tenant_id: str) -> Dict[str, Any]:
    rules = list_rules(supabase, tenant_id)
    logs = get_execution_logs(supabase, tenant_id, limit=1000)

    total = len(logs)
    successful = sum(1 for log in logs if log.get("status") == "success")
    avg_time = sum(log.get("execution_time_ms") or 0 for log in logs) / total if total else 0

    return {
        "totalRules": len(rules),
        "activeRules": sum(1 for r in rules if r.get("is_active")),
        "totalExecutions": total,
        "successRate": round(successful / total * 100) if total else 0,
        "averageExecutionTime": round(avg_time),
        "recentExecutions": logs[:10],
    }
