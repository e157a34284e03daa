"""
Stage-based task bundles.

A bundle is a template list of tasks created when a case enters a stage,
is remanded or sent back, or has a hearing scheduled. Built-in bundles are
merged with active tenant bundles stored in the task_bundles table.
"""

import logging
import math
from datetime import date, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from app.schemas import STAGE_ORDER
from app.task_engine import TaskCreateRequest, TaskPriority, create_task
from app.tenant_settings_loader import is_feature_enabled

logger = logging.getLogger(__name__)


class BundleTrigger(str, Enum):
    ON_STAGE_ENTER = "OnStageEnter"
    ON_HEARING_SCHEDULED = "OnHearingScheduled"
    ON_HEARING_COMPLETED = "OnHearingCompleted"
    ON_REMAND = "OnRemand"
    ON_SEND_BACK = "OnSendBack"


HOURS_PER_WORK_DAY = 8

STAGE_ENTRY_TASKS: Dict[str, List[str]] = {
    "Assessment": ["Review assessment notice", "Collect supporting records", "Prepare reconciliation"],
    "Adjudication": ["Review show cause notice", "Draft reply to SCN", "Prepare personal hearing brief"],
    "First Appeal": ["Review adjudication order", "Draft appeal memorandum", "Compute pre-deposit"],
    "Tribunal": ["Review appellate order", "Prepare tribunal appeal", "Compile paper book"],
    "High Court": ["Evaluate substantial question of law", "Draft writ or appeal petition", "Brief counsel"],
    "Supreme Court": ["Evaluate grounds for SLP", "Draft special leave petition", "Coordinate with advocate on record"],
}

HEARING_STAGES = ["Adjudication", "First Appeal", "Tribunal", "High Court", "Supreme Court"]


def _entry_bundle(stage: str) -> Dict[str, Any]:
    titles = STAGE_ENTRY_TASKS.get(stage, [])
    return {
        "id": f"bundle_{stage.lower().replace(' ', '_')}_enter",
        "name": f"{stage} - Entry Tasks",
        "trigger": BundleTrigger.ON_STAGE_ENTER.value,
        "stage_key": stage,
        "tasks": [
            {
                "title": title,
                "description": f"Auto-generated task for {stage} stage",
                "priority": "High" if index == 0 else "Medium",
                "estimated_hours": 8,
                "is_mandatory": index < 2,
            }
            for index, title in enumerate(titles)
        ],
    }


def _remand_bundle(stage: str) -> Dict[str, Any]:
    return {
        "id": f"bundle_{stage.lower().replace(' ', '_')}_remand",
        "name": f"{stage} - Remand Tasks",
        "trigger": BundleTrigger.ON_REMAND.value,
        "stage_key": stage,
        "tasks": [
            {"title": "Review remand order", "description": "Analyze the reasons for remand and plan corrective actions",
             "priority": "High", "estimated_hours": 4, "is_mandatory": True},
            {"title": "Address remand issues", "description": "Take corrective actions based on remand order",
             "priority": "High", "estimated_hours": 8, "is_mandatory": True},
            {"title": "Prepare revised submission", "description": "Prepare documents/submissions addressing remand concerns",
             "priority": "Medium", "estimated_hours": 6, "is_mandatory": False},
        ],
    }


def _hearing_bundle(stage: str) -> Dict[str, Any]:
    return {
        "id": f"bundle_{stage.lower().replace(' ', '_')}_hearing",
        "name": f"{stage} - Hearing Preparation",
        "trigger": BundleTrigger.ON_HEARING_SCHEDULED.value,
        "stage_key": stage,
        "tasks": [
            {"title": "Prepare hearing notes", "description": "Compile case notes and arguments for hearing",
             "priority": "High", "estimated_hours": 4, "is_mandatory": True},
            {"title": "Review case documents", "description": "Final review of all case documents before hearing",
             "priority": "High", "estimated_hours": 2, "is_mandatory": True},
            {"title": "Coordinate with client", "description": "Brief client on hearing process and expectations",
             "priority": "Medium", "estimated_hours": 1, "is_mandatory": False},
        ],
    }


ASMT10_BUNDLE = {
    "id": "bundle_asmt10_notice_intake",
    "name": "ASMT-10 Notice Intake Tasks",
    "trigger": BundleTrigger.ON_STAGE_ENTER.value,
    "stage_key": "Assessment",
    "tasks": [
        {"title": "Acknowledge Receipt of ASMT-10",
         "description": "File acknowledgment of assessment notice receipt with the department",
         "priority": "High", "estimated_hours": 2, "is_mandatory": True},
        {"title": "Reconciliation Analysis",
         "description": "Analyze assessment against books and identify discrepancies",
         "priority": "High", "estimated_hours": 8, "is_mandatory": True},
        {"title": "Draft ASMT-11 Reply",
         "description": "Prepare response to assessment order addressing identified issues",
         "priority": "Medium", "estimated_hours": 12, "is_mandatory": False},
    ],
}


def _build_default_bundles() -> List[Dict[str, Any]]:
    bundles = []
    for stage in STAGE_ORDER:
        bundles.append(_entry_bundle(stage))
        if stage != "Assessment":
            bundles.append(_remand_bundle(stage))
    for stage in HEARING_STAGES:
        bundles.append(_hearing_bundle(stage))
    bundles.append(ASMT10_BUNDLE)
    return bundles


DEFAULT_BUNDLES: List[Dict[str, Any]] = _build_default_bundles()


def calculate_due_date(estimated_hours: float, today: Optional[date] = None) -> str:
    """One calendar day per eight estimated hours, rounded up."""
    today = today or date.today()
    days = math.ceil((estimated_hours or 0) / HOURS_PER_WORK_DAY)
    return (today + timedelta(days=days)).isoformat()


def get_bundles_for_trigger(supabase, tenant_id: str, trigger: str, stage: str) -> List[Dict[str, Any]]:
    bundles = [b for b in DEFAULT_BUNDLES if b["trigger"] == trigger and b["stage_key"] == stage]

    try:
        res = supabase.table("task_bundles")\
            .select("*")\
            .eq("tenant_id", tenant_id)\
            .eq("trigger", trigger)\
            .eq("stage_key", stage)\
            .eq("is_active", True)\
            .execute()
        bundles.extend(res.data or [])
    except Exception as e:
        logger.warning(f"Failed to load custom task bundles for tenant {tenant_id}: {e}")

    return bundles


def trigger_task_bundles(
    supabase,
    tenant_id: str,
    trigger: str,
    stage: str,
    case: Dict[str, Any],
    cycle_no: int = 1,
    user_id: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """
    Create the tasks of every bundle matching trigger and stage for a case.
    Re-triggering for the same case and cycle does not duplicate tasks.
    """
    if not is_feature_enabled(supabase, tenant_id, "stage_task_automation"):
        logger.info(f"Stage task automation disabled for tenant {tenant_id}")
        return []

    created: List[Dict[str, Any]] = []
    for bundle in get_bundles_for_trigger(supabase, tenant_id, trigger, stage):
        created.extend(create_bundle_tasks(supabase, tenant_id, bundle, case, stage, cycle_no, user_id))

    logger.info(f"Bundle trigger {trigger}/{stage} created {len(created)} task(s) for case {case.get('id')}")
    return created


def get_bundle(supabase, tenant_id: str, bundle_id: str) -> Dict[str, Any]:
    for bundle in DEFAULT_BUNDLES:
        if bundle["id"] == bundle_id:
            return bundle
    res = supabase.table("task_bundles").select("*").eq("tenant_id", tenant_id).eq("id", bundle_id).limit(1).execute()
    if not res.data:
        raise LookupError(f"Task bundle {bundle_id} not found")
    return res.data[0]


def create_bundle_tasks(
    supabase,
    tenant_id: str,
    bundle: Dict[str, Any],
    case: Dict[str, Any],
    stage: Optional[str] = None,
    cycle_no: int = 1,
    user_id: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Create the template tasks of one bundle for a case, skipping ones already open."""
    stage = stage or bundle.get("stage_key") or case.get("stage_code")
    created: List[Dict[str, Any]] = []
    for template in bundle.get("tasks") or []:
        try:
            priority = template.get("priority") or "Medium"
            task = create_task(supabase, tenant_id, user_id, TaskCreateRequest(
                title=f"{template['title']} (C{cycle_no})",
                description=template.get("description"),
                case_id=case["id"],
                client_id=case.get("client_id"),
                priority=TaskPriority(priority),
                due_date=calculate_due_date(template.get("estimated_hours") or 0),
                assigned_to=case.get("assigned_to"),
                estimated_hours=template.get("estimated_hours"),
                stage=stage,
                bundle_id=bundle["id"],
                dedup_key=f"bundle:{bundle['id']}:{case['id']}:{cycle_no}:{template['title']}",
            ))
            if not task.get("existing"):
                created.append(task)
        except Exception as e:
            logger.error(f"Failed to create bundle task '{template.get('title')}' for case {case.get('id')}: {e}")
    return created
