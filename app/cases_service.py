"""
Cases Service

Case CRUD with optimistic versioning, stage advancement and the case
timeline. Every write leaves an audit row; user-visible history goes to
case_timeline.
"""

import io
import logging
import time
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd
from pydantic import BaseModel, Field, validator

from app.auth_permissions import write_audit_log
from app.schemas import STAGE_ORDER, CaseStatus, Priority
from app.task_bundles import BundleTrigger, trigger_task_bundles
from app.task_engine import TaskCreateRequest, TaskPriority, create_task
from app.tenant_settings_loader import get_tenant_settings
from app.user_lookup import get_users_display

logger = logging.getLogger(__name__)

# =============================================================================
# SCHEMAS
# =============================================================================

class CaseCreateRequest(BaseModel):
    title: str
    client_id: Optional[str] = None
    case_number: Optional[str] = None
    description: Optional[str] = None
    stage_code: Optional[str] = None
    priority: Optional[Priority] = None
    status: CaseStatus = CaseStatus.ACTIVE
    assigned_to: Optional[str] = None
    notice_type: Optional[str] = None
    notice_no: Optional[str] = None
    notice_date: Optional[date] = None
    reply_due_date: Optional[date] = None
    office_file_no: Optional[str] = None
    tax_demand: Optional[float] = Field(default=None, ge=0)
    period: Optional[str] = None
    authority: Optional[str] = None
    city: Optional[str] = None

    @validator("title")
    def title_required(cls, v):
        if not v or not v.strip():
            raise ValueError("Case title is required")
        return v.strip()

    @validator("stage_code")
    def known_stage(cls, v):
        if v and v not in STAGE_ORDER:
            raise ValueError(f"Unknown stage '{v}'")
        return v

class CaseUpdateRequest(BaseModel):
    version: Optional[int] = None
    title: Optional[str] = None
    client_id: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[Priority] = None
    status: Optional[CaseStatus] = None
    assigned_to: Optional[str] = None
    notice_type: Optional[str] = None
    notice_no: Optional[str] = None
    notice_date: Optional[date] = None
    reply_due_date: Optional[date] = None
    office_file_no: Optional[str] = None
    tax_demand: Optional[float] = Field(default=None, ge=0)
    period: Optional[str] = None
    authority: Optional[str] = None
    city: Optional[str] = None

class StageAdvanceRequest(BaseModel):
    next_stage: str
    notes: Optional[str] = None

class VersionConflictError(Exception):
    """Raised when an update carries a stale record version."""

    def __init__(self, db_version: int, incoming_version: int):
        super().__init__("The record has been modified by another user")
        self.db_version = db_version
        self.incoming_version = incoming_version

# =============================================================================
# HELPERS
# =============================================================================

def _now() -> str:
    return datetime.utcnow().isoformat()

def _jsonable(values: Dict[str, Any]) -> Dict[str, Any]:
    out = {}
    for key, value in values.items():
        if hasattr(value, "value"):
            value = value.value
        elif isinstance(value, date):
            value = value.isoformat()
        out[key] = value
    return out

def generate_case_number(now_ms: Optional[int] = None) -> str:
    """CAS followed by the last six digits of the millisecond clock."""
    now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"CAS{str(now_ms)[-6:]}"

def add_timeline_entry(
    supabase,
    tenant_id: str,
    case_id: str,
    entry_type: str,
    title: str,
    description: Optional[str] = None,
    user_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Optional[Dict[str, Any]]:
    """Append to the case timeline. Failures are logged and swallowed."""
    try:
        res = supabase.table("case_timeline").insert({
            "tenant_id": tenant_id,
            "case_id": case_id,
            "type": entry_type,
            "title": title,
            "description": description,
            "created_by": user_id,
            "metadata": metadata or {},
            "created_at": _now(),
        }).execute()
        return res.data[0] if res.data else None
    except Exception as e:
        logger.warning(f"Failed to write timeline entry {entry_type} for case {case_id}: {e}")
        return None

# =============================================================================
# CRUD
# =============================================================================

def get_case(supabase, tenant_id: str, case_id: str) -> Dict[str, Any]:
    res = supabase.table("cases").select("*").eq("id", case_id).eq("tenant_id", tenant_id).limit(1).execute()
    if not res.data:
        raise LookupError("Case not found")
    return res.data[0]

def list_cases(
    supabase,
    tenant_id: str,
    status: Optional[str] = None,
    stage: Optional[str] = None,
    client_id: Optional[str] = None,
    assigned_to: Optional[str] = None,
    search: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> Tuple[List[Dict[str, Any]], int]:
    query = supabase.table("cases").select("*", count="exact").eq("tenant_id", tenant_id)
    if status:
        query = query.eq("status", status)
    if stage:
        query = query.eq("stage_code", stage)
    if client_id:
        query = query.eq("client_id", client_id)
    if assigned_to:
        query = query.eq("assigned_to", assigned_to)
    if search:
        query = query.ilike("title", f"%{search}%")
    res = query.order("created_at", desc=True).range(offset, offset + limit - 1).execute()
    return res.data or [], res.count or 0

def create_case(supabase, tenant_id: str, user_id: Optional[str], req: CaseCreateRequest) -> Dict[str, Any]:
    defaults = get_tenant_settings(supabase, tenant_id)["defaults"]
    case_number = (req.case_number or "").strip() or generate_case_number()

    dupe = supabase.table("cases").select("id")\
        .eq("tenant_id", tenant_id).eq("case_number", case_number).limit(1).execute()
    if dupe.data:
        raise ValueError(f"Case number {case_number} already exists")

    if req.client_id:
        client = supabase.table("clients").select("id")\
            .eq("id", req.client_id).eq("tenant_id", tenant_id).limit(1).execute()
        if not client.data:
            raise ValueError("Client not found in this tenant")

    row = _jsonable(req.dict(exclude={"case_number", "stage_code", "priority"}))
    row.update({
        "tenant_id": tenant_id,
        "case_number": case_number,
        "stage_code": req.stage_code or defaults.get("default_stage") or "Adjudication",
        "priority": (req.priority.value if req.priority else defaults.get("default_priority")) or "Medium",
        "version": 1,
        "owner_id": user_id,
        "created_by": user_id,
        "created_at": _now(),
        "updated_at": _now(),
    })
    res = supabase.table("cases").insert(row).execute()
    case = res.data[0]

    write_audit_log(supabase, tenant_id, user_id, "create_case", "case", case["id"], {"case_number": case_number})
    add_timeline_entry(supabase, tenant_id, case["id"], "case_created", "Case created",
                       f"Case {case_number} opened at {case['stage_code']}", user_id)

    from app.automation_rule_engine import AutomationEvent, process_event
    try:
        process_event(supabase, AutomationEvent(
            event_type="case_created", tenant_id=tenant_id, case_id=case["id"],
            case_data=case, stage_to=case["stage_code"], triggered_by=user_id,
        ))
    except Exception as e:
        logger.error(f"case_created automation failed for {case['id']}: {e}")

    logger.info(f"Case {case_number} created for tenant {tenant_id}")
    return case

def update_case(supabase, tenant_id: str, case_id: str, user_id: Optional[str], req: CaseUpdateRequest) -> Dict[str, Any]:
    case = get_case(supabase, tenant_id, case_id)
    db_version = case.get("version") or 1

    if req.version is not None and req.version != db_version:
        raise VersionConflictError(db_version, req.version)

    updates = _jsonable(req.dict(exclude_unset=True, exclude={"version"}))
    if "title" in updates and not (updates["title"] or "").strip():
        raise ValueError("Case title is required")
    if not updates:
        return case

    updates["version"] = db_version + 1
    updates["updated_at"] = _now()
    supabase.table("cases").update(updates).eq("id", case_id).eq("tenant_id", tenant_id).execute()

    write_audit_log(supabase, tenant_id, user_id, "update_case", "case", case_id,
                    {"fields": sorted(k for k in updates if k not in ("version", "updated_at"))})
    return {**case, **updates}

def delete_case(supabase, tenant_id: str, case_id: str, user_id: Optional[str]) -> bool:
    case = get_case(supabase, tenant_id, case_id)
    supabase.table("cases").delete().eq("id", case_id).eq("tenant_id", tenant_id).execute()
    write_audit_log(supabase, tenant_id, user_id, "delete_case", "case", case_id, {"case_number": case.get("case_number")})
    return True

# =============================================================================
# STAGE
# =============================================================================

def advance_stage(supabase, tenant_id: str, case_id: str, user_id: Optional[str],
                  next_stage: str, notes: Optional[str] = None) -> Dict[str, Any]:
    if next_stage not in STAGE_ORDER:
        raise ValueError(f"Unknown stage '{next_stage}'")

    case = get_case(supabase, tenant_id, case_id)
    previous = case.get("stage_code")

    add_timeline_entry(
        supabase, tenant_id, case_id, "stage_change",
        f"Stage changed to {next_stage}",
        notes or f"Moved from {previous or 'N/A'} to {next_stage}",
        user_id, {"from_stage": previous, "to_stage": next_stage},
    )

    updates = {"stage_code": next_stage, "updated_at": _now()}
    supabase.table("cases").update(updates).eq("id", case_id).eq("tenant_id", tenant_id).execute()
    case = {**case, **updates}

    tasks = trigger_task_bundles(supabase, tenant_id, BundleTrigger.ON_STAGE_ENTER.value, next_stage, case, user_id=user_id)

    if next_stage == "Assessment":
        verification = create_task(supabase, tenant_id, user_id, TaskCreateRequest(
            title="Document Verification",
            description="Verify all documents received for the assessment stage",
            case_id=case_id,
            client_id=case.get("client_id"),
            priority=TaskPriority.HIGH,
            due_date=(date.today() + timedelta(days=7)).isoformat(),
            assigned_to=case.get("assigned_to"),
            stage=next_stage,
        ))
        tasks.append(verification)

    write_audit_log(supabase, tenant_id, user_id, "advance_stage", "case", case_id,
                    {"from_stage": previous, "to_stage": next_stage})
    return {"case": case, "tasks_created": len(tasks)}

# =============================================================================
# TIMELINE
# =============================================================================

def get_timeline(supabase, tenant_id: str, case_id: str) -> List[Dict[str, Any]]:
    res = supabase.table("case_timeline").select("*")\
        .eq("tenant_id", tenant_id).eq("case_id", case_id)\
        .order("created_at", desc=True).execute()
    return res.data or []

def export_timeline_csv(supabase, tenant_id: str, case_id: str) -> str:
    get_case(supabase, tenant_id, case_id)
    entries = get_timeline(supabase, tenant_id, case_id)
    actors = get_users_display(supabase, [e.get("created_by") for e in entries])

    df = pd.DataFrame(
        [
            {
                "Date": str(e.get("created_at") or "")[:19].replace("T", " "),
                "Actor": actors.get(e.get("created_by"), "System"),
                "Action": e.get("title") or e.get("type"),
                "Notes": e.get("description") or "",
            }
            for e in entries
        ],
        columns=["Date", "Actor", "Action", "Notes"],
    )
    buf = io.StringIO()
    df.to_csv(buf, index=False)
    return buf.getvalue()
