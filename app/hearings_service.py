"""
Hearings Service

Scheduling, updates and outcomes of case hearings. An adjournment can roll
the hearing forward by creating the next one automatically.
"""

import logging
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, validator

from app.cases_service import add_timeline_entry, get_case
from app.courts_service import get_court
from app.task_bundles import BundleTrigger, trigger_task_bundles

logger = logging.getLogger(__name__)


class HearingStatus(str, Enum):
    SCHEDULED = "scheduled"
    CONCLUDED = "concluded"
    ADJOURNED = "adjourned"
    CANCELLED = "cancelled"


class HearingOutcome(str, Enum):
    ADJOURNMENT = "Adjournment"
    ALLOWED = "Allowed"
    DISMISSED = "Dismissed"
    PARTLY_ALLOWED = "Partly Allowed"
    REMANDED = "Remanded"
    WITHDRAWN = "Withdrawn"
    ORDER_RESERVED = "Order Reserved"
    OTHER = "Other"


DEFAULT_START_TIME = "10:00"
DEFAULT_END_TIME = "11:00"


class HearingCreateRequest(BaseModel):
    case_id: str
    hearing_date: date
    start_time: str = DEFAULT_START_TIME
    end_time: str = DEFAULT_END_TIME
    timezone: str = "Asia/Kolkata"
    court_id: Optional[str] = None
    judge_ids: List[str] = []
    authority_id: Optional[str] = None
    forum_id: Optional[str] = None
    stage_instance_id: Optional[str] = None
    hearing_type: Optional[str] = None
    agenda: Optional[str] = None
    notes: Optional[str] = None

    @validator("start_time", "end_time")
    def hh_mm(cls, v):
        datetime.strptime(v, "%H:%M")
        return v


class HearingUpdateRequest(BaseModel):
    hearing_date: Optional[date] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    court_id: Optional[str] = None
    judge_ids: Optional[List[str]] = None
    hearing_type: Optional[str] = None
    agenda: Optional[str] = None
    notes: Optional[str] = None
    status: Optional[HearingStatus] = None


class HearingOutcomeRequest(BaseModel):
    outcome: HearingOutcome
    outcome_text: Optional[str] = None
    next_hearing_date: Optional[date] = None
    auto_create_next: bool = False


def _now() -> str:
    return datetime.utcnow().isoformat()


def get_hearing(supabase, tenant_id: str, hearing_id: str) -> Dict[str, Any]:
    res = supabase.table("hearings").select("*").eq("id", hearing_id).eq("tenant_id", tenant_id).limit(1).execute()
    if not res.data:
        raise LookupError("Hearing not found")
    return res.data[0]


def _ensure_bench(supabase, tenant_id: str, court_id: Optional[str], judge_ids: Optional[List[str]]):
    if court_id:
        get_court(supabase, tenant_id, court_id)
    for judge_id in judge_ids or []:
        res = supabase.table("judges").select("id").eq("id", judge_id).eq("tenant_id", tenant_id).limit(1).execute()
        if not res.data:
            raise LookupError("Judge not found")


def create_hearing(supabase, tenant_id: str, user_id: Optional[str], req: HearingCreateRequest) -> Dict[str, Any]:
    case = get_case(supabase, tenant_id, req.case_id)
    _ensure_bench(supabase, tenant_id, req.court_id, req.judge_ids)

    row = {
        **req.dict(),
        "hearing_date": req.hearing_date.isoformat(),
        "tenant_id": tenant_id,
        "status": HearingStatus.SCHEDULED.value,
        "created_by": user_id,
        "created_at": _now(),
    }
    hearing = supabase.table("hearings").insert(row).execute().data[0]

    add_timeline_entry(
        supabase, tenant_id, req.case_id, "hearing_scheduled",
        f"Hearing scheduled for {row['hearing_date']}",
        req.agenda, user_id, {"hearing_id": hearing["id"]},
    )

    stage = case.get("stage_code")
    if stage:
        try:
            trigger_task_bundles(supabase, tenant_id, BundleTrigger.ON_HEARING_SCHEDULED.value, stage, case, user_id=user_id)
        except Exception as e:
            logger.error(f"Hearing bundle trigger failed for case {req.case_id}: {e}")

    from app.automation_rule_engine import AutomationEvent, process_event
    try:
        process_event(supabase, AutomationEvent(
            event_type="hearing_scheduled", tenant_id=tenant_id, case_id=req.case_id,
            hearing_id=hearing["id"], case_data=case, triggered_by=user_id,
        ))
    except Exception as e:
        logger.error(f"hearing_scheduled automation failed for case {req.case_id}: {e}")

    return hearing


def update_hearing(supabase, tenant_id: str, hearing_id: str, user_id: Optional[str], req: HearingUpdateRequest) -> Dict[str, Any]:
    hearing = get_hearing(supabase, tenant_id, hearing_id)
    updates = req.dict(exclude_unset=True)
    if not updates:
        return hearing
    _ensure_bench(supabase, tenant_id, updates.get("court_id"), updates.get("judge_ids"))
    if updates.get("hearing_date"):
        updates["hearing_date"] = updates["hearing_date"].isoformat()
    if updates.get("status"):
        updates["status"] = updates["status"].value
    updates["updated_at"] = _now()

    supabase.table("hearings").update(updates).eq("id", hearing_id).execute()
    add_timeline_entry(
        supabase, tenant_id, hearing["case_id"], "hearing_updated", "Hearing updated",
        ", ".join(sorted(k for k in updates if k != "updated_at")), user_id, {"hearing_id": hearing_id},
    )
    return {**hearing, **updates}


def record_outcome(supabase, tenant_id: str, hearing_id: str, user_id: Optional[str], req: HearingOutcomeRequest) -> Dict[str, Any]:
    """Conclude a hearing; an adjournment with a next date may book the follow-on hearing."""
    hearing = get_hearing(supabase, tenant_id, hearing_id)

    updates = {
        "status": HearingStatus.CONCLUDED.value,
        "outcome": req.outcome.value,
        "outcome_text": req.outcome_text,
        "next_hearing_date": req.next_hearing_date.isoformat() if req.next_hearing_date else None,
        "updated_at": _now(),
    }
    supabase.table("hearings").update(updates).eq("id", hearing_id).execute()

    next_hearing = None
    if req.outcome == HearingOutcome.ADJOURNMENT and req.auto_create_next and req.next_hearing_date:
        next_hearing = supabase.table("hearings").insert({
            "tenant_id": tenant_id,
            "case_id": hearing["case_id"],
            "court_id": hearing.get("court_id"),
            "judge_ids": hearing.get("judge_ids") or [],
            "stage_instance_id": hearing.get("stage_instance_id"),
            "hearing_type": hearing.get("hearing_type"),
            "hearing_date": req.next_hearing_date.isoformat(),
            "start_time": hearing.get("start_time") or DEFAULT_START_TIME,
            "end_time": hearing.get("end_time") or DEFAULT_END_TIME,
            "timezone": hearing.get("timezone") or "Asia/Kolkata",
            "status": HearingStatus.SCHEDULED.value,
            "notes": f"Adjourned from {hearing.get('hearing_date')}",
            "created_by": user_id,
            "created_at": _now(),
        }).execute().data[0]

    add_timeline_entry(
        supabase, tenant_id, hearing["case_id"], "hearing_outcome",
        f"Hearing outcome: {req.outcome.value}", req.outcome_text, user_id,
        {"hearing_id": hearing_id, "next_hearing_id": next_hearing["id"] if next_hearing else None},
    )
    return {"hearing": {**hearing, **updates}, "next_hearing": next_hearing}


def delete_hearing(supabase, tenant_id: str, hearing_id: str) -> bool:
    get_hearing(supabase, tenant_id, hearing_id)
    supabase.table("hearings").delete().eq("id", hearing_id).execute()
    return True


def list_hearings(
    supabase,
    tenant_id: str,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    case_id: Optional[str] = None,
    status: Optional[str] = None,
) -> List[Dict[str, Any]]:
    query = supabase.table("hearings").select("*").eq("tenant_id", tenant_id)
    if date_from:
        query = query.gte("hearing_date", date_from.isoformat())
    if date_to:
        query = query.lte("hearing_date", date_to.isoformat())
    if case_id:
        query = query.eq("case_id", case_id)
    if status:
        query = query.eq("status", status)
    return query.order("hearing_date").execute().data or []


def get_upcoming_hearings(supabase, tenant_id: str, days: int = 7, today: Optional[date] = None) -> List[Dict[str, Any]]:
    today = today or date.today()
    return list_hearings(
        supabase, tenant_id,
        date_from=today, date_to=today + timedelta(days=days),
        status=HearingStatus.SCHEDULED.value,
    )
