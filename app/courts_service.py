"""
Courts & judges master data.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, validator

logger = logging.getLogger(__name__)


class CourtType(str, Enum):
    SUPREME_COURT = "Supreme Court"
    HIGH_COURT = "High Court"
    TRIBUNAL = "Tribunal"
    APPELLATE_AUTHORITY = "Appellate Authority"
    ADJUDICATING_AUTHORITY = "Adjudicating Authority"
    OTHER = "Other"


class CourtRequest(BaseModel):
    name: str
    type: CourtType = CourtType.OTHER
    jurisdiction: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    bench_location: Optional[str] = None
    status: str = "Active"

    @validator("name")
    def name_required(cls, v):
        if not v or not v.strip():
            raise ValueError("Court name is required")
        return v.strip()


class JudgeRequest(BaseModel):
    name: str
    court_id: str
    designation: Optional[str] = None
    bench: Optional[str] = None
    specialization: List[str] = []
    email: Optional[str] = None
    phone: Optional[str] = None
    status: str = "Active"

    @validator("name")
    def name_required(cls, v):
        if not v or not v.strip():
            raise ValueError("Judge name is required")
        return v.strip()


def _now() -> str:
    return datetime.utcnow().isoformat()

# --- courts ---

def list_courts(supabase, tenant_id: str, court_type: Optional[str] = None, status: Optional[str] = None) -> List[Dict[str, Any]]:
    query = supabase.table("courts").select("*").eq("tenant_id", tenant_id)
    if court_type:
        query = query.eq("type", court_type)
    if status:
        query = query.eq("status", status)
    return query.order("name").execute().data or []


def get_court(supabase, tenant_id: str, court_id: str) -> Dict[str, Any]:
    res = supabase.table("courts").select("*").eq("id", court_id).eq("tenant_id", tenant_id).limit(1).execute()
    if not res.data:
        raise LookupError("Court not found")
    return res.data[0]


def create_court(supabase, tenant_id: str, user_id: Optional[str], req: CourtRequest) -> Dict[str, Any]:
    row = {**req.dict(), "type": req.type.value, "tenant_id": tenant_id, "created_by": user_id, "created_at": _now()}
    return supabase.table("courts").insert(row).execute().data[0]


def update_court(supabase, tenant_id: str, court_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
    court = get_court(supabase, tenant_id, court_id)
    changes = {k: v for k, v in updates.items() if k in CourtRequest.__fields__}
    if "name" in changes and not (changes["name"] or "").strip():
        raise ValueError("Court name is required")
    if "type" in changes:
        changes["type"] = CourtType(changes["type"]).value
    changes["updated_at"] = _now()
    supabase.table("courts").update(changes).eq("id", court_id).execute()
    return {**court, **changes}


def delete_court(supabase, tenant_id: str, court_id: str) -> bool:
    get_court(supabase, tenant_id, court_id)
    hearings = supabase.table("hearings").select("id").eq("court_id", court_id).limit(1).execute()
    if hearings.data:
        raise ValueError("Cannot delete a court that has hearings")
    supabase.table("courts").delete().eq("id", court_id).execute()
    return True

# --- judges ---

def list_judges(supabase, tenant_id: str, court_id: Optional[str] = None) -> List[Dict[str, Any]]:
    query = supabase.table("judges").select("*").eq("tenant_id", tenant_id)
    if court_id:
        query = query.eq("court_id", court_id)
    return query.order("name").execute().data or []


def get_judge(supabase, tenant_id: str, judge_id: str) -> Dict[str, Any]:
    res = supabase.table("judges").select("*").eq("id", judge_id).eq("tenant_id", tenant_id).limit(1).execute()
    if not res.data:
        raise LookupError("Judge not found")
    return res.data[0]


def create_judge(supabase, tenant_id: str, user_id: Optional[str], req: JudgeRequest) -> Dict[str, Any]:
    get_court(supabase, tenant_id, req.court_id)
    row = {**req.dict(), "tenant_id": tenant_id, "created_by": user_id, "created_at": _now()}
    return supabase.table("judges").insert(row).execute().data[0]


def update_judge(supabase, tenant_id: str, judge_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
    judge = get_judge(supabase, tenant_id, judge_id)
    changes = {k: v for k, v in updates.items() if k in JudgeRequest.__fields__}
    if "name" in changes and not (changes["name"] or "").strip():
        raise ValueError("Judge name is required")
    if changes.get("court_id"):
        get_court(supabase, tenant_id, changes["court_id"])
    changes["updated_at"] = _now()
    supabase.table("judges").update(changes).eq("id", judge_id).execute()
    return {**judge, **changes}
