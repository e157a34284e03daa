"""
Statutory Deadlines

Holiday calendar, statutory event types and per-case deadlines. Deadline
arithmetic is pure (holidays are passed in) so it can be used for previews
without touching the database.
"""

import calendar
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field, validator

logger = logging.getLogger(__name__)

# =============================================================================
# TYPES
# =============================================================================

class DeadlineType(str, Enum):
    DAYS = "days"
    MONTHS = "months"
    WORKING_DAYS = "working_days"

class DeadlineRecordStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    EXTENDED = "extended"
    MISSED = "missed"
    WAIVED = "waived"

OPEN_DEADLINE_STATUSES = [DeadlineRecordStatus.PENDING.value, DeadlineRecordStatus.EXTENDED.value]

DEFAULT_REPLY_DAYS = 30

DEFAULT_EVENT_TYPE: Dict[str, Any] = {
    "id": "default",
    "code": "DEFAULT",
    "name": "Default Reply Period",
    "deadline_type": DeadlineType.DAYS.value,
    "deadline_count": DEFAULT_REPLY_DAYS,
    "extension_allowed": False,
    "max_extension_count": 0,
    "extension_days": 0,
    "is_active": True,
}

@dataclass
class DeadlineResult:
    calculated_deadline: date
    extension_deadline: Optional[date]
    days_remaining: int
    status: str
    status_color: str
    event_type: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "calculated_deadline": self.calculated_deadline.isoformat(),
            "extension_deadline": self.extension_deadline.isoformat() if self.extension_deadline else None,
            "days_remaining": self.days_remaining,
            "status": self.status,
            "status_color": self.status_color,
            "event_type": {
                "id": self.event_type.get("id"),
                "code": self.event_type.get("code"),
                "name": self.event_type.get("name"),
            },
        }

class HolidayRequest(BaseModel):
    date: date
    name: str
    state: str = "ALL"
    type: Optional[str] = None
    is_active: bool = True

    @validator("name")
    def name_required(cls, v):
        if not v or not v.strip():
            raise ValueError("Holiday name is required")
        return v.strip()

class EventTypeRequest(BaseModel):
    code: str
    name: str
    act_id: Optional[str] = None
    base_date_type: str = "notice_date"
    deadline_type: DeadlineType = DeadlineType.DAYS
    deadline_count: int = Field(ge=0)
    extension_allowed: bool = False
    max_extension_count: int = Field(default=0, ge=0)
    extension_days: int = Field(default=0, ge=0)
    legal_reference: Optional[str] = None
    is_active: bool = True

class DeadlineCreateRequest(BaseModel):
    case_id: str
    event_type_id: str
    base_date: date
    remarks: Optional[str] = None

def _to_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])

# =============================================================================
# CALENDAR ARITHMETIC
# =============================================================================

def add_months(base: date, months: int) -> date:
    """Calendar month addition, clamped to the last day of the target month."""
    month_index = base.month - 1 + months
    year = base.year + month_index // 12
    month = month_index % 12 + 1
    day = min(base.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)

def is_holiday(day: date, holidays: Iterable[Dict[str, Any]], state: Optional[str] = None) -> bool:
    iso = day.isoformat()
    for holiday in holidays:
        if str(holiday.get("date"))[:10] != iso:
            continue
        if not state or holiday.get("state") == "ALL" or holiday.get("state") == state:
            return True
    return False

def is_working_day(day: date, holidays: Iterable[Dict[str, Any]], state: Optional[str] = None) -> bool:
    if day.weekday() >= 5:
        return False
    return not is_holiday(day, holidays, state)

def add_working_days(base: date, count: int, holidays: List[Dict[str, Any]], state: Optional[str] = None) -> date:
    current = base
    added = 0
    while added < count:
        current += timedelta(days=1)
        if is_working_day(current, holidays, state):
            added += 1
    return current

def working_days_between(start: date, end: date, holidays: List[Dict[str, Any]], state: Optional[str] = None) -> int:
    """Working days in the inclusive range [start, end]."""
    count = 0
    current = start
    while current <= end:
        if is_working_day(current, holidays, state):
            count += 1
        current += timedelta(days=1)
    return count

def deadline_status(days_remaining: int):
    """Map days remaining to (status, color)."""
    if days_remaining < 0:
        return "overdue", "red"
    if days_remaining <= 7:
        return "critical", "red"
    if days_remaining <= 15:
        return "warning", "orange"
    return "safe", "green"

def calculate_deadline(
    base_date,
    event_type: Dict[str, Any],
    holidays: Optional[List[Dict[str, Any]]] = None,
    state: Optional[str] = None,
    today: Optional[date] = None,
) -> DeadlineResult:
    base = _to_date(base_date)
    count = int(event_type.get("deadline_count") or 0)
    kind = event_type.get("deadline_type")

    if kind == DeadlineType.MONTHS.value:
        deadline = add_months(base, count)
    elif kind == DeadlineType.WORKING_DAYS.value:
        deadline = add_working_days(base, count, holidays or [], state)
    else:
        deadline = base + timedelta(days=count)

    extension = None
    extension_days = int(event_type.get("extension_days") or 0)
    if event_type.get("extension_allowed") and extension_days > 0:
        extension = deadline + timedelta(days=extension_days)

    days_remaining = (deadline - (today or date.today())).days
    status, color = deadline_status(days_remaining)
    return DeadlineResult(deadline, extension, days_remaining, status, color, event_type)

# =============================================================================
# HOLIDAYS
# =============================================================================

def list_holidays(supabase, tenant_id: str, year: Optional[int] = None) -> List[Dict[str, Any]]:
    query = supabase.table("holidays").select("*").eq("tenant_id", tenant_id).eq("is_active", True)
    if year:
        query = query.gte("date", f"{year}-01-01").lte("date", f"{year}-12-31")
    return query.order("date").execute().data or []

def load_holidays_for_range(supabase, tenant_id: str, start: date, end: date) -> List[Dict[str, Any]]:
    res = supabase.table("holidays")\
        .select("*")\
        .eq("tenant_id", tenant_id)\
        .eq("is_active", True)\
        .gte("date", start.isoformat())\
        .lte("date", end.isoformat())\
        .execute()
    return res.data or []

def create_holiday(supabase, tenant_id: str, user_id: Optional[str], req: HolidayRequest) -> Dict[str, Any]:
    row = {**req.dict(), "date": req.date.isoformat(), "tenant_id": tenant_id, "created_by": user_id}
    return supabase.table("holidays").insert(row).execute().data[0]

def update_holiday(supabase, tenant_id: str, holiday_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
    changes = {k: v for k, v in updates.items() if k in ("date", "name", "state", "type", "is_active")}
    if "date" in changes:
        changes["date"] = _to_date(changes["date"]).isoformat()
    res = supabase.table("holidays").update(changes).eq("id", holiday_id).eq("tenant_id", tenant_id).execute()
    if not res.data:
        raise LookupError("Holiday not found")
    return res.data[0]

def delete_holiday(supabase, tenant_id: str, holiday_id: str) -> bool:
    res = supabase.table("holidays").delete().eq("id", holiday_id).eq("tenant_id", tenant_id).execute()
    if not res.data:
        raise LookupError("Holiday not found")
    return True

# =============================================================================
# EVENT TYPES
# =============================================================================

def list_event_types(supabase, tenant_id: str, active_only: bool = True) -> List[Dict[str, Any]]:
    query = supabase.table("statutory_event_types").select("*").eq("tenant_id", tenant_id)
    if active_only:
        query = query.eq("is_active", True)
    return query.order("name").execute().data or []

def get_event_type(supabase, tenant_id: str, event_type_id: str) -> Dict[str, Any]:
    res = supabase.table("statutory_event_types").select("*")\
        .eq("id", event_type_id).eq("tenant_id", tenant_id).limit(1).execute()
    if not res.data:
        raise LookupError("Event type not found")
    return res.data[0]

def create_event_type(supabase, tenant_id: str, user_id: Optional[str], req: EventTypeRequest) -> Dict[str, Any]:
    row = {**req.dict(), "deadline_type": req.deadline_type.value, "tenant_id": tenant_id, "created_by": user_id}
    return supabase.table("statutory_event_types").insert(row).execute().data[0]

def update_event_type(supabase, tenant_id: str, event_type_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
    current = get_event_type(supabase, tenant_id, event_type_id)
    changes = {k: v for k, v in updates.items() if k in EventTypeRequest.__fields__}
    if "deadline_type" in changes:
        changes["deadline_type"] = DeadlineType(changes["deadline_type"]).value
    supabase.table("statutory_event_types").update(changes).eq("id", event_type_id).execute()
    return {**current, **changes}

def delete_event_type(supabase, tenant_id: str, event_type_id: str) -> bool:
    get_event_type(supabase, tenant_id, event_type_id)
    linked = supabase.table("case_statutory_deadlines").select("id").eq("event_type_id", event_type_id).limit(1).execute()
    if linked.data:
        raise ValueError("Cannot delete: This event type has deadlines linked to it")
    supabase.table("statutory_event_types").delete().eq("id", event_type_id).execute()
    return True

# =============================================================================
# CASE DEADLINES
# =============================================================================

def _deadline_with_holidays(supabase, tenant_id: str, base: date, event_type: Dict[str, Any],
                            state: Optional[str] = None, today: Optional[date] = None):
    holidays: List[Dict[str, Any]] = []
    if event_type.get("deadline_type") == DeadlineType.WORKING_DAYS.value:
        # window covers weekends plus a margin for holidays
        span = int(event_type.get("deadline_count") or 0) * 2 + 30
        holidays = load_holidays_for_range(supabase, tenant_id, base, base + timedelta(days=span))
    return calculate_deadline(base, event_type, holidays, state, today)

def calculate_reply_deadline(supabase, tenant_id: str, notice_date, notice_type: Optional[str] = None,
                             today: Optional[date] = None) -> DeadlineResult:
    """
    Pick the event type for a notice and compute its reply deadline.

    Match order: event type code containing the notice type, then a show
    cause notice type, then a flat 30 days.
    """
    base = _to_date(notice_date)
    event_types = list_event_types(supabase, tenant_id)

    event_type = None
    if notice_type:
        needle = notice_type.lower()
        event_type = next((et for et in event_types if needle in (et.get("code") or "").lower()), None)
    if not event_type:
        event_type = next(
            (et for et in event_types
             if et.get("code") in ("SCN", "GST_SCN") or "show cause" in (et.get("name") or "").lower()),
            None,
        )

    if event_type:
        return _deadline_with_holidays(supabase, tenant_id, base, event_type, today=today)

    deadline = base + timedelta(days=DEFAULT_REPLY_DAYS)
    days_remaining = (deadline - (today or date.today())).days
    if days_remaining < 0:
        status, color = "overdue", "red"
    elif days_remaining <= 15:
        status, color = "warning", "orange"
    else:
        status, color = "safe", "green"
    return DeadlineResult(deadline, None, days_remaining, status, color, DEFAULT_EVENT_TYPE)

def get_deadline(supabase, tenant_id: str, deadline_id: str) -> Dict[str, Any]:
    res = supabase.table("case_statutory_deadlines").select("*")\
        .eq("id", deadline_id).eq("tenant_id", tenant_id).limit(1).execute()
    if not res.data:
        raise LookupError("Deadline not found")
    return res.data[0]

def list_case_deadlines(supabase, tenant_id: str, case_id: str) -> List[Dict[str, Any]]:
    res = supabase.table("case_statutory_deadlines").select("*")\
        .eq("tenant_id", tenant_id).eq("case_id", case_id).order("calculated_deadline").execute()
    return res.data or []

def create_deadline(supabase, tenant_id: str, user_id: Optional[str], req: DeadlineCreateRequest) -> Dict[str, Any]:
    event_type = get_event_type(supabase, tenant_id, req.event_type_id)
    result = _deadline_with_holidays(supabase, tenant_id, req.base_date, event_type)

    row = {
        "tenant_id": tenant_id,
        "case_id": req.case_id,
        "event_type_id": req.event_type_id,
        "base_date": req.base_date.isoformat(),
        "calculated_deadline": result.calculated_deadline.isoformat(),
        "extension_deadline": result.extension_deadline.isoformat() if result.extension_deadline else None,
        "extension_count": 0,
        "status": DeadlineRecordStatus.PENDING.value,
        "remarks": req.remarks,
        "created_by": user_id,
    }
    created = supabase.table("case_statutory_deadlines").insert(row).execute().data[0]
    logger.info(f"Deadline {created.get('id')} for case {req.case_id} due {row['calculated_deadline']}")
    return created

def apply_extension(supabase, tenant_id: str, deadline_id: str, extension_days: int,
                    remarks: Optional[str] = None) -> Dict[str, Any]:
    if extension_days <= 0:
        raise ValueError("Extension days must be positive")

    current = get_deadline(supabase, tenant_id, deadline_id)
    event_type = get_event_type(supabase, tenant_id, current["event_type_id"])

    if not event_type.get("extension_allowed"):
        raise ValueError("Extension is not allowed for this deadline type")
    max_count = int(event_type.get("max_extension_count") or 0)
    count = int(current.get("extension_count") or 0)
    if count >= max_count:
        raise ValueError(f"Maximum extensions ({max_count}) already applied")

    base = _to_date(current.get("extension_deadline") or current["calculated_deadline"])
    new_remarks = current.get("remarks")
    if remarks:
        new_remarks = f"{current.get('remarks') or ''}\n{remarks}".strip()

    updates = {
        "extension_deadline": (base + timedelta(days=extension_days)).isoformat(),
        "extension_count": count + 1,
        "status": DeadlineRecordStatus.EXTENDED.value,
        "remarks": new_remarks,
    }
    supabase.table("case_statutory_deadlines").update(updates).eq("id", deadline_id).execute()
    return {**current, **updates}

def update_status(supabase, tenant_id: str, deadline_id: str, status: str,
                  completed_date: Optional[str] = None) -> Dict[str, Any]:
    current = get_deadline(supabase, tenant_id, deadline_id)
    updates: Dict[str, Any] = {"status": DeadlineRecordStatus(status).value}
    if status == DeadlineRecordStatus.COMPLETED.value:
        updates["completed_date"] = completed_date or date.today().isoformat()
    supabase.table("case_statutory_deadlines").update(updates).eq("id", deadline_id).execute()
    return {**current, **updates}

def get_upcoming(supabase, tenant_id: str, days: int = 30, today: Optional[date] = None) -> List[Dict[str, Any]]:
    today = today or date.today()
    res = supabase.table("case_statutory_deadlines")\
        .select("*")\
        .eq("tenant_id", tenant_id)\
        .in_("status", OPEN_DEADLINE_STATUSES)\
        .gte("calculated_deadline", today.isoformat())\
        .lte("calculated_deadline", (today + timedelta(days=days)).isoformat())\
        .order("calculated_deadline")\
        .execute()
    return res.data or []

def get_overdue(supabase, tenant_id: str, today: Optional[date] = None) -> List[Dict[str, Any]]:
    today = today or date.today()
    res = supabase.table("case_statutory_deadlines")\
        .select("*")\
        .eq("tenant_id", tenant_id)\
        .in_("status", OPEN_DEADLINE_STATUSES)\
        .lt("calculated_deadline", today.isoformat())\
        .order("calculated_deadline")\
        .execute()
    return res.data or []
