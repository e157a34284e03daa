"""
Reminders

Email reminders for statutory deadlines and scheduled hearings. Meant to run
once a day from cron or the worker; each item is reminded at most once per
day, tracked through audit_log.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from app.auth_permissions import write_audit_log
from app.email_utils import render_reminder_email, send_email
from app.tenant_settings_loader import get_tenant_settings

logger = logging.getLogger(__name__)

REMINDER_DAYS = [7, 3, 1, 0]
HEARING_REMINDER_DAYS = [1, 3, 7]


def get_reminder_type(days_remaining: int) -> str:
    if days_remaining <= 0:
        return "today"
    if days_remaining == 1:
        return "tomorrow"
    if days_remaining <= 3:
        return "approaching"
    return "upcoming"


def get_urgency_label(days_remaining: int) -> str:
    if days_remaining <= 0:
        return "URGENT"
    if days_remaining == 1:
        return "Tomorrow"
    if days_remaining <= 3:
        return "Reminder"
    return "Upcoming"


def _days_text(days: int) -> str:
    if days <= 0:
        return "today"
    if days == 1:
        return "tomorrow"
    return f"in {days} days"


def _new_result() -> Dict[str, Any]:
    return {"success": True, "sent": 0, "failed": 0, "skipped": 0, "total": 0, "logs": []}


def _merge(into: Dict[str, Any], other: Dict[str, Any]):
    for key in ("sent", "failed", "skipped", "total"):
        into[key] += other[key]
    into["logs"].extend(other["logs"])


def _tenant_ids(supabase, tenant_id: Optional[str]) -> List[str]:
    if tenant_id:
        return [tenant_id]
    res = supabase.table("tenants").select("id").execute()
    return [row["id"] for row in res.data or []]


def _by_id(supabase, table: str, ids, columns: str = "*") -> Dict[str, Dict[str, Any]]:
    ids = list({i for i in ids if i})
    if not ids:
        return {}
    res = supabase.table(table).select(columns).in_("id", ids).execute()
    return {row["id"]: row for row in res.data or []}


def _assignee_emails(supabase, user_ids) -> Dict[str, str]:
    employees = _by_id(supabase, "employees", user_ids, "id, official_email, email")
    return {
        uid: row.get("official_email") or row.get("email")
        for uid, row in employees.items()
        if row.get("official_email") or row.get("email")
    }


def _already_sent_today(supabase, entity_type: str, entity_id: str, action: str, today: date) -> bool:
    res = supabase.table("audit_log")\
        .select("id")\
        .eq("entity_type", entity_type)\
        .eq("entity_id", entity_id)\
        .eq("action_type", action)\
        .gte("timestamp", today.isoformat())\
        .limit(1)\
        .execute()
    return bool(res.data)


def _deliver(recipients: List[str], subject: str, body: Dict[str, str], sender: Callable) -> List[str]:
    failures = []
    for address in recipients:
        if not sender(address, subject, body["html"], body["text"]):
            failures.append(address)
    return failures

# =============================================================================
# STATUTORY DEADLINES
# =============================================================================

def _send_tenant_deadline_reminders(supabase, tenant_id: str, today: date, sender: Callable) -> Dict[str, Any]:
    result = _new_result()
    settings = get_tenant_settings(supabase, tenant_id)
    reminder_days = settings["defaults"].get("reminder_days") or REMINDER_DAYS
    targets = [(today + timedelta(days=d)).isoformat() for d in reminder_days]

    res = supabase.table("case_statutory_deadlines")\
        .select("id, case_id, event_type_id, calculated_deadline, status, tenant_id")\
        .eq("tenant_id", tenant_id)\
        .eq("status", "pending")\
        .in_("calculated_deadline", targets)\
        .execute()
    deadlines = res.data or []
    result["total"] = len(deadlines)
    if not deadlines:
        return result

    event_types = _by_id(supabase, "statutory_event_types", [d.get("event_type_id") for d in deadlines], "id, name, code")
    cases = _by_id(supabase, "cases", [d.get("case_id") for d in deadlines], "id, case_number, title, assigned_to, client_id")
    clients = _by_id(supabase, "clients", [c.get("client_id") for c in cases.values()], "id, display_name, email")
    emails = _assignee_emails(supabase, [c.get("assigned_to") for c in cases.values()])

    for deadline in deadlines:
        try:
            if _already_sent_today(supabase, "deadline", deadline["id"], "reminder_sent", today):
                result["skipped"] += 1
                continue

            case = cases.get(deadline.get("case_id")) or {}
            client = clients.get(case.get("client_id")) or {}
            recipients = [e for e in (client.get("email"), emails.get(case.get("assigned_to"))) if e]
            recipients = list(dict.fromkeys(recipients))
            if not recipients:
                result["skipped"] += 1
                continue

            days_remaining = (date.fromisoformat(str(deadline["calculated_deadline"])[:10]) - today).days
            reminder_type = get_reminder_type(days_remaining)
            event_name = (event_types.get(deadline.get("event_type_id")) or {}).get("name") or "Deadline"
            subject = f"{get_urgency_label(days_remaining)} - {event_name}: {case.get('case_number', '')}"
            body = render_reminder_email(
                f"{event_name} due {_days_text(days_remaining)}",
                f"A statutory deadline is due {_days_text(days_remaining)}.",
                [
                    ("Case", f"{case.get('case_number', '')} - {case.get('title', '')}"),
                    ("Client", client.get("display_name") or ""),
                    ("Deadline", str(deadline["calculated_deadline"])[:10]),
                    ("Event", event_name),
                ],
                case.get("id"),
            )

            failures = _deliver(recipients, subject, body, sender)
            success = not failures
            log = {
                "deadline_id": deadline["id"],
                "case_id": deadline.get("case_id"),
                "type": f"statutory_deadline_{reminder_type}",
                "channels": ["email"],
                "recipients": recipients,
                "sent_at": datetime.utcnow().isoformat(),
                "success": success,
                "error_message": f"Failed for {', '.join(failures)}" if failures else None,
            }
            result["logs"].append(log)
            result["sent" if success else "failed"] += 1

            write_audit_log(supabase, tenant_id, None, "reminder_sent", "deadline", deadline["id"], {
                "reminder_type": reminder_type,
                "days_remaining": days_remaining,
                "channels": ["email"],
                "recipients": recipients,
                "success": success,
                "error_message": log["error_message"],
            })
        except Exception as e:
            logger.error(f"Failed to process deadline reminder {deadline.get('id')}: {e}")
            result["failed"] += 1

    return result


def send_deadline_reminders(supabase, tenant_id: Optional[str] = None, today: Optional[date] = None,
                            sender: Callable = send_email) -> Dict[str, Any]:
    today = today or date.today()
    result = _new_result()
    for tid in _tenant_ids(supabase, tenant_id):
        _merge(result, _send_tenant_deadline_reminders(supabase, tid, today, sender))
    logger.info(f"Deadline reminders: sent={result['sent']} failed={result['failed']} skipped={result['skipped']}")
    return result

# =============================================================================
# HEARINGS
# =============================================================================

def _send_tenant_hearing_reminders(supabase, tenant_id: str, today: date, sender: Callable) -> Dict[str, Any]:
    result = _new_result()
    settings = get_tenant_settings(supabase, tenant_id)
    days = settings["defaults"].get("hearing_reminder_days") or HEARING_REMINDER_DAYS
    targets = [(today + timedelta(days=d)).isoformat() for d in days]

    res = supabase.table("hearings")\
        .select("id, case_id, court_id, hearing_date, start_time, status, tenant_id")\
        .eq("tenant_id", tenant_id)\
        .eq("status", "scheduled")\
        .in_("hearing_date", targets)\
        .execute()
    hearings = res.data or []
    result["total"] = len(hearings)
    if not hearings:
        return result

    cases = _by_id(supabase, "cases", [h.get("case_id") for h in hearings], "id, case_number, title, assigned_to, client_id")
    courts = _by_id(supabase, "courts", [h.get("court_id") for h in hearings], "id, name")
    clients = _by_id(supabase, "clients", [c.get("client_id") for c in cases.values()], "id, display_name, email")
    emails = _assignee_emails(supabase, [c.get("assigned_to") for c in cases.values()])

    for hearing in hearings:
        try:
            if _already_sent_today(supabase, "hearing", hearing["id"], "hearing_reminder_sent", today):
                result["skipped"] += 1
                continue

            case = cases.get(hearing.get("case_id")) or {}
            client = clients.get(case.get("client_id")) or {}
            recipients = list(dict.fromkeys(e for e in (client.get("email"), emails.get(case.get("assigned_to"))) if e))
            if not recipients:
                result["skipped"] += 1
                continue

            hearing_date = str(hearing["hearing_date"])[:10]
            days_until = (date.fromisoformat(hearing_date) - today).days
            court_name = (courts.get(hearing.get("court_id")) or {}).get("name") or "TBD"
            subject = f"{get_urgency_label(days_until)} - Hearing: {case.get('case_number', '')}"
            body = render_reminder_email(
                f"Hearing {_days_text(days_until)}",
                f"A hearing is scheduled {_days_text(days_until)}.",
                [
                    ("Case", case.get("case_number") or ""),
                    ("Title", case.get("title") or ""),
                    ("Court", court_name),
                    ("Date", hearing_date),
                    ("Time", hearing.get("start_time") or "10:00"),
                ],
                case.get("id"),
            )

            failures = _deliver(recipients, subject, body, sender)
            success = not failures
            result["logs"].append({
                "hearing_id": hearing["id"],
                "case_id": hearing.get("case_id"),
                "days_until": days_until,
                "recipients": recipients,
                "success": success,
                "error_message": f"Failed for {', '.join(failures)}" if failures else None,
            })
            result["sent" if success else "failed"] += 1

            write_audit_log(supabase, tenant_id, None, "hearing_reminder_sent", "hearing", hearing["id"], {
                "days_until": days_until,
                "recipients": recipients,
                "success": success,
            })
        except Exception as e:
            logger.error(f"Failed to process hearing reminder {hearing.get('id')}: {e}")
            result["failed"] += 1

    return result


def send_hearing_reminders(supabase, tenant_id: Optional[str] = None, today: Optional[date] = None,
                           sender: Callable = send_email) -> Dict[str, Any]:
    today = today or date.today()
    result = _new_result()
    for tid in _tenant_ids(supabase, tenant_id):
        _merge(result, _send_tenant_hearing_reminders(supabase, tid, today, sender))
    logger.info(f"Hearing reminders: sent={result['sent']} failed={result['failed']} skipped={result['skipped']}")
    return result
