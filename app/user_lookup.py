"""
User lookup helpers.

Resolves user ids to display names and emails, preferring the employee
record over the auth profile.
"""

import logging
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

UNKNOWN_USER = "Unknown User"


def get_user_display(supabase, user_id: Optional[str]) -> str:
    if not user_id:
        return UNKNOWN_USER
    return get_users_display(supabase, [user_id]).get(user_id, UNKNOWN_USER)


def get_users_display(supabase, user_ids: List[str]) -> Dict[str, str]:
    """Batch resolve ids to names: employee full_name, then profile full_name, then email."""
    ids = list(dict.fromkeys(i for i in user_ids if i))
    if not ids:
        return {}

    names: Dict[str, str] = {}
    try:
        employees = supabase.table("employees").select("id, full_name, email").in_("id", ids).execute()
        for row in employees.data or []:
            if row.get("full_name"):
                names[row["id"]] = row["full_name"]
    except Exception as e:
        logger.warning(f"Employee lookup failed: {e}")

    missing = [i for i in ids if i not in names]
    if missing:
        try:
            profiles = supabase.table("profiles").select("id, full_name, email").in_("id", missing).execute()
            for row in profiles.data or []:
                names[row["id"]] = row.get("full_name") or row.get("email") or UNKNOWN_USER
        except Exception as e:
            logger.warning(f"Profile lookup failed: {e}")

    return {i: names.get(i, UNKNOWN_USER) for i in ids}


def get_user_email(supabase, user_id: Optional[str]) -> Optional[str]:
    if not user_id:
        return None
    try:
        res = supabase.table("employees").select("email, official_email").eq("id", user_id).limit(1).execute()
        if res.data:
            row = res.data[0]
            email = row.get("official_email") or row.get("email")
            if email:
                return email
        res = supabase.table("profiles").select("email").eq("id", user_id).limit(1).execute()
        if res.data:
            return res.data[0].get("email")
    except Exception as e:
        logger.warning(f"Email lookup failed for {user_id}: {e}")
    return None


def search_users(supabase, tenant_id: str, term: str, limit: int = 20) -> List[Dict[str, str]]:
    term = (term or "").strip().lower()
    res = supabase.table("employees")\
        .select("id, full_name, email, role, department")\
        .eq("tenant_id", tenant_id)\
        .eq("status", "Active")\
        .execute()
    matches = [
        row for row in res.data or []
        if not term
        or term in (row.get("full_name") or "").lower()
        or term in (row.get("email") or "").lower()
    ]
    matches.sort(key=lambda r: (r.get("full_name") or "").lower())
    return matches[:limit]
