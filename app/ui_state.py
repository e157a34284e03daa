"""
Per-user UI state (filters, column visibility, layout) stored in user_ui_state.
"""

import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

MAX_KEY_LENGTH = 100
MAX_VALUE_BYTES = 64 * 1024

CATEGORIES = ["filters", "preferences", "view_settings", "column_visibility", "sort_settings", "layout"]


def _check_key(key: str):
    if not key or not key.strip():
        raise ValueError("UI state key is required")
    if len(key) > MAX_KEY_LENGTH:
        raise ValueError(f"UI state key must be at most {MAX_KEY_LENGTH} characters")


def get_state(supabase, user_id: str, key: str, default: Any = None) -> Any:
    _check_key(key)
    res = supabase.table("user_ui_state")\
        .select("value")\
        .eq("user_id", user_id)\
        .eq("key", key)\
        .limit(1)\
        .execute()
    if not res.data or res.data[0].get("value") is None:
        return default
    return res.data[0]["value"]


def get_all_state(supabase, user_id: str, category: Optional[str] = None) -> Dict[str, Any]:
    query = supabase.table("user_ui_state").select("key, value").eq("user_id", user_id)
    if category:
        query = query.eq("category", category)
    return {row["key"]: row.get("value") for row in query.execute().data or []}


def set_state(supabase, user_id: str, key: str, value: Any, tenant_id: Optional[str] = None,
              category: str = "preferences") -> Dict[str, Any]:
    _check_key(key)
    if category not in CATEGORIES:
        raise ValueError(f"Unknown UI state category '{category}'")
    try:
        size = len(json.dumps(value).encode("utf-8"))
    except (TypeError, ValueError):
        raise ValueError("UI state value must be JSON serializable")
    if size > MAX_VALUE_BYTES:
        raise ValueError(f"UI state value exceeds {MAX_VALUE_BYTES // 1024} KB")

    row = {
        "user_id": user_id,
        "tenant_id": tenant_id,
        "key": key,
        "value": value,
        "category": category,
        "updated_at": datetime.utcnow().isoformat(),
    }
    res = supabase.table("user_ui_state").upsert(row, on_conflict="user_id,key").execute()
    return res.data[0] if res.data else row


def clear_state(supabase, user_id: str, key: Optional[str] = None) -> int:
    """Delete one key, or every key for the user when key is None. Returns rows removed."""
    query = supabase.table("user_ui_state").delete().eq("user_id", user_id)
    if key is not None:
        _check_key(key)
        query = query.eq("key", key)
    res = query.execute()
    removed = len(res.data or [])
    logger.debug(f"Cleared {removed} UI state entries for {user_id}")
    return removed
