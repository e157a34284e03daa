import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)


def create_notifications(
    supabase,
    tenant_id: str,
    user_ids: Iterable[str],
    notification_type: str,
    title: str,
    message: str,
    related_entity_type: Optional[str] = None,
    related_entity_id: Optional[str] = None,
    channel: str = "in_app",
) -> List[Dict[str, Any]]:
    """Insert one in-app notification per distinct recipient."""
    recipients = list(dict.fromkeys(u for u in user_ids if u))
    if not recipients:
        return []

    now = datetime.utcnow().isoformat()
    rows = [
        {
            "tenant_id": tenant_id,
            "user_id": user_id,
            "type": notification_type,
            "title": title,
            "message": message,
            "related_entity_type": related_entity_type,
            "related_entity_id": related_entity_id,
            "channel": channel,
            "is_read": False,
            "created_at": now,
        }
        for user_id in recipients
    ]
    res = supabase.table("notifications").insert(rows).execute()
    logger.info(f"Queued {len(rows)} {notification_type} notification(s)")
    return res.data or rows


def list_notifications(supabase, tenant_id: str, user_id: str, unread_only: bool = False, limit: int = 50):
    query = supabase.table("notifications").select("*").eq("tenant_id", tenant_id).eq("user_id", user_id)
    if unread_only:
        query = query.eq("is_read", False)
    res = query.order("created_at", desc=True).limit(limit).execute()
    return res.data or []


def mark_read(supabase, tenant_id: str, user_id: str, notification_id: str) -> bool:
    res = supabase.table("notifications")\
        .update({"is_read": True, "read_at": datetime.utcnow().isoformat()})\
        .eq("id", notification_id)\
        .eq("tenant_id", tenant_id)\
        .eq("user_id", user_id)\
        .execute()
    if not res.data:
        raise LookupError("Notification not found")
    return True
