"""
Tenant Settings Loader

Provides cached access to per-tenant settings for use across modules.
Reminders, task bundles, escalations and case defaults all read through here.
"""

import copy
import logging
from typing import Any, Dict
from datetime import datetime

logger = logging.getLogger(__name__)

# In-memory cache with TTL
_settings_cache: Dict[str, Dict[str, Any]] = {}
_cache_timestamps: Dict[str, datetime] = {}
CACHE_TTL_SECONDS = 300  # 5 minutes


DEFAULT_SETTINGS = {
    "defaults": {
        "reminder_days": [7, 3, 1, 0],
        "hearing_reminder_days": [1, 3, 7],
        "default_timezone": "Asia/Kolkata",
        "default_stage": "Adjudication",
        "default_priority": "Medium",
        "default_reply_days": 30,
    },
    "feature_flags": {
        "stage_task_automation": True,
        "automation_rules": True,
        "escalations": True,
        "client_portal": True,
    },
}


def _defaults() -> Dict[str, Any]:
    return copy.deepcopy(DEFAULT_SETTINGS)


def _merge(row: Dict[str, Any]) -> Dict[str, Any]:
    settings = _defaults()
    settings["defaults"].update(row.get("defaults") or {})
    settings["feature_flags"].update(row.get("feature_flags") or {})
    return settings


def get_tenant_settings(supabase, tenant_id: str, force_refresh: bool = False) -> Dict[str, Any]:
    """
    Get tenant settings with caching.

    Args:
        supabase: Supabase client
        tenant_id: Tenant ID
        force_refresh: If True, bypass cache

    Returns:
        Dict with keys: defaults, feature_flags
    """
    now = datetime.utcnow()

    if not force_refresh and tenant_id in _settings_cache:
        cache_time = _cache_timestamps.get(tenant_id)
        if cache_time and (now - cache_time).total_seconds() < CACHE_TTL_SECONDS:
            return _settings_cache[tenant_id]

    if supabase is None:
        return _defaults()

    try:
        result = supabase.table("tenant_settings").select("*").eq("tenant_id", tenant_id).limit(1).execute()
        if result.data:
            settings = _merge(result.data[0])
            _settings_cache[tenant_id] = settings
            _cache_timestamps[tenant_id] = now
            return settings
    except Exception as e:
        logger.warning(f"Failed to fetch tenant_settings for {tenant_id}: {e}")
        return _defaults()

    # Auto-create with defaults if not exists
    try:
        supabase.table("tenant_settings").insert({
            "tenant_id": tenant_id,
            "defaults": DEFAULT_SETTINGS["defaults"],
            "feature_flags": DEFAULT_SETTINGS["feature_flags"],
        }).execute()

        settings = _defaults()
        _settings_cache[tenant_id] = settings
        _cache_timestamps[tenant_id] = now

        try:
            supabase.table("audit_log").insert({
                "tenant_id": tenant_id,
                "user_id": None,
                "action_type": "tenant_settings_initialized",
                "entity_type": "tenant_settings",
                "entity_id": tenant_id,
                "details": {"reason": "auto_created_on_first_access"},
                "timestamp": now.isoformat(),
            }).execute()
        except Exception as e:
            logger.debug(f"Could not audit settings init for {tenant_id}: {e}")

        return settings
    except Exception as e:
        logger.warning(f"Failed to auto-create tenant_settings for {tenant_id}: {e}")

    return _defaults()


def is_feature_enabled(supabase, tenant_id: str, flag: str) -> bool:
    return bool(get_tenant_settings(supabase, tenant_id)["feature_flags"].get(flag, False))


def update_tenant_settings(supabase, tenant_id: str, defaults: Dict[str, Any] = None,
                           feature_flags: Dict[str, Any] = None) -> Dict[str, Any]:
    current = get_tenant_settings(supabase, tenant_id, force_refresh=True)
    unknown = set(defaults or {}) - set(DEFAULT_SETTINGS["defaults"])
    unknown |= set(feature_flags or {}) - set(DEFAULT_SETTINGS["feature_flags"])
    if unknown:
        raise ValueError(f"Unknown settings: {', '.join(sorted(unknown))}")

    current["defaults"].update(defaults or {})
    current["feature_flags"].update(feature_flags or {})

    supabase.table("tenant_settings").upsert({
        "tenant_id": tenant_id,
        "defaults": current["defaults"],
        "feature_flags": current["feature_flags"],
        "updated_at": datetime.utcnow().isoformat(),
    }, on_conflict="tenant_id").execute()

    invalidate_cache(tenant_id)
    return current


def invalidate_cache(tenant_id: str = None):
    if tenant_id is None:
        _settings_cache.clear()
        _cache_timestamps.clear()
    else:
        _settings_cache.pop(tenant_id, None)
        _cache_timestamps.pop(tenant_id, None)
