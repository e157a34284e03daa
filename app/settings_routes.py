"""
Settings Routes

Tenant defaults and feature flags. Reads go through the cached loader so
the response matches what the engines see.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.auth_permissions import AuthContext, get_auth_context, log_audit, require_permission
from app.router_utils import raise_http_error, require_db, wrap_response
from app.tenant_settings_loader import get_tenant_settings, update_tenant_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/settings", tags=["settings"])


class SettingsUpdateRequest(BaseModel):
    defaults: Optional[Dict[str, Any]] = None
    feature_flags: Optional[Dict[str, bool]] = None


@router.get("")
@require_permission("settings", "read")
async def get_settings(auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    return wrap_response(get_tenant_settings(supabase, auth.tenant_id))


@router.patch("")
@require_permission("settings", "update")
async def patch_settings(body: SettingsUpdateRequest, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        settings = update_tenant_settings(supabase, auth.tenant_id, body.defaults, body.feature_flags)
    except Exception as e:
        raise_http_error(e, "settings update")
    log_audit(auth, "update_settings", "tenant_settings", auth.tenant_id, body.dict(exclude_none=True))
    return wrap_response(settings)
