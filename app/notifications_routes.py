"""In-app notifications for the signed-in user."""

import logging

from fastapi import APIRouter, Depends, Query

from app.auth_permissions import AuthContext, get_auth_context
from app.router_utils import raise_http_error, require_db, wrap_response
from app import notifications

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@router.get("")
async def get_notifications(
    unread_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    auth: AuthContext = Depends(get_auth_context),
):
    supabase = require_db()
    return wrap_response(notifications.list_notifications(supabase, auth.tenant_id, auth.user_id, unread_only, limit))


@router.post("/{notification_id}/read")
async def read(notification_id: str, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        notifications.mark_read(supabase, auth.tenant_id, auth.user_id, notification_id)
    except Exception as e:
        raise_http_error(e, "notification update")
    return wrap_response({"success": True})
