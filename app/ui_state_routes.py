"""Per-user UI state (filters, layouts, column choices)."""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from app.auth_permissions import AuthContext, get_auth_context
from app.router_utils import raise_http_error, require_db, wrap_response
from app import ui_state

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/ui-state", tags=["ui-state"])


class StateValue(BaseModel):
    value: Any
    category: str = "preferences"


@router.get("")
async def get_all(category: Optional[str] = Query(None), auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    return wrap_response(ui_state.get_all_state(supabase, auth.user_id, category))


@router.get("/{key}")
async def get_one(key: str, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        return wrap_response({"key": key, "value": ui_state.get_state(supabase, auth.user_id, key)})
    except Exception as e:
        raise_http_error(e, "ui state lookup")


@router.put("/{key}")
async def put_one(key: str, body: StateValue, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        return wrap_response(ui_state.set_state(
            supabase, auth.user_id, key, body.value, auth.tenant_id, body.category
        ))
    except Exception as e:
        raise_http_error(e, "ui state update")


@router.delete("")
async def clear_all(auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    return wrap_response({"deleted": ui_state.clear_state(supabase, auth.user_id)})


@router.delete("/{key}")
async def clear_one(key: str, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        return wrap_response({"deleted": ui_state.clear_state(supabase, auth.user_id, key)})
    except Exception as e:
        raise_http_error(e, "ui state clear")
