"""
Reminder Routes

Cron-triggered dispatch of statutory deadline and hearing reminders. These
endpoints authenticate with a shared bearer key instead of a user session.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Header
from pydantic import BaseModel

from app.auth_permissions import verify_api_key
from app.router_utils import raise_http_error, require_db
from app import reminders

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/reminders", tags=["reminders"])


class ReminderRunRequest(BaseModel):
    tenant_id: Optional[str] = None


@router.post("/deadlines")
async def run_deadline_reminders(body: Optional[ReminderRunRequest] = None, authorization: Optional[str] = Header(None)):
    verify_api_key(authorization)
    supabase = require_db()
    try:
        result = reminders.send_deadline_reminders(supabase, body.tenant_id if body else None)
    except Exception as e:
        raise_http_error(e, "deadline reminders")
    logger.info(f"Deadline reminders: {result['sent']} sent, {result['failed']} failed, {result['skipped']} skipped")
    return result


@router.post("/hearings")
async def run_hearing_reminders(body: Optional[ReminderRunRequest] = None, authorization: Optional[str] = Header(None)):
    verify_api_key(authorization)
    supabase = require_db()
    try:
        result = reminders.send_hearing_reminders(supabase, body.tenant_id if body else None)
    except Exception as e:
        raise_http_error(e, "hearing reminders")
    logger.info(f"Hearing reminders: {result['sent']} sent, {result['failed']} failed, {result['skipped']} skipped")
    return result
