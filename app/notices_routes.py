"""
Notice Routes

AI extraction of GST notice PDFs with a suggested reply deadline.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from app.auth_permissions import AuthContext, get_auth_context, rate_limit, require_permission
from app.router_utils import raise_http_error, require_db, wrap_response
from app.notice_extraction import NoticeExtractionError, extract_and_suggest_deadline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/notices", tags=["notices"])

ERROR_STATUS = {
    "AI_NOT_CONFIGURED": 503,
    "AUTH_FAILED": 503,
    "RATE_LIMIT": 429,
    "PARSE_ERROR": 500,
    "AI_ERROR": 500,
}


class NoticeExtractRequest(BaseModel):
    pdfBase64: Optional[str] = None
    filename: Optional[str] = None


@router.post("/extract")
@require_permission("cases", "create")
@rate_limit("notice_ocr")
async def extract(body: NoticeExtractRequest, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        result = extract_and_suggest_deadline(supabase, auth.tenant_id, body.pdfBase64, body.filename)
    except NoticeExtractionError as e:
        logger.warning(f"Notice extraction failed ({e.code}): {e}")
        raise HTTPException(
            status_code=ERROR_STATUS.get(e.code, 500),
            detail={"code": e.code, "message": str(e)},
        )
    except Exception as e:
        raise_http_error(e, "notice extraction")
    return wrap_response(result)
