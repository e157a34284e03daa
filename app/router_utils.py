import logging
from fastapi import HTTPException
from typing import Any, List, Optional
from app.schemas import ApiResponse, ApiMeta, ApiError
from app.supabase_client import get_supabase
from datetime import datetime

logger = logging.getLogger(__name__)

def wrap_response(data: Any, meta: Optional[dict] = None, errors: Optional[List[ApiError]] = None) -> ApiResponse:
    """Wraps data in the standardized API envelope."""
    return ApiResponse(
        data=data,
        meta=ApiMeta(
            timestamp=datetime.utcnow(),
            pagination=meta.get("pagination") if meta else None
        ),
        errors=errors
    )

def handle_conflict(db_version: int, incoming_version: int):
    """Detects and handles version conflicts."""
    if db_version != incoming_version:
        raise HTTPException(
            status_code=409,
            detail={
                "code": "CONFLICT",
                "message": "The record has been modified by another user. Please reload.",
                "db_version": db_version,
                "incoming_version": incoming_version
            }
        )

def raise_http_error(exc: Exception, context: str = "request"):
    """Translate a service-layer exception into an HTTPException."""
    if isinstance(exc, HTTPException):
        raise exc
    if isinstance(exc, PermissionError):
        raise HTTPException(status_code=403, detail=str(exc) or "Permission denied")
    if isinstance(exc, LookupError) and not isinstance(exc, (KeyError, IndexError)):
        raise HTTPException(status_code=404, detail=str(exc) or "Not found")
    if isinstance(exc, ValueError):
        raise HTTPException(status_code=400, detail=str(exc))

    logger.error(f"Unhandled error during {context}: {exc}", exc_info=True)
    raise HTTPException(status_code=500, detail=f"Failed to process {context}")

def require_db():
    """Return the Supabase client or fail with 503."""
    supabase = get_supabase()
    if not supabase:
        raise HTTPException(status_code=503, detail="Database not available")
    return supabase
