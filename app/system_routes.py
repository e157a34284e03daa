"""
System Routes - Health

Public health check reporting database, email and OCR availability.
"""

import os
import logging
from datetime import datetime
from typing import Dict

from fastapi import APIRouter
from pydantic import BaseModel

from app.supabase_client import get_supabase
from app.email_utils import is_email_configured
from app.notice_extraction import is_ocr_configured

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/system", tags=["system"])

API_VERSION = "1.0.0"


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    version: str
    environment: str
    services: Dict[str, str]


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Basic health check endpoint.
    Public - no auth required. Email and OCR are optional, so only the
    database decides between healthy and degraded.
    """
    services = {}

    try:
        supabase = get_supabase()
        if supabase:
            supabase.table("tenants").select("id").limit(1).execute()
            services["database"] = "healthy"
        else:
            services["database"] = "unavailable"
    except Exception as e:
        logger.warning(f"Health check database query failed: {e}")
        services["database"] = f"error: {str(e)[:50]}"

    services["email"] = "configured" if is_email_configured() else "not configured"
    services["ocr"] = "configured" if is_ocr_configured() else "not configured"

    return HealthResponse(
        status="healthy" if services["database"] == "healthy" else "degraded",
        timestamp=datetime.utcnow().isoformat(),
        version=API_VERSION,
        environment=os.getenv("ENVIRONMENT", "development"),
        services=services,
    )
