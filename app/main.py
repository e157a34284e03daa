import os
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.supabase_client import get_supabase
from app.auth_permissions import get_cors_origins
from app.email_utils import is_email_configured
from app.notice_extraction import is_ocr_configured
from app import (
    automation_routes,
    cases_routes,
    clients_routes,
    courts_routes,
    documents_routes,
    escalation_routes,
    hearings_routes,
    invites_routes,
    lifecycle_routes,
    notices_routes,
    notifications_routes,
    rbac_routes,
    reminders_routes,
    settings_routes,
    statutory_routes,
    system_routes,
    tasks_routes,
    ui_state_routes,
)
from app.system_routes import API_VERSION

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Beacon Practice API",
    description="Case, hearing, deadline and task management for tax and legal practices",
    version=API_VERSION
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.on_event("startup")
async def startup_event():
    """Log startup information."""
    port = os.environ.get("PORT", "8000")
    logger.info(f"Beacon Practice API starting on port {port}")
    logger.info(f"Supabase connected: {get_supabase() is not None}")
    logger.info(f"Email: {'configured' if is_email_configured() else 'NOT CONFIGURED - set SMTP_HOST'}")
    logger.info(f"Notice OCR: {'configured' if is_ocr_configured() else 'NOT CONFIGURED - set GEMINI_API_KEY'}")

@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "name": "Beacon Practice API",
        "version": API_VERSION,
        "docs": "/docs",
        "health": "/api/system/health"
    }

# Register Routers
app.include_router(cases_routes.router)
app.include_router(lifecycle_routes.router)
app.include_router(clients_routes.router)
app.include_router(courts_routes.router)
app.include_router(hearings_routes.router)
app.include_router(documents_routes.router)
app.include_router(tasks_routes.router)
app.include_router(automation_routes.router)
app.include_router(escalation_routes.router)
app.include_router(statutory_routes.router)
app.include_router(invites_routes.router)
app.include_router(notices_routes.router)
app.include_router(reminders_routes.router)
app.include_router(rbac_routes.router)
app.include_router(settings_routes.router)
app.include_router(notifications_routes.router)
app.include_router(ui_state_routes.router)
app.include_router(system_routes.router)
