"""
Document Routes

Multipart upload into the case-documents bucket, listing, signed download
links and deletion.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile

from app.auth_permissions import AuthContext, get_auth_context, rate_limit, require_permission
from app.router_utils import raise_http_error, require_db, wrap_response
from app import documents_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/documents", tags=["documents"])


@router.post("/upload")
@require_permission("documents", "create")
@rate_limit("upload")
async def upload(
    file: UploadFile = File(...),
    case_id: Optional[str] = Form(None),
    client_id: Optional[str] = Form(None),
    category: Optional[str] = Form(None),
    document_type: Optional[str] = Form(None),
    auth: AuthContext = Depends(get_auth_context),
):
    supabase = require_db()
    content = await file.read()
    try:
        document = documents_service.upload_document(
            supabase, auth.tenant_id, auth.user_id,
            file.filename, file.content_type, content,
            case_id=case_id, client_id=client_id, category=category, document_type=document_type,
        )
        return wrap_response(document)
    except Exception as e:
        raise_http_error(e, "document upload")


@router.get("")
@require_permission("documents", "read")
async def get_documents(
    case_id: Optional[str] = Query(None),
    client_id: Optional[str] = Query(None),
    auth: AuthContext = Depends(get_auth_context),
):
    supabase = require_db()
    try:
        return wrap_response(documents_service.list_documents(supabase, auth.tenant_id, case_id, client_id))
    except Exception as e:
        raise_http_error(e, "document listing")


@router.get("/{document_id}/download")
@require_permission("documents", "read")
async def get_download_link(document_id: str, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        url = documents_service.get_download_url(supabase, auth.tenant_id, document_id)
        return wrap_response({"url": url, "expires_in": documents_service.SIGNED_URL_TTL_SECONDS})
    except Exception as e:
        raise_http_error(e, "document download")


@router.delete("/{document_id}")
@require_permission("documents", "delete")
async def remove_document(document_id: str, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        documents_service.delete_document(supabase, auth.tenant_id, document_id, auth.user_id)
        return wrap_response({"success": True})
    except Exception as e:
        raise_http_error(e, "document deletion")
