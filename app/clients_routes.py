"""
Client Routes

CRUD over the client master, bulk import from CSV/XLSX, export and duplicate
detection.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from fastapi.responses import Response
from pydantic import BaseModel

from app.auth_permissions import AuthContext, get_auth_context, rate_limit, require_permission
from app.router_utils import raise_http_error, require_db, wrap_response
from app.schemas import pagination_meta
from app import clients_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/clients", tags=["clients"])


class ClientRequest(BaseModel):
    display_name: Optional[str] = None
    gstin: Optional[str] = None
    pan: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None
    status: Optional[str] = None
    type: Optional[str] = None
    category: Optional[str] = None
    client_group_id: Optional[str] = None
    owner_id: Optional[str] = None
    address: Optional[Dict[str, Any]] = None
    data_scope: Optional[str] = None
    notes: Optional[str] = None


@router.get("")
@require_permission("clients", "read")
async def get_clients(
    status: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    auth: AuthContext = Depends(get_auth_context),
):
    supabase = require_db()
    try:
        data, total = clients_service.list_clients(supabase, auth.tenant_id, status, search, limit, offset)
        return wrap_response(data, meta=pagination_meta(total, limit, offset))
    except Exception as e:
        raise_http_error(e, "client listing")


@router.get("/duplicates")
@require_permission("clients", "read")
async def get_duplicate_clients(auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        return wrap_response(clients_service.find_duplicate_clients(supabase, auth.tenant_id))
    except Exception as e:
        raise_http_error(e, "duplicate detection")


@router.get("/export")
@require_permission("clients", "read")
async def export_client_list(
    format: str = Query("csv"),
    auth: AuthContext = Depends(get_auth_context),
):
    if format not in ("csv", "xlsx"):
        raise HTTPException(status_code=400, detail="format must be csv or xlsx")
    supabase = require_db()
    try:
        content = clients_service.export_clients(supabase, auth.tenant_id, format)
    except Exception as e:
        raise_http_error(e, "client export")

    if format == "xlsx":
        media_type = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
    else:
        media_type = "text/csv"
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="clients.{format}"'},
    )


@router.post("/import")
@require_permission("clients", "create")
@rate_limit("import")
async def import_client_file(
    file: UploadFile = File(...),
    auth: AuthContext = Depends(get_auth_context),
):
    supabase = require_db()
    content = await file.read()
    try:
        df = clients_service.read_client_file(content, file.filename)
        result = clients_service.import_clients(supabase, auth.tenant_id, auth.user_id, df)
        return wrap_response(result)
    except Exception as e:
        raise_http_error(e, "client import")


@router.get("/{client_id}")
@require_permission("clients", "read")
async def get_client_detail(client_id: str, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        return wrap_response(clients_service.get_client(supabase, auth.tenant_id, client_id))
    except Exception as e:
        raise_http_error(e, "client lookup")


@router.post("")
@require_permission("clients", "create")
async def add_client(body: ClientRequest, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        data = body.dict(exclude_none=True)
        return wrap_response(clients_service.create_client_record(supabase, auth.tenant_id, auth.user_id, data))
    except Exception as e:
        raise_http_error(e, "client creation")


@router.patch("/{client_id}")
@require_permission("clients", "update")
async def edit_client(client_id: str, body: ClientRequest, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        data = body.dict(exclude_unset=True)
        return wrap_response(clients_service.update_client_record(supabase, auth.tenant_id, client_id, auth.user_id, data))
    except Exception as e:
        raise_http_error(e, "client update")


@router.delete("/{client_id}")
@require_permission("clients", "delete")
async def remove_client(client_id: str, auth: AuthContext = Depends(get_auth_context)):
    supabase = require_db()
    try:
        clients_service.delete_client_record(supabase, auth.tenant_id, client_id, auth.user_id)
        return wrap_response({"success": True})
    except Exception as e:
        raise_http_error(e, "client deletion")
