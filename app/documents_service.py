"""
Documents Service

Case and client documents kept in the case-documents storage bucket, with a
documents row per file.
"""

import hashlib
import logging
import re
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from app.auth_permissions import validate_file_upload, write_audit_log
from app.cases_service import add_timeline_entry, get_case
from app.clients_service import get_client

logger = logging.getLogger(__name__)

DOCUMENTS_BUCKET = "case-documents"
SIGNED_URL_TTL_SECONDS = 3600


def _safe_filename(filename: str) -> str:
    return re.sub(r"[^\w\.\-]", "_", filename or "file")


def build_storage_path(tenant_id: str, owner_id: str, filename: str) -> str:
    return f"{tenant_id}/{owner_id}/{uuid.uuid4()}-{_safe_filename(filename)}"


def get_document(supabase, tenant_id: str, document_id: str) -> Dict[str, Any]:
    res = supabase.table("documents").select("*").eq("id", document_id).eq("tenant_id", tenant_id).limit(1).execute()
    if not res.data:
        raise LookupError("Document not found")
    return res.data[0]


def upload_document(
    supabase,
    tenant_id: str,
    user_id: Optional[str],
    filename: str,
    content_type: str,
    content: bytes,
    case_id: Optional[str] = None,
    client_id: Optional[str] = None,
    category: Optional[str] = None,
    document_type: Optional[str] = None,
) -> Dict[str, Any]:
    if not case_id and not client_id:
        raise ValueError("A document must be linked to a case or a client")
    if case_id:
        case = get_case(supabase, tenant_id, case_id)
        if client_id and case.get("client_id") and case["client_id"] != client_id:
            raise ValueError("Client does not match the case")
    if client_id:
        get_client(supabase, tenant_id, client_id)

    validation = validate_file_upload(filename, content_type, len(content or b""), content)
    if not validation["valid"]:
        raise ValueError("; ".join(validation["errors"]))

    storage_path = build_storage_path(tenant_id, case_id or client_id, filename)
    supabase.storage.from_(DOCUMENTS_BUCKET).upload(
        storage_path,
        content,
        {"content-type": content_type or "application/octet-stream"},
    )

    row = {
        "tenant_id": tenant_id,
        "case_id": case_id,
        "client_id": client_id,
        "file_name": filename,
        "file_path": storage_path,
        "file_size": len(content),
        "mime_type": content_type,
        "category": category,
        "document_type": document_type,
        "sha256": hashlib.sha256(content).hexdigest(),
        "uploaded_by": user_id,
        "created_at": datetime.utcnow().isoformat(),
    }
    try:
        document = supabase.table("documents").insert(row).execute().data[0]
    except Exception:
        # keep storage and table consistent
        supabase.storage.from_(DOCUMENTS_BUCKET).remove([storage_path])
        raise

    if case_id:
        add_timeline_entry(
            supabase, tenant_id, case_id, "document_uploaded",
            f"Document uploaded: {filename}", category, user_id, {"document_id": document["id"]},
        )

        from app.automation_rule_engine import AutomationEvent, process_event
        try:
            process_event(supabase, AutomationEvent(
                event_type="document_uploaded", tenant_id=tenant_id, case_id=case_id,
                document_data=document, document_type=document_type or category, triggered_by=user_id,
            ))
        except Exception as e:
            logger.error(f"document_uploaded automation failed for case {case_id}: {e}")

    write_audit_log(supabase, tenant_id, user_id, "upload_document", "document", document["id"],
                    {"file_name": filename, "case_id": case_id, "client_id": client_id})
    return document


def list_documents(supabase, tenant_id: str, case_id: Optional[str] = None, client_id: Optional[str] = None) -> List[Dict[str, Any]]:
    query = supabase.table("documents").select("*").eq("tenant_id", tenant_id)
    if case_id:
        query = query.eq("case_id", case_id)
    if client_id:
        query = query.eq("client_id", client_id)
    return query.order("created_at", desc=True).execute().data or []


def get_download_url(supabase, tenant_id: str, document_id: str) -> str:
    document = get_document(supabase, tenant_id, document_id)
    result = supabase.storage.from_(DOCUMENTS_BUCKET).create_signed_url(document["file_path"], SIGNED_URL_TTL_SECONDS)
    url = None
    if isinstance(result, dict):
        url = result.get("signedURL") or result.get("signedUrl")
    if not url:
        raise LookupError("Could not create a download link for this document")
    return url


def delete_document(supabase, tenant_id: str, document_id: str, user_id: Optional[str]) -> bool:
    document = get_document(supabase, tenant_id, document_id)
    try:
        supabase.storage.from_(DOCUMENTS_BUCKET).remove([document["file_path"]])
    except Exception as e:
        logger.warning(f"Storage removal failed for {document['file_path']}: {e}")
    supabase.table("documents").delete().eq("id", document_id).execute()
    write_audit_log(supabase, tenant_id, user_id, "delete_document", "document", document_id,
                    {"file_name": document.get("file_name")})
    return True
