"""
Clients Service

Client master data: validation of Indian tax identifiers, CRUD, bulk
import/export through pandas and duplicate detection for cleanup.
"""

import io
import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

import pandas as pd

from app.auth_permissions import write_audit_log

logger = logging.getLogger(__name__)

# =============================================================================
# VALIDATION
# =============================================================================

GSTIN_REGEX = re.compile(r"^[0-9]{2}[A-Z]{5}[0-9]{4}[A-Z]{1}[1-9A-Z]{1}Z[0-9A-Z]{1}$")
PAN_REGEX = re.compile(r"^[A-Z]{5}[0-9]{4}[A-Z]{1}$")
PINCODE_REGEX = re.compile(r"^[0-9]{6}$")
EMAIL_REGEX = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MOBILE_REGEX = re.compile(r"^[+]?[0-9]{10,15}$")

CLIENT_TYPES = ["Individual", "Proprietorship", "Partnership", "LLP", "Company", "Trust", "HUF", "Other"]

EDITABLE_FIELDS = [
    "display_name", "gstin", "pan", "email", "phone", "city", "state", "pincode",
    "status", "type", "category", "client_group_id", "owner_id", "address", "data_scope", "notes",
]

def validate_gstin(gstin: Optional[str]) -> List[str]:
    if not gstin:
        return []
    if not GSTIN_REGEX.match(gstin.strip().upper()):
        return ["GSTIN format is invalid. Should be 15 characters (e.g., 07AABCU9603R1ZV)"]
    return []

def validate_pan(pan: Optional[str]) -> List[str]:
    if not pan:
        return ["PAN is required"]
    if not PAN_REGEX.match(pan.strip().upper()):
        return ["PAN format is invalid. Should be 10 characters (e.g., ABCDE1234F)"]
    return []

def validate_pincode(pincode: Optional[str]) -> List[str]:
    if not pincode:
        return ["Pincode is required"]
    if not PINCODE_REGEX.match(str(pincode).strip()):
        return ["Pincode must be exactly 6 digits"]
    return []

def validate_email(email: Optional[str]) -> List[str]:
    if not email:
        return ["Email is required"]
    if not EMAIL_REGEX.match(email.strip()):
        return ["Please enter a valid email address"]
    return []

def validate_mobile(mobile: Optional[str]) -> List[str]:
    if not mobile:
        return []
    if not MOBILE_REGEX.match(re.sub(r"\s", "", str(mobile))):
        return ["Mobile number must be 10-15 digits with optional country code (e.g., +91 9876543210)"]
    return []

def validate_client(data: Dict[str, Any], partial: bool = False) -> List[str]:
    """
    Collect every validation error for a client payload.

    Optional identifiers are only checked when present; on partial updates
    only the supplied fields are checked.
    """
    errors: List[str] = []
    name = data.get("display_name", data.get("name"))
    if not partial or "display_name" in data or "name" in data:
        if not (name or "").strip():
            errors.append("Client name is required")
    if data.get("pan"):
        errors.extend(validate_pan(data["pan"]))
    if data.get("gstin"):
        errors.extend(validate_gstin(data["gstin"]))
    if data.get("pincode"):
        errors.extend(validate_pincode(data["pincode"]))
    if data.get("email"):
        errors.extend(validate_email(data["email"]))
    if data.get("phone"):
        errors.extend(validate_mobile(data["phone"]))
    return errors

def normalize_client(data: Dict[str, Any]) -> Dict[str, Any]:
    out = {k: v for k, v in data.items() if k in EDITABLE_FIELDS}
    if "name" in data and "display_name" not in out:
        out["display_name"] = data["name"]
    if out.get("display_name"):
        out["display_name"] = out["display_name"].strip()
    for key in ("gstin", "pan"):
        if out.get(key):
            out[key] = out[key].strip().upper()
    if out.get("email"):
        out["email"] = out["email"].strip().lower()
    if out.get("status"):
        out["status"] = out["status"].lower()
    return out

# =============================================================================
# CRUD
# =============================================================================

def get_client(supabase, tenant_id: str, client_id: str) -> Dict[str, Any]:
    res = supabase.table("clients").select("*").eq("id", client_id).eq("tenant_id", tenant_id).limit(1).execute()
    if not res.data:
        raise LookupError("Client not found")
    return res.data[0]

def list_clients(supabase, tenant_id: str, status: Optional[str] = None, search: Optional[str] = None,
                 limit: int = 50, offset: int = 0):
    query = supabase.table("clients").select("*", count="exact").eq("tenant_id", tenant_id)
    if status:
        query = query.eq("status", status.lower())
    if search:
        query = query.ilike("display_name", f"%{search}%")
    res = query.order("display_name").range(offset, offset + limit - 1).execute()
    return res.data or [], res.count or 0

def create_client_record(supabase, tenant_id: str, user_id: Optional[str], data: Dict[str, Any]) -> Dict[str, Any]:
    errors = validate_client(data)
    if errors:
        raise ValueError(", ".join(errors))

    row = normalize_client(data)
    row.setdefault("status", "active")
    row.setdefault("type", "Individual")
    row.setdefault("state", "Gujarat")
    row.setdefault("data_scope", "TEAM")
    row.update({"tenant_id": tenant_id, "created_by": user_id, "created_at": datetime.utcnow().isoformat()})

    client = supabase.table("clients").insert(row).execute().data[0]
    write_audit_log(supabase, tenant_id, user_id, "create_client", "client", client["id"], {"name": row["display_name"]})
    return client

def update_client_record(supabase, tenant_id: str, client_id: str, user_id: Optional[str], data: Dict[str, Any]) -> Dict[str, Any]:
    client = get_client(supabase, tenant_id, client_id)
    errors = validate_client(data, partial=True)
    if errors:
        raise ValueError(", ".join(errors))

    updates = normalize_client(data)
    if not updates:
        return client
    updates["updated_at"] = datetime.utcnow().isoformat()
    supabase.table("clients").update(updates).eq("id", client_id).eq("tenant_id", tenant_id).execute()
    write_audit_log(supabase, tenant_id, user_id, "update_client", "client", client_id,
                    {"fields": sorted(k for k in updates if k != "updated_at")})
    return {**client, **updates}

def delete_client_record(supabase, tenant_id: str, client_id: str, user_id: Optional[str]) -> bool:
    client = get_client(supabase, tenant_id, client_id)
    linked = supabase.table("cases").select("id").eq("tenant_id", tenant_id).eq("client_id", client_id).limit(1).execute()
    if linked.data:
        raise ValueError("Cannot delete a client that has cases. Close or reassign the cases first.")
    supabase.table("clients").delete().eq("id", client_id).eq("tenant_id", tenant_id).execute()
    write_audit_log(supabase, tenant_id, user_id, "delete_client", "client", client_id, {"name": client.get("display_name")})
    return True

# =============================================================================
# IMPORT / EXPORT
# =============================================================================

COLUMN_ALIASES = {
    "display_name": ["name", "client name", "client_name", "display_name", "display name"],
    "gstin": ["gstin", "gst", "gst no", "gst number"],
    "pan": ["pan", "pan no", "pan number"],
    "email": ["email", "email address", "e-mail"],
    "phone": ["phone", "mobile", "phone number", "contact"],
    "city": ["city"],
    "state": ["state"],
    "pincode": ["pincode", "pin", "pin code"],
    "type": ["type", "client type"],
}

def read_client_file(content: bytes, filename: str) -> pd.DataFrame:
    name = (filename or "").lower()
    if name.endswith((".xlsx", ".xls")):
        return pd.read_excel(io.BytesIO(content), sheet_name=0, dtype=str)
    if name.endswith(".csv"):
        try:
            text = content.decode("utf-8-sig")
        except UnicodeDecodeError:
            text = content.decode("latin-1")
        return pd.read_csv(io.StringIO(text), dtype=str)
    raise ValueError("Unsupported file type. Upload a CSV or XLSX file")

def map_columns(df: pd.DataFrame) -> pd.DataFrame:
    lookup = {c.strip().lower(): c for c in df.columns}
    renamed = {}
    for field, aliases in COLUMN_ALIASES.items():
        for alias in aliases:
            if alias in lookup:
                renamed[lookup[alias]] = field
                break
    mapped = df.rename(columns=renamed)
    return mapped[[c for c in mapped.columns if c in COLUMN_ALIASES]]

def import_clients(supabase, tenant_id: str, user_id: Optional[str], df: pd.DataFrame) -> Dict[str, Any]:
    """Create a client per row. Row errors are collected; GSTINs already in the tenant are skipped."""
    df = map_columns(df)
    if "display_name" not in df.columns:
        raise ValueError("A name column is required (name, client name or display_name)")
    df = df.fillna("")

    existing = supabase.table("clients").select("gstin").eq("tenant_id", tenant_id).execute()
    known_gstins = {(r.get("gstin") or "").upper() for r in existing.data or [] if r.get("gstin")}

    result: Dict[str, Any] = {"total": len(df), "created": 0, "skipped": 0, "errors": []}
    for index, record in enumerate(df.to_dict(orient="records"), start=2):
        row = {k: str(v).strip() for k, v in record.items() if str(v).strip()}
        gstin = (row.get("gstin") or "").upper()
        if gstin and gstin in known_gstins:
            result["skipped"] += 1
            continue
        try:
            create_client_record(supabase, tenant_id, user_id, row)
            result["created"] += 1
            if gstin:
                known_gstins.add(gstin)
        except Exception as e:
            result["errors"].append({"row": index, "name": row.get("display_name"), "error": str(e)})

    logger.info(f"Client import for {tenant_id}: {result['created']} created, {result['skipped']} skipped, "
                f"{len(result['errors'])} errors")
    return result

EXPORT_COLUMNS = {
    "display_name": "Name",
    "type": "Type",
    "gstin": "GSTIN",
    "pan": "PAN",
    "email": "Email",
    "phone": "Phone",
    "city": "City",
    "state": "State",
    "status": "Status",
}

def export_clients(supabase, tenant_id: str, fmt: str = "csv") -> bytes:
    res = supabase.table("clients").select("*").eq("tenant_id", tenant_id).order("display_name").execute()
    df = pd.DataFrame(res.data or [], columns=list(EXPORT_COLUMNS)).rename(columns=EXPORT_COLUMNS)

    if fmt == "xlsx":
        output = io.BytesIO()
        with pd.ExcelWriter(output, engine="xlsxwriter") as writer:
            df.to_excel(writer, sheet_name="Clients", index=False)
        return output.getvalue()
    return df.to_csv(index=False).encode("utf-8")

# =============================================================================
# DUPLICATES
# =============================================================================

def _normalize_name(name: str) -> str:
    name = re.sub(r"[^a-z0-9 ]", " ", (name or "").lower())
    name = re.sub(r"\b(pvt|private|ltd|limited|llp|co|company|the)\b", " ", name)
    return re.sub(r"\s+", " ", name).strip()

def find_duplicate_clients(supabase, tenant_id: str) -> List[Dict[str, Any]]:
    """Groups of two or more clients sharing a GSTIN or a normalized name."""
    res = supabase.table("clients").select("id, display_name, gstin, pan, status").eq("tenant_id", tenant_id).execute()
    clients = res.data or []

    groups: Dict[str, List[Dict[str, Any]]] = {}
    for client in clients:
        if client.get("gstin"):
            groups.setdefault(f"gstin:{client['gstin'].upper()}", []).append(client)
        key = _normalize_name(client.get("display_name"))
        if key:
            groups.setdefault(f"name:{key}", []).append(client)

    duplicates = []
    seen = set()
    for key, members in groups.items():
        ids = frozenset(m["id"] for m in members)
        if len(ids) < 2 or ids in seen:
            continue
        seen.add(ids)
        kind, value = key.split(":", 1)
        duplicates.append({"match_type": kind, "match_value": value, "clients": members})
    return duplicates
