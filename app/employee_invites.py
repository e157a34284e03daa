"""
Employee & Client Portal Invitations

Creates Supabase auth users through the admin API and links them to an
employees or client_portal_users row. The auth user is removed again when the
employee row cannot be written.
"""

import logging
import re
import secrets
import string
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, validator

from app.auth_permissions import AuthContext, write_audit_log
from app.email_utils import render_portal_invite_email, render_welcome_email, send_email
from app.rbac_engine import AppRole, assign_role, revoke_role

logger = logging.getLogger(__name__)

EMAIL_REGEX = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PASSWORD_CHARS = string.ascii_letters + string.digits + "!@#$%^&*"
EMPLOYEE_CODE_PREFIX = "GSTE"

# Employee role (HR designation) -> app role
EMPLOYEE_ROLE_MAPPING = {
    "Partner": AppRole.ADMIN.value,
    "CA": AppRole.ADMIN.value,
    "Admin": AppRole.ADMIN.value,
    "Advocate": AppRole.MANAGER.value,
    "Manager": AppRole.MANAGER.value,
    "RM": AppRole.MANAGER.value,
    "Finance": AppRole.MANAGER.value,
}

# camelCase request keys -> employees columns
EMPLOYEE_FIELD_MAP = {
    "officialEmail": "official_email",
    "personalEmail": "personal_email",
    "alternateContact": "alternate_contact",
    "currentAddress": "current_address",
    "permanentAddress": "permanent_address",
    "city": "city",
    "state": "state",
    "pincode": "pincode",
    "employmentType": "employment_type",
    "weeklyOff": "weekly_off",
    "workShift": "work_shift",
    "branch": "branch",
    "gender": "gender",
    "dob": "dob",
    "bloodGroup": "blood_group",
    "pan": "pan",
    "aadhaar": "aadhaar",
    "barCouncilNo": "bar_council_no",
    "icaiNo": "icai_no",
    "gstPractitionerId": "gst_practitioner_id",
    "qualification": "qualification",
    "specialization": "specialization",
    "areasOfPractice": "areas_of_practice",
    "experienceYears": "experience_years",
    "billingRate": "billing_rate",
    "billable": "billable",
    "reportingTo": "reporting_to",
    "managerId": "manager_id",
    "workloadCapacity": "workload_capacity",
    "dataScope": "data_scope",
    "confirmationDate": "confirmation_date",
    "notes": "notes",
}

CORE_FIELDS = {
    "email", "password", "sendWelcomeEmail", "fullName", "mobile",
    "role", "department", "designation", "dateOfJoining",
}


class EmployeeInviteRequest(BaseModel):
    email: Optional[str] = None
    fullName: Optional[str] = None
    role: Optional[str] = None
    department: Optional[str] = None
    dateOfJoining: Optional[str] = None
    designation: Optional[str] = None
    mobile: Optional[str] = None
    password: Optional[str] = None
    sendWelcomeEmail: bool = True

    class Config:
        extra = "allow"


class PortalInviteRequest(BaseModel):
    clientId: str
    email: str
    portalRole: str = "viewer"

    @validator("email")
    def email_format(cls, v):
        v = (v or "").strip().lower()
        if not EMAIL_REGEX.match(v):
            raise ValueError("Invalid email format")
        return v


def generate_password(length: int = 12) -> str:
    return "".join(secrets.choice(PASSWORD_CHARS) for _ in range(length))


def map_employee_fields(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Translate optional camelCase keys to columns. Unknown keys are dropped."""
    mapped = {}
    ignored = []
    for key, value in payload.items():
        if key in EMPLOYEE_FIELD_MAP:
            if value is not None:
                mapped[EMPLOYEE_FIELD_MAP[key]] = value
        elif key not in CORE_FIELDS:
            ignored.append(key)
    if ignored:
        logger.info(f"Ignored unknown employee fields: {ignored}")
    return mapped


def next_employee_code(supabase, tenant_id: str) -> str:
    res = supabase.table("employees")\
        .select("employee_code")\
        .eq("tenant_id", tenant_id)\
        .like("employee_code", f"{EMPLOYEE_CODE_PREFIX}%")\
        .execute()
    numbers = []
    for row in res.data or []:
        suffix = (row.get("employee_code") or "")[len(EMPLOYEE_CODE_PREFIX):]
        if suffix.isdigit():
            numbers.append(int(suffix))
    return f"{EMPLOYEE_CODE_PREFIX}{(max(numbers) + 1 if numbers else 1):04d}"


def _user_id(response) -> str:
    user = getattr(response, "user", None)
    if user is None and isinstance(response, dict):
        user = response.get("user")
    user_id = getattr(user, "id", None) or (user.get("id") if isinstance(user, dict) else None)
    if not user_id:
        raise RuntimeError("Auth service did not return a user")
    return user_id


def invite_employee(supabase, caller: AuthContext, req: EmployeeInviteRequest) -> Dict[str, Any]:
    if not caller.is_admin_like():
        raise PermissionError("Unauthorized: requires one of [admin, partner, manager] roles")

    if not (req.email and req.fullName and req.role and req.department and req.dateOfJoining):
        raise ValueError("Missing required fields: email, fullName, role, department, dateOfJoining")
    email = req.email.strip().lower()
    if not EMAIL_REGEX.match(email):
        raise ValueError("Invalid email format")

    tenant_id = caller.tenant_id
    existing = supabase.table("employees").select("id").eq("tenant_id", tenant_id).eq("email", email).limit(1).execute()
    if existing.data:
        raise ValueError("Email already exists in this organization")

    employee_code = next_employee_code(supabase, tenant_id)
    password = req.password or generate_password()

    auth_response = supabase.auth.admin.create_user({
        "email": email,
        "password": password,
        "email_confirm": True,
        "user_metadata": {"full_name": req.fullName, "phone": req.mobile, "tenant_id": tenant_id},
    })
    user_id = _user_id(auth_response)
    logger.info(f"Auth user {user_id} created for {employee_code}")

    row = {
        "id": user_id,
        "employee_code": employee_code,
        "email": email,
        "full_name": req.fullName,
        "mobile": req.mobile,
        "role": req.role,
        "department": req.department,
        "designation": req.designation,
        "date_of_joining": req.dateOfJoining,
        "status": "Active",
        "tenant_id": tenant_id,
        "created_by": caller.user_id,
        "created_at": datetime.utcnow().isoformat(),
        **map_employee_fields(req.dict()),
    }
    try:
        employee = supabase.table("employees").insert(row).execute().data[0]
    except Exception as e:
        logger.error(f"Employee insert failed for {email}, removing auth user {user_id}: {e}")
        supabase.auth.admin.delete_user(user_id)
        raise

    app_role = EMPLOYEE_ROLE_MAPPING.get(req.role, AppRole.STAFF.value)
    try:
        revoke_role(supabase, tenant_id, user_id, AppRole.USER.value)
        assign_role(supabase, tenant_id, user_id, app_role, granted_by=caller.user_id)
    except Exception as e:
        logger.error(f"Role assignment failed for employee {user_id}: {e}")

    write_audit_log(supabase, tenant_id, caller.user_id, "create_employee", "employee", user_id, {
        "employee_email": email,
        "employee_name": req.fullName,
        "employee_role": req.role,
        "employee_code": employee_code,
    })

    email_sent = False
    if req.sendWelcomeEmail:
        message = render_welcome_email(req.fullName, email, password, req.role)
        email_sent = send_email(email, message["subject"], message["html"], message["text"])
        if not email_sent:
            logger.warning(f"Welcome email to {email} was not sent")

    return {
        "success": True,
        "employee": {
            "id": employee.get("id", user_id),
            "employeeCode": employee_code,
            "fullName": req.fullName,
            "email": email,
            "role": req.role,
            "appRole": app_role,
        },
        "credentials": None if email_sent else {"email": email, "password": password},
        "message": "Employee created successfully. Welcome email sent." if email_sent
                   else "Employee created successfully.",
    }

# =============================================================================
# CLIENT PORTAL
# =============================================================================

def _find_auth_user_by_email(supabase, email: str) -> Optional[str]:
    users = supabase.auth.admin.list_users() or []
    if not isinstance(users, list):
        users = getattr(users, "users", None) or []
    for user in users:
        user_email = getattr(user, "email", None) or (user.get("email") if isinstance(user, dict) else None)
        if (user_email or "").lower() == email:
            return getattr(user, "id", None) or user.get("id")
    return None


def invite_client_portal_user(supabase, caller: AuthContext, req: PortalInviteRequest) -> Dict[str, Any]:
    tenant_id = caller.tenant_id
    client_res = supabase.table("clients")\
        .select("id, display_name, tenant_id")\
        .eq("id", req.clientId)\
        .eq("tenant_id", tenant_id)\
        .limit(1)\
        .execute()
    if not client_res.data:
        raise ValueError("Client not found or access denied")
    client = client_res.data[0]

    existing = supabase.table("client_portal_users")\
        .select("id")\
        .eq("email", req.email)\
        .eq("client_id", req.clientId)\
        .limit(1)\
        .execute()
    if existing.data:
        raise ValueError("A portal user with this email already exists for this client")

    password = None
    user_id = _find_auth_user_by_email(supabase, req.email)
    if user_id:
        logger.info(f"Reusing auth user {user_id} for portal invite")
    else:
        password = generate_password()
        user_id = _user_id(supabase.auth.admin.create_user({
            "email": req.email,
            "password": password,
            "email_confirm": True,
            "user_metadata": {"client_portal_user": True, "client_id": req.clientId, "tenant_id": tenant_id},
        }))

    supabase.table("client_portal_users").insert({
        "user_id": user_id,
        "client_id": req.clientId,
        "tenant_id": tenant_id,
        "email": req.email,
        "portal_role": req.portalRole or "viewer",
        "is_active": True,
        "created_by": caller.user_id,
        "created_at": datetime.utcnow().isoformat(),
    }).execute()

    try:
        assign_role(supabase, tenant_id, user_id, AppRole.CLIENT.value, granted_by=caller.user_id)
    except Exception as e:
        logger.error(f"Failed to grant client role to {user_id}: {e}")

    write_audit_log(supabase, tenant_id, caller.user_id, "invite_portal_user", "client", req.clientId,
                    {"email": req.email, "portal_role": req.portalRole})

    message = render_portal_invite_email(client["display_name"], req.email, password)
    if not send_email(req.email, message["subject"], message["html"], message["text"]):
        logger.warning(f"Portal invitation email to {req.email} was not sent")

    return {
        "success": True,
        "message": "Invitation sent successfully",
        "user_id": user_id,
        "client_name": client["display_name"],
    }


def list_portal_users(supabase, tenant_id: str, client_id: Optional[str] = None) -> List[Dict[str, Any]]:
    query = supabase.table("client_portal_users").select("*").eq("tenant_id", tenant_id)
    if client_id:
        query = query.eq("client_id", client_id)
    return query.order("created_at", desc=True).execute().data or []


def deactivate_portal_user(supabase, tenant_id: str, portal_user_id: str, user_id: Optional[str] = None) -> Dict[str, Any]:
    res = supabase.table("client_portal_users")\
        .select("*")\
        .eq("id", portal_user_id)\
        .eq("tenant_id", tenant_id)\
        .limit(1)\
        .execute()
    if not res.data:
        raise LookupError("Portal user not found")
    portal_user = res.data[0]

    supabase.table("client_portal_users").update({"is_active": False}).eq("id", portal_user_id).execute()
    write_audit_log(supabase, tenant_id, user_id, "deactivate_portal_user", "client", portal_user.get("client_id"),
                    {"email": portal_user.get("email")})
    return {**portal_user, "is_active": False}
