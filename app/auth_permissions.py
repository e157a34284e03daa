"""
Authorization & Permissions Module

Centralized tenant-scoped authorization for the Beacon Practice API.
Backend checks complement the RLS policies enforced by Postgres.
"""

import os
import uuid
import logging
import functools
from typing import List, Dict, Any, Optional, Callable
from datetime import datetime, timedelta

from fastapi import HTTPException, Request, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from app import supabase_client
from app.rbac_engine import ADMIN_LIKE_ROLES, ResolvedPermissions, get_resolver, get_user_roles

logger = logging.getLogger(__name__)


# =============================================================================
# AUTHORIZATION CONTEXT
# =============================================================================

class AuthContext:
    """
    Authorization context for a request.
    Contains user info, tenant, app roles and resolved permissions.
    """
    def __init__(
        self,
        user_id: str,
        email: str,
        tenant_id: Optional[str] = None,
        roles: Optional[List[str]] = None,
        permissions: Optional[ResolvedPermissions] = None,
        request_id: Optional[str] = None,
        full_name: Optional[str] = None
    ):
        self.user_id = user_id
        self.email = email
        self.tenant_id = tenant_id
        self.roles = roles or []
        self.permissions = permissions or ResolvedPermissions(user_id=user_id, roles=self.roles)
        self.request_id = request_id or str(uuid.uuid4())[:8]
        self.full_name = full_name

    def has_permission(self, module: str, action: str) -> bool:
        return self.permissions.can(module, action)

    def require_permission(self, module: str, action: str, message: str = None):
        """Raise HTTPException if the permission is missing"""
        if not self.has_permission(module, action):
            raise HTTPException(
                status_code=403,
                detail=message or f"Permission denied: {module}.{action} required"
            )

    def is_admin_like(self) -> bool:
        return any(role in ADMIN_LIKE_ROLES for role in self.roles)


# =============================================================================
# AUTHENTICATION HELPERS
# =============================================================================

security = HTTPBearer(auto_error=False)


async def get_auth_context(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> AuthContext:
    """
    Extract and validate authentication, returning an AuthContext.
    This is the primary auth dependency for protected endpoints.
    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())[:8]

    token = None
    if credentials:
        token = credentials.credentials
    else:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]

    if not token:
        raise HTTPException(status_code=401, detail="Authentication required")

    user = supabase_client.verify_supabase_token(token)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    user_id = user.get("id") or user.get("sub")
    email = user.get("email", "")

    profile = supabase_client.get_user_profile(user_id)
    tenant_id = profile.get("tenant_id") if profile else None
    if not tenant_id:
        logger.warning(f"[Auth] No tenant for user {user_id} (request {request_id})")
        raise HTTPException(status_code=403, detail="User profile not found")

    supabase = supabase_client.get_supabase()
    roles = get_user_roles(supabase, user_id)
    permissions = get_resolver().resolve(supabase, user_id, roles)

    return AuthContext(
        user_id=user_id,
        email=email,
        tenant_id=tenant_id,
        roles=roles,
        permissions=permissions,
        request_id=request_id,
        full_name=profile.get("full_name")
    )


def verify_api_key(authorization: Optional[str]) -> bool:
    """
    Check a bearer key for cron-style endpoints (reminder dispatch).
    Accepts REMINDER_API_KEY, or the service role key when that is unset.
    """
    expected = os.environ.get("REMINDER_API_KEY") or os.environ.get("SUPABASE_SERVICE_ROLE_KEY")
    if not authorization or not expected:
        raise HTTPException(status_code=401, detail="Unauthorized")

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer" or parts[1] != expected:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return True


# =============================================================================
# PERMISSION DECORATORS
# =============================================================================

def require_permission(module: str, action: str, message: str = None):
    """
    Decorator to require a module/action permission for an endpoint.
    Must be used with get_auth_context dependency.
    """
    def decorator(func: Callable):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            auth: AuthContext = kwargs.get("auth")
            if not auth:
                raise HTTPException(status_code=500, detail="Auth context not found")

            auth.require_permission(module, action, message)
            return await func(*args, **kwargs)
        return wrapper
    return decorator


# =============================================================================
# RATE LIMITING
# =============================================================================

_rate_limit_cache: Dict[str, Dict[str, Any]] = {}

RATE_LIMITS = {
    "notice_ocr": {"max_requests": 10, "window_minutes": 1},
    "invite": {"max_requests": 10, "window_minutes": 1},
    "import": {"max_requests": 5, "window_minutes": 1},
    "upload": {"max_requests": 30, "window_minutes": 1},
    "default": {"max_requests": 60, "window_minutes": 1},
}


def check_rate_limit(user_id: str, endpoint: str) -> bool:
    """
    Check if request is within rate limits.
    Returns True if allowed, raises HTTPException if rate limited.
    """
    limit_config = RATE_LIMITS.get(endpoint, RATE_LIMITS["default"])
    max_requests = limit_config["max_requests"]
    window_minutes = limit_config["window_minutes"]

    cache_key = f"{user_id}:{endpoint}"
    now = datetime.utcnow()
    window_start = now - timedelta(minutes=window_minutes)

    entry = _rate_limit_cache.get(cache_key)
    if entry and entry["window_start"] > window_start:
        if entry["count"] >= max_requests:
            raise HTTPException(
                status_code=429,
                detail=f"Rate limit exceeded. Max {max_requests} requests per {window_minutes} minute(s)."
            )
        entry["count"] += 1
    else:
        _rate_limit_cache[cache_key] = {"window_start": now, "count": 1}

    return True


def rate_limit(endpoint: str):
    """Decorator to apply rate limiting to an endpoint"""
    def decorator(func: Callable):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            auth: AuthContext = kwargs.get("auth")
            if auth:
                check_rate_limit(auth.user_id, endpoint)
            return await func(*args, **kwargs)
        return wrapper
    return decorator


# =============================================================================
# FILE UPLOAD VALIDATION
# =============================================================================

ALLOWED_FILE_TYPES = {
    "application/pdf": [".pdf"],
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": [".xlsx"],
    "application/vnd.ms-excel": [".xls"],
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": [".docx"],
    "application/msword": [".doc"],
    "text/csv": [".csv"],
    "text/plain": [".txt"],
    "image/png": [".png"],
    "image/jpeg": [".jpg", ".jpeg"],
}

MAX_FILE_SIZE_MB = 50
MAX_FILE_SIZE_BYTES = MAX_FILE_SIZE_MB * 1024 * 1024


def validate_file_upload(
    filename: str,
    content_type: str,
    file_size: int,
    file_content: bytes = None
) -> Dict[str, Any]:
    """
    Validate an uploaded file against the type allow-list and size limit.
    Returns validation result dict with valid flag and any errors.
    """
    errors = []

    ext = os.path.splitext((filename or "").lower())[1]
    allowed_extensions = []
    for exts in ALLOWED_FILE_TYPES.values():
        allowed_extensions.extend(exts)

    if ext not in allowed_extensions:
        errors.append(f"File type '{ext}' not allowed. Allowed: {', '.join(allowed_extensions)}")

    if content_type not in ALLOWED_FILE_TYPES:
        errors.append(f"Content type '{content_type}' not allowed")
    elif ext not in ALLOWED_FILE_TYPES[content_type]:
        errors.append(f"File extension '{ext}' does not match content type '{content_type}'")

    if file_size <= 0:
        errors.append("File is empty")
    elif file_size > MAX_FILE_SIZE_BYTES:
        errors.append(f"File too large. Maximum size is {MAX_FILE_SIZE_MB}MB")

    if file_content:
        detected_type = _detect_file_type(file_content[:8])
        if detected_type and detected_type != content_type:
            # Logged for review only
            logger.warning(
                f"Content type mismatch: declared={content_type}, detected={detected_type}, file={filename}"
            )

    return {
        "valid": len(errors) == 0,
        "errors": errors,
        "filename": filename,
        "content_type": content_type,
        "size": file_size,
    }


def _detect_file_type(header: bytes) -> Optional[str]:
    """Detect file type from magic bytes"""
    if header.startswith(b'%PDF'):
        return "application/pdf"
    if header.startswith(b'\xff\xd8\xff'):
        return "image/jpeg"
    if header.startswith(b'\x89PNG'):
        return "image/png"
    return None


# =============================================================================
# CORS CONFIGURATION
# =============================================================================

def get_cors_origins() -> List[str]:
    """Get allowed CORS origins from environment"""
    origins_str = os.getenv("CORS_ORIGINS", "")

    if not origins_str:
        return [
            "http://localhost:3000",
            "http://localhost:5173",
            "http://127.0.0.1:3000",
        ]

    return [o.strip() for o in origins_str.split(",") if o.strip()]


# =============================================================================
# LOGGING HELPERS
# =============================================================================

def log_api_call(
    auth: AuthContext,
    endpoint: str,
    method: str,
    status_code: int,
    duration_ms: float,
    extra: Dict[str, Any] = None
):
    """Log API call with structured context"""
    log_data = {
        "type": "api_call",
        "request_id": auth.request_id,
        "user_id": auth.user_id,
        "tenant_id": auth.tenant_id,
        "endpoint": endpoint,
        "method": method,
        "status_code": status_code,
        "duration_ms": round(duration_ms, 2),
        "timestamp": datetime.utcnow().isoformat(),
    }
    if extra:
        log_data.update(extra)

    if status_code >= 500:
        logger.error(f"API Error: {log_data}")
    elif status_code >= 400:
        logger.warning(f"API Warning: {log_data}")
    else:
        logger.info(f"API Call: {log_data}")


def write_audit_log(
    supabase,
    tenant_id: Optional[str],
    user_id: Optional[str],
    action: str,
    entity_type: str,
    entity_id: Optional[str] = None,
    details: Dict[str, Any] = None
):
    """Insert an audit_log row. Failures are logged, never raised."""
    try:
        if supabase:
            supabase.table("audit_log").insert({
                "tenant_id": tenant_id,
                "user_id": user_id,
                "action_type": action,
                "entity_type": entity_type,
                "entity_id": entity_id,
                "details": details or {},
                "timestamp": datetime.utcnow().isoformat(),
            }).execute()
    except Exception as e:
        logger.warning(f"Failed to log audit event {action}: {e}")


def log_audit(
    auth: AuthContext,
    action: str,
    entity_type: str,
    entity_id: str = None,
    details: Dict[str, Any] = None,
    request: Request = None
):
    """Log audit event for the authenticated caller"""
    details = dict(details or {})
    if request:
        details["ip_address"] = request.client.host if request.client else None
        details["user_agent"] = request.headers.get("User-Agent")
    details["request_id"] = auth.request_id

    write_audit_log(
        supabase_client.get_supabase(),
        auth.tenant_id,
        auth.user_id,
        action,
        entity_type,
        entity_id,
        details,
    )
