"""
Beacon Practice - Role & Permission Engine
==========================================
App roles, the default permission matrix, and the resolver that merges
role defaults, tenant custom roles and per-user grants/denies.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set

logger = logging.getLogger(__name__)

# =============================================================================
# ROLES
# =============================================================================

class AppRole(str, Enum):
    PARTNER = "partner"
    ADMIN = "admin"
    MANAGER = "manager"
    CA = "ca"
    ADVOCATE = "advocate"
    STAFF = "staff"
    CLERK = "clerk"
    CLIENT = "client"
    USER = "user"


ROLE_METADATA: Dict[AppRole, Dict[str, Any]] = {
    AppRole.ADMIN: {"label": "Administrator", "description": "Full system access including role management", "level": 100},
    AppRole.PARTNER: {"label": "Partner", "description": "Firm partner with access to all practice data", "level": 90},
    AppRole.MANAGER: {"label": "Manager", "description": "Manages teams, cases and assignments", "level": 70},
    AppRole.CA: {"label": "Chartered Accountant", "description": "Handles tax matters and filings", "level": 60},
    AppRole.ADVOCATE: {"label": "Advocate", "description": "Represents clients in hearings", "level": 60},
    AppRole.STAFF: {"label": "Staff", "description": "Works on assigned cases and tasks", "level": 40},
    AppRole.CLERK: {"label": "Clerk", "description": "Data entry and filing support", "level": 30},
    AppRole.USER: {"label": "User", "description": "Default role for new accounts", "level": 20},
    AppRole.CLIENT: {"label": "Client", "description": "Client portal access to own matters", "level": 10},
}

# Roles allowed to onboard staff and manage assignments
ADMIN_LIKE_ROLES = {AppRole.ADMIN.value, AppRole.PARTNER.value, AppRole.MANAGER.value}

# =============================================================================
# MODULES & ACTIONS
# =============================================================================

MODULES = [
    "cases", "clients", "tasks", "hearings", "documents", "employees",
    "courts", "judges", "reports", "settings", "rbac",
]

CRUD_ACTIONS = ["read", "create", "update", "delete"]

# Higher levels imply every lower level on the same module
ACTION_LEVELS: Dict[str, int] = {
    "read": 0,
    "create": 1,
    "update": 1,
    "write": 1,
    "delete": 2,
    "manage": 3,
    "admin": 4,
}

BUSINESS_MODULES = [m for m in MODULES if m not in ("rbac", "settings")]


def _perm(module: str, action: str) -> str:
    return f"{module}.{action}"


def _build_default_permissions() -> Dict[AppRole, Set[str]]:
    admin = {_perm(m, "admin") for m in MODULES}

    partner = {_perm(m, "admin") for m in MODULES if m != "rbac"}
    partner |= {_perm("rbac", a) for a in CRUD_ACTIONS}

    senior = {_perm(m, a) for m in MODULES if m != "rbac" for a in CRUD_ACTIONS}
    senior.discard(_perm("employees", "delete"))

    junior = set()
    for m in BUSINESS_MODULES:
        junior.add(_perm(m, "read"))
        junior.add(_perm(m, "create"))
        if m not in ("employees", "courts", "judges"):
            junior.add(_perm(m, "update"))

    client = {_perm(m, "read") for m in ("cases", "documents", "hearings")}

    return {
        AppRole.ADMIN: admin,
        AppRole.PARTNER: partner,
        AppRole.MANAGER: set(senior),
        AppRole.CA: set(senior),
        AppRole.ADVOCATE: set(senior),
        AppRole.STAFF: set(junior),
        AppRole.USER: set(junior),
        AppRole.CLERK: set(junior),
        AppRole.CLIENT: client,
    }


DEFAULT_ROLE_PERMISSIONS: Dict[AppRole, Set[str]] = _build_default_permissions()


def get_role_permissions(role: str) -> Set[str]:
    """Default permissions for a role name; unknown roles get nothing."""
    try:
        return set(DEFAULT_ROLE_PERMISSIONS.get(AppRole(role), set()))
    except ValueError:
        return set()


def is_action_allowed(allowed: Set[str], denied: Set[str], module: str, action: str) -> bool:
    """
    Evaluate a single module/action against allow and deny sets.
    An explicit deny (exact or module wildcard) always wins.
    """
    key = _perm(module, action)
    if key in denied or _perm(module, "*") in denied:
        return False
    if key in allowed or _perm(module, "*") in allowed:
        return True

    level = ACTION_LEVELS.get(action)
    if level is None:
        return False
    for other, other_level in ACTION_LEVELS.items():
        other_key = _perm(module, other)
        if other_level > level and other_key in allowed and other_key not in denied:
            return True
    return False


# =============================================================================
# RESOLVER
# =============================================================================

@dataclass
class ResolvedPermissions:
    user_id: str
    roles: List[str] = field(default_factory=list)
    allowed: Set[str] = field(default_factory=set)
    denied: Set[str] = field(default_factory=set)
    resolved_at: datetime = field(default_factory=datetime.utcnow)

    def can(self, module: str, action: str) -> bool:
        return is_action_allowed(self.allowed, self.denied, module, action)

    def matrix(self) -> Dict[str, Dict[str, bool]]:
        return {m: {a: self.can(m, a) for a in CRUD_ACTIONS + ["manage"]} for m in MODULES}


class PermissionResolver:
    """
    Merges role defaults, custom role grants and explicit per-user
    overrides into a cached permission set.
    """

    def __init__(self, ttl_seconds: int = 300):
        self.ttl_seconds = ttl_seconds
        self._cache: Dict[str, ResolvedPermissions] = {}

    def resolve(self, supabase, user_id: str, roles: Optional[List[str]] = None,
                force_refresh: bool = False) -> ResolvedPermissions:
        cached = self._cache.get(user_id)
        if cached and not force_refresh:
            age = (datetime.utcnow() - cached.resolved_at).total_seconds()
            if age < self.ttl_seconds:
                return cached

        if roles is None:
            roles = get_user_roles(supabase, user_id)

        allowed: Set[str] = set()
        for role in roles:
            allowed |= get_role_permissions(role)

        denied: Set[str] = set()

        if supabase is not None:
            try:
                allowed |= _load_custom_role_permissions(supabase, user_id)
            except Exception as e:
                logger.warning(f"Failed to load custom role permissions for {user_id}: {e}")

            try:
                overrides = supabase.table("user_permissions")\
                    .select("permission_key, effect")\
                    .eq("user_id", user_id)\
                    .execute()
                for row in overrides.data or []:
                    if row.get("effect") == "deny":
                        denied.add(row["permission_key"])
                    else:
                        allowed.add(row["permission_key"])
            except Exception as e:
                logger.warning(f"Failed to load permission overrides for {user_id}: {e}")

        resolved = ResolvedPermissions(user_id=user_id, roles=list(roles), allowed=allowed, denied=denied)
        self._cache[user_id] = resolved
        return resolved

    def invalidate(self, user_id: Optional[str] = None):
        if user_id is None:
            self._cache.clear()
        else:
            self._cache.pop(user_id, None)


def _load_custom_role_permissions(supabase, user_id: str) -> Set[str]:
    links = supabase.table("user_custom_roles")\
        .select("custom_role_id")\
        .eq("user_id", user_id)\
        .eq("is_active", True)\
        .execute()
    role_ids = [row["custom_role_id"] for row in links.data or []]
    if not role_ids:
        return set()

    roles = supabase.table("custom_roles")\
        .select("permissions")\
        .in_("id", role_ids)\
        .eq("is_active", True)\
        .execute()
    perms: Set[str] = set()
    for row in roles.data or []:
        perms |= set(row.get("permissions") or [])
    return perms


_resolver: Optional[PermissionResolver] = None


def get_resolver() -> PermissionResolver:
    global _resolver
    if _resolver is None:
        _resolver = PermissionResolver()
    return _resolver


# =============================================================================
# ROLE ASSIGNMENT
# =============================================================================

def get_user_roles(supabase, user_id: str) -> List[str]:
    """Active app roles for a user. Falls back to 'user' when none are found."""
    if supabase is None:
        return [AppRole.USER.value]
    try:
        res = supabase.table("user_roles")\
            .select("role")\
            .eq("user_id", user_id)\
            .eq("is_active", True)\
            .execute()
        roles = [row["role"] for row in res.data or []]
        return roles or [AppRole.USER.value]
    except Exception as e:
        logger.warning(f"Failed to fetch roles for {user_id}: {e}")
        return [AppRole.USER.value]


_MEMBERSHIP_TABLES = (("profiles", "id"), ("employees", "id"), ("client_portal_users", "user_id"))


def ensure_tenant_user(supabase, tenant_id: str, user_id: str):
    """Raise LookupError unless user_id is a profile, employee or portal user of tenant_id."""
    if not tenant_id or not user_id:
        raise LookupError("User not found")
    for table, column in _MEMBERSHIP_TABLES:
        res = supabase.table(table)\
            .select(column)\
            .eq(column, user_id)\
            .eq("tenant_id", tenant_id)\
            .limit(1)\
            .execute()
        if res.data:
            return
    logger.warning(f"User {user_id} is not a member of tenant {tenant_id}")
    raise LookupError("User not found")


def assign_role(supabase, tenant_id: str, user_id: str, role: str, granted_by: Optional[str] = None) -> Dict[str, Any]:
    try:
        AppRole(role)
    except ValueError:
        raise ValueError(f"Unknown role '{role}'")
    ensure_tenant_user(supabase, tenant_id, user_id)

    existing = supabase.table("user_roles")\
        .select("*")\
        .eq("user_id", user_id)\
        .eq("role", role)\
        .execute()
    if existing.data:
        row = existing.data[0]
        if row.get("is_active"):
            return row
        supabase.table("user_roles").update({"is_active": True, "granted_by": granted_by})\
            .eq("id", row["id"]).execute()
        get_resolver().invalidate(user_id)
        return {**row, "is_active": True, "granted_by": granted_by}

    res = supabase.table("user_roles").insert({
        "tenant_id": tenant_id,
        "user_id": user_id,
        "role": role,
        "granted_by": granted_by,
        "is_active": True,
    }).execute()
    get_resolver().invalidate(user_id)
    return res.data[0]


def revoke_role(supabase, tenant_id: str, user_id: str, role: str) -> bool:
    ensure_tenant_user(supabase, tenant_id, user_id)
    supabase.table("user_roles")\
        .update({"is_active": False})\
        .eq("user_id", user_id)\
        .eq("role", role)\
        .execute()
    get_resolver().invalidate(user_id)
    return True


# =============================================================================
# CUSTOM ROLES
# =============================================================================

def _validate_permission_keys(permissions: List[str]):
    for key in permissions:
        module, _, action = key.partition(".")
        if module not in MODULES or (action not in ACTION_LEVELS and action != "*"):
            raise ValueError(f"Invalid permission '{key}'")


def list_custom_roles(supabase, tenant_id: str, include_inactive: bool = False) -> List[Dict[str, Any]]:
    query = supabase.table("custom_roles").select("*").eq("tenant_id", tenant_id)
    if not include_inactive:
        query = query.eq("is_active", True)
    return query.order("name").execute().data or []


def create_custom_role(supabase, tenant_id: str, name: str, permissions: List[str],
                       description: Optional[str] = None, created_by: Optional[str] = None) -> Dict[str, Any]:
    name = (name or "").strip()
    if not name:
        raise ValueError("Role name is required")
    if name.lower() in {r.value for r in AppRole}:
        raise ValueError(f"'{name}' is a built-in role")
    _validate_permission_keys(permissions)

    existing = supabase.table("custom_roles")\
        .select("id")\
        .eq("tenant_id", tenant_id)\
        .eq("name", name)\
        .eq("is_active", True)\
        .execute()
    if existing.data:
        raise ValueError(f"A role named '{name}' already exists")

    res = supabase.table("custom_roles").insert({
        "tenant_id": tenant_id,
        "name": name,
        "description": description,
        "permissions": sorted(set(permissions)),
        "is_active": True,
        "created_by": created_by,
    }).execute()
    return res.data[0]


def update_custom_role(supabase, tenant_id: str, role_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
    res = supabase.table("custom_roles").select("*").eq("id", role_id).eq("tenant_id", tenant_id).execute()
    if not res.data:
        raise LookupError("Role not found")

    payload = {k: v for k, v in updates.items() if k in ("name", "description", "permissions") and v is not None}
    if "permissions" in payload:
        _validate_permission_keys(payload["permissions"])
        payload["permissions"] = sorted(set(payload["permissions"]))
    payload["updated_at"] = datetime.utcnow().isoformat()

    supabase.table("custom_roles").update(payload).eq("id", role_id).execute()
    # Any holder of the role may now have different effective permissions
    get_resolver().invalidate()
    return {**res.data[0], **payload}


def delete_custom_role(supabase, tenant_id: str, role_id: str) -> bool:
    res = supabase.table("custom_roles").select("id").eq("id", role_id).eq("tenant_id", tenant_id).execute()
    if not res.data:
        raise LookupError("Role not found")
    supabase.table("custom_roles").update({"is_active": False}).eq("id", role_id).execute()
    get_resolver().invalidate()
    return True


def assign_custom_role(supabase, tenant_id: str, user_id: str, role_id: str) -> Dict[str, Any]:
    role = supabase.table("custom_roles").select("id")\
        .eq("id", role_id).eq("tenant_id", tenant_id).eq("is_active", True).execute()
    if not role.data:
        raise LookupError("Role not found")
    ensure_tenant_user(supabase, tenant_id, user_id)

    res = supabase.table("user_custom_roles").insert({
        "tenant_id": tenant_id,
        "user_id": user_id,
        "custom_role_id": role_id,
        "is_active": True,
    }).execute()
    get_resolver().invalidate(user_id)
    return res.data[0]


def set_user_permission(supabase, tenant_id: str, user_id: str, permission_key: str, effect: str) -> Dict[str, Any]:
    if effect not in ("allow", "deny"):
        raise ValueError("effect must be 'allow' or 'deny'")
    _validate_permission_keys([permission_key])
    ensure_tenant_user(supabase, tenant_id, user_id)
    res = supabase.table("user_permissions").upsert({
        "tenant_id": tenant_id,
        "user_id": user_id,
        "permission_key": permission_key,
        "effect": effect,
    }, on_conflict="user_id,permission_key").execute()
    get_resolver().invalidate(user_id)
    return res.data[0] if res.data else {"user_id": user_id, "permission_key": permission_key, "effect": effect}


def get_permission_matrix() -> Dict[str, Dict[str, Dict[str, bool]]]:
    """Role x module x action matrix of the built-in defaults."""
    matrix = {}
    for role in AppRole:
        perms = DEFAULT_ROLE_PERMISSIONS[role]
        matrix[role.value] = {
            m: {a: is_action_allowed(perms, set(), m, a) for a in CRUD_ACTIONS + ["manage"]}
            for m in MODULES
        }
    return matrix


def summarize_roles() -> List[Dict[str, Any]]:
    return [
        {"role": role.value, **meta}
        for role, meta in sorted(ROLE_METADATA.items(), key=lambda kv: -kv[1]["level"])
    ]
