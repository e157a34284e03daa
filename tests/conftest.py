"""
Shared fixtures.

FakeSupabase is a small in-memory stand-in for the PostgREST query builder:
tables are lists of dicts, filters are applied in Python. Storage and the
auth admin API are MagicMocks so tests can assert on calls.
"""

import copy
import os
import re
import uuid
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

# No real Supabase, SMTP or Gemini during tests
os.environ["ENVIRONMENT"] = "test"
os.environ["SUPABASE_URL"] = ""
os.environ["SMTP_HOST"] = ""
os.environ["GEMINI_API_KEY"] = ""
os.environ["GOOGLE_CLOUD_API_KEY"] = ""
os.environ["GOOGLE_API_KEY"] = ""
os.environ["REMINDER_API_KEY"] = "cron-secret"

from fastapi.testclient import TestClient

from app.auth_permissions import AuthContext, get_auth_context, _rate_limit_cache
from app.rbac_engine import get_resolver
from app import tenant_settings_loader


TENANT_ID = "tenant-1"
USER_ID = "user-1"


# =============================================================================
# FAKE SUPABASE
# =============================================================================

def _like_to_regex(pattern: str, flags=0):
    parts = [re.escape(p) for p in pattern.split("%")]
    return re.compile("^" + ".*".join(parts) + "$", flags | re.DOTALL)


class FakeQuery:
    def __init__(self, db: "FakeSupabase", table: str):
        self.db = db
        self.table_name = table
        self.filters = []
        self.action = "select"
        self.payload = None
        self.on_conflict = None
        self.count_mode = None
        self.orders = []
        self.limit_n = None
        self.range_bounds = None
        self.single_row = False
        self._negate = False

    # -- actions ------------------------------------------------------------
    def select(self, columns="*", count=None):
        self.action = "select"
        self.count_mode = count
        return self

    def insert(self, payload):
        self.action = "insert"
        self.payload = payload
        return self

    def update(self, payload):
        self.action = "update"
        self.payload = payload
        return self

    def upsert(self, payload, on_conflict=None):
        self.action = "upsert"
        self.payload = payload
        self.on_conflict = on_conflict
        return self

    def delete(self):
        self.action = "delete"
        return self

    # -- filters ------------------------------------------------------------
    @property
    def not_(self):
        self._negate = True
        return self

    def _add(self, fn):
        negate, self._negate = self._negate, False
        self.filters.append((lambda row: not fn(row)) if negate else fn)
        return self

    def eq(self, col, value):
        return self._add(lambda r: r.get(col) == value)

    def neq(self, col, value):
        return self._add(lambda r: r.get(col) != value)

    def in_(self, col, values):
        values = list(values)
        return self._add(lambda r: r.get(col) in values)

    def is_(self, col, value):
        expected = None if value in (None, "null") else value
        return self._add(lambda r: r.get(col) is expected if expected is None else r.get(col) == expected)

    def _cmp(self, col, value, op):
        def check(row):
            current = row.get(col)
            if current is None:
                return False
            return op(str(current) if isinstance(value, str) else current, value)
        return self._add(check)

    def lt(self, col, value):
        return self._cmp(col, value, lambda a, b: a < b)

    def lte(self, col, value):
        return self._cmp(col, value, lambda a, b: a <= b)

    def gt(self, col, value):
        return self._cmp(col, value, lambda a, b: a > b)

    def gte(self, col, value):
        return self._cmp(col, value, lambda a, b: a >= b)

    def like(self, col, pattern):
        rx = _like_to_regex(pattern)
        return self._add(lambda r: r.get(col) is not None and bool(rx.match(str(r.get(col)))))

    def ilike(self, col, pattern):
        rx = _like_to_regex(pattern, re.IGNORECASE)
        return self._add(lambda r: r.get(col) is not None and bool(rx.match(str(r.get(col)))))

    # -- modifiers ----------------------------------------------------------
    def order(self, col, desc=False):
        self.orders.append((col, desc))
        return self

    def limit(self, n):
        self.limit_n = n
        return self

    def range(self, start, end):
        self.range_bounds = (start, end)
        return self

    def single(self):
        self.single_row = True
        return self

    # -- execution ----------------------------------------------------------
    def _matches(self, row):
        return all(f(row) for f in self.filters)

    def execute(self):
        self.db.calls.append((self.table_name, self.action))
        rows = self.db.tables.setdefault(self.table_name, [])

        if self.action == "insert":
            items = self.payload if isinstance(self.payload, list) else [self.payload]
            created = [self.db._new_row(self.table_name, item) for item in items]
            return SimpleNamespace(data=copy.deepcopy(created), count=len(created))

        if self.action == "upsert":
            items = self.payload if isinstance(self.payload, list) else [self.payload]
            keys = (self.on_conflict or "id").split(",")
            result = []
            for item in items:
                existing = next(
                    (r for r in rows if all(r.get(k.strip()) == item.get(k.strip()) for k in keys)),
                    None,
                )
                if existing is not None:
                    existing.update(copy.deepcopy(item))
                    result.append(existing)
                else:
                    result.append(self.db._new_row(self.table_name, item))
            return SimpleNamespace(data=copy.deepcopy(result), count=len(result))

        matched = [r for r in rows if self._matches(r)]

        if self.action == "update":
            for r in matched:
                r.update(copy.deepcopy(self.payload))
            return SimpleNamespace(data=copy.deepcopy(matched), count=len(matched))

        if self.action == "delete":
            self.db.tables[self.table_name] = [r for r in rows if not self._matches(r)]
            return SimpleNamespace(data=copy.deepcopy(matched), count=len(matched))

        for col, desc in reversed(self.orders):
            matched.sort(key=lambda r: (r.get(col) is None, r.get(col) if r.get(col) is not None else ""), reverse=desc)
        total = len(matched)
        if self.range_bounds:
            start, end = self.range_bounds
            matched = matched[start:end + 1]
        if self.limit_n is not None:
            matched = matched[:self.limit_n]
        data = copy.deepcopy(matched)
        if self.single_row:
            data = data[0] if data else None
        return SimpleNamespace(data=data, count=total if self.count_mode else None)


class FakeSupabase:
    def __init__(self, tables=None):
        self.tables = {name: [dict(r) for r in rows] for name, rows in (tables or {}).items()}
        self.calls = []
        self.storage = MagicMock()
        self.auth = MagicMock()
        self.auth.admin.create_user.side_effect = lambda attrs: SimpleNamespace(
            user=SimpleNamespace(id=f"auth-{uuid.uuid4().hex[:8]}", email=attrs.get("email"))
        )
        self.auth.admin.list_users.return_value = []

    def table(self, name):
        return FakeQuery(self, name)

    def _new_row(self, table, item):
        row = copy.deepcopy(item)
        row.setdefault("id", f"{table}-{uuid.uuid4().hex[:8]}")
        self.tables.setdefault(table, []).append(row)
        return row

    def rows(self, table):
        return self.tables.get(table, [])


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def fake_db():
    return FakeSupabase({
        "tenants": [{"id": TENANT_ID, "name": "Acme Associates"}],
        "profiles": [{"id": USER_ID, "tenant_id": TENANT_ID, "full_name": "Test User", "email": "user-1@example.com"}],
    })


@pytest.fixture(autouse=True)
def reset_caches():
    tenant_settings_loader.invalidate_cache()
    get_resolver().invalidate()
    _rate_limit_cache.clear()
    yield
    tenant_settings_loader.invalidate_cache()


def make_auth(roles=("admin",), user_id=USER_ID, tenant_id=TENANT_ID, db=None):
    """AuthContext resolved from the built-in role permissions."""
    roles = list(roles)
    permissions = get_resolver().resolve(db or FakeSupabase(), user_id, roles, force_refresh=True)
    return AuthContext(
        user_id=user_id,
        email=f"{user_id}@example.com",
        tenant_id=tenant_id,
        roles=roles,
        permissions=permissions,
        request_id="test",
        full_name="Test User",
    )


@pytest.fixture
def admin_auth(fake_db):
    return make_auth(("admin",), db=fake_db)


@pytest.fixture
def api(fake_db):
    """
    TestClient backed by fake_db. Set api.auth to change the caller.
    """
    from app.main import app

    state = SimpleNamespace(auth=make_auth(("admin",), db=fake_db), db=fake_db)
    app.dependency_overrides[get_auth_context] = lambda: state.auth
    with patch("app.router_utils.get_supabase", return_value=fake_db), \
         patch("app.supabase_client.get_supabase", return_value=fake_db), \
         patch("app.system_routes.get_supabase", return_value=fake_db):
        client = TestClient(app)
        client.state = state
        yield client
    app.dependency_overrides.clear()
