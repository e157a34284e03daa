"""
Permission resolution, custom roles, UI state and tenant settings.
"""

import pytest

from app import rbac_engine, tenant_settings_loader, ui_state
from app.rbac_engine import get_resolver, is_action_allowed
from tests.conftest import TENANT_ID, USER_ID


class TestPermissions:

    def test_higher_level_implies_lower(self):
        assert is_action_allowed({"cases.delete"}, set(), "cases", "update")
        assert is_action_allowed({"cases.admin"}, set(), "cases", "read")
        assert not is_action_allowed({"cases.read"}, set(), "cases", "update")
        assert not is_action_allowed({"cases.read"}, set(), "cases", "fly")

    def test_deny_wins(self):
        assert not is_action_allowed({"cases.admin"}, {"cases.read"}, "cases", "read")
        assert not is_action_allowed({"cases.*"}, {"cases.*"}, "cases", "read")

    @pytest.mark.parametrize("role,module,action,expected", [
        ("admin", "rbac", "delete", True),
        ("partner", "rbac", "manage", False),
        ("manager", "employees", "delete", False),
        ("staff", "courts", "update", False),
        ("staff", "tasks", "update", True),
        ("staff", "settings", "read", False),
        ("client", "cases", "read", True),
        ("client", "cases", "create", False),
        ("nobody", "cases", "read", False),
    ])
    def test_role_defaults(self, role, module, action, expected):
        matrix_value = is_action_allowed(rbac_engine.get_role_permissions(role), set(), module, action)
        assert matrix_value is expected

    def test_matrix_covers_every_role(self):
        matrix = rbac_engine.get_permission_matrix()
        assert set(matrix) == {r.value for r in rbac_engine.AppRole}
        assert matrix["client"]["documents"]["read"] is True


class TestResolver:

    def test_roles_loaded_from_user_roles(self, fake_db):
        assert rbac_engine.get_user_roles(fake_db, USER_ID) == ["user"]
        rbac_engine.assign_role(fake_db, TENANT_ID, USER_ID, "manager")
        assert rbac_engine.get_user_roles(fake_db, USER_ID) == ["manager"]
        assert fake_db.rows("user_roles")[0]["tenant_id"] == TENANT_ID
        resolved = get_resolver().resolve(fake_db, USER_ID)
        assert resolved.can("cases", "delete")

    def test_assign_unknown_role(self, fake_db):
        with pytest.raises(ValueError):
            rbac_engine.assign_role(fake_db, TENANT_ID, USER_ID, "overlord")

    def test_revoke_and_reassign(self, fake_db):
        rbac_engine.assign_role(fake_db, TENANT_ID, USER_ID, "staff")
        rbac_engine.revoke_role(fake_db, TENANT_ID, USER_ID, "staff")
        assert rbac_engine.get_user_roles(fake_db, USER_ID) == ["user"]
        row = rbac_engine.assign_role(fake_db, TENANT_ID, USER_ID, "staff")
        assert row["is_active"] is True
        assert len(fake_db.rows("user_roles")) == 1

    def test_cache_until_invalidated(self, fake_db):
        first = get_resolver().resolve(fake_db, USER_ID, ["staff"])
        fake_db.tables["user_permissions"] = [{"user_id": USER_ID, "permission_key": "reports.read", "effect": "deny"}]
        assert get_resolver().resolve(fake_db, USER_ID, ["staff"]) is first
        rbac_engine.set_user_permission(fake_db, TENANT_ID, USER_ID, "reports.read", "deny")
        assert not get_resolver().resolve(fake_db, USER_ID, ["staff"]).can("reports", "read")

    def test_custom_role_grants(self, fake_db):
        role = rbac_engine.create_custom_role(fake_db, TENANT_ID, "Auditor", ["settings.read", "reports.read"])
        rbac_engine.assign_custom_role(fake_db, TENANT_ID, USER_ID, role["id"])
        assert get_resolver().resolve(fake_db, USER_ID, ["client"]).can("settings", "read")

        rbac_engine.delete_custom_role(fake_db, TENANT_ID, role["id"])
        assert not get_resolver().resolve(fake_db, USER_ID, ["client"]).can("settings", "read")

    @pytest.mark.parametrize("name,perms", [
        ("", ["cases.read"]),
        ("Admin", ["cases.read"]),
        ("Auditor", ["payroll.read"]),
        ("Auditor", ["cases.fly"]),
    ])
    def test_custom_role_validation(self, fake_db, name, perms):
        with pytest.raises(ValueError):
            rbac_engine.create_custom_role(fake_db, TENANT_ID, name, perms)

    def test_custom_role_name_unique(self, fake_db):
        rbac_engine.create_custom_role(fake_db, TENANT_ID, "Auditor", ["reports.read"])
        with pytest.raises(ValueError):
            rbac_engine.create_custom_role(fake_db, TENANT_ID, "Auditor", ["reports.read"])


class TestTenantSettings:

    def test_auto_created_with_audit(self, fake_db):
        settings = tenant_settings_loader.get_tenant_settings(fake_db, TENANT_ID)
        assert settings["defaults"]["reminder_days"] == [7, 3, 1, 0]
        assert len(fake_db.rows("tenant_settings")) == 1
        assert fake_db.rows("audit_log")[0]["action_type"] == "tenant_settings_initialized"

    def test_update_merges_and_rejects_unknown(self, fake_db):
        updated = tenant_settings_loader.update_tenant_settings(
            fake_db, TENANT_ID, defaults={"default_reply_days": 15}, feature_flags={"escalations": False},
        )
        assert updated["defaults"]["default_reply_days"] == 15
        assert updated["defaults"]["default_stage"] == "Adjudication"
        assert not tenant_settings_loader.is_feature_enabled(fake_db, TENANT_ID, "escalations")
        with pytest.raises(ValueError):
            tenant_settings_loader.update_tenant_settings(fake_db, TENANT_ID, defaults={"colour": "blue"})

    def test_no_database_returns_defaults(self):
        assert tenant_settings_loader.get_tenant_settings(None, TENANT_ID)["feature_flags"]["client_portal"] is True


class TestUiState:

    def test_set_get_and_overwrite(self, fake_db):
        ui_state.set_state(fake_db, USER_ID, "cases.filters", {"stage": "Tribunal"}, TENANT_ID, "filters")
        ui_state.set_state(fake_db, USER_ID, "cases.filters", {"stage": "High Court"}, TENANT_ID, "filters")
        assert ui_state.get_state(fake_db, USER_ID, "cases.filters") == {"stage": "High Court"}
        assert len(fake_db.rows("user_ui_state")) == 1
        assert ui_state.get_state(fake_db, USER_ID, "missing", default=[]) == []

    def test_category_filter_and_clear(self, fake_db):
        ui_state.set_state(fake_db, USER_ID, "theme", "dark")
        ui_state.set_state(fake_db, USER_ID, "tasks.columns", ["title"], category="column_visibility")
        ui_state.set_state(fake_db, "user-2", "theme", "light")
        assert ui_state.get_all_state(fake_db, USER_ID, "preferences") == {"theme": "dark"}

        assert ui_state.clear_state(fake_db, USER_ID, "theme") == 1
        assert ui_state.clear_state(fake_db, USER_ID) == 1
        assert ui_state.get_state(fake_db, "user-2", "theme") == "light"

    @pytest.mark.parametrize("key,value,category", [
        ("", 1, "preferences"),
        ("k" * 101, 1, "preferences"),
        ("k", 1, "favourites"),
        ("k", {1, 2}, "preferences"),
        ("k", "x" * (64 * 1024 + 1), "preferences"),
    ])
    def test_rejects_bad_input(self, fake_db, key, value, category):
        with pytest.raises(ValueError):
            ui_state.set_state(fake_db, USER_ID, key, value, category=category)


class TestTenantBoundary:

    @pytest.fixture
    def two_tenant_db(self, fake_db):
        fake_db.tables["tenants"].append({"id": "tenant-2"})
        fake_db.tables["profiles"].append({"id": "outsider", "tenant_id": "tenant-2"})
        return fake_db

    @pytest.mark.parametrize("change", [
        lambda db: rbac_engine.assign_role(db, TENANT_ID, "outsider", "admin"),
        lambda db: rbac_engine.revoke_role(db, TENANT_ID, "outsider", "staff"),
        lambda db: rbac_engine.set_user_permission(db, TENANT_ID, "outsider", "cases.read", "allow"),
    ])
    def test_users_of_other_tenants_cannot_be_changed(self, two_tenant_db, change):
        with pytest.raises(LookupError):
            change(two_tenant_db)
        assert two_tenant_db.rows("user_roles") == []
        assert two_tenant_db.rows("user_permissions") == []

    def test_custom_role_not_assignable_across_tenants(self, two_tenant_db):
        role = rbac_engine.create_custom_role(two_tenant_db, TENANT_ID, "Auditor", ["reports.read"])
        with pytest.raises(LookupError):
            rbac_engine.assign_custom_role(two_tenant_db, TENANT_ID, "outsider", role["id"])
        assert two_tenant_db.rows("user_custom_roles") == []

    def test_employees_and_portal_users_are_members(self, fake_db):
        fake_db.tables["employees"] = [{"id": "emp-1", "tenant_id": TENANT_ID}]
        fake_db.tables["client_portal_users"] = [{"user_id": "portal-1", "tenant_id": TENANT_ID}]
        rbac_engine.ensure_tenant_user(fake_db, TENANT_ID, "emp-1")
        rbac_engine.ensure_tenant_user(fake_db, TENANT_ID, "portal-1")
        with pytest.raises(LookupError):
            rbac_engine.ensure_tenant_user(fake_db, "tenant-2", "emp-1")
