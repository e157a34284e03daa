"""
Employee onboarding and client portal invitation tests.
"""

from unittest.mock import MagicMock

import pytest

from app import employee_invites
from app.employee_invites import EmployeeInviteRequest, PortalInviteRequest
from tests.conftest import TENANT_ID, make_auth


def _request(**overrides):
    data = {
        "email": " New.Hire@Example.com ",
        "fullName": "New Hire",
        "role": "Advocate",
        "department": "Litigation",
        "dateOfJoining": "2026-01-05",
        "sendWelcomeEmail": True,
    }
    data.update(overrides)
    return EmployeeInviteRequest(**data)


class TestEmployeeInvite:

    def test_creates_auth_user_employee_and_role(self, fake_db, admin_auth):
        result = employee_invites.invite_employee(fake_db, admin_auth, _request(barCouncilNo="MH/123/2020", shoeSize=9))

        employee = fake_db.rows("employees")[0]
        assert employee["email"] == "new.hire@example.com"
        assert employee["employee_code"] == "GSTE0001"
        assert employee["bar_council_no"] == "MH/123/2020"
        assert "shoeSize" not in employee
        assert result["employee"]["appRole"] == "manager"
        assert any(r["role"] == "manager" and r["user_id"] == employee["id"] for r in fake_db.rows("user_roles"))
        # unconfigured SMTP outside production logs the mail and reports it sent
        assert result["credentials"] is None

    def test_credentials_returned_without_welcome_email(self, fake_db, admin_auth):
        result = employee_invites.invite_employee(fake_db, admin_auth, _request(sendWelcomeEmail=False, password="S3cret!pass"))
        assert result["credentials"] == {"email": "new.hire@example.com", "password": "S3cret!pass"}
        assert result["employee"]["appRole"] == "manager"

    def test_employee_codes_increment(self, fake_db, admin_auth):
        fake_db.tables["employees"] = [{"id": "e1", "tenant_id": TENANT_ID, "email": "a@x.in", "employee_code": "GSTE0041"}]
        assert employee_invites.next_employee_code(fake_db, TENANT_ID) == "GSTE0042"
        assert employee_invites.next_employee_code(fake_db, "tenant-2") == "GSTE0001"

    def test_requires_admin_like_caller(self, fake_db):
        staff = make_auth(("staff",), db=fake_db)
        with pytest.raises(PermissionError):
            employee_invites.invite_employee(fake_db, staff, _request())

    @pytest.mark.parametrize("overrides", [{"department": None}, {"email": "not-an-email"}])
    def test_invalid_requests(self, fake_db, admin_auth, overrides):
        with pytest.raises(ValueError):
            employee_invites.invite_employee(fake_db, admin_auth, _request(**overrides))
        fake_db.auth.admin.create_user.assert_not_called()

    def test_duplicate_email_in_tenant(self, fake_db, admin_auth):
        fake_db.tables["employees"] = [{"id": "e1", "tenant_id": TENANT_ID, "email": "new.hire@example.com"}]
        with pytest.raises(ValueError, match="already exists"):
            employee_invites.invite_employee(fake_db, admin_auth, _request())

    def test_auth_user_removed_when_insert_fails(self, fake_db, admin_auth, monkeypatch):
        original = fake_db.table

        def failing_table(name):
            query = original(name)
            if name == "employees":
                query.insert = MagicMock(side_effect=RuntimeError("insert failed"))
            return query

        monkeypatch.setattr(fake_db, "table", failing_table)
        with pytest.raises(RuntimeError):
            employee_invites.invite_employee(fake_db, admin_auth, _request())
        fake_db.auth.admin.delete_user.assert_called_once()


class TestPortalInvite:

    def _seed(self, fake_db):
        fake_db.tables["clients"] = [{"id": "client-1", "tenant_id": TENANT_ID, "display_name": "Acme Traders"}]

    def test_invite_creates_portal_user(self, fake_db, admin_auth):
        self._seed(fake_db)
        result = employee_invites.invite_client_portal_user(
            fake_db, admin_auth, PortalInviteRequest(clientId="client-1", email="CFO@Acme.in"),
        )
        portal = fake_db.rows("client_portal_users")[0]
        assert portal["email"] == "cfo@acme.in"
        assert portal["portal_role"] == "viewer"
        assert result["client_name"] == "Acme Traders"
        assert any(r["role"] == "client" for r in fake_db.rows("user_roles"))

    def test_existing_auth_user_is_reused(self, fake_db, admin_auth):
        self._seed(fake_db)
        fake_db.auth.admin.list_users.return_value = [{"id": "auth-existing", "email": "cfo@acme.in"}]
        result = employee_invites.invite_client_portal_user(
            fake_db, admin_auth, PortalInviteRequest(clientId="client-1", email="cfo@acme.in"),
        )
        assert result["user_id"] == "auth-existing"
        fake_db.auth.admin.create_user.assert_not_called()

    def test_duplicate_and_unknown_client(self, fake_db, admin_auth):
        self._seed(fake_db)
        req = PortalInviteRequest(clientId="client-1", email="cfo@acme.in")
        employee_invites.invite_client_portal_user(fake_db, admin_auth, req)
        with pytest.raises(ValueError):
            employee_invites.invite_client_portal_user(fake_db, admin_auth, req)
        with pytest.raises(ValueError):
            employee_invites.invite_client_portal_user(
                fake_db, admin_auth, PortalInviteRequest(clientId="client-9", email="x@acme.in"),
            )

    def test_deactivate(self, fake_db, admin_auth):
        self._seed(fake_db)
        employee_invites.invite_client_portal_user(
            fake_db, admin_auth, PortalInviteRequest(clientId="client-1", email="cfo@acme.in"),
        )
        portal_id = fake_db.rows("client_portal_users")[0]["id"]
        assert employee_invites.deactivate_portal_user(fake_db, TENANT_ID, portal_id)["is_active"] is False
        assert employee_invites.list_portal_users(fake_db, TENANT_ID, "client-1")[0]["is_active"] is False
        with pytest.raises(LookupError):
            employee_invites.deactivate_portal_user(fake_db, "tenant-2", portal_id)
