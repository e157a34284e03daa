"""
Deadline and hearing reminder tests. Email goes through a recording sender.
"""

from datetime import date

import pytest

from app import reminders
from tests.conftest import TENANT_ID

TODAY = date(2026, 1, 1)


class RecordingSender:
    def __init__(self, fail_for=()):
        self.sent = []
        self.fail_for = set(fail_for)

    def __call__(self, to, subject, html, text):
        self.sent.append((to, subject))
        return to not in self.fail_for


@pytest.fixture
def seeded_db(fake_db):
    fake_db.tables.update({
        "clients": [{"id": "client-1", "tenant_id": TENANT_ID, "display_name": "Acme Traders", "email": "acme@example.com"}],
        "employees": [{"id": "emp-1", "tenant_id": TENANT_ID, "email": "emp@example.com", "official_email": "emp@firm.in"}],
        "cases": [{"id": "case-1", "tenant_id": TENANT_ID, "case_number": "GST/2026/001", "title": "ITC mismatch",
                   "assigned_to": "emp-1", "client_id": "client-1"}],
        "courts": [{"id": "court-1", "name": "GST Appellate Tribunal"}],
        "statutory_event_types": [{"id": "et-1", "name": "Appeal Filing", "code": "APL"}],
        "case_statutory_deadlines": [
            {"id": "d-3", "tenant_id": TENANT_ID, "case_id": "case-1", "event_type_id": "et-1",
             "calculated_deadline": "2026-01-04", "status": "pending"},
            {"id": "d-5", "tenant_id": TENANT_ID, "case_id": "case-1", "event_type_id": "et-1",
             "calculated_deadline": "2026-01-06", "status": "pending"},
            {"id": "d-done", "tenant_id": TENANT_ID, "case_id": "case-1", "event_type_id": "et-1",
             "calculated_deadline": "2026-01-01", "status": "completed"},
        ],
        "hearings": [
            {"id": "h-1", "tenant_id": TENANT_ID, "case_id": "case-1", "court_id": "court-1",
             "hearing_date": "2026-01-02", "start_time": "11:30", "status": "scheduled"},
            {"id": "h-2", "tenant_id": TENANT_ID, "case_id": "case-1", "court_id": "court-1",
             "hearing_date": "2026-01-02", "status": "adjourned"},
        ],
    })
    return fake_db


def test_reminder_type_and_urgency():
    assert reminders.get_reminder_type(0) == "today"
    assert reminders.get_reminder_type(1) == "tomorrow"
    assert reminders.get_reminder_type(3) == "approaching"
    assert reminders.get_reminder_type(7) == "upcoming"
    assert reminders.get_urgency_label(-2) == "URGENT"
    assert reminders.get_urgency_label(5) == "Upcoming"


class TestDeadlineReminders:

    def test_sends_for_matching_offsets_only(self, seeded_db):
        sender = RecordingSender()
        result = reminders.send_deadline_reminders(seeded_db, TENANT_ID, today=TODAY, sender=sender)

        assert result["total"] == 1
        assert result["sent"] == 1
        log = result["logs"][0]
        assert log["deadline_id"] == "d-3"
        assert log["type"] == "statutory_deadline_approaching"
        assert log["recipients"] == ["acme@example.com", "emp@firm.in"]
        assert sender.sent[0][1] == "Reminder - Appeal Filing: GST/2026/001"

        audit = [a for a in seeded_db.rows("audit_log") if a["action_type"] == "reminder_sent"]
        assert len(audit) == 1
        audit = audit[0]
        assert audit["entity_id"] == "d-3"

    def test_second_run_same_day_is_skipped(self, seeded_db):
        sender = RecordingSender()
        reminders.send_deadline_reminders(seeded_db, TENANT_ID, today=TODAY, sender=sender)
        again = reminders.send_deadline_reminders(seeded_db, TENANT_ID, today=TODAY, sender=sender)
        assert again["skipped"] == 1
        assert again["sent"] == 0
        assert len(sender.sent) == 2

    def test_partial_delivery_counts_as_failed(self, seeded_db):
        sender = RecordingSender(fail_for={"emp@firm.in"})
        result = reminders.send_deadline_reminders(seeded_db, TENANT_ID, today=TODAY, sender=sender)
        assert result["failed"] == 1
        assert result["sent"] == 0
        assert "emp@firm.in" in result["logs"][0]["error_message"]

    def test_no_recipients_is_skipped(self, seeded_db):
        seeded_db.tables["clients"][0]["email"] = None
        seeded_db.tables["employees"] = []
        result = reminders.send_deadline_reminders(seeded_db, TENANT_ID, today=TODAY, sender=RecordingSender())
        assert result["skipped"] == 1

    def test_tenant_reminder_days_are_honored(self, seeded_db):
        seeded_db.tables["tenant_settings"] = [{
            "tenant_id": TENANT_ID, "defaults": {"reminder_days": [5]}, "feature_flags": {},
        }]
        result = reminders.send_deadline_reminders(seeded_db, TENANT_ID, today=TODAY, sender=RecordingSender())
        assert [log["deadline_id"] for log in result["logs"]] == ["d-5"]

    def test_all_tenants_when_none_given(self, seeded_db):
        seeded_db.tables["tenants"].append({"id": "tenant-2"})
        result = reminders.send_deadline_reminders(seeded_db, today=TODAY, sender=RecordingSender())
        assert result["sent"] == 1
        assert result["success"] is True


class TestHearingReminders:

    def test_scheduled_hearing_tomorrow(self, seeded_db):
        sender = RecordingSender()
        result = reminders.send_hearing_reminders(seeded_db, TENANT_ID, today=TODAY, sender=sender)
        assert result["total"] == 1
        assert result["sent"] == 1
        assert result["logs"][0]["days_until"] == 1
        assert sender.sent[0][1] == "Tomorrow - Hearing: GST/2026/001"
        sent = [a for a in seeded_db.rows("audit_log") if a["action_type"] == "hearing_reminder_sent"]
        assert [a["entity_id"] for a in sent] == ["h-1"]

    def test_nothing_due(self, seeded_db):
        result = reminders.send_hearing_reminders(seeded_db, TENANT_ID, today=date(2026, 3, 1), sender=RecordingSender())
        assert result["total"] == 0
        assert result["logs"] == []
