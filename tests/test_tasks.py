"""
Task engine and task bundle tests.

Run with: python -m pytest tests/test_tasks.py -v
"""

from datetime import date

import pytest

from app import task_bundles, task_engine
from app.task_engine import FollowUpRequest, TaskCreateRequest, TaskUpdateRequest
from tests.conftest import TENANT_ID, USER_ID


def _seed_links(fake_db):
    fake_db.tables["clients"] = [{"id": "client-1", "tenant_id": TENANT_ID, "display_name": "Acme"}]
    fake_db.tables["cases"] = [{"id": "case-1", "tenant_id": TENANT_ID, "client_id": "client-1"}]


def _task(fake_db, **overrides):
    req = TaskCreateRequest(title=overrides.pop("title", "Draft reply"), **overrides)
    return task_engine.create_task(fake_db, TENANT_ID, USER_ID, req)


class TestTaskLifecycle:

    def test_create_task_defaults(self, fake_db):
        _seed_links(fake_db)
        task = _task(fake_db, case_id="case-1")
        assert task["status"] == "Not Started"
        assert task["priority"] == "Medium"
        assert task["is_locked"] is False
        assert task["assigned_by"] == USER_ID
        events = fake_db.rows("task_events")
        assert events[0]["event_type"] == "created"

    def test_links_must_belong_to_tenant(self, fake_db):
        fake_db.tables["cases"] = [{"id": "case-b", "tenant_id": "tenant-2"}]
        fake_db.tables["clients"] = [{"id": "client-b", "tenant_id": "tenant-2"}]
        fake_db.tables["hearings"] = [{"id": "hearing-b", "tenant_id": "tenant-2"}]
        for link in ({"case_id": "case-b"}, {"client_id": "client-b"}, {"hearing_id": "hearing-b"}):
            with pytest.raises(LookupError):
                _task(fake_db, **link)
        assert fake_db.rows("tasks") == []

        task = _task(fake_db)
        with pytest.raises(LookupError):
            task_engine.update_task(fake_db, TENANT_ID, task["id"], USER_ID, TaskUpdateRequest(hearing_id="hearing-b"))

    def test_blank_title_rejected(self):
        with pytest.raises(ValueError):
            TaskCreateRequest(title="   ")

    def test_dedup_key_returns_open_task(self, fake_db):
        first = _task(fake_db, dedup_key="k1")
        second = _task(fake_db, dedup_key="k1")
        assert second["id"] == first["id"]
        assert second["existing"] is True
        assert len(fake_db.rows("tasks")) == 1

    def test_dedup_key_ignores_closed_task(self, fake_db):
        first = _task(fake_db, dedup_key="k1")
        fake_db.rows("tasks")[0]["status"] = "Completed"
        second = _task(fake_db, dedup_key="k1")
        assert second["id"] != first["id"]

    def test_status_transitions(self):
        task_engine.validate_transition("Not Started", "In Progress")
        task_engine.validate_transition("Completed", "In Progress")
        task_engine.validate_transition("Review", "Review")
        with pytest.raises(ValueError):
            task_engine.validate_transition("Not Started", "Completed")
        with pytest.raises(ValueError):
            task_engine.validate_transition("Not Started", "Archived")

    def test_update_sets_completed_date(self, fake_db):
        task = _task(fake_db, status="In Progress")
        updated = task_engine.update_task(
            fake_db, TENANT_ID, task["id"], USER_ID, TaskUpdateRequest(status="Completed")
        )
        assert updated["status"] == "Completed"
        assert updated["completed_date"] == date.today().isoformat()
        assert fake_db.rows("task_events")[-1]["event_type"] == "status_changed"

    def test_update_unknown_task(self, fake_db):
        with pytest.raises(LookupError):
            task_engine.update_task(fake_db, TENANT_ID, "missing", USER_ID, TaskUpdateRequest(title="x"))

    def test_update_other_tenant_task_is_not_found(self, fake_db):
        task = _task(fake_db)
        with pytest.raises(LookupError):
            task_engine.get_task(fake_db, "tenant-2", task["id"])


class TestFollowUpLocking:

    def test_follow_up_locks_task(self, fake_db):
        task = _task(fake_db, status="In Progress")
        result = task_engine.add_follow_up(
            fake_db, TENANT_ID, task["id"], USER_ID,
            FollowUpRequest(remarks="Called client", hours_logged=1.5),
        )
        assert result["task"]["is_locked"] is True
        assert result["task"]["locked_by"] == USER_ID
        assert result["task"]["actual_hours"] == 1.5
        assert len(fake_db.rows("task_followups")) == 1

    def test_locked_task_rejects_edit_and_delete(self, fake_db):
        task = _task(fake_db, status="In Progress")
        task_engine.add_follow_up(fake_db, TENANT_ID, task["id"], USER_ID, FollowUpRequest(remarks="Started"))

        with pytest.raises(PermissionError):
            task_engine.update_task(fake_db, TENANT_ID, task["id"], USER_ID, TaskUpdateRequest(title="New"))
        with pytest.raises(PermissionError):
            task_engine.delete_task(fake_db, TENANT_ID, task["id"], USER_ID)

    def test_locked_task_still_accepts_follow_ups(self, fake_db):
        task = _task(fake_db, status="In Progress")
        first = task_engine.add_follow_up(fake_db, TENANT_ID, task["id"], USER_ID, FollowUpRequest(remarks="One", hours_logged=2))
        second = task_engine.add_follow_up(
            fake_db, TENANT_ID, task["id"], "user-2",
            FollowUpRequest(remarks="Two", hours_logged=1, status="Completed"),
        )
        assert second["task"]["locked_by"] == USER_ID
        assert second["task"]["locked_at"] == first["task"]["locked_at"]
        assert second["task"]["actual_hours"] == 3
        assert second["task"]["status"] == "Completed"
        assert len(task_engine.list_follow_ups(fake_db, TENANT_ID, task["id"])) == 2

    def test_follow_up_with_invalid_status_is_rejected(self, fake_db):
        task = _task(fake_db)
        with pytest.raises(ValueError):
            task_engine.add_follow_up(
                fake_db, TENANT_ID, task["id"], USER_ID,
                FollowUpRequest(remarks="Done", status="Completed"),
            )
        assert fake_db.rows("task_followups") == []

    def test_blank_remarks_rejected(self):
        with pytest.raises(ValueError):
            FollowUpRequest(remarks=" ")


class TestOverdue:

    def test_overdue_excludes_closed_and_future(self, fake_db):
        fake_db.tables["tasks"] = [
            {"id": "t1", "tenant_id": TENANT_ID, "status": "In Progress", "due_date": "2026-01-01"},
            {"id": "t2", "tenant_id": TENANT_ID, "status": "Completed", "due_date": "2026-01-01"},
            {"id": "t3", "tenant_id": TENANT_ID, "status": "Not Started", "due_date": "2026-03-01"},
            {"id": "t4", "tenant_id": "tenant-2", "status": "In Progress", "due_date": "2026-01-01"},
        ]
        overdue = task_engine.get_overdue_tasks(fake_db, TENANT_ID, today=date(2026, 2, 1))
        assert [t["id"] for t in overdue] == ["t1"]

    def test_days_overdue(self):
        assert task_engine.days_overdue({"due_date": "2026-01-01"}, today=date(2026, 1, 11)) == 10
        assert task_engine.days_overdue({"due_date": "2026-02-01"}, today=date(2026, 1, 11)) == 0
        assert task_engine.days_overdue({}, today=date(2026, 1, 11)) == 0


class TestTaskBundles:

    def test_due_date_rounds_up_work_days(self):
        today = date(2026, 1, 1)
        assert task_bundles.calculate_due_date(8, today) == "2026-01-02"
        assert task_bundles.calculate_due_date(12, today) == "2026-01-03"
        assert task_bundles.calculate_due_date(0, today) == "2026-01-01"

    def test_default_bundles_for_stage_entry(self, fake_db):
        bundles = task_bundles.get_bundles_for_trigger(fake_db, TENANT_ID, "OnStageEnter", "Assessment")
        ids = {b["id"] for b in bundles}
        assert "bundle_assessment_enter" in ids
        assert "bundle_asmt10_notice_intake" in ids

    def test_tenant_bundles_are_merged(self, fake_db):
        fake_db.tables["task_bundles"] = [{
            "id": "custom-1", "tenant_id": TENANT_ID, "trigger": "OnStageEnter",
            "stage_key": "Tribunal", "is_active": True, "tasks": [],
        }]
        bundles = task_bundles.get_bundles_for_trigger(fake_db, TENANT_ID, "OnStageEnter", "Tribunal")
        assert {b["id"] for b in bundles} == {"bundle_tribunal_enter", "custom-1"}

    def test_trigger_is_idempotent_per_cycle(self, fake_db):
        _seed_links(fake_db)
        case = {"id": "case-1", "client_id": "client-1", "assigned_to": "user-9"}
        first = task_bundles.trigger_task_bundles(fake_db, TENANT_ID, "OnRemand", "Tribunal", case, cycle_no=1)
        again = task_bundles.trigger_task_bundles(fake_db, TENANT_ID, "OnRemand", "Tribunal", case, cycle_no=1)
        next_cycle = task_bundles.trigger_task_bundles(fake_db, TENANT_ID, "OnRemand", "Tribunal", case, cycle_no=2)

        assert len(first) == 3
        assert again == []
        assert len(next_cycle) == 3
        assert all(t["assigned_to"] == "user-9" for t in first)
        assert first[0]["title"].endswith("(C1)")

    def test_trigger_respects_feature_flag(self, fake_db):
        fake_db.tables["tenant_settings"] = [{
            "tenant_id": TENANT_ID, "defaults": {}, "feature_flags": {"stage_task_automation": False},
        }]
        created = task_bundles.trigger_task_bundles(fake_db, TENANT_ID, "OnStageEnter", "Tribunal", {"id": "case-1"})
        assert created == []
        assert fake_db.rows("tasks") == []

    def test_unknown_bundle(self, fake_db):
        with pytest.raises(LookupError):
            task_bundles.get_bundle(fake_db, TENANT_ID, "nope")
