"""
Case records, lifecycle transitions and the in-stage workflow.
"""

import pytest

from app import cases_service, lifecycle, stage_workflow
from app.cases_service import CaseCreateRequest, CaseUpdateRequest, VersionConflictError
from app.lifecycle import TransitionRequest
from tests.conftest import TENANT_ID, USER_ID


def _case(fake_db, **overrides):
    req = CaseCreateRequest(title=overrides.pop("title", "ITC mismatch FY 2022-23"), **overrides)
    return cases_service.create_case(fake_db, TENANT_ID, USER_ID, req)


class TestCaseRecords:

    def test_create_applies_tenant_defaults(self, fake_db):
        fake_db.tables["tenant_settings"] = [{
            "tenant_id": TENANT_ID, "defaults": {"default_stage": "Assessment", "default_priority": "High"},
            "feature_flags": {"stage_task_automation": False},
        }]
        case = _case(fake_db, case_number="GST/2026/001")
        assert case["stage_code"] == "Assessment"
        assert case["priority"] == "High"
        assert case["version"] == 1
        assert fake_db.rows("case_timeline")[0]["type"] == "case_created"

    def test_generated_case_number(self, fake_db):
        assert cases_service.generate_case_number(1767225600123) == "CAS600123"
        assert _case(fake_db)["case_number"].startswith("CAS")

    def test_duplicate_case_number_rejected(self, fake_db):
        _case(fake_db, case_number="GST/1")
        with pytest.raises(ValueError):
            _case(fake_db, case_number="GST/1")

    def test_unknown_client_or_stage_rejected(self, fake_db):
        with pytest.raises(ValueError):
            _case(fake_db, client_id="client-x")
        with pytest.raises(ValueError):
            CaseCreateRequest(title="x", stage_code="Moon Court")

    def test_update_bumps_version_and_detects_conflict(self, fake_db):
        case = _case(fake_db)
        updated = cases_service.update_case(fake_db, TENANT_ID, case["id"], USER_ID, CaseUpdateRequest(version=1, city="Pune"))
        assert updated["version"] == 2
        assert updated["city"] == "Pune"

        with pytest.raises(VersionConflictError) as exc:
            cases_service.update_case(fake_db, TENANT_ID, case["id"], USER_ID, CaseUpdateRequest(version=1, city="Mumbai"))
        assert exc.value.db_version == 2

    def test_other_tenant_cannot_see_case(self, fake_db):
        case = _case(fake_db)
        with pytest.raises(LookupError):
            cases_service.get_case(fake_db, "tenant-2", case["id"])

    def test_advance_to_assessment_adds_verification_task(self, fake_db):
        case = _case(fake_db, stage_code="Adjudication")
        result = cases_service.advance_stage(fake_db, TENANT_ID, case["id"], USER_ID, "Assessment")
        assert result["case"]["stage_code"] == "Assessment"
        titles = [t["title"] for t in fake_db.rows("tasks")]
        assert "Document Verification" in titles
        assert result["tasks_created"] == len(titles)

    def test_timeline_csv(self, fake_db):
        fake_db.tables["employees"] = [{"id": USER_ID, "full_name": "Asha Rao"}]
        case = _case(fake_db, case_number="GST/9")
        csv = cases_service.export_timeline_csv(fake_db, TENANT_ID, case["id"])
        lines = csv.strip().splitlines()
        assert lines[0] == "Date,Actor,Action,Notes"
        assert "Asha Rao,Case created" in lines[1]


class TestLifecycle:

    def test_available_stages(self):
        assert lifecycle.get_available_stages("Tribunal", "Forward") == ["High Court", "Supreme Court"]
        assert lifecycle.get_available_stages("Tribunal", "Send Back") == ["Assessment", "Adjudication", "First Appeal"]
        assert lifecycle.get_available_stages("Tribunal", "Remand") == ["Tribunal"]
        assert lifecycle.get_available_stages(None, "Forward") == []

    def test_forward_requires_checklist(self, fake_db):
        case = _case(fake_db, stage_code="Adjudication")
        req = TransitionRequest(
            transition_type="Forward", to_stage="First Appeal",
            checklist=[{"item_key": "order", "label": "Order copy", "status": "Pending"}],
        )
        with pytest.raises(ValueError, match="Order copy"):
            lifecycle.create_transition(fake_db, TENANT_ID, case["id"], USER_ID, req)

    def test_disallowed_target(self, fake_db):
        case = _case(fake_db, stage_code="Adjudication")
        req = TransitionRequest(transition_type="Send Back", to_stage="Tribunal")
        with pytest.raises(ValueError):
            lifecycle.create_transition(fake_db, TENANT_ID, case["id"], USER_ID, req)

    def test_forward_then_remand_opens_new_cycle(self, fake_db):
        case = _case(fake_db, stage_code="Adjudication")
        forward = lifecycle.create_transition(fake_db, TENANT_ID, case["id"], USER_ID, TransitionRequest(
            transition_type="Forward", to_stage="First Appeal",
            checklist=[{"item_key": "order", "label": "Order copy", "status": "Attested"}],
        ))
        assert forward["stage_instance"]["cycle_no"] == 1
        assert len(stage_workflow.get_steps(fake_db, forward["stage_instance"]["id"])) == 4

        remand = lifecycle.create_transition(fake_db, TENANT_ID, case["id"], USER_ID, TransitionRequest(
            transition_type="Remand", to_stage="First Appeal", comments="Remanded for fresh hearing",
        ))
        assert remand["stage_instance"]["cycle_no"] == 2

        state = lifecycle.get_lifecycle(fake_db, TENANT_ID, case["id"])
        assert state["current_stage"] == "First Appeal"
        assert state["current_instance"]["id"] == remand["stage_instance"]["id"]
        assert [i["status"] for i in state["stage_instances"]] == ["Completed", "Active"]
        assert [t["transition_type"] for t in state["transitions"]] == ["Forward", "Remand"]


class TestStageWorkflow:

    def _instance(self, fake_db, stage="Tribunal"):
        fake_db.tables["cases"] = [{"id": "case-1", "tenant_id": TENANT_ID, "stage_code": stage}]
        fake_db.tables["stage_instances"] = [{"id": "si-1", "tenant_id": TENANT_ID, "case_id": "case-1", "stage_key": stage}]
        stage_workflow.initialize_steps(fake_db, "si-1", TENANT_ID)

    def _status(self, fake_db):
        return {s["step_key"]: s["status"] for s in stage_workflow.get_steps(fake_db, "si-1")}

    def test_initialize_is_idempotent(self, fake_db):
        self._instance(fake_db)
        stage_workflow.initialize_steps(fake_db, "si-1", TENANT_ID)
        assert self._status(fake_db) == {
            "notices": "In Progress", "reply": "Pending", "hearings": "Pending", "closure": "Pending",
        }

    def test_complete_activates_next_step(self, fake_db):
        self._instance(fake_db)
        result = stage_workflow.complete_step(fake_db, "si-1", "notices", USER_ID)
        assert result["completed_by"] == USER_ID
        assert self._status(fake_db)["reply"] == "In Progress"

    def test_reopen_clears_completion(self, fake_db):
        self._instance(fake_db)
        stage_workflow.complete_step(fake_db, "si-1", "notices", USER_ID)
        stage_workflow.update_step(fake_db, "si-1", "notices", "In Progress")
        step = stage_workflow.get_steps(fake_db, "si-1")[0]
        assert step["completed_at"] is None
        assert step["completed_by"] is None

    def test_skip_needs_reason(self, fake_db):
        self._instance(fake_db)
        with pytest.raises(ValueError):
            stage_workflow.skip_step(fake_db, "si-1", "reply", " ")
        skipped = stage_workflow.skip_step(fake_db, "si-1", "reply", "No reply required")
        assert skipped["notes"] == "Skipped: No reply required"

    def test_unknown_step_and_status(self, fake_db):
        self._instance(fake_db)
        with pytest.raises(ValueError):
            stage_workflow.update_step(fake_db, "si-1", "appeal", "Completed")
        with pytest.raises(ValueError):
            stage_workflow.update_step(fake_db, "si-1", "reply", "Done")

    def test_closure_moves_case_forward(self, fake_db):
        self._instance(fake_db, stage="Tribunal")
        result = stage_workflow.complete_step(fake_db, "si-1", "closure", USER_ID)
        assert result["transition"]["to_stage"] == "High Court"
        assert fake_db.rows("cases")[0]["stage_code"] == "High Court"

    def test_closure_at_final_stage_is_noop(self, fake_db):
        self._instance(fake_db, stage="Supreme Court")
        result = stage_workflow.complete_step(fake_db, "si-1", "closure", USER_ID)
        assert result["transition"] is None
        assert fake_db.rows("stage_transitions") == []

    def test_can_close_rules(self):
        steps = [
            {"step_key": "notices", "status": "In Progress"},
            {"step_key": "reply", "status": "Pending"},
            {"step_key": "hearings", "status": "Pending"},
            {"step_key": "closure", "status": "Pending"},
        ]
        assert stage_workflow.evaluate_closure(steps, [])["blocking"][0] == "At least one notice must be recorded"

        result = stage_workflow.evaluate_closure(steps, [{"id": "n1", "status": "Reply Pending"}])
        assert result["can_close"] is False
        assert len(result["blocking"]) == 2

        steps[0]["status"] = "Completed"
        assert stage_workflow.evaluate_closure(steps, [{"id": "n1", "status": "Replied"}]) == {"can_close": True, "blocking": []}

    def test_can_close_by_instance(self, fake_db):
        self._instance(fake_db)
        fake_db.tables["stage_notices"] = [{"id": "n1", "stage_instance_id": "si-1", "status": "Reply Pending"}]
        result = stage_workflow.check_can_close(fake_db, "si-1")
        assert result["can_close"] is False
        assert "1 notice(s) require a reply" in result["blocking"]

        fake_db.tables["stage_notices"][0]["status"] = "Replied"
        stage_workflow.complete_step(fake_db, "si-1", "notices", USER_ID)
        assert stage_workflow.check_can_close(fake_db, "si-1") == {"can_close": True, "blocking": []}

    def test_workflow_state(self, fake_db):
        self._instance(fake_db)
        fake_db.tables["stage_notices"] = [{"id": "n1", "stage_instance_id": "si-1", "status": "Replied"}]
        fake_db.tables["stage_replies"] = [{"id": "r1", "case_id": "case-1"}]
        fake_db.tables["hearings"] = [{"id": "h1", "case_id": "case-1", "stage_instance_id": None}]
        stage_workflow.complete_step(fake_db, "si-1", "notices", USER_ID)

        state = stage_workflow.get_workflow_state(fake_db, "si-1", "case-1")
        assert state["current_step"] == "reply"
        assert state["progress"] == 25
        assert state["counts"] == {"notices": 1, "replies": 1, "hearings": 1}
        assert state["steps"][3]["label"] == "Stage Closure"
        assert state["can_close"] is True
