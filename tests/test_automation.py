"""
Automation rule engine and escalation engine tests.
"""

from datetime import datetime, timezone

import pytest

from app import automation_rule_engine as engine
from app import escalation_engine
from app.automation_rule_engine import AutomationEvent, AutomationRuleRequest
from tests.conftest import TENANT_ID, USER_ID


def _rule(fake_db, event="stage_changed", conditions=None, actions=None, name="Rule"):
    req = AutomationRuleRequest(
        name=name,
        trigger={"event": event, "conditions": conditions or {}},
        actions=actions or {"sendNotification": {"recipients": ["assignee"]}},
    )
    return engine.create_rule(fake_db, TENANT_ID, USER_ID, req)


class TestRuleValidation:

    def test_unknown_event_rejected(self):
        with pytest.raises(ValueError):
            AutomationRuleRequest(name="x", trigger={"event": "moon_phase"}, actions={"escalate": {}})

    def test_unknown_action_rejected(self):
        with pytest.raises(ValueError):
            AutomationRuleRequest(name="x", trigger={"event": "task_overdue"}, actions={"sendFax": {}})

    def test_empty_actions_rejected(self):
        with pytest.raises(ValueError):
            AutomationRuleRequest(name="x", trigger={"event": "task_overdue"}, actions={})

    def test_update_validates_trigger(self, fake_db):
        rule = _rule(fake_db)
        with pytest.raises(ValueError):
            engine.update_rule(fake_db, TENANT_ID, rule["id"], {"trigger": {"event": "bogus"}})

    def test_toggle_and_delete(self, fake_db):
        rule = _rule(fake_db)
        assert engine.toggle_rule(fake_db, TENANT_ID, rule["id"], False)["is_active"] is False
        assert engine.list_rules(fake_db, TENANT_ID, active_only=True) == []
        engine.delete_rule(fake_db, TENANT_ID, rule["id"])
        with pytest.raises(LookupError):
            engine.get_rule(fake_db, TENANT_ID, rule["id"])


class TestConditions:

    def test_stage_conditions(self):
        rule = {"trigger": {"conditions": {"stageTo": "Tribunal"}}}
        assert engine.evaluate_conditions(rule, AutomationEvent("stage_changed", TENANT_ID, stage_to="Tribunal"))
        assert not engine.evaluate_conditions(rule, AutomationEvent("stage_changed", TENANT_ID, stage_to="High Court"))

    def test_priority_uses_task_then_case(self):
        rule = {"trigger": {"conditions": {"priority": ["High"]}}}
        high_task = AutomationEvent("task_overdue", TENANT_ID, task_data={"priority": "High"})
        low_case = AutomationEvent("task_overdue", TENANT_ID, case_data={"priority": "Low"})
        assert engine.evaluate_conditions(rule, high_task)
        assert not engine.evaluate_conditions(rule, low_case)

    def test_days_overdue_threshold(self):
        rule = {"trigger": {"conditions": {"daysOverdue": 3}}}
        assert not engine.evaluate_conditions(rule, AutomationEvent("task_overdue", TENANT_ID, days_overdue=2))
        assert engine.evaluate_conditions(rule, AutomationEvent("task_overdue", TENANT_ID, days_overdue=3))

    def test_no_conditions_matches(self):
        assert engine.evaluate_conditions({"trigger": {"event": "case_created"}}, AutomationEvent("case_created", TENANT_ID))


class TestProcessEvent:

    def test_notification_rule_runs_and_logs(self, fake_db):
        rule = _rule(fake_db, conditions={"stageTo": "Tribunal"})
        event = AutomationEvent(
            "stage_changed", TENANT_ID, case_id="case-1",
            case_data={"id": "case-1", "case_number": "GST/1", "assigned_to": "user-7"},
            stage_to="Tribunal",
        )
        result = engine.process_event(fake_db, event)

        assert result["rulesMatched"] == 1
        assert result["actionsExecuted"] == 1
        assert [n["user_id"] for n in fake_db.rows("notifications")] == ["user-7"]
        log = fake_db.rows("automation_logs")[0]
        assert log["status"] == "success"
        stored = engine.get_rule(fake_db, TENANT_ID, rule["id"])
        assert stored["execution_count"] == 1
        assert stored["success_count"] == 1

    def test_non_matching_event_type_is_ignored(self, fake_db):
        _rule(fake_db, event="case_created")
        result = engine.process_event(fake_db, AutomationEvent("stage_changed", TENANT_ID, case_id="case-1"))
        assert result["rulesMatched"] == 0
        assert fake_db.rows("automation_logs") == []

    def test_inapplicable_action_is_skipped(self, fake_db):
        _rule(fake_db, event="case_created", actions={"escalate": {"toRole": "Partner"}})
        result = engine.process_event(fake_db, AutomationEvent("case_created", TENANT_ID, case_id="case-1"))
        assert result["logs"][0]["actions"][0]["status"] == "skipped"

    def test_notification_needs_a_case(self, fake_db):
        _rule(fake_db, event="escalation_requested")
        event = AutomationEvent(
            "escalation_requested", TENANT_ID, task_id="t1",
            task_data={"id": "t1", "assigned_to": "user-7"},
        )
        result = engine.process_event(fake_db, event)
        assert result["logs"][0]["actions"][0]["status"] == "skipped"
        assert fake_db.rows("notifications") == []

    def test_failed_action_marks_partial(self, fake_db):
        _rule(fake_db, event="case_created", actions={
            "createTaskBundle": {"bundleId": "does-not-exist"},
            "sendNotification": {"recipients": ["assignee"]},
        })
        event = AutomationEvent(
            "case_created", TENANT_ID, case_id="case-1",
            case_data={"id": "case-1", "assigned_to": "user-7"},
        )
        result = engine.process_event(fake_db, event)
        statuses = {a["type"]: a["status"] for a in result["logs"][0]["actions"]}
        assert statuses == {"createTaskBundle": "failed", "sendNotification": "success"}
        assert result["logs"][0]["status"] == "partial"

    def test_create_task_bundle_action_with_inline_tasks(self, fake_db):
        fake_db.tables["cases"] = [{"id": "case-1", "tenant_id": TENANT_ID}]
        _rule(fake_db, event="case_created", actions={
            "createTaskBundle": {"tasks": [{"title": "Collect GSTR-3B", "priority": "High"}]},
        })
        event = AutomationEvent("case_created", TENANT_ID, case_id="case-1", case_data={"id": "case-1"})
        engine.process_event(fake_db, event)
        engine.process_event(fake_db, event)
        tasks = fake_db.rows("tasks")
        assert len(tasks) == 1
        assert tasks[0]["priority"] == "High"

    def test_disabled_flag_short_circuits(self, fake_db):
        fake_db.tables["tenant_settings"] = [{"tenant_id": TENANT_ID, "feature_flags": {"automation_rules": False}}]
        _rule(fake_db, event="case_created")
        result = engine.process_event(fake_db, AutomationEvent("case_created", TENANT_ID, case_id="case-1"))
        assert result["rulesMatched"] == 0

    def test_stats(self, fake_db):
        _rule(fake_db, event="case_created", actions={"sendNotification": {"recipients": []}})
        engine.process_event(fake_db, AutomationEvent("case_created", TENANT_ID, case_id="case-1"))
        stats = engine.get_execution_stats(fake_db, TENANT_ID)
        assert stats["totalRules"] == 1
        assert stats["totalExecutions"] == 1
        assert stats["successRate"] == 100


class TestEscalation:

    def _seed(self, fake_db):
        fake_db.tables["employees"] = [
            {"id": "staff-1", "tenant_id": TENANT_ID, "role": "Staff", "status": "Active", "reporting_to": "mgr-1"},
            {"id": "mgr-1", "tenant_id": TENANT_ID, "role": "Manager", "status": "Active"},
            {"id": "partner-1", "tenant_id": TENANT_ID, "role": "Partner", "status": "Active"},
        ]
        fake_db.tables["tasks"] = [
            {"id": "t-high", "tenant_id": TENANT_ID, "title": "File reply", "status": "In Progress",
             "priority": "High", "due_date": "2026-01-01", "assigned_to": "staff-1"},
            {"id": "t-low", "tenant_id": TENANT_ID, "title": "Scan docs", "status": "In Progress",
             "priority": "Low", "due_date": "2026-01-01", "assigned_to": "staff-1"},
            {"id": "t-done", "tenant_id": TENANT_ID, "title": "Old", "status": "Completed",
             "priority": "High", "due_date": "2026-01-01", "assigned_to": "staff-1"},
        ]

    def test_default_rules_seeded_once(self, fake_db):
        first = escalation_engine.list_rules(fake_db, TENANT_ID)
        second = escalation_engine.list_rules(fake_db, TENANT_ID)
        assert len(first) == 3
        assert len(second) == 3

    def test_target_prefers_reporting_manager(self, fake_db):
        self._seed(fake_db)
        assert escalation_engine.resolve_escalation_target(fake_db, TENANT_ID, "staff-1", "Manager") == "mgr-1"
        assert escalation_engine.resolve_escalation_target(fake_db, TENANT_ID, "staff-1", "Partner") == "partner-1"

    def test_sweep_escalates_matching_tasks_once(self, fake_db):
        self._seed(fake_db)
        now = datetime(2026, 1, 5, tzinfo=timezone.utc)

        result = escalation_engine.check_and_escalate_overdue_tasks(fake_db, TENANT_ID, now=now)
        assert result["checked"] == 2
        assert result["escalated"] == 1
        event = fake_db.rows("escalation_events")[0]
        assert event["task_id"] == "t-high"
        assert event["escalated_to"] == "mgr-1"
        assert event["status"] == "pending"

        again = escalation_engine.check_and_escalate_overdue_tasks(fake_db, TENANT_ID, now=now)
        assert again["escalated"] == 0
        assert len(fake_db.rows("escalation_events")) == 1

    def test_sweep_respects_hours_threshold(self, fake_db):
        self._seed(fake_db)
        now = datetime(2026, 1, 1, 12, tzinfo=timezone.utc)
        fake_db.rows("tasks")[0]["due_date"] = "2025-12-31T18:00:00"
        result = escalation_engine.check_and_escalate_overdue_tasks(fake_db, TENANT_ID, now=now)
        assert result["escalated"] == 0

    def test_manual_escalation_and_resolution(self, fake_db):
        self._seed(fake_db)
        result = escalation_engine.escalate_task(fake_db, TENANT_ID, "t-low", "Partner")
        event = result["event"]
        assert event["escalated_to"] == "partner-1"

        contacted = escalation_engine.mark_contacted(fake_db, TENANT_ID, event["id"], "Called")
        assert contacted["status"] == "contacted"
        resolved = escalation_engine.resolve_event(fake_db, TENANT_ID, event["id"], USER_ID, "Done")
        assert resolved["status"] == "resolved"
        with pytest.raises(ValueError):
            escalation_engine.mark_contacted(fake_db, TENANT_ID, event["id"])

        stats = escalation_engine.get_statistics(fake_db, TENANT_ID)
        assert stats["total"] == 1
        assert stats["resolved"] == 1
