"""
Background worker cycle tests.
"""

import asyncio
from unittest.mock import patch

import worker
from app import automation_rule_engine as engine
from app.automation_rule_engine import AutomationRuleRequest
from tests.conftest import TENANT_ID, USER_ID


def _seed(fake_db):
    fake_db.tables["tasks"] = [
        {"id": "t1", "tenant_id": TENANT_ID, "case_id": "case-1", "title": "File reply", "status": "In Progress",
         "priority": "Medium", "due_date": "2020-01-01", "assigned_to": "staff-1"},
    ]
    engine.create_rule(fake_db, TENANT_ID, USER_ID, AutomationRuleRequest(
        name="Nudge on overdue",
        trigger={"event": "task_overdue", "conditions": {"daysOverdue": 1}},
        actions={"sendNotification": {"recipients": ["assignee"]}},
    ))


def test_overdue_automation_job(fake_db):
    _seed(fake_db)
    result = worker.run_overdue_automation(fake_db, TENANT_ID)
    assert result["tasks"] == 1
    assert result["rules_executed"] == 1
    assert result["errors"] == []
    assert [n["user_id"] for n in fake_db.rows("notifications")] == ["staff-1"]


def test_overdue_task_without_case_is_not_notified(fake_db):
    _seed(fake_db)
    fake_db.tables["tasks"][0]["case_id"] = None
    result = worker.run_overdue_automation(fake_db, TENANT_ID)
    assert result["rules_executed"] == 1
    assert fake_db.rows("notifications") == []
    assert fake_db.rows("automation_logs")[0]["actions"][0]["status"] == "skipped"


def test_cycle_runs_each_job_per_tenant(fake_db):
    _seed(fake_db)
    fake_db.tables["tenants"].append({"id": "tenant-2"})
    practice_worker = worker.PracticeWorker(jobs=["overdue_automation", "hearing_reminders"], supabase=fake_db)

    summary = practice_worker.run_cycle()
    assert set(summary) == {TENANT_ID, "tenant-2"}
    assert summary[TENANT_ID]["overdue_automation"]["tasks"] == 1
    assert summary["tenant-2"]["overdue_automation"]["tasks"] == 0
    assert summary[TENANT_ID]["hearing_reminders"]["total"] == 0


def test_failing_job_does_not_stop_cycle(fake_db):
    def boom(supabase, tenant_id):
        raise RuntimeError("smtp down")

    with patch.dict(worker.JOBS, {"deadline_reminders": boom}):
        practice_worker = worker.PracticeWorker(jobs=["deadline_reminders", "escalations"], supabase=fake_db)
        summary = practice_worker.run_cycle()

    assert summary[TENANT_ID]["deadline_reminders"] == {"error": "smtp down"}
    assert summary[TENANT_ID]["escalations"]["checked"] == 0


def test_start_once_runs_a_single_cycle(fake_db):
    practice_worker = worker.PracticeWorker(jobs=["hearing_reminders"], supabase=fake_db)
    with patch.object(practice_worker, "run_cycle", wraps=practice_worker.run_cycle) as cycle:
        asyncio.run(practice_worker.start(once=True))
    assert cycle.call_count == 1
