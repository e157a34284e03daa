"""
Statutory deadline arithmetic and case deadline tests.
"""

from datetime import date

import pytest

from app import statutory_deadlines as sd
from app.statutory_deadlines import DeadlineCreateRequest, EventTypeRequest, HolidayRequest
from tests.conftest import TENANT_ID, USER_ID

# 2026-01-01 is a Thursday
THU = date(2026, 1, 1)


class TestCalendarArithmetic:

    def test_add_months_clamps_to_month_end(self):
        assert sd.add_months(date(2026, 1, 31), 1) == date(2026, 2, 28)
        assert sd.add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
        assert sd.add_months(date(2026, 11, 15), 3) == date(2027, 2, 15)

    def test_working_days_skip_weekends(self):
        assert sd.add_working_days(THU, 3, []) == date(2026, 1, 6)

    def test_working_days_skip_holidays(self):
        holidays = [{"date": "2026-01-05", "state": "ALL"}]
        assert sd.add_working_days(THU, 3, holidays) == date(2026, 1, 7)

    def test_state_holiday_only_applies_to_that_state(self):
        holidays = [{"date": "2026-01-05", "state": "MH"}]
        assert sd.add_working_days(THU, 3, holidays, state="KA") == date(2026, 1, 6)
        assert sd.add_working_days(THU, 3, holidays, state="MH") == date(2026, 1, 7)

    def test_working_days_between_inclusive(self):
        assert sd.working_days_between(THU, date(2026, 1, 8), []) == 6

    @pytest.mark.parametrize("days,expected", [
        (-1, ("overdue", "red")),
        (7, ("critical", "red")),
        (15, ("warning", "orange")),
        (16, ("safe", "green")),
    ])
    def test_deadline_status(self, days, expected):
        assert sd.deadline_status(days) == expected

    def test_calculate_deadline_with_extension(self):
        event_type = {"deadline_type": "days", "deadline_count": 30, "extension_allowed": True, "extension_days": 15}
        result = sd.calculate_deadline(THU, event_type, today=THU)
        assert result.calculated_deadline == date(2026, 1, 31)
        assert result.extension_deadline == date(2026, 2, 15)
        assert result.days_remaining == 30
        assert result.status == "safe"

    def test_calculate_deadline_in_months(self):
        result = sd.calculate_deadline("2026-01-31", {"deadline_type": "months", "deadline_count": 3}, today=THU)
        assert result.calculated_deadline == date(2026, 4, 30)
        assert result.extension_deadline is None


class TestReplyDeadline:

    def _seed(self, fake_db):
        fake_db.tables["statutory_event_types"] = [
            {"id": "et-asmt", "tenant_id": TENANT_ID, "code": "ASMT-10", "name": "ASMT-10 Reply",
             "deadline_type": "days", "deadline_count": 30, "is_active": True},
            {"id": "et-scn", "tenant_id": TENANT_ID, "code": "SCN", "name": "Show Cause Notice",
             "deadline_type": "days", "deadline_count": 15, "is_active": True},
        ]

    def test_matches_notice_type_code(self, fake_db):
        self._seed(fake_db)
        result = sd.calculate_reply_deadline(fake_db, TENANT_ID, "2026-01-01", "asmt-10", today=THU)
        assert result.event_type["id"] == "et-asmt"
        assert result.calculated_deadline == date(2026, 1, 31)

    def test_falls_back_to_show_cause(self, fake_db):
        self._seed(fake_db)
        result = sd.calculate_reply_deadline(fake_db, TENANT_ID, THU, "DRC-01", today=THU)
        assert result.event_type["id"] == "et-scn"
        assert result.calculated_deadline == date(2026, 1, 16)

    def test_default_thirty_days(self, fake_db):
        result = sd.calculate_reply_deadline(fake_db, TENANT_ID, THU, None, today=date(2026, 1, 20))
        assert result.calculated_deadline == date(2026, 1, 31)
        assert result.status == "warning"
        assert result.to_dict()["event_type"]["code"] == "DEFAULT"


class TestCaseDeadlines:

    def _event_type(self, fake_db, **overrides):
        req = EventTypeRequest(**{
            "code": "APL", "name": "Appeal", "deadline_type": "days", "deadline_count": 30,
            "extension_allowed": True, "max_extension_count": 1, "extension_days": 15, **overrides,
        })
        return sd.create_event_type(fake_db, TENANT_ID, USER_ID, req)

    def test_create_and_extend(self, fake_db):
        event_type = self._event_type(fake_db)
        deadline = sd.create_deadline(fake_db, TENANT_ID, USER_ID, DeadlineCreateRequest(
            case_id="case-1", event_type_id=event_type["id"], base_date=THU,
        ))
        assert deadline["calculated_deadline"] == "2026-01-31"
        assert deadline["extension_deadline"] == "2026-02-15"
        assert deadline["status"] == "pending"

        extended = sd.apply_extension(fake_db, TENANT_ID, deadline["id"], 10, "Adjournment granted")
        assert extended["extension_deadline"] == "2026-02-25"
        assert extended["extension_count"] == 1
        assert extended["status"] == "extended"

        with pytest.raises(ValueError):
            sd.apply_extension(fake_db, TENANT_ID, deadline["id"], 10)

    def test_extension_not_allowed(self, fake_db):
        event_type = self._event_type(fake_db, extension_allowed=False)
        deadline = sd.create_deadline(fake_db, TENANT_ID, USER_ID, DeadlineCreateRequest(
            case_id="case-1", event_type_id=event_type["id"], base_date=THU,
        ))
        with pytest.raises(ValueError):
            sd.apply_extension(fake_db, TENANT_ID, deadline["id"], 5)

    def test_status_update_and_queries(self, fake_db):
        fake_db.tables["case_statutory_deadlines"] = [
            {"id": "d1", "tenant_id": TENANT_ID, "status": "pending", "calculated_deadline": "2026-01-10"},
            {"id": "d2", "tenant_id": TENANT_ID, "status": "extended", "calculated_deadline": "2025-12-20"},
            {"id": "d3", "tenant_id": TENANT_ID, "status": "completed", "calculated_deadline": "2026-01-05"},
            {"id": "d4", "tenant_id": TENANT_ID, "status": "pending", "calculated_deadline": "2026-03-01"},
        ]
        assert [d["id"] for d in sd.get_upcoming(fake_db, TENANT_ID, 30, today=THU)] == ["d1"]
        assert [d["id"] for d in sd.get_overdue(fake_db, TENANT_ID, today=THU)] == ["d2"]

        done = sd.update_status(fake_db, TENANT_ID, "d1", "completed", "2026-01-09")
        assert done["completed_date"] == "2026-01-09"
        with pytest.raises(ValueError):
            sd.update_status(fake_db, TENANT_ID, "d1", "forgotten")

    def test_event_type_with_deadlines_cannot_be_deleted(self, fake_db):
        event_type = self._event_type(fake_db)
        sd.create_deadline(fake_db, TENANT_ID, USER_ID, DeadlineCreateRequest(
            case_id="case-1", event_type_id=event_type["id"], base_date=THU,
        ))
        with pytest.raises(ValueError):
            sd.delete_event_type(fake_db, TENANT_ID, event_type["id"])

    def test_holiday_crud(self, fake_db):
        holiday = sd.create_holiday(fake_db, TENANT_ID, USER_ID, HolidayRequest(date=date(2026, 1, 26), name="Republic Day"))
        assert holiday["date"] == "2026-01-26"
        assert [h["id"] for h in sd.list_holidays(fake_db, TENANT_ID, 2026)] == [holiday["id"]]
        assert sd.list_holidays(fake_db, TENANT_ID, 2025) == []

        sd.update_holiday(fake_db, TENANT_ID, holiday["id"], {"name": "Republic Day (India)"})
        sd.delete_holiday(fake_db, TENANT_ID, holiday["id"])
        with pytest.raises(LookupError):
            sd.delete_holiday(fake_db, TENANT_ID, holiday["id"])
