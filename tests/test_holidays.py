from __future__ import annotations

from datetime import date

from clinic_schedule.holidays import HolidayPolicy, holidays_for_year
from clinic_schedule.models import Holiday


def test_computed_holidays_for_2026():
    by_name = {h.name: h.date for h in holidays_for_year(2026)}
    assert by_name["New Year's Day"] == date(2026, 1, 1)
    assert by_name["MLK Day"] == date(2026, 1, 19)
    assert by_name["Presidents' Day"] == date(2026, 2, 16)
    assert by_name["Memorial Day"] == date(2026, 5, 25)
    assert by_name["Independence Day"] == date(2026, 7, 3)
    assert by_name["Labor Day"] == date(2026, 9, 7)
    assert by_name["Thanksgiving"] == date(2026, 11, 26)
    assert all(h.block_assignments for h in holidays_for_year(2026))


def test_inpatient_services_are_never_blocked():
    policy = HolidayPolicy()
    assert policy.blocking_holiday(date(2026, 11, 26), "Consults") is None
    assert policy.blocking_holiday(date(2026, 11, 26), "Burgundy") is None
    blocked = policy.blocking_holiday(date(2026, 11, 26), "Clinic")
    assert blocked is not None and blocked.name == "Thanksgiving"


def test_ordinary_days_are_not_holidays():
    policy = HolidayPolicy()
    assert policy.is_holiday(date(2026, 1, 6)) is None
    assert policy.blocking_holiday(date(2026, 1, 6), "Clinic") is None


def test_configured_row_overrides_computed_holiday(db):
    db.add(Holiday(date=date(2026, 1, 19), name="MLK Day (clinic open)", block_assignments=False))
    db.add(Holiday(date=date(2026, 12, 24), name="Christmas Eve", block_assignments=True))
    db.commit()

    policy = HolidayPolicy(db)
    assert policy.is_holiday(date(2026, 1, 19)).name == "MLK Day (clinic open)"
    assert policy.blocking_holiday(date(2026, 1, 19), "Clinic") is None
    assert policy.blocking_holiday(date(2026, 12, 24), "Clinic").name == "Christmas Eve"


def test_holidays_in_range_spans_years():
    found = HolidayPolicy().holidays_in_range(date(2026, 12, 20), date(2027, 1, 20))
    assert list(found) == [date(2026, 12, 25), date(2027, 1, 1), date(2027, 1, 18)]


def test_custom_inpatient_list():
    policy = HolidayPolicy(inpatient_services=("Hospitalist",))
    assert policy.is_inpatient_service("Hospitalist")
    assert not policy.is_inpatient_service("Consults")
