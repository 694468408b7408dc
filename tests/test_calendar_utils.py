from __future__ import annotations

from datetime import date

from clinic_schedule.calendar_utils import (
    blocks_overlap,
    date_range,
    day_of_week,
    format_local_date,
    last_weekday_of_month,
    next_weekday,
    nth_weekday_of_month,
    observed_date,
    overlapping_blocks,
    parse_local_date,
    previous_weekday,
    pto_block_for,
    week_start,
    weekdays_in_range,
)


def test_day_of_week_uses_sunday_zero():
    assert day_of_week(date(2026, 1, 4)) == 0
    assert day_of_week(date(2026, 1, 5)) == 1
    assert day_of_week(date(2026, 1, 10)) == 6


def test_local_date_round_trip_has_no_timezone_shift():
    assert format_local_date(date(2026, 3, 8)) == "2026-03-08"
    assert parse_local_date("2026-11-01") == date(2026, 11, 1)


def test_date_range_is_inclusive_and_empty_when_inverted():
    assert date_range(date(2026, 1, 30), date(2026, 2, 2)) == [
        date(2026, 1, 30),
        date(2026, 1, 31),
        date(2026, 2, 1),
        date(2026, 2, 2),
    ]
    assert date_range(date(2026, 2, 2), date(2026, 2, 1)) == []


def test_weekdays_in_range_defaults_to_monday_through_friday():
    days = weekdays_in_range(date(2026, 1, 3), date(2026, 1, 11))
    assert days == [date(2026, 1, d) for d in (5, 6, 7, 8, 9)]


def test_weekdays_in_range_honours_custom_work_days():
    days = weekdays_in_range(date(2026, 1, 4), date(2026, 1, 10), work_days=[1, 3, 5])
    assert days == [date(2026, 1, 5), date(2026, 1, 7), date(2026, 1, 9)]


def test_next_and_previous_weekday_skip_weekends():
    assert next_weekday(date(2026, 1, 5)) == date(2026, 1, 6)
    assert next_weekday(date(2026, 1, 9)) == date(2026, 1, 12)
    assert previous_weekday(date(2026, 1, 12)) == date(2026, 1, 9)
    assert previous_weekday(date(2026, 1, 7)) == date(2026, 1, 6)


def test_week_start_is_sunday():
    assert week_start(date(2026, 1, 7)) == date(2026, 1, 4)
    assert week_start(date(2026, 1, 4)) == date(2026, 1, 4)
    assert week_start(date(2026, 1, 10)) == date(2026, 1, 4)


def test_month_weekday_helpers():
    assert nth_weekday_of_month(2026, 1, 1, 3) == date(2026, 1, 19)
    assert nth_weekday_of_month(2026, 11, 4, 4) == date(2026, 11, 26)
    assert last_weekday_of_month(2026, 5, 1) == date(2026, 5, 25)


def test_observed_date_moves_weekend_holidays():
    # 2026-07-04 is a Saturday, 2027-07-04 a Sunday.
    assert observed_date(2026, 7, 4) == date(2026, 7, 3)
    assert observed_date(2027, 7, 4) == date(2027, 7, 5)
    assert observed_date(2026, 12, 25) == date(2026, 12, 25)


def test_block_overlap_rules():
    assert set(overlapping_blocks("BOTH")) == {"AM", "PM", "BOTH"}
    assert set(overlapping_blocks("AM")) == {"AM", "BOTH"}
    assert blocks_overlap("PM", "BOTH")
    assert blocks_overlap("BOTH", "AM")
    assert not blocks_overlap("AM", "PM")


def test_pto_block_maps_full_day():
    assert pto_block_for("FULL") == "BOTH"
    assert pto_block_for("AM") == "AM"
