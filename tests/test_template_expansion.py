from __future__ import annotations

from datetime import date

import pytest
from sqlalchemy import delete, select

from clinic_schedule.errors import NotFoundError, ValidationError
from clinic_schedule.models import ChangeHistoryRecord, ScheduleAssignment
from clinic_schedule.schemas import TemplateAssignmentIn
from clinic_schedule.template_expansion import TemplateExpansionEngine

FEB_START = date(2026, 2, 1)
FEB_END = date(2026, 2, 14)


def engine_for(db, seeded):
    return TemplateExpansionEngine(db, seeded["PTO"])


def monday_am(seeded, provider="P1", service="Clinic", **extra):
    return TemplateAssignmentIn(
        day_of_week=1,
        provider_id=seeded[provider],
        service_id=seeded[service],
        time_block="AM",
        room_count=1,
        notes="Room A",
        **extra,
    )


def live_rows(db):
    return db.scalars(select(ScheduleAssignment).order_by(ScheduleAssignment.date, ScheduleAssignment.id)).all()


def test_apply_is_deterministic_with_fill_empty_only(db, seeded):
    engine = engine_for(db, seeded)
    template = engine.create_template("Week A", assignments=[monday_am(seeded)])

    first = engine.apply(template.id, FEB_START, FEB_END)
    assert first.created == 2
    assert first.skipped == 0
    assert first.history_id is not None
    assert [r.date for r in live_rows(db)] == [date(2026, 2, 2), date(2026, 2, 9)]

    second = engine.apply(template.id, FEB_START, FEB_END, fill_empty_only=True)
    assert second.created == 0
    assert second.skipped == 2
    assert second.history_id is None
    assert len(live_rows(db)) == 2


def test_rerun_without_fill_empty_counts_duplicates_as_skipped(db, seeded):
    engine = engine_for(db, seeded)
    template = engine.create_template("Week A", assignments=[monday_am(seeded)])
    engine.apply(template.id, FEB_START, FEB_END)
    again = engine.apply(template.id, FEB_START, FEB_END, fill_empty_only=False)
    assert again.created == 0
    assert again.skipped == 2
    assert again.errors == 0


def test_holidays_are_skipped_and_reported(db, seeded):
    engine = engine_for(db, seeded)
    template = engine.create_template(
        "Week A",
        assignments=[monday_am(seeded), monday_am(seeded, provider="P2", service="Consults")],
    )
    result = engine.apply(template.id, date(2026, 2, 15), date(2026, 2, 21))
    assert [(c.date, c.service_name) for c in result.holiday_conflicts] == [(date(2026, 2, 16), "Clinic")]
    assert result.created == 1
    assert live_rows(db)[0].service_id == seeded["Consults"]


def test_existing_pto_slots_are_skipped_and_reported(db, seeded):
    db.add(ScheduleAssignment(date=date(2026, 2, 2), time_block="BOTH", provider_id=seeded["P1"], service_id=seeded["PTO"], is_pto=True))
    db.commit()
    engine = engine_for(db, seeded)
    template = engine.create_template("Week A", assignments=[monday_am(seeded)])

    result = engine.apply(template.id, FEB_START, FEB_END)
    assert result.created == 1
    assert [(c.provider_id, c.date) for c in result.pto_conflicts] == [(seeded["P1"], date(2026, 2, 2))]


def test_clear_existing_replaces_range_and_is_undoable_record(db, seeded):
    db.add(ScheduleAssignment(date=date(2026, 2, 3), time_block="PM", provider_id=seeded["P2"], service_id=seeded["Procedures"]))
    db.commit()
    engine = engine_for(db, seeded)
    template = engine.create_template("Week A", assignments=[monday_am(seeded)])

    result = engine.apply(template.id, FEB_START, FEB_END, clear_existing=True)
    assert result.deleted == 1
    assert result.created == 2
    entry = db.get(ChangeHistoryRecord, result.history_id)
    assert entry.operation_type == "template_apply"
    assert len(entry.deleted_assignments) == 1
    assert len(entry.created_assignment_ids) == 2
    assert (entry.affected_date_start, entry.affected_date_end) == (FEB_START, FEB_END)


def test_apply_alternating_rotates_by_week(db, seeded):
    engine = engine_for(db, seeded)
    week_a = engine.create_template("Week A", assignments=[monday_am(seeded, provider="P1")])
    week_b = engine.create_template("Week B", assignments=[monday_am(seeded, provider="P2")])

    result = engine.apply_alternating([week_a.id, week_b.id], [0, 1], FEB_START, date(2026, 2, 28))
    # 2026-02-16 is Presidents' Day.
    assert result.created == 3
    assert [(r.date, r.provider_id) for r in live_rows(db)] == [
        (date(2026, 2, 2), seeded["P1"]),
        (date(2026, 2, 9), seeded["P2"]),
        (date(2026, 2, 23), seeded["P2"]),
    ]


def test_apply_alternating_validates_pattern(db, seeded):
    engine = engine_for(db, seeded)
    week_a = engine.create_template("Week A", assignments=[monday_am(seeded)])
    with pytest.raises(ValidationError):
        engine.apply_alternating([week_a.id], [0], FEB_START, FEB_END)
    with pytest.raises(ValidationError):
        engine.apply_alternating([week_a.id, week_a.id], [0, 2], FEB_START, FEB_END)


def test_template_management(db, seeded):
    engine = engine_for(db, seeded)
    template = engine.create_template("Week A", assignments=[monday_am(seeded)])
    replaced = engine.replace_assignments(
        template.id,
        [monday_am(seeded, provider="P2"), monday_am(seeded, provider="P3", service="Procedures")],
    )
    assert sorted(a.provider_id for a in replaced.assignments) == [seeded["P2"], seeded["P3"]]

    with pytest.raises(NotFoundError):
        engine.apply(9999, FEB_START, FEB_END)
    empty = engine.create_template("Empty")
    with pytest.raises(ValidationError):
        engine.apply(empty.id, FEB_START, FEB_END)


def test_template_from_week_captures_work_rows(db, seeded):
    db.add_all(
        [
            ScheduleAssignment(date=date(2026, 2, 2), time_block="AM", provider_id=seeded["P1"], service_id=seeded["Clinic"], room_count=2),
            ScheduleAssignment(date=date(2026, 2, 4), time_block="PM", provider_id=seeded["P2"], service_id=seeded["Procedures"]),
            ScheduleAssignment(date=date(2026, 2, 5), time_block="BOTH", provider_id=seeded["P3"], service_id=seeded["PTO"], is_pto=True),
            ScheduleAssignment(date=date(2026, 2, 9), time_block="AM", provider_id=seeded["P2"], service_id=seeded["Clinic"]),
        ]
    )
    db.commit()
    template = engine_for(db, seeded).template_from_week("Captured", date(2026, 2, 4))
    captured = sorted((a.day_of_week, a.provider_id, a.time_block, a.room_count) for a in template.assignments)
    assert captured == [(1, seeded["P1"], "AM", 2), (3, seeded["P2"], "PM", 0)]


def test_providers_sharing_a_slot_are_all_created(db, seeded):
    engine = engine_for(db, seeded)
    template = engine.create_template("Week A", assignments=[monday_am(seeded), monday_am(seeded, provider="P2")])

    for fill_empty_only in (False, True):
        db.execute(delete(ScheduleAssignment))
        db.commit()
        result = engine.apply(template.id, FEB_START, FEB_END, fill_empty_only=fill_empty_only)
        assert (result.created, result.skipped) == (4, 0)
        assert sorted((r.date, r.provider_id) for r in live_rows(db)) == [
            (date(2026, 2, 2), seeded["P1"]),
            (date(2026, 2, 2), seeded["P2"]),
            (date(2026, 2, 9), seeded["P1"]),
            (date(2026, 2, 9), seeded["P2"]),
        ]
