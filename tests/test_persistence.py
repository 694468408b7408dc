from __future__ import annotations

from datetime import date

from sqlalchemy.exc import OperationalError

from clinic_schedule.collaborators import ProviderDirectory, ServiceCatalog, notify_safely
from clinic_schedule.config import load_settings
from clinic_schedule.models import ScheduleAssignment, Service
from clinic_schedule.persistence import (
    InsertStatus,
    assignment_from_snapshot,
    assignment_snapshot,
    insert_each,
    tally,
)
from clinic_schedule.saga import Saga, StepIncomplete

MONDAY = date(2026, 1, 5)


def row(seeded, provider="P1", service="Clinic", block="AM", **extra):
    return ScheduleAssignment(date=MONDAY, time_block=block, provider_id=seeded[provider], service_id=seeded[service], **extra)


def test_insert_each_tags_every_row(db, seeded):
    outcomes = insert_each(
        db,
        [
            row(seeded),
            row(seeded),
            row(seeded, room_count=-1, block="PM"),
            row(seeded, provider="P2"),
        ],
    )
    assert [o.status for o in outcomes] == [
        InsertStatus.CREATED,
        InsertStatus.SKIPPED_DUPLICATE,
        InsertStatus.FAILED,
        InsertStatus.CREATED,
    ]
    counts = tally(outcomes)
    assert (counts.created, counts.skipped, counts.failed) == (2, 1, 1)
    assert db.query(ScheduleAssignment).count() == 2


def test_snapshot_round_trip_keeps_id_only_when_asked(db, seeded):
    saved = row(seeded, notes="Room A", room_count=2)
    db.add(saved)
    db.commit()

    snapshot = assignment_snapshot(saved)
    assert snapshot["date"] == "2026-01-05"
    assert snapshot["id"] == saved.id
    assert "id" not in assignment_snapshot(saved, include_id=False)

    copy = assignment_from_snapshot(snapshot)
    assert copy.id is None
    assert (copy.date, copy.notes, copy.room_count) == (MONDAY, "Room A", 2)
    assert assignment_from_snapshot(snapshot, keep_id=True).id == saved.id


def test_saga_reports_each_step_and_keeps_going(db):
    def add_service():
        db.add(Service(name="Dermatology"))
        return 1

    def broken():
        raise OperationalError("UPDATE x", {}, Exception("database is locked"))

    def partial():
        raise StepIncomplete("1 of 2 rows failed", count=1)

    outcomes = Saga(db, "demo").step("first", add_service).step("second", broken).step("third", partial).run()
    assert [(o.name, o.ok, o.count) for o in outcomes] == [("first", True, 1), ("second", False, 0), ("third", False, 1)]
    assert db.query(Service).filter(Service.name == "Dermatology").count() == 1


def test_saga_halts_after_required_step_fails(db):
    def broken():
        raise OperationalError("UPDATE x", {}, Exception("database is locked"))

    outcomes = Saga(db, "demo").step("gate", broken, required=True).step("after", lambda: 1).run()
    assert [o.ok for o in outcomes] == [False, False]
    assert outcomes[1].error == "skipped after gate failed"


def test_collaborators(db, seeded):
    catalog = ServiceCatalog(db)
    assert catalog.resolve_id("PTO") == seeded["PTO"]
    services = catalog.get_many([seeded["Consults"], seeded["Clinic"]])
    assert services[seeded["Consults"]].is_inpatient
    assert not services[seeded["Clinic"]].is_inpatient

    directory = ProviderDirectory(db)
    assert directory.work_days(seeded["P1"]) == [1, 2, 3, 4, 5]
    assert directory.work_days(seeded["P3"]) == [1, 3, 5]


def test_notify_safely_swallows_sender_errors():
    class Broken:
        def send(self, event, recipient, payload):
            raise ConnectionError("smtp down")

    assert notify_safely(Broken(), "pto_approved", "p1@example.com", {}) is False


def test_load_settings_from_environment(monkeypatch):
    monkeypatch.setenv("PTO_SERVICE_ID", "7")
    monkeypatch.setenv("INPATIENT_SERVICES", "Consults, Hospitalist ,")
    settings = load_settings()
    assert settings.pto_service_id == 7
    assert settings.inpatient_services == ("Consults", "Hospitalist")
    assert settings.with_pto_service(9).pto_service_id == 9
