from __future__ import annotations

from fastapi.testclient import TestClient

from clinic_schedule.main import app
from clinic_schedule.models import AvailabilityRule


def test_health():
    client = TestClient(app)
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["ok"] is True


def test_holidays_endpoint():
    client = TestClient(app)
    r = client.get("/api/holidays", params={"start": "2026-11-01", "end": "2026-12-31"})
    assert r.status_code == 200
    assert [h["name"] for h in r.json()] == ["Thanksgiving", "Christmas"]


def test_bulk_submit_conflict_then_success(seeded):
    client = TestClient(app)
    holiday = client.post(
        "/api/assignments/bulk",
        json={"assignments": [{"date": "2026-11-26", "time_block": "AM", "provider_id": seeded["P1"], "service_id": seeded["Clinic"]}]},
    )
    assert holiday.status_code == 409
    assert holiday.json()["violations"][0]["kind"] == "holiday"

    created = client.post(
        "/api/assignments/bulk",
        json={"assignments": [{"date": "2026-01-05", "time_block": "AM", "provider_id": seeded["P1"], "service_id": seeded["Clinic"]}]},
    )
    assert created.status_code == 201
    body = created.json()
    assert body["created"] == 1
    assert body["history_id"] is not None

    history = client.get("/api/history")
    assert history.status_code == 200
    assert history.json()[0]["operation_type"] == "bulk_create"


def test_soft_warning_needs_acknowledgement(db, seeded):
    db.add(
        AvailabilityRule(
            provider_id=seeded["P1"],
            service_id=seeded["Clinic"],
            day_of_week=1,
            time_block="BOTH",
            rule_type="block",
            enforcement="soft",
        )
    )
    db.commit()
    client = TestClient(app)
    payload = {"assignments": [{"date": "2026-01-05", "time_block": "AM", "provider_id": seeded["P1"], "service_id": seeded["Clinic"]}]}

    check = client.post("/api/assignments/check", json=payload)
    assert check.status_code == 200
    assert len(check.json()["warnings"]) == 1

    r = client.post("/api/assignments/bulk", json=payload)
    assert r.status_code == 409
    assert r.json()["requires_confirmation"] is True

    r = client.post("/api/assignments/bulk", json={**payload, "acknowledged_warnings": True})
    assert r.status_code == 201

    decision = client.get(
        "/api/availability/evaluate",
        params={"provider_id": seeded["P1"], "service_id": seeded["Clinic"], "date": "2026-01-05", "time_block": "AM"},
    )
    assert decision.json()["decision"] == "warn"


def test_pto_flow_over_http(seeded):
    client = TestClient(app)
    created = client.post(
        "/api/pto",
        json={"provider_id": seeded["P1"], "start_date": "2026-01-05", "end_date": "2026-01-09", "time_block": "FULL"},
    )
    assert created.status_code == 201
    assert created.json()["schedule_assignments_created"] == 5

    deleted = client.delete(f"/api/pto/{seeded['P1']}/2026-01-07")
    assert deleted.status_code == 200
    assert len(deleted.json()["unsplit_ranges"]) == 2

    gaps = client.get("/api/pto/reconcile", params={"provider_id": seeded["P1"], "start": "2026-01-05", "end": "2026-01-09"})
    assert gaps.status_code == 200
    assert {g["record_type"] for g in gaps.json()} == {"pto_request", "provider_leave"}

    invalid = client.post(
        "/api/pto",
        json={"provider_id": seeded["P1"], "start_date": "2026-01-09", "end_date": "2026-01-05"},
    )
    assert invalid.status_code == 422
    assert invalid.json()["field"] == "end_date"


def test_pto_request_review_over_http(seeded):
    client = TestClient(app)
    submitted = client.post(
        "/api/pto-requests",
        json={"provider_id": seeded["P2"], "start_date": "2026-03-02", "end_date": "2026-03-03", "leave_type": "medical"},
    )
    assert submitted.status_code == 201
    request_id = submitted.json()["request"]["id"]

    approved = client.post(f"/api/pto-requests/{request_id}/approve", json={"reviewer": "Dr. Chief"})
    assert approved.status_code == 200
    assert approved.json()["request"]["status"] == "approved"

    again = client.post(f"/api/pto-requests/{request_id}/deny", json={"reviewer": "Dr. Chief"})
    assert again.status_code == 409

    missing = client.post("/api/pto-requests/9999/approve", json={"reviewer": "Dr. Chief"})
    assert missing.status_code == 404


def test_template_apply_and_undo_over_http(seeded):
    client = TestClient(app)
    template = client.post(
        "/api/templates",
        json={
            "name": "Week A",
            "assignments": [{"day_of_week": 1, "provider_id": seeded["P1"], "service_id": seeded["Clinic"], "time_block": "AM"}],
        },
    )
    assert template.status_code == 201
    template_id = template.json()["id"]

    applied = client.post(
        "/api/templates/apply",
        json={"template_id": template_id, "start_date": "2026-02-01", "end_date": "2026-02-14"},
    )
    assert applied.status_code == 200
    assert applied.json()["created"] == 2
    history_id = applied.json()["history_id"]

    early_redo = client.post("/api/history/redo", json={"history_id": history_id})
    assert early_redo.status_code == 409

    undone = client.post("/api/history/undo", json={"history_id": history_id})
    assert undone.status_code == 200
    assert undone.json()["deleted_count"] == 2

    redone = client.post("/api/history/redo", json={"history_id": history_id})
    assert redone.status_code == 200
    assert redone.json()["created_count"] == 2


def test_alternating_payload_is_validated(seeded):
    client = TestClient(app)
    r = client.post(
        "/api/templates/apply-alternating",
        json={"template_ids": [1], "pattern": [0], "start_date": "2026-02-01", "end_date": "2026-02-14"},
    )
    assert r.status_code == 422
