from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_schedule.calendar_utils import format_local_date, parse_local_date
from clinic_schedule.models import ScheduleAssignment

logger = logging.getLogger(__name__)

SNAPSHOT_FIELDS = ("date", "time_block", "provider_id", "service_id", "room_count", "is_pto", "is_covering", "notes")


class InsertStatus(str, Enum):
    CREATED = "created"
    SKIPPED_DUPLICATE = "skipped_duplicate"
    FAILED = "failed"


@dataclass
class InsertOutcome:
    row: Any
    status: InsertStatus
    error: str | None = None


@dataclass
class InsertTally:
    created: int = 0
    skipped: int = 0
    failed: int = 0


def is_unique_violation(exc: IntegrityError) -> bool:
    orig = exc.orig
    if getattr(orig, "sqlstate", None) == "23505":
        return True
    message = str(orig).lower()
    return "unique constraint" in message or "duplicate key" in message


def insert_each(db: Session, rows: Iterable[Any], *, upsert: bool = False) -> list[InsertOutcome]:
    """Insert rows one commit at a time so a bad row never aborts the rest.

    ``upsert`` merges by primary key instead of adding, which keeps the ids of
    restored snapshots.
    """
    outcomes: list[InsertOutcome] = []
    for row in rows:
        try:
            if upsert:
                target = db.merge(row)
            else:
                target = row
                db.add(target)
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            if is_unique_violation(exc):
                outcomes.append(InsertOutcome(row, InsertStatus.SKIPPED_DUPLICATE))
            else:
                logger.warning("Rejected row %r: %s", row, exc.orig)
                outcomes.append(InsertOutcome(row, InsertStatus.FAILED, str(exc.orig)))
            continue
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("Failed to insert row %r", row)
            outcomes.append(InsertOutcome(row, InsertStatus.FAILED, str(exc)))
            continue
        outcomes.append(InsertOutcome(target, InsertStatus.CREATED))
    return outcomes


def tally(outcomes: Iterable[InsertOutcome]) -> InsertTally:
    counts = InsertTally()
    for outcome in outcomes:
        if outcome.status is InsertStatus.CREATED:
            counts.created += 1
        elif outcome.status is InsertStatus.SKIPPED_DUPLICATE:
            counts.skipped += 1
        else:
            counts.failed += 1
    return counts


def assignment_snapshot(assignment: ScheduleAssignment, include_id: bool = True) -> dict[str, Any]:
    snapshot: dict[str, Any] = {field: getattr(assignment, field) for field in SNAPSHOT_FIELDS}
    snapshot["date"] = format_local_date(assignment.date)
    if include_id:
        snapshot["id"] = assignment.id
    return snapshot


def assignment_from_snapshot(snapshot: dict[str, Any], keep_id: bool = False) -> ScheduleAssignment:
    values = {field: snapshot.get(field) for field in SNAPSHOT_FIELDS}
    values["date"] = parse_local_date(snapshot["date"])
    values["room_count"] = values["room_count"] or 0
    values["is_pto"] = bool(values["is_pto"])
    values["is_covering"] = bool(values["is_covering"])
    if keep_id and snapshot.get("id") is not None:
        values["id"] = snapshot["id"]
    return ScheduleAssignment(**values)
