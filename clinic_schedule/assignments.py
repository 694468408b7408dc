from __future__ import annotations

import logging
from typing import Sequence

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from clinic_schedule.conflicts import ConflictDetector
from clinic_schedule.errors import AcknowledgementRequired, ConflictError, NotFoundError, ValidationError
from clinic_schedule.history import ChangeHistoryLedger
from clinic_schedule.models import ScheduleAssignment
from clinic_schedule.persistence import assignment_snapshot, is_unique_violation
from clinic_schedule.schemas import BulkDeleteResult, BulkSubmitResult, CandidateAssignment, Violation

logger = logging.getLogger(__name__)


def _slot_key(candidate: CandidateAssignment) -> tuple:
    return (candidate.provider_id, candidate.service_id, candidate.date, candidate.time_block)


def _existing_slots(db: Session, candidates: Sequence[CandidateAssignment]) -> set[tuple]:
    keys = [_slot_key(c) for c in candidates]
    rows = db.execute(
        select(
            ScheduleAssignment.provider_id,
            ScheduleAssignment.service_id,
            ScheduleAssignment.date,
            ScheduleAssignment.time_block,
        ).where(
            ScheduleAssignment.provider_id.in_({key[0] for key in keys}),
            ScheduleAssignment.date.in_({key[2] for key in keys}),
        )
    ).all()
    return {tuple(row) for row in rows}


def _drop_repeated_pto(
    db: Session, candidates: Sequence[CandidateAssignment], detector: ConflictDetector
) -> tuple[list[CandidateAssignment], int]:
    """PTO already on the calendar, or repeated in the batch, is skipped rather than re-inserted."""
    if not any(detector.is_pto(c) for c in candidates):
        return list(candidates), 0
    taken = _existing_slots(db, candidates)
    seen: set[tuple] = set()
    kept: list[CandidateAssignment] = []
    for candidate in candidates:
        key = _slot_key(candidate)
        if detector.is_pto(candidate) and (key in taken or key in seen):
            continue
        seen.add(key)
        kept.append(candidate)
    return kept, len(candidates) - len(kept)


def _taken_slots(db: Session, candidates: Sequence[CandidateAssignment]) -> list[Violation]:
    keys = [_slot_key(c) for c in candidates]
    taken = _existing_slots(db, candidates)
    seen: set[tuple] = set()
    violations: list[Violation] = []
    for candidate, key in zip(candidates, keys):
        if key in taken:
            reason = "Slot is already assigned"
        elif key in seen:
            reason = "Slot appears more than once in the batch"
        else:
            seen.add(key)
            continue
        violations.append(
            Violation(
                kind="duplicate_slot",
                provider_id=candidate.provider_id,
                service_id=candidate.service_id,
                date=candidate.date,
                time_block=candidate.time_block,
                reason=reason,
            )
        )
    return violations


def submit_batch(
    db: Session,
    candidates: Sequence[CandidateAssignment],
    *,
    detector: ConflictDetector,
    ledger: ChangeHistoryLedger,
    acknowledged_warnings: bool = False,
    force_override: bool = False,
) -> BulkSubmitResult:
    """Check a batch and insert it all-or-nothing.

    Hard blocks raise ``ConflictError``; unacknowledged soft warnings raise
    ``AcknowledgementRequired``. Nothing is written in either case.
    """
    result = detector.check(candidates, force_override=force_override)
    warnings = [w.model_dump(mode="json") for w in result.warnings]
    if result.hard_blocks:
        raise ConflictError(
            "Schedule conflicts detected",
            violations=[v.model_dump(mode="json") for v in result.hard_blocks],
            warnings=warnings,
        )
    if result.warnings and not acknowledged_warnings:
        raise AcknowledgementRequired(warnings)

    accepted, skipped = _drop_repeated_pto(db, result.accepted, detector)
    if skipped:
        logger.info("Skipped %s PTO slot(s) already on the calendar", skipped)
    if not accepted:
        return BulkSubmitResult(success=True, created=0, skipped=skipped, warnings=result.warnings)

    rows = [ScheduleAssignment(**c.model_dump()) for c in accepted]
    db.add_all(rows)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        if not is_unique_violation(exc):
            raise
        raise ConflictError(
            "One or more slots are already taken; nothing was saved",
            violations=[v.model_dump(mode="json") for v in _taken_slots(db, accepted)],
        ) from exc

    logger.info("Created %s assignments", len(rows))
    entry = ledger.record_safely(
        "bulk_create",
        f"Created {len(rows)} assignment(s)",
        created=rows,
        metadata={"acknowledged_warnings": acknowledged_warnings, "force_override": force_override},
    )
    return BulkSubmitResult(
        success=True,
        created=len(rows),
        created_ids=[row.id for row in rows],
        skipped=skipped,
        warnings=result.warnings,
        history_id=entry.id if entry else None,
    )


def delete_batch(db: Session, ids: Sequence[int], *, ledger: ChangeHistoryLedger) -> BulkDeleteResult:
    if not ids:
        raise ValidationError("ids", "At least one assignment id is required")
    rows = db.scalars(select(ScheduleAssignment).where(ScheduleAssignment.id.in_(set(ids)))).all()
    if not rows:
        raise NotFoundError("No matching assignments")

    snapshots = [assignment_snapshot(row) for row in rows]
    db.execute(delete(ScheduleAssignment).where(ScheduleAssignment.id.in_([row.id for row in rows])))
    db.commit()

    logger.info("Deleted %s assignments", len(snapshots))
    entry = ledger.record_safely(
        "bulk_delete",
        f"Deleted {len(snapshots)} assignment(s)",
        deleted_snapshots=snapshots,
    )
    return BulkDeleteResult(success=True, deleted=len(snapshots), history_id=entry.id if entry else None)
