from __future__ import annotations

import logging
from datetime import date, timedelta
from enum import Enum
from typing import Any, Iterable, Sequence

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_schedule.errors import InvalidTransitionError, NotFoundError
from clinic_schedule.models import ChangeHistoryRecord, ScheduleAssignment, utcnow
from clinic_schedule.persistence import (
    InsertStatus,
    assignment_from_snapshot,
    assignment_snapshot,
    insert_each,
    tally,
)
from clinic_schedule.schemas import EditConflict, HistoryEntryOut, RedoResult, UndoResult

logger = logging.getLogger(__name__)


class HistoryState(str, Enum):
    APPLIED = "applied"
    UNDONE = "undone"
    REDONE = "redone"


_TRANSITIONS: dict[tuple[HistoryState, str], HistoryState] = {
    (HistoryState.APPLIED, "undo"): HistoryState.UNDONE,
    (HistoryState.REDONE, "undo"): HistoryState.UNDONE,
    (HistoryState.UNDONE, "redo"): HistoryState.REDONE,
}


def next_state(state: str, action: str) -> HistoryState:
    current = HistoryState(state)
    try:
        return _TRANSITIONS[(current, action)]
    except KeyError:
        raise InvalidTransitionError(action, current.value) from None


def _affected_range(snapshots: Iterable[dict[str, Any]]) -> tuple[date | None, date | None]:
    days = sorted(date.fromisoformat(s["date"]) for s in snapshots)
    if not days:
        return None, None
    return days[0], days[-1]


class ChangeHistoryLedger:
    def __init__(self, db: Session) -> None:
        self.db = db

    def record(
        self,
        operation_type: str,
        description: str,
        *,
        created: Sequence[ScheduleAssignment] = (),
        deleted_snapshots: Sequence[dict[str, Any]] = (),
        start: date | None = None,
        end: date | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ChangeHistoryRecord:
        redo_snapshots = [assignment_snapshot(row, include_id=False) for row in created]
        if start is None or end is None:
            start, end = _affected_range([*redo_snapshots, *deleted_snapshots])
        entry = ChangeHistoryRecord(
            operation_type=operation_type,
            description=description,
            affected_date_start=start,
            affected_date_end=end,
            deleted_assignments=list(deleted_snapshots),
            redo_assignments=redo_snapshots,
            created_assignment_ids=[row.id for row in created],
            state=HistoryState.APPLIED.value,
            metadata_json=metadata or {},
        )
        self.db.add(entry)
        self.db.commit()
        return entry

    def record_safely(self, operation_type: str, description: str, **kwargs: Any) -> ChangeHistoryRecord | None:
        try:
            return self.record(operation_type, description, **kwargs)
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Failed to record %s in change history", operation_type)
            return None

    def get(self, history_id: int) -> ChangeHistoryRecord:
        entry = self.db.get(ChangeHistoryRecord, history_id)
        if entry is None:
            raise NotFoundError("History record not found")
        return entry

    def recent(self, limit: int = 20, days_back: int = 30) -> list[ChangeHistoryRecord]:
        since = utcnow() - timedelta(days=days_back)
        return list(
            self.db.scalars(
                select(ChangeHistoryRecord)
                .where(ChangeHistoryRecord.created_at >= since)
                .order_by(ChangeHistoryRecord.created_at.desc(), ChangeHistoryRecord.id.desc())
                .limit(limit)
            ).all()
        )

    def _concurrent_edits(self, entry: ChangeHistoryRecord) -> list[EditConflict]:
        created_ids = list(entry.created_assignment_ids or [])
        conflicts: list[EditConflict] = []
        if created_ids:
            present = set(self.db.scalars(select(ScheduleAssignment.id).where(ScheduleAssignment.id.in_(created_ids))).all())
            for missing in created_ids:
                if missing not in present:
                    conflicts.append(
                        EditConflict(assignment_id=missing, change_type="deleted", details="Assignment was manually deleted")
                    )
        if entry.affected_date_start is None or entry.affected_date_end is None:
            return conflicts
        known = set(created_ids) | {s["id"] for s in entry.deleted_assignments or [] if s.get("id") is not None}
        since = entry.redone_at or entry.created_at
        added = self.db.scalars(
            select(ScheduleAssignment).where(
                ScheduleAssignment.date >= entry.affected_date_start,
                ScheduleAssignment.date <= entry.affected_date_end,
                ScheduleAssignment.created_at > since,
            )
        ).all()
        for row in added:
            if row.id in known:
                continue
            conflicts.append(
                EditConflict(
                    assignment_id=row.id,
                    change_type="added",
                    date=row.date,
                    time_block=row.time_block,
                    details="New assignment added since operation",
                )
            )
        return conflicts

    def undo(self, history_id: int, force: bool = False) -> UndoResult:
        entry = self.get(history_id)
        target = next_state(entry.state, "undo")
        if not force:
            conflicts = self._concurrent_edits(entry)
            if conflicts:
                return UndoResult(
                    success=False,
                    requires_confirmation=True,
                    conflicts=conflicts,
                    message=f"{len(conflicts)} change(s) detected since this operation. Undoing will overwrite these changes.",
                )

        created_ids = list(entry.created_assignment_ids or [])
        deleted_count = 0
        if created_ids:
            result = self.db.execute(delete(ScheduleAssignment).where(ScheduleAssignment.id.in_(created_ids)))
            self.db.commit()
            deleted_count = int(result.rowcount or 0)

        snapshots = list(entry.deleted_assignments or [])
        outcomes = insert_each(self.db, [assignment_from_snapshot(s, keep_id=True) for s in snapshots], upsert=True)
        restored = tally(outcomes)
        skipped = restored.skipped + restored.failed
        message = f"Undo successful. Deleted {deleted_count} assignments, restored {restored.created} assignments."
        if skipped:
            logger.warning("Undo of history %s restored %s of %s rows", history_id, restored.created, len(snapshots))
            message = (
                f"Undo partially completed. Deleted {deleted_count} assignments, restored {restored.created} "
                f"of {len(snapshots)} assignments; {skipped} could not be restored."
            )

        entry.state = target.value
        entry.undone_at = utcnow()
        self.db.commit()
        return UndoResult(
            success=True,
            deleted_count=deleted_count,
            restored_count=restored.created,
            skipped_count=skipped,
            message=message,
        )

    def redo(self, history_id: int) -> RedoResult:
        entry = self.get(history_id)
        target = next_state(entry.state, "redo")

        restored_ids = [s["id"] for s in entry.deleted_assignments or [] if s.get("id") is not None]
        deleted_count = 0
        if restored_ids:
            result = self.db.execute(delete(ScheduleAssignment).where(ScheduleAssignment.id.in_(restored_ids)))
            self.db.commit()
            deleted_count = int(result.rowcount or 0)

        outcomes = insert_each(self.db, [assignment_from_snapshot(s) for s in entry.redo_assignments or []])
        counts = tally(outcomes)

        entry.created_assignment_ids = [o.row.id for o in outcomes if o.status is InsertStatus.CREATED]
        entry.state = target.value
        entry.redone_at = utcnow()
        self.db.commit()
        return RedoResult(
            success=True,
            deleted_count=deleted_count,
            created_count=counts.created,
            skipped_count=counts.skipped + counts.failed,
            message=f"Redo successful. Re-created {counts.created} assignments.",
        )


def history_out(entry: ChangeHistoryRecord) -> HistoryEntryOut:
    return HistoryEntryOut(
        id=entry.id,
        operation_type=entry.operation_type,
        description=entry.description,
        affected_date_start=entry.affected_date_start,
        affected_date_end=entry.affected_date_end,
        state=entry.state,
        is_undone=entry.is_undone,
        is_redone=entry.is_redone,
        created_count=len(entry.created_assignment_ids or []),
        deleted_count=len(entry.deleted_assignments or []),
        metadata=entry.metadata_json or {},
        created_at=entry.created_at,
    )
