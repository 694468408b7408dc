from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, timedelta
from typing import Callable, Sequence

from sqlalchemy import delete, or_, select
from sqlalchemy.orm import Session, selectinload

from clinic_schedule.calendar_utils import blocks_overlap, date_range, day_of_week, format_local_date, week_start
from clinic_schedule.errors import NotFoundError, ValidationError
from clinic_schedule.history import ChangeHistoryLedger
from clinic_schedule.holidays import HolidayPolicy
from clinic_schedule.models import ScheduleAssignment, ScheduleTemplate, TemplateAssignment
from clinic_schedule.persistence import InsertStatus, assignment_snapshot, insert_each, tally
from clinic_schedule.schemas import (
    HolidayConflict,
    PTOSlotConflict,
    TemplateApplyResult,
    TemplateAssignmentIn,
    TemplateOut,
)

logger = logging.getLogger(__name__)

RowsForDate = Callable[[date], Sequence[TemplateAssignment]]


def _by_day(template: ScheduleTemplate) -> dict[int, list[TemplateAssignment]]:
    grouped: dict[int, list[TemplateAssignment]] = defaultdict(list)
    for row in template.assignments:
        grouped[row.day_of_week].append(row)
    return grouped


def template_out(template: ScheduleTemplate) -> TemplateOut:
    return TemplateOut(
        id=template.id,
        name=template.name,
        type=template.type,
        assignments=[
            TemplateAssignmentIn(
                day_of_week=row.day_of_week,
                provider_id=row.provider_id,
                service_id=row.service_id,
                time_block=row.time_block,
                room_count=row.room_count,
                is_pto=row.is_pto,
                notes=row.notes,
            )
            for row in sorted(template.assignments, key=lambda r: (r.day_of_week, r.time_block, r.provider_id))
        ],
    )


class TemplateExpansionEngine:
    def __init__(
        self,
        db: Session,
        pto_service_id: int | None = None,
        holidays: HolidayPolicy | None = None,
        ledger: ChangeHistoryLedger | None = None,
    ) -> None:
        self.db = db
        self.pto_service_id = pto_service_id
        self.holidays = holidays or HolidayPolicy(db)
        self.ledger = ledger or ChangeHistoryLedger(db)

    def get_template(self, template_id: int) -> ScheduleTemplate:
        template = self.db.scalar(
            select(ScheduleTemplate)
            .where(ScheduleTemplate.id == template_id)
            .options(selectinload(ScheduleTemplate.assignments))
        )
        if template is None:
            raise NotFoundError(f"Template {template_id} not found")
        return template

    def list_templates(self) -> list[ScheduleTemplate]:
        return list(
            self.db.scalars(
                select(ScheduleTemplate)
                .options(selectinload(ScheduleTemplate.assignments))
                .order_by(ScheduleTemplate.name)
            ).all()
        )

    def create_template(self, name: str, type: str = "weekly", assignments: Sequence[TemplateAssignmentIn] = ()) -> ScheduleTemplate:
        if not name.strip():
            raise ValidationError("name", "Template name is required")
        template = ScheduleTemplate(name=name.strip(), type=type)
        template.assignments = [TemplateAssignment(**row.model_dump()) for row in assignments]
        self.db.add(template)
        self.db.commit()
        logger.info("Created template %s with %s rows", template.id, len(template.assignments))
        return template

    def replace_assignments(self, template_id: int, assignments: Sequence[TemplateAssignmentIn]) -> ScheduleTemplate:
        template = self.get_template(template_id)
        template.assignments = [TemplateAssignment(**row.model_dump()) for row in assignments]
        self.db.commit()
        return template

    def template_from_week(self, name: str, week_of: date, type: str = "weekly") -> ScheduleTemplate:
        """Capture the non-PTO assignments of the Sunday-start week containing ``week_of``."""
        start = week_start(week_of)
        end = start + timedelta(days=6)
        rows = self.db.scalars(
            select(ScheduleAssignment)
            .where(
                ScheduleAssignment.date >= start,
                ScheduleAssignment.date <= end,
                ScheduleAssignment.is_pto.is_(False),
            )
            .order_by(ScheduleAssignment.date, ScheduleAssignment.id)
        ).all()
        seen: set[tuple[int, int, int, str]] = set()
        captured: list[TemplateAssignmentIn] = []
        for row in rows:
            if self.pto_service_id is not None and row.service_id == self.pto_service_id:
                continue
            key = (day_of_week(row.date), row.provider_id, row.service_id, row.time_block)
            if key in seen:
                continue
            seen.add(key)
            captured.append(
                TemplateAssignmentIn(
                    day_of_week=key[0],
                    provider_id=row.provider_id,
                    service_id=row.service_id,
                    time_block=row.time_block,
                    room_count=row.room_count,
                    notes=row.notes,
                )
            )
        return self.create_template(name, type, captured)

    def apply(
        self,
        template_id: int,
        start_date: date,
        end_date: date,
        fill_empty_only: bool = True,
        clear_existing: bool = False,
    ) -> TemplateApplyResult:
        template = self.get_template(template_id)
        if not template.assignments:
            raise ValidationError("template_id", "Template has no assignments")
        by_day = _by_day(template)
        return self._expand(
            lambda day: by_day.get(day_of_week(day), []),
            start_date,
            end_date,
            fill_empty_only=fill_empty_only,
            clear_existing=clear_existing,
            description=f"Applied template '{template.name}' to {format_local_date(start_date)}..{format_local_date(end_date)}",
            metadata={"template_id": template.id},
        )

    def apply_alternating(
        self,
        template_ids: Sequence[int],
        pattern: Sequence[int],
        start_date: date,
        end_date: date,
        fill_empty_only: bool = True,
        clear_existing: bool = False,
    ) -> TemplateApplyResult:
        """Rotate templates week by week; ``pattern`` lists indexes into ``template_ids``."""
        if len(template_ids) < 2:
            raise ValidationError("template_ids", "At least 2 templates are required for alternating")
        if not pattern or any(index < 0 or index >= len(template_ids) for index in pattern):
            raise ValidationError("pattern", "Pattern must list indexes into template_ids")
        templates = [self.get_template(template_id) for template_id in template_ids]
        empty = [t.name for t in templates if not t.assignments]
        if empty:
            raise ValidationError("template_ids", f"Templates have no assignments: {', '.join(empty)}")
        grouped = [_by_day(t) for t in templates]
        first_week = week_start(start_date)

        def rows_for(day: date) -> Sequence[TemplateAssignment]:
            week_index = (week_start(day) - first_week).days // 7
            return grouped[pattern[week_index % len(pattern)]].get(day_of_week(day), [])

        names = " / ".join(t.name for t in templates)
        return self._expand(
            rows_for,
            start_date,
            end_date,
            fill_empty_only=fill_empty_only,
            clear_existing=clear_existing,
            description=f"Applied alternating templates {names} to {format_local_date(start_date)}..{format_local_date(end_date)}",
            metadata={"template_ids": list(template_ids), "pattern": list(pattern)},
        )

    def _pto_blocks(self, start_date: date, end_date: date) -> dict[tuple[int, date], list[str]]:
        conditions = [ScheduleAssignment.is_pto.is_(True)]
        if self.pto_service_id is not None:
            conditions.append(ScheduleAssignment.service_id == self.pto_service_id)
        rows = self.db.execute(
            select(ScheduleAssignment.provider_id, ScheduleAssignment.date, ScheduleAssignment.time_block).where(
                ScheduleAssignment.date >= start_date,
                ScheduleAssignment.date <= end_date,
                or_(*conditions),
            )
        ).all()
        blocks: dict[tuple[int, date], list[str]] = defaultdict(list)
        for provider_id, day, time_block in rows:
            blocks[(provider_id, day)].append(time_block)
        return blocks

    def _expand(
        self,
        rows_for: RowsForDate,
        start_date: date,
        end_date: date,
        *,
        fill_empty_only: bool,
        clear_existing: bool,
        description: str,
        metadata: dict,
    ) -> TemplateApplyResult:
        if end_date < start_date:
            raise ValidationError("end_date", "End date must be on or after start date")
        in_range = (ScheduleAssignment.date >= start_date, ScheduleAssignment.date <= end_date)

        deleted_snapshots: list[dict] = []
        if clear_existing:
            existing = self.db.scalars(select(ScheduleAssignment).where(*in_range)).all()
            deleted_snapshots = [assignment_snapshot(row) for row in existing]
            self.db.execute(delete(ScheduleAssignment).where(*in_range))
            self.db.commit()
            logger.info("Cleared %s assignments before applying template", len(deleted_snapshots))

        occupied: set[tuple[date, int, str]] = set()
        if fill_empty_only:
            occupied = {
                (day, service_id, time_block)
                for day, service_id, time_block in self.db.execute(
                    select(ScheduleAssignment.date, ScheduleAssignment.service_id, ScheduleAssignment.time_block).where(*in_range)
                ).all()
            }
        pto_blocks = self._pto_blocks(start_date, end_date)

        result = TemplateApplyResult(deleted=len(deleted_snapshots))
        planned: list[ScheduleAssignment] = []
        for day in date_range(start_date, end_date):
            for row in rows_for(day):
                holiday = self.holidays.blocking_holiday(day, row.service.name)
                if holiday is not None:
                    result.holiday_conflicts.append(
                        HolidayConflict(date=day, holiday_name=holiday.name, service_name=row.service.name)
                    )
                    continue
                if not row.is_pto and any(
                    blocks_overlap(block, row.time_block) for block in pto_blocks.get((row.provider_id, day), [])
                ):
                    result.pto_conflicts.append(
                        PTOSlotConflict(
                            provider_id=row.provider_id,
                            date=day,
                            time_block=row.time_block,
                            intended_service_id=row.service_id,
                        )
                    )
                    continue
                if (day, row.service_id, row.time_block) in occupied:
                    result.skipped += 1
                    continue
                planned.append(
                    ScheduleAssignment(
                        date=day,
                        time_block=row.time_block,
                        provider_id=row.provider_id,
                        service_id=row.service_id,
                        room_count=row.room_count,
                        is_pto=row.is_pto,
                        is_covering=False,
                        notes=row.notes,
                    )
                )

        outcomes = insert_each(self.db, planned)
        counts = tally(outcomes)
        result.created = counts.created
        result.skipped += counts.skipped
        result.errors = counts.failed
        created_rows = [o.row for o in outcomes if o.status is InsertStatus.CREATED]

        if created_rows or deleted_snapshots:
            entry = self.ledger.record_safely(
                "template_apply",
                description,
                created=created_rows,
                deleted_snapshots=deleted_snapshots,
                start=start_date,
                end=end_date,
                metadata=metadata,
            )
            result.history_id = entry.id if entry else None

        result.message = f"Created {result.created} assignments, skipped {result.skipped}"
        if result.errors:
            result.message += f", {result.errors} failed"
        logger.info("%s: %s", description, result.message)
        return result
