from __future__ import annotations

import logging
from datetime import date
from typing import Any, Callable

from sqlalchemy import delete, or_, select
from sqlalchemy.orm import Session

from clinic_schedule.calendar_utils import (
    TIME_BLOCKS,
    format_local_date,
    next_weekday,
    overlapping_blocks,
    previous_weekday,
    pto_block_for,
    weekdays_in_range,
)
from clinic_schedule.collaborators import (
    LoggingNotificationSender,
    NotificationSender,
    ProviderDirectory,
    notify_safely,
)
from clinic_schedule.errors import NotFoundError, UnsupportedOperationError, ValidationError
from clinic_schedule.models import PTORequest, ProviderLeave, ScheduleAssignment, utcnow
from clinic_schedule.persistence import InsertTally, insert_each, tally
from clinic_schedule.saga import Saga, StepIncomplete
from clinic_schedule.schemas import (
    PTOCreateResult,
    PTODecisionResult,
    PTODeleteResult,
    PTORequestOut,
    RangeNotice,
    ReconciliationGap,
    StepOutcome,
)

logger = logging.getLogger(__name__)

LEAVE_TYPES = ("maternity", "vacation", "medical", "personal", "conference", "other")
PTO_TIME_BLOCKS = ("AM", "PM", "FULL")
CALENDAR_REVIEWER = "Auto-approved (calendar entry)"
ADMIN_REVIEWER = "Auto-approved (admin entry)"


def _validate_request(start_date: date | None, end_date: date | None, time_block: str, leave_type: str) -> None:
    if start_date is None:
        raise ValidationError("start_date", "Start date is required")
    if end_date is None:
        raise ValidationError("end_date", "End date is required")
    if end_date < start_date:
        raise ValidationError("end_date", "End date must be on or after start date")
    if time_block not in PTO_TIME_BLOCKS:
        raise ValidationError("time_block", f"Time block must be one of {', '.join(PTO_TIME_BLOCKS)}")
    if leave_type not in LEAVE_TYPES:
        raise ValidationError("leave_type", f"Leave type must be one of {', '.join(LEAVE_TYPES)}")


class PTOLifecycleManager:
    """Keeps PTO consistent across schedule rows, requests and leaves.

    The three stores are written as a saga: every step commits on its own and
    is safe to re-run, and the result reports each step so a partial failure
    can be retried or reconciled.
    """

    def __init__(
        self,
        db: Session,
        pto_service_id: int,
        directory: ProviderDirectory | None = None,
        notifier: NotificationSender | None = None,
        admin_email: str | None = None,
    ) -> None:
        self.db = db
        self.pto_service_id = pto_service_id
        self.directory = directory or ProviderDirectory(db)
        self.notifier = notifier or LoggingNotificationSender()
        self.admin_email = admin_email

    def _work_dates(self, provider_id: int, start_date: date, end_date: date) -> list[date]:
        return weekdays_in_range(start_date, end_date, self.directory.work_days(provider_id))

    def _insert_pto_rows(self, provider_id: int, dates: list[date], time_block: str) -> InsertTally:
        if not dates:
            return InsertTally()
        existing = set(
            self.db.scalars(
                select(ScheduleAssignment.date).where(
                    ScheduleAssignment.provider_id == provider_id,
                    ScheduleAssignment.service_id == self.pto_service_id,
                    ScheduleAssignment.is_pto.is_(True),
                    ScheduleAssignment.time_block == time_block,
                    ScheduleAssignment.date.in_(dates),
                )
            ).all()
        )
        rows = [
            ScheduleAssignment(
                date=day,
                time_block=time_block,
                provider_id=provider_id,
                service_id=self.pto_service_id,
                room_count=0,
                is_pto=True,
                is_covering=False,
            )
            for day in dates
            if day not in existing
        ]
        counts = tally(insert_each(self.db, rows))
        counts.skipped += len(dates) - len(rows)
        return counts

    def _pto_rows_step(self, provider_id: int, dates: list[date], time_block: str, counts: InsertTally) -> Callable[[], int]:
        def schedule_assignments() -> int:
            result = self._insert_pto_rows(provider_id, dates, time_block)
            counts.created, counts.skipped, counts.failed = result.created, result.skipped, result.failed
            if result.failed:
                raise StepIncomplete(f"{result.failed} of {len(dates)} PTO rows could not be saved", result.created)
            return result.created

        return schedule_assignments

    def _ensure_leave(self, provider_id: int, start_date: date, end_date: date, leave_type: str, reason: str | None) -> tuple[ProviderLeave, bool]:
        leave = self.db.scalar(
            select(ProviderLeave).where(
                ProviderLeave.provider_id == provider_id,
                ProviderLeave.start_date == start_date,
                ProviderLeave.end_date == end_date,
                ProviderLeave.leave_type == leave_type,
            )
        )
        if leave is not None:
            return leave, False
        leave = ProviderLeave(
            provider_id=provider_id,
            start_date=start_date,
            end_date=end_date,
            leave_type=leave_type,
            reason=reason,
        )
        self.db.add(leave)
        return leave, True

    def create(
        self,
        provider_id: int,
        start_date: date,
        end_date: date,
        time_block: str = "FULL",
        leave_type: str = "vacation",
        reason: str | None = None,
    ) -> PTOCreateResult:
        _validate_request(start_date, end_date, time_block, leave_type)
        dates = self._work_dates(provider_id, start_date, end_date)
        if not dates:
            raise ValidationError("start_date", "No work days in the selected date range")
        block = pto_block_for(time_block)
        written: dict[str, Any] = {}
        counts = InsertTally()

        def pto_request() -> int:
            request = self.db.scalar(
                select(PTORequest).where(
                    PTORequest.provider_id == provider_id,
                    PTORequest.start_date == start_date,
                    PTORequest.end_date == end_date,
                    PTORequest.time_block == time_block,
                    PTORequest.status == "approved",
                )
            )
            if request is not None:
                written["pto_request"] = request
                return 0
            request = PTORequest(
                provider_id=provider_id,
                start_date=start_date,
                end_date=end_date,
                leave_type=leave_type,
                time_block=time_block,
                reason=reason,
                status="approved",
                requested_by="admin",
                reviewed_by=CALENDAR_REVIEWER,
                reviewed_at=utcnow(),
            )
            self.db.add(request)
            written["pto_request"] = request
            return 1

        def provider_leave() -> int:
            leave, is_new = self._ensure_leave(provider_id, start_date, end_date, leave_type, reason)
            written["provider_leave"] = leave
            return int(is_new)

        steps = (
            Saga(self.db, "pto_create")
            .step("pto_request", pto_request)
            .step("provider_leave", provider_leave)
            .step("schedule_assignments", self._pto_rows_step(provider_id, dates, block, counts))
            .run()
        )
        ok = {step.name: step.ok for step in steps}
        success = all(ok.values())
        logger.info(
            "PTO for provider %s %s..%s: %s created, %s skipped",
            provider_id,
            format_local_date(start_date),
            format_local_date(end_date),
            counts.created,
            counts.skipped,
        )
        return PTOCreateResult(
            success=success,
            message="PTO created successfully" if success else "PTO partially created; retry to complete the failed steps",
            pto_request_id=written["pto_request"].id if ok["pto_request"] else None,
            provider_leave_id=written["provider_leave"].id if ok["provider_leave"] else None,
            schedule_assignments_created=counts.created,
            schedule_assignments_skipped=counts.skipped,
            dates_processed=dates,
            steps=steps,
        )

    def _has_pto_on(self, provider_id: int, on: date) -> bool:
        return (
            self.db.scalar(
                select(ScheduleAssignment.id)
                .where(
                    ScheduleAssignment.provider_id == provider_id,
                    ScheduleAssignment.date == on,
                    or_(ScheduleAssignment.is_pto.is_(True), ScheduleAssignment.service_id == self.pto_service_id),
                )
                .limit(1)
            )
            is not None
        )

    def _cascade(self, model: Any, record_type: str, provider_id: int, on: date, notices: list[RangeNotice]) -> int:
        if self._has_pto_on(provider_id, on):
            return 0
        stmt = select(model).where(model.provider_id == provider_id, model.start_date <= on, model.end_date >= on)
        if model is PTORequest:
            stmt = stmt.where(PTORequest.status != "denied")
        changed = 0
        for record in self.db.scalars(stmt).all():
            if record.start_date == record.end_date:
                self.db.delete(record)
            elif record.start_date == on:
                new_start = next_weekday(on)
                if new_start > record.end_date:
                    self.db.delete(record)
                else:
                    record.start_date = new_start
            elif record.end_date == on:
                new_end = previous_weekday(on)
                if new_end < record.start_date:
                    self.db.delete(record)
                else:
                    record.end_date = new_end
            else:
                logger.warning(
                    "%s %s still spans %s after its PTO day was removed; splitting is not supported",
                    record_type,
                    record.id,
                    format_local_date(on),
                )
                notices.append(
                    RangeNotice(
                        record_type=record_type,
                        record_id=record.id,
                        start_date=record.start_date,
                        end_date=record.end_date,
                        message=f"{format_local_date(on)} is inside {format_local_date(record.start_date)}.."
                        f"{format_local_date(record.end_date)}; the range was left unchanged and needs reconciliation",
                    )
                )
                continue
            changed += 1
        return changed

    def delete_day(self, provider_id: int, on: date, time_block: str | None = None) -> PTODeleteResult:
        """Remove PTO on one date and shrink the requests and leaves that cover it.

        A date strictly inside a longer range cannot be split out; those
        records are left as they are and listed in ``unsplit_ranges``.
        """
        self.directory.get(provider_id)
        if time_block is None or pto_block_for(time_block) == "BOTH":
            blocks = TIME_BLOCKS
        else:
            blocks = overlapping_blocks(time_block)
        notices: list[RangeNotice] = []

        def schedule_assignments() -> int:
            result = self.db.execute(
                delete(ScheduleAssignment).where(
                    ScheduleAssignment.provider_id == provider_id,
                    ScheduleAssignment.date == on,
                    ScheduleAssignment.time_block.in_(blocks),
                    or_(ScheduleAssignment.is_pto.is_(True), ScheduleAssignment.service_id == self.pto_service_id),
                )
            )
            return int(result.rowcount or 0)

        steps = (
            Saga(self.db, "pto_delete")
            .step("schedule_assignments", schedule_assignments)
            .step("pto_requests", lambda: self._cascade(PTORequest, "pto_request", provider_id, on, notices))
            .step("provider_leaves", lambda: self._cascade(ProviderLeave, "provider_leave", provider_id, on, notices))
            .run()
        )
        counts = {step.name: step.count for step in steps}
        success = all(step.ok for step in steps)
        if not success:
            message = "PTO partially deleted; retry to complete the failed steps"
        elif notices:
            message = f"PTO deleted; {len(notices)} record(s) still span {format_local_date(on)} and need reconciliation"
        else:
            message = "PTO deleted successfully"
        return PTODeleteResult(
            success=success,
            message=message,
            schedule_assignments_deleted=counts["schedule_assignments"],
            pto_requests_updated=counts["pto_requests"],
            provider_leaves_updated=counts["provider_leaves"],
            unsplit_ranges=notices,
            steps=steps,
        )

    def get_request(self, request_id: int) -> PTORequest:
        request = self.db.get(PTORequest, request_id)
        if request is None:
            raise NotFoundError("PTO request not found")
        return request

    def _pending(self, request_id: int) -> PTORequest:
        request = self.get_request(request_id)
        if request.status != "pending":
            raise UnsupportedOperationError(f"Request has already been {request.status}", status=request.status)
        return request

    def submit_request(
        self,
        provider_id: int,
        start_date: date,
        end_date: date,
        leave_type: str,
        time_block: str = "FULL",
        reason: str | None = None,
        requested_by: str = "provider",
    ) -> PTODecisionResult:
        _validate_request(start_date, end_date, time_block, leave_type)
        provider = self.directory.get(provider_id)
        request = PTORequest(
            provider_id=provider_id,
            start_date=start_date,
            end_date=end_date,
            leave_type=leave_type,
            time_block=time_block,
            reason=reason,
            status="pending",
            requested_by=requested_by,
        )
        self.db.add(request)
        self.db.commit()
        logger.info("PTO request %s submitted by %s for provider %s", request.id, requested_by, provider_id)

        if requested_by == "admin":
            return self.approve(request.id, ADMIN_REVIEWER)

        notified = notify_safely(
            self.notifier,
            "pto_submitted",
            self.admin_email,
            {"request_id": request.id, "provider": provider.name, "start_date": format_local_date(start_date), "end_date": format_local_date(end_date)},
        )
        return PTODecisionResult(
            success=True,
            message="PTO request submitted",
            request=PTORequestOut.model_validate(request),
            notified=notified,
            steps=[StepOutcome(name="pto_request", ok=True, count=1)],
        )

    def approve(self, request_id: int, reviewer: str, comment: str | None = None) -> PTODecisionResult:
        request = self._pending(request_id)
        provider = self.directory.get(request.provider_id)
        dates = self._work_dates(request.provider_id, request.start_date, request.end_date)
        counts = InsertTally()

        def pto_request() -> int:
            request.status = "approved"
            request.reviewed_by = reviewer
            request.reviewed_at = utcnow()
            request.review_comment = comment
            return 1

        def provider_leave() -> int:
            _, is_new = self._ensure_leave(
                request.provider_id, request.start_date, request.end_date, request.leave_type, request.reason
            )
            return int(is_new)

        steps = (
            Saga(self.db, "pto_approve")
            .step("pto_request", pto_request, required=True)
            .step("provider_leave", provider_leave)
            .step("schedule_assignments", self._pto_rows_step(request.provider_id, dates, pto_block_for(request.time_block), counts))
            .run()
        )
        success = all(step.ok for step in steps)
        notified = False
        if steps[0].ok:
            notified = notify_safely(
                self.notifier,
                "pto_approved",
                provider.email,
                {"request_id": request.id, "reviewer": reviewer, "comment": comment},
            )
        return PTODecisionResult(
            success=success,
            message="PTO request approved" if success else "PTO approval incomplete; retry to complete the failed steps",
            request=PTORequestOut.model_validate(request),
            schedule_assignments_created=counts.created,
            notified=notified,
            steps=steps,
        )

    def deny(self, request_id: int, reviewer: str, comment: str | None = None) -> PTODecisionResult:
        request = self._pending(request_id)
        provider = self.directory.get(request.provider_id)
        request.status = "denied"
        request.reviewed_by = reviewer
        request.reviewed_at = utcnow()
        request.review_comment = comment
        self.db.commit()
        notified = notify_safely(
            self.notifier,
            "pto_denied",
            provider.email,
            {"request_id": request.id, "reviewer": reviewer, "comment": comment},
        )
        return PTODecisionResult(
            success=True,
            message="PTO request denied",
            request=PTORequestOut.model_validate(request),
            notified=notified,
            steps=[StepOutcome(name="pto_request", ok=True, count=1)],
        )

    def reconcile(self, provider_id: int, start_date: date, end_date: date) -> list[ReconciliationGap]:
        """Approved requests and leaves whose work dates have no PTO schedule row."""
        work_days = self.directory.work_days(provider_id)
        covered = set(
            self.db.scalars(
                select(ScheduleAssignment.date).where(
                    ScheduleAssignment.provider_id == provider_id,
                    ScheduleAssignment.date >= start_date,
                    ScheduleAssignment.date <= end_date,
                    or_(ScheduleAssignment.is_pto.is_(True), ScheduleAssignment.service_id == self.pto_service_id),
                )
            ).all()
        )
        requests = self.db.scalars(
            select(PTORequest).where(
                PTORequest.provider_id == provider_id,
                PTORequest.status == "approved",
                PTORequest.start_date <= end_date,
                PTORequest.end_date >= start_date,
            )
        ).all()
        leaves = self.db.scalars(
            select(ProviderLeave).where(
                ProviderLeave.provider_id == provider_id,
                ProviderLeave.start_date <= end_date,
                ProviderLeave.end_date >= start_date,
            )
        ).all()

        gaps: list[ReconciliationGap] = []
        for record_type, records in (("pto_request", requests), ("provider_leave", leaves)):
            for record in records:
                window = weekdays_in_range(max(record.start_date, start_date), min(record.end_date, end_date), work_days)
                missing = [day for day in window if day not in covered]
                if missing:
                    gaps.append(
                        ReconciliationGap(
                            record_type=record_type,
                            record_id=record.id,
                            start_date=record.start_date,
                            end_date=record.end_date,
                            missing_dates=missing,
                        )
                    )
        return gaps
