from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_schedule.availability import AvailabilityEvaluator
from clinic_schedule.calendar_utils import blocks_overlap, format_local_date
from clinic_schedule.collaborators import ServiceCatalog, ServiceInfo
from clinic_schedule.errors import ValidationError
from clinic_schedule.holidays import HolidayInfo, HolidayPolicy
from clinic_schedule.models import ScheduleAssignment
from clinic_schedule.schemas import CandidateAssignment, CheckResult, Violation

logger = logging.getLogger(__name__)


class ConflictDetector:
    """Checks candidate assignments before they are written.

    Steps run in order (holidays, PTO overlap, availability rules) and stop at
    the first one that produces hard blocks. A lookup failure inside a step
    blocks the whole batch rather than letting it through unchecked.
    """

    def __init__(
        self,
        db: Session,
        pto_service_id: int | None,
        holidays: HolidayPolicy | None = None,
        catalog: ServiceCatalog | None = None,
        evaluator: AvailabilityEvaluator | None = None,
    ) -> None:
        self.db = db
        self.pto_service_id = pto_service_id
        self.holidays = holidays or HolidayPolicy(db)
        self.catalog = catalog or ServiceCatalog(db)
        self.evaluator = evaluator or AvailabilityEvaluator(db)
        self._services: dict[int, ServiceInfo] = {}

    def is_pto(self, assignment: Any) -> bool:
        return bool(assignment.is_pto) or (
            self.pto_service_id is not None and assignment.service_id == self.pto_service_id
        )

    def _violation(self, candidate: CandidateAssignment, kind: str, reason: str, **extra: Any) -> Violation:
        service = self._services.get(candidate.service_id)
        extra.setdefault("service_name", service.name if service else None)
        return Violation(
            kind=kind,
            provider_id=candidate.provider_id,
            service_id=candidate.service_id,
            date=candidate.date,
            time_block=candidate.time_block,
            reason=reason,
            **extra,
        )

    def _lookup_failed(self, candidates: Sequence[CandidateAssignment], what: str) -> list[Violation]:
        return [self._violation(c, "lookup_failure", f"Could not verify {what}; nothing was saved") for c in candidates]

    def check(self, candidates: Sequence[CandidateAssignment], force_override: bool = False) -> CheckResult:
        if not candidates:
            raise ValidationError("assignments", "At least one assignment is required")
        self._services = {}

        hard = self._holiday_blocks(candidates)
        if hard:
            return CheckResult(hard_blocks=hard)

        hard = self._pto_blocks(candidates)
        if hard:
            return CheckResult(hard_blocks=hard)

        if force_override:
            return CheckResult(accepted=list(candidates))

        warnings, hard = self._availability(candidates)
        if hard:
            return CheckResult(warnings=warnings, hard_blocks=hard)
        return CheckResult(accepted=list(candidates), warnings=warnings)

    def _holiday_blocks(self, candidates: Sequence[CandidateAssignment]) -> list[Violation]:
        try:
            self._services = self.catalog.get_many(c.service_id for c in candidates)
            found = [
                (c, self._services.get(c.service_id), self._holiday_for(c))
                for c in candidates
            ]
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Holiday check failed")
            return self._lookup_failed(candidates, "holidays")

        blocks: list[Violation] = []
        for candidate, service, holiday in found:
            if service is None:
                blocks.append(
                    self._violation(candidate, "lookup_failure", f"Service {candidate.service_id} not found")
                )
            elif holiday is not None:
                blocks.append(
                    self._violation(
                        candidate,
                        "holiday",
                        f"{format_local_date(candidate.date)}: {holiday.name} ({service.name})",
                        holiday_name=holiday.name,
                    )
                )
        return blocks

    def _holiday_for(self, candidate: CandidateAssignment) -> HolidayInfo | None:
        service = self._services.get(candidate.service_id)
        if service is None:
            return None
        return self.holidays.blocking_holiday(candidate.date, service.name)

    def _pto_blocks(self, candidates: Sequence[CandidateAssignment]) -> list[Violation]:
        keys = {(c.provider_id, c.date) for c in candidates}
        try:
            existing = self.db.scalars(
                select(ScheduleAssignment).where(
                    ScheduleAssignment.provider_id.in_({provider_id for provider_id, _ in keys}),
                    ScheduleAssignment.date.in_({day for _, day in keys}),
                )
            ).all()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("PTO overlap check failed")
            return self._lookup_failed(candidates, "PTO")

        by_key: dict[tuple, list[Any]] = defaultdict(list)
        for row in existing:
            if (row.provider_id, row.date) in keys:
                by_key[(row.provider_id, row.date)].append(row)
        batch: dict[tuple, list[tuple[int, CandidateAssignment]]] = defaultdict(list)
        for index, candidate in enumerate(candidates):
            batch[(candidate.provider_id, candidate.date)].append((index, candidate))

        blocks: list[Violation] = []
        for index, candidate in enumerate(candidates):
            key = (candidate.provider_id, candidate.date)
            others = list(by_key[key]) + [other for i, other in batch[key] if i != index]
            candidate_pto = self.is_pto(candidate)
            clash = next(
                (
                    other
                    for other in others
                    if blocks_overlap(other.time_block, candidate.time_block) and self.is_pto(other) != candidate_pto
                ),
                None,
            )
            if clash is None:
                continue
            day = format_local_date(candidate.date)
            if candidate_pto:
                reason = f"Provider is scheduled to work on {day} ({clash.time_block}); PTO cannot overlap it"
            else:
                reason = f"Provider has PTO on {day} ({clash.time_block})"
            blocks.append(self._violation(candidate, "pto_conflict", reason))
        return blocks

    def _availability(self, candidates: Sequence[CandidateAssignment]) -> tuple[list[Violation], list[Violation]]:
        try:
            decisions = self.evaluator.evaluate_many(
                (c.provider_id, c.service_id, c.date, c.time_block) for c in candidates
            )
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Availability check failed")
            return [], self._lookup_failed(candidates, "availability rules")

        warnings: list[Violation] = []
        hard: list[Violation] = []
        for candidate, decision in zip(candidates, decisions):
            if decision.decision == "allow":
                continue
            violation = self._violation(
                candidate,
                "availability",
                decision.reason or "Provider is not available",
                enforcement="hard" if decision.decision == "hard_block" else "soft",
                rule_ids=decision.matched_rule_ids,
            )
            (hard if decision.decision == "hard_block" else warnings).append(violation)
        return warnings, hard
