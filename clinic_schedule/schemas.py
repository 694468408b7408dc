from __future__ import annotations

import datetime as dt
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

TimeBlock = Literal["AM", "PM", "BOTH"]
PTOTimeBlock = Literal["AM", "PM", "FULL"]
LeaveType = Literal["maternity", "vacation", "medical", "personal", "conference", "other"]
Enforcement = Literal["hard", "soft"]
ViolationKind = Literal["holiday", "pto_conflict", "availability", "lookup_failure", "duplicate_slot"]


class CandidateAssignment(BaseModel):
    date: dt.date
    time_block: TimeBlock
    provider_id: int
    service_id: int
    room_count: int = Field(default=0, ge=0)
    is_pto: bool = False
    is_covering: bool = False
    notes: str | None = None


class Violation(BaseModel):
    kind: ViolationKind
    enforcement: Enforcement = "hard"
    provider_id: int
    service_id: int
    date: dt.date
    time_block: TimeBlock
    service_name: str | None = None
    holiday_name: str | None = None
    reason: str
    rule_ids: list[int] = Field(default_factory=list)


class CheckResult(BaseModel):
    accepted: list[CandidateAssignment] = Field(default_factory=list)
    warnings: list[Violation] = Field(default_factory=list)
    hard_blocks: list[Violation] = Field(default_factory=list)

    @property
    def requires_acknowledgement(self) -> bool:
        return not self.hard_blocks and bool(self.warnings)


class BulkSubmitPayload(BaseModel):
    assignments: list[CandidateAssignment]
    acknowledged_warnings: bool = False
    force_override: bool = False


class BulkSubmitResult(BaseModel):
    success: bool
    created: int
    created_ids: list[int] = Field(default_factory=list)
    skipped: int = 0
    warnings: list[Violation] = Field(default_factory=list)
    history_id: int | None = None


class BulkDeletePayload(BaseModel):
    ids: list[int]


class BulkDeleteResult(BaseModel):
    success: bool
    deleted: int
    history_id: int | None = None


class AvailabilityDecisionOut(BaseModel):
    decision: Literal["allow", "warn", "hard_block"]
    reason: str | None = None
    matched_rule_ids: list[int] = Field(default_factory=list)


class StepOutcome(BaseModel):
    name: str
    ok: bool
    count: int = 0
    error: str | None = None


class PTOCreatePayload(BaseModel):
    provider_id: int
    start_date: dt.date
    end_date: dt.date
    time_block: PTOTimeBlock = "FULL"
    leave_type: LeaveType = "vacation"
    reason: str | None = None


class PTOCreateResult(BaseModel):
    success: bool
    message: str
    pto_request_id: int | None = None
    provider_leave_id: int | None = None
    schedule_assignments_created: int = 0
    schedule_assignments_skipped: int = 0
    dates_processed: list[dt.date] = Field(default_factory=list)
    steps: list[StepOutcome] = Field(default_factory=list)


class RangeNotice(BaseModel):
    record_type: Literal["pto_request", "provider_leave"]
    record_id: int
    start_date: dt.date
    end_date: dt.date
    message: str


class PTODeleteResult(BaseModel):
    success: bool
    message: str
    schedule_assignments_deleted: int = 0
    pto_requests_updated: int = 0
    provider_leaves_updated: int = 0
    unsplit_ranges: list[RangeNotice] = Field(default_factory=list)
    steps: list[StepOutcome] = Field(default_factory=list)


class PTORequestPayload(BaseModel):
    provider_id: int
    start_date: dt.date
    end_date: dt.date
    leave_type: LeaveType
    time_block: PTOTimeBlock = "FULL"
    reason: str | None = None
    requested_by: str = "provider"


class PTORequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    provider_id: int
    start_date: dt.date
    end_date: dt.date
    leave_type: str
    time_block: str
    reason: str | None = None
    status: Literal["pending", "approved", "denied"]
    requested_by: str
    reviewed_by: str | None = None
    reviewed_at: dt.datetime | None = None
    review_comment: str | None = None


class ReviewPayload(BaseModel):
    reviewer: str = Field(min_length=1)
    comment: str | None = None


class ReconciliationGap(BaseModel):
    record_type: Literal["pto_request", "provider_leave"]
    record_id: int
    start_date: dt.date
    end_date: dt.date
    missing_dates: list[dt.date]


class TemplateAssignmentIn(BaseModel):
    day_of_week: int = Field(ge=0, le=6)
    provider_id: int
    service_id: int
    time_block: TimeBlock
    room_count: int = Field(default=0, ge=0)
    is_pto: bool = False
    notes: str | None = None


class TemplateCreatePayload(BaseModel):
    name: str = Field(min_length=1)
    type: Literal["weekly", "provider-leave", "custom"] = "weekly"
    assignments: list[TemplateAssignmentIn] = Field(default_factory=list)


class TemplateOut(BaseModel):
    id: int
    name: str
    type: str
    assignments: list[TemplateAssignmentIn] = Field(default_factory=list)


class TemplateFromWeekPayload(BaseModel):
    name: str = Field(min_length=1)
    week_start: dt.date
    type: Literal["weekly", "provider-leave", "custom"] = "weekly"


class TemplateApplyPayload(BaseModel):
    template_id: int
    start_date: dt.date
    end_date: dt.date
    fill_empty_only: bool = True
    clear_existing: bool = False


class AlternatingApplyPayload(BaseModel):
    template_ids: list[int]
    pattern: list[int]
    start_date: dt.date
    end_date: dt.date
    fill_empty_only: bool = True
    clear_existing: bool = False

    @model_validator(mode="after")
    def validate_pattern(self) -> AlternatingApplyPayload:
        if len(self.template_ids) < 2:
            raise ValueError("At least 2 templates are required for alternating")
        if not self.pattern:
            raise ValueError("pattern must list template indexes, e.g. [0, 1]")
        if any(index < 0 or index >= len(self.template_ids) for index in self.pattern):
            raise ValueError("pattern indexes must refer to template_ids")
        return self


class HolidayConflict(BaseModel):
    date: dt.date
    holiday_name: str
    service_name: str


class PTOSlotConflict(BaseModel):
    provider_id: int
    date: dt.date
    time_block: TimeBlock
    intended_service_id: int
    reason: str = "Provider has PTO"


class TemplateApplyResult(BaseModel):
    success: bool = True
    created: int = 0
    skipped: int = 0
    errors: int = 0
    holiday_conflicts: list[HolidayConflict] = Field(default_factory=list)
    pto_conflicts: list[PTOSlotConflict] = Field(default_factory=list)
    deleted: int = 0
    history_id: int | None = None
    message: str = ""


class HistoryEntryOut(BaseModel):
    id: int
    operation_type: str
    description: str
    affected_date_start: dt.date | None = None
    affected_date_end: dt.date | None = None
    state: Literal["applied", "undone", "redone"]
    is_undone: bool
    is_redone: bool
    created_count: int
    deleted_count: int
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: dt.datetime


class HistoryActionPayload(BaseModel):
    history_id: int
    force: bool = False


class EditConflict(BaseModel):
    assignment_id: int
    change_type: Literal["deleted", "added"]
    date: dt.date | None = None
    time_block: str | None = None
    details: str


class UndoResult(BaseModel):
    success: bool
    deleted_count: int = 0
    restored_count: int = 0
    skipped_count: int = 0
    requires_confirmation: bool = False
    conflicts: list[EditConflict] = Field(default_factory=list)
    message: str


class RedoResult(BaseModel):
    success: bool
    deleted_count: int = 0
    created_count: int = 0
    skipped_count: int = 0
    message: str


class HolidayOut(BaseModel):
    date: dt.date
    name: str
    block_assignments: bool


class PTODecisionResult(BaseModel):
    success: bool
    message: str
    request: PTORequestOut
    schedule_assignments_created: int = 0
    notified: bool = False
    steps: list[StepOutcome] = Field(default_factory=list)
