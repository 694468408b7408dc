from __future__ import annotations

import datetime as dt

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from clinic_schedule.db import Base


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class Service(Base):
    __tablename__ = "services"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False, unique=True, index=True)


class Provider(Base):
    __tablename__ = "providers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    initials: Mapped[str] = mapped_column(String(16), nullable=False, unique=True, index=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    # Sunday=0 .. Saturday=6; null means Monday-Friday.
    work_days: Mapped[list[int] | None] = mapped_column(JSON, nullable=True)


class ScheduleAssignment(Base):
    __tablename__ = "schedule_assignments"
    __table_args__ = (
        CheckConstraint("time_block IN ('AM', 'PM', 'BOTH')", name="ck_schedule_assignments_time_block"),
        CheckConstraint("room_count >= 0", name="ck_schedule_assignments_room_count"),
        UniqueConstraint("provider_id", "service_id", "date", "time_block", name="uq_schedule_assignments_slot"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False, index=True)
    time_block: Mapped[str] = mapped_column(String(4), nullable=False)
    provider_id: Mapped[int] = mapped_column(ForeignKey("providers.id", ondelete="CASCADE"), nullable=False, index=True)
    service_id: Mapped[int] = mapped_column(ForeignKey("services.id", ondelete="CASCADE"), nullable=False, index=True)
    room_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_pto: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_covering: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    service = relationship("Service")
    provider = relationship("Provider")


class AvailabilityRule(Base):
    __tablename__ = "provider_availability_rules"
    __table_args__ = (
        CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_availability_rules_day"),
        CheckConstraint("time_block IN ('AM', 'PM', 'BOTH')", name="ck_availability_rules_time_block"),
        CheckConstraint("rule_type IN ('allow', 'block')", name="ck_availability_rules_type"),
        CheckConstraint("enforcement IN ('hard', 'soft')", name="ck_availability_rules_enforcement"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    provider_id: Mapped[int] = mapped_column(ForeignKey("providers.id", ondelete="CASCADE"), nullable=False, index=True)
    service_id: Mapped[int] = mapped_column(ForeignKey("services.id", ondelete="CASCADE"), nullable=False, index=True)
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)
    time_block: Mapped[str] = mapped_column(String(4), nullable=False)
    rule_type: Mapped[str] = mapped_column(String(10), nullable=False)
    enforcement: Mapped[str] = mapped_column(String(10), nullable=False, default="hard")
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)


class Holiday(Base):
    __tablename__ = "holidays"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False, unique=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    block_assignments: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class PTORequest(Base):
    __tablename__ = "pto_requests"
    __table_args__ = (
        CheckConstraint("status IN ('pending', 'approved', 'denied')", name="ck_pto_requests_status"),
        CheckConstraint("time_block IN ('AM', 'PM', 'FULL')", name="ck_pto_requests_time_block"),
        CheckConstraint("start_date <= end_date", name="ck_pto_requests_date_range"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    provider_id: Mapped[int] = mapped_column(ForeignKey("providers.id", ondelete="CASCADE"), nullable=False, index=True)
    start_date: Mapped[dt.date] = mapped_column(Date, nullable=False, index=True)
    end_date: Mapped[dt.date] = mapped_column(Date, nullable=False, index=True)
    leave_type: Mapped[str] = mapped_column(String(40), nullable=False)
    time_block: Mapped[str] = mapped_column(String(4), nullable=False, default="FULL")
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending", index=True)
    requested_by: Mapped[str] = mapped_column(String(40), nullable=False, default="provider")
    reviewed_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    reviewed_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    review_comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    provider = relationship("Provider")


class ProviderLeave(Base):
    __tablename__ = "provider_leaves"
    __table_args__ = (
        CheckConstraint("start_date <= end_date", name="ck_provider_leaves_date_range"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    provider_id: Mapped[int] = mapped_column(ForeignKey("providers.id", ondelete="CASCADE"), nullable=False, index=True)
    start_date: Mapped[dt.date] = mapped_column(Date, nullable=False, index=True)
    end_date: Mapped[dt.date] = mapped_column(Date, nullable=False, index=True)
    leave_type: Mapped[str] = mapped_column(String(40), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)


class ScheduleTemplate(Base):
    __tablename__ = "schedule_templates"
    __table_args__ = (
        CheckConstraint("type IN ('weekly', 'provider-leave', 'custom')", name="ck_schedule_templates_type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False, default="weekly")
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    assignments = relationship("TemplateAssignment", back_populates="template", cascade="all, delete-orphan")


class TemplateAssignment(Base):
    __tablename__ = "template_assignments"
    __table_args__ = (
        CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_template_assignments_day"),
        CheckConstraint("time_block IN ('AM', 'PM', 'BOTH')", name="ck_template_assignments_time_block"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    template_id: Mapped[int] = mapped_column(ForeignKey("schedule_templates.id", ondelete="CASCADE"), nullable=False, index=True)
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)
    provider_id: Mapped[int] = mapped_column(ForeignKey("providers.id", ondelete="CASCADE"), nullable=False)
    service_id: Mapped[int] = mapped_column(ForeignKey("services.id", ondelete="CASCADE"), nullable=False)
    time_block: Mapped[str] = mapped_column(String(4), nullable=False)
    room_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_pto: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    template = relationship("ScheduleTemplate", back_populates="assignments")
    service = relationship("Service")


class ChangeHistoryRecord(Base):
    __tablename__ = "schedule_change_history"
    __table_args__ = (
        CheckConstraint("state IN ('applied', 'undone', 'redone')", name="ck_change_history_state"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    operation_type: Mapped[str] = mapped_column(String(40), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    affected_date_start: Mapped[dt.date | None] = mapped_column(Date, nullable=True)
    affected_date_end: Mapped[dt.date | None] = mapped_column(Date, nullable=True)
    deleted_assignments: Mapped[list[dict]] = mapped_column(JSON, nullable=False, default=list)
    redo_assignments: Mapped[list[dict]] = mapped_column(JSON, nullable=False, default=list)
    created_assignment_ids: Mapped[list[int]] = mapped_column(JSON, nullable=False, default=list)
    state: Mapped[str] = mapped_column(String(10), nullable=False, default="applied")
    metadata_json: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    undone_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    redone_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_undone(self) -> bool:
        return self.state == "undone"

    @property
    def is_redone(self) -> bool:
        return self.state == "redone"
