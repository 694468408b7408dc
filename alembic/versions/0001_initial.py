"""clinic schedule baseline

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "services",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(120), nullable=False),
    )
    op.create_index("ix_services_name", "services", ["name"], unique=True)

    op.create_table(
        "providers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("initials", sa.String(16), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("work_days", sa.JSON(), nullable=True),
    )
    op.create_index("ix_providers_initials", "providers", ["initials"], unique=True)

    op.create_table(
        "schedule_assignments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("time_block", sa.String(4), nullable=False),
        sa.Column("provider_id", sa.Integer(), sa.ForeignKey("providers.id", ondelete="CASCADE"), nullable=False),
        sa.Column("service_id", sa.Integer(), sa.ForeignKey("services.id", ondelete="CASCADE"), nullable=False),
        sa.Column("room_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_pto", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_covering", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("time_block IN ('AM', 'PM', 'BOTH')", name="ck_schedule_assignments_time_block"),
        sa.CheckConstraint("room_count >= 0", name="ck_schedule_assignments_room_count"),
        sa.UniqueConstraint("provider_id", "service_id", "date", "time_block", name="uq_schedule_assignments_slot"),
    )
    op.create_index("ix_schedule_assignments_date", "schedule_assignments", ["date"])
    op.create_index("ix_schedule_assignments_provider_id", "schedule_assignments", ["provider_id"])
    op.create_index("ix_schedule_assignments_service_id", "schedule_assignments", ["service_id"])

    op.create_table(
        "provider_availability_rules",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("provider_id", sa.Integer(), sa.ForeignKey("providers.id", ondelete="CASCADE"), nullable=False),
        sa.Column("service_id", sa.Integer(), sa.ForeignKey("services.id", ondelete="CASCADE"), nullable=False),
        sa.Column("day_of_week", sa.Integer(), nullable=False),
        sa.Column("time_block", sa.String(4), nullable=False),
        sa.Column("rule_type", sa.String(10), nullable=False),
        sa.Column("enforcement", sa.String(10), nullable=False, server_default="hard"),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_availability_rules_day"),
        sa.CheckConstraint("time_block IN ('AM', 'PM', 'BOTH')", name="ck_availability_rules_time_block"),
        sa.CheckConstraint("rule_type IN ('allow', 'block')", name="ck_availability_rules_type"),
        sa.CheckConstraint("enforcement IN ('hard', 'soft')", name="ck_availability_rules_enforcement"),
    )
    op.create_index("ix_provider_availability_rules_provider_id", "provider_availability_rules", ["provider_id"])
    op.create_index("ix_provider_availability_rules_service_id", "provider_availability_rules", ["service_id"])

    op.create_table(
        "holidays",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("block_assignments", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_index("ix_holidays_date", "holidays", ["date"], unique=True)

    op.create_table(
        "pto_requests",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("provider_id", sa.Integer(), sa.ForeignKey("providers.id", ondelete="CASCADE"), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("leave_type", sa.String(40), nullable=False),
        sa.Column("time_block", sa.String(4), nullable=False, server_default="FULL"),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("requested_by", sa.String(40), nullable=False, server_default="provider"),
        sa.Column("reviewed_by", sa.String(255), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("review_comment", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("status IN ('pending', 'approved', 'denied')", name="ck_pto_requests_status"),
        sa.CheckConstraint("time_block IN ('AM', 'PM', 'FULL')", name="ck_pto_requests_time_block"),
        sa.CheckConstraint("start_date <= end_date", name="ck_pto_requests_date_range"),
    )
    op.create_index("ix_pto_requests_provider_id", "pto_requests", ["provider_id"])
    op.create_index("ix_pto_requests_start_date", "pto_requests", ["start_date"])
    op.create_index("ix_pto_requests_end_date", "pto_requests", ["end_date"])
    op.create_index("ix_pto_requests_status", "pto_requests", ["status"])

    op.create_table(
        "provider_leaves",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("provider_id", sa.Integer(), sa.ForeignKey("providers.id", ondelete="CASCADE"), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("leave_type", sa.String(40), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.CheckConstraint("start_date <= end_date", name="ck_provider_leaves_date_range"),
    )
    op.create_index("ix_provider_leaves_provider_id", "provider_leaves", ["provider_id"])
    op.create_index("ix_provider_leaves_start_date", "provider_leaves", ["start_date"])
    op.create_index("ix_provider_leaves_end_date", "provider_leaves", ["end_date"])

    op.create_table(
        "schedule_templates",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("type", sa.String(20), nullable=False, server_default="weekly"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("type IN ('weekly', 'provider-leave', 'custom')", name="ck_schedule_templates_type"),
    )

    op.create_table(
        "template_assignments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("template_id", sa.Integer(), sa.ForeignKey("schedule_templates.id", ondelete="CASCADE"), nullable=False),
        sa.Column("day_of_week", sa.Integer(), nullable=False),
        sa.Column("provider_id", sa.Integer(), sa.ForeignKey("providers.id", ondelete="CASCADE"), nullable=False),
        sa.Column("service_id", sa.Integer(), sa.ForeignKey("services.id", ondelete="CASCADE"), nullable=False),
        sa.Column("time_block", sa.String(4), nullable=False),
        sa.Column("room_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_pto", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_template_assignments_day"),
        sa.CheckConstraint("time_block IN ('AM', 'PM', 'BOTH')", name="ck_template_assignments_time_block"),
    )
    op.create_index("ix_template_assignments_template_id", "template_assignments", ["template_id"])

    op.create_table(
        "schedule_change_history",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("operation_type", sa.String(40), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("affected_date_start", sa.Date(), nullable=True),
        sa.Column("affected_date_end", sa.Date(), nullable=True),
        sa.Column("deleted_assignments", sa.JSON(), nullable=False),
        sa.Column("redo_assignments", sa.JSON(), nullable=False),
        sa.Column("created_assignment_ids", sa.JSON(), nullable=False),
        sa.Column("state", sa.String(10), nullable=False, server_default="applied"),
        sa.Column("metadata_json", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("undone_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("redone_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("state IN ('applied', 'undone', 'redone')", name="ck_change_history_state"),
    )
    op.create_index("ix_schedule_change_history_created_at", "schedule_change_history", ["created_at"])


def downgrade() -> None:
    op.drop_table("schedule_change_history")
    op.drop_table("template_assignments")
    op.drop_table("schedule_templates")
    op.drop_table("provider_leaves")
    op.drop_table("pto_requests")
    op.drop_table("holidays")
    op.drop_table("provider_availability_rules")
    op.drop_table("schedule_assignments")
    op.drop_table("providers")
    op.drop_table("services")
