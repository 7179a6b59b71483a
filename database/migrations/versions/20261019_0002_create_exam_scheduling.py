"""create exam scheduling tables

Revision ID: 20261019_0002
Revises: 20261019_0001
Create Date: 2026-10-19 00:10:00.000000

"""
from alembic import op
import sqlalchemy as sa

revision = "20261019_0002"
down_revision = "20261019_0001"
branch_labels = None
depends_on = None


batch_kind_enum = sa.Enum("full", "retry", "reschedule", name="scheduling_batch_kind")
batch_status_enum = sa.Enum("running", "completed", "cancelled", "aborted", name="scheduling_batch_status")
failure_status_enum = sa.Enum("pending", "resolved", "retried", "ignored", name="scheduling_failure_status")
failure_reason_enum = sa.Enum(
    "no_venue_capacity",
    "student_conflict",
    "lecturer_conflict",
    "slots_exhausted",
    "invalid_reference",
    name="scheduling_failure_reason",
)


def upgrade() -> None:
    op.create_table(
        "scheduling_batches",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("kind", batch_kind_enum, nullable=False),
        sa.Column("status", batch_status_enum, nullable=False),
        sa.Column("semester_id", sa.String(length=36), nullable=False),
        sa.Column("program_id", sa.String(length=36), nullable=True),
        sa.Column("school_id", sa.String(length=36), nullable=True),
        sa.Column("requested_by_id", sa.String(length=36), nullable=True),
        sa.Column("policy", sa.JSON(), nullable=False, server_default="{}"),
        sa.Column("session_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("scheduled_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failed_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("skipped_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("not_attempted_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_scheduling_batches_status", "scheduling_batches", ["status"])
    op.create_index("ix_scheduling_batches_semester_program", "scheduling_batches", ["semester_id", "program_id"])

    op.create_table(
        "exam_assignments",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("batch_id", sa.String(length=36), nullable=False),
        sa.Column("semester_id", sa.String(length=36), nullable=False),
        sa.Column("program_id", sa.String(length=36), nullable=True),
        sa.Column("school_id", sa.String(length=36), nullable=True),
        sa.Column("session_key", sa.String(length=400), nullable=False),
        sa.Column("unit_id", sa.String(length=36), nullable=False),
        sa.Column("unit_code", sa.String(length=50), nullable=False),
        sa.Column("class_ids", sa.JSON(), nullable=False, server_default="[]"),
        sa.Column("student_ids", sa.JSON(), nullable=False, server_default="[]"),
        sa.Column("student_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("lecturer_id", sa.String(length=50), nullable=True),
        sa.Column("exam_date", sa.Date(), nullable=False),
        sa.Column("slot_number", sa.Integer(), nullable=False),
        sa.Column("start_time", sa.String(length=5), nullable=False),
        sa.Column("end_time", sa.String(length=5), nullable=False),
        sa.Column("venue_allocations", sa.JSON(), nullable=False, server_default="[]"),
        sa.Column("superseded_by_id", sa.String(length=36), nullable=True),
        sa.Column("superseded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_exam_assignments_batch_id", "exam_assignments", ["batch_id"])
    op.create_index("ix_exam_assignments_program_id", "exam_assignments", ["program_id"])
    op.create_index("ix_exam_assignments_semester_session", "exam_assignments", ["semester_id", "session_key"])
    op.create_index(
        "ix_exam_assignments_semester_date_slot",
        "exam_assignments",
        ["semester_id", "exam_date", "slot_number"],
    )

    op.create_table(
        "scheduling_failures",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("batch_id", sa.String(length=36), nullable=False),
        sa.Column("semester_id", sa.String(length=36), nullable=False),
        sa.Column("program_id", sa.String(length=36), nullable=True),
        sa.Column("school_id", sa.String(length=36), nullable=True),
        sa.Column("unit_id", sa.String(length=36), nullable=False),
        sa.Column("class_ids", sa.JSON(), nullable=False, server_default="[]"),
        sa.Column("session_key", sa.String(length=400), nullable=False),
        sa.Column("student_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("unit_code", sa.String(length=50), nullable=False),
        sa.Column("unit_name", sa.String(length=200), nullable=False),
        sa.Column("class_names", sa.JSON(), nullable=False, server_default="[]"),
        sa.Column("lecturer_name", sa.String(length=200), nullable=True),
        sa.Column("attempted_date", sa.Date(), nullable=True),
        sa.Column("attempted_start_time", sa.String(length=5), nullable=True),
        sa.Column("attempted_end_time", sa.String(length=5), nullable=True),
        sa.Column("attempted_slot_number", sa.Integer(), nullable=True),
        sa.Column("reason_code", failure_reason_enum, nullable=False),
        sa.Column("failure_reason", sa.Text(), nullable=False),
        sa.Column("conflict_details", sa.JSON(), nullable=False, server_default="{}"),
        sa.Column("status", failure_status_enum, nullable=False, server_default="pending"),
        sa.Column("resolved_by_id", sa.String(length=36), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolution_notes", sa.Text(), nullable=True),
        sa.Column("supersedes_id", sa.String(length=36), nullable=True),
        sa.Column("superseded_by_id", sa.String(length=36), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_scheduling_failures_batch_id", "scheduling_failures", ["batch_id"])
    op.create_index("ix_scheduling_failures_reason_code", "scheduling_failures", ["reason_code"])
    op.create_index("ix_scheduling_failures_status", "scheduling_failures", ["status"])
    op.create_index("ix_scheduling_failures_created_at", "scheduling_failures", ["created_at"])
    op.create_index("ix_scheduling_failures_batch_status", "scheduling_failures", ["batch_id", "status"])
    op.create_index(
        "ix_scheduling_failures_program_semester",
        "scheduling_failures",
        ["program_id", "semester_id"],
    )

    op.create_table(
        "activity_logs",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("actor_id", sa.String(length=36), nullable=True),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("entity_type", sa.String(length=100), nullable=True),
        sa.Column("entity_id", sa.String(length=100), nullable=True),
        sa.Column("details", sa.JSON(), nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_activity_logs_entity_id", "activity_logs", ["entity_id"])


def downgrade() -> None:
    op.drop_index("ix_activity_logs_entity_id", table_name="activity_logs")
    op.drop_table("activity_logs")
    op.drop_index("ix_scheduling_failures_program_semester", table_name="scheduling_failures")
    op.drop_index("ix_scheduling_failures_batch_status", table_name="scheduling_failures")
    op.drop_index("ix_scheduling_failures_created_at", table_name="scheduling_failures")
    op.drop_index("ix_scheduling_failures_status", table_name="scheduling_failures")
    op.drop_index("ix_scheduling_failures_reason_code", table_name="scheduling_failures")
    op.drop_index("ix_scheduling_failures_batch_id", table_name="scheduling_failures")
    op.drop_table("scheduling_failures")
    op.drop_index("ix_exam_assignments_semester_date_slot", table_name="exam_assignments")
    op.drop_index("ix_exam_assignments_semester_session", table_name="exam_assignments")
    op.drop_index("ix_exam_assignments_program_id", table_name="exam_assignments")
    op.drop_index("ix_exam_assignments_batch_id", table_name="exam_assignments")
    op.drop_table("exam_assignments")
    op.drop_index("ix_scheduling_batches_semester_program", table_name="scheduling_batches")
    op.drop_index("ix_scheduling_batches_status", table_name="scheduling_batches")
    op.drop_table("scheduling_batches")
    bind = op.get_bind()
    failure_reason_enum.drop(bind, checkfirst=True)
    failure_status_enum.drop(bind, checkfirst=True)
    batch_status_enum.drop(bind, checkfirst=True)
    batch_kind_enum.drop(bind, checkfirst=True)
