"""create reference catalogs

Revision ID: 20261019_0001
Revises: None
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "schools",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("code", sa.String(length=20), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_schools_code", "schools", ["code"], unique=True)

    op.create_table(
        "programs",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("code", sa.String(length=50), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("school_id", sa.String(length=36), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_programs_code", "programs", ["code"], unique=True)
    op.create_index("ix_programs_school_id", "programs", ["school_id"])

    op.create_table(
        "semesters",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False, unique=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "units",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("code", sa.String(length=50), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("program_id", sa.String(length=36), nullable=True),
        sa.Column("school_id", sa.String(length=36), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_units_code", "units", ["code"])

    op.create_table(
        "classes",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("semester_id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("section", sa.String(length=20), nullable=True),
        sa.Column("program_id", sa.String(length=36), nullable=True),
        sa.Column("school_id", sa.String(length=36), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("semester_id", "name", "section", name="uq_classes_semester_name_section"),
    )
    op.create_index("ix_classes_semester_id", "classes", ["semester_id"])
    op.create_index("ix_classes_program_id", "classes", ["program_id"])
    op.create_index("ix_classes_school_id", "classes", ["school_id"])

    op.create_table(
        "enrollments",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("semester_id", sa.String(length=36), nullable=False),
        sa.Column("unit_id", sa.String(length=36), nullable=False),
        sa.Column("class_id", sa.String(length=36), nullable=False),
        sa.Column("student_code", sa.String(length=50), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="enrolled"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint(
            "semester_id", "unit_id", "student_code", name="uq_enrollments_semester_unit_student"
        ),
    )
    op.create_index("ix_enrollments_semester_id", "enrollments", ["semester_id"])
    op.create_index("ix_enrollments_unit_id", "enrollments", ["unit_id"])
    op.create_index("ix_enrollments_class_id", "enrollments", ["class_id"])

    op.create_table(
        "lecturer_assignments",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("semester_id", sa.String(length=36), nullable=False),
        sa.Column("unit_id", sa.String(length=36), nullable=False),
        sa.Column("class_id", sa.String(length=36), nullable=True),
        sa.Column("lecturer_code", sa.String(length=50), nullable=False),
        sa.Column("lecturer_name", sa.String(length=200), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_lecturer_assignments_semester_id", "lecturer_assignments", ["semester_id"])
    op.create_index("ix_lecturer_assignments_unit_id", "lecturer_assignments", ["unit_id"])

    op.create_table(
        "venues",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("building", sa.String(length=200), nullable=True),
        sa.Column("capacity", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("school_id", sa.String(length=36), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("availability_windows", sa.JSON(), nullable=False, server_default="[]"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_venues_name", "venues", ["name"], unique=True)
    op.create_index("ix_venues_school_id", "venues", ["school_id"])

    op.create_table(
        "exam_periods",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("semester_id", sa.String(length=36), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("excluded_days", sa.JSON(), nullable=False, server_default="[]"),
        sa.Column("excluded_dates", sa.JSON(), nullable=False, server_default="[]"),
        sa.Column("first_start_time", sa.String(length=5), nullable=False, server_default="08:00"),
        sa.Column("duration_minutes", sa.Integer(), nullable=False, server_default="120"),
        sa.Column("break_minutes", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("slots_per_day", sa.Integer(), nullable=False, server_default="4"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_exam_periods_semester_id", "exam_periods", ["semester_id"], unique=True)


def downgrade() -> None:
    op.drop_index("ix_exam_periods_semester_id", table_name="exam_periods")
    op.drop_table("exam_periods")
    op.drop_index("ix_venues_school_id", table_name="venues")
    op.drop_index("ix_venues_name", table_name="venues")
    op.drop_table("venues")
    op.drop_index("ix_lecturer_assignments_unit_id", table_name="lecturer_assignments")
    op.drop_index("ix_lecturer_assignments_semester_id", table_name="lecturer_assignments")
    op.drop_table("lecturer_assignments")
    op.drop_index("ix_enrollments_class_id", table_name="enrollments")
    op.drop_index("ix_enrollments_unit_id", table_name="enrollments")
    op.drop_index("ix_enrollments_semester_id", table_name="enrollments")
    op.drop_table("enrollments")
    op.drop_index("ix_classes_school_id", table_name="classes")
    op.drop_index("ix_classes_program_id", table_name="classes")
    op.drop_index("ix_classes_semester_id", table_name="classes")
    op.drop_table("classes")
    op.drop_index("ix_units_code", table_name="units")
    op.drop_table("units")
    op.drop_table("semesters")
    op.drop_index("ix_programs_school_id", table_name="programs")
    op.drop_index("ix_programs_code", table_name="programs")
    op.drop_table("programs")
    op.drop_index("ix_schools_code", table_name="schools")
    op.drop_table("schools")
