import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum

from sqlalchemy import Date, DateTime, Enum as SAEnum, Index, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, composite, mapped_column
from sqlalchemy.sql import func

from examsched.db.base import Base


class BatchKind(str, Enum):
    full = "full"
    retry = "retry"
    reschedule = "reschedule"


class BatchStatus(str, Enum):
    running = "running"
    completed = "completed"
    cancelled = "cancelled"
    aborted = "aborted"


class FailureStatus(str, Enum):
    pending = "pending"
    resolved = "resolved"
    retried = "retried"
    ignored = "ignored"


class FailureReason(str, Enum):
    no_venue_capacity = "NO_VENUE_CAPACITY"
    student_conflict = "STUDENT_CONFLICT"
    lecturer_conflict = "LECTURER_CONFLICT"
    slots_exhausted = "SLOTS_EXHAUSTED"
    invalid_reference = "INVALID_REFERENCE"


@dataclass(frozen=True)
class SessionSnapshot:
    """Display copy of unit/class/lecturer names taken when the failure was recorded.

    Source rows may be renamed or deleted later; the snapshot is never refreshed.
    """

    unit_code: str
    unit_name: str
    class_names: list[str] = field(default_factory=list)
    lecturer_name: str | None = None


class SchedulingBatch(Base):
    __tablename__ = "scheduling_batches"
    __table_args__ = (
        Index("ix_scheduling_batches_semester_program", "semester_id", "program_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    kind: Mapped[BatchKind] = mapped_column(
        SAEnum(BatchKind, name="scheduling_batch_kind"),
        nullable=False,
        default=BatchKind.full,
    )
    status: Mapped[BatchStatus] = mapped_column(
        SAEnum(BatchStatus, name="scheduling_batch_status"),
        nullable=False,
        default=BatchStatus.running,
        index=True,
    )
    semester_id: Mapped[str] = mapped_column(String(36), nullable=False)
    program_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    school_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    requested_by_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    policy: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    session_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    scheduled_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    skipped_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    not_attempted_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class SchedulingFailure(Base):
    __tablename__ = "scheduling_failures"
    __table_args__ = (
        Index("ix_scheduling_failures_batch_status", "batch_id", "status"),
        Index("ix_scheduling_failures_program_semester", "program_id", "semester_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    batch_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    semester_id: Mapped[str] = mapped_column(String(36), nullable=False)
    program_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    school_id: Mapped[str | None] = mapped_column(String(36), nullable=True)

    unit_id: Mapped[str] = mapped_column(String(36), nullable=False)
    class_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    session_key: Mapped[str] = mapped_column(String(400), nullable=False)
    student_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    unit_code = mapped_column(String(50), nullable=False)
    unit_name = mapped_column(String(200), nullable=False)
    class_names = mapped_column(JSON, nullable=False, default=list)
    lecturer_name = mapped_column(String(200), nullable=True)
    snapshot: Mapped[SessionSnapshot] = composite(SessionSnapshot, unit_code, unit_name, class_names, lecturer_name)

    attempted_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    attempted_start_time: Mapped[str | None] = mapped_column(String(5), nullable=True)
    attempted_end_time: Mapped[str | None] = mapped_column(String(5), nullable=True)
    attempted_slot_number: Mapped[int | None] = mapped_column(Integer, nullable=True)

    reason_code: Mapped[FailureReason] = mapped_column(
        SAEnum(FailureReason, name="scheduling_failure_reason"),
        nullable=False,
        index=True,
    )
    failure_reason: Mapped[str] = mapped_column(Text, nullable=False)
    conflict_details: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    status: Mapped[FailureStatus] = mapped_column(
        SAEnum(FailureStatus, name="scheduling_failure_status"),
        nullable=False,
        default=FailureStatus.pending,
        index=True,
    )
    resolved_by_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    supersedes_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    superseded_by_id: Mapped[str | None] = mapped_column(String(36), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), onupdate=func.now())
