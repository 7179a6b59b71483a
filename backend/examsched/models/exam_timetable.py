import uuid
from datetime import date, datetime

from sqlalchemy import Date, DateTime, Index, Integer, JSON, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from examsched.db.base import Base


class ExamAssignment(Base):
    __tablename__ = "exam_assignments"
    __table_args__ = (
        Index("ix_exam_assignments_semester_session", "semester_id", "session_key"),
        Index("ix_exam_assignments_semester_date_slot", "semester_id", "exam_date", "slot_number"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    batch_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    semester_id: Mapped[str] = mapped_column(String(36), nullable=False)
    program_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    school_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    session_key: Mapped[str] = mapped_column(String(400), nullable=False)
    unit_id: Mapped[str] = mapped_column(String(36), nullable=False)
    unit_code: Mapped[str] = mapped_column(String(50), nullable=False)
    class_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    student_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    student_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    lecturer_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    exam_date: Mapped[date] = mapped_column(Date, nullable=False)
    slot_number: Mapped[int] = mapped_column(Integer, nullable=False)
    start_time: Mapped[str] = mapped_column(String(5), nullable=False)
    end_time: Mapped[str] = mapped_column(String(5), nullable=False)
    # [{"venue_id": ..., "venue_name": ..., "seats": ...}] committed atomically
    venue_allocations: Mapped[list[dict]] = mapped_column(JSON, nullable=False, default=list)
    superseded_by_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    superseded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    @property
    def is_active(self) -> bool:
        return self.superseded_by_id is None

    @property
    def venue_ids(self) -> list[str]:
        return [item["venue_id"] for item in self.venue_allocations or []]
