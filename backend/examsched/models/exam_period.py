import uuid
from datetime import date, datetime

from sqlalchemy import Date, DateTime, Integer, JSON, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from examsched.db.base import Base


class ExamPeriod(Base):
    __tablename__ = "exam_periods"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    semester_id: Mapped[str] = mapped_column(String(36), unique=True, index=True, nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    excluded_days: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    excluded_dates: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    first_start_time: Mapped[str] = mapped_column(String(5), nullable=False, default="08:00")
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=120)
    break_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    slots_per_day: Mapped[int] = mapped_column(Integer, nullable=False, default=4)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), onupdate=func.now())
