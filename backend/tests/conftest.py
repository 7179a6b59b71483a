import os
from pathlib import Path
import tempfile

# The application engine is built at import time; point it at a throwaway file before anything imports it.
os.environ.setdefault(
    "DATABASE_URL",
    f"sqlite+pysqlite:///{Path(tempfile.mkdtemp(prefix='examsched-')) / 'app.db'}",
)

from datetime import date  # noqa: E402
from typing import Iterable  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import examsched.models  # noqa: E402,F401
from examsched.api.deps import get_db  # noqa: E402
from examsched.db.base import Base  # noqa: E402
from examsched.main import app  # noqa: E402
from examsched.models.academic import (  # noqa: E402
    Enrollment,
    ExamClass,
    LecturerAssignment,
    Program,
    School,
    Semester,
    Unit,
)
from examsched.models.exam_period import ExamPeriod  # noqa: E402
from examsched.models.venue import Venue  # noqa: E402
from examsched.services.batch_control import clear_batch_control  # noqa: E402

# 2026-11-02 is a Monday.
MONDAY = date(2026, 11, 2)
TUESDAY = date(2026, 11, 3)


class Catalog:
    """Builds reference rows for one semester."""

    def __init__(self, db: Session, semester_name: str = "2026/27 Semester 1") -> None:
        self.db = db
        self.semester = self._add(Semester(name=semester_name))

    def _add(self, row):
        self.db.add(row)
        self.db.flush()
        return row

    def school(self, code: str) -> School:
        return self._add(School(code=code, name=f"School of {code}"))

    def program(self, code: str, school: School | None = None) -> Program:
        return self._add(Program(code=code, name=f"Program {code}", school_id=school.id if school else None))

    def exam_period(
        self,
        start: date = MONDAY,
        end: date = TUESDAY,
        *,
        slots_per_day: int = 1,
        duration_minutes: int = 120,
        break_minutes: int = 30,
        excluded_days: Iterable[str] = (),
        excluded_dates: Iterable[str] = (),
    ) -> ExamPeriod:
        return self._add(
            ExamPeriod(
                semester_id=self.semester.id,
                start_date=start,
                end_date=end,
                first_start_time="09:00",
                duration_minutes=duration_minutes,
                break_minutes=break_minutes,
                slots_per_day=slots_per_day,
                excluded_days=list(excluded_days),
                excluded_dates=list(excluded_dates),
            )
        )

    def venue(
        self,
        name: str,
        capacity: int,
        *,
        school: School | None = None,
        windows: list[dict] | None = None,
        is_active: bool = True,
    ) -> Venue:
        return self._add(
            Venue(
                name=name,
                capacity=capacity,
                school_id=school.id if school else None,
                availability_windows=windows or [],
                is_active=is_active,
            )
        )

    def unit(self, code: str, program: Program | None = None) -> Unit:
        return self._add(
            Unit(
                code=code,
                name=f"Unit {code}",
                program_id=program.id if program else None,
                school_id=program.school_id if program else None,
            )
        )

    def klass(self, name: str, program: Program | None = None, section: str | None = None) -> ExamClass:
        return self._add(
            ExamClass(
                semester_id=self.semester.id,
                name=name,
                section=section,
                program_id=program.id if program else None,
                school_id=program.school_id if program else None,
            )
        )

    def enroll(self, unit: Unit, klass: ExamClass, students: Iterable[str]) -> None:
        for student in students:
            self.db.add(
                Enrollment(
                    semester_id=self.semester.id,
                    unit_id=unit.id,
                    class_id=klass.id,
                    student_code=student,
                )
            )
        self.db.flush()

    def lecturer(self, unit: Unit, code: str, klass: ExamClass | None = None, name: str | None = None) -> None:
        self._add(
            LecturerAssignment(
                semester_id=self.semester.id,
                unit_id=unit.id,
                class_id=klass.id if klass else None,
                lecturer_code=code,
                lecturer_name=name or f"Dr {code}",
            )
        )

    def commit(self) -> None:
        self.db.commit()


def students(prefix: str, count: int, start: int = 1) -> list[str]:
    return [f"{prefix}{number:03d}" for number in range(start, start + count)]


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture()
def db(session_factory):
    clear_batch_control()
    session = session_factory()
    try:
        yield session
    finally:
        session.close()
        clear_batch_control()


@pytest.fixture()
def catalog(db):
    return Catalog(db)


@pytest.fixture()
def client(session_factory):
    clear_batch_control()

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    clear_batch_control()
