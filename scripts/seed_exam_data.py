"""Seed a demo exam-scheduling catalog and optionally run a first batch.

Run:
  PYTHONPATH=backend python scripts/seed_exam_data.py
  SEED_RUN_BATCH=true PYTHONPATH=backend python scripts/seed_exam_data.py
"""

from __future__ import annotations

from datetime import date
import os

from sqlalchemy import func, select

from examsched.core.config import get_settings
from examsched.db.bootstrap import ensure_runtime_schema_compatibility
from examsched.db.session import SessionLocal
from examsched.models.academic import Enrollment, ExamClass, LecturerAssignment, Program, School, Semester, Unit
from examsched.models.exam_period import ExamPeriod
from examsched.models.venue import Venue
from examsched.services.batch_orchestrator import BatchOrchestrator
from examsched.services.reference_data import SchedulingScope, SqlReferenceDataProvider

SEMESTER_NAME = os.getenv("SEED_SEMESTER_NAME", "2026/27 Semester 1").strip() or "2026/27 Semester 1"
EXAM_START = date.fromisoformat(os.getenv("SEED_EXAM_START", "2026-11-30"))
EXAM_END = date.fromisoformat(os.getenv("SEED_EXAM_END", "2026-12-11"))
RUN_BATCH = os.getenv("SEED_RUN_BATCH", "false").strip().lower() in {"1", "true", "yes", "on"}

SCHOOLS = {
    "SCI": "School of Computing and Sciences",
    "BUS": "School of Business",
}

PROGRAMS = [
    # code, name, school, units
    ("BSC-CS", "BSc Computer Science", "SCI", ["CSC111", "CSC112", "CSC211", "MAT121"]),
    ("BSC-MATH", "BSc Mathematics", "SCI", ["MAT121", "MAT221", "STA231"]),
    ("BCOM", "Bachelor of Commerce", "BUS", ["ACC101", "ECO101", "BUS210"]),
]

UNIT_NAMES = {
    "CSC111": "Introduction to Programming",
    "CSC112": "Discrete Structures",
    "CSC211": "Data Structures and Algorithms",
    "MAT121": "Calculus I",
    "MAT221": "Linear Algebra",
    "STA231": "Probability and Statistics",
    "ACC101": "Financial Accounting",
    "ECO101": "Principles of Economics",
    "BUS210": "Business Law",
}

SECTIONS = ["A", "B"]
STUDENTS_PER_SECTION = 35

VENUES = [
    # name, building, capacity, school
    ("Main Hall", "Central Block", 250, None),
    ("Lecture Theatre 1", "Central Block", 120, None),
    ("Computing Lab 1", "Science Block", 60, "SCI"),
    ("Science Room 2", "Science Block", 45, "SCI"),
    ("Business Auditorium", "Business Block", 90, "BUS"),
]


def upsert_semester(session) -> Semester:
    semester = session.execute(select(Semester).where(Semester.name == SEMESTER_NAME)).scalar_one_or_none()
    if semester is None:
        semester = Semester(name=SEMESTER_NAME, is_active=True)
        session.add(semester)
        session.flush()
    return semester


def upsert_exam_period(session, semester: Semester) -> ExamPeriod:
    period = session.execute(
        select(ExamPeriod).where(ExamPeriod.semester_id == semester.id)
    ).scalar_one_or_none()
    if period is None:
        period = ExamPeriod(semester_id=semester.id, start_date=EXAM_START, end_date=EXAM_END)
        session.add(period)
    period.start_date = EXAM_START
    period.end_date = EXAM_END
    period.first_start_time = "08:30"
    period.duration_minutes = get_settings().exam_default_duration_minutes
    period.break_minutes = 30
    period.slots_per_day = 3
    period.excluded_days = []
    period.excluded_dates = []
    session.flush()
    return period


def upsert_schools(session) -> dict[str, School]:
    schools: dict[str, School] = {}
    for code, name in SCHOOLS.items():
        school = session.execute(select(School).where(School.code == code)).scalar_one_or_none()
        if school is None:
            school = School(code=code, name=name)
            session.add(school)
        else:
            school.name = name
        session.flush()
        schools[code] = school
    return schools


def upsert_venues(session, schools: dict[str, School]) -> None:
    for name, building, capacity, school_code in VENUES:
        venue = session.execute(select(Venue).where(Venue.name == name)).scalar_one_or_none()
        school_id = schools[school_code].id if school_code else None
        if venue is None:
            venue = Venue(name=name, building=building, capacity=capacity, school_id=school_id, is_active=True)
            session.add(venue)
        else:
            venue.building = building
            venue.capacity = capacity
            venue.school_id = school_id
            venue.is_active = True
    session.flush()


def upsert_unit(session, code: str, program: Program) -> Unit:
    unit = session.execute(select(Unit).where(Unit.code == code)).scalar_one_or_none()
    if unit is None:
        # Units shared across programs stay with the first program that lists them.
        unit = Unit(code=code, name=UNIT_NAMES[code], program_id=program.id, school_id=program.school_id)
        session.add(unit)
        session.flush()
    return unit


def upsert_class(session, semester: Semester, program: Program, section: str) -> ExamClass:
    klass = session.execute(
        select(ExamClass).where(
            ExamClass.semester_id == semester.id,
            ExamClass.name == program.code,
            ExamClass.section == section,
        )
    ).scalar_one_or_none()
    if klass is None:
        klass = ExamClass(
            semester_id=semester.id,
            name=program.code,
            section=section,
            program_id=program.id,
            school_id=program.school_id,
        )
        session.add(klass)
        session.flush()
    return klass


def seed_catalog(session, semester: Semester, schools: dict[str, School]) -> None:
    existing = set(
        session.execute(
            select(Enrollment.unit_id, Enrollment.student_code).where(Enrollment.semester_id == semester.id)
        ).all()
    )
    lecturer_number = 0
    for program_code, program_name, school_code, unit_codes in PROGRAMS:
        program = session.execute(select(Program).where(Program.code == program_code)).scalar_one_or_none()
        if program is None:
            program = Program(code=program_code, name=program_name, school_id=schools[school_code].id)
            session.add(program)
            session.flush()

        classes = [upsert_class(session, semester, program, section) for section in SECTIONS]
        for unit_code in unit_codes:
            unit = upsert_unit(session, unit_code, program)
            lecturer_number += 1
            lecturer_code = f"LEC{lecturer_number:03d}"
            assignment = session.execute(
                select(LecturerAssignment).where(
                    LecturerAssignment.semester_id == semester.id,
                    LecturerAssignment.unit_id == unit.id,
                    LecturerAssignment.class_id.is_(None),
                )
            ).scalar_one_or_none()
            if assignment is None:
                session.add(
                    LecturerAssignment(
                        semester_id=semester.id,
                        unit_id=unit.id,
                        lecturer_code=lecturer_code,
                        lecturer_name=f"Lecturer {lecturer_number}",
                    )
                )

            for klass in classes:
                for number in range(1, STUDENTS_PER_SECTION + 1):
                    student_code = f"{program_code}-{klass.section}{number:03d}"
                    if (unit.id, student_code) in existing:
                        continue
                    session.add(
                        Enrollment(
                            semester_id=semester.id,
                            unit_id=unit.id,
                            class_id=klass.id,
                            student_code=student_code,
                        )
                    )
                    existing.add((unit.id, student_code))
    session.flush()


def main() -> None:
    ensure_runtime_schema_compatibility()
    with SessionLocal() as session:
        semester = upsert_semester(session)
        upsert_exam_period(session, semester)
        schools = upsert_schools(session)
        upsert_venues(session, schools)
        seed_catalog(session, semester, schools)
        session.commit()

        venue_count = session.execute(select(func.count(Venue.id))).scalar_one()
        unit_count = session.execute(select(func.count(Unit.id))).scalar_one()
        enrollment_count = session.execute(
            select(func.count(Enrollment.id)).where(Enrollment.semester_id == semester.id)
        ).scalar_one()

        print("Exam catalog seeded successfully.")
        print("")
        print(f"Semester: {SEMESTER_NAME} ({semester.id})")
        print(f"Exam window: {EXAM_START.isoformat()} to {EXAM_END.isoformat()}")
        print(f"Venues: {venue_count}")
        print(f"Units: {unit_count}")
        print(f"Enrollments: {enrollment_count}")

        if RUN_BATCH:
            settings = get_settings()
            orchestrator = BatchOrchestrator(
                session,
                SqlReferenceDataProvider(session, default_duration_minutes=settings.exam_default_duration_minutes),
                settings=settings,
            )
            outcome = orchestrator.run_batch(SchedulingScope(semester_id=semester.id), requested_by="seed-script")
            print("")
            print(f"Batch {outcome.batch.id}: {outcome.batch.status.value}")
            print(f"  Scheduled: {outcome.batch.scheduled_count}")
            print(f"  Failed:    {outcome.batch.failed_count}")
            print(f"  Skipped:   {outcome.batch.skipped_count}")


if __name__ == "__main__":
    main()
