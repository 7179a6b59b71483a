from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, timedelta
import logging
from typing import Iterable, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from examsched.core.exceptions import ReferenceDataError
from examsched.models.academic import Enrollment, ExamClass, LecturerAssignment, Program, Semester, Unit
from examsched.models.exam_period import ExamPeriod
from examsched.models.scheduling import SessionSnapshot
from examsched.models.venue import Venue

logger = logging.getLogger(__name__)

WEEKEND_DAYS = {"Saturday", "Sunday"}
MINUTES_PER_DAY = 24 * 60


def parse_time_to_minutes(value: str) -> int:
    hours, minutes = value[:5].split(":")
    return int(hours) * 60 + int(minutes)


def minutes_to_time(value: int) -> str:
    hours = value // 60
    minutes = value % 60
    return f"{hours:02d}:{minutes:02d}"


def make_session_key(unit_id: str, class_ids: Iterable[str]) -> str:
    return f"{unit_id}:{','.join(sorted(class_ids))}"


@dataclass(frozen=True, order=True)
class TimeSlot:
    exam_date: date
    slot_number: int
    start_time: str
    end_time: str

    @property
    def key(self) -> tuple[date, int]:
        return (self.exam_date, self.slot_number)

    @property
    def length_minutes(self) -> int:
        return parse_time_to_minutes(self.end_time) - parse_time_to_minutes(self.start_time)


@dataclass(frozen=True)
class AvailabilityWindow:
    start_time: str
    end_time: str
    exam_date: date | None = None
    day: str | None = None

    def covers(self, slot: TimeSlot) -> bool:
        if self.exam_date is not None and self.exam_date != slot.exam_date:
            return False
        if self.day is not None and self.day != slot.exam_date.strftime("%A"):
            return False
        return (
            parse_time_to_minutes(self.start_time) <= parse_time_to_minutes(slot.start_time)
            and parse_time_to_minutes(slot.end_time) <= parse_time_to_minutes(self.end_time)
        )


@dataclass(frozen=True)
class VenueInfo:
    id: str
    name: str
    capacity: int
    school_id: str | None = None
    windows: tuple[AvailabilityWindow, ...] = ()

    def is_available(self, slot: TimeSlot) -> bool:
        if not self.windows:
            return True
        return any(window.covers(slot) for window in self.windows)

    def serves(self, school_id: str | None) -> bool:
        return self.school_id is None or self.school_id == school_id


@dataclass(frozen=True)
class ExamSession:
    session_key: str
    semester_id: str
    unit_id: str
    class_ids: tuple[str, ...]
    student_ids: frozenset[str]
    snapshot: SessionSnapshot
    program_id: str | None = None
    school_id: str | None = None
    lecturer_id: str | None = None
    duration_minutes: int = 120
    missing_class_ids: tuple[str, ...] = ()
    missing_unit: bool = False

    @property
    def student_count(self) -> int:
        return len(self.student_ids)

    @property
    def invalid_reason(self) -> str | None:
        if self.missing_unit:
            return f"Unit {self.unit_id} no longer exists"
        if self.missing_class_ids:
            return f"Classes no longer exist: {', '.join(self.missing_class_ids)}"
        if not self.student_ids:
            return "No enrolled students found for the selected classes"
        return None


@dataclass(frozen=True)
class SessionRequest:
    """Identifies a session to re-derive from current reference data (retry, reschedule)."""

    unit_id: str
    class_ids: tuple[str, ...]
    lecturer_id: str | None = None


@dataclass(frozen=True)
class SchedulingScope:
    semester_id: str
    program_id: str | None = None
    school_id: str | None = None

    def overlaps(self, other: SchedulingScope) -> bool:
        # Venues, students and lecturers cross program and school lines.
        return self.semester_id == other.semester_id

    def semester_wide(self) -> SchedulingScope:
        return SchedulingScope(semester_id=self.semester_id)

    def describe(self) -> str:
        parts = [f"semester={self.semester_id}"]
        if self.program_id:
            parts.append(f"program={self.program_id}")
        if self.school_id:
            parts.append(f"school={self.school_id}")
        return " ".join(parts)


@dataclass(frozen=True)
class ReferenceSnapshot:
    scope: SchedulingScope
    sessions: tuple[ExamSession, ...]
    venues: tuple[VenueInfo, ...]
    slots: tuple[TimeSlot, ...]
    venue_names: dict[str, str] = field(default_factory=dict)


class ReferenceDataProvider(Protocol):
    def list_exam_sessions(self, semester_id: str, scope: SchedulingScope) -> list[ExamSession]: ...

    def derive_sessions(self, semester_id: str, requests: list[SessionRequest]) -> list[ExamSession]: ...

    def list_venues(self, semester_id: str, scope: SchedulingScope) -> list[VenueInfo]: ...

    def list_slots(self, semester_id: str) -> list[TimeSlot]: ...


def generate_exam_dates(
    start_date: date,
    end_date: date,
    excluded_days: Iterable[str] = (),
    excluded_dates: Iterable[date] = (),
) -> list[date]:
    skipped_days = WEEKEND_DAYS | set(excluded_days)
    skipped_dates = set(excluded_dates)
    dates: list[date] = []
    current = start_date
    while current <= end_date:
        if current.strftime("%A") not in skipped_days and current not in skipped_dates:
            dates.append(current)
        current += timedelta(days=1)
    return dates


def generate_daily_slots(
    first_start_time: str,
    duration_minutes: int,
    break_minutes: int,
    slots_per_day: int,
) -> list[tuple[int, str, str]]:
    slots: list[tuple[int, str, str]] = []
    current = parse_time_to_minutes(first_start_time)
    for index in range(slots_per_day):
        end = current + duration_minutes
        if end > MINUTES_PER_DAY:
            logger.warning(
                "Exam slot %s starting %s overflows the day; truncating to %s slot(s)",
                index + 1,
                minutes_to_time(current),
                len(slots),
            )
            break
        slots.append((index + 1, minutes_to_time(current), minutes_to_time(end)))
        current = end + break_minutes
    return slots


def build_exam_calendar(period: ExamPeriod) -> list[TimeSlot]:
    excluded_dates = [date.fromisoformat(item) for item in period.excluded_dates or []]
    dates = generate_exam_dates(period.start_date, period.end_date, period.excluded_days or [], excluded_dates)
    daily = generate_daily_slots(
        period.first_start_time,
        period.duration_minutes,
        period.break_minutes,
        period.slots_per_day,
    )
    return [
        TimeSlot(exam_date=exam_date, slot_number=number, start_time=start, end_time=end)
        for exam_date in dates
        for number, start, end in daily
    ]


def parse_availability_windows(raw_windows: list[dict] | None) -> tuple[AvailabilityWindow, ...]:
    windows: list[AvailabilityWindow] = []
    for raw in raw_windows or []:
        raw_date = raw.get("date")
        windows.append(
            AvailabilityWindow(
                start_time=raw.get("start_time", "00:00"),
                end_time=raw.get("end_time", "23:59"),
                exam_date=date.fromisoformat(raw_date) if raw_date else None,
                day=raw.get("day"),
            )
        )
    return tuple(windows)


def load_snapshot(
    provider: ReferenceDataProvider,
    scope: SchedulingScope,
    *,
    requests: list[SessionRequest] | None = None,
) -> ReferenceSnapshot:
    venues = provider.list_venues(scope.semester_id, scope)
    if not venues:
        raise ReferenceDataError(
            "No active venues are available for exam scheduling",
            details={"semester_id": scope.semester_id, "program_id": scope.program_id},
        )
    slots = provider.list_slots(scope.semester_id)
    if not slots:
        raise ReferenceDataError(
            "The semester exam calendar has no time slots",
            details={"semester_id": scope.semester_id},
        )
    if requests is None:
        sessions = provider.list_exam_sessions(scope.semester_id, scope)
    else:
        sessions = provider.derive_sessions(scope.semester_id, requests)
    return ReferenceSnapshot(
        scope=scope,
        sessions=tuple(sessions),
        venues=tuple(sorted(venues, key=lambda venue: (-venue.capacity, venue.id))),
        slots=tuple(sorted(slots)),
        venue_names={venue.id: venue.name for venue in venues},
    )


class SqlReferenceDataProvider:
    def __init__(self, db: Session, *, default_duration_minutes: int = 120) -> None:
        self.db = db
        self.default_duration_minutes = default_duration_minutes
        self._durations: dict[str, int] = {}

    def _semester_exists(self, semester_id: str) -> bool:
        return self.db.get(Semester, semester_id) is not None

    def _period(self, semester_id: str) -> ExamPeriod | None:
        return self.db.execute(select(ExamPeriod).where(ExamPeriod.semester_id == semester_id)).scalar_one_or_none()

    def list_slots(self, semester_id: str) -> list[TimeSlot]:
        if not self._semester_exists(semester_id):
            raise ReferenceDataError("Semester not found", details={"semester_id": semester_id})
        period = self._period(semester_id)
        if period is None:
            return []
        return build_exam_calendar(period)

    def list_venues(self, semester_id: str, scope: SchedulingScope) -> list[VenueInfo]:
        query = select(Venue).where(Venue.is_active.is_(True))
        school_id = scope.school_id or self._program_school_id(scope.program_id)
        if school_id is not None:
            query = query.where((Venue.school_id.is_(None)) | (Venue.school_id == school_id))
        return [
            VenueInfo(
                id=venue.id,
                name=venue.name,
                capacity=venue.capacity,
                school_id=venue.school_id,
                windows=parse_availability_windows(venue.availability_windows),
            )
            for venue in self.db.execute(query.order_by(Venue.id)).scalars()
        ]

    def list_exam_sessions(self, semester_id: str, scope: SchedulingScope) -> list[ExamSession]:
        class_query = select(ExamClass).where(ExamClass.semester_id == semester_id)
        if scope.program_id is not None:
            class_query = class_query.where(ExamClass.program_id == scope.program_id)
        if scope.school_id is not None:
            class_query = class_query.where(ExamClass.school_id == scope.school_id)
        classes = {item.id: item for item in self.db.execute(class_query).scalars()}
        if not classes:
            return []

        rosters = self._rosters(semester_id, list(classes))
        lecturers = self._lecturer_lookup(semester_id, {unit_id for unit_id, _ in rosters})

        grouped: dict[tuple[str, str | None], list[str]] = defaultdict(list)
        for unit_id, class_id in sorted(rosters):
            lecturer_code = self._resolve_lecturer(lecturers, unit_id, class_id)
            grouped[(unit_id, lecturer_code)].append(class_id)

        units = self._units({unit_id for unit_id, _ in grouped})
        names = self._lecturer_names(semester_id)
        sessions: list[ExamSession] = []
        for (unit_id, lecturer_code), class_ids in sorted(grouped.items(), key=lambda item: (item[0][0], item[0][1] or "")):
            sessions.append(
                self._build_session(
                    semester_id=semester_id,
                    unit=units.get(unit_id),
                    unit_id=unit_id,
                    classes=[classes[class_id] for class_id in class_ids],
                    missing_class_ids=[],
                    rosters=rosters,
                    lecturer_code=lecturer_code,
                    lecturer_name=names.get(lecturer_code) if lecturer_code else None,
                )
            )
        return sessions

    def derive_sessions(self, semester_id: str, requests: list[SessionRequest]) -> list[ExamSession]:
        requested_class_ids = {class_id for request in requests for class_id in request.class_ids}
        classes = {
            item.id: item
            for item in self.db.execute(
                select(ExamClass).where(
                    ExamClass.semester_id == semester_id,
                    ExamClass.id.in_(requested_class_ids),
                )
            ).scalars()
        }
        rosters = self._rosters(semester_id, list(classes))
        units = self._units({request.unit_id for request in requests})
        lecturers = self._lecturer_lookup(semester_id, set(units))
        names = self._lecturer_names(semester_id)

        sessions: list[ExamSession] = []
        for request in requests:
            present = [classes[class_id] for class_id in sorted(request.class_ids) if class_id in classes]
            missing = [class_id for class_id in sorted(request.class_ids) if class_id not in classes]
            lecturer_code = request.lecturer_id
            if lecturer_code is None and present:
                lecturer_code = self._resolve_lecturer(lecturers, request.unit_id, present[0].id)
            sessions.append(
                self._build_session(
                    semester_id=semester_id,
                    unit=units.get(request.unit_id),
                    unit_id=request.unit_id,
                    classes=present,
                    missing_class_ids=missing,
                    rosters=rosters,
                    lecturer_code=lecturer_code,
                    lecturer_name=names.get(lecturer_code) if lecturer_code else None,
                    requested_class_ids=request.class_ids,
                )
            )
        return sessions

    def _build_session(
        self,
        *,
        semester_id: str,
        unit: Unit | None,
        unit_id: str,
        classes: list[ExamClass],
        missing_class_ids: list[str],
        rosters: dict[tuple[str, str], set[str]],
        lecturer_code: str | None,
        lecturer_name: str | None,
        requested_class_ids: tuple[str, ...] | None = None,
    ) -> ExamSession:
        class_ids = tuple(sorted(requested_class_ids or [item.id for item in classes]))
        students: set[str] = set()
        for item in classes:
            students |= rosters.get((unit_id, item.id), set())
        program_ids = {item.program_id for item in classes}
        school_ids = {item.school_id for item in classes}
        return ExamSession(
            session_key=make_session_key(unit_id, class_ids),
            semester_id=semester_id,
            unit_id=unit_id,
            class_ids=class_ids,
            student_ids=frozenset(students),
            snapshot=SessionSnapshot(
                unit_code=unit.code if unit is not None else "UNKNOWN",
                unit_name=unit.name if unit is not None else "Unknown Unit",
                class_names=[item.display_name for item in sorted(classes, key=lambda c: c.id)],
                lecturer_name=lecturer_name,
            ),
            program_id=program_ids.pop() if len(program_ids) == 1 else None,
            school_id=school_ids.pop() if len(school_ids) == 1 else None,
            lecturer_id=lecturer_code,
            duration_minutes=self._duration(semester_id),
            missing_class_ids=tuple(missing_class_ids),
            missing_unit=unit is None,
        )

    def _duration(self, semester_id: str) -> int:
        if semester_id not in self._durations:
            period = self._period(semester_id)
            self._durations[semester_id] = (
                period.duration_minutes if period is not None else self.default_duration_minutes
            )
        return self._durations[semester_id]

    def _program_school_id(self, program_id: str | None) -> str | None:
        if program_id is None:
            return None
        program = self.db.get(Program, program_id)
        return program.school_id if program is not None else None

    def _rosters(self, semester_id: str, class_ids: list[str]) -> dict[tuple[str, str], set[str]]:
        rosters: dict[tuple[str, str], set[str]] = defaultdict(set)
        if not class_ids:
            return rosters
        rows = self.db.execute(
            select(Enrollment.unit_id, Enrollment.class_id, Enrollment.student_code).where(
                Enrollment.semester_id == semester_id,
                Enrollment.status == "enrolled",
                Enrollment.class_id.in_(class_ids),
            )
        ).all()
        for unit_id, class_id, student_code in rows:
            rosters[(unit_id, class_id)].add(student_code)
        return rosters

    def _units(self, unit_ids: set[str]) -> dict[str, Unit]:
        if not unit_ids:
            return {}
        return {unit.id: unit for unit in self.db.execute(select(Unit).where(Unit.id.in_(unit_ids))).scalars()}

    def _lecturer_lookup(self, semester_id: str, unit_ids: set[str]) -> list[LecturerAssignment]:
        if not unit_ids:
            return []
        return list(
            self.db.execute(
                select(LecturerAssignment)
                .where(
                    LecturerAssignment.semester_id == semester_id,
                    LecturerAssignment.unit_id.in_(unit_ids),
                )
                .order_by(LecturerAssignment.lecturer_code, LecturerAssignment.id)
            ).scalars()
        )

    def _lecturer_names(self, semester_id: str) -> dict[str, str]:
        rows = self.db.execute(
            select(LecturerAssignment.lecturer_code, LecturerAssignment.lecturer_name).where(
                LecturerAssignment.semester_id == semester_id
            )
        ).all()
        return {code: name for code, name in rows if name}

    @staticmethod
    def _resolve_lecturer(
        assignments: list[LecturerAssignment],
        unit_id: str,
        class_id: str,
    ) -> str | None:
        # A class-specific assignment wins, then a unit-wide one, then any assignment for the unit.
        unit_wide: str | None = None
        fallback: str | None = None
        for assignment in assignments:
            if assignment.unit_id != unit_id:
                continue
            if assignment.class_id == class_id:
                return assignment.lecturer_code
            if assignment.class_id is None and unit_wide is None:
                unit_wide = assignment.lecturer_code
            if fallback is None:
                fallback = assignment.lecturer_code
        return unit_wide or fallback
