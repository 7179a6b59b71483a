from __future__ import annotations

from collections import Counter, defaultdict
from dataclasses import dataclass
from datetime import date
import logging
from typing import Iterable, Iterator, Sequence

from examsched.models.exam_timetable import ExamAssignment
from examsched.models.scheduling import FailureReason
from examsched.schemas.conflict import (
    AttemptedCell,
    ConflictDetails,
    InvalidReferenceDetails,
    LecturerConflictDetails,
    NoVenueCapacityDetails,
    SlotsExhaustedDetails,
    StudentConflictDetails,
)
from examsched.schemas.scheduling import SchedulingPolicy
from examsched.services.conflict_index import ConflictIndex, PlacementCheck, VenueCell, ViolationKind
from examsched.services.reference_data import ExamSession, TimeSlot, VenueInfo

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Placement:
    session: ExamSession
    slot: TimeSlot
    cells: tuple[VenueCell, ...]


@dataclass(frozen=True)
class Candidate:
    slot: TimeSlot
    cells: tuple[VenueCell, ...]
    check: PlacementCheck

    @property
    def rank(self) -> tuple[int, int]:
        return (len(self.check.conflicting_student_ids), len(self.check.violations))


@dataclass(frozen=True)
class PlacementFailure:
    session: ExamSession
    reason: FailureReason
    message: str
    details: ConflictDetails
    best: Candidate | None = None


PlacementResult = Placement | PlacementFailure


def allocation_order(sessions: Iterable[ExamSession]) -> list[ExamSession]:
    """Largest rosters first; they are the most constrained."""
    return sorted(
        sessions,
        key=lambda session: (-session.student_count, session.snapshot.unit_code, session.session_key),
    )


def invalid_reference_failure(session: ExamSession) -> PlacementFailure:
    message = session.invalid_reason or "Session references missing data"
    return PlacementFailure(
        session=session,
        reason=FailureReason.invalid_reference,
        message=message,
        details=InvalidReferenceDetails(
            missing_class_ids=list(session.missing_class_ids),
            missing_unit=session.missing_unit,
            empty_roster=not session.student_ids,
            message=message,
        ),
    )


def stale_assignment_failure(session: ExamSession, assignments: Sequence[ExamAssignment]) -> PlacementFailure:
    """Fails a session whose classes are partly examined by assignments it cannot replace."""
    student_ids = sorted(
        session.student_ids & {student for item in assignments for student in item.student_ids}
    )
    first = assignments[0]
    return PlacementFailure(
        session=session,
        reason=FailureReason.student_conflict,
        message=(
            f"{len(student_ids)} student(s) already sit this unit in assignment(s) "
            f"{', '.join(item.id for item in assignments)}, which also cover other classes"
        ),
        details=StudentConflictDetails(
            attempted=AttemptedCell(
                exam_date=first.exam_date,
                slot_number=first.slot_number,
                start_time=first.start_time,
                end_time=first.end_time,
                venue_ids=[item["venue_id"] for item in first.venue_allocations],
            ),
            conflicting_student_ids=student_ids,
        ),
    )


def _attempted(candidate: Candidate | None) -> AttemptedCell | None:
    if candidate is None:
        return None
    return AttemptedCell(
        exam_date=candidate.slot.exam_date,
        slot_number=candidate.slot.slot_number,
        start_time=candidate.slot.start_time,
        end_time=candidate.slot.end_time,
        venue_ids=[cell.venue_id for cell in candidate.cells],
    )


class SlotAllocator:
    def __init__(
        self,
        *,
        index: ConflictIndex,
        slots: Iterable[TimeSlot],
        venues: Iterable[VenueInfo],
        policy: SchedulingPolicy,
    ) -> None:
        self.index = index
        self.policy = policy
        self.venues = sorted(venues, key=lambda venue: (-venue.capacity, venue.id))
        self._slots_by_date: dict[date, list[TimeSlot]] = defaultdict(list)
        for slot in sorted(slots):
            self._slots_by_date[slot.exam_date].append(slot)

    def ordered_dates(self) -> list[date]:
        dates = sorted(self._slots_by_date)
        if self.policy.date_order == "spread_load":
            return sorted(dates, key=lambda exam_date: (self.index.date_load(exam_date), exam_date))
        return dates

    def eligible_venues(self, session: ExamSession) -> list[VenueInfo]:
        return [venue for venue in self.venues if venue.serves(session.school_id)]

    def allocate(self, session: ExamSession) -> PlacementResult:
        eligible = self.eligible_venues(session)
        capacity_failure = self._capacity_failure(session, eligible)
        if capacity_failure is not None:
            return capacity_failure

        examined = 0
        tallies: Counter[str] = Counter()
        student_only = 0
        lecturer_only = 0
        best: Candidate | None = None

        for exam_date in self.ordered_dates():
            for slot in self._slots_by_date[exam_date]:
                if slot.length_minutes < session.duration_minutes:
                    continue
                rejected: list[Candidate] = []
                for cells in self._cell_options(session, slot, eligible):
                    check = self.index.can_place(session, slot.key, cells)
                    if check.ok:
                        self.index.commit(session, slot.key, cells)
                        logger.debug(
                            "Placed session=%s date=%s slot=%s venues=%s",
                            session.session_key,
                            slot.exam_date,
                            slot.slot_number,
                            [cell.venue_id for cell in cells],
                        )
                        return Placement(session=session, slot=slot, cells=cells)
                    rejected.append(Candidate(slot=slot, cells=cells, check=check))
                if not rejected:
                    continue

                # Student and lecturer clashes block every cell of a slot; a full
                # venue only blocks the slot when no other cell was free.
                examined += 1
                blockers = frozenset.intersection(*(candidate.check.kinds for candidate in rejected))
                for kind in blockers:
                    tallies[kind.value] += 1
                if blockers == {ViolationKind.student_conflict}:
                    student_only += 1
                elif blockers == {ViolationKind.lecturer_conflict}:
                    lecturer_only += 1
                slot_best = min(rejected, key=lambda candidate: candidate.rank)
                if best is None or slot_best.rank < best.rank:
                    best = slot_best

        return self._exhausted_failure(
            session,
            examined=examined,
            tallies=tallies,
            student_only=student_only,
            lecturer_only=lecturer_only,
            best=best,
        )

    def _cell_options(
        self,
        session: ExamSession,
        slot: TimeSlot,
        eligible: list[VenueInfo],
    ) -> Iterator[tuple[VenueCell, ...]]:
        available = [venue for venue in eligible if venue.is_available(slot)]
        required = session.student_count
        for venue in available:
            if venue.capacity >= required:
                yield (VenueCell(venue_id=venue.id, seats=required),)

        if not self.policy.allow_multi_venue:
            return
        cells: list[VenueCell] = []
        remaining = required
        for venue in available:
            free = self.index.remaining_seats(venue.id, slot.key)
            if free <= 0:
                continue
            seats = min(free, remaining)
            cells.append(VenueCell(venue_id=venue.id, seats=seats))
            remaining -= seats
            if remaining == 0:
                break
        if remaining == 0 and len(cells) > 1:
            yield tuple(cells)

    def _capacity_failure(self, session: ExamSession, eligible: list[VenueInfo]) -> PlacementFailure | None:
        required = session.student_count
        largest = max((venue.capacity for venue in eligible), default=0)
        total = sum(venue.capacity for venue in eligible)
        fits = total >= required if self.policy.allow_multi_venue else largest >= required
        if fits:
            return None
        if self.policy.allow_multi_venue:
            message = f"No combination of venues can seat {required} students (all venues together hold {total})"
        else:
            message = f"No venue can seat {required} students (largest venue holds {largest})"
        return PlacementFailure(
            session=session,
            reason=FailureReason.no_venue_capacity,
            message=message,
            details=NoVenueCapacityDetails(
                required_seats=required,
                largest_venue_capacity=largest,
                total_venue_capacity=total,
                multi_venue_allowed=self.policy.allow_multi_venue,
            ),
        )

    def _exhausted_failure(
        self,
        session: ExamSession,
        *,
        examined: int,
        tallies: Counter[str],
        student_only: int,
        lecturer_only: int,
        best: Candidate | None,
    ) -> PlacementFailure:
        attempted = _attempted(best)
        student_ids = best.check.conflicting_student_ids if best is not None else []
        venue_ids = best.check.conflicting_venue_ids if best is not None else []
        unit_ids = best.check.conflicting_unit_ids if best is not None else []

        if examined and student_only == examined:
            return PlacementFailure(
                session=session,
                reason=FailureReason.student_conflict,
                message=(
                    f"Every candidate slot clashes with another exam for at least "
                    f"{len(student_ids)} student(s)"
                ),
                details=StudentConflictDetails(
                    attempted=attempted,
                    candidates_examined=examined,
                    conflicting_student_ids=student_ids,
                    conflicting_venue_ids=venue_ids,
                ),
                best=best,
            )
        if examined and lecturer_only == examined:
            return PlacementFailure(
                session=session,
                reason=FailureReason.lecturer_conflict,
                message=f"Lecturer {session.lecturer_id} is committed to another unit in every candidate slot",
                details=LecturerConflictDetails(
                    attempted=attempted,
                    candidates_examined=examined,
                    lecturer_id=session.lecturer_id,
                    conflicting_unit_ids=unit_ids,
                ),
                best=best,
            )

        if examined:
            summary = ", ".join(f"{kind}={count}" for kind, count in sorted(tallies.items()))
            message = f"No feasible slot after examining {examined} candidate slot(s) ({summary})"
        else:
            message = "No available venue cell in the exam calendar could host this session"
        return PlacementFailure(
            session=session,
            reason=FailureReason.slots_exhausted,
            message=message,
            details=SlotsExhaustedDetails(
                attempted=attempted,
                candidates_examined=examined,
                conflicting_student_ids=student_ids,
                conflicting_venue_ids=venue_ids,
                rejections=dict(sorted(tallies.items())),
                lecturer_id=session.lecturer_id if unit_ids else None,
                conflicting_unit_ids=unit_ids,
            ),
            best=best,
        )
