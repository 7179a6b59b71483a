from __future__ import annotations

from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Iterable, Literal, Sequence

from examsched.core.exceptions import SchedulerError
from examsched.services.reference_data import ExamSession

SlotKey = tuple[date, int]
CellKey = tuple[str, date, int]


class ViolationKind(str, Enum):
    student_conflict = "student_conflict"
    lecturer_conflict = "lecturer_conflict"
    venue_full = "venue_full"


@dataclass(frozen=True)
class Violation:
    kind: ViolationKind
    student_ids: tuple[str, ...] = ()
    lecturer_id: str | None = None
    unit_ids: tuple[str, ...] = ()
    venue_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class VenueCell:
    venue_id: str
    seats: int


@dataclass(frozen=True)
class PlacementCheck:
    violations: tuple[Violation, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.violations

    @property
    def reason(self) -> ViolationKind | None:
        return self.violations[0].kind if self.violations else None

    @property
    def kinds(self) -> frozenset[ViolationKind]:
        return frozenset(item.kind for item in self.violations)

    def _collect(self, attribute: str) -> list[str]:
        values: set[str] = set()
        for item in self.violations:
            values.update(getattr(item, attribute))
        return sorted(values)

    @property
    def conflicting_student_ids(self) -> list[str]:
        return self._collect("student_ids")

    @property
    def conflicting_unit_ids(self) -> list[str]:
        return self._collect("unit_ids")

    @property
    def conflicting_venue_ids(self) -> list[str]:
        return self._collect("venue_ids")


@dataclass
class CellOccupancy:
    capacity: int
    seats_used: int = 0
    occupants: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class Footprint:
    unit_id: str
    student_ids: frozenset[str]
    lecturer_id: str | None
    slot_key: SlotKey
    cells: tuple[VenueCell, ...]


class ConflictIndex:
    """Committed student, lecturer and venue-cell occupancy for one batch's working timetable."""

    def __init__(
        self,
        *,
        venue_capacities: dict[str, int],
        venue_sharing: Literal["exclusive", "shared"] = "exclusive",
    ) -> None:
        self.venue_sharing = venue_sharing
        self._capacities = dict(venue_capacities)
        self._student_slots: dict[str, Counter[SlotKey]] = defaultdict(Counter)
        self._lecturer_slots: dict[str, dict[SlotKey, Counter[str]]] = defaultdict(lambda: defaultdict(Counter))
        self._cells: dict[CellKey, CellOccupancy] = {}
        self._date_load: Counter[date] = Counter()
        self._footprints: dict[str, Footprint] = {}

    def __contains__(self, session_key: str) -> bool:
        return session_key in self._footprints

    def __len__(self) -> int:
        return len(self._footprints)

    def date_load(self, exam_date: date) -> int:
        return self._date_load[exam_date]

    def _student_busy(self, student_id: str, slot_key: SlotKey) -> bool:
        slots = self._student_slots.get(student_id)
        return slots is not None and slots[slot_key] > 0

    def remaining_seats(self, venue_id: str, slot_key: SlotKey) -> int:
        capacity = self._capacities.get(venue_id, 0)
        occupancy = self._cells.get((venue_id, *slot_key))
        if occupancy is None or not occupancy.occupants:
            return capacity
        if self.venue_sharing == "exclusive":
            return 0
        return occupancy.capacity - occupancy.seats_used

    def can_place(self, session: ExamSession, slot_key: SlotKey, cells: Sequence[VenueCell]) -> PlacementCheck:
        violations: list[Violation] = []

        clashing_students = tuple(
            sorted(student for student in session.student_ids if self._student_busy(student, slot_key))
        )
        if clashing_students:
            violations.append(Violation(kind=ViolationKind.student_conflict, student_ids=clashing_students))

        if session.lecturer_id is not None:
            # The same lecturer may sit several sessions of one unit in the same slot.
            units = self._lecturer_slots.get(session.lecturer_id, {}).get(slot_key, Counter())
            other_units = tuple(sorted(unit for unit, count in units.items() if count > 0 and unit != session.unit_id))
            if other_units:
                violations.append(
                    Violation(
                        kind=ViolationKind.lecturer_conflict,
                        lecturer_id=session.lecturer_id,
                        unit_ids=other_units,
                    )
                )

        full_venues = tuple(
            sorted(cell.venue_id for cell in cells if cell.seats > self.remaining_seats(cell.venue_id, slot_key))
        )
        if full_venues or sum(cell.seats for cell in cells) < session.student_count:
            violations.append(Violation(kind=ViolationKind.venue_full, venue_ids=full_venues))

        return PlacementCheck(violations=tuple(violations))

    def commit(self, session: ExamSession, slot_key: SlotKey, cells: Sequence[VenueCell]) -> None:
        if session.session_key in self._footprints:
            raise SchedulerError(
                "Session is already committed in this batch",
                details={"session_key": session.session_key},
            )
        check = self.can_place(session, slot_key, cells)
        if not check.ok:
            raise SchedulerError(
                "Refusing to commit a placement that violates constraints",
                details={
                    "session_key": session.session_key,
                    "violations": [item.kind.value for item in check.violations],
                },
            )
        self._apply(
            session.session_key,
            Footprint(
                unit_id=session.unit_id,
                student_ids=session.student_ids,
                lecturer_id=session.lecturer_id,
                slot_key=slot_key,
                cells=tuple(cells),
            ),
        )

    def seed(
        self,
        *,
        session_key: str,
        unit_id: str,
        student_ids: Iterable[str],
        lecturer_id: str | None,
        slot_key: SlotKey,
        cells: Sequence[VenueCell],
    ) -> None:
        """Record an already-persisted placement without re-validating it."""
        if session_key in self._footprints:
            return
        self._apply(
            session_key,
            Footprint(
                unit_id=unit_id,
                student_ids=frozenset(student_ids),
                lecturer_id=lecturer_id,
                slot_key=slot_key,
                cells=tuple(cells),
            ),
        )

    def release(self, session_key: str) -> Footprint | None:
        footprint = self._footprints.pop(session_key, None)
        if footprint is None:
            return None
        for student in footprint.student_ids:
            self._student_slots[student][footprint.slot_key] -= 1
        if footprint.lecturer_id is not None:
            self._lecturer_slots[footprint.lecturer_id][footprint.slot_key][footprint.unit_id] -= 1
        for cell in footprint.cells:
            occupancy = self._cells[(cell.venue_id, *footprint.slot_key)]
            occupancy.seats_used -= cell.seats
            occupancy.occupants.remove(session_key)
        self._date_load[footprint.slot_key[0]] -= 1
        return footprint

    def restore(self, session_key: str, footprint: Footprint) -> None:
        """Put back a footprint taken out by ``release``."""
        if session_key not in self._footprints:
            self._apply(session_key, footprint)

    def _apply(self, session_key: str, footprint: Footprint) -> None:
        for student in footprint.student_ids:
            self._student_slots[student][footprint.slot_key] += 1
        if footprint.lecturer_id is not None:
            self._lecturer_slots[footprint.lecturer_id][footprint.slot_key][footprint.unit_id] += 1
        for cell in footprint.cells:
            key = (cell.venue_id, *footprint.slot_key)
            occupancy = self._cells.get(key)
            if occupancy is None:
                occupancy = CellOccupancy(capacity=self._capacities.get(cell.venue_id, 0))
                self._cells[key] = occupancy
            occupancy.seats_used += cell.seats
            occupancy.occupants.append(session_key)
        self._date_load[footprint.slot_key[0]] += 1
        self._footprints[session_key] = footprint
