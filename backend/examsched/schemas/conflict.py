from __future__ import annotations

from datetime import date
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

CONFLICT_DETAILS_VERSION = 1


class AttemptedCell(BaseModel):
    exam_date: date
    slot_number: int
    start_time: str
    end_time: str
    venue_ids: list[str] = Field(default_factory=list)


class ConflictDetailsBase(BaseModel):
    version: Literal[1] = CONFLICT_DETAILS_VERSION
    attempted: AttemptedCell | None = None
    candidates_examined: int = 0
    conflicting_student_ids: list[str] = Field(default_factory=list)
    conflicting_venue_ids: list[str] = Field(default_factory=list)


class StudentConflictDetails(ConflictDetailsBase):
    reason_code: Literal["STUDENT_CONFLICT"] = "STUDENT_CONFLICT"


class LecturerConflictDetails(ConflictDetailsBase):
    reason_code: Literal["LECTURER_CONFLICT"] = "LECTURER_CONFLICT"
    lecturer_id: str | None = None
    conflicting_unit_ids: list[str] = Field(default_factory=list)


class NoVenueCapacityDetails(ConflictDetailsBase):
    reason_code: Literal["NO_VENUE_CAPACITY"] = "NO_VENUE_CAPACITY"
    required_seats: int
    largest_venue_capacity: int = 0
    total_venue_capacity: int = 0
    multi_venue_allowed: bool = False


class SlotsExhaustedDetails(ConflictDetailsBase):
    reason_code: Literal["SLOTS_EXHAUSTED"] = "SLOTS_EXHAUSTED"
    # keyed by violation kind: student_conflict, lecturer_conflict, venue_full
    rejections: dict[str, int] = Field(default_factory=dict)
    lecturer_id: str | None = None
    conflicting_unit_ids: list[str] = Field(default_factory=list)


class InvalidReferenceDetails(ConflictDetailsBase):
    reason_code: Literal["INVALID_REFERENCE"] = "INVALID_REFERENCE"
    missing_class_ids: list[str] = Field(default_factory=list)
    missing_unit: bool = False
    empty_roster: bool = False
    message: str = ""


ConflictDetails = Annotated[
    Union[
        StudentConflictDetails,
        LecturerConflictDetails,
        NoVenueCapacityDetails,
        SlotsExhaustedDetails,
        InvalidReferenceDetails,
    ],
    Field(discriminator="reason_code"),
]

conflict_details_adapter: TypeAdapter[ConflictDetails] = TypeAdapter(ConflictDetails)


def parse_conflict_details(raw: dict) -> ConflictDetails:
    return conflict_details_adapter.validate_python(raw)
