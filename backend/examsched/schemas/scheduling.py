from __future__ import annotations

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field, model_validator

from examsched.core.config import Settings
from examsched.models.scheduling import BatchKind, BatchStatus

VenueSharingPolicy = Literal["exclusive", "shared"]
DateOrderPolicy = Literal["earliest_first", "spread_load"]


class SchedulingPolicy(BaseModel):
    venue_sharing: VenueSharingPolicy = "exclusive"
    date_order: DateOrderPolicy = "earliest_first"
    allow_multi_venue: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "SchedulingPolicy":
        return cls(
            venue_sharing=settings.exam_venue_sharing,
            date_order=settings.exam_date_order,
            allow_multi_venue=settings.exam_allow_multi_venue,
        )


class BatchRunRequest(BaseModel):
    semester_id: str = Field(min_length=1, max_length=36)
    program_id: str | None = Field(default=None, min_length=1, max_length=36)
    school_id: str | None = Field(default=None, min_length=1, max_length=36)
    policy_override: SchedulingPolicy | None = None


class RescheduleRequest(BaseModel):
    assignment_ids: list[str] = Field(min_length=1, max_length=500)
    policy_override: SchedulingPolicy | None = None

    @model_validator(mode="after")
    def validate_unique_ids(self) -> "RescheduleRequest":
        if len(set(self.assignment_ids)) != len(self.assignment_ids):
            raise ValueError("assignment_ids must be unique")
        return self


class BatchOut(BaseModel):
    id: str
    kind: BatchKind
    status: BatchStatus
    semester_id: str
    program_id: str | None
    school_id: str | None
    requested_by_id: str | None
    policy: dict
    session_count: int
    scheduled_count: int
    failed_count: int
    skipped_count: int
    not_attempted_count: int
    error_message: str | None
    started_at: datetime | None
    finished_at: datetime | None

    model_config = {"from_attributes": True}


class VenueAllocationOut(BaseModel):
    venue_id: str
    venue_name: str
    seats: int


class AssignmentOut(BaseModel):
    id: str
    batch_id: str
    semester_id: str
    program_id: str | None
    school_id: str | None
    session_key: str
    unit_id: str
    unit_code: str
    class_ids: list[str]
    student_count: int
    lecturer_id: str | None
    exam_date: date
    slot_number: int
    start_time: str
    end_time: str
    venue_allocations: list[VenueAllocationOut]
    superseded_by_id: str | None
    superseded_at: datetime | None
    created_at: datetime | None

    model_config = {"from_attributes": True}


class CancelBatchResponse(BaseModel):
    batch_id: str
    cancellation_requested: bool
