from __future__ import annotations

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field

from examsched.models.scheduling import FailureReason, FailureStatus
from examsched.schemas.conflict import ConflictDetails
from examsched.schemas.scheduling import AssignmentOut, BatchOut, SchedulingPolicy


class SessionSnapshotOut(BaseModel):
    unit_code: str
    unit_name: str
    class_names: list[str]
    lecturer_name: str | None

    model_config = {"from_attributes": True}


class FailureOut(BaseModel):
    id: str
    batch_id: str
    semester_id: str
    program_id: str | None
    school_id: str | None
    unit_id: str
    class_ids: list[str]
    session_key: str
    student_count: int
    snapshot: SessionSnapshotOut
    attempted_date: date | None
    attempted_start_time: str | None
    attempted_end_time: str | None
    attempted_slot_number: int | None
    reason_code: FailureReason
    failure_reason: str
    conflict_details: ConflictDetails
    status: FailureStatus
    resolved_by_id: str | None
    resolved_at: datetime | None
    resolution_notes: str | None
    supersedes_id: str | None
    superseded_by_id: str | None
    created_at: datetime | None
    updated_at: datetime | None

    model_config = {"from_attributes": True}


class FailureActionRequest(BaseModel):
    notes: str | None = Field(default=None, max_length=5000)


class RetryFailuresRequest(BaseModel):
    failure_ids: list[str] = Field(min_length=1, max_length=500)
    notes: str | None = Field(default=None, max_length=5000)
    policy_override: SchedulingPolicy | None = None


RetryOutcomeKind = Literal["scheduled", "failed_again", "already_retried", "not_attempted"]


class RetryOutcomeOut(BaseModel):
    failure_id: str
    outcome: RetryOutcomeKind
    assignment_id: str | None = None
    new_failure_id: str | None = None

    model_config = {"from_attributes": True}


class RetryFailuresResponse(BaseModel):
    batch: BatchOut | None
    outcomes: list[RetryOutcomeOut]


class FailureStatistics(BaseModel):
    total: int
    pending: int
    resolved: int
    retried: int
    ignored: int
    by_reason: dict[str, int] = Field(default_factory=dict)


class BatchRunResponse(BaseModel):
    batch: BatchOut
    assignments: list[AssignmentOut]
    failures: list[FailureOut]
