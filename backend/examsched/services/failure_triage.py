from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Literal

from sqlalchemy import String, cast, func, or_, select
from sqlalchemy.orm import Session

from examsched.core.exceptions import InvalidTransitionError, ResourceNotFoundError
from examsched.models.scheduling import FailureReason, FailureStatus, SchedulingFailure
from examsched.schemas.conflict import (
    LecturerConflictDetails,
    NoVenueCapacityDetails,
    SlotsExhaustedDetails,
    StudentConflictDetails,
    parse_conflict_details,
)
from examsched.schemas.failure import FailureStatistics
from examsched.services.audit import log_activity

logger = logging.getLogger(__name__)

TriageAction = Literal["resolve", "ignore", "retry", "revert"]

ACTION_TARGETS: dict[str, FailureStatus] = {
    "resolve": FailureStatus.resolved,
    "ignore": FailureStatus.ignored,
    "retry": FailureStatus.retried,
    "revert": FailureStatus.pending,
}

ALLOWED_TRANSITIONS: dict[str, frozenset[FailureStatus]] = {
    "resolve": frozenset({FailureStatus.pending}),
    "ignore": frozenset({FailureStatus.pending}),
    "retry": frozenset({FailureStatus.pending}),
    "revert": frozenset({FailureStatus.resolved, FailureStatus.ignored}),
}


def get_failure(db: Session, failure_id: str) -> SchedulingFailure:
    failure = db.get(SchedulingFailure, failure_id)
    if failure is None:
        raise ResourceNotFoundError("Scheduling failure", failure_id)
    return failure


def transition(
    db: Session,
    failure: SchedulingFailure,
    action: TriageAction,
    *,
    actor_id: str | None,
    notes: str | None = None,
    superseded_by_id: str | None = None,
) -> bool:
    """Apply a triage action. Returns False when the target status already holds."""
    target = ACTION_TARGETS[action]
    current = failure.status
    if current == target:
        return False
    if current not in ALLOWED_TRANSITIONS[action]:
        raise InvalidTransitionError(current.value, action)

    failure.status = target
    failure.resolved_by_id = actor_id
    failure.resolved_at = datetime.now(timezone.utc)
    failure.resolution_notes = notes
    if superseded_by_id is not None:
        failure.superseded_by_id = superseded_by_id

    log_activity(
        db,
        actor_id=actor_id,
        action=f"scheduling_failure.{action}",
        entity_type="scheduling_failure",
        entity_id=failure.id,
        details={
            "from_status": current.value,
            "to_status": target.value,
            "notes": notes,
            "superseded_by_id": superseded_by_id,
        },
    )
    logger.info("Failure %s moved %s -> %s by %s", failure.id, current.value, target.value, actor_id)
    return True


def resolve_failure(db: Session, failure: SchedulingFailure, *, actor_id: str | None, notes: str | None = None) -> bool:
    return transition(db, failure, "resolve", actor_id=actor_id, notes=notes)


def ignore_failure(db: Session, failure: SchedulingFailure, *, actor_id: str | None, notes: str | None = None) -> bool:
    return transition(db, failure, "ignore", actor_id=actor_id, notes=notes)


def revert_failure(db: Session, failure: SchedulingFailure, *, actor_id: str | None, notes: str | None = None) -> bool:
    return transition(db, failure, "revert", actor_id=actor_id, notes=notes)


def mark_retried(
    db: Session,
    failure: SchedulingFailure,
    *,
    actor_id: str | None,
    notes: str | None = None,
    superseded_by_id: str | None = None,
) -> bool:
    return transition(db, failure, "retry", actor_id=actor_id, notes=notes, superseded_by_id=superseded_by_id)


def delete_failure(db: Session, failure: SchedulingFailure, *, actor_id: str | None) -> None:
    log_activity(
        db,
        actor_id=actor_id,
        action="scheduling_failure.delete",
        entity_type="scheduling_failure",
        entity_id=failure.id,
        details={
            "batch_id": failure.batch_id,
            "session_key": failure.session_key,
            "unit_code": failure.unit_code,
            "reason_code": failure.reason_code.value,
            "status": failure.status.value,
        },
    )
    db.delete(failure)
    logger.info("Failure %s deleted by %s", failure.id, actor_id)


def list_failures(
    db: Session,
    *,
    status: FailureStatus | None = None,
    semester_id: str | None = None,
    program_id: str | None = None,
    school_id: str | None = None,
    batch_id: str | None = None,
    reason_code: FailureReason | None = None,
    search: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[SchedulingFailure]:
    query = select(SchedulingFailure)
    if status is not None:
        query = query.where(SchedulingFailure.status == status)
    if semester_id is not None:
        query = query.where(SchedulingFailure.semester_id == semester_id)
    if program_id is not None:
        query = query.where(SchedulingFailure.program_id == program_id)
    if school_id is not None:
        query = query.where(SchedulingFailure.school_id == school_id)
    if batch_id is not None:
        query = query.where(SchedulingFailure.batch_id == batch_id)
    if reason_code is not None:
        query = query.where(SchedulingFailure.reason_code == reason_code)
    if search and search.strip():
        pattern = f"%{search.strip()}%"
        query = query.where(
            or_(
                SchedulingFailure.unit_code.ilike(pattern),
                SchedulingFailure.unit_name.ilike(pattern),
                cast(SchedulingFailure.class_names, String).ilike(pattern),
            )
        )
    query = query.order_by(SchedulingFailure.created_at.desc(), SchedulingFailure.id).offset(offset).limit(limit)
    return list(db.execute(query).scalars())


def failure_statistics(
    db: Session,
    *,
    semester_id: str | None = None,
    program_id: str | None = None,
) -> FailureStatistics:
    filters = []
    if semester_id is not None:
        filters.append(SchedulingFailure.semester_id == semester_id)
    if program_id is not None:
        filters.append(SchedulingFailure.program_id == program_id)

    by_status = {
        status: count
        for status, count in db.execute(
            select(SchedulingFailure.status, func.count(SchedulingFailure.id))
            .where(*filters)
            .group_by(SchedulingFailure.status)
        ).all()
    }
    by_reason = {
        reason.value: count
        for reason, count in db.execute(
            select(SchedulingFailure.reason_code, func.count(SchedulingFailure.id))
            .where(*filters)
            .group_by(SchedulingFailure.reason_code)
        ).all()
    }
    return FailureStatistics(
        total=sum(by_status.values()),
        pending=by_status.get(FailureStatus.pending, 0),
        resolved=by_status.get(FailureStatus.resolved, 0),
        retried=by_status.get(FailureStatus.retried, 0),
        ignored=by_status.get(FailureStatus.ignored, 0),
        by_reason=dict(sorted(by_reason.items())),
    )


def conflict_summary(failure: SchedulingFailure) -> str:
    details = parse_conflict_details(failure.conflict_details)
    where = ""
    if details.attempted is not None:
        where = f" at {details.attempted.exam_date.isoformat()} slot {details.attempted.slot_number}"

    if isinstance(details, NoVenueCapacityDetails):
        return (
            f"{failure.unit_code}: needs {details.required_seats} seats, "
            f"largest venue holds {details.largest_venue_capacity}"
        )
    if isinstance(details, StudentConflictDetails):
        return f"{failure.unit_code}{where}: {len(details.conflicting_student_ids)} student(s) already sitting another exam"
    if isinstance(details, LecturerConflictDetails):
        units = ", ".join(details.conflicting_unit_ids) or "another unit"
        return f"{failure.unit_code}{where}: lecturer {details.lecturer_id} busy with {units}"
    if isinstance(details, SlotsExhaustedDetails):
        tallies = ", ".join(f"{kind} {count}" for kind, count in details.rejections.items())
        return f"{failure.unit_code}: no free slot in {details.candidates_examined} candidate(s)" + (
            f" ({tallies})" if tallies else ""
        )
    return f"{failure.unit_code}: {details.message or failure.failure_reason}"
