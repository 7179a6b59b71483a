from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from examsched.api.deps import get_actor_id, get_db, get_orchestrator
from examsched.core.exceptions import ResourceNotFoundError
from examsched.models.exam_timetable import ExamAssignment
from examsched.models.scheduling import BatchKind, BatchStatus, SchedulingBatch
from examsched.schemas.failure import BatchRunResponse, FailureOut
from examsched.schemas.scheduling import (
    AssignmentOut,
    BatchOut,
    BatchRunRequest,
    CancelBatchResponse,
    RescheduleRequest,
)
from examsched.services.batch_control import get_running_batches
from examsched.services.batch_orchestrator import BatchOrchestrator, BatchOutcome
from examsched.services.reference_data import SchedulingScope

router = APIRouter()


def _outcome_response(outcome: BatchOutcome) -> BatchRunResponse:
    return BatchRunResponse(
        batch=BatchOut.model_validate(outcome.batch),
        assignments=[AssignmentOut.model_validate(item) for item in outcome.assignments],
        failures=[FailureOut.model_validate(item) for item in outcome.failures],
    )


@router.post("/batches", response_model=BatchRunResponse, status_code=status.HTTP_201_CREATED)
def run_batch(
    payload: BatchRunRequest,
    actor_id: str | None = Depends(get_actor_id),
    orchestrator: BatchOrchestrator = Depends(get_orchestrator),
) -> BatchRunResponse:
    scope = SchedulingScope(
        semester_id=payload.semester_id,
        program_id=payload.program_id,
        school_id=payload.school_id,
    )
    outcome = orchestrator.run_batch(scope, requested_by=actor_id, policy=payload.policy_override)
    return _outcome_response(outcome)


@router.get("/batches", response_model=list[BatchOut])
def list_batches(
    semester_id: str | None = Query(default=None, max_length=36),
    program_id: str | None = Query(default=None, max_length=36),
    kind: BatchKind | None = Query(default=None),
    batch_status: BatchStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=500),
    db: Session = Depends(get_db),
) -> list[SchedulingBatch]:
    query = select(SchedulingBatch)
    if semester_id is not None:
        query = query.where(SchedulingBatch.semester_id == semester_id)
    if program_id is not None:
        query = query.where(SchedulingBatch.program_id == program_id)
    if kind is not None:
        query = query.where(SchedulingBatch.kind == kind)
    if batch_status is not None:
        query = query.where(SchedulingBatch.status == batch_status)
    query = query.order_by(SchedulingBatch.started_at.desc(), SchedulingBatch.id).limit(limit)
    return list(db.execute(query).scalars())


@router.get("/batches/{batch_id}", response_model=BatchOut)
def get_batch(batch_id: str, db: Session = Depends(get_db)) -> SchedulingBatch:
    batch = db.get(SchedulingBatch, batch_id)
    if batch is None:
        raise ResourceNotFoundError("Scheduling batch", batch_id)
    return batch


@router.post("/batches/{batch_id}/cancel", response_model=CancelBatchResponse)
def cancel_batch(batch_id: str, db: Session = Depends(get_db)) -> CancelBatchResponse:
    batch = db.get(SchedulingBatch, batch_id)
    if batch is None:
        raise ResourceNotFoundError("Scheduling batch", batch_id)
    requested = batch.status == BatchStatus.running and get_running_batches().cancel(batch_id)
    return CancelBatchResponse(batch_id=batch_id, cancellation_requested=requested)


@router.get("/timetable", response_model=list[AssignmentOut])
def list_timetable(
    semester_id: str = Query(min_length=1, max_length=36),
    program_id: str | None = Query(default=None, max_length=36),
    include_superseded: bool = Query(default=False),
    db: Session = Depends(get_db),
) -> list[ExamAssignment]:
    query = select(ExamAssignment).where(ExamAssignment.semester_id == semester_id)
    if program_id is not None:
        query = query.where(ExamAssignment.program_id == program_id)
    if not include_superseded:
        query = query.where(ExamAssignment.superseded_by_id.is_(None))
    query = query.order_by(ExamAssignment.exam_date, ExamAssignment.slot_number, ExamAssignment.unit_code)
    return list(db.execute(query).scalars())


@router.post("/assignments/reschedule", response_model=BatchRunResponse)
def reschedule_assignments(
    payload: RescheduleRequest,
    actor_id: str | None = Depends(get_actor_id),
    orchestrator: BatchOrchestrator = Depends(get_orchestrator),
) -> BatchRunResponse:
    outcome = orchestrator.reschedule_assignments(
        payload.assignment_ids,
        actor_id=actor_id,
        policy=payload.policy_override,
    )
    return _outcome_response(outcome)
