from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from examsched.api.deps import get_actor_id, get_db, get_orchestrator
from examsched.models.scheduling import FailureReason, FailureStatus, SchedulingFailure
from examsched.schemas.failure import (
    FailureActionRequest,
    FailureOut,
    FailureStatistics,
    RetryFailuresRequest,
    RetryFailuresResponse,
    RetryOutcomeOut,
)
from examsched.schemas.scheduling import BatchOut
from examsched.services import failure_triage
from examsched.services.batch_orchestrator import BatchOrchestrator

router = APIRouter()


@router.get("", response_model=list[FailureOut])
def list_failures(
    failure_status: FailureStatus | None = Query(default=None, alias="status"),
    semester_id: str | None = Query(default=None, max_length=36),
    program_id: str | None = Query(default=None, max_length=36),
    school_id: str | None = Query(default=None, max_length=36),
    batch_id: str | None = Query(default=None, max_length=36),
    reason_code: FailureReason | None = Query(default=None),
    search: str | None = Query(default=None, max_length=200),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
) -> list[SchedulingFailure]:
    return failure_triage.list_failures(
        db,
        status=failure_status,
        semester_id=semester_id,
        program_id=program_id,
        school_id=school_id,
        batch_id=batch_id,
        reason_code=reason_code,
        search=search,
        limit=limit,
        offset=offset,
    )


@router.get("/statistics", response_model=FailureStatistics)
def failure_statistics(
    semester_id: str | None = Query(default=None, max_length=36),
    program_id: str | None = Query(default=None, max_length=36),
    db: Session = Depends(get_db),
) -> FailureStatistics:
    return failure_triage.failure_statistics(db, semester_id=semester_id, program_id=program_id)


@router.post("/retry", response_model=RetryFailuresResponse)
def retry_failures(
    payload: RetryFailuresRequest,
    actor_id: str | None = Depends(get_actor_id),
    orchestrator: BatchOrchestrator = Depends(get_orchestrator),
) -> RetryFailuresResponse:
    result = orchestrator.retry_failures(
        payload.failure_ids,
        actor_id=actor_id,
        notes=payload.notes,
        policy=payload.policy_override,
    )
    return RetryFailuresResponse(
        batch=BatchOut.model_validate(result.batch) if result.batch is not None else None,
        outcomes=[RetryOutcomeOut.model_validate(item) for item in result.outcomes],
    )


@router.get("/{failure_id}", response_model=FailureOut)
def get_failure(failure_id: str, db: Session = Depends(get_db)) -> SchedulingFailure:
    return failure_triage.get_failure(db, failure_id)


def _apply_action(
    db: Session,
    failure_id: str,
    action: failure_triage.TriageAction,
    payload: FailureActionRequest | None,
    actor_id: str | None,
) -> SchedulingFailure:
    failure = failure_triage.get_failure(db, failure_id)
    notes = payload.notes if payload is not None else None
    if failure_triage.transition(db, failure, action, actor_id=actor_id, notes=notes):
        db.commit()
        db.refresh(failure)
    return failure


@router.post("/{failure_id}/resolve", response_model=FailureOut)
def resolve_failure(
    failure_id: str,
    payload: FailureActionRequest | None = None,
    actor_id: str | None = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> SchedulingFailure:
    return _apply_action(db, failure_id, "resolve", payload, actor_id)


@router.post("/{failure_id}/ignore", response_model=FailureOut)
def ignore_failure(
    failure_id: str,
    payload: FailureActionRequest | None = None,
    actor_id: str | None = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> SchedulingFailure:
    return _apply_action(db, failure_id, "ignore", payload, actor_id)


@router.post("/{failure_id}/revert", response_model=FailureOut)
def revert_failure(
    failure_id: str,
    payload: FailureActionRequest | None = None,
    actor_id: str | None = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> SchedulingFailure:
    return _apply_action(db, failure_id, "revert", payload, actor_id)


@router.delete("/{failure_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_failure(
    failure_id: str,
    actor_id: str | None = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> Response:
    failure = failure_triage.get_failure(db, failure_id)
    failure_triage.delete_failure(db, failure, actor_id=actor_id)
    db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
