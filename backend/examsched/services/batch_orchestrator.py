from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from contextlib import ExitStack
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import partial
import logging
import operator
from typing import Callable, Iterable, Sequence
import uuid

from sqlalchemy import select
from sqlalchemy.orm import Session

from examsched.core.config import Settings, get_settings
from examsched.core.exceptions import InvalidTransitionError, ReferenceDataError, ResourceNotFoundError, SchedulerError
from examsched.models.exam_timetable import ExamAssignment
from examsched.models.scheduling import (
    BatchKind,
    BatchStatus,
    FailureStatus,
    SchedulingBatch,
    SchedulingFailure,
)
from examsched.schemas.scheduling import SchedulingPolicy
from examsched.services import failure_triage
from examsched.services.audit import log_activity
from examsched.services.batch_control import (
    CancellationToken,
    RunningBatchRegistry,
    ScopeLockRegistry,
    ensure_disjoint_scopes,
    get_running_batches,
    get_scope_locks,
)
from examsched.services.conflict_index import ConflictIndex, VenueCell
from examsched.services.reference_data import (
    ExamSession,
    ReferenceDataProvider,
    ReferenceSnapshot,
    SchedulingScope,
    SessionRequest,
    SqlReferenceDataProvider,
    load_snapshot,
)
from examsched.services.slot_allocator import (
    Placement,
    PlacementFailure,
    PlacementResult,
    SlotAllocator,
    allocation_order,
    invalid_reference_failure,
    stale_assignment_failure,
)

logger = logging.getLogger(__name__)


@dataclass
class BatchOutcome:
    batch: SchedulingBatch
    assignments: list[ExamAssignment] = field(default_factory=list)
    failures: list[SchedulingFailure] = field(default_factory=list)
    skipped_session_keys: list[str] = field(default_factory=list)
    not_attempted_session_keys: list[str] = field(default_factory=list)
    superseded_assignment_ids: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class Coverage:
    """Active assignments of a session's unit that share at least one of its classes."""

    assignments: tuple[ExamAssignment, ...] = ()
    covered: bool = False
    straddling: tuple[ExamAssignment, ...] = ()

    @property
    def replaceable(self) -> tuple[ExamAssignment, ...]:
        return tuple(item for item in self.assignments if item not in self.straddling)


def coverage_for(session: ExamSession, active: Iterable[ExamAssignment]) -> Coverage:
    classes = set(session.class_ids)
    overlapping = tuple(
        item for item in active if item.unit_id == session.unit_id and classes & set(item.class_ids)
    )
    if not overlapping:
        return Coverage()
    covered_classes = {class_id for item in overlapping for class_id in item.class_ids}
    return Coverage(
        assignments=overlapping,
        covered=classes <= covered_classes,
        straddling=tuple(item for item in overlapping if not set(item.class_ids) <= classes),
    )


@dataclass(frozen=True)
class RetryOutcome:
    failure_id: str
    outcome: str
    assignment_id: str | None = None
    new_failure_id: str | None = None


@dataclass
class RetryResult:
    batch: SchedulingBatch | None
    outcomes: list[RetryOutcome] = field(default_factory=list)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_assignment(batch: SchedulingBatch, placement: Placement, venue_names: dict[str, str]) -> ExamAssignment:
    session = placement.session
    return ExamAssignment(
        id=str(uuid.uuid4()),
        batch_id=batch.id,
        semester_id=session.semester_id,
        program_id=session.program_id,
        school_id=session.school_id,
        session_key=session.session_key,
        unit_id=session.unit_id,
        unit_code=session.snapshot.unit_code,
        class_ids=list(session.class_ids),
        student_ids=sorted(session.student_ids),
        student_count=session.student_count,
        lecturer_id=session.lecturer_id,
        exam_date=placement.slot.exam_date,
        slot_number=placement.slot.slot_number,
        start_time=placement.slot.start_time,
        end_time=placement.slot.end_time,
        venue_allocations=[
            {"venue_id": cell.venue_id, "venue_name": venue_names.get(cell.venue_id, cell.venue_id), "seats": cell.seats}
            for cell in placement.cells
        ],
    )


def build_failure(batch: SchedulingBatch, failure: PlacementFailure) -> SchedulingFailure:
    session = failure.session
    best = failure.best
    return SchedulingFailure(
        id=str(uuid.uuid4()),
        batch_id=batch.id,
        semester_id=session.semester_id,
        program_id=session.program_id,
        school_id=session.school_id,
        unit_id=session.unit_id,
        class_ids=list(session.class_ids),
        session_key=session.session_key,
        student_count=session.student_count,
        snapshot=session.snapshot,
        attempted_date=best.slot.exam_date if best else None,
        attempted_start_time=best.slot.start_time if best else None,
        attempted_end_time=best.slot.end_time if best else None,
        attempted_slot_number=best.slot.slot_number if best else None,
        reason_code=failure.reason,
        failure_reason=failure.message,
        conflict_details=failure.details.model_dump(mode="json"),
        status=FailureStatus.pending,
    )


class BatchOrchestrator:
    def __init__(
        self,
        db: Session,
        provider: ReferenceDataProvider,
        *,
        settings: Settings | None = None,
        scope_locks: ScopeLockRegistry | None = None,
        running_batches: RunningBatchRegistry | None = None,
    ) -> None:
        self.db = db
        self.provider = provider
        self.settings = settings or get_settings()
        self.scope_locks = scope_locks or get_scope_locks()
        self.running_batches = running_batches or get_running_batches()

    def default_policy(self) -> SchedulingPolicy:
        return SchedulingPolicy.from_settings(self.settings)

    def run_batch(
        self,
        scope: SchedulingScope,
        *,
        requested_by: str | None = None,
        policy: SchedulingPolicy | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> BatchOutcome:
        policy = policy or self.default_policy()
        token = cancel_token or CancellationToken()
        batch_id = str(uuid.uuid4())

        with self.scope_locks.hold(scope, batch_id):
            batch = self._start_batch(batch_id, BatchKind.full, scope, requested_by, policy, token)
            try:
                snapshot = load_snapshot(self.provider, scope)
                index, active = self._seeded_index(snapshot, policy)
                allocator = SlotAllocator(index=index, slots=snapshot.slots, venues=snapshot.venues, policy=policy)

                outcome = BatchOutcome(batch=batch)
                pending: list[ExamSession] = []
                displaced: dict[str, tuple[ExamAssignment, ...]] = {}
                for session in snapshot.sessions:
                    coverage = coverage_for(session, active)
                    if session.session_key in index or coverage.covered:
                        outcome.skipped_session_keys.append(session.session_key)
                    elif coverage.straddling:
                        outcome.failures.append(
                            build_failure(batch, stale_assignment_failure(session, coverage.straddling))
                        )
                    else:
                        displaced[session.session_key] = coverage.replaceable
                        pending.append(session)

                results, not_attempted = self._allocate(
                    allocation_order(pending), allocator, index, token, displaced=displaced
                )
                outcome.not_attempted_session_keys = [session.session_key for session in not_attempted]
                for result in results:
                    if isinstance(result, Placement):
                        assignment = build_assignment(batch, result, snapshot.venue_names)
                        outcome.assignments.append(assignment)
                        for old in displaced.get(result.session.session_key, ()):
                            self._supersede(old, assignment)
                            outcome.superseded_assignment_ids.append(old.id)
                    else:
                        outcome.failures.append(build_failure(batch, result))

                self.db.add_all(outcome.assignments)
                self.db.add_all(outcome.failures)
                self._finish_batch(
                    batch,
                    session_count=len(snapshot.sessions),
                    scheduled=len(outcome.assignments),
                    failed=len(outcome.failures),
                    skipped=len(outcome.skipped_session_keys),
                    not_attempted=len(outcome.not_attempted_session_keys),
                    cancelled=token.cancelled,
                )
                log_activity(
                    self.db,
                    actor_id=requested_by,
                    action="scheduling.batch.run",
                    entity_type="scheduling_batch",
                    entity_id=batch.id,
                    details={
                        "scope": scope.describe(),
                        "status": batch.status.value,
                        "scheduled": batch.scheduled_count,
                        "failed": batch.failed_count,
                        "superseded": outcome.superseded_assignment_ids,
                    },
                )
                self.db.commit()
                return outcome
            except Exception as exc:
                self._abort_batch(batch, exc)
                raise
            finally:
                self.running_batches.unregister(batch_id)

    def retry_failures(
        self,
        failure_ids: Sequence[str],
        *,
        actor_id: str | None = None,
        notes: str | None = None,
        policy: SchedulingPolicy | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> RetryResult:
        failures = self._load_failures(failure_ids)
        semester_ids = {failure.semester_id for failure in failures}
        if len(semester_ids) > 1:
            raise SchedulerError(
                "Failures selected for retry must belong to one semester",
                details={"semester_ids": sorted(semester_ids)},
            )
        for failure in failures:
            if failure.status in (FailureStatus.resolved, FailureStatus.ignored):
                raise InvalidTransitionError(failure.status.value, "retry")

        result = RetryResult(batch=None)
        retryable: list[SchedulingFailure] = []
        for failure in failures:
            if failure.status == FailureStatus.retried:
                result.outcomes.append(RetryOutcome(failure_id=failure.id, outcome="already_retried"))
            else:
                retryable.append(failure)
        if not retryable:
            return result

        policy = policy or self.default_policy()
        token = cancel_token or CancellationToken()
        scope = SchedulingScope(semester_id=retryable[0].semester_id)
        batch_id = str(uuid.uuid4())

        with self.scope_locks.hold(scope, batch_id):
            batch = self._start_batch(batch_id, BatchKind.retry, scope, actor_id, policy, token)
            result.batch = batch
            try:
                requests = [SessionRequest(unit_id=item.unit_id, class_ids=tuple(item.class_ids)) for item in retryable]
                snapshot = load_snapshot(self.provider, scope, requests=requests)
                index, active = self._seeded_index(snapshot, policy)
                allocator = SlotAllocator(index=index, slots=snapshot.slots, venues=snapshot.venues, policy=policy)

                pairs = sorted(
                    zip(retryable, snapshot.sessions),
                    key=lambda pair: (-pair[1].student_count, pair[1].snapshot.unit_code, pair[1].session_key, pair[0].id),
                )
                scheduled = failed = skipped = not_attempted = 0
                for original, session in pairs:
                    if token.cancelled:
                        not_attempted += 1
                        result.outcomes.append(RetryOutcome(failure_id=original.id, outcome="not_attempted"))
                        continue

                    coverage = coverage_for(session, active)
                    if coverage.covered:
                        assignment_id = coverage.assignments[0].id
                        skipped += 1
                        self._mark_retried(original, actor_id, notes, batch, f"already scheduled as assignment {assignment_id}")
                        result.outcomes.append(
                            RetryOutcome(failure_id=original.id, outcome="scheduled", assignment_id=assignment_id)
                        )
                        continue

                    if coverage.straddling:
                        placement = stale_assignment_failure(session, coverage.straddling)
                    else:
                        placement = self._place_displacing(session, allocator, index, coverage.replaceable)
                    if isinstance(placement, Placement):
                        assignment = build_assignment(batch, placement, snapshot.venue_names)
                        self.db.add(assignment)
                        for old in coverage.replaceable:
                            self._supersede(old, assignment)
                            active.remove(old)
                        active.append(assignment)
                        scheduled += 1
                        self._mark_retried(original, actor_id, notes, batch, f"scheduled as assignment {assignment.id}")
                        result.outcomes.append(
                            RetryOutcome(failure_id=original.id, outcome="scheduled", assignment_id=assignment.id)
                        )
                    else:
                        replacement = build_failure(batch, placement)
                        if replacement.program_id is None:
                            replacement.program_id = original.program_id
                        if replacement.school_id is None:
                            replacement.school_id = original.school_id
                        replacement.supersedes_id = original.id
                        self.db.add(replacement)
                        failed += 1
                        self._mark_retried(
                            original,
                            actor_id,
                            notes,
                            batch,
                            f"failed again as {replacement.id} ({placement.reason.value})",
                            superseded_by_id=replacement.id,
                        )
                        result.outcomes.append(
                            RetryOutcome(failure_id=original.id, outcome="failed_again", new_failure_id=replacement.id)
                        )

                self._finish_batch(
                    batch,
                    session_count=len(pairs),
                    scheduled=scheduled,
                    failed=failed,
                    skipped=skipped,
                    not_attempted=not_attempted,
                    cancelled=token.cancelled,
                )
                log_activity(
                    self.db,
                    actor_id=actor_id,
                    action="scheduling.failures.retry",
                    entity_type="scheduling_batch",
                    entity_id=batch.id,
                    details={"failure_ids": [item.id for item in retryable], "scheduled": scheduled, "failed": failed},
                )
                self.db.commit()
                return result
            except Exception as exc:
                self._abort_batch(batch, exc)
                raise
            finally:
                self.running_batches.unregister(batch_id)

    def reschedule_assignments(
        self,
        assignment_ids: Sequence[str],
        *,
        actor_id: str | None = None,
        policy: SchedulingPolicy | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> BatchOutcome:
        old_assignments: list[ExamAssignment] = []
        for assignment_id in dict.fromkeys(assignment_ids):
            assignment = self.db.get(ExamAssignment, assignment_id)
            if assignment is None:
                raise ResourceNotFoundError("Exam assignment", assignment_id)
            if not assignment.is_active:
                raise SchedulerError(
                    "Assignment has already been superseded",
                    details={"assignment_id": assignment.id, "superseded_by_id": assignment.superseded_by_id},
                )
            old_assignments.append(assignment)
        semester_ids = {item.semester_id for item in old_assignments}
        if len(semester_ids) > 1:
            raise SchedulerError(
                "Assignments selected for rescheduling must belong to one semester",
                details={"semester_ids": sorted(semester_ids)},
            )

        policy = policy or self.default_policy()
        token = cancel_token or CancellationToken()
        scope = SchedulingScope(semester_id=old_assignments[0].semester_id)
        batch_id = str(uuid.uuid4())

        with self.scope_locks.hold(scope, batch_id):
            batch = self._start_batch(batch_id, BatchKind.reschedule, scope, actor_id, policy, token)
            try:
                requests = [
                    SessionRequest(unit_id=item.unit_id, class_ids=tuple(item.class_ids), lecturer_id=item.lecturer_id)
                    for item in old_assignments
                ]
                snapshot = load_snapshot(self.provider, scope, requests=requests)
                index, _ = self._seeded_index(snapshot, policy)
                allocator = SlotAllocator(index=index, slots=snapshot.slots, venues=snapshot.venues, policy=policy)

                outcome = BatchOutcome(batch=batch)
                for old, session in zip(old_assignments, snapshot.sessions):
                    if token.cancelled:
                        outcome.not_attempted_session_keys.append(old.session_key)
                        continue
                    placement = self._place_displacing(session, allocator, index, (old,))
                    if isinstance(placement, Placement):
                        replacement = build_assignment(batch, placement, snapshot.venue_names)
                        self._supersede(old, replacement)
                        outcome.assignments.append(replacement)
                        outcome.superseded_assignment_ids.append(old.id)
                    else:
                        outcome.failures.append(build_failure(batch, placement))

                self.db.add_all(outcome.assignments)
                self.db.add_all(outcome.failures)
                self._finish_batch(
                    batch,
                    session_count=len(old_assignments),
                    scheduled=len(outcome.assignments),
                    failed=len(outcome.failures),
                    skipped=0,
                    not_attempted=len(outcome.not_attempted_session_keys),
                    cancelled=token.cancelled,
                )
                log_activity(
                    self.db,
                    actor_id=actor_id,
                    action="scheduling.assignments.reschedule",
                    entity_type="scheduling_batch",
                    entity_id=batch.id,
                    details={
                        "assignment_ids": [item.id for item in old_assignments],
                        "rescheduled": len(outcome.assignments),
                        "failed": len(outcome.failures),
                    },
                )
                self.db.commit()
                return outcome
            except Exception as exc:
                self._abort_batch(batch, exc)
                raise
            finally:
                self.running_batches.unregister(batch_id)

    def _start_batch(
        self,
        batch_id: str,
        kind: BatchKind,
        scope: SchedulingScope,
        requested_by: str | None,
        policy: SchedulingPolicy,
        token: CancellationToken,
    ) -> SchedulingBatch:
        batch = SchedulingBatch(
            id=batch_id,
            kind=kind,
            status=BatchStatus.running,
            semester_id=scope.semester_id,
            program_id=scope.program_id,
            school_id=scope.school_id,
            requested_by_id=requested_by,
            policy=policy.model_dump(),
        )
        self.db.add(batch)
        self.db.commit()
        self.running_batches.register(batch_id, token)
        logger.info("Starting %s batch=%s %s", kind.value, batch_id, scope.describe())
        return batch

    def _finish_batch(
        self,
        batch: SchedulingBatch,
        *,
        session_count: int,
        scheduled: int,
        failed: int,
        skipped: int,
        not_attempted: int,
        cancelled: bool,
    ) -> None:
        batch.session_count = session_count
        batch.scheduled_count = scheduled
        batch.failed_count = failed
        batch.skipped_count = skipped
        batch.not_attempted_count = not_attempted
        batch.status = BatchStatus.cancelled if cancelled else BatchStatus.completed
        batch.finished_at = _utcnow()

        if cancelled:
            logger.warning(
                "Batch %s cancelled: %s scheduled, %s failed, %s not attempted",
                batch.id,
                scheduled,
                failed,
                not_attempted,
            )
        elif failed:
            logger.warning(
                "Batch %s completed with %s failure(s): %s scheduled, %s skipped",
                batch.id,
                failed,
                scheduled,
                skipped,
            )
        else:
            logger.info("Batch %s completed: %s scheduled, %s skipped", batch.id, scheduled, skipped)

    def _abort_batch(self, batch: SchedulingBatch, exc: Exception) -> None:
        batch_id = batch.id
        self.db.rollback()
        if isinstance(exc, ReferenceDataError):
            logger.error("Batch %s aborted on reference data: %s", batch_id, exc.message)
            message = exc.message
        else:
            logger.exception("Batch %s crashed", batch_id)
            message = str(exc) or exc.__class__.__name__

        record = self.db.get(SchedulingBatch, batch_id)
        if record is None:
            return
        record.status = BatchStatus.aborted
        record.error_message = message
        record.finished_at = _utcnow()
        record.scheduled_count = 0
        record.failed_count = 0
        self.db.commit()

    def _seeded_index(
        self,
        snapshot: ReferenceSnapshot,
        policy: SchedulingPolicy,
    ) -> tuple[ConflictIndex, list[ExamAssignment]]:
        index = ConflictIndex(
            venue_capacities={venue.id: venue.capacity for venue in snapshot.venues},
            venue_sharing=policy.venue_sharing,
        )
        active = self._active_assignments(snapshot.scope.semester_id)
        for assignment in active:
            index.seed(
                session_key=assignment.session_key,
                unit_id=assignment.unit_id,
                student_ids=assignment.student_ids,
                lecturer_id=assignment.lecturer_id,
                slot_key=(assignment.exam_date, assignment.slot_number),
                cells=[VenueCell(venue_id=item["venue_id"], seats=item["seats"]) for item in assignment.venue_allocations],
            )
        return index, active

    def _active_assignments(self, semester_id: str) -> list[ExamAssignment]:
        return list(
            self.db.execute(
                select(ExamAssignment)
                .where(ExamAssignment.semester_id == semester_id, ExamAssignment.superseded_by_id.is_(None))
                .order_by(ExamAssignment.exam_date, ExamAssignment.slot_number, ExamAssignment.session_key)
            ).scalars()
        )

    def _allocate(
        self,
        sessions: Iterable[ExamSession],
        allocator: SlotAllocator,
        index: ConflictIndex,
        token: CancellationToken,
        *,
        displaced: dict[str, tuple[ExamAssignment, ...]] | None = None,
    ) -> tuple[list[PlacementResult], list[ExamSession]]:
        displaced = displaced or {}
        results: list[PlacementResult] = []
        not_attempted: list[ExamSession] = []
        for session in sessions:
            if token.cancelled:
                not_attempted.append(session)
                continue
            if session.session_key in index:
                continue
            results.append(
                self._place_displacing(session, allocator, index, displaced.get(session.session_key, ()))
            )
        return results, not_attempted

    def _place_displacing(
        self,
        session: ExamSession,
        allocator: SlotAllocator,
        index: ConflictIndex,
        replaces: Sequence[ExamAssignment],
    ) -> PlacementResult:
        """Place ``session`` with the cells of ``replaces`` freed; they are put back if it fails."""
        released = [(old.session_key, index.release(old.session_key)) for old in replaces]
        placement = self._place_one(session, allocator)
        if not isinstance(placement, Placement):
            for session_key, footprint in released:
                if footprint is not None:
                    index.restore(session_key, footprint)
        return placement

    @staticmethod
    def _place_one(session: ExamSession, allocator: SlotAllocator) -> PlacementResult:
        if session.invalid_reason is not None:
            logger.info("Session %s has invalid references: %s", session.session_key, session.invalid_reason)
            return invalid_reference_failure(session)
        return allocator.allocate(session)

    @staticmethod
    def _supersede(old: ExamAssignment, replacement: ExamAssignment) -> None:
        old.superseded_by_id = replacement.id
        old.superseded_at = _utcnow()
        logger.info("Assignment %s superseded by %s", old.id, replacement.id)

    def _mark_retried(
        self,
        failure: SchedulingFailure,
        actor_id: str | None,
        notes: str | None,
        batch: SchedulingBatch,
        summary: str,
        *,
        superseded_by_id: str | None = None,
    ) -> None:
        retry_note = f"Retry batch {batch.id}: {summary}"
        failure_triage.mark_retried(
            self.db,
            failure,
            actor_id=actor_id,
            notes=f"{notes}\n{retry_note}" if notes else retry_note,
            superseded_by_id=superseded_by_id,
        )

    def _load_failures(self, failure_ids: Sequence[str]) -> list[SchedulingFailure]:
        failures: list[SchedulingFailure] = []
        for failure_id in dict.fromkeys(failure_ids):
            failure = self.db.get(SchedulingFailure, failure_id)
            if failure is None:
                raise ResourceNotFoundError("Scheduling failure", failure_id)
            failures.append(failure)
        return failures


def run_independent_batches(
    scopes: Sequence[SchedulingScope],
    *,
    session_factory: Callable[[], Session],
    provider_factory: Callable[[Session], ReferenceDataProvider] | None = None,
    requested_by: str | None = None,
    policy: SchedulingPolicy | None = None,
    settings: Settings | None = None,
    max_workers: int | None = None,
    scope_locks: ScopeLockRegistry | None = None,
) -> list[str]:
    """Run one batch per scope in parallel once the scopes are proven independent.

    The semesters involved stay locked for the whole fan-out, so no other batch
    can start between the disjointness check and the last worker finishing.
    Returns the batch ids in the order of ``scopes``.
    """
    settings = settings or get_settings()
    scope_locks = scope_locks or get_scope_locks()
    if provider_factory is None:
        provider_factory = partial(
            SqlReferenceDataProvider,
            default_duration_minutes=settings.exam_default_duration_minutes,
        )

    fan_out_id = f"fan-out-{uuid.uuid4()}"
    with ExitStack() as stack:
        for semester_scope in dict.fromkeys(scope.semester_wide() for scope in scopes):
            stack.enter_context(scope_locks.hold(semester_scope, fan_out_id))

        with session_factory() as db:
            provider = provider_factory(db)
            ensure_disjoint_scopes([load_snapshot(provider, scope) for scope in scopes])

        group_locks = ScopeLockRegistry(overlaps=operator.eq)

        def run_one(scope: SchedulingScope) -> str:
            with session_factory() as db:
                orchestrator = BatchOrchestrator(
                    db,
                    provider_factory(db),
                    settings=settings,
                    scope_locks=group_locks,
                )
                outcome = orchestrator.run_batch(scope, requested_by=requested_by, policy=policy)
                return outcome.batch.id

        workers = min(max_workers or settings.exam_max_parallel_batches, max(len(scopes), 1))
        logger.info("Fanning out %s independent batch(es) over %s worker(s)", len(scopes), workers)
        with ThreadPoolExecutor(max_workers=workers) as executor:
            return list(executor.map(run_one, scopes))
