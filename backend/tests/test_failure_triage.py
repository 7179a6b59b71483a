from datetime import date

import pytest
from sqlalchemy import select

from examsched.core.exceptions import InvalidTransitionError, ResourceNotFoundError
from examsched.models.activity_log import ActivityLog
from examsched.models.scheduling import FailureReason, FailureStatus, SchedulingFailure, SessionSnapshot
from examsched.schemas.conflict import (
    AttemptedCell,
    LecturerConflictDetails,
    NoVenueCapacityDetails,
    SlotsExhaustedDetails,
    StudentConflictDetails,
)
from examsched.services import failure_triage


def _failure(
    db,
    unit_code: str,
    details,
    *,
    semester_id: str = "sem-1",
    program_id: str | None = "prog-1",
    class_names: list[str] | None = None,
    status: FailureStatus = FailureStatus.pending,
) -> SchedulingFailure:
    failure = SchedulingFailure(
        batch_id="batch-1",
        semester_id=semester_id,
        program_id=program_id,
        unit_id=f"unit-{unit_code}",
        class_ids=["class-1"],
        session_key=f"unit-{unit_code}:class-1",
        student_count=40,
        snapshot=SessionSnapshot(
            unit_code=unit_code,
            unit_name=f"Introduction to {unit_code}",
            class_names=class_names or ["BSC Y1 A"],
        ),
        reason_code=FailureReason(details.reason_code),
        failure_reason="could not place",
        conflict_details=details.model_dump(mode="json"),
        status=status,
    )
    db.add(failure)
    db.commit()
    return failure


def _capacity(required: int = 45) -> NoVenueCapacityDetails:
    return NoVenueCapacityDetails(required_seats=required, largest_venue_capacity=30, total_venue_capacity=30)


def test_resolve_stamps_actor_and_logs_activity(db):
    failure = _failure(db, "CS101", _capacity())

    changed = failure_triage.resolve_failure(db, failure, actor_id="admin-1", notes="moved to block B")
    db.commit()

    assert changed
    assert failure.status == FailureStatus.resolved
    assert failure.resolved_by_id == "admin-1"
    assert failure.resolved_at is not None
    assert failure.resolution_notes == "moved to block B"
    entry = db.execute(select(ActivityLog).where(ActivityLog.entity_id == failure.id)).scalar_one()
    assert entry.action == "scheduling_failure.resolve"
    assert entry.details["from_status"] == "pending"
    assert entry.details["to_status"] == "resolved"


def test_repeating_an_action_is_a_noop(db):
    failure = _failure(db, "CS101", _capacity(), status=FailureStatus.ignored)

    assert failure_triage.ignore_failure(db, failure, actor_id="admin-2") is False
    assert failure.resolved_by_id is None
    assert db.execute(select(ActivityLog)).first() is None


@pytest.mark.parametrize(
    ("status", "action"),
    [
        (FailureStatus.resolved, "ignore"),
        (FailureStatus.ignored, "resolve"),
        (FailureStatus.retried, "revert"),
        (FailureStatus.retried, "resolve"),
        (FailureStatus.pending, "revert"),
        (FailureStatus.resolved, "retry"),
    ],
)
def test_disallowed_edges_raise(db, status, action):
    failure = _failure(db, "CS101", _capacity(), status=status)

    with pytest.raises(InvalidTransitionError) as exc_info:
        failure_triage.transition(db, failure, action, actor_id="admin-1")

    assert exc_info.value.details == {"current_status": status.value, "action": action}
    assert failure.status == status


def test_revert_returns_ignored_failure_to_pending(db):
    failure = _failure(db, "CS101", _capacity())
    failure_triage.ignore_failure(db, failure, actor_id="admin-1")

    assert failure_triage.revert_failure(db, failure, actor_id="admin-2", notes="needs a venue after all")
    db.commit()

    assert failure.status == FailureStatus.pending
    assert failure.resolved_by_id == "admin-2"
    actions = db.execute(select(ActivityLog.action).order_by(ActivityLog.action)).scalars().all()
    assert actions == ["scheduling_failure.ignore", "scheduling_failure.revert"]


def test_mark_retried_links_replacement(db):
    failure = _failure(db, "CS101", _capacity())

    failure_triage.mark_retried(db, failure, actor_id=None, notes="retry", superseded_by_id="failure-2")

    assert failure.status == FailureStatus.retried
    assert failure.superseded_by_id == "failure-2"


def test_delete_records_activity_before_removing(db):
    failure = _failure(db, "CS101", _capacity())
    failure_id = failure.id

    failure_triage.delete_failure(db, failure, actor_id="admin-1")
    db.commit()

    assert db.get(SchedulingFailure, failure_id) is None
    entry = db.execute(select(ActivityLog)).scalar_one()
    assert entry.action == "scheduling_failure.delete"
    assert entry.details["unit_code"] == "CS101"
    assert entry.details["reason_code"] == "NO_VENUE_CAPACITY"


def test_get_failure_raises_not_found(db):
    with pytest.raises(ResourceNotFoundError):
        failure_triage.get_failure(db, "missing")


def test_list_failures_filters_and_searches(db):
    _failure(db, "CS101", _capacity(), class_names=["BSC Y1 A"])
    _failure(db, "MA201", StudentConflictDetails(conflicting_student_ids=["s1"]), class_names=["Maths Y2"])
    _failure(db, "PH301", _capacity(), program_id="prog-2", status=FailureStatus.resolved)
    _failure(db, "CS999", _capacity(), semester_id="sem-2")

    pending = failure_triage.list_failures(db, status=FailureStatus.pending, semester_id="sem-1")
    by_reason = failure_triage.list_failures(db, reason_code=FailureReason.student_conflict)
    by_program = failure_triage.list_failures(db, program_id="prog-2")
    by_class = failure_triage.list_failures(db, search="maths")
    by_code = failure_triage.list_failures(db, search="cs")
    paged = failure_triage.list_failures(db, limit=2)

    assert {item.unit_code for item in pending} == {"CS101", "MA201"}
    assert [item.unit_code for item in by_reason] == ["MA201"]
    assert [item.unit_code for item in by_program] == ["PH301"]
    assert [item.unit_code for item in by_class] == ["MA201"]
    assert {item.unit_code for item in by_code} == {"CS101", "CS999"}
    assert len(paged) == 2


def test_statistics_count_by_status_and_reason(db):
    _failure(db, "CS101", _capacity())
    _failure(db, "CS102", _capacity(), status=FailureStatus.resolved)
    _failure(db, "MA201", StudentConflictDetails(conflicting_student_ids=["s1"]), status=FailureStatus.ignored)
    _failure(db, "XX100", _capacity(), semester_id="sem-2")

    stats = failure_triage.failure_statistics(db, semester_id="sem-1")

    assert stats.total == 3
    assert (stats.pending, stats.resolved, stats.retried, stats.ignored) == (1, 1, 0, 1)
    assert stats.by_reason == {"NO_VENUE_CAPACITY": 2, "STUDENT_CONFLICT": 1}


def test_conflict_summary_per_reason(db):
    attempted = AttemptedCell(exam_date=date(2026, 11, 2), slot_number=1, start_time="09:00", end_time="11:00")
    capacity = _failure(db, "CS101", _capacity(45))
    students = _failure(
        db, "MA201", StudentConflictDetails(attempted=attempted, conflicting_student_ids=["s1", "s2"])
    )
    lecturer = _failure(
        db,
        "PH301",
        LecturerConflictDetails(attempted=attempted, lecturer_id="L1", conflicting_unit_ids=["unit-CS101"]),
    )
    exhausted = _failure(
        db,
        "EN101",
        SlotsExhaustedDetails(candidates_examined=4, rejections={"student_conflict": 3, "venue_full": 1}),
    )

    assert failure_triage.conflict_summary(capacity) == "CS101: needs 45 seats, largest venue holds 30"
    assert failure_triage.conflict_summary(students) == (
        "MA201 at 2026-11-02 slot 1: 2 student(s) already sitting another exam"
    )
    assert failure_triage.conflict_summary(lecturer) == "PH301 at 2026-11-02 slot 1: lecturer L1 busy with unit-CS101"
    assert failure_triage.conflict_summary(exhausted) == (
        "EN101: no free slot in 4 candidate(s) (student_conflict 3, venue_full 1)"
    )
