from concurrent.futures import ThreadPoolExecutor
import operator

import pytest

from examsched.core.exceptions import SchedulerError, ScopeLockedError
from examsched.models.scheduling import SessionSnapshot
from examsched.services.batch_control import (
    CancellationToken,
    RunningBatchRegistry,
    ScopeLockRegistry,
    ensure_disjoint_scopes,
)
from examsched.services.reference_data import ExamSession, ReferenceSnapshot, SchedulingScope, VenueInfo


def _snapshot(scope: SchedulingScope, students: list[str], lecturer: str, venue_id: str) -> ReferenceSnapshot:
    session = ExamSession(
        session_key=f"u-{lecturer}:c",
        semester_id=scope.semester_id,
        unit_id=f"u-{lecturer}",
        class_ids=("c",),
        student_ids=frozenset(students),
        snapshot=SessionSnapshot(unit_code="U", unit_name="Unit"),
        lecturer_id=lecturer,
    )
    return ReferenceSnapshot(
        scope=scope,
        sessions=(session,),
        venues=(VenueInfo(id=venue_id, name=venue_id, capacity=10),),
        slots=(),
    )


def test_overlapping_scope_is_rejected_until_released():
    locks = ScopeLockRegistry()
    semester_wide = SchedulingScope("sem-1")
    program_scope = SchedulingScope("sem-1", program_id="p1")

    with locks.hold(semester_wide, "batch-1"):
        with pytest.raises(ScopeLockedError) as excinfo:
            locks.acquire(program_scope, "batch-2")
        assert excinfo.value.status_code == 409
        assert excinfo.value.details["held_by"] == "batch-1"

    with locks.hold(program_scope, "batch-2"):
        assert locks.is_locked(semester_wide)
    assert not locks.is_locked(semester_wide)


def test_any_two_scopes_in_one_semester_are_serialized():
    locks = ScopeLockRegistry()
    with locks.hold(SchedulingScope("sem-1", program_id="p1"), "a"):
        for other in (SchedulingScope("sem-1", program_id="p2"), SchedulingScope("sem-1", school_id="s1")):
            with pytest.raises(ScopeLockedError) as excinfo:
                locks.acquire(other, "b")
            assert excinfo.value.details["held_by"] == "a"
        with locks.hold(SchedulingScope("sem-2", program_id="p2"), "c"):
            assert locks.is_locked(SchedulingScope("sem-2"))


def test_exact_match_registry_only_blocks_identical_scopes():
    locks = ScopeLockRegistry(overlaps=operator.eq)
    with locks.hold(SchedulingScope("sem-1", school_id="x"), "a"):
        with locks.hold(SchedulingScope("sem-1", school_id="y"), "b"):
            with pytest.raises(ScopeLockedError):
                locks.acquire(SchedulingScope("sem-1", school_id="x"), "c")


def test_only_one_concurrent_holder_wins():
    locks = ScopeLockRegistry()
    scope = SchedulingScope("sem-1")

    def try_acquire(owner: str) -> bool:
        try:
            locks.acquire(scope, owner)
        except ScopeLockedError:
            return False
        return True

    with ThreadPoolExecutor(max_workers=8) as executor:
        results = list(executor.map(try_acquire, [f"batch-{number}" for number in range(8)]))

    assert results.count(True) == 1


def test_running_batch_registry_sets_token():
    registry = RunningBatchRegistry()
    token = CancellationToken()
    registry.register("batch-1", token)

    assert registry.cancel("batch-1")
    assert token.cancelled
    registry.unregister("batch-1")
    assert not registry.cancel("batch-1")


def test_disjoint_snapshots_pass():
    ensure_disjoint_scopes(
        [
            _snapshot(SchedulingScope("sem-1", school_id="x"), ["s1"], "L1", "v1"),
            _snapshot(SchedulingScope("sem-1", school_id="y"), ["s2"], "L2", "v2"),
        ]
    )


def test_shared_resources_block_fan_out():
    with pytest.raises(SchedulerError) as excinfo:
        ensure_disjoint_scopes(
            [
                _snapshot(SchedulingScope("sem-1", school_id="x"), ["s1", "s9"], "L1", "v1"),
                _snapshot(SchedulingScope("sem-1", school_id="y"), ["s2", "s9"], "L2", "v1"),
            ]
        )

    assert excinfo.value.details["shared"] == {"students": ["s9"], "venues": ["v1"]}
