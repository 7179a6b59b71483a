from __future__ import annotations

from contextlib import contextmanager
from itertools import combinations
import logging
from threading import Event, Lock
from typing import Callable, Iterator, Sequence

from examsched.core.exceptions import SchedulerError, ScopeLockedError
from examsched.services.reference_data import ReferenceSnapshot, SchedulingScope

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative cancel flag; the orchestrator polls it between sessions."""

    def __init__(self) -> None:
        self._event = Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class ScopeLockRegistry:
    """Holds scheduling scopes for in-flight batches.

    By default every scope in a semester conflicts with every other. A fan-out
    group that has already proven its scopes disjoint runs on a registry built
    with ``overlaps=operator.eq`` so only identical scopes collide.
    """

    def __init__(self, *, overlaps: Callable[[SchedulingScope, SchedulingScope], bool] | None = None) -> None:
        self._held: dict[SchedulingScope, str] = {}
        self._lock = Lock()
        self._overlaps = overlaps or SchedulingScope.overlaps

    def acquire(self, scope: SchedulingScope, owner: str) -> None:
        with self._lock:
            for held_scope, held_owner in self._held.items():
                if self._overlaps(held_scope, scope):
                    raise ScopeLockedError(
                        "Another scheduling batch is already running for an overlapping scope",
                        details={
                            "requested_scope": scope.describe(),
                            "held_scope": held_scope.describe(),
                            "held_by": held_owner,
                        },
                    )
            self._held[scope] = owner

    def release(self, scope: SchedulingScope) -> None:
        with self._lock:
            self._held.pop(scope, None)

    @contextmanager
    def hold(self, scope: SchedulingScope, owner: str) -> Iterator[None]:
        self.acquire(scope, owner)
        try:
            yield
        finally:
            self.release(scope)

    def is_locked(self, scope: SchedulingScope) -> bool:
        with self._lock:
            return any(self._overlaps(held, scope) for held in self._held)

    def clear(self) -> None:
        with self._lock:
            self._held.clear()


class RunningBatchRegistry:
    def __init__(self) -> None:
        self._tokens: dict[str, CancellationToken] = {}
        self._lock = Lock()

    def register(self, batch_id: str, token: CancellationToken) -> None:
        with self._lock:
            self._tokens[batch_id] = token

    def unregister(self, batch_id: str) -> None:
        with self._lock:
            self._tokens.pop(batch_id, None)

    def cancel(self, batch_id: str) -> bool:
        with self._lock:
            token = self._tokens.get(batch_id)
        if token is None:
            return False
        token.cancel()
        logger.info("Cancellation requested for batch=%s", batch_id)
        return True

    def is_running(self, batch_id: str) -> bool:
        with self._lock:
            return batch_id in self._tokens

    def clear(self) -> None:
        with self._lock:
            self._tokens.clear()


def _resources(snapshot: ReferenceSnapshot) -> dict[str, set[str]]:
    return {
        "students": {student for session in snapshot.sessions for student in session.student_ids},
        "lecturers": {session.lecturer_id for session in snapshot.sessions if session.lecturer_id},
        "venues": {venue.id for venue in snapshot.venues},
    }


def ensure_disjoint_scopes(snapshots: Sequence[ReferenceSnapshot]) -> None:
    """Refuse fan-out unless no two scopes share students, lecturers or venues."""
    resources = [(snapshot.scope, _resources(snapshot)) for snapshot in snapshots]
    for (first, first_resources), (second, second_resources) in combinations(resources, 2):
        if first == second:
            raise SchedulerError("Parallel batches require distinct scopes", details={"scope": first.describe()})
        shared = {
            kind: sorted(first_resources[kind] & second_resources[kind])
            for kind in first_resources
            if first_resources[kind] & second_resources[kind]
        }
        if shared:
            raise SchedulerError(
                "Parallel batches require scopes that share no students, lecturers or venues",
                details={"first": first.describe(), "second": second.describe(), "shared": shared},
            )


_scope_locks = ScopeLockRegistry()
_running_batches = RunningBatchRegistry()


def get_scope_locks() -> ScopeLockRegistry:
    return _scope_locks


def get_running_batches() -> RunningBatchRegistry:
    return _running_batches


def clear_batch_control() -> None:
    _scope_locks.clear()
    _running_batches.clear()
