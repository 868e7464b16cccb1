"""In-flight assignment bookkeeping shared by the poller, pipelines and heartbeat."""

from __future__ import annotations

import threading


class ExecutionTracker:
    """Concurrency-safe set of in-flight assignment IDs.

    Membership and count live under one condition variable, so the count
    observed by any reader always equals the size of the ID set. Releasing
    the last claim wakes everyone blocked in :meth:`wait_idle`.

    ``limit`` caps the number of simultaneous claims; ``0`` means unbounded.
    """

    def __init__(self, limit: int = 0) -> None:
        self._limit = max(0, limit)
        self._ids: set[str] = set()
        self._cond = threading.Condition(threading.Lock())

    def try_claim(self, assignment_id: str) -> bool:
        """Insert *assignment_id* unless it is already tracked or the cap is reached."""
        with self._cond:
            if assignment_id in self._ids:
                return False
            if self._limit and len(self._ids) >= self._limit:
                return False
            self._ids.add(assignment_id)
            return True

    def release(self, assignment_id: str) -> None:
        with self._cond:
            self._ids.discard(assignment_id)
            if not self._ids:
                self._cond.notify_all()

    def active_ids(self) -> frozenset[str]:
        with self._cond:
            return frozenset(self._ids)

    def count(self) -> int:
        with self._cond:
            return len(self._ids)

    def __contains__(self, assignment_id: object) -> bool:
        with self._cond:
            return assignment_id in self._ids

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until nothing is in flight. Returns False if *timeout* elapsed first."""
        with self._cond:
            return self._cond.wait_for(lambda: not self._ids, timeout=timeout)
