"""Fixed-interval polling for pending assignments and dispatch of pipelines."""

from __future__ import annotations

import threading
from typing import Callable

import structlog

from qamax_agent.runner.client import CloudClient
from qamax_agent.runner.models import Assignment
from qamax_agent.runner.tracker import ExecutionTracker

Dispatch = Callable[[Assignment], None]


def _is_timeout(exc: BaseException) -> bool:
    while exc is not None:
        if isinstance(exc, TimeoutError):
            return True
        exc = exc.__cause__ or getattr(exc, "reason", None)
        if not isinstance(exc, BaseException):
            return False
    return False


class AssignmentPoller:
    """Claims newly seen assignments and starts one thread per claim.

    Re-discovery of an ID that is still tracked is a no-op, so an assignment
    the service keeps listing as pending never runs twice concurrently.
    """

    def __init__(
        self,
        client: CloudClient,
        tracker: ExecutionTracker,
        execute: Dispatch,
        *,
        interval: float,
        stop: threading.Event | None = None,
        journal: structlog.BoundLogger | None = None,
    ) -> None:
        self._client = client
        self._tracker = tracker
        self._execute = execute
        self._interval = interval
        self._stop = stop or threading.Event()
        self._journal = journal
        self._log = structlog.get_logger("poller")

    def run(self) -> None:
        """Poll every interval until the stop event is set."""
        while not self._stop.wait(timeout=self._interval):
            self.poll_once()
        self._log.info("polling_stopped")

    def poll_once(self) -> list[str]:
        """Fetch pending work and dispatch what is new. Returns the dispatched IDs."""
        try:
            assignments = self._client.pending_assignments()
        except Exception as exc:
            if _is_timeout(exc):
                self._log.warning("poll_timed_out")
            else:
                self._log.error("poll_failed", error=str(exc))
            return []

        dispatched: list[str] = []
        for assignment in assignments:
            if self._stop.is_set():
                break
            if not assignment.id or not self._tracker.try_claim(assignment.id):
                continue
            if self._journal is not None:
                self._journal.info("execution_claimed", assignment_id=assignment.id)
            try:
                self._spawn(assignment)
            except Exception as exc:
                self._tracker.release(assignment.id)
                self._log.error("dispatch_failed", assignment_id=assignment.id, error=str(exc))
                continue
            dispatched.append(assignment.id)
        if dispatched:
            self._log.info("assignments_dispatched", assignment_ids=dispatched, active=self._tracker.count())
        return dispatched

    def _spawn(self, assignment: Assignment) -> None:
        thread = threading.Thread(
            target=self._execute,
            args=(assignment,),
            name=f"assignment-{assignment.id}",
            daemon=True,
        )
        thread.start()

