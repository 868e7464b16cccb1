"""Periodic liveness/load reporting with exponential backoff on failure."""

from __future__ import annotations

import threading
from typing import Callable

import structlog

from qamax_agent.common.constants import HEARTBEAT_FAILURE_ALERT, MAX_HEARTBEAT_BACKOFF
from qamax_agent.runner.client import CloudClient
from qamax_agent.runner.models import AGENT_BUSY, AGENT_ONLINE, HeartbeatRequest, SystemMetrics
from qamax_agent.runner.tracker import ExecutionTracker

MetricsProbe = Callable[[int], "SystemMetrics | None"]


def next_delay(interval: float, failures: int, cap: float = MAX_HEARTBEAT_BACKOFF) -> float:
    """Seconds to sleep before the next heartbeat.

    The base interval while healthy; ``interval * 2**failures`` clamped to
    *cap* after consecutive failures.
    """
    if failures <= 0:
        return interval
    # Clamp the exponent too so a long outage cannot overflow the float
    return min(interval * 2 ** min(failures, 32), cap)


class HeartbeatScheduler:
    """Context manager that sends heartbeats on a background daemon thread.

    Usage::

        with HeartbeatScheduler(client, tracker, interval=60, stop=stop):
            # ... poll and execute assignments ...

    Heartbeat failures only stretch the interval; they never stop the loop.
    """

    def __init__(
        self,
        client: CloudClient,
        tracker: ExecutionTracker,
        *,
        interval: float,
        metrics: MetricsProbe | None = None,
        stop: threading.Event | None = None,
        max_backoff: float = MAX_HEARTBEAT_BACKOFF,
    ) -> None:
        self._client = client
        self._tracker = tracker
        self._interval = interval
        self._metrics = metrics
        self._max_backoff = max_backoff
        # Set by the root shutdown signal or on __exit__
        self._stop = stop or threading.Event()
        self._thread: threading.Thread | None = None
        self.failures = 0
        self._log = structlog.get_logger("heartbeat")

    @property
    def delay(self) -> float:
        return next_delay(self._interval, self.failures, self._max_backoff)

    def __enter__(self) -> HeartbeatScheduler:
        self._thread = threading.Thread(
            target=self._beat_loop,
            name="heartbeat",
            daemon=True,
        )
        self._thread.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=5)

    def build_request(self) -> HeartbeatRequest:
        active = sorted(self._tracker.active_ids())
        snapshot = self._metrics(len(active)) if self._metrics is not None else None
        return HeartbeatRequest(
            status=AGENT_BUSY if active else AGENT_ONLINE,
            active_tests=active,
            system_metrics=snapshot,
        )

    def beat(self) -> bool:
        """Send one heartbeat and update the failure counter."""
        try:
            self._client.send_heartbeat(self.build_request())
        except Exception as exc:
            self.failures += 1
            log = self._log.error if self.failures >= HEARTBEAT_FAILURE_ALERT else self._log.warning
            log("heartbeat_failed", consecutive_failures=self.failures, error=str(exc))
            return False
        if self.failures:
            self._log.info("heartbeat_recovered", after_failures=self.failures)
        self.failures = 0
        return True

    def _beat_loop(self) -> None:
        """Sleep for the current delay, then beat, until stopped."""
        while not self._stop.is_set():
            wait = self.delay
            if self.failures:
                self._log.warning(
                    "heartbeat_backoff",
                    delay_seconds=wait,
                    consecutive_failures=self.failures,
                )
            if self._stop.wait(timeout=wait):
                break
            self.beat()
