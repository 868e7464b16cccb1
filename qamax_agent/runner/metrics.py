"""CPU and memory probe for heartbeats (psutil)."""

from __future__ import annotations

import psutil
import structlog

from qamax_agent.runner.models import SystemMetrics

_log = structlog.get_logger("metrics")


class MetricsCollector:
    """Samples system load; either reading may be unavailable.

    ``cpu_percent`` is measured since the previous call, so the first sample
    is primed at construction time.
    """

    def __init__(self) -> None:
        self._cpu()

    @staticmethod
    def _cpu() -> float | None:
        try:
            return float(psutil.cpu_percent(interval=None))
        except Exception as exc:
            _log.debug("cpu_probe_failed", error=str(exc))
            return None

    @staticmethod
    def _memory() -> float | None:
        try:
            return float(psutil.virtual_memory().percent)
        except Exception as exc:
            _log.debug("memory_probe_failed", error=str(exc))
            return None

    def collect(self, active_tests: int) -> SystemMetrics | None:
        """Return a snapshot, or None when neither reading can be taken."""
        cpu = self._cpu()
        mem = self._memory()
        if cpu is None and mem is None:
            return None
        return SystemMetrics(
            cpu_percent=round(cpu or 0.0, 1),
            memory_percent=round(mem or 0.0, 1),
            active_tests=active_tests,
        )
