"""Structured logging configuration (structlog)."""

from __future__ import annotations

import logging
from pathlib import Path

import structlog


def configure_structlog(level: int = logging.INFO, *, json: bool = False) -> None:
    """Configure structlog for console output.

    Human-readable by default; ``json=True`` switches to one JSON object per
    line for log shippers. Call once at process startup.
    """
    renderer = (
        structlog.processors.JSONRenderer() if json else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


JOURNAL_FILE = "executions.jsonl"


def open_execution_journal(log_dir: Path, **context: object) -> structlog.BoundLogger:
    """Return a logger that appends assignment lifecycle events to *log_dir*.

    Each event becomes one JSON line in ``executions.jsonl`` carrying a UTC
    timestamp and the bound *context* (agent name, machine ID). The logger is
    independent of the console configuration. Opening the same directory twice
    reuses the existing file handler.
    """
    log_dir.mkdir(parents=True, exist_ok=True)
    path = log_dir / JOURNAL_FILE

    stdlib_logger = logging.getLogger(f"qamax_agent.journal.{path}")
    if not stdlib_logger.handlers:
        stdlib_logger.addHandler(logging.FileHandler(str(path), mode="a", encoding="utf-8"))
    stdlib_logger.setLevel(logging.INFO)
    stdlib_logger.propagate = False

    return structlog.wrap_logger(
        stdlib_logger,
        processors=[
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
            structlog.processors.JSONRenderer(sort_keys=True),
        ],
    ).bind(**context)
