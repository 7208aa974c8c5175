"""Structured logging for discovery runs.

Works for local development (console renderer) and deployments (JSON logs).

Usage:
    from keygraph.core.logging import get_logger, configure_logging

    configure_logging(log_level="INFO", log_format="console")

    logger = get_logger(__name__)
    logger.info("db_fks_preserved", source_table="orders", target_table="users")

    with log_context(project_id="p-1", datasource_id="ds-1"):
        logger.info("candidates_collected", count=12)
"""

from __future__ import annotations

import logging
import sys
from collections.abc import MutableMapping
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, cast

import structlog
from structlog.typing import FilteringBoundLogger

# Context variables for correlation
_run_context: ContextVar[dict[str, Any] | None] = ContextVar("run_context", default=None)


@dataclass
class RunMetrics:
    """Counters collected during one discovery run."""

    run_id: str
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None

    llm_calls: int = 0
    llm_input_tokens: int = 0
    llm_output_tokens: int = 0
    join_probes: int = 0
    join_probe_failures: int = 0
    db_writes: int = 0

    # Phase timings (seconds)
    timings: dict[str, float] = field(default_factory=dict)

    @property
    def duration_seconds(self) -> float:
        """Get duration in seconds."""
        if self.end_time:
            return (self.end_time - self.start_time).total_seconds()
        return (datetime.now(UTC) - self.start_time).total_seconds()

    def record_timing(self, operation: str, seconds: float) -> None:
        """Record timing for a phase or sub-operation."""
        self.timings[operation] = self.timings.get(operation, 0.0) + seconds

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "run_id": self.run_id,
            "duration_seconds": self.duration_seconds,
            "llm_calls": self.llm_calls,
            "llm_input_tokens": self.llm_input_tokens,
            "llm_output_tokens": self.llm_output_tokens,
            "join_probes": self.join_probes,
            "join_probe_failures": self.join_probe_failures,
            "db_writes": self.db_writes,
            "timings": self.timings,
        }


_current_metrics: ContextVar[RunMetrics | None] = ContextVar("current_metrics", default=None)


def start_run_metrics(run_id: str) -> RunMetrics:
    """Start collecting metrics for a discovery run."""
    metrics = RunMetrics(run_id=run_id)
    _current_metrics.set(metrics)
    return metrics


def get_run_metrics() -> RunMetrics | None:
    """Get current run metrics."""
    return _current_metrics.get()


def end_run_metrics() -> RunMetrics | None:
    """End run metrics collection."""
    metrics = _current_metrics.get()
    if metrics:
        metrics.end_time = datetime.now(UTC)
        _current_metrics.set(None)
    return metrics


def _add_run_context(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Processor to add run context to log events."""
    context = _run_context.get()
    if context:
        event_dict.update(context)
    return event_dict


def _add_metrics_context(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Processor to tag events with the active run id."""
    metrics = _current_metrics.get()
    if metrics:
        event_dict["_run_id"] = metrics.run_id
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    log_format: str = "console",
    show_timestamps: bool = True,
    color: bool = True,
) -> None:
    """Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Output format ("console" for development, "json" for production)
        show_timestamps: Whether to show timestamps
        color: Whether to use colors in console mode
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        _add_run_context,
        _add_metrics_context,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if show_timestamps:
        shared_processors.insert(0, structlog.processors.TimeStamper(fmt="iso", utc=True))

    if log_format == "json":
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(
                colors=color,
                exception_formatter=structlog.dev.plain_traceback,
            ),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, log_level.upper())),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    # Also configure stdlib logging for libraries (sqlalchemy, httpx)
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper()),
        handlers=[logging.StreamHandler(sys.stderr)],
        force=True,
    )


def get_logger(name: str | None = None) -> FilteringBoundLogger:
    """Get a structured logger.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Bound structlog logger
    """
    return cast(FilteringBoundLogger, structlog.get_logger(name))


class LogContext:
    """Context manager for adding context to logs within a scope."""

    def __init__(self, **context: Any):
        self.context = context
        self.token: Any = None

    def __enter__(self) -> LogContext:
        current = _run_context.get() or {}
        self.token = _run_context.set({**current, **self.context})
        return self

    def __exit__(self, *args: Any) -> None:
        if self.token:
            _run_context.reset(self.token)


def log_context(**context: Any) -> LogContext:
    """Create a context manager for scoped logging context.

    Usage:
        with log_context(project_id="abc", phase="validate"):
            logger.info("processing")  # Will include project_id and phase
    """
    return LogContext(**context)


def increment_llm_call(input_tokens: int = 0, output_tokens: int = 0) -> None:
    """Increment LLM call counter in current run metrics."""
    metrics = _current_metrics.get()
    if metrics:
        metrics.llm_calls += 1
        metrics.llm_input_tokens += input_tokens
        metrics.llm_output_tokens += output_tokens


def increment_join_probe(failed: bool = False) -> None:
    """Increment join probe counters in current run metrics."""
    metrics = _current_metrics.get()
    if metrics:
        metrics.join_probes += 1
        if failed:
            metrics.join_probe_failures += 1


def increment_db_write() -> None:
    """Increment database write counter in current run metrics."""
    metrics = _current_metrics.get()
    if metrics:
        metrics.db_writes += 1


def record_operation_timing(operation: str, seconds: float) -> None:
    """Record timing for a sub-operation in current run metrics."""
    metrics = _current_metrics.get()
    if metrics:
        metrics.record_timing(operation, seconds)


# Initialize with default configuration
configure_logging()
