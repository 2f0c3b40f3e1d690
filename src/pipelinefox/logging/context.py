"""
Logging context management using contextvars.

Run, stage and job identifiers are attached to every log entry without
passing them through each call. ``contextvars`` keeps this asyncio-safe:
each job task sees its own context even when a stage's jobs run
concurrently.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import asdict, dataclass, replace
from typing import Any

import structlog


@dataclass(frozen=True)
class LogContext:
    """Execution context attached to all log entries."""

    run_id: str | None = None
    stage: str | None = None
    job: str | None = None
    container: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Return non-None fields as dict."""
        return {k: v for k, v in asdict(self).items() if v is not None}

    def merge(self, **kwargs: Any) -> LogContext:
        """Create new context with merged values."""
        return replace(self, **{k: v for k, v in kwargs.items() if v is not None})


_log_context: ContextVar[LogContext] = ContextVar("pipelinefox_log_context")  # noqa: B039


def get_context() -> LogContext:
    """Get the current log context."""
    return _log_context.get(LogContext())


def clear_context() -> None:
    """Clear the current context (reset to empty)."""
    _log_context.set(LogContext())


@contextmanager
def bind_context(**kwargs: Any) -> Iterator[LogContext]:
    """Merge values into the current context for the duration of a block.

    Usage:
        with bind_context(stage="build", job="compile"):
            log.info("job.started")
    """
    updated = get_context().merge(**kwargs)
    token = _log_context.set(updated)
    try:
        yield updated
    finally:
        _log_context.reset(token)


def add_context_processor(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Structlog processor that adds the execution context to every entry."""
    for key, value in get_context().to_dict().items():
        event_dict.setdefault(key, value)
    return event_dict


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger (typically ``get_logger(__name__)``)."""
    return structlog.get_logger(name)
