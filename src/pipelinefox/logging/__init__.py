"""
pipelinefox logging - structured, job-aware logging.

Usage:
    from pipelinefox.logging import bind_context, configure_logging, get_logger

    configure_logging()
    log = get_logger(__name__)

    with bind_context(stage="build", job="compile"):
        log.info("job.started")
"""

from pipelinefox.logging.config import configure_logging, is_configured
from pipelinefox.logging.context import (
    LogContext,
    add_context_processor,
    bind_context,
    clear_context,
    get_context,
    get_logger,
)

__all__ = [
    "configure_logging",
    "is_configured",
    "LogContext",
    "add_context_processor",
    "bind_context",
    "clear_context",
    "get_context",
    "get_logger",
]
