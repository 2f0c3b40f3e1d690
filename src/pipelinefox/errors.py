"""
Structured error types for pipelinefox.

Every failure below the orchestrator surfaces as exactly one
``PipelineFoxError`` for its job. Errors carry a category for reporting,
the stage/job that produced them, and the underlying cause.

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                      PipelineFoxError                        │
        │        (category, stage, job, cause, cleanup_error)          │
        ├──────────────────────────────────────────────────────────────┤
        │  Container lifecycle        │  Model / parsing               │
        │  ───────────────────        │  ───────────────               │
        │  ImagePullError             │  UnknownStageError             │
        │  ContainerCreateError       │  UnknownScriptShapeError       │
        │  ContainerStartError        │  PipelineParseError            │
        │  ReadinessTimeoutError      │                                │
        │  ScriptInjectionError       │  Runtime                       │
        │  ExecError                  │  ───────                       │
        │   └── ScriptFailedError     │  RuntimeUnavailableError       │
        │  OutputStreamError          │  RuntimeCommandError           │
        │  ContainerRemoveError       │   └── ContainerNotFoundError   │
        │  JobTimeoutError            │                                │
        └──────────────────────────────────────────────────────────────┘

Removal failures are never raised in place of a job's outcome. The
lifecycle manager attaches them to the job result (or to the job's
primary error as ``cleanup_error``) and logs them.

Usage:
    from pipelinefox.errors import ImagePullError

    try:
        await runtime.pull_image(image)
    except RuntimeCommandError as exc:
        raise ImagePullError(f"failed to pull image {image}", cause=exc) from exc

Tags:
    error-handling, exception-hierarchy, pipelinefox
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any, Self

if TYPE_CHECKING:
    from pipelinefox.model import Job
    from pipelinefox.runner.results import JobResult


class ErrorCategory(str, Enum):
    """Error categories used for reporting and structured logs."""

    IMAGE = "IMAGE"             # Image inspect / pull
    CONTAINER = "CONTAINER"     # Create, start, inject, remove
    TIMEOUT = "TIMEOUT"         # Readiness or job deadline exceeded
    EXEC = "EXEC"               # Exec could not be created or attached
    USER_CODE = "USER_CODE"     # Job script exited non-zero
    OUTPUT = "OUTPUT"           # Output capture pipeline
    RUNTIME = "RUNTIME"         # Container runtime unavailable or misbehaving
    PARSE = "PARSE"             # CI file syntax / shape
    VALIDATION = "VALIDATION"   # Descriptor invariants
    UNKNOWN = "UNKNOWN"


class PipelineFoxError(Exception):
    """Base exception for all pipelinefox errors.

    Subclasses set ``default_category``. The orchestrator tags the error
    with the stage and job that produced it via :meth:`with_job`.
    """

    default_category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        stage: str | None = None,
        job: str | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.stage = stage
        self.job = job
        self.cause = cause
        self.cleanup_error: ContainerRemoveError | None = None
        # Jobs of the same pipeline run that finished before this failure
        self.completed: list[JobResult] = []
        if cause is not None:
            self.__cause__ = cause

    def with_job(self, job: Job) -> Self:
        """Tag this error with the job that produced it (fluent API)."""
        self.stage = job.stage
        self.job = job.name
        return self

    @property
    def location(self) -> str | None:
        if self.job is None:
            return None
        return f"{self.stage}/{self.job}"

    def __str__(self) -> str:
        if self.location:
            return f"[{self.location}] {self.message}"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
        }
        if self.stage is not None:
            result["stage"] = self.stage
        if self.job is not None:
            result["job"] = self.job
        if self.cause is not None:
            result["cause"] = str(self.cause)
        if self.cleanup_error is not None:
            result["cleanup_error"] = self.cleanup_error.message
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# RUNTIME ERRORS
# =============================================================================


class RuntimeUnavailableError(PipelineFoxError):
    """The container runtime cannot be reached (CLI missing, daemon down)."""

    default_category = ErrorCategory.RUNTIME


class RuntimeCommandError(PipelineFoxError):
    """A single runtime call failed.

    Raised by runtime adapters. The lifecycle manager wraps it into the
    step-specific error below, keeping it as ``cause``.
    """

    default_category = ErrorCategory.RUNTIME

    def __init__(
        self,
        message: str,
        *,
        command: list[str] | None = None,
        returncode: int | None = None,
        stderr: str = "",
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.command = command or []
        self.returncode = returncode
        self.stderr = stderr


class ContainerNotFoundError(RuntimeCommandError):
    """The runtime has no container by that id or name."""


# =============================================================================
# CONTAINER LIFECYCLE ERRORS
# =============================================================================


class ImagePullError(PipelineFoxError):
    default_category = ErrorCategory.IMAGE


class ContainerCreateError(PipelineFoxError):
    default_category = ErrorCategory.CONTAINER


class ContainerStartError(PipelineFoxError):
    """Container failed to start or exited before it was running."""

    default_category = ErrorCategory.CONTAINER


class ReadinessTimeoutError(PipelineFoxError):
    """Container did not report running before the readiness deadline."""

    default_category = ErrorCategory.TIMEOUT

    def __init__(self, message: str, *, timeout_seconds: float | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.timeout_seconds = timeout_seconds


class JobTimeoutError(PipelineFoxError):
    """Job exceeded its overall deadline."""

    default_category = ErrorCategory.TIMEOUT

    def __init__(self, message: str, *, timeout_seconds: float | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.timeout_seconds = timeout_seconds


class ScriptInjectionError(PipelineFoxError):
    default_category = ErrorCategory.CONTAINER


class ExecError(PipelineFoxError):
    default_category = ErrorCategory.EXEC


class ScriptFailedError(ExecError):
    """The job script ran and exited with a non-zero status."""

    default_category = ErrorCategory.USER_CODE

    def __init__(self, message: str, *, exit_code: int, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.exit_code = exit_code

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["exit_code"] = self.exit_code
        return result


class OutputStreamError(PipelineFoxError):
    default_category = ErrorCategory.OUTPUT


class ContainerRemoveError(PipelineFoxError):
    """Container removal failed. Reported, never fatal."""

    default_category = ErrorCategory.CONTAINER

    def __init__(self, message: str, *, container: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.container = container


# =============================================================================
# MODEL / PARSING ERRORS
# =============================================================================


class UnknownStageError(PipelineFoxError):
    """A job references a stage that is not declared."""

    default_category = ErrorCategory.VALIDATION


class UnknownScriptShapeError(PipelineFoxError):
    """A job's script is neither a single command nor a list of commands."""

    default_category = ErrorCategory.PARSE


class PipelineParseError(PipelineFoxError):
    """The CI file could not be read or is not a valid pipeline document."""

    default_category = ErrorCategory.PARSE


__all__ = [
    "ErrorCategory",
    "PipelineFoxError",
    "RuntimeUnavailableError",
    "RuntimeCommandError",
    "ContainerNotFoundError",
    "ImagePullError",
    "ContainerCreateError",
    "ContainerStartError",
    "ReadinessTimeoutError",
    "JobTimeoutError",
    "ScriptInjectionError",
    "ExecError",
    "ScriptFailedError",
    "OutputStreamError",
    "ContainerRemoveError",
    "UnknownStageError",
    "UnknownScriptShapeError",
    "PipelineParseError",
]
