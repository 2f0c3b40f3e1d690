"""Result models for job and pipeline runs."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pipelinefox.errors import ContainerRemoveError
from pipelinefox.model import Job


@dataclass
class JobResult:
    """Outcome of one successful job execution.

    ``cleanup_error`` is set when the container could not be removed; the
    job itself still succeeded.
    """

    job: Job
    exit_code: int
    duration_seconds: float
    container_name: str | None = None
    cleanup_error: ContainerRemoveError | None = None

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage": self.job.stage,
            "job": self.job.name,
            "exit_code": self.exit_code,
            "duration_seconds": round(self.duration_seconds, 3),
            "container": self.container_name,
            "cleanup_error": self.cleanup_error.message if self.cleanup_error else None,
        }


@dataclass
class PipelineResult:
    """Outcome of a pipeline run that completed every job."""

    run_id: str
    results: list[JobResult] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return all(result.succeeded for result in self.results)

    @property
    def cleanup_errors(self) -> list[ContainerRemoveError]:
        return [r.cleanup_error for r in self.results if r.cleanup_error is not None]

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "succeeded": self.succeeded,
            "duration_seconds": round(self.duration_seconds, 3),
            "jobs": [result.to_dict() for result in self.results],
        }
