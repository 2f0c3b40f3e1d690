"""Pipeline data model: jobs and the validated pipeline descriptor.

The descriptor is built once (by a parser or by hand) and is read-only
for the whole run. Construction is the only place the stage invariant is
checked: a job whose stage is not declared makes construction fail and no
descriptor is produced.

.. code-block:: text

    PipelineDescriptor
    ├── stages: ("build", "test", "deploy")     declared order
    └── jobs by stage
        ├── build  → (Job("compile"), Job("lint"))   insertion order
        ├── test   → (Job("unit"),)
        └── deploy → ()

Image resolution happens here too. Jobs without an explicit image get the
descriptor's default image, so the engine only ever reads a resolved
string.

Example:
    >>> job = Job.create("hello", "build", ["echo hello"])
    >>> pipeline = PipelineDescriptor.create(["build"], [job])
    >>> [j.name for j in pipeline.jobs_for("build")]
    ['hello']

Tags:
    pipelinefox, model, descriptor, immutable
"""

from __future__ import annotations

import dataclasses
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from pipelinefox.errors import UnknownStageError

DEFAULT_IMAGE = "ubuntu:25.10"


@dataclass(frozen=True)
class Job:
    """A named unit of work: one container running an ordered command list."""

    name: str
    stage: str
    script: tuple[str, ...] = ()
    image: str | None = None

    @classmethod
    def create(
        cls,
        name: str,
        stage: str,
        script: Iterable[str],
        *,
        image: str | None = None,
    ) -> Job:
        """Build a job, freezing the command list."""
        return cls(name=name, stage=stage, script=tuple(script), image=image)

    @property
    def label(self) -> str:
        """``stage/name`` tag used in output prefixes and logs."""
        return f"{self.stage}/{self.name}"


@dataclass(frozen=True)
class PipelineDescriptor:
    """Validated, immutable model of stages and jobs.

    Use :meth:`create`; the raw constructor skips validation.
    """

    stages: tuple[str, ...]
    jobs_by_stage: Mapping[str, tuple[Job, ...]] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        stages: Iterable[str],
        jobs: Iterable[Job],
        *,
        default_image: str = DEFAULT_IMAGE,
    ) -> PipelineDescriptor:
        """Validate jobs against the declared stages and resolve images.

        Raises:
            UnknownStageError: a job references an undeclared stage.
        """
        declared = tuple(dict.fromkeys(stages))
        grouped: dict[str, list[Job]] = {stage: [] for stage in declared}

        for job in jobs:
            if job.stage not in grouped:
                raise UnknownStageError(
                    f"Unknown stage {job.stage!r} for job {job.name!r}",
                    stage=job.stage,
                    job=job.name,
                )
            if job.image is None:
                job = dataclasses.replace(job, image=default_image)
            grouped[job.stage].append(job)

        return cls(
            stages=declared,
            jobs_by_stage=MappingProxyType({stage: tuple(js) for stage, js in grouped.items()}),
        )

    def jobs_for(self, stage: str) -> tuple[Job, ...]:
        return self.jobs_by_stage.get(stage, ())

    def iter_jobs(self) -> Iterator[Job]:
        """All jobs in stage order, then declaration order."""
        for stage in self.stages:
            yield from self.jobs_for(stage)

    def get_job(self, name: str) -> Job | None:
        for job in self.iter_jobs():
            if job.name == name:
                return job
        return None

    def select(self, names: Iterable[str]) -> PipelineDescriptor:
        """Return a descriptor restricted to the named jobs.

        Stage order and the stage set are kept; unknown names raise
        ``KeyError``.
        """
        wanted = set(names)
        missing = wanted - {job.name for job in self.iter_jobs()}
        if missing:
            raise KeyError(f"Unknown job(s): {', '.join(sorted(missing))}")
        return PipelineDescriptor(
            stages=self.stages,
            jobs_by_stage=MappingProxyType({
                stage: tuple(job for job in self.jobs_for(stage) if job.name in wanted)
                for stage in self.stages
            }),
        )

    def __len__(self) -> int:
        return sum(len(jobs) for jobs in self.jobs_by_stage.values())
