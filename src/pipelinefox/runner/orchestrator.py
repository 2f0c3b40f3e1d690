"""Pipeline orchestrator: stages in order, jobs per stage, fail-fast.

.. code-block:: text

    run_pipeline(descriptor, stdout, stderr)
      for stage in descriptor.stages:            strict declared order
        ├── run stage jobs                         sequential by default,
        │     └── ContainerLifecycle(job).run()    bounded-parallel if enabled
        ├── barrier: every job of the stage done (output drained, container
        │   removed) before the next stage starts
        └── first job error → abort, re-raise tagged with stage/job

There is no retry and no continue-on-error mode. The first failure is the
pipeline's result. Sinks are only used for the duration of the call; the
runner holds no output state between runs.
"""

from __future__ import annotations

import asyncio
import dataclasses
import time
import uuid

from pipelinefox.errors import PipelineFoxError
from pipelinefox.logging import bind_context, get_logger
from pipelinefox.model import Job, PipelineDescriptor
from pipelinefox.runner.capture import LineFormatter, Sink
from pipelinefox.runner.lifecycle import ContainerLifecycle
from pipelinefox.runner.results import JobResult, PipelineResult
from pipelinefox.runtimes import ContainerRuntime
from pipelinefox.settings import PipelineFoxSettings, get_settings

logger = get_logger(__name__)


class PipelineRunner:
    """Runs pipelines and single jobs against a container runtime.

    Parameters
    ----------
    runtime
        Container runtime capability; shared by all jobs of a run.
    settings
        Runner settings; defaults to :func:`get_settings`.
    max_parallel_jobs
        Jobs of one stage allowed to run at once. Overrides settings.

    Example::

        runner = PipelineRunner(DockerCliRuntime.from_path())
        result = await runner.run_pipeline(pipeline, sys.stdout.buffer, sys.stderr.buffer)
    """

    def __init__(
        self,
        runtime: ContainerRuntime,
        *,
        settings: PipelineFoxSettings | None = None,
        max_parallel_jobs: int | None = None,
    ) -> None:
        self.runtime = runtime
        self.settings = settings or get_settings()
        self.max_parallel_jobs = max_parallel_jobs or self.settings.max_parallel_jobs
        self.formatter = LineFormatter(color=self.settings.color)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def run_pipeline(
        self,
        descriptor: PipelineDescriptor,
        stdout: Sink,
        stderr: Sink,
    ) -> PipelineResult:
        """Run every stage in order.

        Raises:
            PipelineFoxError: the first job failure, tagged with its stage/job.
        """
        run_id = uuid.uuid4().hex[:12]
        started = time.monotonic()
        result = PipelineResult(run_id=run_id)

        with bind_context(run_id=run_id):
            logger.info("pipeline.started", stages=list(descriptor.stages), jobs=len(descriptor))
            for stage in descriptor.stages:
                jobs = descriptor.jobs_for(stage)
                with bind_context(stage=stage):
                    logger.info("stage.started", jobs=len(jobs))
                    try:
                        await self._run_stage(jobs, stdout, stderr, run_id, result.results)
                    except PipelineFoxError as exc:
                        exc.completed = list(result.results)
                        raise
                    logger.info("stage.completed")

            result.duration_seconds = time.monotonic() - started
            logger.info(
                "pipeline.completed",
                duration_seconds=round(result.duration_seconds, 3),
                cleanup_errors=len(result.cleanup_errors),
            )
        return result

    async def _run_stage(
        self,
        jobs: tuple[Job, ...],
        stdout: Sink,
        stderr: Sink,
        run_id: str,
        results: list[JobResult],
    ) -> None:
        """Run one stage, appending each finished job to ``results``."""
        if self.max_parallel_jobs <= 1 or len(jobs) <= 1:
            for job in jobs:
                results.append(await self._run_job(job, stdout, stderr, run_id))
            return

        semaphore = asyncio.Semaphore(self.max_parallel_jobs)
        errors: list[BaseException] = []

        async def guarded(job: Job) -> JobResult | None:
            async with semaphore:
                # Jobs not yet started are skipped once a sibling failed
                if errors:
                    logger.info("job.skipped", job=job.name)
                    return None
                try:
                    return await self._run_job(job, stdout, stderr, run_id)
                except Exception as exc:
                    errors.append(exc)
                    raise

        tasks = [asyncio.create_task(guarded(job), name=job.label) for job in jobs]
        # Barrier: in-flight jobs finish (and tear down) before we return
        outcomes = await asyncio.gather(*tasks, return_exceptions=True)

        results.extend(outcome for outcome in outcomes if isinstance(outcome, JobResult))
        if errors:
            raise errors[0]

    # ------------------------------------------------------------------
    # Single job
    # ------------------------------------------------------------------

    async def run_pipeline_job(self, job: Job, stdout: Sink, stderr: Sink) -> JobResult:
        """Run one job outside a pipeline.

        A job without an image gets the configured default image.
        """
        if job.image is None:
            job = dataclasses.replace(job, image=self.settings.default_image)
        return await self._run_job(job, stdout, stderr, uuid.uuid4().hex[:12])

    async def _run_job(self, job: Job, stdout: Sink, stderr: Sink, run_id: str) -> JobResult:
        lifecycle = ContainerLifecycle(
            self.runtime,
            job,
            settings=self.settings,
            run_id=run_id,
            formatter=self.formatter,
        )
        with bind_context(run_id=run_id, stage=job.stage, job=job.name, container=lifecycle.container_name):
            logger.info("job.started", image=job.image, commands=len(job.script))
            try:
                result = await lifecycle.run(stdout, stderr)
            except PipelineFoxError as exc:
                logger.error("job.failed", **exc.to_dict())
                raise
            logger.info("job.completed", duration_seconds=round(result.duration_seconds, 3))
            return result

    # ------------------------------------------------------------------
    # Sync facades (CLI)
    # ------------------------------------------------------------------

    def run_pipeline_sync(self, descriptor: PipelineDescriptor, stdout: Sink, stderr: Sink) -> PipelineResult:
        return asyncio.run(self.run_pipeline(descriptor, stdout, stderr))

    def run_pipeline_job_sync(self, job: Job, stdout: Sink, stderr: Sink) -> JobResult:
        return asyncio.run(self.run_pipeline_job(job, stdout, stderr))
