"""Container lifecycle management for one job execution.

``ContainerLifecycle`` owns exactly one container for exactly one job,
from image resolution to removal.

.. code-block:: text

    ImageUnknown ──inspect──► ImagePresent ─────────────────┐
         │                                                  │
         └──────────────► ImageMissing ──pull──► ImagePresent
                                                            │
    Created ◄───────────────────────────────────────────────┘
       │ start
    Started ──poll (backoff, deadline)──► Running
       │                                     │ copy tar into /tmp
       │                              ScriptInjected
       │                                     │ exec sh script, capture
       │                                  Executed
       └──────────────── always ───────────► Removed

Key behaviors:
    - The container runs a long-lived placeholder (``tail -f /dev/null``);
      the job script is injected as a file and run with a separate exec.
    - Readiness polling uses exponential backoff (initial delay doubling
      up to a cap) under a deadline, raising ``ReadinessTimeoutError``.
    - The whole job, from image resolution to output drain, runs under
      the job deadline (``JobTimeoutError``). Teardown runs outside it.
    - Teardown force-removes the container (and volumes) on every path.
      A removal failure is logged and attached to the job's outcome; it
      never replaces the outcome and never ends the process.

Related Modules:
    - :mod:`pipelinefox.runner.capture`: output capture pipeline
    - :mod:`pipelinefox.runner.orchestrator`: creates one lifecycle per job
    - :mod:`pipelinefox.script`: script rendering and archive
"""

from __future__ import annotations

import asyncio
import time
import uuid
from enum import Enum

from pipelinefox.errors import (
    ContainerCreateError,
    ContainerNotFoundError,
    ContainerRemoveError,
    ContainerStartError,
    ExecError,
    ImagePullError,
    JobTimeoutError,
    PipelineFoxError,
    ReadinessTimeoutError,
    RuntimeCommandError,
    ScriptFailedError,
    ScriptInjectionError,
)
from pipelinefox.logging import get_logger
from pipelinefox.model import Job
from pipelinefox.runner.capture import LineFormatter, Sink, capture_output
from pipelinefox.runner.results import JobResult
from pipelinefox.runtimes import (
    ContainerHandle,
    ContainerRuntime,
    ContainerSpec,
    ExecStream,
    container_name_for,
)
from pipelinefox.script import SCRIPT_DIR, SCRIPT_PATH, build_script_archive, render_script
from pipelinefox.settings import PipelineFoxSettings, get_settings

logger = get_logger(__name__)

LABEL_PREFIX = "pipelinefox"


class LifecycleState(str, Enum):
    IMAGE_UNKNOWN = "image_unknown"
    IMAGE_MISSING = "image_missing"
    IMAGE_PRESENT = "image_present"
    CREATED = "created"
    STARTED = "started"
    RUNNING = "running"
    SCRIPT_INJECTED = "script_injected"
    EXECUTED = "executed"
    REMOVED = "removed"


class ContainerLifecycle:
    """Runs one job in one container and guarantees its removal.

    Parameters
    ----------
    runtime
        Container runtime capability.
    job
        The job to run. Its image must already be resolved.
    settings
        Deadlines and backoff; defaults to :func:`get_settings`.
    run_id
        Pipeline run identifier, used for labels.
    formatter
        Output line formatter.

    Example::

        lifecycle = ContainerLifecycle(runtime, job)
        result = await lifecycle.run(stdout_sink, stderr_sink)
    """

    def __init__(
        self,
        runtime: ContainerRuntime,
        job: Job,
        *,
        settings: PipelineFoxSettings | None = None,
        run_id: str | None = None,
        formatter: LineFormatter | None = None,
    ) -> None:
        self.runtime = runtime
        self.job = job
        self.settings = settings or get_settings()
        self.run_id = run_id or uuid.uuid4().hex[:12]
        self.formatter = formatter or LineFormatter(color=self.settings.color)
        self.container_name = container_name_for(job.name, uuid.uuid4().hex)
        self.handle: ContainerHandle | None = None
        self._create_pending = False
        self.state = LifecycleState.IMAGE_UNKNOWN
        self.history: list[LifecycleState] = [self.state]

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def run(self, stdout: Sink, stderr: Sink) -> JobResult:
        """Execute the job and tear the container down.

        Raises:
            PipelineFoxError: the job failed; ``cleanup_error`` is set when
                removal failed as well.
        """
        started = time.monotonic()
        primary: PipelineFoxError | None = None
        deadline = asyncio.timeout(self.settings.job_timeout_seconds)
        try:
            try:
                async with deadline:
                    exit_code = await self._execute(stdout, stderr)
            except TimeoutError as exc:
                if not deadline.expired():
                    raise
                raise JobTimeoutError(
                    f"Job {self.job.label} exceeded {self.settings.job_timeout_seconds}s",
                    timeout_seconds=self.settings.job_timeout_seconds,
                    cause=exc,
                ) from exc
        except PipelineFoxError as exc:
            primary = exc.with_job(self.job)
            raise
        finally:
            cleanup_error = await self._teardown()
            if primary is not None and cleanup_error is not None:
                primary.cleanup_error = cleanup_error

        return JobResult(
            job=self.job,
            exit_code=exit_code,
            duration_seconds=time.monotonic() - started,
            container_name=self.container_name,
            cleanup_error=cleanup_error,
        )

    async def _execute(self, stdout: Sink, stderr: Sink) -> int:
        image = self.job.image
        if not image:
            raise ContainerCreateError(f"Job {self.job.label} has no resolved image")

        await self._ensure_image(image)
        self.handle = await self._create_container(image)
        await self._start_container(self.handle)
        await self._wait_until_running(self.handle)
        await self._inject_script(self.handle)
        exit_code = await self._exec_script(self.handle, stdout, stderr)
        if exit_code != 0:
            raise ScriptFailedError(
                f"Job script exited with status {exit_code}",
                exit_code=exit_code,
            )
        return exit_code

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _ensure_image(self, image: str) -> None:
        try:
            present = await self.runtime.image_exists(image)
        except RuntimeCommandError as exc:
            logger.warning("image.inspect_failed", image=image, error=str(exc))
            present = False

        if present:
            self._transition(LifecycleState.IMAGE_PRESENT)
            return

        self._transition(LifecycleState.IMAGE_MISSING)
        logger.info("image.pulling", image=image)
        try:
            async with asyncio.timeout(self.settings.pull_timeout_seconds):
                await self.runtime.pull_image(image)
        except TimeoutError as exc:
            raise ImagePullError(
                f"Pulling image {image} timed out after {self.settings.pull_timeout_seconds}s",
                cause=exc,
            ) from exc
        except RuntimeCommandError as exc:
            raise ImagePullError(f"Failed to pull image {image}: {exc.message}", cause=exc) from exc
        self._transition(LifecycleState.IMAGE_PRESENT)

    async def _create_container(self, image: str) -> ContainerHandle:
        spec = ContainerSpec(
            image=image,
            name=self.container_name,
            labels={
                f"{LABEL_PREFIX}.run_id": self.run_id,
                f"{LABEL_PREFIX}.stage": self.job.stage,
                f"{LABEL_PREFIX}.job": self.job.name,
            },
        )
        # Set until create returns or fails cleanly; the runtime may hold a container meanwhile
        self._create_pending = True
        try:
            handle = await self.runtime.create_container(spec)
        except RuntimeCommandError as exc:
            self._create_pending = False
            raise ContainerCreateError(
                f"Failed to create container {self.container_name}: {exc.message}",
                cause=exc,
            ) from exc
        self._create_pending = False
        self._transition(LifecycleState.CREATED)
        logger.info("container.created", container=handle.name, image=image)
        return handle

    async def _start_container(self, handle: ContainerHandle) -> None:
        try:
            await self.runtime.start_container(handle)
        except RuntimeCommandError as exc:
            raise ContainerStartError(
                f"Failed to start container {handle.name}: {exc.message}",
                cause=exc,
            ) from exc
        self._transition(LifecycleState.STARTED)

    async def _wait_until_running(self, handle: ContainerHandle) -> None:
        """Poll until running with exponential backoff, capped, under a deadline."""
        timeout = self.settings.readiness_timeout_seconds
        delay = self.settings.readiness_initial_delay
        max_delay = self.settings.readiness_max_delay
        deadline = time.monotonic() + timeout
        last_status = "unknown"

        while True:
            try:
                state = await self.runtime.inspect_container(handle)
            except RuntimeCommandError as exc:
                last_status = f"inspect failed: {exc.message}"
            else:
                if state.running:
                    self._transition(LifecycleState.RUNNING)
                    return
                if state.exited:
                    raise ContainerStartError(
                        f"Container {handle.name} exited before running "
                        f"(exit code {state.exit_code}){': ' + state.error if state.error else ''}"
                    )
                last_status = state.status

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise ReadinessTimeoutError(
                    f"Container {handle.name} not running after {timeout}s "
                    f"(last status: {last_status})",
                    timeout_seconds=timeout,
                )
            await asyncio.sleep(min(delay, remaining))
            delay = min(delay * 2, max_delay)

    async def _inject_script(self, handle: ContainerHandle) -> None:
        script = render_script(self.job.script)
        try:
            archive = build_script_archive(script)
            await self.runtime.copy_archive_into(handle, SCRIPT_DIR, archive)
        except (RuntimeCommandError, OSError) as exc:
            raise ScriptInjectionError(
                f"Failed to inject script into container {handle.name}: {exc}",
                cause=exc,
            ) from exc
        self._transition(LifecycleState.SCRIPT_INJECTED)
        logger.debug("script.injected", container=handle.name, size=len(script))

    async def _exec_script(self, handle: ContainerHandle, stdout: Sink, stderr: Sink) -> int:
        try:
            exec_handle = await self.runtime.exec_create(handle, ["sh", SCRIPT_PATH])
            stream: ExecStream = await self.runtime.exec_attach(exec_handle)
        except RuntimeCommandError as exc:
            raise ExecError(f"Failed to exec job script in {handle.name}: {exc.message}", cause=exc) from exc

        try:
            await capture_output(
                stream,
                self.job,
                stdout,
                stderr,
                formatter=self.formatter,
                line_limit=self.settings.max_line_bytes,
            )
            try:
                exit_code = await stream.wait()
            except RuntimeCommandError as exc:
                raise ExecError(f"Failed to read exit status in {handle.name}: {exc.message}", cause=exc) from exc
        finally:
            await stream.close()

        self._transition(LifecycleState.EXECUTED)
        return exit_code

    async def _teardown(self) -> ContainerRemoveError | None:
        """Force-remove the container. Returns the removal error, never raises it.

        When creation was interrupted (job deadline, cancellation) the
        runtime may have created the container without returning a handle,
        so it is removed by name; a missing container is then not an error.
        """
        handle = self.handle
        orphan = handle is None and self._create_pending
        if orphan:
            handle = ContainerHandle.for_name(self.container_name, self.job.image or "")
        if handle is None:
            return None

        if self.settings.keep_containers:
            logger.warning("container.kept", container=handle.name)
            return None

        try:
            async with asyncio.timeout(self.settings.remove_timeout_seconds):
                await self.runtime.remove_container(handle, force=True, volumes=True)
        except ContainerNotFoundError as exc:
            if not orphan:
                return self._removal_failed(handle, exc, exc.message)
            logger.debug("container.not_created", container=handle.name)
            return None
        except RuntimeCommandError as exc:
            return self._removal_failed(handle, exc, exc.message)
        except TimeoutError as exc:
            return self._removal_failed(
                handle, exc, f"timed out after {self.settings.remove_timeout_seconds}s"
            )

        self._transition(LifecycleState.REMOVED)
        logger.info("container.removed", container=handle.name)
        return None

    def _removal_failed(self, handle: ContainerHandle, exc: BaseException, reason: str) -> ContainerRemoveError:
        logger.error("container.remove_failed", container=handle.name, error=reason)
        return ContainerRemoveError(
            f"Could not remove container {handle.name}: {reason}",
            container=handle.name,
            cause=exc,
        ).with_job(self.job)

    def _transition(self, state: LifecycleState) -> None:
        self.state = state
        self.history.append(state)
        logger.debug("lifecycle.transition", state=state.value)
