"""Local shell runtime — runs jobs without a container engine.

A ``ContainerRuntime`` whose "containers" are temporary sandbox
directories on the host. It provides the same lifecycle (create / start /
inject / exec / remove) so pipelines can be exercised where Docker is not
available, and so the engine can be tested end to end.

.. code-block:: text

    ContainerRuntime call       │ Local equivalent
    ────────────────────────────┼─────────────────────────────────────
    image_exists / pull_image   │ recorded only (host tools are used)
    create_container            │ mkdtemp sandbox, name must be unique
    start_container             │ mark running
    copy_archive_into(h, p, t)  │ extract tar into <sandbox>/<p>
    exec_attach                 │ asyncio subprocess, cwd=<sandbox>
    remove_container            │ rmtree sandbox

Container paths in the exec argv (e.g. ``/tmp/pipelinefox-bootstrap.sh``)
are translated into the sandbox when the file exists there.

Not isolated: job commands run with the caller's privileges on the host.
"""

from __future__ import annotations

import asyncio
import io
import logging
import os
import shutil
import tarfile
import tempfile
import uuid
from dataclasses import dataclass
from pathlib import Path

from pipelinefox.errors import ContainerNotFoundError, RuntimeCommandError
from pipelinefox.runtimes._process import ProcessExecStream
from pipelinefox.runtimes._types import (
    ContainerHandle,
    ContainerSpec,
    ContainerState,
    ExecHandle,
    RuntimeHealth,
)

logger = logging.getLogger(__name__)


@dataclass
class _Sandbox:
    """Tracks one sandbox directory standing in for a container."""

    handle: ContainerHandle
    root: Path
    env: dict[str, str]
    status: str = "created"


class LocalShellRuntime:
    """Runs job scripts with the host shell inside sandbox directories.

    Args:
        work_dir: Parent directory for sandboxes. A system temp directory
            is used when None.
        inherit_env: Child processes inherit the current environment
            (with the container spec's env overlaid).
    """

    def __init__(
        self,
        *,
        work_dir: str | Path | None = None,
        inherit_env: bool = True,
    ) -> None:
        self._work_dir = Path(work_dir) if work_dir else None
        self._inherit_env = inherit_env
        self._sandboxes: dict[str, _Sandbox] = {}
        self.pulled_images: list[str] = []

    @property
    def runtime_name(self) -> str:
        return "local"

    @property
    def live_containers(self) -> int:
        return len(self._sandboxes)

    async def image_exists(self, image: str) -> bool:
        return image in self.pulled_images

    async def pull_image(self, image: str) -> None:
        self.pulled_images.append(image)

    async def create_container(self, spec: ContainerSpec) -> ContainerHandle:
        if any(box.handle.name == spec.name for box in self._sandboxes.values()):
            raise RuntimeCommandError(f"Conflict: container name {spec.name!r} is already in use")
        if self._work_dir is not None:
            self._work_dir.mkdir(parents=True, exist_ok=True)
        root = Path(tempfile.mkdtemp(prefix=f"{spec.name}-", dir=self._work_dir))
        handle = ContainerHandle(container_id=uuid.uuid4().hex[:12], name=spec.name, image=spec.image)
        self._sandboxes[handle.container_id] = _Sandbox(handle=handle, root=root, env=dict(spec.env))
        logger.debug("Local sandbox %s created at %s", spec.name, root)
        return handle

    async def start_container(self, handle: ContainerHandle) -> None:
        self._sandbox(handle).status = "running"

    async def inspect_container(self, handle: ContainerHandle) -> ContainerState:
        box = self._sandbox(handle)
        return ContainerState(status=box.status, running=box.status == "running")

    async def copy_archive_into(self, handle: ContainerHandle, path: str, archive: bytes) -> None:
        box = self._sandbox(handle)
        target = self._translate(box, path)
        target.mkdir(parents=True, exist_ok=True)
        try:
            with tarfile.open(fileobj=io.BytesIO(archive), mode="r:*") as tar:
                tar.extractall(target, filter="data")
        except tarfile.TarError as exc:
            raise RuntimeCommandError(f"Invalid archive for {handle.name}: {exc}", cause=exc) from exc

    async def exec_create(self, handle: ContainerHandle, argv: list[str]) -> ExecHandle:
        box = self._sandbox(handle)
        if box.status != "running":
            raise RuntimeCommandError(f"Container {handle.name} is not running")
        if not argv:
            raise RuntimeCommandError("exec requires a non-empty argv")
        return ExecHandle(exec_id=uuid.uuid4().hex, container=handle, argv=tuple(argv))

    async def exec_attach(self, exec_handle: ExecHandle) -> ProcessExecStream:
        box = self._sandbox(exec_handle.container)
        argv = [self._translate_arg(box, arg) for arg in exec_handle.argv]
        env = dict(os.environ) if self._inherit_env else {}
        env.update(box.env)
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(box.root),
                env=env,
            )
        except OSError as exc:
            raise RuntimeCommandError(f"Failed to start {argv[0]}: {exc}", command=argv, cause=exc) from exc
        return ProcessExecStream(process)

    async def remove_container(
        self,
        handle: ContainerHandle,
        *,
        force: bool = True,
        volumes: bool = True,
    ) -> None:
        box = self._sandbox(handle)
        if box.status == "running" and not force:
            raise RuntimeCommandError(f"Container {handle.name} is running; use force")
        shutil.rmtree(box.root, ignore_errors=True)
        del self._sandboxes[box.handle.container_id]
        logger.debug("Local sandbox %s removed", handle.name)

    async def health(self) -> RuntimeHealth:
        shell = shutil.which("sh")
        if shell is None:
            return RuntimeHealth(healthy=False, runtime=self.runtime_name, message="sh not found on PATH")
        return RuntimeHealth(
            healthy=True,
            runtime=self.runtime_name,
            message=f"Local shell execution ({shell}); no container isolation",
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _sandbox(self, handle: ContainerHandle) -> _Sandbox:
        if handle.container_id:
            box = self._sandboxes.get(handle.container_id)
        else:
            box = next((b for b in self._sandboxes.values() if b.handle.name == handle.name), None)
        if box is None:
            raise ContainerNotFoundError(f"No such container: {handle.name}")
        return box

    @staticmethod
    def _translate(box: _Sandbox, path: str) -> Path:
        return box.root / path.lstrip("/")

    def _translate_arg(self, box: _Sandbox, arg: str) -> str:
        if arg.startswith("/"):
            candidate = self._translate(box, arg)
            if candidate.exists():
                return str(candidate)
        return arg
