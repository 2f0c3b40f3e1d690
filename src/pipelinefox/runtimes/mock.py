"""In-memory runtime test double.

``StubContainerRuntime`` implements ``ContainerRuntime`` without any
container engine. It records every call, counts live containers, serves
scripted exec output, and can be told to fail any single operation, so
lifecycle and orchestrator paths can be tested without Docker.

.. code-block:: text

    StubContainerRuntime behavior:

    create_container  → handle, live += 1
    remove_container  → live -= 1
    exec_attach       → frames from ``output(handle, script)``

    Inject failures:
      runtime.fail.add("pull_image")       → pull raises RuntimeCommandError
      runtime.fail.add("remove_container") → removal raises
      runtime.never_running = True         → readiness never succeeds
      runtime.exits_on_start = True        → container reports "exited"

    Track usage:
      runtime.events     → [("create_container", "pipelinefox_build_..."), ...]
      runtime.created / runtime.removed / runtime.live

Example:
    >>> runtime = StubContainerRuntime(
    ...     output=lambda handle, script: ([OutputFrame(StreamKind.STDOUT, b"hi\\n")], 0),
    ... )
"""

from __future__ import annotations

import asyncio
import io
import tarfile
import uuid
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field

from pipelinefox.errors import ContainerNotFoundError, RuntimeCommandError
from pipelinefox.runtimes._types import (
    ContainerHandle,
    ContainerSpec,
    ContainerState,
    ExecHandle,
    OutputFrame,
    RuntimeHealth,
)

OutputFn = Callable[[ContainerHandle, bytes], tuple[list[OutputFrame], int]]


def _no_output(handle: ContainerHandle, script: bytes) -> tuple[list[OutputFrame], int]:
    return [], 0


class StubExecStream:
    """Scripted ``ExecStream``: yields frames, then reports the exit code."""

    def __init__(
        self,
        frames: list[OutputFrame],
        exit_code: int = 0,
        *,
        delay: float = 0.0,
        error: Exception | None = None,
    ) -> None:
        self._frames = list(frames)
        self._exit_code = exit_code
        self._delay = delay
        self._error = error
        self.closed = False

    async def __aiter__(self) -> AsyncIterator[OutputFrame]:
        if self._delay:
            await asyncio.sleep(self._delay)
        for frame in self._frames:
            await asyncio.sleep(0)
            yield frame
        if self._error is not None:
            raise self._error

    async def wait(self) -> int:
        return self._exit_code

    async def close(self) -> None:
        self.closed = True


@dataclass
class _StubContainer:
    spec: ContainerSpec
    handle: ContainerHandle
    status: str = "created"
    polls: int = 0
    files: dict[str, bytes] = field(default_factory=dict)


class StubContainerRuntime:
    """In-memory ``ContainerRuntime`` for unit tests."""

    def __init__(
        self,
        *,
        output: OutputFn | None = None,
        images: set[str] | None = None,
        running_after_polls: int = 0,
        exec_delay: float = 0.0,
        stream_error: Exception | None = None,
    ) -> None:
        self.output = output or _no_output
        self.images: set[str] = set(images or ())
        self.running_after_polls = running_after_polls
        self.exec_delay = exec_delay
        self.stream_error = stream_error

        self.events: list[tuple[str, str]] = []
        self.containers: dict[str, _StubContainer] = {}
        self.created: int = 0
        self.removed: int = 0
        self.pulled: list[str] = []
        self.streams: list[StubExecStream] = []

        # Inject failures
        self.fail: set[str] = set()
        self.never_running: bool = False
        self.exits_on_start: bool = False

    @property
    def runtime_name(self) -> str:
        return "stub"

    @property
    def live(self) -> int:
        return len(self.containers)

    def scripts(self) -> dict[str, bytes]:
        """Injected files keyed by ``container_name:path``."""
        return {
            f"{c.handle.name}:{path}": data
            for c in self.containers.values()
            for path, data in c.files.items()
        }

    def _check(self, operation: str, target: str) -> None:
        self.events.append((operation, target))
        if operation in self.fail:
            raise RuntimeCommandError(f"Stub: {operation} failure injected for {target}")

    def _get(self, handle: ContainerHandle) -> _StubContainer:
        if handle.container_id:
            container = self.containers.get(handle.container_id)
        else:
            container = next((c for c in self.containers.values() if c.handle.name == handle.name), None)
        if container is None:
            raise ContainerNotFoundError(f"No such container: {handle.name}")
        return container

    async def image_exists(self, image: str) -> bool:
        self._check("image_exists", image)
        return image in self.images

    async def pull_image(self, image: str) -> None:
        self._check("pull_image", image)
        self.pulled.append(image)
        self.images.add(image)

    async def create_container(self, spec: ContainerSpec) -> ContainerHandle:
        self._check("create_container", spec.name)
        handle = ContainerHandle(container_id=uuid.uuid4().hex[:12], name=spec.name, image=spec.image)
        self.containers[handle.container_id] = _StubContainer(spec=spec, handle=handle)
        self.created += 1
        return handle

    async def start_container(self, handle: ContainerHandle) -> None:
        self._check("start_container", handle.name)
        self._get(handle).status = "exited" if self.exits_on_start else "starting"

    async def inspect_container(self, handle: ContainerHandle) -> ContainerState:
        self._check("inspect_container", handle.name)
        container = self._get(handle)
        if container.status == "exited":
            return ContainerState(status="exited", exit_code=1)
        container.polls += 1
        if not self.never_running and container.polls > self.running_after_polls:
            container.status = "running"
        return ContainerState(status=container.status, running=container.status == "running")

    async def copy_archive_into(self, handle: ContainerHandle, path: str, archive: bytes) -> None:
        self._check("copy_archive_into", handle.name)
        container = self._get(handle)
        with tarfile.open(fileobj=io.BytesIO(archive), mode="r:*") as tar:
            for member in tar.getmembers():
                extracted = tar.extractfile(member)
                data = extracted.read() if extracted else b""
                container.files[f"{path.rstrip('/')}/{member.name}"] = data

    async def exec_create(self, handle: ContainerHandle, argv: list[str]) -> ExecHandle:
        self._check("exec_create", handle.name)
        self._get(handle)
        return ExecHandle(exec_id=uuid.uuid4().hex, container=handle, argv=tuple(argv))

    async def exec_attach(self, exec_handle: ExecHandle) -> StubExecStream:
        self._check("exec_attach", exec_handle.container.name)
        container = self._get(exec_handle.container)
        script_path = next((a for a in exec_handle.argv if a in container.files), None)
        script = container.files.get(script_path, b"") if script_path else b""
        frames, exit_code = self.output(exec_handle.container, script)
        stream = StubExecStream(frames, exit_code, delay=self.exec_delay, error=self.stream_error)
        self.streams.append(stream)
        return stream

    async def remove_container(
        self,
        handle: ContainerHandle,
        *,
        force: bool = True,
        volumes: bool = True,
    ) -> None:
        self._check("remove_container", handle.name)
        container = self._get(handle)
        del self.containers[container.handle.container_id]
        self.removed += 1

    async def health(self) -> RuntimeHealth:
        if "health" in self.fail:
            return RuntimeHealth(healthy=False, runtime="stub", message="Stub: health failure injected")
        return RuntimeHealth(healthy=True, runtime="stub", version="0.0.0-stub")
