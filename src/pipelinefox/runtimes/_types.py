"""Container runtime capability: protocol and value types.

The engine never talks to Docker directly. It consumes the
``ContainerRuntime`` protocol below, which adapters implement for a
concrete backend.

.. code-block:: text

    ContainerRuntime (Protocol)
    ├── image_exists(image)              → bool
    ├── pull_image(image)
    ├── create_container(spec)           → ContainerHandle
    ├── start_container(handle)
    ├── inspect_container(handle)        → ContainerState
    ├── copy_archive_into(handle, path, archive)
    ├── exec_create(handle, argv)        → ExecHandle
    ├── exec_attach(exec_handle)         → ExecStream
    ├── remove_container(handle, force=, volumes=)
    └── health()                         → RuntimeHealth

    ExecStream
    ├── async for frame in stream        → OutputFrame(kind, data)
    ├── await stream.wait()              → exit code
    └── await stream.close()

Adapters raise ``RuntimeCommandError`` for failed calls, and
``ContainerNotFoundError`` when the container does not exist. One runtime
instance may serve several jobs at once, so adapters must tolerate
concurrent calls.
"""

from __future__ import annotations

import re
import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol, runtime_checkable

_NAME_PATTERN = re.compile(r"[^a-zA-Z0-9_.-]+")


class StreamKind(str, Enum):
    """Which standard stream an output frame belongs to."""

    STDOUT = "stdout"
    STDERR = "stderr"


@dataclass(frozen=True)
class OutputFrame:
    """One chunk of a combined, framed exec output stream."""

    kind: StreamKind
    data: bytes


@dataclass(frozen=True)
class ContainerSpec:
    """What to create: image, name, placeholder command, labels."""

    image: str
    name: str
    command: tuple[str, ...] = ("tail", "-f", "/dev/null")
    labels: dict[str, str] = field(default_factory=dict)
    env: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ContainerHandle:
    """A created container. Owned by one lifecycle for one job.

    A handle with an empty ``container_id`` refers to the container by
    name only; adapters accept it for removal.
    """

    container_id: str
    name: str
    image: str

    @classmethod
    def for_name(cls, name: str, image: str = "") -> ContainerHandle:
        return cls(container_id="", name=name, image=image)

    @property
    def ref(self) -> str:
        """Id when known, otherwise the name."""
        return self.container_id or self.name


@dataclass(frozen=True)
class ContainerState:
    """Subset of the runtime's container inspection."""

    status: str
    running: bool = False
    exit_code: int | None = None
    error: str | None = None

    @property
    def exited(self) -> bool:
        return self.status in ("exited", "dead")


@dataclass(frozen=True)
class ExecHandle:
    """A prepared command execution inside a container."""

    exec_id: str
    container: ContainerHandle
    argv: tuple[str, ...]


@dataclass(frozen=True)
class RuntimeHealth:
    """Runtime reachability check result."""

    healthy: bool
    runtime: str
    version: str | None = None
    message: str | None = None


@runtime_checkable
class ExecStream(Protocol):
    """Combined output of one exec, framed by stream kind."""

    def __aiter__(self) -> AsyncIterator[OutputFrame]: ...

    async def wait(self) -> int:
        """Exit code of the exec once output is exhausted."""
        ...

    async def close(self) -> None: ...


@runtime_checkable
class ContainerRuntime(Protocol):
    """Capability the lifecycle manager consumes."""

    @property
    def runtime_name(self) -> str: ...

    async def image_exists(self, image: str) -> bool: ...

    async def pull_image(self, image: str) -> None: ...

    async def create_container(self, spec: ContainerSpec) -> ContainerHandle: ...

    async def start_container(self, handle: ContainerHandle) -> None: ...

    async def inspect_container(self, handle: ContainerHandle) -> ContainerState: ...

    async def copy_archive_into(self, handle: ContainerHandle, path: str, archive: bytes) -> None: ...

    async def exec_create(self, handle: ContainerHandle, argv: list[str]) -> ExecHandle: ...

    async def exec_attach(self, exec_handle: ExecHandle) -> ExecStream: ...

    async def remove_container(
        self,
        handle: ContainerHandle,
        *,
        force: bool = True,
        volumes: bool = True,
    ) -> None: ...

    async def health(self) -> RuntimeHealth: ...


def container_name_for(job_name: str, run_id: str | None = None) -> str:
    """Generate a runtime-safe container name for a job.

    Format: ``pipelinefox_{slug}_{run_id[:8]}``

    Example:
        >>> container_name_for("unit tests:py3.12", "a1b2c3d4e5")
        'pipelinefox_unit-tests-py3.12_a1b2c3d4'
    """
    run_id = run_id or uuid.uuid4().hex
    slug = _NAME_PATTERN.sub("-", job_name).strip("-.")[:40] or "job"
    return f"pipelinefox_{slug}_{run_id[:8]}"
