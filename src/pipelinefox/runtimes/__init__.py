"""Container runtime adapters.

.. code-block:: text

    pipelinefox.runtimes
    ├── __init__.py      ← Public API + create_runtime() (this file)
    ├── _types.py        ← ContainerRuntime protocol + value types
    ├── _process.py      ← ProcessExecStream (subprocess pipes → frames)
    ├── docker_cli.py    ← DockerCliRuntime (docker CLI)
    ├── local_shell.py   ← LocalShellRuntime (no container engine)
    └── mock.py          ← StubContainerRuntime (tests)

The engine depends only on the ``ContainerRuntime`` protocol; adapters
are chosen by name through :func:`create_runtime`.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from pipelinefox.runtimes._process import ProcessExecStream
from pipelinefox.runtimes._types import (
    ContainerHandle,
    ContainerRuntime,
    ContainerSpec,
    ContainerState,
    ExecHandle,
    ExecStream,
    OutputFrame,
    RuntimeHealth,
    StreamKind,
    container_name_for,
)
from pipelinefox.runtimes.docker_cli import DockerCliRuntime
from pipelinefox.runtimes.local_shell import LocalShellRuntime
from pipelinefox.runtimes.mock import StubContainerRuntime, StubExecStream

if TYPE_CHECKING:
    from pipelinefox.settings import PipelineFoxSettings

RUNTIME_NAMES = ("docker", "local")


def create_runtime(name: str, settings: PipelineFoxSettings) -> ContainerRuntime:
    """Build the runtime adapter registered under ``name``.

    Raises:
        RuntimeUnavailableError: docker was requested but its CLI is missing.
        ValueError: unknown runtime name.
    """
    if name == "docker":
        return DockerCliRuntime.from_path(
            settings.docker_binary,
            command_timeout=settings.command_timeout_seconds,
            pull_timeout=settings.pull_timeout_seconds,
        )
    if name == "local":
        return LocalShellRuntime()
    raise ValueError(f"Unknown runtime {name!r}; expected one of {', '.join(RUNTIME_NAMES)}")


__all__ = [
    "ContainerHandle",
    "ContainerRuntime",
    "ContainerSpec",
    "ContainerState",
    "ExecHandle",
    "ExecStream",
    "OutputFrame",
    "RuntimeHealth",
    "StreamKind",
    "container_name_for",
    "ProcessExecStream",
    "DockerCliRuntime",
    "LocalShellRuntime",
    "StubContainerRuntime",
    "StubExecStream",
    "RUNTIME_NAMES",
    "create_runtime",
]
