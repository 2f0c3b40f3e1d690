"""Docker runtime adapter driven through the ``docker`` CLI.

Manages job containers via the ``docker`` CLI in ``asyncio`` subprocesses.
No docker SDK dependency, so it works with anything that exposes a
docker-compatible CLI (Docker Desktop, Colima, ``podman`` via
``docker_binary="podman"``).

.. code-block:: text

    ContainerRuntime call       │ CLI invocation
    ────────────────────────────┼──────────────────────────────────────────
    image_exists(image)         │ docker image inspect --format {{.Id}} IMG
    pull_image(image)           │ docker pull --quiet IMG
    create_container(spec)      │ docker create --name N --label k=v IMG CMD
    start_container(handle)     │ docker start ID
    inspect_container(handle)   │ docker inspect --format {{json .State}} ID
    copy_archive_into(h, p, t)  │ docker cp - ID:P        (tar on stdin)
    exec_create(handle, argv)   │ (prepared locally, nothing to call)
    exec_attach(exec_handle)    │ docker exec ID ARGV...  (two pipes, framed)
    remove_container(handle)    │ docker rm --force --volumes ID
    health()                    │ docker version --format {{.Server.Version}}

Every CLI call except the exec itself is bounded by a per-call timeout.
The exec runs as long as the job does; the lifecycle manager's job
deadline bounds it.

Tags:
    pipelinefox, runtimes, docker, subprocess
"""

from __future__ import annotations

import asyncio
import json
import logging
import shutil
import uuid

from pipelinefox.errors import ContainerNotFoundError, RuntimeCommandError, RuntimeUnavailableError
from pipelinefox.runtimes._process import ProcessExecStream
from pipelinefox.runtimes._types import (
    ContainerHandle,
    ContainerSpec,
    ContainerState,
    ExecHandle,
    RuntimeHealth,
)

logger = logging.getLogger(__name__)


class DockerCliRuntime:
    """``ContainerRuntime`` that shells out to the docker CLI.

    Parameters
    ----------
    binary
        CLI name or path (``docker``, ``podman``).
    command_timeout
        Seconds allowed for each short CLI call.
    pull_timeout
        Seconds allowed for ``docker pull``.

    Example::

        runtime = DockerCliRuntime.from_path()
        handle = await runtime.create_container(ContainerSpec(image="alpine", name="x"))
        await runtime.remove_container(handle)
    """

    def __init__(
        self,
        binary: str = "docker",
        *,
        command_timeout: float = 120.0,
        pull_timeout: float = 600.0,
    ) -> None:
        self._binary = binary
        self._command_timeout = command_timeout
        self._pull_timeout = pull_timeout

    @classmethod
    def from_path(cls, binary: str = "docker", **kwargs: float) -> DockerCliRuntime:
        """Resolve ``binary`` on PATH.

        Raises:
            RuntimeUnavailableError: the CLI is not installed.
        """
        resolved = shutil.which(binary)
        if resolved is None:
            raise RuntimeUnavailableError(
                f"{binary} CLI not found on PATH. Install Docker or add it to PATH.\n"
                "  - Linux:   https://docs.docker.com/engine/install/\n"
                "  - macOS:   https://docs.docker.com/desktop/install/mac-install/\n"
                "  - Windows: https://docs.docker.com/desktop/install/windows-install/"
            )
        return cls(resolved, **kwargs)

    @property
    def runtime_name(self) -> str:
        return "docker"

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    async def image_exists(self, image: str) -> bool:
        returncode, _, _ = await self._run(
            ["image", "inspect", "--format", "{{.Id}}", image],
            check=False,
        )
        return returncode == 0

    async def pull_image(self, image: str) -> None:
        logger.info("Pulling image %s", image)
        await self._run(["pull", "--quiet", image], timeout=self._pull_timeout)
        logger.info("Pulled image %s", image)

    # ------------------------------------------------------------------
    # Containers
    # ------------------------------------------------------------------

    async def create_container(self, spec: ContainerSpec) -> ContainerHandle:
        args = ["create", "--name", spec.name, "--interactive"]
        for key, value in spec.labels.items():
            args.extend(["--label", f"{key}={value}"])
        for key, value in spec.env.items():
            args.extend(["--env", f"{key}={value}"])
        args.append(spec.image)
        args.extend(spec.command)

        _, stdout, stderr = await self._run(args)
        # Warnings (e.g. platform mismatch) are printed on stderr
        for warning in stderr.splitlines():
            if warning.strip():
                logger.warning("docker create: %s", warning.strip())
        container_id = stdout.strip()
        return ContainerHandle(container_id=container_id, name=spec.name, image=spec.image)

    async def start_container(self, handle: ContainerHandle) -> None:
        await self._run(["start", handle.container_id])

    async def inspect_container(self, handle: ContainerHandle) -> ContainerState:
        _, stdout, _ = await self._run(
            ["inspect", "--format", "{{json .State}}", handle.container_id],
        )
        try:
            state = json.loads(stdout)
        except json.JSONDecodeError as exc:
            raise RuntimeCommandError(
                f"Unreadable container state for {handle.name}: {stdout!r}",
                cause=exc,
            ) from exc
        return ContainerState(
            status=state.get("Status", "unknown"),
            running=bool(state.get("Running", False)),
            exit_code=state.get("ExitCode"),
            error=state.get("Error") or None,
        )

    async def copy_archive_into(self, handle: ContainerHandle, path: str, archive: bytes) -> None:
        await self._run(["cp", "-", f"{handle.container_id}:{path}"], input=archive)

    async def exec_create(self, handle: ContainerHandle, argv: list[str]) -> ExecHandle:
        if not argv:
            raise RuntimeCommandError("exec requires a non-empty argv")
        return ExecHandle(exec_id=uuid.uuid4().hex, container=handle, argv=tuple(argv))

    async def exec_attach(self, exec_handle: ExecHandle) -> ProcessExecStream:
        cmd = [self._binary, "exec", exec_handle.container.container_id, *exec_handle.argv]
        logger.debug("docker.exec %s", " ".join(cmd))
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise RuntimeCommandError(f"Failed to start docker exec: {exc}", command=cmd, cause=exc) from exc
        return ProcessExecStream(process)

    async def remove_container(
        self,
        handle: ContainerHandle,
        *,
        force: bool = True,
        volumes: bool = True,
    ) -> None:
        args = ["rm"]
        if force:
            args.append("--force")
        if volumes:
            args.append("--volumes")
        args.append(handle.ref)
        returncode, _, stderr = await self._run(args, check=False)
        if returncode == 0:
            return
        error_cls = ContainerNotFoundError if "no such container" in stderr.lower() else RuntimeCommandError
        raise error_cls(
            f"Docker command failed (exit {returncode}): {' '.join(args)}\n{stderr.strip()}",
            command=[self._binary, *args],
            returncode=returncode,
            stderr=stderr,
        )

    async def health(self) -> RuntimeHealth:
        try:
            _, stdout, _ = await self._run(
                ["version", "--format", "{{.Server.Version}}"],
                timeout=10,
            )
        except RuntimeCommandError as exc:
            return RuntimeHealth(healthy=False, runtime=self.runtime_name, message=str(exc))
        return RuntimeHealth(healthy=True, runtime=self.runtime_name, version=stdout.strip() or None)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _run(
        self,
        args: list[str],
        *,
        check: bool = True,
        input: bytes | None = None,
        timeout: float | None = None,
    ) -> tuple[int, str, str]:
        """Run a docker CLI command and return (returncode, stdout, stderr)."""
        cmd = [self._binary, *args]
        timeout = timeout or self._command_timeout
        logger.debug("docker.run %s", " ".join(cmd))
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE if input is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise RuntimeCommandError(
                f"Failed to run {self._binary}: {exc}", command=cmd, cause=exc,
            ) from exc

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(input), timeout=timeout)
        except TimeoutError as exc:
            await self._reap(process)
            raise RuntimeCommandError(
                f"Docker command timed out after {timeout}s: {' '.join(args)}",
                command=cmd,
                cause=exc,
            ) from exc
        except BaseException:
            # Cancelled by the job deadline or Ctrl-C
            await asyncio.shield(self._reap(process))
            raise

        out = stdout.decode(errors="replace")
        err = stderr.decode(errors="replace")
        if check and process.returncode != 0:
            raise RuntimeCommandError(
                f"Docker command failed (exit {process.returncode}): {' '.join(args)}\n{err.strip()}",
                command=cmd,
                returncode=process.returncode,
                stderr=err,
            )
        return process.returncode or 0, out, err

    @staticmethod
    async def _reap(process: asyncio.subprocess.Process) -> None:
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
        await process.wait()
