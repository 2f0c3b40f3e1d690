"""End-to-end tests with LocalShellRuntime (host sh, no Docker).

Tests:
    - echo hello → stdout "hello" only
    - stderr routing
    - two jobs in order
    - set -e semantics and exit codes
    - sandbox cleanup
    - adapter operations (inject, exec argv translation, health)
"""

import io
import shutil
import tarfile

import pytest

from pipelinefox.errors import ContainerNotFoundError, RuntimeCommandError, ScriptFailedError
from pipelinefox.model import Job, PipelineDescriptor
from pipelinefox.runner import PipelineRunner
from pipelinefox.runtimes import ContainerHandle, ContainerSpec, LocalShellRuntime, StreamKind
from pipelinefox.script import build_script_archive

pytestmark = pytest.mark.skipif(shutil.which("sh") is None, reason="needs a POSIX sh")


@pytest.fixture
def runtime(tmp_path):
    return LocalShellRuntime(work_dir=tmp_path / "sandboxes")


@pytest.fixture
def runner(runtime, fast_settings):
    return PipelineRunner(runtime, settings=fast_settings)


class TestEndToEnd:
    @pytest.mark.asyncio
    async def test_echo_hello(self, runner, sinks):
        job = Job.create("hello", "build", ["echo hello"], image="ignored")
        result = await runner.run_pipeline_job(job, *sinks)
        assert result.exit_code == 0
        assert sinks[0].getvalue() == b"[build/hello] hello\n"
        assert sinks[1].getvalue() == b""

    @pytest.mark.asyncio
    async def test_stderr_only(self, runner, sinks):
        job = Job.create("warn", "build", ["echo oops >&2"], image="ignored")
        await runner.run_pipeline_job(job, *sinks)
        assert sinks[0].getvalue() == b""
        assert sinks[1].getvalue() == b"[build/warn] ! oops\n"

    @pytest.mark.asyncio
    async def test_two_jobs_in_order(self, runner, sinks):
        pipeline = PipelineDescriptor.create(
            ["build"],
            [Job.create("a", "build", ["echo hello"]), Job.create("b", "build", ["echo world"])],
        )
        await runner.run_pipeline(pipeline, *sinks)
        assert sinks[0].getvalue() == b"[build/a] hello\n[build/b] world\n"

    @pytest.mark.asyncio
    async def test_first_failing_command_aborts_job(self, runner, sinks):
        job = Job.create("bad", "test", ["echo one", "exit 7", "echo never"], image="ignored")
        with pytest.raises(ScriptFailedError) as exc_info:
            await runner.run_pipeline_job(job, *sinks)
        assert exc_info.value.exit_code == 7
        assert sinks[0].getvalue() == b"[test/bad] one\n"

    @pytest.mark.asyncio
    async def test_partial_last_line(self, runner, sinks):
        job = Job.create("printf", "build", ["printf 'no newline'"], image="ignored")
        await runner.run_pipeline_job(job, *sinks)
        assert sinks[0].getvalue() == b"[build/printf] no newline\n"

    @pytest.mark.asyncio
    async def test_sandboxes_removed(self, runtime, runner, sinks, tmp_path):
        pipeline = PipelineDescriptor.create(
            ["build", "test"],
            [Job.create("a", "build", ["touch made-here"]), Job.create("b", "test", ["false"])],
        )
        with pytest.raises(ScriptFailedError):
            await runner.run_pipeline(pipeline, *sinks)
        assert runtime.live_containers == 0
        assert list((tmp_path / "sandboxes").iterdir()) == []


class TestAdapter:
    @pytest.mark.asyncio
    async def test_inject_and_exec(self, runtime):
        handle = await runtime.create_container(ContainerSpec(image="x", name="c1", env={"GREETING": "hi"}))
        await runtime.start_container(handle)
        archive = build_script_archive(b'#!/bin/sh\necho "$GREETING"\necho err >&2\nexit 3\n', "s.sh")
        await runtime.copy_archive_into(handle, "/tmp", archive)

        exec_handle = await runtime.exec_create(handle, ["sh", "/tmp/s.sh"])
        stream = await runtime.exec_attach(exec_handle)
        collected = {StreamKind.STDOUT: b"", StreamKind.STDERR: b""}
        async for frame in stream:
            collected[frame.kind] += frame.data
        assert await stream.wait() == 3
        await stream.close()
        await runtime.remove_container(handle)

        assert collected == {StreamKind.STDOUT: b"hi\n", StreamKind.STDERR: b"err\n"}

    @pytest.mark.asyncio
    async def test_name_conflict(self, runtime):
        await runtime.create_container(ContainerSpec(image="x", name="dup"))
        with pytest.raises(RuntimeCommandError, match="Conflict"):
            await runtime.create_container(ContainerSpec(image="x", name="dup"))

    @pytest.mark.asyncio
    async def test_exec_requires_running(self, runtime):
        handle = await runtime.create_container(ContainerSpec(image="x", name="idle"))
        with pytest.raises(RuntimeCommandError, match="not running"):
            await runtime.exec_create(handle, ["true"])

    @pytest.mark.asyncio
    async def test_unsafe_archive_rejected(self, runtime):
        handle = await runtime.create_container(ContainerSpec(image="x", name="tar"))
        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode="w") as tar:
            info = tarfile.TarInfo("../escape.sh")
            info.size = 0
            tar.addfile(info, io.BytesIO(b""))
        with pytest.raises(RuntimeCommandError):
            await runtime.copy_archive_into(handle, "/tmp", buffer.getvalue())

    @pytest.mark.asyncio
    async def test_remove_unknown(self, runtime):
        handle = await runtime.create_container(ContainerSpec(image="x", name="gone"))
        await runtime.remove_container(handle)
        with pytest.raises(ContainerNotFoundError):
            await runtime.remove_container(handle)

    @pytest.mark.asyncio
    async def test_remove_by_name(self, runtime):
        await runtime.create_container(ContainerSpec(image="x", name="pipelinefox_named_0001"))
        await runtime.remove_container(ContainerHandle.for_name("pipelinefox_named_0001"))
        assert runtime.live_containers == 0

    @pytest.mark.asyncio
    async def test_pull_is_recorded(self, runtime):
        assert not await runtime.image_exists("alpine")
        await runtime.pull_image("alpine")
        assert await runtime.image_exists("alpine")

    @pytest.mark.asyncio
    async def test_health(self, runtime):
        health = await runtime.health()
        assert health.healthy
        assert health.runtime == "local"
