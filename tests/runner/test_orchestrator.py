"""Tests for PipelineRunner.

Tests:
    - Stage barrier (sequential and parallel)
    - Fail-fast with stage/job tagging, finished jobs carried on the error
    - Output order, fresh sinks per run (idempotence)
    - One create + one remove per job
    - Bounded parallelism within a stage
    - Standalone job entry point and sync facades
"""

import io

import pytest

from pipelinefox.errors import ContainerRemoveError, ImagePullError, ScriptFailedError
from pipelinefox.model import Job, PipelineDescriptor
from pipelinefox.runner import PipelineRunner
from pipelinefox.runtimes import StubContainerRuntime


def job_of(container_name: str) -> str:
    """``pipelinefox_<job>_<id>`` → ``<job>``."""
    return container_name.split("_")[1]


def lifecycle_events(runtime: StubContainerRuntime) -> list[tuple[str, str]]:
    return [
        (op, job_of(target))
        for op, target in runtime.events
        if op in ("create_container", "remove_container")
    ]


class TestStageBarrier:
    @pytest.mark.asyncio
    async def test_stage_completes_before_next_starts(self, stub_runtime, fast_settings, sinks, three_stage_pipeline):
        await PipelineRunner(stub_runtime, settings=fast_settings).run_pipeline(three_stage_pipeline, *sinks)
        assert lifecycle_events(stub_runtime) == [
            ("create_container", "compile"),
            ("remove_container", "compile"),
            ("create_container", "unit"),
            ("remove_container", "unit"),
            ("create_container", "lint"),
            ("remove_container", "lint"),
            ("create_container", "ship"),
            ("remove_container", "ship"),
        ]

    @pytest.mark.asyncio
    async def test_parallel_stage_still_has_barrier(self, shell, fast_settings, sinks, three_stage_pipeline):
        runtime = StubContainerRuntime(output=shell, exec_delay=0.02)
        runner = PipelineRunner(runtime, settings=fast_settings, max_parallel_jobs=4)
        await runner.run_pipeline(three_stage_pipeline, *sinks)

        events = lifecycle_events(runtime)
        index = {event: position for position, event in enumerate(events)}
        for test_job in ("unit", "lint"):
            assert index[("remove_container", "compile")] < index[("create_container", test_job)]
            assert index[("remove_container", test_job)] < index[("create_container", "ship")]


class TestFailFast:
    @pytest.mark.asyncio
    async def test_first_failure_aborts_pipeline(self, stub_runtime, fast_settings, sinks):
        pipeline = PipelineDescriptor.create(
            ["build", "test", "deploy"],
            [
                Job.create("compile", "build", ["echo ok"]),
                Job.create("unit", "test", ["echo running", "exit 2"]),
                Job.create("lint", "test", ["echo lint"]),
                Job.create("ship", "deploy", ["echo ship"]),
            ],
            default_image="alpine:3.20",
        )
        with pytest.raises(ScriptFailedError) as exc_info:
            await PipelineRunner(stub_runtime, settings=fast_settings).run_pipeline(pipeline, *sinks)

        err = exc_info.value
        assert (err.stage, err.job, err.exit_code) == ("test", "unit", 2)
        started = [job for op, job in lifecycle_events(stub_runtime) if op == "create_container"]
        assert started == ["compile", "unit"]
        assert stub_runtime.live == 0
        assert b"lint" not in sinks[0].getvalue()

    @pytest.mark.asyncio
    async def test_parallel_failure_skips_unstarted_jobs(self, fast_settings, sinks):
        runtime = StubContainerRuntime(images={"good:1"}, exec_delay=0.1)
        runtime.fail.add("pull_image")
        pipeline = PipelineDescriptor.create(
            ["test"],
            [
                Job.create("bad", "test", ["echo"], image="missing:1"),
                Job.create("slow", "test", ["echo"], image="good:1"),
                Job.create("later", "test", ["echo"], image="good:1"),
            ],
        )
        runner = PipelineRunner(runtime, settings=fast_settings, max_parallel_jobs=2)
        with pytest.raises(ImagePullError) as exc_info:
            await runner.run_pipeline(pipeline, *sinks)

        assert exc_info.value.job == "bad"
        # The in-flight sibling finished and was removed; "later" never started
        assert lifecycle_events(runtime) == [("create_container", "slow"), ("remove_container", "slow")]
        assert runtime.live == 0
        assert [r.job.name for r in exc_info.value.completed] == ["slow"]

    @pytest.mark.asyncio
    async def test_failure_carries_finished_jobs(self, stub_runtime, fast_settings, sinks):
        stub_runtime.fail.add("remove_container")
        pipeline = PipelineDescriptor.create(
            ["build", "test"],
            [Job.create("compile", "build", ["echo ok"]), Job.create("unit", "test", ["exit 1"])],
            default_image="alpine:3.20",
        )
        with pytest.raises(ScriptFailedError) as exc_info:
            await PipelineRunner(stub_runtime, settings=fast_settings).run_pipeline(pipeline, *sinks)

        (finished,) = exc_info.value.completed
        assert finished.job.name == "compile"
        assert isinstance(finished.cleanup_error, ContainerRemoveError)
        assert isinstance(exc_info.value.cleanup_error, ContainerRemoveError)


class TestOutput:
    @pytest.mark.asyncio
    async def test_two_jobs_in_order(self, stub_runtime, fast_settings, sinks):
        pipeline = PipelineDescriptor.create(
            ["build"],
            [Job.create("first", "build", ["echo hello"]), Job.create("second", "build", ["echo world"])],
        )
        await PipelineRunner(stub_runtime, settings=fast_settings).run_pipeline(pipeline, *sinks)
        assert sinks[0].getvalue() == b"[build/first] hello\n[build/second] world\n"
        assert sinks[1].getvalue() == b""

    @pytest.mark.asyncio
    async def test_rerun_with_fresh_sinks_is_identical(self, stub_runtime, fast_settings, three_stage_pipeline):
        runner = PipelineRunner(stub_runtime, settings=fast_settings)
        outputs = []
        for _ in range(2):
            stdout, stderr = io.BytesIO(), io.BytesIO()
            await runner.run_pipeline(three_stage_pipeline, stdout, stderr)
            outputs.append((stdout.getvalue(), stderr.getvalue()))
        assert outputs[0] == outputs[1]
        assert stub_runtime.created == stub_runtime.removed == 8


class TestResults:
    @pytest.mark.asyncio
    async def test_pipeline_result(self, stub_runtime, fast_settings, sinks, three_stage_pipeline):
        result = await PipelineRunner(stub_runtime, settings=fast_settings).run_pipeline(three_stage_pipeline, *sinks)
        assert result.succeeded
        assert [r.job.name for r in result.results] == ["compile", "unit", "lint", "ship"]
        assert result.cleanup_errors == []
        assert result.to_dict()["run_id"] == result.run_id

    @pytest.mark.asyncio
    async def test_cleanup_errors_reported(self, stub_runtime, fast_settings, sinks, three_stage_pipeline):
        stub_runtime.fail.add("remove_container")
        result = await PipelineRunner(stub_runtime, settings=fast_settings).run_pipeline(three_stage_pipeline, *sinks)
        assert result.succeeded
        assert len(result.cleanup_errors) == 4

    @pytest.mark.asyncio
    async def test_empty_pipeline(self, stub_runtime, fast_settings, sinks):
        pipeline = PipelineDescriptor.create(["build", "test"], [])
        result = await PipelineRunner(stub_runtime, settings=fast_settings).run_pipeline(pipeline, *sinks)
        assert result.results == []
        assert stub_runtime.created == 0


class TestParallelism:
    @pytest.mark.asyncio
    async def test_jobs_overlap_up_to_limit(self, shell, fast_settings, sinks):
        live_at_exec: list[int] = []
        runtime = StubContainerRuntime(exec_delay=0.05)

        def output(handle, script):
            live_at_exec.append(runtime.live)
            return shell(handle, script)

        runtime.output = output
        pipeline = PipelineDescriptor.create(
            ["test"], [Job.create(f"job{i}", "test", [f"echo {i}"]) for i in range(4)],
        )
        await PipelineRunner(runtime, settings=fast_settings, max_parallel_jobs=2).run_pipeline(pipeline, *sinks)

        assert max(live_at_exec) == 2
        assert runtime.created == runtime.removed == 4
        assert sorted(sinks[0].getvalue().splitlines()) == [f"[test/job{i}] {i}".encode() for i in range(4)]


class TestSingleJob:
    @pytest.mark.asyncio
    async def test_one_create_one_remove_on_success(self, stub_runtime, fast_settings, sinks, hello_job):
        result = await PipelineRunner(stub_runtime, settings=fast_settings).run_pipeline_job(hello_job, *sinks)
        assert result.exit_code == 0
        assert (stub_runtime.created, stub_runtime.removed) == (1, 1)
        assert sinks[0].getvalue() == b"[build/hello] hello\n"

    @pytest.mark.asyncio
    async def test_one_create_one_remove_on_failure(self, stub_runtime, fast_settings, sinks):
        job = Job.create("bad", "build", ["false"], image="alpine:3.20")
        with pytest.raises(ScriptFailedError):
            await PipelineRunner(stub_runtime, settings=fast_settings).run_pipeline_job(job, *sinks)
        assert (stub_runtime.created, stub_runtime.removed) == (1, 1)

    @pytest.mark.asyncio
    async def test_unresolved_image_uses_default(self, stub_runtime, fast_settings, sinks):
        job = Job.create("bare", "build", ["echo hi"])
        result = await PipelineRunner(stub_runtime, settings=fast_settings).run_pipeline_job(job, *sinks)
        assert result.job.image == "alpine:3.20"
        assert stub_runtime.pulled == ["alpine:3.20"]


class TestSyncFacades:
    def test_run_pipeline_sync(self, stub_runtime, fast_settings, sinks, three_stage_pipeline):
        result = PipelineRunner(stub_runtime, settings=fast_settings).run_pipeline_sync(three_stage_pipeline, *sinks)
        assert len(result.results) == 4

    def test_run_pipeline_job_sync(self, stub_runtime, fast_settings, sinks, hello_job):
        result = PipelineRunner(stub_runtime, settings=fast_settings).run_pipeline_job_sync(hello_job, *sinks)
        assert result.succeeded
