"""
Shared pytest fixtures for pipelinefox tests.

This module provides:
- Settings isolation (no PIPELINEFOX_* leakage between tests)
- Fast settings with short deadlines and backoff
- A stub runtime that "executes" simple echo scripts
- Byte sinks standing in for stdout/stderr

Usage:
    async def test_something(stub_runtime, fast_settings, sinks):
        runner = PipelineRunner(stub_runtime, settings=fast_settings)
        await runner.run_pipeline_job(job, *sinks)
"""

from __future__ import annotations

import io
import os
from collections.abc import Generator

import pytest

from pipelinefox.logging import clear_context
from pipelinefox.model import Job, PipelineDescriptor
from pipelinefox.runtimes import ContainerHandle, OutputFrame, StreamKind, StubContainerRuntime
from pipelinefox.settings import PipelineFoxSettings, clear_settings_cache


# =============================================================================
# Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Drop PIPELINEFOX_* variables and the settings cache around each test."""
    for key in list(os.environ):
        if key.startswith("PIPELINEFOX_"):
            monkeypatch.delenv(key)
    clear_settings_cache()
    clear_context()
    yield
    clear_settings_cache()
    clear_context()


# =============================================================================
# Fake shell for the stub runtime
# =============================================================================


def fake_shell(handle: ContainerHandle, script: bytes) -> tuple[list[OutputFrame], int]:
    """Interpret the tiny subset of sh used in tests.

    ``echo TEXT`` → stdout, ``echo TEXT >&2`` → stderr, ``false`` → exit 1,
    ``exit N`` → exit N. The first failure stops the script, like ``set -e``.
    """
    frames: list[OutputFrame] = []
    for line in script.decode().splitlines():
        if not line.strip() or line.startswith("#") or line.startswith("set "):
            continue
        if line.startswith("exit "):
            return frames, int(line.split()[1])
        if line == "false":
            return frames, 1
        if line.startswith("echo "):
            text = line[len("echo "):]
            if text.endswith(" >&2"):
                frames.append(OutputFrame(StreamKind.STDERR, text[: -len(" >&2")].encode() + b"\n"))
            else:
                frames.append(OutputFrame(StreamKind.STDOUT, text.encode() + b"\n"))
    return frames, 0


def frames(*pairs: tuple[str, bytes]) -> list[OutputFrame]:
    """Build frames from ``("out"|"err", data)`` pairs."""
    kinds = {"out": StreamKind.STDOUT, "err": StreamKind.STDERR}
    return [OutputFrame(kinds[kind], data) for kind, data in pairs]


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def fast_settings() -> PipelineFoxSettings:
    """Settings with short deadlines so failure paths finish quickly."""
    return PipelineFoxSettings(
        _env_file=None,
        default_image="alpine:3.20",
        readiness_timeout_seconds=0.3,
        readiness_initial_delay=0.01,
        readiness_max_delay=0.05,
        job_timeout_seconds=5,
        pull_timeout_seconds=2,
        remove_timeout_seconds=1,
        color=False,
    )


@pytest.fixture
def stub_runtime() -> StubContainerRuntime:
    return StubContainerRuntime(output=fake_shell)


@pytest.fixture
def sinks() -> tuple[io.BytesIO, io.BytesIO]:
    return io.BytesIO(), io.BytesIO()


@pytest.fixture
def hello_job() -> Job:
    return Job.create("hello", "build", ["echo hello"], image="alpine:3.20")


@pytest.fixture
def three_stage_pipeline() -> PipelineDescriptor:
    """build → test → deploy, two jobs in test."""
    return PipelineDescriptor.create(
        ["build", "test", "deploy"],
        [
            Job.create("compile", "build", ["echo compiled"]),
            Job.create("unit", "test", ["echo unit ok"]),
            Job.create("lint", "test", ["echo lint ok"]),
            Job.create("ship", "deploy", ["echo shipped"]),
        ],
        default_image="alpine:3.20",
    )


@pytest.fixture
def shell() -> object:
    """The ``fake_shell`` interpreter, for building custom stub runtimes."""
    return fake_shell


@pytest.fixture
def make_frames() -> object:
    return frames
