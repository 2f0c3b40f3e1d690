"""Tests for structured logging and the log context."""

import asyncio
import json
import logging

import pytest
import structlog

from pipelinefox.logging import (
    LogContext,
    add_context_processor,
    bind_context,
    configure_logging,
    get_context,
    get_logger,
    is_configured,
)


class TestLogContext:
    def test_merge_ignores_none(self):
        ctx = LogContext(run_id="r1").merge(stage="build", job=None)
        assert ctx.to_dict() == {"run_id": "r1", "stage": "build"}

    def test_bind_context_nests_and_resets(self):
        with bind_context(run_id="r1"):
            with bind_context(stage="build", job="compile"):
                assert get_context().to_dict() == {"run_id": "r1", "stage": "build", "job": "compile"}
            assert get_context().to_dict() == {"run_id": "r1"}
        assert get_context().to_dict() == {}

    def test_processor_adds_context_without_overwriting(self):
        with bind_context(stage="build", job="compile"):
            event = add_context_processor(None, "info", {"event": "x", "job": "explicit"})
        assert event == {"event": "x", "stage": "build", "job": "explicit"}

    @pytest.mark.asyncio
    async def test_context_is_per_task(self):
        seen: dict[str, str | None] = {}

        async def job(name: str) -> None:
            with bind_context(job=name):
                await asyncio.sleep(0.01)
                seen[name] = get_context().job

        await asyncio.gather(job("a"), job("b"))
        assert seen == {"a": "a", "b": "b"}


class TestConfigureLogging:
    @pytest.fixture(autouse=True)
    def reset_structlog(self):
        yield
        structlog.reset_defaults()
        logging.getLogger().handlers.clear()

    def test_json_output_has_context(self, capsys):
        configure_logging(level="INFO", format="json", force=True)
        assert is_configured()
        with bind_context(run_id="r1", stage="build", job="compile"):
            get_logger("pipelinefox.test").info("job.started", image="alpine")

        line = capsys.readouterr().err.strip().splitlines()[-1]
        record = json.loads(line)
        assert record["event"] == "job.started"
        assert record["level"] == "info"
        assert record["run_id"] == "r1"
        assert record["stage"] == "build"
        assert record["job"] == "compile"
        assert record["image"] == "alpine"

    def test_level_filters(self, capsys):
        configure_logging(level="ERROR", format="json", force=True)
        get_logger("pipelinefox.test").info("hidden")
        assert "hidden" not in capsys.readouterr().err

    def test_logs_never_go_to_stdout(self, capsys):
        configure_logging(level="DEBUG", format="console", force=True)
        get_logger("pipelinefox.test").warning("careful")
        captured = capsys.readouterr()
        assert "careful" in captured.err
        assert "careful" not in captured.out
