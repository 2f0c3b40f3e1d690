"""Tests for the error taxonomy."""

import pytest

from pipelinefox.errors import (
    ContainerRemoveError,
    ErrorCategory,
    ExecError,
    ImagePullError,
    PipelineFoxError,
    RuntimeCommandError,
    ScriptFailedError,
    UnknownScriptShapeError,
)
from pipelinefox.model import Job


class TestCategories:
    @pytest.mark.parametrize(
        ("error", "category"),
        [
            (ImagePullError("x"), ErrorCategory.IMAGE),
            (ExecError("x"), ErrorCategory.EXEC),
            (ScriptFailedError("x", exit_code=2), ErrorCategory.USER_CODE),
            (ContainerRemoveError("x"), ErrorCategory.CONTAINER),
            (UnknownScriptShapeError("x"), ErrorCategory.PARSE),
            (PipelineFoxError("x"), ErrorCategory.UNKNOWN),
        ],
    )
    def test_default_category(self, error, category):
        assert error.category == category

    def test_explicit_category_overrides(self):
        assert ExecError("x", category=ErrorCategory.TIMEOUT).category == ErrorCategory.TIMEOUT

    def test_script_failure_is_exec_error(self):
        assert isinstance(ScriptFailedError("x", exit_code=1), ExecError)


class TestTagging:
    def test_with_job_sets_location(self):
        err = ImagePullError("pull failed").with_job(Job.create("unit", "test", []))
        assert err.stage == "test"
        assert err.job == "unit"
        assert str(err) == "[test/unit] pull failed"

    def test_untagged_str_is_message(self):
        assert str(ImagePullError("pull failed")) == "pull failed"

    def test_cause_is_chained(self):
        cause = RuntimeCommandError("docker failed", returncode=125, stderr="boom")
        err = ImagePullError("pull failed", cause=cause)
        assert err.__cause__ is cause
        assert cause.returncode == 125


class TestToDict:
    def test_includes_location_cause_and_cleanup(self):
        err = ScriptFailedError("exit 3", exit_code=3, cause=ValueError("v"))
        err.with_job(Job.create("unit", "test", []))
        err.cleanup_error = ContainerRemoveError("rm failed", container="c1")
        data = err.to_dict()
        assert data == {
            "error_type": "ScriptFailedError",
            "message": "exit 3",
            "category": "USER_CODE",
            "stage": "test",
            "job": "unit",
            "cause": "v",
            "cleanup_error": "rm failed",
            "exit_code": 3,
        }

    def test_minimal(self):
        assert ExecError("x").to_dict() == {"error_type": "ExecError", "message": "x", "category": "EXEC"}
