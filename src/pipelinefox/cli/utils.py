"""
CLI utility helpers: consoles, output sinks, pipeline loading.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, TextIO

import typer
from rich.console import Console
from rich.markup import escape

from pipelinefox.detector import find_ci_file
from pipelinefox.errors import PipelineFoxError
from pipelinefox.model import PipelineDescriptor
from pipelinefox.parsers.gitlab import load_gitlab_ci
from pipelinefox.settings import PipelineFoxSettings, get_settings

console = Console()
err_console = Console(stderr=True)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2


class StreamSink:
    """Job output sink writing raw bytes to a text stream's buffer."""

    def __init__(self, stream: TextIO) -> None:
        self.stream = stream

    def write(self, data: bytes) -> None:
        # Keep ordering with text already written through the stream
        self.stream.flush()
        self.stream.buffer.write(data)
        self.stream.buffer.flush()


def fail(message: str, code: int = EXIT_FAILED) -> typer.Exit:
    """Print an error to stderr and return the ``Exit`` to raise."""
    err_console.print(f"[bold red]Error[/bold red]: {escape(message)}")
    return typer.Exit(code=code)


def resolve_settings(**overrides: Any) -> PipelineFoxSettings:
    """Settings with CLI flag overrides applied (``None`` means not given)."""
    update = {key: value for key, value in overrides.items() if value is not None}
    settings = get_settings()
    return settings.model_copy(update=update) if update else settings


def load_pipeline(path: Path, file: Path | None, default_image: str) -> PipelineDescriptor:
    """Locate and parse the CI file, exiting with status 2 on failure."""
    ci_file = file or find_ci_file(path)
    if ci_file is None:
        raise fail(f"No .gitlab-ci.yml found under {path}", EXIT_USAGE)
    try:
        return load_gitlab_ci(ci_file, default_image=default_image)
    except PipelineFoxError as exc:
        raise fail(f"{ci_file}: {exc}", EXIT_USAGE) from exc
