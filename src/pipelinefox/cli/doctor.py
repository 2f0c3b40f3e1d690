"""
CLI: ``pipelinefox doctor`` — check that the container runtime is usable.
"""

from __future__ import annotations

import asyncio

import typer
from rich.markup import escape

from pipelinefox.cli.utils import EXIT_FAILED, EXIT_USAGE, console, fail, resolve_settings
from pipelinefox.errors import PipelineFoxError
from pipelinefox.runtimes import RUNTIME_NAMES, create_runtime


def doctor_command(
    runtime: str | None = typer.Option(None, "--runtime", "-r", help=f"Runtime: {', '.join(RUNTIME_NAMES)}."),
) -> None:
    """Check runtime health."""
    if runtime is not None and runtime not in RUNTIME_NAMES:
        raise fail(f"Unknown runtime {runtime!r}; expected one of {', '.join(RUNTIME_NAMES)}", EXIT_USAGE)

    settings = resolve_settings(runtime=runtime)
    try:
        backend = create_runtime(settings.runtime, settings)
        health = asyncio.run(backend.health())
    except PipelineFoxError as exc:
        raise fail(str(exc)) from exc

    if not health.healthy:
        console.print(f"[red]✗ {health.runtime}[/] {escape(health.message or 'unhealthy')}")
        raise typer.Exit(code=EXIT_FAILED)

    version = f" {health.version}" if health.version else ""
    console.print(f"[green]✓ {health.runtime}{version}[/] ready")
