"""
CLI: ``pipelinefox run`` — run the pipeline locally.

Usage::

    pipelinefox run                          # .gitlab-ci.yml under the cwd
    pipelinefox run --job unit --job lint    # only these jobs
    pipelinefox run --runtime local          # host shell, no Docker
"""

from __future__ import annotations

import sys
from pathlib import Path

import typer
from rich.markup import escape
from rich.table import Table

from pipelinefox.cli.utils import (
    EXIT_FAILED,
    EXIT_USAGE,
    StreamSink,
    err_console,
    fail,
    load_pipeline,
    resolve_settings,
)
from pipelinefox.errors import PipelineFoxError
from pipelinefox.runner import PipelineResult, PipelineRunner
from pipelinefox.runtimes import RUNTIME_NAMES, create_runtime


def run_command(
    path: Path = typer.Option(Path("."), "--path", "-p", help="Project directory to search for the CI file."),
    file: Path | None = typer.Option(None, "--file", "-f", help="CI file to run (skips the search)."),
    job: list[str] | None = typer.Option(None, "--job", "-j", help="Run only this job. Repeatable."),
    runtime: str | None = typer.Option(None, "--runtime", "-r", help=f"Runtime: {', '.join(RUNTIME_NAMES)}."),
    image: str | None = typer.Option(None, "--image", help="Default image for jobs without one."),
    parallel: int | None = typer.Option(None, "--parallel", min=1, help="Jobs of one stage run at once."),
    timeout: float | None = typer.Option(None, "--timeout", "-t", help="Per-job timeout in seconds (0 disables)."),
    keep: bool = typer.Option(False, "--keep", help="Keep containers after run."),
    no_color: bool = typer.Option(False, "--no-color", help="Plain stderr markers instead of colour."),
) -> None:
    """Run the pipeline's jobs, stage by stage, each in its own container."""
    if runtime is not None and runtime not in RUNTIME_NAMES:
        raise fail(f"Unknown runtime {runtime!r}; expected one of {', '.join(RUNTIME_NAMES)}", EXIT_USAGE)

    settings = resolve_settings(
        runtime=runtime,
        default_image=image,
        max_parallel_jobs=parallel,
        keep_containers=keep or None,
        color=False if no_color else None,
    )
    if timeout is not None:
        settings = settings.model_copy(update={"job_timeout_seconds": timeout if timeout > 0 else None})

    pipeline = load_pipeline(path, file, settings.default_image)
    if job:
        try:
            pipeline = pipeline.select(job)
        except KeyError as exc:
            raise fail(str(exc.args[0]), EXIT_USAGE) from exc

    try:
        backend = create_runtime(settings.runtime, settings)
    except PipelineFoxError as exc:
        raise fail(str(exc)) from exc

    err_console.print(
        f"[bold]pipelinefox[/] — {len(pipeline)} job(s), "
        f"{len(pipeline.stages)} stage(s), runtime: {settings.runtime}"
    )
    runner = PipelineRunner(backend, settings=settings)
    try:
        result = runner.run_pipeline_sync(pipeline, StreamSink(sys.stdout), StreamSink(sys.stderr))
    except PipelineFoxError as exc:
        err_console.print(f"[bold red]✗ Pipeline failed[/] {escape(str(exc))}")
        cleanup_errors = [r.cleanup_error for r in exc.completed if r.cleanup_error is not None]
        if exc.cleanup_error is not None:
            cleanup_errors.append(exc.cleanup_error)
        for error in cleanup_errors:
            err_console.print(f"[yellow]! {escape(error.message)}[/]")
        raise typer.Exit(code=EXIT_FAILED) from exc
    except KeyboardInterrupt:
        err_console.print("[bold red]✗ Interrupted[/]")
        raise typer.Exit(code=130) from None

    _print_summary(result)


def _print_summary(result: PipelineResult) -> None:
    table = Table(show_lines=False, pad_edge=False, box=None)
    table.add_column("stage", style="dim")
    table.add_column("job")
    table.add_column("status")
    table.add_column("duration", justify="right")
    for job_result in result.results:
        status = "[green]passed[/]"
        if job_result.cleanup_error is not None:
            status += " [yellow](container not removed)[/]"
        table.add_row(
            job_result.job.stage,
            job_result.job.name,
            status,
            f"{job_result.duration_seconds:.1f}s",
        )
    err_console.print(table)
    for error in result.cleanup_errors:
        err_console.print(f"[yellow]! {escape(error.message)}[/]")
    err_console.print(
        f"[bold green]✓ Pipeline passed[/] — {len(result.results)} job(s) in {result.duration_seconds:.1f}s"
    )
