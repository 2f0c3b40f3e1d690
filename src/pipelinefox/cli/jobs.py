"""
CLI: ``pipelinefox jobs`` — list the pipeline's stages and jobs.
"""

from __future__ import annotations

import json
from pathlib import Path

import typer
from rich.table import Table

from pipelinefox.cli.utils import console, load_pipeline, resolve_settings


def jobs_command(
    path: Path = typer.Option(Path("."), "--path", "-p", help="Project directory to search for the CI file."),
    file: Path | None = typer.Option(None, "--file", "-f", help="CI file to read (skips the search)."),
    image: str | None = typer.Option(None, "--image", help="Default image for jobs without one."),
    json_out: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """List stages and jobs in execution order."""
    settings = resolve_settings(default_image=image)
    pipeline = load_pipeline(path, file, settings.default_image)

    if json_out:
        payload = {
            "stages": [
                {
                    "name": stage,
                    "jobs": [
                        {"name": job.name, "image": job.image, "script": list(job.script)}
                        for job in pipeline.jobs_for(stage)
                    ],
                }
                for stage in pipeline.stages
            ],
        }
        typer.echo(json.dumps(payload, indent=2))
        return

    if not len(pipeline):
        console.print("[dim]No jobs.[/dim]")
        return

    table = Table(title="Pipeline", show_lines=False, pad_edge=False)
    table.add_column("stage", style="cyan")
    table.add_column("job")
    table.add_column("image", style="dim")
    table.add_column("commands", justify="right")
    for job in pipeline.iter_jobs():
        table.add_row(job.stage, job.name, job.image or "", str(len(job.script)))
    console.print(table)
