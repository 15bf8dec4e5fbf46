"""Command line interface for accessionflow operators."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import typer

from accessionflow.config import load_config
from accessionflow.definitions import DefinitionCache
from accessionflow.monitor import StuckStepMonitor
from accessionflow.persistence import get_repository

app = typer.Typer(help="CLI for accessionflow workflows")

monitor_app = typer.Typer(help="Commands for the stuck-step monitor")
workflow_app = typer.Typer(help="Commands for inspecting workflows")

app.add_typer(monitor_app, name="monitor")
app.add_typer(workflow_app, name="workflow")


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG")) -> None:
    """accessionflow CLI entry point."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO)


@monitor_app.command("sweep")
def monitor_sweep(config_path: Optional[str] = typer.Option(None, "--config")) -> None:
    """
    Report steps stuck in queued or started.

    Thresholds come from the ``monitor`` configuration section. Exits with
    code 1 when stuck steps were found so it can drive cron alerting.

    Example:
        accessionflow monitor sweep
        # Output: queued  druid:bc123df4567  accessionWF:shelve v2  since 2024-01-01T10:00:00+00:00
    """
    config = load_config(config_path)
    monitor = StuckStepMonitor(get_repository(config=config), config.monitor)
    report = asyncio.run(monitor.sweep())
    if not report.total:
        typer.echo("No stuck steps")
        return
    for status, steps in (("queued", report.queued), ("started", report.started)):
        for step in steps:
            typer.echo(
                f"{status}\t{step.object_id}\t{step.workflow}:{step.process} v{step.version}"
                f"\tsince {step.updated_at.isoformat()}"
            )
    if report.truncated:
        typer.echo(f"(showing at most {config.monitor.batch_size} per status)")
    raise typer.Exit(code=1)


@workflow_app.command("show")
def workflow_show(
    object_id: str,
    workflow: Optional[str] = typer.Option(None, "--workflow", "-w"),
    config_path: Optional[str] = typer.Option(None, "--config"),
) -> None:
    """
    Show the steps recorded for an object.

    Example:
        accessionflow workflow show druid:bc123df4567 -w accessionWF
        # Output: accessionWF v1 start-accession  completed
        #         accessionWF v1 stage            queued
    """
    config = load_config(config_path)
    repo = get_repository(config=config)
    steps = asyncio.run(repo.list_steps(object_id, workflow=workflow))
    if not steps:
        typer.echo("No workflow steps found")
        raise typer.Exit(code=1)
    for step in steps:
        line = f"{step.workflow} v{step.version} {step.process}\t{step.status}"
        if step.error_message:
            line += f"\t{step.error_message}"
        typer.echo(line)


@workflow_app.command("definitions")
def workflow_definitions(config_path: Optional[str] = typer.Option(None, "--config")) -> None:
    """List the workflow definitions that can be instantiated."""
    config = load_config(config_path)
    search_paths = [config.workflows.path] if config.workflows.path else []
    cache = DefinitionCache(search_paths)
    for name in cache.available():
        definition = cache.load(name)
        typer.echo(f"{name}\t{len(definition.processes)} processes")


if __name__ == "__main__":
    app()
