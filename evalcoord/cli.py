"""Command line interface for the evaluation coordinator."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Optional

import typer

from .app import EvaluationCoordinatorApp
from .config import load_config
from .persistence import WorkflowStore, get_database

app = typer.Typer(help="CLI for the evaluation coordinator")

outbox_app = typer.Typer(help="Commands for inspecting the outbox")
app.add_typer(outbox_app, name="outbox")


@app.callback()
def main(
    log_level: str = typer.Option("INFO", help="Logging level"),
) -> None:
    """Evaluation coordinator CLI entry point."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


@app.command("serve")
def serve(config: Optional[str] = typer.Option(None, help="Path to config.yaml")) -> None:
    """
    Run the HTTP API and both event consumers until interrupted.

    Example:
        evalcoord serve --config ./config.yaml
    """
    coordinator = EvaluationCoordinatorApp(load_config(config))
    typer.echo(
        f"Starting evaluation coordinator on "
        f"{coordinator.config.http.host}:{coordinator.config.http.port}"
    )
    asyncio.run(coordinator.run_forever())


@app.command("init-db")
def init_db(database_url: Optional[str] = None) -> None:
    """Create the schema, tables and indexes if they do not exist."""

    async def _run() -> None:
        db = get_database(database_url)
        await db.connect()
        await db.close()

    asyncio.run(_run())
    typer.echo("Schema ready")


@app.command("status")
def status(subject_id: str, database_url: Optional[str] = None) -> None:
    """
    Show the latest workflow for a subject with its steps.

    Example:
        evalcoord status 550e8400-e29b-41d4-a716-446655440000
    """

    async def _run():
        db = get_database(database_url)
        await db.connect()
        try:
            store = WorkflowStore(db)
            workflow = await store.get_workflow_by_journey_id(subject_id)
            steps = await store.get_steps(workflow.id) if workflow else []
        finally:
            await db.close()
        return workflow, steps

    workflow, steps = asyncio.run(_run())
    if workflow is None:
        typer.secho("Workflow not found", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    typer.echo(f"{workflow.id}\t{workflow.status.value}\t{workflow.correlation_id}")
    for step in steps:
        typer.echo(f"  {step.step_type.value}\t{step.status.value}")
    if workflow.decision_result is not None:
        typer.echo(json.dumps(workflow.decision_result))


@outbox_app.command("pending")
def outbox_pending(limit: int = 100, database_url: Optional[str] = None) -> None:
    """List outbox events not yet published by the relay."""

    async def _run():
        db = get_database(database_url)
        await db.connect()
        try:
            return await WorkflowStore(db).list_unpublished_events(limit)
        finally:
            await db.close()

    events = asyncio.run(_run())
    if not events:
        typer.echo("No pending events")
        return
    for event in events:
        typer.echo(f"{event.id}\t{event.event_type}\t{event.aggregate_id}")


if __name__ == "__main__":
    app()
