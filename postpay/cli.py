"""Command line interface for operating postpay pipelines."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

import typer

from postpay import HttpStepOperations, PipelineDispatcher, PipelineEngine, get_store
from postpay.config import load_config
from postpay.contracts import PipelineAlreadyFinished, PipelineNotFound
from postpay.persistence import PipelineStore, create_store, migrate_records

app = typer.Typer(help="CLI for postpay pipelines")

# Command groups
pipeline_app = typer.Typer(help="Commands for inspecting and running pipelines")
webhook_app = typer.Typer(help="Commands for feeding webhook events")
store_app = typer.Typer(help="Commands for managing the pipeline store")

app.add_typer(pipeline_app, name="pipeline")
app.add_typer(webhook_app, name="webhook")
app.add_typer(store_app, name="store")


@app.callback()
def main() -> None:
    """postpay CLI entry point."""
    config = load_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _build_dispatcher(store: PipelineStore) -> PipelineDispatcher:
    config = load_config()
    engine = PipelineEngine.from_config(
        store, HttpStepOperations(config.services), config
    )
    return PipelineDispatcher(store, engine)


@pipeline_app.command("list")
def pipeline_list() -> None:
    """
    List all pipelines, newest first.

    Example:
        postpay pipeline list
        # Output: cs_test_123    finished    2026-01-01T10:00:00Z
    """
    store = get_store()
    pipelines = asyncio.run(store.list())
    if not pipelines:
        typer.echo("No pipelines found")
        return
    for p in pipelines:
        typer.echo(f"{p.id}\t{p.status.value}\t{p.created_at.isoformat()}")


@pipeline_app.command("show")
def pipeline_show(pipeline_id: str) -> None:
    """
    Show status, input data, step outcomes and logs of a pipeline.

    Args:
        pipeline_id: Pipeline to inspect (the checkout session id)
    """
    store = get_store()
    p = asyncio.run(store.get(pipeline_id))
    if p is None:
        typer.echo("Pipeline not found")
        raise typer.Exit(code=1)
    typer.echo(f"Pipeline {p.id}: {p.status.value}")
    typer.echo(f"Created: {p.created_at.isoformat()}  Updated: {p.updated_at.isoformat()}")
    typer.echo(f"Attempts: {p.attempts}")
    typer.echo(f"Data: {json.dumps(p.data)}")
    for name, outcome in p.steps.items():
        state = "ok" if outcome.ok else "failed"
        typer.echo(f"- {name}: {state} (attempt {outcome.attempt})")
    if p.logs:
        typer.echo("Logs:")
        for entry in p.logs:
            typer.echo(f"  [{entry.timestamp.isoformat()}] {entry.message}")


@pipeline_app.command("run")
def pipeline_run(pipeline_id: str) -> None:
    """
    Process a pipeline in the foreground and print its final status.

    Already successful steps are skipped; a finished pipeline is left as is.
    """
    store = get_store()
    dispatcher = _build_dispatcher(store)

    async def _run():
        return await dispatcher.run_pipeline(pipeline_id)

    record = asyncio.run(_run())
    if record is None:
        typer.echo("Pipeline not found or processing error")
        raise typer.Exit(code=1)
    typer.echo(f"Pipeline {record.id}: {record.status.value}")


@pipeline_app.command("retry")
def pipeline_retry(pipeline_id: str) -> None:
    """
    Retry a pipeline that has not finished, resuming after its last success.

    Example:
        postpay pipeline retry cs_test_123
    """
    store = get_store()
    dispatcher = _build_dispatcher(store)

    async def _retry():
        task = await dispatcher.retry(pipeline_id)
        return await task

    try:
        record = asyncio.run(_retry())
    except PipelineNotFound:
        typer.echo("Pipeline not found")
        raise typer.Exit(code=1)
    except PipelineAlreadyFinished:
        typer.echo("Pipeline already finished")
        raise typer.Exit(code=1)
    if record is None:
        typer.echo("Retry error, see pipeline logs")
        raise typer.Exit(code=1)
    typer.echo(f"Pipeline {record.id}: {record.status.value}")


@webhook_app.command("replay")
def webhook_replay(event_file: Path) -> None:
    """
    Feed a verified webhook event stored as JSON through the dispatcher.

    Signature verification is the HTTP layer's concern; the file must hold
    an event that was already verified.

    Example:
        postpay webhook replay ./events/checkout_completed.json
    """
    try:
        event = json.loads(event_file.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        typer.secho(f"Could not read event: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    store = get_store()
    dispatcher = _build_dispatcher(store)

    async def _replay():
        record = await dispatcher.handle_event(event)
        await dispatcher.wait_idle()
        return await store.get(record.id) if record else None

    record = asyncio.run(_replay())
    if record is None:
        typer.echo("Event ignored")
        return
    typer.echo(f"Pipeline {record.id}: {record.status.value}")


@store_app.command("migrate")
def store_migrate(source_url: str, target_url: str) -> None:
    """
    Copy every pipeline from one store to another, keeping existing ids.

    Example:
        postpay store migrate data/pipelines.json postgresql://localhost/postpay
    """
    try:
        source = create_store(source_url)
        target = create_store(target_url)
    except ValueError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)

    report = asyncio.run(migrate_records(source, target))
    for pipeline_id in report.inserted:
        typer.echo(f"Inserted {pipeline_id}")
    for pipeline_id in report.skipped:
        typer.echo(f"Skipping existing {pipeline_id}")
    for pipeline_id in report.failed:
        typer.secho(f"Failed {pipeline_id}", fg=typer.colors.RED)
    typer.echo("Migration complete")
    if report.failed:
        raise typer.Exit(code=1)
