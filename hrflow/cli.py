"""Command line interface for managing and running hrflow workflows."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional
from uuid import UUID

import typer
import yaml

from hrflow import WorkflowEngine, WorkflowQueueProcessor, get_database, get_hooks
from hrflow.config import HrflowConfig, load_config
from hrflow.contracts import TriggerEvent
from hrflow.errors import HrflowError
from hrflow.tasks import complete_task, list_tasks
from hrflow.workflows import create_workflow_draft, list_workflows, publish_workflow

app = typer.Typer(help="CLI for hrflow workflows")

# Command groups
db_app = typer.Typer(help="Commands for the workflow database")
workflow_app = typer.Typer(help="Commands for authoring workflows")
run_app = typer.Typer(help="Commands for workflow runs")
task_app = typer.Typer(help="Commands for human-actioned steps")
queue_app = typer.Typer(help="Commands for the delayed-resume queue")

app.add_typer(db_app, name="db")
app.add_typer(workflow_app, name="workflow")
app.add_typer(run_app, name="run")
app.add_typer(task_app, name="task")
app.add_typer(queue_app, name="queue")


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(None, help="Path to a YAML config file"),
    log_level: Optional[str] = typer.Option(None, help="Logging level, e.g. DEBUG"),
) -> None:
    """hrflow CLI entry point."""
    loaded = load_config(str(config) if config else None)
    logging.basicConfig(
        level=(log_level or loaded.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = loaded


def _config(ctx: typer.Context) -> HrflowConfig:
    return ctx.obj if isinstance(ctx.obj, HrflowConfig) else load_config()


def _engine(ctx: typer.Context) -> WorkflowEngine:
    return WorkflowEngine(get_database(), get_hooks(_config(ctx)))


def _parse_json(value: Optional[str], option: str) -> dict:
    if not value:
        return {}
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError as exc:
        typer.secho(f"{option} is not valid JSON: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    if not isinstance(parsed, dict):
        typer.secho(f"{option} must be a JSON object", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    return parsed


def _fail(message: str) -> None:
    typer.secho(message, fg=typer.colors.RED)
    raise typer.Exit(code=1)


@db_app.command("init")
def db_init() -> None:
    """Create all workflow tables."""
    db = get_database()
    asyncio.run(db.init_db())
    typer.echo(f"Initialized database: {db.database_url}")


@workflow_app.command("create")
def workflow_create(
    name: str,
    tenant: str = typer.Option(..., help="Tenant id"),
    kind: str = typer.Option("custom", help="onboarding, offboarding or custom"),
    definition: Optional[Path] = typer.Option(
        None, help="YAML or JSON file holding nodes, edges and metadata"
    ),
    by: Optional[str] = typer.Option(None, help="Id of the authoring user"),
) -> None:
    """
    Create a draft workflow.

    Example:
        hrflow workflow create "New hire onboarding" --tenant acme --kind onboarding \\
            --definition ./onboarding.yaml
    """
    raw = None
    if definition is not None:
        if not definition.exists():
            _fail(f"Definition file not found: {definition}")
        raw = yaml.safe_load(definition.read_text()) or {}

    try:
        workflow = asyncio.run(
            create_workflow_draft(
                get_database(), tenant, name, kind=kind, definition=raw, created_by=by
            )
        )
    except (HrflowError, ValueError) as exc:
        _fail(str(exc))
    typer.echo(f"Created workflow {workflow.id} ({workflow.slug})")


@workflow_app.command("publish")
def workflow_publish(
    workflow_id: UUID,
    tenant: str = typer.Option(..., help="Tenant id"),
    by: Optional[str] = typer.Option(None, help="Id of the publishing user"),
) -> None:
    """Publish the latest version of a workflow."""
    try:
        workflow = asyncio.run(
            publish_workflow(get_database(), tenant, workflow_id, published_by=by)
        )
    except HrflowError as exc:
        _fail(str(exc))
    typer.echo(f"Published workflow {workflow.id} (version {workflow.active_version_id})")


@workflow_app.command("list")
def workflow_list(tenant: str = typer.Option(..., help="Tenant id")) -> None:
    """List the workflows of a tenant."""
    workflows = asyncio.run(list_workflows(get_database(), tenant))
    if not workflows:
        typer.echo("No workflows found.")
        return
    for workflow in workflows:
        typer.echo(f"{workflow.id}\t{workflow.slug}\t{workflow.kind}\t{workflow.status}")


@app.command("trigger")
def trigger(
    ctx: typer.Context,
    event: str,
    tenant: str = typer.Option(..., help="Tenant id"),
    employee: Optional[str] = typer.Option(None, help="Employee id"),
    payload: Optional[str] = typer.Option(None, help="JSON object passed as run context"),
) -> None:
    """
    Raise a domain event and start every matching workflow.

    Example:
        hrflow trigger employee.created --tenant acme --employee emp-1
    """
    result = asyncio.run(
        _engine(ctx).handle_trigger(
            TriggerEvent(
                type=event,
                tenant_id=tenant,
                employee_id=employee,
                payload=_parse_json(payload, "--payload"),
            )
        )
    )
    if not result.run_ids and not result.errors:
        typer.echo(f"No published workflow listens for {event}.")
    for run_id in result.run_ids:
        typer.echo(f"Started run {run_id}")
    for failure in result.errors:
        typer.secho(f"Workflow {failure.workflow_id}: {failure.message}", fg=typer.colors.RED)
    if result.errors:
        raise typer.Exit(code=1)


@run_app.command("start")
def run_start(
    ctx: typer.Context,
    workflow_id: UUID,
    tenant: str = typer.Option(..., help="Tenant id"),
    employee: Optional[str] = typer.Option(None, help="Employee id"),
    by: Optional[str] = typer.Option(None, help="Id of the user starting the run"),
) -> None:
    """Start a published workflow for an employee."""
    try:
        run_id = asyncio.run(
            _engine(ctx).start_workflow(tenant, workflow_id, employee, started_by=by)
        )
    except HrflowError as exc:
        _fail(str(exc))
    typer.echo(f"Started run {run_id}")


@run_app.command("show")
def run_show(run_id: UUID) -> None:
    """Show a run's status and its steps."""

    async def _load():
        db = get_database()
        run = await db.get_run(run_id)
        if run is None:
            return None, [], {}
        nodes = {node.id: node.node_key for node in await db.list_nodes(run.version_id)}
        return run, await db.list_steps(run_id), nodes

    run, steps, nodes = asyncio.run(_load())
    if run is None:
        _fail("Run not found")

    typer.echo(f"Run: {run.id}")
    typer.echo(f"Status: {run.status}")
    typer.echo(f"Trigger: {run.trigger_source}")
    if run.last_error:
        typer.echo(f"Last error: {run.last_error}")
    for step in steps:
        typer.echo(f"  {nodes.get(step.node_id, step.node_id)}\t{step.status}\t{step.id}")


@task_app.command("list")
def task_list(
    ctx: typer.Context,
    tenant: str = typer.Option(..., help="Tenant id"),
    employee: Optional[str] = typer.Option(None, help="Only tasks assigned to this employee"),
    status: Optional[str] = typer.Option("waiting_input", help="Step status filter"),
) -> None:
    """List human-actioned steps."""
    steps = asyncio.run(list_tasks(_engine(ctx), tenant, employee_id=employee, status=status))
    if not steps:
        typer.echo("No tasks found.")
        return
    for step in steps:
        title = (step.payload or {}).get("title", "")
        typer.echo(f"{step.id}\t{step.task_type}\t{step.status}\t{title}")


@task_app.command("complete")
def task_complete(
    ctx: typer.Context,
    step_id: UUID,
    tenant: str = typer.Option(..., help="Tenant id"),
    result: Optional[str] = typer.Option(None, help="JSON object recorded as the step result"),
) -> None:
    """Complete a waiting step and continue its run."""
    try:
        step = asyncio.run(
            complete_task(_engine(ctx), tenant, step_id, _parse_json(result, "--result"))
        )
    except HrflowError as exc:
        _fail(str(exc))
    typer.echo(f"Task {step.id} is {step.status}")


@queue_app.command("run")
def queue_run(
    ctx: typer.Context,
    interval: Optional[float] = typer.Option(None, help="Seconds between sweeps"),
    lifespan: Optional[float] = typer.Option(None, help="Stop after this many seconds"),
) -> None:
    """Run the delayed-resume queue processor in the foreground."""
    processor = WorkflowQueueProcessor.from_config(_engine(ctx), _config(ctx))
    if interval is not None:
        processor.poll_interval = interval
    typer.echo(f"Processing workflow queue every {processor.poll_interval}s")
    asyncio.run(processor.run(lifespan=lifespan))


@queue_app.command("drain")
def queue_drain(ctx: typer.Context) -> None:
    """Run a single sweep over due queue entries."""
    processor = WorkflowQueueProcessor.from_config(_engine(ctx), _config(ctx))
    handled = asyncio.run(processor.process_queue())
    typer.echo(f"Processed {handled} queued action(s)")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
