"""Command line interface for operating relayflow."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
import yaml

from relayflow import WorkflowEngine, get_repository, get_transport, load_config
from relayflow.config import RelayflowConfig
from relayflow.contracts import WorkflowEvent
from relayflow.errors import RelayflowError
from relayflow.models import Workflow
from relayflow.persistence import WorkflowRun
from relayflow.services import ActionServices, InMemoryServices
from relayflow.services.ai import PydanticAIService
from relayflow.validation import validate_workflow

app = typer.Typer(help="CLI for relayflow workflows")

# Command groups
workflow_app = typer.Typer(help="Commands for managing workflow definitions")
run_app = typer.Typer(help="Commands for inspecting and cancelling runs")
trigger_app = typer.Typer(help="Commands for starting workflows")
scheduler_app = typer.Typer(help="Commands for schedule triggers and delayed runs")
events_app = typer.Typer(help="Commands for the domain event stream")

app.add_typer(workflow_app, name="workflow")
app.add_typer(run_app, name="run")
app.add_typer(trigger_app, name="trigger")
app.add_typer(scheduler_app, name="scheduler")
app.add_typer(events_app, name="events")

_state: Dict[str, Any] = {"config_path": None}


@app.callback()
def main(
    config: Optional[Path] = typer.Option(None, help="Path to a relayflow YAML config"),
    log_level: Optional[str] = typer.Option(None, help="Override the configured log level"),
) -> None:
    """Relayflow CLI entry point."""
    _state["config_path"] = str(config) if config else None
    settings = _config()
    logging.basicConfig(
        level=(log_level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _config() -> RelayflowConfig:
    return load_config(_state["config_path"])


def _repository():
    if _state["config_path"]:
        return get_repository(config=_config())
    return get_repository()


def _engine() -> WorkflowEngine:
    """Engine for CLI use; side effects land in a local in-memory backend."""
    config = _config()
    services = ActionServices.from_backend(InMemoryServices(), config=config)
    if config.ai.model:
        services.ai = PydanticAIService(config.ai.model)
    return WorkflowEngine(
        repository=_repository(), services=services, config=config
    )


def _parse_json(value: Optional[str], option: str) -> Dict[str, Any]:
    if not value:
        return {}
    try:
        data = json.loads(value)
    except ValueError as exc:
        typer.secho(f"{option} is not valid JSON: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    if not isinstance(data, dict):
        typer.secho(f"{option} must be a JSON object", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    return data


def _load_definitions(path: Path) -> List[Workflow]:
    """Workflows from a YAML or JSON file holding one definition or a list."""
    with open(path) as f:
        data = yaml.safe_load(f) or []
    items = data if isinstance(data, list) else [data]
    return [Workflow.model_validate(item) for item in items]


def _echo_run(run: Optional[WorkflowRun]) -> None:
    if run is None:
        typer.echo("No run started")
        return
    line = f"{run.id}\t{run.workflow_name}\t{run.status}"
    if run.error_message:
        line += f"\t{run.error_message}"
    typer.echo(line)


# ----------------------------------------------------------------------
# workflow


@workflow_app.command("list")
def workflow_list(
    organization: Optional[str] = typer.Option(None, help="Only this organization"),
    active_only: bool = typer.Option(False, help="Hide inactive workflows"),
) -> None:
    """
    List workflow definitions.

    Example:
        relayflow workflow list --organization org-1
        # Output: 3f2c...    Critical task alert    event    active
    """
    repo = _repository()
    workflows = asyncio.run(
        repo.list_workflows(organization_id=organization, active_only=active_only)
    )
    if not workflows:
        typer.echo("No workflows found")
        return
    for wf in workflows:
        state = "active" if wf.is_active else "inactive"
        typer.echo(f"{wf.id}\t{wf.name}\t{wf.trigger_type}\t{state}")


@workflow_app.command("show")
def workflow_show(workflow_id: str) -> None:
    """Show a workflow's trigger and steps."""
    repo = _repository()
    wf = asyncio.run(repo.get_workflow(workflow_id))
    if wf is None:
        typer.echo("Workflow not found")
        raise typer.Exit(code=1)
    typer.echo(f"Workflow {wf.name} ({wf.id}): {'active' if wf.is_active else 'inactive'}")
    typer.echo(f"Trigger: {wf.trigger_type} {wf.trigger_config.model_dump(exclude_none=True)}")
    for step in wf.steps:
        detail = getattr(step, "action_type", None) or step.step_type
        typer.echo(f"- {step.step_order}: {detail}")


@workflow_app.command("import")
def workflow_import(path: Path) -> None:
    """
    Validate and save workflow definitions from a YAML or JSON file.

    Example:
        relayflow workflow import ./workflows/critical_task.yaml
    """
    if not path.exists():
        typer.secho("Specified path does not exist", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    engine = _engine()
    try:
        workflows = _load_definitions(path)
        for wf in workflows:
            asyncio.run(engine.create_workflow(wf))
            typer.echo(f"Imported {wf.name} ({wf.id})")
    except (ValueError, RelayflowError) as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)


@workflow_app.command("validate")
def workflow_validate(path: Path) -> None:
    """Check workflow definitions without saving them."""
    if not path.exists():
        typer.secho("Specified path does not exist", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    try:
        workflows = _load_definitions(path)
    except ValueError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)

    failed = False
    for wf in workflows:
        errors = validate_workflow(wf)
        if errors:
            failed = True
            typer.secho(f"{wf.name}: invalid", fg=typer.colors.RED)
            for error in errors:
                typer.echo(f"  - {error}")
        else:
            typer.echo(f"{wf.name}: ok")
    if failed:
        raise typer.Exit(code=1)


def _set_active(workflow_id: str, is_active: bool) -> None:
    try:
        wf = asyncio.run(_engine().set_workflow_active(workflow_id, is_active))
    except RelayflowError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(f"Workflow {wf.name} is now {'active' if is_active else 'inactive'}")


@workflow_app.command("activate")
def workflow_activate(workflow_id: str) -> None:
    """Let a workflow's trigger start runs again."""
    _set_active(workflow_id, True)


@workflow_app.command("deactivate")
def workflow_deactivate(workflow_id: str) -> None:
    """Stop a workflow's trigger from starting runs."""
    _set_active(workflow_id, False)


# ----------------------------------------------------------------------
# run


@run_app.command("list")
def run_list(
    workflow: Optional[str] = typer.Option(None, help="Only runs of this workflow"),
    status: Optional[str] = typer.Option(None, help="Only runs in this status"),
) -> None:
    """List runs, newest first."""
    repo = _repository()
    runs = asyncio.run(repo.list_runs(workflow_id=workflow, status=status))
    if not runs:
        typer.echo("No runs found")
        return
    for run in runs:
        _echo_run(run)


@run_app.command("show")
def run_show(run_id: str) -> None:
    """
    Show a run and its step-by-step audit trail.

    Example:
        relayflow run show 9b1e...
        # Output: Run 9b1e... of Critical task alert: completed
        #         - 1 condition: success
        #         - 2 action send_notification: success
    """
    repo = _repository()
    run = asyncio.run(repo.get_run(run_id))
    if run is None:
        typer.echo("Run not found")
        raise typer.Exit(code=1)
    typer.echo(f"Run {run.id} of {run.workflow_name}: {run.status}")
    if run.error_message:
        typer.echo(f"Error: {run.error_message}")
    for step in asyncio.run(repo.list_run_steps(run_id)):
        label = f"{step.step_type} {step.action_type}" if step.action_type else step.step_type
        typer.echo(
            f"- {step.step_order} {label}: {step.status}"
            + (f" ({step.error_message})" if step.error_message else "")
        )


@run_app.command("cancel")
def run_cancel(run_id: str) -> None:
    """Cancel a running or paused run."""
    try:
        run = asyncio.run(_engine().cancel_run(run_id))
    except RelayflowError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    _echo_run(run)


# ----------------------------------------------------------------------
# trigger


@trigger_app.command("manual")
def trigger_manual(
    workflow_id: str,
    data: Optional[str] = typer.Option(None, help="JSON object of trigger data"),
    user: Optional[str] = typer.Option(None, help="Id of the triggering user"),
) -> None:
    """Start a workflow by hand."""
    payload = _parse_json(data, "--data")
    try:
        run = asyncio.run(_engine().trigger_manual(workflow_id, payload, user))
    except RelayflowError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    _echo_run(run)


@trigger_app.command("event")
def trigger_event(
    event_type: str,
    entity_type: str,
    entity_id: str,
    organization: str = typer.Option(..., help="Organization the event belongs to"),
    data: Optional[str] = typer.Option(None, help="JSON object with the entity snapshot"),
    user: Optional[str] = typer.Option(None, help="Id of the acting user"),
    publish: bool = typer.Option(False, help="Publish to the event transport instead"),
) -> None:
    """
    Emit a domain event and start every matching workflow.

    Example:
        relayflow trigger event task_created task t-1 --organization org-1 \\
            --data '{"priority": "critical"}'
    """
    event = WorkflowEvent(
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        entity_data=_parse_json(data, "--data"),
        organization_id=organization,
        user_id=user,
    )
    if publish:
        config = _config()
        asyncio.run(_publish(event, config))
        typer.echo(f"Published event {event.event_id} to {config.transport.events_topic}")
        return
    runs = asyncio.run(_engine().handle_event(event))
    if not runs:
        typer.echo("No workflows matched")
    for run in runs:
        _echo_run(run)


async def _publish(event: WorkflowEvent, config: RelayflowConfig) -> None:
    transport = get_transport(config=config)
    await transport.connect()
    try:
        await transport.publish(config.transport.events_topic, event)
    finally:
        await transport.disconnect()


# ----------------------------------------------------------------------
# scheduler


@scheduler_app.command("tick")
def scheduler_tick() -> None:
    """Fire due schedule triggers and resume due delayed runs once."""
    result = asyncio.run(_engine().tick())
    typer.echo(
        f"Started {result['started']} runs, resumed {result['resumed']} "
        f"({result['errors']} errors)"
    )


@scheduler_app.command("start")
def scheduler_start(
    poll_interval: Optional[float] = typer.Option(None, help="Seconds between ticks"),
    lifespan: Optional[float] = None,
) -> None:
    """
    Run the scheduler loop.

    Example:
        relayflow scheduler start --poll-interval 60
    """
    typer.echo("Starting scheduler")
    asyncio.run(_engine().run_scheduler(poll_interval, lifespan))


# ----------------------------------------------------------------------
# events


@events_app.command("listen")
def events_listen(
    topic: Optional[str] = typer.Option(None, help="Event topic to consume"),
    lifespan: Optional[float] = None,
) -> None:
    """Consume domain events from the configured transport."""
    asyncio.run(_listen(topic, lifespan))


async def _listen(topic: Optional[str], lifespan: Optional[float]) -> None:
    engine = _engine()
    transport = get_transport(config=engine.config)
    await transport.connect()
    try:
        await engine.listen(transport, topic=topic, lifespan=lifespan)
    finally:
        await transport.disconnect()


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
