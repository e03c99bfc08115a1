"""Running one job from the terminal.

The CLI is just another client: it opens a QueueConnection on a gateway,
sends commands through the same rate limiter as any other client and
renders the events it receives. Events are consumed on the main thread so
Ctrl-C lands here and is turned into a ``job:cancel`` command.
"""

from __future__ import annotations

import logging

import click
from rich.console import Console
from rich.table import Table

from chorus_core.config import throttlers_from_config
from chorus_core.connection import QueueConnection
from chorus_core.events import Commands, Events
from chorus_core.gateway import Gateway
from chorus_core.gh.client import get_repo
from chorus_core.models import EntityKey
from chorus_core.orchestrator import Orchestrator, get_provider
from chorus_core.throttle import ThrottleGuard

console = Console()
logger = logging.getLogger(__name__)

_POLL_SECONDS = 0.25
_SEVERITY_STYLE = {"critical": "red", "major": "yellow", "minor": "blue", "nit": "dim"}


def build_gateway(config: dict, store, repo: str, path: str) -> Gateway:
    """Wire an orchestrator and rate limiter for ``repo`` from the CLI config."""
    token = config.get("github_token")
    if not token:
        raise click.UsageError(
            "No GitHub token found. Set GITHUB_TOKEN or run `gh auth login` first.\n"
            "Create a token at https://github.com/settings/tokens"
        )
    if config["model"] == "anthropic" and not config.get("anthropic_api_key"):
        raise click.UsageError("ANTHROPIC_API_KEY environment variable is not set.")
    if config["model"] == "openai" and not config.get("openai_api_key"):
        raise click.UsageError("OPENAI_API_KEY environment variable is not set.")

    orchestrator = Orchestrator(
        repository_full_name=repo,
        repo_path=path,
        github_repo=get_repo(repo, token=token),
        provider=get_provider(config),
        store=store,
        max_workers=config["max_workers"],
        max_chars_per_diff=config["max_chars_per_diff"],
        log_dir=config.get("log_dir"),
    )
    return Gateway(orchestrator, ThrottleGuard(throttlers=throttlers_from_config(config)))


def run_job(gateway: Gateway, command: str, payload: dict, push: bool = False) -> dict:
    """Send a job command, render its progress until it ends, and optionally push the result.

    Returns the terminal event payload. Raises ClickException if the job
    was rejected, failed or was cancelled.
    """
    key = EntityKey.parse(payload["entity"]["kind"], payload["entity"]["number"])
    connection = QueueConnection()
    gateway.connect(connection)
    try:
        response = gateway.handle(connection, command, payload)
        if not response["success"]:
            raise click.ClickException(response["error"])
        console.print(f"[bold]Queued {key}[/bold] (job {response['jobId'][:8]})")
        event, result = follow_job(gateway, connection, key)
    finally:
        gateway.disconnect(connection)
        gateway.orchestrator.shutdown()

    if event == Events.ERROR:
        if result.get("cancelled"):
            raise click.ClickException(f"{key} was cancelled.")
        raise click.ClickException(f"{key} failed: {result['error']}")

    render_outcome(result["result"])
    if push:
        push_latest(gateway, connection, key)
    return result


def follow_job(gateway: Gateway, connection: QueueConnection, key: EntityKey) -> tuple[str, dict]:
    """Render events for ``key`` until its terminal event arrives."""
    entity = key.to_dict()
    cancel_sent = False
    while True:
        try:
            item = connection.get(timeout=_POLL_SECONDS)
        except KeyboardInterrupt:
            if cancel_sent:
                raise
            console.print("[yellow]Cancelling... (press Ctrl-C again to quit immediately)[/yellow]")
            gateway.handle(connection, Commands.CANCEL, {"entity": entity})
            cancel_sent = True
            continue
        if item is None:
            continue

        event, payload = item
        if payload.get("entity") != entity:
            continue
        if event == Events.PROGRESS:
            render_step(payload["step"])
        elif event in (Events.COMPLETE, Events.ERROR):
            return event, payload


def push_latest(gateway: Gateway, connection: QueueConnection, key: EntityKey) -> None:
    # The connection is closed by now; push is a plain request, not a stream.
    connection.init()
    try:
        latest = gateway.handle(connection, Commands.HISTORY_LATEST, {"entity": key.to_dict()})
        entry = latest.get("entry")
        if not entry:
            console.print("[yellow]Nothing to push: the result was not saved (is the history store disabled?).[/yellow]")
            return
        pushed = gateway.handle(connection, Commands.HISTORY_PUSH, {"entryId": entry["id"]})
    finally:
        connection.shutdown()
    if not pushed["success"]:
        raise click.ClickException(f"Push failed: {pushed['error']}")
    console.print(f"[green]Posted to GitHub:[/green] {pushed['url']}")


def render_step(step: dict) -> None:
    console.print(f"  [dim]{step['kind']:<10}[/dim] {step['message']}")


def render_outcome(outcome: dict) -> None:
    if outcome["kind"] == "validation":
        console.print(
            f"\n[bold]Issue #{outcome['issue_number']}[/bold] ({outcome['issue_type']}): "
            f"[cyan]{outcome['verdict']}[/cyan], confidence {outcome['confidence']}%, "
            f"complexity {outcome['complexity']}"
        )
        if outcome.get("reasoning"):
            console.print(outcome["reasoning"])
        for f in outcome.get("affected_files") or []:
            console.print(f"  • [bold]{f['path']}[/bold] {f.get('reason', '')}")
        return

    heading = f"\n[bold]PR #{outcome['pr_number']}[/bold] scored [cyan]{outcome['quality_score']}/10[/cyan]"
    if outcome.get("is_re_review") and outcome.get("previous_score") is not None:
        heading += f" (was {outcome['previous_score']}/10, review #{outcome['review_sequence']})"
    console.print(heading)
    console.print(f"> {outcome['verdict']}")

    findings = outcome.get("findings") or []
    if not findings:
        console.print("[green]No findings.[/green]")
        return
    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Severity", width=9)
    table.add_column("Location", max_width=40)
    table.add_column("Finding")
    for f in findings:
        style = _SEVERITY_STYLE.get(f["severity"], "white")
        location = f"{f['file']}:{f['line']}" if f.get("line") else f.get("file", "")
        table.add_row(f"[{style}]{f['severity']}[/{style}]", location, f["title"])
    console.print(table)
