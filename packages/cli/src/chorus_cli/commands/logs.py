"""logs command — show today's structured log entries."""

from __future__ import annotations

import click
from rich.console import Console
from rich.markup import escape

from chorus_core.utils.log_files import read_log_entries

console = Console()

_LEVEL_STYLE = {"error": "red", "warning": "yellow", "info": "cyan", "debug": "dim"}


@click.command("logs")
@click.option("--limit", default=50, show_default=True, help="Number of most recent entries to show.")
@click.pass_context
def logs_cmd(ctx, limit: int):
    """Show the most recent entries from today's log file."""
    log_dir = ctx.obj["config"].get("log_dir")
    if not log_dir:
        raise click.UsageError("File logging is disabled. Set 'log_dir' in .chorus.yml to keep logs.")
    entries = read_log_entries(log_dir, limit=limit)
    if not entries:
        console.print(f"[yellow]No log entries for today in {log_dir}.[/yellow]")
        return
    for entry in entries:
        level = entry.get("level", "info")
        style = _LEVEL_STYLE.get(level, "white")
        timestamp = str(entry.get("timestamp", ""))[11:19]
        console.print(
            f"[dim]{timestamp}[/dim] [{style}]{level:<7}[/{style}] [bold]{entry.get('context', '')}[/bold] "
            f"{escape(str(entry.get('message', '')))}",
            highlight=False,
        )
