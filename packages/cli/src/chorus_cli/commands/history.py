"""history, chain and delete commands — browse and prune stored outcomes."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

console = Console()


def _require_store(ctx):
    from chorus_store.noop import NoOpHistoryStore

    store = ctx.obj.get("store") if ctx.obj else None
    if store is None or isinstance(store, NoOpHistoryStore):
        raise click.UsageError("History is disabled. Set 'store: sqlite' in .chorus.yml to keep results.")
    return store


def _score_cell(entry) -> str:
    if entry.score is None:
        return "—"
    if entry.entity_kind == "issue":
        return f"{entry.score:.0f}%"
    style = "green" if entry.score >= 8 else "yellow" if entry.score >= 6 else "red"
    return f"[{style}]{entry.score:.0f}/10[/{style}]"


def _entries_table(title: str, entries) -> Table:
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Entity", style="bold", width=11)
    table.add_column("Title", max_width=40)
    table.add_column("Seq", justify="right", width=4)
    table.add_column("Score", justify="right", width=7)
    table.add_column("SHA", width=8)
    table.add_column("Saved At", width=20)
    for e in entries:
        entity = f"issue #{e.entity_number}" if e.entity_kind == "issue" else f"PR #{e.entity_number}"
        table.add_row(
            e.id,
            entity,
            e.title[:40],
            str(e.sequence),
            _score_cell(e),
            (e.head_sha or "")[:7],
            e.persisted_at[:19].replace("T", " "),
        )
    return table


@click.command("history")
@click.option("--repo", required=True, help="GitHub repository (owner/name).")
@click.option("--pr", "pr_number", type=int, default=None, help="Filter by PR number.")
@click.option("--limit", default=20, show_default=True, help="Maximum number of entries to show.")
@click.option("--clear", is_flag=True, help="Delete every saved entry for the repository.")
@click.option("--yes", "-y", is_flag=True, help="Skip the confirmation prompt for --clear.")
@click.pass_context
def history_cmd(ctx, repo: str, pr_number: int | None, limit: int, clear: bool, yes: bool):
    """Show saved validations and reviews for a repository, most recent first."""
    store = _require_store(ctx)
    if clear:
        if not yes:
            click.confirm(f"Delete all saved history for {repo}?", abort=True)
        store.clear(repo)
        console.print(f"[green]Cleared history for {repo}.[/green]")
        return
    entity_kind = "pr" if pr_number is not None else None
    entries = store.list(repo, limit=limit, entity_number=pr_number, entity_kind=entity_kind)
    if not entries:
        console.print("[yellow]No history entries found.[/yellow]")
        return
    console.print(_entries_table(f"History — {repo}", entries))


@click.command("chain")
@click.option("--repo", required=True, help="GitHub repository (owner/name).")
@click.option("--pr", "pr_number", type=int, required=True, help="Pull request number.")
@click.pass_context
def chain_cmd(ctx, repo: str, pr_number: int):
    """Show how a PR's score moved across its chain of re-reviews."""
    store = _require_store(ctx)
    chain = store.chain(pr_number, repo)
    if not chain:
        console.print(f"[yellow]No reviews of PR #{pr_number} found.[/yellow]")
        return
    console.print(_entries_table(f"Review chain — {repo} PR #{pr_number}", chain))
    scores = [e.score for e in chain if e.score is not None]
    if len(scores) > 1:
        delta = scores[-1] - scores[0]
        console.print(f"Score moved {scores[0]:.0f} → {scores[-1]:.0f} ({delta:+.0f}) over {len(chain)} review(s).")


@click.command("delete")
@click.argument("entry_id")
@click.pass_context
def delete_cmd(ctx, entry_id: str):
    """Delete one history entry by its ID."""
    store = _require_store(ctx)
    if not store.delete(entry_id):
        raise click.ClickException(f"History entry not found: {entry_id}")
    console.print(f"[green]Deleted {entry_id}.[/green]")
