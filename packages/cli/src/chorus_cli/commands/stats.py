"""stats command — aggregate patterns across saved history."""

from __future__ import annotations

from collections import Counter

import click
from rich.console import Console
from rich.table import Table

console = Console()


@click.command("stats")
@click.option("--repo", required=True, help="GitHub repository (owner/name).")
@click.option("--top", default=10, show_default=True, help="Number of top entries to show per category.")
@click.pass_context
def stats_cmd(ctx, repo: str, top: int):
    """Show aggregated statistics for a repository's saved history.

    Reports review scores, the severity distribution of findings, the most
    flagged files and how issue validations were judged.
    """
    from chorus_cli.commands.history import _require_store

    store = _require_store(ctx)
    entries = store.list(repo)
    if not entries:
        console.print("[yellow]No history entries found for this repository.[/yellow]")
        return

    reviews = [e for e in entries if e.entity_kind == "pr"]
    validations = [e for e in entries if e.entity_kind == "issue"]
    severity_counter: Counter[str] = Counter()
    file_counter: Counter[str] = Counter()
    verdict_counter: Counter[str] = Counter(e.verdict for e in validations)

    for entry in reviews:
        for finding in entry.outcome.get("findings") or []:
            severity_counter[finding.get("severity", "minor")] += 1
            if finding.get("file"):
                file_counter[finding["file"]] += 1

    # --- Summary ---
    scores = [e.score for e in reviews if e.score is not None]
    total_findings = sum(severity_counter.values())
    console.print(f"\n[bold]Stats for [cyan]{repo}[/cyan][/bold]")
    console.print(f"  Reviews:          {len(reviews)}")
    console.print(f"  Re-reviews:       {sum(1 for e in reviews if e.sequence > 1)}")
    console.print(f"  Validations:      {len(validations)}")
    console.print(f"  Total findings:   {total_findings}")
    if scores:
        console.print(f"  Avg review score: {sum(scores) / len(scores):.1f}/10")

    # --- Severity breakdown ---
    if severity_counter:
        sev_table = Table(title="Severity Breakdown", show_header=True)
        sev_table.add_column("Severity", style="bold")
        sev_table.add_column("Count", justify="right")
        sev_table.add_column("% of total", justify="right")
        _sev_style = {"critical": "red", "major": "yellow", "minor": "blue", "nit": "dim"}
        for sev in ["critical", "major", "minor", "nit"]:
            count = severity_counter.get(sev, 0)
            pct = f"{count / total_findings * 100:.1f}%"
            style = _sev_style[sev]
            sev_table.add_row(f"[{style}]{sev}[/{style}]", str(count), pct)
        console.print(sev_table)

    # --- Most flagged files ---
    if file_counter:
        file_table = Table(title=f"Top {top} Most Flagged Files", show_header=True)
        file_table.add_column("File")
        file_table.add_column("Findings", justify="right")
        for file_path, count in file_counter.most_common(top):
            file_table.add_row(file_path, str(count))
        console.print(file_table)

    # --- Validation verdicts ---
    if verdict_counter:
        verdict_table = Table(title="Issue Verdicts", show_header=True)
        verdict_table.add_column("Verdict")
        verdict_table.add_column("Count", justify="right")
        for verdict, count in verdict_counter.most_common():
            verdict_table.add_row(verdict, str(count))
        console.print(verdict_table)
