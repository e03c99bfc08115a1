"""review command — run an AI review on a pull request."""

from __future__ import annotations

import click

from chorus_core.events import Commands


@click.command("review")
@click.option("--repo", required=True, help="GitHub repository in owner/name format.")
@click.option("--pr", "pr_number", type=int, required=True, help="Pull request number.")
@click.option("--path", "repo_path", default=".", show_default=True, help="Local checkout of the repository.")
@click.option(
    "--re-review",
    "previous_entry_id",
    default=None,
    metavar="ENTRY_ID",
    help="Follow up an earlier review from history (see `chorus history`).",
)
@click.option("--push", is_flag=True, help="Post the review on the pull request when it completes.")
@click.pass_context
def review_cmd(ctx, repo: str, pr_number: int, repo_path: str, previous_entry_id: str | None, push: bool):
    """Review a pull request and score it from 1 to 10.

    With --re-review the previous review's findings and score are given to
    the model, along with the changes made since, so the new score reflects
    what was fixed.

    \b
    Required environment variables:
      GITHUB_TOKEN         GitHub personal access token (or use gh CLI)
      ANTHROPIC_API_KEY    Required when model is anthropic
      OPENAI_API_KEY       Required when model is openai
    """
    from chorus_cli.session import build_gateway, run_job

    gateway = build_gateway(ctx.obj["config"], ctx.obj["store"], repo, repo_path)
    payload: dict = {"entity": {"kind": "pr", "number": pr_number}}
    command = Commands.START
    if previous_entry_id:
        payload["previousEntryId"] = previous_entry_id
        command = Commands.RE_REVIEW
    run_job(gateway, command, payload, push=push)
