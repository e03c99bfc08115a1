"""validate command — check a GitHub issue against the repository."""

from __future__ import annotations

import click

from chorus_core.events import Commands


@click.command("validate")
@click.option("--repo", required=True, help="GitHub repository in owner/name format.")
@click.option("--issue", "issue_number", type=int, required=True, help="Issue number to validate.")
@click.option("--path", "repo_path", default=".", show_default=True, help="Local checkout of the repository.")
@click.option("--push", is_flag=True, help="Post the validation as an issue comment when it completes.")
@click.pass_context
def validate_cmd(ctx, repo: str, issue_number: int, repo_path: str, push: bool):
    """Validate an issue: is the bug real, or the feature feasible?

    \b
    Required environment variables:
      GITHUB_TOKEN         GitHub personal access token (or use gh CLI)
      ANTHROPIC_API_KEY    Required when model is anthropic
      OPENAI_API_KEY       Required when model is openai
    """
    from chorus_cli.session import build_gateway, run_job

    gateway = build_gateway(ctx.obj["config"], ctx.obj["store"], repo, repo_path)
    run_job(gateway, Commands.START, {"entity": {"kind": "issue", "number": issue_number}}, push=push)
