"""CLI entry point for chorus.

Commands:
  validate — validate a GitHub issue against the repository
  review   — review a pull request, or re-review it against an earlier result
  history  — list saved validations and reviews
  chain    — show a PR's chain of re-reviews
  delete   — delete one history entry
  stats    — aggregate patterns across saved history
  logs     — show today's structured log entries
"""

from __future__ import annotations

import importlib.metadata
import logging

import click
from rich.console import Console

from chorus_cli.commands.history import chain_cmd, delete_cmd, history_cmd
from chorus_cli.commands.logs import logs_cmd
from chorus_cli.commands.review import review_cmd
from chorus_cli.commands.stats import stats_cmd
from chorus_cli.commands.validate import validate_cmd

console = Console()

_LOGGED_PACKAGES = ("chorus_core", "chorus_store", "chorus_cli")


def _build_store(config: dict):
    """Instantiate the configured history store from .chorus.yml settings.

    Store selection:
      store: sqlite → SQLiteHistoryStore (store_path, default .chorus.db)
      store: noop   → NoOpHistoryStore   (nothing is kept)

    This factory lives in cli.py so neither chorus_core nor chorus_store
    know about the CLI config format.
    """
    store_type = config.get("store", "sqlite")

    if store_type == "sqlite":
        from chorus_store.sqlite import SQLiteHistoryStore

        return SQLiteHistoryStore(
            db_path=config.get("store_path", ".chorus.db"),
            max_entries=config.get("history_max_entries", 500),
        )

    if store_type != "noop":
        console.print(f"[yellow]Unknown store {store_type!r}. Falling back to no store.[/yellow]")

    from chorus_store.noop import NoOpHistoryStore

    return NoOpHistoryStore()


def _attach_log_file(log_dir: str):
    """Send chorus loggers to today's JSONL file. Returns a detach callback."""
    from chorus_core.utils.log_files import DailyJsonlHandler

    handler = DailyJsonlHandler(log_dir)
    handler.setLevel(logging.INFO)
    loggers = [logging.getLogger(name) for name in _LOGGED_PACKAGES]
    for lg in loggers:
        lg.addHandler(handler)
        if lg.level == logging.NOTSET or lg.level > logging.INFO:
            lg.setLevel(logging.INFO)

    def detach():
        for lg in loggers:
            lg.removeHandler(handler)
        handler.close()

    return detach


@click.group()
@click.version_option(
    version=importlib.metadata.version("chorus"),
    prog_name="chorus",
)
@click.option(
    "--config",
    "config_path",
    default=".chorus.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="CHORUS_CONFIG",
)
@click.pass_context
def main(ctx: click.Context, config_path: str):
    """AI validation of GitHub issues and review of pull requests."""
    from chorus_cli.auth import resolve_github_token
    from chorus_core.config import load_config

    ctx.ensure_object(dict)

    try:
        config = load_config(config_path)
    except ValueError as e:
        raise click.UsageError(str(e))

    # Resolve token early so all subcommands share the same resolution.
    token = resolve_github_token(config)
    if token:
        config["github_token"] = token

    if config.get("log_dir"):
        ctx.call_on_close(_attach_log_file(config["log_dir"]))

    store = _build_store(config)
    ctx.obj["store"] = store
    ctx.obj["config"] = config
    ctx.call_on_close(store.close)


main.add_command(validate_cmd)
main.add_command(review_cmd)
main.add_command(history_cmd)
main.add_command(chain_cmd)
main.add_command(delete_cmd)
main.add_command(stats_cmd)
main.add_command(logs_cmd)
