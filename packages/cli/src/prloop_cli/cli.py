"""CLI entry point for prloop.

Commands:
  parse    print how a mention comment is parsed and validated
  check    reconcile a live PR's review history against its commits
  handle   run webhook payload files through the orchestrator
  history  display the fix/merge attempt journal
"""

from __future__ import annotations

import importlib.metadata
import logging

import click
from rich.console import Console
from rich.logging import RichHandler

from prloop_cli.commands.check import check_cmd
from prloop_cli.commands.handle import handle_cmd
from prloop_cli.commands.history import history_cmd
from prloop_cli.commands.parse import parse_cmd

console = Console()


def _build_store(config: dict):
    """Instantiate the configured attempt journal.

      store: sqlite → SQLiteStore (store_path, default .prloop.db)
      (default)     → NoOpStore   (nothing persisted)

    Lives here so neither prloop_core nor prloop_store know the config format.
    """
    from prloop_store.noop import NoOpStore

    if config.get("store", "noop") == "sqlite":
        from prloop_store.sqlite import SQLiteStore

        return SQLiteStore(db_path=config.get("store_path", ".prloop.db"))

    return NoOpStore()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=False)],
        force=True,
    )
    # PyGithub and urllib3 are chatty at DEBUG.
    for noisy in ("github", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


@click.group()
@click.version_option(
    version=importlib.metadata.version("prloop"),
    prog_name="prloop",
)
@click.option(
    "--config",
    "config_path",
    default=".prloop.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="PRLOOP_CONFIG",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.pass_context
def main(ctx: click.Context, config_path: str, verbose: bool):
    """Automate the reviewer feedback loop on GitHub pull requests."""
    from prloop_cli.auth import resolve_github_token
    from prloop_core.config import load_config

    _configure_logging(verbose)
    ctx.ensure_object(dict)

    config = load_config(config_path)

    if not config.get("github_token"):
        token = resolve_github_token()
        if token:
            config["github_token"] = token

    store = _build_store(config)
    ctx.obj["store"] = store
    ctx.obj["config"] = config
    ctx.call_on_close(store.close)


main.add_command(parse_cmd)
main.add_command(check_cmd)
main.add_command(handle_cmd)
main.add_command(history_cmd)
