"""handle command: feed webhook payloads through the orchestrator.

Each PAYLOAD file is JSON of the form {"event": "<X-GitHub-Event>",
"payload": {...}}. All files share one state store, so a takeover in the
first file is visible to reviewer events in the next.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from prloop_cli.auth import require_github_token
from prloop_core.dispatcher import EventDispatcher
from prloop_core.models import utcnow
from prloop_core.orchestrator import EventOutcome, build_orchestrator
from prloop_core.state import PRStateStore
from prloop_store.models import KIND_FIX, KIND_MERGE, AttemptRecord

logger = logging.getLogger(__name__)
console = Console()

_FIX_RESULTS = ("fix_applied", "fix_failed")
_MERGE_RESULTS = ("merged", "merge_failed")


def _outcome_to_record(outcome: EventOutcome) -> AttemptRecord | None:
    """Map a fix or merge outcome to a journal record; None for anything else.

    The CLI owns this mapping so prloop_core stays free of persistence.
    """
    if outcome.key is None:
        return None

    if outcome.result in _FIX_RESULTS:
        attempt = outcome.fix_attempt
        return AttemptRecord(
            repo=outcome.key.full_name,
            pr_number=outcome.key.pr_number,
            kind=KIND_FIX,
            success=outcome.result == "fix_applied",
            recorded_at=(attempt.timestamp if attempt else utcnow()).isoformat(),
            issue_count=attempt.issue_count if attempt else 0,
            fix_count=attempt.fix_count if attempt else 0,
            error=attempt.error if attempt else outcome.detail,
        )

    if outcome.result in _MERGE_RESULTS:
        return AttemptRecord(
            repo=outcome.key.full_name,
            pr_number=outcome.key.pr_number,
            kind=KIND_MERGE,
            success=outcome.result == "merged",
            recorded_at=utcnow().isoformat(),
            error=outcome.detail,
        )

    return None


def _journal(store, outcome: EventOutcome) -> None:
    record = _outcome_to_record(outcome)
    if record is None or store is None:
        return
    try:
        store.save(record)
    except Exception as e:
        logger.warning("Could not journal %s attempt for %s: %s", record.kind, outcome.key, e)


def _load_event(path: str) -> tuple[str, dict]:
    with open(path) as f:
        data = json.load(f)
    if not isinstance(data, dict) or "event" not in data or "payload" not in data:
        raise click.BadParameter(f"{path}: expected an object with 'event' and 'payload' keys.")
    return data["event"], data["payload"]


@click.command("handle")
@click.argument("payloads", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--concurrent",
    is_flag=True,
    help="Submit all events at once instead of one after another.",
)
@click.pass_context
def handle_cmd(ctx, payloads: tuple[str, ...], concurrent: bool):
    """Process webhook event files in order.

    \b
    Required environment variables:
      GITHUB_TOKEN         GitHub token (or use gh CLI)
      PRLOOP_FIX_API_KEY   Fix service credential when fix_provider is http
      ANTHROPIC_API_KEY    Required when fix_provider is anthropic
      OPENAI_API_KEY       Required when fix_provider is openai
    """
    config = ctx.obj["config"]
    require_github_token(config)

    if config["fix_provider"] == "anthropic" and not config.get("anthropic_api_key"):
        raise click.UsageError("ANTHROPIC_API_KEY environment variable is not set.")
    if config["fix_provider"] == "openai" and not config.get("openai_api_key"):
        raise click.UsageError("OPENAI_API_KEY environment variable is not set.")

    events = [_load_event(p) for p in payloads]

    state = PRStateStore()
    orchestrator = build_orchestrator(config, store=state)
    journal = ctx.obj.get("store")

    outcomes: list[EventOutcome] = []
    with EventDispatcher.from_config(orchestrator, state, config) as dispatcher:
        if concurrent:
            futures = [dispatcher.submit(event, payload) for event, payload in events]
            outcomes = [f.result() for f in futures]
        else:
            for event, payload in events:
                outcomes.append(dispatcher.submit(event, payload).result())

    table = Table(title="Handled events", show_header=True, header_style="bold cyan")
    table.add_column("File")
    table.add_column("Event", no_wrap=True)
    table.add_column("PR", no_wrap=True)
    table.add_column("Result", no_wrap=True)
    table.add_column("Detail")
    for path, (event, _), outcome in zip(payloads, events, outcomes):
        _journal(journal, outcome)
        table.add_row(Path(path).name, event, str(outcome.key or "-"), outcome.result, outcome.detail or "")
    console.print(table)
