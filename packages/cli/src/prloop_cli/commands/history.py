"""history command: display the fix/merge attempt journal."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

console = Console()


@click.command("history")
@click.option("--repo", required=True, help="GitHub repository (owner/name).")
@click.option("--pr", "pr_number", type=int, default=None, help="Filter by PR number.")
@click.option("--limit", default=20, show_default=True, help="Maximum number of records to show.")
@click.pass_context
def history_cmd(ctx, repo: str, pr_number: int | None, limit: int):
    """Show past fix attempts and merges for a repository."""
    from prloop_store.noop import NoOpStore

    store = ctx.obj.get("store") if ctx.obj else None
    if store is None or isinstance(store, NoOpStore):
        raise click.UsageError("No store configured. Add 'store: sqlite' to .prloop.yml to keep a journal.")

    records = store.list_attempts(repo, pr_number=pr_number)
    if not records:
        console.print("[yellow]No attempts recorded.[/yellow]")
        return

    # Most recent first, capped at --limit.
    records = list(reversed(records))[:limit]

    table = Table(title=f"Attempt History: {repo}", show_header=True, header_style="bold cyan")
    table.add_column("PR", style="bold", width=6)
    table.add_column("Kind", width=6)
    table.add_column("Result", width=8)
    table.add_column("Issues", justify="right", width=7)
    table.add_column("Fixes", justify="right", width=6)
    table.add_column("Error", max_width=40)
    table.add_column("Recorded At", width=20)

    for r in records:
        result = "[green]ok[/green]" if r.success else "[red]failed[/red]"
        table.add_row(
            f"#{r.pr_number}",
            r.kind,
            result,
            str(r.issue_count),
            str(r.fix_count),
            (r.error or "")[:40],
            r.recorded_at[:19].replace("T", " "),
        )

    console.print(table)
