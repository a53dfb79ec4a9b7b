"""check command: historical reconciliation of a live pull request.

Meant as a CI gate: exits 1 when the reviewer raised issues that no later
commit message claims to fix, or when the same issue keeps coming back.
"""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

from prloop_cli.auth import require_github_token
from prloop_core.classifier import build_classifier
from prloop_core.gh.platform import GitHubPlatform
from prloop_core.history import reconcile
from prloop_core.models import PRKey

console = Console()


@click.command("check")
@click.option("--repo", required=True, help="GitHub repository (owner/name).")
@click.option("--pr", "pr_number", type=int, required=True, help="Pull request number.")
@click.option("--reviewer", "reviewers", multiple=True, help="Reviewer alias. Repeatable; overrides config.")
@click.pass_context
def check_cmd(ctx, repo: str, pr_number: int, reviewers: tuple[str, ...]):
    """Check a PR for unresolved reviewer issues and review loops."""
    config = ctx.obj["config"]
    platform = GitHubPlatform(require_github_token(config))
    classifier = build_classifier(config, aliases=list(reviewers) or None)
    key = PRKey.from_full_name(repo, pr_number)

    report = reconcile(
        platform.list_history(key),
        platform.list_commit_messages(key),
        classifier,
        loop_threshold=config.get("loop_threshold", 3),
    )

    if report.is_approved:
        console.print(f"[green]✓ {key} is approved by the reviewer.[/green]")
        return

    if report.has_unresolved:
        table = Table(title=f"Unresolved issues: {key}", show_header=True, header_style="bold cyan")
        table.add_column("#", justify="right", width=4)
        table.add_column("Issue")
        for i, issue in enumerate(report.unresolved_issues, start=1):
            table.add_row(str(i), issue)
        console.print(table)

    if report.loops.has_loops:
        table = Table(title="Review loops", show_header=True, header_style="bold red")
        table.add_column("Issue")
        table.add_column("Raised", justify="right", width=8)
        for loop in report.loops.loops:
            table.add_row(loop.normalized_issue_text, str(loop.count))
        console.print(table)

    if report.has_unresolved or report.loops.has_loops:
        ctx.exit(1)

    console.print(f"[green]✓ No unresolved reviewer issues on {key}.[/green]")
