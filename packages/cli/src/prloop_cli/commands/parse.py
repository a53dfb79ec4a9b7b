"""parse command: show how a mention comment is understood."""

from __future__ import annotations

import click
from rich.console import Console

from prloop_core.commands import CommandParser

console = Console()


@click.command("parse")
@click.argument("body")
@click.pass_context
def parse_cmd(ctx, body: str):
    """Parse BODY as a PR comment and print the resulting command."""
    config = ctx.obj.get("config", {}) if ctx.obj else {}
    parser = CommandParser(config.get("bot_name", "prloop"))

    if not parser.mentions_bot(body):
        console.print(f"[yellow]No @{parser.bot_name} mention found.[/yellow]")
        return

    command = parser.parse(body)
    validation = parser.validate(command)

    console.print(f"[bold]Action:[/bold] {command.action}")
    console.print(f"[bold]Target:[/bold] {command.target or '-'}")
    params = ", ".join(f"{k}={v}" for k, v in command.params.items()) or "-"
    console.print(f"[bold]Params:[/bold] {params}")

    if validation.valid:
        console.print("[green]Valid[/green]")
    else:
        for error in validation.errors:
            console.print(f"[red]✗ {error}[/red]")
        ctx.exit(1)
