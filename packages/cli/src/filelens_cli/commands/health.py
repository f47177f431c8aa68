"""health command — probe the configured model server."""

from __future__ import annotations

import click
from rich.console import Console

from filelens_cli.runtime import get_orchestrator

console = Console()


@click.command("health")
@click.pass_context
def health_cmd(ctx):
    """Check that the model server answers and list the models it offers."""
    config = ctx.obj["config"]
    report = get_orchestrator(ctx).health_check()

    if report["status"] != "healthy":
        console.print(f"[red]Model server at {config['model_url']} is unreachable.[/red]")
        ctx.exit(1)

    console.print(f"[green]Model server at {config['model_url']} is healthy.[/green]")
    models = report["models"]
    if not models:
        console.print("[yellow]No models installed.[/yellow]")
        return
    for name in models:
        marker = "[bold green]*[/bold green]" if name == config["model_name"] else " "
        console.print(f" {marker} {name}")
    if config["model_name"] not in models:
        console.print(f"[yellow]Configured model {config['model_name']!r} is not installed.[/yellow]")
