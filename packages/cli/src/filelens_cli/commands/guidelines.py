"""guidelines command — list the coding guidelines available to `analyze --guideline`."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

from filelens_cli.runtime import errors_as_click

console = Console()


@click.command("guidelines")
@click.option("--language", default=None, help="Only show guidelines that apply to this language.")
@click.pass_context
def guidelines_cmd(ctx, language: str | None):
    """List the guideline catalog (built-in, or the file set by `guidelines:` in config)."""
    from filelens_core.catalog import load_catalog

    with errors_as_click():
        catalog = load_catalog(ctx.obj["config"])

    guidelines = catalog.for_language(language) if language else list(catalog.all())
    if not guidelines:
        console.print("[yellow]No guidelines found.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("ID", style="bold", no_wrap=True)
    table.add_column("Name")
    table.add_column("Languages")
    table.add_column("Description", max_width=60)
    for g in guidelines:
        table.add_row(g.id, g.name, ", ".join(g.languages), g.description)
    console.print(table)
