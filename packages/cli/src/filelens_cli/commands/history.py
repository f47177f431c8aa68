"""history command — display past reviews of a project."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

from filelens_cli.runtime import current_user, get_store

console = Console()

_STATUS_STYLE = {"COMPLETED": "green", "FAILED": "red", "PROCESSING": "yellow"}


@click.command("history")
@click.option("--project", "project_id", type=int, required=True, help="Project id.")
@click.option("--limit", default=20, show_default=True, help="Maximum number of reviews to show.")
@click.pass_context
def history_cmd(ctx, project_id: int, limit: int):
    """Show past reviews for a project, most recent first."""
    store = get_store(ctx)
    project = store.get_project(project_id, current_user(ctx))
    if project is None:
        raise click.ClickException(f"Project {project_id} not found")

    reviews = store.list_reviews(project_id)
    if not reviews:
        console.print("[yellow]No reviews found.[/yellow]")
        return

    reviews = list(reversed(reviews))[:limit]

    table = Table(title=f"Review History — {project.name}", show_header=True, header_style="bold cyan")
    table.add_column("ID", style="bold", no_wrap=True)
    table.add_column("File", max_width=40)
    table.add_column("Ver", justify="right")
    table.add_column("Status", no_wrap=True)
    table.add_column("Issues", justify="right")
    table.add_column("Fix time", justify="right")
    table.add_column("Reviewed At", no_wrap=True)

    for r in reviews:
        status = r.status.value
        style = _STATUS_STYLE.get(status, "white")
        table.add_row(
            str(r.id),
            f"{r.path.rstrip('/')}/{r.filename}",
            f"{r.version}*" if r.is_incremental else str(r.version),
            f"[{style}]{status}[/{style}]",
            str(r.summary.total_issues) if r.summary else "-",
            r.summary.estimated_fix_time if r.summary else "-",
            r.created_at[:16].replace("T", " "),
        )

    console.print(table)
    console.print("[dim]* incremental review[/dim]")
