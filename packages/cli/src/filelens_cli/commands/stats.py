"""stats command — aggregate patterns across a project's reviews."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

from filelens_cli.runtime import current_user, get_store
from filelens_core.models import CATEGORIES, SEVERITIES
from filelens_core.summary import project_stats

console = Console()

_SEV_STYLE = {"critical": "bold red", "high": "red", "medium": "yellow", "low": "blue", "info": "dim"}


@click.command("stats")
@click.option("--project", "project_id", type=int, required=True, help="Project id.")
@click.option("--top", default=10, show_default=True, help="Number of most flagged files to show.")
@click.pass_context
def stats_cmd(ctx, project_id: int, top: int):
    """Show aggregated review statistics for a project.

    Reports the severity and category distribution of issues and the most
    frequently flagged files, useful for spotting systemic problems.
    """
    store = get_store(ctx)
    project = store.get_project(project_id, current_user(ctx))
    if project is None:
        raise click.ClickException(f"Project {project_id} not found")

    reviews = store.list_reviews(project_id)
    if not reviews:
        console.print("[yellow]No reviews found for this project.[/yellow]")
        return

    stats = project_stats(reviews)
    total_issues = stats["total_issues"]

    # --- Summary ---
    console.print(f"\n[bold]Review stats for [cyan]{project.name}[/cyan][/bold]")
    console.print(f"  Total reviews:     {stats['total_reviews']}")
    for status, count in sorted(stats["by_status"].items()):
        console.print(f"    {status.lower():<12} {count}")
    console.print(f"  Total issues:      {total_issues}")
    console.print(f"  Avg per review:    {stats['avg_issues_per_review']:.1f}")
    console.print(f"  Incremental share: {stats['incremental_share'] * 100:.0f}%")
    console.print(f"  Estimated fixes:   {stats['estimated_fix_time']}")

    # --- Severity breakdown ---
    if stats["by_severity"]:
        sev_table = Table(title="Severity Breakdown", show_header=True)
        sev_table.add_column("Severity", style="bold")
        sev_table.add_column("Count", justify="right")
        sev_table.add_column("% of total", justify="right")
        for sev in SEVERITIES:
            count = stats["by_severity"].get(sev, 0)
            pct = f"{count / total_issues * 100:.1f}%" if total_issues else "0%"
            style = _SEV_STYLE.get(sev, "white")
            sev_table.add_row(f"[{style}]{sev}[/{style}]", str(count), pct)
        console.print(sev_table)

    # --- Category breakdown ---
    if stats["by_category"]:
        cat_table = Table(title="Category Breakdown", show_header=True)
        cat_table.add_column("Category")
        cat_table.add_column("Count", justify="right")
        for category in CATEGORIES:
            count = stats["by_category"].get(category, 0)
            if count:
                cat_table.add_row(category, str(count))
        console.print(cat_table)

    # --- Most flagged files ---
    if stats["files"]:
        file_table = Table(title=f"Top {top} Most Flagged Files", show_header=True)
        file_table.add_column("File")
        file_table.add_column("Issues", justify="right")
        for file_path, count in stats["files"][:top]:
            file_table.add_row(file_path, str(count))
        console.print(file_table)
