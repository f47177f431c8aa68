"""project commands — create and list the projects files are reviewed under."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

from filelens_cli.runtime import current_user, errors_as_click, get_store

console = Console()


@click.group("project")
def project_group():
    """Manage projects."""


@project_group.command("create")
@click.argument("name")
@click.pass_context
def create_cmd(ctx, name: str):
    """Create a project owned by the current user."""
    if not name.strip():
        raise click.UsageError("Project name must not be empty.")
    with errors_as_click():
        project = get_store(ctx).create_project(name.strip(), current_user(ctx))
    console.print(f"[green]Created project [bold]{project.name}[/bold] (id {project.id})[/green]")


@project_group.command("list")
@click.pass_context
def list_cmd(ctx):
    """List the current user's projects."""
    projects = get_store(ctx).list_projects(current_user(ctx))
    if not projects:
        console.print("[yellow]No projects yet. Create one with `filelens project create NAME`.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("ID", style="bold", justify="right")
    table.add_column("Name")
    table.add_column("Created At", width=20)
    for p in projects:
        table.add_row(str(p.id), p.name, p.created_at[:19].replace("T", " "))
    console.print(table)
