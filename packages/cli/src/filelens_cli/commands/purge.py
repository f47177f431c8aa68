"""purge command — apply the retention policy for FAILED reviews."""

from __future__ import annotations

import click
from rich.console import Console

from filelens_cli.runtime import errors_as_click, get_store
from filelens_core.reviewer import purge_failed_reviews

console = Console()


@click.command("purge")
@click.option(
    "--days",
    type=click.IntRange(min=0),
    default=None,
    help="Delete FAILED reviews older than this many days. Defaults to failed_review_retention_days.",
)
@click.pass_context
def purge_cmd(ctx, days: int | None):
    """Delete old FAILED reviews (and their comments). Completed reviews are never purged."""
    if days is None:
        days = int(ctx.obj["config"]["failed_review_retention_days"])
    with errors_as_click():
        removed = purge_failed_reviews(get_store(ctx), days)
    console.print(f"Removed {removed} failed review(s) older than {days} day(s).")
