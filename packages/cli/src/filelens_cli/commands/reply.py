"""reply command — discuss one issue of a stored review with the model."""

from __future__ import annotations

import click
from rich.console import Console

from filelens_cli.runtime import current_user, errors_as_click, get_orchestrator

console = Console()


@click.command("reply")
@click.argument("review_id", type=int)
@click.argument("issue_index", type=int)
@click.argument("message")
@click.pass_context
def reply_cmd(ctx, review_id: int, issue_index: int, message: str):
    """Comment on issue ISSUE_INDEX of review REVIEW_ID and print the model's answer.

    Issue indexes are the "#" column printed by `filelens analyze`. Both the
    comment and the answer are stored with the review.
    """
    orchestrator = get_orchestrator(ctx)
    with console.status("Waiting for the model..."), errors_as_click():
        _, ai_comment = orchestrator.reply_to_comment(review_id, issue_index, message, current_user(ctx))
    console.print(f"[bold cyan]{ai_comment.author}:[/bold cyan] {ai_comment.body}")
