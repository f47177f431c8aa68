"""analyze command — review one file, or several files as a batch."""

from __future__ import annotations

import json
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from filelens_cli.runtime import current_user, errors_as_click, get_orchestrator
from filelens_core.reviewer import AnalysisResult, BatchResult, FileSubmission, UnchangedResult
from filelens_core.utils.code import is_code_file

console = Console()

_SEVERITY_STYLE = {"critical": "bold red", "high": "red", "medium": "yellow", "low": "blue", "info": "dim"}


def _default_path(file: str) -> str:
    parent = Path(file).parent.as_posix()
    return "/" if parent in ("", ".") else "/" + parent.lstrip("/")


def _read(file: str) -> str:
    return Path(file).read_text(encoding="utf-8", errors="replace")


@click.command("analyze")
@click.option("--project", "project_id", type=int, required=True, help="Project id (see `filelens project list`).")
@click.argument("files", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))
@click.option("--path", "path", default=None, help="Logical directory of the file(s). Defaults to each file's directory.")
@click.option("--rules", "custom_rules", default=None, help="Extra review rules appended to the prompt.")
@click.option(
    "--guideline",
    "guideline_ids",
    multiple=True,
    help="Guideline id to enforce (repeatable, see `filelens guidelines`).",
)
@click.option("--json", "as_json", is_flag=True, help="Print the raw result as JSON.")
@click.pass_context
def analyze_cmd(
    ctx,
    project_id: int,
    files: tuple[str, ...],
    path: str | None,
    custom_rules: str | None,
    guideline_ids: tuple[str, ...],
    as_json: bool,
):
    """Review FILES with the configured model and store the results.

    Unchanged files (same content as the last stored version) are skipped.
    Files with a previous version are reviewed incrementally: only the
    changed lines and their context are sent to the model.
    """
    orchestrator = get_orchestrator(ctx)
    owner = current_user(ctx)

    code_files = [f for f in files if is_code_file(f)]
    for skipped in sorted(set(files) - set(code_files)):
        console.print(f"[dim]Skipping non-code file {skipped}[/dim]")
    if not code_files:
        raise click.UsageError("None of the given files look like source code.")

    if len(code_files) == 1:
        file = code_files[0]
        with console.status(f"Analyzing {file}..."), errors_as_click():
            result = orchestrator.analyze_file(
                project_id,
                Path(file).name,
                _read(file),
                path=path or _default_path(file),
                custom_rules=custom_rules,
                guideline_ids=list(guideline_ids),
                owner=owner,
            )
        if as_json:
            click.echo(json.dumps(result.to_dict(), indent=2))
        else:
            _print_result(result)
        return

    submissions = [
        FileSubmission(
            filename=Path(f).name,
            content=_read(f),
            path=path or _default_path(f),
            custom_rules=custom_rules,
            guideline_ids=list(guideline_ids),
        )
        for f in code_files
    ]
    with console.status(f"Analyzing {len(submissions)} files..."), errors_as_click():
        batch = orchestrator.analyze_batch(project_id, submissions, owner=owner)

    if as_json:
        click.echo(json.dumps(batch.to_dict(), indent=2))
    else:
        _print_batch(batch)
    if batch.failed:
        ctx.exit(1)


def _print_result(result: AnalysisResult | UnchangedResult) -> None:
    location = f"{result.path.rstrip('/')}/{result.filename}"
    if isinstance(result, UnchangedResult):
        console.print(f"[yellow]{location} is unchanged since version {result.version}; nothing to review.[/yellow]")
        return

    mode = f"incremental, {result.changed_line_count} changed line(s)" if result.is_incremental else "full"
    console.print(
        f"\n[bold]{location}[/bold] v{result.version} "
        f"[dim]({result.language}, {mode}, review #{result.review_id})[/dim]"
    )
    if not result.issues:
        console.print("[green]No issues found.[/green]")
        return

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("#", justify="right", width=3)
    table.add_column("Line", justify="right", width=5)
    table.add_column("Severity", width=9)
    table.add_column("Category", width=14)
    table.add_column("Title")
    for index, issue in enumerate(result.issues):
        style = _SEVERITY_STYLE.get(issue.severity, "white")
        table.add_row(
            str(index),
            str(issue.line),
            f"[{style}]{issue.severity}[/{style}]",
            issue.category,
            issue.title,
        )
    console.print(table)
    console.print(
        f"{result.summary.total_issues} issue(s), estimated fix time "
        f"[bold]{result.summary.estimated_fix_time}[/bold]"
    )
    if result.metadata.get("parse_degraded"):
        console.print(
            "[yellow]The model response could not be parsed; "
            "its raw text is kept in the review metadata (raw_response).[/yellow]"
        )


def _print_batch(batch: BatchResult) -> None:
    for item in batch.results:
        if item.success:
            _print_result(item.result)
        else:
            console.print(f"\n[red]{item.filename}: {item.error}[/red]")
    console.print(
        f"\n[bold]{batch.processed}[/bold] processed, "
        f"[green]{batch.successful} succeeded[/green], "
        f"[red]{batch.failed} failed[/red]"
    )
