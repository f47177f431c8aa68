"""CLI entry point for filelens.

Commands:
  analyze     — review one file, or several as a batch
  history     — list past reviews for a project
  stats       — aggregate issue patterns across a project's reviews
  health      — check the model server and list its models
  reply       — ask the model about one issue of a stored review
  guidelines  — list the coding guidelines that can be enforced
  project     — create / list projects
  purge       — delete old FAILED reviews
  init        — interactive writer of .filelens.yml
"""

from __future__ import annotations

import importlib.metadata
import logging

import click
from rich.console import Console
from rich.logging import RichHandler

from filelens_cli.commands.analyze import analyze_cmd
from filelens_cli.commands.guidelines import guidelines_cmd
from filelens_cli.commands.health import health_cmd
from filelens_cli.commands.history import history_cmd
from filelens_cli.commands.init import init_cmd
from filelens_cli.commands.project import project_group
from filelens_cli.commands.purge import purge_cmd
from filelens_cli.commands.reply import reply_cmd
from filelens_cli.commands.stats import stats_cmd

console = Console()


def _build_store(config: dict):
    """Instantiate the configured store from .filelens.yml settings.

    Store selection:
      store: sqlite → SQLiteStore (uses store_path, default .filelens.db)
      store: memory → InMemoryStore (nothing survives the process)

    This factory lives in cli.py so neither filelens_core nor filelens_store
    know about the CLI config format.
    """
    store_type = config.get("store", "sqlite")

    if store_type == "memory":
        from filelens_store.memory import InMemoryStore

        return InMemoryStore()

    if store_type == "sqlite":
        from filelens_store.sqlite import SQLiteStore

        return SQLiteStore(db_path=config.get("store_path", ".filelens.db"))

    raise click.UsageError(f"Unknown store {store_type!r}. Choose 'sqlite' or 'memory'.")


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=verbose)],
        force=True,
    )


def _version() -> str:
    try:
        return importlib.metadata.version("filelens")
    except importlib.metadata.PackageNotFoundError:
        return "0.0.0"


@click.group()
@click.version_option(version=_version(), prog_name="filelens")
@click.option(
    "--config",
    "config_path",
    default=".filelens.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="FILELENS_CONFIG",
)
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging.")
@click.pass_context
def main(ctx: click.Context, config_path: str, verbose: bool):
    """AI code review for individual files, backed by a local model server."""
    from filelens_core.config import load_config
    from filelens_core.errors import PersistenceError

    _configure_logging(verbose)
    ctx.ensure_object(dict)

    try:
        config = load_config(config_path)
        store = _build_store(config)
    except PersistenceError as e:
        raise click.ClickException(str(e)) from e

    ctx.obj["store"] = store
    ctx.obj["config"] = config
    ctx.call_on_close(store.close)


main.add_command(analyze_cmd)
main.add_command(history_cmd)
main.add_command(stats_cmd)
main.add_command(health_cmd)
main.add_command(reply_cmd)
main.add_command(guidelines_cmd)
main.add_command(project_group)
main.add_command(purge_cmd)
main.add_command(init_cmd)
