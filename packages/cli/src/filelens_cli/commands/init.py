"""init command — interactive setup wizard.

Writes .filelens.yml with the model server, model and store settings so
every later command runs without flags.
"""

from __future__ import annotations

from pathlib import Path

import click
import yaml
from rich.console import Console

from filelens_core.config import DEFAULT_CONFIG

console = Console()

_DEFAULT_URLS = {"ollama": "http://localhost:11434", "openai": "http://localhost:8080/v1"}


@click.command("init")
@click.pass_context
def init_cmd(ctx):
    """Set up filelens in the current directory.

    Creates (or updates) the configuration file with the model server and
    the review store to use.
    """
    config_path = Path(ctx.find_root().params.get("config_path") or ".filelens.yml")
    console.print("\n[bold cyan]filelens init[/bold cyan] — setup wizard\n")

    # --- Choose provider ---
    console.print("Model server:")
    console.print("  [bold]ollama[/bold]  — Ollama's native API (default)")
    console.print("  [bold]openai[/bold]  — any OpenAI-compatible local server (llama.cpp, vLLM, LM Studio)")
    provider = click.prompt(
        "Provider",
        type=click.Choice(["ollama", "openai"]),
        default="ollama",
    )
    model_url = click.prompt("Server URL", default=_DEFAULT_URLS[provider])
    model_name = click.prompt("Model name", default=DEFAULT_CONFIG["model_name"])

    # --- Choose store backend ---
    console.print("\nReview store:")
    console.print("  [bold]sqlite[/bold]  — local SQLite file (default, keeps history)")
    console.print("  [bold]memory[/bold]  — nothing persisted between runs")
    store_type = click.prompt(
        "Store backend",
        type=click.Choice(["sqlite", "memory"]),
        default="sqlite",
    )

    config: dict = {"provider": provider, "model_url": model_url, "model_name": model_name, "store": store_type}

    if store_type == "sqlite":
        db_path = click.prompt("SQLite database path", default=DEFAULT_CONFIG["store_path"])
        if db_path != DEFAULT_CONFIG["store_path"]:
            config["store_path"] = db_path
        console.print(f"[green]SQLite store configured at {db_path}[/green]")

    _write_config(config_path, config)
    console.print(f"[green]Wrote {config_path}[/green]")

    if provider == "openai":
        console.print("[dim]Set OPENAI_API_KEY if your server requires a key.[/dim]")

    console.print("\n[bold green]Setup complete![/bold green]")
    console.print("Next: [bold]filelens health[/bold], then [bold]filelens project create <name>[/bold]")


def _write_config(path: Path, config: dict) -> None:
    """Write or update the config file, preserving any existing keys."""
    existing: dict = {}
    if path.exists():
        existing = yaml.safe_load(path.read_text()) or {}
    existing.update(config)
    path.write_text(yaml.dump(existing, default_flow_style=False, sort_keys=False))
