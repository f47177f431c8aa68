"""Shared plumbing for CLI commands: store/orchestrator access and error mapping."""

from __future__ import annotations

from contextlib import contextmanager

import click

from filelens_core.errors import (
    FileLensError,
    InputValidationError,
    NotFoundError,
    ServiceUnavailable,
)


def get_store(ctx: click.Context):
    store = ctx.obj.get("store") if ctx.obj else None
    if store is None:
        raise click.UsageError("No store configured. Run `filelens init` to set one up.")
    return store


def get_orchestrator(ctx: click.Context):
    """Build the orchestrator on first use so store-only commands never open a model client."""
    from filelens_core.reviewer import ReviewOrchestrator, get_client

    obj = ctx.obj
    if obj.get("orchestrator") is None:
        config = obj["config"]
        try:
            client = get_client(config)
        except (ValueError, ImportError) as e:
            raise click.UsageError(str(e)) from e
        ctx.call_on_close(client.close)
        with errors_as_click():
            obj["orchestrator"] = ReviewOrchestrator(get_store(ctx), client, config)
    return obj["orchestrator"]


def current_user(ctx: click.Context) -> str:
    return ctx.obj["config"]["user"]


@contextmanager
def errors_as_click():
    """Translate FileLensError subclasses into click exceptions (non-zero exit)."""
    try:
        yield
    except InputValidationError as e:
        raise click.UsageError(str(e)) from e
    except NotFoundError as e:
        raise click.ClickException(str(e)) from e
    except ServiceUnavailable as e:
        raise click.ClickException(f"Model server unavailable: {e}") from e
    except FileNotFoundError as e:
        raise click.ClickException(str(e)) from e
    except FileLensError as e:
        raise click.ClickException(str(e)) from e
