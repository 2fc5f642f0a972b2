"""Command line interface for inspecting lifecycle instances."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

import typer

from lcmcore import LifecycleEngine, LifecycleError, NotFoundError, load_config

T = TypeVar("T")

app = typer.Typer(help="CLI for lifecycle state tracking")


@app.callback()
def main(
    ctx: typer.Context,
    database_url: Optional[str] = typer.Option(
        None, "--database-url", envvar="LCM_DATABASE_URL", help="Store URL"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """lcmcore CLI entry point."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING)
    config = load_config()
    if database_url:
        config.database_url = database_url
    ctx.obj = config


def _run(ctx: typer.Context, action: Callable[[LifecycleEngine], Awaitable[T]]) -> T:
    async def runner() -> Any:
        engine = LifecycleEngine.from_config(ctx.obj)
        try:
            return await action(engine)
        finally:
            await engine.store.close()

    try:
        return asyncio.run(runner())
    except NotFoundError:
        typer.echo("Lifecycle instance not found")
        raise typer.Exit(code=1)
    except LifecycleError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=2)


@app.command("init")
def init(ctx: typer.Context) -> None:
    """Create the store schema if it does not exist."""

    async def action(engine: LifecycleEngine) -> None:
        await engine.store.init()

    _run(ctx, action)
    typer.echo("Store initialised")


@app.command("state")
def state(ctx: typer.Context, instance_id: str) -> None:
    """
    Show the current state of a lifecycle instance.

    Example:
        lcm state 3f2b9c1e-...
        # Output: 3f2b9c1e-...  apiLifecycle  Testing
        #         updated by bob at 2026-01-01 10:00:00+00:00
    """
    record = _run(ctx, lambda engine: engine.get_state(instance_id))
    typer.echo(f"{record.instance_id}\t{record.lifecycle_name}\t{record.current_state}")
    typer.echo(f"updated by {record.updated_by} at {record.updated_at}")


@app.command("checklist")
def checklist(ctx: typer.Context, instance_id: str, lifecycle_state: str) -> None:
    """Show checklist items recorded for an instance under a state."""
    record = _run(
        ctx, lambda engine: engine.get_checklist_state(instance_id, lifecycle_state)
    )
    if not record.checklist:
        typer.echo(f"No checklist items for state {lifecycle_state}")
        return
    for name, item in sorted(record.checklist.items()):
        mark = "x" if item.checked else " "
        typer.echo(f"[{mark}] {name} ({item.updated_by})")


@app.command("history")
def history(ctx: typer.Context, instance_id: str) -> None:
    """
    Show the transition history of a lifecycle instance, oldest first.

    Example:
        lcm history 3f2b9c1e-...
        # Output: 2026-01-01 10:00:00+00:00  Created -> Testing  bob
    """
    events = _run(ctx, lambda engine: engine.get_history(instance_id).to_list())
    if not events:
        typer.echo("No transitions recorded")
        return
    for event in events:
        typer.echo(
            f"{event.timestamp}\t{event.previous_state} -> {event.post_state}\t{event.user}"
        )


@app.command("ids")
def ids(ctx: typer.Context, lifecycle_name: str, lifecycle_state: str) -> None:
    """List ids of instances of a lifecycle currently in a state."""
    found = _run(
        ctx, lambda engine: engine.list_instance_ids(lifecycle_state, lifecycle_name)
    )
    if not found:
        typer.echo("No instances found")
        return
    for instance_id in sorted(found):
        typer.echo(instance_id)


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
