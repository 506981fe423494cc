"""Markets subcommand: sync, list."""

from __future__ import annotations

import asyncio

import typer

from marketsync.ingestion.jobs import make_poller
from marketsync.storage import MarketStore

app = typer.Typer(help="Aggregator sync and market listing")


@app.command("sync")
def sync(ctx: typer.Context) -> None:
    """Run one poll tick: refresh markets and transactions from Polymarket into the local store."""
    settings = ctx.obj["settings"]
    store = MarketStore(settings.db_path)
    try:
        poller = make_poller(store, settings)
        asyncio.run(poller.tick())
        status = poller.get_status()
        failed = [name for name, count in status["failures"].items() if count]
        if failed:
            typer.echo(f"Sync finished with failures: {', '.join(failed)}")
            raise typer.Exit(1)
        typer.echo("Sync finished.")
    finally:
        store.close()


@app.command("list")
def list_markets(
    ctx: typer.Context,
    source: str | None = typer.Option(None, "--source", help="Filter by source"),
    category: str | None = typer.Option(None, "--category", help="Filter by category"),
    limit: int = typer.Option(50, "--limit", "-n", help="Max markets (clamped to 50)"),
) -> None:
    """List active markets in the local store with their latest prices."""
    settings = ctx.obj["settings"]
    store = MarketStore(settings.db_path)
    try:
        rows = asyncio.run(store.fetch_markets(source=source, category=category, limit=limit))
        for m in rows:
            title = (m.title or "")[:60]
            typer.echo(f"  {m.id[:12]}  yes={m.yes_price:.3f}  vol24h={m.volume_24h:.0f}  {title}")
        typer.echo(f"Total: {len(rows)} markets")
    finally:
        store.close()
