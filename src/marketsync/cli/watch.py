"""Watch subcommand: run the sync runtime and print price changes as they arrive."""

from __future__ import annotations

import asyncio
import signal
import sys

import typer

from marketsync.bus import ChangeBus, RemoteChangeFeed
from marketsync.models import Snapshot
from marketsync.sync import SyncRuntime, TickDelta

app = typer.Typer(help="Follow live market changes")


def _printer(runtime_ref: list[SyncRuntime]):
    def on_tick(snapshot: Snapshot, delta: TickDelta) -> None:
        typer.echo(f"[gen {snapshot.generation}] {len(snapshot)} markets, {len(delta.changes)} changed")
        runtime = runtime_ref[0]
        for market_pk, event in delta.changes.items():
            market = snapshot.get(market_pk)
            title = (market.title if market else market_pk)[:50]
            pct = f"{event.change_percent:+.2f}%" if event.change_percent is not None else "n/a"
            flag = "*" if market_pk in delta.active else " "
            trend = ""
            if market is not None:
                trend = "up" if runtime.sparkline(market.id).is_positive else "down"
            typer.echo(f" {flag} {event.old_price:.3f} -> {event.new_price:.3f} ({pct}) {trend:4} {title}")

    return on_tick


@app.callback(invoke_without_command=True)
def watch(
    ctx: typer.Context,
    remote: str | None = typer.Option(
        None, "--remote", help="Backend API URL; default runs against the local store with the poller"
    ),
    source: str | None = typer.Option(None, "--source", help="Filter by source"),
    category: str | None = typer.Option(None, "--category", help="Filter by category"),
) -> None:
    """Keep a live market view and print price changes (Ctrl+C to stop)."""
    if ctx.invoked_subcommand is not None:
        return
    settings = ctx.obj["settings"]
    bus = ChangeBus()
    runtime_ref: list[SyncRuntime] = []
    common = dict(
        source=source,
        category=category,
        stale_after_sec=settings.stale_after_sec,
        highlight_sec=settings.highlight_sec,
        threshold_pct=settings.active_threshold_pct,
        history_window=settings.history_window,
        on_tick=_printer(runtime_ref),
    )
    stop_event = asyncio.Event()

    async def main() -> None:
        loop = asyncio.get_running_loop()
        if sys.platform != "win32":
            loop.add_signal_handler(signal.SIGINT, stop_event.set)
            loop.add_signal_handler(signal.SIGTERM, stop_event.set)
        if remote:
            from marketsync.backend import HttpMarketBackend

            backend = HttpMarketBackend(remote)
            runtime = SyncRuntime(backend, bus, **common)
            runtime_ref.append(runtime)
            feed = RemoteChangeFeed(
                backend.realtime_url,
                bus,
                reconnect_base_delay_sec=settings.reconnect_base_delay_sec,
                reconnect_max_delay_sec=settings.reconnect_max_delay_sec,
            )
            feed_task = asyncio.create_task(feed.run(stop_event))
            try:
                await runtime.run(stop_event)
            finally:
                await feed_task
                await backend.aclose()
            return

        from marketsync.ingestion.jobs import make_poller
        from marketsync.storage import MarketStore

        store = MarketStore(settings.db_path, bus)
        try:
            runtime = SyncRuntime(store, bus, poller=make_poller(store, settings), **common)
            runtime_ref.append(runtime)
            refs = store.top_market_refs(50)
            history = store.price_history([pk for pk, _ in refs], points=settings.history_window)
            runtime.backfill(history)
            await runtime.run(stop_event, poll_interval_sec=settings.poll_interval_sec)
        finally:
            store.close()

    typer.echo("Watching markets (Ctrl+C to stop)...")
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
    typer.echo("Stopped.")
