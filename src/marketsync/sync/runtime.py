"""Sync runtime - wires backend, change bus, poller, coordinator, delta tracker and history."""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Protocol

import structlog

from marketsync.bus import ChangeBus
from marketsync.errors import NotFoundError, ValidationError
from marketsync.models import Market, PricePoint, Snapshot, Transaction, WalletProfile
from marketsync.sync.coordinator import SyncCoordinator
from marketsync.sync.deltas import DeltaTracker, TickDelta
from marketsync.sync.history import HistorySummarizer, Sparkline
from marketsync.sync.poller import PollScheduler

log = structlog.get_logger(__name__)

MARKETS = "markets"
TRANSACTIONS = "transactions"
PROFILE = "profile"

# Tables whose changes invalidate each domain
DOMAIN_TABLES: dict[str, list[tuple[str, str]]] = {
    MARKETS: [("markets", "*"), ("market_data", "*")],
    TRANSACTIONS: [("wallet_transactions", "INSERT")],
    PROFILE: [("wallet_transactions", "INSERT"), ("wallet_profiles", "*")],
}

TickCallback = Callable[[Snapshot, TickDelta], None]


class MarketBackend(Protocol):
    """Read side of the source of truth (MarketStore locally, HttpMarketBackend remotely)."""

    async def fetch_markets(
        self, source: str | None = None, category: str | None = None, limit: int | None = 50
    ) -> list[Market]: ...
    async def fetch_transactions(self, limit: int = 100) -> list[Transaction]: ...
    async def fetch_profiles(self, limit: int = 50) -> list[WalletProfile]: ...
    async def fetch_market(self, market_pk: str) -> Market: ...


class SyncRuntime:
    """Keeps a consistent client-side view of markets, transactions and wallet profiles."""

    def __init__(
        self,
        backend: MarketBackend,
        bus: ChangeBus,
        *,
        poller: PollScheduler | None = None,
        source: str | None = None,
        category: str | None = None,
        limit: int = 50,
        stale_after_sec: float = 5.0,
        highlight_sec: float = 3.0,
        threshold_pct: float = 0.5,
        history_window: int = 10,
        on_tick: TickCallback | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.backend = backend
        self.bus = bus
        self.poller = poller
        self.on_tick = on_tick
        self.coordinator = SyncCoordinator(bus, stale_after_sec=stale_after_sec, clock=clock)
        self.tracker = DeltaTracker(threshold_pct=threshold_pct, highlight_sec=highlight_sec)
        self.history = HistorySummarizer(window=history_window)
        self.last_delta = TickDelta()

        async def fetch_markets() -> list[Market]:
            return await backend.fetch_markets(source=source, category=category, limit=limit)

        self.coordinator.register(MARKETS, fetch_markets, DOMAIN_TABLES[MARKETS])
        self.coordinator.register(TRANSACTIONS, backend.fetch_transactions, DOMAIN_TABLES[TRANSACTIONS])
        self.coordinator.register(PROFILE, backend.fetch_profiles, DOMAIN_TABLES[PROFILE])
        self.coordinator.add_listener(MARKETS, self._on_markets)
        if poller is not None and poller.on_markets_refreshed is None:
            poller.on_markets_refreshed = lambda: self.coordinator.invalidate(MARKETS)

    def _on_markets(self, snapshot: Snapshot) -> None:
        delta = self.tracker.update(snapshot)
        self.history.ingest(snapshot)
        self.last_delta = delta
        if self.on_tick is not None:
            self.on_tick(snapshot, delta)

    def backfill(self, history: dict[str, list[PricePoint]]) -> None:
        """Seed the history windows before the first tick."""
        self.history.backfill(history)

    def start(self, poll_interval_sec: float | None = None) -> None:
        self.coordinator.start()
        if self.poller is not None and poll_interval_sec:
            self.poller.start(poll_interval_sec)

    async def run(self, stop_event: asyncio.Event | None = None, poll_interval_sec: float | None = None) -> None:
        """Run until stop_event is set, then tear down."""
        stop = stop_event or asyncio.Event()
        self.start(poll_interval_sec)
        log.info("sync_runtime_started", poll_interval_sec=poll_interval_sec)
        try:
            await stop.wait()
        finally:
            self.close()
            if self.poller is not None:
                await self.poller.wait_idle()
            await self.coordinator.wait_idle()
        log.info("sync_runtime_stopped")

    def close(self) -> None:
        """Stop the poll timer and release subscriptions synchronously."""
        if self.poller is not None:
            self.poller.stop()
        self.coordinator.teardown()
        self.tracker.close()

    # --- readers ---

    async def markets(self) -> Snapshot:
        return await self.coordinator.read(MARKETS)

    def market(self, market_pk: str) -> Market:
        """Market from the latest snapshot."""
        if not market_pk:
            raise ValidationError("Market id is required")
        snapshot = self.coordinator.snapshot(MARKETS)
        found = snapshot.get(market_pk) if snapshot is not None else None
        if found is None:
            raise NotFoundError(f"Market not in latest snapshot: {market_pk}")
        return found

    async def fetch_market(self, market_pk: str) -> Market:
        """User-triggered single market fetch; errors propagate typed."""
        if not market_pk:
            raise ValidationError("Market id is required")
        return await self.backend.fetch_market(market_pk)

    def sparkline(self, market_pk: str, width: float = 60, height: float = 30) -> Sparkline:
        return self.history.summary(market_pk, width, height)

    def get_status(self) -> dict[str, Any]:
        return {
            "domains": self.coordinator.get_status(),
            "poller": self.poller.get_status() if self.poller is not None else None,
            "subscriptions": len(self.coordinator.subscriptions),
            "active": sorted(self.tracker.active),
            "changes": len(self.tracker.changes),
        }
