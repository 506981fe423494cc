"""Per-market price deltas between consecutive snapshots, and the time-boxed active set."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable

import structlog

from marketsync.models import Market, PriceChangeEvent, Snapshot

log = structlog.get_logger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class TickDelta:
    """Result of one tick: events for markets that changed, and markets that changed significantly."""

    changes: dict[str, PriceChangeEvent] = field(default_factory=dict)
    active: frozenset[str] = frozenset()


class DeltaTracker:
    """Diffs each snapshot against remembered prior yes-prices, keyed by market id.

    The prior-price memory survives snapshot replacement. A market seen for the first
    time only seeds the memory. change_percent is None when the old price is 0, and
    such a market is never flagged active.
    """

    def __init__(
        self,
        threshold_pct: float = 0.5,
        highlight_sec: float = 3.0,
        clock_ms: Callable[[], int] = _now_ms,
    ) -> None:
        self.threshold_pct = threshold_pct
        self.highlight_sec = highlight_sec
        self._clock_ms = clock_ms
        self._prior: dict[str, float] = {}
        self._changes: dict[str, PriceChangeEvent] = {}
        self._active: frozenset[str] = frozenset()
        self._clear_handle: asyncio.TimerHandle | None = None

    @property
    def changes(self) -> dict[str, PriceChangeEvent]:
        """Events of the latest tick."""
        return dict(self._changes)

    @property
    def active(self) -> frozenset[str]:
        return self._active

    def prior_price(self, market_pk: str) -> float | None:
        return self._prior.get(market_pk)

    def update(self, snapshot: Snapshot | Iterable[Market]) -> TickDelta:
        markets = snapshot.items if isinstance(snapshot, Snapshot) else snapshot
        now = self._clock_ms()
        changes: dict[str, PriceChangeEvent] = {}
        active: set[str] = set()

        for market in markets:
            current = market.yes_price
            previous = self._prior.get(market.id)
            self._prior[market.id] = current
            if previous is None:
                continue
            change = current - previous
            if change == 0:
                continue
            pct = change / previous * 100 if previous != 0 else None
            changes[market.id] = PriceChangeEvent(
                market_id=market.id,
                old_price=previous,
                new_price=current,
                change=change,
                change_percent=pct,
                timestamp=now,
                is_increasing=change > 0,
            )
            if pct is not None and abs(pct) > self.threshold_pct:
                active.add(market.id)

        self._changes = changes
        if changes:
            self._set_active(frozenset(active))
            log.debug("price_changes", changed=len(changes), active=len(active))
        return TickDelta(changes=changes, active=frozenset(active))

    def _set_active(self, active: frozenset[str]) -> None:
        """Replace the active set and schedule its clear highlight_sec from now."""
        if self._clear_handle is not None:
            self._clear_handle.cancel()
            self._clear_handle = None
        self._active = active
        if not active:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._clear_handle = loop.call_later(self.highlight_sec, self._clear_active)

    def _clear_active(self) -> None:
        self._clear_handle = None
        self._active = frozenset()

    def close(self) -> None:
        if self._clear_handle is not None:
            self._clear_handle.cancel()
            self._clear_handle = None
        self._active = frozenset()
