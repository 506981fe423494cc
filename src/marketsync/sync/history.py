"""Rolling price windows per market and the sparkline path derived from them."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Iterable, Sequence

from marketsync.models import Market, PricePoint, Snapshot

DEFAULT_WINDOW = 10
PADDING = 4
EPSILON = 0.01


@dataclass(frozen=True)
class Sparkline:
    path: str
    is_positive: bool


def _num(v: float) -> str:
    """Compact SVG number: no trailing zeros, at most 3 decimals."""
    s = f"{v:.3f}".rstrip("0").rstrip(".")
    return "0" if s == "-0" else s


def generate_sparkline_path(
    history: Sequence[PricePoint] | None,
    width: float = 60,
    height: float = 30,
) -> Sparkline:
    """SVG path through the yes-prices of history, min-max scaled into width x height.

    Consecutive points are joined with quadratic midpoint smoothing, so only the first
    point is exact. With fewer than 2 samples the path is a flat line at mid height.
    """
    if not history or len(history) < 2:
        mid = _num(height / 2)
        return Sparkline(path=f"M0,{mid} L{_num(width)},{mid}", is_positive=True)

    prices = [p.yes_price for p in history]
    low = min(prices)
    price_range = (max(prices) - low) or EPSILON
    chart_height = height - PADDING * 2

    points = [
        (
            i / (len(prices) - 1) * width,
            PADDING + chart_height - (price - low) / price_range * chart_height,
        )
        for i, price in enumerate(prices)
    ]

    parts = [f"M{_num(points[0][0])},{_num(points[0][1])}"]
    for (px, py), (cx, cy) in zip(points, points[1:]):
        mid_x = (px + cx) / 2
        parts.append(f"Q{_num(px + (mid_x - px) / 2)},{_num(py)} {_num(mid_x)},{_num((py + cy) / 2)}")
        parts.append(f"T{_num(cx)},{_num(cy)}")

    return Sparkline(path=" ".join(parts), is_positive=prices[-1] >= prices[0])


class HistorySummarizer:
    """Capped FIFO window of (yes_price, no_price, timestamp) samples per market.

    Windows are keyed by Market.id, the storage key of one (source, market_id), so
    the same condition id listed by two sources keeps two histories.
    """

    def __init__(self, window: int = DEFAULT_WINDOW) -> None:
        self.window_size = window
        self._windows: dict[str, deque[PricePoint]] = {}

    def _window(self, market_pk: str) -> deque[PricePoint]:
        if market_pk not in self._windows:
            self._windows[market_pk] = deque(maxlen=self.window_size)
        return self._windows[market_pk]

    def append(self, market_pk: str, point: PricePoint) -> None:
        self._window(market_pk).append(point)

    def ingest(self, snapshot: Snapshot | Iterable[Market]) -> None:
        """Append the current sample of every market in snapshot."""
        markets = snapshot.items if isinstance(snapshot, Snapshot) else snapshot
        for market in markets:
            self.append(market.id, market.price_point())

    def backfill(self, history: dict[str, list[PricePoint]]) -> None:
        """Seed windows from stored samples (oldest first). Existing samples are replaced."""
        for market_pk, points in history.items():
            window = deque(maxlen=self.window_size)
            window.extend(points)
            self._windows[market_pk] = window

    def window(self, market_pk: str) -> list[PricePoint]:
        return list(self._windows.get(market_pk, ()))

    def market_pks(self) -> list[str]:
        return list(self._windows)

    def summary(self, market_pk: str, width: float = 60, height: float = 30) -> Sparkline:
        return generate_sparkline_path(self.window(market_pk), width, height)
