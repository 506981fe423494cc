"""Snapshot, PriceChangeEvent - per-tick derived state."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict


class Snapshot(BaseModel):
    """Immutable ordered collection of items observed at one synchronization tick."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    domain: str
    generation: int
    fetched_at: float  # coordinator clock, seconds
    items: tuple[Any, ...] = ()

    def __len__(self) -> int:
        return len(self.items)

    def get(self, item_id: str) -> Any | None:
        """Return the item whose `id` equals item_id, or None."""
        for item in self.items:
            if getattr(item, "id", None) == item_id:
                return item
        return None


class PriceChangeEvent(BaseModel):
    """Yes-price movement of one market between two consecutive snapshots.

    change_percent is None when the old price was 0 (undefined percentage).
    """

    market_id: str
    old_price: float
    new_price: float
    change: float
    change_percent: float | None
    timestamp: int  # ms epoch
    is_increasing: bool
