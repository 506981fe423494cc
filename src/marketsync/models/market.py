"""Market, PricePoint - canonical entities."""

from __future__ import annotations

from pydantic import BaseModel, Field


class PricePoint(BaseModel):
    """One price sample of a market."""

    yes_price: float = Field(..., ge=0, le=1)
    no_price: float = Field(..., ge=0, le=1)
    timestamp: int  # ms epoch


class Market(BaseModel):
    """Market as served by the source of truth.

    Identity is market_id scoped by source; id is the storage surrogate key.
    yes_price + no_price is expected to be close to 1 but is not enforced.
    """

    id: str = ""  # assigned by storage
    market_id: str
    source: str = "polymarket"
    title: str = ""
    description: str | None = None
    category: str | None = None
    end_date: str | None = None
    status: str = "active"
    yes_price: float = Field(0.5, ge=0, le=1, description="Probability/price in [0, 1]")
    no_price: float = Field(0.5, ge=0, le=1, description="Probability/price in [0, 1]")
    total_volume: float = 0.0
    volume_24h: float = 0.0
    liquidity: float = 0.0
    trades_24h: int = 0
    volatility: float = 0.0
    last_updated: int | None = None  # ms epoch

    def price_point(self) -> PricePoint:
        return PricePoint(
            yes_price=self.yes_price,
            no_price=self.no_price,
            timestamp=self.last_updated or 0,
        )
