"""Transaction, WalletProfile - trade activity entities."""

from __future__ import annotations

from pydantic import BaseModel, Field


class Transaction(BaseModel):
    """Executed trade on a market, keyed by transaction hash."""

    hash: str
    market_id: str  # markets.id of the traded market
    wallet_address: str
    side: str = Field(..., pattern="^(yes|no)$")
    transaction_type: str = Field("BUY", pattern="^(BUY|SELL)$")
    amount: float = Field(..., ge=0)
    price: float = Field(..., ge=0, le=1)
    timestamp: int  # ms epoch


class WalletProfile(BaseModel):
    """Aggregate trading activity of one wallet."""

    address: str
    trade_count: int = 0
    total_volume: float = 0.0
    last_trade_ts: int | None = None
