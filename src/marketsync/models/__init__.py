"""Canonical schema (Pydantic) - Market, Snapshot, PriceChangeEvent, Transaction."""

from marketsync.models.market import Market, PricePoint
from marketsync.models.notification import ChangeNotification
from marketsync.models.snapshot import PriceChangeEvent, Snapshot
from marketsync.models.transaction import Transaction, WalletProfile

__all__ = [
    "Market",
    "PricePoint",
    "Snapshot",
    "PriceChangeEvent",
    "ChangeNotification",
    "Transaction",
    "WalletProfile",
]
