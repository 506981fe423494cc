"""DuckDB-backed source of truth."""

from marketsync.storage.store import MarketStore

__all__ = ["MarketStore"]
