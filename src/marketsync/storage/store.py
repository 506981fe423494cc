"""MarketStore - the source of truth: DuckDB writes that publish change notifications."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Callable, TypeVar

import duckdb
import structlog

from marketsync.bus import ChangeBus
from marketsync.errors import TransportError
from marketsync.models import ChangeNotification, Market, PricePoint, Transaction, WalletProfile
from marketsync.storage.db import get_connection, init_schema
from marketsync.storage.markets import (
    MAX_QUERY_LIMIT,
    get_market,
    price_history,
    query_markets,
    top_market_refs,
    upsert_market,
)
from marketsync.storage.transactions import insert_transactions, list_transactions, list_wallet_profiles

log = structlog.get_logger(__name__)

T = TypeVar("T")


class MarketStore:
    """Owns one DuckDB connection. Every write publishes on the ChangeBus."""

    def __init__(self, db_path: str | Path, bus: ChangeBus | None = None) -> None:
        self.db_path = db_path
        self.bus = bus or ChangeBus()
        self._conn = None

    def _get_conn(self):
        if self._conn is None:
            self._conn = get_connection(self.db_path)
            init_schema(self._conn)
        return self._conn

    def _notify(self, table: str, event: str, **payload: str) -> None:
        self.bus.publish(ChangeNotification(table=table, event=event, payload=payload))

    def upsert_markets(self, markets: list[Market], ts: int | None = None) -> int:
        """Write markets and one price sample each. Returns count written."""
        conn = self._get_conn()
        for m in markets:
            market_pk, event = upsert_market(conn, m, ts=ts)
            self._notify("markets", event, id=market_pk, market_id=m.market_id)
            self._notify("market_data", "INSERT", market_id=market_pk)
        log.debug("markets_upserted", count=len(markets))
        return len(markets)

    def insert_transactions(self, transactions: list[Transaction]) -> list[Transaction]:
        new = insert_transactions(self._get_conn(), transactions)
        for t in new:
            self._notify("wallet_transactions", "INSERT", hash=t.hash, market_id=t.market_id)
        log.debug("transactions_inserted", received=len(transactions), new=len(new))
        return new

    async def _read(self, what: str, query: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run a read query in a worker thread on its own cursor of the shared database."""
        cursor = self._get_conn().cursor()

        def run() -> T:
            try:
                return query(cursor, *args, **kwargs)
            finally:
                cursor.close()

        try:
            return await asyncio.to_thread(run)
        except duckdb.Error as e:
            raise TransportError(f"{what} query failed: {e}") from e

    # Read queries used by the sync coordinator
    async def fetch_markets(
        self,
        source: str | None = None,
        category: str | None = None,
        limit: int | None = MAX_QUERY_LIMIT,
    ) -> list[Market]:
        return await self._read("Market", query_markets, source=source, category=category, limit=limit)

    async def fetch_transactions(self, limit: int = 100) -> list[Transaction]:
        return await self._read("Transaction", list_transactions, limit=limit)

    async def fetch_profiles(self, limit: int = 50) -> list[WalletProfile]:
        return await self._read("Profile", list_wallet_profiles, limit=limit)

    async def fetch_market(self, market_pk: str) -> Market:
        return await self._read("Market", get_market, market_pk)

    def get_market(self, market_pk: str) -> Market:
        return get_market(self._get_conn(), market_pk)

    def price_history(self, market_pks: list[str], points: int = 10) -> dict[str, list[PricePoint]]:
        return price_history(self._get_conn(), market_pks, points=points)

    def top_market_refs(self, n: int) -> list[tuple[str, str]]:
        return top_market_refs(self._get_conn(), n)

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
