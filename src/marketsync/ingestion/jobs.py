"""Bulk refresh jobs: pull from the aggregator and write into the source of truth."""

from __future__ import annotations

import asyncio
from typing import Callable

import httpx
import structlog

from marketsync.config import Settings
from marketsync.ingestion.polymarket import fetch_markets, fetch_trades
from marketsync.storage import MarketStore
from marketsync.sync.poller import PollScheduler

log = structlog.get_logger(__name__)


async def refresh_markets(
    store: MarketStore,
    base_url: str | None = None,
    limit: int = 200,
    client: httpx.AsyncClient | None = None,
) -> int:
    """Fetch the market listing and upsert it. Returns the number of markets written."""
    markets = await fetch_markets(base_url=base_url, limit=limit, client=client)
    written = store.upsert_markets(markets)
    log.info("markets_refreshed", count=written)
    return written


async def refresh_transactions(
    store: MarketStore,
    base_url: str | None = None,
    market_count: int = 10,
    client: httpx.AsyncClient | None = None,
) -> int:
    """Fetch recent trades of the top markets. Returns the number of new transactions.

    Per-market failures are logged; the job fails only when every market failed.
    """
    refs = store.top_market_refs(market_count)
    if not refs:
        return 0
    results = await asyncio.gather(
        *(fetch_trades(condition_id, market_pk, base_url=base_url, client=client) for market_pk, condition_id in refs),
        return_exceptions=True,
    )
    new_count = 0
    errors: list[BaseException] = []
    for (_, condition_id), result in zip(refs, results):
        if isinstance(result, BaseException):
            errors.append(result)
            log.warning("trades_fetch_failed", market_id=condition_id, error=str(result))
            continue
        new_count += len(store.insert_transactions(result))
    if errors and len(errors) == len(refs):
        raise errors[-1]
    log.info("transactions_refreshed", markets=len(refs), new=new_count)
    return new_count


def make_poller(
    store: MarketStore,
    settings: Settings,
    on_markets_refreshed: Callable[[], None] | None = None,
    client: httpx.AsyncClient | None = None,
) -> PollScheduler:
    """PollScheduler wired to the Polymarket refresh jobs."""

    async def markets() -> int:
        return await refresh_markets(
            store, base_url=settings.gamma_api_base, limit=settings.markets_fetch_limit, client=client
        )

    async def transactions() -> int:
        return await refresh_transactions(
            store,
            base_url=settings.data_api_base,
            market_count=settings.transactions_market_count,
            client=client,
        )

    return PollScheduler(markets, transactions, on_markets_refreshed=on_markets_refreshed)
