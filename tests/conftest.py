"""Shared fixtures and builders."""

import asyncio

import pytest

from marketsync.bus import ChangeBus
from marketsync.models import Market
from marketsync.storage import MarketStore


def make_market(
    key: str,
    yes: float,
    *,
    last_updated: int | None = None,
    category: str | None = "politics",
    source: str = "polymarket",
    volume_24h: float = 1000.0,
    status: str = "active",
) -> Market:
    return Market(
        id=f"id-{key}",
        market_id=f"0x{key}",
        source=source,
        title=f"Market {key}",
        category=category,
        status=status,
        yes_price=yes,
        no_price=round(1 - yes, 6),
        volume_24h=volume_24h,
        last_updated=last_updated,
    )


async def settle(rounds: int = 5) -> None:
    """Let scheduled callbacks and freshly created tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def bus():
    return ChangeBus()


@pytest.fixture
def store(bus):
    s = MarketStore(":memory:", bus)
    yield s
    s.close()
