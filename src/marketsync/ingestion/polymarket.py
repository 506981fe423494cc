"""Polymarket aggregator client - Gamma market listing and data-API trades."""

from __future__ import annotations

import json
import time
from typing import Any

import httpx
import structlog

from marketsync.errors import TransportError, UpstreamError
from marketsync.models import Market, Transaction

log = structlog.get_logger(__name__)

GAMMA_API_BASE = "https://gamma-api.polymarket.com"
DATA_API_BASE = "https://data-api.polymarket.com"
SOURCE = "polymarket"


def _to_float(v: Any, fallback: float = 0.0) -> float:
    try:
        f = float(v)
    except (TypeError, ValueError):
        return fallback
    return f if f == f and f not in (float("inf"), float("-inf")) else fallback


def _clamp_price(p: float) -> float:
    return min(1.0, max(0.0, p))


def _parse_outcome_prices(raw: Any) -> list[float]:
    """outcomePrices comes as a JSON list string, a comma separated string or a list."""
    if isinstance(raw, list):
        items = raw
    elif isinstance(raw, str) and raw.strip():
        try:
            items = json.loads(raw)
        except json.JSONDecodeError:
            items = raw.split(",")
        if not isinstance(items, list):
            items = []
    else:
        items = []
    prices = []
    for item in items:
        p = _to_float(str(item).strip(), fallback=float("nan"))
        if p != p:
            return []
        prices.append(p)
    return prices


def yes_no_prices(raw: dict[str, Any]) -> tuple[float, float]:
    """Yes/no price from outcomePrices, else lastTradePrice in (0, 1), else 0.5/0.5."""
    prices = _parse_outcome_prices(raw.get("outcomePrices"))
    if len(prices) >= 2:
        return _clamp_price(prices[0]), _clamp_price(prices[1])
    last = _to_float(raw.get("lastTradePrice"))
    if 0 < last < 1:
        return last, 1 - last
    return 0.5, 0.5


def parse_market(raw: dict[str, Any]) -> Market:
    """Convert Gamma API market object to Market (id is assigned by storage)."""
    market_id = str(raw.get("conditionId") or raw.get("condition_id") or raw.get("id") or "")
    if not market_id:
        raise ValueError("market without conditionId or id")
    yes, no = yes_no_prices(raw)
    if raw.get("closed"):
        status = "closed"
    elif raw.get("active", True):
        status = "active"
    else:
        status = "inactive"
    end_date = raw.get("endDate") or raw.get("end_date_iso")
    return Market(
        market_id=market_id,
        source=SOURCE,
        title=raw.get("question") or raw.get("title") or raw.get("name") or "",
        description=raw.get("description"),
        category=raw.get("category"),
        end_date=str(end_date) if end_date is not None else None,
        status=status,
        yes_price=yes,
        no_price=no,
        total_volume=_to_float(raw.get("volume")),
        volume_24h=_to_float(raw.get("volume24hr")),
        liquidity=_to_float(raw.get("liquidity") or raw.get("liquidityNum")),
        trades_24h=int(_to_float(raw.get("trades24hr"))),
        last_updated=int(time.time() * 1000),
    )


def parse_trade(raw: dict[str, Any], market_pk: str) -> Transaction:
    """Convert a data-API trade to Transaction attached to markets.id market_pk."""
    ts = int(_to_float(raw.get("timestamp")))
    # data-API timestamps are seconds
    if ts and ts < 10_000_000_000:
        ts *= 1000
    outcome = str(raw.get("outcome") or "").lower()
    side = "no" if outcome == "no" or raw.get("outcomeIndex") == 1 else "yes"
    return Transaction(
        hash=str(raw["transactionHash"]),
        market_id=market_pk,
        wallet_address=str(raw.get("proxyWallet") or ""),
        side=side,
        transaction_type="SELL" if str(raw.get("side", "")).upper() == "SELL" else "BUY",
        amount=_to_float(raw.get("size")),
        price=_clamp_price(_to_float(raw.get("price"))),
        timestamp=ts,
    )


async def _get_json(client: httpx.AsyncClient, url: str, params: dict[str, Any]) -> Any:
    try:
        resp = await client.get(url, params=params, headers={"Accept": "application/json"})
    except httpx.HTTPError as e:
        raise TransportError(f"Request to {url} failed: {e}") from e
    if resp.status_code >= 400:
        raise UpstreamError(f"{url} returned {resp.status_code}", status_code=resp.status_code)
    try:
        return resp.json()
    except ValueError as e:
        raise UpstreamError(f"{url} returned a malformed body") from e


async def fetch_markets(
    base_url: str | None = None,
    limit: int = 200,
    timeout: float = 30.0,
    client: httpx.AsyncClient | None = None,
) -> list[Market]:
    """Fetch active markets ordered by 24h volume."""
    url = (base_url or GAMMA_API_BASE).rstrip("/") + "/markets"
    params = {"limit": limit, "active": "true", "closed": "false", "order": "volume24hr", "ascending": "false"}
    if client is None:
        async with httpx.AsyncClient(timeout=timeout) as own:
            data = await _get_json(own, url, params)
    else:
        data = await _get_json(client, url, params)
    if isinstance(data, dict):
        data = data.get("data", data.get("markets"))
    if not isinstance(data, list):
        raise UpstreamError(f"{url} returned an unexpected body")
    markets = []
    for row in data:
        if not isinstance(row, dict):
            continue
        try:
            markets.append(parse_market(row))
        except Exception as e:
            log.warning("skip_market", market_id=row.get("conditionId"), error=str(e))
    return markets


async def fetch_trades(
    condition_id: str,
    market_pk: str,
    base_url: str | None = None,
    limit: int = 100,
    timeout: float = 15.0,
    client: httpx.AsyncClient | None = None,
) -> list[Transaction]:
    """Fetch recent trades of one market."""
    url = (base_url or DATA_API_BASE).rstrip("/") + "/trades"
    params = {"market": condition_id, "limit": min(limit, 100), "takerOnly": "false"}
    if client is None:
        async with httpx.AsyncClient(timeout=timeout) as own:
            data = await _get_json(own, url, params)
    else:
        data = await _get_json(client, url, params)
    if not isinstance(data, list):
        raise UpstreamError(f"{url} returned an unexpected body")
    trades = []
    for row in data:
        if not isinstance(row, dict) or not row.get("transactionHash"):
            continue
        try:
            trades.append(parse_trade(row, market_pk))
        except Exception as e:
            log.warning("skip_trade", market_id=condition_id, error=str(e))
    return trades
