"""Market and market_data persistence and the markets read query."""

from __future__ import annotations

import time
import uuid
from typing import TYPE_CHECKING, Any

from marketsync.errors import NotFoundError, ValidationError
from marketsync.models import Market, PricePoint

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

MAX_QUERY_LIMIT = 50
DAY_MS = 24 * 60 * 60 * 1000

# Latest sample per market, plus 24h trade counts from wallet_transactions
_MARKET_SELECT = """
WITH latest AS (
    SELECT *, row_number() OVER (PARTITION BY market_id ORDER BY timestamp DESC, seq DESC) AS rn
    FROM market_data
),
trades AS (
    SELECT market_id, COUNT(*) AS cnt
    FROM wallet_transactions
    WHERE timestamp >= ?
    GROUP BY market_id
)
SELECT
    m.id, m.market_id, m.source, m.title, m.description, m.category, m.end_date, m.status,
    d.yes_price, d.no_price, d.total_volume, d.volume_24h, d.liquidity,
    t.cnt, d.trades_24h, d.volatility, COALESCE(d.timestamp, m.updated_at)
FROM markets m
LEFT JOIN latest d ON d.market_id = m.id AND d.rn = 1
LEFT JOIN trades t ON t.market_id = m.id
"""


def clamp_limit(limit: int | None) -> int:
    """Clamp a requested row limit to 1..MAX_QUERY_LIMIT."""
    if limit is None:
        return MAX_QUERY_LIMIT
    return max(1, min(int(limit), MAX_QUERY_LIMIT))


def _row_to_market(r: tuple[Any, ...]) -> Market:
    return Market(
        id=r[0],
        market_id=r[1],
        source=r[2],
        title=r[3] or "",
        description=r[4],
        category=r[5],
        end_date=r[6],
        status=r[7],
        yes_price=r[8] if r[8] is not None else 0.5,
        no_price=r[9] if r[9] is not None else 0.5,
        total_volume=r[10] or 0.0,
        volume_24h=r[11] or 0.0,
        liquidity=r[12] or 0.0,
        trades_24h=int(r[13] or r[14] or 0),
        volatility=r[15] or 0.0,
        last_updated=r[16],
    )


def upsert_market(conn: DuckDBPyConnection, market: Market, ts: int | None = None) -> tuple[str, str]:
    """Insert or update a market row and append its current price sample.

    Returns (surrogate id, "INSERT" | "UPDATE").
    """
    now_ms = ts if ts is not None else int(time.time() * 1000)
    row = conn.execute(
        "SELECT id FROM markets WHERE source = ? AND market_id = ?",
        [market.source, market.market_id],
    ).fetchone()
    if row is None:
        market_pk = market.id or uuid.uuid4().hex
        conn.execute(
            """
            INSERT INTO markets (id, market_id, source, title, description, category, end_date, status, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                market_pk,
                market.market_id,
                market.source,
                market.title,
                market.description,
                market.category,
                market.end_date,
                market.status,
                now_ms,
                now_ms,
            ],
        )
        event = "INSERT"
    else:
        market_pk = row[0]
        conn.execute(
            """
            UPDATE markets SET title = ?, description = ?, category = ?, end_date = ?, status = ?, updated_at = ?
            WHERE id = ?
            """,
            [market.title, market.description, market.category, market.end_date, market.status, now_ms, market_pk],
        )
        event = "UPDATE"
    conn.execute(
        """
        INSERT INTO market_data (market_id, yes_price, no_price, total_volume, volume_24h, liquidity, trades_24h, volatility, timestamp)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        [
            market_pk,
            market.yes_price,
            market.no_price,
            market.total_volume,
            market.volume_24h,
            market.liquidity,
            market.trades_24h,
            market.volatility,
            market.last_updated or now_ms,
        ],
    )
    return market_pk, event


def query_markets(
    conn: DuckDBPyConnection,
    source: str | None = None,
    category: str | None = None,
    limit: int | None = MAX_QUERY_LIMIT,
    now_ms: int | None = None,
) -> list[Market]:
    """Active markets with their latest sample, highest 24h volume first. Limit is clamped to 50."""
    since = (now_ms if now_ms is not None else int(time.time() * 1000)) - DAY_MS
    sql = _MARKET_SELECT + " WHERE m.status = 'active'"
    params: list[Any] = [since]
    if source:
        sql += " AND m.source = ?"
        params.append(source)
    if category:
        sql += " AND m.category = ?"
        params.append(category)
    sql += " ORDER BY COALESCE(d.volume_24h, 0) DESC, m.market_id LIMIT ?"
    params.append(clamp_limit(limit))
    return [_row_to_market(r) for r in conn.execute(sql, params).fetchall()]


def get_market(conn: DuckDBPyConnection, market_pk: str, now_ms: int | None = None) -> Market:
    """Single market by surrogate id, any status."""
    if not market_pk or not market_pk.strip():
        raise ValidationError("Market id is required")
    since = (now_ms if now_ms is not None else int(time.time() * 1000)) - DAY_MS
    row = conn.execute(_MARKET_SELECT + " WHERE m.id = ?", [since, market_pk]).fetchone()
    if row is None:
        raise NotFoundError(f"Market not found: {market_pk}")
    return _row_to_market(row)


def price_history(
    conn: DuckDBPyConnection, market_pks: list[str], points: int = 10
) -> dict[str, list[PricePoint]]:
    """Last `points` samples per market, oldest first."""
    if not market_pks:
        return {}
    placeholders = ",".join("?" for _ in market_pks)
    rows = conn.execute(
        f"""
        SELECT market_id, yes_price, no_price, timestamp FROM (
            SELECT *, row_number() OVER (PARTITION BY market_id ORDER BY timestamp DESC, seq DESC) AS rn
            FROM market_data
            WHERE market_id IN ({placeholders})
        )
        WHERE rn <= ?
        ORDER BY market_id, timestamp ASC, seq ASC
        """,
        list(market_pks) + [points],
    ).fetchall()
    out: dict[str, list[PricePoint]] = {}
    for mid, yes, no, ts in rows:
        out.setdefault(mid, []).append(PricePoint(yes_price=yes, no_price=no, timestamp=ts))
    return out


def top_market_refs(conn: DuckDBPyConnection, n: int) -> list[tuple[str, str]]:
    """(id, market_id) of the n active markets with the highest latest 24h volume."""
    return [(m.id, m.market_id) for m in query_markets(conn, limit=n)]
