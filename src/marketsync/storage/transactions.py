"""wallet_transactions persistence and wallet profile aggregates."""

from __future__ import annotations

from typing import TYPE_CHECKING

from marketsync.models import Transaction, WalletProfile

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

_COLUMNS = ["hash", "market_id", "wallet_address", "side", "transaction_type", "amount", "price", "timestamp"]


def insert_transactions(conn: DuckDBPyConnection, transactions: list[Transaction]) -> list[Transaction]:
    """Insert transactions not yet stored. Returns only the newly inserted ones."""
    if not transactions:
        return []
    unique = list({t.hash: t for t in transactions}.values())
    placeholders = ",".join("?" for _ in unique)
    existing = {
        r[0]
        for r in conn.execute(
            f"SELECT hash FROM wallet_transactions WHERE hash IN ({placeholders})",
            [t.hash for t in unique],
        ).fetchall()
    }
    new = [t for t in unique if t.hash not in existing]
    for t in new:
        conn.execute(
            """
            INSERT INTO wallet_transactions (hash, market_id, wallet_address, side, transaction_type, amount, price, timestamp)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [t.hash, t.market_id, t.wallet_address, t.side, t.transaction_type, t.amount, t.price, t.timestamp],
        )
    return new


def list_transactions(
    conn: DuckDBPyConnection, limit: int = 100, market_id: str | None = None
) -> list[Transaction]:
    """Most recent transactions first, optionally for one market."""
    sql = f"SELECT {', '.join(_COLUMNS)} FROM wallet_transactions"
    params: list = []
    if market_id:
        sql += " WHERE market_id = ?"
        params.append(market_id)
    sql += " ORDER BY timestamp DESC, hash LIMIT ?"
    params.append(max(1, int(limit)))
    return [Transaction(**dict(zip(_COLUMNS, r))) for r in conn.execute(sql, params).fetchall()]


def list_wallet_profiles(conn: DuckDBPyConnection, limit: int = 50) -> list[WalletProfile]:
    """Wallets ranked by traded volume (amount * price)."""
    rows = conn.execute(
        """
        SELECT wallet_address, COUNT(*), SUM(amount * price), MAX(timestamp)
        FROM wallet_transactions
        GROUP BY wallet_address
        ORDER BY SUM(amount * price) DESC, wallet_address
        LIMIT ?
        """,
        [max(1, int(limit))],
    ).fetchall()
    return [
        WalletProfile(address=r[0], trade_count=r[1], total_volume=float(r[2] or 0.0), last_trade_ts=r[3])
        for r in rows
    ]
