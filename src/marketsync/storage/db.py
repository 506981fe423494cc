"""DuckDB connection and schema init."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import duckdb

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

SCHEMA_SQL = """
CREATE SEQUENCE IF NOT EXISTS market_data_seq START 1;

-- One row per (source, market_id). id is the surrogate key other tables reference
CREATE TABLE IF NOT EXISTS markets (
    id              VARCHAR PRIMARY KEY,
    market_id       VARCHAR NOT NULL,
    source          VARCHAR NOT NULL,
    title           VARCHAR,
    description     VARCHAR,
    category        VARCHAR,
    end_date        VARCHAR,
    status          VARCHAR NOT NULL,
    created_at      BIGINT NOT NULL,
    updated_at      BIGINT NOT NULL,
    UNIQUE (source, market_id)
);

-- Price samples (append-only), market_id references markets.id
CREATE TABLE IF NOT EXISTS market_data (
    seq             BIGINT PRIMARY KEY DEFAULT nextval('market_data_seq'),
    market_id       VARCHAR NOT NULL,
    yes_price       DOUBLE NOT NULL,
    no_price        DOUBLE NOT NULL,
    total_volume    DOUBLE,
    volume_24h      DOUBLE,
    liquidity       DOUBLE,
    trades_24h      INTEGER,
    volatility      DOUBLE,
    timestamp       BIGINT NOT NULL
);

-- Trades, market_id references markets.id
CREATE TABLE IF NOT EXISTS wallet_transactions (
    hash                VARCHAR PRIMARY KEY,
    market_id           VARCHAR NOT NULL,
    wallet_address      VARCHAR NOT NULL,
    side                VARCHAR NOT NULL,
    transaction_type    VARCHAR NOT NULL,
    amount              DOUBLE NOT NULL,
    price               DOUBLE NOT NULL,
    timestamp           BIGINT NOT NULL
);
"""


def get_connection(db_path: str | Path, read_only: bool = False) -> DuckDBPyConnection:
    """Return a DuckDB connection. Caller must close or use as context manager.
    ":memory:" opens an in-memory database (tests)."""
    if str(db_path) == ":memory:":
        return duckdb.connect(":memory:")
    path = Path(db_path)
    if not read_only:
        path.parent.mkdir(parents=True, exist_ok=True)
    return duckdb.connect(str(path), read_only=read_only)


def init_schema(conn: DuckDBPyConnection) -> None:
    """Create tables and sequences if they do not exist."""
    # Comment lines may contain ";"
    script = "\n".join(line for line in SCHEMA_SQL.splitlines() if not line.lstrip().startswith("--"))
    for stmt in script.split(";"):
        stmt = stmt.strip()
        if stmt:
            try:
                conn.execute(stmt)
            except duckdb.Error as e:
                if "already exists" not in str(e).lower():
                    raise
