"""DuckDB session management and table initialization."""

from __future__ import annotations

import duckdb

from practice_os.config import settings
from practice_os.utils.logger import logger

_connection: duckdb.DuckDBPyConnection | None = None


def get_db() -> duckdb.DuckDBPyConnection:
    """Return the singleton DuckDB connection, creating tables on first call."""
    global _connection  # noqa: PLW0603
    if _connection is None:
        db_path = str(settings.DB_PATH)
        logger.info("Opening DuckDB at %s", db_path)
        _connection = duckdb.connect(db_path)
        _init_tables(_connection)
    return _connection


def reset_connection() -> None:
    """Close the singleton connection so the next get_db() reopens it."""
    global _connection  # noqa: PLW0603
    if _connection is not None:
        try:
            _connection.close()
        except duckdb.Error as exc:
            logger.warning("Closing DuckDB connection failed: %s", exc)
        _connection = None


def _init_tables(conn: duckdb.DuckDBPyConnection) -> None:
    """Create tables if they don't exist."""
    conn.execute("""
        CREATE TABLE IF NOT EXISTS households (
            id          VARCHAR PRIMARY KEY,
            name        VARCHAR NOT NULL,
            created_at  TIMESTAMP
        );
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS accounts (
            id            VARCHAR PRIMARY KEY,
            household_id  VARCHAR NOT NULL,
            account_type  VARCHAR NOT NULL,   -- individual | corporate | joint
            nickname      VARCHAR,
            created_at    TIMESTAMP
        );
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS universal_holdings (
            id                VARCHAR PRIMARY KEY,
            ticker            VARCHAR NOT NULL UNIQUE,
            name              VARCHAR NOT NULL,
            price             DOUBLE DEFAULT 0,
            price_updated_at  TIMESTAMP
        );
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS positions (
            id                VARCHAR PRIMARY KEY,
            account_id        VARCHAR NOT NULL,
            symbol            VARCHAR NOT NULL,
            quantity          DOUBLE NOT NULL,
            entry_price       DOUBLE NOT NULL,
            current_price     DOUBLE NOT NULL,
            price_updated_at  TIMESTAMP,
            created_at        TIMESTAMP
        );
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS target_allocations (
            id                 VARCHAR PRIMARY KEY,
            account_id         VARCHAR NOT NULL,
            holding_id         VARCHAR NOT NULL,
            target_percentage  DOUBLE NOT NULL,
            created_at         TIMESTAMP
        );
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS model_portfolios (
            id              VARCHAR PRIMARY KEY,
            name            VARCHAR NOT NULL,
            portfolio_type  VARCHAR DEFAULT 'standard',   -- standard | watchlist
            created_at      TIMESTAMP
        );
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS model_portfolio_allocations (
            id                 VARCHAR PRIMARY KEY,
            portfolio_id       VARCHAR NOT NULL,
            holding_id         VARCHAR NOT NULL,
            target_percentage  DOUBLE NOT NULL
        );
    """)

    logger.info("DuckDB tables initialized")
