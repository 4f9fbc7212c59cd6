"""DuckDB session management and table initialization."""

from __future__ import annotations

import threading

import duckdb

from tradejournal.config import settings
from tradejournal.utils.logger import get_logger

logger = get_logger("Database")

_connection: duckdb.DuckDBPyConnection | None = None
_connection_lock = threading.Lock()


def get_db() -> duckdb.DuckDBPyConnection:
    """Return the singleton DuckDB connection, creating tables on first call."""
    global _connection  # noqa: PLW0603
    with _connection_lock:
        if _connection is None:
            db_path = str(settings.DB_PATH)
            logger.info("Opening DuckDB at %s", db_path)
            settings.DB_PATH.parent.mkdir(parents=True, exist_ok=True)
            _connection = duckdb.connect(db_path)
            _init_tables(_connection)
        return _connection


def close_db() -> None:
    """Close the singleton connection; the next get_db() reopens settings.DB_PATH."""
    global _connection  # noqa: PLW0603
    with _connection_lock:
        if _connection is not None:
            _connection.close()
            _connection = None


def _init_tables(conn: duckdb.DuckDBPyConnection) -> None:
    """Create tables if they don't exist."""
    # Full trade kept as JSON; the scalar columns are for ordering and lookups
    conn.execute("""
        CREATE TABLE IF NOT EXISTS trades (
            id               VARCHAR PRIMARY KEY,
            position         INTEGER NOT NULL,
            trade_no         VARCHAR,
            name             VARCHAR,
            trade_date       DATE,
            position_status  VARCHAR,
            payload          VARCHAR NOT NULL,
            updated_at       TIMESTAMP DEFAULT current_timestamp
        );
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS capital_changes (
            id           VARCHAR PRIMARY KEY,
            change_date  DATE,
            amount       DOUBLE NOT NULL,
            type         VARCHAR NOT NULL,
            description  VARCHAR DEFAULT ''
        );
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS yearly_starting_capitals (
            year              INTEGER PRIMARY KEY,
            starting_capital  DOUBLE NOT NULL,
            updated_at        TIMESTAMP
        );
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS monthly_capital_overrides (
            month             VARCHAR NOT NULL,
            year              INTEGER NOT NULL,
            starting_capital  DOUBLE NOT NULL,
            updated_at        TIMESTAMP,
            PRIMARY KEY (month, year)
        );
    """)

    logger.info("DuckDB tables initialized")
