"""Journal Store — DuckDB persistence for trades and capital configuration.

Every write reports success as a boolean and every read degrades to an
empty result; storage failures are logged here and never raised into the
calculation engine.
"""

from __future__ import annotations

import datetime as dt
from collections.abc import Iterator
from contextlib import contextmanager

import duckdb
from pydantic import ValidationError

from tradejournal.database import get_db
from tradejournal.models.portfolio import (
    CapitalChange,
    MonthlyStartingCapitalOverride,
    YearlyStartingCapital,
)
from tradejournal.models.trade import Trade
from tradejournal.utils.coerce import normalize_month
from tradejournal.utils.logger import get_logger

logger = get_logger("Store")


@contextmanager
def _cursor() -> Iterator[duckdb.DuckDBPyConnection]:
    # One cursor per operation; the shared connection is not safe across threads
    cursor = get_db().cursor()
    try:
        yield cursor
    finally:
        cursor.close()


class JournalStore:
    """Reads and writes journal state through cursors of the shared DuckDB connection."""

    # ------------------------------------------------------------------
    # Trades
    # ------------------------------------------------------------------

    def get_all_trades(self) -> list[Trade]:
        """All trades in their saved order. Unreadable rows are skipped."""
        try:
            with _cursor() as db:
                rows = db.execute(
                    "SELECT id, payload FROM trades ORDER BY position"
                ).fetchall()
        except duckdb.Error:
            logger.warning("Failed to load trades", exc_info=True)
            return []

        trades = []
        for trade_id, payload in rows:
            try:
                trades.append(Trade.model_validate_json(payload))
            except ValidationError as exc:
                logger.warning("Skipping unreadable trade %s: %s", trade_id, exc)
        return trades

    def get_trade(self, trade_id: str) -> Trade | None:
        try:
            with _cursor() as db:
                row = db.execute(
                    "SELECT payload FROM trades WHERE id = ?", [trade_id]
                ).fetchone()
        except duckdb.Error:
            logger.warning("Failed to load trade %s", trade_id, exc_info=True)
            return None
        if not row:
            return None
        try:
            return Trade.model_validate_json(row[0])
        except ValidationError as exc:
            logger.warning("Trade %s is unreadable: %s", trade_id, exc)
            return None

    def save_all_trades(self, trades: list[Trade]) -> bool:
        """Replace the stored trade list in one transaction."""
        now = dt.datetime.now()
        rows = [
            [
                trade.id,
                position,
                trade.trade_no,
                trade.name,
                trade.date,
                trade.status,
                trade.model_dump_json(),
                now,
            ]
            for position, trade in enumerate(trades)
        ]
        try:
            with _cursor() as db:
                db.begin()
                try:
                    db.execute("DELETE FROM trades")
                    if rows:
                        db.executemany(
                            """
                            INSERT INTO trades
                                (id, position, trade_no, name, trade_date, position_status, payload, updated_at)
                            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                            """,
                            rows,
                        )
                    db.commit()
                except duckdb.Error:
                    db.rollback()
                    raise
        except duckdb.Error:
            logger.warning("Failed to save %d trades", len(trades), exc_info=True)
            return False
        logger.debug("Saved %d trades", len(trades))
        return True

    # ------------------------------------------------------------------
    # Capital changes
    # ------------------------------------------------------------------

    def get_capital_changes(self) -> list[CapitalChange]:
        try:
            with _cursor() as db:
                rows = db.execute(
                    "SELECT id, change_date, amount, type, description "
                    "FROM capital_changes ORDER BY change_date NULLS LAST, id"
                ).fetchall()
        except duckdb.Error:
            logger.warning("Failed to load capital changes", exc_info=True)
            return []
        return [
            CapitalChange(
                id=r[0],
                date=r[1],
                amount=r[2],
                type=r[3],
                description=r[4] or "",
            )
            for r in rows
        ]

    def save_capital_change(self, change: CapitalChange) -> bool:
        """Insert or replace one capital change by id."""
        try:
            with _cursor() as db:
                db.execute(
                    """
                    INSERT OR REPLACE INTO capital_changes (id, change_date, amount, type, description)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    [change.id, change.date, change.amount, change.type, change.description],
                )
        except duckdb.Error:
            logger.warning("Failed to save capital change %s", change.id, exc_info=True)
            return False
        return True

    def delete_capital_change(self, change_id: str) -> bool:
        try:
            with _cursor() as db:
                db.execute("DELETE FROM capital_changes WHERE id = ?", [change_id])
        except duckdb.Error:
            logger.warning("Failed to delete capital change %s", change_id, exc_info=True)
            return False
        return True

    # ------------------------------------------------------------------
    # Yearly starting capital
    # ------------------------------------------------------------------

    def get_yearly_starting_capitals(self) -> list[YearlyStartingCapital]:
        try:
            with _cursor() as db:
                rows = db.execute(
                    "SELECT year, starting_capital, updated_at "
                    "FROM yearly_starting_capitals ORDER BY year"
                ).fetchall()
        except duckdb.Error:
            logger.warning("Failed to load yearly starting capitals", exc_info=True)
            return []
        capitals = []
        for year, amount, updated_at in rows:
            try:
                capitals.append(YearlyStartingCapital(
                    year=year,
                    starting_capital=amount,
                    updated_at=updated_at or dt.datetime.now(),
                ))
            except ValidationError as exc:
                logger.warning("Ignoring invalid starting capital for %s: %s", year, exc)
        return capitals

    def set_yearly_starting_capital(self, year: int, amount: float) -> bool:
        """Upsert the anchor for ``year``. Raises ValidationError if amount <= 0."""
        capital = YearlyStartingCapital(year=year, starting_capital=amount)
        try:
            with _cursor() as db:
                db.execute(
                    """
                    INSERT OR REPLACE INTO yearly_starting_capitals (year, starting_capital, updated_at)
                    VALUES (?, ?, ?)
                    """,
                    [capital.year, capital.starting_capital, capital.updated_at],
                )
        except duckdb.Error:
            logger.warning("Failed to save starting capital for %d", year, exc_info=True)
            return False
        return True

    def delete_yearly_starting_capital(self, year: int) -> bool:
        try:
            with _cursor() as db:
                db.execute("DELETE FROM yearly_starting_capitals WHERE year = ?", [year])
        except duckdb.Error:
            logger.warning("Failed to delete starting capital for %d", year, exc_info=True)
            return False
        return True

    # ------------------------------------------------------------------
    # Monthly overrides
    # ------------------------------------------------------------------

    def get_monthly_overrides(self) -> list[MonthlyStartingCapitalOverride]:
        try:
            with _cursor() as db:
                rows = db.execute(
                    "SELECT month, year, starting_capital, updated_at "
                    "FROM monthly_capital_overrides ORDER BY year, month"
                ).fetchall()
        except duckdb.Error:
            logger.warning("Failed to load monthly overrides", exc_info=True)
            return []
        return [
            MonthlyStartingCapitalOverride(
                month=r[0],
                year=r[1],
                starting_capital=r[2],
                updated_at=r[3] or dt.datetime.now(),
            )
            for r in rows
        ]

    def get_monthly_override(self, month: str | int, year: int) -> float | None:
        """Override amount for (month, year), or None when not set."""
        try:
            with _cursor() as db:
                row = db.execute(
                    "SELECT starting_capital FROM monthly_capital_overrides "
                    "WHERE month = ? AND year = ?",
                    [normalize_month(month), year],
                ).fetchone()
        except duckdb.Error:
            logger.warning("Failed to read override %s %s", month, year, exc_info=True)
            return None
        return float(row[0]) if row else None

    def set_monthly_override(self, month: str | int, year: int, amount: float) -> bool:
        """Upsert an override. Raises ValueError for an unknown month."""
        override = MonthlyStartingCapitalOverride(month=month, year=year, starting_capital=amount)
        try:
            with _cursor() as db:
                db.execute(
                    """
                    INSERT OR REPLACE INTO monthly_capital_overrides
                        (month, year, starting_capital, updated_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    [override.month, override.year, override.starting_capital, override.updated_at],
                )
        except duckdb.Error:
            logger.warning("Failed to save override %s", override.id, exc_info=True)
            return False
        return True

    def remove_monthly_override(self, month: str | int, year: int) -> bool:
        try:
            with _cursor() as db:
                db.execute(
                    "DELETE FROM monthly_capital_overrides WHERE month = ? AND year = ?",
                    [normalize_month(month), year],
                )
        except duckdb.Error:
            logger.warning("Failed to remove override %s %s", month, year, exc_info=True)
            return False
        return True
