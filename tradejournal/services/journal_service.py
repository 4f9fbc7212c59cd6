"""Journal Service — wires persistence, the engine and the scheduler.

Every input change (trade, capital change, anchor, override, accounting
method) invalidates the memo and requests a recalculation. The latest
completed RecalcResult is the materialized state that reporting reads;
a pass that finishes after a newer request was made is discarded.

Background passes run on the scheduler's worker thread. User edits and
those passes read, modify and write back the stored trade list under one
lock, so neither overwrites the other. A user edit that cannot be saved
raises JournalWriteError; a background pass that cannot be saved keeps
its result in memory and logs instead.
"""

from __future__ import annotations

import datetime as dt
import threading
from typing import Any

from tradejournal.engine.date_filters import DateFilter
from tradejournal.engine.performance import (
    chronological_cumulative_pf,
    drawdown_series,
    summary_stats,
)
from tradejournal.engine.portfolio_snapshots import PortfolioSnapshotBuilder
from tradejournal.engine.recalculation import (
    RecalcResult,
    Recalculator,
    build_display_rows,
)
from tradejournal.engine.xirr import CashFlow, monthly_ytd_xirr, rolling_xirr, shift_month, xirr
from tradejournal.models.portfolio import (
    CapitalChange,
    DrawdownPoint,
    MonthlyPortfolioSnapshot,
    MonthlyStartingCapitalOverride,
    PerformanceStats,
    YearlyStartingCapital,
)
from tradejournal.models.trade import DisplayTrade, Trade, UserOverridden
from tradejournal.services.accounting_context import AccountingContext
from tradejournal.services.journal_store import JournalStore
from tradejournal.services.recalc_scheduler import RecalcScheduler
from tradejournal.utils.logger import get_logger

logger = get_logger("Journal")

# Fields owned by the metrics engine; edits to them are ignored
CALCULATED_FIELDS = frozenset({
    "avg_entry", "position_size", "allocation", "sl_percent", "open_qty",
    "exited_qty", "avg_exit_price", "stock_move", "reward_risk",
    "holding_days", "realised_amount", "pl_rs", "unrealized_pl",
    "pf_impact", "cumm_pf", "open_heat", "accrual_pl", "cash_pl",
    "accrual_pf_impact", "cash_pf_impact", "needs_recalculation",
})

# Trailing windows reported next to YTD by monthly_xirr
ROLLING_WINDOWS = (1, 3, 6, 12)


class JournalWriteError(RuntimeError):
    """A user edit could not be persisted."""


class JournalService:
    """Facade over the journal: CRUD in, derived analytics out."""

    def __init__(
        self,
        store: JournalStore | None = None,
        accounting: AccountingContext | None = None,
        recalculator: Recalculator | None = None,
    ) -> None:
        self.store = store or JournalStore()
        self.accounting = accounting or AccountingContext()
        self.recalculator = recalculator or Recalculator()
        self.scheduler = RecalcScheduler(self._scheduled_run)
        self._result: RecalcResult | None = None
        self._lock = threading.Lock()
        # Held from reading the stored trade list until it is written back,
        # by user edits and background passes alike
        self._trades_lock = threading.RLock()
        self.accounting.subscribe(self._on_accounting_changed)

    # ------------------------------------------------------------------
    # Recalculation
    # ------------------------------------------------------------------

    def snapshot_builder(self) -> PortfolioSnapshotBuilder:
        """Capital-only builder over the stored configuration."""
        return PortfolioSnapshotBuilder(
            yearly_capitals=self.store.get_yearly_starting_capitals(),
            capital_changes=self.store.get_capital_changes(),
            overrides=self.store.get_monthly_overrides(),
        )

    def recalculate(self, fast_mode: bool = False, generation: int | None = None) -> RecalcResult:
        """Run a recalculation over stored state and publish it.

        When ``generation`` is given and a newer request has arrived since,
        the result is returned but neither published nor persisted.
        """
        with self._trades_lock:
            trades = self.store.get_all_trades()
            result = self.recalculator.run(
                trades,
                self.snapshot_builder(),
                use_cash_basis=self.accounting.use_cash_basis,
                fast_mode=fast_mode,
            )
            if generation is not None and not self.scheduler.is_current(generation):
                logger.info("Discarding stale recalculation %d", generation)
                return result

            with self._lock:
                self._result = result
            if not result.cache_hit and not self.store.save_all_trades(result.trades):
                # Derived state stays in memory; persistence will catch up on the next save
                logger.warning("Recalculated trades could not be persisted")
        return result

    def request_recalculation(self, reason: str = "") -> int:
        """Invalidate the memo and queue a debounced full recalculation."""
        self.recalculator.invalidate()
        return self.scheduler.request(reason)

    def _scheduled_run(self, generation: int) -> None:
        self.recalculate(generation=generation)

    def _on_accounting_changed(self, method: str) -> None:
        self.request_recalculation(f"accounting method -> {method}")

    def _current(self) -> RecalcResult:
        with self._lock:
            result = self._result
        if result is None:
            result = self.recalculate()
        return result

    # ------------------------------------------------------------------
    # Trades
    # ------------------------------------------------------------------

    def get_trades(self) -> list[Trade]:
        return list(self._current().trades)

    def get_trade(self, trade_id: str) -> Trade | None:
        for trade in self._current().trades:
            if trade.id == trade_id:
                return trade
        return self.store.get_trade(trade_id)

    def _save_trades(self, trades: list[Trade], action: str) -> None:
        if not self.store.save_all_trades(trades):
            raise JournalWriteError(f"Trades could not be saved ({action})")

    def add_trade(self, data: dict[str, Any] | Trade) -> Trade:
        """Validate and append a trade, then recalculate.

        Raises JournalWriteError when the trade list cannot be saved.
        """
        trade = data if isinstance(data, Trade) else Trade.model_validate(_editable(data))
        with self._trades_lock:
            trades = self.store.get_all_trades()
            trades.append(trade)
            self._save_trades(trades, "trade added")
        self.request_recalculation("trade added")
        return self.get_trade(trade.id) or trade

    def update_trade(self, trade_id: str, data: dict[str, Any]) -> Trade | None:
        """Apply user edits to a trade.

        A plain status value in ``data`` pins the status as user-overridden;
        ``{"kind": "derived"}`` hands it back to the calculator.
        """
        with self._trades_lock:
            trades = self.store.get_all_trades()
            idx = next((i for i, t in enumerate(trades) if t.id == trade_id), None)
            if idx is None:
                return None
            changes = _editable(data)
            changes.pop("id", None)
            status = changes.pop("position_status", None)
            updated = Trade.model_validate({**trades[idx].model_dump(), **changes})
            if isinstance(status, str) and status:
                updated = updated.override_status(status.strip().capitalize())
            elif isinstance(status, dict):
                updated = _apply_status_payload(updated, status)
            trades[idx] = updated
            self._save_trades(trades, "trade updated")
        self.request_recalculation("trade updated")
        return self.get_trade(trade_id)

    def delete_trade(self, trade_id: str) -> bool:
        with self._trades_lock:
            trades = self.store.get_all_trades()
            remaining = [t for t in trades if t.id != trade_id]
            if len(remaining) == len(trades):
                return False
            self._save_trades(remaining, "trade deleted")
        self.request_recalculation("trade deleted")
        return True

    def bulk_import(self, records: list[dict[str, Any] | Trade], replace: bool = False) -> list[Trade]:
        """Fast pass for an instant answer, then a queued full pass."""
        imported = [
            r if isinstance(r, Trade) else Trade.model_validate(_editable(r)) for r in records
        ]
        with self._trades_lock:
            trades = [] if replace else self.store.get_all_trades()
            trades.extend(imported)
            self._save_trades(trades, "bulk import")
        self.recalculator.invalidate()

        fast = self.recalculate(fast_mode=True)
        logger.info("Imported %d trades (fast pass), full pass queued", len(imported))
        self.request_recalculation("bulk import")
        with self._lock:
            published = self._result
        return list((published or fast).trades)

    # ------------------------------------------------------------------
    # Capital configuration
    # ------------------------------------------------------------------

    def get_capital_changes(self) -> list[CapitalChange]:
        return self.store.get_capital_changes()

    def add_capital_change(self, data: dict[str, Any]) -> CapitalChange:
        payload = dict(data)
        payload.pop("id", None)
        change = CapitalChange.model_validate(payload)
        if not self.store.save_capital_change(change):
            raise JournalWriteError(f"Capital change {change.id} could not be saved")
        self.request_recalculation("capital change added")
        return change

    def update_capital_change(self, change_id: str, data: dict[str, Any]) -> CapitalChange | None:
        existing = next((c for c in self.store.get_capital_changes() if c.id == change_id), None)
        if existing is None:
            return None
        merged = {**existing.model_dump(), **data, "id": change_id}
        if "amount" in data and "type" not in data:
            # A re-signed amount decides the type again
            merged.pop("type", None)
        change = CapitalChange.model_validate(merged)
        if not self.store.save_capital_change(change):
            raise JournalWriteError(f"Capital change {change_id} could not be saved")
        self.request_recalculation("capital change updated")
        return change

    def delete_capital_change(self, change_id: str) -> bool:
        if not any(c.id == change_id for c in self.store.get_capital_changes()):
            return False
        if not self.store.delete_capital_change(change_id):
            raise JournalWriteError(f"Capital change {change_id} could not be deleted")
        self.request_recalculation("capital change deleted")
        return True

    def get_yearly_starting_capitals(self) -> list[YearlyStartingCapital]:
        return self.store.get_yearly_starting_capitals()

    def set_yearly_starting_capital(self, year: int, amount: float) -> bool:
        saved = self.store.set_yearly_starting_capital(year, amount)
        self.request_recalculation(f"starting capital {year}")
        return saved

    def get_monthly_overrides(self) -> list[MonthlyStartingCapitalOverride]:
        return self.store.get_monthly_overrides()

    def set_monthly_override(self, month: str | int, year: int, amount: float) -> bool:
        saved = self.store.set_monthly_override(month, year, amount)
        self.request_recalculation(f"override {month} {year}")
        return saved

    def remove_monthly_override(self, month: str | int, year: int) -> bool:
        removed = self.store.remove_monthly_override(month, year)
        self.request_recalculation(f"override removed {month} {year}")
        return removed

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def monthly_portfolios(self) -> list[MonthlyPortfolioSnapshot]:
        return list(self._current().snapshots)

    def monthly_portfolio(self, month: str | int, year: int) -> MonthlyPortfolioSnapshot:
        return self._current().builder.monthly_portfolio(month, year)

    def portfolio_size_at(self, month: str | int, year: int) -> float:
        return self._current().builder.portfolio_size_at(month, year)

    def latest_portfolio_size(self, today: dt.date | None = None) -> float:
        return self._current().builder.latest_portfolio_size(today)

    def display_trades(
        self,
        date_filter: DateFilter | None = None,
        search: str = "",
        status: str | None = None,
        sort_by: str | None = None,
        descending: bool = False,
    ) -> list[DisplayTrade]:
        result = self._current()
        return build_display_rows(
            result.trades,
            use_cash_basis=self.accounting.use_cash_basis,
            date_filter=date_filter,
            search=search,
            status=status,
            sort_by=sort_by,
            descending=descending,
            # Same size view the stored PF impacts were measured against
            portfolio_size_at=result.builder.capital_only_size_at,
        )

    def _chronological_rows(self, date_filter: DateFilter, use_cash: bool) -> list[DisplayTrade]:
        # Cash basis books a trade when it exits, so that is its place in time
        return self.display_trades(
            date_filter=date_filter,
            sort_by="exit_date" if use_cash else "date",
        )

    def drawdown(self, date_filter: DateFilter | None = None) -> list[DrawdownPoint]:
        """Drawdown over the full chronological history.

        With a date filter, the displayed (filtered, chronological) rows are
        measured instead.
        """
        use_cash = self.accounting.use_cash_basis
        if date_filter is None or date_filter.type == "all":
            labels, values = chronological_cumulative_pf(self._current().trades, use_cash)
            return drawdown_series(values, labels)
        rows = [r for r in self._chronological_rows(date_filter, use_cash) if r.status != "Open"]
        labels = []
        for row in rows:
            day = row.display_exit_date if use_cash else row.date
            labels.append(f"{row.name} {day.isoformat() if day else ''}".strip())
        return drawdown_series([r.cumm_pf for r in rows], labels)

    def summary(self, date_filter: DateFilter | None = None) -> PerformanceStats:
        result = self._current()
        use_cash = self.accounting.use_cash_basis
        size_at = result.builder.capital_only_size_at
        if date_filter is None or date_filter.type == "all":
            return summary_stats(result.trades, use_cash, size_at)
        rows = self._chronological_rows(date_filter, use_cash)
        return summary_stats(
            [r.to_trade() for r in rows],
            use_cash,
            size_at,
            cumulative=[r.cumm_pf for r in rows if r.status != "Open"],
        )

    def xirr(
        self,
        start_date: dt.date,
        start_value: float,
        end_date: dt.date,
        end_value: float,
        interim_flows: list[CashFlow] | None = None,
    ) -> float:
        return xirr(start_date, start_value, end_date, end_value, interim_flows or [])

    def monthly_xirr(self, year: int) -> list[dict[str, Any]]:
        """YTD and trailing 1/3/6/12-month XIRR for each month of ``year``.

        A trailing window whose opening month has no snapshot reports 0.0.
        """
        result = self._current()
        changes = self.store.get_capital_changes()
        by_month = {(s.month, s.year): s for s in result.snapshots}
        january = result.builder.monthly_portfolio("Jan", year)
        rows = []
        for snapshot in result.snapshots:
            if snapshot.year != year:
                continue
            row: dict[str, Any] = {
                "month": snapshot.month,
                "year": year,
                "xirr": monthly_ytd_xirr(
                    snapshot.month,
                    year,
                    january.starting_capital,
                    snapshot.ending_capital,
                    changes,
                ),
            }
            for months_back in ROLLING_WINDOWS:
                opening = by_month.get(shift_month(snapshot.month, year, -months_back))
                rate = 0.0
                if opening is not None:
                    rate = rolling_xirr(
                        snapshot.month,
                        year,
                        months_back,
                        opening.ending_capital,
                        snapshot.ending_capital,
                        changes,
                    )
                row[f"rolling_{months_back}m"] = rate
            rows.append(row)
        return rows


def _editable(data: dict[str, Any]) -> dict[str, Any]:
    """User-supplied fields only; calculated ones are dropped."""
    return {k: v for k, v in data.items() if k not in CALCULATED_FIELDS}


def _apply_status_payload(trade: Trade, status: dict[str, Any]) -> Trade:
    """``{"kind": "user", "value": ...}`` pins the status; anything else releases it.

    Raises ValidationError when a user status has no usable value.
    """
    if status.get("kind") != "user":
        return trade.clear_status_override()
    payload = dict(status)
    if isinstance(payload.get("value"), str):
        payload["value"] = payload["value"].strip().capitalize()
    pinned = UserOverridden.model_validate(payload)
    return trade.override_status(pinned.value)
