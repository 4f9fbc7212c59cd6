"""Portfolio Snapshot Builder — monthly starting / ending capital cascade.

For every (month, year) the snapshot is:

    starting  = override, else January anchor, else previous month's ending
    change    = signed deposits and withdrawals dated in the month
    pl        = trade P/L attributed to the month under the active convention
    ending    = starting + change + pl

The cascade is walked forward from January of the earliest year with any
data, so no month ever recurses into its predecessor.

Two views of portfolio size are exposed as separate functions:
``capital_only_size_at`` ignores trade P/L and is what the first pass of a
recalculation feeds into allocation; ``portfolio_size_at`` includes the
trade P/L bound to the builder and is what snapshots and the second pass
use.
"""

from __future__ import annotations

import datetime as dt
from collections.abc import Iterable, Sequence

from tradejournal.config import settings
from tradejournal.engine.accounting import pl_by_month
from tradejournal.models.portfolio import (
    CapitalChange,
    MonthlyPortfolioSnapshot,
    MonthlyStartingCapitalOverride,
    YearlyStartingCapital,
)
from tradejournal.models.trade import Trade
from tradejournal.utils.coerce import MONTHS, month_of, normalize_month
from tradejournal.utils.logger import get_logger

logger = get_logger("Snapshots")

# Dates outside this window are typos, not history
MIN_YEAR = 2000
MAX_YEAR = 2100

MonthKey = tuple[str, int]


def _in_range(year: int) -> bool:
    return MIN_YEAR <= year <= MAX_YEAR


class PortfolioSnapshotBuilder:
    """Derives monthly snapshots from capital configuration and trades.

    The builder is cheap to create and holds no state beyond its inputs and
    a per-instance memo of computed chains; build a new one whenever the
    inputs change.
    """

    def __init__(
        self,
        yearly_capitals: Iterable[YearlyStartingCapital] = (),
        capital_changes: Iterable[CapitalChange] = (),
        overrides: Iterable[MonthlyStartingCapitalOverride] = (),
        trades: Sequence[Trade] = (),
        use_cash_basis: bool = False,
        default_size: float | None = None,
    ) -> None:
        self._anchors: dict[int, float] = {
            c.year: c.starting_capital for c in yearly_capitals if c.starting_capital > 0
        }
        self._overrides: dict[MonthKey, float] = {
            (o.month, o.year): o.starting_capital for o in overrides
        }
        self._changes: dict[MonthKey, float] = {}
        for change in capital_changes:
            if change.date is None:
                continue
            key = month_of(change.date)
            self._changes[key] = self._changes.get(key, 0.0) + change.signed_amount

        self._trades = list(trades)
        self._use_cash_basis = use_cash_basis
        self._default = default_size or settings.DEFAULT_PORTFOLIO_SIZE

        # (with_pl, first_year, last_year) -> chain
        self._chains: dict[tuple[bool, int, int], dict[MonthKey, MonthlyPortfolioSnapshot]] = {}
        self._bound_pl: dict[MonthKey, float] | None = None

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    @property
    def default_size(self) -> float:
        return self._default

    def with_trades(self, trades: Sequence[Trade], use_cash_basis: bool) -> PortfolioSnapshotBuilder:
        """A builder over the same capital configuration bound to ``trades``."""
        clone = PortfolioSnapshotBuilder(default_size=self._default)
        clone._anchors = self._anchors
        clone._overrides = self._overrides
        clone._changes = self._changes
        clone._trades = list(trades)
        clone._use_cash_basis = use_cash_basis
        return clone

    def capital_fingerprint(self) -> str:
        """Deterministic text form of the capital configuration, for cache keys."""
        anchors = sorted(self._anchors.items())
        overrides = sorted((year, MONTHS.index(month), amount) for (month, year), amount in self._overrides.items())
        changes = sorted((year, MONTHS.index(month), amount) for (month, year), amount in self._changes.items())
        return f"{self._default}|{anchors}|{overrides}|{changes}"

    # ------------------------------------------------------------------
    # P/L attribution
    # ------------------------------------------------------------------

    def _bound_pl_by_month(self) -> dict[MonthKey, float]:
        if self._bound_pl is None:
            self._bound_pl = pl_by_month(self._trades, self._use_cash_basis)
        return self._bound_pl

    # ------------------------------------------------------------------
    # Cascade
    # ------------------------------------------------------------------

    def _data_years(self, pl: dict[MonthKey, float]) -> list[int]:
        years = set(self._anchors)
        years.update(year for _, year in self._overrides)
        years.update(year for _, year in self._changes)
        years.update(year for _, year in pl)
        return sorted(y for y in years if _in_range(y))

    def _year_span(self, pl: dict[MonthKey, float], target_year: int | None = None) -> tuple[int, int]:
        """First and last calendar year the cascade has to cover."""
        if target_year is not None and not _in_range(target_year):
            # Out-of-range years stand alone instead of dragging in decades
            return target_year, target_year
        years = self._data_years(pl)
        if target_year is not None:
            years.append(target_year)
        if not years:
            current = dt.date.today().year
            return current, current
        return min(years), max(years)

    def _build_chain(
        self,
        pl: dict[MonthKey, float],
        first_year: int,
        last_year: int,
    ) -> dict[MonthKey, MonthlyPortfolioSnapshot]:
        chain: dict[MonthKey, MonthlyPortfolioSnapshot] = {}
        previous_ending: float | None = None
        for year in range(first_year, last_year + 1):
            for idx, month in enumerate(MONTHS):
                key = (month, year)
                if key in self._overrides:
                    starting = self._overrides[key]
                elif idx == 0 and year in self._anchors:
                    starting = self._anchors[year]
                elif previous_ending is not None:
                    starting = previous_ending
                else:
                    starting = self._default

                change = self._changes.get(key, 0.0)
                month_pl = pl.get(key, 0.0)
                ending = starting + change + month_pl
                base = starting + change
                chain[key] = MonthlyPortfolioSnapshot(
                    month=month,
                    year=year,
                    starting_capital=starting,
                    capital_change=change,
                    pl=month_pl,
                    ending_capital=ending,
                    return_pct=(month_pl / base) * 100 if base > 0 else 0.0,
                )
                previous_ending = ending
        return chain

    def _chain(
        self,
        pl: dict[MonthKey, float],
        with_pl: bool,
        target_year: int | None = None,
        memoize: bool = True,
    ) -> dict[MonthKey, MonthlyPortfolioSnapshot]:
        first_year, last_year = self._year_span(pl, target_year)
        key = (with_pl, first_year, last_year)
        if memoize and key in self._chains:
            return self._chains[key]
        chain = self._build_chain(pl, first_year, last_year)
        if memoize:
            self._chains[key] = chain
        return chain

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def monthly_portfolio(
        self,
        month: str | int,
        year: int,
        trades: Sequence[Trade] | None = None,
        use_cash_basis: bool | None = None,
    ) -> MonthlyPortfolioSnapshot:
        """Snapshot for one month.

        ``trades`` and ``use_cash_basis`` default to the ones the builder was
        bound to. Raises ValueError for an unknown month name.
        """
        month = normalize_month(month)
        if trades is None and use_cash_basis is None:
            chain = self._chain(self._bound_pl_by_month(), with_pl=True, target_year=year)
        else:
            basis = self._use_cash_basis if use_cash_basis is None else use_cash_basis
            pl = pl_by_month(self._trades if trades is None else trades, basis)
            chain = self._chain(pl, with_pl=True, target_year=year, memoize=False)
        return chain[(month, year)]

    def all_monthly_portfolios(
        self,
        trades: Sequence[Trade] | None = None,
        use_cash_basis: bool | None = None,
    ) -> list[MonthlyPortfolioSnapshot]:
        """Every month of every year from the earliest to the latest data year.

        With no data at all this is the twelve months of the current year.
        """
        if trades is None and use_cash_basis is None:
            chain = self._chain(self._bound_pl_by_month(), with_pl=True)
        else:
            basis = self._use_cash_basis if use_cash_basis is None else use_cash_basis
            pl = pl_by_month(self._trades if trades is None else trades, basis)
            chain = self._chain(pl, with_pl=True, memoize=False)
        return list(chain.values())

    def portfolio_size_at(self, month: str | int, year: int) -> float:
        """Starting capital of (month, year), trade P/L included.

        Never raises; an unusable month falls back to the default size.
        """
        try:
            size = self.monthly_portfolio(month, year).starting_capital
        except ValueError as exc:
            logger.debug("%s", exc)
            return self._default
        return size if size > 0 else self._default

    def capital_only_size_at(self, month: str | int, year: int) -> float:
        """Starting capital of (month, year) from anchors, overrides and capital changes only."""
        try:
            month = normalize_month(month)
        except ValueError as exc:
            logger.debug("%s", exc)
            return self._default
        size = self._chain({}, with_pl=False, target_year=year)[(month, year)].starting_capital
        return size if size > 0 else self._default

    def latest_portfolio_size(self, today: dt.date | None = None) -> float:
        """Ending capital of the current month."""
        today = today or dt.date.today()
        month, year = month_of(today)
        size = self.monthly_portfolio(month, year).ending_capital
        return size if size > 0 else self._default
