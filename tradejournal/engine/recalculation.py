"""Recalculation Orchestrator — sort, renumber, recompute, accumulate.

A full recalculation runs in two passes so that trade allocation and the
monthly snapshots never read each other's half-built state:

  1. Every trade's metrics are computed against the capital-only view of
     portfolio size (anchors, overrides and capital changes, no trade P/L).
  2. Monthly snapshots are built from the P/L values pass 1 produced.

Cumulative PF is a property of an ordered sequence, not of a trade: the
orchestrator accumulates it over chronological order, and the display
pipeline re-accumulates it over whatever order and subset is on screen.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from tradejournal.engine.accounting import (
    display_for_accrual,
    expand_all,
    group_for_display,
)
from tradejournal.engine.date_filters import DateFilter, is_in_filter, is_trade_in_filter
from tradejournal.engine.performance import trade_pf_impact
from tradejournal.engine.portfolio_snapshots import PortfolioSnapshotBuilder
from tradejournal.engine.trade_metrics import (
    PortfolioSizeLookup,
    apply_metrics,
    compute_trade_metrics,
    size_for_date,
)
from tradejournal.models.portfolio import MonthlyPortfolioSnapshot
from tradejournal.models.trade import DisplayTrade, Trade
from tradejournal.utils.logger import get_logger

logger = get_logger("Recalc")

# Memo entries kept per Recalculator
_MAX_MEMO_ENTRIES = 16


# ---------------------------------------------------------------------------
# Ordering
# ---------------------------------------------------------------------------

def _trade_no_key(trade_no: str) -> tuple[int, int, str]:
    # Numeric trade numbers compare as numbers so renumbering is stable
    text = (trade_no or "").strip()
    if text.isdigit():
        return 0, int(text), ""
    return 1, 0, text


def sort_chronologically(trades: Iterable[Trade]) -> list[Trade]:
    """Entry-date order; undated trades last; ties broken on trade number."""
    return sorted(
        trades,
        key=lambda t: (
            t.date is None,
            t.date.toordinal() if t.date else 0,
            _trade_no_key(t.trade_no),
        ),
    )


def renumber(trades: Sequence[Trade]) -> list[Trade]:
    """Assign trade numbers 1..N in list order."""
    return [
        t if t.trade_no == str(idx) else t.model_copy(update={"trade_no": str(idx)})
        for idx, t in enumerate(trades, start=1)
    ]


# ---------------------------------------------------------------------------
# Cumulative PF
# ---------------------------------------------------------------------------

def apply_cumulative_pf(trades: Sequence[Trade], use_cash_basis: bool = False) -> list[Trade]:
    """Running PF total over ``trades`` in the given order.

    Open trades carry the running value but add nothing to it.
    """
    running = 0.0
    result = []
    for trade in trades:
        if trade.status != "Open":
            running += trade_pf_impact(trade, use_cash_basis)
        result.append(trade.model_copy(update={"cumm_pf": running}))
    return result


def display_pf_impact(
    row: DisplayTrade,
    use_cash_basis: bool,
    portfolio_size_at: PortfolioSizeLookup | None = None,
) -> float:
    """PF impact of one display row.

    A cash-basis row built from exit legs is measured from the legs that
    survived filtering, against the size at the latest of those legs.
    ``portfolio_size_at`` must be the capital-only view recalculation used,
    or an unfiltered row would disagree with its stored PF impact.
    """
    if use_cash_basis and row.expanded:
        legs_pl = sum(leg.pl for leg in row.expanded)
        latest = max((leg.exit_date for leg in row.expanded if leg.exit_date), default=row.date)
        size = size_for_date(portfolio_size_at, latest)
        return (legs_pl / size) * 100 if size else 0.0
    return trade_pf_impact(row, use_cash_basis)


def apply_display_cumulative(
    rows: Sequence[DisplayTrade],
    use_cash_basis: bool,
    portfolio_size_at: PortfolioSizeLookup | None = None,
) -> list[DisplayTrade]:
    """Re-accumulate cumulative PF over the rows exactly as displayed."""
    running = 0.0
    result = []
    for row in rows:
        if row.status != "Open":
            running += display_pf_impact(row, use_cash_basis, portfolio_size_at)
        result.append(row.model_copy(update={"cumm_pf": running}))
    return result


# ---------------------------------------------------------------------------
# Recalculation
# ---------------------------------------------------------------------------

def recalculate_all(
    trades: Iterable[Trade],
    portfolio_size_at: PortfolioSizeLookup | None,
    use_cash_basis: bool = False,
    fast_mode: bool = False,
) -> list[Trade]:
    """Sort, renumber and recompute every trade.

    In fast mode the metrics step is skipped: trades keep whatever
    calculated values they had and are flagged for a full pass.
    """
    ordered = renumber(sort_chronologically(trades))
    result: list[Trade] = []
    for trade in ordered:
        name = trade.name.strip().upper()
        if name != trade.name:
            trade = trade.model_copy(update={"name": name})
        if fast_mode:
            result.append(trade.model_copy(update={"needs_recalculation": True}))
            continue
        metrics = compute_trade_metrics(trade, portfolio_size_at, use_cash_basis)
        result.append(apply_metrics(trade, metrics))
    return apply_cumulative_pf(result, use_cash_basis)


@dataclass
class RecalcResult:
    """Output of a two-pass recalculation."""

    trades: list[Trade]
    snapshots: list[MonthlyPortfolioSnapshot]
    builder: PortfolioSnapshotBuilder
    fast_mode: bool = False
    cache_hit: bool = False
    fingerprint: str = ""
    warnings: list[str] = field(default_factory=list)


class Recalculator:
    """Runs the two-pass recalculation behind a content-hash memo.

    The memo maps an md5 of (trades, capital configuration, convention,
    mode) to the computed result. It never goes stale silently because the
    key covers every input, but callers that want a clean slate after an
    external change can ``invalidate()`` it.
    """

    def __init__(self, max_entries: int = _MAX_MEMO_ENTRIES) -> None:
        self._memo: dict[str, RecalcResult] = {}
        self._max_entries = max_entries

    @staticmethod
    def fingerprint(
        trades: Sequence[Trade],
        builder: PortfolioSnapshotBuilder,
        use_cash_basis: bool,
        fast_mode: bool,
    ) -> str:
        payload = json.dumps(
            [t.model_dump(mode="json") for t in trades],
            sort_keys=True,
            default=str,
        )
        key = f"{payload}|{builder.capital_fingerprint()}|{use_cash_basis}|{fast_mode}"
        return hashlib.md5(key.encode()).hexdigest()

    def invalidate(self) -> None:
        """Drop every memoized result."""
        if self._memo:
            logger.debug("Memo invalidated (%d entries)", len(self._memo))
        self._memo.clear()

    def run(
        self,
        trades: Sequence[Trade],
        builder: PortfolioSnapshotBuilder,
        use_cash_basis: bool = False,
        fast_mode: bool = False,
    ) -> RecalcResult:
        fingerprint = self.fingerprint(trades, builder, use_cash_basis, fast_mode)
        cached = self._memo.get(fingerprint)
        if cached is not None:
            logger.debug("Cache hit %s (%d trades)", fingerprint[:12], len(trades))
            return RecalcResult(
                trades=list(cached.trades),
                snapshots=list(cached.snapshots),
                builder=cached.builder,
                fast_mode=cached.fast_mode,
                cache_hit=True,
                fingerprint=fingerprint,
            )

        mode = "fast" if fast_mode else "full"
        basis = "cash" if use_cash_basis else "accrual"
        logger.info("Starting %s recalculation of %d trades (%s basis)", mode, len(trades), basis)

        # Pass 1: trade metrics against capital-only portfolio size
        recalculated = recalculate_all(trades, builder.capital_only_size_at, use_cash_basis, fast_mode)

        # Pass 2: snapshots from the trade P/L pass 1 produced
        bound = builder.with_trades(recalculated, use_cash_basis)
        snapshots = bound.all_monthly_portfolios()

        result = RecalcResult(
            trades=recalculated,
            snapshots=snapshots,
            builder=bound,
            fast_mode=fast_mode,
            fingerprint=fingerprint,
        )
        self._memo[fingerprint] = result
        while len(self._memo) > self._max_entries:
            self._memo.pop(next(iter(self._memo)))

        logger.info(
            "Finished %s recalculation: %d trades, %d monthly snapshots",
            mode, len(recalculated), len(snapshots),
        )
        return result


# ---------------------------------------------------------------------------
# Display pipeline
# ---------------------------------------------------------------------------

_SORT_ALIASES = {"pl": "display_pl", "exit_date": "display_exit_date"}


def _matches_search(row: DisplayTrade, query: str) -> bool:
    query = query.lower()
    return (
        query in row.name.lower()
        or query in row.setup.lower()
        or query in row.trade_no.lower()
    )


def _sort_rows(rows: list[DisplayTrade], sort_by: str, descending: bool) -> list[DisplayTrade]:
    attr = _SORT_ALIASES.get(sort_by, sort_by)
    if attr == "trade_no":
        present = rows
        key = lambda r: _trade_no_key(r.trade_no)  # noqa: E731
        missing: list[DisplayTrade] = []
    else:
        if attr not in DisplayTrade.model_fields:
            logger.debug("Unknown sort column %s, keeping order", sort_by)
            return rows
        present = [r for r in rows if getattr(r, attr) is not None]
        missing = [r for r in rows if getattr(r, attr) is None]
        if attr == "position_status":
            key = lambda r: r.status  # noqa: E731
        else:
            key = lambda r: getattr(r, attr)  # noqa: E731
    # Rows without a value always sink to the bottom
    return sorted(present, key=key, reverse=descending) + missing


def build_display_rows(
    trades: Sequence[Trade],
    use_cash_basis: bool = False,
    date_filter: DateFilter | None = None,
    search: str = "",
    status: str | None = None,
    sort_by: str | None = None,
    descending: bool = False,
    portfolio_size_at: PortfolioSizeLookup | None = None,
) -> list[DisplayTrade]:
    """expand -> filter -> group -> search -> status -> sort -> cumulative PF.

    Cash basis filters individual exit legs before regrouping, so a trade
    whose legs straddle the period shows only the legs inside it.
    """
    date_filter = date_filter or DateFilter()

    if use_cash_basis:
        kept = []
        for record in expand_all(trades):
            day = record.exit_date if record.is_exit_leg else record.trade.date
            if is_in_filter(day, date_filter):
                kept.append(record)
        rows = group_for_display(kept)
    else:
        rows = display_for_accrual(
            t for t in trades if is_trade_in_filter(t, date_filter, use_cash_basis=False)
        )

    if search.strip():
        rows = [r for r in rows if _matches_search(r, search.strip())]
    if status:
        rows = [r for r in rows if r.status.lower() == status.lower()]
    if sort_by:
        rows = _sort_rows(rows, sort_by, descending)

    return apply_display_cumulative(rows, use_cash_basis, portfolio_size_at)
