"""Performance analytics — drawdown and accounting-aware summary stats.

Drawdown here is measured in percentage points of cumulative PF: the
running peak starts at the first value and every later point reports how
far it sits below the best value seen so far.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

import numpy as np

from tradejournal.engine.accounting import accrual_pl, attribution_date, cash_pl
from tradejournal.engine.trade_metrics import PortfolioSizeLookup, calc_open_heat
from tradejournal.models.portfolio import DrawdownPoint, PerformanceStats
from tradejournal.models.trade import Trade

# ---------------------------------------------------------------------------
# Drawdown
# ---------------------------------------------------------------------------


def drawdown_series(
    cumulative: Sequence[float],
    labels: Sequence[str] | None = None,
) -> list[DrawdownPoint]:
    """Running peak and drawdown-from-peak for each point of a sequence."""
    if len(cumulative) == 0:
        return []
    values = np.asarray(cumulative, dtype=float)
    peaks = np.maximum.accumulate(values)
    drawdowns = peaks - values
    points = []
    for idx, value in enumerate(values):
        is_new_peak = idx == 0 or value > peaks[idx - 1]
        points.append(DrawdownPoint(
            label=labels[idx] if labels is not None and idx < len(labels) else "",
            cumm_pf=float(value),
            peak=float(peaks[idx]),
            dd_from_peak=float(drawdowns[idx]),
            is_new_peak=bool(is_new_peak),
        ))
    return points


def max_drawdown(cumulative: Sequence[float]) -> float:
    """Largest peak-to-trough fall in percentage points."""
    if len(cumulative) == 0:
        return 0.0
    values = np.asarray(cumulative, dtype=float)
    return float(np.max(np.maximum.accumulate(values) - values))


def current_drawdown(cumulative: Sequence[float]) -> float:
    """Distance of the last point below the all-time peak."""
    if len(cumulative) == 0:
        return 0.0
    values = np.asarray(cumulative, dtype=float)
    return float(np.max(values) - values[-1])


# ---------------------------------------------------------------------------
# Per-trade accessors
# ---------------------------------------------------------------------------


def trade_pl(trade: Trade, use_cash_basis: bool) -> float:
    """Cached P/L for a convention, computed from the legs if not cached yet."""
    if use_cash_basis:
        return trade.cash_pl if trade.cash_pl is not None else cash_pl(trade)
    return trade.accrual_pl if trade.accrual_pl is not None else accrual_pl(trade)


def trade_pf_impact(trade: Trade, use_cash_basis: bool) -> float:
    cached = trade.cash_pf_impact if use_cash_basis else trade.accrual_pf_impact
    return cached if cached is not None else trade.pf_impact


def chronological_cumulative_pf(
    trades: Iterable[Trade],
    use_cash_basis: bool = False,
) -> tuple[list[str], list[float]]:
    """Cumulative PF over closed and partial trades in attribution-date order.

    Returns (labels, cumulative values). Undated trades go last.
    """
    booked = [t for t in trades if t.status != "Open"]
    keyed = []
    for idx, trade in enumerate(booked):
        day = attribution_date(trade, use_cash_basis)
        keyed.append((day is None, day.toordinal() if day else 0, idx, trade, day))
    keyed.sort(key=lambda item: item[:3])

    labels: list[str] = []
    values: list[float] = []
    running = 0.0
    for _, _, _, trade, day in keyed:
        running += trade_pf_impact(trade, use_cash_basis)
        labels.append(f"{trade.name} {day.isoformat() if day else ''}".strip())
        values.append(running)
    return labels, values


# ---------------------------------------------------------------------------
# Summary statistics
# ---------------------------------------------------------------------------


def _mean(values: list[float]) -> float:
    return float(np.mean(values)) if values else 0.0


def summary_stats(
    trades: Sequence[Trade],
    use_cash_basis: bool = False,
    portfolio_size_at: PortfolioSizeLookup | None = None,
    cumulative: Sequence[float] | None = None,
) -> PerformanceStats:
    """Win rate, average gain / loss, moves, allocation and drawdown.

    Cash basis only counts trades that have realized something; accrual
    counts every trade. Trades are unique by id, so expanded cash legs
    never inflate the counts. Drawdown defaults to the full chronological
    history; pass ``cumulative`` to measure a displayed subset instead.
    """
    unique: dict[str, Trade] = {}
    for trade in trades:
        unique.setdefault(trade.id, trade)
    all_trades = list(unique.values())

    if use_cash_basis:
        counted = [t for t in all_trades if t.status in ("Closed", "Partial")]
    else:
        counted = all_trades

    pls = [trade_pl(t, use_cash_basis) for t in counted]
    wins = [t for t, pl in zip(counted, pls) if pl > 0]
    losses = [t for t, pl in zip(counted, pls) if pl < 0]

    if cumulative is None:
        _, cumulative = chronological_cumulative_pf(all_trades, use_cash_basis)

    open_trades = [t for t in all_trades if t.status in ("Open", "Partial")]
    exited = [t for t in counted if t.exited_qty > 0]

    return PerformanceStats(
        accounting_method="cash" if use_cash_basis else "accrual",
        total_trades=len(counted),
        winning_trades=len(wins),
        losing_trades=len(losses),
        win_rate=(len(wins) / len(counted)) * 100 if counted else 0.0,
        gross_pl=float(sum(pls)),
        avg_gain=_mean([pl for pl in pls if pl > 0]),
        avg_loss=_mean([pl for pl in pls if pl < 0]),
        avg_pos_move=_mean([t.stock_move for t in wins]),
        avg_neg_move=_mean([t.stock_move for t in losses]),
        avg_position_size=_mean([t.allocation for t in counted]),
        avg_holding_days=_mean([float(t.holding_days) for t in exited]),
        avg_reward_risk=_mean([t.reward_risk for t in counted if t.reward_risk > 0]),
        plan_followed=(
            sum(1 for t in counted if t.plan_followed) / len(counted) * 100 if counted else 0.0
        ),
        open_positions=len(open_trades),
        open_heat=calc_open_heat(open_trades, portfolio_size_at),
        max_drawdown=max_drawdown(cumulative),
        current_drawdown=current_drawdown(cumulative),
    )
