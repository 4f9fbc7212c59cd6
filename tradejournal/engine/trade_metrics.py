"""Trade Metrics Calculator — per-trade derived fields.

Pure math over a single trade plus a portfolio-size lookup. Nothing here
touches the database or mutates its input; the orchestrator merges the
returned TradeMetrics back into the trade.

Legs with qty <= 0 or price <= 0 are dropped before any aggregate, and
every numeric helper substitutes 0 rather than raising on bad input.
"""

from __future__ import annotations

import datetime as dt
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass

from tradejournal.config import settings
from tradejournal.engine.accounting import (
    accrual_pl,
    attribution_date,
    cash_pl,
)
from tradejournal.engine.fifo import (
    chronological,
    total_qty,
    valid_legs,
    weighted_average,
)
from tradejournal.models.trade import Leg, PositionStatus, Trade
from tradejournal.utils.coerce import month_of, safe_float
from tradejournal.utils.logger import get_logger

logger = get_logger("TradeMetrics")

# (month, year) -> portfolio size at the start of that month
PortfolioSizeLookup = Callable[[str, int], float]


@dataclass
class TradeMetrics:
    """Container for every field the calculator owns."""

    avg_entry: float = 0.0
    position_size: float = 0.0
    allocation: float = 0.0
    sl_percent: float = 0.0
    open_qty: float = 0.0
    exited_qty: float = 0.0
    avg_exit_price: float = 0.0
    stock_move: float = 0.0
    reward_risk: float = 0.0
    holding_days: int = 0
    realised_amount: float = 0.0
    pl_rs: float = 0.0
    unrealized_pl: float = 0.0
    pf_impact: float = 0.0
    open_heat: float = 0.0
    position_status: PositionStatus = "Open"

    # Both conventions, cached so a toggle is a field switch
    accrual_pl: float = 0.0
    cash_pl: float = 0.0
    accrual_pf_impact: float = 0.0
    cash_pf_impact: float = 0.0

    def to_dict(self) -> dict:
        """Serialize for merging back into a Trade."""
        return {k: v for k, v in self.__dict__.items()}


# ---------------------------------------------------------------------------
# Portfolio size
# ---------------------------------------------------------------------------

def size_for_date(lookup: PortfolioSizeLookup | None, day: dt.date | None) -> float:
    """Portfolio size for the month containing ``day``.

    Falls back to the configured default when there is no lookup, no date,
    the lookup raises, or it returns something falsy.
    """
    fallback = settings.DEFAULT_PORTFOLIO_SIZE
    if lookup is None or day is None:
        return fallback
    month, year = month_of(day)
    try:
        size = safe_float(lookup(month, year))
    except Exception as exc:
        logger.debug("Portfolio size lookup failed for %s %s: %s", month, year, exc)
        return fallback
    return size if size > 0 else fallback


# ---------------------------------------------------------------------------
# Entry side
# ---------------------------------------------------------------------------

def calc_avg_entry(entries: Sequence[Leg]) -> float:
    return weighted_average(valid_legs(entries))


def calc_position_size(avg_entry: float, total_entry_qty: float) -> float:
    return avg_entry * total_entry_qty


def calc_allocation(position_size: float, portfolio_size: float) -> float:
    """Position size as a percentage of the portfolio."""
    return (position_size / portfolio_size) * 100 if portfolio_size else 0.0


def calc_sl_percent(entry: float, sl: float) -> float:
    if not entry or not sl:
        return 0.0
    return abs((entry - sl) / entry) * 100


# ---------------------------------------------------------------------------
# Exit side
# ---------------------------------------------------------------------------

def calc_exited_qty(exits: Iterable[Leg]) -> float:
    return total_qty(valid_legs(exits))


def calc_open_qty(total_entry_qty: float, exited_qty: float) -> float:
    """Entered minus exited, clamped at zero."""
    return max(0.0, total_entry_qty - exited_qty)


def calc_avg_exit_price(exits: Sequence[Leg]) -> float:
    return weighted_average(valid_legs(exits))


def calc_realised_amount(exited_qty: float, avg_exit: float) -> float:
    """Gross proceeds of the exited quantity."""
    return exited_qty * avg_exit


def derive_status(open_qty: float, exited_qty: float) -> PositionStatus:
    if exited_qty > 0 and open_qty <= 0:
        return "Closed"
    if exited_qty > 0 and open_qty > 0:
        return "Partial"
    return "Open"


# ---------------------------------------------------------------------------
# Moves & ratios
# ---------------------------------------------------------------------------

def calc_stock_move(
    avg_entry: float,
    avg_exit: float,
    cmp: float,
    open_qty: float,
    exited_qty: float,
    status: PositionStatus,
    direction_sign: int = 1,
) -> float:
    """Price move of the position in percent, signed by direction.

    Open positions are marked at the current price, closed ones at the
    average exit, and partial ones blend the two by quantity.
    """
    if avg_entry <= 0 or open_qty < 0 or exited_qty < 0:
        return 0.0
    total = open_qty + exited_qty
    if total == 0:
        return 0.0

    if status == "Open":
        if cmp <= 0:
            return 0.0
        move = (cmp - avg_entry) / avg_entry * 100
    elif status == "Closed":
        if avg_exit <= 0:
            return 0.0
        move = (avg_exit - avg_entry) / avg_entry * 100
    else:
        if cmp <= 0 or avg_exit <= 0:
            return 0.0
        realized = (avg_exit - avg_entry) / avg_entry * 100
        unrealized = (cmp - avg_entry) / avg_entry * 100
        move = (realized * exited_qty + unrealized * open_qty) / total
    return move * direction_sign


def calc_reward_risk(
    entry: float,
    sl: float,
    cmp: float,
    avg_exit: float,
    open_qty: float,
    exited_qty: float,
    status: PositionStatus,
    direction_sign: int = 1,
) -> float:
    """|reward| / |risk| per share; 0 when the risk is zero."""
    if not entry or not sl:
        return 0.0
    total = open_qty + exited_qty
    if total == 0:
        return 0.0
    risk = abs(entry - sl)
    if risk == 0:
        return 0.0

    open_reward = (cmp - entry) * direction_sign if cmp > 0 else 0.0
    exit_reward = (avg_exit - entry) * direction_sign if avg_exit > 0 else 0.0
    if status == "Open":
        reward = open_reward
    elif status == "Closed":
        reward = exit_reward
    else:
        reward = (exit_reward * exited_qty + open_reward * open_qty) / total
    return abs(reward / risk)


def calc_holding_days(trade: Trade) -> int:
    """Days from entry to the earliest exit; 0 while nothing has been exited."""
    start = trade.date
    if start is None:
        pyramid_dates = [leg.date for leg in trade.pyramids if leg.date]
        start = min(pyramid_dates) if pyramid_dates else None
    exit_dates = [leg.date for leg in valid_legs(trade.exits) if leg.date]
    if start is None or not exit_dates:
        return 0
    return max(1, (min(exit_dates) - start).days)


# ---------------------------------------------------------------------------
# P/L & portfolio impact
# ---------------------------------------------------------------------------

def calc_unrealized_pl(avg_entry: float, cmp: float, open_qty: float, direction_sign: int = 1) -> float:
    if not open_qty or not avg_entry or not cmp:
        return 0.0
    return (cmp - avg_entry) * open_qty * direction_sign


def calc_pf_impact(pl: float, portfolio_size: float, status: PositionStatus) -> float:
    """P/L as a percentage of the portfolio; always 0 for Open trades."""
    if status == "Open" or not portfolio_size:
        return 0.0
    return (pl / portfolio_size) * 100


# ---------------------------------------------------------------------------
# Open heat
# ---------------------------------------------------------------------------

def calc_trade_open_heat(
    trade: Trade,
    portfolio_size: float,
    avg_entry: float | None = None,
    open_qty: float | None = None,
) -> float:
    """Money at risk on the open quantity, as % of the portfolio.

    The trailing stop wins over the initial stop. A stop on the wrong side
    of the entry (above it for longs, below for shorts) carries no heat.
    """
    entry_price = avg_entry if avg_entry is not None else trade.avg_entry
    entry_price = entry_price or trade.entry
    qty = trade.open_qty if open_qty is None else open_qty
    stop = trade.tsl if trade.tsl > 0 else trade.sl
    if not entry_price or stop <= 0 or not qty:
        return 0.0

    if trade.buy_sell == "Buy":
        if stop >= entry_price:
            return 0.0
        risk = (entry_price - stop) * qty
    else:
        if stop <= entry_price:
            return 0.0
        risk = (stop - entry_price) * qty
    return (max(0.0, risk) / portfolio_size) * 100 if portfolio_size > 0 else 0.0


def calc_open_heat(trades: Iterable[Trade], portfolio_size_at: PortfolioSizeLookup | None = None) -> float:
    """Total open heat across Open and Partial trades."""
    total = 0.0
    for trade in trades:
        if trade.status not in ("Open", "Partial"):
            continue
        total += calc_trade_open_heat(trade, size_for_date(portfolio_size_at, trade.date))
    return total


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def compute_trade_metrics(
    trade: Trade,
    portfolio_size_at: PortfolioSizeLookup | None,
    use_cash_basis: bool = False,
) -> TradeMetrics:
    """Derive every calculated field of ``trade``.

    Allocation and open heat use the size at the entry month. PF impact is
    computed under both conventions, each against the size at its own
    attribution month, and the active convention fills ``pl_rs`` and
    ``pf_impact``. A user-pinned status is respected throughout.
    """
    entries = chronological(valid_legs(trade.entry_legs()))
    exits = valid_legs(trade.exits)

    avg_entry = calc_avg_entry(entries)
    entered_qty = total_qty(entries)
    position_size = calc_position_size(avg_entry, entered_qty)
    entry_size = size_for_date(portfolio_size_at, trade.date)

    exited_qty = calc_exited_qty(exits)
    open_qty = calc_open_qty(entered_qty, exited_qty)
    avg_exit = calc_avg_exit_price(exits)

    status = trade.status if trade.status_overridden else derive_status(open_qty, exited_qty)

    accrual = accrual_pl(trade)
    cash = cash_pl(trade)
    accrual_size = size_for_date(portfolio_size_at, attribution_date(trade, False))
    cash_size = size_for_date(portfolio_size_at, attribution_date(trade, True))
    accrual_pf = calc_pf_impact(accrual, accrual_size, status)
    cash_pf = calc_pf_impact(cash, cash_size, status)

    return TradeMetrics(
        avg_entry=avg_entry,
        position_size=position_size,
        allocation=calc_allocation(position_size, entry_size),
        sl_percent=calc_sl_percent(trade.entry, trade.sl),
        open_qty=open_qty,
        exited_qty=exited_qty,
        avg_exit_price=avg_exit,
        stock_move=calc_stock_move(
            avg_entry, avg_exit, trade.cmp, open_qty, exited_qty, status, trade.direction_sign,
        ),
        reward_risk=calc_reward_risk(
            trade.entry, trade.sl, trade.cmp, avg_exit, open_qty, exited_qty, status,
            trade.direction_sign,
        ),
        holding_days=calc_holding_days(trade),
        realised_amount=calc_realised_amount(exited_qty, avg_exit),
        pl_rs=cash if use_cash_basis else accrual,
        unrealized_pl=calc_unrealized_pl(avg_entry, trade.cmp, open_qty, trade.direction_sign),
        pf_impact=cash_pf if use_cash_basis else accrual_pf,
        open_heat=calc_trade_open_heat(trade, entry_size, avg_entry=avg_entry, open_qty=open_qty),
        position_status=status,
        accrual_pl=accrual,
        cash_pl=cash,
        accrual_pf_impact=accrual_pf,
        cash_pf_impact=cash_pf,
    )


def apply_metrics(trade: Trade, metrics: TradeMetrics) -> Trade:
    """Merge calculated fields into a copy of ``trade``.

    Only a Derived status is replaced; a UserOverridden one is kept as is.
    """
    update = metrics.to_dict()
    status = update.pop("position_status")
    if not trade.status_overridden:
        update["position_status"] = {"kind": "derived", "value": status}
    update["needs_recalculation"] = False
    return trade.model_validate({**trade.model_dump(), **update})
