"""Accounting Method Resolver — cash vs accrual attribution.

Accrual basis books a trade on its entry date with its full P/L: realized
FIFO P/L on the exited quantity plus unrealized P/L (current price against
average entry) on the open quantity.

Cash basis books only what was realized, on the date it was realized. A
trade with several exits is expanded into one synthetic record per exit
leg; the expansion lives only for the duration of a calculation and is
regrouped into one row per trade for display.

Every function here reads the raw legs of the trade and never mutates it,
so resolving twice gives the same answer.
"""

from __future__ import annotations

import datetime as dt
from collections.abc import Iterable, Sequence

from tradejournal.engine.fifo import (
    chronological,
    match_fifo,
    total_qty,
    valid_legs,
    weighted_average,
)
from tradejournal.models.trade import TRADE_FIELDS, DisplayTrade, ExpandedTrade, Leg, Trade
from tradejournal.utils.coerce import month_of

EXPANDED_ID_SEPARATOR = "_exit_"


def original_trade_id(expanded_id: str) -> str:
    """Strip the ``_exit_N`` suffix from an expanded record id."""
    return expanded_id.split(EXPANDED_ID_SEPARATOR)[0]


# ------------------------------------------------------------------
# Exit legs
# ------------------------------------------------------------------


def latest_exit_date(trade: Trade) -> dt.date | None:
    """Latest date written on any exit leg, valid or not."""
    dates = [leg.date for leg in trade.exits if leg.date]
    return max(dates) if dates else None


def dated_exit_legs(trade: Trade) -> list[Leg]:
    """Valid exit legs in chronological order, each with a usable date.

    A leg with quantity and price but no date falls back to the latest exit
    date on the trade, then to the entry date.
    """
    fallback = latest_exit_date(trade) or trade.date
    legs = []
    for leg in valid_legs(trade.exits):
        if leg.date is None and fallback is not None:
            leg = leg.model_copy(update={"date": fallback})
        legs.append(leg)
    return chronological(legs)


def exit_leg_pls(trade: Trade) -> list[tuple[Leg, float]]:
    """Each dated exit leg paired with its FIFO-matched realized P/L."""
    entries = chronological(valid_legs(trade.entry_legs()))
    exits = dated_exit_legs(trade)
    pls = match_fifo(entries, exits, trade.direction_sign)
    return list(zip(exits, pls))


# ------------------------------------------------------------------
# Resolution
# ------------------------------------------------------------------


def accrual_pl(trade: Trade) -> float:
    """Realized FIFO P/L plus unrealized P/L on the open quantity."""
    entries = valid_legs(trade.entry_legs())
    realized = sum(pl for _, pl in exit_leg_pls(trade))
    avg_entry = weighted_average(entries)
    open_qty = max(0.0, total_qty(entries) - total_qty(valid_legs(trade.exits)))
    unrealized = 0.0
    if open_qty and avg_entry and trade.cmp > 0:
        unrealized = (trade.cmp - avg_entry) * open_qty * trade.direction_sign
    return realized + unrealized


def cash_pl(trade: Trade) -> float:
    """Realized amounts from completed exit legs only."""
    return sum(pl for _, pl in exit_leg_pls(trade))


def attribution_date(trade: Trade, use_cash_basis: bool) -> dt.date | None:
    """Entry date for accrual; latest exit date for cash (entry date if none)."""
    if not use_cash_basis:
        return trade.date
    dates = [leg.date for leg in dated_exit_legs(trade) if leg.date]
    return max(dates) if dates else trade.date


def resolve_date_and_pl(trade: Trade, use_cash_basis: bool) -> tuple[dt.date | None, float]:
    """The (attribution date, P/L) that represents this trade under a convention."""
    if use_cash_basis:
        return attribution_date(trade, True), cash_pl(trade)
    return attribution_date(trade, False), accrual_pl(trade)


# ------------------------------------------------------------------
# Expansion & regrouping
# ------------------------------------------------------------------


def expand_for_cash_basis(trade: Trade) -> list[ExpandedTrade]:
    """One synthetic record per exit leg; a trade with no exits maps to itself."""
    legs = exit_leg_pls(trade)
    if not legs:
        return [
            ExpandedTrade(
                id=trade.id,
                original_id=trade.id,
                exit_index=-1,
                trade=trade,
                exit_date=None,
                exit_qty=0.0,
                exit_price=0.0,
                pl=0.0,
            )
        ]
    return [
        ExpandedTrade(
            id=f"{trade.id}{EXPANDED_ID_SEPARATOR}{idx}",
            original_id=trade.id,
            exit_index=idx,
            trade=trade,
            exit_date=leg.date,
            exit_qty=leg.qty,
            exit_price=leg.price,
            pl=pl,
        )
        for idx, (leg, pl) in enumerate(legs)
    ]


def expand_all(trades: Iterable[Trade]) -> list[ExpandedTrade]:
    expanded: list[ExpandedTrade] = []
    for trade in trades:
        expanded.extend(expand_for_cash_basis(trade))
    return expanded


def group_for_display(expanded: Sequence[ExpandedTrade]) -> list[DisplayTrade]:
    """Merge expanded records back into one row per original trade.

    Row order follows the first appearance of each trade. The surviving
    legs are kept on the row for the cumulative-PF pass.
    """
    groups: dict[str, list[ExpandedTrade]] = {}
    for record in expanded:
        groups.setdefault(record.original_id, []).append(record)

    rows: list[DisplayTrade] = []
    for records in groups.values():
        base = records[0].trade
        legs = [r for r in records if r.is_exit_leg]
        exit_dates = [r.exit_date for r in legs if r.exit_date]
        row = DisplayTrade(
            **base.model_dump(include=set(TRADE_FIELDS)),
            display_pl=sum(r.pl for r in legs),
            display_exit_date=max(exit_dates) if exit_dates else None,
            expanded=legs,
        )
        rows.append(row)
    return rows


def display_for_accrual(trades: Iterable[Trade]) -> list[DisplayTrade]:
    """Accrual rows need no expansion; the display P/L is the accrual P/L."""
    return [
        DisplayTrade(**trade.model_dump(include=set(TRADE_FIELDS)), display_pl=accrual_pl(trade))
        for trade in trades
    ]


# ------------------------------------------------------------------
# Month attribution
# ------------------------------------------------------------------


def pl_by_month(trades: Iterable[Trade], use_cash_basis: bool) -> dict[tuple[str, int], float]:
    """Trade P/L per (month, year) under one convention.

    Accrual books the whole trade on its entry month. Cash books every exit
    leg on its own month and counts each (trade, exit leg) pair once, so a
    trade whose legs span several months is split across them, never doubled.
    """
    totals: dict[tuple[str, int], float] = {}
    if not use_cash_basis:
        for trade in trades:
            if trade.date is None:
                continue
            pl = trade.accrual_pl if trade.accrual_pl is not None else accrual_pl(trade)
            key = month_of(trade.date)
            totals[key] = totals.get(key, 0.0) + pl
        return totals

    seen: set[tuple[str, int]] = set()
    for record in expand_all(trades):
        if not record.is_exit_leg or record.exit_date is None:
            continue
        leg_key = (record.original_id, record.exit_index)
        if leg_key in seen:
            continue
        seen.add(leg_key)
        key = month_of(record.exit_date)
        totals[key] = totals.get(key, 0.0) + record.pl
    return totals
