"""FIFO lot matching between entry fills and exit fills.

Each exit consumes the oldest remaining entry capacity first. Results are
reported per exit so cash-basis attribution can book every exit leg on its
own date while the per-leg amounts still add up to the trade's realized P/L.
"""

from __future__ import annotations

import datetime as dt
from collections.abc import Iterable, Sequence

from tradejournal.models.trade import Leg


def valid_legs(legs: Iterable[Leg]) -> list[Leg]:
    """Drop legs with qty <= 0 or price <= 0."""
    return [leg for leg in legs if leg.is_valid]


def total_qty(legs: Iterable[Leg]) -> float:
    return sum(leg.qty for leg in legs)


def weighted_average(legs: Sequence[Leg]) -> float:
    """Quantity-weighted mean price; 0 for an empty set."""
    qty = total_qty(legs)
    if not qty:
        return 0.0
    return sum(leg.price * leg.qty for leg in legs) / qty


def chronological(legs: Sequence[Leg]) -> list[Leg]:
    """Order legs by date, keeping list order for ties.

    An undated leg inherits the date of the leg before it, so it stays
    where the user put it instead of jumping to either end.
    """
    keyed = []
    last_seen = dt.date.min
    for idx, leg in enumerate(legs):
        effective = leg.date or last_seen
        last_seen = effective
        keyed.append((effective, idx, leg))
    keyed.sort(key=lambda item: (item[0], item[1]))
    return [leg for _, _, leg in keyed]


def match_fifo(
    entries: Sequence[Leg],
    exits: Sequence[Leg],
    direction_sign: int = 1,
) -> list[float]:
    """Realized P/L of each exit, matched against entries oldest-first.

    ``entries`` and ``exits`` must already be in chronological order. The
    returned list is aligned with ``exits``. Exit quantity beyond the total
    entered quantity has no lot to match and contributes nothing.
    """
    lots = [[leg.price, leg.qty] for leg in entries]
    results: list[float] = []
    for exit_leg in exits:
        remaining = exit_leg.qty
        pl = 0.0
        while remaining > 0 and lots:
            lot = lots[0]
            used = min(lot[1], remaining)
            pl += (exit_leg.price - lot[0]) * used * direction_sign
            lot[1] -= used
            remaining -= used
            if lot[1] <= 0:
                lots.pop(0)
        results.append(pl)
    return results
