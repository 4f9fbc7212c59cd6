"""XIRR Solver — annualized return from irregularly dated cash flows.

Flows are laid out as -start_value at the start date, each interim flow as
given (deposits positive, withdrawals negative) and +end_value at the end
date, sorted by date. The rate r solves

    sum(flow_i / (1 + r) ** (days_i / 365)) == 0

with days measured from the earliest flow. Newton's method runs first from
the configured guess; if it fails, Brent's method searches a bracket. Any
degenerate input or solver failure yields 0.0, never NaN or an exception.
"""

from __future__ import annotations

import datetime as dt
import math
from collections.abc import Iterable, Sequence

import numpy as np
from scipy import optimize

from tradejournal.config import settings
from tradejournal.models.portfolio import CapitalChange
from tradejournal.utils.coerce import MONTHS, normalize_month, parse_date, safe_float
from tradejournal.utils.logger import get_logger

logger = get_logger("XIRR")

CashFlow = tuple[dt.date, float]

# Bracket for the fallback search; -1 is total loss
_BRACKET_LOW = -0.9999
_BRACKET_HIGH = 100.0


def _year_fractions(dates: Sequence[dt.date]) -> np.ndarray:
    first = dates[0]
    return np.array([(d - first).days / 365 for d in dates], dtype=float)


def _npv(rate: float, years: np.ndarray, amounts: np.ndarray) -> float:
    return float(np.sum(amounts / np.power(1.0 + rate, years)))


def _npv_derivative(rate: float, years: np.ndarray, amounts: np.ndarray) -> float:
    return float(np.sum(-years * amounts / np.power(1.0 + rate, years + 1.0)))


def solve_xirr(
    flows: Iterable[CashFlow],
    guess: float | None = None,
    tolerance: float | None = None,
    max_iterations: int | None = None,
) -> float:
    """Annualized rate (as a fraction) for dated flows; 0.0 when unsolvable."""
    ordered = sorted(
        ((day, safe_float(amount)) for day, amount in flows if day is not None),
        key=lambda flow: flow[0],
    )
    if len(ordered) < 2:
        return 0.0
    dates = [day for day, _ in ordered]
    amounts = np.array([amount for _, amount in ordered], dtype=float)
    if not (amounts > 0).any() or not (amounts < 0).any():
        return 0.0
    if dates[-1] == dates[0]:
        return 0.0

    years = _year_fractions(dates)
    guess = settings.XIRR_GUESS if guess is None else guess
    tolerance = settings.XIRR_TOLERANCE if tolerance is None else tolerance
    max_iterations = settings.XIRR_MAX_ITERATIONS if max_iterations is None else max_iterations

    # A residual this small relative to the flows counts as a root
    scale = max(1.0, float(np.abs(amounts).sum()))

    with np.errstate(over="ignore", divide="ignore", invalid="ignore"):
        rate: float | None = None
        try:
            rate = float(optimize.newton(
                _npv,
                guess,
                fprime=_npv_derivative,
                args=(years, amounts),
                tol=tolerance,
                maxiter=max_iterations,
            ))
        except (RuntimeError, OverflowError, ZeroDivisionError, FloatingPointError) as exc:
            logger.debug("Newton did not converge: %s", exc)

        if (
            rate is None
            or not math.isfinite(rate)
            or rate <= -1.0
            or not abs(_npv(rate, years, amounts)) <= 1e-6 * scale
        ):
            rate = _solve_bracketed(years, amounts, tolerance, max_iterations)

    if rate is None or not math.isfinite(rate):
        return 0.0
    return rate


def _solve_bracketed(
    years: np.ndarray,
    amounts: np.ndarray,
    tolerance: float,
    max_iterations: int,
) -> float | None:
    try:
        low = _npv(_BRACKET_LOW, years, amounts)
        high = _npv(_BRACKET_HIGH, years, amounts)
    except (OverflowError, ZeroDivisionError, FloatingPointError):
        return None
    if not (math.isfinite(low) and math.isfinite(high)) or low * high > 0:
        logger.debug("No sign change in bracket, giving up")
        return None
    try:
        return float(optimize.brentq(
            _npv,
            _BRACKET_LOW,
            _BRACKET_HIGH,
            args=(years, amounts),
            xtol=tolerance,
            maxiter=max_iterations,
        ))
    except (RuntimeError, ValueError) as exc:
        logger.debug("Bracketed search failed: %s", exc)
        return None


def xirr(
    start_date: dt.date,
    start_value: float,
    end_date: dt.date,
    end_value: float,
    interim_flows: Iterable[CashFlow] = (),
) -> float:
    """Annualized return in percent between two valuations.

    ``interim_flows`` are (date, signed amount) pairs.
    """
    start = parse_date(start_date)
    end = parse_date(end_date)
    if start is None or end is None:
        return 0.0
    flows: list[CashFlow] = [(start, -safe_float(start_value))]
    for day, amount in interim_flows:
        parsed = parse_date(day)
        if parsed is not None:
            flows.append((parsed, safe_float(amount)))
    flows.append((end, safe_float(end_value)))
    return solve_xirr(flows) * 100


def month_end(month: str | int, year: int) -> dt.date:
    month_no = MONTHS.index(normalize_month(month)) + 1
    if month_no == 12:
        return dt.date(year, 12, 31)
    return dt.date(year, month_no + 1, 1) - dt.timedelta(days=1)


def shift_month(month: str | int, year: int, delta: int) -> tuple[str, int]:
    """(month, year) moved ``delta`` months, crossing year boundaries."""
    index = year * 12 + MONTHS.index(normalize_month(month)) + delta
    return MONTHS[index % 12], index // 12


def _flows_between(
    capital_changes: Iterable[CapitalChange],
    after: dt.date,
    through: dt.date,
    include_start: bool = False,
) -> list[CashFlow]:
    flows = []
    for change in capital_changes:
        if change.date is None:
            continue
        in_window = after <= change.date if include_start else after < change.date
        if in_window and change.date <= through:
            flows.append((change.date, change.signed_amount))
    return flows


def monthly_ytd_xirr(
    month: str | int,
    year: int,
    starting_capital: float,
    ending_capital: float,
    capital_changes: Iterable[CapitalChange],
) -> float:
    """Year-to-date XIRR from 1 January through the end of (month, year).

    Capital changes dated in the window are the interim flows.
    """
    start = dt.date(year, 1, 1)
    end = month_end(month, year)
    flows = _flows_between(capital_changes, start, end, include_start=True)
    return xirr(start, starting_capital, end, ending_capital, flows)


def rolling_xirr(
    month: str | int,
    year: int,
    months_back: int,
    start_capital: float,
    ending_capital: float,
    capital_changes: Iterable[CapitalChange],
) -> float:
    """XIRR over the ``months_back`` months ending with (month, year).

    The window opens at the end of the month ``months_back`` months earlier,
    valued at that month's ending capital. Capital changes dated after that
    day and up to the end of (month, year) are the interim flows.
    """
    if months_back < 1:
        return 0.0
    start = month_end(*shift_month(month, year, -months_back))
    end = month_end(month, year)
    flows = _flows_between(capital_changes, start, end)
    return xirr(start, start_capital, end, ending_capital, flows)
