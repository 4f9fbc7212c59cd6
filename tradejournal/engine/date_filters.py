"""Global date filter — restrict trades to a period on their accounting date."""

from __future__ import annotations

import datetime as dt
from typing import Any, Literal

from pydantic import BaseModel, field_validator

from tradejournal.engine.accounting import attribution_date
from tradejournal.models.trade import Trade
from tradejournal.utils.coerce import month_index, parse_date

FilterType = Literal["all", "week", "month", "fy", "cy", "custom"]


class DateFilter(BaseModel):
    """Period selector.

    ``month`` / ``year`` qualify "month" and "cy"; ``fy_start_year`` picks
    the financial year running 1 April to 31 March; "custom" uses the
    inclusive start/end dates. Missing qualifiers default to today.
    """

    type: FilterType = "all"
    month: int | None = None
    year: int | None = None
    fy_start_year: int | None = None
    start_date: dt.date | None = None
    end_date: dt.date | None = None

    @field_validator("month", mode="before")
    @classmethod
    def _coerce_month(cls, v: Any) -> int | None:
        if v is None or v == "":
            return None
        return month_index(v)

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def _coerce_date(cls, v: Any) -> dt.date | None:
        return parse_date(v)

    def bounds(self, today: dt.date | None = None) -> tuple[dt.date, dt.date] | None:
        """Inclusive (start, end) of the period; None means unbounded."""
        today = today or dt.date.today()
        if self.type == "week":
            return today - dt.timedelta(days=7), today
        if self.type == "month":
            month = self.month or today.month
            year = self.year or today.year
            start = dt.date(year, month, 1)
            if month == 12:
                return start, dt.date(year, 12, 31)
            return start, dt.date(year, month + 1, 1) - dt.timedelta(days=1)
        if self.type == "fy":
            fy_start = self.fy_start_year
            if fy_start is None:
                fy_start = today.year if today.month >= 4 else today.year - 1
            return dt.date(fy_start, 4, 1), dt.date(fy_start + 1, 3, 31)
        if self.type == "cy":
            year = self.year or today.year
            return dt.date(year, 1, 1), dt.date(year, 12, 31)
        if self.type == "custom" and self.start_date and self.end_date:
            return self.start_date, self.end_date
        return None


def is_in_filter(day: dt.date | None, date_filter: DateFilter, today: dt.date | None = None) -> bool:
    """True when ``day`` falls inside the filter period.

    Undated records only pass an unbounded filter.
    """
    bounds = date_filter.bounds(today)
    if bounds is None:
        return True
    if day is None:
        return False
    start, end = bounds
    return start <= day <= end


def is_trade_in_filter(
    trade: Trade,
    date_filter: DateFilter,
    use_cash_basis: bool = False,
    today: dt.date | None = None,
) -> bool:
    """Filter a trade on the date its P/L is attributed to."""
    return is_in_filter(attribution_date(trade, use_cash_basis), date_filter, today)
