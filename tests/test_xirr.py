"""Tests for the XIRR solver."""

from __future__ import annotations

import math
from datetime import date

import pytest

from tradejournal.engine.xirr import (
    month_end,
    monthly_ytd_xirr,
    rolling_xirr,
    shift_month,
    solve_xirr,
    xirr,
)
from tradejournal.models.portfolio import CapitalChange


class TestXirr:

    def test_one_year_ten_percent(self) -> None:
        rate = xirr(date(2023, 1, 1), 100000, date(2024, 1, 1), 110000)
        assert rate == pytest.approx(10.0, abs=0.01)

    def test_loss_is_negative(self) -> None:
        rate = xirr(date(2023, 1, 1), 100000, date(2024, 1, 1), 80000)
        assert rate == pytest.approx(-20.0, abs=0.01)

    def test_interim_flows_are_sorted(self) -> None:
        flows = [(date(2023, 7, 1), 1000.0), (date(2023, 3, 1), -500.0)]
        forward = xirr(date(2023, 1, 1), 100000, date(2024, 1, 1), 110000, flows)
        backward = xirr(date(2023, 1, 1), 100000, date(2024, 1, 1), 110000, list(reversed(flows)))
        assert forward == pytest.approx(backward)
        assert math.isfinite(forward)

    def test_accepts_iso_strings(self) -> None:
        assert xirr("2023-01-01", 100000, "2024-01-01", 110000) == pytest.approx(10.0, abs=0.01)

    @pytest.mark.parametrize(
        ("start", "start_value", "end", "end_value"),
        [
            (date(2024, 1, 1), 100000, date(2024, 1, 1), 110000),  # no elapsed time
            (date(2024, 1, 1), 0, date(2025, 1, 1), 110000),       # nothing invested
            (None, 100000, date(2025, 1, 1), 110000),              # missing date
            (date(2024, 1, 1), -100000, date(2025, 1, 1), 110000), # no sign change
        ],
    )
    def test_degenerate_inputs_return_zero(self, start, start_value, end, end_value) -> None:
        assert xirr(start, start_value, end, end_value) == 0.0

    def test_no_root_returns_zero(self) -> None:
        flows = [
            (date(2020, 1, 1), -100.0),
            (date(2021, 1, 1), 50.0),
            (date(2022, 1, 1), -100.0),
        ]
        assert solve_xirr(flows) == 0.0

    def test_single_flow(self) -> None:
        assert solve_xirr([(date(2024, 1, 1), -100.0)]) == 0.0
        assert solve_xirr([]) == 0.0


class TestMonthlyYtdXirr:

    def test_december_covers_whole_year(self) -> None:
        rate = monthly_ytd_xirr("Dec", 2023, 100000, 110000, [])
        expected = ((110000 / 100000) ** (365 / 364) - 1) * 100
        assert rate == pytest.approx(expected, abs=1e-4)

    def test_only_changes_inside_window_count(self) -> None:
        inside = CapitalChange(date="2023-02-10", amount=5000)
        outside = CapitalChange(date="2023-09-10", amount=5000)
        with_outside = monthly_ytd_xirr("Mar", 2023, 100000, 104000, [inside, outside])
        without = monthly_ytd_xirr("Mar", 2023, 100000, 104000, [inside])
        assert with_outside == pytest.approx(without)

    def test_bad_month_raises(self) -> None:
        with pytest.raises(ValueError):
            monthly_ytd_xirr("Foo", 2023, 100000, 110000, [])


class TestRollingXirr:
    """Trailing windows open at the end of an earlier month."""

    def test_shift_month_crosses_years(self) -> None:
        assert shift_month("Jan", 2024, -1) == ("Dec", 2023)
        assert shift_month("Mar", 2024, -12) == ("Mar", 2023)
        assert shift_month("Nov", 2024, 3) == ("Feb", 2025)

    def test_month_end(self) -> None:
        assert month_end("Feb", 2024) == date(2024, 2, 29)
        assert month_end(12, 2023) == date(2023, 12, 31)

    def test_one_month_window(self) -> None:
        rate = rolling_xirr("Feb", 2024, 1, 100000, 101000, [])
        assert rate == pytest.approx(xirr(date(2024, 1, 31), 100000, date(2024, 2, 29), 101000))
        assert rate > 0

    def test_opening_day_flow_is_outside_window(self) -> None:
        changes = [
            CapitalChange(date="2024-01-31", amount=5000),
            CapitalChange(date="2024-02-10", amount=-2000),
        ]
        rate = rolling_xirr("Feb", 2024, 1, 100000, 99000, changes)
        expected = xirr(
            date(2024, 1, 31), 100000, date(2024, 2, 29), 99000, [(date(2024, 2, 10), -2000.0)],
        )
        assert rate == pytest.approx(expected)

    def test_twelve_months_spans_years(self) -> None:
        assert rolling_xirr("Mar", 2024, 12, 100000, 110000, []) == pytest.approx(10.0, abs=0.1)

    def test_empty_window(self) -> None:
        assert rolling_xirr("Mar", 2024, 0, 100000, 110000, []) == 0.0
