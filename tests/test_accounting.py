"""Tests for cash vs accrual attribution and the per-exit expansion."""

from __future__ import annotations

from datetime import date

import pytest

from tradejournal.engine.accounting import (
    accrual_pl,
    attribution_date,
    cash_pl,
    expand_all,
    expand_for_cash_basis,
    group_for_display,
    original_trade_id,
    pl_by_month,
    resolve_date_and_pl,
)
from tradejournal.models.trade import Trade


@pytest.fixture
def split_exit_trade() -> Trade:
    """Bought 100 @ 100 in March; half sold +50 in April, half sold -50 in June."""
    return Trade(
        id="t1",
        date="2024-03-15",
        name="SPLIT",
        entry=100,
        initial_qty=2,
        exits=[
            {"price": 150, "qty": 1, "date": "2024-04-10"},
            {"price": 50, "qty": 1, "date": "2024-06-20"},
        ],
    )


@pytest.fixture
def partial_trade() -> Trade:
    """100 shares @ 100; 50 sold @ 102, the rest marked at 101."""
    return Trade(
        id="t2",
        date="2024-03-01",
        entry=100,
        initial_qty=100,
        cmp=101,
        exits=[{"price": 102, "qty": 50, "date": "2024-06-05"}],
    )


class TestResolution:
    """Accrual books everything at entry; cash books exits when they happen."""

    def test_accrual_includes_unrealized(self, partial_trade: Trade) -> None:
        assert accrual_pl(partial_trade) == pytest.approx(150.0)
        assert cash_pl(partial_trade) == pytest.approx(100.0)

    def test_attribution_dates(self, split_exit_trade: Trade) -> None:
        assert attribution_date(split_exit_trade, False) == date(2024, 3, 15)
        assert attribution_date(split_exit_trade, True) == date(2024, 6, 20)

    def test_open_trade_cash_date_falls_back_to_entry(self) -> None:
        trade = Trade(date="2024-02-02", entry=10, initial_qty=10, cmp=12)
        assert resolve_date_and_pl(trade, True) == (date(2024, 2, 2), 0.0)

    def test_resolving_twice_is_stable(self, split_exit_trade: Trade) -> None:
        before = split_exit_trade.model_dump()
        first = resolve_date_and_pl(split_exit_trade, True)
        second = resolve_date_and_pl(split_exit_trade, True)
        assert first == second
        assert split_exit_trade.model_dump() == before

    def test_undated_exit_uses_latest_exit_date(self) -> None:
        trade = Trade(
            date="2024-01-05", entry=100, initial_qty=10,
            exits=[
                {"price": 110, "qty": 5, "date": None},
                {"price": 120, "qty": 5, "date": "2024-02-10"},
            ],
        )
        records = expand_for_cash_basis(trade)
        assert [r.exit_date for r in records] == [date(2024, 2, 10), date(2024, 2, 10)]

    def test_all_undated_exits_use_entry_date(self) -> None:
        trade = Trade(
            date="2024-01-05", entry=100, initial_qty=10,
            exits=[{"price": 110, "qty": 10}],
        )
        assert attribution_date(trade, True) == date(2024, 1, 5)


class TestExpansion:

    def test_one_record_per_exit(self, split_exit_trade: Trade) -> None:
        records = expand_for_cash_basis(split_exit_trade)
        assert [r.id for r in records] == ["t1_exit_0", "t1_exit_1"]
        assert [r.pl for r in records] == pytest.approx([50.0, -50.0])
        assert all(r.original_id == "t1" for r in records)

    def test_two_legs_expand_and_regroup_to_zero(self) -> None:
        trade = Trade(
            id="t3", date="2024-01-01", entry=100, initial_qty=10,
            exits=[
                {"price": 110, "qty": 5, "date": "2024-01-10"},
                {"price": 90, "qty": 5, "date": "2024-01-20"},
            ],
        )
        records = expand_for_cash_basis(trade)
        assert [(r.exit_date, r.pl) for r in records] == [
            (date(2024, 1, 10), pytest.approx(50.0)),
            (date(2024, 1, 20), pytest.approx(-50.0)),
        ]
        assert group_for_display(records)[0].display_pl == pytest.approx(0.0)

    def test_trade_without_exits_maps_to_itself(self) -> None:
        trade = Trade(id="open1", date="2024-01-01", entry=10, initial_qty=5)
        records = expand_for_cash_basis(trade)
        assert len(records) == 1
        assert records[0].id == "open1"
        assert not records[0].is_exit_leg

    def test_invalid_exit_legs_skipped(self) -> None:
        trade = Trade(
            id="x", date="2024-01-01", entry=10, initial_qty=5,
            exits=[{"price": 0, "qty": 5, "date": "2024-01-02"}, {"price": 12, "qty": 5, "date": "2024-01-03"}],
        )
        assert [r.id for r in expand_for_cash_basis(trade)] == ["x_exit_0"]

    def test_original_trade_id(self) -> None:
        assert original_trade_id("abc_exit_2") == "abc"
        assert original_trade_id("abc") == "abc"

    def test_regroup_sums_legs(self, split_exit_trade: Trade) -> None:
        rows = group_for_display(expand_all([split_exit_trade]))
        assert len(rows) == 1
        assert rows[0].display_pl == pytest.approx(0.0)
        assert rows[0].display_exit_date == date(2024, 6, 20)
        assert len(rows[0].expanded) == 2
        assert rows[0].to_trade().id == "t1"


class TestMonthAttribution:
    """Each leg lands in exactly one month under cash basis."""

    def test_cash_months_are_exclusive(self, split_exit_trade: Trade) -> None:
        months = pl_by_month([split_exit_trade], True)
        assert ("Mar", 2024) not in months
        assert months[("Apr", 2024)] == pytest.approx(50.0)
        assert months[("Jun", 2024)] == pytest.approx(-50.0)

    def test_accrual_books_in_entry_month(self, split_exit_trade: Trade, partial_trade: Trade) -> None:
        months = pl_by_month([split_exit_trade, partial_trade], False)
        assert list(months) == [("Mar", 2024)]
        assert months[("Mar", 2024)] == pytest.approx(150.0)

    def test_duplicate_trade_counted_once(self, split_exit_trade: Trade) -> None:
        months = pl_by_month([split_exit_trade, split_exit_trade], True)
        assert months[("Apr", 2024)] == pytest.approx(50.0)

    def test_cached_accrual_pl_is_used(self, partial_trade: Trade) -> None:
        cached = partial_trade.model_copy(update={"accrual_pl": 999.0})
        assert pl_by_month([cached], False)[("Mar", 2024)] == 999.0
