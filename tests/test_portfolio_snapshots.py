"""Tests for the monthly starting/ending capital cascade."""

from __future__ import annotations

from datetime import date

import pytest

from tradejournal.engine.portfolio_snapshots import PortfolioSnapshotBuilder
from tradejournal.models.portfolio import (
    CapitalChange,
    MonthlyStartingCapitalOverride,
    YearlyStartingCapital,
)
from tradejournal.models.trade import Trade


def _anchor(year: int, amount: float) -> YearlyStartingCapital:
    return YearlyStartingCapital(year=year, starting_capital=amount)


def _closed(trade_id: str, entry_date: str, exit_date: str, pl_per_share: float) -> Trade:
    return Trade(
        id=trade_id,
        date=entry_date,
        entry=100,
        initial_qty=100,
        exits=[{"price": 100 + pl_per_share, "qty": 100, "date": exit_date}],
    )


class TestCascade:

    def test_flat_year_without_trades(self) -> None:
        builder = PortfolioSnapshotBuilder(yearly_capitals=[_anchor(2024, 100000)])
        snapshots = builder.all_monthly_portfolios()
        assert len(snapshots) == 12
        assert all(s.starting_capital == 100000 for s in snapshots)
        assert all(s.ending_capital == 100000 for s in snapshots)

    def test_pl_rolls_into_next_month(self) -> None:
        builder = PortfolioSnapshotBuilder(
            yearly_capitals=[_anchor(2024, 100000)],
            trades=[_closed("a", "2024-02-01", "2024-02-20", 50)],
        )
        feb = builder.monthly_portfolio("Feb", 2024)
        mar = builder.monthly_portfolio("Mar", 2024)
        assert feb.pl == pytest.approx(5000.0)
        assert feb.ending_capital == pytest.approx(105000.0)
        assert feb.return_pct == pytest.approx(5.0)
        assert mar.starting_capital == pytest.approx(105000.0)

    def test_override_beats_cascade(self) -> None:
        builder = PortfolioSnapshotBuilder(
            yearly_capitals=[_anchor(2024, 100000)],
            overrides=[MonthlyStartingCapitalOverride(month="Jun", year=2024, starting_capital=150000)],
        )
        assert builder.monthly_portfolio("May", 2024).starting_capital == 100000
        assert builder.monthly_portfolio("Jun", 2024).starting_capital == 150000
        assert builder.monthly_portfolio("Jul", 2024).starting_capital == 150000

    def test_deposit_and_withdrawal(self) -> None:
        builder = PortfolioSnapshotBuilder(
            yearly_capitals=[_anchor(2024, 100000)],
            capital_changes=[
                CapitalChange(date="2024-03-05", amount=20000),
                CapitalChange(date="2024-03-25", amount=-5000),
            ],
        )
        march = builder.monthly_portfolio("Mar", 2024)
        assert march.capital_change == pytest.approx(15000.0)
        assert march.ending_capital == pytest.approx(115000.0)
        assert builder.monthly_portfolio("Apr", 2024).starting_capital == pytest.approx(115000.0)

    def test_january_anchor_wins_over_december(self) -> None:
        builder = PortfolioSnapshotBuilder(
            yearly_capitals=[_anchor(2023, 100000), _anchor(2024, 300000)],
            trades=[_closed("a", "2023-12-01", "2023-12-10", 10)],
        )
        assert builder.monthly_portfolio("Dec", 2023).ending_capital == pytest.approx(101000.0)
        assert builder.monthly_portfolio("Jan", 2024).starting_capital == 300000

    def test_january_without_anchor_continues_december(self) -> None:
        builder = PortfolioSnapshotBuilder(
            yearly_capitals=[_anchor(2023, 100000)],
            trades=[_closed("a", "2023-12-01", "2023-12-10", 10)],
        )
        assert builder.monthly_portfolio("Jan", 2024).starting_capital == pytest.approx(101000.0)

    def test_no_configuration_uses_default(self) -> None:
        builder = PortfolioSnapshotBuilder()
        snapshot = builder.monthly_portfolio("Apr", 2030)
        assert snapshot.starting_capital == 100000.0
        assert snapshot.ending_capital == 100000.0

    def test_all_monthly_spans_data_years(self) -> None:
        builder = PortfolioSnapshotBuilder(
            yearly_capitals=[_anchor(2022, 100000)],
            capital_changes=[CapitalChange(date="2024-07-01", amount=1000)],
        )
        snapshots = builder.all_monthly_portfolios()
        assert len(snapshots) == 36
        assert (snapshots[0].month, snapshots[0].year) == ("Jan", 2022)
        assert (snapshots[-1].month, snapshots[-1].year) == ("Dec", 2024)

    def test_out_of_range_dates_ignored(self) -> None:
        builder = PortfolioSnapshotBuilder(
            yearly_capitals=[_anchor(2024, 100000)],
            trades=[_closed("typo", "1900-01-01", "1900-01-02", 10)],
        )
        snapshots = builder.all_monthly_portfolios()
        assert len(snapshots) == 12
        assert snapshots[0].year == 2024


class TestPortfolioSize:

    def test_capital_only_ignores_trade_pl(self) -> None:
        builder = PortfolioSnapshotBuilder(
            yearly_capitals=[_anchor(2024, 100000)],
            trades=[_closed("a", "2024-01-05", "2024-01-20", 50)],
        )
        assert builder.capital_only_size_at("Feb", 2024) == pytest.approx(100000.0)
        assert builder.portfolio_size_at("Feb", 2024) == pytest.approx(105000.0)

    def test_bad_month_falls_back_in_lookup(self) -> None:
        builder = PortfolioSnapshotBuilder(yearly_capitals=[_anchor(2024, 250000)])
        assert builder.portfolio_size_at("Foo", 2024) == 100000.0
        assert builder.capital_only_size_at("Foo", 2024) == 100000.0

    def test_bad_month_raises_in_snapshot(self) -> None:
        builder = PortfolioSnapshotBuilder()
        with pytest.raises(ValueError):
            builder.monthly_portfolio("Foo", 2024)

    def test_month_accepts_numbers_and_full_names(self) -> None:
        builder = PortfolioSnapshotBuilder(yearly_capitals=[_anchor(2024, 120000)])
        assert builder.monthly_portfolio(1, 2024).month == "Jan"
        assert builder.monthly_portfolio("january", 2024).starting_capital == 120000

    def test_latest_size_is_current_month_ending(self) -> None:
        builder = PortfolioSnapshotBuilder(
            yearly_capitals=[_anchor(2024, 100000)],
            trades=[_closed("a", "2024-05-02", "2024-05-09", 20)],
        )
        assert builder.latest_portfolio_size(today=date(2024, 5, 31)) == pytest.approx(102000.0)
        assert builder.latest_portfolio_size(today=date(2024, 4, 30)) == pytest.approx(100000.0)

    def test_with_trades_keeps_capital(self) -> None:
        base = PortfolioSnapshotBuilder(yearly_capitals=[_anchor(2024, 100000)])
        bound = base.with_trades([_closed("a", "2024-01-05", "2024-03-20", 10)], use_cash_basis=True)
        assert bound.monthly_portfolio("Jan", 2024).pl == 0.0
        assert bound.monthly_portfolio("Mar", 2024).pl == pytest.approx(1000.0)
        assert base.capital_fingerprint() == bound.capital_fingerprint()


class TestAccountingExclusivity:
    """Monthly P/L follows exactly one convention at a time."""

    def test_cash_and_accrual_months_differ(self) -> None:
        trade = Trade(
            date="2024-03-10", entry=100, initial_qty=2,
            exits=[
                {"price": 150, "qty": 1, "date": "2024-04-02"},
                {"price": 50, "qty": 1, "date": "2024-06-02"},
            ],
        )
        builder = PortfolioSnapshotBuilder(yearly_capitals=[_anchor(2024, 100000)], trades=[trade])

        accrual = builder.monthly_portfolio("Mar", 2024, trades=[trade], use_cash_basis=False)
        assert accrual.pl == pytest.approx(0.0)

        cash = {
            s.month: s.pl
            for s in builder.all_monthly_portfolios(trades=[trade], use_cash_basis=True)
        }
        assert cash["Mar"] == 0.0
        assert cash["Apr"] == pytest.approx(50.0)
        assert cash["Jun"] == pytest.approx(-50.0)
        assert sum(cash.values()) == pytest.approx(0.0)

    def test_total_pl_identical_for_closed_trades(self) -> None:
        trades = [
            _closed("a", "2024-01-10", "2024-02-10", 10),
            _closed("b", "2024-03-10", "2024-05-10", -5),
        ]
        builder = PortfolioSnapshotBuilder(yearly_capitals=[_anchor(2024, 100000)])
        accrual = builder.all_monthly_portfolios(trades=trades, use_cash_basis=False)
        cash = builder.all_monthly_portfolios(trades=trades, use_cash_basis=True)
        assert accrual[-1].ending_capital == pytest.approx(cash[-1].ending_capital)
        assert accrual[-1].ending_capital == pytest.approx(100500.0)
