"""HTTP API tests against a fresh journal per test.

The scheduler is never started here (no lifespan), so every change is
recalculated synchronously before the response is returned.
"""

from __future__ import annotations

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from tradejournal.main import app
from tradejournal.services.journal_service import JournalService

TRADE = {
    "date": "2024-03-01",
    "name": "infy",
    "entry": 100,
    "initial_qty": 100,
    "cmp": 101,
    "sl": 95,
    "exits": [{"price": 102, "qty": 50, "date": "2024-06-05"}],
}


@pytest.fixture
def client():
    journal = JournalService()
    with patch("tradejournal.main.journal", journal):
        yield TestClient(app)


@pytest.fixture
def trade_id(client: TestClient) -> str:
    client.put("/api/starting-capital", json={"year": 2024, "amount": 100000})
    return client.post("/api/trades", json=TRADE).json()["id"]


class TestHealth:

    def test_health(self, client: TestClient) -> None:
        body = client.get("/api/health").json()
        assert body["api"] == "ok"
        assert body["accounting_method"] == "accrual"
        assert body["scheduler_running"] is False


class TestTradesApi:

    def test_create_and_list(self, client: TestClient, trade_id: str) -> None:
        body = client.get("/api/trades").json()
        assert body["count"] == 1
        trade = body["trades"][0]
        assert trade["id"] == trade_id
        assert trade["name"] == "INFY"
        assert trade["position_status"] == {"kind": "derived", "value": "Partial"}
        assert trade["pl_rs"] == pytest.approx(150.0)

    def test_get_update_delete(self, client: TestClient, trade_id: str) -> None:
        assert client.get(f"/api/trades/{trade_id}").status_code == 200

        resp = client.put(f"/api/trades/{trade_id}", json={"position_status": "Closed"})
        assert resp.status_code == 200
        assert resp.json()["position_status"] == {"kind": "user", "value": "Closed"}

        assert client.delete(f"/api/trades/{trade_id}").json()["status"] == "deleted"
        assert client.get(f"/api/trades/{trade_id}").status_code == 404
        assert client.delete(f"/api/trades/{trade_id}").status_code == 404

    def test_update_missing(self, client: TestClient) -> None:
        assert client.put("/api/trades/nope", json={"cmp": 5}).status_code == 404

    def test_invalid_trade_is_422(self, client: TestClient) -> None:
        too_many_exits = {**TRADE, "exits": [{"price": 1, "qty": 1}] * 4}
        assert client.post("/api/trades", json=too_many_exits).status_code == 422

    def test_bad_status_override_is_422(self, client: TestClient, trade_id: str) -> None:
        resp = client.put(f"/api/trades/{trade_id}", json={"position_status": "Sideways"})
        assert resp.status_code == 422

    def test_user_status_without_value_is_422(self, client: TestClient, trade_id: str) -> None:
        resp = client.put(f"/api/trades/{trade_id}", json={"position_status": {"kind": "user"}})
        assert resp.status_code == 422

    def test_failed_save_is_500(self, client: TestClient, trade_id: str) -> None:
        with patch("tradejournal.main.journal.store.save_all_trades", return_value=False):
            assert client.post("/api/trades", json=TRADE).status_code == 500
            assert client.delete(f"/api/trades/{trade_id}").status_code == 500
        assert client.get("/api/trades").json()["count"] == 1

    def test_bulk_import(self, client: TestClient) -> None:
        resp = client.post("/api/trades/bulk", json={"trades": [TRADE, {**TRADE, "name": "tcs"}]})
        assert resp.status_code == 200
        body = resp.json()
        assert body["count"] == 2
        assert [t["trade_no"] for t in body["trades"]] == ["1", "2"]

    def test_display_with_cash_filter(self, client: TestClient, trade_id: str) -> None:
        client.put("/api/accounting-method", json={"method": "cash"})
        march = client.get("/api/trades/display", params={"filter_type": "month", "month": 3, "year": 2024})
        june = client.get("/api/trades/display", params={"filter_type": "month", "month": 6, "year": 2024})
        assert march.json()["count"] == 0
        assert june.json()["count"] == 1
        assert june.json()["trades"][0]["display_pl"] == pytest.approx(100.0)

    def test_display_bad_filter(self, client: TestClient) -> None:
        resp = client.get("/api/trades/display", params={"filter_type": "decade"})
        assert resp.status_code == 422


class TestCapitalApi:

    def test_capital_change_lifecycle(self, client: TestClient) -> None:
        created = client.post("/api/capital-changes", json={"date": "2024-02-01", "amount": -2000}).json()
        assert created["type"] == "withdrawal"
        assert created["amount"] == 2000

        updated = client.put(f"/api/capital-changes/{created['id']}", json={"description": "fees"})
        assert updated.json()["description"] == "fees"
        assert client.get("/api/capital-changes").json()["count"] == 1

        assert client.delete(f"/api/capital-changes/{created['id']}").status_code == 200
        assert client.delete(f"/api/capital-changes/{created['id']}").status_code == 404
        assert client.put("/api/capital-changes/nope", json={"amount": 1}).status_code == 404

    def test_starting_capital_validation(self, client: TestClient) -> None:
        assert client.put("/api/starting-capital", json={"year": 2024, "amount": 0}).status_code == 422
        assert client.put("/api/starting-capital", json={"year": 2024, "amount": 50000}).status_code == 200
        body = client.get("/api/starting-capital").json()
        assert body["yearly"][0]["starting_capital"] == 50000

    def test_monthly_override(self, client: TestClient) -> None:
        client.put("/api/starting-capital", json={"year": 2024, "amount": 100000})
        resp = client.put("/api/monthly-overrides", json={"month": "Jun", "year": 2024, "amount": 150000})
        assert resp.status_code == 200
        assert client.get("/api/starting-capital").json()["monthly_overrides"][0]["id"] == "Jun-2024"

        size = client.get("/api/portfolio/size", params={"month": "Jun", "year": 2024}).json()
        assert size["portfolio_size"] == 150000

        client.delete("/api/monthly-overrides", params={"month": "Jun", "year": 2024})
        size = client.get("/api/portfolio/size", params={"month": "Jun", "year": 2024}).json()
        assert size["portfolio_size"] == 100000

    def test_bad_override_month(self, client: TestClient) -> None:
        resp = client.put("/api/monthly-overrides", json={"month": "Foo", "year": 2024, "amount": 1})
        assert resp.status_code == 422


class TestAnalyticsApi:

    def test_monthly_portfolio(self, client: TestClient, trade_id: str) -> None:
        body = client.get("/api/portfolio/monthly", params={"year": 2024}).json()
        assert body["count"] == 12
        assert body["snapshots"][2]["pl"] == pytest.approx(150.0)

    def test_latest_size(self, client: TestClient, trade_id: str) -> None:
        body = client.get("/api/portfolio/size").json()
        assert body["latest"] is True
        assert body["portfolio_size"] > 0

    def test_accounting_method(self, client: TestClient) -> None:
        assert client.put("/api/accounting-method", json={"method": "bogus"}).status_code == 422
        resp = client.put("/api/accounting-method", json={"method": "Cash"})
        assert resp.json() == {"method": "cash", "changed": True}
        assert client.get("/api/accounting-method").json() == {"method": "cash"}

    def test_xirr(self, client: TestClient) -> None:
        resp = client.post("/api/analytics/xirr", json={
            "start_date": "2023-01-01",
            "start_value": 100000,
            "end_date": "2024-01-01",
            "end_value": 110000,
        })
        assert resp.json()["xirr"] == pytest.approx(10.0, abs=0.01)

    def test_monthly_xirr(self, client: TestClient, trade_id: str) -> None:
        body = client.get("/api/analytics/monthly-xirr", params={"year": 2024}).json()
        assert len(body["months"]) == 12
        assert {"xirr", "rolling_1m", "rolling_3m", "rolling_6m", "rolling_12m"} <= set(body["months"][0])

    def test_drawdown_and_summary(self, client: TestClient, trade_id: str) -> None:
        drawdown = client.get("/api/analytics/drawdown").json()
        assert drawdown["max_drawdown"] == 0.0

        summary = client.get("/api/analytics/summary").json()
        assert summary["total_trades"] == 1
        assert summary["open_positions"] == 1

        filtered = client.get("/api/analytics/summary", params={"filter_type": "cy", "year": 2023}).json()
        assert filtered["total_trades"] == 0
