"""FastAPI application — trade journal API endpoints."""

from __future__ import annotations

import datetime as dt
from typing import Any

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, ValidationError

from tradejournal.config import settings
from tradejournal.engine.date_filters import DateFilter
from tradejournal.services.journal_service import JournalService, JournalWriteError
from tradejournal.utils.logger import get_logger

logger = get_logger("Boot")

app = FastAPI(
    title="Trade Journal",
    description="Portfolio valuation and trade recalculation engine",
    version="0.1.0",
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Models ──────────────────────────────────────────────────────────
class BulkImportRequest(BaseModel):
    trades: list[dict[str, Any]]
    replace: bool = False


class CapitalChangeRequest(BaseModel):
    date: dt.date | None = None
    amount: float
    type: str | None = None  # deposit | withdrawal; inferred from sign if omitted
    description: str = ""


class CapitalChangeUpdateRequest(BaseModel):
    date: dt.date | None = None
    amount: float | None = None
    type: str | None = None
    description: str | None = None


class StartingCapitalRequest(BaseModel):
    year: int
    amount: float = Field(gt=0)


class MonthlyOverrideRequest(BaseModel):
    month: str
    year: int
    amount: float


class AccountingMethodRequest(BaseModel):
    method: str


class XirrFlow(BaseModel):
    date: dt.date
    amount: float


class XirrRequest(BaseModel):
    start_date: dt.date
    start_value: float
    end_date: dt.date
    end_value: float
    flows: list[XirrFlow] = Field(default_factory=list)


# ── Singleton services ──────────────────────────────────────────────
journal = JournalService()


# ── Helpers ─────────────────────────────────────────────────────────
def _date_filter(
    filter_type: str,
    month: int | None,
    year: int | None,
    fy_start_year: int | None,
    start_date: dt.date | None,
    end_date: dt.date | None,
) -> DateFilter:
    try:
        return DateFilter(
            type=filter_type,
            month=month,
            year=year,
            fy_start_year=fy_start_year,
            start_date=start_date,
            end_date=end_date,
        )
    except ValidationError as e:
        raise _validation_error(e) from e


def _validation_error(e: ValidationError) -> HTTPException:
    return HTTPException(status_code=422, detail=e.errors(include_url=False, include_context=False))


def _write_error(e: JournalWriteError) -> HTTPException:
    logger.error("Write failed: %s", e)
    return HTTPException(status_code=500, detail=str(e))


# ── Lifecycle ───────────────────────────────────────────────────────
@app.on_event("startup")
async def _start_recalc_scheduler() -> None:
    """Move recalculation onto the debounced background scheduler."""
    result = journal.scheduler.start()
    logger.info("Recalculation scheduler: %s", result)


@app.on_event("shutdown")
async def _stop_recalc_scheduler() -> None:
    journal.scheduler.stop()


@app.get("/api/health")
async def health() -> dict:
    return {
        "api": "ok",
        "accounting_method": journal.accounting.method,
        "scheduler_running": journal.scheduler.is_running,
        "config": settings.get_journal_config(),
    }


# ══════════════════════════════════════════════════════════════════════
# TRADES
# ══════════════════════════════════════════════════════════════════════


@app.get("/api/trades")
async def list_trades() -> dict:
    trades = journal.get_trades()
    return {"count": len(trades), "trades": [t.model_dump(mode="json") for t in trades]}


@app.post("/api/trades")
async def create_trade(payload: dict[str, Any]) -> dict:
    try:
        trade = journal.add_trade(payload)
    except ValidationError as e:
        raise _validation_error(e) from e
    except JournalWriteError as e:
        raise _write_error(e) from e
    return trade.model_dump(mode="json")


@app.get("/api/trades/display")
async def display_trades(
    filter_type: str = Query(default="all"),
    month: int | None = Query(default=None, ge=1, le=12),
    year: int | None = Query(default=None),
    fy_start_year: int | None = Query(default=None),
    start_date: dt.date | None = Query(default=None),
    end_date: dt.date | None = Query(default=None),
    search: str = Query(default=""),
    status: str | None = Query(default=None),
    sort_by: str | None = Query(default=None),
    descending: bool = Query(default=False),
) -> dict:
    """Trades as displayed: filtered, searched, sorted, cumulative PF re-accumulated."""
    date_filter = _date_filter(filter_type, month, year, fy_start_year, start_date, end_date)
    rows = journal.display_trades(
        date_filter=date_filter,
        search=search,
        status=status,
        sort_by=sort_by,
        descending=descending,
    )
    return {
        "count": len(rows),
        "accounting_method": journal.accounting.method,
        "trades": [r.model_dump(mode="json", exclude={"expanded"}) for r in rows],
    }


@app.post("/api/trades/bulk")
async def bulk_import(req: BulkImportRequest) -> dict:
    try:
        trades = journal.bulk_import(req.trades, replace=req.replace)
    except ValidationError as e:
        raise _validation_error(e) from e
    except JournalWriteError as e:
        raise _write_error(e) from e
    return {"count": len(trades), "trades": [t.model_dump(mode="json") for t in trades]}


@app.get("/api/trades/{trade_id}")
async def get_trade(trade_id: str) -> dict:
    trade = journal.get_trade(trade_id)
    if trade is None:
        raise HTTPException(status_code=404, detail=f"No trade with id {trade_id}")
    return trade.model_dump(mode="json")


@app.put("/api/trades/{trade_id}")
async def update_trade(trade_id: str, payload: dict[str, Any]) -> dict:
    try:
        trade = journal.update_trade(trade_id, payload)
    except ValidationError as e:
        raise _validation_error(e) from e
    except JournalWriteError as e:
        raise _write_error(e) from e
    if trade is None:
        raise HTTPException(status_code=404, detail=f"No trade with id {trade_id}")
    return trade.model_dump(mode="json")


@app.delete("/api/trades/{trade_id}")
async def delete_trade(trade_id: str) -> dict:
    try:
        deleted = journal.delete_trade(trade_id)
    except JournalWriteError as e:
        raise _write_error(e) from e
    if not deleted:
        raise HTTPException(status_code=404, detail=f"No trade with id {trade_id}")
    return {"status": "deleted", "id": trade_id}


# ══════════════════════════════════════════════════════════════════════
# CAPITAL
# ══════════════════════════════════════════════════════════════════════


@app.get("/api/capital-changes")
async def list_capital_changes() -> dict:
    changes = journal.get_capital_changes()
    return {"count": len(changes), "capital_changes": [c.model_dump(mode="json") for c in changes]}


@app.post("/api/capital-changes")
async def create_capital_change(req: CapitalChangeRequest) -> dict:
    try:
        change = journal.add_capital_change(req.model_dump(exclude_none=True))
    except ValidationError as e:
        raise _validation_error(e) from e
    except JournalWriteError as e:
        raise _write_error(e) from e
    return change.model_dump(mode="json")


@app.put("/api/capital-changes/{change_id}")
async def update_capital_change(change_id: str, req: CapitalChangeUpdateRequest) -> dict:
    try:
        change = journal.update_capital_change(change_id, req.model_dump(exclude_none=True))
    except ValidationError as e:
        raise _validation_error(e) from e
    except JournalWriteError as e:
        raise _write_error(e) from e
    if change is None:
        raise HTTPException(status_code=404, detail=f"No capital change with id {change_id}")
    return change.model_dump(mode="json")


@app.delete("/api/capital-changes/{change_id}")
async def delete_capital_change(change_id: str) -> dict:
    try:
        deleted = journal.delete_capital_change(change_id)
    except JournalWriteError as e:
        raise _write_error(e) from e
    if not deleted:
        raise HTTPException(status_code=404, detail=f"No capital change with id {change_id}")
    return {"status": "deleted", "id": change_id}


@app.get("/api/starting-capital")
async def get_starting_capital() -> dict:
    return {
        "yearly": [c.model_dump(mode="json") for c in journal.get_yearly_starting_capitals()],
        "monthly_overrides": [
            {**o.model_dump(mode="json"), "id": o.id} for o in journal.get_monthly_overrides()
        ],
    }


@app.put("/api/starting-capital")
async def set_starting_capital(req: StartingCapitalRequest) -> dict:
    if not journal.set_yearly_starting_capital(req.year, req.amount):
        raise HTTPException(status_code=500, detail="Starting capital could not be saved")
    return {"status": "saved", "year": req.year, "starting_capital": req.amount}


@app.put("/api/monthly-overrides")
async def set_monthly_override(req: MonthlyOverrideRequest) -> dict:
    try:
        saved = journal.set_monthly_override(req.month, req.year, req.amount)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    if not saved:
        raise HTTPException(status_code=500, detail="Override could not be saved")
    return {"status": "saved", "month": req.month, "year": req.year, "starting_capital": req.amount}


@app.delete("/api/monthly-overrides")
async def remove_monthly_override(
    month: str = Query(...),
    year: int = Query(...),
) -> dict:
    try:
        journal.remove_monthly_override(month, year)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    return {"status": "removed", "month": month, "year": year}


# ══════════════════════════════════════════════════════════════════════
# PORTFOLIO & ANALYTICS
# ══════════════════════════════════════════════════════════════════════


@app.get("/api/portfolio/monthly")
async def monthly_portfolios(year: int | None = Query(default=None)) -> dict:
    snapshots = journal.monthly_portfolios()
    if year is not None:
        snapshots = [s for s in snapshots if s.year == year]
    return {"count": len(snapshots), "snapshots": [s.model_dump(mode="json") for s in snapshots]}


@app.get("/api/portfolio/size")
async def portfolio_size(
    month: str | None = Query(default=None),
    year: int | None = Query(default=None),
) -> dict:
    """Size at the start of (month, year), or the latest size when omitted."""
    if month is None or year is None:
        return {"portfolio_size": journal.latest_portfolio_size(), "latest": True}
    return {
        "month": month,
        "year": year,
        "portfolio_size": journal.portfolio_size_at(month, year),
        "latest": False,
    }


@app.get("/api/accounting-method")
async def get_accounting_method() -> dict:
    return {"method": journal.accounting.method}


@app.put("/api/accounting-method")
async def set_accounting_method(req: AccountingMethodRequest) -> dict:
    try:
        changed = journal.accounting.set_method(req.method)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    return {"method": journal.accounting.method, "changed": changed}


@app.post("/api/analytics/xirr")
async def compute_xirr(req: XirrRequest) -> dict:
    rate = journal.xirr(
        req.start_date,
        req.start_value,
        req.end_date,
        req.end_value,
        [(f.date, f.amount) for f in req.flows],
    )
    return {"xirr": rate}


@app.get("/api/analytics/monthly-xirr")
async def monthly_xirr(year: int = Query(...)) -> dict:
    return {"year": year, "months": journal.monthly_xirr(year)}


@app.get("/api/analytics/drawdown")
async def drawdown(
    filter_type: str = Query(default="all"),
    month: int | None = Query(default=None, ge=1, le=12),
    year: int | None = Query(default=None),
    fy_start_year: int | None = Query(default=None),
    start_date: dt.date | None = Query(default=None),
    end_date: dt.date | None = Query(default=None),
) -> dict:
    date_filter = _date_filter(filter_type, month, year, fy_start_year, start_date, end_date)
    points = journal.drawdown(date_filter)
    return {
        "count": len(points),
        "max_drawdown": max((p.dd_from_peak for p in points), default=0.0),
        "points": [p.model_dump(mode="json") for p in points],
    }


@app.get("/api/analytics/summary")
async def summary(
    filter_type: str = Query(default="all"),
    month: int | None = Query(default=None, ge=1, le=12),
    year: int | None = Query(default=None),
    fy_start_year: int | None = Query(default=None),
    start_date: dt.date | None = Query(default=None),
    end_date: dt.date | None = Query(default=None),
) -> dict:
    date_filter = _date_filter(filter_type, month, year, fy_start_year, start_date, end_date)
    return journal.summary(date_filter).model_dump(mode="json")
