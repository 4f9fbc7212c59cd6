"""Portfolio models — capital anchors, capital changes, monthly snapshots.

Snapshots and drawdown points are derived on demand and never treated as
authoritative state.
"""

from __future__ import annotations

import datetime as dt
import uuid
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from tradejournal.utils.coerce import normalize_month, parse_date, safe_float


class CapitalChange(BaseModel):
    """A deposit or withdrawal. ``amount`` is the magnitude; ``type`` gives the sign."""

    id: str = Field(default_factory=lambda: f"capital_{uuid.uuid4().hex}")
    date: dt.date | None = None
    amount: float = 0.0
    type: Literal["deposit", "withdrawal"] = "deposit"
    description: str = ""

    @model_validator(mode="before")
    @classmethod
    def _infer_type_from_sign(cls, data: Any) -> Any:
        # A bare signed amount (-5000) means a withdrawal of 5000
        if isinstance(data, dict):
            data = dict(data)
            amount = safe_float(data.get("amount"))
            if not data.get("type"):
                data["type"] = "withdrawal" if amount < 0 else "deposit"
            else:
                data["type"] = str(data["type"]).strip().lower()
            data["amount"] = abs(amount)
        return data

    @field_validator("date", mode="before")
    @classmethod
    def _coerce_date(cls, v: Any) -> dt.date | None:
        return parse_date(v)

    @property
    def signed_amount(self) -> float:
        return self.amount if self.type == "deposit" else -self.amount


class YearlyStartingCapital(BaseModel):
    """The capital anchor for one calendar year."""

    year: int
    starting_capital: float = Field(gt=0)
    updated_at: dt.datetime = Field(default_factory=dt.datetime.now)


class MonthlyStartingCapitalOverride(BaseModel):
    """Manual starting capital for one (month, year), beating the cascade."""

    month: str
    year: int
    starting_capital: float
    updated_at: dt.datetime = Field(default_factory=dt.datetime.now)

    @field_validator("month", mode="before")
    @classmethod
    def _normalize_month(cls, v: Any) -> str:
        return normalize_month(v)

    @property
    def id(self) -> str:
        return f"{self.month}-{self.year}"


class MonthlyPortfolioSnapshot(BaseModel):
    """Derived month: ending = starting + capital_change + pl."""

    month: str
    year: int
    starting_capital: float
    capital_change: float = 0.0
    pl: float = 0.0
    ending_capital: float
    return_pct: float = 0.0


class DrawdownPoint(BaseModel):
    """One step of a cumulative-PF sequence with its running peak."""

    label: str = ""
    cumm_pf: float
    peak: float
    dd_from_peak: float
    is_new_peak: bool = False


class PerformanceStats(BaseModel):
    """Accounting-aware summary statistics over a set of trades."""

    accounting_method: Literal["accrual", "cash"] = "accrual"
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0
    gross_pl: float = 0.0
    avg_gain: float = 0.0
    avg_loss: float = 0.0
    avg_pos_move: float = 0.0
    avg_neg_move: float = 0.0
    avg_position_size: float = 0.0
    avg_holding_days: float = 0.0
    avg_reward_risk: float = 0.0
    plan_followed: float = 0.0
    open_positions: int = 0
    open_heat: float = 0.0
    max_drawdown: float = 0.0
    current_drawdown: float = 0.0
