"""Trade models — Trade, Leg, position-status tagged union, display rows.

A Trade carries the raw journal entry (entries, exits, stops, notes) plus the
calculated fields owned by the trade metrics engine. Calculated fields are
never hand-edited; position status is the one auto-derived field a user may
override, and that precedence is carried by the Derived / UserOverridden
wrapper.
"""

from __future__ import annotations

import datetime as dt
import uuid
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, field_validator

from tradejournal.utils.coerce import parse_date, safe_float

PositionStatus = Literal["Open", "Partial", "Closed"]
Direction = Literal["Buy", "Sell"]

MAX_PYRAMIDS = 2
MAX_EXITS = 3


class Leg(BaseModel):
    """One entry or exit fill: price, quantity and date."""

    price: float = 0.0
    qty: float = 0.0
    date: dt.date | None = None

    @field_validator("price", "qty", mode="before")
    @classmethod
    def _coerce_number(cls, v: Any) -> float:
        return safe_float(v)

    @field_validator("date", mode="before")
    @classmethod
    def _coerce_date(cls, v: Any) -> dt.date | None:
        return parse_date(v)

    @property
    def is_valid(self) -> bool:
        """Legs with non-positive qty or price are ignored by every aggregate."""
        return self.qty > 0 and self.price > 0


# ── Position status: derived vs user-overridden ─────────────────────


class Derived(BaseModel):
    """Status computed from quantities; recalculation may replace it."""

    kind: Literal["derived"] = "derived"
    value: PositionStatus = "Open"


class UserOverridden(BaseModel):
    """Status the user set by hand; recalculation must keep it."""

    kind: Literal["user"] = "user"
    value: PositionStatus


StatusField = Annotated[Union[Derived, UserOverridden], Field(discriminator="kind")]


class Trade(BaseModel):
    """A single logged position."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    trade_no: str = ""
    date: dt.date | None = None
    name: str = ""
    buy_sell: Direction = "Buy"

    # Entries
    entry: float = 0.0
    initial_qty: float = 0.0
    pyramids: list[Leg] = Field(default_factory=list)

    # Stops and market
    sl: float = 0.0
    tsl: float = 0.0
    cmp: float = 0.0

    # Exits
    exits: list[Leg] = Field(default_factory=list)

    position_status: StatusField = Field(default_factory=Derived)

    # Free text
    setup: str = ""
    base_duration: str = ""
    notes: str = ""
    exit_trigger: str = ""
    proficiency_growth_areas: str = ""
    plan_followed: bool = False
    sector: str | None = None

    # Calculated fields
    avg_entry: float = 0.0
    position_size: float = 0.0
    allocation: float = 0.0
    sl_percent: float = 0.0
    open_qty: float = 0.0
    exited_qty: float = 0.0
    avg_exit_price: float = 0.0
    stock_move: float = 0.0
    reward_risk: float = 0.0
    holding_days: int = 0
    realised_amount: float = 0.0
    pl_rs: float = 0.0
    unrealized_pl: float = 0.0
    pf_impact: float = 0.0
    cumm_pf: float = 0.0
    open_heat: float = 0.0

    # Cached per-convention values so a toggle is a field switch, not a recompute
    accrual_pl: float | None = None
    cash_pl: float | None = None
    accrual_pf_impact: float | None = None
    cash_pf_impact: float | None = None

    needs_recalculation: bool = False

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator(
        "entry", "initial_qty", "sl", "tsl", "cmp",
        "avg_entry", "position_size", "allocation", "sl_percent", "open_qty",
        "exited_qty", "avg_exit_price", "stock_move", "reward_risk",
        "realised_amount", "pl_rs", "unrealized_pl", "pf_impact", "cumm_pf",
        "open_heat",
        mode="before",
    )
    @classmethod
    def _coerce_number(cls, v: Any) -> float:
        return safe_float(v)

    @field_validator("holding_days", mode="before")
    @classmethod
    def _coerce_days(cls, v: Any) -> int:
        return int(safe_float(v))

    @field_validator("date", mode="before")
    @classmethod
    def _coerce_date(cls, v: Any) -> dt.date | None:
        return parse_date(v)

    @field_validator("trade_no", mode="before")
    @classmethod
    def _coerce_trade_no(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @field_validator("buy_sell", mode="before")
    @classmethod
    def _coerce_direction(cls, v: Any) -> str:
        text = str(v or "Buy").strip().lower()
        return "Sell" if text in ("sell", "short") else "Buy"

    @field_validator("position_status", mode="before")
    @classmethod
    def _coerce_status(cls, v: Any) -> Any:
        # Plain strings (imports, old rows) are treated as derived values
        if v is None or v == "":
            return {"kind": "derived", "value": "Open"}
        if isinstance(v, str):
            value = v.strip().capitalize()
            if value not in ("Open", "Partial", "Closed"):
                value = "Open"
            return {"kind": "derived", "value": value}
        return v

    @field_validator("pyramids")
    @classmethod
    def _limit_pyramids(cls, v: list[Leg]) -> list[Leg]:
        if len(v) > MAX_PYRAMIDS:
            raise ValueError(f"At most {MAX_PYRAMIDS} pyramid entries are supported")
        return v

    @field_validator("exits")
    @classmethod
    def _limit_exits(cls, v: list[Leg]) -> list[Leg]:
        if len(v) > MAX_EXITS:
            raise ValueError(f"At most {MAX_EXITS} exit legs are supported")
        return v

    # ------------------------------------------------------------------
    # Convenience
    # ------------------------------------------------------------------

    @property
    def status(self) -> PositionStatus:
        """Current position status value, whoever set it."""
        return self.position_status.value

    @property
    def status_overridden(self) -> bool:
        return isinstance(self.position_status, UserOverridden)

    @property
    def direction_sign(self) -> int:
        return -1 if self.buy_sell == "Sell" else 1

    def entry_legs(self) -> list[Leg]:
        """Initial entry plus pyramids, as legs (including invalid ones)."""
        initial = Leg(price=self.entry, qty=self.initial_qty, date=self.date)
        return [initial, *self.pyramids]

    def override_status(self, value: PositionStatus) -> Trade:
        """Return a copy whose status is pinned by the user."""
        return self.model_copy(update={"position_status": UserOverridden(value=value)})

    def clear_status_override(self) -> Trade:
        """Return a copy whose status goes back to being derived."""
        return self.model_copy(update={"position_status": Derived(value=self.status)})


TRADE_FIELDS = frozenset(Trade.model_fields)


class ExpandedTrade(BaseModel):
    """One synthetic record per exit leg, used only for cash-basis attribution.

    Recomputed on every call and never persisted.
    """

    id: str
    original_id: str
    exit_index: int
    trade: Trade
    exit_date: dt.date | None
    exit_qty: float
    exit_price: float
    pl: float = 0.0

    @property
    def is_exit_leg(self) -> bool:
        return self.exit_index >= 0


class DisplayTrade(Trade):
    """A Trade as shown in the journal table, with accounting-aware totals.

    For cash basis the expanded legs of the trade are kept so cumulative
    PF can be computed from the legs that survived filtering.
    """

    display_pl: float = 0.0
    display_exit_date: dt.date | None = None
    expanded: list[ExpandedTrade] = Field(default_factory=list)

    def to_trade(self) -> Trade:
        """Strip display-only fields."""
        return Trade.model_validate(self.model_dump(include=set(TRADE_FIELDS)))
