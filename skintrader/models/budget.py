"""Budget snapshots, reservations and trading-state classification."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field

from skintrader.core.money import ZERO


class TradingState(str, Enum):
    NORMAL = "normal"
    CONSERVATIVE = "conservative"
    EMERGENCY = "emergency"
    LOCKDOWN = "lockdown"

    @property
    def allows_buying(self) -> bool:
        return self in (TradingState.NORMAL, TradingState.CONSERVATIVE)


class Reservation(BaseModel):
    """A temporary hold against available budget for an in-flight purchase."""

    identifier: str
    amount: Decimal
    created_at: datetime = Field(default_factory=lambda: datetime.now(tz=UTC))

    model_config = {"frozen": True}


class BudgetCheck(BaseModel):
    """Result of the affordability gates. ``gate`` names the first failure."""

    allowed: bool
    gate: str = ""
    reason: str = ""

    model_config = {"frozen": True}


class BudgetState(BaseModel):
    """Immutable snapshot produced by a balance refresh."""

    balance: Decimal
    reserved: Decimal = ZERO
    invested: Decimal = ZERO
    available: Decimal = ZERO
    inventory_count: int = 0
    trading_state: TradingState
    hard_floor: Decimal
    soft_floor: Decimal
    profit_today: Decimal = ZERO
    profit_week: Decimal = ZERO
    profit_month: Decimal = ZERO
    profit_total: Decimal = ZERO
    taken_at: datetime = Field(default_factory=lambda: datetime.now(tz=UTC))

    model_config = {"frozen": True}

    @property
    def total_value(self) -> Decimal:
        """Cash plus cost basis of everything still held."""
        return self.balance + self.invested
