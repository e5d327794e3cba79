"""Operator alerts as a closed set of variants discriminated by ``kind``."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal

from pydantic import BaseModel, Field, TypeAdapter

from skintrader.models.budget import TradingState


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class _AlertBase(BaseModel):
    created_at: datetime = Field(default_factory=lambda: datetime.now(tz=UTC))

    model_config = {"frozen": True}


class BalanceFloorAlert(_AlertBase):
    kind: Literal["balance_floor"] = "balance_floor"
    state: TradingState
    balance: Decimal
    floor: Decimal

    @property
    def severity(self) -> Severity:
        return Severity.CRITICAL if self.state is TradingState.LOCKDOWN else Severity.HIGH

    @property
    def title(self) -> str:
        return {
            TradingState.LOCKDOWN: "LOCKDOWN: Balance at hard floor",
            TradingState.EMERGENCY: "EMERGENCY: Balance at soft floor",
            TradingState.CONSERVATIVE: "WARNING: Balance in conservative zone",
        }.get(self.state, "Balance warning")

    @property
    def message(self) -> str:
        which = "hard" if self.state is TradingState.LOCKDOWN else "soft"
        return (
            f"Balance is €{self.balance}, {which} floor is €{self.floor}. "
            "Trading restrictions in effect."
        )


class ProfitableTradeAlert(_AlertBase):
    kind: Literal["profitable_trade"] = "profitable_trade"
    item_name: str
    profit: Decimal
    profit_pct: Decimal

    @property
    def severity(self) -> Severity:
        return Severity.LOW

    @property
    def title(self) -> str:
        return "Profitable sale completed"

    @property
    def message(self) -> str:
        return f"Sold {self.item_name} with €{self.profit} profit ({self.profit_pct}%)"


class ApiErrorAlert(_AlertBase):
    kind: Literal["api_error"] = "api_error"
    endpoint: str
    error: str

    @property
    def severity(self) -> Severity:
        return Severity.MEDIUM

    @property
    def title(self) -> str:
        return "API Error"

    @property
    def message(self) -> str:
        return f"Error calling {self.endpoint}: {self.error}"


class CircuitOpenAlert(_AlertBase):
    kind: Literal["circuit_breaker"] = "circuit_breaker"

    @property
    def severity(self) -> Severity:
        return Severity.CRITICAL

    @property
    def title(self) -> str:
        return "Circuit Breaker Opened"

    @property
    def message(self) -> str:
        return "Circuit breaker opened due to repeated API failures. Trading paused."


Alert = Annotated[
    BalanceFloorAlert | ProfitableTradeAlert | ApiErrorAlert | CircuitOpenAlert,
    Field(discriminator="kind"),
]

ALERT_ADAPTER: TypeAdapter[Alert] = TypeAdapter(Alert)


def alert_from_dict(data: dict[str, object]) -> Alert:
    """Rebuild a stored alert from its JSON form."""
    return ALERT_ADAPTER.validate_python(data)
