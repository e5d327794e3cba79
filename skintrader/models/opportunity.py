"""Decision results and the work items executors consume."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field

from skintrader.models.market import Tier


class BuyOpportunity(BaseModel):
    """An accepted listing, ready to be bought."""

    kind: Literal["buy"] = "buy"
    sale_id: str
    item_name: str
    price: Decimal
    target_sell_price: Decimal
    expected_profit: Decimal
    risk_score: float
    tier: Tier
    discount_pct: Decimal | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(tz=UTC))

    model_config = {"frozen": True}

    @property
    def message_id(self) -> str:
        return f"buy:{self.sale_id}"


class SellAction(str, Enum):
    LIST = "list"
    ADJUST = "adjust"


class SellOpportunity(BaseModel):
    """A list or re-price instruction for one owned position."""

    kind: Literal["sell"] = "sell"
    sale_id: str
    item_name: str
    action: SellAction
    price: Decimal
    reason: str
    purchase_price: Decimal
    current_price: Decimal | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(tz=UTC))

    model_config = {"frozen": True}

    @property
    def message_id(self) -> str:
        return f"sell:{self.action.value}:{self.sale_id}:{self.price}"


class Rejection(BaseModel):
    """A failed gate. A normal pipeline result, not an error."""

    gate: str
    reason: str

    model_config = {"frozen": True}


class BuyDecision(BaseModel):
    """Outcome of evaluating one listing: exactly one of opportunity / rejection is set."""

    sale_id: str
    item_name: str
    opportunity: BuyOpportunity | None = None
    rejection: Rejection | None = None
    notes: tuple[str, ...] = ()

    model_config = {"frozen": True}

    @property
    def accepted(self) -> bool:
        return self.opportunity is not None


class SellDecision(BaseModel):
    """Outcome of evaluating one position: an opportunity, or a hold with a reason."""

    sale_id: str
    opportunity: SellOpportunity | None = None
    hold_reason: str = ""

    model_config = {"frozen": True}

    @property
    def should_act(self) -> bool:
        return self.opportunity is not None


class OutcomeStatus(str, Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"
    DEFERRED = "deferred"


class ExecutionOutcome(BaseModel):
    """What an executor did with one opportunity."""

    status: OutcomeStatus
    message_id: str
    detail: str = ""
    error: str | None = None
    retryable: bool = False

    model_config = {"frozen": True}

    @classmethod
    def completed(cls, message_id: str, detail: str = "") -> ExecutionOutcome:
        return cls(status=OutcomeStatus.COMPLETED, message_id=message_id, detail=detail)

    @classmethod
    def skipped(cls, message_id: str, detail: str) -> ExecutionOutcome:
        return cls(status=OutcomeStatus.SKIPPED, message_id=message_id, detail=detail)

    @classmethod
    def failed(cls, message_id: str, error: str, *, retryable: bool) -> ExecutionOutcome:
        return cls(
            status=OutcomeStatus.FAILED, message_id=message_id, error=error, retryable=retryable
        )

    @classmethod
    def deferred(cls, message_id: str, error: str) -> ExecutionOutcome:
        return cls(
            status=OutcomeStatus.DEFERRED, message_id=message_id, error=error, retryable=True
        )
