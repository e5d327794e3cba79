"""Owned positions and the transaction ledger."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from skintrader.core.money import ZERO, money, pct
from skintrader.errors import PositionTransitionError


class PositionStatus(str, Enum):
    HOLDING = "holding"
    LISTED = "listed"
    SOLD = "sold"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (PositionStatus.SOLD, PositionStatus.FAILED)

    @property
    def is_open(self) -> bool:
        return not self.is_terminal


_ALLOWED_TRANSITIONS: dict[PositionStatus, frozenset[PositionStatus]] = {
    PositionStatus.HOLDING: frozenset({PositionStatus.LISTED, PositionStatus.FAILED}),
    PositionStatus.LISTED: frozenset({PositionStatus.SOLD, PositionStatus.FAILED}),
    PositionStatus.SOLD: frozenset(),
    PositionStatus.FAILED: frozenset(),
}


class Position(BaseModel):
    """An owned unit of inventory.

    ``target_sell_price`` is fixed at purchase time. Status only moves forward:
    holding -> listed -> sold, or holding/listed -> failed. Listed positions
    may be re-priced without a status change.
    """

    sale_id: str
    item_name: str
    purchase_price: Decimal
    purchase_date: datetime = Field(default_factory=lambda: datetime.now(tz=UTC))
    target_sell_price: Decimal
    status: PositionStatus = PositionStatus.HOLDING
    risk_score: float | None = None
    listed_price: Decimal | None = None
    listed_date: datetime | None = None
    item_id: str | None = None
    sold_price: Decimal | None = None
    sold_date: datetime | None = None
    sold_fee: Decimal | None = None
    net_profit: Decimal | None = None
    profit_pct: Decimal | None = None
    notes: tuple[str, ...] = ()

    model_config = {"frozen": True}

    def holding_days(self, now: datetime | None = None) -> int:
        """Whole days since purchase."""
        now = now or datetime.now(tz=UTC)
        return max((now - self.purchase_date).days, 0)

    def transition(self, status: PositionStatus, **fields: Any) -> Position:
        """Return a copy moved to ``status`` with extra field updates.

        Raises:
            PositionTransitionError: If the move is not forward.
        """
        if status not in _ALLOWED_TRANSITIONS[self.status]:
            msg = f"position {self.sale_id}: {self.status.value} -> {status.value} not allowed"
            raise PositionTransitionError(msg)
        if "target_sell_price" in fields:
            msg = "target_sell_price is fixed at purchase"
            raise PositionTransitionError(msg)
        return self.model_copy(update={"status": status, **fields})

    def mark_listed(
        self,
        price: Decimal,
        *,
        item_id: str | None = None,
        reason: str = "",
        now: datetime | None = None,
    ) -> Position:
        now = now or datetime.now(tz=UTC)
        return self.transition(
            PositionStatus.LISTED,
            listed_price=money(price),
            listed_date=now,
            item_id=item_id or self.item_id,
            notes=(*self.notes, f"[{now:%Y-%m-%d %H:%M:%S}] Listed at {money(price)} - {reason}"),
        )

    def reprice(self, price: Decimal, *, reason: str = "", now: datetime | None = None) -> Position:
        """Change the listed price. Only valid while listed."""
        if self.status is not PositionStatus.LISTED:
            msg = f"position {self.sale_id}: cannot adjust price while {self.status.value}"
            raise PositionTransitionError(msg)
        now = now or datetime.now(tz=UTC)
        note = f"[{now:%Y-%m-%d %H:%M:%S}] Price adjusted: {self.listed_price} -> {money(price)} - {reason}"
        return self.model_copy(update={"listed_price": money(price), "notes": (*self.notes, note)})

    def mark_sold(
        self, sold_price: Decimal, fee_rate: Decimal, *, now: datetime | None = None
    ) -> Position:
        """Record the sale: fee, net profit and profit % on purchase price."""
        sold_price = money(sold_price)
        net = money(sold_price * (Decimal("1") - fee_rate))
        fee = sold_price - net
        profit = money(net - self.purchase_price)
        return self.transition(
            PositionStatus.SOLD,
            sold_price=sold_price,
            sold_date=now or datetime.now(tz=UTC),
            sold_fee=fee,
            net_profit=profit,
            profit_pct=pct(profit, self.purchase_price) if self.purchase_price > 0 else ZERO,
        )

    def mark_failed(self, reason: str) -> Position:
        return self.transition(PositionStatus.FAILED, notes=(*self.notes, f"failed: {reason}"))


class TransactionType(str, Enum):
    BUY = "buy"
    SELL = "sell"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class Transaction(BaseModel):
    """One buy or sell attempt, with the balance on either side of it."""

    id: UUID = Field(default_factory=uuid4)
    transaction_type: TransactionType
    item_name: str
    external_id: str
    price: Decimal
    fee: Decimal = ZERO
    net_amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    status: TransactionStatus = TransactionStatus.PENDING
    error_message: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(tz=UTC))
    metadata: dict[str, str] = Field(default_factory=dict)

    model_config = {"frozen": True}

    @classmethod
    def buy(
        cls,
        item_name: str,
        sale_id: str,
        price: Decimal,
        balance_before: Decimal,
        metadata: dict[str, str] | None = None,
    ) -> Transaction:
        price = money(price)
        return cls(
            transaction_type=TransactionType.BUY,
            item_name=item_name,
            external_id=sale_id,
            price=price,
            net_amount=-price,
            balance_before=money(balance_before),
            balance_after=money(balance_before - price),
            metadata=metadata or {},
        )

    @classmethod
    def sell(
        cls,
        item_name: str,
        sale_id: str,
        price: Decimal,
        fee: Decimal,
        balance_before: Decimal,
    ) -> Transaction:
        net = money(price - fee)
        return cls(
            transaction_type=TransactionType.SELL,
            item_name=item_name,
            external_id=sale_id,
            price=money(price),
            fee=money(fee),
            net_amount=net,
            balance_before=money(balance_before),
            balance_after=money(balance_before + net),
        )

    def completed(self, balance_after: Decimal | None = None) -> Transaction:
        update: dict[str, Any] = {"status": TransactionStatus.COMPLETED}
        if balance_after is not None:
            update["balance_after"] = money(balance_after)
        return self.model_copy(update=update)

    def failed(self, error: str) -> Transaction:
        return self.model_copy(
            update={
                "status": TransactionStatus.FAILED,
                "error_message": error,
                "balance_after": self.balance_before,
            }
        )
