"""Protocol interfaces for the engine's collaborators.

The decision pipelines, ledger and executors code against these contracts;
concrete marketplace, storage and queue implementations live in
``skintrader.data`` and ``skintrader.execution``.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from skintrader.execution.queue import Envelope
    from skintrader.models.alerts import Alert
    from skintrader.models.budget import BudgetState, Reservation
    from skintrader.models.inventory import Position, PositionStatus, Transaction
    from skintrader.models.market import (
        InventoryItem,
        Listing,
        MarketStats,
        Sale,
        SoldItem,
        Tier,
        WhitelistEntry,
    )


@runtime_checkable
class MarketplaceApi(Protocol):
    """The external marketplace. Every call may raise a TradingError subclass."""

    async def get_balance(self) -> Decimal: ...

    async def search(self, item_name: str, limit: int = 50) -> list[Listing]: ...

    async def buy_items(self, sale_ids: list[str]) -> dict[str, Any]: ...

    async def list_items(self, items: list[dict[str, Any]]) -> list[dict[str, Any]]: ...

    async def edit_price(self, updates: list[dict[str, Any]]) -> list[dict[str, Any]]: ...

    async def get_inventory(self) -> list[InventoryItem]: ...

    async def get_sales_history(self, item_name: str) -> list[Sale]: ...

    async def get_my_sales(self, page: int = 1) -> list[SoldItem]: ...


@runtime_checkable
class ReservationStore(Protocol):
    """Shared reservation map. ``add_within`` is a single atomic check-and-add."""

    def add_within(
        self,
        identifier: str,
        amount: Decimal,
        *,
        max_total: Decimal,
        floor_total: Decimal,
    ) -> bool: ...

    def remove(self, identifier: str) -> Decimal | None: ...

    def total(self) -> Decimal: ...

    def reservations(self) -> list[Reservation]: ...

    def expire(self, older_than_seconds: float) -> list[str]: ...


@runtime_checkable
class TradingStore(Protocol):
    """Synchronous row store for whitelist, stats, positions and the ledger tables."""

    # whitelist
    def get_whitelist_entry(self, name: str) -> WhitelistEntry | None: ...

    def list_whitelist(
        self, tier: Tier | None = None, active_only: bool = True
    ) -> list[WhitelistEntry]: ...

    def save_whitelist_entry(self, entry: WhitelistEntry) -> None: ...

    # stats and history
    def get_market_stats(self, item_name: str) -> MarketStats | None: ...

    def save_market_stats(self, stats: MarketStats) -> None: ...

    def add_sales(self, sales: Iterable[Sale]) -> int: ...

    def get_sales(self, item_name: str, since: datetime) -> list[Sale]: ...

    def count_sales_at_or_above(self, item_name: str, price: Decimal, since: datetime) -> int: ...

    # positions
    def get_position(self, sale_id: str) -> Position | None: ...

    def save_position(self, position: Position) -> None: ...

    def list_positions(self, statuses: Iterable[PositionStatus] | None = None) -> list[Position]: ...

    def count_open_positions(self, item_name: str) -> int: ...

    def total_invested(self) -> Decimal: ...

    def realized_profit(self, since: datetime | None = None) -> Decimal: ...

    # ledger tables
    def save_transaction(self, transaction: Transaction) -> None: ...

    def list_transactions(self, limit: int = 100) -> list[Transaction]: ...

    def save_balance_snapshot(self, state: BudgetState) -> None: ...

    def latest_balance_snapshot(self) -> BudgetState | None: ...

    def save_alert(self, alert: Alert) -> None: ...

    def save_dead_letter(self, envelope: Envelope, error: str) -> None: ...

    def list_dead_letters(self) -> list[dict[str, Any]]: ...


@runtime_checkable
class AlertSink(Protocol):
    """Where alerts go once raised. Delivery channels are out of scope."""

    def emit(self, alert: Alert) -> None: ...


@runtime_checkable
class OpportunityQueue(Protocol):
    """At-least-once queue with bounded redelivery."""

    async def publish(self, message: dict[str, Any]) -> bool: ...

    async def get(self, timeout: float | None = None) -> Envelope | None: ...

    async def ack(self, envelope: Envelope) -> None: ...

    async def retry(self, envelope: Envelope, error: str, consume_attempt: bool = True) -> None: ...

    async def reject(self, envelope: Envelope, error: str) -> None: ...
