"""Sell-side execution: listing, re-pricing and reconciling completed sales."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from skintrader.core.logging import get_logger, log_trade_event
from skintrader.core.money import ZERO
from skintrader.errors import TradingError
from skintrader.execution.outcomes import error_outcome
from skintrader.models.alerts import ProfitableTradeAlert
from skintrader.models.inventory import Position, PositionStatus, Transaction
from skintrader.models.opportunity import ExecutionOutcome, SellAction, SellOpportunity

if TYPE_CHECKING:
    from skintrader.execution.audit import AuditLogger
    from skintrader.interfaces import AlertSink, MarketplaceApi, TradingStore
    from skintrader.models.market import InventoryItem
    from skintrader.risk.budget_ledger import BudgetLedger

logger = get_logger(__name__)


class SellExecutor:
    """Applies list / adjust instructions to owned positions.

    Both actions are idempotent: listing an already-listed position, or
    re-pricing to the price it already has, is skipped.
    """

    def __init__(
        self,
        api: MarketplaceApi,
        store: TradingStore,
        *,
        alerts: AlertSink | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(tz=UTC),
    ) -> None:
        self._api = api
        self._store = store
        self._alerts = alerts
        self._clock = clock

    async def execute(self, opportunity: SellOpportunity) -> ExecutionOutcome:
        message_id = opportunity.message_id
        position = await asyncio.to_thread(self._store.get_position, opportunity.sale_id)
        if position is None:
            logger.error("sell_unknown_position", sale_id=opportunity.sale_id)
            return ExecutionOutcome.failed(message_id, "unknown position", retryable=False)
        if position.status.is_terminal:
            return ExecutionOutcome.skipped(message_id, f"position is {position.status.value}")

        try:
            if opportunity.action is SellAction.LIST:
                return await self._list(position, opportunity)
            return await self._adjust(position, opportunity)
        except TradingError as exc:
            endpoint = "ListItems" if opportunity.action is SellAction.LIST else "EditPriceMulti"
            return error_outcome(message_id, exc, endpoint=endpoint, alerts=self._alerts)

    async def _list(self, position: Position, opportunity: SellOpportunity) -> ExecutionOutcome:
        message_id = opportunity.message_id
        if position.status is PositionStatus.LISTED:
            return ExecutionOutcome.skipped(message_id, "already listed")

        item_id = position.item_id or await self._resolve_item_id(position)
        if item_id is None:
            logger.warning("sell_item_not_in_inventory", sale_id=position.sale_id)
            return ExecutionOutcome.failed(
                message_id, "item not found in marketplace inventory", retryable=True
            )

        await self._api.list_items([{"appId": item_id, "price": opportunity.price}])
        listed = position.mark_listed(
            opportunity.price, item_id=item_id, reason=opportunity.reason, now=self._clock()
        )
        await asyncio.to_thread(self._store.save_position, listed)
        log_trade_event(
            "list",
            position.sale_id,
            item=position.item_name,
            price=str(opportunity.price),
            reason=opportunity.reason,
        )
        return ExecutionOutcome.completed(message_id, f"listed at {opportunity.price}")

    async def _adjust(self, position: Position, opportunity: SellOpportunity) -> ExecutionOutcome:
        message_id = opportunity.message_id
        if position.status is not PositionStatus.LISTED:
            return ExecutionOutcome.failed(
                message_id, f"cannot adjust a {position.status.value} position", retryable=False
            )
        if position.listed_price == opportunity.price:
            return ExecutionOutcome.skipped(message_id, "price already applied")

        await self._api.edit_price(
            [{"saleId": position.item_id or position.sale_id, "price": opportunity.price}]
        )
        repriced = position.reprice(opportunity.price, reason=opportunity.reason, now=self._clock())
        await asyncio.to_thread(self._store.save_position, repriced)
        log_trade_event(
            "adjust",
            position.sale_id,
            item=position.item_name,
            old_price=str(position.listed_price),
            new_price=str(opportunity.price),
            reason=opportunity.reason,
        )
        return ExecutionOutcome.completed(
            message_id, f"price {position.listed_price} -> {opportunity.price}"
        )

    async def _resolve_item_id(self, position: Position) -> str | None:
        """Find the inventory row for a position: by sale id, else first unclaimed by name."""
        inventory = await self._api.get_inventory()
        for item in inventory:
            if item.sale_id == position.sale_id:
                return item.listing_id
        open_positions = await asyncio.to_thread(
            self._store.list_positions, [PositionStatus.HOLDING, PositionStatus.LISTED]
        )
        claimed = {p.item_id for p in open_positions if p.item_id}
        candidates: list[InventoryItem] = [
            item
            for item in inventory
            if item.item_name == position.item_name and item.listing_id not in claimed
        ]
        return candidates[0].listing_id if candidates else None


class SaleReconciler:
    """Moves listed positions to sold once the marketplace reports the sale."""

    def __init__(
        self,
        api: MarketplaceApi,
        store: TradingStore,
        *,
        fee_rate: Decimal = Decimal("0.15"),
        ledger: BudgetLedger | None = None,
        alerts: AlertSink | None = None,
        audit: AuditLogger | None = None,
        max_pages: int = 5,
        clock: Callable[[], datetime] = lambda: datetime.now(tz=UTC),
    ) -> None:
        self._api = api
        self._store = store
        self._fee_rate = fee_rate
        self._ledger = ledger
        self._alerts = alerts
        self._audit = audit
        self._max_pages = max_pages
        self._clock = clock

    async def reconcile(self) -> int:
        """Returns the number of positions newly marked sold."""
        listed = await asyncio.to_thread(self._store.list_positions, [PositionStatus.LISTED])
        if not listed:
            return 0
        by_id: dict[str, Position] = {}
        for position in listed:
            by_id[position.sale_id] = position
            if position.item_id:
                by_id[position.item_id] = position

        settled: set[str] = set()
        for page in range(1, self._max_pages + 1):
            sold_items = await self._api.get_my_sales(page)
            if not sold_items:
                break
            for sold in sold_items:
                position = by_id.get(sold.sale_id)
                if position is None or position.sale_id in settled:
                    continue
                await asyncio.to_thread(
                    self._settle, position, sold.price, sold.sold_at or self._clock()
                )
                settled.add(position.sale_id)
            if len(settled) == len(listed):
                break

        reconciled = len(settled)

        logger.info("sales_reconciled", count=reconciled, still_listed=len(listed) - reconciled)
        return reconciled

    def _settle(self, position: Position, price: Decimal, sold_at: datetime) -> None:
        sold = position.mark_sold(price, self._fee_rate, now=sold_at)
        self._store.save_position(sold)

        balance_before = self._ledger.balance if self._ledger is not None else ZERO
        transaction = Transaction.sell(
            position.item_name,
            position.sale_id,
            price,
            sold.sold_fee or ZERO,
            balance_before,
        ).completed()
        self._store.save_transaction(transaction)
        if self._audit is not None:
            self._audit.log_transaction(transaction)

        log_trade_event(
            "sold",
            position.sale_id,
            item=position.item_name,
            price=str(sold.sold_price),
            fee=str(sold.sold_fee),
            profit=str(sold.net_profit),
            profit_pct=str(sold.profit_pct),
        )
        profit = sold.net_profit or ZERO
        if profit > 0 and self._alerts is not None:
            self._alerts.emit(
                ProfitableTradeAlert(
                    item_name=position.item_name,
                    profit=profit,
                    profit_pct=sold.profit_pct or ZERO,
                )
            )
