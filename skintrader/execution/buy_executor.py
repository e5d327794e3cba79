"""Buy executor — turns an accepted BuyOpportunity into an owned position."""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from skintrader.core.logging import get_logger, log_trade_event
from skintrader.core.money import money
from skintrader.errors import DuplicateReservationError, InsufficientBudgetError, TradingError
from skintrader.execution.outcomes import error_outcome
from skintrader.models.budget import TradingState
from skintrader.models.inventory import Position, Transaction
from skintrader.models.opportunity import BuyOpportunity, ExecutionOutcome, OutcomeStatus

if TYPE_CHECKING:
    from skintrader.execution.audit import AuditLogger
    from skintrader.interfaces import AlertSink, MarketplaceApi, TradingStore
    from skintrader.risk.budget_ledger import BudgetLedger

logger = get_logger(__name__)


def reservation_id(sale_id: str) -> str:
    return f"buy:{sale_id}"


class BuyExecutor:
    """Executes one purchase with reservation, transaction record and position.

    Idempotent on ``sale_id``: a redelivered opportunity whose position
    already exists is skipped. The reservation is released in ``finally``
    so it never outlives the attempt, including on cancellation. Store and
    ledger calls that may hit Postgres or Redis run in worker threads.
    """

    def __init__(
        self,
        api: MarketplaceApi,
        store: TradingStore,
        ledger: BudgetLedger,
        *,
        conservative_size_factor: Decimal = Decimal("0.5"),
        alerts: AlertSink | None = None,
        audit: AuditLogger | None = None,
        refresh_balance: bool = True,
    ) -> None:
        self._api = api
        self._store = store
        self._ledger = ledger
        self._conservative_size_factor = conservative_size_factor
        self._alerts = alerts
        self._audit = audit
        self._refresh_balance = refresh_balance

    async def execute(self, opportunity: BuyOpportunity) -> ExecutionOutcome:
        message_id = opportunity.message_id
        sale_id = opportunity.sale_id

        if await asyncio.to_thread(self._store.get_position, sale_id) is not None:
            logger.info("buy_already_owned", sale_id=sale_id)
            return ExecutionOutcome.skipped(message_id, "position already exists")

        if self._ledger.balance_is_stale:
            try:
                await self._ledger.refresh_balance()
            except TradingError as exc:
                logger.warning("buy_balance_refresh_failed", sale_id=sale_id, error=str(exc))
                return error_outcome(message_id, exc, endpoint="GetBalance", alerts=self._alerts)

        state = self._ledger.trading_state()
        if not state.allows_buying:
            logger.warning("buy_blocked_by_state", sale_id=sale_id, trading_state=state.value)
            return ExecutionOutcome.skipped(message_id, f"trading state is {state.value}")
        size_factor = (
            self._conservative_size_factor
            if state is TradingState.CONSERVATIVE
            else Decimal("1")
        )

        rid = reservation_id(sale_id)
        try:
            await asyncio.to_thread(self._ledger.reserve, opportunity.price, rid, size_factor)
        except InsufficientBudgetError as exc:
            log_trade_event("reject", sale_id, gate=exc.gate, reason=exc.reason)
            return ExecutionOutcome.skipped(message_id, f"budget {exc.gate}: {exc.reason}")
        except DuplicateReservationError as exc:
            logger.error("buy_duplicate_reservation", sale_id=sale_id, reservation_id=rid)
            return ExecutionOutcome.failed(message_id, str(exc), retryable=False)

        try:
            outcome = await self._buy(opportunity)
        finally:
            await asyncio.to_thread(self._ledger.release, rid)

        if outcome.status is OutcomeStatus.COMPLETED and self._refresh_balance:
            try:
                await self._ledger.refresh_balance()
            except TradingError as exc:
                logger.warning("balance_refresh_after_buy_failed", error=str(exc))
        return outcome

    async def _buy(self, opportunity: BuyOpportunity) -> ExecutionOutcome:
        message_id = opportunity.message_id
        sale_id = opportunity.sale_id
        transaction = Transaction.buy(
            opportunity.item_name,
            sale_id,
            opportunity.price,
            self._ledger.balance,
            metadata={
                "target_sell_price": str(opportunity.target_sell_price),
                "risk_score": str(opportunity.risk_score),
            },
        )
        await asyncio.to_thread(self._store.save_transaction, transaction)
        log_trade_event(
            "buy",
            sale_id,
            item=opportunity.item_name,
            price=str(opportunity.price),
            target=str(opportunity.target_sell_price),
        )

        try:
            result = await self._api.buy_items([sale_id])
        except TradingError as exc:
            await self._record(transaction.failed(str(exc)))
            return error_outcome(message_id, exc, endpoint="BuyItems", alerts=self._alerts)
        except Exception as exc:
            await self._record(transaction.failed(f"{type(exc).__name__}: {exc}"))
            raise

        balance_after = self._balance_from(result, transaction.balance_after)
        await self._record(transaction.completed(balance_after))
        self._ledger.set_balance(balance_after)

        position = Position(
            sale_id=sale_id,
            item_name=opportunity.item_name,
            purchase_price=money(opportunity.price),
            target_sell_price=opportunity.target_sell_price,
            risk_score=opportunity.risk_score,
        )
        await asyncio.to_thread(self._store.save_position, position)
        logger.info(
            "buy_completed",
            sale_id=sale_id,
            item=opportunity.item_name,
            price=str(position.purchase_price),
            target=str(position.target_sell_price),
            balance_after=str(balance_after),
        )
        return ExecutionOutcome.completed(message_id, f"bought at {position.purchase_price}")

    async def _record(self, transaction: Transaction) -> None:
        await asyncio.to_thread(self._store.save_transaction, transaction)
        if self._audit is not None:
            self._audit.log_transaction(transaction)

    @staticmethod
    def _balance_from(result: dict[str, Any], fallback: Decimal) -> Decimal:
        """BuyItems reports the new balance; fall back to before minus price."""
        balance = result.get("balance")
        if balance is None:
            return fallback
        return money(balance)
