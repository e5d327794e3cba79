"""Budget ledger — the single source of truth for spendable money.

Guards the balance with a hard floor, a per-trade cap, a total exposure cap
and a cash reserve. Reservations live in a shared store so concurrent
workers (threads or processes) never spend the same euro twice.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

from pydantic import BaseModel

from skintrader.core.logging import get_logger, log_trade_event
from skintrader.core.money import ZERO, money
from skintrader.errors import InsufficientBudgetError
from skintrader.models.alerts import BalanceFloorAlert
from skintrader.models.budget import BudgetCheck, BudgetState, Reservation, TradingState
from skintrader.models.inventory import PositionStatus

if TYPE_CHECKING:
    from skintrader.interfaces import AlertSink, MarketplaceApi, ReservationStore, TradingStore

log = get_logger(__name__)

CONSERVATIVE_BAND = Decimal("1.2")


class BudgetLimits(BaseModel):
    """Floors and caps. Fractions are of the current balance."""

    hard_floor: Decimal = Decimal("10.00")
    soft_floor: Decimal = Decimal("12.00")
    max_risk_per_trade: Decimal = Decimal("0.05")
    max_total_exposure: Decimal = Decimal("0.70")
    min_reserve_pct: Decimal = Decimal("0.20")
    balance_max_age_seconds: int = 300
    reservation_ttl_seconds: int = 900

    model_config = {"frozen": True}


def classify_trading_state(
    balance: Decimal, hard_floor: Decimal, soft_floor: Decimal
) -> TradingState:
    """Boundary values fall into the more restrictive state."""
    if balance <= hard_floor:
        return TradingState.LOCKDOWN
    if balance <= soft_floor:
        return TradingState.EMERGENCY
    if balance <= money(soft_floor * CONSERVATIVE_BAND):
        return TradingState.CONSERVATIVE
    return TradingState.NORMAL


class BudgetLedger:
    """Balance, reservations, exposure and the trading state derived from them.

    Every operation except ``refresh_balance`` works off the last-known
    balance; only ``refresh_balance`` talks to the marketplace. Without any
    snapshot the balance is zero, which classifies as lockdown.
    """

    def __init__(
        self,
        store: TradingStore,
        reservations: ReservationStore,
        limits: BudgetLimits | None = None,
        *,
        api: MarketplaceApi | None = None,
        alerts: AlertSink | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(tz=UTC),
    ) -> None:
        self._store = store
        self._reservations = reservations
        self._limits = limits or BudgetLimits()
        self._api = api
        self._alerts = alerts
        self._clock = clock
        self._lock = threading.Lock()
        latest = store.latest_balance_snapshot()
        self._balance = latest.balance if latest else ZERO
        self._balance_at: datetime | None = latest.taken_at if latest else None

    @property
    def limits(self) -> BudgetLimits:
        return self._limits

    @property
    def balance(self) -> Decimal:
        return self._balance

    @property
    def balance_is_stale(self) -> bool:
        if self._balance_at is None:
            return True
        age = (self._clock() - self._balance_at).total_seconds()
        return age >= self._limits.balance_max_age_seconds

    def set_balance(self, balance: Decimal, taken_at: datetime | None = None) -> None:
        """Adopt a balance observed elsewhere (e.g. returned by a buy call)."""
        self._balance = money(balance)
        self._balance_at = taken_at or self._clock()

    def reserved(self) -> Decimal:
        return self._reservations.total()

    def invested(self) -> Decimal:
        return money(self._store.total_invested())

    def required_reserve(self) -> Decimal:
        return money(self._balance * self._limits.min_reserve_pct)

    def available(self) -> Decimal:
        """``balance − reserved − balance × min_reserve_pct``."""
        return money(self._balance - self.reserved() - self.required_reserve())

    def trading_state(self) -> TradingState:
        return classify_trading_state(
            self._balance, self._limits.hard_floor, self._limits.soft_floor
        )

    def max_per_trade(self, size_factor: Decimal = Decimal("1")) -> Decimal:
        return money(self._balance * self._limits.max_risk_per_trade * size_factor)

    def check(
        self,
        price: Decimal,
        size_factor: Decimal = Decimal("1"),
        *,
        invested: Decimal | None = None,
    ) -> BudgetCheck:
        """Run the four affordability gates and name the first that fails.

        ``size_factor`` scales the per-trade cap (0.5 in conservative mode).
        ``invested`` defaults to the stored total of open positions.
        """
        price = money(price)
        balance = self._balance
        limits = self._limits

        balance_after = money(balance - price)
        if balance_after <= limits.hard_floor:
            return self._refuse(
                "hard_floor",
                f"balance after purchase {balance_after} would be at or below hard floor "
                f"{limits.hard_floor}",
                price,
            )

        max_per_trade = self.max_per_trade(size_factor)
        if price > max_per_trade:
            return self._refuse(
                "per_trade",
                f"price {price} exceeds per-trade limit {max_per_trade}",
                price,
            )

        if invested is None:
            invested = self.invested()
        max_exposure = money(balance * limits.max_total_exposure)
        if invested + price > max_exposure:
            return self._refuse(
                "exposure",
                f"exposure {invested + price} would exceed limit {max_exposure}",
                price,
            )

        available = self.available()
        if price > available:
            return self._refuse(
                "available",
                f"price {price} exceeds available balance {available}",
                price,
            )

        log.debug(
            "budget_check_passed",
            price=str(price),
            balance=str(balance),
            invested=str(invested),
            available=str(available),
        )
        return BudgetCheck(allowed=True)

    def can_afford(self, price: Decimal, size_factor: Decimal = Decimal("1")) -> bool:
        return self.check(price, size_factor).allowed

    def reserve(
        self, amount: Decimal, identifier: str, size_factor: Decimal = Decimal("1")
    ) -> Reservation:
        """Check every gate and claim ``amount`` as one atomic step.

        The store re-checks the reservation-dependent caps under its own
        lock (or Lua script), which also covers other processes: the new
        reserved total may not exceed ``available`` or the exposure headroom,
        and may never reach ``balance − hard_floor``. The invested total is
        read from the trading store before the ledger lock is taken.

        Raises:
            InsufficientBudgetError: A gate refused the amount.
            DuplicateReservationError: ``identifier`` is already reserved.
        """
        amount = money(amount)
        invested = self.invested()
        with self._lock:
            result = self.check(amount, size_factor, invested=invested)
            if not result.allowed:
                raise InsufficientBudgetError(result.gate, result.reason)

            balance = self._balance
            reserve_cap = money(balance - self.required_reserve())
            exposure_cap = money(balance * self._limits.max_total_exposure - invested)
            floor_total = money(balance - self._limits.hard_floor)
            added = self._reservations.add_within(
                identifier,
                amount,
                max_total=min(reserve_cap, exposure_cap),
                floor_total=floor_total,
            )
            if not added:
                reason = f"concurrent reservations leave no room for {amount}"
                log.info("budget_reserve_refused", reservation_id=identifier, amount=str(amount))
                raise InsufficientBudgetError("available", reason)

        log.info(
            "budget_reserved",
            reservation_id=identifier,
            amount=str(amount),
            total_reserved=str(self.reserved()),
        )
        log_trade_event("reserve", identifier, amount=str(amount))
        return Reservation(identifier=identifier, amount=amount, created_at=self._clock())

    def release(self, identifier: str) -> Decimal | None:
        """Drop a reservation. Unknown ids are a logged no-op."""
        amount = self._reservations.remove(identifier)
        if amount is None:
            log.warning("budget_release_unknown", reservation_id=identifier)
            return None
        log.info(
            "budget_released",
            reservation_id=identifier,
            amount=str(amount),
            total_reserved=str(self.reserved()),
        )
        log_trade_event("release", identifier, amount=str(amount))
        return amount

    def snapshot(self) -> BudgetState:
        """Build a BudgetState from the last-known balance and stored aggregates."""
        now = self._clock()
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        open_positions = self._store.list_positions(
            [PositionStatus.HOLDING, PositionStatus.LISTED]
        )
        return BudgetState(
            balance=self._balance,
            reserved=self.reserved(),
            invested=self.invested(),
            available=self.available(),
            inventory_count=len(open_positions),
            trading_state=self.trading_state(),
            hard_floor=self._limits.hard_floor,
            soft_floor=self._limits.soft_floor,
            profit_today=money(self._store.realized_profit(start_of_day)),
            profit_week=money(self._store.realized_profit(now - timedelta(days=7))),
            profit_month=money(self._store.realized_profit(now - timedelta(days=30))),
            profit_total=money(self._store.realized_profit(None)),
            taken_at=now,
        )

    async def refresh_balance(self) -> BudgetState:
        """Pull the authoritative balance and persist a snapshot.

        Also expires reservations older than ``reservation_ttl_seconds`` and
        raises a BalanceFloorAlert whenever the state is not normal. Store
        and reservation I/O runs in worker threads.
        """
        if self._api is None:
            msg = "refresh_balance needs a marketplace client"
            raise RuntimeError(msg)

        balance = await self._api.get_balance()
        self.set_balance(balance)

        expired = await asyncio.to_thread(
            self._reservations.expire, self._limits.reservation_ttl_seconds
        )
        if expired:
            log.warning("reservations_expired", count=len(expired), ids=expired)

        state = await asyncio.to_thread(self.snapshot)
        await asyncio.to_thread(self._store.save_balance_snapshot, state)
        log.info(
            "balance_refreshed",
            balance=str(state.balance),
            available=str(state.available),
            invested=str(state.invested),
            reserved=str(state.reserved),
            trading_state=state.trading_state.value,
        )

        if state.trading_state is not TradingState.NORMAL and self._alerts is not None:
            floor = (
                state.hard_floor
                if state.trading_state is TradingState.LOCKDOWN
                else state.soft_floor
            )
            self._alerts.emit(
                BalanceFloorAlert(state=state.trading_state, balance=state.balance, floor=floor)
            )
        return state

    def _refuse(self, gate: str, reason: str, price: Decimal) -> BudgetCheck:
        log.info("budget_rejected", gate=gate, reason=reason, price=str(price))
        return BudgetCheck(allowed=False, gate=gate, reason=reason)
