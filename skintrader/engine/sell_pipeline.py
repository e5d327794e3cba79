"""Sell decision pipeline — list, re-price or hold an owned position."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from decimal import Decimal

from pydantic import BaseModel

from skintrader.core.logging import get_logger
from skintrader.core.money import ZERO, money, pct
from skintrader.models.inventory import Position, PositionStatus
from skintrader.models.market import Listing
from skintrader.models.opportunity import SellAction, SellDecision, SellOpportunity
from skintrader.risk.fees import (
    DEFAULT_FEE_RATE,
    break_even_price,
    min_profitable_price,
    net_profit,
)

log = get_logger(__name__)


class SellSettings(BaseModel):
    fee_rate: Decimal = DEFAULT_FEE_RATE
    min_margin_pct: Decimal = Decimal("3.0")
    max_hold_days: int = 7
    stop_loss_pct: Decimal = Decimal("10.0")
    listed_reprice_days: int = 3
    listed_cut_loss_days: int = 5
    significant_gap: Decimal = Decimal("0.50")
    undercut: Decimal = Decimal("0.01")

    model_config = {"frozen": True}


def cheapest_competitor(listings: Sequence[Listing], own_sale_id: str) -> Listing | None:
    """Lowest positive-priced listing that is not ours."""
    cheapest: Listing | None = None
    for listing in listings:
        if listing.sale_id == own_sale_id or listing.price <= 0:
            continue
        if cheapest is None or listing.price < cheapest.price:
            cheapest = listing
    return cheapest


def average_listing_price(listings: Sequence[Listing]) -> Decimal:
    prices = [listing.price for listing in listings if listing.price > 0]
    if not prices:
        return ZERO
    return money(sum(prices, ZERO) / len(prices))


class SellDecisionPipeline:
    """Decides what to do with one position given the current competing listings.

    Holding positions are listed when undercutting the cheapest competitor
    reaches the target, still clears the minimum margin, recovers break-even
    after ``max_hold_days``, or when the market average has fallen past the
    stop-loss. Listed positions are re-priced when a competitor is cheaper by
    more than one undercut step and the listing is old or the gap is large.
    Exact ties resolve to hold.
    """

    def __init__(
        self,
        settings: SellSettings | None = None,
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(tz=UTC),
    ) -> None:
        self._settings = settings or SellSettings()
        self._clock = clock

    @property
    def settings(self) -> SellSettings:
        return self._settings

    def evaluate(self, position: Position, listings: Sequence[Listing]) -> SellDecision:
        if position.status is PositionStatus.HOLDING:
            return self._evaluate_holding(position, listings)
        if position.status is PositionStatus.LISTED:
            return self._evaluate_listed(position, listings)
        return self._hold(position, f"status {position.status.value} is not sellable")

    def _evaluate_holding(self, position: Position, listings: Sequence[Listing]) -> SellDecision:
        s = self._settings
        cheapest = cheapest_competitor(listings, position.sale_id)
        if cheapest is None:
            log.warning("sell_no_listings", item=position.item_name, sale_id=position.sale_id)
            return self._hold(position, "no competing listings")

        purchase = position.purchase_price
        hold_days = position.holding_days(self._clock())
        undercut = money(cheapest.price - s.undercut)
        min_profitable = min_profitable_price(purchase, s.min_margin_pct, s.fee_rate)

        if undercut >= position.target_sell_price:
            return self._act(
                position,
                SellAction.LIST,
                undercut,
                "Profit target achievable by undercutting",
                cheapest.price,
            )

        if undercut >= min_profitable:
            profit_pct = pct(net_profit(purchase, undercut, s.fee_rate), purchase)
            return self._act(
                position,
                SellAction.LIST,
                undercut,
                f"Profitable opportunity ({profit_pct}% profit)",
                cheapest.price,
            )

        if hold_days >= s.max_hold_days:
            break_even = break_even_price(purchase, s.fee_rate)
            if cheapest.price >= break_even:
                return self._act(
                    position,
                    SellAction.LIST,
                    max(undercut, break_even),
                    f"Held too long ({hold_days} days), cutting losses",
                    cheapest.price,
                )
            log.warning(
                "sell_held_too_long_below_break_even",
                item=position.item_name,
                sale_id=position.sale_id,
                hold_days=hold_days,
                cheapest=str(cheapest.price),
                break_even=str(break_even),
            )

        market_avg = average_listing_price(listings)
        if purchase > 0 and market_avg > 0:
            drop_pct = pct(purchase - market_avg, purchase)
            if drop_pct >= s.stop_loss_pct:
                log.error(
                    "sell_stop_loss",
                    item=position.item_name,
                    sale_id=position.sale_id,
                    purchase_price=str(purchase),
                    market_avg=str(market_avg),
                    drop_pct=str(drop_pct),
                )
                return self._act(
                    position,
                    SellAction.LIST,
                    undercut,
                    f"STOP-LOSS: Market crashed ({drop_pct}% drop)",
                    cheapest.price,
                )

        return self._hold(
            position,
            f"market not favorable (cheapest {cheapest.price}, min profitable {min_profitable})",
        )

    def _evaluate_listed(self, position: Position, listings: Sequence[Listing]) -> SellDecision:
        s = self._settings
        cheapest = cheapest_competitor(listings, position.sale_id)
        if cheapest is None:
            return self._hold(position, "we are the only listing")

        listed = position.listed_price or ZERO
        gap = money(listed - cheapest.price)
        if gap <= s.undercut:
            return self._hold(position, "still competitive")

        purchase = position.purchase_price
        hold_days = position.holding_days(self._clock())
        undercut = money(cheapest.price - s.undercut)
        significant = gap > s.significant_gap

        if hold_days >= s.listed_reprice_days or significant:
            if undercut >= min_profitable_price(purchase, s.min_margin_pct, s.fee_rate):
                reason = (
                    "Competitor undercut us significantly"
                    if significant
                    else f"Undercutting after {s.listed_reprice_days}+ days listed"
                )
                return self._act(position, SellAction.ADJUST, undercut, reason, cheapest.price)

            break_even = break_even_price(purchase, s.fee_rate)
            if hold_days >= s.listed_cut_loss_days and undercut >= break_even:
                return self._act(
                    position,
                    SellAction.ADJUST,
                    max(undercut, break_even),
                    f"Cutting losses after {s.listed_cut_loss_days}+ days",
                    cheapest.price,
                )

        return self._hold(
            position, f"listed at {listed}, cheapest competitor {cheapest.price}"
        )

    def _act(
        self,
        position: Position,
        action: SellAction,
        price: Decimal,
        reason: str,
        cheapest: Decimal,
    ) -> SellDecision:
        price = money(price)
        if action is SellAction.ADJUST and position.listed_price == price:
            return self._hold(position, "already at the computed price")
        opportunity = SellOpportunity(
            sale_id=position.sale_id,
            item_name=position.item_name,
            action=action,
            price=price,
            reason=reason,
            purchase_price=position.purchase_price,
            current_price=cheapest,
        )
        log.info(
            "sell_opportunity",
            item=position.item_name,
            sale_id=position.sale_id,
            action=action.value,
            price=str(price),
            reason=reason,
        )
        return SellDecision(sale_id=position.sale_id, opportunity=opportunity)

    @staticmethod
    def _hold(position: Position, reason: str) -> SellDecision:
        log.debug("sell_hold", item=position.item_name, sale_id=position.sale_id, reason=reason)
        return SellDecision(sale_id=position.sale_id, hold_reason=reason)
