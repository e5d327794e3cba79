"""Buy decision pipeline — ordered gates from a listing to a BuyOpportunity."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

from pydantic import BaseModel

from skintrader.core.logging import get_logger, log_trade_event
from skintrader.core.money import ZERO, pct
from skintrader.models.budget import TradingState
from skintrader.models.opportunity import BuyDecision, BuyOpportunity, Rejection
from skintrader.risk.fees import DEFAULT_FEE_RATE, expected_profit, target_sell_price

if TYPE_CHECKING:
    from skintrader.interfaces import TradingStore
    from skintrader.models.market import Listing, WhitelistEntry
    from skintrader.risk.budget_ledger import BudgetLedger
    from skintrader.risk.risk_scorer import RiskScorer

log = get_logger(__name__)

GATES = (
    "trading_state",
    "whitelist",
    "discount",
    "spread",
    "budget",
    "portfolio",
    "target_price",
    "historical_viability",
    "risk",
    "expected_profit",
)


class BuySettings(BaseModel):
    fee_rate: Decimal = DEFAULT_FEE_RATE
    min_times_reached: int = 3
    viability_days: int = 30
    max_risk_score: float = 7.0
    conservative_margin_boost: Decimal = Decimal("5")
    conservative_size_factor: Decimal = Decimal("0.5")

    model_config = {"frozen": True}


class BuyDecisionPipeline:
    """Evaluates one listing through ordered gates, stopping at the first failure.

    Gates: trading state, whitelist, discount, spread, budget, portfolio,
    target price, historical viability, risk, expected profit. A failed gate
    yields a ``Rejection`` naming it; nothing here raises for a refusal.
    The pipeline only reads state: it never reserves budget.
    """

    def __init__(
        self,
        store: TradingStore,
        ledger: BudgetLedger,
        scorer: RiskScorer,
        settings: BuySettings | None = None,
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(tz=UTC),
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._scorer = scorer
        self._settings = settings or BuySettings()
        self._clock = clock

    @property
    def settings(self) -> BuySettings:
        return self._settings

    def evaluate(self, listing: Listing) -> BuyDecision:
        item = listing.item_name
        price = listing.price
        settings = self._settings
        notes: list[str] = []

        # 0. Trading state
        state = self._ledger.trading_state()
        if not state.allows_buying:
            return self._reject(
                listing, "trading_state", f"trading state is {state.value}, buying suspended"
            )
        conservative = state is TradingState.CONSERVATIVE
        size_factor = settings.conservative_size_factor if conservative else Decimal("1")

        # 1. Whitelist
        entry = self._store.get_whitelist_entry(item)
        if entry is None:
            return self._reject(listing, "whitelist", "item is not whitelisted")
        if not entry.active:
            return self._reject(listing, "whitelist", "item is inactive")

        # 2. Discount vs 7-day average
        stats = self._store.get_market_stats(item)
        if stats is None or not stats.avg_price_7d:
            return self._reject(listing, "discount", "no 7-day average price available")
        discount = pct(stats.avg_price_7d - price, stats.avg_price_7d)
        if discount < entry.min_discount_pct:
            return self._reject(
                listing,
                "discount",
                f"discount {discount}% below minimum {entry.min_discount_pct}% "
                f"(7d avg {stats.avg_price_7d})",
            )

        # 3. Spread to the next-cheapest listing, skipped when unknown
        if listing.next_price is None:
            notes.append("spread_unknown")
        else:
            spread = pct(listing.next_price - price, price)
            if spread < entry.min_spread_pct:
                return self._reject(
                    listing,
                    "spread",
                    f"spread {spread}% to next listing {listing.next_price} below minimum "
                    f"{entry.min_spread_pct}%",
                )

        # 4. Budget
        check = self._ledger.check(price, size_factor)
        if not check.allowed:
            return self._reject(listing, "budget", f"{check.gate}: {check.reason}")

        # 5. Portfolio
        holdings = self._store.count_open_positions(item)
        if holdings >= entry.max_holdings:
            return self._reject(
                listing,
                "portfolio",
                f"already holding {holdings} of max {entry.max_holdings}",
            )

        # 6. Target price
        target = self._target_price(price, entry, conservative)
        if target <= price:
            return self._reject(listing, "target_price", f"target {target} not above price")
        if conservative:
            notes.append("conservative_margin")

        # 7. Historical viability
        since = self._clock() - timedelta(days=settings.viability_days)
        reached = self._store.count_sales_at_or_above(item, target, since)
        if reached < settings.min_times_reached:
            return self._reject(
                listing,
                "historical_viability",
                f"target {target} reached {reached} times in {settings.viability_days}d, "
                f"need {settings.min_times_reached}",
            )

        # 8. Risk
        assessment = self._scorer.assess(item, price)
        if assessment.score > settings.max_risk_score:
            return self._reject(
                listing,
                "risk",
                f"risk score {assessment.score} above {settings.max_risk_score} "
                f"({assessment.level.value})",
            )

        # 9. Expected profit
        profit = expected_profit(price, target, settings.fee_rate)
        if profit <= ZERO:
            return self._reject(listing, "expected_profit", f"expected profit {profit} not positive")

        opportunity = BuyOpportunity(
            sale_id=listing.sale_id,
            item_name=item,
            price=price,
            target_sell_price=target,
            expected_profit=profit,
            risk_score=assessment.score,
            tier=entry.tier,
            discount_pct=discount,
        )
        log.info(
            "buy_opportunity",
            item=item,
            sale_id=listing.sale_id,
            price=str(price),
            target=str(target),
            expected_profit=str(profit),
            risk_score=assessment.score,
            trading_state=state.value,
        )
        return BuyDecision(
            sale_id=listing.sale_id,
            item_name=item,
            opportunity=opportunity,
            notes=tuple(notes),
        )

    def _target_price(self, price: Decimal, entry: WhitelistEntry, conservative: bool) -> Decimal:
        profit_pct = entry.target_profit_pct
        if conservative:
            profit_pct += self._settings.conservative_margin_boost
        return target_sell_price(price, profit_pct, self._settings.fee_rate)

    def _reject(self, listing: Listing, gate: str, reason: str) -> BuyDecision:
        log.debug(
            "buy_rejected",
            gate=gate,
            reason=reason,
            item=listing.item_name,
            sale_id=listing.sale_id,
            price=str(listing.price),
        )
        log_trade_event("reject", listing.sale_id, side="buy", gate=gate, reason=reason)
        return BuyDecision(
            sale_id=listing.sale_id,
            item_name=listing.item_name,
            rejection=Rejection(gate=gate, reason=reason),
        )
