"""Risk scoring for purchase candidates (0 = safe, 10 = worst)."""

from __future__ import annotations

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal
from enum import Enum
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from skintrader.core.logging import get_logger

if TYPE_CHECKING:
    from skintrader.interfaces import TradingStore
    from skintrader.models.market import MarketStats

log = get_logger(__name__)

MAX_SCORE = Decimal("10.0")
DEFAULT_THRESHOLD = 7.0

HIGH_VOLATILITY = Decimal("2.0")
LOW_LIQUIDITY = Decimal("2.0")  # sales per day
NEAR_LOW_PCT = Decimal("5.0")

VOLATILITY_WEIGHT = Decimal("3.0")
NEAR_LOW_WEIGHT = Decimal("2.0")
LIQUIDITY_WEIGHT = Decimal("2.0")
CONCENTRATION_WEIGHT = Decimal("1.5")
INSUFFICIENT_DATA_WEIGHT = Decimal("2.0")

_TWO_PLACES = Decimal("0.01")
_ONE_PLACE = Decimal("0.1")


class RiskLevel(str, Enum):
    MINIMAL = "MINIMAL"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


def risk_level(score: float) -> RiskLevel:
    if score >= 8.0:
        return RiskLevel.CRITICAL
    if score >= 6.0:
        return RiskLevel.HIGH
    if score >= 4.0:
        return RiskLevel.MEDIUM
    if score >= 2.0:
        return RiskLevel.LOW
    return RiskLevel.MINIMAL


def is_acceptable(score: float, threshold: float = DEFAULT_THRESHOLD) -> bool:
    return score <= threshold


class RiskAssessment(BaseModel):
    """Score plus the per-factor contributions behind it."""

    item_name: str
    score: float
    level: RiskLevel
    acceptable: bool
    factors: dict[str, float] = Field(default_factory=dict)
    reason: str = ""

    model_config = {"frozen": True}


def _ratio(numerator: Decimal, denominator: Decimal) -> Decimal:
    return (numerator / denominator).quantize(_TWO_PLACES, rounding=ROUND_DOWN)


class RiskScorer:
    """Additive risk model over pre-computed market statistics.

    Factors (each individually capped, the total capped at 10):
        volatility      std dev >= 2.0 adds min(3 × sd/2, 6)
        near_30d_low    price within 5 % of the 30-day low adds 2
        low_liquidity   < 2 sales/day adds min(2 × 2/v, 4); unknown or zero velocity adds 2
        concentration   1.5 per open position in the same item
        insufficient    fewer than 10 sales in 30 days adds 2

    Missing statistics score 10.0: no data is worst-case risk.
    """

    def __init__(self, store: TradingStore, threshold: float = DEFAULT_THRESHOLD) -> None:
        self._store = store
        self._threshold = threshold

    @property
    def threshold(self) -> float:
        return self._threshold

    def score(self, item_name: str, current_price: Decimal) -> float:
        return self.assess(item_name, current_price).score

    def assess(self, item_name: str, current_price: Decimal) -> RiskAssessment:
        stats = self._store.get_market_stats(item_name)
        if stats is None:
            log.warning("risk_no_stats", item=item_name)
            return RiskAssessment(
                item_name=item_name,
                score=float(MAX_SCORE),
                level=RiskLevel.CRITICAL,
                acceptable=is_acceptable(float(MAX_SCORE), self._threshold),
                reason="no statistics available",
            )

        holdings = self._store.count_open_positions(item_name)
        factors = {
            "volatility": self._volatility(stats),
            "near_30d_low": self._near_low(stats, current_price),
            "low_liquidity": self._liquidity(stats),
            "concentration": CONCENTRATION_WEIGHT * holdings,
            "insufficient_data": (
                Decimal("0") if stats.has_reliable_data else INSUFFICIENT_DATA_WEIGHT
            ),
        }
        total = min(sum(factors.values(), Decimal("0")), MAX_SCORE)
        score = float(total.quantize(_ONE_PLACE, rounding=ROUND_HALF_UP))
        contributing = {name: float(value) for name, value in factors.items() if value > 0}

        log.debug(
            "risk_scored",
            item=item_name,
            price=str(current_price),
            score=score,
            factors=contributing,
        )
        return RiskAssessment(
            item_name=item_name,
            score=score,
            level=risk_level(score),
            acceptable=is_acceptable(score, self._threshold),
            factors=contributing,
        )

    @staticmethod
    def _volatility(stats: MarketStats) -> Decimal:
        volatility = stats.price_volatility
        if volatility is None or volatility < HIGH_VOLATILITY:
            return Decimal("0")
        multiplier = _ratio(volatility, HIGH_VOLATILITY)
        return min(VOLATILITY_WEIGHT * multiplier, VOLATILITY_WEIGHT * 2)

    @staticmethod
    def _near_low(stats: MarketStats, current_price: Decimal) -> Decimal:
        low = stats.min_price_30d
        if low is None or low == 0:
            return Decimal("0")
        above_low = (current_price - low) / low * 100
        if above_low <= NEAR_LOW_PCT:
            return NEAR_LOW_WEIGHT
        return Decimal("0")

    @staticmethod
    def _liquidity(stats: MarketStats) -> Decimal:
        velocity = stats.avg_sales_per_day
        if velocity is None or velocity <= 0:
            return LIQUIDITY_WEIGHT
        if velocity < LOW_LIQUIDITY:
            return min(LIQUIDITY_WEIGHT * _ratio(LOW_LIQUIDITY, velocity), LIQUIDITY_WEIGHT * 2)
        return Decimal("0")
