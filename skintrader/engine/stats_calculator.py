"""Sales history ingestion and rolling market statistics."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

from skintrader.core.logging import get_logger
from skintrader.core.money import ZERO, money
from skintrader.models.market import MarketStats, Sale

if TYPE_CHECKING:
    from skintrader.interfaces import MarketplaceApi, TradingStore

log = get_logger(__name__)

STALE_AFTER = timedelta(hours=12)
VELOCITY_DAYS = Decimal("30")


class SalesHistoryFetcher:
    """Pulls the 30-day sales feed for an item and stores rows not seen before."""

    def __init__(self, api: MarketplaceApi, store: TradingStore) -> None:
        self._api = api
        self._store = store

    async def fetch(self, item_name: str) -> int:
        sales = await self._api.get_sales_history(item_name)
        inserted = self._store.add_sales(sales)
        log.info(
            "sales_history_fetched",
            item=item_name,
            received=len(sales),
            inserted=inserted,
        )
        return inserted


def _median(prices: Sequence[Decimal]) -> Decimal:
    ordered = sorted(prices)
    mid = len(ordered) // 2
    if len(ordered) % 2:
        return ordered[mid]
    return (ordered[mid - 1] + ordered[mid]) / 2


def _population_stdev(prices: Sequence[Decimal]) -> Decimal | None:
    if len(prices) < 2:
        return None
    mean = sum(prices, ZERO) / len(prices)
    variance = sum(((p - mean) ** 2 for p in prices), ZERO) / len(prices)
    return variance.sqrt()


def _average(prices: Sequence[Decimal]) -> Decimal | None:
    if not prices:
        return None
    return money(sum(prices, ZERO) / len(prices))


class StatsCalculator:
    """Derives MarketStats from stored sales history.

    Pipelines never call this inline; statistics are refreshed on a schedule
    and read back as snapshots.
    """

    def __init__(
        self,
        store: TradingStore,
        *,
        stale_after: timedelta = STALE_AFTER,
        clock: Callable[[], datetime] = lambda: datetime.now(tz=UTC),
    ) -> None:
        self._store = store
        self._stale_after = stale_after
        self._clock = clock

    def calculate(self, item_name: str, now: datetime | None = None) -> MarketStats:
        now = now or self._clock()
        sales_30d = self._store.get_sales(item_name, now - timedelta(days=30))
        cutoff_7d = (now - timedelta(days=7)).date()
        prices_30d = [s.price for s in sales_30d]
        prices_7d = [s.price for s in sales_30d if s.date_sold >= cutoff_7d]
        last = self._last_sale(sales_30d)
        volatility = _population_stdev(prices_30d)

        stats = MarketStats(
            item_name=item_name,
            avg_price_7d=_average(prices_7d),
            avg_price_30d=_average(prices_30d),
            median_price_30d=money(_median(prices_30d)) if prices_30d else None,
            min_price_30d=min(prices_30d) if prices_30d else None,
            max_price_30d=max(prices_30d) if prices_30d else None,
            price_volatility=money(volatility) if volatility is not None else None,
            sales_count_7d=len(prices_7d),
            sales_count_30d=len(prices_30d),
            avg_sales_per_day=(
                money(Decimal(len(prices_30d)) / VELOCITY_DAYS) if prices_30d else None
            ),
            last_sale_price=last.price if last else None,
            last_sale_date=last.date_sold if last else None,
            calculated_at=now,
        )
        self._store.save_market_stats(stats)
        log.info(
            "stats_calculated",
            item=item_name,
            avg_7d=str(stats.avg_price_7d),
            avg_30d=str(stats.avg_price_30d),
            sales_7d=stats.sales_count_7d,
            sales_30d=stats.sales_count_30d,
            volatility=str(stats.price_volatility),
            velocity=str(stats.avg_sales_per_day),
        )
        return stats

    def get_or_calculate(self, item_name: str) -> MarketStats:
        """Stored stats, recalculated when missing or stale."""
        stats = self._store.get_market_stats(item_name)
        if stats is None or self.is_stale(stats):
            return self.calculate(item_name)
        return stats

    def is_stale(self, stats: MarketStats, now: datetime | None = None) -> bool:
        now = now or self._clock()
        return now - stats.calculated_at > self._stale_after

    def quality_score(self, stats: MarketStats, now: datetime | None = None) -> int:
        """0-100: data points (max 50), recency of last sale (max 30), velocity (max 20)."""
        now = now or self._clock()
        score = 0

        points = stats.sales_count_30d
        if points >= 30:
            score += 50
        elif points >= 15:
            score += 35
        elif points >= 10:
            score += 20
        elif points >= 5:
            score += 10

        if stats.last_sale_date is not None:
            days = (now.date() - stats.last_sale_date).days
            if days <= 1:
                score += 30
            elif days <= 3:
                score += 20
            elif days <= 7:
                score += 10

        velocity = stats.avg_sales_per_day
        if velocity is not None:
            if velocity >= 10:
                score += 20
            elif velocity >= 5:
                score += 15
            elif velocity >= 2:
                score += 10
            elif velocity >= 1:
                score += 5

        return min(score, 100)

    @staticmethod
    def _last_sale(sales: Sequence[Sale]) -> Sale | None:
        if not sales:
            return None
        return max(sales, key=lambda s: s.date_sold)
