"""Tests for sales ingestion and rolling statistics."""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from skintrader.data.store import InMemoryTradingStore
from skintrader.engine.stats_calculator import SalesHistoryFetcher, StatsCalculator
from skintrader.models.market import MarketStats, Sale

NOW = datetime(2026, 3, 2, 12, 0, 0, tzinfo=UTC)
ITEM = "AK-47 | Redline (Field-Tested)"


def _sale(day: date, price: str) -> Sale:
    return Sale(item_name=ITEM, price=Decimal(price), date_sold=day, sale_id=day.isoformat())


@pytest.fixture()
def history(store: InMemoryTradingStore) -> InMemoryTradingStore:
    store.add_sales(
        [
            _sale(date(2026, 1, 15), "99.00"),
            _sale(date(2026, 2, 5), "36.00"),
            _sale(date(2026, 2, 10), "34.00"),
            _sale(date(2026, 2, 25), "30.00"),
            _sale(date(2026, 2, 28), "32.00"),
        ]
    )
    return store


@pytest.fixture()
def calculator(history: InMemoryTradingStore) -> StatsCalculator:
    return StatsCalculator(history, clock=lambda: NOW)


class TestStatsCalculator:
    def test_calculate(self, calculator: StatsCalculator) -> None:
        stats = calculator.calculate(ITEM)
        assert stats.sales_count_30d == 4
        assert stats.sales_count_7d == 2
        assert stats.avg_price_30d == Decimal("33.00")
        assert stats.avg_price_7d == Decimal("31.00")
        assert stats.median_price_30d == Decimal("33.00")
        assert stats.min_price_30d == Decimal("30.00")
        assert stats.max_price_30d == Decimal("36.00")
        assert stats.price_volatility == Decimal("2.24")
        assert stats.avg_sales_per_day == Decimal("0.13")
        assert stats.last_sale_price == Decimal("32.00")
        assert stats.last_sale_date == date(2026, 2, 28)
        assert stats.calculated_at == NOW

    def test_calculate_persists(
        self, calculator: StatsCalculator, history: InMemoryTradingStore
    ) -> None:
        stats = calculator.calculate(ITEM)
        assert history.get_market_stats(ITEM) == stats

    def test_no_sales(self, store: InMemoryTradingStore) -> None:
        stats = StatsCalculator(store, clock=lambda: NOW).calculate("empty")
        assert stats.sales_count_30d == 0
        assert stats.avg_price_7d is None
        assert stats.price_volatility is None
        assert stats.avg_sales_per_day is None
        assert not stats.has_reliable_data

    def test_single_sale_has_no_volatility(self, store: InMemoryTradingStore) -> None:
        store.add_sales([_sale(date(2026, 3, 1), "10.00")])
        stats = StatsCalculator(store, clock=lambda: NOW).calculate(ITEM)
        assert stats.price_volatility is None
        assert stats.median_price_30d == Decimal("10.00")

    def test_staleness(self, calculator: StatsCalculator) -> None:
        stats = calculator.calculate(ITEM)
        assert not calculator.is_stale(stats, NOW + timedelta(hours=12))
        assert calculator.is_stale(stats, NOW + timedelta(hours=12, seconds=1))

    def test_get_or_calculate_uses_fresh_snapshot(
        self, calculator: StatsCalculator, history: InMemoryTradingStore, market_stats: MarketStats
    ) -> None:
        history.save_market_stats(market_stats)
        assert calculator.get_or_calculate(ITEM) is market_stats

    def test_get_or_calculate_recomputes_stale(
        self, calculator: StatsCalculator, history: InMemoryTradingStore, market_stats: MarketStats
    ) -> None:
        history.save_market_stats(
            market_stats.model_copy(update={"calculated_at": NOW - timedelta(days=1)})
        )
        assert calculator.get_or_calculate(ITEM).sales_count_30d == 4

    def test_quality_score(self, calculator: StatsCalculator, market_stats: MarketStats) -> None:
        # 90 sales, sold yesterday, 3 per day
        assert calculator.quality_score(market_stats) == 90

    def test_quality_score_empty(self, calculator: StatsCalculator) -> None:
        stats = MarketStats(item_name="x", calculated_at=NOW)
        assert calculator.quality_score(stats) == 0


class TestSalesHistoryFetcher:
    @pytest.mark.asyncio()
    async def test_fetch_deduplicates(
        self, fake_api: AsyncMock, store: InMemoryTradingStore
    ) -> None:
        sales = [_sale(date(2026, 3, 1), "10.00"), _sale(date(2026, 2, 28), "11.00")]
        fake_api.get_sales_history.return_value = sales
        fetcher = SalesHistoryFetcher(fake_api, store)
        assert await fetcher.fetch(ITEM) == 2
        assert await fetcher.fetch(ITEM) == 0
        fake_api.get_sales_history.assert_awaited_with(ITEM)
