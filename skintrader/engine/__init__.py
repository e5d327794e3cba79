"""Decision engine — buy/sell pipelines and market statistics."""

from __future__ import annotations

from skintrader.engine.buy_pipeline import BuyDecisionPipeline, BuySettings
from skintrader.engine.sell_pipeline import SellDecisionPipeline, SellSettings
from skintrader.engine.stats_calculator import SalesHistoryFetcher, StatsCalculator

__all__ = [
    "BuyDecisionPipeline",
    "BuySettings",
    "SalesHistoryFetcher",
    "SellDecisionPipeline",
    "SellSettings",
    "StatsCalculator",
]
