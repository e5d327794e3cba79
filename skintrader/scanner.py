"""Scheduled scans: find buy/sell opportunities and refresh market statistics.

Scans run once per schedule tick. They only evaluate and publish; execution
happens in the worker pool that drains the queue.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from skintrader.core.logging import get_logger
from skintrader.errors import CircuitOpenError, TradingError
from skintrader.execution.queue import to_message
from skintrader.models.inventory import Position, PositionStatus

if TYPE_CHECKING:
    from skintrader.engine.buy_pipeline import BuyDecisionPipeline
    from skintrader.engine.sell_pipeline import SellDecisionPipeline
    from skintrader.engine.stats_calculator import SalesHistoryFetcher, StatsCalculator
    from skintrader.execution.audit import AuditLogger
    from skintrader.interfaces import MarketplaceApi, OpportunityQueue, TradingStore
    from skintrader.models.market import Listing, Tier

logger = get_logger(__name__)


@dataclass
class ScanSummary:
    """What one scan looked at and what it produced."""

    items: int = 0
    evaluated: int = 0
    opportunities: int = 0
    published: int = 0
    rejections: Counter[str] = field(default_factory=Counter)
    errors: dict[str, str] = field(default_factory=dict)
    dry_run: bool = False

    def as_dict(self) -> dict[str, Any]:
        return {
            "items": self.items,
            "evaluated": self.evaluated,
            "opportunities": self.opportunities,
            "published": self.published,
            "rejections": dict(self.rejections),
            "errors": dict(self.errors),
            "dry_run": self.dry_run,
        }


def with_next_prices(listings: list[Listing]) -> list[Listing]:
    """Sort by price and fill each listing's next-cheapest price from the same snapshot."""
    ordered = sorted(listings, key=lambda listing: listing.price)
    filled: list[Listing] = []
    for i, listing in enumerate(ordered):
        if listing.next_price is None and i + 1 < len(ordered):
            listing = listing.with_next_price(ordered[i + 1].price)
        filled.append(listing)
    return filled


class BuyScanner:
    """Searches whitelisted items and publishes accepted listings."""

    def __init__(
        self,
        api: MarketplaceApi,
        store: TradingStore,
        pipeline: BuyDecisionPipeline,
        queue: OpportunityQueue,
        *,
        audit: AuditLogger | None = None,
    ) -> None:
        self._api = api
        self._store = store
        self._pipeline = pipeline
        self._queue = queue
        self._audit = audit

    async def scan(
        self,
        item: str | None = None,
        tier: Tier | None = None,
        limit: int = 50,
        dry_run: bool = False,
    ) -> ScanSummary:
        summary = ScanSummary(dry_run=dry_run)
        if item is not None:
            names = [item]
        else:
            names = [entry.name for entry in self._store.list_whitelist(tier=tier)]
        logger.info("buy_scan_started", items=len(names), dry_run=dry_run)

        for name in names:
            summary.items += 1
            try:
                listings = await self._api.search(name, limit)
            except CircuitOpenError as exc:
                summary.errors[name] = str(exc)
                logger.warning("buy_scan_aborted", item=name, error=str(exc))
                break
            except TradingError as exc:
                summary.errors[name] = str(exc)
                logger.warning("buy_scan_item_failed", item=name, error=str(exc))
                continue

            for listing in with_next_prices(listings):
                summary.evaluated += 1
                decision = self._pipeline.evaluate(listing)
                if self._audit is not None:
                    self._audit.log_buy_decision(decision)
                if decision.rejection is not None:
                    summary.rejections[decision.rejection.gate] += 1
                    continue
                summary.opportunities += 1
                if not dry_run and decision.opportunity is not None:
                    if await self._queue.publish(to_message(decision.opportunity)):
                        summary.published += 1

        logger.info("buy_scan_finished", **summary.as_dict())
        return summary


class SellScanner:
    """Evaluates owned positions against current listings, one search per item."""

    def __init__(
        self,
        api: MarketplaceApi,
        store: TradingStore,
        pipeline: SellDecisionPipeline,
        queue: OpportunityQueue,
        *,
        audit: AuditLogger | None = None,
        search_limit: int = 50,
    ) -> None:
        self._api = api
        self._store = store
        self._pipeline = pipeline
        self._queue = queue
        self._audit = audit
        self._search_limit = search_limit

    async def scan(
        self, status: PositionStatus | None = None, dry_run: bool = False
    ) -> ScanSummary:
        summary = ScanSummary(dry_run=dry_run)
        statuses = [status] if status else [PositionStatus.HOLDING, PositionStatus.LISTED]
        by_item: dict[str, list[Position]] = defaultdict(list)
        for position in self._store.list_positions(statuses):
            by_item[position.item_name].append(position)
        logger.info("sell_scan_started", items=len(by_item), dry_run=dry_run)

        for name, positions in by_item.items():
            summary.items += 1
            try:
                listings = await self._api.search(name, self._search_limit)
            except CircuitOpenError as exc:
                summary.errors[name] = str(exc)
                logger.warning("sell_scan_aborted", item=name, error=str(exc))
                break
            except TradingError as exc:
                summary.errors[name] = str(exc)
                logger.warning("sell_scan_item_failed", item=name, error=str(exc))
                continue

            for position in positions:
                summary.evaluated += 1
                competing = [
                    listing
                    for listing in listings
                    if position.item_id is None or listing.sale_id != position.item_id
                ]
                decision = self._pipeline.evaluate(position, competing)
                if self._audit is not None:
                    self._audit.log_sell_decision(decision)
                if decision.opportunity is None:
                    summary.rejections["hold"] += 1
                    continue
                summary.opportunities += 1
                if not dry_run and await self._queue.publish(to_message(decision.opportunity)):
                    summary.published += 1

        logger.info("sell_scan_finished", **summary.as_dict())
        return summary


class StatsRefresher:
    """Fetches sales history and recalculates stats for the active whitelist."""

    def __init__(
        self,
        store: TradingStore,
        fetcher: SalesHistoryFetcher,
        calculator: StatsCalculator,
    ) -> None:
        self._store = store
        self._fetcher = fetcher
        self._calculator = calculator

    async def refresh(self, item: str | None = None) -> ScanSummary:
        summary = ScanSummary()
        names = [item] if item else [entry.name for entry in self._store.list_whitelist()]
        for name in names:
            summary.items += 1
            try:
                await self._fetcher.fetch(name)
            except CircuitOpenError as exc:
                summary.errors[name] = str(exc)
                logger.warning("stats_refresh_aborted", item=name, error=str(exc))
                break
            except TradingError as exc:
                summary.errors[name] = str(exc)
                logger.warning("stats_fetch_failed", item=name, error=str(exc))
                continue
            self._calculator.calculate(name)
            summary.evaluated += 1
        logger.info("stats_refreshed", items=summary.items, calculated=summary.evaluated)
        return summary
