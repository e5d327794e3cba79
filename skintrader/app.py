"""Component wiring: build every engine part from one ConfigLoader."""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Any

import redis

from skintrader.core.logging import get_logger
from skintrader.data.postgres_store import PostgresTradingStore
from skintrader.data.skinbaron_client import DEFAULT_BASE_URL, SkinBaronClient
from skintrader.data.store import InMemoryTradingStore
from skintrader.engine.buy_pipeline import BuyDecisionPipeline, BuySettings
from skintrader.engine.sell_pipeline import SellDecisionPipeline, SellSettings
from skintrader.engine.stats_calculator import SalesHistoryFetcher, StatsCalculator
from skintrader.execution.audit import AlertRecorder, AuditLogger
from skintrader.execution.buy_executor import BuyExecutor
from skintrader.execution.circuit_breaker import CircuitBreaker
from skintrader.execution.queue import InMemoryOpportunityQueue
from skintrader.execution.rate_limiter import FixedWindowRateLimiter
from skintrader.execution.sell_executor import SaleReconciler, SellExecutor
from skintrader.execution.worker import OpportunityHandler, WorkerPool
from skintrader.models.market import WhitelistEntry
from skintrader.risk.budget_ledger import BudgetLedger, BudgetLimits
from skintrader.risk.reservations import InMemoryReservationStore, RedisReservationStore
from skintrader.risk.risk_scorer import RiskScorer
from skintrader.scanner import BuyScanner, SellScanner, StatsRefresher

if TYPE_CHECKING:
    from skintrader.config.loader import ConfigLoader
    from skintrader.interfaces import MarketplaceApi, ReservationStore, TradingStore

logger = get_logger(__name__)


def budget_limits(config: ConfigLoader) -> BudgetLimits:
    return BudgetLimits(
        hard_floor=config.get_decimal("budget.hard_floor", "10.00"),
        soft_floor=config.get_decimal("budget.soft_floor", "12.00"),
        max_risk_per_trade=config.get_decimal("budget.max_risk_per_trade", "0.05"),
        max_total_exposure=config.get_decimal("budget.max_total_exposure", "0.70"),
        min_reserve_pct=config.get_decimal("budget.min_reserve_pct", "0.20"),
        balance_max_age_seconds=int(config.get("budget.balance_max_age_seconds", 300)),
        reservation_ttl_seconds=int(config.get("budget.reservation_ttl_seconds", 900)),
    )


def buy_settings(config: ConfigLoader) -> BuySettings:
    return BuySettings(
        fee_rate=config.get_decimal("buy.fee_rate", "0.15"),
        min_times_reached=int(config.get("buy.min_times_reached", 3)),
        viability_days=int(config.get("buy.viability_days", 30)),
        max_risk_score=float(config.get("risk.max_score", 7.0)),
        conservative_margin_boost=config.get_decimal("buy.conservative_margin_boost", "5"),
        conservative_size_factor=config.get_decimal("buy.conservative_size_factor", "0.5"),
    )


def sell_settings(config: ConfigLoader) -> SellSettings:
    return SellSettings(
        fee_rate=config.get_decimal("buy.fee_rate", "0.15"),
        min_margin_pct=config.get_decimal("sell.min_margin_pct", "3.0"),
        max_hold_days=int(config.get("sell.max_hold_days", 7)),
        stop_loss_pct=config.get_decimal("sell.stop_loss_pct", "10.0"),
        listed_reprice_days=int(config.get("sell.listed_reprice_days", 3)),
        listed_cut_loss_days=int(config.get("sell.listed_cut_loss_days", 5)),
        significant_gap=config.get_decimal("sell.significant_gap", "0.50"),
        undercut=config.get_decimal("sell.undercut", "0.01"),
    )


def whitelist_from_config(config: ConfigLoader) -> list[WhitelistEntry]:
    """``[[whitelist.items]]`` tables, for stores that start empty."""
    return [WhitelistEntry.model_validate(raw) for raw in config.get("whitelist.items", [])]


def _build_store(config: ConfigLoader) -> TradingStore:
    dsn = config.get("database.dsn") or os.environ.get("DATABASE_URL")
    if not dsn:
        logger.warning("store_in_memory", reason="no database.dsn configured")
        return InMemoryTradingStore()

    store = PostgresTradingStore(dsn)
    store.open()
    store.create_tables()
    return store


def _redis_client(config: ConfigLoader) -> Any | None:
    url = config.get("redis.url") or os.environ.get("REDIS_URL")
    if not url:
        return None
    return redis.Redis.from_url(url, decode_responses=True, socket_timeout=5.0)


@dataclass
class Application:
    """Every long-lived component, built once per process."""

    config: ConfigLoader
    store: TradingStore
    reservations: ReservationStore
    api: MarketplaceApi
    circuit_breaker: CircuitBreaker
    audit: AuditLogger
    alerts: AlertRecorder
    ledger: BudgetLedger
    scorer: RiskScorer
    buy_pipeline: BuyDecisionPipeline
    sell_pipeline: SellDecisionPipeline
    queue: InMemoryOpportunityQueue
    buy_executor: BuyExecutor
    sell_executor: SellExecutor
    reconciler: SaleReconciler
    handler: OpportunityHandler
    buy_scanner: BuyScanner
    sell_scanner: SellScanner
    stats_refresher: StatsRefresher

    def worker_pool(self, concurrency: int | None = None) -> WorkerPool:
        workers = concurrency or int(self.config.get("workers.concurrency", 4))
        return WorkerPool(self.queue, self.handler, workers)

    async def close(self) -> None:
        await self.queue.close()
        close_api = getattr(self.api, "close", None)
        if close_api is not None:
            await close_api()
        close_store = getattr(self.store, "close", None)
        if close_store is not None:
            close_store()
        logger.info("application_closed")


def build_app(
    config: ConfigLoader,
    *,
    api: MarketplaceApi | None = None,
    store: TradingStore | None = None,
) -> Application:
    """Wire components from config. ``api`` and ``store`` may be injected."""
    config.validate_ranges()
    store = store if store is not None else _build_store(config)
    for entry in whitelist_from_config(config):
        store.save_whitelist_entry(entry)

    redis_client = _redis_client(config)
    reservations: ReservationStore
    if redis_client is not None:
        reservations = RedisReservationStore(client=redis_client)
    else:
        reservations = InMemoryReservationStore()

    audit = AuditLogger(Path(str(config.get("audit.log_dir", "logs"))) / "audit.jsonl")
    alerts = AlertRecorder(store, audit)

    breaker = CircuitBreaker(
        failure_threshold=int(config.get("circuit_breaker.failure_threshold", 10)),
        recovery_timeout=float(config.get("circuit_breaker.recovery_timeout_seconds", 300)),
        redis_client=redis_client,
    )
    if api is None:
        api = SkinBaronClient(
            base_url=str(config.get("api.base_url", DEFAULT_BASE_URL)),
            circuit_breaker=breaker,
            rate_limiter=FixedWindowRateLimiter(
                max_requests=int(config.get("rate_limiter.max_requests", 30)),
                window_seconds=float(config.get("rate_limiter.window_seconds", 60)),
                min_interval=float(config.get("rate_limiter.min_interval_seconds", 0.1)),
            ),
            max_retries=int(config.get("api.max_retries", 3)),
            retry_delay=float(config.get("api.retry_delay_seconds", 1.0)),
            timeout=float(config.get("api.timeout_seconds", 10)),
        )

    ledger = BudgetLedger(store, reservations, budget_limits(config), api=api, alerts=alerts)
    scorer = RiskScorer(store, threshold=float(config.get("risk.max_score", 7.0)))
    buy = buy_settings(config)
    sell = sell_settings(config)
    buy_pipeline = BuyDecisionPipeline(store, ledger, scorer, buy)
    sell_pipeline = SellDecisionPipeline(sell)

    queue = InMemoryOpportunityQueue(
        store,
        max_retries=int(config.get("queue.max_retries", 3)),
        retry_delay=float(config.get("queue.retry_delay_seconds", 1.0)),
        retry_multiplier=float(config.get("queue.retry_multiplier", 2.0)),
    )
    buy_executor = BuyExecutor(
        api,
        store,
        ledger,
        conservative_size_factor=buy.conservative_size_factor,
        alerts=alerts,
        audit=audit,
    )
    sell_executor = SellExecutor(api, store, alerts=alerts)
    reconciler = SaleReconciler(
        api, store, fee_rate=buy.fee_rate, ledger=ledger, alerts=alerts, audit=audit
    )
    handler = OpportunityHandler(queue, buy_executor, sell_executor, audit=audit)

    stats_calculator = StatsCalculator(
        store, stale_after=timedelta(hours=float(config.get("stats.stale_after_hours", 12)))
    )
    search_limit = int(config.get("buy.scan_limit", 50))

    logger.info(
        "application_built",
        env=config.env,
        store=type(store).__name__,
        reservations=type(reservations).__name__,
        hard_floor=str(ledger.limits.hard_floor),
        fee_rate=str(buy.fee_rate),
        max_risk_score=buy.max_risk_score,
        whitelist=len(store.list_whitelist()),
        min_margin_pct=str(sell.min_margin_pct),
        undercut=str(sell.undercut),
    )
    return Application(
        config=config,
        store=store,
        reservations=reservations,
        api=api,
        circuit_breaker=breaker,
        audit=audit,
        alerts=alerts,
        ledger=ledger,
        scorer=scorer,
        buy_pipeline=buy_pipeline,
        sell_pipeline=sell_pipeline,
        queue=queue,
        buy_executor=buy_executor,
        sell_executor=sell_executor,
        reconciler=reconciler,
        handler=handler,
        buy_scanner=BuyScanner(api, store, buy_pipeline, queue, audit=audit),
        sell_scanner=SellScanner(
            api, store, sell_pipeline, queue, audit=audit, search_limit=search_limit
        ),
        stats_refresher=StatsRefresher(store, SalesHistoryFetcher(api, store), stats_calculator),
    )
