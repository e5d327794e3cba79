"""Shared test fixtures."""

from __future__ import annotations

from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path  # noqa: TCH003
from unittest.mock import AsyncMock

import pytest

from skintrader.config.loader import ConfigLoader
from skintrader.core.logging import configure_logging
from skintrader.data.store import InMemoryTradingStore
from skintrader.models.inventory import Position
from skintrader.models.market import Listing, MarketStats, Tier, WhitelistEntry
from skintrader.risk.budget_ledger import BudgetLedger
from skintrader.risk.reservations import InMemoryReservationStore

NOW = datetime(2026, 3, 2, 12, 0, 0, tzinfo=UTC)
ITEM = "AK-47 | Redline (Field-Tested)"


@pytest.fixture()
def now() -> datetime:
    return NOW


@pytest.fixture()
def config_dir(tmp_path: Path) -> Path:
    """Create a temp config directory with default.toml."""
    config = tmp_path / "config"
    config.mkdir()

    default_toml = config / "default.toml"
    default_toml.write_text(
        f"""\
[budget]
hard_floor = "10.00"
soft_floor = "12.00"
max_risk_per_trade = "0.05"
max_total_exposure = "0.70"
min_reserve_pct = "0.20"
balance_max_age_seconds = 300
reservation_ttl_seconds = 900

[risk]
max_score = 7.0

[buy]
fee_rate = "0.15"
min_times_reached = 3
viability_days = 30
conservative_margin_boost = "5"
conservative_size_factor = "0.5"
scan_limit = 50

[sell]
min_margin_pct = "3.0"
max_hold_days = 7
stop_loss_pct = "10.0"
listed_reprice_days = 3
listed_cut_loss_days = 5
significant_gap = "0.50"
undercut = "0.01"

[circuit_breaker]
failure_threshold = 10
recovery_timeout_seconds = 300

[rate_limiter]
max_requests = 30
window_seconds = 60
min_interval_seconds = 0.1

[api]
base_url = "https://api.skinbaron.test"
max_retries = 3
retry_delay_seconds = 1.0
timeout_seconds = 10

[queue]
max_retries = 3
retry_delay_seconds = 1.0
retry_multiplier = 2.0

[workers]
concurrency = 4

[stats]
stale_after_hours = 12

[audit]
log_dir = "{(tmp_path / "logs").as_posix()}"
"""
    )
    return config


@pytest.fixture()
def config_loader(config_dir: Path) -> ConfigLoader:
    loader = ConfigLoader(config_dir=config_dir, env="test")
    loader.load()
    return loader


@pytest.fixture()
def store() -> InMemoryTradingStore:
    return InMemoryTradingStore()


@pytest.fixture()
def fake_api() -> AsyncMock:
    """Marketplace double: every endpoint is an AsyncMock with an empty/neutral answer."""
    api = AsyncMock()
    api.get_balance.return_value = Decimal("1000.00")
    api.search.return_value = []
    api.buy_items.return_value = {"itemsBought": [{"saleId": "s-1"}], "balance": "990.00"}
    api.list_items.return_value = [{"success": True}]
    api.edit_price.return_value = [{"success": True}]
    api.get_inventory.return_value = []
    api.get_sales_history.return_value = []
    api.get_my_sales.return_value = []
    return api


@pytest.fixture()
def reservations() -> InMemoryReservationStore:
    return InMemoryReservationStore()


@pytest.fixture()
def ledger(
    store: InMemoryTradingStore,
    reservations: InMemoryReservationStore,
    fake_api: AsyncMock,
) -> BudgetLedger:
    """Ledger with a fresh €1000.00 balance (normal trading state)."""
    ledger = BudgetLedger(store, reservations, api=fake_api, clock=lambda: NOW)
    ledger.set_balance(Decimal("1000.00"), NOW)
    return ledger


@pytest.fixture()
def whitelist_entry() -> WhitelistEntry:
    return WhitelistEntry(
        name=ITEM,
        tier=Tier.ONE,
        min_discount_pct=Decimal("20.00"),
        min_spread_pct=Decimal("5.00"),
        target_profit_pct=Decimal("10.00"),
        max_holdings=3,
    )


@pytest.fixture()
def market_stats() -> MarketStats:
    """Liquid, calm market: no risk factor fires."""
    return MarketStats(
        item_name=ITEM,
        avg_price_7d=Decimal("35.50"),
        avg_price_30d=Decimal("35.00"),
        median_price_30d=Decimal("35.00"),
        min_price_30d=Decimal("25.00"),
        max_price_30d=Decimal("40.00"),
        price_volatility=Decimal("1.20"),
        sales_count_7d=20,
        sales_count_30d=90,
        avg_sales_per_day=Decimal("3.00"),
        last_sale_price=Decimal("35.00"),
        last_sale_date=date(2026, 3, 1),
        calculated_at=NOW,
    )


@pytest.fixture()
def listing() -> Listing:
    return Listing(sale_id="s-1", item_name=ITEM, price=Decimal("28.00"), next_price=Decimal("30.00"))


@pytest.fixture()
def holding_position() -> Position:
    return Position(
        sale_id="s-1",
        item_name=ITEM,
        purchase_price=Decimal("10.00"),
        purchase_date=datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC),
        target_sell_price=Decimal("12.94"),
    )


@pytest.fixture(autouse=True)
def _fresh_log_stream() -> None:
    """Rebind structlog to the current sys.stderr.

    The print logger captures the stream object at configure time; pytest swaps
    and closes its capture streams between tests, so a logger configured in an
    earlier test would otherwise write to a closed file.
    """
    configure_logging("test")
