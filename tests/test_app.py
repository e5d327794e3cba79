"""Tests for component wiring."""

from __future__ import annotations

from decimal import Decimal
from pathlib import Path  # noqa: TCH003
from unittest.mock import AsyncMock

import pytest

from skintrader.app import budget_limits, build_app, sell_settings, whitelist_from_config
from skintrader.config.loader import ConfigError, ConfigLoader
from skintrader.data.store import InMemoryTradingStore
from skintrader.models.market import Tier
from skintrader.risk.reservations import InMemoryReservationStore

WHITELIST_TOML = """
[[whitelist.items]]
name = "AK-47 | Redline (Field-Tested)"
tier = 1
min_discount_pct = "20.00"
max_holdings = 2

[[whitelist.items]]
name = "AWP | Asiimov (Field-Tested)"
tier = 2
"""


@pytest.fixture(autouse=True)
def _no_external_services(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("REDIS_URL", raising=False)


class TestSettingsFromConfig:
    def test_budget_limits(self, config_loader: ConfigLoader) -> None:
        limits = budget_limits(config_loader)
        assert limits.hard_floor == Decimal("10.00")
        assert limits.soft_floor == Decimal("12.00")
        assert limits.reservation_ttl_seconds == 900

    def test_sell_settings_share_fee_rate(self, config_loader: ConfigLoader) -> None:
        settings = sell_settings(config_loader)
        assert settings.fee_rate == Decimal("0.15")
        assert settings.undercut == Decimal("0.01")

    def test_whitelist_from_config(self, config_dir: Path) -> None:
        with (config_dir / "default.toml").open("a") as fh:
            fh.write(WHITELIST_TOML)
        entries = whitelist_from_config(ConfigLoader(config_dir, env="test"))
        assert [e.tier for e in entries] == [Tier.ONE, Tier.TWO]
        assert entries[0].min_discount_pct == Decimal("20.00")
        assert entries[0].max_holdings == 2


class TestBuildApp:
    def test_wires_injected_collaborators(
        self,
        config_loader: ConfigLoader,
        fake_api: AsyncMock,
        store: InMemoryTradingStore,
    ) -> None:
        app = build_app(config_loader, api=fake_api, store=store)
        assert app.api is fake_api
        assert app.store is store
        assert isinstance(app.reservations, InMemoryReservationStore)
        assert app.ledger.limits.hard_floor == Decimal("10.00")
        assert app.audit.log_path.name == "audit.jsonl"
        assert app.worker_pool(2)._concurrency == 2

    def test_seeds_whitelist(
        self, config_dir: Path, fake_api: AsyncMock, store: InMemoryTradingStore
    ) -> None:
        with (config_dir / "default.toml").open("a") as fh:
            fh.write(WHITELIST_TOML)
        build_app(ConfigLoader(config_dir, env="test"), api=fake_api, store=store)
        assert len(store.list_whitelist()) == 2

    def test_no_dsn_falls_back_to_memory(
        self, config_loader: ConfigLoader, fake_api: AsyncMock
    ) -> None:
        app = build_app(config_loader, api=fake_api)
        assert isinstance(app.store, InMemoryTradingStore)

    def test_invalid_ranges_refused(
        self, config_dir: Path, fake_api: AsyncMock, store: InMemoryTradingStore
    ) -> None:
        path = config_dir / "default.toml"
        path.write_text(path.read_text().replace('soft_floor = "12.00"', 'soft_floor = "5.00"'))
        with pytest.raises(ConfigError):
            build_app(ConfigLoader(config_dir, env="test"), api=fake_api, store=store)

    @pytest.mark.asyncio()
    async def test_close(
        self, config_loader: ConfigLoader, fake_api: AsyncMock, store: InMemoryTradingStore
    ) -> None:
        app = build_app(config_loader, api=fake_api, store=store)
        await app.close()
        fake_api.close.assert_awaited_once()
