"""Tests for CLI entry point."""

from __future__ import annotations

import json
from decimal import Decimal
from pathlib import Path  # noqa: TCH003
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from skintrader.cli import _tick, build_parser, main
from skintrader.errors import ApiError
from skintrader.models.budget import BudgetState, TradingState
from skintrader.scanner import ScanSummary


class TestParser:
    def test_requires_command(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_scan_buy_options(self) -> None:
        args = build_parser().parse_args(
            ["scan-buy", "--dry-run", "--item", "AK-47 | Redline (Field-Tested)", "--tier", "2"]
        )
        assert args.command == "scan-buy"
        assert args.dry_run is True
        assert args.item == "AK-47 | Redline (Field-Tested)"
        assert args.tier == 2
        assert args.limit is None

    def test_scan_buy_rejects_unknown_tier(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args(["scan-buy", "--tier", "9"])

    def test_scan_sell_status(self) -> None:
        args = build_parser().parse_args(["scan-sell", "--status", "listed"])
        assert args.status == "listed"
        assert args.dry_run is False

    def test_scan_sell_rejects_sold_status(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args(["scan-sell", "--status", "sold"])

    def test_work_defaults(self) -> None:
        args = build_parser().parse_args(["work"])
        assert args.interval == 300.0
        assert args.concurrency is None

    def test_global_options(self) -> None:
        args = build_parser().parse_args(
            ["--config-dir", "/etc/skintrader", "--env", "prod", "refresh-balance"]
        )
        assert args.config_dir == "/etc/skintrader"
        assert args.env == "prod"


def _fake_app() -> MagicMock:
    app = MagicMock()
    app.close = AsyncMock()
    app.config.get.side_effect = lambda key, default=None: default
    app.ledger.refresh_balance = AsyncMock(
        return_value=BudgetState(
            balance=Decimal("250.00"),
            trading_state=TradingState.NORMAL,
            hard_floor=Decimal("10.00"),
            soft_floor=Decimal("12.00"),
        )
    )
    app.reconciler.reconcile = AsyncMock(return_value=2)
    app.buy_scanner.scan = AsyncMock(return_value=ScanSummary(dry_run=True))
    app.sell_scanner.scan = AsyncMock(return_value=ScanSummary())
    return app


class TestMain:
    def test_missing_config_exits_2(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        code = main(["--config-dir", str(tmp_path / "nowhere"), "refresh-balance"])
        assert code == 2
        assert "Configuration error" in capsys.readouterr().err

    def test_refresh_balance_prints_state(
        self, config_dir: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        app = _fake_app()
        with patch("skintrader.app.build_app", return_value=app):
            code = main(["--config-dir", str(config_dir), "refresh-balance"])
        assert code == 0
        payload = json.loads(capsys.readouterr().out)
        assert payload["balance"] == "250.00"
        app.close.assert_awaited_once()

    def test_dry_run_scan_does_not_drain(
        self, config_dir: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        app = _fake_app()
        with patch("skintrader.app.build_app", return_value=app):
            code = main(["--config-dir", str(config_dir), "scan-buy", "--dry-run", "--tier", "1"])
        assert code == 0
        kwargs = app.buy_scanner.scan.await_args.kwargs
        assert kwargs["dry_run"] is True
        assert kwargs["limit"] == 50
        app.worker_pool.assert_not_called()
        assert json.loads(capsys.readouterr().out)["dry_run"] is True

    def test_trading_error_exits_1(
        self, config_dir: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        app = _fake_app()
        app.reconciler.reconcile.side_effect = ApiError("marketplace down")
        with patch("skintrader.app.build_app", return_value=app):
            code = main(["--config-dir", str(config_dir), "reconcile-sales"])
        assert code == 1
        assert "marketplace down" in capsys.readouterr().err
        app.close.assert_awaited_once()


@pytest.mark.asyncio()
async def test_tick_order() -> None:
    app = _fake_app()
    calls: list[str] = []

    def record(name: str) -> Any:
        async def _inner(*args: Any, **kwargs: Any) -> None:
            calls.append(name)

        return _inner

    app.ledger.refresh_balance.side_effect = record("balance")
    app.reconciler.reconcile.side_effect = record("reconcile")
    app.sell_scanner.scan.side_effect = record("sell")
    app.buy_scanner.scan.side_effect = record("buy")

    await _tick(app)

    assert calls == ["balance", "reconcile", "sell", "buy"]
