"""Tests for alert variants."""

from __future__ import annotations

from decimal import Decimal

import pydantic
import pytest

from skintrader.models.alerts import (
    ApiErrorAlert,
    BalanceFloorAlert,
    CircuitOpenAlert,
    ProfitableTradeAlert,
    Severity,
    alert_from_dict,
)
from skintrader.models.budget import TradingState


class TestBalanceFloorAlert:
    def test_lockdown_is_critical(self) -> None:
        alert = BalanceFloorAlert(
            state=TradingState.LOCKDOWN, balance=Decimal("9.50"), floor=Decimal("10.00")
        )
        assert alert.severity is Severity.CRITICAL
        assert alert.title.startswith("LOCKDOWN")
        assert "hard floor is €10.00" in alert.message

    def test_emergency_is_high(self) -> None:
        alert = BalanceFloorAlert(
            state=TradingState.EMERGENCY, balance=Decimal("11.00"), floor=Decimal("12.00")
        )
        assert alert.severity is Severity.HIGH
        assert "soft floor" in alert.message


class TestOtherAlerts:
    def test_profitable_trade(self) -> None:
        alert = ProfitableTradeAlert(
            item_name="x", profit=Decimal("1.00"), profit_pct=Decimal("10.00")
        )
        assert alert.severity is Severity.LOW
        assert alert.message == "Sold x with €1.00 profit (10.00%)"

    def test_api_error(self) -> None:
        alert = ApiErrorAlert(endpoint="BuyItems", error="boom")
        assert alert.severity is Severity.MEDIUM
        assert "BuyItems" in alert.message

    def test_circuit_open(self) -> None:
        assert CircuitOpenAlert().severity is Severity.CRITICAL


class TestAlertFromDict:
    def test_round_trip_by_kind(self) -> None:
        alert = ApiErrorAlert(endpoint="Search", error="timeout")
        rebuilt = alert_from_dict(alert.model_dump(mode="json"))
        assert isinstance(rebuilt, ApiErrorAlert)
        assert rebuilt.endpoint == "Search"

    def test_discriminates_circuit_breaker(self) -> None:
        assert isinstance(alert_from_dict({"kind": "circuit_breaker"}), CircuitOpenAlert)

    def test_unknown_kind(self) -> None:
        with pytest.raises(pydantic.ValidationError):
            alert_from_dict({"kind": "weather"})
