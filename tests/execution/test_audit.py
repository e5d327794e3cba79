"""Tests for AuditLogger and AlertRecorder — file output, entry format."""

from __future__ import annotations

import json
from decimal import Decimal
from pathlib import Path  # noqa: TCH003
from typing import Any
from unittest.mock import MagicMock

import pytest

from skintrader.data.store import InMemoryTradingStore
from skintrader.execution.audit import AlertRecorder, AuditLogger
from skintrader.models.alerts import ApiErrorAlert, CircuitOpenAlert
from skintrader.models.inventory import Transaction
from skintrader.models.market import Tier
from skintrader.models.opportunity import (
    BuyDecision,
    BuyOpportunity,
    ExecutionOutcome,
    Rejection,
    SellDecision,
)


@pytest.fixture
def tmp_log(tmp_path: Path) -> Path:
    return tmp_path / "nested" / "audit.jsonl"


@pytest.fixture
def audit(tmp_log: Path) -> AuditLogger:
    return AuditLogger(log_path=str(tmp_log))


def _entries(path: Path) -> list[dict[str, Any]]:
    return [json.loads(line) for line in path.read_text().strip().split("\n")]


def test_creates_parent_directory(audit: AuditLogger, tmp_log: Path) -> None:
    assert tmp_log.parent.is_dir()
    assert audit.log_path == tmp_log


def test_log_accepted_buy_decision(audit: AuditLogger, tmp_log: Path) -> None:
    opp = BuyOpportunity(
        sale_id="s-1",
        item_name="x",
        price=Decimal("28.00"),
        target_sell_price=Decimal("36.24"),
        expected_profit=Decimal("2.80"),
        risk_score=1.5,
        tier=Tier.ONE,
    )
    audit.log_buy_decision(
        BuyDecision(sale_id="s-1", item_name="x", opportunity=opp, notes=("spread_unknown",))
    )
    entry = _entries(tmp_log)[0]
    assert entry["event_type"] == "buy_decision"
    assert entry["accepted"] is True
    assert entry["target_sell_price"] == "36.24"
    assert entry["notes"] == ["spread_unknown"]
    assert "timestamp" in entry


def test_log_rejected_buy_decision(audit: AuditLogger, tmp_log: Path) -> None:
    audit.log_buy_decision(
        BuyDecision(
            sale_id="s-1", item_name="x", rejection=Rejection(gate="discount", reason="too small")
        )
    )
    entry = _entries(tmp_log)[0]
    assert entry["accepted"] is False
    assert entry["gate"] == "discount"


def test_log_sell_hold(audit: AuditLogger, tmp_log: Path) -> None:
    audit.log_sell_decision(SellDecision(sale_id="s-1", hold_reason="still competitive"))
    entry = _entries(tmp_log)[0]
    assert entry["act"] is False
    assert entry["reason"] == "still competitive"


def test_log_transaction(audit: AuditLogger, tmp_log: Path) -> None:
    tx = Transaction.buy("x", "s-1", Decimal("28.00"), Decimal("1000.00")).failed("sold out")
    audit.log_transaction(tx)
    entry = _entries(tmp_log)[0]
    assert entry["transaction_id"] == str(tx.id)
    assert entry["type"] == "buy"
    assert entry["status"] == "failed"
    assert entry["error"] == "sold out"
    assert entry["balance_after"] == "1000.00"


def test_entries_append(audit: AuditLogger, tmp_log: Path) -> None:
    audit.log_outcome(ExecutionOutcome.completed("buy:s-1"))
    audit.log_outcome(ExecutionOutcome.failed("buy:s-2", "boom", retryable=True))
    entries = _entries(tmp_log)
    assert [e["message_id"] for e in entries] == ["buy:s-1", "buy:s-2"]
    assert entries[1]["retryable"] is True


def test_alert_recorder_stores_and_audits(audit: AuditLogger, tmp_log: Path) -> None:
    store = InMemoryTradingStore()
    AlertRecorder(store, audit).emit(CircuitOpenAlert())
    assert isinstance(store.alerts[0], CircuitOpenAlert)
    entry = _entries(tmp_log)[0]
    assert entry["kind"] == "circuit_breaker"
    assert entry["severity"] == "critical"


def test_alert_recorder_survives_store_failure(audit: AuditLogger, tmp_log: Path) -> None:
    store = MagicMock()
    store.save_alert.side_effect = RuntimeError("db down")
    AlertRecorder(store, audit).emit(ApiErrorAlert(endpoint="Search", error="timeout"))
    assert _entries(tmp_log)[0]["kind"] == "api_error"
