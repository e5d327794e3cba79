"""Audit logger — append-only trail for decisions, transactions and alerts."""

from __future__ import annotations

import json
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from skintrader.core.logging import get_logger, log_trade_event

if TYPE_CHECKING:
    from skintrader.interfaces import TradingStore
    from skintrader.models.alerts import Alert
    from skintrader.models.inventory import Transaction
    from skintrader.models.opportunity import BuyDecision, ExecutionOutcome, SellDecision

logger = get_logger(__name__)

_DEFAULT_LOG_PATH = "logs/audit.jsonl"


class AuditLogger:
    """Append-only audit trail written to a local JSONL file."""

    def __init__(self, log_path: str | Path = _DEFAULT_LOG_PATH) -> None:
        self._log_path = Path(log_path)
        self._log_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    @property
    def log_path(self) -> Path:
        return self._log_path

    def log_buy_decision(self, decision: BuyDecision) -> None:
        entry: dict[str, Any] = {
            "event_type": "buy_decision",
            "sale_id": decision.sale_id,
            "item": decision.item_name,
            "accepted": decision.accepted,
            "notes": list(decision.notes),
        }
        if decision.opportunity is not None:
            opp = decision.opportunity
            entry.update(
                price=str(opp.price),
                target_sell_price=str(opp.target_sell_price),
                expected_profit=str(opp.expected_profit),
                risk_score=opp.risk_score,
            )
        if decision.rejection is not None:
            entry.update(gate=decision.rejection.gate, reason=decision.rejection.reason)
        self._persist(entry)

    def log_sell_decision(self, decision: SellDecision) -> None:
        entry: dict[str, Any] = {
            "event_type": "sell_decision",
            "sale_id": decision.sale_id,
            "act": decision.should_act,
        }
        if decision.opportunity is not None:
            opp = decision.opportunity
            entry.update(action=opp.action.value, price=str(opp.price), reason=opp.reason)
        else:
            entry["reason"] = decision.hold_reason
        self._persist(entry)

    def log_transaction(self, transaction: Transaction) -> None:
        entry = {
            "event_type": "transaction",
            "transaction_id": str(transaction.id),
            "type": transaction.transaction_type.value,
            "item": transaction.item_name,
            "external_id": transaction.external_id,
            "price": str(transaction.price),
            "fee": str(transaction.fee),
            "net_amount": str(transaction.net_amount),
            "balance_before": str(transaction.balance_before),
            "balance_after": str(transaction.balance_after),
            "status": transaction.status.value,
            "error": transaction.error_message,
        }
        log_trade_event(
            transaction.transaction_type.value,
            transaction.external_id,
            status=transaction.status.value,
            price=str(transaction.price),
        )
        self._persist(entry)

    def log_outcome(self, outcome: ExecutionOutcome) -> None:
        self._persist(
            {
                "event_type": "execution",
                "message_id": outcome.message_id,
                "status": outcome.status.value,
                "detail": outcome.detail,
                "error": outcome.error,
                "retryable": outcome.retryable,
            }
        )

    def log_alert(self, alert: Alert) -> None:
        self._persist(
            {
                "event_type": "alert",
                "kind": alert.kind,
                "severity": alert.severity.value,
                "title": alert.title,
                "message": alert.message,
            }
        )

    def _persist(self, entry: dict[str, Any]) -> None:
        entry = {"timestamp": datetime.now(tz=UTC).isoformat(), **entry}
        line = json.dumps(entry, default=str)
        with self._lock, open(self._log_path, "a") as f:
            f.write(line + "\n")


class AlertRecorder:
    """AlertSink that logs, stores and audits each alert."""

    def __init__(self, store: TradingStore, audit: AuditLogger | None = None) -> None:
        self._store = store
        self._audit = audit

    def emit(self, alert: Alert) -> None:
        log = logger.critical if alert.severity.value == "critical" else logger.warning
        log(
            "alert_raised",
            kind=alert.kind,
            severity=alert.severity.value,
            title=alert.title,
            message=alert.message,
        )
        try:
            self._store.save_alert(alert)
        except Exception as exc:
            logger.warning("alert_store_failed", kind=alert.kind, error=str(exc))
        if self._audit is not None:
            self._audit.log_alert(alert)
