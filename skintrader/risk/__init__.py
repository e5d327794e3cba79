"""Risk and budget safety: fees, reservations, the budget ledger and risk scoring."""

from __future__ import annotations

from skintrader.risk.budget_ledger import BudgetLedger, BudgetLimits, classify_trading_state
from skintrader.risk.reservations import InMemoryReservationStore, RedisReservationStore
from skintrader.risk.risk_scorer import RiskAssessment, RiskLevel, RiskScorer

__all__ = [
    "BudgetLedger",
    "BudgetLimits",
    "InMemoryReservationStore",
    "RedisReservationStore",
    "RiskAssessment",
    "RiskLevel",
    "RiskScorer",
    "classify_trading_state",
]
