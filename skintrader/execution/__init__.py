"""Execution layer — executors, queue, workers, circuit breaker and rate limiter."""

from __future__ import annotations

from skintrader.execution.audit import AlertRecorder, AuditLogger
from skintrader.execution.buy_executor import BuyExecutor
from skintrader.execution.circuit_breaker import CircuitBreaker, CircuitState
from skintrader.execution.queue import Envelope, InMemoryOpportunityQueue
from skintrader.execution.rate_limiter import FixedWindowRateLimiter
from skintrader.execution.sell_executor import SaleReconciler, SellExecutor
from skintrader.execution.worker import OpportunityHandler, WorkerPool

__all__ = [
    "AlertRecorder",
    "AuditLogger",
    "BuyExecutor",
    "CircuitBreaker",
    "CircuitState",
    "Envelope",
    "FixedWindowRateLimiter",
    "InMemoryOpportunityQueue",
    "OpportunityHandler",
    "SaleReconciler",
    "SellExecutor",
    "WorkerPool",
]
