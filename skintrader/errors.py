"""Error taxonomy for the trading engine.

Every error carries a ``retryable`` flag so the worker can decide whether a
failed opportunity goes back to the queue or is settled as-is. Gate
rejections are not errors; see ``skintrader.models.opportunity.Rejection``.
"""

from __future__ import annotations

from typing import Any


class TradingError(Exception):
    """Base class for all engine errors."""

    retryable: bool = False
    consumes_retry: bool = True


class ValidationError(TradingError):
    """Bad input (missing price, malformed listing). Fatal to one evaluation."""


class PositionTransitionError(TradingError):
    """A position was asked to move backwards through its lifecycle."""


class DuplicateReservationError(TradingError):
    """A reservation with the same identifier already exists."""

    def __init__(self, identifier: str) -> None:
        super().__init__(f"reservation '{identifier}' already exists")
        self.identifier = identifier


class InsufficientBudgetError(TradingError):
    """The ledger refused a reservation. Treated as a rejection, never retried."""

    def __init__(self, gate: str, reason: str) -> None:
        super().__init__(reason)
        self.gate = gate
        self.reason = reason


class RateLimitExceededError(TradingError):
    """Local request quota exhausted for the current window."""

    retryable = True

    def __init__(self, retry_after: float) -> None:
        super().__init__(f"rate limit exceeded, retry after {retry_after:.0f} seconds")
        self.retry_after = retry_after


class CircuitOpenError(TradingError):
    """The circuit breaker is open; the call was rejected without contacting the API."""

    retryable = True
    consumes_retry = False

    def __init__(self) -> None:
        super().__init__("circuit breaker is open, too many API failures detected")


class ApiError(TradingError):
    """The marketplace answered with a client error or an explicit error payload."""

    def __init__(
        self,
        message: str,
        status_code: int = 0,
        response: dict[str, Any] | str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.response = response


class TransientApiError(TradingError):
    """Timeout, 5xx or exhausted retries. Worth redelivering later."""

    retryable = True

    def __init__(self, message: str, status_code: int = 0) -> None:
        super().__init__(message)
        self.status_code = status_code


class RateLimitedError(TransientApiError):
    """The marketplace answered 429."""

    def __init__(self, message: str, retry_after: float = 0.0) -> None:
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


class TransportError(TransientApiError):
    """Connection failure or timeout before a response arrived."""
