"""Map engine errors raised during execution onto ExecutionOutcome values."""

from __future__ import annotations

from typing import TYPE_CHECKING

from skintrader.core.logging import get_logger
from skintrader.errors import ApiError, CircuitOpenError, TradingError
from skintrader.models.alerts import ApiErrorAlert, CircuitOpenAlert
from skintrader.models.opportunity import ExecutionOutcome

if TYPE_CHECKING:
    from skintrader.interfaces import AlertSink

logger = get_logger(__name__)


def error_outcome(
    message_id: str,
    exc: TradingError,
    *,
    endpoint: str,
    alerts: AlertSink | None = None,
) -> ExecutionOutcome:
    """Circuit open defers without spending a retry; everything else follows ``retryable``."""
    if isinstance(exc, CircuitOpenError):
        logger.warning("execution_deferred", message_id=message_id, endpoint=endpoint)
        if alerts is not None:
            alerts.emit(CircuitOpenAlert())
        return ExecutionOutcome.deferred(message_id, str(exc))

    if isinstance(exc, ApiError) and alerts is not None:
        alerts.emit(ApiErrorAlert(endpoint=endpoint, error=str(exc)))

    logger.error(
        "execution_failed",
        message_id=message_id,
        endpoint=endpoint,
        error=str(exc),
        error_type=type(exc).__name__,
        retryable=exc.retryable,
    )
    return ExecutionOutcome.failed(message_id, str(exc), retryable=exc.retryable)
