"""Circuit breaker — suspends marketplace calls after sustained failure."""

from __future__ import annotations

import json
import threading
import time
from collections.abc import Callable
from enum import Enum
from typing import Any

from skintrader.core.logging import get_logger
from skintrader.errors import CircuitOpenError

logger = get_logger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Rejects outbound calls after N failures with timed recovery probing.

    States:
        CLOSED    — normal operation, failures are counted, a success resets the count
        OPEN      — every call is rejected without contacting the API
        HALF_OPEN — recovery timeout elapsed, exactly one probe call is let through

    The open -> half_open move happens lazily on ``is_open()``; there is no timer.
    When a sync Redis client is given, state is shared between processes through
    one JSON key, falling back to in-memory state if Redis is unreachable.
    """

    REDIS_KEY = "skintrader:circuit_breaker"

    def __init__(
        self,
        failure_threshold: int = 10,
        recovery_timeout: float = 300,
        *,
        clock: Callable[[], float] = time.time,
        redis_client: Any | None = None,
        on_open: Callable[[], None] | None = None,
    ) -> None:
        self._failure_threshold = failure_threshold
        self._recovery_timeout = recovery_timeout
        self._clock = clock
        self._redis = redis_client
        self._on_open = on_open
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at: float | None = None
        self._probe_in_flight = False
        self._load_state()

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._check_recovery()
            return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def is_open(self) -> bool:
        with self._lock:
            self._check_recovery()
            return self._state is CircuitState.OPEN

    def check_and_raise(self) -> bool:
        """Call before every request.

        Returns:
            True when this call is the half-open probe. The caller must then
            end it with ``record_success``, ``record_failure`` or ``release_probe``.

        Raises:
            CircuitOpenError: While open, or while half-open with the probe already taken.
        """
        with self._lock:
            self._check_recovery()
            if self._state is CircuitState.OPEN:
                raise CircuitOpenError
            if self._state is CircuitState.HALF_OPEN:
                if self._probe_in_flight:
                    raise CircuitOpenError
                self._probe_in_flight = True
                return True
            return False

    def record_success(self) -> None:
        with self._lock:
            if self._state is CircuitState.HALF_OPEN:
                logger.info("circuit_breaker_closed", probe="succeeded")
            self._close()

    def record_failure(self) -> None:
        opened = False
        with self._lock:
            if self._state is CircuitState.HALF_OPEN:
                logger.warning("circuit_breaker_probe_failed", action="reopening")
                self._open()
                opened = True
            else:
                self._failure_count += 1
                if self._failure_count >= self._failure_threshold:
                    self._open()
                    opened = True
                else:
                    self._save_state()
        if opened and self._on_open is not None:
            self._on_open()

    def release_probe(self) -> None:
        """Free the probe slot when the probe ended without a verdict (cancelled, crashed)."""
        with self._lock:
            if self._state is CircuitState.HALF_OPEN and self._probe_in_flight:
                self._probe_in_flight = False
                logger.warning("circuit_breaker_probe_released")

    def reset(self) -> None:
        """Force the breaker closed (operator action)."""
        with self._lock:
            self._close()

    def _open(self) -> None:
        logger.error(
            "circuit_breaker_opened",
            failure_count=self._failure_count,
            threshold=self._failure_threshold,
            recovery_timeout=self._recovery_timeout,
        )
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        self._failure_count = 0
        self._probe_in_flight = False
        self._save_state()

    def _close(self) -> None:
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at = None
        self._probe_in_flight = False
        self._save_state()

    def _check_recovery(self) -> None:
        self._load_state()
        if (
            self._state is CircuitState.OPEN
            and self._opened_at is not None
            and self._clock() - self._opened_at >= self._recovery_timeout
        ):
            self._state = CircuitState.HALF_OPEN
            self._opened_at = None
            self._failure_count = 0
            self._probe_in_flight = False
            self._save_state()
            logger.info("circuit_breaker_half_open", recovery_timeout=self._recovery_timeout)

    # ------------------------------------------------------------------
    # Shared persistence (sync Redis client, optional)
    # ------------------------------------------------------------------

    def _load_state(self) -> None:
        if self._redis is None:
            return
        try:
            data = self._redis.get(self.REDIS_KEY)
        except Exception:
            logger.warning("circuit_breaker_redis_load_failed", fallback="in-memory")
            return
        if data is None:
            return
        try:
            state = json.loads(data)
            self._state = CircuitState(state["status"])
            self._failure_count = int(state.get("failures", 0))
            self._opened_at = state.get("opened_at")
        except (ValueError, KeyError, TypeError):
            logger.warning("circuit_breaker_state_corrupt", raw=str(data)[:200])

    def _save_state(self) -> None:
        if self._redis is None:
            return
        payload = json.dumps(
            {
                "status": self._state.value,
                "failures": self._failure_count,
                "opened_at": self._opened_at,
            }
        )
        try:
            self._redis.set(self.REDIS_KEY, payload, ex=86400)
        except Exception:
            logger.warning("circuit_breaker_redis_save_failed")
