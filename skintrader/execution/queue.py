"""In-process opportunity queue with bounded, backed-off redelivery."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from skintrader.core.logging import get_logger
from skintrader.models.opportunity import BuyOpportunity, SellOpportunity

if TYPE_CHECKING:
    from skintrader.interfaces import TradingStore

log = get_logger(__name__)


@dataclass
class Envelope:
    """One delivery of a queued message. ``attempts`` counts consumed retries."""

    id: str
    message: dict[str, Any]
    attempts: int = 0
    last_error: str | None = None
    enqueued_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))


def to_message(opportunity: BuyOpportunity | SellOpportunity) -> dict[str, Any]:
    return {
        "id": opportunity.message_id,
        "kind": opportunity.kind,
        "payload": opportunity.model_dump(mode="json"),
    }


def from_message(message: dict[str, Any]) -> BuyOpportunity | SellOpportunity:
    """Rebuild the opportunity a message carries.

    Raises:
        pydantic.ValidationError: If the payload is malformed.
        ValueError: If the kind is unknown.
    """
    kind = message.get("kind")
    if kind == "buy":
        return BuyOpportunity.model_validate(message["payload"])
    if kind == "sell":
        return SellOpportunity.model_validate(message["payload"])
    msg = f"unknown message kind: {kind!r}"
    raise ValueError(msg)


class InMemoryOpportunityQueue:
    """asyncio queue giving at-least-once delivery inside one process.

    A retried envelope is redelivered after ``retry_delay × multiplier^(n−1)``
    seconds. After ``max_retries`` consumed retries it goes to the store's
    dead-letter table; it is never silently dropped. Deferred retries (circuit
    open) do not consume an attempt.
    """

    def __init__(
        self,
        store: TradingStore | None = None,
        *,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        retry_multiplier: float = 2.0,
        defer_delay: float = 5.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._store = store
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._retry_multiplier = retry_multiplier
        self._defer_delay = defer_delay
        self._sleep = sleep
        self._queue: asyncio.Queue[Envelope] = asyncio.Queue()
        self._pending: set[str] = set()
        self._timers: set[asyncio.Task[None]] = set()
        self.dead_letters: list[Envelope] = []

    @property
    def pending(self) -> int:
        """Messages queued, in flight or waiting for redelivery."""
        return len(self._pending)

    def qsize(self) -> int:
        return self._queue.qsize()

    async def publish(self, message: dict[str, Any]) -> bool:
        """Enqueue a message. A message id already pending is not enqueued twice."""
        message_id = str(message["id"])
        if message_id in self._pending:
            log.debug("queue_duplicate_publish", message_id=message_id)
            return False
        self._pending.add(message_id)
        await self._queue.put(Envelope(id=message_id, message=message))
        log.debug("queue_published", message_id=message_id, kind=message.get("kind"))
        return True

    async def get(self, timeout: float | None = None) -> Envelope | None:
        if timeout is None:
            return await self._queue.get()
        try:
            return await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except TimeoutError:
            return None

    async def ack(self, envelope: Envelope) -> None:
        self._pending.discard(envelope.id)
        self._queue.task_done()

    async def retry(self, envelope: Envelope, error: str, consume_attempt: bool = True) -> None:
        envelope.last_error = error
        self._queue.task_done()
        if consume_attempt:
            envelope.attempts += 1
            if envelope.attempts > self._max_retries:
                self._dead_letter(envelope, error)
                return
            delay = self._retry_delay * self._retry_multiplier ** (envelope.attempts - 1)
        else:
            delay = self._defer_delay

        log.info(
            "queue_retry_scheduled",
            message_id=envelope.id,
            attempt=envelope.attempts,
            delay=delay,
            consumed=consume_attempt,
            error=error,
        )
        task = asyncio.create_task(self._redeliver(envelope, delay))
        self._timers.add(task)
        task.add_done_callback(self._timers.discard)

    async def reject(self, envelope: Envelope, error: str) -> None:
        """Dead-letter a message that can never succeed, without retrying it."""
        self._queue.task_done()
        self._dead_letter(envelope, error)

    async def join(self) -> None:
        """Wait until every published message has been acked or dead-lettered."""
        while self._pending:
            await self._queue.join()
            if self._timers:
                await asyncio.gather(*list(self._timers), return_exceptions=True)

    async def close(self) -> None:
        for task in list(self._timers):
            task.cancel()
        for task in list(self._timers):
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _redeliver(self, envelope: Envelope, delay: float) -> None:
        await self._sleep(delay)
        await self._queue.put(envelope)

    def _dead_letter(self, envelope: Envelope, error: str) -> None:
        self._pending.discard(envelope.id)
        self.dead_letters.append(envelope)
        if self._store is not None:
            self._store.save_dead_letter(envelope, error)
        log.error(
            "queue_dead_lettered",
            message_id=envelope.id,
            attempts=envelope.attempts,
            error=error,
        )
