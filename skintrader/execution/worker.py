"""Worker pool draining the opportunity queue into the executors."""

from __future__ import annotations

import asyncio
import signal
from typing import TYPE_CHECKING

import pydantic

from skintrader.core.logging import get_logger
from skintrader.execution.queue import Envelope, from_message
from skintrader.models.opportunity import (
    BuyOpportunity,
    ExecutionOutcome,
    OutcomeStatus,
)

if TYPE_CHECKING:
    from skintrader.execution.audit import AuditLogger
    from skintrader.execution.buy_executor import BuyExecutor
    from skintrader.execution.sell_executor import SellExecutor
    from skintrader.interfaces import OpportunityQueue

logger = get_logger(__name__)


class OpportunityHandler:
    """Dispatches one envelope and settles it on the queue.

    completed / skipped / non-retryable failures are acked; retryable
    failures are retried with an attempt consumed; deferred outcomes
    (circuit open) are retried without consuming one. Malformed messages
    are dead-lettered at once.
    """

    def __init__(
        self,
        queue: OpportunityQueue,
        buy_executor: BuyExecutor,
        sell_executor: SellExecutor,
        *,
        audit: AuditLogger | None = None,
    ) -> None:
        self._queue = queue
        self._buy = buy_executor
        self._sell = sell_executor
        self._audit = audit

    async def handle(self, envelope: Envelope) -> ExecutionOutcome:
        try:
            opportunity = from_message(envelope.message)
        except (pydantic.ValidationError, ValueError, KeyError) as exc:
            logger.error("message_invalid", message_id=envelope.id, error=str(exc))
            outcome = ExecutionOutcome.failed(envelope.id, f"invalid message: {exc}", retryable=False)
            await self._queue.reject(envelope, outcome.error or "invalid message")
            return outcome

        try:
            if isinstance(opportunity, BuyOpportunity):
                outcome = await self._buy.execute(opportunity)
            else:
                outcome = await self._sell.execute(opportunity)
        except asyncio.CancelledError:
            await self._queue.retry(envelope, "cancelled", consume_attempt=False)
            raise
        except Exception as exc:
            logger.exception("handler_error", message_id=envelope.id)
            outcome = ExecutionOutcome.failed(
                envelope.id, f"{type(exc).__name__}: {exc}", retryable=True
            )

        await self._settle(envelope, outcome)
        if self._audit is not None:
            self._audit.log_outcome(outcome)
        return outcome

    async def _settle(self, envelope: Envelope, outcome: ExecutionOutcome) -> None:
        if outcome.status is OutcomeStatus.DEFERRED:
            await self._queue.retry(envelope, outcome.error or "deferred", consume_attempt=False)
        elif outcome.status is OutcomeStatus.FAILED and outcome.retryable:
            await self._queue.retry(envelope, outcome.error or "failed")
        else:
            await self._queue.ack(envelope)
        logger.info(
            "opportunity_handled",
            message_id=envelope.id,
            status=outcome.status.value,
            detail=outcome.detail,
            error=outcome.error,
            attempts=envelope.attempts,
        )


class WorkerPool:
    """``concurrency`` asyncio workers sharing one queue.

    ``stop()`` lets every worker finish the item it is processing; nothing
    new is taken off the queue afterwards.
    """

    def __init__(
        self,
        queue: OpportunityQueue,
        handler: OpportunityHandler,
        concurrency: int = 4,
        *,
        poll_interval: float = 1.0,
    ) -> None:
        if concurrency < 1:
            msg = "concurrency must be at least 1"
            raise ValueError(msg)
        self._queue = queue
        self._handler = handler
        self._concurrency = concurrency
        self._poll_interval = poll_interval
        self._running = False
        self._shutdown_event = asyncio.Event()
        self._tasks: list[asyncio.Task[None]] = []
        self.processed = 0

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        self._running = True
        self._shutdown_event.clear()
        self._tasks = [
            asyncio.create_task(self._worker(i), name=f"skintrader-worker-{i}")
            for i in range(self._concurrency)
        ]
        logger.info("worker_pool_started", concurrency=self._concurrency)

    async def run(self, *, drain: bool = False) -> None:
        """Run until stopped (SIGINT/SIGTERM) or, with ``drain``, until the queue is empty."""
        self.start()
        loop = asyncio.get_running_loop()
        installed: list[signal.Signals] = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._request_shutdown, sig)
                installed.append(sig)
            except (NotImplementedError, RuntimeError):
                logger.debug("signal_handler_unavailable", signal=sig.name)
        try:
            if drain:
                await self._wait_drained()
            else:
                await self._shutdown_event.wait()
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)
            await self.stop()

    async def stop(self) -> None:
        if not self._tasks:
            return
        self._running = False
        self._shutdown_event.set()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("worker_pool_stopped", processed=self.processed)

    def _request_shutdown(self, sig: signal.Signals) -> None:
        logger.info("shutdown_requested", signal=sig.name)
        self._running = False
        self._shutdown_event.set()

    async def _wait_drained(self) -> None:
        join = getattr(self._queue, "join", None)
        if join is None:
            msg = "queue does not support draining"
            raise TypeError(msg)
        waiter = asyncio.create_task(join())
        stopper = asyncio.create_task(self._shutdown_event.wait())
        _done, pending = await asyncio.wait({waiter, stopper}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()

    async def _worker(self, index: int) -> None:
        while self._running:
            envelope = await self._queue.get(timeout=self._poll_interval)
            if envelope is None:
                continue
            await self._handler.handle(envelope)
            self.processed += 1
        logger.debug("worker_exited", worker=index)
