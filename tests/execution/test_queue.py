"""Tests for the in-process opportunity queue."""

from __future__ import annotations

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock

import pydantic
import pytest

from skintrader.data.store import InMemoryTradingStore
from skintrader.execution.queue import InMemoryOpportunityQueue, from_message, to_message
from skintrader.models.market import Tier
from skintrader.models.opportunity import BuyOpportunity, SellAction, SellOpportunity


def _buy(sale_id: str = "s-1") -> BuyOpportunity:
    return BuyOpportunity(
        sale_id=sale_id,
        item_name="x",
        price=Decimal("28.00"),
        target_sell_price=Decimal("36.24"),
        expected_profit=Decimal("2.80"),
        risk_score=0.0,
        tier=Tier.ONE,
    )


@pytest.fixture()
def fake_sleep() -> AsyncMock:
    return AsyncMock()


@pytest.fixture()
def queue(store: InMemoryTradingStore, fake_sleep: AsyncMock) -> InMemoryOpportunityQueue:
    return InMemoryOpportunityQueue(
        store, max_retries=3, retry_delay=1.0, retry_multiplier=2.0, sleep=fake_sleep
    )


class TestMessages:
    def test_round_trip_buy(self) -> None:
        opp = _buy()
        message = to_message(opp)
        assert message["id"] == "buy:s-1"
        assert message["kind"] == "buy"
        assert from_message(message) == opp

    def test_round_trip_sell(self) -> None:
        opp = SellOpportunity(
            sale_id="s-1",
            item_name="x",
            action=SellAction.LIST,
            price=Decimal("12.99"),
            reason="target",
            purchase_price=Decimal("10.00"),
        )
        assert from_message(to_message(opp)) == opp

    def test_unknown_kind(self) -> None:
        with pytest.raises(ValueError, match="unknown message kind"):
            from_message({"id": "x", "kind": "teleport", "payload": {}})

    def test_malformed_payload(self) -> None:
        with pytest.raises(pydantic.ValidationError):
            from_message({"id": "x", "kind": "buy", "payload": {"sale_id": "s-1"}})


class TestInMemoryOpportunityQueue:
    @pytest.mark.asyncio()
    async def test_publish_get_ack(self, queue: InMemoryOpportunityQueue) -> None:
        assert await queue.publish(to_message(_buy()))
        envelope = await queue.get(timeout=1)
        assert envelope is not None
        assert envelope.id == "buy:s-1"
        assert queue.pending == 1
        await queue.ack(envelope)
        assert queue.pending == 0

    @pytest.mark.asyncio()
    async def test_duplicate_publish_ignored(self, queue: InMemoryOpportunityQueue) -> None:
        assert await queue.publish(to_message(_buy()))
        assert not await queue.publish(to_message(_buy()))
        assert queue.qsize() == 1

    @pytest.mark.asyncio()
    async def test_get_timeout(self, queue: InMemoryOpportunityQueue) -> None:
        assert await queue.get(timeout=0.01) is None

    @pytest.mark.asyncio()
    async def test_retry_backoff(
        self, queue: InMemoryOpportunityQueue, fake_sleep: AsyncMock
    ) -> None:
        await queue.publish(to_message(_buy()))
        for expected_attempt in (1, 2, 3):
            envelope = await queue.get(timeout=1)
            assert envelope is not None
            await queue.retry(envelope, "timeout")
            assert envelope.attempts == expected_attempt
        await queue.get(timeout=1)
        delays = [c.args[0] for c in fake_sleep.await_args_list]
        assert delays == [1.0, 2.0, 4.0]

    @pytest.mark.asyncio()
    async def test_dead_letter_after_max_retries(
        self, queue: InMemoryOpportunityQueue, store: InMemoryTradingStore
    ) -> None:
        await queue.publish(to_message(_buy()))
        for _ in range(4):
            envelope = await queue.get(timeout=1)
            assert envelope is not None
            await queue.retry(envelope, "still failing")
        assert queue.pending == 0
        assert [e.id for e in queue.dead_letters] == ["buy:s-1"]
        dead = store.list_dead_letters()
        assert dead[0]["attempts"] == 4
        assert dead[0]["error"] == "still failing"

    @pytest.mark.asyncio()
    async def test_deferred_retry_does_not_consume_attempt(
        self, queue: InMemoryOpportunityQueue, fake_sleep: AsyncMock
    ) -> None:
        await queue.publish(to_message(_buy()))
        envelope = await queue.get(timeout=1)
        assert envelope is not None
        await queue.retry(envelope, "circuit open", consume_attempt=False)
        redelivered = await queue.get(timeout=1)
        assert redelivered is envelope
        assert envelope.attempts == 0
        fake_sleep.assert_awaited_once_with(5.0)

    @pytest.mark.asyncio()
    async def test_reject_dead_letters_immediately(
        self, queue: InMemoryOpportunityQueue, store: InMemoryTradingStore
    ) -> None:
        await queue.publish({"id": "bad", "kind": "buy", "payload": {}})
        envelope = await queue.get(timeout=1)
        assert envelope is not None
        await queue.reject(envelope, "malformed")
        assert queue.pending == 0
        assert store.list_dead_letters()[0]["attempts"] == 0

    @pytest.mark.asyncio()
    async def test_join_waits_for_redelivery(self, queue: InMemoryOpportunityQueue) -> None:
        await queue.publish(to_message(_buy()))

        async def consume() -> None:
            envelope = await queue.get()
            await queue.retry(envelope, "once")
            envelope = await queue.get()
            await queue.ack(envelope)

        consumer = asyncio.create_task(consume())
        await asyncio.wait_for(queue.join(), timeout=1)
        await consumer
        assert queue.pending == 0

    @pytest.mark.asyncio()
    async def test_close_cancels_timers(self) -> None:
        queue = InMemoryOpportunityQueue(retry_delay=60)
        await queue.publish(to_message(_buy()))
        envelope = await queue.get(timeout=1)
        assert envelope is not None
        await queue.retry(envelope, "later")
        await queue.close()
        assert queue.qsize() == 0
