"""Tests for Protocol interfaces."""

from __future__ import annotations

from unittest.mock import MagicMock

from skintrader.data.postgres_store import PostgresTradingStore
from skintrader.data.skinbaron_client import SkinBaronClient
from skintrader.data.store import InMemoryTradingStore
from skintrader.execution.audit import AlertRecorder
from skintrader.execution.queue import InMemoryOpportunityQueue
from skintrader.interfaces import (
    AlertSink,
    MarketplaceApi,
    OpportunityQueue,
    ReservationStore,
    TradingStore,
)
from skintrader.risk.reservations import InMemoryReservationStore, RedisReservationStore


class TestImplementations:
    def test_stores(self) -> None:
        assert isinstance(InMemoryTradingStore(), TradingStore)
        assert isinstance(PostgresTradingStore(dsn="postgresql://test/db"), TradingStore)

    def test_reservation_stores(self) -> None:
        assert isinstance(InMemoryReservationStore(), ReservationStore)
        assert isinstance(RedisReservationStore(client=MagicMock()), ReservationStore)

    def test_marketplace_client(self) -> None:
        assert isinstance(SkinBaronClient(api_key="k"), MarketplaceApi)

    def test_queue(self) -> None:
        assert isinstance(InMemoryOpportunityQueue(), OpportunityQueue)

    def test_alert_recorder(self) -> None:
        assert isinstance(AlertRecorder(InMemoryTradingStore()), AlertSink)

    def test_unrelated_object(self) -> None:
        assert not isinstance(object(), TradingStore)
        assert not isinstance(InMemoryTradingStore(), MarketplaceApi)
