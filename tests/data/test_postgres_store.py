"""Tests for PostgresTradingStore."""

from __future__ import annotations

import json
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any
from unittest.mock import MagicMock, patch

import pytest

from skintrader.data.postgres_store import (
    INSERT_SALE,
    SUM_INVESTED,
    UPSERT_POSITION,
    PostgresTradingStore,
)
from skintrader.execution.queue import Envelope
from skintrader.models.inventory import PositionStatus
from skintrader.models.market import Sale, Tier

NOW = datetime(2026, 3, 2, 12, 0, 0, tzinfo=UTC)


def _mock_store(
    *, fetchone: dict[str, Any] | None = None, fetchall: list[dict[str, Any]] | None = None
) -> tuple[PostgresTradingStore, MagicMock, MagicMock]:
    mock_cur = MagicMock()
    mock_cur.__enter__.return_value = mock_cur
    mock_cur.__exit__.return_value = False
    mock_cur.fetchone.return_value = fetchone
    mock_cur.fetchall.return_value = fetchall or []
    mock_cur.rowcount = 1

    mock_conn = MagicMock()
    mock_conn.__enter__.return_value = mock_conn
    mock_conn.__exit__.return_value = False
    mock_conn.cursor.return_value = mock_cur

    mock_pool = MagicMock()
    mock_pool.connection.return_value = mock_conn

    store = PostgresTradingStore(dsn="postgresql://test/db")
    store._pool = mock_pool
    return store, mock_conn, mock_cur


class TestPostgresTradingStoreInit:
    def test_default_dsn_from_env(self) -> None:
        with patch.dict("os.environ", {"DATABASE_URL": "postgresql://env:5432/db"}):
            store = PostgresTradingStore()
        assert store._dsn == "postgresql://env:5432/db"

    def test_explicit_dsn(self) -> None:
        store = PostgresTradingStore(dsn="postgresql://custom/db")
        assert store._dsn == "postgresql://custom/db"

    def test_requires_open(self) -> None:
        store = PostgresTradingStore(dsn="postgresql://custom/db")
        with pytest.raises(RuntimeError, match="open"):
            store.total_invested()

    def test_close_without_open(self) -> None:
        store = PostgresTradingStore(dsn="postgresql://custom/db")
        store.close()
        assert store._pool is None


class TestPostgresTradingStoreWrites:
    def test_create_tables(self) -> None:
        store, conn, _ = _mock_store()
        store.create_tables()
        conn.execute.assert_called_once()
        assert "CREATE TABLE IF NOT EXISTS inventory" in conn.execute.call_args[0][0]
        conn.commit.assert_called_once()

    def test_save_position(self, holding_position: Any) -> None:
        store, conn, _ = _mock_store()
        store.save_position(holding_position.mark_listed(Decimal("13.49"), reason="x", now=NOW))

        sql, params = conn.execute.call_args[0]
        assert sql == UPSERT_POSITION
        assert params[0] == "s-1"
        assert params[5] == "listed"
        assert params[7] == Decimal("13.49")
        assert params[-1].endswith("Listed at 13.49 - x")
        conn.commit.assert_called_once()

    def test_add_sales_counts_inserted_rows(self) -> None:
        store, conn, cur = _mock_store()
        cur.rowcount = 0
        inserted = store.add_sales(
            [Sale(item_name="x", price=Decimal("35.00"), date_sold=date(2026, 3, 1))]
        )
        assert inserted == 0
        sql, params = cur.execute.call_args[0]
        assert sql == INSERT_SALE
        assert params[0] == "x|35.00|2026-03-01"
        conn.commit.assert_called_once()

    def test_save_dead_letter(self) -> None:
        store, conn, _ = _mock_store()
        store.save_dead_letter(Envelope(id="m-1", message={"kind": "buy"}, attempts=3), "boom")
        params = conn.execute.call_args[0][1]
        assert params[0] == "m-1"
        assert json.loads(params[1]) == {"kind": "buy"}
        assert params[2:] == (3, "boom")


class TestPostgresTradingStoreReads:
    def test_total_invested(self) -> None:
        store, _, cur = _mock_store(fetchone={"total": Decimal("35.004")})
        assert store.total_invested() == Decimal("35.00")
        cur.execute.assert_called_once_with(SUM_INVESTED, ())

    def test_missing_stats(self) -> None:
        store, _, _ = _mock_store(fetchone=None)
        assert store.get_market_stats("x") is None

    def test_whitelist_rows(self) -> None:
        row = {
            "market_hash_name": "x",
            "tier": 2,
            "min_discount_pct": Decimal("20.00"),
            "min_spread_pct": Decimal("5.00"),
            "target_profit_pct": Decimal("10.00"),
            "max_holdings": 2,
            "is_active": True,
            "notes": None,
        }
        store, _, cur = _mock_store(fetchall=[row])
        [entry] = store.list_whitelist(tier=Tier.TWO)
        assert entry.tier is Tier.TWO
        assert entry.notes == ""
        sql, params = cur.execute.call_args[0]
        assert "tier = %s AND is_active" in sql
        assert params == (2,)

    def test_position_rows(self) -> None:
        row = {
            "sale_id": "s-1",
            "market_hash_name": "x",
            "purchase_price": Decimal("10.00"),
            "purchase_date": NOW,
            "target_sell_price": Decimal("12.94"),
            "status": "sold",
            "risk_score": Decimal("3.5"),
            "listed_price": Decimal("13.49"),
            "listed_date": NOW,
            "item_id": None,
            "sold_price": Decimal("12.94"),
            "sold_date": NOW,
            "fee": Decimal("1.94"),
            "net_profit": Decimal("1.00"),
            "profit_pct": Decimal("10.00"),
            "notes": "a\nb",
        }
        store, _, cur = _mock_store(fetchall=[row])
        [position] = store.list_positions([PositionStatus.SOLD])
        assert position.status is PositionStatus.SOLD
        assert position.risk_score == 3.5
        assert position.sold_fee == Decimal("1.94")
        assert position.notes == ("a", "b")
        assert cur.execute.call_args[0][1] == (["sold"],)

    def test_latest_snapshot(self) -> None:
        row = {
            "balance": Decimal("100.00"),
            "available_balance": Decimal("60.00"),
            "reserved_amount": Decimal("10.00"),
            "invested_amount": Decimal("30.00"),
            "inventory_count": 2,
            "trading_state": "normal",
            "hard_floor": Decimal("10.00"),
            "soft_floor": Decimal("12.00"),
            "realized_profit_today": Decimal("0"),
            "realized_profit_week": Decimal("1.00"),
            "realized_profit_month": Decimal("2.00"),
            "realized_profit_total": Decimal("3.00"),
            "snapshot_date": NOW,
        }
        store, _, _ = _mock_store(fetchone=row)
        snapshot = store.latest_balance_snapshot()
        assert snapshot is not None
        assert snapshot.balance == Decimal("100.00")
        assert snapshot.inventory_count == 2
        assert snapshot.taken_at == NOW
