"""PostgreSQL TradingStore over a psycopg connection pool."""

from __future__ import annotations

import json
import os
from collections.abc import Iterable
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

import psycopg
import psycopg.rows
from psycopg_pool import ConnectionPool

from skintrader.core.logging import get_logger
from skintrader.core.money import ZERO, money
from skintrader.models.alerts import Alert
from skintrader.models.budget import BudgetState, TradingState
from skintrader.models.inventory import (
    Position,
    PositionStatus,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from skintrader.models.market import MarketStats, Sale, Tier, WhitelistEntry

if TYPE_CHECKING:
    from skintrader.execution.queue import Envelope

log = get_logger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS whitelisted_items (
    market_hash_name   TEXT PRIMARY KEY,
    tier               SMALLINT      NOT NULL,
    min_discount_pct   NUMERIC(5, 2) NOT NULL,
    min_spread_pct     NUMERIC(5, 2) NOT NULL,
    target_profit_pct  NUMERIC(5, 2) NOT NULL,
    max_holdings       SMALLINT      NOT NULL,
    is_active          BOOLEAN       NOT NULL,
    notes              TEXT          NOT NULL DEFAULT ''
);
CREATE TABLE IF NOT EXISTS sales_stats (
    market_hash_name   TEXT PRIMARY KEY,
    avg_price_7d       NUMERIC(10, 2),
    avg_price_30d      NUMERIC(10, 2),
    median_price_30d   NUMERIC(10, 2),
    min_price_30d      NUMERIC(10, 2),
    max_price_30d      NUMERIC(10, 2),
    price_volatility   NUMERIC(10, 2),
    sales_count_7d     INT           NOT NULL,
    sales_count_30d    INT           NOT NULL,
    avg_sales_per_day  NUMERIC(10, 2),
    last_sale_price    NUMERIC(10, 2),
    last_sale_date     DATE,
    calculated_at      TIMESTAMPTZ   NOT NULL
);
CREATE TABLE IF NOT EXISTS sale_history (
    id                 BIGSERIAL PRIMARY KEY,
    dedupe_key         TEXT          NOT NULL UNIQUE,
    market_hash_name   TEXT          NOT NULL,
    sale_id            TEXT,
    price              NUMERIC(10, 2) NOT NULL,
    date_sold          DATE          NOT NULL,
    fetched_at         TIMESTAMPTZ   NOT NULL DEFAULT now()
);
CREATE INDEX IF NOT EXISTS idx_sale_history_item_date ON sale_history (market_hash_name, date_sold);
CREATE TABLE IF NOT EXISTS inventory (
    sale_id            TEXT PRIMARY KEY,
    market_hash_name   TEXT          NOT NULL,
    purchase_price     NUMERIC(10, 2) NOT NULL,
    purchase_date      TIMESTAMPTZ   NOT NULL,
    target_sell_price  NUMERIC(10, 2) NOT NULL,
    status             TEXT          NOT NULL,
    risk_score         NUMERIC(3, 1),
    listed_price       NUMERIC(10, 2),
    listed_date        TIMESTAMPTZ,
    item_id            TEXT,
    sold_price         NUMERIC(10, 2),
    sold_date          TIMESTAMPTZ,
    fee                NUMERIC(10, 2),
    net_profit         NUMERIC(10, 2),
    profit_pct         NUMERIC(7, 2),
    notes              TEXT          NOT NULL DEFAULT ''
);
CREATE INDEX IF NOT EXISTS idx_inventory_item_status ON inventory (market_hash_name, status);
CREATE TABLE IF NOT EXISTS transactions (
    id                 UUID PRIMARY KEY,
    transaction_type   TEXT          NOT NULL,
    market_hash_name   TEXT          NOT NULL,
    external_id        TEXT          NOT NULL,
    price              NUMERIC(10, 2) NOT NULL,
    fee                NUMERIC(10, 2) NOT NULL,
    net_amount         NUMERIC(10, 2) NOT NULL,
    balance_before     NUMERIC(10, 2) NOT NULL,
    balance_after      NUMERIC(10, 2) NOT NULL,
    status             TEXT          NOT NULL,
    error_message      TEXT,
    metadata           JSONB         NOT NULL DEFAULT '{}',
    created_at         TIMESTAMPTZ   NOT NULL
);
CREATE TABLE IF NOT EXISTS balance_snapshots (
    id                    BIGSERIAL PRIMARY KEY,
    balance               NUMERIC(10, 2) NOT NULL,
    available_balance     NUMERIC(10, 2) NOT NULL,
    reserved_amount       NUMERIC(10, 2) NOT NULL,
    invested_amount       NUMERIC(10, 2) NOT NULL,
    inventory_count       INT           NOT NULL,
    realized_profit_today NUMERIC(10, 2) NOT NULL,
    realized_profit_week  NUMERIC(10, 2) NOT NULL,
    realized_profit_month NUMERIC(10, 2) NOT NULL,
    realized_profit_total NUMERIC(10, 2) NOT NULL,
    trading_state         TEXT          NOT NULL,
    hard_floor            NUMERIC(10, 2) NOT NULL,
    soft_floor            NUMERIC(10, 2) NOT NULL,
    snapshot_date         TIMESTAMPTZ   NOT NULL
);
CREATE TABLE IF NOT EXISTS alerts (
    id                 BIGSERIAL PRIMARY KEY,
    alert_type         TEXT          NOT NULL,
    severity           TEXT          NOT NULL,
    title              TEXT          NOT NULL,
    message            TEXT          NOT NULL,
    context            JSONB         NOT NULL,
    created_at         TIMESTAMPTZ   NOT NULL
);
CREATE TABLE IF NOT EXISTS dead_letters (
    id                 BIGSERIAL PRIMARY KEY,
    message_id         TEXT          NOT NULL,
    message            JSONB         NOT NULL,
    attempts           INT           NOT NULL,
    error              TEXT          NOT NULL,
    failed_at          TIMESTAMPTZ   NOT NULL DEFAULT now()
);
"""

UPSERT_WHITELIST = """
INSERT INTO whitelisted_items (market_hash_name, tier, min_discount_pct, min_spread_pct,
    target_profit_pct, max_holdings, is_active, notes)
VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
ON CONFLICT (market_hash_name) DO UPDATE SET
    tier = EXCLUDED.tier, min_discount_pct = EXCLUDED.min_discount_pct,
    min_spread_pct = EXCLUDED.min_spread_pct, target_profit_pct = EXCLUDED.target_profit_pct,
    max_holdings = EXCLUDED.max_holdings, is_active = EXCLUDED.is_active, notes = EXCLUDED.notes;
"""

SELECT_WHITELIST = "SELECT * FROM whitelisted_items WHERE market_hash_name = %s;"

UPSERT_STATS = """
INSERT INTO sales_stats (market_hash_name, avg_price_7d, avg_price_30d, median_price_30d,
    min_price_30d, max_price_30d, price_volatility, sales_count_7d, sales_count_30d,
    avg_sales_per_day, last_sale_price, last_sale_date, calculated_at)
VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
ON CONFLICT (market_hash_name) DO UPDATE SET
    avg_price_7d = EXCLUDED.avg_price_7d, avg_price_30d = EXCLUDED.avg_price_30d,
    median_price_30d = EXCLUDED.median_price_30d, min_price_30d = EXCLUDED.min_price_30d,
    max_price_30d = EXCLUDED.max_price_30d, price_volatility = EXCLUDED.price_volatility,
    sales_count_7d = EXCLUDED.sales_count_7d, sales_count_30d = EXCLUDED.sales_count_30d,
    avg_sales_per_day = EXCLUDED.avg_sales_per_day, last_sale_price = EXCLUDED.last_sale_price,
    last_sale_date = EXCLUDED.last_sale_date, calculated_at = EXCLUDED.calculated_at;
"""

SELECT_STATS = "SELECT * FROM sales_stats WHERE market_hash_name = %s;"

INSERT_SALE = """
INSERT INTO sale_history (dedupe_key, market_hash_name, sale_id, price, date_sold)
VALUES (%s, %s, %s, %s, %s)
ON CONFLICT (dedupe_key) DO NOTHING;
"""

SELECT_SALES = """
SELECT market_hash_name, sale_id, price, date_sold FROM sale_history
WHERE market_hash_name = %s AND date_sold >= %s
ORDER BY date_sold;
"""

COUNT_SALES_AT_OR_ABOVE = """
SELECT COUNT(*) AS n FROM sale_history
WHERE market_hash_name = %s AND price >= %s AND date_sold >= %s;
"""

UPSERT_POSITION = """
INSERT INTO inventory (sale_id, market_hash_name, purchase_price, purchase_date,
    target_sell_price, status, risk_score, listed_price, listed_date, item_id, sold_price,
    sold_date, fee, net_profit, profit_pct, notes)
VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
ON CONFLICT (sale_id) DO UPDATE SET
    status = EXCLUDED.status, listed_price = EXCLUDED.listed_price,
    listed_date = EXCLUDED.listed_date, item_id = EXCLUDED.item_id,
    sold_price = EXCLUDED.sold_price, sold_date = EXCLUDED.sold_date, fee = EXCLUDED.fee,
    net_profit = EXCLUDED.net_profit, profit_pct = EXCLUDED.profit_pct, notes = EXCLUDED.notes;
"""

SELECT_POSITION = "SELECT * FROM inventory WHERE sale_id = %s;"

COUNT_OPEN_POSITIONS = """
SELECT COUNT(*) AS n FROM inventory
WHERE market_hash_name = %s AND status IN ('holding', 'listed');
"""

SUM_INVESTED = """
SELECT COALESCE(SUM(purchase_price), 0) AS total FROM inventory
WHERE status IN ('holding', 'listed');
"""

SUM_REALIZED = """
SELECT COALESCE(SUM(net_profit), 0) AS total FROM inventory
WHERE status = 'sold' AND (%s::timestamptz IS NULL OR sold_date >= %s::timestamptz);
"""

UPSERT_TRANSACTION = """
INSERT INTO transactions (id, transaction_type, market_hash_name, external_id, price, fee,
    net_amount, balance_before, balance_after, status, error_message, metadata, created_at)
VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
ON CONFLICT (id) DO UPDATE SET
    status = EXCLUDED.status, balance_after = EXCLUDED.balance_after,
    error_message = EXCLUDED.error_message;
"""

SELECT_TRANSACTIONS = "SELECT * FROM transactions ORDER BY created_at DESC LIMIT %s;"

INSERT_SNAPSHOT = """
INSERT INTO balance_snapshots (balance, available_balance, reserved_amount, invested_amount,
    inventory_count, realized_profit_today, realized_profit_week, realized_profit_month,
    realized_profit_total, trading_state, hard_floor, soft_floor, snapshot_date)
VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s);
"""

SELECT_LATEST_SNAPSHOT = "SELECT * FROM balance_snapshots ORDER BY snapshot_date DESC LIMIT 1;"

INSERT_ALERT = """
INSERT INTO alerts (alert_type, severity, title, message, context, created_at)
VALUES (%s, %s, %s, %s, %s, %s);
"""

INSERT_DEAD_LETTER = """
INSERT INTO dead_letters (message_id, message, attempts, error) VALUES (%s, %s, %s, %s);
"""

SELECT_DEAD_LETTERS = "SELECT * FROM dead_letters ORDER BY failed_at;"


def _dec(value: Any) -> Decimal | None:
    return Decimal(str(value)) if value is not None else None


class PostgresTradingStore:
    """Synchronous TradingStore backed by PostgreSQL.

    Reads connection URL from DATABASE_URL env var when no DSN is given.
    """

    def __init__(self, dsn: str | None = None, min_pool: int = 1, max_pool: int = 10) -> None:
        self._dsn = dsn or os.environ.get("DATABASE_URL", "")
        self._min_pool = min_pool
        self._max_pool = max_pool
        self._pool: ConnectionPool[psycopg.Connection[Any]] | None = None

    def open(self) -> None:
        """Open connection pool."""
        self._pool = ConnectionPool(
            conninfo=self._dsn,
            min_size=self._min_pool,
            max_size=self._max_pool,
            open=False,
        )
        self._pool.open()
        log.info("postgres_store.pool_opened")

    def close(self) -> None:
        """Close connection pool."""
        if self._pool is not None:
            self._pool.close()
            self._pool = None
            log.info("postgres_store.pool_closed")

    def create_tables(self) -> None:
        with self._connection() as conn:
            conn.execute(SCHEMA)
            conn.commit()
        log.info("postgres_store.tables_created")

    # whitelist --------------------------------------------------------

    def get_whitelist_entry(self, name: str) -> WhitelistEntry | None:
        row = self._fetchone(SELECT_WHITELIST, (name,))
        return self._whitelist_from_row(row) if row else None

    def list_whitelist(
        self, tier: Tier | None = None, active_only: bool = True
    ) -> list[WhitelistEntry]:
        clauses: list[str] = []
        params: list[Any] = []
        if tier is not None:
            clauses.append("tier = %s")
            params.append(int(tier))
        if active_only:
            clauses.append("is_active")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._fetchall(
            f"SELECT * FROM whitelisted_items {where} ORDER BY tier, market_hash_name;",
            tuple(params),
        )
        return [self._whitelist_from_row(row) for row in rows]

    def save_whitelist_entry(self, entry: WhitelistEntry) -> None:
        self._execute(
            UPSERT_WHITELIST,
            (
                entry.name,
                int(entry.tier),
                entry.min_discount_pct,
                entry.min_spread_pct,
                entry.target_profit_pct,
                entry.max_holdings,
                entry.active,
                entry.notes,
            ),
        )

    # stats and history ------------------------------------------------

    def get_market_stats(self, item_name: str) -> MarketStats | None:
        row = self._fetchone(SELECT_STATS, (item_name,))
        if row is None:
            return None
        return MarketStats(
            item_name=row["market_hash_name"],
            avg_price_7d=_dec(row["avg_price_7d"]),
            avg_price_30d=_dec(row["avg_price_30d"]),
            median_price_30d=_dec(row["median_price_30d"]),
            min_price_30d=_dec(row["min_price_30d"]),
            max_price_30d=_dec(row["max_price_30d"]),
            price_volatility=_dec(row["price_volatility"]),
            sales_count_7d=row["sales_count_7d"],
            sales_count_30d=row["sales_count_30d"],
            avg_sales_per_day=_dec(row["avg_sales_per_day"]),
            last_sale_price=_dec(row["last_sale_price"]),
            last_sale_date=row["last_sale_date"],
            calculated_at=row["calculated_at"],
        )

    def save_market_stats(self, stats: MarketStats) -> None:
        self._execute(
            UPSERT_STATS,
            (
                stats.item_name,
                stats.avg_price_7d,
                stats.avg_price_30d,
                stats.median_price_30d,
                stats.min_price_30d,
                stats.max_price_30d,
                stats.price_volatility,
                stats.sales_count_7d,
                stats.sales_count_30d,
                stats.avg_sales_per_day,
                stats.last_sale_price,
                stats.last_sale_date,
                stats.calculated_at,
            ),
        )

    def add_sales(self, sales: Iterable[Sale]) -> int:
        inserted = 0
        with self._connection() as conn, conn.cursor() as cur:
            for sale in sales:
                cur.execute(
                    INSERT_SALE,
                    (
                        "|".join(sale.dedupe_key),
                        sale.item_name,
                        sale.sale_id,
                        sale.price,
                        sale.date_sold,
                    ),
                )
                inserted += cur.rowcount
            conn.commit()
        return inserted

    def get_sales(self, item_name: str, since: datetime) -> list[Sale]:
        rows = self._fetchall(SELECT_SALES, (item_name, since.date()))
        return [
            Sale(
                item_name=row["market_hash_name"],
                sale_id=row["sale_id"],
                price=Decimal(str(row["price"])),
                date_sold=row["date_sold"],
            )
            for row in rows
        ]

    def count_sales_at_or_above(self, item_name: str, price: Decimal, since: datetime) -> int:
        row = self._fetchone(COUNT_SALES_AT_OR_ABOVE, (item_name, price, since.date()))
        return int(row["n"]) if row else 0

    # positions --------------------------------------------------------

    def get_position(self, sale_id: str) -> Position | None:
        row = self._fetchone(SELECT_POSITION, (sale_id,))
        return self._position_from_row(row) if row else None

    def save_position(self, position: Position) -> None:
        self._execute(
            UPSERT_POSITION,
            (
                position.sale_id,
                position.item_name,
                position.purchase_price,
                position.purchase_date,
                position.target_sell_price,
                position.status.value,
                position.risk_score,
                position.listed_price,
                position.listed_date,
                position.item_id,
                position.sold_price,
                position.sold_date,
                position.sold_fee,
                position.net_profit,
                position.profit_pct,
                "\n".join(position.notes),
            ),
        )

    def list_positions(self, statuses: Iterable[PositionStatus] | None = None) -> list[Position]:
        if statuses is None:
            rows = self._fetchall("SELECT * FROM inventory ORDER BY purchase_date;", ())
        else:
            rows = self._fetchall(
                "SELECT * FROM inventory WHERE status = ANY(%s) ORDER BY purchase_date;",
                ([s.value for s in statuses],),
            )
        return [self._position_from_row(row) for row in rows]

    def count_open_positions(self, item_name: str) -> int:
        row = self._fetchone(COUNT_OPEN_POSITIONS, (item_name,))
        return int(row["n"]) if row else 0

    def total_invested(self) -> Decimal:
        row = self._fetchone(SUM_INVESTED, ())
        return money(row["total"]) if row else ZERO

    def realized_profit(self, since: datetime | None = None) -> Decimal:
        row = self._fetchone(SUM_REALIZED, (since, since))
        return money(row["total"]) if row else ZERO

    # ledger tables ----------------------------------------------------

    def save_transaction(self, transaction: Transaction) -> None:
        self._execute(
            UPSERT_TRANSACTION,
            (
                transaction.id,
                transaction.transaction_type.value,
                transaction.item_name,
                transaction.external_id,
                transaction.price,
                transaction.fee,
                transaction.net_amount,
                transaction.balance_before,
                transaction.balance_after,
                transaction.status.value,
                transaction.error_message,
                json.dumps(transaction.metadata),
                transaction.created_at,
            ),
        )

    def list_transactions(self, limit: int = 100) -> list[Transaction]:
        rows = self._fetchall(SELECT_TRANSACTIONS, (limit,))
        return [
            Transaction(
                id=row["id"],
                transaction_type=TransactionType(row["transaction_type"]),
                item_name=row["market_hash_name"],
                external_id=row["external_id"],
                price=Decimal(str(row["price"])),
                fee=Decimal(str(row["fee"])),
                net_amount=Decimal(str(row["net_amount"])),
                balance_before=Decimal(str(row["balance_before"])),
                balance_after=Decimal(str(row["balance_after"])),
                status=TransactionStatus(row["status"]),
                error_message=row["error_message"],
                metadata=row["metadata"] or {},
                created_at=row["created_at"],
            )
            for row in rows
        ]

    def save_balance_snapshot(self, state: BudgetState) -> None:
        self._execute(
            INSERT_SNAPSHOT,
            (
                state.balance,
                state.available,
                state.reserved,
                state.invested,
                state.inventory_count,
                state.profit_today,
                state.profit_week,
                state.profit_month,
                state.profit_total,
                state.trading_state.value,
                state.hard_floor,
                state.soft_floor,
                state.taken_at,
            ),
        )

    def latest_balance_snapshot(self) -> BudgetState | None:
        row = self._fetchone(SELECT_LATEST_SNAPSHOT, ())
        if row is None:
            return None
        return BudgetState(
            balance=Decimal(str(row["balance"])),
            available=Decimal(str(row["available_balance"])),
            reserved=Decimal(str(row["reserved_amount"])),
            invested=Decimal(str(row["invested_amount"])),
            inventory_count=row["inventory_count"],
            trading_state=TradingState(row["trading_state"]),
            hard_floor=Decimal(str(row["hard_floor"])),
            soft_floor=Decimal(str(row["soft_floor"])),
            profit_today=Decimal(str(row["realized_profit_today"])),
            profit_week=Decimal(str(row["realized_profit_week"])),
            profit_month=Decimal(str(row["realized_profit_month"])),
            profit_total=Decimal(str(row["realized_profit_total"])),
            taken_at=row["snapshot_date"],
        )

    def save_alert(self, alert: Alert) -> None:
        self._execute(
            INSERT_ALERT,
            (
                alert.kind,
                alert.severity.value,
                alert.title,
                alert.message,
                json.dumps(alert.model_dump(mode="json")),
                alert.created_at,
            ),
        )

    def save_dead_letter(self, envelope: Envelope, error: str) -> None:
        self._execute(
            INSERT_DEAD_LETTER,
            (envelope.id, json.dumps(envelope.message, default=str), envelope.attempts, error),
        )

    def list_dead_letters(self) -> list[dict[str, Any]]:
        rows = self._fetchall(SELECT_DEAD_LETTERS, ())
        return [
            {
                "id": row["message_id"],
                "message": row["message"],
                "attempts": row["attempts"],
                "error": row["error"],
                "failed_at": row["failed_at"],
            }
            for row in rows
        ]

    # helpers ----------------------------------------------------------

    def _connection(self) -> Any:
        if self._pool is None:
            msg = "PostgresTradingStore.open() must be called first"
            raise RuntimeError(msg)
        return self._pool.connection()

    def _execute(self, sql: str, params: tuple[Any, ...]) -> None:
        with self._connection() as conn:
            conn.execute(sql, params)
            conn.commit()

    def _fetchone(self, sql: str, params: tuple[Any, ...]) -> dict[str, Any] | None:
        with (
            self._connection() as conn,
            conn.cursor(row_factory=psycopg.rows.dict_row) as cur,
        ):
            cur.execute(sql, params)
            row: dict[str, Any] | None = cur.fetchone()
        return row

    def _fetchall(self, sql: str, params: tuple[Any, ...]) -> list[dict[str, Any]]:
        with (
            self._connection() as conn,
            conn.cursor(row_factory=psycopg.rows.dict_row) as cur,
        ):
            cur.execute(sql, params)
            rows: list[dict[str, Any]] = cur.fetchall()
        return rows

    @staticmethod
    def _whitelist_from_row(row: dict[str, Any]) -> WhitelistEntry:
        return WhitelistEntry(
            name=row["market_hash_name"],
            tier=Tier(row["tier"]),
            min_discount_pct=Decimal(str(row["min_discount_pct"])),
            min_spread_pct=Decimal(str(row["min_spread_pct"])),
            target_profit_pct=Decimal(str(row["target_profit_pct"])),
            max_holdings=row["max_holdings"],
            active=row["is_active"],
            notes=row.get("notes") or "",
        )

    @staticmethod
    def _position_from_row(row: dict[str, Any]) -> Position:
        notes = row.get("notes") or ""
        risk = row.get("risk_score")
        return Position(
            sale_id=row["sale_id"],
            item_name=row["market_hash_name"],
            purchase_price=Decimal(str(row["purchase_price"])),
            purchase_date=row["purchase_date"],
            target_sell_price=Decimal(str(row["target_sell_price"])),
            status=PositionStatus(row["status"]),
            risk_score=float(risk) if risk is not None else None,
            listed_price=_dec(row.get("listed_price")),
            listed_date=row.get("listed_date"),
            item_id=row.get("item_id"),
            sold_price=_dec(row.get("sold_price")),
            sold_date=row.get("sold_date"),
            sold_fee=_dec(row.get("fee")),
            net_profit=_dec(row.get("net_profit")),
            profit_pct=_dec(row.get("profit_pct")),
            notes=tuple(notes.split("\n")) if notes else (),
        )
