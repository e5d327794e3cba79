"""In-memory TradingStore for tests, dry runs and single-process use."""

from __future__ import annotations

import threading
from collections.abc import Iterable
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from skintrader.core.money import ZERO, money
from skintrader.models.inventory import Position, PositionStatus, Transaction

if TYPE_CHECKING:
    from skintrader.execution.queue import Envelope
    from skintrader.models.alerts import Alert
    from skintrader.models.budget import BudgetState
    from skintrader.models.market import MarketStats, Sale, Tier, WhitelistEntry

OPEN_STATUSES = (PositionStatus.HOLDING, PositionStatus.LISTED)


class InMemoryTradingStore:
    """Lock-guarded dicts and lists implementing the TradingStore protocol."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._whitelist: dict[str, WhitelistEntry] = {}
        self._stats: dict[str, MarketStats] = {}
        self._sales: dict[str, list[Sale]] = {}
        self._sale_keys: set[tuple[str, ...]] = set()
        self._positions: dict[str, Position] = {}
        self._transactions: dict[str, Transaction] = {}
        self._snapshots: list[BudgetState] = []
        self.alerts: list[Alert] = []
        self._dead_letters: list[dict[str, Any]] = []

    # whitelist --------------------------------------------------------

    def get_whitelist_entry(self, name: str) -> WhitelistEntry | None:
        return self._whitelist.get(name)

    def list_whitelist(
        self, tier: Tier | None = None, active_only: bool = True
    ) -> list[WhitelistEntry]:
        with self._lock:
            entries = list(self._whitelist.values())
        return sorted(
            (
                e
                for e in entries
                if (tier is None or e.tier == tier) and (e.active or not active_only)
            ),
            key=lambda e: (e.tier, e.name),
        )

    def save_whitelist_entry(self, entry: WhitelistEntry) -> None:
        with self._lock:
            self._whitelist[entry.name] = entry

    # stats and history ------------------------------------------------

    def get_market_stats(self, item_name: str) -> MarketStats | None:
        return self._stats.get(item_name)

    def save_market_stats(self, stats: MarketStats) -> None:
        with self._lock:
            self._stats[stats.item_name] = stats

    def add_sales(self, sales: Iterable[Sale]) -> int:
        inserted = 0
        with self._lock:
            for sale in sales:
                if sale.dedupe_key in self._sale_keys:
                    continue
                self._sale_keys.add(sale.dedupe_key)
                self._sales.setdefault(sale.item_name, []).append(sale)
                inserted += 1
        return inserted

    def get_sales(self, item_name: str, since: datetime) -> list[Sale]:
        cutoff = since.date()
        with self._lock:
            sales = list(self._sales.get(item_name, []))
        return sorted((s for s in sales if s.date_sold >= cutoff), key=lambda s: s.date_sold)

    def count_sales_at_or_above(self, item_name: str, price: Decimal, since: datetime) -> int:
        return sum(1 for s in self.get_sales(item_name, since) if s.price >= price)

    # positions --------------------------------------------------------

    def get_position(self, sale_id: str) -> Position | None:
        return self._positions.get(sale_id)

    def save_position(self, position: Position) -> None:
        with self._lock:
            self._positions[position.sale_id] = position

    def list_positions(self, statuses: Iterable[PositionStatus] | None = None) -> list[Position]:
        wanted = set(statuses) if statuses is not None else None
        with self._lock:
            positions = list(self._positions.values())
        return sorted(
            (p for p in positions if wanted is None or p.status in wanted),
            key=lambda p: p.purchase_date,
        )

    def count_open_positions(self, item_name: str) -> int:
        with self._lock:
            return sum(
                1
                for p in self._positions.values()
                if p.item_name == item_name and p.status in OPEN_STATUSES
            )

    def total_invested(self) -> Decimal:
        with self._lock:
            return money(
                sum(
                    (p.purchase_price for p in self._positions.values() if p.status in OPEN_STATUSES),
                    ZERO,
                )
            )

    def realized_profit(self, since: datetime | None = None) -> Decimal:
        with self._lock:
            sold = [p for p in self._positions.values() if p.status is PositionStatus.SOLD]
        return money(
            sum(
                (
                    p.net_profit or ZERO
                    for p in sold
                    if since is None or (p.sold_date is not None and p.sold_date >= since)
                ),
                ZERO,
            )
        )

    # ledger tables ----------------------------------------------------

    def save_transaction(self, transaction: Transaction) -> None:
        with self._lock:
            self._transactions[str(transaction.id)] = transaction

    def list_transactions(self, limit: int = 100) -> list[Transaction]:
        with self._lock:
            txs = list(self._transactions.values())
        return sorted(txs, key=lambda t: t.created_at, reverse=True)[:limit]

    def save_balance_snapshot(self, state: BudgetState) -> None:
        with self._lock:
            self._snapshots.append(state)

    def latest_balance_snapshot(self) -> BudgetState | None:
        with self._lock:
            return self._snapshots[-1] if self._snapshots else None

    def save_alert(self, alert: Alert) -> None:
        with self._lock:
            self.alerts.append(alert)

    def save_dead_letter(self, envelope: Envelope, error: str) -> None:
        with self._lock:
            self._dead_letters.append(
                {
                    "id": envelope.id,
                    "message": envelope.message,
                    "attempts": envelope.attempts,
                    "error": error,
                    "failed_at": datetime.now(tz=UTC),
                }
            )

    def list_dead_letters(self) -> list[dict[str, Any]]:
        with self._lock:
            return list(self._dead_letters)
