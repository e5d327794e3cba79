"""Shared reservation stores.

A reservation is a temporary hold against the balance for an in-flight
purchase. ``add_within`` checks the running total against the caller's caps
and adds the reservation in one atomic step, so two evaluators can never both
see room for the same money.
"""

from __future__ import annotations

import os
import threading
import time
from collections.abc import Callable
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

import redis

from skintrader.core.logging import get_logger
from skintrader.core.money import CENT, ZERO, money
from skintrader.errors import DuplicateReservationError
from skintrader.models.budget import Reservation

log = get_logger(__name__)

KEY_PREFIX = "skintrader:"


class InMemoryReservationStore:
    """Lock-guarded dict. Correct when every worker shares one process."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._items: dict[str, tuple[Decimal, float]] = {}

    def add_within(
        self,
        identifier: str,
        amount: Decimal,
        *,
        max_total: Decimal,
        floor_total: Decimal,
    ) -> bool:
        """Add ``amount`` unless the new total exceeds ``max_total`` or reaches ``floor_total``.

        Raises:
            DuplicateReservationError: If ``identifier`` is already reserved.
        """
        amount = money(amount)
        with self._lock:
            if identifier in self._items:
                raise DuplicateReservationError(identifier)
            new_total = self._sum() + amount
            if new_total > max_total or new_total >= floor_total:
                return False
            self._items[identifier] = (amount, self._clock())
            return True

    def remove(self, identifier: str) -> Decimal | None:
        with self._lock:
            entry = self._items.pop(identifier, None)
        return entry[0] if entry else None

    def total(self) -> Decimal:
        with self._lock:
            return self._sum()

    def reservations(self) -> list[Reservation]:
        with self._lock:
            items = list(self._items.items())
        return [
            Reservation(
                identifier=identifier,
                amount=amount,
                created_at=datetime.fromtimestamp(created, tz=UTC),
            )
            for identifier, (amount, created) in items
        ]

    def expire(self, older_than_seconds: float) -> list[str]:
        cutoff = self._clock() - older_than_seconds
        with self._lock:
            stale = [i for i, (_, created) in self._items.items() if created < cutoff]
            for identifier in stale:
                del self._items[identifier]
        return stale

    def _sum(self) -> Decimal:
        return money(sum((amount for amount, _ in self._items.values()), ZERO))


# KEYS[1] amounts hash (cents), KEYS[2] created-at hash
# ARGV: identifier, cents, max_total_cents, floor_total_cents, now
# returns -1 duplicate, 0 refused, 1 reserved
_ADD_WITHIN_LUA = """
if redis.call('HEXISTS', KEYS[1], ARGV[1]) == 1 then
  return -1
end
local total = 0
for _, v in ipairs(redis.call('HVALS', KEYS[1])) do
  total = total + tonumber(v)
end
local new_total = total + tonumber(ARGV[2])
if new_total > tonumber(ARGV[3]) or new_total >= tonumber(ARGV[4]) then
  return 0
end
redis.call('HSET', KEYS[1], ARGV[1], ARGV[2])
redis.call('HSET', KEYS[2], ARGV[1], ARGV[5])
return 1
"""

_REMOVE_LUA = """
local amount = redis.call('HGET', KEYS[1], ARGV[1])
redis.call('HDEL', KEYS[1], ARGV[1])
redis.call('HDEL', KEYS[2], ARGV[1])
return amount
"""


def _to_cents(amount: Decimal) -> int:
    return int((money(amount) / CENT).to_integral_value())


def _from_cents(cents: Any) -> Decimal:
    return money(Decimal(int(cents)) * CENT)


class RedisReservationStore:
    """Reservations shared between worker processes through Redis.

    Amounts are stored as integer cents in one hash, creation times in a
    second hash. Check-then-reserve runs server-side as a Lua script, so it is
    atomic across processes. Reads URL from REDIS_URL when none is given.
    """

    def __init__(
        self,
        url: str | None = None,
        *,
        client: Any | None = None,
        prefix: str = KEY_PREFIX,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if client is None:
            client = redis.Redis.from_url(
                url or os.environ.get("REDIS_URL", "redis://localhost:6379/0"),
                decode_responses=True,
                socket_timeout=5.0,
                socket_connect_timeout=5.0,
            )
        self._redis = client
        self._amounts_key = f"{prefix}reservations:amounts"
        self._created_key = f"{prefix}reservations:created"
        self._clock = clock
        self._add_script = self._redis.register_script(_ADD_WITHIN_LUA)
        self._remove_script = self._redis.register_script(_REMOVE_LUA)

    def add_within(
        self,
        identifier: str,
        amount: Decimal,
        *,
        max_total: Decimal,
        floor_total: Decimal,
    ) -> bool:
        result = int(
            self._add_script(
                keys=[self._amounts_key, self._created_key],
                args=[
                    identifier,
                    _to_cents(amount),
                    _to_cents(max_total),
                    _to_cents(floor_total),
                    repr(self._clock()),
                ],
            )
        )
        if result == -1:
            raise DuplicateReservationError(identifier)
        return result == 1

    def remove(self, identifier: str) -> Decimal | None:
        cents = self._remove_script(keys=[self._amounts_key, self._created_key], args=[identifier])
        return _from_cents(cents) if cents is not None else None

    def total(self) -> Decimal:
        values = self._redis.hvals(self._amounts_key)
        return money(sum((_from_cents(v) for v in values), ZERO))

    def reservations(self) -> list[Reservation]:
        amounts = self._redis.hgetall(self._amounts_key)
        created = self._redis.hgetall(self._created_key)
        return [
            Reservation(
                identifier=identifier,
                amount=_from_cents(cents),
                created_at=datetime.fromtimestamp(float(created.get(identifier, 0)), tz=UTC),
            )
            for identifier, cents in amounts.items()
        ]

    def expire(self, older_than_seconds: float) -> list[str]:
        cutoff = self._clock() - older_than_seconds
        stale = [
            identifier
            for identifier, created in self._redis.hgetall(self._created_key).items()
            if float(created) < cutoff
        ]
        for identifier in stale:
            if self.remove(identifier) is None:
                log.debug("reservation_already_released", reservation_id=identifier)
        return stale
