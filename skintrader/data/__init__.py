"""Data layer — marketplace client and trading stores."""

from __future__ import annotations

from skintrader.data.postgres_store import PostgresTradingStore
from skintrader.data.skinbaron_client import SkinBaronClient
from skintrader.data.store import InMemoryTradingStore

__all__ = [
    "InMemoryTradingStore",
    "PostgresTradingStore",
    "SkinBaronClient",
]
