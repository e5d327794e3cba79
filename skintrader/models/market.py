"""Market data models — whitelist, rolling stats, listings, sales, inventory rows."""

from __future__ import annotations

from datetime import UTC, date, datetime  # noqa: TCH003 — Pydantic needs runtime access
from decimal import Decimal
from enum import IntEnum
from typing import Any

from pydantic import BaseModel, Field, model_validator

from skintrader.core.money import money
from skintrader.errors import ValidationError


class Tier(IntEnum):
    """Liquidity class. Tier 1 items sell fast, tier 2 need a deeper discount."""

    ONE = 1
    TWO = 2


class WhitelistEntry(BaseModel):
    """A tradable item curated by the operator. Read-only to the engine."""

    name: str
    tier: Tier = Tier.ONE
    min_discount_pct: Decimal = Decimal("15.00")
    min_spread_pct: Decimal = Decimal("5.00")
    target_profit_pct: Decimal = Decimal("10.00")
    max_holdings: int = 3
    active: bool = True
    notes: str = ""

    @model_validator(mode="after")
    def percentages_non_negative(self) -> WhitelistEntry:
        for value in (self.min_discount_pct, self.min_spread_pct, self.target_profit_pct):
            if value < 0:
                msg = "whitelist percentages must be >= 0"
                raise ValueError(msg)
        if self.max_holdings < 0:
            msg = "max_holdings must be >= 0"
            raise ValueError(msg)
        return self

    model_config = {"frozen": True}


class MarketStats(BaseModel):
    """Pre-computed rolling statistics for one item."""

    item_name: str
    avg_price_7d: Decimal | None = None
    avg_price_30d: Decimal | None = None
    median_price_30d: Decimal | None = None
    min_price_30d: Decimal | None = None
    max_price_30d: Decimal | None = None
    price_volatility: Decimal | None = None
    sales_count_7d: int = 0
    sales_count_30d: int = 0
    avg_sales_per_day: Decimal | None = None
    last_sale_price: Decimal | None = None
    last_sale_date: date | None = None
    calculated_at: datetime

    @property
    def has_reliable_data(self) -> bool:
        return self.sales_count_30d >= 10

    model_config = {"frozen": True}


class Listing(BaseModel):
    """One marketplace offer from a search snapshot."""

    sale_id: str
    item_name: str
    price: Decimal
    next_price: Decimal | None = None
    wear: Decimal | None = None

    @classmethod
    def from_api(cls, raw: dict[str, Any], item_name: str | None = None) -> Listing:
        """Build a listing from a Search result row.

        Raises:
            ValidationError: If id, name or a positive price is missing.
        """
        sale_id = raw.get("id") or raw.get("saleId")
        name = raw.get("market_name") or raw.get("marketHashName") or item_name
        price = raw.get("price")
        if not sale_id or not name or price is None:
            msg = f"listing is missing id, name or price: {raw!r}"
            raise ValidationError(msg)
        try:
            parsed = money(price)
        except ValueError as exc:
            raise ValidationError(f"listing price is not a number: {price!r}") from exc
        if parsed <= 0:
            msg = f"listing price must be positive, got {parsed}"
            raise ValidationError(msg)
        wear = raw.get("wear") if raw.get("wear") is not None else raw.get("wearValue")
        return cls(
            sale_id=str(sale_id),
            item_name=str(name),
            price=parsed,
            wear=Decimal(str(wear)) if wear is not None else None,
        )

    def with_next_price(self, next_price: Decimal | None) -> Listing:
        return self.model_copy(update={"next_price": next_price})

    model_config = {"frozen": True}


class Sale(BaseModel):
    """A completed marketplace sale used for history and statistics."""

    item_name: str
    price: Decimal
    date_sold: date
    sale_id: str | None = None
    wear: Decimal | None = None

    @classmethod
    def from_api(cls, raw: dict[str, Any], item_name: str) -> Sale:
        """Parse a GetNewestSales30Days row (``dateSold`` is ``YYYY-MM-DD``)."""
        if raw.get("price") is None or not raw.get("dateSold"):
            msg = f"sale is missing price or dateSold: {raw!r}"
            raise ValidationError(msg)
        try:
            sold = date.fromisoformat(str(raw["dateSold"])[:10])
            price = money(raw["price"])
        except ValueError as exc:
            raise ValidationError(f"malformed sale row: {raw!r}") from exc
        wear = raw.get("wear")
        return cls(
            item_name=raw.get("marketHashName") or item_name,
            price=price,
            date_sold=sold,
            sale_id=str(raw["saleId"]) if raw.get("saleId") else None,
            wear=Decimal(str(wear)) if wear is not None else None,
        )

    @property
    def dedupe_key(self) -> tuple[str, ...]:
        if self.sale_id:
            return (self.item_name, self.sale_id)
        return (self.item_name, str(self.price), self.date_sold.isoformat())

    model_config = {"frozen": True}


class InventoryItem(BaseModel):
    """One row of our marketplace inventory (items owned, maybe listed)."""

    sale_id: str
    item_name: str = ""
    app_id: str | None = None
    item_id: str | None = None
    price: Decimal | None = None
    raw: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_api(cls, raw: dict[str, Any]) -> InventoryItem:
        sale_id = raw.get("saleId") or raw.get("id")
        if not sale_id:
            msg = f"inventory row is missing saleId: {raw!r}"
            raise ValidationError(msg)
        app_id = raw.get("appId")
        item_id = raw.get("itemId")
        price = raw.get("price")
        return cls(
            sale_id=str(sale_id),
            item_name=str(raw.get("marketHashName") or raw.get("market_name") or ""),
            app_id=str(app_id) if app_id else None,
            item_id=str(item_id) if item_id else None,
            price=money(price) if price is not None else None,
            raw=raw,
        )

    @property
    def listing_id(self) -> str | None:
        """Identifier ListItems expects: appId, falling back to itemId."""
        return self.app_id or self.item_id

    model_config = {"frozen": True}


class SoldItem(BaseModel):
    """One of our own completed sales (GetMySales row)."""

    sale_id: str
    price: Decimal
    sold_at: datetime | None = None

    @classmethod
    def from_api(cls, raw: dict[str, Any]) -> SoldItem:
        sale_id = raw.get("saleId") or raw.get("id")
        if not sale_id or raw.get("price") is None:
            msg = f"sold item is missing saleId or price: {raw!r}"
            raise ValidationError(msg)
        sold_at = None
        stamp = raw.get("dateSold") or raw.get("soldAt")
        if stamp:
            try:
                sold_at = datetime.fromisoformat(str(stamp))
                if sold_at.tzinfo is None:
                    sold_at = sold_at.replace(tzinfo=UTC)
            except ValueError:
                sold_at = None
        return cls(sale_id=str(sale_id), price=money(raw["price"]), sold_at=sold_at)

    model_config = {"frozen": True}
