"""SkinBaron REST client.

Every endpoint is ``POST {base_url}/{Endpoint}`` with a JSON body that carries
the API key. Calls go through the circuit breaker and rate limiter, and
transient failures are retried with linear backoff.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Awaitable, Callable
from decimal import Decimal
from typing import Any

import httpx

from skintrader.core.logging import get_logger
from skintrader.core.money import money
from skintrader.errors import (
    ApiError,
    RateLimitedError,
    RateLimitExceededError,
    TransientApiError,
    TransportError,
    ValidationError,
)
from skintrader.execution.circuit_breaker import CircuitBreaker
from skintrader.execution.rate_limiter import FixedWindowRateLimiter
from skintrader.models.market import InventoryItem, Listing, Sale, SoldItem

log = get_logger(__name__)

DEFAULT_BASE_URL = "https://api.skinbaron.de"
CS2_APP_ID = 730


def _mask_key(key: str) -> str:
    """Mask all but the last 4 characters of a key."""
    if len(key) <= 4:
        return "****"
    return "*" * (len(key) - 4) + key[-4:]


def _with_wire_prices(rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Prices go out as two-decimal strings, never through a float."""
    return [{**row, "price": str(money(row["price"]))} if "price" in row else row for row in rows]


class SkinBaronClient:
    """Async client for the SkinBaron marketplace API.

    Reads the API key from SKINBARON_API_KEY when none is passed.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str = DEFAULT_BASE_URL,
        *,
        circuit_breaker: CircuitBreaker | None = None,
        rate_limiter: FixedWindowRateLimiter | None = None,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._api_key = api_key if api_key is not None else os.environ.get("SKINBARON_API_KEY", "")
        self._base_url = base_url.rstrip("/")
        self._breaker = circuit_breaker or CircuitBreaker()
        self._limiter = rate_limiter or FixedWindowRateLimiter()
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._timeout = timeout
        self._client = client
        self._sleep = sleep

        if self._api_key:
            log.info("skinbaron_client.init", api_key=_mask_key(self._api_key))
        else:
            log.warning("skinbaron_client.no_api_key")

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        return self._breaker

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers={
                    "Content-Type": "application/json",
                    "x-requested-with": "XMLHttpRequest",
                },
                timeout=httpx.Timeout(self._timeout),
            )
        return self._client

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    async def get_balance(self) -> Decimal:
        data = await self._request("GetBalance")
        if "balance" not in data:
            raise ApiError("invalid balance response", response=data)
        return money(data["balance"])

    async def search(self, item_name: str, limit: int = 50) -> list[Listing]:
        """Current offers for an item. Malformed rows are skipped with a warning."""
        data = await self._request(
            "Search",
            {
                "search_item": item_name,
                "items_per_page": limit,
                "appid": CS2_APP_ID,
            },
        )
        listings: list[Listing] = []
        for raw in data.get("sales", []):
            try:
                listings.append(Listing.from_api(raw, item_name=item_name))
            except ValidationError as exc:
                log.warning("listing_invalid", item=item_name, error=str(exc))
        return listings

    async def buy_items(self, sale_ids: list[str]) -> dict[str, Any]:
        if not sale_ids:
            msg = "sale ids cannot be empty"
            raise ValidationError(msg)
        log.info("skinbaron_client.buy_items", sale_ids=sale_ids)
        data = await self._request("BuyItems", {"saleids": ",".join(sale_ids)})
        if not data.get("itemsBought"):
            raise ApiError("purchase failed: no items bought", response=data)
        log.info(
            "skinbaron_client.bought",
            items_bought=len(data["itemsBought"]),
            balance=str(data.get("balance", "unknown")),
        )
        return data

    async def list_items(self, items: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """List owned items. Each item is ``{"appId": ..., "price": ...}``."""
        if not items:
            msg = "items cannot be empty"
            raise ValidationError(msg)
        log.info("skinbaron_client.list_items", count=len(items))
        data = await self._request("ListItems", {"items": _with_wire_prices(items)})
        return self._result_rows(data)

    async def edit_price(self, updates: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Re-price listed items. Each update is ``{"saleId": ..., "price": ...}``."""
        if not updates:
            msg = "price updates cannot be empty"
            raise ValidationError(msg)
        log.info("skinbaron_client.edit_price", count=len(updates))
        data = await self._request("EditPriceMulti", {"items": _with_wire_prices(updates)})
        return self._result_rows(data)

    async def get_inventory(self) -> list[InventoryItem]:
        data = await self._request("GetInventory")
        items: list[InventoryItem] = []
        for raw in data.get("inventory", []):
            try:
                items.append(InventoryItem.from_api(raw))
            except ValidationError as exc:
                log.warning("inventory_row_invalid", error=str(exc))
        return items

    async def get_sales_history(self, item_name: str) -> list[Sale]:
        data = await self._request("GetNewestSales30Days", {"itemName": item_name})
        sales: list[Sale] = []
        for raw in data.get("newestSales30Days", []):
            try:
                sales.append(Sale.from_api(raw, item_name))
            except ValidationError as exc:
                log.warning("sale_row_invalid", item=item_name, error=str(exc))
        return sales

    async def get_my_sales(self, page: int = 1) -> list[SoldItem]:
        data = await self._request("GetMySales", {"page": page})
        sold: list[SoldItem] = []
        for raw in data.get("sales", []):
            try:
                sold.append(SoldItem.from_api(raw))
            except ValidationError as exc:
                log.warning("sold_row_invalid", error=str(exc))
        return sold

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------
    # Request loop
    # ------------------------------------------------------------------

    async def _request(self, endpoint: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """POST one endpoint with breaker, limiter and retries.

        Raises:
            CircuitOpenError: Breaker is open; nothing was sent.
            ApiError: 4xx (other than 429) or an error payload. Not retried.
            RateLimitedError: The marketplace answered 429.
            TransientApiError: 5xx, bad JSON or transport failure after all retries.
        """
        probe = self._breaker.check_and_raise()
        body = {"apikey": self._api_key, **(params or {})}
        try:
            return await self._send(endpoint, body)
        finally:
            if probe:
                self._breaker.release_probe()

    async def _send(self, endpoint: str, body: dict[str, Any]) -> dict[str, Any]:
        client = await self._get_client()

        attempt = 0
        last_error: TransientApiError | None = None
        while attempt < self._max_retries:
            try:
                await self._limiter.acquire()
            except RateLimitExceededError as exc:
                await self._sleep(exc.retry_after)
                continue
            attempt += 1

            try:
                resp = await client.post(f"/{endpoint}", json=body)
            except httpx.HTTPError as exc:
                last_error = TransportError(f"{endpoint}: {exc.__class__.__name__}: {exc}")
                log.warning(
                    "skinbaron_request_failed",
                    endpoint=endpoint,
                    attempt=attempt,
                    error=str(exc),
                )
                await self._backoff(attempt)
                continue

            status = resp.status_code
            if status == 429:
                retry_after = float(resp.headers.get("Retry-After", "0") or 0)
                self._breaker.record_failure()
                log.warning("skinbaron_rate_limited", endpoint=endpoint, retry_after=retry_after)
                raise RateLimitedError(f"{endpoint}: rate limited by marketplace", retry_after)
            if 400 <= status < 500:
                self._breaker.record_success()
                log.error(
                    "skinbaron_client_error",
                    endpoint=endpoint,
                    status=status,
                    body=resp.text[:500],
                )
                raise ApiError(f"{endpoint}: HTTP {status}", status_code=status, response=resp.text[:500])
            if status >= 500:
                last_error = TransientApiError(f"{endpoint}: HTTP {status}", status_code=status)
                log.warning("skinbaron_server_error", endpoint=endpoint, status=status, attempt=attempt)
                await self._backoff(attempt)
                continue

            try:
                data = resp.json()
            except ValueError:
                last_error = TransientApiError(f"{endpoint}: invalid JSON response", status_code=status)
                log.warning(
                    "skinbaron_invalid_json",
                    endpoint=endpoint,
                    attempt=attempt,
                    raw=resp.text[:500],
                )
                await self._backoff(attempt)
                continue

            if isinstance(data, dict) and data.get("error"):
                self._breaker.record_success()
                raise ApiError(f"{endpoint}: {data['error']}", status_code=status, response=data)

            self._breaker.record_success()
            log.debug("skinbaron_request_ok", endpoint=endpoint, attempt=attempt)
            return data if isinstance(data, dict) else {"result": data}

        self._breaker.record_failure()
        log.error("skinbaron_request_exhausted", endpoint=endpoint, attempts=attempt)
        raise last_error or TransientApiError(f"{endpoint}: request failed")

    async def _backoff(self, attempt: int) -> None:
        if attempt < self._max_retries:
            await self._sleep(self._retry_delay * attempt)

    @staticmethod
    def _result_rows(data: dict[str, Any]) -> list[dict[str, Any]]:
        """ListItems / EditPriceMulti answer with a list of per-item results."""
        rows = data.get("result", data.get("items", []))
        return rows if isinstance(rows, list) else [rows]
