"""
Jupiter price API client, used as the fallback SOL/USD source.

Reference: https://station.jup.ag/docs/apis/price-api-v2

Public endpoint, no API key required.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from ._retry import async_http_get
from ..circuit_breaker import CircuitBreaker, CircuitOpenError
from ..utils import safe_float

logger = logging.getLogger(__name__)

# Retry configuration
_MAX_RETRIES = 3
_BACKOFF_BASE = 1.0

_JUPITER_PRICE_BASE = "https://api.jup.ag/price/v2"


class JupiterClient:
    """Async client for the Jupiter price API."""

    def __init__(
        self,
        timeout: int = 15,
        circuit_breaker: CircuitBreaker | None = None,
        price_url: str = _JUPITER_PRICE_BASE,
    ) -> None:
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None
        self._cb = circuit_breaker
        self._price_url = price_url

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                headers={"Accept": "application/json"},
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _get(self, url: str, params: dict | None = None) -> Any:
        """GET with retry + exponential backoff, guarded by circuit breaker."""
        client = await self._get_client()

        async def _do() -> Any:
            result = await async_http_get(
                client, url, params=params,
                max_retries=_MAX_RETRIES, backoff_base=_BACKOFF_BASE,
                label="Jupiter",
            )
            if result is None:
                raise httpx.RequestError("Jupiter: all retries exhausted")
            return result

        if self._cb is not None:
            try:
                return await self._cb.call(_do)
            except CircuitOpenError:
                logger.warning("Jupiter circuit OPEN – fast-failing %s", url)
                return None
            except httpx.RequestError:
                return None
        return await async_http_get(
            client, url, params=params,
            max_retries=_MAX_RETRIES, backoff_base=_BACKOFF_BASE,
            label="Jupiter",
        )

    async def get_prices(self, mints: list[str]) -> dict[str, Optional[float]]:
        """Current USD prices for up to 100 mints (None when unavailable)."""
        if not mints:
            return {}

        data = await self._get(self._price_url, params={"ids": ",".join(mints[:100])})
        if not isinstance(data, dict) or not isinstance(data.get("data"), dict):
            return {m: None for m in mints}

        result: dict[str, Optional[float]] = {}
        for mint in mints:
            entry = data["data"].get(mint) or {}
            price = safe_float(entry.get("price"))
            result[mint] = price if price and price > 0 else None
        return result

    async def get_price(self, mint: str) -> Optional[float]:
        """Current USD price for a single token."""
        prices = await self.get_prices([mint])
        return prices.get(mint)
