"""
CoinGecko simple-price client, the primary SOL/USD source.

Reference: https://docs.coingecko.com/reference/simple-price
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from ._retry import async_http_get
from ..circuit_breaker import CircuitBreaker, CircuitOpenError
from ..utils import safe_float

logger = logging.getLogger(__name__)

_MAX_RETRIES = 2
_BACKOFF_BASE = 1.0


class CoinGeckoClient:
    def __init__(
        self,
        base_url: str = "https://api.coingecko.com/api/v3",
        timeout: int = 15,
        circuit_breaker: CircuitBreaker | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None
        self._cb = circuit_breaker

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
        client = await self._get_client()

        async def _do() -> Any:
            result = await async_http_get(
                client, url, params=params,
                max_retries=_MAX_RETRIES, backoff_base=_BACKOFF_BASE,
                label="CoinGecko",
            )
            if result is None:
                raise httpx.RequestError("CoinGecko: all retries exhausted")
            return result

        if self._cb is None:
            return await async_http_get(
                client, url, params=params,
                max_retries=_MAX_RETRIES, backoff_base=_BACKOFF_BASE,
                label="CoinGecko",
            )
        try:
            return await self._cb.call(_do)
        except CircuitOpenError:
            logger.warning("CoinGecko circuit OPEN – fast-failing %s", url)
            return None
        except httpx.RequestError:
            return None

    async def get_usd_price(self, coin_id: str = "solana") -> Optional[float]:
        """USD price of *coin_id*, or None."""
        data = await self._get(
            f"{self._base_url}/simple/price",
            params={"ids": coin_id, "vs_currencies": "usd"},
        )
        if not isinstance(data, dict):
            return None
        price = safe_float((data.get(coin_id) or {}).get("usd"))
        return price if price and price > 0 else None
