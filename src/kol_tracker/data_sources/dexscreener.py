"""
DexScreener API client for the KOL Trade Tracker.

Reference: https://docs.dexscreener.com/api/reference

Public endpoint, no API key.  ``/latest/dex/tokens/{mints}`` accepts up
to 30 comma-separated mints and returns every pair that has one of them
as base or quote token.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import httpx

from ..circuit_breaker import CircuitBreaker, CircuitOpenError
from ..models import TokenMarketData
from ..utils import chunked, safe_float
from ._retry import async_http_get

logger = logging.getLogger(__name__)

# Retry configuration
_MAX_RETRIES = 3
_BACKOFF_BASE = 1.0  # seconds

BATCH_SIZE = 30
BATCH_DELAY = 0.2  # seconds between batches


def pairs_to_market_data(pairs: list[dict[str, Any]]) -> dict[str, TokenMarketData]:
    """Pick the highest-liquidity Solana pair for each base token."""
    best: dict[str, TokenMarketData] = {}
    for pair in pairs:
        if not isinstance(pair, dict) or pair.get("chainId") != "solana":
            continue
        base = pair.get("baseToken") or {}
        mint = base.get("address")
        if not mint:
            continue

        liquidity = safe_float((pair.get("liquidity") or {}).get("usd"), 0.0) or 0.0
        existing = best.get(mint)
        if existing is not None and existing.liquidity_usd >= liquidity:
            continue

        info = pair.get("info") or {}
        best[mint] = TokenMarketData(
            mint=mint,
            name=base.get("name") or "",
            symbol=base.get("symbol") or "",
            image=info.get("imageUrl") or "",
            price_usd=safe_float(pair.get("priceUsd"), 0.0) or 0.0,
            market_cap=(
                safe_float(pair.get("fdv"))
                or safe_float(pair.get("marketCap"))
                or 0.0
            ),
            price_change_24h=safe_float((pair.get("priceChange") or {}).get("h24"), 0.0) or 0.0,
            liquidity_usd=liquidity,
            volume_24h=safe_float((pair.get("volume") or {}).get("h24"), 0.0) or 0.0,
        )
    return best


class DexScreenerClient:
    """Async wrapper around the DexScreener REST API."""

    def __init__(
        self,
        base_url: str,
        timeout: int = 15,
        circuit_breaker: CircuitBreaker | None = None,
        batch_delay: float = BATCH_DELAY,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None
        self._cb = circuit_breaker
        self._batch_delay = batch_delay

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

    # ------------------------------------------------------------------
    # Public helpers
    # ------------------------------------------------------------------

    async def get_token_pairs(self, mints: list[str]) -> list[dict[str, Any]]:
        """All pairs for up to 30 mints (one request)."""
        if not mints:
            return []
        url = f"{self._base_url}/latest/dex/tokens/{','.join(mints)}"
        data = await self._get(url)
        if not isinstance(data, dict):
            return []
        return data.get("pairs") or []

    async def get_market_data(self, mints: list[str]) -> dict[str, TokenMarketData]:
        """Market snapshot per mint; mints without a Solana pair are absent."""
        unique = list(dict.fromkeys(m for m in mints if m))
        result: dict[str, TokenMarketData] = {}
        for i, batch in enumerate(chunked(unique, BATCH_SIZE)):
            if i and self._batch_delay:
                await asyncio.sleep(self._batch_delay)
            pairs = await self.get_token_pairs(batch)
            wanted = set(batch)
            for mint, data in pairs_to_market_data(pairs).items():
                if mint in wanted:
                    result[mint] = data
        return result

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _get(
        self, url: str, params: dict | None = None
    ) -> Optional[dict[str, Any]]:
        """GET with retry + exponential backoff, guarded by circuit breaker."""
        client = await self._get_client()

        async def _do() -> dict[str, Any]:
            result = await async_http_get(
                client, url, params=params,
                max_retries=_MAX_RETRIES, backoff_base=_BACKOFF_BASE,
                label="DexScreener",
            )
            if result is None:
                raise httpx.RequestError("DexScreener: all retries exhausted")
            return result

        if self._cb is not None:
            try:
                return await self._cb.call(_do)
            except CircuitOpenError:
                logger.warning("DexScreener circuit OPEN – fast-failing %s", url)
                return None
            except httpx.RequestError:
                return None
        return await async_http_get(
            client, url, params=params,
            max_retries=_MAX_RETRIES, backoff_base=_BACKOFF_BASE,
            label="DexScreener",
        )
