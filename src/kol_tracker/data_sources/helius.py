"""
Helius API client for the KOL Trade Tracker.

Reference: https://docs.helius.dev/solana-apis/enhanced-transactions-api

Endpoints used:
- ``GET  /v0/addresses/{address}/transactions``: parsed transaction pages
- ``POST /v0/token-metadata``: name / symbol / image for up to 100 mints
- ``/v0/webhooks``: register the enhanced SWAP webhook

Transaction pages are billed; every page request sent adds
``CREDITS_PER_REQUEST`` to the shared credit estimate.  Requests are not
retried: a failed page ends that wallet's fetch and the next wallet is
tried as usual.  The circuit breaker guards metadata lookups only.
When the client is disabled (no key or ``HELIUS_ENABLED`` off) every call
returns an empty result without touching the network.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import httpx

from ..circuit_breaker import CircuitBreaker, CircuitOpenError
from ..constants import CREDITS_PER_REQUEST
from ..models import TokenMeta
from ..scan_state import CreditCounter
from ..utils import chunked
from ._retry import async_http_delete, async_http_get, async_http_post_json

logger = logging.getLogger(__name__)

# Billed calls are made once
_MAX_RETRIES = 1
_METADATA_CHUNK = 100


class HeliusUnavailable(Exception):
    """Raised inside a guarded call so the circuit breaker counts it."""


def parse_token_metadata(items: Any) -> dict[str, TokenMeta]:
    """Map a ``/v0/token-metadata`` response to ``{mint: TokenMeta}``.

    Off-chain metadata wins over on-chain metadata; entries without a
    symbol are dropped.
    """
    result: dict[str, TokenMeta] = {}
    if not isinstance(items, list):
        return result
    for item in items:
        if not isinstance(item, dict) or not item.get("account"):
            continue
        off_chain = ((item.get("offChainMetadata") or {}).get("metadata")) or {}
        on_chain = (
            ((item.get("onChainMetadata") or {}).get("metadata") or {}).get("data")
        ) or {}
        symbol = (off_chain.get("symbol") or on_chain.get("symbol") or "").strip()
        if not symbol:
            continue
        result[item["account"]] = TokenMeta(
            name=(off_chain.get("name") or on_chain.get("name") or "").strip(),
            symbol=symbol,
            image=off_chain.get("image") or "",
        )
    return result


class HeliusClient:
    """Async wrapper around the Helius REST API."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.helius.xyz",
        timeout: int = 15,
        *,
        enabled: bool = True,
        credits: CreditCounter | None = None,
        circuit_breaker: CircuitBreaker | None = None,
        page_delay: float = 0.25,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._enabled = enabled and bool(api_key)
        self._client: httpx.AsyncClient | None = None
        self._cb = circuit_breaker
        self._page_delay = page_delay
        self.credits = credits or CreditCounter()

    @property
    def enabled(self) -> bool:
        return self._enabled

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

    def _params(self, **extra: Any) -> dict[str, Any]:
        params: dict[str, Any] = {"api-key": self._api_key}
        params.update({k: v for k, v in extra.items() if v is not None})
        return params

    async def _guarded(self, func: Any, *args: Any, **kwargs: Any) -> Optional[Any]:
        """Run a ``_retry`` helper through the circuit breaker."""

        async def _do() -> Any:
            result = await func(*args, **kwargs)
            if result is None:
                raise HeliusUnavailable()
            return result

        if self._cb is None:
            return await func(*args, **kwargs)
        try:
            return await self._cb.call(_do)
        except CircuitOpenError:
            logger.warning("Helius circuit OPEN – skipping request")
            return None
        except HeliusUnavailable:
            return None

    # ------------------------------------------------------------------
    # Enhanced transactions
    # ------------------------------------------------------------------

    async def get_transactions(
        self, address: str, limit: int = 100, before: Optional[str] = None
    ) -> list[dict[str, Any]]:
        """One page of parsed transactions for *address*, newest first."""
        if not self._enabled:
            return []
        client = await self._get_client()
        self.credits.add(CREDITS_PER_REQUEST)
        data = await async_http_get(
            client,
            f"{self._base_url}/v0/addresses/{address}/transactions",
            params=self._params(limit=limit, before=before),
            max_retries=_MAX_RETRIES,
            label="Helius",
        )
        if not isinstance(data, list):
            if data is not None:
                logger.warning("Helius returned %s for %s…", type(data).__name__, address[:8])
            return []
        return data

    async def get_transaction_history(
        self,
        address: str,
        since: int,
        *,
        max_pages: int = 50,
        page_size: int = 100,
    ) -> list[dict[str, Any]]:
        """Page backwards through *address* history down to *since*.

        Stops at the first transaction older than *since*, at a short or
        failed page, or after *max_pages* pages.
        """
        collected: list[dict[str, Any]] = []
        before: Optional[str] = None
        for page in range(max_pages):
            txs = await self.get_transactions(address, limit=page_size, before=before)
            if not txs:
                break

            reached_cutoff = False
            for tx in txs:
                ts = tx.get("timestamp")
                if ts and ts < since:
                    reached_cutoff = True
                    break
                collected.append(tx)

            if reached_cutoff or len(txs) < page_size:
                break
            before = txs[-1].get("signature")
            if not before:
                break
            if page < max_pages - 1 and self._page_delay:
                await asyncio.sleep(self._page_delay)
        return collected

    # ------------------------------------------------------------------
    # Token metadata
    # ------------------------------------------------------------------

    async def get_token_metadata(self, mints: list[str]) -> dict[str, TokenMeta]:
        """Metadata for *mints*; mints without a symbol are absent."""
        if not self._enabled or not mints:
            return {}
        client = await self._get_client()
        result: dict[str, TokenMeta] = {}
        for chunk in chunked(mints, _METADATA_CHUNK):
            data = await self._guarded(
                async_http_post_json,
                client,
                f"{self._base_url}/v0/token-metadata",
                params=self._params(),
                json_payload={
                    "mintAccounts": chunk,
                    "includeOffChain": True,
                    "disableCache": False,
                },
                max_retries=_MAX_RETRIES,
                label="Helius metadata",
            )
            result.update(parse_token_metadata(data))
        return result

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    async def create_webhook(
        self, webhook_url: str, addresses: list[str]
    ) -> Optional[dict[str, Any]]:
        """Register an enhanced webhook for successful SWAPs of *addresses*."""
        if not self._enabled:
            return None
        client = await self._get_client()
        return await async_http_post_json(
            client,
            f"{self._base_url}/v0/webhooks",
            params=self._params(),
            json_payload={
                "webhookURL": webhook_url,
                "transactionTypes": ["SWAP"],
                "accountAddresses": addresses,
                "webhookType": "enhanced",
                "txnStatus": "success",
            },
            max_retries=_MAX_RETRIES,
            label="Helius webhooks",
        )

    async def list_webhooks(self) -> list[dict[str, Any]]:
        if not self._enabled:
            return []
        client = await self._get_client()
        data = await async_http_get(
            client,
            f"{self._base_url}/v0/webhooks",
            params=self._params(),
            max_retries=_MAX_RETRIES,
            label="Helius webhooks",
        )
        return data if isinstance(data, list) else []

    async def delete_webhook(self, webhook_id: str) -> bool:
        if not self._enabled:
            return False
        client = await self._get_client()
        return await async_http_delete(
            client,
            f"{self._base_url}/v0/webhooks/{webhook_id}",
            params=self._params(),
            label="Helius webhooks",
        )
