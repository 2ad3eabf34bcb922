"""
Singleton HTTP client management for the KOL Trade Tracker.

Provides lazy-initialised clients for Helius, DexScreener, Jupiter and
CoinGecko, one circuit breaker per service, and the process-wide Helius
credit counter.

``init_clients`` / ``close_clients`` should be called at app startup/shutdown.
"""

from __future__ import annotations

import logging
from typing import Optional

from ..circuit_breaker import CircuitBreaker, register
from ..scan_state import CreditCounter
from .coingecko import CoinGeckoClient
from .dexscreener import DexScreenerClient
from .helius import HeliusClient
from .jupiter import JupiterClient
from config import (
    CB_FAILURE_THRESHOLD,
    CB_RECOVERY_TIMEOUT,
    COINGECKO_BASE_URL,
    DEEP_PAGE_DELAY,
    DEXSCREENER_BASE_URL,
    HELIUS_API_KEY,
    HELIUS_BASE_URL,
    HELIUS_ENABLED,
    REQUEST_TIMEOUT,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Module-level singletons (created once, reused)
# ---------------------------------------------------------------------------
_helius_client: Optional[HeliusClient] = None
_dex_client: Optional[DexScreenerClient] = None
_jup_client: Optional[JupiterClient] = None
_gecko_client: Optional[CoinGeckoClient] = None

# Estimated Helius credits spent by this process
credits = CreditCounter()


def _breaker(name: str) -> CircuitBreaker:
    return register(
        CircuitBreaker(
            name,
            failure_threshold=CB_FAILURE_THRESHOLD,
            recovery_timeout=CB_RECOVERY_TIMEOUT,
        )
    )


# One breaker per external service, registered for health reporting
cb_helius = _breaker("helius")
cb_dexscreener = _breaker("dexscreener")
cb_jupiter = _breaker("jupiter")
cb_coingecko = _breaker("coingecko")


def get_helius_client() -> HeliusClient:
    global _helius_client
    if _helius_client is None:
        _helius_client = HeliusClient(
            api_key=HELIUS_API_KEY,
            base_url=HELIUS_BASE_URL,
            timeout=REQUEST_TIMEOUT,
            enabled=HELIUS_ENABLED,
            credits=credits,
            circuit_breaker=cb_helius,
            page_delay=DEEP_PAGE_DELAY,
        )
        if not _helius_client.enabled:
            logger.warning("Helius disabled – set HELIUS_ENABLED=true and HELIUS_API_KEY")
    return _helius_client


def get_dex_client() -> DexScreenerClient:
    global _dex_client
    if _dex_client is None:
        _dex_client = DexScreenerClient(
            base_url=DEXSCREENER_BASE_URL,
            timeout=REQUEST_TIMEOUT,
            circuit_breaker=cb_dexscreener,
        )
    return _dex_client


def get_jup_client() -> JupiterClient:
    global _jup_client
    if _jup_client is None:
        _jup_client = JupiterClient(
            timeout=REQUEST_TIMEOUT,
            circuit_breaker=cb_jupiter,
        )
    return _jup_client


def get_gecko_client() -> CoinGeckoClient:
    global _gecko_client
    if _gecko_client is None:
        _gecko_client = CoinGeckoClient(
            base_url=COINGECKO_BASE_URL,
            timeout=REQUEST_TIMEOUT,
            circuit_breaker=cb_coingecko,
        )
    return _gecko_client


async def init_clients() -> None:
    """Eagerly create the singleton HTTP clients (called at startup)."""
    get_helius_client()
    get_dex_client()
    get_jup_client()
    get_gecko_client()


async def close_clients() -> None:
    """Close singleton HTTP clients gracefully (called at shutdown)."""
    global _helius_client, _dex_client, _jup_client, _gecko_client
    if _helius_client is not None:
        await _helius_client.close()
        _helius_client = None
    if _dex_client is not None:
        await _dex_client.close()
        _dex_client = None
    if _jup_client is not None:
        await _jup_client.close()
        _jup_client = None
    if _gecko_client is not None:
        await _gecko_client.close()
        _gecko_client = None
