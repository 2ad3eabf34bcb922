"""
Market data refresher and SOL/USD price holder.

- SOL price: CoinGecko first, Jupiter fallback; the last good value is
  kept when both fail (``SOL_PRICE_DEFAULT_USD`` until the first success).
- Token market data: DexScreener snapshots written to the token cache
  for mints KOLs traded recently.

Both refreshes also run as periodic background tasks started by the API
lifespan (``schedule_loops`` / ``cancel_loops``).
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Iterable, Optional

from .constants import WSOL_MINT

if TYPE_CHECKING:
    from .data_sources.coingecko import CoinGeckoClient
    from .data_sources.dexscreener import DexScreenerClient
    from .data_sources.jupiter import JupiterClient
    from .store import TradeStore

logger = logging.getLogger(__name__)

RECENT_WINDOW_SECONDS = 24 * 3600
RECENT_TOKEN_LIMIT = 100


class MarketDataService:
    def __init__(
        self,
        store: "TradeStore",
        dex: "DexScreenerClient",
        coingecko: "CoinGeckoClient",
        jupiter: "JupiterClient",
        *,
        default_sol_price: float = 80.0,
    ) -> None:
        self._store = store
        self._dex = dex
        self._gecko = coingecko
        self._jupiter = jupiter
        self._sol_price = default_sol_price
        self.sol_price_updated_at: Optional[float] = None
        self._tasks: list[asyncio.Task] = []

    @property
    def sol_price(self) -> float:
        return self._sol_price

    # ------------------------------------------------------------------
    # SOL price
    # ------------------------------------------------------------------

    async def refresh_sol_price(self) -> float:
        """Fetch SOL/USD; keeps the previous value when every source fails."""
        price = await self._gecko.get_usd_price("solana")
        source = "coingecko"
        if price is None:
            price = await self._jupiter.get_price(WSOL_MINT)
            source = "jupiter"
        if price is None:
            logger.warning("SOL price unavailable – keeping $%.2f", self._sol_price)
            return self._sol_price
        self._sol_price = price
        self.sol_price_updated_at = time.time()
        logger.debug("SOL price $%.2f (%s)", price, source)
        return price

    # ------------------------------------------------------------------
    # Token market data
    # ------------------------------------------------------------------

    async def refresh_mints(self, mints: Iterable[str]) -> int:
        """Fetch and store market data for *mints*; returns rows updated."""
        wanted = [m for m in dict.fromkeys(mints) if m and m != WSOL_MINT]
        if not wanted:
            return 0
        market = await self._dex.get_market_data(wanted)
        for data in market.values():
            await self._store.upsert_token_market(data)
        logger.info("Market data refreshed for %d/%d tokens", len(market), len(wanted))
        return len(market)

    async def refresh_stale(self, mints: Iterable[str], max_age_seconds: float) -> int:
        """Refresh only mints whose cached snapshot is missing or too old."""
        stale = await self._store.stale_mints(mints, max_age_seconds)
        return await self.refresh_mints(stale)

    async def refresh_recent_tokens(
        self,
        window_seconds: int = RECENT_WINDOW_SECONDS,
        limit: int = RECENT_TOKEN_LIMIT,
    ) -> int:
        """Refresh every mint traded within the last *window_seconds*."""
        since = int(time.time()) - window_seconds
        activity = await self._store.recent_token_activity(since, limit=limit)
        return await self.refresh_mints(a.token_mint for a in activity)

    # ------------------------------------------------------------------
    # Background loops
    # ------------------------------------------------------------------

    async def _loop(self, name: str, interval: float, job) -> None:
        logger.info("%s background task started (interval=%ds)", name, interval)
        while True:
            try:
                await job()
            except asyncio.CancelledError:
                logger.info("%s task cancelled", name)
                return
            except Exception:
                logger.warning("%s iteration failed", name, exc_info=True)
            await asyncio.sleep(interval)

    def schedule_loops(self, sol_interval: float, market_interval: float) -> list[asyncio.Task]:
        """Launch the SOL-price and market-data refresh tasks."""
        if any(not t.done() for t in self._tasks):
            return self._tasks
        self._tasks = [
            asyncio.create_task(
                self._loop("SOL price refresh", sol_interval, self.refresh_sol_price),
                name="sol_price_refresh",
            ),
            asyncio.create_task(
                self._loop("Market data refresh", market_interval, self.refresh_recent_tokens),
                name="market_refresh",
            ),
        ]
        return self._tasks

    def cancel_loops(self) -> None:
        for task in self._tasks:
            if not task.done():
                task.cancel()
        self._tasks = []
