"""
Ingestion pipeline: raw Helius transactions -> persisted ``Trade`` rows.

Three entry points feed the same classify -> validate -> insert path:

- ``handle_webhook``: push delivery of enhanced SWAP transactions;
- ``run_background_scan``: shallow pull of the latest transactions of
  every tracked wallet (groups of KOLs in parallel);
- ``run_deep_backfill``: paginated pull of the last N days, KOL by KOL.

Scans are mutually exclusive through ``ScanState.try_begin``.  The
``start_*`` variants claim the scan slot synchronously and run the scan
as a background task, so an HTTP handler can answer 409 immediately.
Every scan ends with a market-data refresh of recently traded tokens.
"""

from __future__ import annotations

import asyncio
import logging
import math
import random
import time
from typing import TYPE_CHECKING, Any, Coroutine, Iterable, Optional

from .classifier import classify
from .constants import MIN_WALLET_LENGTH
from .kol_registry import KolRegistry
from .logging_config import generate_request_id, request_id_ctx
from .models import Kol, ScanStatus, ScanSummary, TokenCacheEntry, TokenMeta, WebhookResult
from .scan_state import ScanState
from .symbol_resolver import batch_get_token_metadata
from .trade_filter import DEFAULT_DENY_LIST, DenyList, is_valid_trade

if TYPE_CHECKING:
    from .data_sources.helius import HeliusClient
    from .market_data import MarketDataService
    from .store import TradeStore

logger = logging.getLogger(__name__)

DAY_SECONDS = 86_400


def clamp_days(days: Any, default: int = 7, maximum: int = 30) -> int:
    """Coerce a ``days`` query value into ``[1, maximum]``."""
    try:
        value = int(days)
    except (TypeError, ValueError):
        value = default
    if value == 0:
        value = default
    return max(1, min(value, maximum))


def involved_accounts(tx: dict[str, Any]) -> list[str]:
    """Accounts touched by *tx*, in discovery order, fee payer first."""
    accounts: dict[str, None] = {}
    if tx.get("feePayer"):
        accounts[tx["feePayer"]] = None
    for entry in tx.get("accountData") or []:
        if entry.get("account"):
            accounts[entry["account"]] = None
    for transfer in (tx.get("nativeTransfers") or []) + (tx.get("tokenTransfers") or []):
        for key in ("fromUserAccount", "toUserAccount"):
            if transfer.get(key):
                accounts[transfer[key]] = None
    return list(accounts)


def transfer_mints(txs: Iterable[dict[str, Any]]) -> list[str]:
    mints: dict[str, None] = {}
    for tx in txs:
        for transfer in tx.get("tokenTransfers") or []:
            if transfer.get("mint"):
                mints[transfer["mint"]] = None
    return list(mints)


class IngestionPipeline:
    def __init__(
        self,
        store: "TradeStore",
        helius: "HeliusClient",
        registry: KolRegistry,
        market: Optional["MarketDataService"] = None,
        scan_state: Optional[ScanState] = None,
        deny_list: DenyList = DEFAULT_DENY_LIST,
        *,
        group_size: int = 5,
        group_delay: float = 0.5,
        scan_limit: int = 10,
        backfill_limit: int = 100,
        page_size: int = 100,
        main_max_pages: int = 50,
        side_max_pages: int = 15,
        kol_delay: float = 0.2,
        max_days: int = 30,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._store = store
        self._helius = helius
        self._registry = registry
        self._market = market
        self.scan_state = scan_state or ScanState(helius.credits)
        self._deny_list = deny_list
        self._group_size = group_size
        self._group_delay = group_delay
        self._scan_limit = scan_limit
        self._backfill_limit = backfill_limit
        self._page_size = page_size
        self._main_max_pages = main_max_pages
        self._side_max_pages = side_max_pages
        self._kol_delay = kol_delay
        self._max_days = max_days
        self._rng = rng or random.Random()
        self._tasks: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Shared classify -> validate -> insert path
    # ------------------------------------------------------------------

    async def _lookup_maps(
        self, txs: list[dict[str, Any]]
    ) -> tuple[dict[str, Optional[TokenMeta]], dict[str, TokenCacheEntry]]:
        mints = transfer_mints(txs)
        if not mints:
            return {}, {}
        metadata = await batch_get_token_metadata(mints, self._store, self._helius)
        cache = await self._store.get_token_cache(mints)
        return metadata, cache

    def _scannable_kols(self) -> list[Kol]:
        return [k for k in self._registry if len(k.wallet.strip()) > MIN_WALLET_LENGTH]

    async def ingest_wallet_transactions(
        self, wallet: str, kol: Kol, txs: list[dict[str, Any]]
    ) -> int:
        """Classify and persist *txs* of *wallet*; returns new rows saved."""
        if not txs:
            return 0
        metadata, cache = await self._lookup_maps(txs)
        saved = 0
        for tx in txs:
            trade = classify(tx, kol.name, kol.avatar, wallet, metadata, cache)
            if not is_valid_trade(trade, self._deny_list):
                continue
            try:
                if await self._store.insert_trade(trade):
                    saved += 1
            except Exception:
                logger.warning(
                    "Failed to store %s for %s", trade.signature[:12], kol.name, exc_info=True
                )
        return saved

    # ------------------------------------------------------------------
    # Webhook
    # ------------------------------------------------------------------

    async def handle_webhook(self, payload: Any) -> WebhookResult:
        """Process one webhook delivery (a list of enhanced transactions)."""
        if not isinstance(payload, list):
            logger.warning("Webhook: ignoring non-list body (%s)", type(payload).__name__)
            return WebhookResult()

        result = WebhookResult(total=len(payload))
        attributed: list[tuple[dict[str, Any], str, Kol]] = []
        for tx in payload:
            if not isinstance(tx, dict):
                result.not_swap += 1
                continue
            match = next(
                ((acc, self._registry.lookup(acc)) for acc in involved_accounts(tx)
                 if acc in self._registry),
                None,
            )
            if match is None:
                result.no_kol += 1
                continue
            wallet, kol = match
            attributed.append((tx, wallet, kol))

        metadata: dict[str, Optional[TokenMeta]] = {}
        cache: dict[str, TokenCacheEntry] = {}
        if attributed:
            try:
                metadata, cache = await self._lookup_maps([a[0] for a in attributed])
            except Exception:
                logger.warning("Webhook: token lookup failed", exc_info=True)

        for tx, wallet, kol in attributed:
            try:
                trade = classify(tx, kol.name, kol.avatar, wallet, metadata, cache)
                if trade is None:
                    result.not_swap += 1
                    continue
                if not is_valid_trade(trade, self._deny_list):
                    result.invalid += 1
                    continue
                if await self._store.insert_trade(trade):
                    result.saved += 1
                    tag = " [SIDE]" if self._registry.is_side_wallet(wallet) else ""
                    logger.info(
                        "Webhook: %s%s %s %s (%s SOL)",
                        kol.name, tag, trade.action, trade.token_symbol, trade.amount_sol,
                    )
                else:
                    result.duplicates += 1
            except Exception:
                result.errors += 1
                logger.warning(
                    "Webhook: failed to process %s", str(tx.get("signature"))[:12], exc_info=True
                )

        logger.info(
            "Webhook result: %d saved, %d dupes, %d not-swap, %d invalid, %d no-KOL, "
            "%d errors (of %d)",
            result.saved, result.duplicates, result.not_swap, result.invalid,
            result.no_kol, result.errors, result.total,
        )
        return result

    # ------------------------------------------------------------------
    # Shallow scan
    # ------------------------------------------------------------------

    async def scan_wallet(self, wallet: str, kol: Kol, limit: int) -> int:
        try:
            txs = await self._helius.get_transactions(wallet, limit=limit)
            return await self.ingest_wallet_transactions(wallet, kol, txs)
        except Exception:
            logger.warning("Scan failed for %s… (%s)", wallet[:8], kol.name, exc_info=True)
            return 0

    async def scan_kol(self, kol: Kol, limit: int) -> int:
        wallets = self._registry.wallets_of(kol)
        side_limit = max(limit // 4, 5)
        total = 0
        for i, wallet in enumerate(wallets):
            is_main = i == 0 and wallet == kol.wallet.strip()
            total += await self.scan_wallet(wallet, kol, limit if is_main else side_limit)
        return total

    async def run_background_scan(self, backfill: bool = False) -> Optional[ScanSummary]:
        """Scan every KOL now; returns None if another scan is running."""
        kols = self._scannable_kols()
        if not self.scan_state.try_begin(len(kols)):
            return None
        return await self._background_scan(kols, backfill)

    def start_background_scan(self, backfill: bool = False) -> bool:
        kols = self._scannable_kols()
        if not self.scan_state.try_begin(len(kols)):
            return False
        self._spawn(self._background_scan(kols, backfill), "background_scan")
        return True

    async def _background_scan(self, kols: list[Kol], backfill: bool) -> ScanSummary:
        request_id_ctx.set(generate_request_id("scan"))
        kind = "backfill" if backfill else "scan"
        limit = self._backfill_limit if backfill else self._scan_limit
        shuffled = list(kols)
        self._rng.shuffle(shuffled)
        start_credits = self._helius.credits.used
        logger.info("%s: %d KOLs (%d txns each)", kind.capitalize(), len(shuffled), limit)

        saved = 0
        try:
            for start in range(0, len(shuffled), self._group_size):
                group = shuffled[start:start + self._group_size]
                results = await asyncio.gather(*(self.scan_kol(k, limit) for k in group))
                group_saved = sum(results)
                saved += group_saved
                self.scan_state.advance(len(group))
                if group_saved:
                    logger.info(
                        "[%d/%d] %s +%d",
                        self.scan_state.done, self.scan_state.total,
                        ", ".join(k.name for k in group), group_saved,
                    )
                if self._group_delay:
                    await asyncio.sleep(self._group_delay)
        finally:
            self.scan_state.finish()

        summary = ScanSummary(
            kind=kind,
            wallets=sum(len(self._registry.wallets_of(k)) for k in kols),
            saved=saved,
            credits_used=self._helius.credits.used - start_credits,
        )
        logger.info("%s done: +%d trades, ~%d credits", kind.capitalize(), saved, summary.credits_used)
        await self._refresh_market()
        return summary

    # ------------------------------------------------------------------
    # Deep backfill
    # ------------------------------------------------------------------

    async def deep_scan_wallet(
        self, wallet: str, kol: Kol, since: int, max_pages: int
    ) -> tuple[int, int]:
        """Returns ``(saved, pages)`` for one wallet."""
        try:
            txs = await self._helius.get_transaction_history(
                wallet, since, max_pages=max_pages, page_size=self._page_size
            )
            if not txs:
                return 0, 0
            pages = math.ceil(len(txs) / self._page_size)
            return await self.ingest_wallet_transactions(wallet, kol, txs), pages
        except Exception:
            logger.warning("Deep scan failed for %s… (%s)", wallet[:8], kol.name, exc_info=True)
            return 0, 0

    async def run_deep_backfill(self, days: int = 7) -> Optional[ScanSummary]:
        """Backfill *days* of history now; None if another scan is running."""
        kols = self._scannable_kols()
        if not self.scan_state.try_begin(len(kols)):
            return None
        return await self._deep_backfill(kols, clamp_days(days, maximum=self._max_days))

    def start_deep_backfill(self, days: int = 7) -> bool:
        kols = self._scannable_kols()
        if not self.scan_state.try_begin(len(kols)):
            return False
        self._spawn(
            self._deep_backfill(kols, clamp_days(days, maximum=self._max_days)),
            "deep_backfill",
        )
        return True

    async def _deep_backfill(self, kols: list[Kol], days: int) -> ScanSummary:
        request_id_ctx.set(generate_request_id("scan"))
        since = int(time.time()) - days * DAY_SECONDS
        start_credits = self._helius.credits.used
        logger.info("Deep backfill: %d KOLs, %d days", len(kols), days)

        saved = pages = wallets = 0
        try:
            for i, kol in enumerate(kols):
                kol_saved = kol_pages = 0
                for j, wallet in enumerate(self._registry.wallets_of(kol)):
                    max_pages = (
                        self._main_max_pages if j == 0 and wallet == kol.wallet.strip()
                        else self._side_max_pages
                    )
                    s, p = await self.deep_scan_wallet(wallet, kol, since, max_pages)
                    kol_saved += s
                    kol_pages += p
                    wallets += 1
                saved += kol_saved
                pages += kol_pages
                self.scan_state.advance()
                logger.info(
                    "[%d/%d] %s: +%d trades (%d pages)",
                    i + 1, len(kols), kol.name, kol_saved, kol_pages,
                )
                if self._kol_delay:
                    await asyncio.sleep(self._kol_delay)
        finally:
            self.scan_state.finish()

        summary = ScanSummary(
            kind="deep_backfill",
            wallets=wallets,
            saved=saved,
            pages=pages,
            credits_used=self._helius.credits.used - start_credits,
        )
        logger.info(
            "Deep backfill complete: +%d trades | %d pages | ~%d credits used",
            saved, pages, summary.credits_used,
        )
        await self._refresh_market()
        return summary

    async def reset_and_backfill(self, days: int = 7) -> Optional[int]:
        """Wipe every trade and start a deep backfill.

        Returns the number of wiped trades, or None when a scan is running.
        """
        kols = self._scannable_kols()
        if not self.scan_state.try_begin(len(kols)):
            return None
        try:
            wiped = await self._store.wipe_trades()
        except Exception:
            self.scan_state.finish()
            raise
        self._spawn(
            self._deep_backfill(kols, clamp_days(days, maximum=self._max_days)),
            "deep_backfill",
        )
        return wiped

    async def bootstrap_if_empty(self, min_trades: int = 100, days: int = 7) -> bool:
        """Start a deep backfill when the store holds few trades."""
        if not self._helius.enabled:
            return False
        count = await self._store.count_trades()
        if count >= min_trades:
            return False
        logger.info("Only %d trades stored – bootstrapping %d days of history", count, days)
        return self.start_deep_backfill(days)

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    async def debug_parse(self, wallet: str, limit: int = 20) -> dict[str, Any]:
        """Classification report for *wallet*'s latest transactions."""
        txs = await self._helius.get_transactions(wallet, limit=limit)
        metadata, cache = await self._lookup_maps(txs)
        kol = self._registry.lookup(wallet)
        name = kol.name if kol is not None else "TEST"

        rows: list[dict[str, Any]] = []
        for tx in txs:
            trade = classify(tx, name, "", wallet, metadata, cache)
            rows.append({
                "signature": (tx.get("signature") or "")[:12],
                "type": tx.get("type") or "N/A",
                "description": (tx.get("description") or "")[:100],
                "has_swap_event": bool((tx.get("events") or {}).get("swap")),
                "native_transfers": len(tx.get("nativeTransfers") or []),
                "token_transfers": len(tx.get("tokenTransfers") or []),
                "parsed": (
                    {
                        "action": trade.action,
                        "symbol": trade.token_symbol,
                        "sol": trade.amount_sol,
                        "mint": trade.token_mint[:8],
                    }
                    if trade is not None
                    else None
                ),
                "valid": is_valid_trade(trade, self._deny_list),
            })

        parsed = sum(1 for r in rows if r["parsed"] is not None)
        return {
            "wallet": wallet,
            "kol": kol.name if kol is not None else None,
            "total": len(txs),
            "parsed": parsed,
            "valid": sum(1 for r in rows if r["valid"]),
            "skipped": len(txs) - parsed,
            "transactions": rows,
        }

    def status(self) -> ScanStatus:
        return self.scan_state.snapshot()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _refresh_market(self) -> None:
        if self._market is None:
            return
        try:
            await self._market.refresh_recent_tokens()
        except Exception:
            logger.warning("Post-scan market refresh failed", exc_info=True)

    def _spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("%s crashed", task.get_name(), exc_info=task.exception())

    async def wait_idle(self) -> None:
        """Await every spawned scan task (tests, shutdown)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
