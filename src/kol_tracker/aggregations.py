"""
Read-side aggregation queries.

The ``compute_*`` / ``build_*`` functions are pure transforms over lists
of ``Trade`` rows and never raise on empty input.  The async helpers at
the bottom load the rows from ``TradeStore`` and feed them through.
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from typing import TYPE_CHECKING, Iterable, Mapping, Optional, Sequence

from .constants import DEFAULT_AVATAR, PERIOD_SECONDS, SOL_DECIMALS
from .kol_registry import KolRegistry
from .models import (
    FeedTrade,
    Kol,
    LeaderboardEntry,
    TokenActivity,
    TokenCacheEntry,
    TokenCard,
    TokenPnl,
    TokenPosition,
    Trade,
)
from .trade_filter import DEFAULT_DENY_LIST, DenyList, is_valid_trade

if TYPE_CHECKING:
    from .market_data import MarketDataService
    from .store import TradeStore

logger = logging.getLogger(__name__)

LOW_CAP_LIMIT = 100_000
MID_CAP_LIMIT = 1_000_000


def window_start(period: str, now: Optional[float] = None) -> int:
    """Unix start of a leaderboard window; unknown periods mean daily."""
    now = time.time() if now is None else now
    return int(now) - PERIOD_SECONDS.get(period, PERIOD_SECONDS["daily"])


# ---------------------------------------------------------------------------
# Leaderboard
# ---------------------------------------------------------------------------

def compute_leaderboard(
    trades: Iterable[Trade], registry: KolRegistry, sol_price: float
) -> list[LeaderboardEntry]:
    """Rank every registered KOL by SOL PnL over *trades*.

    KOLs without trades appear with zeroed stats after every active KOL,
    ordered by name.
    """
    by_kol: dict[str, list[Trade]] = defaultdict(list)
    for t in trades:
        by_kol[t.kol_name].append(t)

    active: list[LeaderboardEntry] = []
    inactive: list[LeaderboardEntry] = []
    for kol in registry:
        rows = by_kol.get(kol.name)
        if not rows:
            inactive.append(LeaderboardEntry(
                wallet=kol.wallet,
                name=kol.name,
                avatar=kol.avatar or DEFAULT_AVATAR,
                twitter=kol.twitter,
            ))
            continue

        buys = [t for t in rows if t.action == "Buy"]
        sells = [t for t in rows if t.action == "Sell"]
        pnl = sum(t.amount_sol for t in sells) - sum(t.amount_sol for t in buys)
        wins = sum(1 for t in sells if t.amount_sol > 0)
        active.append(LeaderboardEntry(
            wallet=min(t.wallet for t in rows) or kol.wallet,
            name=kol.name,
            avatar=max(t.kol_avatar for t in rows) or kol.avatar or DEFAULT_AVATAR,
            twitter=kol.twitter,
            trade_count=len(rows),
            buy_count=len(buys),
            sell_count=len(sells),
            pnl=round(pnl, 2),
            pnl_usd=round(pnl * sol_price, 1),
            win_rate=round(wins / len(rows) * 100, 1),
        ))

    active.sort(key=lambda e: e.pnl, reverse=True)
    inactive.sort(key=lambda e: e.name.lower())
    ranked = active + inactive
    for i, entry in enumerate(ranked, start=1):
        entry.rank = i
    return ranked


# ---------------------------------------------------------------------------
# Recent trades feed
# ---------------------------------------------------------------------------

def build_feed(
    trades: Iterable[Trade],
    registry: KolRegistry,
    token_cache: Mapping[str, TokenCacheEntry],
    limit: int,
    per_kol_cap: int = 2,
    deny_list: DenyList = DEFAULT_DENY_LIST,
) -> list[FeedTrade]:
    """Newest-first feed keeping at most *per_kol_cap* trades per KOL name."""
    ordered = sorted(trades, key=lambda t: t.timestamp, reverse=True)
    kept: dict[str, int] = defaultdict(int)
    feed: list[FeedTrade] = []
    for t in ordered:
        if len(feed) >= limit:
            break
        if not is_valid_trade(t, deny_list):
            continue
        key = t.kol_name or t.wallet or "unknown"
        if kept[key] >= per_kol_cap:
            continue
        kept[key] += 1
        cached = token_cache.get(t.token_mint)
        feed.append(FeedTrade(
            kol_name=t.kol_name,
            kol_avatar=t.kol_avatar or registry.avatar_for(t.wallet, DEFAULT_AVATAR),
            wallet=t.wallet,
            action=t.action,
            token_symbol=t.token_symbol,
            token_mint=t.token_mint,
            token_amount=t.token_amount,
            token_image=cached.image if cached else "",
            token_price=cached.price_usd if cached else 0.0,
            amount_sol=t.amount_sol,
            timestamp=t.timestamp,
            signature=t.signature,
            is_side_wallet=registry.is_side_wallet(t.wallet),
        ))
    return feed


# ---------------------------------------------------------------------------
# Token positions / per-KOL token PnL
# ---------------------------------------------------------------------------

def compute_token_positions(
    trades: Iterable[Trade], registry: KolRegistry, limit: int = 10
) -> list[TokenPosition]:
    """Per-wallet position in one token, most recently active first."""
    positions: dict[str, TokenPosition] = {}
    for t in trades:
        pos = positions.get(t.wallet)
        if pos is None:
            pos = positions[t.wallet] = TokenPosition(
                wallet=t.wallet,
                kol_name=t.kol_name,
                kol_avatar=t.kol_avatar or registry.avatar_for(t.wallet, DEFAULT_AVATAR),
            )
        if t.action == "Buy":
            pos.bought_sol += t.amount_sol
            pos.bought_tokens += t.token_amount
        else:
            pos.sold_sol += t.amount_sol
            pos.sold_tokens += t.token_amount
        pos.last_trade = max(pos.last_trade, t.timestamp)

    ordered = sorted(positions.values(), key=lambda p: p.last_trade, reverse=True)
    return ordered[:limit]


def compute_kol_token_pnl(
    trades: Iterable[Trade],
    token_cache: Mapping[str, TokenCacheEntry],
    sol_price: float,
    limit: int = 50,
) -> list[TokenPnl]:
    """Per-token PnL for one KOL's trades, most recently traded first.

    Holding value prices the remaining token balance at the cached USD
    price, converted to SOL at *sol_price*.
    """
    groups: dict[str, list[Trade]] = defaultdict(list)
    for t in trades:
        groups[t.token_mint or t.token_symbol].append(t)

    result: list[TokenPnl] = []
    for rows in groups.values():
        buys = [t for t in rows if t.action == "Buy"]
        sells = [t for t in rows if t.action == "Sell"]
        bought = sum(t.amount_sol for t in buys)
        sold = sum(t.amount_sol for t in sells)
        tokens_bought = sum(t.token_amount for t in buys)
        tokens_sold = sum(t.token_amount for t in sells)
        first = min(t.timestamp for t in rows)
        last = max(t.timestamp for t in rows)

        mint = rows[0].token_mint
        cached = token_cache.get(mint) if mint else None
        price = cached.price_usd if cached else 0.0

        realized = sold - bought
        held = max(0.0, tokens_bought - tokens_sold)
        holding_usd = held * price
        holding_sol = holding_usd / sol_price if sol_price > 0 else 0.0
        total = realized + holding_sol
        roi = (sold + holding_sol - bought) / bought * 100 if bought > 0 else 0.0

        result.append(TokenPnl(
            token_symbol=rows[0].token_symbol,
            token_mint=mint,
            token_image=cached.image if cached else "",
            bought_sol=round(bought, SOL_DECIMALS),
            sold_sol=round(sold, SOL_DECIMALS),
            tokens_bought=tokens_bought,
            tokens_sold=tokens_sold,
            tokens_held=held,
            holding_value_sol=round(holding_sol, SOL_DECIMALS),
            holding_value_usd=round(holding_usd, 2),
            realized_pnl=round(realized, SOL_DECIMALS),
            total_pnl=round(total, SOL_DECIMALS),
            total_pnl_usd=round(total * sol_price, 2),
            roi_pct=round(roi, 1),
            buy_count=len(buys),
            sell_count=len(sells),
            first_trade=first,
            last_trade=last,
            duration_sec=last - first,
        ))

    result.sort(key=lambda p: p.last_trade, reverse=True)
    return result[:limit]


# ---------------------------------------------------------------------------
# Token tracker
# ---------------------------------------------------------------------------

def build_token_cards(
    activity: Sequence[TokenActivity],
    token_cache: Mapping[str, TokenCacheEntry],
    positions: Mapping[str, list[TokenPosition]],
) -> list[TokenCard]:
    cards: list[TokenCard] = []
    for a in activity:
        cached = token_cache.get(a.token_mint)
        cards.append(TokenCard(
            mint=a.token_mint,
            symbol=(cached.symbol if cached else "") or a.token_symbol,
            name=(cached.name if cached else "") or a.token_symbol,
            image=cached.image if cached else "",
            market_cap=cached.market_cap if cached else 0.0,
            price_usd=cached.price_usd if cached else 0.0,
            price_change_24h=cached.price_change_24h if cached else 0.0,
            trade_count=a.trade_count,
            kol_count=a.kol_count,
            last_trade=a.last_trade,
            positions=positions.get(a.token_mint, []),
        ))
    return cards


def bucket_by_market_cap(
    cards: Iterable[TokenCard], per_bucket: int = 10
) -> dict[str, list[TokenCard]]:
    """Split cards into low / mid / high caps; unknown caps rank as low."""
    low: list[TokenCard] = []
    unknown: list[TokenCard] = []
    mid: list[TokenCard] = []
    high: list[TokenCard] = []
    for card in cards:
        mcap = card.market_cap
        if not mcap or mcap <= 0:
            unknown.append(card)
        elif mcap < LOW_CAP_LIMIT:
            low.append(card)
        elif mcap < MID_CAP_LIMIT:
            mid.append(card)
        else:
            high.append(card)
    return {
        "low_caps": (low + unknown)[:per_bucket],
        "mid_caps": mid[:per_bucket],
        "high_caps": high[:per_bucket],
    }


# ---------------------------------------------------------------------------
# Store-backed queries
# ---------------------------------------------------------------------------

async def leaderboard(
    store: "TradeStore",
    registry: KolRegistry,
    period: str,
    sol_price: float,
    now: Optional[float] = None,
) -> list[LeaderboardEntry]:
    trades = await store.trades_since(window_start(period, now))
    return compute_leaderboard(trades, registry, sol_price)


async def recent_feed(
    store: "TradeStore",
    registry: KolRegistry,
    limit: int = 20,
    deny_list: DenyList = DEFAULT_DENY_LIST,
) -> list[FeedTrade]:
    raw = await store.recent_trades(max(limit * 10, 200))
    cache = await store.get_token_cache(t.token_mint for t in raw)
    return build_feed(raw, registry, cache, limit, deny_list=deny_list)


async def kol_side_trades(
    store: "TradeStore", registry: KolRegistry, kol: Kol, limit: int = 500
) -> tuple[list[str], list[Trade]]:
    """Side wallets of *kol* and their stored trades, newest first."""
    sides = [w for w in registry.wallets_of(kol) if registry.is_side_wallet(w)]
    trades: list[Trade] = []
    for wallet in sides:
        trades.extend(await store.trades_for_wallet(wallet, limit))
    trades.sort(key=lambda t: t.timestamp, reverse=True)
    return sides, trades[:limit]


async def kol_token_pnl(
    store: "TradeStore", kol: Kol, sol_price: float, limit: int = 50
) -> list[TokenPnl]:
    trades = await store.trades_for_kol(kol.name)
    cache = await store.get_token_cache(t.token_mint for t in trades)
    return compute_kol_token_pnl(trades, cache, sol_price, limit)


async def token_tracker(
    store: "TradeStore",
    registry: KolRegistry,
    market: Optional["MarketDataService"] = None,
    *,
    stale_seconds: float = 300,
    window_seconds: int = 86_400,
    now: Optional[float] = None,
) -> dict[str, list[TokenCard]]:
    """Recently traded tokens (2+ trades) with market data, bucketed by cap."""
    now = time.time() if now is None else now
    activity = await store.recent_token_activity(
        int(now) - window_seconds, limit=60, min_trades=2
    )
    mints = [a.token_mint for a in activity]
    if market is not None and mints:
        try:
            await market.refresh_stale(mints, stale_seconds)
        except Exception:
            logger.warning("Token tracker market refresh failed", exc_info=True)

    cache = await store.get_token_cache(mints)
    positions = {
        mint: compute_token_positions(await store.trades_for_mint(mint), registry, limit=10)
        for mint in mints
    }
    return bucket_by_market_cap(build_token_cards(activity, cache, positions))
