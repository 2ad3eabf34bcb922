"""
Trade classifier: Helius enhanced transaction -> Buy / Sell ``Trade``.

Classification is a cascade of strategies tried in order, the first
conclusive one wins:

0. the structured ``events.swap`` block Helius attaches to DEX swaps;
1. the human-readable description (``"swapped 1.5 SOL for 42 BONK"``);
2. net balance inference over the raw native / token transfers, which
   catches pump.fun style programs Helius does not decode.

A draft is conclusive when it has an action, a positive SOL amount and a
symbol.  The classifier is pure: symbols are resolved from the metadata
and cache maps the caller passes in.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, Union

from .constants import (
    DEFAULT_AVATAR,
    DUST_THRESHOLD_SOL,
    LAMPORTS_PER_SOL,
    NON_TRADE_DESCRIPTION_PREFIXES,
    NON_TRADE_TYPES,
    SOL_DECIMALS,
    UNKNOWN_KOL,
    WSOL_MINT,
)
from .models import TokenCacheEntry, TokenMeta, Trade
from .symbol_resolver import (
    SWAP_DESCRIPTION_RE,
    is_sol_symbol,
    resolve_symbol,
    symbol_from_description,
)
from .utils import parse_amount, safe_float

logger = logging.getLogger(__name__)


class _NotATrade:
    """Marker returned by a strategy to stop the whole cascade."""

    def __repr__(self) -> str:
        return "NOT_A_TRADE"


NOT_A_TRADE = _NotATrade()


@dataclass
class TradeDraft:
    action: Optional[str] = None
    amount_sol: float = 0.0
    token_symbol: Optional[str] = None
    token_mint: str = ""
    token_amount: float = 0.0

    @property
    def conclusive(self) -> bool:
        return bool(self.action and self.amount_sol > 0 and self.token_symbol)


@dataclass
class TxContext:
    """Everything a strategy may read about one transaction."""

    tx: dict[str, Any]
    wallet: str
    metadata_map: Mapping[str, Optional[TokenMeta]]
    token_cache: Optional[Mapping[str, TokenCacheEntry]]
    primary_mint: str = ""
    primary_token_amount: float = 0.0

    @property
    def description(self) -> str:
        return self.tx.get("description") or ""

    def symbol_for(self, mint: str) -> Optional[str]:
        if not mint or mint == WSOL_MINT:
            return symbol_from_description(self.description)
        return resolve_symbol(
            mint, self.metadata_map, self.token_cache, self.description
        )


StrategyResult = Union[TradeDraft, _NotATrade, None]
Strategy = Callable[[TxContext], StrategyResult]


# ---------------------------------------------------------------------------
# Pre-filter
# ---------------------------------------------------------------------------

def is_non_trade(tx: dict[str, Any]) -> bool:
    """True for transactions that can never be a memecoin trade."""
    if tx.get("type") in NON_TRADE_TYPES:
        return True
    desc = (tx.get("description") or "").lower()
    if desc:
        if " transferred " in desc and "swap" not in desc:
            return True
        if desc.startswith(NON_TRADE_DESCRIPTION_PREFIXES):
            return True
    return False


def _lamports_to_sol(amount: Any) -> float:
    return round((safe_float(amount, 0.0) or 0.0) / LAMPORTS_PER_SOL, SOL_DECIMALS)


def _primary_transfer(tx: dict[str, Any]) -> tuple[str, float]:
    """Mint and amount of the first non-SOL token transfer."""
    for transfer in tx.get("tokenTransfers") or []:
        mint = transfer.get("mint")
        if mint and mint != WSOL_MINT:
            return mint, abs(safe_float(transfer.get("tokenAmount"), 0.0) or 0.0)
    return "", 0.0


def _leg_amount(leg: dict[str, Any], fallback: float) -> float:
    """UI amount of a swap-event token leg."""
    raw = leg.get("rawTokenAmount") or {}
    raw_amount = safe_float(raw.get("tokenAmount"), 0.0) or 0.0
    if raw_amount:
        decimals = int(safe_float(raw.get("decimals"), 0.0) or 0)
        return abs(raw_amount / (10 ** decimals))
    return abs(safe_float(leg.get("tokenAmount"), 0.0) or fallback)


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

def from_swap_event(ctx: TxContext) -> StrategyResult:
    """Strategy 0: Helius ``events.swap``."""
    swap = (ctx.tx.get("events") or {}).get("swap")
    if not swap:
        return None

    native_in = swap.get("nativeInput") or {}
    native_out = swap.get("nativeOutput") or {}
    token_in = next(
        (t for t in swap.get("tokenInputs") or [] if t.get("mint") != WSOL_MINT), None
    )
    token_out = next(
        (t for t in swap.get("tokenOutputs") or [] if t.get("mint") != WSOL_MINT), None
    )

    if (safe_float(native_in.get("amount"), 0.0) or 0.0) > 0 and token_out:
        action, lamports, leg = "Buy", native_in.get("amount"), token_out
    elif (safe_float(native_out.get("amount"), 0.0) or 0.0) > 0 and token_in:
        action, lamports, leg = "Sell", native_out.get("amount"), token_in
    else:
        return None

    mint = leg.get("mint") or ctx.primary_mint
    draft = TradeDraft(
        action=action,
        amount_sol=_lamports_to_sol(lamports),
        token_mint=mint,
        token_amount=_leg_amount(leg, ctx.primary_token_amount),
        token_symbol=ctx.symbol_for(mint),
    )
    return draft if draft.conclusive else None


def from_description(ctx: TxContext) -> StrategyResult:
    """Strategy 1: ``swapped <a1> <t1> for <a2> <t2>``."""
    m = SWAP_DESCRIPTION_RE.search(ctx.description)
    if not m:
        return None
    amt1, tok1, amt2, tok2 = m.groups()

    if is_sol_symbol(tok1):
        action, symbol, sol_text, token_text = "Buy", tok2, amt1, amt2
    elif is_sol_symbol(tok2):
        action, symbol, sol_text, token_text = "Sell", tok1, amt2, amt1
    else:
        # token-to-token swap, not a SOL trade
        return NOT_A_TRADE

    mint = ctx.primary_mint
    if not mint:
        mint = next(
            (
                m_ for m_, meta in ctx.metadata_map.items()
                if meta is not None and meta.symbol == symbol
            ),
            "",
        )
    draft = TradeDraft(
        action=action,
        amount_sol=parse_amount(sol_text),
        token_symbol=symbol,
        token_mint=mint,
        token_amount=parse_amount(token_text) or ctx.primary_token_amount,
    )
    return draft if draft.conclusive else None


def from_net_balance(ctx: TxContext) -> StrategyResult:
    """Strategy 2: infer direction from the wallet's net SOL movement."""
    native = ctx.tx.get("nativeTransfers")
    tokens = ctx.tx.get("tokenTransfers")
    if native is None or not tokens:
        return None

    wallet = ctx.wallet
    lamports_out = 0.0
    lamports_in = 0.0
    for nt in native:
        amount = safe_float(nt.get("amount"), 0.0) or 0.0
        if nt.get("fromUserAccount") == wallet:
            lamports_out += amount
        if nt.get("toUserAccount") == wallet:
            lamports_in += amount

    # largest non-SOL transfer into / out of the wallet
    token_in: Optional[tuple[str, float]] = None
    token_out: Optional[tuple[str, float]] = None
    for tt in tokens:
        mint = tt.get("mint")
        if not mint or mint == WSOL_MINT:
            continue
        amount = abs(safe_float(tt.get("tokenAmount"), 0.0) or 0.0)
        if amount == 0:
            continue
        if tt.get("toUserAccount") == wallet and (token_in is None or amount > token_in[1]):
            token_in = (mint, amount)
        if tt.get("fromUserAccount") == wallet and (token_out is None or amount > token_out[1]):
            token_out = (mint, amount)

    net_spent = (lamports_out - lamports_in) / LAMPORTS_PER_SOL
    net_gained = -net_spent

    if net_spent > DUST_THRESHOLD_SOL and token_in and not token_out:
        action, sol, (mint, amount) = "Buy", net_spent, token_in
    elif net_gained > DUST_THRESHOLD_SOL and token_out and not token_in:
        action, sol, (mint, amount) = "Sell", net_gained, token_out
    else:
        return None

    draft = TradeDraft(
        action=action,
        amount_sol=round(sol, SOL_DECIMALS),
        token_mint=mint,
        token_amount=amount,
        token_symbol=ctx.symbol_for(mint),
    )
    return draft if draft.conclusive else None


STRATEGIES: tuple[Strategy, ...] = (from_swap_event, from_description, from_net_balance)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def classify(
    tx: dict[str, Any],
    kol_name: Optional[str],
    kol_avatar: Optional[str],
    wallet: str,
    metadata_map: Optional[Mapping[str, Optional[TokenMeta]]] = None,
    token_cache: Optional[Mapping[str, TokenCacheEntry]] = None,
    strategies: tuple[Strategy, ...] = STRATEGIES,
) -> Optional[Trade]:
    """Classify *tx* as a Buy or Sell by *wallet*, or return ``None``."""
    if not isinstance(tx, dict) or not tx.get("signature"):
        return None
    if is_non_trade(tx):
        return None

    primary_mint, primary_amount = _primary_transfer(tx)
    ctx = TxContext(
        tx=tx,
        wallet=wallet,
        metadata_map=metadata_map or {},
        token_cache=token_cache,
        primary_mint=primary_mint,
        primary_token_amount=primary_amount,
    )

    for strategy in strategies:
        result = strategy(ctx)
        if result is NOT_A_TRADE:
            return None
        if isinstance(result, TradeDraft):
            logger.debug(
                "%s classified by %s as %s %s",
                tx["signature"][:12], strategy.__name__, result.action, result.token_symbol,
            )
            return Trade(
                signature=tx["signature"],
                timestamp=int(safe_float(tx.get("timestamp"), 0.0) or 0),
                wallet=wallet,
                kol_name=kol_name or UNKNOWN_KOL,
                kol_avatar=kol_avatar or DEFAULT_AVATAR,
                action=result.action,  # type: ignore[arg-type]
                token_symbol=result.token_symbol or "",
                token_mint=result.token_mint,
                token_amount=result.token_amount,
                amount_sol=result.amount_sol,
            )
    return None
