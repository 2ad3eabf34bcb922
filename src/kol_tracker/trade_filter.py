"""
Trade validity filter.

Rejects classified trades that are not memecoin trades: stablecoin and
liquid-staking swaps, unresolved symbols (mint-address fragments) and
zero-value rows.  Applied before persistence and again when the feed is
read, so deny-list changes take effect on already stored rows.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable, Optional

from .constants import DEFAULT_SKIP_MINTS, DEFAULT_SKIP_TOKENS, MAX_SYMBOL_LENGTH
from .models import Trade

# Hex-looking "symbols" are truncated mint addresses
_HEX_SYMBOL_RE = re.compile(r"^[a-f0-9]{6,}$", re.IGNORECASE)


@dataclass(frozen=True)
class DenyList:
    """Token symbols and mints that never count as memecoin trades."""

    tokens: frozenset[str] = field(default_factory=frozenset)
    mints: frozenset[str] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        # Symbols are compared case-insensitively
        object.__setattr__(
            self, "_tokens_lower", frozenset(t.lower() for t in self.tokens)
        )

    def blocks_symbol(self, symbol: str) -> bool:
        return symbol.lower() in self._tokens_lower  # type: ignore[attr-defined]

    def blocks_mint(self, mint: str) -> bool:
        return bool(mint) and mint in self.mints

    def extended(
        self, tokens: Iterable[str] = (), mints: Iterable[str] = ()
    ) -> "DenyList":
        return DenyList(
            tokens=self.tokens | frozenset(tokens),
            mints=self.mints | frozenset(mints),
        )

    @classmethod
    def from_config(cls) -> "DenyList":
        """Built-in lists plus the ``SKIP_*_EXTRA`` env additions."""
        from config import SKIP_MINTS_EXTRA, SKIP_TOKENS_EXTRA

        return DEFAULT_DENY_LIST.extended(SKIP_TOKENS_EXTRA, SKIP_MINTS_EXTRA)


DEFAULT_DENY_LIST = DenyList(tokens=DEFAULT_SKIP_TOKENS, mints=DEFAULT_SKIP_MINTS)


def is_valid_trade(
    trade: Optional[Trade], deny_list: DenyList = DEFAULT_DENY_LIST
) -> bool:
    """Return True when *trade* is a well-formed memecoin trade."""
    if trade is None:
        return False
    if trade.action not in ("Buy", "Sell"):
        return False
    symbol = (trade.token_symbol or "").strip()
    if not symbol or len(symbol) > MAX_SYMBOL_LENGTH:
        return False
    if _HEX_SYMBOL_RE.match(symbol):
        return False
    if not trade.amount_sol or trade.amount_sol <= 0:
        return False
    if deny_list.blocks_symbol(symbol):
        return False
    if deny_list.blocks_mint(trade.token_mint):
        return False
    return True
