"""
Symbol / mint resolution.

``resolve_symbol`` is pure: it answers from maps the caller already
loaded.  ``batch_get_token_metadata`` is the I/O side that fills the
token cache from Helius for mints we have not seen before.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Iterable, Mapping, Optional

from .constants import MAX_SYMBOL_LENGTH, WSOL_MINT
from .models import TokenCacheEntry, TokenMeta
from .utils import chunked

if TYPE_CHECKING:
    from .data_sources.helius import HeliusClient
    from .store import TradeStore

logger = logging.getLogger(__name__)

# "swapped 1.5 SOL for 1,000,000 BONK"
SWAP_DESCRIPTION_RE = re.compile(
    r"swapped\s+([\d,.]+)\s+(\S+)\s+for\s+([\d,.]+)\s+(\S+)", re.IGNORECASE
)

METADATA_CHUNK_SIZE = 100

WSOL_META = TokenMeta(name="Wrapped SOL", symbol="SOL")


def is_sol_symbol(token: str) -> bool:
    return token.upper() in ("SOL", "WSOL")


def symbol_from_description(description: Optional[str]) -> Optional[str]:
    """Pick the non-SOL side of a ``swapped X A for Y B`` description."""
    if not description:
        return None
    m = SWAP_DESCRIPTION_RE.search(description)
    if not m:
        return None
    tok_in, tok_out = m.group(2), m.group(4)
    return tok_out if is_sol_symbol(tok_in) else tok_in


def resolve_symbol(
    mint: Optional[str],
    metadata_map: Mapping[str, Optional[TokenMeta]],
    token_cache: Optional[Mapping[str, TokenCacheEntry]] = None,
    description: Optional[str] = None,
) -> Optional[str]:
    """Best-effort symbol for *mint*.

    Order: wrapped SOL, fetched metadata, persistent cache, description.
    """
    if mint == WSOL_MINT:
        return "SOL"
    if mint:
        meta = metadata_map.get(mint)
        if meta is not None and meta.symbol and len(meta.symbol) <= MAX_SYMBOL_LENGTH:
            return meta.symbol
        if token_cache is not None:
            cached = token_cache.get(mint)
            if cached is not None and cached.symbol:
                return cached.symbol
    return symbol_from_description(description)


async def batch_get_token_metadata(
    mints: Iterable[str],
    store: "TradeStore",
    helius: "HeliusClient",
) -> dict[str, Optional[TokenMeta]]:
    """Resolve metadata for *mints*, fetching only what the cache lacks.

    Every requested mint appears in the result; mints that could not be
    resolved map to ``None``.
    """
    requested = list(dict.fromkeys(m for m in mints if m))
    lookup = [m for m in requested if m != WSOL_MINT]

    cached = await store.get_token_cache(lookup)
    uncached = [m for m in lookup if m not in cached]

    for chunk in chunked(uncached, METADATA_CHUNK_SIZE):
        fetched = await helius.get_token_metadata(chunk)
        if not fetched:
            logger.warning("Token metadata unavailable for %d mints", len(chunk))
            continue
        for mint, meta in fetched.items():
            if meta.symbol:
                await store.upsert_token_metadata(mint, meta)

    if uncached:
        cached = await store.get_token_cache(lookup)

    result: dict[str, Optional[TokenMeta]] = {}
    for mint in requested:
        if mint == WSOL_MINT:
            result[mint] = WSOL_META
            continue
        entry = cached.get(mint)
        result[mint] = (
            TokenMeta(name=entry.name, symbol=entry.symbol, image=entry.image)
            if entry is not None
            else None
        )
    return result
