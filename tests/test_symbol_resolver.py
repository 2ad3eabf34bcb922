"""Tests for symbol resolution and the batched metadata lookup."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from kol_tracker.models import TokenCacheEntry, TokenMeta
from kol_tracker.symbol_resolver import (
    batch_get_token_metadata,
    is_sol_symbol,
    resolve_symbol,
    symbol_from_description,
)

from conftest import MINT_PEPE, MINT_WIF, WSOL


class TestSymbolFromDescription:

    def test_buy_side(self):
        assert symbol_from_description("X swapped 1.5 SOL for 42 BONK") == "BONK"

    def test_sell_side(self):
        assert symbol_from_description("X swapped 42 BONK for 1.5 SOL") == "BONK"

    def test_wsol_counts_as_sol(self):
        assert is_sol_symbol("wsol")
        assert symbol_from_description("X swapped 1 WSOL for 9 PEPE") == "PEPE"

    @pytest.mark.parametrize("desc", [None, "", "X transferred 1 SOL"])
    def test_no_match(self, desc):
        assert symbol_from_description(desc) is None


class TestResolveSymbol:

    def test_wsol(self):
        assert resolve_symbol(WSOL, {}) == "SOL"

    def test_metadata_first(self):
        meta = {MINT_PEPE: TokenMeta(symbol="PEPE")}
        cache = {MINT_PEPE: TokenCacheEntry(mint=MINT_PEPE, symbol="OLD")}
        assert resolve_symbol(MINT_PEPE, meta, cache) == "PEPE"

    def test_overlong_metadata_symbol_falls_through(self):
        meta = {MINT_PEPE: TokenMeta(symbol="X" * 30)}
        cache = {MINT_PEPE: TokenCacheEntry(mint=MINT_PEPE, symbol="PEPE")}
        assert resolve_symbol(MINT_PEPE, meta, cache) == "PEPE"

    def test_description_last(self):
        assert resolve_symbol(MINT_PEPE, {MINT_PEPE: None}, {}, "a swapped 1 SOL for 2 FROG") == "FROG"

    def test_unresolved(self):
        assert resolve_symbol(MINT_PEPE, {}) is None
        assert resolve_symbol(None, {}) is None


class TestBatchGetTokenMetadata:

    @pytest.mark.asyncio
    async def test_fetches_only_uncached(self):
        pepe_entry = TokenCacheEntry(mint=MINT_PEPE, name="Pepe", symbol="PEPE")
        wif_entry = TokenCacheEntry(mint=MINT_WIF, name="dogwifhat", symbol="WIF")

        store = MagicMock()
        store.get_token_cache = AsyncMock(
            side_effect=[{MINT_PEPE: pepe_entry}, {MINT_PEPE: pepe_entry, MINT_WIF: wif_entry}]
        )
        store.upsert_token_metadata = AsyncMock()
        helius = MagicMock()
        helius.get_token_metadata = AsyncMock(
            return_value={MINT_WIF: TokenMeta(name="dogwifhat", symbol="WIF")}
        )

        result = await batch_get_token_metadata([MINT_PEPE, MINT_WIF, WSOL, MINT_PEPE], store, helius)

        helius.get_token_metadata.assert_awaited_once_with([MINT_WIF])
        store.upsert_token_metadata.assert_awaited_once()
        assert result[MINT_PEPE].symbol == "PEPE"
        assert result[MINT_WIF].symbol == "WIF"
        assert result[WSOL].symbol == "SOL"

    @pytest.mark.asyncio
    async def test_all_cached_skips_helius(self):
        entry = TokenCacheEntry(mint=MINT_PEPE, symbol="PEPE")
        store = MagicMock()
        store.get_token_cache = AsyncMock(return_value={MINT_PEPE: entry})
        helius = MagicMock()
        helius.get_token_metadata = AsyncMock()

        result = await batch_get_token_metadata([MINT_PEPE], store, helius)

        helius.get_token_metadata.assert_not_awaited()
        assert store.get_token_cache.await_count == 1
        assert result == {MINT_PEPE: TokenMeta(name="", symbol="PEPE", image="")}

    @pytest.mark.asyncio
    async def test_unresolved_maps_to_none(self):
        store = MagicMock()
        store.get_token_cache = AsyncMock(return_value={})
        store.upsert_token_metadata = AsyncMock()
        helius = MagicMock()
        helius.get_token_metadata = AsyncMock(return_value={})

        result = await batch_get_token_metadata([MINT_WIF], store, helius)

        assert result == {MINT_WIF: None}
        store.upsert_token_metadata.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_with_real_store(self, store):
        helius = MagicMock()
        helius.get_token_metadata = AsyncMock(
            return_value={MINT_PEPE: TokenMeta(name="Pepe", symbol="PEPE", image="img")}
        )

        first = await batch_get_token_metadata([MINT_PEPE], store, helius)
        second = await batch_get_token_metadata([MINT_PEPE], store, helius)

        assert first[MINT_PEPE].image == "img"
        assert second[MINT_PEPE].symbol == "PEPE"
        # second call is served from the persistent cache
        helius.get_token_metadata.assert_awaited_once()
