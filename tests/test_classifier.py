"""Tests for the trade classifier cascade."""

from __future__ import annotations

import copy

import pytest

from kol_tracker.classifier import (
    NOT_A_TRADE,
    TxContext,
    classify,
    from_description,
    from_net_balance,
    from_swap_event,
    is_non_trade,
)
from kol_tracker.constants import DEFAULT_AVATAR, NON_TRADE_TYPES, UNKNOWN_KOL
from kol_tracker.models import TokenCacheEntry

from conftest import MINT_PEPE, MINT_WIF, POOL, WALLET_A, WALLET_B, WSOL


def _ctx(tx, wallet=WALLET_A, metadata_map=None, token_cache=None):
    return TxContext(tx=tx, wallet=wallet, metadata_map=metadata_map or {}, token_cache=token_cache)


class TestIsNonTrade:

    @pytest.mark.parametrize("tx_type", sorted(NON_TRADE_TYPES))
    def test_declared_types(self, tx_type):
        assert is_non_trade({"type": tx_type}) is True

    def test_transfer_description(self):
        tx = {"type": "UNKNOWN", "description": "Alice transferred 1 SOL to Bob"}
        assert is_non_trade(tx) is True

    def test_transfer_inside_swap_description_is_kept(self):
        tx = {"type": "UNKNOWN", "description": "swap route transferred 1 SOL"}
        assert is_non_trade(tx) is False

    @pytest.mark.parametrize("desc", ["Burned 10 BONK", "close account X", "Staked 5 SOL"])
    def test_prefixes(self, desc):
        assert is_non_trade({"type": "UNKNOWN", "description": desc}) is True

    def test_swap(self):
        assert is_non_trade({"type": "SWAP", "description": "X swapped 1 SOL for 5 PEPE"}) is False


class TestClassifyNonTrades:

    @pytest.mark.parametrize("tx_type", ["TRANSFER", "NFT_SALE", "STAKE", "BURN"])
    def test_non_trade_type_is_none(self, swap_event_tx, metadata_map, tx_type):
        tx = dict(swap_event_tx, type=tx_type)
        assert classify(tx, "Alice", None, WALLET_A, metadata_map) is None

    def test_not_a_dict(self):
        assert classify("garbage", "Alice", None, WALLET_A) is None  # type: ignore[arg-type]

    def test_missing_signature(self, swap_event_tx, metadata_map):
        tx = dict(swap_event_tx)
        del tx["signature"]
        assert classify(tx, "Alice", None, WALLET_A, metadata_map) is None

    def test_empty_transaction(self):
        assert classify({"signature": "x"}, "Alice", None, WALLET_A) is None

    def test_token_to_token_swap(self):
        tx = {
            "signature": "sigT2T",
            "type": "SWAP",
            "description": f"{WALLET_A} swapped 10 WIF for 20 PEPE",
            "nativeTransfers": [
                {"fromUserAccount": WALLET_A, "toUserAccount": POOL, "amount": 5_000_000_000},
            ],
            "tokenTransfers": [
                {"fromUserAccount": POOL, "toUserAccount": WALLET_A, "mint": MINT_PEPE, "tokenAmount": 20},
            ],
        }
        # the description cascade step stops classification outright
        assert classify(tx, "Alice", None, WALLET_A) is None


class TestSwapEvent:

    def test_buy_from_swap_event(self, swap_event_tx, metadata_map):
        trade = classify(swap_event_tx, "Alice", "/a.png", WALLET_A, metadata_map)
        assert trade is not None
        assert trade.action == "Buy"
        assert trade.amount_sol == 1.5
        assert trade.token_amount == 1.0
        assert trade.token_mint == MINT_PEPE
        assert trade.token_symbol == "PEPE"
        assert trade.signature == "sigSwapEvent111"
        assert trade.timestamp == 1_700_000_000
        assert trade.kol_name == "Alice"
        assert trade.kol_avatar == "/a.png"

    def test_sell_from_swap_event(self, metadata_map):
        tx = {
            "signature": "sigSell",
            "timestamp": 1_700_000_500,
            "type": "SWAP",
            "events": {
                "swap": {
                    "nativeInput": None,
                    "nativeOutput": {"account": WALLET_A, "amount": 3_250_000_000},
                    "tokenInputs": [
                        {
                            "userAccount": WALLET_A,
                            "mint": MINT_WIF,
                            "rawTokenAmount": {"tokenAmount": "250000000", "decimals": 6},
                        }
                    ],
                    "tokenOutputs": [],
                }
            },
        }
        trade = classify(tx, "Alice", None, WALLET_A, metadata_map)
        assert trade is not None
        assert trade.action == "Sell"
        assert trade.amount_sol == 3.25
        assert trade.token_amount == 250.0
        assert trade.token_symbol == "WIF"

    def test_defaults_for_missing_kol(self, swap_event_tx, metadata_map):
        trade = classify(swap_event_tx, None, None, WALLET_A, metadata_map)
        assert trade.kol_name == UNKNOWN_KOL
        assert trade.kol_avatar == DEFAULT_AVATAR

    def test_unresolved_symbol_is_inconclusive(self, swap_event_tx):
        assert from_swap_event(_ctx(swap_event_tx)) is None

    def test_symbol_from_token_cache(self, swap_event_tx):
        cache = {MINT_PEPE: TokenCacheEntry(mint=MINT_PEPE, symbol="PEPE")}
        trade = classify(swap_event_tx, "Alice", None, WALLET_A, token_cache=cache)
        assert trade is not None
        assert trade.token_symbol == "PEPE"

    def test_wsol_legs_are_ignored(self, metadata_map):
        tx = {
            "signature": "sigW",
            "type": "SWAP",
            "events": {
                "swap": {
                    "nativeInput": {"amount": 1_000_000_000},
                    "tokenOutputs": [{"mint": WSOL, "rawTokenAmount": {"tokenAmount": "1", "decimals": 0}}],
                }
            },
        }
        assert from_swap_event(_ctx(tx, metadata_map=metadata_map)) is None


class TestDescription:

    def test_sell_from_description(self, description_sell_tx):
        trade = classify(description_sell_tx, "Bob", None, WALLET_B)
        assert trade is not None
        assert trade.action == "Sell"
        assert trade.token_symbol == "WIF"
        assert trade.amount_sol == 0.75
        assert trade.token_amount == 2500.0
        assert trade.token_mint == MINT_WIF

    def test_buy_from_description(self):
        tx = {
            "signature": "sigDescBuy",
            "type": "SWAP",
            "description": f"{WALLET_A} swapped 1.25 SOL for 1,000,000 PEPE",
            "tokenTransfers": [
                {"fromUserAccount": POOL, "toUserAccount": WALLET_A, "mint": MINT_PEPE, "tokenAmount": 1_000_000},
            ],
        }
        trade = classify(tx, "Alice", None, WALLET_A)
        assert trade.action == "Buy"
        assert trade.amount_sol == 1.25
        assert trade.token_amount == 1_000_000.0

    def test_mint_from_metadata_symbol(self, metadata_map):
        tx = {"signature": "s", "description": "x swapped 2 SOL for 10 PEPE"}
        draft = from_description(_ctx(tx, metadata_map=metadata_map))
        assert draft.token_mint == MINT_PEPE

    def test_token_to_token_stops_cascade(self):
        tx = {"signature": "s", "description": "x swapped 10 WIF for 20 PEPE"}
        assert from_description(_ctx(tx)) is NOT_A_TRADE

    def test_zero_sol_is_inconclusive(self):
        tx = {"signature": "s", "description": "x swapped 0 SOL for 20 PEPE"}
        assert from_description(_ctx(tx)) is None

    def test_no_match(self):
        assert from_description(_ctx({"signature": "s", "description": "hello"})) is None


class TestNetBalance:

    def test_pump_style_buy(self, net_balance_buy_tx, metadata_map):
        trade = classify(net_balance_buy_tx, "Alice", None, WALLET_A, metadata_map)
        assert trade is not None
        assert trade.action == "Buy"
        assert trade.amount_sol == 2.02
        # largest incoming transfer wins
        assert trade.token_amount == 12_000.0
        assert trade.token_symbol == "PEPE"

    def test_sell(self, metadata_map):
        tx = {
            "signature": "sigNetSell",
            "nativeTransfers": [
                {"fromUserAccount": POOL, "toUserAccount": WALLET_A, "amount": 900_000_000},
            ],
            "tokenTransfers": [
                {"fromUserAccount": WALLET_A, "toUserAccount": POOL, "mint": MINT_WIF, "tokenAmount": 42},
            ],
        }
        draft = from_net_balance(_ctx(tx, metadata_map=metadata_map))
        assert draft.action == "Sell"
        assert draft.amount_sol == 0.9
        assert draft.token_amount == 42

    def test_dust_is_not_a_trade(self, net_balance_buy_tx, metadata_map):
        tx = copy.deepcopy(net_balance_buy_tx)
        tx["nativeTransfers"] = [
            {"fromUserAccount": WALLET_A, "toUserAccount": POOL, "amount": 500_000},
        ]
        assert from_net_balance(_ctx(tx, metadata_map=metadata_map)) is None

    def test_tokens_both_ways_is_ambiguous(self, net_balance_buy_tx, metadata_map):
        tx = copy.deepcopy(net_balance_buy_tx)
        tx["tokenTransfers"].append(
            {"fromUserAccount": WALLET_A, "toUserAccount": POOL, "mint": MINT_WIF, "tokenAmount": 3}
        )
        assert from_net_balance(_ctx(tx, metadata_map=metadata_map)) is None

    def test_attributed_to_the_given_wallet(self, net_balance_buy_tx, metadata_map):
        # from another wallet's point of view nothing moved
        assert from_net_balance(_ctx(net_balance_buy_tx, wallet=WALLET_B, metadata_map=metadata_map)) is None

    def test_missing_native_transfers(self):
        tx = {"signature": "s", "tokenTransfers": [{"mint": MINT_PEPE, "tokenAmount": 1}]}
        assert from_net_balance(_ctx(tx)) is None


class TestActionDomain:

    def test_action_is_buy_sell_or_none(
        self, swap_event_tx, description_sell_tx, net_balance_buy_tx, metadata_map
    ):
        txs = [
            swap_event_tx,
            description_sell_tx,
            net_balance_buy_tx,
            {"signature": "a", "type": "TRANSFER"},
            {"signature": "b", "description": "swapped"},
            {"signature": "c", "nativeTransfers": [], "tokenTransfers": []},
        ]
        for tx in txs:
            for wallet in (WALLET_A, WALLET_B):
                trade = classify(tx, "K", None, wallet, metadata_map)
                assert trade is None or trade.action in ("Buy", "Sell")

    def test_custom_strategy_list(self, swap_event_tx, metadata_map):
        trade = classify(
            swap_event_tx, "Alice", None, WALLET_A, metadata_map, strategies=(from_net_balance,)
        )
        # no native transfers in the fixture, so net balance cannot decide
        assert trade is None
