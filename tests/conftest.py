"""Shared test fixtures for the KOL Trade Tracker test suite."""

from __future__ import annotations

import sys
import os

# Ensure src/ is importable
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import pytest

from kol_tracker.kol_registry import KolRegistry
from kol_tracker.models import Kol, TokenMeta, Trade

# Real-looking (44 char) addresses so the wallet length checks pass
WALLET_A = "AAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA"
WALLET_A_SIDE = "AAAASIDEAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA"
WALLET_B = "BBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBB"
WALLET_C = "CCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCC"
POOL = "PooLPooLPooLPooLPooLPooLPooLPooLPooLPooLPooL"
MINT_PEPE = "PEPEmintPEPEmintPEPEmintPEPEmintPEPEmintpump"
MINT_WIF = "WIFmintWIFmintWIFmintWIFmintWIFmintWIFmintpu"
WSOL = "So11111111111111111111111111111111111111112"


# ---------------------------------------------------------------------------
# KOL reference data
# ---------------------------------------------------------------------------

@pytest.fixture
def kol_records():
    """Raw KOL list in the reference-file format."""
    return [
        {
            "Name": "Alice",
            "Wallet Address": WALLET_A,
            "Side Wallets": [WALLET_A_SIDE, "short", WALLET_A],
            "Avatar": "/avatars/alice.png",
            "Twitter Handle": "alice_sol",
        },
        {
            "Name": "Bob",
            "Wallet Address": WALLET_B,
            "Side Wallets": [],
            "Avatar": "/avatars/bob.png",
            "Twitter Handle": "bob",
        },
        {
            "Name": "Carol",
            "Wallet Address": WALLET_C,
            "Avatar": "/avatars/carol.png",
        },
    ]


@pytest.fixture
def registry(kol_records):
    return KolRegistry.from_records(kol_records)


@pytest.fixture
def metadata_map():
    return {
        MINT_PEPE: TokenMeta(name="Pepe", symbol="PEPE", image="https://img/pepe.png"),
        MINT_WIF: TokenMeta(name="dogwifhat", symbol="WIF", image=""),
    }


# ---------------------------------------------------------------------------
# Helius enhanced transactions
# ---------------------------------------------------------------------------

@pytest.fixture
def swap_event_tx():
    """Buy of 1.0 PEPE for 1.5 SOL, decoded by Helius as a swap event."""
    return {
        "signature": "sigSwapEvent111",
        "timestamp": 1_700_000_000,
        "type": "SWAP",
        "feePayer": WALLET_A,
        "description": "",
        "events": {
            "swap": {
                "nativeInput": {"account": WALLET_A, "amount": "1500000000"},
                "nativeOutput": None,
                "tokenInputs": [],
                "tokenOutputs": [
                    {
                        "userAccount": WALLET_A,
                        "mint": MINT_PEPE,
                        "rawTokenAmount": {"tokenAmount": "1000000", "decimals": 6},
                    }
                ],
            }
        },
        "nativeTransfers": [],
        "tokenTransfers": [
            {
                "fromUserAccount": POOL,
                "toUserAccount": WALLET_A,
                "mint": MINT_PEPE,
                "tokenAmount": 1.0,
            }
        ],
        "accountData": [{"account": WALLET_A}, {"account": POOL}],
    }


@pytest.fixture
def description_sell_tx():
    """Sell described only in text: 2,500 WIF for 0.75 SOL."""
    return {
        "signature": "sigDescSell222",
        "timestamp": 1_700_000_100,
        "type": "SWAP",
        "feePayer": WALLET_B,
        "description": f"{WALLET_B} swapped 2,500 WIF for 0.75 SOL",
        "nativeTransfers": [],
        "tokenTransfers": [
            {
                "fromUserAccount": WALLET_B,
                "toUserAccount": POOL,
                "mint": MINT_WIF,
                "tokenAmount": 2500,
            }
        ],
    }


@pytest.fixture
def net_balance_buy_tx():
    """pump.fun style buy with no swap event and no description."""
    return {
        "signature": "sigNetBuy333",
        "timestamp": 1_700_000_200,
        "type": "UNKNOWN",
        "feePayer": WALLET_A,
        "description": "",
        "nativeTransfers": [
            {"fromUserAccount": WALLET_A, "toUserAccount": POOL, "amount": 2_000_000_000},
            {"fromUserAccount": WALLET_A, "toUserAccount": POOL, "amount": 20_000_000},
            {"fromUserAccount": POOL, "toUserAccount": WALLET_A, "amount": 5_000},
        ],
        "tokenTransfers": [
            {"fromUserAccount": POOL, "toUserAccount": WALLET_A, "mint": MINT_PEPE, "tokenAmount": 500.0},
            {"fromUserAccount": POOL, "toUserAccount": WALLET_A, "mint": MINT_PEPE, "tokenAmount": 12_000.0},
        ],
    }


# ---------------------------------------------------------------------------
# Trades
# ---------------------------------------------------------------------------

def make_trade(**overrides) -> Trade:
    fields = dict(
        signature="sig-default",
        timestamp=1_700_000_000,
        wallet=WALLET_A,
        kol_name="Alice",
        kol_avatar="/avatars/alice.png",
        action="Buy",
        token_symbol="PEPE",
        token_mint=MINT_PEPE,
        token_amount=100.0,
        amount_sol=1.0,
    )
    fields.update(overrides)
    return Trade(**fields)


@pytest.fixture
def trade_factory():
    return make_trade


@pytest.fixture
async def store(tmp_path):
    from kol_tracker.store import TradeStore

    s = TradeStore(db_path=str(tmp_path / "trades.db"))
    yield s
    await s.close()


@pytest.fixture
def kol_alice(registry) -> Kol:
    return registry.find_by_name("Alice")
