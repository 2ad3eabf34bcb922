"""
Centralized constants for the KOL Trade Tracker.

This file contains:
- Solana mint addresses and unit conversions (protocol constants)
- Helius transaction types that can never be a memecoin trade
- The default deny-lists applied by the trade validity filter
- Classifier thresholds shared between the classifier and the filter

Import from this module rather than duplicating values across modules.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Solana mints (fixed by the Solana protocol / token registry)
# ---------------------------------------------------------------------------

# Wrapped SOL mint
WSOL_MINT = "So11111111111111111111111111111111111111112"

USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
USDT_MINT = "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB"
USD1_MINT = "BJUH9GJLaMSLV1E7B3SQLCy9eCfyr6zsrm3WYMFQmpuN"

# SOL conversion
LAMPORTS_PER_SOL: int = 1_000_000_000

# ---------------------------------------------------------------------------
# Transaction types
# ---------------------------------------------------------------------------

# Helius declared types that are never swaps
NON_TRADE_TYPES: frozenset[str] = frozenset({
    "TRANSFER",
    "BURN",
    "BURN_NFT",
    "COMPRESSED_NFT_MINT",
    "COMPRESSED_NFT_TRANSFER",
    "COMPRESSED_NFT_BURN",
    "NFT_MINT",
    "NFT_SALE",
    "NFT_LISTING",
    "NFT_CANCEL_LISTING",
    "STAKE",
    "UNSTAKE",
    "INIT_BANK",
    "SET_BANK_FLAGS",
    "CLOSE_POSITION",
    "WITHDRAW",
    "DEPOSIT",
})

# Description prefixes of non-trade activity (matched lower-cased)
NON_TRADE_DESCRIPTION_PREFIXES: tuple[str, ...] = ("burned ", "close ", "staked ")

# ---------------------------------------------------------------------------
# Deny-lists: stablecoins, liquid-staking tokens, infrastructure tokens
# ---------------------------------------------------------------------------

DEFAULT_SKIP_TOKENS: frozenset[str] = frozenset({
    # SOL + stables
    "SOL", "WSOL", "USDC", "USDT", "USDS", "USD1", "EURC", "DAI", "FRAX",
    "TUSD", "BUSD", "USDH", "UXD",
    # Liquid staking
    "mSOL", "jitoSOL", "bSOL", "stSOL", "JitoSOL", "INF", "hSOL", "vSOL",
    "jupSOL", "LST",
    # Majors / infrastructure
    "WETH", "WBTC", "RAY", "JLP", "JTO", "PYTH", "JUP", "ORCA", "MNDE", "STEP",
    "BONK",
})

DEFAULT_SKIP_MINTS: frozenset[str] = frozenset({
    WSOL_MINT,
    USDC_MINT,
    USDT_MINT,
    USD1_MINT,
})

# ---------------------------------------------------------------------------
# Classifier / filter thresholds
# ---------------------------------------------------------------------------

# Net SOL movement below this is treated as fees, not a trade
DUST_THRESHOLD_SOL: float = 0.001

# Longer "symbols" are almost always unresolved mint addresses
MAX_SYMBOL_LENGTH: int = 15

# Decimal places kept for SOL amounts
SOL_DECIMALS: int = 4

DEFAULT_AVATAR = "/logo.png"
UNKNOWN_KOL = "Unknown"

# Wallet strings this short are placeholders in the reference data
MIN_WALLET_LENGTH: int = 10

# Submitted addresses shorter than this are rejected
MIN_SUBMITTED_ADDRESS_LENGTH: int = 32
MIN_SUBMITTED_KOL_NAME_LENGTH: int = 2

# Estimated Helius credits charged per enhanced-transactions request
CREDITS_PER_REQUEST: int = 100

# ---------------------------------------------------------------------------
# Leaderboard windows (seconds)
# ---------------------------------------------------------------------------
PERIOD_SECONDS: dict[str, int] = {
    "daily": 86_400,
    "weekly": 7 * 86_400,
    "monthly": 30 * 86_400,
}
