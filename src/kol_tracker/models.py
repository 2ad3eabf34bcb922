"""
Pydantic models used throughout the KOL Trade Tracker.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .constants import DEFAULT_AVATAR, UNKNOWN_KOL

TradeAction = Literal["Buy", "Sell"]
ScanPhaseName = Literal["idle", "scanning", "done"]


# ---------------------------------------------------------------------------
# Trades
# ---------------------------------------------------------------------------
class Trade(BaseModel):
    """A classified memecoin trade.  Immutable once built."""

    model_config = ConfigDict(frozen=True)

    signature: str = Field(..., description="Transaction signature (unique key)")
    timestamp: int = Field(0, description="Transaction block time, unix seconds")
    wallet: str = Field("", description="KOL wallet the trade was attributed to")
    kol_name: str = UNKNOWN_KOL
    kol_avatar: str = DEFAULT_AVATAR
    action: TradeAction
    token_symbol: str = ""
    token_mint: str = ""
    token_amount: float = 0.0
    amount_sol: float = 0.0
    scanned_at: Optional[datetime] = Field(
        None, description="When the row was written (set by the store)"
    )


# ---------------------------------------------------------------------------
# Token data
# ---------------------------------------------------------------------------
class TokenMeta(BaseModel):
    """Name / symbol / image as returned by the token metadata source."""

    name: str = ""
    symbol: str = ""
    image: str = ""


class TokenCacheEntry(BaseModel):
    """One row of the persistent token cache."""

    mint: str
    name: str = ""
    symbol: str = ""
    image: str = ""
    market_cap: float = 0.0
    price_usd: float = 0.0
    price_change_24h: float = 0.0
    cached_at: Optional[datetime] = None


class TokenMarketData(BaseModel):
    """Best-pair market snapshot for a token (DexScreener)."""

    mint: str
    name: str = ""
    symbol: str = ""
    image: str = ""
    price_usd: float = 0.0
    market_cap: float = 0.0
    price_change_24h: float = 0.0
    liquidity_usd: float = 0.0
    volume_24h: float = 0.0


# ---------------------------------------------------------------------------
# KOL reference data
# ---------------------------------------------------------------------------
class Kol(BaseModel):
    """A tracked Key Opinion Leader.

    Field aliases match the externally supplied reference list
    (``{"Name": ..., "Wallet Address": ..., "Side Wallets": [...]}``).
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(..., alias="Name")
    wallet: str = Field("", alias="Wallet Address")
    side_wallets: tuple[str, ...] = Field((), alias="Side Wallets")
    avatar: str = Field(DEFAULT_AVATAR, alias="Avatar")
    twitter: str = Field("", alias="Twitter Handle")

    @field_validator("wallet", "avatar", "twitter", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("side_wallets", mode="before")
    @classmethod
    def _side_wallet_list(cls, v: Any) -> Any:
        if v is None:
            return ()
        if isinstance(v, str):
            return (v,)
        return tuple(w for w in v if isinstance(w, str))


# ---------------------------------------------------------------------------
# Scanner status
# ---------------------------------------------------------------------------
class ScanStatus(BaseModel):
    """Snapshot of the process-wide scan state."""

    phase: ScanPhaseName
    done: int = 0
    total: int = 0
    progress: str = "idle"
    credits_used: int = 0


class ScanSummary(BaseModel):
    """Outcome of one completed scan or backfill."""

    kind: Literal["scan", "backfill", "deep_backfill"]
    wallets: int = 0
    saved: int = 0
    pages: int = 0
    credits_used: int = 0


class WebhookResult(BaseModel):
    """Per-batch counters of the webhook handler."""

    total: int = 0
    saved: int = 0
    duplicates: int = 0
    not_swap: int = 0
    invalid: int = 0
    no_kol: int = 0
    errors: int = 0


# ---------------------------------------------------------------------------
# Aggregations
# ---------------------------------------------------------------------------
class LeaderboardEntry(BaseModel):
    rank: int = 0
    wallet: str = ""
    name: str
    avatar: str = DEFAULT_AVATAR
    twitter: str = ""
    trade_count: int = 0
    buy_count: int = 0
    sell_count: int = 0
    pnl: float = Field(0.0, description="Sell SOL minus Buy SOL in the window")
    pnl_usd: float = 0.0
    win_rate: float = Field(0.0, ge=0.0, le=100.0)


class FeedTrade(BaseModel):
    """A trade as shown in the recent-trades feed."""

    kol_name: str
    kol_avatar: str = DEFAULT_AVATAR
    wallet: str = ""
    action: TradeAction
    token_symbol: str
    token_mint: str = ""
    token_amount: float = 0.0
    token_image: str = ""
    token_price: float = 0.0
    amount_sol: float = 0.0
    timestamp: int = 0
    signature: str
    is_side_wallet: bool = False


class TokenPosition(BaseModel):
    """A single wallet's aggregated position in one token."""

    wallet: str
    kol_name: str
    kol_avatar: str = DEFAULT_AVATAR
    bought_sol: float = 0.0
    bought_tokens: float = 0.0
    sold_sol: float = 0.0
    sold_tokens: float = 0.0
    last_trade: int = 0


class TokenPnl(BaseModel):
    """Per-token PnL breakdown for one KOL."""

    token_symbol: str
    token_mint: str = ""
    token_image: str = ""
    bought_sol: float = 0.0
    sold_sol: float = 0.0
    tokens_bought: float = 0.0
    tokens_sold: float = 0.0
    tokens_held: float = 0.0
    holding_value_sol: float = 0.0
    holding_value_usd: float = 0.0
    realized_pnl: float = 0.0
    total_pnl: float = 0.0
    total_pnl_usd: float = 0.0
    roi_pct: float = Field(0.0, description="(sold + holding - bought) / bought, in percent")
    buy_count: int = 0
    sell_count: int = 0
    first_trade: int = 0
    last_trade: int = 0
    duration_sec: int = 0


class TokenActivity(BaseModel):
    """Recent trading activity on one mint (input of the token tracker)."""

    token_mint: str
    token_symbol: str = ""
    trade_count: int = 0
    kol_count: int = 0
    last_trade: int = 0


class TokenCard(BaseModel):
    """A token tracker card: market data plus KOL positions."""

    mint: str
    symbol: str = ""
    name: str = ""
    image: str = ""
    market_cap: float = 0.0
    price_usd: float = 0.0
    price_change_24h: float = 0.0
    trade_count: int = 0
    kol_count: int = 0
    last_trade: int = 0
    positions: list[TokenPosition] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Community submissions
# ---------------------------------------------------------------------------
class WalletSubmissionRequest(BaseModel):
    """Request body for ``POST /api/wallets``."""

    address: Optional[str] = None
    label: str = ""
    notes: str = ""


class SubmittedWallet(BaseModel):
    id: int
    address: str
    label: str = ""
    notes: str = ""
    submitted_at: Optional[datetime] = None


class SideWalletSubmissionRequest(BaseModel):
    """Request body for ``POST /api/submit-side-wallet``.

    Accepts the camelCase keys of the frontend form as well as field names.
    """

    model_config = ConfigDict(populate_by_name=True)

    kol_name: Optional[str] = Field(None, alias="kolName")
    twitter: str = ""
    wallet_address: Optional[str] = Field(None, alias="walletAddress")
    is_new_kol: bool = Field(False, alias="isNewKol")
    notes: str = ""


class SideWalletSubmission(BaseModel):
    """A community-submitted side wallet, pending manual review."""

    id: int
    kol_name: str
    twitter: str = ""
    wallet_address: str
    is_new_kol: bool = False
    notes: str = ""
    status: str = "pending"
    submitted_at: Optional[datetime] = None
