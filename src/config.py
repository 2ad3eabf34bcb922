"""
Project configuration file for the KOL Trade Tracker.

This module centralises all user-modifiable settings such as API keys,
scan pacing, credit budgets and server options.  You can edit these
values directly or set environment variables to override them.
"""

from __future__ import annotations

import logging
import os

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------

def _parse_float(name: str, default: str, *, low: float = 0.0, high: float = 1.0) -> float:
    """Parse an env var as a float and validate it within [low, high]."""
    raw = os.getenv(name, default)
    try:
        value = float(raw)
    except (TypeError, ValueError):
        logger.error("Invalid value for %s: %r – using default %s", name, raw, default)
        value = float(default)
    if not (low <= value <= high):
        logger.warning("%s=%.4f is outside [%.1f, %.1f] – clamped", name, value, low, high)
        value = max(low, min(value, high))
    return value


def _parse_int(name: str, default: str, *, minimum: int = 1) -> int:
    """Parse an env var as an int and enforce a minimum."""
    raw = os.getenv(name, default)
    try:
        value = int(raw)
    except (TypeError, ValueError):
        logger.error("Invalid value for %s: %r – using default %s", name, raw, default)
        value = int(default)
    if value < minimum:
        logger.warning("%s=%d is below minimum %d – clamped", name, value, minimum)
        value = minimum
    return value


def _parse_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


def _parse_list(name: str) -> list[str]:
    return [v.strip() for v in os.getenv(name, "").split(",") if v.strip()]


# ---------------------------------------------------------------------------
# Helius (transaction source + token metadata)
# ---------------------------------------------------------------------------
HELIUS_API_KEY: str = os.getenv("HELIUS_API_KEY", "")
HELIUS_BASE_URL: str = os.getenv("HELIUS_BASE_URL", "https://api.helius.xyz")
# Credits are only spent when this is switched on explicitly
HELIUS_ENABLED: bool = _parse_bool("HELIUS_ENABLED") and bool(HELIUS_API_KEY)
WEBHOOK_URL: str = os.getenv("WEBHOOK_URL", "")
WEBHOOK_ID: str = os.getenv("WEBHOOK_ID", "")

# ---------------------------------------------------------------------------
# Market data
# ---------------------------------------------------------------------------
DEXSCREENER_BASE_URL: str = os.getenv(
    "DEXSCREENER_BASE_URL",
    "https://api.dexscreener.com",
)
COINGECKO_BASE_URL: str = os.getenv(
    "COINGECKO_BASE_URL",
    "https://api.coingecko.com/api/v3",
)
SOL_PRICE_DEFAULT_USD: float = _parse_float(
    "SOL_PRICE_DEFAULT_USD", "80", low=0.0, high=100_000.0
)
SOL_PRICE_REFRESH_SECONDS: int = _parse_int("SOL_PRICE_REFRESH_SECONDS", "300", minimum=10)
MARKET_REFRESH_SECONDS: int = _parse_int("MARKET_REFRESH_SECONDS", "600", minimum=10)
MARKET_STALE_SECONDS: int = _parse_int("MARKET_STALE_SECONDS", "300", minimum=1)

# ---------------------------------------------------------------------------
# Storage / reference data
# ---------------------------------------------------------------------------
DATABASE_PATH: str = os.getenv("DATABASE_PATH", "data/kol_trades.db")
KOL_DATA_PATH: str = os.getenv("KOL_DATA_PATH", "data/kols.json")

# ---------------------------------------------------------------------------
# Scanner pacing
# ---------------------------------------------------------------------------
SCAN_GROUP_SIZE: int = _parse_int("SCAN_GROUP_SIZE", "5", minimum=1)
SCAN_GROUP_DELAY: float = _parse_float("SCAN_GROUP_DELAY", "0.5", low=0.0, high=60.0)
SCAN_TX_LIMIT: int = _parse_int("SCAN_TX_LIMIT", "10", minimum=1)
BACKFILL_TX_LIMIT: int = _parse_int("BACKFILL_TX_LIMIT", "100", minimum=1)

DEEP_PAGE_SIZE: int = _parse_int("DEEP_PAGE_SIZE", "100", minimum=1)
DEEP_MAIN_MAX_PAGES: int = _parse_int("DEEP_MAIN_MAX_PAGES", "50", minimum=1)
DEEP_SIDE_MAX_PAGES: int = _parse_int("DEEP_SIDE_MAX_PAGES", "15", minimum=1)
DEEP_PAGE_DELAY: float = _parse_float("DEEP_PAGE_DELAY", "0.25", low=0.0, high=60.0)
DEEP_KOL_DELAY: float = _parse_float("DEEP_KOL_DELAY", "0.2", low=0.0, high=60.0)
DEEP_MAX_DAYS: int = _parse_int("DEEP_MAX_DAYS", "30", minimum=1)

# Deep backfill on startup when the DB holds fewer trades than this
BOOTSTRAP_MIN_TRADES: int = _parse_int("BOOTSTRAP_MIN_TRADES", "100", minimum=0)
BOOTSTRAP_DAYS: int = _parse_int("BOOTSTRAP_DAYS", "7", minimum=1)
CREDIT_LOG_INTERVAL_SECONDS: int = _parse_int("CREDIT_LOG_INTERVAL_SECONDS", "3600", minimum=60)

# ---------------------------------------------------------------------------
# Deny-list additions (comma separated) on top of the built-in lists
# ---------------------------------------------------------------------------
SKIP_TOKENS_EXTRA: list[str] = _parse_list("SKIP_TOKENS_EXTRA")
SKIP_MINTS_EXTRA: list[str] = _parse_list("SKIP_MINTS_EXTRA")

# ---------------------------------------------------------------------------
# HTTP clients
# ---------------------------------------------------------------------------
REQUEST_TIMEOUT: int = _parse_int("REQUEST_TIMEOUT", "15", minimum=1)

# ---------------------------------------------------------------------------
# Rate limiting (slowapi format, e.g. "10/minute")
# ---------------------------------------------------------------------------
RATE_LIMIT_SCAN: str = os.getenv("RATE_LIMIT_SCAN", "5/minute")
RATE_LIMIT_DEBUG: str = os.getenv("RATE_LIMIT_DEBUG", "10/minute")
RATE_LIMIT_SUBMIT: str = os.getenv("RATE_LIMIT_SUBMIT", "10/minute")

# ---------------------------------------------------------------------------
# Sentry (error tracking)
# ---------------------------------------------------------------------------
SENTRY_DSN: str = os.getenv("SENTRY_DSN", "")
SENTRY_ENVIRONMENT: str = os.getenv("SENTRY_ENVIRONMENT", "production")
SENTRY_TRACES_SAMPLE_RATE: float = _parse_float(
    "SENTRY_TRACES_SAMPLE_RATE", "0.1", low=0.0, high=1.0
)

# ---------------------------------------------------------------------------
# Circuit breaker
# ---------------------------------------------------------------------------
CB_FAILURE_THRESHOLD: int = _parse_int("CB_FAILURE_THRESHOLD", "8", minimum=1)
CB_RECOVERY_TIMEOUT: float = float(os.getenv("CB_RECOVERY_TIMEOUT", "60"))

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT: str = os.getenv("LOG_FORMAT", "text")  # "text" or "json"

# ---------------------------------------------------------------------------
# API server
# ---------------------------------------------------------------------------
API_HOST: str = os.getenv("API_HOST", "0.0.0.0")
API_PORT: int = _parse_int("API_PORT", "3001", minimum=1)
CORS_ORIGINS: list[str] = [
    o.strip()
    for o in os.getenv("CORS_ORIGINS", "*").split(",")
    if o.strip()
]
