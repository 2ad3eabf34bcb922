"""
REST API for the KOL Trade Tracker using FastAPI.

Endpoints
---------
GET  /health                        - Health check
POST /webhook/helius                - Helius enhanced-transaction webhook
GET  /api/sol-price                 - Current SOL/USD price
POST /api/backfill                  - Quick backfill (100 txns per wallet)
POST /api/deep-backfill?days=N      - Paginated backfill of the last N days
POST /api/reset-trades?days=N       - Wipe trades, then deep backfill
GET  /api/leaderboard?period=P      - KOL ranking (daily / weekly / monthly)
GET  /api/trades/feed?limit=N       - Recent trades, max 2 per KOL
GET  /api/trades/{wallet}           - Stored trades of one wallet
GET  /api/kol/{name}/sides          - Side-wallet trades of a KOL
GET  /api/kol/{name}/token-pnl      - Per-token PnL of a KOL
GET  /api/tokens                    - Token tracker grouped by market cap
GET  /api/scanner/status            - Scan phase, progress and credit usage
GET  /api/debug/parse/{wallet}      - Classification report for a wallet
POST /api/wallets                   - Submit a wallet for tracking
GET  /api/wallets                   - Submitted wallets
POST /api/submit-side-wallet        - Submit a side wallet for a KOL
GET  /api/submissions               - Latest side wallet submissions

Security features:
- Rate limiting via slowapi (per-IP) on scan triggers, submissions and the
  debug route
- Internal error details hidden from clients
- Graceful startup/shutdown of HTTP clients and background loops
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Optional

import sentry_sdk
from fastapi import BackgroundTasks, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.middleware.base import BaseHTTPMiddleware

from config import (
    API_HOST,
    API_PORT,
    BACKFILL_TX_LIMIT,
    BOOTSTRAP_DAYS,
    BOOTSTRAP_MIN_TRADES,
    CORS_ORIGINS,
    CREDIT_LOG_INTERVAL_SECONDS,
    DATABASE_PATH,
    DEEP_KOL_DELAY,
    DEEP_MAIN_MAX_PAGES,
    DEEP_MAX_DAYS,
    DEEP_PAGE_SIZE,
    DEEP_SIDE_MAX_PAGES,
    KOL_DATA_PATH,
    MARKET_REFRESH_SECONDS,
    MARKET_STALE_SECONDS,
    RATE_LIMIT_DEBUG,
    RATE_LIMIT_SCAN,
    RATE_LIMIT_SUBMIT,
    SCAN_GROUP_DELAY,
    SCAN_GROUP_SIZE,
    SCAN_TX_LIMIT,
    SENTRY_DSN,
    SENTRY_ENVIRONMENT,
    SENTRY_TRACES_SAMPLE_RATE,
    SOL_PRICE_DEFAULT_USD,
    SOL_PRICE_REFRESH_SECONDS,
)
from . import aggregations
from .circuit_breaker import get_all_statuses as cb_statuses
from .constants import MIN_SUBMITTED_ADDRESS_LENGTH, MIN_SUBMITTED_KOL_NAME_LENGTH
from .data_sources._clients import (
    close_clients,
    credits,
    get_dex_client,
    get_gecko_client,
    get_helius_client,
    get_jup_client,
    init_clients,
)
from .data_sources.helius import HeliusClient
from .ingestion import IngestionPipeline, clamp_days
from .kol_registry import KolRegistry
from .logging_config import generate_request_id, request_id_ctx, setup_logging
from .market_data import MarketDataService
from .models import (
    FeedTrade,
    LeaderboardEntry,
    ScanStatus,
    SideWalletSubmissionRequest,
    TokenPnl,
    Trade,
    WalletSubmissionRequest,
)
from .scan_state import ScanState
from .store import TradeStore
from .trade_filter import DenyList

# Initialise structured logging early
setup_logging()
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Sentry – initialise before anything else so startup errors are captured
# ---------------------------------------------------------------------------
if SENTRY_DSN:
    sentry_sdk.init(
        dsn=SENTRY_DSN,
        environment=SENTRY_ENVIRONMENT,
        traces_sample_rate=SENTRY_TRACES_SAMPLE_RATE,
        send_default_pii=False,
        # Don't capture 4xx client errors as Sentry events
        before_send=lambda event, hint: (
            None
            if (hint.get("exc_info") and
                isinstance(hint["exc_info"][1], HTTPException) and
                (hint["exc_info"][1].status_code or 500) < 500)
            else event
        ),
    )
    logger.info("Sentry initialised (env=%s)", SENTRY_ENVIRONMENT)
else:
    logger.info("SENTRY_DSN not set – error tracking disabled")

_start_time = time.monotonic()


# ---------------------------------------------------------------------------
# Service container (built in lifespan, replaced in tests)
# ---------------------------------------------------------------------------
@dataclass
class Services:
    store: TradeStore
    registry: KolRegistry
    helius: HeliusClient
    market: MarketDataService
    pipeline: IngestionPipeline
    deny_list: DenyList


def build_services() -> Services:
    store = TradeStore(DATABASE_PATH)
    registry = KolRegistry.from_file(KOL_DATA_PATH)
    helius = get_helius_client()
    deny_list = DenyList.from_config()
    market = MarketDataService(
        store,
        get_dex_client(),
        get_gecko_client(),
        get_jup_client(),
        default_sol_price=SOL_PRICE_DEFAULT_USD,
    )
    pipeline = IngestionPipeline(
        store,
        helius,
        registry,
        market,
        ScanState(credits),
        deny_list,
        group_size=SCAN_GROUP_SIZE,
        group_delay=SCAN_GROUP_DELAY,
        scan_limit=SCAN_TX_LIMIT,
        backfill_limit=BACKFILL_TX_LIMIT,
        page_size=DEEP_PAGE_SIZE,
        main_max_pages=DEEP_MAIN_MAX_PAGES,
        side_max_pages=DEEP_SIDE_MAX_PAGES,
        kol_delay=DEEP_KOL_DELAY,
        max_days=DEEP_MAX_DAYS,
    )
    return Services(store, registry, helius, market, pipeline, deny_list)


def _services(request: Request) -> Services:
    return request.app.state.services


# ---------------------------------------------------------------------------
# Credit usage log
# ---------------------------------------------------------------------------
_credit_log_task: Optional[asyncio.Task] = None


async def _credit_log_loop() -> None:
    logger.info("Credit log background task started (interval=%ds)", CREDIT_LOG_INTERVAL_SECONDS)
    while True:
        try:
            await asyncio.sleep(CREDIT_LOG_INTERVAL_SECONDS)
        except asyncio.CancelledError:
            break
        spent = credits.since_last_log()
        logger.info("Helius credits: ~%d in the last interval, ~%d total", spent, credits.used)


def _schedule_credit_log() -> None:
    global _credit_log_task
    _credit_log_task = asyncio.create_task(_credit_log_loop(), name="credit_log")


def _cancel_credit_log() -> None:
    global _credit_log_task
    if _credit_log_task and not _credit_log_task.done():
        _credit_log_task.cancel()


# ---------------------------------------------------------------------------
# Rate limiter
# ---------------------------------------------------------------------------
limiter = Limiter(key_func=get_remote_address)


# ---------------------------------------------------------------------------
# Lifespan: startup / shutdown
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(application: FastAPI):
    """Build services and start background loops; tear down on shutdown."""
    logger.info("Starting up – initialising HTTP clients …")
    await init_clients()
    services = build_services()
    application.state.services = services

    services.market.schedule_loops(SOL_PRICE_REFRESH_SECONDS, MARKET_REFRESH_SECONDS)
    _schedule_credit_log()
    try:
        await services.pipeline.bootstrap_if_empty(BOOTSTRAP_MIN_TRADES, BOOTSTRAP_DAYS)
    except Exception:
        logger.exception("Startup bootstrap check failed")
    yield
    logger.info("Shutting down – closing HTTP clients …")
    services.market.cancel_loops()
    _cancel_credit_log()
    await services.store.close()
    await close_clients()


app = FastAPI(
    title="KOL Trade Tracker API",
    description="Track memecoin Buy/Sell trades of Solana KOL wallets.",
    version="1.0.0",
    lifespan=lifespan,
)

# Attach rate-limiter state
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials="*" not in CORS_ORIGINS,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Accept"],
)


# ---------------------------------------------------------------------------
# Request-ID & access-log middleware
# ---------------------------------------------------------------------------
class RequestIdMiddleware(BaseHTTPMiddleware):
    """Attach a unique request ID to every request for tracing."""

    async def dispatch(self, request: Request, call_next):
        rid = generate_request_id()
        request_id_ctx.set(rid)
        start = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = rid
        logger.info(
            "%s %s -> %s (%.1f ms)",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
        )
        return response


app.add_middleware(RequestIdMiddleware)


def _trade_row(t: Trade) -> dict[str, Any]:
    return t.model_dump(mode="json", exclude={"scanned_at"})


def _require_helius(svc: Services) -> None:
    if not svc.helius.enabled:
        raise HTTPException(status_code=400, detail="Helius is disabled")


def _scan_busy(status: ScanStatus) -> HTTPException:
    return HTTPException(
        status_code=409,
        detail=f"Scan already in progress ({status.progress})",
    )


# ------------------------------------------------------------------
# System
# ------------------------------------------------------------------


@app.get("/health", tags=["system"])
async def health(request: Request) -> dict:
    """Health check: trade count, KOL count, Helius flag and circuit breakers."""
    svc = _services(request)
    try:
        trades = await svc.store.count_trades()
    except Exception as exc:
        logger.exception("Health check failed")
        raise HTTPException(status_code=500, detail="Internal server error") from exc
    return {
        "status": "ok",
        "uptime_seconds": round(time.monotonic() - _start_time, 1),
        "trades": trades,
        "kols": len(svc.registry),
        "helius": svc.helius.enabled,
        "circuit_breakers": cb_statuses(),
    }


@app.get("/api/sol-price", tags=["market"])
async def sol_price(request: Request) -> dict:
    svc = _services(request)
    return {"price": svc.market.sol_price, "updated_at": svc.market.sol_price_updated_at}


# ------------------------------------------------------------------
# Webhook
# ------------------------------------------------------------------


@app.post("/webhook/helius", tags=["ingestion"])
async def helius_webhook(request: Request, background: BackgroundTasks) -> dict:
    """Acknowledge immediately; the batch is processed after the response."""
    svc = _services(request)
    try:
        payload = await request.json()
    except ValueError:
        logger.warning("Webhook: body is not valid JSON")
        return {"received": True}
    if not svc.helius.enabled:
        logger.debug("Webhook: Helius disabled, ignoring delivery")
        return {"received": True}
    background.add_task(svc.pipeline.handle_webhook, payload)
    return {"received": True}


# ------------------------------------------------------------------
# Scan triggers
# ------------------------------------------------------------------


@app.post("/api/backfill", tags=["ingestion"])
@limiter.limit(RATE_LIMIT_SCAN)
async def backfill(request: Request) -> dict:
    """Quick backfill: the latest 100 transactions of every KOL wallet."""
    svc = _services(request)
    _require_helius(svc)
    if not svc.pipeline.start_background_scan(backfill=True):
        raise _scan_busy(svc.pipeline.status())
    logger.info("Quick backfill triggered via API")
    return {"success": True, "message": "Quick backfill started"}


@app.post("/api/deep-backfill", tags=["ingestion"])
@limiter.limit(RATE_LIMIT_SCAN)
async def deep_backfill(
    request: Request,
    days: int = Query(7, description="Days of history to fetch (clamped to 1-30)"),
) -> dict:
    svc = _services(request)
    _require_helius(svc)
    days = clamp_days(days, maximum=DEEP_MAX_DAYS)
    if not svc.pipeline.start_deep_backfill(days):
        raise _scan_busy(svc.pipeline.status())
    logger.info("Deep backfill triggered: %d days", days)
    return {"success": True, "days": days, "message": f"Deep backfill started ({days} days)"}


@app.post("/api/reset-trades", tags=["ingestion"])
@limiter.limit(RATE_LIMIT_SCAN)
async def reset_trades(
    request: Request,
    days: int = Query(7, description="Days of history to re-fetch (clamped to 1-30)"),
) -> dict:
    """Wipe every stored trade and start a deep backfill."""
    svc = _services(request)
    _require_helius(svc)
    days = clamp_days(days, maximum=DEEP_MAX_DAYS)
    try:
        wiped = await svc.pipeline.reset_and_backfill(days)
    except Exception as exc:
        logger.exception("Trade reset failed")
        raise HTTPException(status_code=500, detail="Internal server error") from exc
    if wiped is None:
        raise _scan_busy(svc.pipeline.status())
    return {"success": True, "wiped": wiped, "days": days}


# ------------------------------------------------------------------
# Read endpoints
# ------------------------------------------------------------------


@app.get("/api/leaderboard", tags=["trades"])
async def get_leaderboard(
    request: Request,
    period: str = Query("daily", pattern="^(daily|weekly|monthly)$"),
) -> dict:
    svc = _services(request)
    try:
        entries: list[LeaderboardEntry] = await aggregations.leaderboard(
            svc.store, svc.registry, period, svc.market.sol_price
        )
        total_trades = await svc.store.count_trades()
        total_wallets = await svc.store.count_wallets()
    except Exception as exc:
        logger.exception("Leaderboard failed")
        raise HTTPException(status_code=500, detail="Internal server error") from exc
    status = svc.pipeline.status()
    return {
        "period": period,
        "sol_price": svc.market.sol_price,
        "leaderboard": entries,
        "meta": {
            "total_trades": total_trades,
            "total_kols": total_wallets,
            "scanner_phase": status.phase,
            "scan_progress": status.progress,
        },
    }


@app.get("/api/trades/feed", tags=["trades"])
async def trades_feed(
    request: Request,
    limit: int = Query(20, ge=1, le=200),
) -> dict:
    svc = _services(request)
    try:
        trades: list[FeedTrade] = await aggregations.recent_feed(
            svc.store, svc.registry, limit, svc.deny_list
        )
    except Exception as exc:
        logger.exception("Feed failed")
        raise HTTPException(status_code=500, detail="Internal server error") from exc
    return {"sol_price": svc.market.sol_price, "trades": trades}


@app.get("/api/trades/{wallet}", tags=["trades"])
async def wallet_trades(request: Request, wallet: str) -> dict:
    svc = _services(request)
    try:
        trades = await svc.store.trades_for_wallet(wallet, limit=200)
    except Exception as exc:
        logger.exception("Wallet trades failed for %s", wallet)
        raise HTTPException(status_code=500, detail="Internal server error") from exc
    kol = svc.registry.lookup(wallet)
    return {
        "wallet": wallet,
        "sol_price": svc.market.sol_price,
        "kol": (
            {"name": kol.name, "twitter": kol.twitter, "avatar": kol.avatar}
            if kol is not None
            else None
        ),
        "trades": [_trade_row(t) for t in trades],
    }


@app.get("/api/kol/{name}/sides", tags=["kols"])
async def kol_sides(request: Request, name: str) -> dict:
    svc = _services(request)
    kol = svc.registry.find_by_name(name)
    if kol is None:
        raise HTTPException(status_code=404, detail="KOL not found")
    try:
        sides, trades = await aggregations.kol_side_trades(svc.store, svc.registry, kol)
    except Exception as exc:
        logger.exception("Side wallet trades failed for %s", name)
        raise HTTPException(status_code=500, detail="Internal server error") from exc
    return {
        "kol_name": kol.name,
        "main_wallet": kol.wallet,
        "side_wallets": sides,
        "sol_price": svc.market.sol_price,
        "trades": [{**_trade_row(t), "is_side_wallet": True} for t in trades],
    }


@app.get("/api/kol/{name}/token-pnl", tags=["kols"])
async def kol_token_pnl(request: Request, name: str) -> dict:
    svc = _services(request)
    kol = svc.registry.find_by_name(name)
    if kol is None:
        raise HTTPException(status_code=404, detail="KOL not found")
    try:
        tokens: list[TokenPnl] = await aggregations.kol_token_pnl(
            svc.store, kol, svc.market.sol_price
        )
    except Exception as exc:
        logger.exception("Token PnL failed for %s", name)
        raise HTTPException(status_code=500, detail="Internal server error") from exc
    return {"kol_name": kol.name, "sol_price": svc.market.sol_price, "tokens": tokens}


@app.get("/api/tokens", tags=["trades"])
async def tokens(request: Request) -> dict:
    svc = _services(request)
    try:
        buckets = await aggregations.token_tracker(
            svc.store, svc.registry, svc.market, stale_seconds=MARKET_STALE_SECONDS
        )
    except Exception as exc:
        logger.exception("Token tracker failed")
        raise HTTPException(status_code=500, detail="Internal server error") from exc
    return {"sol_price": svc.market.sol_price, **buckets}


@app.get("/api/scanner/status", tags=["ingestion"])
async def scanner_status(request: Request) -> dict:
    svc = _services(request)
    status = svc.pipeline.status()
    try:
        total_trades = await svc.store.count_trades()
        total_wallets = await svc.store.count_wallets()
    except Exception as exc:
        logger.exception("Scanner status failed")
        raise HTTPException(status_code=500, detail="Internal server error") from exc
    return {
        **status.model_dump(),
        "total_trades": total_trades,
        "total_kols": total_wallets,
        "sol_price": svc.market.sol_price,
    }


@app.get("/api/debug/parse/{wallet}", tags=["system"])
@limiter.limit(RATE_LIMIT_DEBUG)
async def debug_parse(request: Request, wallet: str) -> dict:
    """Classify a wallet's 20 latest transactions without storing them."""
    svc = _services(request)
    _require_helius(svc)
    try:
        return await svc.pipeline.debug_parse(wallet, limit=20)
    except Exception as exc:
        logger.exception("Debug parse failed for %s", wallet)
        raise HTTPException(status_code=500, detail="Internal server error") from exc


# ------------------------------------------------------------------
# Community submissions
# ------------------------------------------------------------------


@app.post("/api/wallets", tags=["submissions"], status_code=201)
@limiter.limit(RATE_LIMIT_SUBMIT)
async def submit_wallet(request: Request, body: WalletSubmissionRequest) -> dict:
    """Submit a wallet for tracking; each address is accepted once."""
    svc = _services(request)
    address = (body.address or "").strip()
    if len(address) < MIN_SUBMITTED_ADDRESS_LENGTH:
        raise HTTPException(status_code=400, detail="Invalid address")
    try:
        created = await svc.store.submit_wallet(address, body.label, body.notes)
        wallet = await svc.store.get_submitted_wallet(address)
    except Exception as exc:
        logger.exception("Wallet submission failed")
        raise HTTPException(status_code=500, detail="Internal server error") from exc
    if not created:
        raise HTTPException(
            status_code=409,
            detail={
                "message": "Already submitted",
                "wallet": wallet.model_dump(mode="json") if wallet else None,
            },
        )
    logger.info("Wallet submitted: %s…", address[:8])
    return {"success": True, "wallet": wallet}


@app.get("/api/wallets", tags=["submissions"])
async def list_submitted_wallets(request: Request) -> list:
    svc = _services(request)
    try:
        return await svc.store.submitted_wallets()
    except Exception as exc:
        logger.exception("Listing submitted wallets failed")
        raise HTTPException(status_code=500, detail="Internal server error") from exc


@app.post("/api/submit-side-wallet", tags=["submissions"], status_code=201)
@limiter.limit(RATE_LIMIT_SUBMIT)
async def submit_side_wallet(request: Request, body: SideWalletSubmissionRequest) -> dict:
    """Queue a community-reported side wallet for manual review."""
    svc = _services(request)
    wallet = (body.wallet_address or "").strip()
    kol_name = (body.kol_name or "").strip()
    if len(wallet) < MIN_SUBMITTED_ADDRESS_LENGTH:
        raise HTTPException(status_code=400, detail="Invalid wallet address")
    if len(kol_name) < MIN_SUBMITTED_KOL_NAME_LENGTH:
        raise HTTPException(status_code=400, detail="KOL name is required")
    try:
        await svc.store.add_side_wallet_submission(
            kol_name,
            wallet,
            twitter=body.twitter,
            is_new_kol=body.is_new_kol,
            notes=body.notes,
        )
        total = await svc.store.count_side_wallet_submissions()
    except Exception as exc:
        logger.exception("Side wallet submission failed")
        raise HTTPException(status_code=500, detail="Failed to save submission") from exc
    logger.info("Side wallet submitted: %s -> %s… (total: %d)", kol_name, wallet[:8], total)
    return {"success": True, "total_submissions": total}


@app.get("/api/submissions", tags=["submissions"])
async def list_submissions(request: Request) -> dict:
    svc = _services(request)
    try:
        submissions = await svc.store.side_wallet_submissions(limit=100)
        total = await svc.store.count_side_wallet_submissions()
    except Exception as exc:
        logger.exception("Listing submissions failed")
        raise HTTPException(status_code=500, detail="Internal server error") from exc
    return {"submissions": submissions, "total": total}


# ------------------------------------------------------------------
# Run with: python -m kol_tracker.api
# ------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "kol_tracker.api:app",
        host=API_HOST,
        port=API_PORT,
        reload=False,
    )
