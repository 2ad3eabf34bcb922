"""Integration tests for the FastAPI REST API.

These tests drive the app through httpx's ASGI transport with a real
SQLite store in a temp dir and mocked Helius / market clients, so they
don't require network access.  The lifespan is not run: each test
installs its own service container on ``app.state``.
"""

from __future__ import annotations

import time
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import ASGITransport, AsyncClient

from kol_tracker.api import Services, app, limiter
from kol_tracker.ingestion import IngestionPipeline
from kol_tracker.market_data import MarketDataService
from kol_tracker.models import TokenMeta
from kol_tracker.scan_state import CreditCounter, ScanState
from kol_tracker.trade_filter import DEFAULT_DENY_LIST

from conftest import MINT_PEPE, WALLET_A, WALLET_A_SIDE, WALLET_B, make_trade


def _mock_helius(enabled=True, txs=None):
    helius = MagicMock()
    helius.enabled = enabled
    helius.credits = CreditCounter()
    helius.get_transactions = AsyncMock(return_value=txs or [])
    helius.get_transaction_history = AsyncMock(return_value=[])
    helius.get_token_metadata = AsyncMock(return_value={MINT_PEPE: TokenMeta(name="Pepe", symbol="PEPE")})
    return helius


def _services(store, registry, helius):
    dex = MagicMock()
    dex.get_market_data = AsyncMock(return_value={})
    gecko = MagicMock()
    gecko.get_usd_price = AsyncMock(return_value=None)
    jupiter = MagicMock()
    jupiter.get_price = AsyncMock(return_value=None)
    market = MarketDataService(store, dex, gecko, jupiter, default_sol_price=100.0)
    pipeline = IngestionPipeline(
        store, helius, registry, market, ScanState(helius.credits), DEFAULT_DENY_LIST,
        group_delay=0, kol_delay=0,
    )
    return Services(store, registry, helius, market, pipeline, DEFAULT_DENY_LIST)


@pytest.fixture
def helius():
    return _mock_helius()


@pytest.fixture
async def services(store, registry, helius):
    svc = _services(store, registry, helius)
    app.state.services = svc
    limiter.enabled = False
    yield svc
    await svc.pipeline.wait_idle()
    limiter.enabled = True


@pytest.fixture
async def client(services):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ------------------------------------------------------------------
# System
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_health(client, store):
    await store.insert_trade(make_trade(signature="h"))
    resp = await client.get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert body["trades"] == 1
    assert body["kols"] == 3
    assert body["helius"] is True
    for name in ("helius", "dexscreener", "jupiter", "coingecko"):
        assert name in body["circuit_breakers"]
    assert "X-Request-ID" in resp.headers


@pytest.mark.asyncio
async def test_sol_price(client):
    resp = await client.get("/api/sol-price")
    assert resp.json() == {"price": 100.0, "updated_at": None}


# ------------------------------------------------------------------
# Webhook
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_webhook_stores_trades(client, store, swap_event_tx):
    resp = await client.post("/webhook/helius", json=[swap_event_tx])
    assert resp.status_code == 200
    assert resp.json() == {"received": True}
    # the batch runs as a background task once the response is sent
    assert await store.count_trades() == 1


@pytest.mark.asyncio
async def test_webhook_ignored_when_helius_disabled(client, services, store, swap_event_tx):
    services.helius.enabled = False
    resp = await client.post("/webhook/helius", json=[swap_event_tx])
    assert resp.json() == {"received": True}
    assert await store.count_trades() == 0


@pytest.mark.asyncio
async def test_webhook_bad_json_is_acknowledged(client):
    resp = await client.post(
        "/webhook/helius", content=b"not json", headers={"Content-Type": "application/json"}
    )
    assert resp.status_code == 200
    assert resp.json() == {"received": True}


# ------------------------------------------------------------------
# Scan triggers
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_backfill_starts_scan(client, services):
    resp = await client.post("/api/backfill")
    assert resp.status_code == 200
    assert resp.json()["success"] is True
    await services.pipeline.wait_idle()
    assert services.pipeline.status().phase == "done"
    services.helius.get_transactions.assert_awaited()


@pytest.mark.asyncio
async def test_backfill_requires_helius(client, services):
    services.helius.enabled = False
    resp = await client.post("/api/backfill")
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_deep_backfill_conflict_while_scanning(client, services):
    assert services.pipeline.scan_state.try_begin(3)
    resp = await client.post("/api/deep-backfill", params={"days": 7})
    assert resp.status_code == 409
    assert "0/3" in resp.json()["detail"]
    services.helius.get_transaction_history.assert_not_awaited()
    services.pipeline.scan_state.finish()


@pytest.mark.asyncio
@pytest.mark.parametrize("days,expected", [(99, 30), (0, 7), (3, 3)])
async def test_deep_backfill_days_clamped(client, services, days, expected):
    resp = await client.post("/api/deep-backfill", params={"days": days})
    assert resp.status_code == 200
    assert resp.json()["days"] == expected


@pytest.mark.asyncio
async def test_reset_trades(client, services, store):
    for i in range(2):
        await store.insert_trade(make_trade(signature=f"r{i}"))
    resp = await client.post("/api/reset-trades", params={"days": 1})
    assert resp.status_code == 200
    assert resp.json() == {"success": True, "wiped": 2, "days": 1}
    await services.pipeline.wait_idle()
    assert await store.count_trades() == 0


@pytest.mark.asyncio
async def test_reset_trades_conflict_keeps_rows(client, services, store):
    await store.insert_trade(make_trade(signature="keep"))
    services.pipeline.scan_state.try_begin(1)
    resp = await client.post("/api/reset-trades")
    assert resp.status_code == 409
    assert await store.count_trades() == 1
    services.pipeline.scan_state.finish()


# ------------------------------------------------------------------
# Read endpoints
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_leaderboard(client, store):
    now = int(time.time())
    await store.insert_trade(make_trade(signature="b", action="Buy", amount_sol=1.0, timestamp=now - 60))
    await store.insert_trade(make_trade(signature="s", action="Sell", amount_sol=2.0, timestamp=now - 30))
    resp = await client.get("/api/leaderboard", params={"period": "weekly"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["period"] == "weekly"
    first = body["leaderboard"][0]
    assert first["name"] == "Alice"
    assert first["pnl"] == 1.0
    assert first["pnl_usd"] == 100.0
    assert first["rank"] == 1
    assert len(body["leaderboard"]) == 3
    assert body["meta"]["total_trades"] == 2
    assert body["meta"]["total_kols"] == 1
    assert body["meta"]["scanner_phase"] == "idle"


@pytest.mark.asyncio
async def test_leaderboard_invalid_period(client):
    resp = await client.get("/api/leaderboard", params={"period": "yearly"})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_feed(client, store):
    for i in range(5):
        await store.insert_trade(make_trade(signature=f"a{i}", timestamp=100 + i))
    await store.insert_trade(make_trade(signature="b0", wallet=WALLET_B, kol_name="Bob", timestamp=50))
    resp = await client.get("/api/trades/feed", params={"limit": 3})
    assert resp.status_code == 200
    trades = resp.json()["trades"]
    assert [t["signature"] for t in trades] == ["a4", "a3", "b0"]
    assert trades[0]["is_side_wallet"] is False


@pytest.mark.asyncio
@pytest.mark.parametrize("limit", [0, 201])
async def test_feed_limit_bounds(client, limit):
    resp = await client.get("/api/trades/feed", params={"limit": limit})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_wallet_trades(client, store):
    await store.insert_trade(make_trade(signature="w1"))
    resp = await client.get(f"/api/trades/{WALLET_A}")
    body = resp.json()
    assert body["kol"]["name"] == "Alice"
    assert body["trades"][0]["signature"] == "w1"
    assert "scanned_at" not in body["trades"][0]


@pytest.mark.asyncio
async def test_wallet_trades_untracked(client):
    resp = await client.get("/api/trades/UntrackedWallet11111111111111111111111111111")
    body = resp.json()
    assert body["kol"] is None
    assert body["trades"] == []


@pytest.mark.asyncio
async def test_kol_sides(client, store):
    await store.insert_trade(make_trade(signature="main", wallet=WALLET_A))
    await store.insert_trade(make_trade(signature="side", wallet=WALLET_A_SIDE))
    resp = await client.get("/api/kol/alice/sides")
    assert resp.status_code == 200
    body = resp.json()
    assert body["kol_name"] == "Alice"
    assert body["side_wallets"] == [WALLET_A_SIDE]
    assert [t["signature"] for t in body["trades"]] == ["side"]
    assert body["trades"][0]["is_side_wallet"] is True


@pytest.mark.asyncio
async def test_kol_unknown(client):
    assert (await client.get("/api/kol/nobody/sides")).status_code == 404
    assert (await client.get("/api/kol/nobody/token-pnl")).status_code == 404


@pytest.mark.asyncio
async def test_kol_token_pnl(client, store):
    await store.insert_trade(make_trade(signature="1", action="Buy", amount_sol=1.0))
    await store.insert_trade(make_trade(signature="2", action="Sell", amount_sol=1.5))
    resp = await client.get("/api/kol/Alice/token-pnl")
    tokens = resp.json()["tokens"]
    assert tokens[0]["token_symbol"] == "PEPE"
    assert tokens[0]["realized_pnl"] == 0.5


@pytest.mark.asyncio
async def test_tokens(client, store):
    now = int(time.time())
    await store.insert_trade(make_trade(signature="t1", timestamp=now - 30))
    await store.insert_trade(make_trade(signature="t2", wallet=WALLET_B, kol_name="Bob", timestamp=now - 20))
    resp = await client.get("/api/tokens")
    assert resp.status_code == 200
    body = resp.json()
    assert set(body) == {"sol_price", "low_caps", "mid_caps", "high_caps"}
    assert body["low_caps"][0]["mint"] == MINT_PEPE
    assert body["low_caps"][0]["kol_count"] == 2


@pytest.mark.asyncio
async def test_scanner_status(client, services):
    services.helius.credits.add(300)
    resp = await client.get("/api/scanner/status")
    body = resp.json()
    assert body["phase"] == "idle"
    assert body["progress"] == "idle"
    assert body["credits_used"] == 300
    assert body["total_trades"] == 0


@pytest.mark.asyncio
async def test_debug_parse(client, services, swap_event_tx):
    services.helius.get_transactions.return_value = [swap_event_tx]
    resp = await client.get(f"/api/debug/parse/{WALLET_A}")
    assert resp.status_code == 200
    body = resp.json()
    assert body["kol"] == "Alice"
    assert body["parsed"] == 1
    assert body["transactions"][0]["parsed"]["action"] == "Buy"


@pytest.mark.asyncio
async def test_debug_parse_requires_helius(client, services):
    services.helius.enabled = False
    assert (await client.get(f"/api/debug/parse/{WALLET_A}")).status_code == 400


class TestSubmissions:

    @pytest.mark.asyncio
    async def test_submit_wallet(self, client):
        resp = await client.post("/api/wallets", json={"address": WALLET_B, "label": "whale"})
        assert resp.status_code == 201
        body = resp.json()
        assert body["success"] is True
        assert body["wallet"]["address"] == WALLET_B
        assert body["wallet"]["label"] == "whale"

        dup = await client.post("/api/wallets", json={"address": f"  {WALLET_B} "})
        assert dup.status_code == 409
        detail = dup.json()["detail"]
        assert detail["message"] == "Already submitted"
        assert detail["wallet"]["label"] == "whale"

        listed = (await client.get("/api/wallets")).json()
        assert [w["address"] for w in listed] == [WALLET_B]

    @pytest.mark.asyncio
    async def test_submit_wallet_rejects_bad_address(self, client, store):
        assert (await client.post("/api/wallets", json={"address": "short"})).status_code == 400
        assert (await client.post("/api/wallets", json={"label": "x"})).status_code == 400
        assert await store.submitted_wallets() == []

    @pytest.mark.asyncio
    async def test_submit_side_wallet(self, client):
        payload = {
            "kolName": "Alice",
            "twitter": "alice_sol",
            "walletAddress": WALLET_A_SIDE,
            "isNewKol": False,
        }
        first = await client.post("/api/submit-side-wallet", json=payload)
        assert first.status_code == 201
        assert first.json() == {"success": True, "total_submissions": 1}
        second = await client.post("/api/submit-side-wallet", json={**payload, "notes": "again"})
        assert second.json()["total_submissions"] == 2

        body = (await client.get("/api/submissions")).json()
        assert body["total"] == 2
        assert [s["notes"] for s in body["submissions"]] == ["again", ""]
        assert body["submissions"][1]["kol_name"] == "Alice"
        assert body["submissions"][1]["status"] == "pending"

    @pytest.mark.asyncio
    async def test_submit_side_wallet_validation(self, client):
        short = await client.post("/api/submit-side-wallet", json={"kolName": "Alice", "walletAddress": "abc"})
        assert short.status_code == 400
        assert short.json()["detail"] == "Invalid wallet address"
        nameless = await client.post("/api/submit-side-wallet", json={"kolName": " A ", "walletAddress": WALLET_B})
        assert nameless.status_code == 400
        assert nameless.json()["detail"] == "KOL name is required"
        assert (await client.get("/api/submissions")).json() == {"submissions": [], "total": 0}
