"""
SQLite persistence for trades, the token cache and community submissions.

Tables:

* ``kol_trades``: append-only; the transaction signature is unique and
  duplicate inserts are silently ignored, so every ingestion path can
  replay transactions safely.
* ``token_cache``: name / symbol / image from the metadata source plus
  the latest market snapshot.  Metadata and market data are written by
  separate upserts that never clobber each other's fields.
* ``submitted_wallets`` and ``side_wallet_submissions``: community
  submissions kept for manual review.  A wallet address can be submitted
  once; side wallet submissions are not deduplicated.

Uses a persistent aiosqlite connection (created lazily, WAL journal).
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Sequence

import aiosqlite

from .constants import MIN_WALLET_LENGTH
from .models import (
    SideWalletSubmission,
    SubmittedWallet,
    TokenActivity,
    TokenCacheEntry,
    TokenMarketData,
    TokenMeta,
    Trade,
)
from .utils import chunked

logger = logging.getLogger(__name__)

# Stay well under SQLITE_MAX_VARIABLE_NUMBER
_IN_CHUNK = 500

_TRADE_COLUMNS = (
    "signature, tx_timestamp, wallet, kol_name, kol_avatar, action, "
    "token_symbol, token_mint, token_amount, amount_sol, scanned_at"
)


def _ts(value: Optional[float]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


def _row_to_trade(row: aiosqlite.Row) -> Trade:
    return Trade(
        signature=row["signature"],
        timestamp=row["tx_timestamp"] or 0,
        wallet=row["wallet"] or "",
        kol_name=row["kol_name"],
        kol_avatar=row["kol_avatar"],
        action=row["action"],
        token_symbol=row["token_symbol"] or "",
        token_mint=row["token_mint"] or "",
        token_amount=row["token_amount"] or 0.0,
        amount_sol=row["amount_sol"] or 0.0,
        scanned_at=_ts(row["scanned_at"]),
    )


def _row_to_cache_entry(row: aiosqlite.Row) -> TokenCacheEntry:
    return TokenCacheEntry(
        mint=row["mint"],
        name=row["name"] or "",
        symbol=row["symbol"] or "",
        image=row["image"] or "",
        market_cap=row["mcap"] or 0.0,
        price_usd=row["price_usd"] or 0.0,
        price_change_24h=row["price_change_24h"] or 0.0,
        cached_at=_ts(row["cached_at"]),
    )


def _row_to_submitted_wallet(row: aiosqlite.Row) -> SubmittedWallet:
    return SubmittedWallet(
        id=row["id"],
        address=row["address"],
        label=row["label"] or "",
        notes=row["notes"] or "",
        submitted_at=_ts(row["submitted_at"]),
    )


class TradeStore:
    """Async SQLite store.  Call ``close()`` at shutdown."""

    def __init__(self, db_path: str = "data/kol_trades.db") -> None:
        self._db_path = db_path
        self._conn: Optional[aiosqlite.Connection] = None
        self._initialised = False
        # Concurrent scan tasks may all hit the first query at once
        self._conn_lock = asyncio.Lock()

    async def _get_conn(self) -> aiosqlite.Connection:
        """Return (and lazily create) the persistent connection."""
        if self._conn is not None:
            return self._conn

        async with self._conn_lock:
            if self._conn is None:
                if self._db_path != ":memory:":
                    os.makedirs(os.path.dirname(self._db_path) or ".", exist_ok=True)
                conn = await aiosqlite.connect(self._db_path)
                conn.row_factory = aiosqlite.Row
                await conn.execute("PRAGMA journal_mode=WAL")
                await self._init_schema(conn)
                self._conn = conn
        return self._conn

    async def _init_schema(self, db: aiosqlite.Connection) -> None:
        if self._initialised:
            return
        await db.execute(
            """
            CREATE TABLE IF NOT EXISTS kol_trades (
                id           INTEGER PRIMARY KEY AUTOINCREMENT,
                signature    TEXT UNIQUE NOT NULL,
                tx_timestamp INTEGER NOT NULL,
                wallet       TEXT NOT NULL,
                kol_name     TEXT NOT NULL,
                kol_avatar   TEXT,
                action       TEXT NOT NULL,
                token_symbol TEXT,
                token_mint   TEXT,
                token_amount REAL DEFAULT 0,
                amount_sol   REAL DEFAULT 0,
                scanned_at   REAL NOT NULL
            )
            """
        )
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_trades_ts ON kol_trades(tx_timestamp)"
        )
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_trades_wallet ON kol_trades(wallet)"
        )
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_trades_kol ON kol_trades(kol_name)"
        )
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_trades_mint ON kol_trades(token_mint)"
        )
        await db.execute(
            """
            CREATE TABLE IF NOT EXISTS token_cache (
                mint             TEXT PRIMARY KEY,
                name             TEXT DEFAULT '',
                symbol           TEXT DEFAULT '',
                image            TEXT DEFAULT '',
                mcap             REAL DEFAULT 0,
                price_usd        REAL DEFAULT 0,
                price_change_24h REAL DEFAULT 0,
                cached_at        REAL NOT NULL
            )
            """
        )
        await db.execute(
            """
            CREATE TABLE IF NOT EXISTS submitted_wallets (
                id           INTEGER PRIMARY KEY AUTOINCREMENT,
                address      TEXT NOT NULL UNIQUE,
                label        TEXT DEFAULT '',
                notes        TEXT DEFAULT '',
                submitted_at REAL NOT NULL
            )
            """
        )
        await db.execute(
            """
            CREATE TABLE IF NOT EXISTS side_wallet_submissions (
                id             INTEGER PRIMARY KEY AUTOINCREMENT,
                kol_name       TEXT NOT NULL,
                twitter        TEXT DEFAULT '',
                wallet_address TEXT NOT NULL,
                is_new_kol     INTEGER DEFAULT 0,
                notes          TEXT DEFAULT '',
                status         TEXT DEFAULT 'pending',
                submitted_at   REAL NOT NULL
            )
            """
        )
        await db.commit()
        self._initialised = True

    async def close(self) -> None:
        if self._conn is not None:
            try:
                await self._conn.close()
            except Exception:
                logger.debug("Error closing trade store connection", exc_info=True)
            self._conn = None
            self._initialised = False

    async def _fetch(self, sql: str, params: Sequence[Any] = ()) -> list[aiosqlite.Row]:
        db = await self._get_conn()
        cursor = await db.execute(sql, params)
        return list(await cursor.fetchall())

    # ------------------------------------------------------------------
    # Trades (write side)
    # ------------------------------------------------------------------

    async def insert_trade(self, trade: Trade) -> bool:
        """Persist *trade*; return False if its signature is already stored.

        Any other database failure raises ``aiosqlite.Error``.
        """
        db = await self._get_conn()
        cursor = await db.execute(
            f"INSERT OR IGNORE INTO kol_trades ({_TRADE_COLUMNS}) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                trade.signature,
                trade.timestamp,
                trade.wallet,
                trade.kol_name,
                trade.kol_avatar,
                trade.action,
                trade.token_symbol,
                trade.token_mint,
                trade.token_amount,
                trade.amount_sol,
                time.time(),
            ),
        )
        await db.commit()
        return cursor.rowcount > 0

    async def count_trades(self) -> int:
        rows = await self._fetch("SELECT COUNT(*) AS n FROM kol_trades")
        return rows[0]["n"]

    async def count_wallets(self) -> int:
        """Distinct wallets with at least one stored trade."""
        rows = await self._fetch("SELECT COUNT(DISTINCT wallet) AS n FROM kol_trades")
        return rows[0]["n"]

    async def wipe_trades(self) -> int:
        """Delete every trade; returns the number of removed rows."""
        db = await self._get_conn()
        cursor = await db.execute("DELETE FROM kol_trades")
        await db.commit()
        removed = cursor.rowcount
        logger.warning("Wiped %d trades", removed)
        return removed

    # ------------------------------------------------------------------
    # Trades (read side)
    # ------------------------------------------------------------------

    async def trades_since(self, since: int) -> list[Trade]:
        rows = await self._fetch(
            f"SELECT {_TRADE_COLUMNS} FROM kol_trades WHERE tx_timestamp >= ? "
            "ORDER BY tx_timestamp DESC",
            (since,),
        )
        return [_row_to_trade(r) for r in rows]

    async def recent_trades(self, limit: int) -> list[Trade]:
        rows = await self._fetch(
            f"SELECT {_TRADE_COLUMNS} FROM kol_trades "
            "ORDER BY tx_timestamp DESC, id DESC LIMIT ?",
            (limit,),
        )
        return [_row_to_trade(r) for r in rows]

    async def trades_for_wallet(self, wallet: str, limit: int = 100) -> list[Trade]:
        rows = await self._fetch(
            f"SELECT {_TRADE_COLUMNS} FROM kol_trades WHERE wallet = ? "
            "ORDER BY tx_timestamp DESC LIMIT ?",
            (wallet, limit),
        )
        return [_row_to_trade(r) for r in rows]

    async def trades_for_kol(self, kol_name: str) -> list[Trade]:
        rows = await self._fetch(
            f"SELECT {_TRADE_COLUMNS} FROM kol_trades WHERE kol_name = ? "
            "ORDER BY tx_timestamp DESC",
            (kol_name,),
        )
        return [_row_to_trade(r) for r in rows]

    async def trades_for_mint(self, mint: str) -> list[Trade]:
        rows = await self._fetch(
            f"SELECT {_TRADE_COLUMNS} FROM kol_trades WHERE token_mint = ? "
            "ORDER BY tx_timestamp DESC",
            (mint,),
        )
        return [_row_to_trade(r) for r in rows]

    async def recent_token_activity(
        self, since: int, *, limit: int = 60, min_trades: int = 1
    ) -> list[TokenActivity]:
        """Most recently traded mints since *since*, newest first."""
        rows = await self._fetch(
            """
            SELECT token_mint,
                   MAX(token_symbol)          AS token_symbol,
                   COUNT(*)                   AS trade_count,
                   COUNT(DISTINCT wallet)     AS kol_count,
                   MAX(tx_timestamp)          AS last_trade
            FROM kol_trades
            WHERE tx_timestamp >= ? AND LENGTH(token_mint) > ?
            GROUP BY token_mint
            HAVING COUNT(*) >= ?
            ORDER BY last_trade DESC
            LIMIT ?
            """,
            (since, MIN_WALLET_LENGTH, min_trades, limit),
        )
        return [
            TokenActivity(
                token_mint=r["token_mint"],
                token_symbol=r["token_symbol"] or "",
                trade_count=r["trade_count"],
                kol_count=r["kol_count"],
                last_trade=r["last_trade"] or 0,
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Token cache
    # ------------------------------------------------------------------

    async def get_token_cache(self, mints: Iterable[str]) -> dict[str, TokenCacheEntry]:
        result: dict[str, TokenCacheEntry] = {}
        unique = list(dict.fromkeys(m for m in mints if m))
        for chunk in chunked(unique, _IN_CHUNK):
            placeholders = ",".join("?" * len(chunk))
            rows = await self._fetch(
                f"SELECT * FROM token_cache WHERE mint IN ({placeholders})", chunk
            )
            for r in rows:
                result[r["mint"]] = _row_to_cache_entry(r)
        return result

    async def get_token(self, mint: str) -> Optional[TokenCacheEntry]:
        return (await self.get_token_cache([mint])).get(mint)

    async def upsert_token_metadata(self, mint: str, meta: TokenMeta) -> None:
        """Store name / symbol / image; market fields are left untouched."""
        db = await self._get_conn()
        await db.execute(
            """
            INSERT INTO token_cache (mint, name, symbol, image, cached_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(mint) DO UPDATE SET
                name = excluded.name,
                symbol = excluded.symbol,
                image = excluded.image,
                cached_at = excluded.cached_at
            """,
            (mint, meta.name, meta.symbol, meta.image, time.time()),
        )
        await db.commit()

    async def upsert_token_market(self, data: TokenMarketData) -> None:
        """Store a market snapshot.

        Price fields always overwrite; name / symbol / image only when the
        incoming value is non-empty.
        """
        db = await self._get_conn()
        await db.execute(
            """
            INSERT INTO token_cache
                (mint, name, symbol, image, mcap, price_usd, price_change_24h, cached_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(mint) DO UPDATE SET
                name   = CASE WHEN excluded.name   != '' THEN excluded.name   ELSE token_cache.name   END,
                symbol = CASE WHEN excluded.symbol != '' THEN excluded.symbol ELSE token_cache.symbol END,
                image  = CASE WHEN excluded.image  != '' THEN excluded.image  ELSE token_cache.image  END,
                mcap = excluded.mcap,
                price_usd = excluded.price_usd,
                price_change_24h = excluded.price_change_24h,
                cached_at = excluded.cached_at
            """,
            (
                data.mint,
                data.name,
                data.symbol,
                data.image,
                data.market_cap,
                data.price_usd,
                data.price_change_24h,
                time.time(),
            ),
        )
        await db.commit()

    async def stale_mints(self, mints: Iterable[str], max_age_seconds: float) -> list[str]:
        """Mints with no market snapshot or one older than *max_age_seconds*."""
        requested = list(dict.fromkeys(m for m in mints if m))
        cached = await self.get_token_cache(requested)
        cutoff = time.time() - max_age_seconds
        stale: list[str] = []
        for mint in requested:
            entry = cached.get(mint)
            if (
                entry is None
                or not entry.price_usd
                or entry.cached_at is None
                or entry.cached_at.timestamp() < cutoff
            ):
                stale.append(mint)
        return stale

    # ------------------------------------------------------------------
    # Community submissions
    # ------------------------------------------------------------------

    async def submit_wallet(self, address: str, label: str = "", notes: str = "") -> bool:
        """Store a submitted wallet; False if the address is already known."""
        db = await self._get_conn()
        cursor = await db.execute(
            "INSERT OR IGNORE INTO submitted_wallets (address, label, notes, submitted_at) "
            "VALUES (?, ?, ?, ?)",
            (address, label, notes, time.time()),
        )
        await db.commit()
        return cursor.rowcount > 0

    async def get_submitted_wallet(self, address: str) -> Optional[SubmittedWallet]:
        rows = await self._fetch("SELECT * FROM submitted_wallets WHERE address = ?", (address,))
        if not rows:
            return None
        return _row_to_submitted_wallet(rows[0])

    async def submitted_wallets(self) -> list[SubmittedWallet]:
        rows = await self._fetch(
            "SELECT * FROM submitted_wallets ORDER BY submitted_at DESC, id DESC"
        )
        return [_row_to_submitted_wallet(r) for r in rows]

    async def add_side_wallet_submission(
        self,
        kol_name: str,
        wallet_address: str,
        *,
        twitter: str = "",
        is_new_kol: bool = False,
        notes: str = "",
    ) -> int:
        """Store a side wallet submission; returns its row id."""
        db = await self._get_conn()
        cursor = await db.execute(
            """
            INSERT INTO side_wallet_submissions
                (kol_name, twitter, wallet_address, is_new_kol, notes, submitted_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (kol_name, twitter, wallet_address, int(is_new_kol), notes, time.time()),
        )
        await db.commit()
        return cursor.lastrowid

    async def side_wallet_submissions(self, limit: int = 100) -> list[SideWalletSubmission]:
        rows = await self._fetch(
            "SELECT * FROM side_wallet_submissions "
            "ORDER BY submitted_at DESC, id DESC LIMIT ?",
            (limit,),
        )
        return [
            SideWalletSubmission(
                id=r["id"],
                kol_name=r["kol_name"],
                twitter=r["twitter"] or "",
                wallet_address=r["wallet_address"],
                is_new_kol=bool(r["is_new_kol"]),
                notes=r["notes"] or "",
                status=r["status"] or "pending",
                submitted_at=_ts(r["submitted_at"]),
            )
            for r in rows
        ]

    async def count_side_wallet_submissions(self) -> int:
        rows = await self._fetch("SELECT COUNT(*) AS n FROM side_wallet_submissions")
        return rows[0]["n"]
