"""
Command line interface for the KOL Trade Tracker.

Usage::

    python src/main.py serve
    python src/main.py webhook create [--url URL]
    python src/main.py webhook list
    python src/main.py webhook delete <WEBHOOK_ID>
    python src/main.py parse <WALLET> [--limit 20] [--json]
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import os

# Ensure ``src/`` is on the import path
sys.path.insert(0, os.path.dirname(__file__))

from config import (
    API_HOST,
    API_PORT,
    DATABASE_PATH,
    KOL_DATA_PATH,
    WEBHOOK_ID,
    WEBHOOK_URL,
)
from kol_tracker.data_sources._clients import close_clients, get_helius_client
from kol_tracker.ingestion import IngestionPipeline
from kol_tracker.kol_registry import KolRegistry
from kol_tracker.logging_config import setup_logging
from kol_tracker.store import TradeStore
from kol_tracker.trade_filter import DenyList

logger = logging.getLogger(__name__)


def _registry() -> KolRegistry:
    return KolRegistry.from_file(KOL_DATA_PATH)


def _all_wallets(registry: KolRegistry) -> list[str]:
    wallets: list[str] = []
    for kol in registry:
        wallets.extend(registry.wallets_of(kol))
    return wallets


async def _webhook_create(url: str) -> int:
    helius = get_helius_client()
    if not helius.enabled:
        print("Helius is disabled: set HELIUS_ENABLED=true and HELIUS_API_KEY")
        return 1
    if not url:
        print("No webhook URL: pass --url or set WEBHOOK_URL")
        return 1
    wallets = _all_wallets(_registry())
    result = await helius.create_webhook(url, wallets)
    if result is None:
        print("Webhook creation failed (see log)")
        return 1
    print(f"Webhook created for {len(wallets)} wallets")
    print(f"  id : {result.get('webhookID', '?')}")
    print(f"  url: {url}")
    print("Set WEBHOOK_ID to this id to manage it later.")
    return 0


async def _webhook_list() -> int:
    hooks = await get_helius_client().list_webhooks()
    if not hooks:
        print("No webhooks registered.")
        return 0
    for hook in hooks:
        addresses = hook.get("accountAddresses") or []
        print(f"{hook.get('webhookID', '?')}  {hook.get('webhookURL', '')}  ({len(addresses)} wallets)")
    return 0


async def _webhook_delete(webhook_id: str) -> int:
    if not webhook_id:
        print("No webhook id: pass one or set WEBHOOK_ID")
        return 1
    ok = await get_helius_client().delete_webhook(webhook_id)
    print("Deleted." if ok else "Delete failed (see log)")
    return 0 if ok else 1


async def _parse(wallet: str, limit: int, as_json: bool) -> int:
    store = TradeStore(DATABASE_PATH)
    pipeline = IngestionPipeline(
        store, get_helius_client(), _registry(), deny_list=DenyList.from_config()
    )
    try:
        report = await pipeline.debug_parse(wallet, limit=limit)
    finally:
        await store.close()

    if as_json:
        print(json.dumps(report, indent=2))
        return 0

    print("=" * 60)
    print(f"  Wallet  : {report['wallet']}")
    print(f"  KOL     : {report['kol'] or 'untracked'}")
    print(f"  Parsed  : {report['parsed']}/{report['total']}  valid={report['valid']}")
    print("-" * 60)
    for row in report["transactions"]:
        parsed = row["parsed"]
        verdict = (
            f"{parsed['action']:4s} {parsed['symbol']:12s} {parsed['sol']:>10.4f} SOL"
            if parsed
            else "skipped"
        )
        flag = "ok" if row["valid"] else "--"
        print(f"  {row['signature']:12s} {row['type']:20s} {flag}  {verdict}")
    print("=" * 60)
    return 0


async def _run(args: argparse.Namespace) -> int:
    try:
        if args.command == "webhook":
            if args.action == "create":
                return await _webhook_create(args.url or WEBHOOK_URL)
            if args.action == "list":
                return await _webhook_list()
            return await _webhook_delete(args.webhook_id or WEBHOOK_ID)
        return await _parse(args.wallet, args.limit, args.as_json)
    finally:
        await close_clients()


def main() -> None:
    """Entry point for the CLI."""
    parser = argparse.ArgumentParser(description="KOL memecoin trade tracker")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default=API_HOST)
    serve.add_argument("--port", type=int, default=API_PORT)

    webhook = sub.add_parser("webhook", help="Manage the Helius webhook")
    webhook_sub = webhook.add_subparsers(dest="action", required=True)
    create = webhook_sub.add_parser("create", help="Register the SWAP webhook for every KOL wallet")
    create.add_argument("--url", default="", help="Public URL of /webhook/helius")
    webhook_sub.add_parser("list", help="List registered webhooks")
    delete = webhook_sub.add_parser("delete", help="Delete a webhook")
    delete.add_argument("webhook_id", nargs="?", default="")

    parse = sub.add_parser("parse", help="Show how a wallet's latest transactions classify")
    parse.add_argument("wallet", help="Wallet address")
    parse.add_argument("--limit", type=int, default=20)
    parse.add_argument(
        "--json",
        action="store_true",
        dest="as_json",
        help="Output result as raw JSON",
    )

    args = parser.parse_args()
    setup_logging()

    if args.command == "serve":
        import uvicorn

        uvicorn.run("kol_tracker.api:app", host=args.host, port=args.port)
        return

    sys.exit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()
