"""Command line entrypoint for the session sync engine."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path
from typing import Any

from aiohttp import ClientSession

from kat_mobile.cloudsync import BackgroundSyncScheduler, SyncEngine
from kat_mobile.const import DEFAULT_DB_FILENAME, DEFAULT_HTTP_TIMEOUT, DEFAULT_SYNC_INTERVAL, SYNC_COLLECTION
from kat_mobile.storage import LocalStore

_LOGGER = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Deliver queued KAT sessions to the remote store")
    parser.add_argument("--db", type=Path, default=Path(DEFAULT_DB_FILENAME), help="SQLite path of the local store")
    parser.add_argument("--server-url", help="Override the stored sync server URL")
    parser.add_argument("--token", help="Override the stored bearer token")
    parser.add_argument("--collection", default=SYNC_COLLECTION, help="Remote collection name")
    parser.add_argument("--timeout", type=float, default=DEFAULT_HTTP_TIMEOUT, help="HTTP timeout in seconds")
    parser.add_argument("--log-level", default="INFO", help="Logging level")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("status", help="Print sync status")
    sub.add_parser("sync", help="Sync all pending sessions once")
    sub.add_parser("reset-failed", help="Move failed queue items back to pending")
    sub.add_parser("test-connection", help="Check URL and token against the remote collection")
    run = sub.add_parser("run", help="Run the background scheduler until interrupted")
    run.add_argument("--interval", type=int, default=DEFAULT_SYNC_INTERVAL, help="Timer interval in seconds")
    return parser.parse_args(argv)


def _apply_overrides(store: LocalStore, args: argparse.Namespace) -> None:
    updates: dict[str, Any] = {}
    if args.server_url:
        updates["sync_server_url"] = args.server_url
    if args.token:
        updates["sync_token"] = args.token
    if updates:
        store.update_settings(updates)


def _print(payload: Any) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True))


async def main_async(args: argparse.Namespace) -> int:
    store = LocalStore(args.db)
    try:
        _apply_overrides(store, args)
        return await _dispatch(store, args)
    finally:
        store.close()


async def _dispatch(store: LocalStore, args: argparse.Namespace) -> int:
    async with ClientSession() as session:
        engine = SyncEngine(
            store,
            session=session,
            collection=args.collection,
            interval=getattr(args, "interval", DEFAULT_SYNC_INTERVAL),
            timeout=args.timeout,
        )
        if args.command == "status":
            _print(engine.status())
            return 0
        if args.command == "reset-failed":
            _print({"reset": engine.reset_failed()})
            return 0
        if args.command == "test-connection":
            result = await engine.async_test_connection()
            _print(result.to_dict())
            return 0 if result.success else 1
        if args.command == "sync":
            batch = await engine.async_sync_all()
            _print(batch.to_dict())
            return 0 if not batch.failed else 1

        scheduler = BackgroundSyncScheduler(engine, interval=args.interval)
        await scheduler.async_start()
        _LOGGER.info("Starting background sync loop")
        try:
            await scheduler.async_trigger("startup")
            await asyncio.Event().wait()
        finally:
            await scheduler.async_stop()
            await scheduler.async_wait_idle()
    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO))
    try:
        return asyncio.run(main_async(args))
    except KeyboardInterrupt:  # pragma: no cover - manual interruption
        _LOGGER.info("Sync agent stopped")
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
