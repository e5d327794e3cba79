"""skintrader CLI entry point."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import signal
import sys
from typing import TYPE_CHECKING, Any

from skintrader.config.loader import ConfigError, ConfigLoader
from skintrader.core.logging import configure_logging, get_logger
from skintrader.errors import TradingError
from skintrader.models.inventory import PositionStatus
from skintrader.models.market import Tier

if TYPE_CHECKING:
    from skintrader.app import Application

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="skintrader",
        description="SkinBaron trading safety and decision engine",
    )
    parser.add_argument(
        "--config-dir",
        type=str,
        default="config",
        help="Config directory path (default: config)",
    )
    parser.add_argument(
        "--env",
        type=str,
        default=None,
        help="Environment name (default: from SKINTRADER_ENV)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    scan_buy = sub.add_parser("scan-buy", help="Evaluate whitelisted listings and buy")
    scan_buy.add_argument("--dry-run", action="store_true", help="Evaluate only, publish nothing")
    scan_buy.add_argument("--item", type=str, default=None, help="Scan a single item")
    scan_buy.add_argument(
        "--tier", type=int, choices=[t.value for t in Tier], default=None, help="Whitelist tier"
    )
    scan_buy.add_argument("--limit", type=int, default=None, help="Listings per search")

    scan_sell = sub.add_parser("scan-sell", help="List or re-price owned positions")
    scan_sell.add_argument("--dry-run", action="store_true", help="Evaluate only, publish nothing")
    scan_sell.add_argument(
        "--status",
        type=str,
        choices=[PositionStatus.HOLDING.value, PositionStatus.LISTED.value],
        default=None,
        help="Only positions in this status",
    )

    work = sub.add_parser("work", help="Run scans on an interval and drain the queue")
    work.add_argument("--concurrency", type=int, default=None, help="Worker count")
    work.add_argument(
        "--interval", type=float, default=300.0, help="Seconds between scan ticks (default: 300)"
    )

    refresh_stats = sub.add_parser("refresh-stats", help="Fetch sales history, recompute stats")
    refresh_stats.add_argument("--item", type=str, default=None, help="Refresh a single item")

    sub.add_parser("refresh-balance", help="Fetch the balance and store a snapshot")
    sub.add_parser("reconcile-sales", help="Mark listed positions sold from completed sales")
    return parser


def _print(payload: dict[str, Any]) -> None:
    print(json.dumps(payload, indent=2, default=str))


async def _scan_buy(app: Application, args: argparse.Namespace) -> int:
    await app.ledger.refresh_balance()
    limit = args.limit or int(app.config.get("buy.scan_limit", 50))
    tier = Tier(args.tier) if args.tier is not None else None
    summary = await app.buy_scanner.scan(
        item=args.item, tier=tier, limit=limit, dry_run=args.dry_run
    )
    if not args.dry_run and summary.published:
        await app.worker_pool().run(drain=True)
    _print(summary.as_dict())
    return 0


async def _scan_sell(app: Application, args: argparse.Namespace) -> int:
    status = PositionStatus(args.status) if args.status else None
    summary = await app.sell_scanner.scan(status=status, dry_run=args.dry_run)
    if not args.dry_run and summary.published:
        await app.worker_pool().run(drain=True)
    _print(summary.as_dict())
    return 0


async def _tick(app: Application) -> None:
    """One scheduled pass: balance, completed sales, sell side, buy side."""
    await app.ledger.refresh_balance()
    await app.reconciler.reconcile()
    await app.sell_scanner.scan()
    await app.buy_scanner.scan(limit=int(app.config.get("buy.scan_limit", 50)))


async def _work(app: Application, args: argparse.Namespace) -> int:
    pool = app.worker_pool(args.concurrency)
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, stop.set)

    pool.start()
    try:
        while not stop.is_set():
            try:
                await _tick(app)
            except TradingError as exc:
                logger.warning("tick_failed", error=str(exc), error_type=type(exc).__name__)
            try:
                await asyncio.wait_for(stop.wait(), timeout=args.interval)
            except TimeoutError:
                continue
    finally:
        await pool.stop()
    return 0


async def _refresh_stats(app: Application, args: argparse.Namespace) -> int:
    summary = await app.stats_refresher.refresh(item=args.item)
    _print(summary.as_dict())
    return 0


async def _refresh_balance(app: Application, args: argparse.Namespace) -> int:
    state = await app.ledger.refresh_balance()
    _print(state.model_dump(mode="json"))
    return 0


async def _reconcile_sales(app: Application, args: argparse.Namespace) -> int:
    count = await app.reconciler.reconcile()
    _print({"reconciled": count})
    return 0


COMMANDS = {
    "scan-buy": _scan_buy,
    "scan-sell": _scan_sell,
    "work": _work,
    "refresh-stats": _refresh_stats,
    "refresh-balance": _refresh_balance,
    "reconcile-sales": _reconcile_sales,
}


async def _run(args: argparse.Namespace) -> int:
    from skintrader.app import build_app

    app = build_app(ConfigLoader(args.config_dir, args.env))
    try:
        return await COMMANDS[args.command](app, args)
    finally:
        await app.close()


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.env)
    try:
        return asyncio.run(_run(args))
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2
    except TradingError as exc:
        logger.error("command_failed", command=args.command, error=str(exc))
        print(f"{args.command} failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
