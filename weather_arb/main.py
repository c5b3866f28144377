"""
Command Line Entry Point

Subcommands:
- start: run the scanner daemon in the foreground (this process becomes owner)
- stop: signal the owning process to stop
- status: show the owner's last published status
- scan: run a single tick and print the readings
- cancel: cancel open CLOB orders for the wallet
"""

import argparse
import asyncio
import json
import sys
from dataclasses import replace
from typing import Optional

from .config import config, ScannerConfig, get_all_locations, get_location
from .monitoring import setup_logging, get_logger
from .polymarket import ClobClient, load_identity
from .scheduler import ScannerDaemon, DaemonAlreadyRunningError, stop_remote
from .scheduler_state import StatusStore
from .strategy.tick import StrategyTick

logger = get_logger("main")


def build_scanner_config(args: argparse.Namespace) -> ScannerConfig:
    """Apply command line overrides to the environment configuration."""
    overrides = {}
    if getattr(args, "locations", None):
        keys = [k.strip().lower() for k in args.locations.split(",") if k.strip()]
        for key in keys:
            get_location(key)
        overrides["locations"] = keys
    if getattr(args, "trade_amount", None) is not None:
        overrides["trade_amount_usdc"] = args.trade_amount
    if getattr(args, "max_position", None) is not None:
        overrides["max_position_usdc"] = args.max_position
    if getattr(args, "min_edge", None) is not None:
        overrides["min_edge"] = args.min_edge
    if getattr(args, "min_fair_value", None) is not None:
        overrides["min_fair_value"] = args.min_fair_value
    if getattr(args, "interval", None) is not None:
        overrides["interval_seconds"] = args.interval
    if getattr(args, "wallet", None):
        overrides["wallet_name"] = args.wallet
    if getattr(args, "live", False):
        overrides["dry_run"] = False
    elif getattr(args, "dry_run", False):
        overrides["dry_run"] = True
    return replace(config.scanner, **overrides)


def format_status(status: dict) -> str:
    """Human-readable scanner status."""
    lines = [
        "── Weather Arb Scanner ──────────────────",
        f"  Running:          {status.get('running')}",
        f"  Locations:        {', '.join(status.get('locations') or []) or 'not configured'}",
        f"  Last check:       {status.get('last_check_at') or 'never'}",
        f"  Dry run:          {status.get('dry_run')}",
        f"  Source:           {status.get('_source')}{' (stale)' if status.get('_stale') else ''}",
    ]
    for r in status.get("last_readings") or []:
        edge = f"{r['best_edge']:.1%}" if r.get("best_edge") is not None else "-"
        outcome = r.get("order_id") or r.get("skipped_reason") or "dry-run"
        lines.append(
            f"    {r.get('location'):<8} {r.get('forecast_high_f', 0):>5.1f}°F "
            f"σ={r.get('sigma_f', 0):.1f} {r.get('target_bracket') or '-':<16} edge {edge:<6} {outcome}"
        )
    return "\n".join(lines)


async def cmd_start(args: argparse.Namespace) -> int:
    scanner_config = build_scanner_config(args)
    tick = StrategyTick.from_config(scanner_config)
    daemon = ScannerDaemon(tick, scanner_config)
    try:
        await daemon.run_forever()
    except DaemonAlreadyRunningError as e:
        logger.error(str(e))
        return 1
    return 0


async def cmd_stop(args: argparse.Namespace) -> int:
    store = StatusStore(config.scanner.data_dir)
    pid = stop_remote(store)
    print(f"Stop signal sent to PID {pid}" if pid else "Scanner is not running")
    return 0


async def cmd_status(args: argparse.Namespace) -> int:
    scanner_config = build_scanner_config(args)
    daemon = ScannerDaemon(tick=None, scanner_config=scanner_config)
    status = daemon.status()
    print(json.dumps(status, indent=2, default=str) if args.json else format_status(status))
    return 0


async def cmd_scan(args: argparse.Namespace) -> int:
    scanner_config = build_scanner_config(args)
    tick = StrategyTick.from_config(scanner_config)
    try:
        readings = await tick.run()
    finally:
        await tick.close()
    print(json.dumps([r.to_dict() for r in readings], indent=2))
    return 0


async def cmd_cancel(args: argparse.Namespace) -> int:
    identity = load_identity(args.wallet or config.scanner.wallet_name)
    async with ClobClient(identity) as clob:
        cancelled = await clob.cancel_all(token_id=args.token_id)
    print(f"Cancelled {cancelled} orders")
    return 0


def _add_scanner_options(parser: argparse.ArgumentParser):
    parser.add_argument("--locations", type=str, default=None,
                        help=f"Comma-separated location keys ({', '.join(get_all_locations())})")
    parser.add_argument("--trade-amount", type=float, default=None,
                        help="USDC to spend per order")
    parser.add_argument("--max-position", type=float, default=None,
                        help="Maximum USDC per bracket")
    parser.add_argument("--min-edge", type=float, default=None,
                        help="Minimum fair value minus ask")
    parser.add_argument("--min-fair-value", type=float, default=None,
                        help="Minimum model probability")
    parser.add_argument("--interval", type=int, default=None,
                        help="Seconds between ticks")
    parser.add_argument("--wallet", type=str, default=None,
                        help="Wallet name for signing")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--dry-run", action="store_true",
                      help="Log decisions without placing orders")
    mode.add_argument("--live", action="store_true",
                      help="Place real orders")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Polymarket weather bracket arbitrage scanner")
    sub = parser.add_subparsers(dest="command", required=True)

    _add_scanner_options(sub.add_parser("start", help="Run the scanner daemon"))
    sub.add_parser("stop", help="Stop the running scanner")
    status = sub.add_parser("status", help="Show scanner status")
    status.add_argument("--json", action="store_true", help="Print raw status JSON")
    _add_scanner_options(sub.add_parser("scan", help="Run a single tick"))
    cancel = sub.add_parser("cancel", help="Cancel open orders")
    cancel.add_argument("--wallet", type=str, default=None)
    cancel.add_argument("--token-id", type=str, default=None,
                        help="Only cancel orders for this outcome token")

    return parser


COMMANDS = {
    "start": cmd_start,
    "stop": cmd_stop,
    "status": cmd_status,
    "scan": cmd_scan,
    "cancel": cmd_cancel,
}


def cli(argv: Optional[list] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    setup_logging()
    return asyncio.run(COMMANDS[args.command](args))


if __name__ == "__main__":
    sys.exit(cli())
