"""Command-line interface for the EVM portfolio tracker."""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from .config import load_config
from .exceptions import PortfolioTrackerError
from .logging_setup import configure_logging
from .services import Tracker

logger = logging.getLogger(__name__)


def _network_list(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


def build_parser() -> argparse.ArgumentParser:
    """Build the ``evm-portfolio`` argument parser."""
    parser = argparse.ArgumentParser(
        prog="evm-portfolio",
        description="Multi-network EVM wallet portfolio tracker",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="YAML config file (default: config.yaml next to the package)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Root log level (default: INFO)",
    )

    sub = parser.add_subparsers(dest="command")

    sub.add_parser("refresh", help="Refresh the token price cache once")

    report_parser = sub.add_parser("report", help="Portfolio report for all wallets")
    wallet_parser = sub.add_parser("wallet", help="Portfolio report for one wallet")
    wallet_parser.add_argument("address", help="Wallet address (0x...)")

    for p in (report_parser, wallet_parser):
        p.add_argument(
            "--networks",
            type=_network_list,
            default=None,
            help="Comma-separated network names, identifiers or chain ids (default: all)",
        )
        p.add_argument("--json", action="store_true", help="Print the report as JSON")

    monitor_parser = sub.add_parser("monitor", help="Continuous tracking loop")
    monitor_parser.add_argument(
        "interval",
        nargs="?",
        type=int,
        default=None,
        help="Report interval in minutes (default: price refresh interval)",
    )

    return parser


async def _run(args: argparse.Namespace) -> None:
    """Run one subcommand against a freshly wired Tracker."""
    configure_logging(args.log_level)
    config = load_config(args.config)
    tracker = Tracker(config)

    if args.command == "refresh":
        summary = await tracker.refresh_prices()
        print(
            f"Priced {summary.processed} tokens, {summary.missed} missed, "
            f"{summary.failed_batches} failed batches "
            f"({', '.join(summary.chains) or 'no chains'})"
        )
    elif args.command == "report":
        print(await tracker.report(networks=args.networks, as_json=args.json))
    elif args.command == "wallet":
        print(
            await tracker.wallet_report(
                args.address, networks=args.networks, as_json=args.json
            )
        )
    elif args.command == "monitor":
        await tracker.run_continuous(args.interval)
    else:
        build_parser().print_help()
        sys.exit(1)


def main(argv: list[str] | None = None) -> None:
    """Entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        asyncio.run(_run(args))
    except (PortfolioTrackerError, FileNotFoundError, ValueError) as e:
        # Bad input or config: report it without a traceback.
        logger.error("%s", e)
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
