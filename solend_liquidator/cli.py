"""Command-line interface for the Solend liquidator."""
from __future__ import annotations

import argparse
import asyncio
import dataclasses
import sys

from .config import load_config
from .logging_setup import configure_logging
from .services import Liquidator
from .wallet import load_keypair


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse CLI parser."""
    parser = argparse.ArgumentParser(
        prog="solend-liquidator",
        description="Liquidate unhealthy Solend obligations",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: config.yaml in project root)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report underwater obligations without submitting transactions",
    )

    sub = parser.add_subparsers(dest="command")

    liquidate_parser = sub.add_parser("liquidate", help="Continuous liquidation loop")
    liquidate_parser.add_argument(
        "--epochs",
        type=int,
        default=None,
        help="Stop after this many passes over all markets (default: run forever)",
    )

    sub.add_parser("scan", help="Single pass over all markets")

    return parser


async def _run(args: argparse.Namespace) -> None:
    """Execute the selected command."""
    configure_logging(args.log_level)
    config = load_config(args.config)
    if args.dry_run:
        config = dataclasses.replace(
            config,
            liquidator=dataclasses.replace(config.liquidator, dry_run=True),
        )

    liquidator = Liquidator(config, load_keypair(config.wallet))

    if args.command == "liquidate":
        await liquidator.run(args.epochs)
    elif args.command == "scan":
        await liquidator.run_epoch()
    else:
        build_parser().print_help()
        sys.exit(1)


def main() -> None:
    """Entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    asyncio.run(_run(args))
