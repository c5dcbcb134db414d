"""Command-line interface for leverage reads, previews and unsigned plans."""
from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import sys
from typing import Any

from .config import load_config
from .logging_setup import configure_logging
from .services import LeverageSession


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse CLI parser."""
    parser = argparse.ArgumentParser(
        prog="leverage-kit",
        description="Leveraged lending positions on Sui money markets",
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
        "--protocol",
        default=None,
        help="Lending protocol (default: first configured)",
    )
    parser.add_argument(
        "--address",
        default=None,
        help="Account address (default: wallet.address from config)",
    )

    sub = parser.add_subparsers(dest="command")

    sub.add_parser("markets", help="Market assets of every configured protocol")
    sub.add_parser("portfolio", help="Account portfolio on every configured protocol")

    limits = sub.add_parser("limits", help="Borrow, withdraw and leverage limits for an asset")
    limits.add_argument("asset", help="Asset symbol or coin type")

    for name, help_text in (
        ("preview", "Preview a leveraged position"),
        ("build-leverage", "Print an unsigned leverage plan"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("asset", help="Asset symbol or coin type")
        cmd.add_argument("amount", help="Deposit amount in human units, e.g. 0.5")
        cmd.add_argument("multiplier", type=float, help="Target leverage, e.g. 2.0")

    sub.add_parser("build-deleverage", help="Print an unsigned deleverage plan")

    return parser


def _to_jsonable(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, list):
        return [_to_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {k: _to_jsonable(v) for k, v in value.items()}
    return value


def _print_json(value: Any) -> None:
    print(json.dumps(_to_jsonable(value), indent=2, default=str))


async def _run(args: argparse.Namespace) -> None:
    """Execute the selected command."""
    configure_logging(args.log_level)
    config = load_config(args.config)
    address = args.address or config.wallet.address
    if not address:
        raise SystemExit("No account address: set wallet.address or pass --address")

    session = LeverageSession(config)
    await session.initialize(None, address)

    if args.command == "markets":
        _print_json(await session.get_aggregated_markets())
    elif args.command == "portfolio":
        _print_json(await session.get_aggregated_portfolio())
    elif args.command == "limits":
        _print_json(
            {
                "max_borrowable": await session.get_max_borrowable(args.asset, args.protocol),
                "max_withdrawable": await session.get_max_withdrawable(args.asset, args.protocol),
                "leverage": await session.get_leverage_limits(args.asset, args.protocol),
            }
        )
    elif args.command == "preview":
        _print_json(
            await session.preview_leverage(
                args.asset, args.amount, args.multiplier, args.protocol
            )
        )
    elif args.command == "build-leverage":
        plan = await session.build_leverage_transaction(
            args.asset, args.amount, args.multiplier, args.protocol
        )
        _print_json(plan.to_dict())
    elif args.command == "build-deleverage":
        plan = await session.build_deleverage_transaction(args.protocol)
        _print_json(plan.to_dict())
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
