"""
Parimutuel Engine - Command line entry point.

Usage:
    parimutuel-engine markets [--active | --resolved]
    parimutuel-engine market ADDRESS
    parimutuel-engine positions OWNER
    parimutuel-engine quote MARKET --side yes --amount 1000000
    parimutuel-engine create --title T --description D --bet-mint MINT --duration-days 7
    parimutuel-engine bet MARKET --bet-mint MINT --side no --amount 1000000
    parimutuel-engine settle MARKET --outcome yes
    parimutuel-engine redeem MARKET --amount 1000000
    parimutuel-engine redeem-all [--item MARKET:AMOUNT ...]

    python -m parimutuel_engine.main ...

Configuration is read from the environment (see parimutuel_engine.config),
optionally loaded from a .env file. Writes need KEYPAIR_PATH or --keypair.
Output is JSON on stdout; logs go to stderr.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, List, Optional

from solders.pubkey import Pubkey

from parimutuel_engine.config import EngineConfig, load_env_file, setup_logging
from parimutuel_engine.core.pool_accounting import Side
from parimutuel_engine.execution.redemption import RedemptionRequest
from parimutuel_engine.execution.service import MarketEngine
from parimutuel_engine.ledger.signer import KeypairSigner

logger = logging.getLogger(__name__)

WRITE_COMMANDS = {"create", "bet", "settle", "redeem", "redeem-all"}

SECONDS_PER_DAY = 24 * 60 * 60


def _pubkey(value: str) -> Pubkey:
    try:
        return Pubkey.from_string(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"Invalid address {value!r}: {e}") from e


def _side(value: str) -> Side:
    try:
        return Side(value.lower())
    except ValueError as e:
        raise argparse.ArgumentTypeError("Side must be 'yes' or 'no'") from e


def _redemption_item(value: str) -> RedemptionRequest:
    market, _, amount = value.rpartition(":")
    if not market or not amount.isdigit():
        raise argparse.ArgumentTypeError(f"Expected MARKET:AMOUNT, got {value!r}")
    return RedemptionRequest(_pubkey(market), int(amount))


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="parimutuel-engine",
        description="Pari-mutuel prediction market engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--keypair", help="Keypair file (overrides KEYPAIR_PATH)")
    parser.add_argument("--env-file", default=".env", help="Environment file to load")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override log level",
    )
    parser.add_argument("--debug", action="store_true", help="Include raw diagnostics in errors")

    sub = parser.add_subparsers(dest="command", required=True)

    markets = sub.add_parser("markets", help="List markets by volume")
    view = markets.add_mutually_exclusive_group()
    view.add_argument("--active", action="store_true", help="Only unresolved markets, including expired ones awaiting settlement")
    view.add_argument("--resolved", action="store_true", help="Only settled markets")

    market = sub.add_parser("market", help="Show one market")
    market.add_argument("address", type=_pubkey)

    positions = sub.add_parser("positions", help="Show an owner's positions")
    positions.add_argument("owner", type=_pubkey)

    quote = sub.add_parser("quote", help="Illustrative return estimate for a bet")
    quote.add_argument("market", type=_pubkey)
    quote.add_argument("--side", type=_side, required=True)
    quote.add_argument("--amount", type=int, required=True)

    create = sub.add_parser("create", help="Create a market")
    create.add_argument("--title", required=True)
    create.add_argument("--description", default="")
    create.add_argument("--bet-mint", type=_pubkey, required=True)
    expiry = create.add_mutually_exclusive_group(required=True)
    expiry.add_argument("--expiry", type=int, help="Expiry as unix seconds")
    expiry.add_argument("--duration-days", type=float, help="Expiry relative to now")

    bet = sub.add_parser("bet", help="Place a bet")
    bet.add_argument("market", type=_pubkey)
    bet.add_argument("--bet-mint", type=_pubkey, required=True)
    bet.add_argument("--side", type=_side, required=True)
    bet.add_argument("--amount", type=int, required=True)

    settle = sub.add_parser("settle", help="Settle a market you created")
    settle.add_argument("market", type=_pubkey)
    settle.add_argument("--outcome", type=_side, required=True)

    redeem = sub.add_parser("redeem", help="Redeem winning shares")
    redeem.add_argument("market", type=_pubkey)
    redeem.add_argument("--amount", type=int, required=True)

    redeem_all = sub.add_parser("redeem-all", help="Redeem several markets in order")
    redeem_all.add_argument(
        "--item",
        dest="items",
        action="append",
        type=_redemption_item,
        help="MARKET:AMOUNT (repeatable); default is every winning position held",
    )

    return parser.parse_args(argv)


def _dump(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


async def run_command(engine: MarketEngine, args: argparse.Namespace) -> int:
    """Execute one subcommand; returns the process exit code."""
    debug = engine.debug
    command = args.command

    if command == "markets":
        if args.active:
            views = await engine.fetch_active()
        elif args.resolved:
            views = await engine.fetch_resolved()
        else:
            views = await engine.fetch_all()
        _dump([v.model_dump(mode="json") for v in views])
        return 0

    if command == "market":
        view = await engine.fetch_one(args.address)
        if view is None:
            _dump({"error": f"Market {args.address} not found"})
            return 1
        _dump(view.model_dump(mode="json"))
        return 0

    if command == "positions":
        positions = await engine.fetch_positions(args.owner)
        _dump([p.model_dump(mode="json") for p in positions])
        return 0

    if command == "quote":
        quote = await engine.quote_bet(args.market, args.side, args.amount)
        if quote is None:
            _dump({"error": f"Market {args.market} not found"})
            return 1
        _dump({
            "side": quote.side.value,
            "amount": quote.amount,
            "share": str(quote.share),
            "estimated_return": quote.estimated_return,
            "implied_probability_after": str(quote.implied_probability_after),
            "note": "Estimate only; bets confirmed before yours change the payout.",
        })
        return 0

    if command == "create":
        expiry = args.expiry
        if expiry is None:
            expiry = engine.clock() + int(args.duration_days * SECONDS_PER_DAY)
        result = await engine.create_market(args.title, args.description, args.bet_mint, expiry)
    elif command == "bet":
        result = await engine.place_bet(args.market, args.bet_mint, args.amount, args.side)
    elif command == "settle":
        result = await engine.settle_market(args.market, args.outcome.as_bool)
    elif command == "redeem":
        result = await engine.redeem(args.market, args.amount)
    elif command == "redeem-all":
        items = args.items or await engine.redeemable(engine.signer.public_key)
        if not items:
            _dump({"succeeded": [], "failed": [], "skipped": False})
            return 0
        batch = await engine.redeem_all(items)
        _dump(batch.to_dict(debug))
        return 0 if not batch.failed else 1
    else:
        raise ValueError(f"Unknown command {command}")

    _dump(result.to_dict(debug))
    return 0 if result.success else 1


async def main_async(args: argparse.Namespace) -> int:
    """Async main function."""
    config = EngineConfig.from_env()
    if args.debug:
        config.debug = True

    signer = None
    if args.command in WRITE_COMMANDS:
        keypair_path = args.keypair or config.keypair_path
        if not keypair_path:
            logger.error("Writes need a keypair: set KEYPAIR_PATH or pass --keypair")
            return 1
        signer = KeypairSigner.from_file(keypair_path)

    async with MarketEngine.from_config(config, signer) as engine:
        try:
            return await run_command(engine, args)
        except Exception as e:
            logger.exception(f"Command {args.command} failed: {e}")
            return 1


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    setup_logging(args.log_level)
    load_env_file(args.env_file)

    try:
        return asyncio.run(main_async(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
