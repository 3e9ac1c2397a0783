#!/usr/bin/env python3
"""Command-line helpers for inspecting Relay bridge routes"""

import argparse
import asyncio
import sys
import uuid
from decimal import Decimal
from typing import Optional

import httpx

from relaybridge.config import settings
from relaybridge.core.bridge.amounts import decimal_to_str, format_units, parse_amount
from relaybridge.core.bridge.chain_registry import ChainRegistry, get_registry
from relaybridge.core.bridge.errors import BridgeError
from relaybridge.core.bridge.fallback import build_fallback_url
from relaybridge.core.bridge.models import BridgePurpose, BridgeRoute
from relaybridge.core.bridge.quotes import QuoteService, build_intent, resolve_route
from relaybridge.core.bridge.settlement import SettlementPoller, SettlementResult
from relaybridge.logging_config import bind_session, clear_session, get_logger, setup_logging
from relaybridge.providers.relay import RelayProvider
from relaybridge.providers.rpc import RpcBalanceObserver, RpcError

logger = get_logger("relaybridge.cli")


def _route(registry: ChainRegistry, source: str, destination: str, token: str, purpose: str) -> BridgeRoute:
    return BridgeRoute(
        source_chain_id=registry.resolve(source).id,
        destination_chain_id=registry.resolve(destination).id,
        token=token.upper(),
        purpose=BridgePurpose(purpose),
    )


async def cli_quote(args: argparse.Namespace) -> int:
    """Fetch a deposit-address quote and print the breakdown."""
    registry = get_registry()
    route = _route(registry, args.source, args.destination, args.token, args.purpose)
    resolved = resolve_route(route, registry)
    amount = parse_amount(args.amount, resolved.token.decimals)
    intent = build_intent(resolved, amount, user=args.address, recipient=args.recipient)

    print(f"🔍 Quoting {decimal_to_str(amount)} {resolved.token.symbol} "
          f"{resolved.source_chain.name} → {resolved.destination_chain.name}...")

    quote = await QuoteService(RelayProvider()).fetch_quote(intent)

    print("=" * 50)
    print(f"Request ID:      {quote.request_id}")
    print(f"Deposit address: {quote.deposit_address}")
    print(f"You send:        {format_units(quote.source_amount, resolved.token.decimals)} {resolved.token.symbol}")
    print(f"You receive ≈    {format_units(quote.dest_amount_estimate, quote.dest_decimals)} "
          f"{resolved.destination_currency.symbol}")
    print(f"Fees:            ${quote.fee_total_usd:.2f}")
    if quote.time_estimate_seconds:
        print(f"ETA:             ~{quote.time_estimate_seconds:.0f}s")
    print(f"Expires at:      {quote.expires_at.isoformat()}")
    fallback = build_fallback_url(
        resolved.source_chain,
        resolved.destination_chain,
        resolved.token.address,
        quote.source_amount,
        intent.recipient,
        destination_currency=resolved.destination_currency.address,
    )
    print(f"\nManual fallback: {fallback}")
    return 0


async def cli_status(args: argparse.Namespace) -> int:
    """Poll a Relay request until it settles or the attempt cap is reached."""
    max_attempts = 1 if args.once else args.max_attempts
    poller = SettlementPoller(
        RelayProvider(),
        interval_seconds=0 if args.once else args.interval,
        max_attempts=max_attempts,
    )

    def _on_attempt(attempt: int, status: Optional[str]) -> None:
        print(f"  [{attempt}/{max_attempts}] {status or 'unreachable'}")

    print(f"⏳ Checking Relay request {args.request_id}...")
    outcome = await poller.poll(args.request_id, on_attempt=_on_attempt)

    if outcome.result == SettlementResult.COMPLETE:
        print("✅ Bridge complete!")
        if outcome.destination_tx_hash:
            print(f"Destination tx: {outcome.destination_tx_hash}")
        return 0
    if outcome.result == SettlementResult.FAILED:
        print(f"❌ Bridge {outcome.status} - funds will be refunded to the sender")
        return 1
    print("⚠️  Taking longer than expected... bridge may still complete")
    return 2


def cli_fallback_url(args: argparse.Namespace) -> int:
    registry = get_registry()
    route = _route(registry, args.source, args.destination, args.token, args.purpose)
    resolved = resolve_route(route, registry)
    amount = parse_amount(args.amount, resolved.token.decimals)
    intent = build_intent(resolved, amount, user=args.recipient, recipient=args.recipient)
    print(build_fallback_url(
        resolved.source_chain,
        resolved.destination_chain,
        resolved.token.address,
        intent.amount_base_units,
        intent.recipient,
        destination_currency=resolved.destination_currency.address,
    ))
    return 0


async def cli_chains(args: argparse.Namespace) -> int:
    registry = get_registry()
    if args.refresh:
        refreshed = await registry.refresh_from_relay(RelayProvider())
        if not refreshed:
            print("⚠️  Could not refresh from Relay; showing built-in chains")

    print(f"{'ID':>6}  {'Chain':<10} {'Native':<6} Tokens")
    print("-" * 50)
    for chain in registry.supported_chains():
        tokens = ", ".join(f"{t.symbol} {t.address}" for t in chain.tokens.values())
        print(f"{chain.id:>6}  {chain.name:<10} {chain.native_symbol:<6} {tokens}")
    return 0


async def cli_balance(args: argparse.Namespace) -> int:
    registry = get_registry()
    chain = registry.resolve(args.chain)
    token = chain.token(args.token)
    balance = await RpcBalanceObserver(registry).get_token_balance(chain.id, token.address, args.address)
    print(f"{Decimal(balance):,.6f} {token.symbol} on {chain.name}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Relay bridge CLI")
    parser.add_argument("--log-level", default=None, help=f"Log level (default: {settings.log_level})")
    subparsers = parser.add_subparsers(dest="command")

    def add_route_arguments(sub: argparse.ArgumentParser) -> None:
        sub.add_argument("amount", help="Amount in whole tokens, e.g. 25 or 10.5")
        sub.add_argument("--from", dest="source", default="base", help="Source chain (default: base)")
        sub.add_argument("--to", dest="destination", default="arbitrum", help="Destination chain (default: arbitrum)")
        sub.add_argument("--token", default=settings.default_token_symbol, help="Token symbol")
        sub.add_argument(
            "--purpose",
            default=BridgePurpose.BRIDGE.value,
            choices=[p.value for p in BridgePurpose],
            help="Route purpose",
        )

    quote_parser = subparsers.add_parser("quote", help="Fetch a Relay deposit quote")
    add_route_arguments(quote_parser)
    quote_parser.add_argument("--address", required=True, help="Sender (and refund) address")
    quote_parser.add_argument("--recipient", help="Destination address (default: sender)")

    status_parser = subparsers.add_parser("status", help="Track settlement of a Relay request")
    status_parser.add_argument("request_id", help="Relay request id")
    status_parser.add_argument("--once", action="store_true", help="Check a single time")
    status_parser.add_argument("--interval", type=float, default=settings.settlement_poll_interval_seconds)
    status_parser.add_argument("--max-attempts", type=int, default=settings.settlement_max_attempts)

    fallback_parser = subparsers.add_parser("fallback-url", help="Print a pre-filled Relay web link")
    add_route_arguments(fallback_parser)
    fallback_parser.add_argument("--recipient", required=True, help="Destination address")

    chains_parser = subparsers.add_parser("chains", help="List supported chains")
    chains_parser.add_argument("--refresh", action="store_true", help="Ask Relay which chains are enabled")

    balance_parser = subparsers.add_parser("balance", help="Read a token balance over RPC")
    balance_parser.add_argument("address", help="Owner address")
    balance_parser.add_argument("--chain", default="base", help="Chain (default: base)")
    balance_parser.add_argument("--token", default=settings.default_token_symbol, help="Token symbol")

    return parser


async def main() -> int:
    parser = build_parser()
    args = parser.parse_args()

    if getattr(args, "max_attempts", 1) <= 0:
        parser.error("--max-attempts must be positive")

    if not args.command:
        parser.print_help()
        return 0

    setup_logging(args.log_level)
    bind_session(uuid.uuid4().hex[:12], command=args.command)

    try:
        if args.command == "quote":
            return await cli_quote(args)
        elif args.command == "status":
            return await cli_status(args)
        elif args.command == "fallback-url":
            return cli_fallback_url(args)
        elif args.command == "chains":
            return await cli_chains(args)
        elif args.command == "balance":
            return await cli_balance(args)
        else:
            print(f"❌ Unknown command: {args.command}")
            parser.print_help()
            return 1
    except BridgeError as e:
        logger.warning("cli_command_failed", kind=e.kind.value, error=e.message)
        print(f"❌ {e.user_message}")
        print(f"   {e.message}")
        return 1
    except (httpx.HTTPError, RpcError) as e:
        logger.warning("cli_request_failed", error=str(e))
        print(f"❌ Request failed: {e}")
        return 1
    except ValueError as e:
        print(f"❌ {e}")
        return 1
    finally:
        clear_session()


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
