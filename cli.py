#!/usr/bin/env python3
"""Simple CLI for exercising the wallet monitor locally"""

import argparse
import asyncio
from typing import List, Optional

from walletwatch.core.errors import WalletValidationError
from walletwatch.logging_config import setup_logging
from walletwatch.providers.solana import SolanaRpcClient
from walletwatch.services.monitoring import SignificantActivity, WalletMonitor
from walletwatch.services.wallets import WalletValidator


def print_activity(activity: SignificantActivity) -> None:
    """Pretty print one significant event"""
    event = activity.event
    verdict = activity.verdict
    print(f"\n🚨 Significant {event.kind.value} for {event.address}")
    print(f"   Value: {verdict.value:,.4f} SOL ({verdict.reason})")
    if event.slot is not None:
        print(f"   Slot: {event.slot}")
    if event.signature:
        print(f"   Signature: {event.signature}")


async def cli_validate(address: str):
    """Check whether an address would be accepted for monitoring"""
    client = SolanaRpcClient()
    validator = WalletValidator(client)
    try:
        await validator.check_wallet(address)
        print(f"✅ {address} is a valid wallet")
    except WalletValidationError as e:
        print(f"❌ {address} rejected: {e.reason}")
    finally:
        await client.close()


async def cli_holders(mint: str, limit: Optional[int] = None, watch: bool = False):
    """Seed the monitor from a token's holders"""
    print(f"🔍 Scanning holders of {mint}...")
    monitor = WalletMonitor(SolanaRpcClient(), holder_scan_limit=limit)
    try:
        holders = await monitor.discover_top_holders(mint)
        print(f"\nMonitoring {len(holders)} holder wallets:")
        for i, holder in enumerate(holders, 1):
            print(f"{i:3d}. {holder}")

        if watch and holders:
            await _watch_until_interrupted(monitor)
    finally:
        await monitor.close()


async def cli_watch(addresses: List[str]):
    """Watch wallets and print significant events until interrupted"""
    monitor = WalletMonitor(SolanaRpcClient())
    try:
        for address in addresses:
            if await monitor.add_wallet(address):
                print(f"👀 Watching {address}")
            else:
                print(f"⚠️  Skipped {address}")

        if not monitor.get_monitored_wallets():
            print("❌ No wallets to watch")
            return

        await _watch_until_interrupted(monitor)
    finally:
        await monitor.close()


async def _watch_until_interrupted(monitor: WalletMonitor):
    channel = monitor.event_bus.open_channel()
    await monitor.start()
    print("Press Ctrl+C to stop")
    try:
        async for activity in channel:
            print_activity(activity)
    except (KeyboardInterrupt, asyncio.CancelledError):
        print("\nGoodbye! 👋")
    finally:
        channel.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Wallet Watch CLI")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    subparsers = parser.add_subparsers(dest="command")

    validate_parser = subparsers.add_parser("validate", help="Check a wallet address")
    validate_parser.add_argument("address", help="Wallet address")

    holders_parser = subparsers.add_parser("holders", help="Monitor a token's top holders")
    holders_parser.add_argument("mint", help="Token mint address")
    holders_parser.add_argument("--limit", type=int, help="Holder accounts to consider (default: MIN_HOLDER_SCAN_COUNT)")
    holders_parser.add_argument("--watch", action="store_true", help="Keep watching the discovered holders")

    watch_parser = subparsers.add_parser("watch", help="Watch wallets for significant activity")
    watch_parser.add_argument("addresses", nargs="+", help="Wallet addresses")

    return parser


async def main():
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return

    setup_logging(args.log_level)
    command = args.command.lower()

    if command == "validate":
        await cli_validate(args.address)

    elif command == "holders":
        if args.limit is not None and args.limit <= 0:
            raise ValueError("Limit must be positive")
        await cli_holders(args.mint, args.limit, args.watch)

    elif command == "watch":
        await cli_watch(args.addresses)

    else:
        print(f"❌ Unknown command: {command}")
        parser.print_help()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
