#!/usr/bin/env python3
"""
Token Sniper CLI - run the bot, scan once, or validate a config file
"""

import argparse
import asyncio
import signal
import sys
from typing import List

from tokensniper.core.config import BotConfig, ConfigurationManager
from tokensniper.core.errors import SniperError
from tokensniper.core.logger import get_logger, setup_logging
from tokensniper.core.models import TokenScanResult
from tokensniper.session import SniperSession


logger = get_logger(__name__)


def load(config_path: str) -> BotConfig:
    config = ConfigurationManager(config_path).load_config()
    log_config = config.log_config
    setup_logging(level=log_config.level, format=log_config.format, output_file=log_config.output_file)
    return config


async def run_bot(config: BotConfig) -> None:
    """Initialize, start and run until SIGINT/SIGTERM"""
    session = SniperSession.from_config(config)
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops lack add_signal_handler; Ctrl+C still raises KeyboardInterrupt
            pass

    try:
        await session.init()
        await session.controller.start()
        logger.info(
            "bot_running",
            mode="PAPER" if config.trading_config.paper_mode else "LIVE",
            scan_interval_ms=session.controller.scanner_config.scan_interval_ms
        )
        await stop_event.wait()
        logger.info("shutdown_signal_received")
    finally:
        await session.teardown()


async def scan_once(config: BotConfig) -> List[TokenScanResult]:
    session = SniperSession.from_config(config)
    try:
        await session.init()
        await session.controller.trigger_manual_scan()
        return session.controller.scan_results
    finally:
        await session.teardown()


def print_results(results: List[TokenScanResult]) -> None:
    low = [r for r in results if not r.is_high_risk]
    high = [r for r in results if r.is_high_risk]

    for title, rows in (("LOW RISK", low), ("HIGH RISK", high)):
        print(f"\n{title} ({len(rows)})")
        print("-" * 78)
        print(f"{'Symbol':<12} {'Mint':<14} {'MCap $':>12} {'Liq $':>12} {'Rug':>5} {'Top%':>6} {'Social':>6}")
        for r in rows:
            print(
                f"{r.symbol[:12]:<12} {r.mint[:12] + '..':<14} {r.market_cap_usd:>12,.0f} "
                f"{r.liquidity_usd:>12,.0f} {r.rug_score:>5.0f} {r.top_holder_concentration:>6.1f} "
                f"{r.social_media_count:>6}"
            )


def config_check(config: BotConfig) -> None:
    scanner = config.scanner_config
    print("✅ Configuration valid")
    print(f"   Paper mode:        {config.trading_config.paper_mode}")
    print(f"   Scan interval:     {scanner.scan_interval_ms} ms (auto_scan={scanner.auto_scan})")
    print(f"   Min liquidity:     {scanner.min_liquidity_sol} SOL")
    print(f"   Max rug score:     {scanner.max_rug_score}")
    print(f"   Max top holder:    {scanner.max_top_holder_pct}%")
    print(f"   Only verified:     {scanner.only_verified}")
    print(f"   Moralis key set:   {bool(config.api_config.moralis_api_key)}")


def main(argv=None):
    """Main CLI entry point"""
    parser = argparse.ArgumentParser(description='Token Sniper - pump.fun token scanner and paper trader')
    parser.add_argument('--config', default='config/config.yml', help='Path to YAML config')
    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    subparsers.add_parser('run', help='Start the bot and scan until interrupted')
    subparsers.add_parser('scan', help='Run one scan and print the risk tables')
    subparsers.add_parser('config-check', help='Load and validate the config file')

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        config = load(args.config)

        if args.command == 'run':
            asyncio.run(run_bot(config))
        elif args.command == 'scan':
            print_results(asyncio.run(scan_once(config)))
        elif args.command == 'config-check':
            config_check(config)

    except KeyboardInterrupt:
        print("\nOperation cancelled")
        sys.exit(1)
    except (FileNotFoundError, ValueError, SniperError) as e:
        print(f"❌ Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
