#!/usr/bin/env python3
"""
Run the peg arbitrage bot.

MODES:
  1. Dry run (default): monitor and simulate, never submit
  2. Live: submit profitable attempts (REQUIRES SIGNER KEY)

Usage:
  # Dry run
  python run_bot.py --config configs/peg_arbitrage.example.yaml

  # Single price check and simulation, then exit
  python run_bot.py --config configs/peg_arbitrage.example.yaml --once

  # Live execution through the Flashbots relay
  export SEARCHER_PRIVATE_KEY="0x..."
  export FLASHBOTS_AUTH_KEY="0x..."
  python run_bot.py --config configs/peg_arbitrage.example.yaml --live

Environment Variables (names configurable in the YAML file):
  ETHEREUM_RPC_URL: JSON-RPC endpoint (if rpc_url is not set in the config)
  SEARCHER_PRIVATE_KEY: Transaction signer (required for --live)
  FLASHBOTS_AUTH_KEY: Relay reputation key (required for --live with flashbots)
"""

import argparse
import asyncio
import os
import sys

from eth_account import Account
from web3 import Web3

import logging_config
from peg_arbitrage.bot import ArbitrageBot
from peg_arbitrage.config_loader import load_config, require_execution_contracts, require_rpc_url
from peg_arbitrage.exceptions import ConfigurationError
from peg_arbitrage.metrics import BotMetrics
from peg_arbitrage.utils import get_logger
from peg_arbitrage.version import get_version

logger = get_logger(__name__)


def parse_args():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Peg Arbitrage Bot",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    parser.add_argument(
        "--config",
        type=str,
        required=True,
        help="Path to bot config YAML file",
    )
    parser.add_argument(
        "--env-file",
        type=str,
        default=None,
        help="Path to .env file (default: search from the working directory)",
    )

    mode_group = parser.add_mutually_exclusive_group()
    mode_group.add_argument(
        "--dry-run",
        action="store_true",
        help="Monitor and simulate only [DEFAULT]",
    )
    mode_group.add_argument(
        "--live",
        action="store_true",
        help="Submit profitable attempts (REQUIRES signer key)",
    )

    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single check and exit",
    )
    parser.add_argument(
        "--quiet",
        "-q",
        action="store_true",
        help="Only warnings and errors",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Verbose logging",
    )

    return parser.parse_args()


def _account_from_env(var_name: str):
    key = os.getenv(var_name)
    if not key:
        return None
    return Account.from_key(key)


async def run(args) -> int:
    config = load_config(args.config, env_file=args.env_file)
    rpc_url = require_rpc_url(config)

    web3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": 30}))
    if not web3.is_connected():
        logger.error(f"Cannot connect to RPC at {rpc_url}")
        return 1

    chain_id = web3.eth.chain_id
    if chain_id != config.chain_id:
        raise ConfigurationError(
            f"RPC chain id {chain_id} does not match configured chain_id {config.chain_id}"
        )

    account = None
    auth_account = None
    if args.live:
        require_execution_contracts(config)
        account = _account_from_env(config.private_key_env)
        if account is None:
            raise ConfigurationError(
                f"LIVE mode requires the {config.private_key_env} environment variable"
            )
        auth_account = _account_from_env(config.relay_auth_key_env)
        logger.info(f"Signer: {account.address}")

    metrics = BotMetrics()
    bot = await ArbitrageBot.create(
        config,
        web3,
        account=account,
        auth_account=auth_account,
        metrics=metrics,
        dry_run=not args.live,
    )

    logger.info(f"Peg arbitrage bot {get_version()} | mode: {'LIVE' if args.live else 'DRY RUN'}")
    if args.once:
        # An emitted opportunity is handled by the bot's callback
        await bot.monitor.check_once()
        logger.info(f"Stats: {bot.get_stats()}")
        return 0

    try:
        await bot.run()
    except asyncio.CancelledError:
        await bot.stop()
        raise
    return 0


def main():
    args = parse_args()
    if args.debug:
        logging_config.setup_debug()
    elif args.quiet:
        logging_config.setup_minimal()
    else:
        logging_config.setup()

    try:
        sys.exit(asyncio.run(run(args)))
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(2)
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
        sys.exit(0)


if __name__ == "__main__":
    main()
