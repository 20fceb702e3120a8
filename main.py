#!/usr/bin/env python3
"""Entry point for the Optimism bridge command-line tool.

This module wires the bridge facade and the faucet to a small argparse
interface. All settings come from the environment, only the operation and
its arguments are given on the command line.
"""

import argparse
import asyncio
import logging
import os
import sys
from decimal import Decimal, InvalidOperation
from typing import Any

# Configure logging before any other imports create loggers
def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the application.

    Args:
        level: Logging level as string (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    log_level: int = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

# Get logger for this module
logger = logging.getLogger(__name__)

from web3 import Web3

from optimism_bridge.bridge import OptimismBridge
from optimism_bridge.config import BridgeConfig, FaucetConfig
from optimism_bridge.exceptions import BridgeConfigurationError, BridgeError
from optimism_bridge.faucet import Faucet
from optimism_bridge.models import MessageDirection


def ether(value: str) -> int:
    """argparse type: an ether amount converted to wei."""
    try:
        return Web3.to_wei(Decimal(value), 'ether')
    except (InvalidOperation, ValueError):
        raise argparse.ArgumentTypeError(f"invalid ether amount: {value!r}") from None


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with one sub-command per bridge operation."""
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="Optimism Bridge - move assets between L1 and an Optimism L2",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""Environment Variables:
  L1_RPC_URL, L2_RPC_URL        - HTTP(S) RPC endpoints
  L1_CHAIN_ID, L2_CHAIN_ID      - Expected chain IDs (optional)
  ADDRESS_MANAGER               - L1 AddressManager
  L1_CROSS_DOMAIN_MESSENGER     - L1CrossDomainMessenger proxy
  L1_STANDARD_BRIDGE            - L1StandardBridge proxy
  OPTIMISM_PORTAL               - OptimismPortal proxy
  L2_OUTPUT_ORACLE              - L2OutputOracle proxy
  L1_PRIVATE_KEY, L2_PRIVATE_KEY - Signing keys
  FAUCET_PRIVATE_KEY            - Faucet key (faucet command only)
  RELAY_TIMEOUT                 - Relay wait bound in seconds (default: 900)
  LOG_LEVEL                     - Logging level (can be overridden with --log-level)
        """
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set the logging level (default: INFO)"
    )
    parser.add_argument(
        "--no-wait",
        action="store_true",
        default=False,
        help="Return once the transfer is included, without waiting for the relay"
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Relay wait bound in seconds (default: RELAY_TIMEOUT)"
    )

    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("balance", help="ETH balance of both signers")

    for name, help_text in (
        ("erc20-balance", "ERC20 balance of the signer"),
        ("erc721-owner", "Owner of an ERC721 token"),
        ("erc1155-balance", "ERC1155 balance of the signer"),
    ):
        query = commands.add_parser(name, help=help_text)
        query.add_argument("--chain", choices=["l1", "l2"], default="l1")
        query.add_argument("token")
        if name != "erc20-balance":
            query.add_argument("token_id", type=int)

    deposit_eth = commands.add_parser("deposit-eth", help="Deposit ETH to L2")
    deposit_eth.add_argument("amount", type=ether, help="Amount in ether")
    withdraw_eth = commands.add_parser("withdraw-eth", help="Withdraw ETH to L1")
    withdraw_eth.add_argument("amount", type=ether, help="Amount in ether")

    deposit_erc20 = commands.add_parser("deposit-erc20", help="Deposit an ERC20 token to L2")
    deposit_erc20.add_argument("l1_token")
    deposit_erc20.add_argument("l2_token")
    deposit_erc20.add_argument("amount", type=int, help="Amount in base units")
    withdraw_erc20 = commands.add_parser("withdraw-erc20", help="Withdraw an ERC20 token to L1")
    withdraw_erc20.add_argument("l2_token")
    withdraw_erc20.add_argument("amount", type=int, help="Amount in base units")

    for name, first, second in (
        ("deposit-erc721", "l1_token", "l2_token"),
        ("withdraw-erc721", "l2_token", "l1_token"),
        ("deposit-erc1155", "l1_token", "l2_token"),
        ("withdraw-erc1155", "l2_token", "l1_token"),
    ):
        transfer = commands.add_parser(name, help=f"{name.replace('-', ' ')}")
        transfer.add_argument(first)
        transfer.add_argument(second)
        transfer.add_argument("token_id", type=int)
        if name.endswith("erc1155"):
            transfer.add_argument("amount", type=int, help="Amount in base units")

    status = commands.add_parser("status", help="Status of the message sent by a transaction")
    status.add_argument("tx_hash")
    status.add_argument("--direction", choices=["deposit", "withdrawal"], default="deposit")

    faucet = commands.add_parser("faucet", help="Top up an L1 account from the faucet")
    faucet.add_argument("receiver")
    faucet.add_argument("amount", type=ether, help="Amount in ether")

    return parser


async def run_bridge_command(bridge: OptimismBridge, args: argparse.Namespace) -> Any:
    """Run one bridge sub-command and return its result."""
    wait: dict[str, Any] = {"wait_for_relay": not args.no_wait, "timeout": args.timeout}

    match args.command:
        case "balance":
            l1_balance, l2_balance = await asyncio.gather(
                bridge.get_eth_balance_l1(),
                bridge.get_eth_balance_l2(),
            )
            return {"l1": l1_balance, "l2": l2_balance}
        case "erc20-balance":
            query = bridge.get_erc20_balance_l1 if args.chain == "l1" else bridge.get_erc20_balance_l2
            return await query(args.token)
        case "erc721-owner":
            query = bridge.get_erc721_owner_l1 if args.chain == "l1" else bridge.get_erc721_owner_l2
            return await query(args.token, args.token_id)
        case "erc1155-balance":
            query = bridge.get_erc1155_balance_l1 if args.chain == "l1" else bridge.get_erc1155_balance_l2
            return await query(args.token, args.token_id)
        case "deposit-eth":
            return await bridge.send_eth_to_l2(args.amount, **wait)
        case "withdraw-eth":
            return await bridge.send_eth_to_l1(args.amount, **wait)
        case "deposit-erc20":
            return await bridge.send_erc20_to_l2(args.l1_token, args.l2_token, args.amount, **wait)
        case "withdraw-erc20":
            return await bridge.send_erc20_to_l1(args.l2_token, args.amount, **wait)
        case "deposit-erc721":
            return await bridge.send_erc721_to_l2(args.l1_token, args.l2_token, args.token_id, **wait)
        case "withdraw-erc721":
            return await bridge.send_erc721_to_l1(args.l2_token, args.l1_token, args.token_id, **wait)
        case "deposit-erc1155":
            return await bridge.send_erc1155_to_l2(
                args.l1_token, args.l2_token, args.token_id, args.amount, **wait
            )
        case "withdraw-erc1155":
            return await bridge.send_erc1155_to_l1(
                args.l2_token, args.l1_token, args.token_id, args.amount, **wait
            )
        case "status":
            direction = (
                MessageDirection.L1_TO_L2 if args.direction == "deposit" else MessageDirection.L2_TO_L1
            )
            return (await bridge.get_message_status(args.tx_hash, direction)).name
        case command:
            raise ValueError(f"Unknown command: {command}")


async def main(argv: list[str] | None = None) -> None:
    """Main entry point for the Optimism bridge tool.

    Parses arguments, loads configuration from environment and runs the
    requested operation.

    Raises:
        SystemExit: On configuration or runtime errors
    """
    args: argparse.Namespace = build_parser().parse_args(argv)

    # Set up logging with specified level
    setup_logging(args.log_level)

    try:
        if args.command == "faucet":
            faucet = Faucet(FaucetConfig.from_env())
            try:
                result = await faucet.fund(args.receiver, args.amount)
            finally:
                await faucet.close()
        else:
            config: BridgeConfig = BridgeConfig.from_env()
            config.log_config()
            async with OptimismBridge(
                os.environ.get("L1_PRIVATE_KEY", ""),
                os.environ.get("L2_PRIVATE_KEY", ""),
                config,
            ) as bridge:
                result = await run_bridge_command(bridge, args)

        if result is not None:
            print(result)

    except BridgeConfigurationError as e:
        logger.error(f"Configuration Error: {e}")
        logger.error("Please check your environment variables:")
        logger.error("  - L1_RPC_URL / L2_RPC_URL: RPC endpoints of both chains")
        logger.error("  - ADDRESS_MANAGER, L1_CROSS_DOMAIN_MESSENGER, L1_STANDARD_BRIDGE,")
        logger.error("    OPTIMISM_PORTAL, L2_OUTPUT_ORACLE: L1 system contracts")
        if args.command == "faucet":
            logger.error("  - FAUCET_PRIVATE_KEY: Key of the faucet account")
        else:
            logger.error("  - L1_PRIVATE_KEY / L2_PRIVATE_KEY: Signing keys")
        sys.exit(1)

    except BridgeError as e:
        logger.error(f"Bridge Error: {e}")
        sys.exit(1)

    except KeyboardInterrupt:
        logger.info("\nReceived interrupt signal, shutting down...")
        sys.exit(0)

    except Exception as e:
        logger.error(f"Fatal Error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    # Run the main async function
    asyncio.run(main())
