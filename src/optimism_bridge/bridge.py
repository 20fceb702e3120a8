"""
Optimism bridge facade.

This module contains the OptimismBridge class. It owns both chain
connections and both messenger views, and runs every transfer through the
same submit -> include -> relay sequence.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from .config import BridgeConfig
from .exceptions import BridgeConfigurationError, InsufficientFundsError
from .messenger import CrossChainMessenger
from .models import AssetClass, MessageDirection, MessageStatus, PendingTransfer, TransferState
from .utils.contract_utility import ContractUtility, function_abi

logger = logging.getLogger(__name__)

# One-function interfaces for token reads and approvals
ERC20_APPROVE_ABI = function_abi("approve", ["address", "uint256"], ["bool"], "nonpayable")
ERC20_BALANCE_OF_ABI = function_abi("balanceOf", ["address"], ["uint256"])
ERC721_OWNER_OF_ABI = function_abi("ownerOf", ["uint256"], ["address"])
ERC1155_BALANCE_OF_ABI = function_abi("balanceOf", ["address", "uint256"], ["uint256"])


class OptimismBridge:
    """
    Moves ETH, ERC20, ERC721 and ERC1155 assets between L1 and an Optimism L2.

    Each transfer returns the hash of the transaction on the submitting
    chain. By default the call only returns once the paired cross-domain
    message has been relayed on the other chain. Nothing is retried: RPC
    errors, reverts and timeouts reach the caller as raised.
    """

    def __init__(self, private_key_l1: str, private_key_l2: str, config: BridgeConfig):
        """
        Initialize the bridge.

        No request is awaited here. Chain ID lookups start in the
        background when an event loop is running and are awaited by the
        first transfer.

        Args:
            private_key_l1: Key of the signing account on L1
            private_key_l2: Key of the signing account on L2
            config: Bridge configuration

        Raises:
            BridgeConfigurationError: If a private key is invalid
        """
        self.config = config

        self.l1 = ContractUtility(config.l1, private_key_l1, config.relay.request_timeout)
        self.l2 = ContractUtility(config.l2, private_key_l2, config.relay.request_timeout)
        self.l1.start_chain_id_resolution()
        self.l2.start_chain_id_resolution()

        # Both views share the two connections above, so they cannot drift
        # onto a different pair of chains
        self.status_messenger = CrossChainMessenger(
            self.l1,
            self.l2,
            config.contracts.status_contracts,
            config.contracts.l2,
            label="status",
        )
        self.transfer_messenger = CrossChainMessenger(
            self.l1,
            self.l2,
            config.contracts.transfer_contracts,
            config.contracts.l2,
            label="transfer",
        )

        logger.info(f"OptimismBridge initialized (L1 signer {self.l1.address}, L2 signer {self.l2.address})")

    async def __aenter__(self) -> "OptimismBridge":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close both RPC connections."""
        await asyncio.gather(self.l1.close(), self.l2.close())

    async def get_chain_ids(self) -> tuple[int, int]:
        """Resolve (once) and return the L1 and L2 chain IDs."""
        l1_chain_id, l2_chain_id = await asyncio.gather(
            self.l1.get_chain_id(),
            self.l2.get_chain_id(),
        )
        if l1_chain_id == l2_chain_id:
            raise BridgeConfigurationError(
                f"L1 and L2 RPC endpoints serve the same chain ({l1_chain_id})"
            )
        return l1_chain_id, l2_chain_id

    # ------------------------------------------------------------------
    # Transfer plumbing
    # ------------------------------------------------------------------

    def _source(self, direction: MessageDirection) -> ContractUtility:
        return self.l1 if direction is MessageDirection.L1_TO_L2 else self.l2

    async def _complete_transfer(
        self,
        submit: Callable[[], Awaitable[str]],
        direction: MessageDirection,
        asset: AssetClass,
        wait_for_relay: bool,
        timeout: float | None,
        stop_event: asyncio.Event | None,
    ) -> str:
        await self.get_chain_ids()

        tx_hash = await submit()
        transfer = PendingTransfer(tx_hash=tx_hash, direction=direction, asset=asset)
        logger.info(f"{transfer}")

        await self._source(direction).wait_for_receipt(
            tx_hash,
            timeout=self.config.relay.receipt_timeout,
        )
        transfer = transfer.advance(TransferState.INCLUDED)
        logger.info(f"{transfer}")

        if not wait_for_relay:
            return tx_hash

        await self.wait_for_relay(tx_hash, direction, timeout=timeout, stop_event=stop_event)
        transfer = transfer.advance(TransferState.RELAYED)
        logger.info(f"✓ {transfer}")
        return tx_hash

    async def wait_for_relay(
        self,
        tx_hash: str,
        direction: MessageDirection,
        *,
        timeout: float | None = None,
        stop_event: asyncio.Event | None = None,
    ) -> MessageStatus:
        """
        Block until the message sent by ``tx_hash`` is relayed.

        Args:
            tx_hash: Transaction hash on the submitting chain
            direction: Direction of the transfer
            timeout: Bound on the wait (defaults to the configured relay timeout)
            stop_event: Set to abandon the wait

        Raises:
            RelayTimeoutError: If the message is not relayed in time
            RelayWaitCancelled: If ``stop_event`` is set first
        """
        return await self.status_messenger.wait_for_message_status(
            tx_hash,
            MessageStatus.RELAYED,
            direction,
            poll_interval=self.config.relay.poll_interval,
            timeout=self.config.relay.relay_timeout if timeout is None else timeout,
            stop_event=stop_event,
        )

    async def get_message_status(self, tx_hash: str, direction: MessageDirection) -> MessageStatus:
        """Current status of the message sent by ``tx_hash``."""
        return await self.status_messenger.get_message_status(tx_hash, direction)

    async def _approve_erc20(self, token_address: str, spender: str, amount: int) -> str:
        token = self.l1.minimal_contract(token_address, ERC20_APPROVE_ABI)
        tx_hash = await self.l1.transact(token.functions.approve(spender, amount))
        logger.info(f"approve({spender}, {amount}) on {token_address}: {tx_hash}")
        await self.l1.wait_for_receipt(tx_hash, timeout=self.config.relay.receipt_timeout)
        return tx_hash

    # ------------------------------------------------------------------
    # ETH
    # ------------------------------------------------------------------

    async def send_eth_to_l2(
        self,
        amount: int,
        *,
        wait_for_relay: bool = True,
        timeout: float | None = None,
        stop_event: asyncio.Event | None = None,
    ) -> str:
        """
        Deposit ``amount`` wei from the L1 signer to L2.

        Raises:
            InsufficientFundsError: If the L1 balance is below ``amount``;
                nothing is submitted in that case
        """
        balance = await self.l1.get_balance()
        if balance < amount:
            raise InsufficientFundsError(self.l1.address, balance, amount, chain="L1")

        return await self._complete_transfer(
            lambda: self.transfer_messenger.deposit_eth(amount),
            MessageDirection.L1_TO_L2,
            AssetClass.ETH,
            wait_for_relay,
            timeout,
            stop_event,
        )

    async def send_eth_to_l1(
        self,
        amount: int,
        *,
        wait_for_relay: bool = True,
        timeout: float | None = None,
        stop_event: asyncio.Event | None = None,
    ) -> str:
        """Withdraw ``amount`` wei from the L2 signer to L1.

        The L2 balance is not checked first; an underfunded withdrawal
        fails on submission.
        """
        return await self._complete_transfer(
            lambda: self.transfer_messenger.withdraw_eth(amount),
            MessageDirection.L2_TO_L1,
            AssetClass.ETH,
            wait_for_relay,
            timeout,
            stop_event,
        )

    async def get_eth_balance_l1(self) -> int:
        return await self.l1.get_balance()

    async def get_eth_balance_l2(self) -> int:
        return await self.l2.get_balance()

    # ------------------------------------------------------------------
    # ERC20
    # ------------------------------------------------------------------

    async def send_erc20_to_l2(
        self,
        l1_token: str,
        l2_token: str,
        amount: int,
        *,
        wait_for_relay: bool = True,
        timeout: float | None = None,
        stop_event: asyncio.Event | None = None,
    ) -> str:
        """Approve the L1 standard bridge for ``amount`` and deposit it to L2."""
        async def submit() -> str:
            await self._approve_erc20(
                l1_token,
                self.transfer_messenger.contracts.l1_standard_bridge,
                amount,
            )
            return await self.transfer_messenger.deposit_erc20(l1_token, l2_token, amount)

        return await self._complete_transfer(
            submit,
            MessageDirection.L1_TO_L2,
            AssetClass.ERC20,
            wait_for_relay,
            timeout,
            stop_event,
        )

    async def send_erc20_to_l1(
        self,
        l2_token: str,
        amount: int,
        *,
        wait_for_relay: bool = True,
        timeout: float | None = None,
        stop_event: asyncio.Event | None = None,
    ) -> str:
        return await self._complete_transfer(
            lambda: self.transfer_messenger.withdraw_erc20(l2_token, amount),
            MessageDirection.L2_TO_L1,
            AssetClass.ERC20,
            wait_for_relay,
            timeout,
            stop_event,
        )

    async def _erc20_balance(self, connection: ContractUtility, token_address: str) -> int:
        token = connection.minimal_contract(token_address, ERC20_BALANCE_OF_ABI)
        return await token.functions.balanceOf(connection.address).call()

    async def get_erc20_balance_l1(self, token_address: str) -> int:
        return await self._erc20_balance(self.l1, token_address)

    async def get_erc20_balance_l2(self, token_address: str) -> int:
        return await self._erc20_balance(self.l2, token_address)

    # ------------------------------------------------------------------
    # ERC721
    # ------------------------------------------------------------------

    async def send_erc721_to_l2(
        self,
        l1_token: str,
        l2_token: str,
        token_id: int,
        *,
        wait_for_relay: bool = True,
        timeout: float | None = None,
        stop_event: asyncio.Event | None = None,
    ) -> str:
        """Bridge NFT ``token_id`` to L2. The L1 ERC721 bridge must already be approved."""
        return await self._complete_transfer(
            lambda: self.transfer_messenger.deposit_erc721(l1_token, l2_token, token_id),
            MessageDirection.L1_TO_L2,
            AssetClass.ERC721,
            wait_for_relay,
            timeout,
            stop_event,
        )

    async def send_erc721_to_l1(
        self,
        l2_token: str,
        l1_token: str,
        token_id: int,
        *,
        wait_for_relay: bool = True,
        timeout: float | None = None,
        stop_event: asyncio.Event | None = None,
    ) -> str:
        return await self._complete_transfer(
            lambda: self.transfer_messenger.withdraw_erc721(l2_token, l1_token, token_id),
            MessageDirection.L2_TO_L1,
            AssetClass.ERC721,
            wait_for_relay,
            timeout,
            stop_event,
        )

    async def _erc721_owner(self, connection: ContractUtility, token_address: str, token_id: int) -> str:
        token = connection.minimal_contract(token_address, ERC721_OWNER_OF_ABI)
        return await token.functions.ownerOf(token_id).call()

    async def get_erc721_owner_l1(self, token_address: str, token_id: int) -> str:
        return await self._erc721_owner(self.l1, token_address, token_id)

    async def get_erc721_owner_l2(self, token_address: str, token_id: int) -> str:
        return await self._erc721_owner(self.l2, token_address, token_id)

    # ------------------------------------------------------------------
    # ERC1155
    # ------------------------------------------------------------------

    async def send_erc1155_to_l2(
        self,
        l1_token: str,
        l2_token: str,
        token_id: int,
        amount: int,
        *,
        wait_for_relay: bool = True,
        timeout: float | None = None,
        stop_event: asyncio.Event | None = None,
    ) -> str:
        """Bridge ``amount`` of ``token_id`` to L2. Operator approval is the caller's job."""
        return await self._complete_transfer(
            lambda: self.transfer_messenger.deposit_erc1155(l1_token, l2_token, token_id, amount),
            MessageDirection.L1_TO_L2,
            AssetClass.ERC1155,
            wait_for_relay,
            timeout,
            stop_event,
        )

    async def send_erc1155_to_l1(
        self,
        l2_token: str,
        l1_token: str,
        token_id: int,
        amount: int,
        *,
        wait_for_relay: bool = True,
        timeout: float | None = None,
        stop_event: asyncio.Event | None = None,
    ) -> str:
        return await self._complete_transfer(
            lambda: self.transfer_messenger.withdraw_erc1155(l2_token, l1_token, token_id, amount),
            MessageDirection.L2_TO_L1,
            AssetClass.ERC1155,
            wait_for_relay,
            timeout,
            stop_event,
        )

    async def _erc1155_balance(self, connection: ContractUtility, token_address: str, token_id: int) -> int:
        token = connection.minimal_contract(token_address, ERC1155_BALANCE_OF_ABI)
        return await token.functions.balanceOf(connection.address, token_id).call()

    async def get_erc1155_balance_l1(self, token_address: str, token_id: int) -> int:
        return await self._erc1155_balance(self.l1, token_address, token_id)

    async def get_erc1155_balance_l2(self, token_address: str, token_id: int) -> int:
        return await self._erc1155_balance(self.l2, token_address, token_id)

    def __repr__(self) -> str:
        return (
            f"OptimismBridge(l1={self.config.l1.rpc_url}, l2={self.config.l2.rpc_url}, "
            f"l1_signer={self.l1.address})"
        )
