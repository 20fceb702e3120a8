"""
Cross-chain messenger for Optimism Bedrock deployments.

A thin web3 adapter over the canonical bridge and messenger contracts. It
submits deposits and withdrawals and reports where the paired cross-domain
message stands. Proving and finalizing withdrawals stays with the
operator's own tooling.
"""

import asyncio
import logging
from typing import Any

from eth_abi import encode
from hexbytes import HexBytes
from web3 import Web3
from web3.types import LogReceipt, TxReceipt

from .config import L1Contracts, L2Contracts
from .exceptions import (
    BridgeConfigurationError,
    MessageNotFoundError,
    RelayTimeoutError,
    RelayWaitCancelled,
)
from .models import CrossChainMessage, MessageDirection, MessageStatus
from .utils.contract_utility import ContractUtility

logger = logging.getLogger(__name__)

# Default gas limit requested for deposits executed on L2
DEFAULT_L2_GAS_LIMIT = 200_000

# Legacy OVM_ETH predeploy; the L2 bridge treats it as native ETH
OVM_ETH = "0xDeadDeAddeAddEAddeadDEaDDEAdDeaDDeAD0000"

SENT_MESSAGE_TOPIC = Web3.keccak(text="SentMessage(address,address,bytes,uint256,uint256)")
SENT_MESSAGE_EXTENSION_TOPIC = Web3.keccak(text="SentMessageExtension1(address,uint256)")
MESSAGE_PASSED_TOPIC = Web3.keccak(
    text="MessagePassed(uint256,address,address,uint256,uint256,bytes,bytes32)"
)

RELAY_MESSAGE_V0_SELECTOR = Web3.keccak(text="relayMessage(address,address,bytes,uint256)")[:4]
RELAY_MESSAGE_V1_SELECTOR = Web3.keccak(
    text="relayMessage(uint256,address,address,uint256,uint256,bytes)"
)[:4]


def hash_cross_domain_message(message: CrossChainMessage) -> HexBytes:
    """
    Hash a message the way the destination messenger keys it.

    Version 0 is the pre-Bedrock encoding, version 1 also commits to the
    value and the gas limit.

    Raises:
        ValueError: If the nonce carries an unknown version
    """
    match message.version:
        case 0:
            data = RELAY_MESSAGE_V0_SELECTOR + encode(
                ['address', 'address', 'bytes', 'uint256'],
                [message.target, message.sender, message.message, message.message_nonce],
            )
        case 1:
            data = RELAY_MESSAGE_V1_SELECTOR + encode(
                ['uint256', 'address', 'address', 'uint256', 'uint256', 'bytes'],
                [
                    message.message_nonce,
                    message.sender,
                    message.target,
                    message.value,
                    message.min_gas_limit,
                    message.message,
                ],
            )
        case version:
            raise ValueError(f"Unknown cross-domain message version: {version}")
    return HexBytes(Web3.keccak(data))


def _topic0(log: LogReceipt) -> bytes:
    topics = log.get('topics') or []
    return bytes(topics[0]) if topics else b""


def _same_address(left: Any, right: str) -> bool:
    return isinstance(left, str) and left.lower() == right.lower()


class CrossChainMessenger:
    """
    Deposit, withdrawal and message-status operations across one L1/L2 pair.

    The bridge facade keeps two instances over the same pair of
    connections: one bound to the status contract set, only used for
    status lookups, and one bound to the transfer contract set, only used
    to submit transfers.
    """

    def __init__(
        self,
        l1: ContractUtility,
        l2: ContractUtility,
        contracts: L1Contracts,
        l2_contracts: L2Contracts | None = None,
        label: str = "messenger",
    ) -> None:
        """
        Initialize the CrossChainMessenger.

        Args:
            l1: L1 connection
            l2: L2 connection
            contracts: L1 system contract addresses
            l2_contracts: L2 contract addresses (Bedrock predeploys by default)
            label: Name used in log lines
        """
        self.l1 = l1
        self.l2 = l2
        self.contracts = contracts
        self.l2_contracts = l2_contracts or L2Contracts()
        self.label = label

    def _source(self, direction: MessageDirection) -> ContractUtility:
        return self.l1 if direction is MessageDirection.L1_TO_L2 else self.l2

    def _destination(self, direction: MessageDirection) -> ContractUtility:
        return self.l2 if direction is MessageDirection.L1_TO_L2 else self.l1

    def _messenger_address(self, chain: str) -> str:
        if chain == "L1":
            return self.contracts.l1_cross_domain_messenger
        return self.l2_contracts.l2_cross_domain_messenger

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    async def deposit_eth(self, amount: int, min_gas_limit: int = DEFAULT_L2_GAS_LIMIT) -> str:
        """Deposit native ETH into L2 through the L1 standard bridge."""
        bridge = self.l1.contract("L1StandardBridge", self.contracts.l1_standard_bridge)
        tx_hash = await self.l1.transact(
            bridge.functions.depositETH(min_gas_limit, b""),
            value=amount,
        )
        logger.info(f"[{self.label}] depositETH submitted: {tx_hash} ({amount} wei)")
        return tx_hash

    async def withdraw_eth(self, amount: int, min_gas_limit: int = 0) -> str:
        """Withdraw native ETH to L1 through the L2 standard bridge."""
        bridge = self.l2.contract("L2StandardBridge", self.l2_contracts.l2_standard_bridge)
        tx_hash = await self.l2.transact(
            bridge.functions.withdraw(OVM_ETH, amount, min_gas_limit, b""),
            value=amount,
        )
        logger.info(f"[{self.label}] ETH withdraw submitted: {tx_hash} ({amount} wei)")
        return tx_hash

    async def deposit_erc20(
        self,
        l1_token: str,
        l2_token: str,
        amount: int,
        min_gas_limit: int = DEFAULT_L2_GAS_LIMIT,
    ) -> str:
        """Deposit an ERC20 token. The bridge must already hold an allowance."""
        bridge = self.l1.contract("L1StandardBridge", self.contracts.l1_standard_bridge)
        tx_hash = await self.l1.transact(
            bridge.functions.depositERC20(
                Web3.to_checksum_address(l1_token),
                Web3.to_checksum_address(l2_token),
                amount,
                min_gas_limit,
                b"",
            )
        )
        logger.info(f"[{self.label}] depositERC20 submitted: {tx_hash} ({amount} of {l1_token})")
        return tx_hash

    async def withdraw_erc20(self, l2_token: str, amount: int, min_gas_limit: int = 0) -> str:
        """Withdraw an OptimismMintableERC20 back to its L1 token."""
        bridge = self.l2.contract("L2StandardBridge", self.l2_contracts.l2_standard_bridge)
        tx_hash = await self.l2.transact(
            bridge.functions.withdraw(
                Web3.to_checksum_address(l2_token),
                amount,
                min_gas_limit,
                b"",
            )
        )
        logger.info(f"[{self.label}] ERC20 withdraw submitted: {tx_hash} ({amount} of {l2_token})")
        return tx_hash

    async def deposit_erc721(
        self,
        l1_token: str,
        l2_token: str,
        token_id: int,
        min_gas_limit: int = DEFAULT_L2_GAS_LIMIT,
    ) -> str:
        """Bridge one NFT to L2. Approval of the L1 ERC721 bridge is the caller's job."""
        if not self.contracts.l1_erc721_bridge:
            raise BridgeConfigurationError("L1 ERC721 bridge address is not configured (L1_ERC721_BRIDGE)")
        bridge = self.l1.contract("ERC721Bridge", self.contracts.l1_erc721_bridge)
        tx_hash = await self.l1.transact(
            bridge.functions.bridgeERC721(
                Web3.to_checksum_address(l1_token),
                Web3.to_checksum_address(l2_token),
                token_id,
                min_gas_limit,
                b"",
            )
        )
        logger.info(f"[{self.label}] bridgeERC721 L1->L2 submitted: {tx_hash} (token {token_id})")
        return tx_hash

    async def withdraw_erc721(
        self,
        l2_token: str,
        l1_token: str,
        token_id: int,
        min_gas_limit: int = DEFAULT_L2_GAS_LIMIT,
    ) -> str:
        """Bridge one NFT back to L1 through the L2 ERC721 bridge predeploy."""
        bridge = self.l2.contract("ERC721Bridge", self.l2_contracts.l2_erc721_bridge)
        tx_hash = await self.l2.transact(
            bridge.functions.bridgeERC721(
                Web3.to_checksum_address(l2_token),
                Web3.to_checksum_address(l1_token),
                token_id,
                min_gas_limit,
                b"",
            )
        )
        logger.info(f"[{self.label}] bridgeERC721 L2->L1 submitted: {tx_hash} (token {token_id})")
        return tx_hash

    async def deposit_erc1155(
        self,
        l1_token: str,
        l2_token: str,
        token_id: int,
        amount: int,
        min_gas_limit: int = DEFAULT_L2_GAS_LIMIT,
    ) -> str:
        """Bridge a multi-token balance to L2 through the configured ERC1155 bridge."""
        if not self.contracts.l1_erc1155_bridge:
            raise BridgeConfigurationError("L1 ERC1155 bridge address is not configured (L1_ERC1155_BRIDGE)")
        bridge = self.l1.contract("ERC1155Bridge", self.contracts.l1_erc1155_bridge)
        tx_hash = await self.l1.transact(
            bridge.functions.bridgeERC1155(
                Web3.to_checksum_address(l1_token),
                Web3.to_checksum_address(l2_token),
                token_id,
                amount,
                min_gas_limit,
                b"",
            )
        )
        logger.info(f"[{self.label}] bridgeERC1155 L1->L2 submitted: {tx_hash} (id {token_id} x{amount})")
        return tx_hash

    async def withdraw_erc1155(
        self,
        l2_token: str,
        l1_token: str,
        token_id: int,
        amount: int,
        min_gas_limit: int = DEFAULT_L2_GAS_LIMIT,
    ) -> str:
        """Bridge a multi-token balance back to L1 through the configured ERC1155 bridge."""
        if not self.l2_contracts.l2_erc1155_bridge:
            raise BridgeConfigurationError("L2 ERC1155 bridge address is not configured (L2_ERC1155_BRIDGE)")
        bridge = self.l2.contract("ERC1155Bridge", self.l2_contracts.l2_erc1155_bridge)
        tx_hash = await self.l2.transact(
            bridge.functions.bridgeERC1155(
                Web3.to_checksum_address(l2_token),
                Web3.to_checksum_address(l1_token),
                token_id,
                amount,
                min_gas_limit,
                b"",
            )
        )
        logger.info(f"[{self.label}] bridgeERC1155 L2->L1 submitted: {tx_hash} (id {token_id} x{amount})")
        return tx_hash

    # ------------------------------------------------------------------
    # Message lookup
    # ------------------------------------------------------------------

    async def get_messages_by_transaction(
        self,
        tx_hash: str,
        direction: MessageDirection,
    ) -> list[CrossChainMessage]:
        """
        Decode the cross-domain messages sent by a source chain transaction.

        Args:
            tx_hash: Transaction hash on the source chain
            direction: Direction of the transfer

        Returns:
            Messages in log order

        Raises:
            MessageNotFoundError: If the transaction sent no message
        """
        source = self._source(direction)
        receipt: TxReceipt = await source.w3.eth.get_transaction_receipt(tx_hash)
        messages = self._decode_sent_messages(receipt, direction)
        if not messages:
            raise MessageNotFoundError(tx_hash)
        return messages

    def _decode_sent_messages(self, receipt: TxReceipt, direction: MessageDirection) -> list[CrossChainMessage]:
        source = self._source(direction)
        messenger_address = self._messenger_address(direction.source)
        messenger = source.contract("CrossDomainMessenger", messenger_address)

        sent_logs: list[LogReceipt] = []
        values: dict[int, int] = {}
        for log in receipt['logs']:
            if not _same_address(log.get('address'), messenger_address):
                continue
            topic = _topic0(log)
            if topic == SENT_MESSAGE_TOPIC:
                sent_logs.append(log)
            elif topic == SENT_MESSAGE_EXTENSION_TOPIC:
                extension = messenger.events.SentMessageExtension1().process_log(log)
                values[log['logIndex']] = extension['args']['value']

        messages: list[CrossChainMessage] = []
        for log in sent_logs:
            event = messenger.events.SentMessage().process_log(log)
            args = event['args']
            messages.append(CrossChainMessage(
                direction=direction,
                target=args['target'],
                sender=args['sender'],
                message=bytes(args['message']),
                message_nonce=args['messageNonce'],
                min_gas_limit=args['gasLimit'],
                # The extension log directly follows its SentMessage
                value=values.get(log['logIndex'] + 1, 0),
                log_index=log['logIndex'],
                transaction_hash=Web3.to_hex(receipt['transactionHash']),
                block_number=receipt['blockNumber'],
            ))
        return messages

    def _withdrawal_hashes(self, receipt: TxReceipt) -> list[HexBytes]:
        """Withdrawal hashes of the messages the L2 messenger passed to L1, in log order."""
        passer_address = self.l2_contracts.l2_to_l1_message_passer
        passer = self.l2.contract("L2ToL1MessagePasser", passer_address)
        hashes: list[HexBytes] = []
        for log in receipt['logs']:
            if not _same_address(log.get('address'), passer_address) or _topic0(log) != MESSAGE_PASSED_TOPIC:
                continue
            args = passer.events.MessagePassed().process_log(log)['args']
            if _same_address(args['sender'], self.l2_contracts.l2_cross_domain_messenger):
                hashes.append(HexBytes(args['withdrawalHash']))
        return hashes

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def get_message_status(
        self,
        tx_hash: str,
        direction: MessageDirection,
        message_index: int = 0,
    ) -> MessageStatus:
        """
        Report where the message sent by ``tx_hash`` stands on the destination chain.

        Args:
            tx_hash: Transaction hash on the source chain
            direction: Direction of the transfer
            message_index: Which message of the transaction to inspect

        Returns:
            Current MessageStatus
        """
        source = self._source(direction)
        receipt: TxReceipt = await source.w3.eth.get_transaction_receipt(tx_hash)
        messages = self._decode_sent_messages(receipt, direction)
        if len(messages) <= message_index:
            raise MessageNotFoundError(tx_hash)
        message = messages[message_index]
        message_hash = hash_cross_domain_message(message)

        destination = self._destination(direction)
        relayer = destination.contract(
            "CrossDomainMessenger",
            self._messenger_address(direction.destination),
        )
        if await relayer.functions.successfulMessages(message_hash).call():
            return MessageStatus.RELAYED

        failed = await relayer.functions.failedMessages(message_hash).call()

        if direction is MessageDirection.L1_TO_L2:
            if failed:
                return MessageStatus.FAILED_L1_TO_L2_MESSAGE
            return MessageStatus.UNCONFIRMED_L1_TO_L2_MESSAGE

        # A failed relay on L1 can be replayed
        if failed:
            return MessageStatus.READY_FOR_RELAY

        return await self._withdrawal_status(receipt, message_index)

    async def _withdrawal_status(self, receipt: TxReceipt, message_index: int) -> MessageStatus:
        oracle = self.l1.contract("L2OutputOracle", self.contracts.l2_output_oracle)
        latest_l2_block = await oracle.functions.latestBlockNumber().call()
        if latest_l2_block < receipt['blockNumber']:
            return MessageStatus.STATE_ROOT_NOT_PUBLISHED

        withdrawal_hashes = self._withdrawal_hashes(receipt)
        if len(withdrawal_hashes) <= message_index:
            raise MessageNotFoundError(Web3.to_hex(receipt['transactionHash']))

        portal = self.l1.contract("OptimismPortal", self.contracts.optimism_portal)
        _output_root, proven_at, _output_index = await portal.functions.provenWithdrawals(
            withdrawal_hashes[message_index]
        ).call()
        if proven_at == 0:
            return MessageStatus.READY_TO_PROVE

        finalization_period = await oracle.functions.FINALIZATION_PERIOD_SECONDS().call()
        latest_l1_block = await self.l1.w3.eth.get_block('latest')
        if latest_l1_block['timestamp'] < proven_at + finalization_period:
            return MessageStatus.IN_CHALLENGE_PERIOD
        return MessageStatus.READY_FOR_RELAY

    async def wait_for_message_status(
        self,
        tx_hash: str,
        status: MessageStatus,
        direction: MessageDirection,
        *,
        poll_interval: float = 5,
        timeout: float | None = None,
        stop_event: asyncio.Event | None = None,
    ) -> MessageStatus:
        """
        Poll until the message reaches ``status`` or a later one.

        Errors raised while polling propagate on the first occurrence.

        Args:
            tx_hash: Transaction hash on the source chain
            status: Status to wait for
            direction: Direction of the transfer
            poll_interval: Seconds between polls
            timeout: Upper bound on the whole wait; ``None`` waits forever
            stop_event: Set by the caller to abandon the wait

        Returns:
            The first observed status at or beyond ``status``

        Raises:
            RelayTimeoutError: If ``timeout`` elapses first
            RelayWaitCancelled: If ``stop_event`` is set first
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        polls = 0
        last_status: MessageStatus | None = None

        while True:
            current = await self.get_message_status(tx_hash, direction)
            polls += 1
            if current != last_status:
                logger.info(f"[{self.label}] {direction.value} message from {tx_hash}: {current.name}")
                if current is MessageStatus.FAILED_L1_TO_L2_MESSAGE:
                    logger.warning(f"[{self.label}] relay of {tx_hash} failed on L2, it can be replayed")
            else:
                logger.debug(f"[{self.label}] poll {polls} for {tx_hash}: {current.name}")
            last_status = current

            if current >= status:
                return current

            if stop_event is not None and stop_event.is_set():
                raise RelayWaitCancelled(tx_hash, last_status)

            delay = poll_interval
            if deadline is not None:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise RelayTimeoutError(tx_hash, last_status, timeout)
                delay = min(poll_interval, remaining)

            if stop_event is None:
                await asyncio.sleep(delay)
                continue
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                continue
            raise RelayWaitCancelled(tx_hash, last_status)
