#!/usr/bin/env python3
"""Unit tests for the CrossChainMessenger module."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from eth_abi import encode
from hexbytes import HexBytes
from web3 import Web3

from optimism_bridge.config import ChainConfig, L1Contracts
from optimism_bridge.exceptions import (
    BridgeConfigurationError,
    MessageNotFoundError,
    RelayTimeoutError,
    RelayWaitCancelled,
)
from optimism_bridge.messenger import (
    MESSAGE_PASSED_TOPIC,
    RELAY_MESSAGE_V0_SELECTOR,
    RELAY_MESSAGE_V1_SELECTOR,
    SENT_MESSAGE_EXTENSION_TOPIC,
    SENT_MESSAGE_TOPIC,
    CrossChainMessenger,
    hash_cross_domain_message,
)
from optimism_bridge.models import CrossChainMessage, MessageDirection, MessageStatus
from optimism_bridge.utils.contract_utility import ContractUtility

L1_MESSENGER = "0xe7f1725E7734CE288F8367e1Bb143E90bb3F0512"
TARGET = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
SENDER = "0x3C44CdDdB6a900fa2b585dd299e03d12FA4293BC"
TX_HASH = "0x" + "ab" * 32


@pytest.fixture
def contracts():
    return L1Contracts(
        address_manager="0x5FbDB2315678afecb367f032d93F642f64180aa3",
        l1_cross_domain_messenger=L1_MESSENGER,
        l1_standard_bridge="0x9fE46736679d2D9a65F0992F2272dE9f3c7fa6e0",
        optimism_portal="0xCf7Ed3AccA5a467e9e704C703E8D87F634fB0Fc9",
        l2_output_oracle="0xDc64a140Aa3E981100a9becA4E685f962f0cF6C9",
    )


@pytest.fixture
def connections():
    """Real connections; nothing is sent unless a test patches it in."""
    l1 = ContractUtility(ChainConfig(name="L1", rpc_url="http://localhost:8545"), "0x" + "1" * 64)
    l2 = ContractUtility(ChainConfig(name="L2", rpc_url="http://localhost:9545"), "0x" + "2" * 64)
    return l1, l2


@pytest.fixture
def messenger(connections, contracts):
    l1, l2 = connections
    return CrossChainMessenger(l1, l2, contracts, label="test")


def make_message(nonce=(1 << 240) | 7, value=0, direction=MessageDirection.L1_TO_L2):
    return CrossChainMessage(
        direction=direction,
        target=TARGET,
        sender=SENDER,
        message=b"\x01\x02",
        message_nonce=nonce,
        min_gas_limit=200_000,
        value=value,
        log_index=0,
        transaction_hash=TX_HASH,
        block_number=10,
    )


def make_log(address, topics, data, log_index):
    return {
        'address': address,
        'topics': [HexBytes(topic) for topic in topics],
        'data': HexBytes(data),
        'logIndex': log_index,
        'transactionIndex': 0,
        'transactionHash': HexBytes(TX_HASH),
        'blockHash': HexBytes("0x" + "cd" * 32),
        'blockNumber': 10,
        'removed': False,
    }


def sent_message_log(address, log_index, nonce=(1 << 240) | 7):
    return make_log(
        address,
        [SENT_MESSAGE_TOPIC, encode(['address'], [TARGET])],
        encode(['address', 'bytes', 'uint256', 'uint256'], [SENDER, b"\x01\x02", nonce, 200_000]),
        log_index,
    )


def extension_log(address, log_index, value):
    return make_log(
        address,
        [SENT_MESSAGE_EXTENSION_TOPIC, encode(['address'], [SENDER])],
        encode(['uint256'], [value]),
        log_index,
    )


def message_passed_log(address, log_index, sender, withdrawal_hash):
    return make_log(
        address,
        [
            MESSAGE_PASSED_TOPIC,
            encode(['uint256'], [log_index]),
            encode(['address'], [sender]),
            encode(['address'], [TARGET]),
        ],
        encode(['uint256', 'uint256', 'bytes', 'bytes32'], [0, 100_000, b"\x01", withdrawal_hash]),
        log_index,
    )


def receipt_with(logs, block_number=10):
    return {
        'transactionHash': HexBytes(TX_HASH),
        'blockNumber': block_number,
        'status': 1,
        'logs': logs,
    }


def fake_contract(**results):
    """A contract mock whose ``functions.<name>(...).call()`` returns ``results[name]``."""
    contract = MagicMock()
    for name, result in results.items():
        getattr(contract.functions, name).return_value.call = AsyncMock(return_value=result)
    return contract


class TestHashCrossDomainMessage:
    """Tests for the relay hash of each message version."""

    def test_version_zero(self):
        message = make_message(nonce=7)
        expected = Web3.keccak(
            RELAY_MESSAGE_V0_SELECTOR
            + encode(['address', 'address', 'bytes', 'uint256'], [TARGET, SENDER, b"\x01\x02", 7])
        )

        assert message.version == 0
        assert hash_cross_domain_message(message) == expected

    def test_version_one(self):
        nonce = (1 << 240) | 7
        message = make_message(nonce=nonce, value=10**17)
        expected = Web3.keccak(
            RELAY_MESSAGE_V1_SELECTOR
            + encode(
                ['uint256', 'address', 'address', 'uint256', 'uint256', 'bytes'],
                [nonce, SENDER, TARGET, 10**17, 200_000, b"\x01\x02"],
            )
        )

        assert message.version == 1
        assert hash_cross_domain_message(message) == expected

    def test_version_one_commits_to_value(self):
        plain = hash_cross_domain_message(make_message(value=0))
        funded = hash_cross_domain_message(make_message(value=10**18))

        assert len(plain) == 32
        assert plain != funded

    def test_versions_differ(self):
        v0 = hash_cross_domain_message(make_message(nonce=7))
        v1 = hash_cross_domain_message(make_message(nonce=(1 << 240) | 7))
        assert v0 != v1

    def test_unknown_version(self):
        with pytest.raises(ValueError, match="Unknown cross-domain message version: 2"):
            hash_cross_domain_message(make_message(nonce=(2 << 240) | 7))


class TestMessageLookup:
    """Tests for decoding SentMessage and MessagePassed events from receipts."""

    @pytest.mark.asyncio
    async def test_decode_sent_message_with_value(self, messenger):
        other = "0x90F79bf6EB2c4f870365E785982E1f101E93b906"
        receipt = receipt_with([
            # Same event from an unrelated contract is ignored
            sent_message_log(other, 2),
            sent_message_log(L1_MESSENGER, 3),
            extension_log(L1_MESSENGER, 4, 10**17),
        ])

        with patch.object(messenger.l1.w3.eth, "get_transaction_receipt", AsyncMock(return_value=receipt)):
            messages = await messenger.get_messages_by_transaction(TX_HASH, MessageDirection.L1_TO_L2)

        assert len(messages) == 1
        message = messages[0]
        assert message.target == TARGET
        assert message.sender == SENDER
        assert message.message == b"\x01\x02"
        assert message.version == 1
        assert message.min_gas_limit == 200_000
        assert message.value == 10**17
        assert message.log_index == 3
        assert message.transaction_hash == TX_HASH
        assert message.block_number == 10

    @pytest.mark.asyncio
    async def test_no_message_in_transaction(self, messenger):
        with patch.object(messenger.l1.w3.eth, "get_transaction_receipt", AsyncMock(return_value=receipt_with([]))):
            with pytest.raises(MessageNotFoundError):
                await messenger.get_messages_by_transaction(TX_HASH, MessageDirection.L1_TO_L2)

    def test_withdrawal_hashes_from_message_passer(self, messenger):
        passer = messenger.l2_contracts.l2_to_l1_message_passer
        l2_messenger = messenger.l2_contracts.l2_cross_domain_messenger
        other = "0x90F79bf6EB2c4f870365E785982E1f101E93b906"
        receipt = receipt_with([
            message_passed_log(passer, 0, l2_messenger, b"\x42" * 32),
            # Withdrawal sent straight to the passer, not through the messenger
            message_passed_log(passer, 1, other, b"\x43" * 32),
            # Same event emitted by another contract
            message_passed_log(other, 2, l2_messenger, b"\x44" * 32),
            message_passed_log(passer, 3, l2_messenger, b"\x45" * 32),
        ])

        hashes = messenger._withdrawal_hashes(receipt)

        assert hashes == [HexBytes(b"\x42" * 32), HexBytes(b"\x45" * 32)]


class TestTransfers:
    """Tests for transfer submission."""

    @pytest.mark.asyncio
    async def test_deposit_eth(self, messenger):
        messenger.l1.transact = AsyncMock(return_value=TX_HASH)

        assert await messenger.deposit_eth(10**18) == TX_HASH

        fn = messenger.l1.transact.await_args.args[0]
        assert fn.fn_name == "depositETH"
        assert fn.address == messenger.contracts.l1_standard_bridge
        assert messenger.l1.transact.await_args.kwargs == {'value': 10**18}

    @pytest.mark.asyncio
    async def test_withdraw_eth_uses_l2_bridge(self, messenger):
        messenger.l2.transact = AsyncMock(return_value=TX_HASH)

        await messenger.withdraw_eth(5)

        fn = messenger.l2.transact.await_args.args[0]
        assert fn.fn_name == "withdraw"
        assert fn.address == messenger.l2_contracts.l2_standard_bridge

    @pytest.mark.asyncio
    async def test_deposit_erc721_requires_bridge(self, messenger):
        messenger.l1.transact = AsyncMock()

        with pytest.raises(BridgeConfigurationError, match="L1_ERC721_BRIDGE"):
            await messenger.deposit_erc721(TARGET, SENDER, 1)

        messenger.l1.transact.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_withdraw_erc1155_requires_bridge(self, messenger):
        with pytest.raises(BridgeConfigurationError, match="L2_ERC1155_BRIDGE"):
            await messenger.withdraw_erc1155(TARGET, SENDER, 1, 2)


class TestMessageStatus:
    """Tests for the status rules of each direction."""

    def _wire(self, messenger, l1_contracts, l2_contracts, receipt=None, latest_l1_timestamp=0):
        l1 = MagicMock()
        l2 = MagicMock()
        receipt = receipt or receipt_with([])
        for connection in (l1, l2):
            connection.w3.eth.get_transaction_receipt = AsyncMock(return_value=receipt)
        l1.w3.eth.get_block = AsyncMock(return_value={'timestamp': latest_l1_timestamp})
        l1.contract.side_effect = lambda name, address: l1_contracts[name]
        l2.contract.side_effect = lambda name, address: l2_contracts[name]
        messenger.l1 = l1
        messenger.l2 = l2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("successful, failed, expected", [
        (True, False, MessageStatus.RELAYED),
        (False, True, MessageStatus.FAILED_L1_TO_L2_MESSAGE),
        (False, False, MessageStatus.UNCONFIRMED_L1_TO_L2_MESSAGE),
    ])
    async def test_deposit_status(self, messenger, successful, failed, expected):
        relayer = fake_contract(successfulMessages=successful, failedMessages=failed)
        self._wire(messenger, {}, {"CrossDomainMessenger": relayer})

        with patch.object(messenger, "_decode_sent_messages", return_value=[make_message()]):
            status = await messenger.get_message_status(TX_HASH, MessageDirection.L1_TO_L2)

        assert status is expected

    @pytest.mark.asyncio
    async def test_message_index_out_of_range(self, messenger):
        self._wire(messenger, {}, {})

        with patch.object(messenger, "_decode_sent_messages", return_value=[make_message()]):
            with pytest.raises(MessageNotFoundError):
                await messenger.get_message_status(TX_HASH, MessageDirection.L1_TO_L2, message_index=1)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("latest_l2_block, proven_at, now, expected", [
        (5, 0, 0, MessageStatus.STATE_ROOT_NOT_PUBLISHED),
        (20, 0, 0, MessageStatus.READY_TO_PROVE),
        (20, 1_000, 1_100, MessageStatus.IN_CHALLENGE_PERIOD),
        (20, 1_000, 1_000 + 604_800, MessageStatus.READY_FOR_RELAY),
    ])
    async def test_withdrawal_status(self, messenger, latest_l2_block, proven_at, now, expected):
        relayer = fake_contract(successfulMessages=False, failedMessages=False)
        oracle = fake_contract(latestBlockNumber=latest_l2_block, FINALIZATION_PERIOD_SECONDS=604_800)
        portal = fake_contract(provenWithdrawals=(b"\x00" * 32, proven_at, 0))
        self._wire(
            messenger,
            {"CrossDomainMessenger": relayer, "L2OutputOracle": oracle, "OptimismPortal": portal},
            {},
            receipt=receipt_with([], block_number=10),
            latest_l1_timestamp=now,
        )
        message = make_message(direction=MessageDirection.L2_TO_L1)

        with patch.object(messenger, "_decode_sent_messages", return_value=[message]), \
                patch.object(messenger, "_withdrawal_hashes", return_value=[HexBytes(b"\x11" * 32)]):
            status = await messenger.get_message_status(TX_HASH, MessageDirection.L2_TO_L1)

        assert status is expected

    @pytest.mark.asyncio
    async def test_failed_withdrawal_relay_is_ready_for_relay(self, messenger):
        relayer = fake_contract(successfulMessages=False, failedMessages=True)
        self._wire(messenger, {"CrossDomainMessenger": relayer}, {})
        message = make_message(direction=MessageDirection.L2_TO_L1)

        with patch.object(messenger, "_decode_sent_messages", return_value=[message]):
            status = await messenger.get_message_status(TX_HASH, MessageDirection.L2_TO_L1)

        assert status is MessageStatus.READY_FOR_RELAY


class TestWaitForMessageStatus:
    """Tests for the bounded relay wait."""

    @pytest.mark.asyncio
    async def test_returns_after_third_poll(self, messenger):
        statuses = AsyncMock(side_effect=[
            MessageStatus.UNCONFIRMED_L1_TO_L2_MESSAGE,
            MessageStatus.UNCONFIRMED_L1_TO_L2_MESSAGE,
            MessageStatus.RELAYED,
        ])
        with patch.object(messenger, "get_message_status", statuses):
            status = await messenger.wait_for_message_status(
                TX_HASH,
                MessageStatus.RELAYED,
                MessageDirection.L1_TO_L2,
                poll_interval=0.01,
                timeout=5,
            )

        assert status is MessageStatus.RELAYED
        assert statuses.await_count == 3

    @pytest.mark.asyncio
    async def test_later_status_satisfies_wait(self, messenger):
        statuses = AsyncMock(return_value=MessageStatus.RELAYED)
        with patch.object(messenger, "get_message_status", statuses):
            status = await messenger.wait_for_message_status(
                TX_HASH,
                MessageStatus.READY_FOR_RELAY,
                MessageDirection.L2_TO_L1,
                poll_interval=0.01,
            )

        assert status is MessageStatus.RELAYED
        assert statuses.await_count == 1

    @pytest.mark.asyncio
    async def test_timeout(self, messenger):
        statuses = AsyncMock(return_value=MessageStatus.UNCONFIRMED_L1_TO_L2_MESSAGE)
        with patch.object(messenger, "get_message_status", statuses):
            with pytest.raises(RelayTimeoutError) as exc_info:
                await messenger.wait_for_message_status(
                    TX_HASH,
                    MessageStatus.RELAYED,
                    MessageDirection.L1_TO_L2,
                    poll_interval=0.01,
                    timeout=0.05,
                )

        assert exc_info.value.last_status is MessageStatus.UNCONFIRMED_L1_TO_L2_MESSAGE
        assert exc_info.value.tx_hash == TX_HASH

    @pytest.mark.asyncio
    async def test_stop_event_cancels_wait(self, messenger):
        stop_event = asyncio.Event()
        asyncio.get_running_loop().call_later(0.05, stop_event.set)
        statuses = AsyncMock(return_value=MessageStatus.UNCONFIRMED_L1_TO_L2_MESSAGE)

        with patch.object(messenger, "get_message_status", statuses):
            with pytest.raises(RelayWaitCancelled):
                await asyncio.wait_for(
                    messenger.wait_for_message_status(
                        TX_HASH,
                        MessageStatus.RELAYED,
                        MessageDirection.L1_TO_L2,
                        poll_interval=10,
                        stop_event=stop_event,
                    ),
                    timeout=2,
                )

        assert statuses.await_count == 1

    @pytest.mark.asyncio
    async def test_polling_error_propagates(self, messenger):
        statuses = AsyncMock(side_effect=[
            MessageStatus.UNCONFIRMED_L1_TO_L2_MESSAGE,
            ConnectionError("node unreachable"),
        ])
        with patch.object(messenger, "get_message_status", statuses):
            with pytest.raises(ConnectionError):
                await messenger.wait_for_message_status(
                    TX_HASH,
                    MessageStatus.RELAYED,
                    MessageDirection.L1_TO_L2,
                    poll_interval=0.01,
                )

        assert statuses.await_count == 2
