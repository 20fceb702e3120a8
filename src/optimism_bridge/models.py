#!/usr/bin/env python3
"""Data models for the Optimism bridge.

This module provides the enums and immutable data classes shared by the
messenger views and the bridge facade.
"""

from dataclasses import dataclass, replace
from enum import Enum, IntEnum

class MessageStatus(IntEnum):
    """Delivery status of a cross-domain message.

    Values are ordered along the message lifecycle so that a status can be
    compared against the one being awaited.
    """

    UNCONFIRMED_L1_TO_L2_MESSAGE = 0
    FAILED_L1_TO_L2_MESSAGE = 1
    STATE_ROOT_NOT_PUBLISHED = 2
    READY_TO_PROVE = 3
    IN_CHALLENGE_PERIOD = 4
    READY_FOR_RELAY = 5
    RELAYED = 6


class MessageDirection(Enum):
    """Direction of a cross-domain message."""

    L1_TO_L2 = "L1->L2"
    L2_TO_L1 = "L2->L1"

    @property
    def source(self) -> str:
        return "L1" if self is MessageDirection.L1_TO_L2 else "L2"

    @property
    def destination(self) -> str:
        return "L2" if self is MessageDirection.L1_TO_L2 else "L1"


class AssetClass(Enum):
    """Asset classes the facade can move across the bridge."""

    ETH = "eth"
    ERC20 = "erc20"
    ERC721 = "erc721"
    ERC1155 = "erc1155"


class TransferState(Enum):
    """Lifecycle of a pending transfer."""

    SUBMITTED = "submitted"
    INCLUDED = "included"
    RELAYED = "relayed"


@dataclass(frozen=True, slots=True)
class CrossChainMessage:
    """A decoded ``SentMessage`` event.

    Attributes:
        direction: Direction the message travels
        target: Address called on the destination chain
        sender: Address that sent the message on the source chain
        message: Calldata forwarded to the target
        message_nonce: Versioned nonce (version in the top two bytes)
        min_gas_limit: Gas limit requested for the relay
        value: Native value carried by the message (``SentMessageExtension1``)
        log_index: Index of the ``SentMessage`` log in its block
        transaction_hash: Source chain transaction that sent the message
        block_number: Source chain block that included the transaction
    """

    direction: MessageDirection
    target: str
    sender: str
    message: bytes
    message_nonce: int
    min_gas_limit: int
    value: int
    log_index: int
    transaction_hash: str
    block_number: int

    @property
    def version(self) -> int:
        return self.message_nonce >> 240

    def __str__(self) -> str:
        return (
            f"CrossChainMessage({self.direction.value}, "
            f"nonce={self.message_nonce}, "
            f"target={self.target[:10]}..., "
            f"tx={self.transaction_hash[:10]}...)"
        )


@dataclass(frozen=True, slots=True)
class PendingTransfer:
    """A transfer submitted by the facade and not yet relayed.

    Nothing is persisted: the record only lives while the facade is
    waiting on it.
    """

    tx_hash: str
    direction: MessageDirection
    asset: AssetClass
    state: TransferState = TransferState.SUBMITTED

    def advance(self, state: TransferState) -> "PendingTransfer":
        return replace(self, state=state)

    def __str__(self) -> str:
        return (
            f"PendingTransfer({self.asset.value} {self.direction.value}, "
            f"tx={self.tx_hash}, state={self.state.value})"
        )
