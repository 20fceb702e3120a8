"""
Optimism bridge package.

Asset transfers and balance queries across an Ethereum L1 and an
Optimism Bedrock L2.
"""

from .bridge import OptimismBridge
from .config import BridgeConfig, FaucetConfig, L1Contracts, L2Contracts, MessengerContracts, RelayConfig
from .exceptions import (
    BridgeConfigurationError,
    BridgeError,
    InsufficientFundsError,
    MessageNotFoundError,
    RelayTimeoutError,
    RelayWaitCancelled,
    TransactionRevertedError,
)
from .faucet import Faucet
from .messenger import CrossChainMessenger
from .models import MessageDirection, MessageStatus

__all__ = [
    "OptimismBridge",
    "CrossChainMessenger",
    "Faucet",
    "BridgeConfig",
    "FaucetConfig",
    "L1Contracts",
    "L2Contracts",
    "MessengerContracts",
    "RelayConfig",
    "MessageDirection",
    "MessageStatus",
    "BridgeError",
    "BridgeConfigurationError",
    "InsufficientFundsError",
    "MessageNotFoundError",
    "RelayTimeoutError",
    "RelayWaitCancelled",
    "TransactionRevertedError",
]
__version__ = "0.1.0"
