"""Exception hierarchy for the Optimism bridge facade.

Every error the facade raises on its own derives from ``BridgeError``.
RPC and transport failures coming out of web3 are not wrapped and reach
the caller unchanged.
"""

from typing import Any


class BridgeError(Exception):
    """Base for bridge errors."""

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, Any] | None = None,
        original_error: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = details or {}
        self.original_error: BaseException | None = original_error


class BridgeConfigurationError(BridgeError, ValueError):
    """Invalid key, URL, address or chain identifier."""


class InsufficientFundsError(BridgeError):
    """The signing account cannot cover the requested native amount."""

    def __init__(self, address: str, balance: int, amount: int, chain: str = "L1") -> None:
        super().__init__(
            f"Insufficient balance {chain} | address : {address} | balance : {balance}",
            details={"address": address, "balance": balance, "amount": amount, "chain": chain},
        )
        self.address = address
        self.balance = balance
        self.amount = amount


class TransactionRevertedError(BridgeError):
    """A submitted transaction was included with status 0."""

    def __init__(self, tx_hash: str, receipt: Any = None) -> None:
        super().__init__(
            f"Transaction {tx_hash} reverted",
            details={"tx_hash": tx_hash},
        )
        self.tx_hash = tx_hash
        self.receipt = receipt


class MessageNotFoundError(BridgeError):
    """The transaction did not emit a cross-domain message."""

    def __init__(self, tx_hash: str) -> None:
        super().__init__(
            f"Transaction {tx_hash} did not send a cross-domain message",
            details={"tx_hash": tx_hash},
        )
        self.tx_hash = tx_hash


class RelayTimeoutError(BridgeError):
    """The message did not reach the awaited status before the deadline."""

    def __init__(self, tx_hash: str, last_status: Any, timeout: float) -> None:
        super().__init__(
            f"Message from {tx_hash} not relayed within {timeout}s "
            f"(last status: {getattr(last_status, 'name', last_status)})",
            details={"tx_hash": tx_hash, "last_status": last_status, "timeout": timeout},
        )
        self.tx_hash = tx_hash
        self.last_status = last_status
        self.timeout = timeout


class RelayWaitCancelled(BridgeError):
    """The caller abandoned the relay wait through its stop event."""

    def __init__(self, tx_hash: str, last_status: Any) -> None:
        super().__init__(
            f"Relay wait for {tx_hash} cancelled",
            details={"tx_hash": tx_hash, "last_status": last_status},
        )
        self.tx_hash = tx_hash
        self.last_status = last_status
