"""L1 faucet for funding bridge accounts on a devnet."""

import logging

from web3 import Web3

from .config import FaucetConfig
from .exceptions import InsufficientFundsError
from .utils.contract_utility import ContractUtility

logger = logging.getLogger(__name__)


class Faucet:
    """Tops up L1 accounts from a funded faucet account."""

    def __init__(self, config: FaucetConfig) -> None:
        self.config = config
        self.l1 = ContractUtility(config.l1, config.private_key)
        logger.info(f"Faucet initialized with account {self.l1.address}")

    async def fund(self, receiver: str, amount: int) -> str | None:
        """
        Make sure ``receiver`` holds at least ``amount`` wei on L1.

        Args:
            receiver: Account to fund
            amount: Target amount in wei, also the amount sent

        Returns:
            Hash of the payout transaction, or None if the receiver was already funded

        Raises:
            InsufficientFundsError: If the faucet cannot cover ``amount``
        """
        receiver = Web3.to_checksum_address(receiver)

        receiver_balance = await self.l1.get_balance(receiver)
        if receiver_balance >= amount:
            logger.info(f"{receiver} already has enough balance ({receiver_balance} wei)")
            return None

        faucet_balance = await self.l1.get_balance()
        if faucet_balance < amount:
            logger.error(f"{self.l1.address} does not have enough balance")
            raise InsufficientFundsError(self.l1.address, faucet_balance, amount, chain="L1")

        tx_hash = await self.l1.send_value(receiver, amount)
        logger.info(f"Sending {Web3.from_wei(amount, 'ether')} ETH to {receiver}: {tx_hash}")
        await self.l1.wait_for_receipt(tx_hash, timeout=self.config.receipt_timeout)
        return tx_hash

    async def close(self) -> None:
        await self.l1.close()
