import asyncio
import json
import logging
from pathlib import Path
from typing import Any

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.contract import AsyncContract
from web3.contract.async_contract import AsyncContractFunction
from web3.middleware import SignAndSendRawMiddlewareBuilder
from web3.types import TxParams, TxReceipt, Wei

from ..config import ChainConfig
from ..exceptions import BridgeConfigurationError, TransactionRevertedError

logger = logging.getLogger(__name__)


def function_abi(
    name: str,
    inputs: list[str],
    outputs: list[str] | None = None,
    state_mutability: str = "view",
) -> list[dict[str, Any]]:
    """Build a single-function ABI from parameter types.

    Args:
        name: Function name
        inputs: Solidity types of the arguments
        outputs: Solidity types of the return values
        state_mutability: ``view``, ``nonpayable`` or ``payable``

    Returns:
        ABI list holding exactly one function entry
    """
    return [{
        "type": "function",
        "name": name,
        "stateMutability": state_mutability,
        "inputs": [{"name": f"arg{i}", "type": t} for i, t in enumerate(inputs)],
        "outputs": [{"name": "", "type": t} for t in (outputs or [])],
    }]


class ContractUtility:
    """
    One chain connection: RPC client, signing account and contract helpers.

    The chain ID is resolved at most once per instance. Resolution can be
    kicked off early with ``start_chain_id_resolution`` and is otherwise
    started by the first ``get_chain_id`` call.
    """

    def __init__(self, chain: ChainConfig, secret: str, request_timeout: int = 30) -> None:
        """
        Initialize the ContractUtility.

        Args:
            chain: Chain configuration (RPC URL and expected chain ID)
            secret: Private key of the signing account on this chain
            request_timeout: HTTP request timeout in seconds

        Raises:
            BridgeConfigurationError: If the private key is not a valid account key
        """
        self.chain = chain
        self.name = chain.name

        try:
            self.account: LocalAccount = Account.from_key(secret)
        except Exception as e:
            raise BridgeConfigurationError(
                f"Invalid {chain.name} private key: {e}",
                original_error=e,
            ) from e

        self.w3 = AsyncWeb3(AsyncHTTPProvider(
            chain.rpc_url,
            request_kwargs={'timeout': request_timeout},
        ))
        self._add_signing_middleware()

        self._chain_id_task: asyncio.Future[int] | None = None

    def _add_signing_middleware(self) -> None:
        """Sign outgoing transactions locally with this connection's account."""
        self.w3.middleware_onion.add(SignAndSendRawMiddlewareBuilder.build(self.account))
        self.w3.eth.default_account = self.account.address

    @property
    def address(self) -> str:
        return self.account.address

    # ------------------------------------------------------------------
    # Chain ID
    # ------------------------------------------------------------------

    def start_chain_id_resolution(self) -> None:
        """Kick off chain ID resolution if an event loop is running."""
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"{self.name}: no running loop, chain ID resolution deferred")
            return
        self._ensure_chain_id_task()

    def _ensure_chain_id_task(self) -> "asyncio.Future[int]":
        task = self._chain_id_task
        # A failed lookup is not memoized
        if task is not None and task.done() and (task.cancelled() or task.exception() is not None):
            task = None
        if task is None:
            task = asyncio.ensure_future(self._resolve_chain_id())
            task.add_done_callback(self._on_chain_id_resolved)
            self._chain_id_task = task
        return task

    async def get_chain_id(self) -> int:
        """Return the chain ID, fetching it from the node on first use."""
        return await asyncio.shield(self._ensure_chain_id_task())

    async def _resolve_chain_id(self) -> int:
        chain_id = await self.w3.eth.chain_id
        expected = self.chain.chain_id
        if expected is not None and chain_id != expected:
            raise BridgeConfigurationError(
                f"{self.name} RPC {self.chain.rpc_url} reports chain ID {chain_id}, expected {expected}"
            )
        logger.debug(f"{self.name} chain ID resolved: {chain_id}")
        return chain_id

    def _on_chain_id_resolved(self, task: "asyncio.Future[int]") -> None:
        if task.cancelled():
            return
        if (error := task.exception()) is not None:
            logger.warning(f"{self.name} chain ID resolution failed: {error}")

    # ------------------------------------------------------------------
    # Contracts
    # ------------------------------------------------------------------

    def get_contract_abi(self, contract_name: str) -> list[dict[str, Any]]:
        """Fetches ABI of the given contract from the contracts folder.

        Args:
            contract_name: Name of the contract (without .json extension)

        Returns:
            List of ABI dictionaries for the contract

        Raises:
            FileNotFoundError: If the contract file doesn't exist
            json.JSONDecodeError: If the contract file is invalid JSON
        """
        contract_path: Path = (
            Path(__file__).parent.parent
            / "contracts"
            / f"{contract_name}.json"
        ).resolve()

        with contract_path.open() as file:
            contract_data: dict[str, Any] = json.load(file)

        return contract_data["abi"]

    def contract(self, contract_name: str, address: str) -> AsyncContract:
        """Bind a bundled ABI to ``address`` on this chain."""
        return self.w3.eth.contract(
            address=Web3.to_checksum_address(address),
            abi=self.get_contract_abi(contract_name),
        )

    def minimal_contract(self, address: str, abi: list[dict[str, Any]]) -> AsyncContract:
        """Bind a one-function ABI built by ``function_abi`` to ``address``."""
        return self.w3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def get_balance(self, address: str | None = None) -> Wei:
        """Native balance of ``address`` (default: this connection's account)."""
        return await self.w3.eth.get_balance(address or self.address)

    async def transact(self, fn: AsyncContractFunction, value: int = 0) -> str:
        """Sign and broadcast a contract call, returning the transaction hash."""
        tx_params: TxParams = {'from': self.address}
        if value:
            tx_params['value'] = Wei(value)
        tx_hash = await fn.transact(tx_params)
        return Web3.to_hex(tx_hash)

    async def send_value(self, to: str, value: int) -> str:
        """Sign and broadcast a plain value transfer."""
        tx_hash = await self.w3.eth.send_transaction({
            'from': self.address,
            'to': Web3.to_checksum_address(to),
            'value': Wei(value),
        })
        return Web3.to_hex(tx_hash)

    async def wait_for_receipt(self, tx_hash: str, timeout: float = 120) -> TxReceipt:
        """
        Wait for a transaction to be included.

        Raises:
            TransactionRevertedError: If the transaction was included with status 0
            web3.exceptions.TimeExhausted: If no receipt appeared within ``timeout``
        """
        receipt: TxReceipt = await self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)

        if (status := receipt.get('status', 0)) != 1:
            logger.error(f"✗ {self.name} transaction {tx_hash} failed with status={status}")
            raise TransactionRevertedError(tx_hash, receipt)

        logger.info(f"✓ {self.name} transaction {tx_hash} confirmed in block {receipt['blockNumber']}")
        return receipt

    async def close(self) -> None:
        """Release the provider's cached HTTP sessions."""
        provider = self.w3.provider
        if hasattr(provider, 'disconnect'):
            await provider.disconnect()
