#!/usr/bin/env python3
"""Configuration management for the Optimism bridge.

This module provides type-safe configuration dataclasses with validation
for the bridge facade and the faucet. Configuration is loaded from
environment variables with sensible defaults where appropriate, but every
component receives it as an explicit object at construction time.
"""

import logging
import os
from dataclasses import asdict, dataclass, field
from typing import Any, ClassVar
from urllib.parse import urlparse

from web3 import Web3

from .exceptions import BridgeConfigurationError

# Get logger for this module
logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def _checksum(address: str, role: str) -> str:
    """Return the checksummed form of ``address`` or raise a configuration error."""
    if not address:
        raise BridgeConfigurationError(f"{role} address is required")
    if not Web3.is_address(address):
        raise BridgeConfigurationError(f"Invalid {role} address: {address}")
    return Web3.to_checksum_address(address)


def _checksum_fields(instance: Any, names: tuple[str, ...], optional: bool = False) -> None:
    for name in names:
        value = getattr(instance, name)
        if optional and value is None:
            continue
        # Frozen dataclass, so go through object.__setattr__
        object.__setattr__(instance, name, _checksum(value, name))


@dataclass(frozen=True, slots=True)
class ChainConfig:
    """Configuration for one side of the bridge.

    Attributes:
        name: Short label used in logs and errors ("L1" or "L2")
        rpc_url: HTTP(S) RPC endpoint
        chain_id: Expected chain ID; checked against the node when set
    """

    name: str
    rpc_url: str
    chain_id: int | None = None

    def __post_init__(self) -> None:
        """Validate chain configuration."""
        if not self.rpc_url:
            raise BridgeConfigurationError(f"{self.name} RPC URL is required ({self.name}_RPC_URL)")

        # ContractUtility speaks HTTP only
        parsed = urlparse(self.rpc_url)
        if parsed.scheme not in ('http', 'https'):
            raise BridgeConfigurationError(
                f"Invalid {self.name} RPC URL scheme: {parsed.scheme}. "
                "Expected http or https"
            )

        if self.chain_id is not None and self.chain_id <= 0:
            raise BridgeConfigurationError(
                f"{self.name} chain ID must be positive, got {self.chain_id}"
            )


@dataclass(frozen=True, slots=True)
class L1Contracts:
    """Addresses of the Optimism system contracts deployed on L1.

    The three legacy roles retired by the Bedrock upgrade are not settable
    and always hold the zero address.
    """

    address_manager: str
    l1_cross_domain_messenger: str
    l1_standard_bridge: str
    optimism_portal: str
    l2_output_oracle: str
    l1_erc721_bridge: str | None = None
    l1_erc1155_bridge: str | None = None
    state_commitment_chain: str = field(default=ZERO_ADDRESS, init=False)
    canonical_transaction_chain: str = field(default=ZERO_ADDRESS, init=False)
    bond_manager: str = field(default=ZERO_ADDRESS, init=False)

    REQUIRED_ROLES: ClassVar[tuple[str, ...]] = (
        'address_manager',
        'l1_cross_domain_messenger',
        'l1_standard_bridge',
        'optimism_portal',
        'l2_output_oracle',
    )
    OPTIONAL_ROLES: ClassVar[tuple[str, ...]] = ('l1_erc721_bridge', 'l1_erc1155_bridge')
    LEGACY_ROLES: ClassVar[tuple[str, ...]] = (
        'state_commitment_chain',
        'canonical_transaction_chain',
        'bond_manager',
    )

    def __post_init__(self) -> None:
        _checksum_fields(self, self.REQUIRED_ROLES)
        _checksum_fields(self, self.OPTIONAL_ROLES, optional=True)

    def to_dict(self) -> dict[str, str | None]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class L2Contracts:
    """Addresses of the L2 contracts; defaults are the Bedrock predeploys."""

    l2_cross_domain_messenger: str = "0x4200000000000000000000000000000000000007"
    l2_standard_bridge: str = "0x4200000000000000000000000000000000000010"
    l2_erc721_bridge: str = "0x4200000000000000000000000000000000000014"
    l2_to_l1_message_passer: str = "0x4200000000000000000000000000000000000016"
    l2_erc1155_bridge: str | None = None

    def __post_init__(self) -> None:
        _checksum_fields(self, (
            'l2_cross_domain_messenger',
            'l2_standard_bridge',
            'l2_erc721_bridge',
            'l2_to_l1_message_passer',
        ))
        _checksum_fields(self, ('l2_erc1155_bridge',), optional=True)


@dataclass(frozen=True, slots=True)
class MessengerContracts:
    """Contract sets used by the two messenger views.

    Attributes:
        status_contracts: L1 addresses used to look up message status
        transfer_contracts: L1 addresses used to submit transfers
        l2: L2 addresses, shared by both views
    """

    status_contracts: L1Contracts
    transfer_contracts: L1Contracts
    l2: L2Contracts = field(default_factory=L2Contracts)

    @classmethod
    def single(cls, contracts: L1Contracts, l2: L2Contracts | None = None) -> "MessengerContracts":
        """Use one address set for both views."""
        return cls(status_contracts=contracts, transfer_contracts=contracts, l2=l2 or L2Contracts())


@dataclass(frozen=True, slots=True)
class RelayConfig:
    """Timing of inclusion and relay waits."""
    poll_interval: float = 5  # seconds between status polls
    relay_timeout: float = 900  # bound on the relay wait
    receipt_timeout: float = 120  # bound on the inclusion wait
    request_timeout: int = 30  # HTTP request timeout in seconds

    def __post_init__(self) -> None:
        """Validate relay configuration."""
        if self.poll_interval <= 0:
            raise BridgeConfigurationError(f"Poll interval must be positive, got {self.poll_interval}")
        if self.poll_interval > 300:
            raise BridgeConfigurationError(f"Poll interval too long (max 300s), got {self.poll_interval}")

        if self.relay_timeout <= 0:
            raise BridgeConfigurationError(f"Relay timeout must be positive, got {self.relay_timeout}")
        if self.relay_timeout < self.poll_interval:
            raise BridgeConfigurationError(
                f"Relay timeout ({self.relay_timeout}s) shorter than poll interval ({self.poll_interval}s)"
            )

        if self.receipt_timeout <= 0:
            raise BridgeConfigurationError(f"Receipt timeout must be positive, got {self.receipt_timeout}")

        if self.request_timeout <= 0:
            raise BridgeConfigurationError(f"Request timeout must be positive, got {self.request_timeout}")
        if self.request_timeout > 120:
            raise BridgeConfigurationError(f"Request timeout too long (max 120s), got {self.request_timeout}")


def _env(name: str, hint: str = "") -> str:
    value = os.environ.get(name, "")
    if not value:
        message = f"{name} environment variable is required."
        raise BridgeConfigurationError(f"{message} {hint}".strip())
    return value


def _env_int(name: str) -> int | None:
    value = os.environ.get(name)
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        raise BridgeConfigurationError(f"{name} must be an integer, got {value!r}") from None


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        raise BridgeConfigurationError(f"{name} must be a number, got {value!r}") from None


# Environment variable for each L1 contract role
L1_CONTRACT_ENV: dict[str, str] = {
    'address_manager': "ADDRESS_MANAGER",
    'l1_cross_domain_messenger': "L1_CROSS_DOMAIN_MESSENGER",
    'l1_standard_bridge': "L1_STANDARD_BRIDGE",
    'optimism_portal': "OPTIMISM_PORTAL",
    'l2_output_oracle': "L2_OUTPUT_ORACLE",
    'l1_erc721_bridge': "L1_ERC721_BRIDGE",
    'l1_erc1155_bridge': "L1_ERC1155_BRIDGE",
}


@dataclass(frozen=True, slots=True)
class BridgeConfig:
    """Main configuration for the bridge facade.

    Attributes:
        l1: L1 chain configuration
        l2: L2 chain configuration
        contracts: Contract address sets of both messenger views
        relay: Inclusion and relay wait settings
    """

    l1: ChainConfig
    l2: ChainConfig
    contracts: MessengerContracts
    relay: RelayConfig = field(default_factory=RelayConfig)

    def __post_init__(self) -> None:
        if (
            self.l1.chain_id is not None
            and self.l1.chain_id == self.l2.chain_id
        ):
            raise BridgeConfigurationError(
                f"L1 and L2 chain IDs must differ, both are {self.l1.chain_id}"
            )

    @classmethod
    def from_env(cls) -> "BridgeConfig":
        """Load configuration from environment variables.

        Returns:
            BridgeConfig instance with loaded values

        Raises:
            BridgeConfigurationError: If required environment variables are missing or invalid
        """
        l1 = ChainConfig(
            name="L1",
            rpc_url=_env("L1_RPC_URL", "This is the RPC endpoint of the settlement chain."),
            chain_id=_env_int("L1_CHAIN_ID"),
        )
        l2 = ChainConfig(
            name="L2",
            rpc_url=_env("L2_RPC_URL", "This is the RPC endpoint of the rollup."),
            chain_id=_env_int("L2_CHAIN_ID"),
        )

        status_values: dict[str, str | None] = {}
        for role, env_name in L1_CONTRACT_ENV.items():
            if role in L1Contracts.OPTIONAL_ROLES:
                status_values[role] = os.environ.get(env_name) or None
            else:
                status_values[role] = _env(env_name)
        status_contracts = L1Contracts(**status_values)

        # Transfer view falls back to the status addresses role by role
        transfer_values = {
            role: os.environ.get(f"TRANSFER_{env_name}") or status_values[role]
            for role, env_name in L1_CONTRACT_ENV.items()
        }
        transfer_contracts = (
            status_contracts
            if transfer_values == status_values
            else L1Contracts(**transfer_values)
        )

        l2_contracts = L2Contracts(
            l2_erc1155_bridge=os.environ.get("L2_ERC1155_BRIDGE") or None
        )

        relay = RelayConfig(
            poll_interval=_env_float("RELAY_POLL_INTERVAL", 5),
            relay_timeout=_env_float("RELAY_TIMEOUT", 900),
            receipt_timeout=_env_float("RECEIPT_TIMEOUT", 120),
            request_timeout=int(_env_float("REQUEST_TIMEOUT", 30)),
        )

        return cls(
            l1=l1,
            l2=l2,
            contracts=MessengerContracts(
                status_contracts=status_contracts,
                transfer_contracts=transfer_contracts,
                l2=l2_contracts,
            ),
            relay=relay,
        )

    def log_config(self) -> None:
        """Log the configuration in a readable format for debugging."""
        logger.info("=" * 60)
        logger.info("Optimism Bridge Configuration")
        logger.info("=" * 60)

        for chain in (self.l1, self.l2):
            logger.info(f"{chain.name} Chain:")
            logger.info(f"  RPC URL: {chain.rpc_url}")
            if chain.chain_id:
                logger.info(f"  Expected Chain ID: {chain.chain_id}")

        logger.info("Status Contracts:")
        for role, address in self.contracts.status_contracts.to_dict().items():
            if address:
                logger.info(f"  {role}: {address}")

        if self.contracts.transfer_contracts is not self.contracts.status_contracts:
            logger.info("Transfer Contracts (overridden):")
            for role, address in self.contracts.transfer_contracts.to_dict().items():
                if address:
                    logger.info(f"  {role}: {address}")

        logger.info("Relay Settings:")
        logger.info(f"  Poll Interval: {self.relay.poll_interval} seconds")
        logger.info(f"  Relay Timeout: {self.relay.relay_timeout} seconds")
        logger.info(f"  Receipt Timeout: {self.relay.receipt_timeout} seconds")
        logger.info(f"  Request Timeout: {self.relay.request_timeout} seconds")
        logger.info("=" * 60)


@dataclass(frozen=True, slots=True)
class FaucetConfig:
    """Configuration for the L1 faucet.

    Attributes:
        l1: L1 chain the faucet pays out on
        private_key: Key of the faucet account
        receipt_timeout: Bound on the wait for the payout receipt
    """

    l1: ChainConfig
    private_key: str
    receipt_timeout: float = 120

    def __post_init__(self) -> None:
        if not self.private_key:
            raise BridgeConfigurationError("Faucet private key is required (FAUCET_PRIVATE_KEY)")

    @classmethod
    def from_env(cls) -> "FaucetConfig":
        return cls(
            l1=ChainConfig(
                name="L1",
                rpc_url=_env("L1_RPC_URL"),
                chain_id=_env_int("L1_CHAIN_ID"),
            ),
            private_key=_env("FAUCET_PRIVATE_KEY", "This account funds the receivers."),
            receipt_timeout=_env_float("RECEIPT_TIMEOUT", 120),
        )

    def __repr__(self) -> str:
        return f"FaucetConfig(l1={self.l1!r}, private_key='[REDACTED]')"
