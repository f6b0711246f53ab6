"""Address registry lookups.

The on-chain ``AddressRegistryV2`` maps ``bytes32`` role identifiers to
the current address of each protocol contract and Safe. Contracts
look each other up through it instead of hardcoding addresses, and so do we.

Registry ABI we depend on:

- ``registerAddress(bytes32 id, address addr)``
- ``registerMultipleAddresses(bytes32[] ids, address[] addrs)``
- ``getAddress(bytes32 id) returns (address)``, reverts with ``Missing address``
- ``getIds() returns (bytes32[])``

An unregistered identifier is a sequencing bug upstream, a step that should
have registered it was skipped, so lookups are never retried.
"""

import enum
import logging
from typing import Iterable, Optional, Sequence

from eth_account.signers.local import LocalAccount
from eth_typing import ChecksumAddress, HexAddress
from eth_utils import to_checksum_address
from web3 import Web3
from web3.contract import Contract
from web3.exceptions import ContractLogicError

from apy_deploy.contracts import ContractArtifacts, ContractName
from apy_deploy.deploy import transact_and_wait
from apy_deploy.gas import GasPriceSuggestion
from apy_deploy.identifier import decode_bytes32, encode_bytes32


logger = logging.getLogger(__name__)


#: Revert string of AddressRegistryV2.getAddress() for unknown ids
MISSING_ADDRESS_REVERT = "Missing address"

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


class MissingAddressError(LookupError):
    """Registry has no address for the identifier.

    The message carries the registry revert string ``Missing address``.
    """

    def __init__(self, identifier: bytes, registry_address: Optional[str] = None):
        self.identifier = identifier
        self.registry_address = registry_address
        try:
            self.name = decode_bytes32(identifier)
        except (UnicodeDecodeError, AssertionError):
            self.name = None
        label = self.name if self.name is not None else "0x" + bytes(identifier).hex()
        super().__init__(f"{MISSING_ADDRESS_REVERT}: {label} is not registered in address registry {registry_address}")


class RegistryId(enum.Enum):
    """Role identifiers registered in the address registry.

    Value is the human readable id string that gets encoded to ``bytes32``.
    """

    dai_pool = "daiPool"
    usdc_pool = "usdcPool"
    usdt_pool = "usdtPool"
    dai_demo_pool = "daiDemoPool"
    usdc_demo_pool = "usdcDemoPool"
    usdt_demo_pool = "usdtDemoPool"
    lp_account = "lpAccount"
    mapt = "mApt"
    oracle_adapter = "oracleAdapter"
    tvl_manager = "tvlManager"
    pool_manager = "poolManager"
    erc20_allocation = "erc20Allocation"
    lp_safe = "lpSafe"
    admin_safe = "adminSafe"
    emergency_safe = "emergencySafe"

    @property
    def identifier(self) -> bytes:
        return encode_bytes32(self.value)

    @property
    def contract_name(self) -> Optional[ContractName]:
        """Contract ABI to use for the registered address, ``None`` for Safes."""
        return REGISTERED_CONTRACTS.get(self)


#: Which ABI to bind a registered address to
REGISTERED_CONTRACTS: dict[RegistryId, ContractName] = {
    RegistryId.dai_pool: ContractName.pool_token_v2,
    RegistryId.usdc_pool: ContractName.pool_token_v2,
    RegistryId.usdt_pool: ContractName.pool_token_v2,
    RegistryId.dai_demo_pool: ContractName.pool_token_v2,
    RegistryId.usdc_demo_pool: ContractName.pool_token_v2,
    RegistryId.usdt_demo_pool: ContractName.pool_token_v2,
    RegistryId.lp_account: ContractName.lp_account,
    RegistryId.mapt: ContractName.meta_pool_token,
    RegistryId.oracle_adapter: ContractName.oracle_adapter,
    RegistryId.tvl_manager: ContractName.tvl_manager,
    RegistryId.pool_manager: ContractName.pool_manager,
    RegistryId.erc20_allocation: ContractName.erc20_allocation,
}


def _as_identifier(role: str | RegistryId | bytes) -> bytes:
    if isinstance(role, RegistryId):
        return role.identifier
    if isinstance(role, str):
        return encode_bytes32(role)
    assert isinstance(role, (bytes, bytearray)) and len(role) == 32, f"Expected 32 byte identifier, got {role!r}"
    return bytes(role)


def resolve_address(registry: Contract, identifier: bytes) -> ChecksumAddress:
    """Look up an address by its raw ``bytes32`` identifier.

    :param registry:
        Address registry contract instance

    :raise MissingAddressError:
        Identifier is not registered
    """
    assert isinstance(identifier, (bytes, bytearray)) and len(identifier) == 32, f"Expected 32 byte identifier, got {identifier!r}"
    try:
        address = registry.functions.getAddress(identifier).call()
    except ContractLogicError as e:
        if MISSING_ADDRESS_REVERT in str(e):
            raise MissingAddressError(identifier, registry.address) from e
        raise

    if address == ZERO_ADDRESS:
        raise MissingAddressError(identifier, registry.address)

    return to_checksum_address(address)


def resolve_named(registry: Contract, role: str | RegistryId) -> ChecksumAddress:
    """Look up an address by role name.

    Example:

    .. code-block:: python

        pool_manager = resolve_named(registry, "poolManager")
        lp_safe = resolve_named(registry, RegistryId.lp_safe)
    """
    identifier = _as_identifier(role)
    address = resolve_address(registry, identifier)
    logger.debug("Resolved %s to %s", decode_bytes32(identifier), address)
    return address


def register_address(
    web3: Web3,
    registry: Contract,
    role: str | RegistryId,
    address: HexAddress | str,
    sender: LocalAccount | str,
    gas_price: Optional[GasPriceSuggestion] = None,
    confirmations: int = 0,
) -> dict:
    """Register an address under a role id. Must be sent by the registry owner.

    :return:
        Transaction receipt
    """
    identifier = _as_identifier(role)
    address = to_checksum_address(address)
    logger.info("Registering %s as %s", address, decode_bytes32(identifier))
    call = registry.functions.registerAddress(identifier, address)
    return transact_and_wait(web3, call, sender, gas_price=gas_price, confirmations=confirmations)


def register_multiple_addresses(
    web3: Web3,
    registry: Contract,
    entries: dict[str | RegistryId, HexAddress | str],
    sender: LocalAccount | str,
    gas_price: Optional[GasPriceSuggestion] = None,
    confirmations: int = 0,
) -> dict:
    """Register several role ids in one transaction.

    :return:
        Transaction receipt
    """
    assert entries, "Nothing to register"
    ids = [_as_identifier(role) for role in entries]
    addresses = [to_checksum_address(a) for a in entries.values()]
    logger.info("Registering %d addresses: %s", len(ids), ", ".join(decode_bytes32(i) for i in ids))
    call = registry.functions.registerMultipleAddresses(ids, addresses)
    return transact_and_wait(web3, call, sender, gas_price=gas_price, confirmations=confirmations)


def get_registered_ids(registry: Contract) -> list[str]:
    """All role names currently in the registry."""
    return [decode_bytes32(i) for i in registry.functions.getIds().call()]


def check_registered(registry: Contract, roles: Iterable[str | RegistryId]) -> list[str]:
    """Find which of the given roles are not registered.

    Used by post-deployment checks to report every missing entry at once
    instead of failing on the first one.

    :return:
        Names of missing roles, empty if all are present
    """
    missing = []
    for role in roles:
        try:
            resolve_address(registry, _as_identifier(role))
        except MissingAddressError as e:
            missing.append(e.name)
    return missing


def get_registered_contract(
    web3: Web3,
    artifacts: ContractArtifacts,
    registry: Contract,
    registry_id: RegistryId,
) -> Contract:
    """Resolve a role and bind its address to the matching contract ABI.

    :raise ValueError:
        Role has no contract ABI, e.g. a Safe
    """
    contract_name = registry_id.contract_name
    if contract_name is None:
        raise ValueError(f"{registry_id.value} is not a protocol contract")
    address = resolve_named(registry, registry_id)
    return artifacts.get_deployed_contract(web3, contract_name, address)


def get_address_registry(web3: Web3, artifacts: ContractArtifacts, address: HexAddress | str) -> Contract:
    """Bind the registry proxy address to the AddressRegistryV2 ABI."""
    return artifacts.get_deployed_contract(web3, ContractName.address_registry_v2, address)


def format_registry(registry: Contract, names: Sequence[str] | None = None) -> dict[str, str]:
    """Role name -> address for every registered role, for status output."""
    if names is None:
        names = get_registered_ids(registry)
    return {name: resolve_named(registry, name) for name in names}
