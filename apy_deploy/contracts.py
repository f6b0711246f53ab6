"""Compiled contract artifacts.

Contracts are compiled by Hardhat outside this package.
Each artifact JSON carries ``abi`` and ``bytecode``.

Every contract we touch is a member of :py:class:`ContractName`, so a typo
in a contract name is an ``AttributeError`` at import time instead of a
failed lookup in the middle of a mainnet deployment.
"""

import enum
import json
import logging
from functools import lru_cache
from pathlib import Path
from typing import Type

from eth_typing import HexAddress
from web3 import Web3
from web3.contract import Contract


logger = logging.getLogger(__name__)


class ContractName(enum.Enum):
    """Contracts the deployment tooling knows about.

    Value is the artifact base name produced by the Solidity compiler.
    """

    proxy_admin = "ProxyAdmin"
    transparent_upgradeable_proxy = "TransparentUpgradeableProxy"

    address_registry_v2 = "AddressRegistryV2"
    address_registry_proxy = "AddressRegistryProxy"

    pool_token_v1 = "PoolToken"
    pool_token_v2 = "PoolTokenV2"
    pool_token_proxy = "PoolTokenProxy"

    meta_pool_token = "MetaPoolToken"
    meta_pool_token_proxy = "MetaPoolTokenProxy"

    pool_manager = "PoolManager"
    pool_manager_proxy = "PoolManagerProxy"

    tvl_manager = "TvlManager"
    oracle_adapter = "OracleAdapter"
    lp_account = "LpAccount"
    erc20_allocation = "Erc20Allocation"

    alpha_deployment = "AlphaDeployment"

    detailed_erc20 = "IDetailedERC20"
    flux_aggregator = "FluxAggregator"

    @property
    def artifact_name(self) -> str:
        return f"{self.value}.json"


class ArtifactNotFound(FileNotFoundError):
    """Compiled artifact is not in the artifacts directory. Did you compile the contracts?"""


@lru_cache(maxsize=128)
def _load_artifact(path: Path) -> dict:
    with path.open("rt", encoding="utf-8") as f:
        return json.load(f)


class ContractArtifacts:
    """Resolve :py:class:`ContractName` to ABI and bytecode.

    Supports both a flat directory of ``<Name>.json`` files and the Hardhat
    ``artifacts/contracts/<Name>.sol/<Name>.json`` layout.

    Example:

    .. code-block:: python

        artifacts = ContractArtifacts(Path("artifacts"))
        PoolManager = artifacts.get_contract(web3, ContractName.pool_manager)
    """

    def __init__(self, directory: Path):
        assert isinstance(directory, Path), f"Expected Path, got {type(directory)}"
        self.directory = directory

    def __repr__(self):
        return f"<ContractArtifacts {self.directory}>"

    def find_artifact_path(self, name: ContractName) -> Path:
        """Locate the artifact file.

        :raise ArtifactNotFound:
            No compiled artifact for this contract
        """
        assert isinstance(name, ContractName), f"Expected ContractName, got {name!r}"
        flat = self.directory / name.artifact_name
        if flat.exists():
            return flat

        # Hardhat output
        candidates = sorted(self.directory.glob(f"**/{name.artifact_name}"))
        if not candidates:
            raise ArtifactNotFound(f"No artifact {name.artifact_name} under {self.directory}")
        if len(candidates) > 1:
            logger.warning("Several artifacts for %s, using %s", name.value, candidates[0])
        return candidates[0]

    def get_abi(self, name: ContractName) -> list:
        artifact = _load_artifact(self.find_artifact_path(name))
        if isinstance(artifact, list):
            # Etherscan copy-pasted ABI
            return artifact
        return artifact["abi"]

    def get_bytecode(self, name: ContractName) -> str | None:
        artifact = _load_artifact(self.find_artifact_path(name))
        if isinstance(artifact, list):
            return None
        bytecode = artifact.get("bytecode")
        if isinstance(bytecode, dict):
            # Forge output
            bytecode = bytecode["object"]
        return bytecode

    def get_contract(self, web3: Web3, name: ContractName) -> Type[Contract]:
        """Get a Contract proxy class for deploying."""
        Contract = web3.eth.contract(abi=self.get_abi(name), bytecode=self.get_bytecode(name))
        Contract.contract_name = name
        return Contract

    def get_deployed_contract(self, web3: Web3, name: ContractName, address: HexAddress | str) -> Contract:
        """Get a Contract proxy object bound to an address."""
        assert address, f"get_deployed_contract() address was None for {name.value}"
        address = Web3.to_checksum_address(address)
        return web3.eth.contract(address=address, abi=self.get_abi(name))
