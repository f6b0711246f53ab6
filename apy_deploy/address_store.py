"""Deployed contract addresses on disk.

Deployment scripts run as separate processes, sometimes days apart.
Each script writes the addresses it produced here and later scripts
read their dependencies back instead of redeploying them.

Layout: one JSON file per network, holding a flat object:

.. code-block:: text

    deployed_addresses/
        mainnet.json    {"PoolManager": "0x...", "PoolManagerProxy": "0x..."}
        kovan.json

Keys are never renamed or deleted by this module. Writes are
read-modify-write, replacing the file atomically, without file locking:
run one deployment script per network at a time.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping, Optional

from atomicwrites import atomic_write
from eth_typing import ChecksumAddress, HexAddress
from eth_utils import is_address, to_checksum_address

from apy_deploy.networks import canonical_network_name


logger = logging.getLogger(__name__)


class DeployedAddressNotFound(KeyError):
    """A dependency address was never persisted.

    The script asking for it cannot proceed: a prerequisite deployment step was skipped.
    """

    def __init__(self, contract_key: str, network_name: str, path: Path):
        super().__init__(f"Deployed address not found: {contract_key} on {network_name}, looked up from {path}")
        self.contract_key = contract_key
        self.network_name = network_name
        self.path = path

    def __str__(self):
        return self.args[0]


@dataclass(frozen=True, slots=True)
class DeployedAddressRecord:
    """One contract address on one network."""

    #: Canonical upper case network name
    network_name: str

    #: Human readable name, e.g. ``PoolManagerProxy``
    contract_key: str

    #: Checksummed address
    address: ChecksumAddress


class DeployedAddressStore:
    """Per-network JSON key-value store of deployed contract addresses.

    Example:

    .. code-block:: python

        store = DeployedAddressStore(Path("deployed_addresses"))
        store.update("MAINNET", {"PoolManagerProxy": proxy.address})

        # In a later script
        proxy_address = store.get("PoolManagerProxy", "MAINNET")
    """

    def __init__(self, deployments_dir: Path, logger: Optional[logging.Logger] = None):
        assert isinstance(deployments_dir, Path), f"Expected Path, got {type(deployments_dir)}"
        self.deployments_dir = deployments_dir
        self.logger = logger if logger is not None else logging.getLogger(__name__)

    def __repr__(self):
        return f"<DeployedAddressStore at {self.deployments_dir}>"

    def get_path(self, network_name: str) -> Path:
        """JSON file holding the addresses of a network."""
        return self.deployments_dir / f"{canonical_network_name(network_name).lower()}.json"

    def read(self, network_name: str) -> dict[str, str]:
        """Read all addresses of a network.

        :return:
            Contract key -> address. Empty if nothing has been deployed yet.
        """
        path = self.get_path(network_name)
        if not path.exists():
            return {}

        with path.open("rt", encoding="utf-8") as f:
            data = json.load(f)

        assert isinstance(data, dict), f"{path} must contain a JSON object, got {type(data)}"
        return data

    def update(self, network_name: str, patch: Mapping[str, HexAddress | str]) -> dict[str, str]:
        """Merge new addresses into the network file.

        Keys not in ``patch`` are kept as is. Keys in ``patch`` overwrite
        earlier values.

        :param network_name:
            E.g. ``MAINNET``

        :param patch:
            Contract key -> address

        :raise OSError:
            Could not write the file. The earlier file content is kept and the caller decides whether to abort.

        :return:
            Full content written to disk
        """
        network_name = canonical_network_name(network_name)
        for key, address in patch.items():
            assert isinstance(key, str) and key, f"Bad contract key {key!r}"
            assert is_address(address), f"Not an address for {key}: {address!r}"

        data = self.read(network_name)
        data.update({key: to_checksum_address(address) for key, address in patch.items()})

        path = self.get_path(network_name)
        path.parent.mkdir(parents=True, exist_ok=True)

        # A failed write leaves the previous file in place
        with atomic_write(path, mode="w", overwrite=True, encoding="utf-8") as f:
            json.dump(data, f, indent=2, sort_keys=True)
            f.write("\n")

        for key in patch:
            self.logger.info("Stored %s: %s on %s", key, data[key], network_name)

        return data

    def get(self, contract_key: str, network_name: str) -> ChecksumAddress:
        """Get a deployed address.

        :raise DeployedAddressNotFound:
            The key has never been stored for this network
        """
        network_name = canonical_network_name(network_name)
        data = self.read(network_name)
        address = data.get(contract_key)
        if address is None:
            raise DeployedAddressNotFound(contract_key, network_name, self.get_path(network_name))
        return to_checksum_address(address)

    def get_optional(self, contract_key: str, network_name: str) -> Optional[ChecksumAddress]:
        """Get a deployed address, tolerating a missing one.

        Only use where the caller genuinely can continue without the contract,
        e.g. status reports. Deployment steps should use :py:meth:`get`.
        """
        try:
            return self.get(contract_key, network_name)
        except DeployedAddressNotFound as e:
            self.logger.warning("Tolerating missing address: %s", e)
            return None

    def has(self, contract_key: str, network_name: str) -> bool:
        return contract_key in self.read(network_name)

    def records(self, network_name: str) -> Iterable[DeployedAddressRecord]:
        """Iterate all stored addresses of a network as records, sorted by key."""
        network_name = canonical_network_name(network_name)
        for key, address in sorted(self.read(network_name).items()):
            yield DeployedAddressRecord(network_name, key, to_checksum_address(address))
