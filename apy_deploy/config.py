"""Environment configuration for deployment scripts.

All secrets and endpoints come from environment variables,
optionally loaded from an env file like ``alpha.env``:

.. code-block:: shell

    NETWORK=mainnet
    JSON_RPC_MAINNET=https://...
    POOL_MANAGER_MNEMONIC="..."
    ADDRESS_REGISTRY_PRIVATE_KEY=0x...
    CONFIRMATIONS=5
    DEPLOYMENTS_DIR=deployed_addresses

A missing required variable is a fatal startup error.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from apy_deploy.networks import NetworkConfiguration, canonical_network_name, get_network


logger = logging.getLogger(__name__)


#: Blocks to wait on public networks before a deployment step counts as done
DEFAULT_CONFIRMATIONS = 5


class MissingEnvironmentVariable(KeyError):
    """A required environment variable is not set."""

    def __init__(self, name: str, hint: str = ""):
        message = f"Environment variable {name} is not set"
        if hint:
            message += f": {hint}"
        super().__init__(message)
        self.name = name

    def __str__(self):
        return self.args[0]


def load_env_file(path: Optional[Path]) -> bool:
    """Load an env file into ``os.environ`` without overriding already set variables.

    :return:
        True if the file was found and loaded
    """
    if path is None:
        return False
    loaded = load_dotenv(path, override=False)
    if loaded:
        logger.info("Loaded environment from %s", path)
    else:
        logger.warning("Env file %s not found or empty", path)
    return loaded


def require_env(name: str, env: Mapping[str, str] = None, hint: str = "") -> str:
    """Read a required environment variable.

    :raise MissingEnvironmentVariable:
        Variable unset or empty
    """
    if env is None:
        env = os.environ
    value = env.get(name)
    if not value:
        raise MissingEnvironmentVariable(name, hint)
    return value


@dataclass(slots=True)
class DeploymentEnvironment:
    """Everything a deployment script reads from its environment."""

    #: Canonical network name
    network_name: str

    #: JSON-RPC endpoint
    json_rpc_url: str

    #: Where per-network address files live
    deployments_dir: Path

    #: Where compiled contract artifacts live
    artifacts_dir: Path

    #: Blocks to wait after each transaction
    confirmations: int = 0

    #: Pin fork tests to this block
    fork_block_number: Optional[int] = None

    #: Raw environment, used to look up per-role deployer keys
    env: Mapping[str, str] = field(default_factory=dict, repr=False)

    @property
    def network(self) -> NetworkConfiguration:
        return get_network(self.network_name)

    @classmethod
    def from_environment(cls, env: Mapping[str, str] = None) -> "DeploymentEnvironment":
        """Read the deployment environment.

        :raise MissingEnvironmentVariable:
            ``NETWORK`` or the matching ``JSON_RPC_<NETWORK>`` is missing
        """
        if env is None:
            env = os.environ

        network_name = canonical_network_name(require_env("NETWORK", env, "select the network, e.g. NETWORK=mainnet"))
        network = get_network(network_name)

        if network_name == "LOCALHOST":
            json_rpc_url = env.get("JSON_RPC_LOCALHOST") or "http://localhost:8545"
        else:
            json_rpc_url = require_env(f"JSON_RPC_{network_name}", env, f"JSON-RPC endpoint for {network_name}")

        default_confirmations = DEFAULT_CONFIRMATIONS if network.is_public else 0
        confirmations = int(env.get("CONFIRMATIONS") or default_confirmations)
        assert confirmations >= 0, f"Bad CONFIRMATIONS {confirmations}"

        fork_block_number = env.get("FORK_BLOCK_NUMBER")

        return cls(
            network_name=network_name,
            json_rpc_url=json_rpc_url,
            deployments_dir=Path(env.get("DEPLOYMENTS_DIR") or "deployed_addresses"),
            artifacts_dir=Path(env.get("ARTIFACTS_DIR") or "artifacts"),
            confirmations=confirmations,
            fork_block_number=int(fork_block_number) if fork_block_number else network.fork_block_number,
            env=dict(env),
        )
