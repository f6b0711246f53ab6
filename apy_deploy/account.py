"""Deployer accounts.

Every subsystem has its own deployer key: the address registry, mAPT,
pool manager and TVL manager are deployed and owned by different accounts.
Keys are given as ``<ROLE>_PRIVATE_KEY`` or ``<ROLE>_MNEMONIC`` environment variables.
"""

import logging
import os
from typing import Any, Mapping

from eth_account import Account
from eth_account.signers.local import LocalAccount
from eth_typing import ChecksumAddress
from eth_utils import is_address, to_checksum_address

from apy_deploy.config import MissingEnvironmentVariable


logger = logging.getLogger(__name__)


def get_address(account_like: Any) -> ChecksumAddress:
    """Get a checksummed address out of an account-like object.

    Accepts ``LocalAccount``, web3 ``Contract``, anything else with an
    ``address`` attribute, or a plain hex string.

    :raise TypeError:
        Argument type not recognised
    """
    if isinstance(account_like, str):
        if not is_address(account_like):
            raise TypeError(f"get_address: not an address: {account_like!r}")
        return to_checksum_address(account_like)

    address = getattr(account_like, "address", None)
    if isinstance(address, str):
        return to_checksum_address(address)

    raise TypeError(f"get_address: argument type is not recognized: {type(account_like)}")


def load_deployer(role: str, env: Mapping[str, str] = None) -> LocalAccount:
    """Create the deployer account for a role.

    Example:

    .. code-block:: python

        # Reads POOL_MANAGER_PRIVATE_KEY or POOL_MANAGER_MNEMONIC
        deployer = load_deployer("pool_manager")

    :param role:
        Role name, e.g. ``pool_manager`` or ``ADDRESS_REGISTRY``

    :raise MissingEnvironmentVariable:
        Neither a private key nor a mnemonic is set for the role
    """
    if env is None:
        env = os.environ

    prefix = role.upper()
    private_key = env.get(f"{prefix}_PRIVATE_KEY")
    mnemonic = env.get(f"{prefix}_MNEMONIC")

    if private_key:
        account = Account.from_key(private_key)
    elif mnemonic:
        Account.enable_unaudited_hdwallet_features()
        account = Account.from_mnemonic(mnemonic)
    else:
        raise MissingEnvironmentVariable(f"{prefix}_PRIVATE_KEY", f"or {prefix}_MNEMONIC, needed to sign as {role}")

    logger.info("Deployer for %s is %s", role, account.address)
    return account
