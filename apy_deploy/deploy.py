"""Deploy contracts and send transactions, one at a time.

All helpers here block until the transaction is mined and has
the requested number of confirmations, so that nonces stay ordered and
later steps can rely on the addresses produced by earlier ones.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Type

from eth_account.signers.local import LocalAccount
from hexbytes import HexBytes
from web3 import Web3
from web3.contract import Contract
from web3.contract.contract import ContractFunction

from apy_deploy.confirmation import TransactionReverted, wait_and_assert_success
from apy_deploy.gas import GasPriceSuggestion, apply_gas


logger = logging.getLogger(__name__)


class ContractDeploymentFailed(Exception):
    """Did not get successful tx receipt from a deployment."""

    def __init__(self, tx_hash: HexBytes, msg: str):
        super().__init__(msg)
        self.tx_hash = tx_hash


def _send(
    web3: Web3,
    buildable,
    sender: LocalAccount | str,
    gas_price: Optional[GasPriceSuggestion],
    gas: Optional[int],
) -> HexBytes:
    """Sign locally or ask the node to sign for an unlocked account."""
    if isinstance(sender, LocalAccount):
        tx_params = {
            "from": sender.address,
            "nonce": web3.eth.get_transaction_count(sender.address),
            "chainId": web3.eth.chain_id,
        }
        if gas:
            tx_params["gas"] = gas
        if gas_price:
            apply_gas(tx_params, gas_price)
        tx_data = buildable.build_transaction(tx_params)
        signed_tx = sender.sign_transaction(tx_data)
        return web3.eth.send_raw_transaction(signed_tx.raw_transaction)
    else:
        # Unlocked account on a test node or an impersonated fork account
        tx_params = {"from": Web3.to_checksum_address(sender)}
        if gas:
            tx_params["gas"] = gas
        if gas_price:
            apply_gas(tx_params, gas_price)
        return buildable.transact(tx_params)


def deploy_contract(
    web3: Web3,
    contract: Type[Contract],
    deployer: LocalAccount | str,
    *constructor_args,
    gas_price: Optional[GasPriceSuggestion] = None,
    gas: Optional[int] = None,
    confirmations: int = 0,
) -> Contract:
    """Deploy a contract and wait until it is confirmed.

    Example:

    .. code-block:: python

        ProxyAdmin = artifacts.get_contract(web3, ContractName.proxy_admin)
        proxy_admin = deploy_contract(web3, ProxyAdmin, deployer, confirmations=5)

    :param contract:
        Contract proxy class with bytecode, see :py:meth:`apy_deploy.contracts.ContractArtifacts.get_contract`

    :param deployer:
        ``LocalAccount`` to sign locally, or an address unlocked on the node

    :param confirmations:
        Extra blocks to wait after the deployment is mined

    :raise ContractDeploymentFailed:
        In the case we could not deploy the contract.
    """
    contract_name = getattr(contract, "contract_name", None)
    contract_label = contract_name.value if contract_name else "contract"

    tx_hash = _send(web3, contract.constructor(*constructor_args), deployer, gas_price, gas)
    logger.info("Deploying %s, tx %s", contract_label, tx_hash.hex())

    try:
        receipt = wait_and_assert_success(web3, tx_hash, confirmation_block_count=confirmations)
    except TransactionReverted as e:
        raise ContractDeploymentFailed(tx_hash, f"Contract {contract_label} deployment failed with args {constructor_args}, tx hash is {tx_hash.hex()}: {e.revert_reason}") from e

    instance = contract(address=receipt["contractAddress"])
    logger.info("%s deployed at %s, gas used %d", contract_label, instance.address, receipt["gasUsed"])
    return instance


def transact_and_wait(
    web3: Web3,
    bound_call: ContractFunction,
    sender: LocalAccount | str,
    gas_price: Optional[GasPriceSuggestion] = None,
    gas: Optional[int] = None,
    confirmations: int = 0,
) -> dict:
    """Send a state-changing contract call and wait for it.

    :raise apy_deploy.confirmation.TransactionReverted:
        The call reverted

    :return:
        Transaction receipt
    """
    tx_hash = _send(web3, bound_call, sender, gas_price, gas)
    logger.info("Calling %s, tx %s", bound_call.fn_name, tx_hash.hex())
    return wait_and_assert_success(web3, tx_hash, confirmation_block_count=confirmations)


@dataclass(slots=True)
class ProxyDeployment:
    """An upgradeable contract: admin, logic and the proxy users talk to."""

    proxy_admin: Contract
    logic: Contract
    proxy: Contract

    def get_addresses(self, prefix: str) -> dict[str, str]:
        """Address store entries using the naming convention of the deployment scripts.

        ``prefix="PoolManager"`` gives ``PoolManagerProxyAdmin``, ``PoolManager``, ``PoolManagerProxy``.
        """
        return {
            f"{prefix}ProxyAdmin": self.proxy_admin.address,
            prefix: self.logic.address,
            f"{prefix}Proxy": self.proxy.address,
        }


def deploy_proxy_stack(
    web3: Web3,
    proxy_admin_contract: Type[Contract],
    logic_contract: Type[Contract],
    proxy_contract: Type[Contract],
    deployer: LocalAccount | str,
    *proxy_args,
    gas_price: Optional[GasPriceSuggestion] = None,
    confirmations: int = 0,
) -> ProxyDeployment:
    """Deploy ProxyAdmin, logic and proxy in this order.

    The proxy constructor receives ``(logic, proxy_admin, *proxy_args)``.
    """
    proxy_admin = deploy_contract(web3, proxy_admin_contract, deployer, gas_price=gas_price, confirmations=confirmations)
    logic = deploy_contract(web3, logic_contract, deployer, gas_price=gas_price, confirmations=confirmations)
    proxy = deploy_contract(web3, proxy_contract, deployer, logic.address, proxy_admin.address, *proxy_args, gas_price=gas_price, confirmations=confirmations)
    return ProxyDeployment(proxy_admin=proxy_admin, logic=logic, proxy=proxy)
