"""Propose admin transactions to a Safe multisig.

After ownership transfer the proxy admins, the address registry and the pools
are owned by the admin Safe. Upgrades and registry changes are proposed to the
Safe transaction service and executed once enough owners have signed in the Safe UI.
"""

import logging

from eth_account import Account
from eth_typing import HexAddress
from hexbytes import HexBytes
from safe_eth.eth import EthereumClient
from safe_eth.safe import Safe
from safe_eth.safe.api.transaction_service_api.transaction_service_api import TransactionServiceApi
from safe_eth.safe.exceptions import CannotEstimateGas
from safe_eth.safe.safe_tx import SafeTx
from safe_eth.safe.signatures import signatures_to_bytes
from web3 import Web3
from web3.contract.contract import ContractFunction


logger = logging.getLogger(__name__)


class SafeTxProposalError(Exception):
    """The Safe transaction service did not accept the proposal."""


def create_safe_ethereum_client(web3: Web3) -> EthereumClient:
    """safe-eth-py wants its own client, point it at the same JSON-RPC endpoint."""
    return EthereumClient(web3.provider.endpoint_uri)


def get_safe(web3: Web3, safe_address: HexAddress | str) -> Safe:
    """Bind a deployed Safe, e.g. the ``AdminSafe`` address from the address store."""
    return Safe(Web3.to_checksum_address(safe_address), create_safe_ethereum_client(web3))


def propose_safe_transaction(
    safe: Safe,
    to: HexAddress | str,
    private_key: str,
    data: bytes | HexBytes,
    operation=0,
    value: int = 0,
    tx_service: TransactionServiceApi | None = None,
) -> SafeTx:
    """Sign a Safe transaction as one owner and post it for the other owners.

    :param safe:
        The Safe instance

    :param to:
        Target contract address

    :param private_key:
        Private key of a Safe owner, ``SAFE_OWNER_KEY``

    :param data:
        Contract call payload

    :param tx_service:
        Transaction service to post to. Created for the Safe's network if not given.

    :raise SafeTxProposalError:
        If we have a problem with the transaction service

    :return:
        Proposed Safe transaction. Wait for it with :py:func:`apy_deploy.safe.service.wait_for_safe_execution`.
    """
    assert isinstance(safe, Safe), f"Not safe: {safe}"
    assert type(value) is int, f"Value must be int, got {type(value)}"
    assert to.startswith("0x"), f"Address must be hex, got {to}"
    assert isinstance(data, bytes), f"Data must be bytes, got {type(data)}"
    assert private_key.startswith("0x"), "Private key must be hex"

    ethereum_client: EthereumClient = safe.ethereum_client

    try:
        safe_tx_gas = safe.estimate_tx_gas_with_safe(to=to, value=value, data=data, operation=operation)
    except CannotEstimateGas as e:
        logger.warning("Safe gas estimation failed, falling back to web3: %s", e)
        safe_tx_gas = safe.estimate_tx_gas_with_web3(to=to, value=value, data=data)

    safe_tx = SafeTx(
        ethereum_client,
        safe.address,
        to=to,
        value=value,
        data=data,
        operation=operation,
        safe_tx_gas=safe_tx_gas,
        base_gas=0,
        gas_price=0,
        gas_token=None,
        refund_receiver=None,
        safe_nonce=safe.retrieve_nonce(),
    )

    safe_tx_hash = safe_tx.safe_tx_hash
    logger.info("Proposing Safe tx %s to %s", safe_tx_hash.hex(), to)

    # Owners sign the raw safeTxHash
    signed = Account.from_key(private_key).unsafe_sign_hash(safe_tx_hash)
    safe_tx.signatures = signatures_to_bytes([(signed.v, signed.r, signed.s)])

    if tx_service is None:
        tx_service = TransactionServiceApi(network=ethereum_client.get_network(), ethereum_client=ethereum_client)

    posted = tx_service.post_transaction(safe_tx)
    if not posted:
        raise SafeTxProposalError(f"Could not post Safe transaction {safe_tx_hash.hex()} to {tx_service.base_url}")

    logger.info("USER ACTION REQUIRED: confirm Safe tx %s in the Safe UI", safe_tx_hash.hex())
    return safe_tx


def propose_contract_call(safe: Safe, bound_call: ContractFunction, private_key: str, tx_service: TransactionServiceApi | None = None) -> SafeTx:
    """Propose a contract call, e.g. ``proxy_admin.functions.upgrade(proxy, logic)``."""
    data = HexBytes(bound_call._encode_transaction_data())
    return propose_safe_transaction(safe, bound_call.address, private_key, data, tx_service=tx_service)
