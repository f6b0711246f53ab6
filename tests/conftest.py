"""Shared fixtures: in-process test chain and a scratch deployments directory."""

import json
import secrets
from pathlib import Path

import pytest
from eth_account import Account
from eth_account.signers.local import LocalAccount
from hexbytes import HexBytes
from web3 import EthereumTesterProvider, Web3

from apy_deploy.address_store import DeployedAddressStore


#: Init code deploying a contract that answers 42 to any call
ANSWER_BYTECODE = "0x600a600c600039600a6000f3602a60005260206000f3"

ANSWER_ABI = [
    {
        "inputs": [],
        "name": "answer",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    }
]


@pytest.fixture
def tester_provider():
    # https://web3py.readthedocs.io/en/stable/examples.html#contract-unit-tests-in-python
    return EthereumTesterProvider()


@pytest.fixture
def eth_tester(tester_provider):
    return tester_provider.ethereum_tester


@pytest.fixture
def web3(tester_provider):
    """Set up a local unit testing blockchain."""
    return Web3(tester_provider)


@pytest.fixture()
def deployer(web3) -> str:
    """Unlocked test account with ETH."""
    return web3.eth.accounts[0]


@pytest.fixture()
def hot_wallet(web3, deployer) -> LocalAccount:
    """Local signer funded with 10 ETH."""
    account = Account.from_key(HexBytes(secrets.token_bytes(32)))
    tx_hash = web3.eth.send_transaction({"from": deployer, "to": account.address, "value": 10 * 10**18})
    web3.eth.wait_for_transaction_receipt(tx_hash)
    return account


@pytest.fixture()
def deployments_dir(tmp_path) -> Path:
    return tmp_path / "deployed_addresses"


@pytest.fixture()
def store(deployments_dir) -> DeployedAddressStore:
    return DeployedAddressStore(deployments_dir)


@pytest.fixture()
def answer_artifact() -> dict:
    """Compiler output of the answer contract."""
    return {"abi": ANSWER_ABI, "bytecode": ANSWER_BYTECODE}


@pytest.fixture()
def artifacts_dir(tmp_path) -> Path:
    """Flat artifacts directory with the answer contract stored as ProxyAdmin."""
    path = tmp_path / "artifacts"
    path.mkdir()
    with (path / "ProxyAdmin.json").open("wt") as f:
        json.dump({"contractName": "ProxyAdmin", "abi": ANSWER_ABI, "bytecode": ANSWER_BYTECODE}, f)
    return path
