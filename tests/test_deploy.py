"""Contract deployment on EthereumTester."""

import json
from pathlib import Path
from unittest.mock import patch

import pytest
from eth_account.signers.local import LocalAccount
from hexbytes import HexBytes
from web3 import Web3

from apy_deploy.confirmation import TransactionReverted
from apy_deploy.contracts import ArtifactNotFound, ContractArtifacts, ContractName
from apy_deploy.deploy import ContractDeploymentFailed, deploy_contract, deploy_proxy_stack
from apy_deploy.gas import get_gas_price


#: Constructor arguments are appended to the init code and ignored by it
PROXY_CONSTRUCTOR = [
    {
        "inputs": [
            {"internalType": "address", "name": "logic", "type": "address"},
            {"internalType": "address", "name": "proxyAdmin", "type": "address"},
        ],
        "stateMutability": "nonpayable",
        "type": "constructor",
    }
]


@pytest.fixture()
def artifacts(artifacts_dir) -> ContractArtifacts:
    return ContractArtifacts(artifacts_dir)


def test_deploy_unlocked_account(web3: Web3, deployer: str, artifacts: ContractArtifacts):
    ProxyAdmin = artifacts.get_contract(web3, ContractName.proxy_admin)
    proxy_admin = deploy_contract(web3, ProxyAdmin, deployer)
    assert proxy_admin.functions.answer().call() == 42


def test_deploy_hot_wallet(web3: Web3, hot_wallet: LocalAccount, artifacts: ContractArtifacts):
    """Locally signed deployment with an operator given gas price."""
    ProxyAdmin = artifacts.get_contract(web3, ContractName.proxy_admin)
    gas_price = get_gas_price(web3, 5)
    proxy_admin = deploy_contract(web3, ProxyAdmin, hot_wallet, gas_price=gas_price)

    assert proxy_admin.functions.answer().call() == 42
    assert web3.eth.get_transaction_count(hot_wallet.address) == 1

    bound = artifacts.get_deployed_contract(web3, ContractName.proxy_admin, proxy_admin.address.lower())
    assert bound.address == proxy_admin.address
    assert bound.functions.answer().call() == 42


def test_deploy_failed(web3: Web3, deployer: str, artifacts: ContractArtifacts):
    ProxyAdmin = artifacts.get_contract(web3, ContractName.proxy_admin)
    reverted = TransactionReverted(HexBytes(b"\x01" * 32), "out of gas", {"status": 0})
    with patch("apy_deploy.deploy.wait_and_assert_success", side_effect=reverted):
        with pytest.raises(ContractDeploymentFailed) as exc_info:
            deploy_contract(web3, ProxyAdmin, deployer)
    assert "ProxyAdmin" in str(exc_info.value)
    assert "out of gas" in str(exc_info.value)


def test_deploy_proxy_stack(web3: Web3, deployer: str, artifacts_dir: Path, answer_artifact: dict):
    """Admin, logic and proxy are deployed in order and named by the store convention."""
    (artifacts_dir / "PoolManager.json").write_text(json.dumps(answer_artifact))
    (artifacts_dir / "PoolManagerProxy.json").write_text(json.dumps({**answer_artifact, "abi": answer_artifact["abi"] + PROXY_CONSTRUCTOR}))
    artifacts = ContractArtifacts(artifacts_dir)

    deployment = deploy_proxy_stack(
        web3,
        artifacts.get_contract(web3, ContractName.proxy_admin),
        artifacts.get_contract(web3, ContractName.pool_manager),
        artifacts.get_contract(web3, ContractName.pool_manager_proxy),
        deployer,
    )

    addresses = deployment.get_addresses("PoolManager")
    assert list(addresses) == ["PoolManagerProxyAdmin", "PoolManager", "PoolManagerProxy"]
    assert len(set(addresses.values())) == 3
    assert deployment.proxy.functions.answer().call() == 42


def test_hardhat_artifact_layout(web3: Web3, tmp_path: Path, answer_artifact: dict):
    path = tmp_path / "contracts" / "PoolManager.sol"
    path.mkdir(parents=True)
    (path / "PoolManager.json").write_text(json.dumps({"abi": answer_artifact["abi"], "bytecode": {"object": answer_artifact["bytecode"]}}))

    artifacts = ContractArtifacts(tmp_path)
    assert artifacts.find_artifact_path(ContractName.pool_manager) == path / "PoolManager.json"
    assert artifacts.get_bytecode(ContractName.pool_manager) == answer_artifact["bytecode"]
    assert artifacts.get_contract(web3, ContractName.pool_manager).contract_name == ContractName.pool_manager


def test_abi_only_artifact(tmp_path: Path, answer_artifact: dict):
    """Etherscan ABI without bytecode can be bound but not deployed."""
    (tmp_path / "IDetailedERC20.json").write_text(json.dumps(answer_artifact["abi"]))
    artifacts = ContractArtifacts(tmp_path)
    assert artifacts.get_abi(ContractName.detailed_erc20) == answer_artifact["abi"]
    assert artifacts.get_bytecode(ContractName.detailed_erc20) is None


def test_missing_artifact(tmp_path: Path):
    with pytest.raises(ArtifactNotFound):
        ContractArtifacts(tmp_path).get_abi(ContractName.tvl_manager)
