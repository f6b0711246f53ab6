"""Alpha deployment manifests wiring."""

from unittest.mock import MagicMock, patch

import pytest
from web3.exceptions import ContractLogicError

from apy_deploy.contracts import ContractName
from apy_deploy.gas import GasPriceMethod
from apy_deploy.identifier import encode_bytes32
from apy_deploy.manifests import AGGREGATOR_STALE_PERIOD, MANIFESTS, build_meta_pool_token_manifest, build_pool_manager_manifest
from apy_deploy.networks import MAINNET
from apy_deploy.orchestration import DeploymentContext, DeploymentOrchestrator


MAPT_PROXY = "0x1111111111111111111111111111111111111111"
REGISTRY = "0x2222222222222222222222222222222222222222"
ADMIN_SAFE = "0x3333333333333333333333333333333333333333"
PROXY_ADMIN = "0x4444444444444444444444444444444444444444"
LOGIC = "0x5555555555555555555555555555555555555555"
PROXY = "0x6666666666666666666666666666666666666666"
TVL_AGG = "0x7777777777777777777777777777777777777777"


@pytest.fixture()
def context(store) -> DeploymentContext:
    store.update("MAINNET", {"MetaPoolTokenProxy": MAPT_PROXY, "AddressRegistryProxy": REGISTRY, "AdminSafe": ADMIN_SAFE, "TVLAggregator": TVL_AGG})
    return DeploymentContext(
        web3=MagicMock(),
        store=store,
        network_name="MAINNET",
        artifacts=MagicMock(),
        deployers={"pool_manager": "0x0000000000000000000000000000000000000001", "mapt": "0x0000000000000000000000000000000000000002", "address_registry": "0x0000000000000000000000000000000000000003"},
        gas_price_gwei=40,
        confirmations=5,
    )


def test_pool_manager_manifest_order():
    manifest = build_pool_manager_manifest()
    assert [s.name for s in manifest.steps] == ["deploy_proxy_admin", "deploy_logic", "deploy_proxy", "register_address", "transfer_ownership"]
    assert manifest.outputs == ["PoolManagerProxyAdmin", "PoolManager", "PoolManagerProxy"]
    assert set(manifest.inputs) == {"MetaPoolTokenProxy", "AddressRegistryProxy", "AdminSafe"}
    assert set(manifest.roles) == {"pool_manager", "address_registry"}


def test_manifests_registered():
    for name, builder in MANIFESTS.items():
        assert builder().name == name


def test_pool_manager_proxy_constructor(context):
    """Proxy gets logic, admin, mAPT and registry in this order."""
    context.store.update("MAINNET", {"PoolManagerProxyAdmin": PROXY_ADMIN, "PoolManager": LOGIC})
    step = build_pool_manager_manifest().get_step("deploy_proxy")

    with patch("apy_deploy.manifests.deploy_contract", return_value=MagicMock(address=PROXY)) as deploy:
        produced = step.run(context)

    assert produced == {"PoolManagerProxy": PROXY}
    context.artifacts.get_contract.assert_called_with(context.web3, ContractName.pool_manager_proxy)
    args, kwargs = deploy.call_args
    assert args[2] == "0x0000000000000000000000000000000000000001"
    assert args[3:] == (LOGIC, PROXY_ADMIN, MAPT_PROXY, REGISTRY)
    assert kwargs["confirmations"] == 5
    assert kwargs["gas_price"].method == GasPriceMethod.legacy
    assert kwargs["gas_price"].legacy_gas_price == 40 * 10**9


def test_meta_pool_token_proxy_constructor(context):
    context.store.update("MAINNET", {"MetaPoolTokenProxyAdmin": PROXY_ADMIN, "MetaPoolToken": LOGIC})
    step = build_meta_pool_token_manifest().get_step("deploy_proxy")

    with patch("apy_deploy.manifests.deploy_contract", return_value=MagicMock(address=PROXY)) as deploy:
        step.run(context)

    args, _ = deploy.call_args
    assert args[3:] == (LOGIC, PROXY_ADMIN, TVL_AGG, MAINNET.aggregators["ETH-USD"], AGGREGATOR_STALE_PERIOD)


def test_pool_manager_full_run(context):
    """All five steps with transactions mocked out."""
    deployed = iter([PROXY_ADMIN, LOGIC, PROXY])
    sent = []

    def fake_deploy(web3, Contract, deployer, *args, **kwargs):
        return MagicMock(address=next(deployed))

    def fake_transact(web3, bound_call, sender, **kwargs):
        sent.append((bound_call, sender))
        return {"status": 1}

    # Registry and proxy admin share the same mock contract
    contract = context.artifacts.get_deployed_contract.return_value
    contract.functions.getAddress.return_value.call.side_effect = ContractLogicError("execution reverted: Missing address")
    contract.functions.owner.return_value.call.return_value = PROXY_ADMIN

    with (
        patch("apy_deploy.manifests.deploy_contract", side_effect=fake_deploy),
        patch("apy_deploy.registry.transact_and_wait", side_effect=fake_transact),
        patch("apy_deploy.manifests.transact_and_wait", side_effect=fake_transact),
    ):
        orchestrator = DeploymentOrchestrator(build_pool_manager_manifest())
        orchestrator.run(context)

    assert context.store.get("PoolManagerProxy", "MAINNET") == PROXY

    contract.functions.registerAddress.assert_called_with(encode_bytes32("poolManager"), PROXY)
    contract.functions.transferOwnership.assert_called_with(ADMIN_SAFE)
    assert [sender for _, sender in sent] == ["0x0000000000000000000000000000000000000003", "0x0000000000000000000000000000000000000001"]
