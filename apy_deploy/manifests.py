"""Deployment manifests of the alpha release.

Each manifest deploys one upgradeable contract:
proxy admin, logic, proxy, then registers the proxy in the address
registry and hands the proxy admin over to the admin Safe.

Address store keys follow the naming the scripts have always used,
e.g. ``PoolManagerProxyAdmin``, ``PoolManager``, ``PoolManagerProxy``.
"""

import logging
from typing import Callable

from eth_utils import to_checksum_address

from apy_deploy.contracts import ContractName
from apy_deploy.deploy import deploy_contract, transact_and_wait
from apy_deploy.networks import get_aggregator_address
from apy_deploy.orchestration import DeploymentContext, DeploymentManifest, DeploymentStep
from apy_deploy.registry import MissingAddressError, RegistryId, get_address_registry, register_address, resolve_named


logger = logging.getLogger(__name__)


#: Address store key of the admin multisig
ADMIN_SAFE_KEY = "AdminSafe"

#: Address store key of the address registry proxy
ADDRESS_REGISTRY_KEY = "AddressRegistryProxy"

#: Address store key of the TVL aggregator used by mAPT
TVL_AGGREGATOR_KEY = "TVLAggregator"

#: Seconds after which mAPT considers a Chainlink answer stale
AGGREGATOR_STALE_PERIOD = 14400

#: Signer role of the address registry owner
ADDRESS_REGISTRY_ROLE = "address_registry"


def _deploy_step(
    name: str,
    role: str,
    contract_name: ContractName,
    output: str,
    depends_on: tuple[str, ...] = (),
    constructor_args: Callable[[DeploymentContext], tuple] = lambda context: (),
) -> DeploymentStep:
    def run(context: DeploymentContext) -> dict[str, str]:
        Contract = context.artifacts.get_contract(context.web3, contract_name)
        instance = deploy_contract(
            context.web3,
            Contract,
            context.get_deployer(role),
            *constructor_args(context),
            gas_price=context.get_gas_price(),
            confirmations=context.confirmations,
        )
        return {output: instance.address}

    return DeploymentStep(
        name=name,
        run=run,
        outputs=(output,),
        depends_on=depends_on,
        description=f"deploy {contract_name.value} as {output}",
    )


def _register_step(name: str, registry_id: RegistryId, proxy_key: str) -> DeploymentStep:
    def get_registry(context: DeploymentContext):
        return get_address_registry(context.web3, context.artifacts, context.get_address(ADDRESS_REGISTRY_KEY))

    def is_done(context: DeploymentContext) -> bool:
        if not context.store.has(proxy_key, context.network_name):
            return False
        try:
            registered = resolve_named(get_registry(context), registry_id)
        except MissingAddressError:
            return False
        return registered == context.get_address(proxy_key)

    def run(context: DeploymentContext) -> dict:
        register_address(
            context.web3,
            get_registry(context),
            registry_id,
            context.get_address(proxy_key),
            context.get_deployer(ADDRESS_REGISTRY_ROLE),
            gas_price=context.get_gas_price(),
            confirmations=context.confirmations,
        )
        return {}

    return DeploymentStep(
        name=name,
        run=run,
        depends_on=(proxy_key, ADDRESS_REGISTRY_KEY),
        is_done=is_done,
        description=f"register {proxy_key} as {registry_id.value}",
    )


def _transfer_ownership_step(name: str, role: str, proxy_admin_key: str) -> DeploymentStep:
    def get_proxy_admin(context: DeploymentContext):
        return context.artifacts.get_deployed_contract(context.web3, ContractName.proxy_admin, context.get_address(proxy_admin_key))

    def is_done(context: DeploymentContext) -> bool:
        if not context.store.has(proxy_admin_key, context.network_name):
            return False
        owner = get_proxy_admin(context).functions.owner().call()
        return to_checksum_address(owner) == context.get_address(ADMIN_SAFE_KEY)

    def run(context: DeploymentContext) -> dict:
        admin_safe = context.get_address(ADMIN_SAFE_KEY)
        transact_and_wait(
            context.web3,
            get_proxy_admin(context).functions.transferOwnership(admin_safe),
            context.get_deployer(role),
            gas_price=context.get_gas_price(),
            confirmations=context.confirmations,
        )
        context.logger.info("%s is now owned by admin Safe %s", proxy_admin_key, admin_safe)
        return {}

    return DeploymentStep(
        name=name,
        run=run,
        depends_on=(proxy_admin_key, ADMIN_SAFE_KEY),
        is_done=is_done,
        description=f"transfer {proxy_admin_key} ownership to the admin Safe",
    )


def build_pool_manager_manifest() -> DeploymentManifest:
    """Pool manager: five steps, needs mAPT and the address registry deployed first."""
    role = "pool_manager"

    def proxy_args(context: DeploymentContext) -> tuple:
        return (
            context.get_address("PoolManager"),
            context.get_address("PoolManagerProxyAdmin"),
            context.get_address("MetaPoolTokenProxy"),
            context.get_address(ADDRESS_REGISTRY_KEY),
        )

    return DeploymentManifest(
        name="pool_manager",
        inputs=("MetaPoolTokenProxy", ADDRESS_REGISTRY_KEY, ADMIN_SAFE_KEY),
        roles=(role, ADDRESS_REGISTRY_ROLE),
        steps=(
            _deploy_step("deploy_proxy_admin", role, ContractName.proxy_admin, "PoolManagerProxyAdmin"),
            _deploy_step("deploy_logic", role, ContractName.pool_manager, "PoolManager"),
            _deploy_step(
                "deploy_proxy",
                role,
                ContractName.pool_manager_proxy,
                "PoolManagerProxy",
                depends_on=("PoolManager", "PoolManagerProxyAdmin", "MetaPoolTokenProxy", ADDRESS_REGISTRY_KEY),
                constructor_args=proxy_args,
            ),
            _register_step("register_address", RegistryId.pool_manager, "PoolManagerProxy"),
            _transfer_ownership_step("transfer_ownership", role, "PoolManagerProxyAdmin"),
        ),
    )


def build_meta_pool_token_manifest() -> DeploymentManifest:
    """mAPT: the proxy is wired to the TVL and ETH-USD aggregators."""
    role = "mapt"

    def proxy_args(context: DeploymentContext) -> tuple:
        return (
            context.get_address("MetaPoolToken"),
            context.get_address("MetaPoolTokenProxyAdmin"),
            context.get_address(TVL_AGGREGATOR_KEY),
            get_aggregator_address("ETH-USD", context.network_name),
            AGGREGATOR_STALE_PERIOD,
        )

    return DeploymentManifest(
        name="meta_pool_token",
        inputs=(TVL_AGGREGATOR_KEY, ADDRESS_REGISTRY_KEY, ADMIN_SAFE_KEY),
        roles=(role, ADDRESS_REGISTRY_ROLE),
        steps=(
            _deploy_step("deploy_proxy_admin", role, ContractName.proxy_admin, "MetaPoolTokenProxyAdmin"),
            _deploy_step("deploy_logic", role, ContractName.meta_pool_token, "MetaPoolToken"),
            _deploy_step(
                "deploy_proxy",
                role,
                ContractName.meta_pool_token_proxy,
                "MetaPoolTokenProxy",
                depends_on=("MetaPoolToken", "MetaPoolTokenProxyAdmin", TVL_AGGREGATOR_KEY),
                constructor_args=proxy_args,
            ),
            _register_step("register_address", RegistryId.mapt, "MetaPoolTokenProxy"),
            _transfer_ownership_step("transfer_ownership", role, "MetaPoolTokenProxyAdmin"),
        ),
    )


#: Manifests selectable from the command line
MANIFESTS: dict[str, Callable[[], DeploymentManifest]] = {
    "pool_manager": build_pool_manager_manifest,
    "meta_pool_token": build_meta_pool_token_manifest,
}
