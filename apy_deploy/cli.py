"""apy-deploy command line.

.. code-block:: shell

    export NETWORK=mainnet
    export JSON_RPC_MAINNET=...
    apy-deploy deploy pool_manager --gas-price 40 --env-file alpha.env
    apy-deploy show
    apy-deploy resolve poolManager
    apy-deploy wait-safe 0x1234...

Exit code is 0 on success and 1 on any error, with the error printed to stderr.
"""

import argparse
import datetime
import logging
import os
import sys
from pathlib import Path
from typing import Optional, Sequence

from web3 import HTTPProvider, Web3

from apy_deploy.account import load_deployer
from apy_deploy.address_store import DeployedAddressStore
from apy_deploy.config import DeploymentEnvironment, load_env_file, require_env
from apy_deploy.contracts import ContractArtifacts
from apy_deploy.logging_config import LogConfig, LogLevel
from apy_deploy.manifests import ADDRESS_REGISTRY_KEY, MANIFESTS
from apy_deploy.networks import canonical_network_name, get_network
from apy_deploy.orchestration import DeploymentContext, DeploymentOrchestrator
from apy_deploy.registry import get_address_registry, resolve_named
from apy_deploy.safe.service import Err, SafeTransactionServiceClient, wait_for_safe_receipt


logger = logging.getLogger(__name__)


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="apy-deploy", description="APY.Finance deployment tooling")
    parser.add_argument("--log-level", type=str, default=None, help="debug, info, warning or error. Overrides LOG_LEVEL.")
    parser.add_argument("--env-file", type=Path, default=None, help="Load environment variables from this file, e.g. alpha.env")
    parser.add_argument("--deployments-dir", type=Path, default=None, help="Deployed address JSON files. Overrides DEPLOYMENTS_DIR.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    deploy = subparsers.add_parser("deploy", help="Run a deployment manifest on the NETWORK")
    deploy.add_argument("manifest", choices=sorted(MANIFESTS), help="Which deployment to run")
    deploy.add_argument("--gas-price", type=float, default=None, help="Gas price in gwei; omitting asks the node")
    deploy.add_argument("--confirmations", type=int, default=None, help="Blocks to wait after each transaction")
    deploy.add_argument("--only", nargs="+", default=None, metavar="STEP", help="Run only these steps, e.g. to redo a failed one")

    show = subparsers.add_parser("show", help="Print deployed addresses")
    show.add_argument("--network", type=str, default=None, help="Network name, defaults to NETWORK")

    resolve = subparsers.add_parser("resolve", help="Resolve a role through the address registry")
    resolve.add_argument("role", type=str, help="Registry id, e.g. poolManager")

    wait_safe = subparsers.add_parser("wait-safe", help="Wait until a proposed Safe transaction is executed")
    wait_safe.add_argument("safe_tx_hash", type=str)
    wait_safe.add_argument("--service-url", type=str, default=None, help="Safe transaction service URL")
    wait_safe.add_argument("--timeout-hours", type=float, default=24.0)
    return parser


def _get_store(args, env: DeploymentEnvironment | None, logger: logging.Logger) -> DeployedAddressStore:
    if args.deployments_dir is not None:
        deployments_dir = args.deployments_dir
    elif env is not None:
        deployments_dir = env.deployments_dir
    else:
        deployments_dir = Path(os.environ.get("DEPLOYMENTS_DIR") or "deployed_addresses")
    return DeployedAddressStore(deployments_dir, logger=logger)


def run_deploy(args, logger: logging.Logger) -> int:
    env = DeploymentEnvironment.from_environment()
    if args.confirmations is not None:
        assert args.confirmations >= 0, f"Bad --confirmations {args.confirmations}"
        env.confirmations = args.confirmations

    manifest = MANIFESTS[args.manifest]()
    web3 = Web3(HTTPProvider(env.json_rpc_url))
    logger.info("%s selected, chain id %d, %d confirmations", env.network_name, web3.eth.chain_id, env.confirmations)

    context = DeploymentContext(
        web3=web3,
        store=_get_store(args, env, logger),
        network_name=env.network_name,
        artifacts=ContractArtifacts(env.artifacts_dir),
        deployers={role: load_deployer(role, env.env) for role in manifest.roles},
        gas_price_gwei=args.gas_price,
        confirmations=env.confirmations,
        logger=logger,
    )

    def on_complete(context: DeploymentContext, produced: dict[str, str]):
        if get_network(context.network_name).is_public and produced:
            # Block explorer verification is done by the operator
            for key, address in produced.items():
                logger.info("Verify on block explorer: %s at %s", key, address)

    orchestrator = DeploymentOrchestrator(manifest, logger=logger, on_complete=on_complete)
    orchestrator.run(context, only=args.only)
    for step, state in orchestrator.status().items():
        print(f"{step:<24} {state.value}")
    return 0


def run_show(args, logger: logging.Logger) -> int:
    network_name = canonical_network_name(args.network or require_env("NETWORK", hint="or give --network"))
    store = _get_store(args, None, logger)
    for record in store.records(network_name):
        print(f"{record.contract_key:<36} {record.address}")
    return 0


def run_resolve(args, logger: logging.Logger) -> int:
    env = DeploymentEnvironment.from_environment()
    web3 = Web3(HTTPProvider(env.json_rpc_url))
    store = _get_store(args, env, logger)
    registry = get_address_registry(web3, ContractArtifacts(env.artifacts_dir), store.get(ADDRESS_REGISTRY_KEY, env.network_name))
    print(resolve_named(registry, args.role))
    return 0


def run_wait_safe(args, logger: logging.Logger) -> int:
    env = DeploymentEnvironment.from_environment()
    web3 = Web3(HTTPProvider(env.json_rpc_url))
    client = SafeTransactionServiceClient(args.service_url) if args.service_url else SafeTransactionServiceClient()
    result = wait_for_safe_receipt(
        web3,
        client,
        args.safe_tx_hash,
        confirmations=env.confirmations,
        timeout=datetime.timedelta(hours=args.timeout_hours),
    )
    if isinstance(result, Err):
        raise RuntimeError(f"Safe transaction not completed ({result.reason}): {result.message}")
    print(result.value["transactionHash"].to_0x_hex())
    return 0


COMMANDS = {
    "deploy": run_deploy,
    "show": run_show,
    "resolve": run_resolve,
    "wait-safe": run_wait_safe,
}


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Console script entry point.

    :return:
        Process exit code
    """
    try:
        args = create_parser().parse_args(argv)
    except SystemExit as e:
        # argparse has printed the usage already, --help exits with 0
        return 1 if e.code else 0

    try:
        load_env_file(args.env_file)
        log_config = LogConfig(level=LogLevel.parse(args.log_level)) if args.log_level else LogConfig.from_environment()
        component_logger = log_config.setup()
        return COMMANDS[args.command](args, component_logger)
    except Exception as e:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
