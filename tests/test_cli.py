"""apy-deploy command line."""

import json
import logging
from unittest.mock import MagicMock, patch

import pytest
from eth_account import Account

from apy_deploy.cli import create_parser, main
from apy_deploy.logging_config import LogConfig
from apy_deploy.manifests import MANIFESTS
from apy_deploy.orchestration import DeploymentManifest, DeploymentStep


THING = "0x1111111111111111111111111111111111111111"


@pytest.fixture(autouse=True)
def quiet_logging():
    """Do not install console handlers on the test runner root logger."""
    with patch.object(LogConfig, "setup", return_value=logging.getLogger("apy_deploy.test_cli")):
        yield


@pytest.fixture()
def clean_env(monkeypatch, tmp_path):
    for name in ("NETWORK", "DEPLOYMENTS_DIR", "LOG_LEVEL", "JSON_RPC_LOCALHOST", "ARTIFACTS_DIR"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    return monkeypatch


def test_parser_commands():
    args = create_parser().parse_args(["deploy", "pool_manager", "--gas-price", "40", "--only", "deploy_proxy", "register_address"])
    assert args.manifest == "pool_manager"
    assert args.gas_price == 40
    assert args.only == ["deploy_proxy", "register_address"]

    with pytest.raises(SystemExit):
        create_parser().parse_args(["deploy", "no_such_manifest"])


def test_show(clean_env, deployments_dir, store, capsys):
    store.update("KOVAN", {"PoolManagerProxy": THING})
    assert main(["--deployments-dir", str(deployments_dir), "show", "--network", "kovan"]) == 0
    out = capsys.readouterr().out
    assert "PoolManagerProxy" in out
    assert THING in out


def test_bad_arguments_exit_code(clean_env, capsys):
    """Every failure exits with 1, unknown manifests and flags included."""
    assert main(["deploy", "no_such_manifest"]) == 1
    assert "no_such_manifest" in capsys.readouterr().err

    assert main(["show", "--no-such-flag"]) == 1
    assert "--no-such-flag" in capsys.readouterr().err

    assert main(["--help"]) == 0
    assert "usage" in capsys.readouterr().out


def test_missing_network_is_error(clean_env, capsys):
    assert main(["resolve", "poolManager"]) == 1
    assert "NETWORK" in capsys.readouterr().err


def test_deploy(clean_env, deployments_dir, capsys):
    """Manifest runs against the configured network and its outputs land in the store."""
    account = Account.create()
    clean_env.setenv("NETWORK", "localhost")
    clean_env.setenv("DEPLOYMENTS_DIR", str(deployments_dir))
    clean_env.setenv("THING_DEPLOYER_PRIVATE_KEY", account.key.to_0x_hex())

    def deploy_thing(context):
        assert context.get_deployer("thing_deployer").address == account.address
        return {"Thing": THING}

    manifest = DeploymentManifest(name="thing", roles=("thing_deployer",), steps=(DeploymentStep("deploy_thing", deploy_thing, outputs=("Thing",)),))

    with patch.dict(MANIFESTS, {"thing": lambda: manifest}), patch("apy_deploy.cli.Web3") as Web3:
        Web3.return_value.eth.chain_id = 31337
        assert main(["deploy", "thing"]) == 0

    assert "deploy_thing" in capsys.readouterr().out
    assert json.loads((deployments_dir / "localhost.json").read_text()) == {"Thing": THING}


def test_deploy_missing_key(clean_env, deployments_dir, capsys):
    clean_env.setenv("NETWORK", "localhost")
    clean_env.setenv("DEPLOYMENTS_DIR", str(deployments_dir))
    for role in ("POOL_MANAGER", "ADDRESS_REGISTRY"):
        clean_env.delenv(f"{role}_PRIVATE_KEY", raising=False)
        clean_env.delenv(f"{role}_MNEMONIC", raising=False)

    with patch("apy_deploy.cli.Web3") as Web3:
        Web3.return_value.eth.chain_id = 31337
        assert main(["deploy", "pool_manager"]) == 1

    assert "_PRIVATE_KEY is not set" in capsys.readouterr().err
