"""Mainnet fork helpers.

Deployment scripts are rehearsed against a local mainnet fork before they
touch mainnet. The fork runs in `Anvil <https://book.getfoundry.sh/reference/anvil/>`__:

.. code-block:: shell

    curl -L https://foundry.paradigm.xyz | bash
    foundryup

On the fork we can act as any account: impersonate the protocol owners and
Safes, or take stablecoins from a whale to fund test users.

.. code-block:: python

    launch = launch_anvil(os.environ["JSON_RPC_ETHEREUM"], fork_block_number=MAINNET.fork_block_number)
    try:
        web3 = Web3(HTTPProvider(launch.json_rpc_url))
        dai = artifacts.get_deployed_contract(web3, ContractName.detailed_erc20, get_stablecoin_address("DAI", "MAINNET"))
        acquire_token(web3, dai, get_whale_address("DAI", "MAINNET"), user, "1000")
    finally:
        launch.close()
"""

import logging
import os
import shutil
import time
from dataclasses import dataclass
from decimal import Decimal
from subprocess import DEVNULL, PIPE
from typing import Any, Optional

import psutil
import requests
from eth_typing import HexAddress
from web3 import HTTPProvider, Web3
from web3.contract import Contract

from apy_deploy.account import get_address
from apy_deploy.confirmation import wait_and_assert_success
from apy_deploy.unit import token_amount_to_raw
from apy_deploy.utils import PortRange, ProcessOutput, find_free_port, is_localhost_port_listening, shutdown_hard


logger = logging.getLogger(__name__)


#: ETH given to an impersonated token holder so it can pay gas
TOKEN_SENDER_ETH = Decimal("0.5")


class RPCRequestError(Exception):
    """Node does not support, or failed, a custom JSON-RPC method."""


def make_custom_rpc_request(web3: Web3, method: str, args: Optional[list] = None) -> Any:
    """Call a node specific JSON-RPC method like ``anvil_setBalance``.

    :raise RPCRequestError:
        The node returned an error
    """
    response = web3.provider.make_request(method, list(args or []))
    if "result" in response:
        return response["result"]
    raise RPCRequestError(f"{method} failed: {response.get('error', {}).get('message', response)}")


@dataclass
class AnvilLaunch:
    """Anvil process running on background."""

    #: Which port was bound by the Anvil
    port: int

    #: Used command-line to spin up anvil
    cmd: list[str]

    #: Where does Anvil listen to JSON-RPC
    json_rpc_url: str

    #: UNIX process that we opened
    process: psutil.Popen

    def close(self, log_level: Optional[int] = None, block=True, block_timeout=30.0) -> ProcessOutput:
        """Kill Anvil.

        :param log_level:
            Dump Anvil output to logging at this level

        :param block:
            Wait until the port is free for the next Anvil

        :return:
            What Anvil printed
        """
        output = shutdown_hard(self.process, log_level=log_level, release_port=self.port if block else None, release_timeout=block_timeout)
        logger.info("Anvil shutdown %s", self.json_rpc_url)
        return output


def launch_anvil(
    fork_url: Optional[str] = None,
    fork_block_number: Optional[int] = None,
    unlocked_addresses: Optional[list[HexAddress | str]] = None,
    cmd="anvil",
    port: int | PortRange = PortRange(),
    launch_wait_seconds=20.0,
    attempts=3,
    test_request_timeout=3.0,
) -> AnvilLaunch:
    """Start Anvil, optionally forking a live network.

    :param fork_url:
        JSON-RPC URL of the network to fork. Empty chain if not given.

    :param fork_block_number:
        Pin the fork to a block so that whale balances stay predictable. Needs an archive node.

    :param unlocked_addresses:
        Accounts we can send transactions from without a private key

    :param port:
        A fixed port, or a range to pick a random free port from

    :param attempts:
        Anvil sometimes fails silently when the forked node throttles us, so we retry

    :raise AssertionError:
        Anvil did not answer JSON-RPC within ``launch_wait_seconds``
    """
    assert shutil.which(cmd) is not None, f"{cmd} command not in PATH {os.environ.get('PATH')}"

    if isinstance(port, PortRange):
        port = find_free_port(port)
    else:
        assert not is_localhost_port_listening(port), f"localhost port {port} occupied. You might have a zombie Anvil process around."

    if fork_block_number:
        assert fork_url, f"fork_block_number {fork_block_number} given without a JSON-RPC URL to fork"

    url = f"http://localhost:{port}"

    cmd_list = [cmd, "--port", str(port)]
    if fork_url:
        cmd_list += ["--fork-url", fork_url]
    if fork_block_number:
        cmd_list += ["--fork-block-number", str(fork_block_number)]

    env = os.environ.copy()
    env["RUST_BACKTRACE"] = "1"

    attempts_left = attempts
    current_block = None
    web3 = None
    process = None

    while attempts_left > 0:
        # Do not log the fork URL, it carries the API key
        logger.info("Launching anvil on port %d, fork block %s", port, fork_block_number)
        process = psutil.Popen(cmd_list, stdin=DEVNULL, stdout=PIPE, stderr=PIPE, env=env)

        deadline = time.monotonic() + launch_wait_seconds
        web3 = Web3(HTTPProvider(url, request_kwargs={"timeout": test_request_timeout}))
        while time.monotonic() < deadline:
            try:
                current_block = web3.eth.block_number
                break
            except (requests.exceptions.ConnectionError, requests.exceptions.ReadTimeout):
                time.sleep(0.1)

        if current_block is not None:
            break

        logger.error("Anvil at %s did not respond within %f seconds", url, launch_wait_seconds)
        output = shutdown_hard(process, log_level=logging.ERROR, release_port=port)
        attempts_left -= 1
        if attempts_left == 0 or output.stdout:
            raise AssertionError(f"Could not read block number from Anvil at {url}, stdout is {len(output.stdout)} bytes, stderr is {len(output.stderr)} bytes")
        logger.info("Anvil did not start properly, try again, attempts left %d", attempts_left)

    logger.info(f"Anvil chain {web3.eth.chain_id} at block {current_block:,}, JSON-RPC is {url}")

    for address in unlocked_addresses or []:
        impersonate_account(web3, address)

    return AnvilLaunch(port, cmd_list, url, process)


def impersonate_account(web3: Web3, account_like: Any) -> str:
    """Let the node accept transactions from an account without its key.

    Tries Anvil first, then Hardhat.

    :return:
        Checksummed address of the impersonated account
    """
    address = get_address(account_like)
    try:
        make_custom_rpc_request(web3, "anvil_impersonateAccount", [address])
    except RPCRequestError as e:
        logger.debug("anvil_impersonateAccount not available, trying Hardhat: %s", e)
        make_custom_rpc_request(web3, "hardhat_impersonateAccount", [address])
    return address


def set_balance(web3: Web3, account_like: Any, raw_amount: int):
    """Set ETH balance of an account in wei."""
    assert type(raw_amount) == int, f"Expected raw int amount, got {type(raw_amount)}"
    make_custom_rpc_request(web3, "anvil_setBalance", [get_address(account_like), hex(raw_amount)])


def acquire_token(web3: Web3, token: Contract, sender: Any, recipient: Any, amount: str | int | Decimal) -> int:
    """Move tokens from a whale to a test account on a fork.

    The sender may be a contract that rejects ETH, like the Curve 3pool, so
    its gas money is set directly instead of transferred.

    :param token:
        ERC-20 contract bound to an ``IDetailedERC20`` ABI

    :param sender:
        Account holding the tokens

    :param amount:
        Whole token amount, e.g. ``"1000"`` DAI

    :return:
        Recipient balance after the transfer, raw units
    """
    sender = impersonate_account(web3, sender)
    recipient = get_address(recipient)

    decimals = token.functions.decimals().call()
    raw_amount = token_amount_to_raw(amount, decimals)

    set_balance(web3, sender, token_amount_to_raw(TOKEN_SENDER_ETH, 18))

    tx_hash = token.functions.transfer(recipient, raw_amount).transact({"from": sender})
    wait_and_assert_success(web3, tx_hash)

    balance = token.functions.balanceOf(recipient).call()
    logger.info("Recipient %s token %s balance %s", recipient, token.address, balance)
    return balance
