"""Safe multisig proposal and execution polling."""

import datetime
import threading
from unittest.mock import MagicMock, patch

import pytest
import requests
from eth_account import Account
from hexbytes import HexBytes
from safe_eth.safe import Safe

from apy_deploy.safe.service import (
    Err,
    LoggingRetry,
    Ok,
    SafeServiceError,
    SafeTransactionServiceClient,
    create_retrying_session,
    wait_for_safe_execution,
    wait_for_safe_receipt,
)
from apy_deploy.safe.tx import SafeTxProposalError, propose_safe_transaction


SAFE_TX_HASH = HexBytes("0x" + "ab" * 32)
EXECUTION_TX_HASH = HexBytes("0x" + "cd" * 32)


class FakeClock:
    """Monotonic clock advanced by the fake sleep."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


def test_execution_found_after_service_errors(clock):
    """Service hiccups are retried and the backoff grows."""
    client = MagicMock()
    client.get_execution_hash.side_effect = [None, requests.ConnectionError("connection reset"), SafeServiceError("garbage"), EXECUTION_TX_HASH]

    result = wait_for_safe_execution(
        client,
        SAFE_TX_HASH,
        timeout=datetime.timedelta(minutes=10),
        initial_delay=datetime.timedelta(seconds=5),
        sleep=clock.sleep,
        clock=clock,
    )

    assert result == Ok(EXECUTION_TX_HASH)
    assert clock.sleeps == [5, 10, 20]
    assert client.get_execution_hash.call_count == 4


def test_already_executed_does_not_wait(clock):
    """First poll happens right away, the initial delay only applies between polls."""
    client = MagicMock()
    client.get_execution_hash.return_value = EXECUTION_TX_HASH

    result = wait_for_safe_execution(
        client,
        SAFE_TX_HASH,
        initial_delay=datetime.timedelta(seconds=5),
        sleep=clock.sleep,
        clock=clock,
    )

    assert result == Ok(EXECUTION_TX_HASH)
    assert clock.sleeps == []
    client.get_execution_hash.assert_called_once_with(SAFE_TX_HASH)


def test_execution_timeout(clock):
    client = MagicMock()
    client.get_execution_hash.return_value = None

    result = wait_for_safe_execution(
        client,
        SAFE_TX_HASH,
        timeout=datetime.timedelta(seconds=60),
        initial_delay=datetime.timedelta(seconds=5),
        max_delay=datetime.timedelta(seconds=20),
        sleep=clock.sleep,
        clock=clock,
    )

    assert isinstance(result, Err)
    assert result.reason == "timeout"
    # Capped at max_delay, last sleep cut to the deadline
    assert clock.sleeps == [5, 10, 20, 20, 5]
    assert client.get_execution_hash.call_count == 6


def test_execution_cancelled(clock):
    cancel_event = threading.Event()
    client = MagicMock()

    def poll(safe_tx_hash):
        cancel_event.set()
        return None

    client.get_execution_hash.side_effect = poll

    result = wait_for_safe_execution(client, SAFE_TX_HASH, cancel_event=cancel_event, sleep=clock.sleep, clock=clock)

    assert result == Err("cancelled", result.message)
    assert client.get_execution_hash.call_count == 1


def test_service_client_fetches_transaction():
    session = MagicMock()
    session.get.return_value.json.return_value = {"safeTxHash": SAFE_TX_HASH.to_0x_hex(), "transactionHash": EXECUTION_TX_HASH.to_0x_hex()}
    client = SafeTransactionServiceClient("https://safe-transaction.example/", session=session)

    assert client.get_execution_hash(SAFE_TX_HASH) == EXECUTION_TX_HASH
    url = session.get.call_args[0][0]
    assert url == f"https://safe-transaction.example/api/v1/multisig-transactions/{SAFE_TX_HASH.to_0x_hex()}/"


def test_service_client_not_executed():
    session = MagicMock()
    session.get.return_value.json.return_value = {"transactionHash": None}
    client = SafeTransactionServiceClient(session=session)
    assert client.get_execution_hash(SAFE_TX_HASH) is None


def test_service_client_unexpected_response():
    session = MagicMock()
    session.get.return_value.json.return_value = ["not", "a", "dict"]
    client = SafeTransactionServiceClient(session=session)
    with pytest.raises(SafeServiceError):
        client.get_multisig_transaction(SAFE_TX_HASH)


def test_retrying_session():
    session = create_retrying_session(retries=4)
    retry = session.get_adapter("https://safe-transaction-mainnet.safe.global").max_retries
    assert isinstance(retry, LoggingRetry)
    assert retry.total == 4
    assert 502 in retry.status_forcelist


def test_wait_for_safe_receipt(web3, deployer, clock):
    """Executed Safe transaction is followed to its receipt."""
    tx_hash = web3.eth.send_transaction({"from": deployer, "to": web3.eth.accounts[1], "value": 1})
    client = MagicMock()
    client.get_execution_hash.return_value = HexBytes(tx_hash)

    result = wait_for_safe_receipt(web3, client, SAFE_TX_HASH, sleep=clock.sleep, clock=clock)

    assert isinstance(result, Ok)
    assert result.value["status"] == 1
    assert result.value["transactionHash"] == HexBytes(tx_hash)


def test_wait_for_safe_receipt_passes_through_timeout(web3, clock):
    client = MagicMock()
    client.get_execution_hash.return_value = None
    result = wait_for_safe_receipt(web3, client, SAFE_TX_HASH, timeout=datetime.timedelta(seconds=1), sleep=clock.sleep, clock=clock)
    assert result.reason == "timeout"


@pytest.fixture()
def owner():
    return Account.create()


@pytest.fixture()
def safe():
    safe = MagicMock(spec=Safe)
    safe.address = "0x0000000000000000000000000000000000005afe"
    safe.ethereum_client = MagicMock()
    safe.estimate_tx_gas_with_safe.return_value = 80_000
    safe.retrieve_nonce.return_value = 7
    return safe


def test_propose_safe_transaction(safe, owner):
    tx_service = MagicMock()
    tx_service.post_transaction.return_value = True
    data = HexBytes("0x99a88ec4" + "00" * 64)

    with patch("apy_deploy.safe.tx.SafeTx") as SafeTx:
        SafeTx.return_value.safe_tx_hash = SAFE_TX_HASH
        safe_tx = propose_safe_transaction(safe, "0x1111111111111111111111111111111111111111", owner.key.to_0x_hex(), data, tx_service=tx_service)

    kwargs = SafeTx.call_args.kwargs
    assert kwargs["to"] == "0x1111111111111111111111111111111111111111"
    assert kwargs["data"] == data
    assert kwargs["safe_tx_gas"] == 80_000
    assert kwargs["safe_nonce"] == 7

    # One owner signature, 65 bytes
    assert len(safe_tx.signatures) == 65
    tx_service.post_transaction.assert_called_once_with(safe_tx)


def test_propose_safe_transaction_rejected(safe, owner):
    tx_service = MagicMock()
    tx_service.post_transaction.return_value = False

    with patch("apy_deploy.safe.tx.SafeTx") as SafeTx:
        SafeTx.return_value.safe_tx_hash = SAFE_TX_HASH
        with pytest.raises(SafeTxProposalError):
            propose_safe_transaction(safe, "0x1111111111111111111111111111111111111111", owner.key.to_0x_hex(), b"\x00", tx_service=tx_service)
