"""Wait for Safe owners to execute a proposed transaction.

The Safe transaction service knows the Ethereum transaction hash once
enough owners have signed and someone executed the transaction.
We poll it with exponential backoff until that happens, the timeout
passes or the operator cancels.

The outcome is a value, not an exception: :py:class:`Ok` carries the
result, :py:class:`Err` the reason we gave up. The caller decides
whether giving up is fatal.

.. code-block:: python

    client = SafeTransactionServiceClient(MAINNET_SERVICE_URL)
    result = wait_for_safe_receipt(web3, client, safe_tx.safe_tx_hash, confirmations=5)
    if isinstance(result, Err):
        raise RuntimeError(result.reason)
    receipt = result.value
"""

import datetime
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

import requests
from hexbytes import HexBytes
from requests.adapters import HTTPAdapter
from urllib3 import Retry
from web3 import Web3

from apy_deploy.confirmation import ConfirmationTimedOut, TransactionReverted, wait_and_assert_success


logger = logging.getLogger(__name__)


MAINNET_SERVICE_URL = "https://safe-transaction-mainnet.safe.global"

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Polling succeeded."""

    value: T


@dataclass(frozen=True, slots=True)
class Err:
    """Polling gave up."""

    #: ``timeout``, ``cancelled`` or ``reverted``
    reason: str

    message: str = ""


class SafeServiceError(Exception):
    """The transaction service returned something we did not understand."""


class LoggingRetry(Retry):
    """urllib3 retry policy that logs every retry, so a flaky Safe service is visible in the output."""

    def __init__(self, *args, **kwargs):
        self.logger = kwargs.pop("logger", logger)
        super().__init__(*args, **kwargs)

    def increment(self, method=None, url=None, response=None, error=None, _pool=None, _stacktrace=None):
        status = response.status if response else None
        self.logger.warning("Retrying Safe service: %s %s (status: %s, error: %s)", method, (url or "")[0:96], status, error)
        return super().increment(method, url, response, error, _pool, _stacktrace)


def create_retrying_session(retries=3, backoff_factor=0.5) -> requests.Session:
    """HTTP session retrying 5xx responses with exponential backoff."""
    session = requests.Session()
    retry_policy = LoggingRetry(
        total=retries,
        backoff_factor=backoff_factor,
        status_forcelist=[500, 502, 503, 504],
    )
    session.mount("http://", HTTPAdapter(max_retries=retry_policy))
    session.mount("https://", HTTPAdapter(max_retries=retry_policy))
    return session


class SafeTransactionServiceClient:
    """Read-only client for the Safe transaction service multisig transaction endpoint."""

    def __init__(self, base_url: str = MAINNET_SERVICE_URL, session: Optional[requests.Session] = None, request_timeout: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.session = session if session is not None else create_retrying_session()
        self.request_timeout = request_timeout

    def __repr__(self):
        return f"<SafeTransactionServiceClient {self.base_url}>"

    def get_multisig_transaction(self, safe_tx_hash: HexBytes | str) -> dict[str, Any]:
        """Get the details of a proposed transaction.

        :raise requests.HTTPError:
            Service answered with an error status after retries
        """
        safe_tx_hash = HexBytes(safe_tx_hash).to_0x_hex()
        url = f"{self.base_url}/api/v1/multisig-transactions/{safe_tx_hash}/"
        response = self.session.get(url, timeout=self.request_timeout)
        response.raise_for_status()
        data = response.json()
        if not isinstance(data, dict):
            raise SafeServiceError(f"Unexpected response for {safe_tx_hash}: {data!r}")
        return data

    def get_execution_hash(self, safe_tx_hash: HexBytes | str) -> Optional[HexBytes]:
        """Ethereum transaction hash of the executed Safe transaction, ``None`` while not executed."""
        tx_hash = self.get_multisig_transaction(safe_tx_hash).get("transactionHash")
        return HexBytes(tx_hash) if tx_hash else None


def wait_for_safe_execution(
    client: SafeTransactionServiceClient,
    safe_tx_hash: HexBytes | str,
    timeout=datetime.timedelta(hours=24),
    initial_delay=datetime.timedelta(seconds=5),
    max_delay=datetime.timedelta(minutes=5),
    backoff: float = 2.0,
    cancel_event: Optional[threading.Event] = None,
    sleep: Callable[[float], Any] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> Ok[HexBytes] | Err:
    """Poll until the Safe transaction has been executed.

    Service errors are logged and retried until the deadline.

    :param timeout:
        Give up after this long

    :param initial_delay:
        First polling interval, multiplied by ``backoff`` after every poll

    :param max_delay:
        Polling interval cap

    :param cancel_event:
        Set from another thread, or a signal handler, to stop waiting

    :param sleep:
        Sleep function. When ``cancel_event`` is given, we wait on the event instead.

    :return:
        ``Ok(tx_hash)`` or ``Err("timeout")`` / ``Err("cancelled")``
    """
    assert isinstance(timeout, datetime.timedelta)
    assert backoff >= 1, f"Backoff must not shrink the delay, got {backoff}"

    deadline = clock() + timeout.total_seconds()
    delay = initial_delay.total_seconds()
    max_delay_seconds = max_delay.total_seconds()
    safe_tx_hash = HexBytes(safe_tx_hash)
    attempt = 0

    logger.info("Waiting Safe tx %s to be executed, timeout %s", safe_tx_hash.to_0x_hex(), timeout)

    while True:
        if cancel_event is not None and cancel_event.is_set():
            return Err("cancelled", f"Stopped waiting for Safe tx {safe_tx_hash.to_0x_hex()}")

        attempt += 1
        try:
            tx_hash = client.get_execution_hash(safe_tx_hash)
        except (requests.RequestException, SafeServiceError) as e:
            logger.warning("Safe service poll %d failed: %s", attempt, e)
            tx_hash = None

        if tx_hash is not None:
            logger.info("Safe tx %s executed in %s", safe_tx_hash.to_0x_hex(), tx_hash.to_0x_hex())
            return Ok(tx_hash)

        remaining = deadline - clock()
        if remaining <= 0:
            return Err("timeout", f"Safe tx {safe_tx_hash.to_0x_hex()} not executed after {timeout}, {attempt} polls")

        wait = min(delay, remaining)
        logger.debug("Safe tx not executed yet, next poll in %.1f s", wait)
        if cancel_event is not None:
            cancel_event.wait(wait)
        else:
            sleep(wait)
        delay = min(delay * backoff, max_delay_seconds)


def wait_for_safe_receipt(
    web3: Web3,
    client: SafeTransactionServiceClient,
    safe_tx_hash: HexBytes | str,
    confirmations: int = 0,
    receipt_timeout=datetime.timedelta(minutes=10),
    **poll_kwargs,
) -> Ok[dict] | Err:
    """Wait for execution, then for the execution transaction to be confirmed.

    :param poll_kwargs:
        Passed to :py:func:`wait_for_safe_execution`

    :return:
        ``Ok(receipt)`` or ``Err`` with ``timeout``, ``cancelled`` or ``reverted``
    """
    executed = wait_for_safe_execution(client, safe_tx_hash, **poll_kwargs)
    if isinstance(executed, Err):
        return executed

    try:
        receipt = wait_and_assert_success(web3, executed.value, confirmation_block_count=confirmations, max_timeout=receipt_timeout)
    except ConfirmationTimedOut as e:
        return Err("timeout", str(e))
    except TransactionReverted as e:
        return Err("reverted", str(e))
    return Ok(receipt)
