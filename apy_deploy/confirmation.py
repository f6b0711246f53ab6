"""Transaction confirmation.

Deployment scripts send one transaction at a time and wait for it to be
mined, plus a number of extra blocks on public networks to ride out
shallow chain reorganisations, before sending the next one.
"""

import datetime
import logging
import time
from typing import Dict, List, Optional, Set, Union

from hexbytes import HexBytes
from web3 import Web3
from web3.exceptions import ContractLogicError, TransactionNotFound


logger = logging.getLogger(__name__)


class ConfirmationTimedOut(Exception):
    """We exceeded the transaction confirmation timeout."""


class TransactionReverted(Exception):
    """Transaction was mined with status 0."""

    def __init__(self, tx_hash: HexBytes, revert_reason: str, receipt: dict):
        super().__init__(f"Transaction {tx_hash.hex()} reverted: {revert_reason}")
        self.tx_hash = tx_hash
        self.revert_reason = revert_reason
        self.receipt = receipt


def wait_transactions_to_complete(
    web3: Web3,
    txs: List[Union[HexBytes, str]],
    confirmation_block_count: int = 0,
    max_timeout=datetime.timedelta(minutes=5),
    poll_delay=datetime.timedelta(seconds=1),
) -> Dict[HexBytes, dict]:
    """Wait until transactions are mined and buried deep enough.

    Uses a simple poll loop.

    :param txs:
        List of transaction hashes

    :param confirmation_block_count:
        How many blocks wait for the transaction receipt to settle.
        Set to zero to return as soon as we see the first transaction receipt.

    :return:
        Map of transaction hashes -> receipt

    :raise ConfirmationTimedOut:
        Some transactions were still unconfirmed after ``max_timeout``
    """
    assert isinstance(poll_delay, datetime.timedelta)
    assert isinstance(max_timeout, datetime.timedelta)
    assert isinstance(confirmation_block_count, int) and confirmation_block_count >= 0

    logger.info("Waiting %d transactions to confirm in %d blocks, timeout is %s", len(txs), confirmation_block_count, max_timeout)

    started_at = time.monotonic()
    deadline = started_at + max_timeout.total_seconds()

    receipts_received = {}
    unconfirmed_txs: Set[HexBytes] = {HexBytes(tx) for tx in txs}

    while unconfirmed_txs:
        confirmation_received = set()

        for tx_hash in unconfirmed_txs:
            try:
                receipt = web3.eth.get_transaction_receipt(tx_hash)
            except TransactionNotFound as e:
                logger.debug("Transaction not found yet: %s", e)
                receipt = None

            if receipt:
                tx_confirmations = web3.eth.block_number - receipt["blockNumber"]
                if tx_confirmations >= confirmation_block_count:
                    logger.debug("Confirmed tx %s with %d confirmations", tx_hash.hex(), tx_confirmations)
                    confirmation_received.add(tx_hash)
                    receipts_received[tx_hash] = receipt
                else:
                    logger.debug("Still waiting more confirmations. Tx %s with %d confirmations, %d needed", tx_hash.hex(), tx_confirmations, confirmation_block_count)

        unconfirmed_txs -= confirmation_received

        if unconfirmed_txs:
            if time.monotonic() > deadline:
                unconfirmed_tx_strs = ", ".join(tx_hash.hex() for tx_hash in unconfirmed_txs)
                raise ConfirmationTimedOut(f"Transaction confirmation failed, timed out after {max_timeout}. Still unconfirmed: {unconfirmed_tx_strs}")
            time.sleep(poll_delay.total_seconds())

    return receipts_received


def fetch_transaction_revert_reason(web3: Web3, tx_hash: HexBytes, unknown_error_message="<could not extract the revert reason>") -> str:
    """Replay a failed transaction against the current state to get its revert reason.

    The state may have moved on since the transaction was mined, so the reason is a best guess.
    """
    tx = web3.eth.get_transaction(tx_hash)
    replay_tx = {
        "to": tx["to"],
        "from": tx["from"],
        "value": tx["value"],
        "data": tx.get("input", tx.get("data")),
        "gas": tx["gas"],
    }
    try:
        web3.eth.call(replay_tx)
    except ContractLogicError as e:
        return e.args[0]
    except ValueError as e:
        data = e.args[0]
        if isinstance(data, dict):
            return data.get("message", unknown_error_message)
        return str(data)
    return unknown_error_message


def wait_and_assert_success(
    web3: Web3,
    tx_hash: Union[HexBytes, str],
    confirmation_block_count: int = 0,
    max_timeout: Optional[datetime.timedelta] = None,
) -> dict:
    """Wait a single transaction and make sure it did not revert.

    :raise TransactionReverted:
        Transaction status is 0

    :return:
        Transaction receipt
    """
    tx_hash = HexBytes(tx_hash)
    kwargs = {}
    if max_timeout is not None:
        kwargs["max_timeout"] = max_timeout
    receipts = wait_transactions_to_complete(web3, [tx_hash], confirmation_block_count=confirmation_block_count, **kwargs)
    receipt = receipts[tx_hash]
    if receipt["status"] != 1:
        revert_reason = fetch_transaction_revert_reason(web3, tx_hash)
        raise TransactionReverted(tx_hash, revert_reason, receipt)
    return receipt
