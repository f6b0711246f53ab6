"""Gas price selection for deployment transactions.

The operator can pin a gas price in gwei with ``--gas-price``.
Otherwise we ask the node: EIP-1559 fees on London chains, legacy gas price elsewhere.
"""

import enum
import logging
from dataclasses import dataclass
from decimal import Decimal
from pprint import pformat
from typing import Optional

from web3 import Web3


logger = logging.getLogger(__name__)


class GasPriceMethod(enum.Enum):
    """What method we did use for setting the gas price."""

    #: Legacy chains, or an operator given price
    legacy = "legacy"

    #: Post London hard fork
    london = "london"


@dataclass
class GasPriceSuggestion:
    """Gas price details for building a transaction."""

    #: How the gas price was determined
    method: GasPriceMethod

    #: Non London hard fork chains
    legacy_gas_price: Optional[int] = None

    #: London hard fork chains
    base_fee: Optional[int] = None

    #: London hard fork chains
    max_priority_fee_per_gas: Optional[int] = None

    #: London hard fork chains
    max_fee_per_gas: Optional[int] = None

    def __repr__(self):
        return f"<Gas pricing method:{self.method.name} base:{self.base_fee} priority:{self.max_priority_fee_per_gas} max:{self.max_fee_per_gas} legacy:{self.legacy_gas_price}>"

    def get_tx_gas_params(self) -> dict:
        """Get gas params as they are applied to ContractFunction.build_transaction()"""
        if self.method == GasPriceMethod.london:
            return {"maxPriorityFeePerGas": self.max_priority_fee_per_gas, "maxFeePerGas": self.max_fee_per_gas}
        else:
            return {"gasPrice": self.legacy_gas_price}

    def pformat(self) -> str:
        """Pretty format for logging."""

        def _format(value: Optional[int]) -> str:
            if value is None:
                return "-"
            return f"{value / 10**9:.2f}G ({value:,})"

        data = {
            "Base Fee": _format(self.base_fee),
            "Max priority fee per gas": _format(self.max_priority_fee_per_gas),
            "Max fee per gas": _format(self.max_fee_per_gas),
            "Gas price": _format(self.legacy_gas_price),
        }
        return pformat(data)


def estimate_gas_price(web3: Web3) -> GasPriceSuggestion:
    """Ask the node for a reasonable gas price."""
    last_block = web3.eth.get_block("latest")
    base_fee = last_block.get("baseFeePerGas")

    if base_fee is not None:
        max_priority_fee_per_gas = web3.eth.max_priority_fee
        max_fee_per_gas = max_priority_fee_per_gas + 2 * base_fee
        return GasPriceSuggestion(
            method=GasPriceMethod.london,
            base_fee=base_fee,
            max_priority_fee_per_gas=max_priority_fee_per_gas,
            max_fee_per_gas=max_fee_per_gas,
        )
    else:
        return GasPriceSuggestion(method=GasPriceMethod.legacy, legacy_gas_price=web3.eth.gas_price)


def get_gas_price(web3: Web3, gas_price_gwei: Optional[float | Decimal] = None) -> GasPriceSuggestion:
    """Gas price for the next transaction.

    :param gas_price_gwei:
        Operator override in gwei. If not given, estimate from the node.
    """
    if gas_price_gwei:
        assert gas_price_gwei > 0, f"Bad gas price {gas_price_gwei}"
        wei = int(Decimal(str(gas_price_gwei)) * 10**9)
        logger.info("Using provided gas price (gwei): %s", gas_price_gwei)
        return GasPriceSuggestion(method=GasPriceMethod.legacy, legacy_gas_price=wei)

    suggestion = estimate_gas_price(web3)
    logger.info("Using node suggested gas price:\n%s", suggestion.pformat())
    return suggestion


def apply_gas(tx: dict, suggestion: GasPriceSuggestion) -> dict:
    """Apply gas fees to a raw transaction dict.

    :return:
        Mutated dict
    """
    assert isinstance(tx, dict), f"Expected tx to be dict, got {type(tx)}"

    if suggestion.method == GasPriceMethod.london:
        tx["maxFeePerGas"] = suggestion.max_fee_per_gas
        tx["maxPriorityFeePerGas"] = suggestion.max_priority_fee_per_gas

        if "gasPrice" in tx:
            # Cannot have both maxFeePerGas + maxPriorityFeePerGas and gasPrice
            del tx["gasPrice"]
    else:
        tx["gasPrice"] = suggestion.legacy_gas_price
        tx.pop("maxFeePerGas", None)
        tx.pop("maxPriorityFeePerGas", None)

    return tx
