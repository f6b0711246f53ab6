"""Token amount conversions.

ERC-20 balances live on-chain as raw integers. Scripts and tests talk
in whole token amounts, like ``"1000.50"`` DAI, so we convert back and forth here.

String parsing is done by hand instead of going through floats
so that ``"0.1"`` with 18 decimals is exactly ``10**17`` raw units.
"""

from decimal import Decimal


#: Most ERC-20 tokens, including DAI and mAPT
DEFAULT_DECIMALS = 18


def token_amount_to_raw(amount: str | int | Decimal, decimals: int | str = DEFAULT_DECIMALS) -> int:
    """Convert a whole-token amount to raw integer units.

    Example:

    .. code-block:: python

        # 1,000 USDC
        assert token_amount_to_raw("1000", 6) == 1_000_000_000
        assert token_amount_to_raw("0.5") == 5 * 10**17

    :param amount:
        Human readable amount.

        Python ``int`` values are treated as whole tokens, same as strings.

    :param decimals:
        Token decimals

    :raise ValueError:
        The amount has more fractional digits than the token supports
        or the amount does not parse.
    """
    decimals = int(decimals)
    assert decimals >= 0, f"Bad decimals {decimals}"

    if isinstance(amount, Decimal):
        amount = format(amount, "f")

    amount = str(amount).strip()

    negative = amount.startswith("-")
    if negative:
        amount = amount[1:]

    whole_part, _, frac_part = amount.partition(".")
    frac_part = frac_part.rstrip("0")

    if len(frac_part) > decimals:
        raise ValueError(f"Cannot convert ERC20 token amount to raw units: decimal part is too long: {amount} for {decimals} decimals")

    if not (whole_part or frac_part):
        raise ValueError(f"Not a token amount: {amount!r}")

    if not (whole_part or "0").isdigit() or not (frac_part or "0").isdigit():
        raise ValueError(f"Not a token amount: {amount!r}")

    frac_part = frac_part.ljust(decimals, "0")
    raw = int(whole_part or "0") * 10**decimals + int(frac_part or "0")
    return -raw if negative else raw


def raw_to_token_amount(raw_amount: int, decimals: int | str = DEFAULT_DECIMALS) -> Decimal:
    """Convert raw token units to a decimal whole-token amount."""
    assert type(raw_amount) == int, f"Got {type(raw_amount)}, expected int: {raw_amount}"
    return Decimal(raw_amount) / Decimal(10 ** int(decimals))


def undo_erc20(raw_amount: int, decimals: int | str = DEFAULT_DECIMALS) -> int:
    """Drop the fractional part of a raw amount, returning whole tokens."""
    assert type(raw_amount) == int, f"Got {type(raw_amount)}, expected int: {raw_amount}"
    return raw_amount // 10 ** int(decimals)


def dai(amount: str | int | Decimal) -> int:
    """DAI amount in raw units."""
    return token_amount_to_raw(amount, 18)


def convert_to_usd_value(raw_amount: int, usd_price: int, decimals: int) -> int:
    """Value a raw token amount with an 8 decimal Chainlink price.

    The result keeps the price feed decimals, the same scale the oracle adapter uses for TVL.
    """
    return raw_amount * usd_price // 10**decimals
