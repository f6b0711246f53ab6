"""Byte32 identifiers for on-chain registries.

The address registry and the asset allocation registry key their entries
with ``bytes32`` values. Off-chain we use readable names like ``"daiPool"``,
the contracts see the same name as UTF-8 bytes right-padded with zeroes,
exactly what Solidity does for ``bytes32 constant ID = "daiPool";``.

Any divergence here makes lookups resolve to the wrong entry, so the
encoding is intentionally plain.
"""

from hexbytes import HexBytes


#: Width of a Solidity bytes32 value
BYTES32_LENGTH = 32


class IdentifierTooLong(ValueError):
    """A name does not fit into 32 bytes.

    We refuse to truncate, as two long names could then silently share an identifier.
    """


def encode_bytes32(name: str) -> bytes:
    """Encode a human-readable name as a registry identifier.

    Example:

    .. code-block:: python

        id = encode_bytes32("poolManager")
        assert id == b"poolManager" + b"\\x00" * 21

    :param name:
        Registry key, e.g. ``"lpSafe"``

    :return:
        Exactly 32 bytes

    :raise IdentifierTooLong:
        UTF-8 encoding of the name is longer than 32 bytes
    """
    assert isinstance(name, str), f"Expected str, got {type(name)}"
    encoded = name.encode("utf-8")
    if len(encoded) > BYTES32_LENGTH:
        raise IdentifierTooLong(f"Identifier {name!r} is {len(encoded)} bytes as UTF-8, bytes32 holds at most {BYTES32_LENGTH}")
    return encoded.ljust(BYTES32_LENGTH, b"\x00")


def decode_bytes32(value: bytes | str) -> str:
    """Decode a registry identifier back to its name.

    :param value:
        Raw 32 bytes or a ``0x`` prefixed hex string, as returned by ``getIds()``
    """
    raw = bytes(HexBytes(value))
    assert len(raw) == BYTES32_LENGTH, f"Expected {BYTES32_LENGTH} bytes, got {len(raw)}: {raw!r}"
    return raw.rstrip(b"\x00").decode("utf-8")


def format_bytes32(name: str) -> str:
    """Encode a name as a ``0x`` prefixed hex string for logs and Safe payloads."""
    return "0x" + encode_bytes32(name).hex()
