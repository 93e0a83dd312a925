"""Permit2 signature handling for 0x quotes.

The Settler contract expects the Permit2 signature appended to the quote's
call-data as a 32-byte big-endian length word followed by the signature bytes.
"""

from __future__ import annotations

from eth_utils import to_bytes

SIGNATURE_LENGTH_WORD_BYTES = 32


def splice_signature(data_hex: str, signature: bytes) -> str:
    """Return ``data || uint256_be(len(signature)) || signature`` as 0x-hex."""
    data = to_bytes(hexstr=data_hex)
    length_word = len(signature).to_bytes(SIGNATURE_LENGTH_WORD_BYTES, byteorder="big")
    return "0x" + (data + length_word + bytes(signature)).hex()


def hex_byte_length(value: str) -> int:
    return len(to_bytes(hexstr=value))
