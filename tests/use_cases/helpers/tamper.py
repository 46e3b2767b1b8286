"""Helpers for tampering with signatures and proofs in stories."""

from __future__ import annotations


def tamper_hex_preserve_validity(data_hex: str, index: int = 0) -> str:
    """
    Flip the least significant bit of one byte of a hex string.

    The result is still valid hex of the same length, so it gets past decoding
    and is rejected by the cryptographic check instead.
    """
    tampered = bytearray(bytes.fromhex(data_hex))
    if not tampered:
        return data_hex
    tampered[index] ^= 1
    return bytes(tampered).hex()
