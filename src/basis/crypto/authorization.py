"""Byte layouts shared by the tracker, the reserve owner and the verifier."""

from __future__ import annotations

from typing import Final

from ..domain.errors import MalformedInputError
from .key_utils import HASH_SIZE

U64_MAX: Final[int] = (1 << 64) - 1
U64_SIZE: Final[int] = 8

# Appended to the authorization message when the tracker is bypassed.
EMERGENCY_SUFFIX: Final[bytes] = bytes(U64_SIZE)


def encode_u64(value: int) -> bytes:
    if not isinstance(value, int) or isinstance(value, bool):
        raise MalformedInputError(f"Expected an integer, got {type(value).__name__}")
    if not 0 <= value <= U64_MAX:
        raise MalformedInputError(f"Value {value} does not fit in an unsigned 64-bit field")
    return value.to_bytes(U64_SIZE, "big")


def decode_u64(data: bytes) -> int:
    if len(data) != U64_SIZE:
        raise MalformedInputError(f"u64 field must be 8 bytes, got {len(data)}")
    return int.from_bytes(data, "big")


def authorization_message(pair_key: bytes, cumulative_amount: int, timestamp: int) -> bytes:
    """pairKey (32) || cumulativeAmount (8, BE) || timestamp (8, BE)."""
    if len(pair_key) != HASH_SIZE:
        raise MalformedInputError(f"Pair key must be {HASH_SIZE} bytes")
    return pair_key + encode_u64(cumulative_amount) + encode_u64(timestamp)


def emergency_authorization_message(
    pair_key: bytes, cumulative_amount: int, timestamp: int
) -> bytes:
    return authorization_message(pair_key, cumulative_amount, timestamp) + EMERGENCY_SUFFIX


def encode_ledger_value(cumulative_amount: int, timestamp: int) -> bytes:
    """Value stored in the tracker ledger under a pair key."""
    return encode_u64(cumulative_amount) + encode_u64(timestamp)


def decode_ledger_value(data: bytes) -> tuple[int, int]:
    if len(data) != 2 * U64_SIZE:
        raise MalformedInputError(
            f"Ledger value must be {2 * U64_SIZE} bytes, got {len(data)}"
        )
    return decode_u64(data[:U64_SIZE]), decode_u64(data[U64_SIZE:])


def encode_redeemed_value(cumulative_redeemed: int) -> bytes:
    """Value stored in a reserve's redeemed tree under a pair key."""
    return encode_u64(cumulative_redeemed)


def decode_redeemed_value(data: bytes) -> int:
    return decode_u64(data)
