"""secp256k1 group helpers: point encoding, key generation and pair keys."""

from __future__ import annotations

import hashlib
from typing import Final

from ecdsa import SECP256k1, SigningKey, VerifyingKey, ellipticcurve
from ecdsa.errors import MalformedPointError

from ..domain.errors import MalformedInputError

CURVE = SECP256k1
G: ellipticcurve.PointJacobi = CURVE.generator
N: Final[int] = CURVE.order

POINT_SIZE: Final[int] = 33
SCALAR_SIZE: Final[int] = 32
HASH_SIZE: Final[int] = 32


def blake2b256(data: bytes) -> bytes:
    """Blake2b with a 32-byte digest, the hash used throughout the protocol."""
    return hashlib.blake2b(data, digest_size=HASH_SIZE).digest()


def hex_to_bytes(data_hex: str, expected_len: int | None = None) -> bytes:
    """Decode hex, optionally enforcing a fixed length."""
    try:
        raw = bytes.fromhex(data_hex)
    except (TypeError, ValueError) as e:
        raise MalformedInputError(f"Invalid hex string: {e}") from e
    if expected_len is not None and len(raw) != expected_len:
        raise MalformedInputError(
            f"Expected {expected_len} bytes, got {len(raw)}"
        )
    return raw


def point_to_bytes(point: ellipticcurve.PointJacobi) -> bytes:
    """Compressed SEC1 encoding: parity prefix followed by the 32-byte x coordinate."""
    if point == ellipticcurve.INFINITY:
        raise MalformedInputError("Cannot encode the point at infinity")
    x = point.x()
    y = point.y()
    prefix = b"\x03" if y & 1 else b"\x02"
    return prefix + x.to_bytes(SCALAR_SIZE, "big")


def bytes_to_point(data: bytes) -> ellipticcurve.PointJacobi:
    """Decode a compressed point, rejecting anything not on the curve."""
    if len(data) != POINT_SIZE:
        raise MalformedInputError(
            f"Compressed point must be {POINT_SIZE} bytes, got {len(data)}"
        )
    try:
        vk = VerifyingKey.from_string(data, curve=CURVE)
    except (ValueError, MalformedPointError) as e:
        raise MalformedInputError(f"Invalid curve point: {e}") from e
    return vk.pubkey.point


def scalar_to_bytes(value: int) -> bytes:
    return value.to_bytes(SCALAR_SIZE, "big")


def bytes_to_scalar(data: bytes) -> int:
    if len(data) != SCALAR_SIZE:
        raise MalformedInputError(
            f"Scalar must be {SCALAR_SIZE} bytes, got {len(data)}"
        )
    return int.from_bytes(data, "big")


def generate_secret_key() -> int:
    """Draw a fresh secret scalar in [1, N)."""
    return SigningKey.generate(curve=CURVE).privkey.secret_multiplier


def public_key_bytes(secret_key: int) -> bytes:
    """Compressed public key for *secret_key*."""
    if not 0 < secret_key < N:
        raise MalformedInputError("Secret key out of range")
    return point_to_bytes(G * secret_key)


def secret_key_from_hex(secret_hex: str) -> int:
    secret_key = bytes_to_scalar(hex_to_bytes(secret_hex, SCALAR_SIZE))
    if not 0 < secret_key < N:
        raise MalformedInputError("Secret key out of range")
    return secret_key


def pair_key(debtor_public_key: bytes, creditor_public_key: bytes) -> bytes:
    """Ledger key for the debt *debtor* owes *creditor*. Directional."""
    if len(debtor_public_key) != POINT_SIZE or len(creditor_public_key) != POINT_SIZE:
        raise MalformedInputError("Public keys must be compressed points")
    return blake2b256(debtor_public_key + creditor_public_key)
