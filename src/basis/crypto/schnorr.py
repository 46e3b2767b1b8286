"""Schnorr signatures over secp256k1 with a strong Fiat-Shamir challenge.

A signature is the pair ``(A, z)`` where ``A = g^k`` for a fresh random ``k``
and ``z = k + sk * e (mod N)`` with ``e = H(A || message || pk)``. Including the
signer's public key in the challenge prevents key-substitution attacks.

Wire encoding: ``A`` as a 33-byte compressed point followed by ``z`` as a
32-byte big-endian scalar, 65 bytes in total.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Final

from ecdsa import ellipticcurve

from ..domain.errors import MalformedInputError
from .key_utils import (
    G,
    N,
    POINT_SIZE,
    SCALAR_SIZE,
    blake2b256,
    bytes_to_point,
    bytes_to_scalar,
    point_to_bytes,
    public_key_bytes,
    scalar_to_bytes,
)

SIGNATURE_SIZE: Final[int] = POINT_SIZE + SCALAR_SIZE


@dataclass(frozen=True)
class SchnorrSignature:
    a: bytes
    z: int

    def to_bytes(self) -> bytes:
        return self.a + scalar_to_bytes(self.z)

    def to_hex(self) -> str:
        return self.to_bytes().hex()

    @classmethod
    def from_bytes(cls, data: bytes) -> "SchnorrSignature":
        if len(data) != SIGNATURE_SIZE:
            raise MalformedInputError(
                f"Signature must be {SIGNATURE_SIZE} bytes, got {len(data)}"
            )
        return cls(a=data[:POINT_SIZE], z=bytes_to_scalar(data[POINT_SIZE:]))


def challenge(a: bytes, message: bytes, public_key: bytes) -> int:
    """e = H(A || message || pk) reduced into the scalar field."""
    return int.from_bytes(blake2b256(a + message + public_key), "big") % N


def sign(message: bytes, secret_key: int) -> SchnorrSignature:
    """Sign *message* with *secret_key*."""
    public_key = public_key_bytes(secret_key)
    while True:
        k = secrets.randbelow(N - 1) + 1
        a = point_to_bytes(G * k)
        e = challenge(a, message, public_key)
        z = (k + secret_key * e) % N
        if z != 0:
            return SchnorrSignature(a=a, z=z)


def verify(message: bytes, public_key: bytes, a: bytes, z: int) -> bool:
    """Accept iff g^z == A * pk^e. Malformed inputs are rejected, never raised."""
    if not 0 < z < N:
        return False
    try:
        a_point = bytes_to_point(a)
        pk_point = bytes_to_point(public_key)
    except MalformedInputError:
        return False
    e = challenge(a, message, public_key)
    lhs = G * z
    rhs = a_point + pk_point * e
    if rhs == ellipticcurve.INFINITY:
        return False
    return lhs == rhs


def verify_signature(message: bytes, public_key: bytes, signature: bytes) -> bool:
    """Verify a 65-byte encoded signature."""
    try:
        sig = SchnorrSignature.from_bytes(signature)
    except MalformedInputError:
        return False
    return verify(message, public_key, sig.a, sig.z)
