"""Pure validation functions for reserve transitions.

These functions contain the individual rules of the redemption and top-up
transitions so that they can be tested in isolation. Each raises a typed
``BasisError`` subclass; the verifier turns those into rejections.
"""

from __future__ import annotations

from typing import Optional

from ....crypto.authorization import decode_ledger_value
from ....crypto.key_utils import POINT_SIZE, bytes_to_point, hex_to_bytes
from ....domain.errors import (
    InsufficientHeadroomError,
    InsufficientTopUpError,
    MalformedInputError,
    ProofMismatchError,
    StaleAnchorError,
    StateMismatchError,
)
from ....domain.reserve.entities import ReserveState


def decode_public_key(public_key_hex: str, field: str) -> bytes:
    """Decode a compressed public key and check it is on the curve.

    Raises:
        MalformedInputError: If the field is not a valid 33-byte point.
    """
    try:
        raw = hex_to_bytes(public_key_hex, POINT_SIZE)
        bytes_to_point(raw)
    except MalformedInputError as e:
        raise MalformedInputError(f"{field}: {e}") from e
    return raw


def decode_fixed(data_hex: str, length: int, field: str) -> bytes:
    try:
        return hex_to_bytes(data_hex, length)
    except MalformedInputError as e:
        raise MalformedInputError(f"{field}: {e}") from e


def decode_variable(data_hex: str, field: str) -> bytes:
    try:
        return hex_to_bytes(data_hex)
    except MalformedInputError as e:
        raise MalformedInputError(f"{field}: {e}") from e


def validate_unchanged_fields(
    prior: ReserveState, proposed: ReserveState, *, include_digest: bool = False
) -> None:
    """Every field except balance (and, for redemptions, the digest) must be identical.

    Raises:
        StateMismatchError: If any protected field differs.
    """
    protected = ["reserve_id_hex", "owner_public_key_hex", "tracker_id_hex"]
    if include_digest:
        protected.append("redeemed_digest_hex")
    for name in protected:
        if getattr(prior, name) != getattr(proposed, name):
            raise StateMismatchError(f"Reserve field '{name}' must not change")


def validate_tracker_attestation(
    attested_value: Optional[bytes],
    claimed_amount: int,
    claimed_timestamp: int,
) -> None:
    """The tracker snapshot must hold exactly the claimed amount and timestamp.

    Raises:
        ProofMismatchError: If the pair is absent or the values differ.
        MalformedInputError: If the stored value is not a ledger value.
    """
    if attested_value is None:
        raise ProofMismatchError("Tracker snapshot holds no obligation for this pair")
    amount, timestamp = decode_ledger_value(attested_value)
    if amount != claimed_amount:
        raise ProofMismatchError(
            f"Tracker attests {amount}, caller claims {claimed_amount}"
        )
    if timestamp != claimed_timestamp:
        raise ProofMismatchError(
            f"Tracker attests timestamp {timestamp}, caller claims {claimed_timestamp}"
        )


def is_emergency(now_ms: int, anchor_time_ms: int, emergency_window_ms: int) -> bool:
    """True once the anchor is strictly older than the emergency window."""
    return (now_ms - anchor_time_ms) > emergency_window_ms


def validate_anchor_freshness(
    now_ms: int,
    anchor_time_ms: int,
    staleness_limit_ms: Optional[int],
    emergency: bool,
) -> None:
    """Reject snapshots that are stale but not yet old enough for the emergency path.

    Raises:
        StaleAnchorError: If a staleness limit is configured and exceeded.
    """
    if emergency or staleness_limit_ms is None:
        return
    age = now_ms - anchor_time_ms
    if age > staleness_limit_ms:
        raise StaleAnchorError(
            f"Tracker anchor is {age} ms old (limit {staleness_limit_ms} ms)"
        )


def validate_redeem_amount(
    prior_balance: int,
    new_balance: int,
    claimed_amount: int,
    redeemed_so_far: int,
) -> int:
    """Return the amount released, checking it stays within the unredeemed headroom.

    Raises:
        InsufficientHeadroomError: If nothing is released or too much is.
    """
    redeem_amount = prior_balance - new_balance
    if redeem_amount <= 0:
        raise InsufficientHeadroomError(
            f"Redemption must release a positive amount, got {redeem_amount}"
        )
    headroom = claimed_amount - redeemed_so_far
    if redeem_amount > headroom:
        raise InsufficientHeadroomError(
            f"Redeem amount {redeem_amount} exceeds headroom {max(headroom, 0)}"
        )
    return redeem_amount


def validate_top_up(prior_balance: int, new_balance: int, min_top_up: int) -> int:
    """Return the amount added by a top-up.

    Raises:
        InsufficientTopUpError: If the balance grows by less than *min_top_up*.
    """
    added = new_balance - prior_balance
    if added < min_top_up:
        raise InsufficientTopUpError(
            f"Top-up must add at least {min_top_up}, got {added}"
        )
    return added
