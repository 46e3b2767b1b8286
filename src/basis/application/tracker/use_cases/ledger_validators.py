"""Pure validation functions for tracker ledger updates."""

from __future__ import annotations

from typing import Optional

from ....domain.errors import NonMonotonicUpdateError


def validate_note_update(
    new_amount: int,
    new_timestamp: int,
    prev_amount: int,
    prev_timestamp: Optional[int],
) -> None:
    """A note may only raise the cumulative amount and must move time forward.

    Args:
        new_amount: Cumulative amount in the incoming note
        new_timestamp: Timestamp of the incoming note (ms)
        prev_amount: Cumulative amount of the stored note (0 if none)
        prev_timestamp: Timestamp of the stored note (None if none)

    Raises:
        NonMonotonicUpdateError: If the amount decreases or the timestamp does not increase.
    """
    if new_amount < prev_amount:
        raise NonMonotonicUpdateError(
            f"Cumulative amount must not decrease. Got {new_amount}, stored {prev_amount}"
        )
    if prev_timestamp is not None and new_timestamp <= prev_timestamp:
        raise NonMonotonicUpdateError(
            f"Timestamp must increase. Got {new_timestamp}, stored {prev_timestamp}"
        )


def check_duplicate_note(
    new_amount: int,
    new_timestamp: int,
    new_signature_hex: str,
    prev_amount: Optional[int],
    prev_timestamp: Optional[int],
    prev_signature_hex: Optional[str],
) -> bool:
    """True when the incoming note is a resubmission of the stored one.

    Raises:
        NonMonotonicUpdateError: If amount and timestamp repeat under another signature.
    """
    if prev_signature_hex is None:
        return False
    if new_amount == prev_amount and new_timestamp == prev_timestamp:
        if new_signature_hex != prev_signature_hex:
            raise NonMonotonicUpdateError(
                "Same amount and timestamp with a different signature (possible replay)"
            )
        return True
    return False
