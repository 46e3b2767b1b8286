"""Domain-specific exceptions."""

from __future__ import annotations

from enum import Enum
from typing import Optional


class RejectReason(str, Enum):
    """Why a reserve transition was rejected."""

    INVALID_SIGNATURE = "invalid_signature"
    PROOF_MISMATCH = "proof_mismatch"
    INSUFFICIENT_HEADROOM = "insufficient_headroom"
    STALE_ANCHOR = "stale_anchor"
    MALFORMED_INPUT = "malformed_input"
    STATE_MISMATCH = "state_mismatch"
    INSUFFICIENT_TOP_UP = "insufficient_top_up"


class BasisError(Exception):
    """Base class for every error raised by the settlement core."""

    reason: Optional[RejectReason] = None


class InvalidSignatureError(BasisError):
    """Raised when a reserve-owner, tracker or debtor signature does not verify."""

    reason = RejectReason.INVALID_SIGNATURE


class ProofMismatchError(BasisError):
    """Raised when an authenticated-map proof does not hash to the claimed digest."""

    reason = RejectReason.PROOF_MISMATCH


class TreeModeViolationError(ProofMismatchError):
    """Raised when the tree flags forbid the requested insert or update."""


class InsufficientHeadroomError(BasisError):
    """Raised when a redemption exceeds the attested amount not yet redeemed."""

    reason = RejectReason.INSUFFICIENT_HEADROOM


class StaleAnchorError(BasisError):
    """Raised when the tracker anchor is too old but the emergency window is still open."""

    reason = RejectReason.STALE_ANCHOR


class MalformedInputError(BasisError, ValueError):
    """Raised when a byte field has the wrong length or cannot be decoded."""

    reason = RejectReason.MALFORMED_INPUT


class StateMismatchError(BasisError):
    """Raised when a reserve field other than balance and digest changed."""

    reason = RejectReason.STATE_MISMATCH


class InsufficientTopUpError(BasisError):
    """Raised when a top-up adds less than the configured minimum."""

    reason = RejectReason.INSUFFICIENT_TOP_UP


class NonMonotonicUpdateError(BasisError, ValueError):
    """Raised when a debt note does not increase the amount and timestamp."""


class SettlementFetchError(BasisError):
    """Transient failure talking to the settlement layer. Safe to retry."""


class MalformedRecordError(BasisError):
    """Raised for a settled record the reconciler cannot interpret."""


class OutOfOrderBlockError(BasisError):
    """Raised when a block height is not the next one after the watermark."""


class NotFoundError(BasisError, LookupError):
    """Raised when a tracked reserve, note or tracker state is unknown."""
