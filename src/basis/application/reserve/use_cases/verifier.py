"""Deterministic state-transition function for reserves.

``RedemptionVerifier.verify_redemption`` decides whether value may leave a
reserve and what the reserve's next state must be. It performs no I/O: the prior
and proposed states, the anchored tracker record and every signature and proof
are passed in already fetched. It never raises; every failure becomes a
``REJECTED`` decision carrying a ``RejectReason``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ....crypto.authenticated_map import CompactMerkleVerifier, TreeFlags
from ....crypto.authorization import (
    authorization_message,
    decode_redeemed_value,
    emergency_authorization_message,
    encode_redeemed_value,
    encode_u64,
)
from ....crypto.key_utils import HASH_SIZE, pair_key
from ....crypto.schnorr import SIGNATURE_SIZE, verify_signature
from ....domain.errors import (
    BasisError,
    InvalidSignatureError,
    ProofMismatchError,
    RejectReason,
)
from ....domain.reserve.entities import (
    CommitEffect,
    RedemptionRequest,
    ReserveState,
    Transfer,
    TransitionDecision,
)
from ....domain.shared.authenticated_map_protocol import AuthenticatedMapVerifier
from ....domain.tracker.entities import TrackerState
from .redemption_validators import (
    decode_fixed,
    decode_public_key,
    decode_variable,
    is_emergency,
    validate_anchor_freshness,
    validate_redeem_amount,
    validate_top_up,
    validate_tracker_attestation,
    validate_unchanged_fields,
)

DAY_MS = 24 * 60 * 60 * 1000
DEFAULT_EMERGENCY_WINDOW_MS = 7 * DAY_MS
# 1 coin in base units.
DEFAULT_MIN_TOP_UP = 1_000_000_000

REDEEMED_TREE_FLAGS = TreeFlags.INSERT_OR_UPDATE


@dataclass(frozen=True)
class _DecodedRedemption:
    owner_key: bytes
    receiver_key: bytes
    owner_signature: bytes
    tracker_signature: Optional[bytes]
    redeemed_proof: bytes
    tracker_proof: bytes
    prior_digest: bytes
    proposed_digest: bytes
    tracker_digest: bytes
    tracker_key: bytes


class RedemptionVerifier:
    def __init__(
        self,
        emergency_window_ms: int = DEFAULT_EMERGENCY_WINDOW_MS,
        anchor_staleness_ms: Optional[int] = None,
        min_top_up: int = DEFAULT_MIN_TOP_UP,
        tree_verifier: Optional[AuthenticatedMapVerifier] = None,
    ) -> None:
        if emergency_window_ms <= 0:
            raise ValueError("emergency_window_ms must be positive")
        if anchor_staleness_ms is not None and anchor_staleness_ms <= 0:
            raise ValueError("anchor_staleness_ms must be positive")
        self.emergency_window_ms = emergency_window_ms
        self.anchor_staleness_ms = anchor_staleness_ms
        self.min_top_up = min_top_up
        self.tree_verifier: AuthenticatedMapVerifier = (
            tree_verifier if tree_verifier is not None else CompactMerkleVerifier()
        )

    def verify_redemption(
        self,
        prior: ReserveState,
        proposed: ReserveState,
        request: RedemptionRequest,
        tracker: TrackerState,
        now_ms: int,
    ) -> TransitionDecision:
        try:
            return TransitionDecision.commit(
                self._check_redemption(prior, proposed, request, tracker, now_ms)
            )
        except BasisError as e:
            reason = e.reason or RejectReason.MALFORMED_INPUT
            return TransitionDecision.reject(reason, str(e))

    def verify_top_up(self, prior: ReserveState, proposed: ReserveState) -> TransitionDecision:
        """Anyone may add at least ``min_top_up``; nothing else may change."""
        try:
            validate_unchanged_fields(prior, proposed, include_digest=True)
            validate_top_up(prior.balance, proposed.balance, self.min_top_up)
        except BasisError as e:
            reason = e.reason or RejectReason.MALFORMED_INPUT
            return TransitionDecision.reject(reason, str(e))
        return TransitionDecision.commit(CommitEffect(next_state=proposed))

    @staticmethod
    def _decode(
        prior: ReserveState,
        proposed: ReserveState,
        request: RedemptionRequest,
        tracker: TrackerState,
    ) -> _DecodedRedemption:
        encode_u64(request.claimed_cumulative_amount)
        encode_u64(request.timestamp)
        tracker_signature = None
        if request.tracker_signature_hex is not None:
            tracker_signature = decode_fixed(
                request.tracker_signature_hex, SIGNATURE_SIZE, "tracker_signature"
            )
        return _DecodedRedemption(
            owner_key=decode_public_key(prior.owner_public_key_hex, "owner_public_key"),
            receiver_key=decode_public_key(
                request.receiver_public_key_hex, "receiver_public_key"
            ),
            owner_signature=decode_fixed(
                request.reserve_owner_signature_hex, SIGNATURE_SIZE, "reserve_owner_signature"
            ),
            tracker_signature=tracker_signature,
            redeemed_proof=decode_variable(
                request.redeemed_tree_proof_hex, "redeemed_tree_proof"
            ),
            tracker_proof=decode_variable(
                request.tracker_snapshot_proof_hex, "tracker_snapshot_proof"
            ),
            prior_digest=decode_fixed(prior.redeemed_digest_hex, HASH_SIZE, "redeemed_digest"),
            proposed_digest=decode_fixed(
                proposed.redeemed_digest_hex, HASH_SIZE, "proposed_redeemed_digest"
            ),
            tracker_digest=decode_fixed(tracker.ledger_digest_hex, HASH_SIZE, "ledger_digest"),
            tracker_key=decode_public_key(
                tracker.tracker_public_key_hex, "tracker_public_key"
            ),
        )

    def _check_redemption(
        self,
        prior: ReserveState,
        proposed: ReserveState,
        request: RedemptionRequest,
        tracker: TrackerState,
        now_ms: int,
    ) -> CommitEffect:
        # Everything is decoded up front so malformed input never reaches crypto.
        decoded = self._decode(prior, proposed, request, tracker)

        validate_unchanged_fields(prior, proposed)
        if tracker.tracker_id_hex != prior.tracker_id_hex:
            raise ProofMismatchError("Tracker record does not belong to this reserve")

        key = pair_key(decoded.owner_key, decoded.receiver_key)
        message = authorization_message(
            key, request.claimed_cumulative_amount, request.timestamp
        )

        redeemed_raw = self.tree_verifier.lookup(
            decoded.prior_digest, key, decoded.redeemed_proof
        )
        redeemed_so_far = 0 if redeemed_raw is None else decode_redeemed_value(redeemed_raw)

        attested = self.tree_verifier.lookup(
            decoded.tracker_digest, key, decoded.tracker_proof
        )
        validate_tracker_attestation(
            attested, request.claimed_cumulative_amount, request.timestamp
        )

        emergency = is_emergency(now_ms, tracker.anchor_time_ms, self.emergency_window_ms)
        validate_anchor_freshness(
            now_ms, tracker.anchor_time_ms, self.anchor_staleness_ms, emergency
        )

        owner_ok = verify_signature(message, decoded.owner_key, decoded.owner_signature)
        if not owner_ok and emergency:
            emergency_message = emergency_authorization_message(
                key, request.claimed_cumulative_amount, request.timestamp
            )
            owner_ok = verify_signature(
                emergency_message, decoded.owner_key, decoded.owner_signature
            )
        if not owner_ok:
            raise InvalidSignatureError("Reserve owner signature is invalid")

        if not emergency:
            if decoded.tracker_signature is None:
                raise InvalidSignatureError("Tracker signature is required")
            if not verify_signature(message, decoded.tracker_key, decoded.tracker_signature):
                raise InvalidSignatureError("Tracker signature is invalid")

        redeem_amount = validate_redeem_amount(
            prior.balance,
            proposed.balance,
            request.claimed_cumulative_amount,
            redeemed_so_far,
        )

        cumulative_redeemed = redeemed_so_far + redeem_amount
        next_digest = self.tree_verifier.update(
            decoded.prior_digest,
            key,
            encode_redeemed_value(cumulative_redeemed),
            decoded.redeemed_proof,
            REDEEMED_TREE_FLAGS,
        )
        if next_digest != decoded.proposed_digest:
            raise ProofMismatchError("Proposed redeemed digest does not match the update")

        return CommitEffect(
            next_state=proposed,
            transfer=Transfer(
                receiver_public_key_hex=request.receiver_public_key_hex,
                amount=redeem_amount,
            ),
            pair_key_hex=key.hex(),
            cumulative_redeemed=cumulative_redeemed,
            emergency=emergency,
        )
