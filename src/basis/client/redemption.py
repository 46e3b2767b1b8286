"""Debtor- and creditor-side helpers: signing notes and building redemptions."""

from __future__ import annotations

from typing import Mapping, Optional

from basis.application.reserve.dtos import RedeemDTO
from basis.application.tracker.dtos import SubmitNoteDTO
from basis.crypto.authenticated_map import AuthenticatedMap, TreeFlags
from basis.crypto.authorization import (
    authorization_message,
    emergency_authorization_message,
    encode_redeemed_value,
)
from basis.crypto.key_utils import hex_to_bytes, pair_key, public_key_bytes
from basis.crypto.schnorr import sign
from basis.domain.errors import MalformedInputError, ProofMismatchError
from basis.domain.reserve.entities import RedemptionRequest, ReserveState


def sign_note(
    debtor_secret_key: int,
    creditor_public_key_hex: str,
    cumulative_amount: int,
    timestamp: int,
) -> SubmitNoteDTO:
    """Debtor signs the new cumulative amount owed to *creditor*."""
    debtor_key = public_key_bytes(debtor_secret_key)
    key = pair_key(debtor_key, hex_to_bytes(creditor_public_key_hex))
    message = authorization_message(key, cumulative_amount, timestamp)
    return SubmitNoteDTO(
        debtor_public_key_hex=debtor_key.hex(),
        creditor_public_key_hex=creditor_public_key_hex,
        cumulative_amount=cumulative_amount,
        timestamp=timestamp,
        debtor_signature_hex=sign(message, debtor_secret_key).to_hex(),
    )


def sign_emergency_authorization(
    owner_secret_key: int,
    receiver_public_key_hex: str,
    cumulative_amount: int,
    timestamp: int,
) -> str:
    """Owner signature usable only once the tracker has gone silent."""
    key = pair_key(public_key_bytes(owner_secret_key), hex_to_bytes(receiver_public_key_hex))
    message = emergency_authorization_message(key, cumulative_amount, timestamp)
    return sign(message, owner_secret_key).to_hex()


def rebuild_redeemed_tree(redeemed: Mapping[str, int]) -> AuthenticatedMap:
    """Rebuild a reserve's redeemed tree from ``pair_key_hex -> cumulative`` entries."""
    tree = AuthenticatedMap(flags=TreeFlags.INSERT_OR_UPDATE)
    for pair_key_hex, cumulative in redeemed.items():
        tree.put(bytes.fromhex(pair_key_hex), encode_redeemed_value(cumulative))
    return tree


def build_redemption(
    reserve: ReserveState,
    redeemed: Mapping[str, int],
    receiver_public_key_hex: str,
    redeem_amount: int,
    claimed_cumulative_amount: int,
    timestamp: int,
    reserve_owner_signature_hex: str,
    tracker_snapshot_proof_hex: str,
    tracker_signature_hex: Optional[str] = None,
) -> RedeemDTO:
    """Assemble the proposed next reserve state and its witnesses.

    Args:
        reserve: Current reserve state, as committed.
        redeemed: Every pair already redeemed against this reserve, with its
            cumulative redeemed total. Must reproduce ``reserve.redeemed_digest_hex``.
        receiver_public_key_hex: Creditor receiving the funds.
        redeem_amount: Value to move out of the reserve in this redemption.
        claimed_cumulative_amount: Total debt attested by the tracker for the pair.
        timestamp: Timestamp of the attested note.
        reserve_owner_signature_hex: Owner (debtor) signature over the note.
        tracker_snapshot_proof_hex: Ledger proof for the pair against the
            anchored tracker digest.
        tracker_signature_hex: Tracker co-signature; omitted in emergency mode.

    Raises:
        ProofMismatchError: If *redeemed* does not match the reserve's digest.
        MalformedInputError: If *redeem_amount* is not positive or exceeds the balance.
    """
    if redeem_amount <= 0 or redeem_amount > reserve.balance:
        raise MalformedInputError(
            f"Redeem amount {redeem_amount} outside (0, {reserve.balance}]"
        )
    tree = rebuild_redeemed_tree(redeemed)
    if tree.digest.hex() != reserve.redeemed_digest_hex:
        raise ProofMismatchError("Known redemptions do not reproduce the reserve digest")

    key = pair_key(
        hex_to_bytes(reserve.owner_public_key_hex), hex_to_bytes(receiver_public_key_hex)
    )
    already = redeemed.get(key.hex(), 0)
    proof = tree.put(key, encode_redeemed_value(already + redeem_amount))

    proposed = reserve.model_copy(
        update={
            "balance": reserve.balance - redeem_amount,
            "redeemed_digest_hex": tree.digest.hex(),
        }
    )
    request = RedemptionRequest(
        receiver_public_key_hex=receiver_public_key_hex,
        reserve_owner_signature_hex=reserve_owner_signature_hex,
        tracker_signature_hex=tracker_signature_hex,
        claimed_cumulative_amount=claimed_cumulative_amount,
        timestamp=timestamp,
        redeemed_tree_proof_hex=proof.to_hex(),
        tracker_snapshot_proof_hex=tracker_snapshot_proof_hex,
    )
    return RedeemDTO(proposed_state=proposed, request=request)
