"""Reserve domain entities: reserve state, redemption request and decisions."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..errors import RejectReason


class ReserveState(BaseModel):
    """Authenticated state of an on-chain reserve.

    Only ``balance`` and ``redeemed_digest_hex`` may change between states.
    """

    model_config = ConfigDict(frozen=True)

    reserve_id_hex: str
    owner_public_key_hex: str
    redeemed_digest_hex: str
    tracker_id_hex: str
    balance: int = Field(..., ge=0)


class RedemptionRequest(BaseModel):
    """Witness inputs for one redemption attempt."""

    receiver_public_key_hex: str
    reserve_owner_signature_hex: str
    tracker_signature_hex: Optional[str] = None
    claimed_cumulative_amount: int
    timestamp: int
    redeemed_tree_proof_hex: str
    tracker_snapshot_proof_hex: str


class Transfer(BaseModel):
    receiver_public_key_hex: str
    amount: int


class CommitEffect(BaseModel):
    """What a committed transition does: next state and, for redemptions, a payout."""

    next_state: ReserveState
    transfer: Optional[Transfer] = None
    pair_key_hex: Optional[str] = None
    cumulative_redeemed: Optional[int] = None
    emergency: bool = False


class TransitionStatus(str, Enum):
    COMMITTED = "committed"
    REJECTED = "rejected"


class TransitionDecision(BaseModel):
    status: TransitionStatus
    effect: Optional[CommitEffect] = None
    reason: Optional[RejectReason] = None
    detail: Optional[str] = None

    @property
    def committed(self) -> bool:
        return self.status == TransitionStatus.COMMITTED

    @classmethod
    def commit(cls, effect: CommitEffect) -> "TransitionDecision":
        return cls(status=TransitionStatus.COMMITTED, effect=effect)

    @classmethod
    def reject(cls, reason: RejectReason, detail: str) -> "TransitionDecision":
        return cls(status=TransitionStatus.REJECTED, reason=reason, detail=detail)
