"""DTOs for reserve transitions."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from ...domain.errors import RejectReason
from ...domain.reserve.entities import (
    RedemptionRequest,
    ReserveState,
    Transfer,
    TransitionStatus,
)


class OpenReserveDTO(BaseModel):
    reserve_id_hex: str = Field(..., min_length=64, max_length=64)
    owner_public_key_hex: str = Field(..., min_length=66, max_length=66)
    tracker_id_hex: str = Field(..., min_length=64, max_length=64)
    balance: int = Field(..., ge=0)


class RedeemDTO(BaseModel):
    """A creditor's redemption attempt: proposed next state plus witnesses."""

    proposed_state: ReserveState
    request: RedemptionRequest


class TopUpDTO(BaseModel):
    proposed_state: ReserveState


class TransitionResponseDTO(BaseModel):
    status: TransitionStatus
    reserve: ReserveState
    transfer: Optional[Transfer] = None
    cumulative_redeemed: Optional[int] = None
    emergency: bool = False
    reason: Optional[RejectReason] = None
    detail: Optional[str] = None


class ReserveLiabilitiesDTO(BaseModel):
    reserve_id_hex: str
    balance: int
    liabilities: dict[str, int]
    total_liabilities: int
    solvent: bool
