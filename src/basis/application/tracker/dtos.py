"""DTOs for the tracker ledger."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class SubmitNoteDTO(BaseModel):
    """Debtor-signed obligation update sent to the tracker."""

    debtor_public_key_hex: str = Field(..., min_length=66, max_length=66)
    creditor_public_key_hex: str = Field(..., min_length=66, max_length=66)
    cumulative_amount: int = Field(..., ge=0)
    timestamp: int = Field(..., ge=0)
    debtor_signature_hex: str = Field(..., min_length=130, max_length=130)


class NoteReceiptDTO(BaseModel):
    """Tracker co-signature plus a membership proof against the new digest."""

    pair_key_hex: str
    cumulative_amount: int
    timestamp: int
    tracker_signature_hex: str
    ledger_digest_hex: str
    proof_hex: str


class LedgerProofDTO(BaseModel):
    pair_key_hex: str
    ledger_digest_hex: str
    proof_hex: str
    cumulative_amount: Optional[int] = None
    timestamp: Optional[int] = None


class LedgerDigestDTO(BaseModel):
    tracker_id_hex: str
    tracker_public_key_hex: str
    ledger_digest_hex: str
    entries: int


class PublishDigestResponseDTO(BaseModel):
    ledger_digest_hex: str
    submission_id: str
