"""Tracker domain entities: DebtNote and TrackerState."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field, field_serializer


class DebtNote(BaseModel):
    """Latest debtor-signed obligation for one debtor→creditor pair.

    ``cumulative_amount`` is the total ever owed, not an increment. A note is
    superseded by a newer one, never deleted.
    """

    pair_key_hex: str
    debtor_public_key_hex: str
    creditor_public_key_hex: str
    cumulative_amount: int = Field(..., ge=0)
    timestamp: int = Field(..., ge=0)
    debtor_signature_hex: str
    tracker_signature_hex: Optional[str] = None
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_serializer("recorded_at")
    def serialize_recorded_at(self, value: datetime) -> str:
        return value.isoformat()


class TrackerState(BaseModel):
    """Tracker record as anchored on the settlement layer."""

    tracker_id_hex: str
    tracker_public_key_hex: str
    ledger_digest_hex: str
    anchor_time_ms: int = Field(..., ge=0)
    anchor_height: int = 0


class LedgerEntry(BaseModel):
    pair_key_hex: str
    cumulative_amount: int = Field(..., ge=0)
    timestamp: int = Field(..., ge=0)


class LedgerSnapshot(BaseModel):
    """Ledger contents behind a digest that was published to the settlement layer.

    Kept so the tracker can still prove against an anchored digest after a
    restart, when only the latest note per pair is left in the note repository.
    """

    ledger_digest_hex: str
    entries: list[LedgerEntry] = []
    published_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_serializer("published_at")
    def serialize_published_at(self, value: datetime) -> str:
        return value.isoformat()
