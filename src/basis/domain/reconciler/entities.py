"""Reconciler domain entities: settled records and the indices derived from them."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field

from ...crypto.authorization import decode_u64, encode_u64
from ...crypto.key_utils import HASH_SIZE
from ...crypto.schnorr import SIGNATURE_SIZE
from ..errors import MalformedInputError

AUTHORIZATION_ENTRY_SIZE = HASH_SIZE + 8 + SIGNATURE_SIZE


class TokenAmount(BaseModel):
    token_id: str
    amount: int = Field(..., gt=0)


class SettledRecord(BaseModel):
    """A state record created by a settled transaction."""

    record_id: str
    value: int = Field(..., ge=0)
    script_hash: str
    tokens: list[TokenAmount] = Field(default_factory=list)
    registers: dict[str, str] = Field(default_factory=dict)

    @property
    def first_token_id(self) -> Optional[str]:
        return self.tokens[0].token_id if self.tokens else None


class SettledInput(BaseModel):
    record_id: str


class SettledTransaction(BaseModel):
    tx_id: str
    inputs: list[SettledInput] = Field(default_factory=list)
    outputs: list[SettledRecord] = Field(default_factory=list)


class SettledBlock(BaseModel):
    """Block header plus raw transactions; transactions are parsed one by one."""

    height: int = Field(..., ge=0)
    block_id: str
    timestamp_ms: int = Field(..., ge=0)
    transactions: list[dict[str, Any]] = Field(default_factory=list)


class AuthorizationEntry(BaseModel):
    """One step of a note's history: which reserve backed it, for how much."""

    reserve_id_hex: str
    value_backed: int = Field(..., ge=0)
    signature_hex: str

    def to_bytes(self) -> bytes:
        return (
            bytes.fromhex(self.reserve_id_hex)
            + encode_u64(self.value_backed)
            + bytes.fromhex(self.signature_hex)
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> "AuthorizationEntry":
        if len(data) != AUTHORIZATION_ENTRY_SIZE:
            raise MalformedInputError(
                f"Authorization entry must be {AUTHORIZATION_ENTRY_SIZE} bytes, got {len(data)}"
            )
        return cls(
            reserve_id_hex=data[:HASH_SIZE].hex(),
            value_backed=decode_u64(data[HASH_SIZE : HASH_SIZE + 8]),
            signature_hex=data[HASH_SIZE + 8 :].hex(),
        )


class TrackedNote(BaseModel):
    """An unspent obligation note and its authorization history (oldest first)."""

    record: SettledRecord
    holder_public_key_hex: str
    history: list[AuthorizationEntry] = Field(default_factory=list)
    created_height: int = 0

    @property
    def record_id(self) -> str:
        return self.record.record_id

    @property
    def token_id(self) -> str:
        return self.record.tokens[0].token_id

    @property
    def value(self) -> int:
        return self.record.tokens[0].amount

    @property
    def latest_reserve_id(self) -> Optional[str]:
        return self.history[-1].reserve_id_hex if self.history else None


class ReserveData(BaseModel):
    """A reserve as last observed on the settlement layer, plus its liabilities."""

    reserve_id_hex: str
    record_id: str
    owner_public_key_hex: str
    redeemed_digest_hex: str
    tracker_id_hex: str
    balance: int = Field(..., ge=0)
    liabilities: dict[str, int] = Field(default_factory=dict)
    updated_height: int = 0

    @property
    def total_liabilities(self) -> int:
        return sum(self.liabilities.values())
