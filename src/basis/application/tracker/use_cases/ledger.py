"""Tracker ledger: accepts debtor-signed notes, co-signs them and serves proofs."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from ....crypto.authenticated_map import AuthenticatedMap, TreeFlags
from ....crypto.authorization import (
    authorization_message,
    decode_ledger_value,
    encode_ledger_value,
)
from ....crypto.key_utils import HASH_SIZE, hex_to_bytes, pair_key, public_key_bytes
from ....crypto.schnorr import SIGNATURE_SIZE, sign, verify_signature
from ....domain.errors import InvalidSignatureError, NonMonotonicUpdateError
from ....domain.shared.settlement_client_protocol import SettlementClientProtocol
from ....domain.tracker.entities import DebtNote, LedgerEntry, LedgerSnapshot
from ....domain.tracker.repositories import NoteRepository
from ...reserve.use_cases.redemption_validators import decode_fixed, decode_public_key
from ..dtos import (
    LedgerDigestDTO,
    LedgerProofDTO,
    NoteReceiptDTO,
    PublishDigestResponseDTO,
    SubmitNoteDTO,
)
from .ledger_validators import check_duplicate_note, validate_note_update

logger = logging.getLogger(__name__)

DEFAULT_ANCHORED_RETENTION = 8


class TrackerLedgerService:
    """Single-writer service owning the tracker's authenticated debt ledger.

    The in-memory tree is a working cache rebuilt from the note repository; the
    repository (with its monotonic save script) is the durable record. Writes
    are serialized by a lock. Proof reads go to the persistent tree at a given
    digest, so they never observe a half-applied update.

    Every published digest is also stored as a snapshot of its entries, so the
    tree can still prove against the last ``anchored_retention`` anchors after
    a restart. Versions that were never published are pruned on each publish.
    """

    def __init__(
        self,
        note_repository: NoteRepository,
        tracker_secret_key: int,
        tracker_id_hex: str,
        settlement_client: Optional[SettlementClientProtocol] = None,
        anchored_retention: int = DEFAULT_ANCHORED_RETENTION,
    ):
        if anchored_retention < 1:
            raise ValueError("anchored_retention must be at least 1")
        self.note_repository = note_repository
        self.tracker_secret_key = tracker_secret_key
        self.tracker_id_hex = tracker_id_hex
        self.tracker_public_key = public_key_bytes(tracker_secret_key)
        self.settlement_client = settlement_client
        self.anchored_retention = anchored_retention
        self._tree = AuthenticatedMap(flags=TreeFlags.INSERT_OR_UPDATE)
        self._anchored: list[bytes] = []
        self._write_lock = asyncio.Lock()
        self._loaded = False

    @property
    def digest(self) -> bytes:
        return self._tree.digest

    @property
    def anchored_digests(self) -> list[bytes]:
        """Published digests still provable, newest first."""
        return list(self._anchored)

    async def load(self) -> None:
        """Rebuild the tree from stored notes and published snapshots (idempotent)."""
        async with self._write_lock:
            if self._loaded:
                return
            snapshots = await self.note_repository.list_snapshots()
            for snapshot in snapshots[: self.anchored_retention]:
                root = self._tree.add_version(
                    (
                        bytes.fromhex(entry.pair_key_hex),
                        encode_ledger_value(entry.cumulative_amount, entry.timestamp),
                    )
                    for entry in snapshot.entries
                )
                if root.hex() != snapshot.ledger_digest_hex:
                    logger.error(
                        "Snapshot %s rebuilds to %s, skipping it",
                        snapshot.ledger_digest_hex,
                        root.hex(),
                    )
                    continue
                self._anchored.append(root)

            notes = await self.note_repository.list_all()
            for note in notes:
                self._tree.put(
                    bytes.fromhex(note.pair_key_hex),
                    encode_ledger_value(note.cumulative_amount, note.timestamp),
                )
            self._tree.retain(self._anchored)
            self._loaded = True
            logger.info(
                "Tracker ledger rebuilt from %d notes and %d snapshots, digest %s",
                len(notes),
                len(self._anchored),
                self._tree.digest.hex(),
            )

    async def submit_note(self, dto: SubmitNoteDTO) -> NoteReceiptDTO:
        """Accept a debtor-signed update and return the tracker's co-signature."""
        await self.load()

        # 1) Decode and verify the debtor's signature
        debtor_key = decode_public_key(dto.debtor_public_key_hex, "debtor_public_key")
        creditor_key = decode_public_key(dto.creditor_public_key_hex, "creditor_public_key")
        debtor_signature = decode_fixed(
            dto.debtor_signature_hex, SIGNATURE_SIZE, "debtor_signature"
        )
        key = pair_key(debtor_key, creditor_key)
        message = authorization_message(key, dto.cumulative_amount, dto.timestamp)
        if not verify_signature(message, debtor_key, debtor_signature):
            raise InvalidSignatureError("Debtor signature is invalid")

        async with self._write_lock:
            # 2) Monotonicity against the stored note, with idempotent resubmission
            previous = await self.note_repository.get(key.hex())
            if check_duplicate_note(
                dto.cumulative_amount,
                dto.timestamp,
                dto.debtor_signature_hex,
                previous.cumulative_amount if previous else None,
                previous.timestamp if previous else None,
                previous.debtor_signature_hex if previous else None,
            ):
                assert previous is not None and previous.tracker_signature_hex is not None
                return self._receipt(previous, previous.tracker_signature_hex)
            validate_note_update(
                dto.cumulative_amount,
                dto.timestamp,
                previous.cumulative_amount if previous else 0,
                previous.timestamp if previous else None,
            )

            # 3) Co-sign and persist atomically; the script re-checks monotonicity
            tracker_signature = sign(message, self.tracker_secret_key).to_hex()
            note = DebtNote(
                pair_key_hex=key.hex(),
                debtor_public_key_hex=dto.debtor_public_key_hex,
                creditor_public_key_hex=dto.creditor_public_key_hex,
                cumulative_amount=dto.cumulative_amount,
                timestamp=dto.timestamp,
                debtor_signature_hex=dto.debtor_signature_hex,
                tracker_signature_hex=tracker_signature,
            )
            code, _ = await self.note_repository.save_if_newer(note)
            if code != 1:
                raise NonMonotonicUpdateError(
                    "A newer note for this pair was stored concurrently"
                )

            # 4) Apply to the authenticated tree
            self._tree.put(key, encode_ledger_value(note.cumulative_amount, note.timestamp))

        logger.info(
            "Accepted note %s amount=%d ts=%d, digest %s",
            note.pair_key_hex,
            note.cumulative_amount,
            note.timestamp,
            self._tree.digest.hex(),
        )
        return self._receipt(note, tracker_signature)

    def _receipt(self, note: DebtNote, tracker_signature_hex: str) -> NoteReceiptDTO:
        digest = self._tree.digest
        proof = self._tree.prove(bytes.fromhex(note.pair_key_hex), digest)
        return NoteReceiptDTO(
            pair_key_hex=note.pair_key_hex,
            cumulative_amount=note.cumulative_amount,
            timestamp=note.timestamp,
            tracker_signature_hex=tracker_signature_hex,
            ledger_digest_hex=digest.hex(),
            proof_hex=proof.to_hex(),
        )

    async def get_proof(
        self, pair_key_hex: str, digest_hex: Optional[str] = None
    ) -> LedgerProofDTO:
        """Membership or absence proof for a pair, at the current or an earlier digest."""
        await self.load()
        key = hex_to_bytes(pair_key_hex, HASH_SIZE)
        digest = self._tree.digest if digest_hex is None else hex_to_bytes(digest_hex, HASH_SIZE)
        proof = self._tree.prove(key, digest)
        amount = timestamp = None
        if proof.value is not None:
            amount, timestamp = decode_ledger_value(proof.value)
        return LedgerProofDTO(
            pair_key_hex=pair_key_hex,
            ledger_digest_hex=digest.hex(),
            proof_hex=proof.to_hex(),
            cumulative_amount=amount,
            timestamp=timestamp,
        )

    async def get_digest(self) -> LedgerDigestDTO:
        await self.load()
        return LedgerDigestDTO(
            tracker_id_hex=self.tracker_id_hex,
            tracker_public_key_hex=self.tracker_public_key.hex(),
            ledger_digest_hex=self._tree.digest.hex(),
            entries=len(self._tree),
        )

    async def publish_digest(self) -> PublishDigestResponseDTO:
        """Anchor the current digest on the settlement layer."""
        if self.settlement_client is None:
            raise RuntimeError("No settlement client configured")
        await self.load()
        async with self._write_lock:
            digest = self._tree.digest
            entries: list[LedgerEntry] = []
            for key, value in self._tree.items(digest):
                amount, timestamp = decode_ledger_value(value)
                entries.append(
                    LedgerEntry(
                        pair_key_hex=key.hex(), cumulative_amount=amount, timestamp=timestamp
                    )
                )

        submission_id = await self.settlement_client.publish_digest(
            self.tracker_id_hex, digest.hex()
        )
        await self.note_repository.save_snapshot(
            LedgerSnapshot(ledger_digest_hex=digest.hex(), entries=entries)
        )

        async with self._write_lock:
            self._anchored = [digest] + [d for d in self._anchored if d != digest]
            for expired in self._anchored[self.anchored_retention :]:
                await self.note_repository.delete_snapshot(expired.hex())
            del self._anchored[self.anchored_retention :]
            pruned = self._tree.retain(self._anchored)

        logger.info(
            "Published digest %s (%d entries, submission %s), pruned %d tree nodes",
            digest.hex(),
            len(entries),
            submission_id,
            pruned,
        )
        return PublishDigestResponseDTO(
            ledger_digest_hex=digest.hex(), submission_id=submission_id
        )
