"""Tracker reconciler: folds settled blocks into the tracker's derived indices."""

from __future__ import annotations

import logging
from typing import Optional

from pydantic import ValidationError

from ....crypto.key_utils import HASH_SIZE, POINT_SIZE
from ....domain.errors import (
    MalformedInputError,
    MalformedRecordError,
    NotFoundError,
    OutOfOrderBlockError,
    SettlementFetchError,
)
from ....domain.reconciler.entities import (
    AuthorizationEntry,
    ReserveData,
    SettledBlock,
    SettledRecord,
    SettledTransaction,
    TrackedNote,
)
from ....domain.reconciler.repositories import ReconcilerRepository
from ....domain.shared.settlement_client_protocol import SettlementClientProtocol
from ....domain.tracker.entities import TrackerState
from ....domain.tracker.repositories import TrackerStateRepository
from ...reserve.dtos import ReserveLiabilitiesDTO

logger = logging.getLogger(__name__)


def _register(record: SettledRecord, name: str, length: Optional[int] = None) -> str:
    """Hex value of a register, checked for presence and byte length."""
    value = record.registers.get(name)
    if value is None:
        raise MalformedRecordError(f"Record {record.record_id} lacks register {name}")
    try:
        raw = bytes.fromhex(value)
    except ValueError as e:
        raise MalformedRecordError(
            f"Record {record.record_id} register {name} is not hex"
        ) from e
    if length is not None and len(raw) != length:
        raise MalformedRecordError(
            f"Record {record.record_id} register {name} must be {length} bytes"
        )
    return raw.hex()


class TrackerReconciler:
    """Single-writer process keeping derived state in line with the settlement layer.

    Blocks are applied strictly in height order. The last applied height is
    persisted as a watermark, so replaying a height is a no-op and a failed
    fetch leaves the watermark where it was for the next cycle to retry.

    Output records are classified by their first token:

    - registered note tokens are obligation notes (holder key in R4, optional
      new authorization entry in R5),
    - known reserve ids are reserves; unknown ones are discovered when the record
      runs the reserve script and holds a single singleton token (owner key in
      R4, redeemed digest in R5, tracker id in R6),
    - the tracker id marks the tracker record (public key in R4, ledger digest
      in R5), whose block time becomes the anchor time.
    """

    def __init__(
        self,
        repository: ReconcilerRepository,
        tracker_state_repository: TrackerStateRepository,
        settlement_client: SettlementClientProtocol,
        *,
        reserve_script_hash: str,
        tracker_id_hex: str,
        my_public_key_hex: Optional[str] = None,
        start_height: int = 1,
    ):
        self.repository = repository
        self.tracker_state_repository = tracker_state_repository
        self.settlement_client = settlement_client
        self.reserve_script_hash = reserve_script_hash
        self.tracker_id_hex = tracker_id_hex
        self.my_public_key_hex = my_public_key_hex
        self.start_height = start_height

    async def register_note_token(self, token_id: str) -> None:
        await self.repository.register_note_token(token_id)

    async def next_height(self) -> int:
        watermark = await self.repository.get_watermark()
        return self.start_height if watermark is None else watermark + 1

    async def process_settled_block(self, height: int) -> bool:
        """Apply the block at *height*. Returns False if nothing was applied.

        Raises:
            OutOfOrderBlockError: If *height* skips ahead of the watermark.
            SettlementFetchError: If the block could not be fetched or decoded.
        """
        expected = await self.next_height()
        if height < expected:
            logger.debug("Height %d already processed, skipping", height)
            return False
        if height > expected:
            raise OutOfOrderBlockError(f"Expected height {expected}, got {height}")

        raw = await self.settlement_client.fetch_block(height)
        if raw is None:
            return False
        try:
            block = SettledBlock.model_validate(raw)
        except ValidationError as e:
            raise SettlementFetchError(f"Undecodable block at height {height}: {e}") from e
        if block.height != height:
            raise SettlementFetchError(
                f"Node returned block {block.height} for height {height}"
            )

        for index, raw_tx in enumerate(block.transactions):
            try:
                tx = SettledTransaction.model_validate(raw_tx)
            except ValidationError as e:
                logger.warning(
                    "Skipping malformed transaction %d at height %d: %s", index, height, e
                )
                continue
            await self._process_transaction(tx, block)

        await self.repository.set_watermark(height)
        logger.info(
            "Processed block %s at height %d (%d transactions)",
            block.block_id,
            height,
            len(block.transactions),
        )
        return True

    async def _process_transaction(self, tx: SettledTransaction, block: SettledBlock) -> None:
        # Spent notes hand their history to the notes this transaction creates.
        # They are removed only after the outputs are stored, so replaying a
        # height interrupted halfway still finds the history to propagate.
        propagated: list[AuthorizationEntry] = []
        spent_notes = []
        for spent in tx.inputs:
            note = await self.repository.get_note(spent.record_id)
            if note is not None:
                propagated = note.history
                spent_notes.append(note)

        for record in tx.outputs:
            try:
                await self._process_output(record, propagated, block)
            except (MalformedRecordError, MalformedInputError, ValidationError) as e:
                logger.warning(
                    "Skipping record %s in tx %s: %s", record.record_id, tx.tx_id, e
                )

        for note in spent_notes:
            await self.repository.remove_note(note.record_id)

    async def _process_output(
        self,
        record: SettledRecord,
        propagated: list[AuthorizationEntry],
        block: SettledBlock,
    ) -> None:
        token_id = record.first_token_id
        if token_id is None:
            return

        if await self.repository.is_note_token(token_id):
            await self._track_note(record, propagated, block)

        existing = await self.repository.get_reserve(token_id)
        if existing is not None:
            await self.repository.put_reserve(
                self._reserve_from_record(token_id, record, block, existing.liabilities)
            )
        elif self._looks_like_reserve(record):
            reserve = self._reserve_from_record(token_id, record, block, {})
            await self.repository.put_reserve(reserve)
            logger.info("Discovered reserve %s", token_id)
            if (
                self.my_public_key_hex is not None
                and reserve.owner_public_key_hex == self.my_public_key_hex
            ):
                await self.repository.add_my_reserve(token_id)

        if token_id == self.tracker_id_hex:
            state = TrackerState(
                tracker_id_hex=token_id,
                tracker_public_key_hex=_register(record, "R4", POINT_SIZE),
                ledger_digest_hex=_register(record, "R5", HASH_SIZE),
                anchor_time_ms=block.timestamp_ms,
                anchor_height=block.height,
            )
            await self.tracker_state_repository.put(state)
            logger.info(
                "Tracker digest %s anchored at height %d",
                state.ledger_digest_hex,
                block.height,
            )

    async def _track_note(
        self,
        record: SettledRecord,
        propagated: list[AuthorizationEntry],
        block: SettledBlock,
    ) -> None:
        history = list(propagated)
        if "R5" in record.registers:
            entry = AuthorizationEntry.from_bytes(bytes.fromhex(_register(record, "R5")))
            if not history or history[-1] != entry:
                history.append(entry)
        note = TrackedNote(
            record=record,
            holder_public_key_hex=_register(record, "R4", POINT_SIZE),
            history=history,
            created_height=block.height,
        )
        if not await self.repository.add_note(note):
            logger.debug("Note %s already tracked", record.record_id)

    def _looks_like_reserve(self, record: SettledRecord) -> bool:
        return (
            record.script_hash == self.reserve_script_hash
            and len(record.tokens) == 1
            and record.tokens[0].amount == 1
        )

    @staticmethod
    def _reserve_from_record(
        reserve_id_hex: str,
        record: SettledRecord,
        block: SettledBlock,
        liabilities: dict[str, int],
    ) -> ReserveData:
        return ReserveData(
            reserve_id_hex=reserve_id_hex,
            record_id=record.record_id,
            owner_public_key_hex=_register(record, "R4", POINT_SIZE),
            redeemed_digest_hex=_register(record, "R5", HASH_SIZE),
            tracker_id_hex=_register(record, "R6", HASH_SIZE),
            balance=record.value,
            liabilities=liabilities,
            updated_height=block.height,
        )

    async def recompute_liabilities(self) -> int:
        """Re-sum outstanding notes per reserve; returns how many reserves changed."""
        changed = 0
        for reserve in await self.repository.list_reserves():
            liabilities: dict[str, int] = {}
            for note in await self.repository.notes_by_reserve(reserve.reserve_id_hex):
                # Only the most recent authorization decides which reserve backs a note.
                if note.latest_reserve_id != reserve.reserve_id_hex:
                    continue
                liabilities[note.token_id] = liabilities.get(note.token_id, 0) + note.value
            if liabilities != reserve.liabilities:
                await self.repository.put_reserve(
                    reserve.model_copy(update={"liabilities": liabilities})
                )
                changed += 1
        return changed

    async def process_pending_blocks(self) -> int:
        """Catch up to the node's height; returns the number of blocks applied.

        A fetch failure ends the cycle; the same height is retried next time.
        """
        applied = 0
        try:
            node_height = await self.settlement_client.fetch_height()
            height = await self.next_height()
            while height <= node_height:
                if not await self.process_settled_block(height):
                    break
                await self.recompute_liabilities()
                applied += 1
                height += 1
        except SettlementFetchError as e:
            logger.warning("Settlement fetch failed, will retry next cycle: %s", e)
        return applied

    async def get_liabilities(self, reserve_id_hex: str) -> ReserveLiabilitiesDTO:
        reserve = await self.repository.get_reserve(reserve_id_hex)
        if reserve is None:
            raise NotFoundError(f"Reserve {reserve_id_hex} has not been observed")
        total = reserve.total_liabilities
        return ReserveLiabilitiesDTO(
            reserve_id_hex=reserve.reserve_id_hex,
            balance=reserve.balance,
            liabilities=reserve.liabilities,
            total_liabilities=total,
            solvent=reserve.balance >= total,
        )
