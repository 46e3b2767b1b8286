"""Tracker repositories implemented over a storage abstraction."""

from __future__ import annotations

from typing import Optional

from ...domain.tracker.entities import DebtNote, LedgerSnapshot, TrackerState
from ...domain.tracker.repositories import NoteRepository, TrackerStateRepository
from ..scripts import monotonic_marker, parse_script_result
from ..storage import KeyValueStore


class NoteRepositoryImpl(NoteRepository):
    """Debt note repository backed by KeyValueStore and the save_note_if_newer script."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    @staticmethod
    def _note_key(pair_key_hex: str) -> str:
        return f"note:{pair_key_hex}"

    @staticmethod
    def _marker_key(pair_key_hex: str) -> str:
        return f"note:marker:{pair_key_hex}"

    @staticmethod
    def _debtor_key(debtor_public_key_hex: str) -> str:
        return f"notes:debtor:{debtor_public_key_hex}"

    async def get(self, pair_key_hex: str) -> Optional[DebtNote]:
        data = await self.store.get(self._note_key(pair_key_hex))
        if not data:
            return None
        return DebtNote.model_validate_json(data)

    async def save_if_newer(self, note: DebtNote) -> tuple[int, Optional[DebtNote]]:
        result = await self.store.run_script(
            "save_note_if_newer",
            keys=[
                self._note_key(note.pair_key_hex),
                self._marker_key(note.pair_key_hex),
                self._debtor_key(note.debtor_public_key_hex),
                "notes:all",
            ],
            args=[
                note.model_dump_json(),
                monotonic_marker(note.cumulative_amount, note.timestamp),
                note.pair_key_hex,
                str(note.recorded_at.timestamp()),
            ],
        )
        code, payload = parse_script_result(result)
        if code == 1:
            return 1, note
        return 0, DebtNote.model_validate_json(payload) if payload else None

    async def list_all(self) -> list[DebtNote]:
        return await self._load_many(await self.store.zrevrange("notes:all", 0, -1))

    async def list_by_debtor(self, debtor_public_key_hex: str) -> list[DebtNote]:
        pair_keys = await self.store.zrevrange(
            self._debtor_key(debtor_public_key_hex), 0, -1
        )
        return await self._load_many(pair_keys)

    async def _load_many(self, pair_keys: list[str]) -> list[DebtNote]:
        notes: list[DebtNote] = []
        for pair_key_hex in pair_keys:
            note = await self.get(pair_key_hex)
            if note is not None:
                notes.append(note)
        return notes

    @staticmethod
    def _snapshot_key(ledger_digest_hex: str) -> str:
        return f"ledger:snapshot:{ledger_digest_hex}"

    async def save_snapshot(self, snapshot: LedgerSnapshot) -> LedgerSnapshot:
        await self.store.set(
            self._snapshot_key(snapshot.ledger_digest_hex), snapshot.model_dump_json()
        )
        await self.store.zadd(
            "ledger:snapshots",
            {snapshot.ledger_digest_hex: snapshot.published_at.timestamp()},
        )
        return snapshot

    async def list_snapshots(self) -> list[LedgerSnapshot]:
        snapshots: list[LedgerSnapshot] = []
        for digest_hex in await self.store.zrevrange("ledger:snapshots", 0, -1):
            data = await self.store.get(self._snapshot_key(digest_hex))
            if data:
                snapshots.append(LedgerSnapshot.model_validate_json(data))
        return snapshots

    async def delete_snapshot(self, ledger_digest_hex: str) -> bool:
        await self.store.zrem("ledger:snapshots", ledger_digest_hex)
        return await self.store.delete(self._snapshot_key(ledger_digest_hex)) > 0


class TrackerStateRepositoryImpl(TrackerStateRepository):
    """Tracker records keyed by tracker id."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    async def get(self, tracker_id_hex: str) -> Optional[TrackerState]:
        data = await self.store.get(f"tracker_state:{tracker_id_hex}")
        if not data:
            return None
        return TrackerState.model_validate_json(data)

    async def put(self, state: TrackerState) -> TrackerState:
        await self.store.set(f"tracker_state:{state.tracker_id_hex}", state.model_dump_json())
        return state
