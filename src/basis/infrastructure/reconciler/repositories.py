"""Reconciler repository implemented over a storage abstraction."""

from __future__ import annotations

from typing import Optional

from ...domain.reconciler.entities import ReserveData, TrackedNote
from ...domain.reconciler.repositories import ReconcilerRepository
from ..storage import KeyValueStore


class ReconcilerRepositoryImpl(ReconcilerRepository):
    """Tracked notes, reserves and their indices, all keyed under ``reconciler:``."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    @staticmethod
    def _note_key(record_id: str) -> str:
        return f"reconciler:note:{record_id}"

    @staticmethod
    def _holder_key(holder_public_key_hex: str) -> str:
        return f"reconciler:notes:holder:{holder_public_key_hex}"

    @staticmethod
    def _by_reserve_key(reserve_id_hex: str) -> str:
        return f"reconciler:notes:reserve:{reserve_id_hex}"

    @staticmethod
    def _reserve_key(reserve_id_hex: str) -> str:
        return f"reconciler:reserve:{reserve_id_hex}"

    async def get_watermark(self) -> Optional[int]:
        raw = await self.store.get("reconciler:watermark")
        return int(raw) if raw is not None else None

    async def set_watermark(self, height: int) -> None:
        await self.store.set("reconciler:watermark", str(height))

    async def register_note_token(self, token_id: str) -> None:
        await self.store.set(f"reconciler:note_token:{token_id}", "1")

    async def is_note_token(self, token_id: str) -> bool:
        return await self.store.get(f"reconciler:note_token:{token_id}") is not None

    async def get_note(self, record_id: str) -> Optional[TrackedNote]:
        data = await self.store.get(self._note_key(record_id))
        if not data:
            return None
        return TrackedNote.model_validate_json(data)

    async def add_note(self, note: TrackedNote) -> bool:
        if await self.store.get(self._note_key(note.record_id)) is not None:
            return False
        await self.store.set(self._note_key(note.record_id), note.model_dump_json())
        score = float(note.created_height)
        await self.store.zadd("reconciler:notes:all", {note.record_id: score})
        await self.store.zadd(
            self._holder_key(note.holder_public_key_hex), {note.record_id: score}
        )
        if note.latest_reserve_id is not None:
            await self.store.zadd(
                self._by_reserve_key(note.latest_reserve_id), {note.record_id: score}
            )
        return True

    async def remove_note(self, record_id: str) -> Optional[TrackedNote]:
        note = await self.get_note(record_id)
        if note is None:
            return None
        await self.store.delete(self._note_key(record_id))
        await self.store.zrem("reconciler:notes:all", record_id)
        await self.store.zrem(self._holder_key(note.holder_public_key_hex), record_id)
        if note.latest_reserve_id is not None:
            await self.store.zrem(self._by_reserve_key(note.latest_reserve_id), record_id)
        return note

    async def _load_notes(self, index_key: str) -> list[TrackedNote]:
        notes: list[TrackedNote] = []
        for record_id in await self.store.zrevrange(index_key, 0, -1):
            note = await self.get_note(record_id)
            if note is not None:
                notes.append(note)
        return notes

    async def list_notes(self) -> list[TrackedNote]:
        return await self._load_notes("reconciler:notes:all")

    async def notes_by_holder(self, holder_public_key_hex: str) -> list[TrackedNote]:
        return await self._load_notes(self._holder_key(holder_public_key_hex))

    async def notes_by_reserve(self, reserve_id_hex: str) -> list[TrackedNote]:
        return await self._load_notes(self._by_reserve_key(reserve_id_hex))

    async def get_reserve(self, reserve_id_hex: str) -> Optional[ReserveData]:
        data = await self.store.get(self._reserve_key(reserve_id_hex))
        if not data:
            return None
        return ReserveData.model_validate_json(data)

    async def put_reserve(self, reserve: ReserveData) -> None:
        await self.store.set(self._reserve_key(reserve.reserve_id_hex), reserve.model_dump_json())
        await self.store.zadd(
            "reconciler:reserves:all", {reserve.reserve_id_hex: 0}
        )

    async def list_reserves(self) -> list[ReserveData]:
        reserves: list[ReserveData] = []
        for reserve_id_hex in await self.store.zrevrange("reconciler:reserves:all", 0, -1):
            reserve = await self.get_reserve(reserve_id_hex)
            if reserve is not None:
                reserves.append(reserve)
        return reserves

    async def add_my_reserve(self, reserve_id_hex: str) -> None:
        await self.store.zadd("reconciler:reserves:mine", {reserve_id_hex: 0})

    async def list_my_reserves(self) -> list[str]:
        return await self.store.zrevrange("reconciler:reserves:mine", 0, -1)
