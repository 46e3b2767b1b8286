"""Reconciler domain repository: watermark, tracked notes, reserves and indices."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from .entities import ReserveData, TrackedNote


class ReconcilerRepository(ABC):
    """Derived, rebuildable state maintained by the tracker reconciler."""

    @abstractmethod
    async def get_watermark(self) -> Optional[int]:
        """Last fully processed block height, or None before the first block."""
        pass

    @abstractmethod
    async def set_watermark(self, height: int) -> None:
        pass

    @abstractmethod
    async def register_note_token(self, token_id: str) -> None:
        pass

    @abstractmethod
    async def is_note_token(self, token_id: str) -> bool:
        pass

    @abstractmethod
    async def get_note(self, record_id: str) -> Optional[TrackedNote]:
        pass

    @abstractmethod
    async def add_note(self, note: TrackedNote) -> bool:
        """Track *note* and index it; returns False if it was already tracked."""
        pass

    @abstractmethod
    async def remove_note(self, record_id: str) -> Optional[TrackedNote]:
        """Stop tracking a spent note; returns it so its history can be carried on."""
        pass

    @abstractmethod
    async def list_notes(self) -> list[TrackedNote]:
        pass

    @abstractmethod
    async def notes_by_holder(self, holder_public_key_hex: str) -> list[TrackedNote]:
        pass

    @abstractmethod
    async def notes_by_reserve(self, reserve_id_hex: str) -> list[TrackedNote]:
        pass

    @abstractmethod
    async def get_reserve(self, reserve_id_hex: str) -> Optional[ReserveData]:
        pass

    @abstractmethod
    async def put_reserve(self, reserve: ReserveData) -> None:
        pass

    @abstractmethod
    async def list_reserves(self) -> list[ReserveData]:
        pass

    @abstractmethod
    async def add_my_reserve(self, reserve_id_hex: str) -> None:
        pass

    @abstractmethod
    async def list_my_reserves(self) -> list[str]:
        pass
