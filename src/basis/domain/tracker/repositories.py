"""Tracker domain repositories: NoteRepository and TrackerStateRepository."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from .entities import DebtNote, LedgerSnapshot, TrackerState


class NoteRepository(ABC):
    """Repository for the tracker's latest debt note per pair key."""

    @abstractmethod
    async def get(self, pair_key_hex: str) -> Optional[DebtNote]:
        pass

    @abstractmethod
    async def save_if_newer(self, note: DebtNote) -> tuple[int, Optional[DebtNote]]:
        """Atomically store *note* if it supersedes the stored one.

        Returns:
            ``(1, note)`` when saved, ``(0, current)`` when the stored note has an
            equal or later timestamp or a larger amount.
        """
        pass

    @abstractmethod
    async def list_all(self) -> list[DebtNote]:
        pass

    @abstractmethod
    async def list_by_debtor(self, debtor_public_key_hex: str) -> list[DebtNote]:
        pass

    @abstractmethod
    async def save_snapshot(self, snapshot: LedgerSnapshot) -> LedgerSnapshot:
        """Store the ledger contents behind a published digest."""
        pass

    @abstractmethod
    async def list_snapshots(self) -> list[LedgerSnapshot]:
        """Published snapshots, newest first."""
        pass

    @abstractmethod
    async def delete_snapshot(self, ledger_digest_hex: str) -> bool:
        pass


class TrackerStateRepository(ABC):
    """Repository for anchored tracker records."""

    @abstractmethod
    async def get(self, tracker_id_hex: str) -> Optional[TrackerState]:
        pass

    @abstractmethod
    async def put(self, state: TrackerState) -> TrackerState:
        pass
