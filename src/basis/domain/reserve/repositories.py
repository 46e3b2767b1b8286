"""Reserve domain repository."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from .entities import ReserveState


class ReserveRepository(ABC):
    """Repository for the current state of each reserve."""

    @abstractmethod
    async def get(self, reserve_id_hex: str) -> Optional[ReserveState]:
        pass

    @abstractmethod
    async def put(self, state: ReserveState) -> ReserveState:
        pass

    @abstractmethod
    async def compare_and_swap(
        self, expected: ReserveState, new: ReserveState
    ) -> tuple[int, Optional[ReserveState]]:
        """Replace *expected* with *new* only if the stored state is still *expected*.

        Returns:
            ``(1, new)`` on success, ``(0, current)`` if another transition won,
            ``(2, None)`` if the reserve is unknown.
        """
        pass

    @abstractmethod
    async def list_all(self) -> list[ReserveState]:
        pass
