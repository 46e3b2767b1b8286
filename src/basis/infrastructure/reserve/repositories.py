"""Reserve repository implemented over a storage abstraction."""

from __future__ import annotations

from typing import Optional

from ...domain.reserve.entities import ReserveState
from ...domain.reserve.repositories import ReserveRepository
from ..scripts import parse_script_result
from ..storage import KeyValueStore


class ReserveRepositoryImpl(ReserveRepository):
    """Reserve states stored as canonical JSON so the CAS script can compare them."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    @staticmethod
    def _reserve_key(reserve_id_hex: str) -> str:
        return f"reserve:{reserve_id_hex}"

    async def get(self, reserve_id_hex: str) -> Optional[ReserveState]:
        data = await self.store.get(self._reserve_key(reserve_id_hex))
        if not data:
            return None
        return ReserveState.model_validate_json(data)

    async def put(self, state: ReserveState) -> ReserveState:
        await self.store.set(self._reserve_key(state.reserve_id_hex), state.model_dump_json())
        await self.store.zadd("reserves:all", {state.reserve_id_hex: 0})
        return state

    async def compare_and_swap(
        self, expected: ReserveState, new: ReserveState
    ) -> tuple[int, Optional[ReserveState]]:
        result = await self.store.run_script(
            "commit_reserve_transition",
            keys=[self._reserve_key(expected.reserve_id_hex)],
            args=[expected.model_dump_json(), new.model_dump_json()],
        )
        code, payload = parse_script_result(result)
        if code == 1:
            return 1, new
        if code == 2:
            return 2, None
        return 0, ReserveState.model_validate_json(payload) if payload else None

    async def list_all(self) -> list[ReserveState]:
        states: list[ReserveState] = []
        for reserve_id_hex in await self.store.zrevrange("reserves:all", 0, -1):
            state = await self.get(reserve_id_hex)
            if state is not None:
                states.append(state)
        return states
