"""Use cases for reserve transitions: opening, redemption and top-up."""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional

from ....crypto.authenticated_map import EMPTY
from ....crypto.key_utils import HASH_SIZE
from ....domain.errors import NotFoundError, RejectReason
from ....domain.reserve.entities import (
    ReserveState,
    TransitionDecision,
    TransitionStatus,
)
from ....domain.reserve.repositories import ReserveRepository
from ....domain.tracker.repositories import TrackerStateRepository
from ..dtos import OpenReserveDTO, RedeemDTO, TopUpDTO, TransitionResponseDTO
from .redemption_validators import decode_fixed, decode_public_key
from .verifier import RedemptionVerifier

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


class RedemptionService:
    """Runs the verifier against stored reserve state and commits atomically.

    Transitions on the same reserve are serialized by a per-reserve lock inside
    the process and by a compare-and-swap in the store across processes. A
    transition that loses the race is rejected, never applied on top of a state
    it was not verified against.
    """

    def __init__(
        self,
        reserve_repository: ReserveRepository,
        tracker_state_repository: TrackerStateRepository,
        verifier: RedemptionVerifier,
        clock: Callable[[], int] = _now_ms,
    ):
        self.reserve_repository = reserve_repository
        self.tracker_state_repository = tracker_state_repository
        self.verifier = verifier
        self.clock = clock
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    @asynccontextmanager
    async def _reserve_lock(self, reserve_id_hex: str) -> AsyncIterator[None]:
        """Hold the reserve's lock; dropped once no task holds or awaits it."""
        lock = self._locks.setdefault(reserve_id_hex, asyncio.Lock())
        self._lock_users[reserve_id_hex] = self._lock_users.get(reserve_id_hex, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[reserve_id_hex] -= 1
            if not self._lock_users[reserve_id_hex]:
                del self._lock_users[reserve_id_hex]
                del self._locks[reserve_id_hex]

    async def open_reserve(self, dto: OpenReserveDTO) -> ReserveState:
        """Register a new reserve with an empty redeemed tree."""
        decode_fixed(dto.reserve_id_hex, HASH_SIZE, "reserve_id")
        decode_fixed(dto.tracker_id_hex, HASH_SIZE, "tracker_id")
        decode_public_key(dto.owner_public_key_hex, "owner_public_key")
        async with self._reserve_lock(dto.reserve_id_hex):
            if await self.reserve_repository.get(dto.reserve_id_hex) is not None:
                raise ValueError(f"Reserve {dto.reserve_id_hex} already exists")
            state = ReserveState(
                reserve_id_hex=dto.reserve_id_hex,
                owner_public_key_hex=dto.owner_public_key_hex,
                redeemed_digest_hex=EMPTY.hex(),
                tracker_id_hex=dto.tracker_id_hex,
                balance=dto.balance,
            )
            return await self.reserve_repository.put(state)

    async def get_reserve(self, reserve_id_hex: str) -> ReserveState:
        state = await self.reserve_repository.get(reserve_id_hex)
        if state is None:
            raise NotFoundError(f"Reserve {reserve_id_hex} not found")
        return state

    async def redeem(
        self, reserve_id_hex: str, dto: RedeemDTO, now_ms: Optional[int] = None
    ) -> TransitionResponseDTO:
        async with self._reserve_lock(reserve_id_hex):
            prior = await self.get_reserve(reserve_id_hex)
            tracker = await self.tracker_state_repository.get(prior.tracker_id_hex)
            if tracker is None:
                decision = TransitionDecision.reject(
                    RejectReason.PROOF_MISMATCH,
                    f"No anchored record for tracker {prior.tracker_id_hex}",
                )
            else:
                decision = self.verifier.verify_redemption(
                    prior,
                    dto.proposed_state,
                    dto.request,
                    tracker,
                    self.clock() if now_ms is None else now_ms,
                )
            return await self._commit(prior, decision)

    async def top_up(self, reserve_id_hex: str, dto: TopUpDTO) -> TransitionResponseDTO:
        async with self._reserve_lock(reserve_id_hex):
            prior = await self.get_reserve(reserve_id_hex)
            decision = self.verifier.verify_top_up(prior, dto.proposed_state)
            return await self._commit(prior, decision)

    async def _commit(
        self, prior: ReserveState, decision: TransitionDecision
    ) -> TransitionResponseDTO:
        if not decision.committed:
            logger.info(
                "Rejected transition on reserve %s: %s (%s)",
                prior.reserve_id_hex,
                decision.reason.value if decision.reason else "unknown",
                decision.detail,
            )
            return TransitionResponseDTO(
                status=decision.status,
                reserve=prior,
                reason=decision.reason,
                detail=decision.detail,
            )

        assert decision.effect is not None
        effect = decision.effect
        code, current = await self.reserve_repository.compare_and_swap(
            prior, effect.next_state
        )
        if code == 2:
            raise NotFoundError(f"Reserve {prior.reserve_id_hex} not found")
        if code != 1:
            detail = "Reserve state changed concurrently; resubmit against the new digest"
            logger.info("Lost commit race on reserve %s", prior.reserve_id_hex)
            return TransitionResponseDTO(
                status=TransitionStatus.REJECTED,
                reserve=current or prior,
                reason=RejectReason.PROOF_MISMATCH,
                detail=detail,
            )

        logger.info(
            "Committed transition on reserve %s: balance %d -> %d%s",
            prior.reserve_id_hex,
            prior.balance,
            effect.next_state.balance,
            " (emergency)" if effect.emergency else "",
        )
        return TransitionResponseDTO(
            status=decision.status,
            reserve=effect.next_state,
            transfer=effect.transfer,
            cumulative_redeemed=effect.cumulative_redeemed,
            emergency=effect.emergency,
        )
