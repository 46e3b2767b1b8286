"""Repository tests against the in-memory store and its script renditions."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import AsyncGenerator

import pytest

from basis.domain.reconciler.entities import (
    AuthorizationEntry,
    SettledRecord,
    TokenAmount,
    TrackedNote,
)
from basis.domain.reserve.entities import ReserveState
from basis.domain.tracker.entities import (
    DebtNote,
    LedgerEntry,
    LedgerSnapshot,
    TrackerState,
)
from basis.infrastructure.repositories import (
    NoteRepositoryImpl,
    ReconcilerRepositoryImpl,
    ReserveRepositoryImpl,
    TrackerStateRepositoryImpl,
)
from basis.infrastructure.scripts import monotonic_marker, register_scripts
from tests.fixtures import InMemoryKeyValueStore

PAIR = "aa" * 32
DEBTOR = "02" + "11" * 32
CREDITOR = "03" + "22" * 32


@pytest.fixture
async def store() -> AsyncGenerator[InMemoryKeyValueStore, None]:
    kv = InMemoryKeyValueStore()
    await register_scripts(kv)
    yield kv
    kv.clear()


def _note(amount: int, timestamp: int, signature: str = "01" * 65) -> DebtNote:
    return DebtNote(
        pair_key_hex=PAIR,
        debtor_public_key_hex=DEBTOR,
        creditor_public_key_hex=CREDITOR,
        cumulative_amount=amount,
        timestamp=timestamp,
        debtor_signature_hex=signature,
        tracker_signature_hex="02" * 65,
    )


def _reserve(balance: int = 1_000, digest: str = "00" * 32) -> ReserveState:
    return ReserveState(
        reserve_id_hex="cd" * 32,
        owner_public_key_hex=DEBTOR,
        redeemed_digest_hex=digest,
        tracker_id_hex="ab" * 32,
        balance=balance,
    )


class TestMonotonicMarker:
    def test_orders_like_numbers(self) -> None:
        assert monotonic_marker(9, 1) < monotonic_marker(10, 1)
        assert monotonic_marker(2**64 - 1, 0).startswith("18446744073709551615")

    def test_fixed_width(self) -> None:
        assert len(monotonic_marker(0, 0)) == len(monotonic_marker(2**64 - 1, 2**64 - 1))


class TestNoteRepository:
    @pytest.mark.asyncio
    async def test_first_save_succeeds(self, store: InMemoryKeyValueStore) -> None:
        repo = NoteRepositoryImpl(store)
        code, saved = await repo.save_if_newer(_note(100, 1))
        assert code == 1
        assert saved is not None and saved.cumulative_amount == 100
        assert (await repo.get(PAIR)).cumulative_amount == 100

    @pytest.mark.asyncio
    async def test_lower_amount_is_stale(self, store: InMemoryKeyValueStore) -> None:
        repo = NoteRepositoryImpl(store)
        await repo.save_if_newer(_note(100, 1))
        code, current = await repo.save_if_newer(_note(50, 2))
        assert code == 0
        assert current is not None and current.cumulative_amount == 100

    @pytest.mark.asyncio
    async def test_same_timestamp_is_stale(self, store: InMemoryKeyValueStore) -> None:
        repo = NoteRepositoryImpl(store)
        await repo.save_if_newer(_note(100, 5))
        code, _ = await repo.save_if_newer(_note(200, 5))
        assert code == 0

    @pytest.mark.asyncio
    async def test_large_values_compare_exactly(self, store: InMemoryKeyValueStore) -> None:
        repo = NoteRepositoryImpl(store)
        await repo.save_if_newer(_note(2**63, 2**62))
        code, _ = await repo.save_if_newer(_note(2**63 + 1, 2**62 + 1))
        assert code == 1

    @pytest.mark.asyncio
    async def test_indexed_by_debtor(self, store: InMemoryKeyValueStore) -> None:
        repo = NoteRepositoryImpl(store)
        await repo.save_if_newer(_note(100, 1))
        await repo.save_if_newer(_note(200, 2))
        notes = await repo.list_by_debtor(DEBTOR)
        assert [n.cumulative_amount for n in notes] == [200]
        assert len(await repo.list_all()) == 1

    @pytest.mark.asyncio
    async def test_snapshots_newest_first_and_deletable(
        self, store: InMemoryKeyValueStore
    ) -> None:
        repo = NoteRepositoryImpl(store)
        older = LedgerSnapshot(
            ledger_digest_hex="11" * 32,
            entries=[LedgerEntry(pair_key_hex=PAIR, cumulative_amount=100, timestamp=1)],
            published_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        )
        newer = LedgerSnapshot(
            ledger_digest_hex="22" * 32,
            published_at=datetime(2026, 1, 2, tzinfo=timezone.utc),
        )
        await repo.save_snapshot(older)
        await repo.save_snapshot(newer)

        snapshots = await repo.list_snapshots()
        assert [s.ledger_digest_hex for s in snapshots] == ["22" * 32, "11" * 32]
        assert snapshots[1].entries[0].cumulative_amount == 100

        assert await repo.delete_snapshot("11" * 32) is True
        assert await repo.delete_snapshot("11" * 32) is False
        assert [s.ledger_digest_hex for s in await repo.list_snapshots()] == ["22" * 32]


class TestReserveRepository:
    @pytest.mark.asyncio
    async def test_compare_and_swap_commits(self, store: InMemoryKeyValueStore) -> None:
        repo = ReserveRepositoryImpl(store)
        prior = await repo.put(_reserve())
        code, current = await repo.compare_and_swap(prior, _reserve(balance=600))
        assert code == 1
        assert current == _reserve(balance=600)
        assert (await repo.get(prior.reserve_id_hex)).balance == 600

    @pytest.mark.asyncio
    async def test_compare_and_swap_stale_returns_current(
        self, store: InMemoryKeyValueStore
    ) -> None:
        repo = ReserveRepositoryImpl(store)
        prior = await repo.put(_reserve())
        await repo.compare_and_swap(prior, _reserve(balance=600))
        code, current = await repo.compare_and_swap(prior, _reserve(balance=400))
        assert code == 0
        assert current == _reserve(balance=600)

    @pytest.mark.asyncio
    async def test_compare_and_swap_missing(self, store: InMemoryKeyValueStore) -> None:
        repo = ReserveRepositoryImpl(store)
        code, current = await repo.compare_and_swap(_reserve(), _reserve(balance=1))
        assert code == 2
        assert current is None


class TestTrackerStateRepository:
    @pytest.mark.asyncio
    async def test_put_replaces_previous_anchor(self, store: InMemoryKeyValueStore) -> None:
        repo = TrackerStateRepositoryImpl(store)
        assert await repo.get("ab" * 32) is None
        for anchor in (1, 2):
            await repo.put(
                TrackerState(
                    tracker_id_hex="ab" * 32,
                    tracker_public_key_hex=DEBTOR,
                    ledger_digest_hex="ee" * 32,
                    anchor_time_ms=anchor,
                )
            )
        state = await repo.get("ab" * 32)
        assert state is not None and state.anchor_time_ms == 2


class TestReconcilerRepository:
    def _tracked(self, record_id: str) -> TrackedNote:
        return TrackedNote(
            record=SettledRecord(
                record_id=record_id,
                value=1,
                script_hash="00" * 32,
                tokens=[TokenAmount(token_id="11" * 32, amount=5)],
            ),
            holder_public_key_hex=CREDITOR,
            history=[
                AuthorizationEntry(
                    reserve_id_hex="cd" * 32, value_backed=5, signature_hex="00" * 65
                )
            ],
            created_height=3,
        )

    @pytest.mark.asyncio
    async def test_watermark_starts_empty(self, store: InMemoryKeyValueStore) -> None:
        repo = ReconcilerRepositoryImpl(store)
        assert await repo.get_watermark() is None
        await repo.set_watermark(7)
        assert await repo.get_watermark() == 7

    @pytest.mark.asyncio
    async def test_add_note_once(self, store: InMemoryKeyValueStore) -> None:
        repo = ReconcilerRepositoryImpl(store)
        assert await repo.add_note(self._tracked("n1")) is True
        assert await repo.add_note(self._tracked("n1")) is False
        assert [n.record_id for n in await repo.notes_by_reserve("cd" * 32)] == ["n1"]

    @pytest.mark.asyncio
    async def test_remove_note_clears_indices(self, store: InMemoryKeyValueStore) -> None:
        repo = ReconcilerRepositoryImpl(store)
        await repo.add_note(self._tracked("n1"))
        removed = await repo.remove_note("n1")
        assert removed is not None and removed.record_id == "n1"
        assert await repo.remove_note("n1") is None
        assert await repo.list_notes() == []
        assert await repo.notes_by_holder(CREDITOR) == []
        assert await repo.notes_by_reserve("cd" * 32) == []

    @pytest.mark.asyncio
    async def test_note_tokens(self, store: InMemoryKeyValueStore) -> None:
        repo = ReconcilerRepositoryImpl(store)
        assert await repo.is_note_token("11" * 32) is False
        await repo.register_note_token("11" * 32)
        assert await repo.is_note_token("11" * 32) is True
