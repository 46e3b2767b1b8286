"""Pytest fixtures for use case tests."""

from __future__ import annotations

from typing import AsyncGenerator

import pytest

from basis.application.reconciler.use_cases.reconciler import TrackerReconciler
from basis.application.reserve.use_cases.redemption import RedemptionService
from basis.application.reserve.use_cases.verifier import RedemptionVerifier
from basis.application.tracker.use_cases.ledger import TrackerLedgerService
from basis.infrastructure.repositories import (
    NoteRepositoryImpl,
    ReconcilerRepositoryImpl,
    ReserveRepositoryImpl,
    TrackerStateRepositoryImpl,
)
from basis.infrastructure.scripts import register_scripts
from tests.fixtures import (
    RESERVE_SCRIPT_HASH,
    InMemoryKeyValueStore,
    InMemorySettlementClient,
)
from tests.use_cases.helpers import BasisWorld


# ============================================================================
# Storage and Repository Fixtures
# ============================================================================


@pytest.fixture
async def store() -> AsyncGenerator[InMemoryKeyValueStore, None]:
    """In-memory store with the tracker scripts registered."""
    kv = InMemoryKeyValueStore()
    await register_scripts(kv)
    yield kv
    kv.clear()


@pytest.fixture
def note_repository(store: InMemoryKeyValueStore) -> NoteRepositoryImpl:
    return NoteRepositoryImpl(store)


@pytest.fixture
def tracker_state_repository(store: InMemoryKeyValueStore) -> TrackerStateRepositoryImpl:
    return TrackerStateRepositoryImpl(store)


@pytest.fixture
def reserve_repository(store: InMemoryKeyValueStore) -> ReserveRepositoryImpl:
    return ReserveRepositoryImpl(store)


@pytest.fixture
def reconciler_repository(store: InMemoryKeyValueStore) -> ReconcilerRepositoryImpl:
    return ReconcilerRepositoryImpl(store)


@pytest.fixture
def settlement_client() -> InMemorySettlementClient:
    return InMemorySettlementClient()


# ============================================================================
# Service Fixtures
# ============================================================================


@pytest.fixture
def ledger_service(
    note_repository: NoteRepositoryImpl,
    tracker_secret_key: int,
    tracker_id_hex: str,
    settlement_client: InMemorySettlementClient,
) -> TrackerLedgerService:
    return TrackerLedgerService(
        note_repository,
        tracker_secret_key,
        tracker_id_hex,
        settlement_client=settlement_client,
    )


@pytest.fixture
def verifier() -> RedemptionVerifier:
    """Seven-day emergency window, no staleness limit."""
    return RedemptionVerifier()


@pytest.fixture
def redemption_service(
    reserve_repository: ReserveRepositoryImpl,
    tracker_state_repository: TrackerStateRepositoryImpl,
    verifier: RedemptionVerifier,
) -> RedemptionService:
    return RedemptionService(reserve_repository, tracker_state_repository, verifier)


@pytest.fixture
def reconciler(
    reconciler_repository: ReconcilerRepositoryImpl,
    tracker_state_repository: TrackerStateRepositoryImpl,
    settlement_client: InMemorySettlementClient,
    tracker_id_hex: str,
    debtor_public_key_hex: str,
) -> TrackerReconciler:
    return TrackerReconciler(
        reconciler_repository,
        tracker_state_repository,
        settlement_client,
        reserve_script_hash=RESERVE_SCRIPT_HASH,
        tracker_id_hex=tracker_id_hex,
        my_public_key_hex=debtor_public_key_hex,
    )


@pytest.fixture
def world(
    ledger_service: TrackerLedgerService,
    redemption_service: RedemptionService,
    tracker_state_repository: TrackerStateRepositoryImpl,
    debtor_secret_key: int,
    tracker_id_hex: str,
    reserve_id_hex: str,
) -> BasisWorld:
    return BasisWorld(
        ledger=ledger_service,
        redemption=redemption_service,
        tracker_states=tracker_state_repository,
        debtor_secret_key=debtor_secret_key,
        tracker_id_hex=tracker_id_hex,
        reserve_id_hex=reserve_id_hex,
    )
