"""Dependencies for Tracker API."""

from __future__ import annotations

from functools import lru_cache

from ...application.reconciler.use_cases.reconciler import TrackerReconciler
from ...application.reserve.use_cases.redemption import RedemptionService
from ...application.reserve.use_cases.verifier import RedemptionVerifier
from ...application.tracker.use_cases.ledger import TrackerLedgerService
from ...envs.tracker_env import Settings, get_settings
from ...infrastructure.database import DatabaseClient, get_database_client
from ...infrastructure.node.node_client import NodeClient
from ...infrastructure.repositories import (
    NoteRepositoryImpl,
    ReconcilerRepositoryImpl,
    ReserveRepositoryImpl,
    TrackerStateRepositoryImpl,
)
from ...infrastructure.storage import RedisKeyValueStore


@lru_cache()
def get_settings_dependency() -> Settings:
    return get_settings()


@lru_cache()
def get_database_client_dependency() -> DatabaseClient:
    settings = get_settings_dependency()
    return get_database_client(settings)


@lru_cache()
def get_store_dependency() -> RedisKeyValueStore:
    db_client = get_database_client_dependency()
    return RedisKeyValueStore(db_client)


@lru_cache()
def get_node_client() -> NodeClient:
    settings = get_settings_dependency()
    return NodeClient(
        settings.node_base_url,
        timeout=settings.node_timeout_seconds,
        api_key=settings.node_api_key,
    )


def get_note_repository() -> NoteRepositoryImpl:
    return NoteRepositoryImpl(get_store_dependency())


def get_tracker_state_repository() -> TrackerStateRepositoryImpl:
    return TrackerStateRepositoryImpl(get_store_dependency())


def get_reserve_repository() -> ReserveRepositoryImpl:
    return ReserveRepositoryImpl(get_store_dependency())


def get_reconciler_repository() -> ReconcilerRepositoryImpl:
    return ReconcilerRepositoryImpl(get_store_dependency())


# The ledger and redemption services hold locks and the in-memory tree, so one
# instance per process.
@lru_cache()
def get_ledger_service() -> TrackerLedgerService:
    settings = get_settings_dependency()
    return TrackerLedgerService(
        get_note_repository(),
        settings.secret_key,
        settings.tracker_id_hex,
        settlement_client=get_node_client(),
        anchored_retention=settings.anchored_retention,
    )


@lru_cache()
def get_redemption_service() -> RedemptionService:
    settings = get_settings_dependency()
    verifier = RedemptionVerifier(
        emergency_window_ms=settings.emergency_window_ms,
        anchor_staleness_ms=settings.anchor_staleness_ms,
        min_top_up=settings.min_top_up,
    )
    return RedemptionService(
        get_reserve_repository(), get_tracker_state_repository(), verifier
    )


def get_reconciler() -> TrackerReconciler:
    settings = get_settings_dependency()
    return TrackerReconciler(
        get_reconciler_repository(),
        get_tracker_state_repository(),
        get_node_client(),
        reserve_script_hash=settings.reserve_script_hash_hex,
        tracker_id_hex=settings.tracker_id_hex,
        my_public_key_hex=settings.owner_public_key_hex,
        start_height=settings.start_height,
    )
