"""Test fixtures for in-memory implementations."""

from .in_memory_storage import InMemoryKeyValueStore
from .in_memory_settlement_client import (
    RESERVE_SCRIPT_HASH,
    InMemorySettlementClient,
    make_record,
    make_transaction,
)

__all__ = [
    "InMemoryKeyValueStore",
    "InMemorySettlementClient",
    "RESERVE_SCRIPT_HASH",
    "make_record",
    "make_transaction",
]
