"""Shared pytest fixtures: key material and identifiers."""

from __future__ import annotations

import pytest

from basis.crypto.key_utils import generate_secret_key, public_key_bytes


@pytest.fixture
def debtor_secret_key() -> int:
    """Debtor, who is also the reserve owner."""
    return generate_secret_key()


@pytest.fixture
def debtor_public_key_hex(debtor_secret_key: int) -> str:
    return public_key_bytes(debtor_secret_key).hex()


@pytest.fixture
def creditor_secret_key() -> int:
    return generate_secret_key()


@pytest.fixture
def creditor_public_key_hex(creditor_secret_key: int) -> str:
    return public_key_bytes(creditor_secret_key).hex()


@pytest.fixture
def tracker_secret_key() -> int:
    return generate_secret_key()


@pytest.fixture
def tracker_public_key_hex(tracker_secret_key: int) -> str:
    return public_key_bytes(tracker_secret_key).hex()


@pytest.fixture
def tracker_id_hex() -> str:
    return "ab" * 32


@pytest.fixture
def reserve_id_hex() -> str:
    return "cd" * 32
