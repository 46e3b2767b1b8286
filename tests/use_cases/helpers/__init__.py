"""Test helpers for use case-based testing."""

from .basis_world import BasisWorld, RecordedDebt
from .tamper import tamper_hex_preserve_validity

__all__ = [
    "BasisWorld",
    "RecordedDebt",
    "tamper_hex_preserve_validity",
]
