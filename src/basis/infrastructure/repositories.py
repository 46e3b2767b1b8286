"""Repository implementations, re-exported for wiring."""

from __future__ import annotations

from .reconciler.repositories import ReconcilerRepositoryImpl
from .reserve.repositories import ReserveRepositoryImpl
from .tracker.repositories import NoteRepositoryImpl, TrackerStateRepositoryImpl

__all__ = [
    "NoteRepositoryImpl",
    "ReconcilerRepositoryImpl",
    "ReserveRepositoryImpl",
    "TrackerStateRepositoryImpl",
]
