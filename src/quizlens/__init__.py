"""Quizlens application package."""

from __future__ import annotations

from .config import Settings
from .progress import ProgressAggregator, ProgressReport, ProgressReportError
from .store import AttemptStore, StoreError

__all__ = [
    "Settings",
    "AttemptStore",
    "StoreError",
    "ProgressAggregator",
    "ProgressReport",
    "ProgressReportError",
    "create_app",
]


def __getattr__(name: str):  # pragma: no cover - small helper
    if name == "create_app":
        from .app import create_app

        return create_app
    raise AttributeError(f"module 'quizlens' has no attribute {name}")
